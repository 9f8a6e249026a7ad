"""
Composable wrappers around a pipeline handler.

Each wrapper takes a handler and returns a handler with the same
`handler(request) -> response` contract, so the chain is a plain ordered list:

    compose(handler, [error_containment(), telemetry(sink), rate_limiter(store)])

The first entry is the outermost layer.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from pipeline.types import Handler, Middleware, PipelineRequest, PipelineResponse
from services.errors import PipelineError, RateLimitError
from services.rate_limit_store import RateLimitStore
from services.telemetry import LatencyRecord, MetricsSink

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_REQUESTS = 30
UNKNOWN_CALLER = "unknown"


def compose(handler: Handler, middlewares: Sequence[Middleware]) -> Handler:
    wrapped = handler
    for middleware in reversed(list(middlewares)):
        wrapped = middleware(wrapped)
    return wrapped


def caller_identity(request: PipelineRequest) -> str:
    forwarded = request.header("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_CALLER


def error_containment() -> Middleware:
    """Outermost layer: turn any escaping exception into the uniform error envelope."""

    def _wrap(handler: Handler) -> Handler:
        async def _contained(request: PipelineRequest) -> PipelineResponse:
            try:
                return await handler(request)
            except PipelineError as exc:
                if exc.status_code >= 500:
                    logger.error("Pipeline error on %s %s: %s", request.method, request.path, exc.message)
                return _envelope(exc.status_code, exc.message, exc.data)
            except Exception as exc:
                logger.exception("Unhandled error on %s %s", request.method, request.path)
                status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
                message = "Internal server error"
                if isinstance(status, int) and 400 <= status < 500:
                    message = str(getattr(exc, "detail", None) or exc)
                return _envelope(status, message, None)

        return _contained

    return _wrap


def _envelope(status, message, data) -> PipelineResponse:
    try:
        code = int(status) if status else 500
    except (TypeError, ValueError):
        code = 500
    if code < 400 or code > 599:
        code = 500
    try:
        payload = dict(data or {})
    except (TypeError, ValueError):
        payload = {}
    return PipelineResponse.failure(code, str(message or "Internal server error"), payload)


def telemetry(sink: MetricsSink, clock: Callable[[], float] = time.perf_counter) -> Middleware:
    """Record latency and outcome status of every call; results and errors pass through untouched."""

    def _wrap(handler: Handler) -> Handler:
        async def _timed(request: PipelineRequest) -> PipelineResponse:
            started = clock()
            try:
                response = await handler(request)
            except Exception as exc:
                status = getattr(exc, "status_code", None)
                _submit(
                    sink,
                    request,
                    started,
                    clock,
                    status if isinstance(status, int) else 500,
                    str(exc) or type(exc).__name__,
                )
                raise
            _submit(sink, request, started, clock, response.status, None if response.success else response.message)
            return response

        return _timed

    return _wrap


def _submit(sink, request, started, clock, status: int, error_message: Optional[str]) -> None:
    try:
        sink.submit(
            LatencyRecord(
                path=request.path or "unknown",
                method=request.method,
                latency_ms=int((clock() - started) * 1000),
                status=status,
                error_message=error_message,
            )
        )
    except Exception as exc:
        logger.warning("Telemetry sink rejected record for %s: %s", request.path, exc)


def rate_limiter(
    store: RateLimitStore,
    limit: int = RATE_LIMIT_REQUESTS,
    window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
    clock: Callable[[], float] = time.time,
) -> Middleware:
    """Reject callers above `limit` requests per window before the wrapped handler runs."""

    def _wrap(handler: Handler) -> Handler:
        async def _limited(request: PipelineRequest) -> PipelineResponse:
            caller = caller_identity(request)
            window = await store.hit(f"rate-limit:{caller}", window_seconds, now=clock())
            if window.count > limit:
                logger.warning("Rate limit exceeded caller=%s count=%s", caller, window.count)
                raise RateLimitError("Rate limit exceeded. Please wait before retrying.")
            return await handler(request)

        return _limited

    return _wrap
