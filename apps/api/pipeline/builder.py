"""Assemble the generation pipeline once at startup."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings
from pipeline.middleware import compose, error_containment, rate_limiter, telemetry
from pipeline.types import Handler, PipelineRequest, PipelineResponse
from services.audit_log import AuditLogger, DedupCache
from services.generation import GenerationHandler
from services.llm_client import UpstreamClient
from services.rate_limit_store import RateLimitStore, build_rate_limit_store
from services.telemetry import MetricsSink, SqlMetricsSink


@dataclass
class GenerationPipeline:
    handle: Handler
    handler: GenerationHandler
    audit: AuditLogger
    metrics_sink: MetricsSink
    rate_limit_store: RateLimitStore
    http_client: httpx.AsyncClient

    async def __call__(self, request: PipelineRequest) -> PipelineResponse:
        return await self.handle(request)

    async def aclose(self) -> None:
        await self.metrics_sink.flush()
        await self.http_client.aclose()


def build_generation_pipeline(
    config: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    metrics_sink: Optional[MetricsSink] = None,
    audit: Optional[AuditLogger] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> GenerationPipeline:
    """Wire error containment -> telemetry -> rate limiting around the generation handler."""
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.LLM_TIMEOUT_SECONDS))
    store = rate_limit_store or build_rate_limit_store(config.RATE_LIMIT_BACKEND, config.REDIS_URL)
    sink = metrics_sink or SqlMetricsSink(session_maker)
    audit_logger = audit or AuditLogger(
        session_maker,
        dedup_window_seconds=config.AUDIT_DEDUP_WINDOW_SECONDS,
        dedup_cache=DedupCache(config.AUDIT_DEDUP_MAX_ENTRIES),
        identity_retry_delay=config.AUDIT_IDENTITY_RETRY_DELAY_SECONDS,
        sleep=sleep,
    )
    upstream = UpstreamClient(
        client,
        api_url=config.LLM_API_URL,
        api_key=config.llm_api_key,
        model=config.LLM_MODEL,
        timeout_seconds=config.LLM_TIMEOUT_SECONDS,
        max_retries=config.LLM_MAX_RETRIES,
        base_delay=config.LLM_RETRY_BASE_DELAY_SECONDS,
        sleep=sleep,
    )
    handler = GenerationHandler(
        config=config,
        session_maker=session_maker,
        upstream=upstream,
        audit=audit_logger,
    )
    chain = [
        error_containment(),
        telemetry(sink),
        rate_limiter(
            store,
            limit=config.RATE_LIMIT_REQUESTS,
            window_seconds=config.RATE_LIMIT_WINDOW_SECONDS,
        ),
    ]
    return GenerationPipeline(
        handle=compose(handler, chain),
        handler=handler,
        audit=audit_logger,
        metrics_sink=sink,
        rate_limit_store=store,
        http_client=client,
    )
