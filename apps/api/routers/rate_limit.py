"""Per-client rate limiting dependency for plain FastAPI routes."""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[], None]:
    """Return a FastAPI dependency that enforces per-client request quotas."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        store = request.app.state.generation_pipeline.rate_limit_store
        key = f"{prefix}:{_client_identifier(request)}"
        window = await store.hit(key, window_seconds)
        if window.count > limit:
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded for {prefix}. Try again later.",
            )

    return _dependency
