"""Upstream text-generation provider client: retrying streaming calls and body decoding."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from services.errors import UpstreamError
from services.schemas import EffectiveParameters

logger = logging.getLogger(__name__)

RATE_LIMITED_STATUS = 429
SSE_DONE = "[DONE]"

# Called with (event_type, event_data) to report retries/failures for auditing.
EventHook = Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass
class UpstreamResult:
    text: str
    attempts: int
    status_code: int


def build_request_body(model: str, prompt: str, parameters: EffectiveParameters) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": parameters.temperature,
        "top_p": parameters.top_p,
        "max_tokens": parameters.max_tokens,
        "frequency_penalty": parameters.frequency_penalty,
        "stream": True,
    }


def _content_from_payload(payload: Any) -> str:
    """Pull generated text out of a chat-completions style JSON object (chunk or whole body)."""
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
        message = choice.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
    return ""


def parse_sse_line(line: str) -> Optional[str]:
    """Return the text carried by one event-stream line, or None for non-data lines and `[DONE]`."""
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    data = stripped[len("data:"):].strip()
    if not data or data == SSE_DONE:
        return None
    try:
        return _content_from_payload(json.loads(data))
    except json.JSONDecodeError:
        return data


async def decode_response(response: httpx.Response) -> str:
    """Read a provider body incrementally: event streams, whole JSON bodies, or raw text chunks."""
    content_type = response.headers.get("content-type", "").lower()

    if "text/event-stream" in content_type:
        parts: List[str] = []
        async for line in response.aiter_lines():
            piece = parse_sse_line(line)
            if piece:
                parts.append(piece)
        return "".join(parts)

    if "application/json" in content_type:
        raw = await response.aread()
        try:
            return _content_from_payload(json.loads(raw))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return raw.decode("utf-8", errors="replace")

    chunks: List[str] = []
    async for chunk in response.aiter_text():
        chunks.append(chunk)
    return "".join(chunks)


class _RateLimited(Exception):
    pass


class UpstreamClient:
    """POSTs generation requests to the configured provider with a bounded retry policy.

    Rate-limit responses and transport failures (including per-attempt timeouts)
    are retried after `base_delay * (attempt + 1)` seconds, up to `max_retries`
    retries. Any other non-success status fails immediately.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.http_client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(int(max_retries), 0)
        self.base_delay = max(float(base_delay), 0.0)
        self.sleep = sleep

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _attempt(self, body: Dict[str, Any]) -> UpstreamResult:
        async with self.http_client.stream("POST", self.api_url, json=body, headers=self._headers()) as response:
            if response.status_code == RATE_LIMITED_STATUS:
                await response.aread()
                raise _RateLimited()
            if not response.is_success:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
                raise UpstreamError(
                    f"LLM error {response.status_code}",
                    data={"error": error_text, "status": response.status_code},
                )
            text = await decode_response(response)
            return UpstreamResult(text=text, attempts=0, status_code=response.status_code)

    async def generate(
        self,
        prompt: str,
        parameters: EffectiveParameters,
        on_event: Optional[EventHook] = None,
    ) -> UpstreamResult:
        body = build_request_body(self.model, prompt, parameters)
        last_error: Optional[BaseException] = None
        total_attempts = self.max_retries + 1

        for attempt in range(total_attempts):
            try:
                result = await asyncio.wait_for(self._attempt(body), timeout=self.timeout_seconds)
                result.attempts = attempt + 1
                return result
            except _RateLimited as exc:
                last_error = exc
                logger.warning("Upstream rate limited (attempt %s/%s)", attempt + 1, total_attempts)
                if on_event is not None:
                    await on_event(
                        "llm_request_error",
                        {"code": RATE_LIMITED_STATUS, "retry": attempt + 1, "event_severity": "warning"},
                    )
            except UpstreamError as exc:
                if on_event is not None:
                    await on_event(
                        "llm_request_error",
                        {**exc.data, "event_severity": "error"},
                    )
                raise
            except (httpx.TransportError, asyncio.TimeoutError) as exc:
                last_error = exc
                logger.warning(
                    "Upstream request failed (attempt %s/%s): %s",
                    attempt + 1,
                    total_attempts,
                    exc.__class__.__name__,
                )

            if attempt < self.max_retries:
                await self.sleep(self.base_delay * (attempt + 1))

        if isinstance(last_error, _RateLimited):
            raise UpstreamError(
                f"LLM call failed after {total_attempts} attempts: rate limited",
                data={"status": RATE_LIMITED_STATUS, "attempts": total_attempts},
            )
        detail = f"{last_error.__class__.__name__}: {last_error}" if last_error else "unknown error"
        raise UpstreamError(
            f"LLM call failed after {total_attempts} attempts: {detail}",
            data={"error": detail, "attempts": total_attempts},
        ) from last_error
