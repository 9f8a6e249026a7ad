"""Shared builders for pipeline tests."""

import json
from typing import Callable, List, Union

import httpx

from config import Settings
from services.session_token import create_session_token


TEST_ANON_KEY = "test-anon-key-for-token-verification"


def lab_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite+aiosqlite:///./parameter_lab_test.db",
        "OPENAI_API_KEY": "test-key",
        "LLM_API_KEY": "",
        "LLM_API_URL": "https://llm.test/v1/chat/completions",
        "LLM_MODEL": "test-model",
        "LLM_TIMEOUT_SECONDS": 5.0,
        "LLM_RETRY_BASE_DELAY_SECONDS": 1.0,
        "STORAGE_ANON_KEY": TEST_ANON_KEY,
        "STORAGE_SERVICE_KEY": "test-service-key",
        "RATE_LIMIT_BACKEND": "memory",
        "AUDIT_IDENTITY_RETRY_DELAY_SECONDS": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


def auth_header(user_id: str) -> dict:
    token = create_session_token(user_id, f"{user_id}@example.com", signing_key=TEST_ANON_KEY)["token"]
    return {"Authorization": f"Bearer {token}"}


def sse_body(*pieces: str) -> bytes:
    events = [
        f"data: {json.dumps({'choices': [{'delta': {'content': piece}}]})}\n\n"
        for piece in pieces
    ]
    events.append("data: [DONE]\n\n")
    return "".join(events).encode("utf-8")


def sse_response(*pieces: str) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=sse_body(*pieces),
    )


def status_response(status_code: int, text: str = "") -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, text=text)


class FakeProvider:
    """Scripted upstream provider for httpx.MockTransport; the last step repeats."""

    def __init__(self, *steps: Union[Callable[[httpx.Request], httpx.Response], Exception]):
        self.steps: List = list(steps) or [sse_response("Hello there.")]
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        return step(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def sent_bodies(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
