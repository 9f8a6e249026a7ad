import asyncio
import json

import httpx
import pytest

from services.errors import UpstreamError
from services.llm_client import UpstreamClient, build_request_body, parse_sse_line
from services.schemas import EffectiveParameters
from support import FakeProvider, RecordingSleep, sse_response, status_response


PARAMETERS = EffectiveParameters(temperature=0.6, topP=0.8, maxTokens=1000, frequencyPenalty=0.15)


def _client(provider: FakeProvider, sleep: RecordingSleep, **overrides) -> UpstreamClient:
    options = {
        "api_url": "https://llm.test/v1/chat/completions",
        "api_key": "sk-test",
        "model": "test-model",
        "timeout_seconds": 5.0,
        "max_retries": 2,
        "base_delay": 1.0,
        "sleep": sleep,
    }
    options.update(overrides)
    return UpstreamClient(provider.client(), **options)


@pytest.mark.asyncio
async def test_rate_limited_twice_then_success_uses_linear_backoff():
    provider = FakeProvider(status_response(429), status_response(429), sse_response("Hello", " world"))
    sleep = RecordingSleep()
    events = []

    async def on_event(event_type, data):
        events.append((event_type, data))

    result = await _client(provider, sleep).generate("Say hi", PARAMETERS, on_event=on_event)

    assert result.text == "Hello world"
    assert result.attempts == 3
    assert provider.call_count == 3
    assert sleep.delays == [1.0, 2.0]
    assert [data["retry"] for _, data in events] == [1, 2]
    assert all(event_type == "llm_request_error" and data["code"] == 429 for event_type, data in events)


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_raises_upstream_error():
    provider = FakeProvider(status_response(429))
    sleep = RecordingSleep()

    with pytest.raises(UpstreamError) as exc_info:
        await _client(provider, sleep).generate("Say hi", PARAMETERS)

    assert provider.call_count == 3
    assert sleep.delays == [1.0, 2.0]
    assert exc_info.value.status_code == 502
    assert "after 3 attempts" in exc_info.value.message


@pytest.mark.asyncio
async def test_server_error_is_not_retried():
    provider = FakeProvider(status_response(500, "boom"), sse_response("never"))
    sleep = RecordingSleep()
    events = []

    async def on_event(event_type, data):
        events.append(data)

    with pytest.raises(UpstreamError) as exc_info:
        await _client(provider, sleep).generate("Say hi", PARAMETERS, on_event=on_event)

    assert provider.call_count == 1
    assert sleep.delays == []
    assert exc_info.value.status_code == 502
    assert exc_info.value.data == {"error": "boom", "status": 500}
    assert events == [{"error": "boom", "status": 500, "event_severity": "error"}]


@pytest.mark.asyncio
async def test_bad_request_is_not_retried():
    provider = FakeProvider(status_response(400, "bad model"))
    with pytest.raises(UpstreamError):
        await _client(provider, RecordingSleep()).generate("Say hi", PARAMETERS)
    assert provider.call_count == 1


@pytest.mark.asyncio
async def test_transport_error_is_retried_then_succeeds():
    provider = FakeProvider(httpx.ConnectError("connection refused"), sse_response("Recovered."))
    sleep = RecordingSleep()

    result = await _client(provider, sleep).generate("Say hi", PARAMETERS)

    assert result.text == "Recovered."
    assert result.attempts == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_transport_error_exhaustion_reports_attempts():
    provider = FakeProvider(httpx.ReadError("reset by peer"))
    sleep = RecordingSleep()

    with pytest.raises(UpstreamError) as exc_info:
        await _client(provider, sleep).generate("Say hi", PARAMETERS)

    assert provider.call_count == 3
    assert exc_info.value.data["attempts"] == 3
    assert "ReadError" in exc_info.value.data["error"]


@pytest.mark.asyncio
async def test_attempt_timeout_is_retried():
    calls = []

    async def handler(request):
        calls.append(request)
        if len(calls) == 1:
            await asyncio.sleep(1.0)
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=b'data: {"choices": [{"delta": {"content": "late"}}]}\n\n')

    sleep = RecordingSleep()
    client = UpstreamClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        api_url="https://llm.test/v1/chat/completions",
        api_key="sk-test",
        model="test-model",
        timeout_seconds=0.05,
        sleep=sleep,
    )

    result = await client.generate("Say hi", PARAMETERS)
    assert result.text == "late"
    assert len(calls) == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_request_body_and_headers():
    provider = FakeProvider(sse_response("ok"))
    await _client(provider, RecordingSleep()).generate("Explain entropy", PARAMETERS)

    request = provider.requests[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {
        "model": "test-model",
        "messages": [{"role": "user", "content": "Explain entropy"}],
        "temperature": 0.6,
        "top_p": 0.8,
        "max_tokens": 1000,
        "frequency_penalty": 0.15,
        "stream": True,
    }


def test_build_request_body_omits_presence_penalty():
    body = build_request_body("m", "p", PARAMETERS)
    assert "presence_penalty" not in body


@pytest.mark.asyncio
async def test_decodes_whole_json_body():
    payload = {"choices": [{"message": {"role": "assistant", "content": "Whole answer."}}]}
    provider = FakeProvider(lambda request: httpx.Response(200, json=payload))

    result = await _client(provider, RecordingSleep()).generate("Say hi", PARAMETERS)
    assert result.text == "Whole answer."


@pytest.mark.asyncio
async def test_decodes_raw_text_chunks():
    provider = FakeProvider(
        lambda request: httpx.Response(200, headers={"content-type": "text/plain"}, content=b"plain streamed text")
    )

    result = await _client(provider, RecordingSleep()).generate("Say hi", PARAMETERS)
    assert result.text == "plain streamed text"


@pytest.mark.asyncio
async def test_empty_stream_returns_empty_text():
    provider = FakeProvider(sse_response())
    result = await _client(provider, RecordingSleep()).generate("Say hi", PARAMETERS)
    assert result.text == ""


def test_parse_sse_line_variants():
    assert parse_sse_line('data: {"choices": [{"delta": {"content": "Hi"}}]}') == "Hi"
    assert parse_sse_line("data: [DONE]") is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("event: message") is None
    assert parse_sse_line('data: {"choices": [{"delta": {}}]}') == ""
    assert parse_sse_line("data: not json") == "not json"
