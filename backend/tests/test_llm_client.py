"""
Wire-level tests for CompletionClient using httpx.MockTransport.
"""
import json
from typing import List

import httpx
import pytest

from encyclopedia_ai.core.circuit_breaker import CircuitBreaker, CircuitState
from encyclopedia_ai.services.ai.errors import CompletionError, LLMConfigurationError
from encyclopedia_ai.services.ai.llm_client import (
    CompletionClient,
    extract_message_content,
    extract_usage,
    is_completion_shape,
    parse_stream_line,
)
from encyclopedia_ai.services.ai.request_queue import RequestSerializer

MESSAGES = [{"role": "user", "content": "What is mitosis?"}]


def make_client(handler, api_key="sk-test", **kwargs) -> CompletionClient:
    return CompletionClient(
        api_base="https://llm.test/api/v1/",
        api_key=api_key,
        model="test/model",
        serializer=RequestSerializer(gap_seconds=0),
        referer="https://encyclopedia.test",
        title="Encyclopedia Assistant",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def sse_body(*records: str) -> bytes:
    return "".join(f"{r}\n\n" for r in records).encode("utf-8")


@pytest.mark.asyncio
async def test_complete_sends_payload_and_returns_text():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": "Cell division."}}],
                "usage": {"prompt_tokens": 12, "completion_tokens": 3},
            },
        )

    text = await make_client(handler).complete(MESSAGES, max_tokens=900, temperature=0.6)

    assert text == "Cell division."
    assert captured["url"] == "https://llm.test/api/v1/chat/completions"
    assert captured["headers"]["authorization"] == "Bearer sk-test"
    assert captured["headers"]["http-referer"] == "https://encyclopedia.test"
    assert captured["headers"]["x-title"] == "Encyclopedia Assistant"
    assert captured["body"] == {
        "model": "test/model",
        "messages": MESSAGES,
        "max_tokens": 900,
        "temperature": 0.6,
        "stream": False,
    }


@pytest.mark.asyncio
async def test_complete_without_content_returns_empty_string():
    client = make_client(lambda request: httpx.Response(200, json={"choices": []}))
    assert await client.complete(MESSAGES) == ""


@pytest.mark.asyncio
async def test_complete_http_error_raises_with_status():
    client = make_client(lambda request: httpx.Response(429, text="rate limited"))

    with pytest.raises(CompletionError) as exc_info:
        await client.complete(MESSAGES)
    assert exc_info.value.status_code == 429
    assert "rate limited" in str(exc_info.value)


@pytest.mark.asyncio
async def test_complete_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CompletionError) as exc_info:
        await make_client(handler).complete(MESSAGES)
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_complete_unparseable_body_raises():
    client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(CompletionError):
        await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_missing_key_is_a_configuration_error():
    calls: List[httpx.Request] = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = make_client(handler, api_key=None)
    assert client.is_configured is False
    with pytest.raises(LLMConfigurationError):
        await client.complete(MESSAGES)
    assert calls == []


@pytest.mark.asyncio
async def test_stream_delivers_tokens_in_order():
    body = sse_body(
        ": OPENROUTER PROCESSING",
        'data: {"choices": [{"delta": {"role": "assistant"}}]}',
        'data: {"choices": [{"delta": {"content": "Mito"}}]}',
        'data: {"choices": [{"delta": {"content": "sis"}}]}',
        "data: [DONE]",
        'data: {"choices": [{"delta": {"content": "ignored"}}]}',
    )
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    tokens: List[str] = []
    text = await make_client(handler).stream(MESSAGES, tokens.append, max_tokens=1500, temperature=0.65)

    assert tokens == ["Mito", "sis"]
    assert text == "Mitosis"
    assert captured["body"]["stream"] is True
    assert captured["body"]["max_tokens"] == 1500


@pytest.mark.asyncio
async def test_stream_http_error():
    client = make_client(lambda request: httpx.Response(500, text="internal"))
    with pytest.raises(CompletionError) as exc_info:
        await client.stream(MESSAGES, lambda token: None)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_stream_provider_error_after_tokens():
    body = sse_body(
        'data: {"choices": [{"delta": {"content": "Partial"}}]}',
        'data: {"error": {"message": "model overloaded"}}',
    )
    client = make_client(lambda request: httpx.Response(200, content=body))

    tokens: List[str] = []
    with pytest.raises(CompletionError, match="model overloaded"):
        await client.stream(MESSAGES, tokens.append)
    assert tokens == ["Partial"]


@pytest.mark.asyncio
async def test_open_circuit_fails_fast():
    calls: List[httpx.Request] = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    breaker = CircuitBreaker("test", failure_threshold=0.5, min_requests_for_threshold=2, open_duration_seconds=60)
    client = make_client(handler, circuit_breaker=breaker)

    for _ in range(2):
        with pytest.raises(CompletionError):
            await client.complete(MESSAGES)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CompletionError, match="OPEN"):
        await client.complete(MESSAGES)
    assert len(calls) == 2


def test_parse_stream_line():
    assert parse_stream_line("") == (False, None)
    assert parse_stream_line(": keep-alive") == (False, None)
    assert parse_stream_line("data: [DONE]") == (True, None)
    assert parse_stream_line("data: not-json") == (False, None)
    assert parse_stream_line('data: {"choices": [{"delta": {"content": "x"}}]}') == (False, "x")
    assert parse_stream_line('data:{"choices": [{"delta": {}}]}') == (False, None)
    assert parse_stream_line('data: {"choices": "x"}') == (False, None)
    assert parse_stream_line('data: {"choices": ["x"]}') == (False, None)
    assert parse_stream_line('data: {"choices": [{"delta": "x"}]}') == (False, None)


def test_extract_message_content():
    assert extract_message_content({"choices": [{"message": {"content": "hi"}}]}) == "hi"
    assert extract_message_content({"choices": [{"message": {"content": None}}]}) == ""
    assert extract_message_content([]) == ""
    assert extract_message_content({"choices": [{"message": "oops"}]}) == ""
    assert extract_message_content({"choices": "oops"}) == ""


def test_extract_usage_tolerates_malformed_counts():
    assert extract_usage({"usage": {"prompt_tokens": 12, "completion_tokens": "3"}}) == (12, 3)
    assert extract_usage({"usage": "n/a"}) == (0, 0)
    assert extract_usage({"usage": {"prompt_tokens": "many", "completion_tokens": None}}) == (0, 0)
    assert extract_usage(None) == (0, 0)


def test_is_completion_shape():
    assert is_completion_shape({"choices": []}) is True
    assert is_completion_shape({"choices": [{"message": {"content": "hi"}}]}) is True
    assert is_completion_shape({"choices": [{"finish_reason": "length"}]}) is True
    assert is_completion_shape({"choices": [{"message": "oops"}]}) is False
    assert is_completion_shape({"choices": ["oops"]}) is False
    assert is_completion_shape({"choices": {"0": {}}}) is False
    assert is_completion_shape({}) is False
    assert is_completion_shape(["choices"]) is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [{"choices": [{"message": "oops"}]}, {"choices": "oops"}, {"error": "bad gateway"}, ["oops"]],
)
async def test_complete_unexpected_shape_raises_completion_error(body):
    client = make_client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(CompletionError, match="unparseable response"):
        await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_complete_malformed_usage_still_returns_text():
    client = make_client(
        lambda request: httpx.Response(
            200,
            json={"choices": [{"message": {"content": "hi"}}], "usage": {"prompt_tokens": "x"}},
        )
    )
    assert await client.complete(MESSAGES) == "hi"
