import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from openai import AsyncOpenAI

from ChatBackend.config import Settings
from ChatBackend.services.ai.response_generator import (
    FALLBACK_CONTENT,
    NOT_CONFIGURED_FALLBACK,
    ErrorReason,
    ResponseGenerator,
    build_messages,
)


def _completion(content):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


def _generator(handler, provider="openai"):
    settings = Settings(ai_provider=provider, ai_api_key="test-key", ai_model="test-model")
    client = AsyncOpenAI(
        api_key="test-key",
        base_url="https://llm.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return ResponseGenerator(settings, client=client)


def _history(n):
    return [SimpleNamespace(sender="user" if i % 2 == 0 else "assistant", content=f"h{i}") for i in range(n)]


def test_success_returns_content_and_sends_sampling_config():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_completion("Hi Ada!"))

    result = asyncio.run(_generator(handler).generate("Hello!", _history(2)))

    assert result.success is True
    assert result.content == "Hi Ada!"
    assert result.error_reason is None
    body = seen["body"]
    assert body["model"] == "test-model"
    assert body["temperature"] == 0.7
    assert body["top_p"] == 0.95
    assert body["max_tokens"] == 1000
    assert body["messages"] == [
        {"role": "user", "content": "h0"},
        {"role": "assistant", "content": "h1"},
        {"role": "user", "content": "Hello!"},
    ]


@pytest.mark.parametrize(
    "status,reason",
    [
        (401, ErrorReason.UNAUTHENTICATED),
        (403, ErrorReason.UNAUTHENTICATED),
        (429, ErrorReason.RATE_LIMITED),
        (500, ErrorReason.UPSTREAM_UNAVAILABLE),
        (503, ErrorReason.UPSTREAM_UNAVAILABLE),
        (400, ErrorReason.UPSTREAM_UNAVAILABLE),
    ],
)
def test_non_2xx_maps_to_reason(status, reason):
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "nope"}})

    result = asyncio.run(_generator(handler).generate("Hello!"))

    assert result.success is False
    assert result.error_reason is reason
    assert result.content == FALLBACK_CONTENT[reason]


def test_empty_choices_is_malformed():
    def handler(request):
        payload = _completion("x")
        payload["choices"] = []
        return httpx.Response(200, json=payload)

    result = asyncio.run(_generator(handler).generate("Hello!"))

    assert result.success is False
    assert result.error_reason is ErrorReason.MALFORMED_RESPONSE


def test_blank_content_is_malformed():
    def handler(request):
        return httpx.Response(200, json=_completion("   "))

    result = asyncio.run(_generator(handler).generate("Hello!"))
    assert result.error_reason is ErrorReason.MALFORMED_RESPONSE


def test_transport_failure_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = asyncio.run(_generator(handler).generate("Hello!"))

    assert result.success is False
    assert result.error_reason is ErrorReason.TRANSPORT_ERROR
    assert result.content == FALLBACK_CONTENT[ErrorReason.TRANSPORT_ERROR]


def test_timeout_is_transport_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    result = asyncio.run(_generator(handler).generate("Hello!"))
    assert result.error_reason is ErrorReason.TRANSPORT_ERROR


def test_unconfigured_generator_returns_fallback():
    generator = ResponseGenerator(Settings(ai_api_key=None))

    result = asyncio.run(generator.generate("Hello!"))

    assert generator.configured is False
    assert result.success is False
    assert result.error_reason is ErrorReason.UNAUTHENTICATED
    assert result.content == NOT_CONFIGURED_FALLBACK


def test_top_k_sent_only_where_supported():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("ok"))

    asyncio.run(_generator(handler, provider="openrouter").generate("a"))
    asyncio.run(_generator(handler, provider="gemini").generate("b"))

    assert seen[0]["top_k"] == 40
    assert "top_k" not in seen[1]


def test_build_messages_keeps_last_ten():
    messages = build_messages("now", _history(15))
    assert len(messages) == 11
    assert messages[0]["content"] == "h5"
    assert messages[-1] == {"role": "user", "content": "now"}


def test_ping():
    def handler(request):
        return httpx.Response(200, json=_completion("pong"))

    assert asyncio.run(_generator(handler).ping())["success"] is True
    assert asyncio.run(ResponseGenerator(Settings()).ping())["success"] is False


def test_complete_raises_upstream_error_with_reason():
    from ChatBackend.errors import UpstreamError

    gen = _generator(lambda request: httpx.Response(429, json={"error": {"message": "slow down"}}))

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(gen._complete(build_messages("Hello!", [])))

    assert excinfo.value.reason is ErrorReason.RATE_LIMITED
    assert excinfo.value.message == "Rate limit exceeded"
