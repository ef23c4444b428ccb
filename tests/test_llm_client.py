"""Tests for the streaming generation backend client."""

from __future__ import annotations

import json

import httpx
import pytest

from voice_relay.llm import ChatStreamClient, UpstreamStreamError
from voice_relay.schemas.chat import ChatMessage


def sse_body(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def delta(content: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": content}}]}


def make_client(settings, handler) -> ChatStreamClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatStreamClient(settings, http_client=http_client)


async def collect(client: ChatStreamClient, messages: list[ChatMessage]) -> list[str]:
    return [piece async for piece in client.stream_deltas(messages)]


@pytest.mark.asyncio
async def test_stream_deltas_yields_content_until_done(settings) -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        body = sse_body(
            {"choices": [{"index": 0, "delta": {"role": "assistant"}}]},
            delta("Hi"),
            delta(" there"),
            "[DONE]",
            delta("ignored"),
        )
        return httpx.Response(
            200, content=body, headers={"Content-Type": "text/event-stream"}
        )

    client = make_client(settings, handler)
    messages = [ChatMessage(role="user", content="hello")]

    assert await collect(client, messages) == ["Hi", " there"]
    assert seen["url"] == "https://llm.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer test-llm-key"
    assert seen["body"] == {
        "model": "test-model",
        "messages": [{"role": "user", "content": "hello"}],
        "stream": True,
    }


@pytest.mark.asyncio
async def test_stream_without_done_marker_ends_at_body_end(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=sse_body(delta("one"), delta("two")))

    client = make_client(settings, handler)

    assert await collect(client, [ChatMessage(role="user", content="x")]) == [
        "one",
        "two",
    ]


@pytest.mark.asyncio
async def test_http_error_status_raises_upstream_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    client = make_client(settings, handler)

    with pytest.raises(UpstreamStreamError) as exc_info:
        await collect(client, [ChatMessage(role="user", content="x")])

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == {"message": "bad key"}


@pytest.mark.asyncio
async def test_transport_error_raises_upstream_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(settings, handler)

    with pytest.raises(UpstreamStreamError) as exc_info:
        await collect(client, [ChatMessage(role="user", content="x")])

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_error_chunk_mid_stream_raises(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=sse_body(delta("partial"), {"error": {"message": "overloaded"}}),
        )

    client = make_client(settings, handler)
    received: list[str] = []

    with pytest.raises(UpstreamStreamError):
        async for piece in client.stream_deltas([ChatMessage(role="user", content="x")]):
            received.append(piece)

    assert received == ["partial"]


def test_extract_delta_ignores_usage_only_chunks() -> None:
    assert ChatStreamClient._extract_delta(json.dumps({"usage": {"total_tokens": 3}})) == ""
    assert ChatStreamClient._extract_delta(json.dumps({"choices": []})) == ""


def test_extract_delta_rejects_invalid_json() -> None:
    with pytest.raises(UpstreamStreamError):
        ChatStreamClient._extract_delta("{not json")
