"""Streaming client for the OpenAI-compatible generation backend."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Iterable, Optional

import httpx
from fastapi import status

from .config import Settings
from .schemas.chat import ChatMessage
from .sse import iter_events

logger = logging.getLogger(__name__)


class UpstreamStreamError(Exception):
    """Wrap transport or API failures when streaming from the generation backend."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class ChatStreamClient:
    """Client responsible for streaming chat completion deltas."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.openai_api_key
        return {
            "Authorization": f"Bearer {api_key.get_secret_value() if api_key else ''}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.openai_api_base or "").rstrip("/")

    def build_payload(self, messages: Iterable[ChatMessage]) -> dict[str, Any]:
        return {
            "model": self._settings.openai_api_model,
            "messages": [message.model_dump() for message in messages],
            "stream": True,
        }

    async def stream_deltas(
        self, messages: Iterable[ChatMessage]
    ) -> AsyncGenerator[str, None]:
        """Yield assistant content deltas until the backend signals end-of-data."""

        payload = self.build_payload(messages)
        url = f"{self._base_url}/chat/completions"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise UpstreamStreamError(response.status_code, detail)

                async for event in iter_events(response):
                    if not event.data:
                        continue
                    if event.data.strip() == "[DONE]":
                        return
                    content = self._extract_delta(event.data)
                    if content:
                        yield content
        except httpx.HTTPError as exc:
            raise UpstreamStreamError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    @staticmethod
    def _extract_delta(data: str) -> str:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as exc:
            raise UpstreamStreamError(
                status.HTTP_502_BAD_GATEWAY,
                f"Undecodable stream payload: {exc.msg}",
            ) from exc

        if not isinstance(chunk, dict):
            return ""
        error = chunk.get("error")
        if error:
            raise UpstreamStreamError(status.HTTP_502_BAD_GATEWAY, error)

        choices = chunk.get("choices")
        if not isinstance(choices, list) or not choices:
            # Usage-only or keep-alive chunks
            return ""
        choice = choices[0]
        if not isinstance(choice, dict):
            return ""
        delta = choice.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) else ""

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Generation backend returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["ChatStreamClient", "UpstreamStreamError"]
