import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from voice_relay.config import Settings
from voice_relay.schemas.tts import TTSInput, TTSRequest, TTSResponseChunk
from voice_relay.sse import iter_events

logger = logging.getLogger(__name__)


class SynthesisError(Exception):
    """A single synthesis call failed at the transport or HTTP level."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class SynthesisEvent:
    """One decoded event from the synthesis stream."""

    audio: Optional[bytes] = None
    finished: bool = False
    url: Optional[str] = None
    expires_at: Optional[int] = None


class DashScopeTTSClient:
    """
    Client for DashScope (qwen-tts) streaming speech synthesis.

    The service answers with Server-Sent Events. Every ``data:`` line holds a
    JSON chunk with base64 audio; the terminal chunk carries
    ``finish_reason == "stop"`` and a signed URL to the complete file.
    Uses a singleton httpx.AsyncClient for connection pooling across requests.
    """

    _http_client: Optional[httpx.AsyncClient] = None

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._injected_client = http_client

    @classmethod
    def get_http_client(cls) -> httpx.AsyncClient:
        """Get singleton HTTP client for connection pooling."""
        if cls._http_client is None:
            cls._http_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0))
            logger.info("Created singleton httpx.AsyncClient for TTS")
        return cls._http_client

    @classmethod
    async def close_http_client(cls) -> None:
        """Close the singleton HTTP client. Call on app shutdown."""
        if cls._http_client is not None:
            await cls._http_client.aclose()
            cls._http_client = None
            logger.info("Closed TTS HTTP client")

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.dashscope_api_key
        return {
            "Authorization": f"Bearer {api_key.get_secret_value() if api_key else ''}",
            "Content-Type": "application/json",
            "X-DashScope-SSE": "enable",
        }

    def build_request(self, text: str, voice: Optional[str] = None) -> TTSRequest:
        return TTSRequest(
            model=self._settings.tts_model,
            input=TTSInput(text=text, voice=voice or self._settings.tts_voice),
        )

    async def synthesize(
        self, text: str, voice: Optional[str] = None
    ) -> AsyncIterator[SynthesisEvent]:
        """
        Stream synthesis events for ``text``.

        Events whose payload cannot be parsed are logged and skipped. Transport
        failures and error statuses raise SynthesisError.
        """
        if not text.strip():
            return

        client = self._injected_client or self.get_http_client()
        payload = self.build_request(text, voice).model_dump()

        try:
            async with client.stream(
                "POST",
                str(self._settings.dashscope_tts_url),
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise SynthesisError(
                        response.status_code,
                        body.decode("utf-8", errors="ignore") or "empty error response",
                    )

                async for event in iter_events(response):
                    if not event.data:
                        continue
                    decoded = self.decode_event(event.data)
                    if decoded is not None:
                        yield decoded
        except httpx.HTTPError as exc:
            raise SynthesisError(502, str(exc)) from exc

    @staticmethod
    def decode_event(data: str) -> Optional[SynthesisEvent]:
        """Turn one ``data:`` payload into an event, or None if it is malformed."""
        try:
            chunk = TTSResponseChunk.model_validate_json(data)
        except ValidationError as exc:
            logger.warning("Skipping malformed TTS event: %s", exc)
            return None

        output = chunk.output
        audio: Optional[bytes] = None
        if output.audio.data:
            try:
                audio = base64.b64decode(output.audio.data, validate=True)
            except (binascii.Error, ValueError) as exc:
                logger.warning("Skipping TTS audio with invalid base64: %s", exc)
                return None

        return SynthesisEvent(
            audio=audio,
            finished=output.finished,
            url=output.audio.url or None,
            expires_at=output.audio.expires_at,
        )
