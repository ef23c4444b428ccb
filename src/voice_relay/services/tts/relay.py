"""
Forward one synthesis call to the audio client connection.

Segment flushes stream every decoded audio frame as a binary websocket
message so the client can start playback immediately. Whole flushes only
report the final URL, since the full-answer file is meant for replay.
Either kind ends with one JSON notice when the service returns a URL.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Optional, Protocol

from fastapi import WebSocketDisconnect

from voice_relay.schemas.chat import AudioNotice
from voice_relay.services.tts.dashscope_client import DashScopeTTSClient

logger = logging.getLogger(__name__)


class AudioSink(Protocol):
    async def send_bytes(self, data: bytes) -> None: ...

    async def send_json(self, data: Any) -> None: ...


class AudioConnectionError(ConnectionError):
    """Writing to the audio client connection failed."""

    def __init__(self, message: str, *, disconnected: bool):
        super().__init__(message)
        self.disconnected = disconnected


class SynthesisRelay:
    """Runs synthesis calls and writes their results to an audio connection."""

    def __init__(self, client: DashScopeTTSClient, voice: Optional[str] = None):
        self.client = client
        self.voice = voice

    async def flush(
        self,
        sink: AudioSink,
        text: str,
        turn_id: str,
        *,
        is_segment: bool,
        cancel_event: asyncio.Event,
    ) -> bool:
        """
        Synthesize ``text`` and forward the results to ``sink``.

        Returns False when the cancel event interrupted the call.

        Raises:
            SynthesisError: the synthesis request itself failed.
            AudioConnectionError: a write to ``sink`` failed.
        """
        start_time = time.monotonic()
        frames = 0
        kind = "segment" if is_segment else "whole"
        logger.info(f"TTS {kind} flush for {turn_id} ({len(text)} chars)")

        async with aclosing(self.client.synthesize(text, self.voice)) as events:
            async for event in events:
                if cancel_event.is_set():
                    logger.info(f"TTS {kind} flush for {turn_id} cancelled mid-stream")
                    return False

                if is_segment and event.audio:
                    await self._send(sink.send_bytes, event.audio)
                    frames += 1

                if event.finished and event.url:
                    notice = AudioNotice(
                        message_id=turn_id,
                        audio_url=event.url,
                        is_segment=is_segment,
                    )
                    await self._send(sink.send_json, notice.to_wire())

        elapsed = (time.monotonic() - start_time) * 1000
        logger.info(f"TTS {kind} flush for {turn_id} complete: {frames} frames in {elapsed:.0f}ms")
        return True

    @staticmethod
    async def _send(send: Callable[[Any], Awaitable[None]], payload: Any) -> None:
        try:
            await send(payload)
        except (WebSocketDisconnect, OSError) as exc:
            raise AudioConnectionError(
                f"Audio client disconnected: {exc!r}", disconnected=True
            ) from exc
        except RuntimeError as exc:
            # Starlette raises RuntimeError when sending after close
            raise AudioConnectionError(str(exc), disconnected=True) from exc
        except (TypeError, ValueError) as exc:
            raise AudioConnectionError(
                f"Could not encode audio message: {exc}", disconnected=False
            ) from exc
