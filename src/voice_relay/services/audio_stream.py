"""Turns a session's chunk queue into speech synthesis calls."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from enum import Enum
from typing import Optional

from voice_relay.schemas.chat import TextChunk
from voice_relay.services.sessions import ChatSession
from voice_relay.services.text_normalizer import normalize
from voice_relay.services.tts import (
    AudioConnectionError,
    SynthesisError,
    SynthesisRelay,
    TurnBuffers,
)
from voice_relay.services.tts.relay import AudioSink

logger = logging.getLogger(__name__)


class AudioDriverState(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    DISCONNECTED = "disconnected"


class AudioStreamDriver:
    """
    Consumes ``pending_chunks`` for one session and drives synthesis.

    Every wait for the next chunk races the session's cancel signal. Once the
    signal is raised the driver stops for good and leaves any queued chunks
    unread.
    """

    def __init__(
        self,
        session: ChatSession,
        relay: SynthesisRelay,
        *,
        threshold: int = 100,
    ):
        self.session = session
        self.relay = relay
        self.buffers = TurnBuffers(threshold=threshold)
        self.state = AudioDriverState.ACTIVE

    async def run(self, sink: AudioSink) -> AudioDriverState:
        cancel_event = self.session.audio_cancel_event
        cancel_wait = asyncio.create_task(cancel_event.wait())
        get_task: Optional[asyncio.Task[TextChunk]] = None

        try:
            while self.state is AudioDriverState.ACTIVE:
                if cancel_event.is_set():
                    break

                get_task = asyncio.create_task(self.session.pending_chunks.get())
                await asyncio.wait(
                    {get_task, cancel_wait},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if cancel_event.is_set():
                    break

                chunk = get_task.result()
                get_task = None
                await self.handle_chunk(sink, chunk)
        finally:
            for task in (get_task, cancel_wait):
                if task is not None and not task.done():
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task

        if cancel_event.is_set():
            self.state = AudioDriverState.CANCELLED
            logger.info(
                "Audio stream for session %s stopped by cancel signal",
                self.session.session_id,
            )
        return self.state

    async def handle_chunk(self, sink: AudioSink, chunk: TextChunk) -> None:
        if chunk.is_sentinel:
            segment, whole = self.buffers.finish()
            if segment is not None:
                await self._flush(sink, segment, chunk.id, is_segment=True)
            if whole is not None and self.state is AudioDriverState.ACTIVE:
                await self._flush(sink, whole, chunk.id, is_segment=False)
            return

        segment = self.buffers.consume(chunk.content)
        if segment is not None:
            await self._flush(sink, segment, chunk.id, is_segment=True)

    async def _flush(
        self, sink: AudioSink, text: str, turn_id: str, *, is_segment: bool
    ) -> None:
        cancel_event = self.session.audio_cancel_event
        if cancel_event.is_set():
            return

        spoken = normalize(text)
        if not spoken.strip():
            logger.debug("Nothing to speak for %s after normalization", turn_id)
            return

        try:
            await self.relay.flush(
                sink,
                spoken,
                turn_id,
                is_segment=is_segment,
                cancel_event=cancel_event,
            )
        except SynthesisError as exc:
            logger.warning(
                "Synthesis failed for %s (%s): %s", turn_id, exc.status_code, exc.detail
            )
        except AudioConnectionError as exc:
            if exc.disconnected:
                logger.info(
                    "Audio client for session %s went away: %s",
                    self.session.session_id,
                    exc,
                )
                self.state = AudioDriverState.DISCONNECTED
            else:
                logger.warning("Dropped audio message for %s: %s", turn_id, exc)
        else:
            self.session.touch()


__all__ = ["AudioDriverState", "AudioStreamDriver"]
