"""Bridges the text client connection to the generation backend."""

from __future__ import annotations

import logging
import uuid
from contextlib import aclosing
from typing import Any, Protocol

from fastapi import WebSocketDisconnect

from voice_relay.llm import ChatStreamClient, UpstreamStreamError
from voice_relay.schemas.chat import ChatMessage, TextChunk
from voice_relay.services.sessions import ChatSession

logger = logging.getLogger(__name__)


class TextConnection(Protocol):
    async def receive(self) -> dict[str, Any]: ...

    async def send_json(self, data: Any) -> None: ...


class TextConnectionClosed(ConnectionError):
    """The text client connection can no longer be read or written."""


async def read_client_message(connection: TextConnection) -> str:
    """Return the next inbound message as text; binary frames are decoded as UTF-8."""

    message = await connection.receive()
    if message.get("type") == "websocket.disconnect":
        raise WebSocketDisconnect(code=message.get("code", 1000))
    text = message.get("text")
    if text is not None:
        return text
    return (message.get("bytes") or b"").decode("utf-8", errors="replace")


class TextStreamDriver:
    """Runs turns for one session over its text client connection.

    For every user message: the message is appended to the history, the
    backend is streamed with the full history, and every delta is published
    to the session's chunk queue and the client under one fresh turn id.
    """

    def __init__(self, session: ChatSession, llm: ChatStreamClient):
        self.session = session
        self.llm = llm

    async def run(self, connection: TextConnection) -> None:
        """Serve turns until the client connection fails."""
        session_id = self.session.session_id
        while True:
            try:
                user_text = await read_client_message(connection)
            except WebSocketDisconnect:
                logger.info("Text client for session %s disconnected", session_id)
                return

            try:
                await self.process_turn(connection, user_text)
            except TextConnectionClosed as exc:
                logger.info("Text connection for session %s closed: %s", session_id, exc)
                return

    async def process_turn(self, connection: TextConnection, user_text: str) -> str:
        """Run one turn and return its correlation id.

        Raises:
            TextConnectionClosed: writing to the client failed. The chunk queue
                still receives the turn sentinel first.
        """
        session = self.session
        session.history.append(ChatMessage(role="user", content=user_text))
        session.touch()

        turn_id = str(uuid.uuid4())
        sentinel = TextChunk.sentinel(turn_id)
        parts: list[str] = []

        logger.info(
            "Turn %s started for session %s (history=%d)",
            turn_id,
            session.session_id,
            len(session.history),
        )

        try:
            async with aclosing(self.llm.stream_deltas(list(session.history))) as deltas:
                async for delta in deltas:
                    chunk = TextChunk(id=turn_id, content=delta)
                    parts.append(delta)
                    await session.pending_chunks.put(chunk)
                    try:
                        await self._send(connection, chunk)
                    except TextConnectionClosed:
                        await session.pending_chunks.put(sentinel)
                        raise
        except UpstreamStreamError as exc:
            # The partial answer is dropped; the audio side still flushes.
            logger.warning(
                "Generation stream failed for turn %s (%s): %s",
                turn_id,
                exc.status_code,
                exc.detail,
            )
            await session.pending_chunks.put(sentinel)
            return turn_id

        session.history.append(ChatMessage(role="assistant", content="".join(parts)))
        session.touch()
        logger.info("Turn %s finished: %d chunks", turn_id, len(parts))

        await session.pending_chunks.put(sentinel)
        await self._send(connection, sentinel)
        return turn_id

    @staticmethod
    async def _send(connection: TextConnection, chunk: TextChunk) -> None:
        try:
            await connection.send_json(chunk.model_dump())
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            raise TextConnectionClosed(str(exc) or type(exc).__name__) from exc


__all__ = ["TextConnectionClosed", "TextStreamDriver", "read_client_message"]
