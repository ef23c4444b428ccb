"""Conversation sessions and the process-wide registry that owns them."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from voice_relay.config import Settings
from voice_relay.schemas.chat import ChatMessage, TextChunk

logger = logging.getLogger(__name__)

ConnectionKind = Literal["text", "audio"]


class ConfigurationError(Exception):
    """Required credentials or endpoints are missing."""

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing required configuration: {', '.join(missing)}")
        self.missing = missing


class DoubleCancellationError(RuntimeError):
    """The audio pipeline of a session was cancelled more than once."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatSession:
    """State shared by the text and audio drivers of one conversation.

    Each field has a single writer: the text driver appends to ``history``
    and feeds ``pending_chunks``; the audio driver only reads the queue.
    """

    session_id: str
    model: str
    voice: str
    queue_capacity: int = 10000
    history: list[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    pending_chunks: asyncio.Queue[TextChunk] = field(init=False, repr=False)
    _audio_cancelled: asyncio.Event = field(init=False, repr=False)
    _attached: set[str] = field(init=False, repr=False, default_factory=set)

    def __post_init__(self) -> None:
        self.pending_chunks = asyncio.Queue(maxsize=self.queue_capacity)
        self._audio_cancelled = asyncio.Event()

    def touch(self) -> None:
        """Update the last activity timestamp."""
        self.last_activity = _utcnow()

    @property
    def audio_cancelled(self) -> bool:
        return self._audio_cancelled.is_set()

    @property
    def audio_cancel_event(self) -> asyncio.Event:
        return self._audio_cancelled

    def cancel_audio(self) -> None:
        """Stop the audio driver for good. Raises on a second call."""
        if self._audio_cancelled.is_set():
            raise DoubleCancellationError(
                f"Audio stream of session {self.session_id} is already cancelled"
            )
        self._audio_cancelled.set()
        self.touch()

    def attach(self, kind: ConnectionKind) -> bool:
        """Claim the connection slot of ``kind``; False if already taken."""
        if kind in self._attached:
            return False
        self._attached.add(kind)
        self.touch()
        return True

    def detach(self, kind: ConnectionKind) -> None:
        self._attached.discard(kind)
        self.touch()

    @property
    def attached(self) -> frozenset[str]:
        return frozenset(self._attached)


class SessionRegistry:
    """Maps session ids to sessions for the lifetime of the process."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._sessions: dict[str, ChatSession] = {}
        self._lock = threading.Lock()

    def create(self, session_id: str) -> ChatSession:
        """Build a session without registering it."""
        missing = self._settings.missing_required()
        if missing:
            raise ConfigurationError(missing)

        session = ChatSession(
            session_id=session_id,
            model=str(self._settings.openai_api_model),
            voice=self._settings.tts_voice,
            queue_capacity=self._settings.chunk_queue_capacity,
        )
        if self._settings.system_prompt:
            session.history.append(
                ChatMessage(role="system", content=self._settings.system_prompt)
            )
        return session

    def register(self, session: ChatSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Registered session %s", session.session_id)

    def lookup(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[ChatSession]:
        """Unregister a session and stop its audio pipeline."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        if not session.audio_cancelled:
            session.cancel_audio()
        logger.info("Removed session %s", session_id)
        return session

    def expire_idle(
        self, max_idle: timedelta, *, now: Optional[datetime] = None
    ) -> list[str]:
        """Drop sessions with no open connection that have been idle too long.

        Preset sessions live for the whole process and are never expired.
        """
        cutoff = (now or _utcnow()) - max_idle
        presets = set(self._settings.preset_session_ids)
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session_id not in presets
                and not session.attached
                and session.last_activity < cutoff
            ]
        for session_id in expired:
            self.remove(session_id)
        if expired:
            logger.info("Expired %d idle session(s): %s", len(expired), expired)
        return expired

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = [
    "ChatSession",
    "ConfigurationError",
    "DoubleCancellationError",
    "SessionRegistry",
]
