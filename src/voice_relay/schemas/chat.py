"""Pydantic models for chat history and the client-facing wire formats."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# Marks the end of one generation turn; never spoken.
TURN_SENTINEL = "\n\n"


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    model_config = ConfigDict(extra="allow")


class TextChunk(BaseModel):
    """Fragment of assistant text shared by the text and audio paths."""

    id: str
    content: str
    url: str = ""
    # Set only on the end-of-turn chunk; a "\n\n" delta is ordinary text.
    final: bool = Field(default=False, exclude=True)

    @property
    def is_sentinel(self) -> bool:
        return self.final

    @classmethod
    def sentinel(cls, turn_id: str) -> "TextChunk":
        return cls(id=turn_id, content=TURN_SENTINEL, final=True)


class AudioNotice(BaseModel):
    """Sent on the audio connection once a synthesis call yields a playable URL."""

    message_id: str = Field(alias="messageID")
    audio_url: str = Field(alias="audioUrl")
    is_segment: bool = Field(alias="isSegment")

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)


class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    status: str = "ok"


__all__ = [
    "AudioNotice",
    "ChatMessage",
    "CreateSessionRequest",
    "SessionResponse",
    "TURN_SENTINEL",
    "TextChunk",
]
