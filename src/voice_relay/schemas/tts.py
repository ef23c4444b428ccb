"""Request and streamed response models for DashScope speech synthesis."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TTSInput(BaseModel):
    text: str
    voice: str


class TTSRequest(BaseModel):
    model: str
    input: TTSInput


class TTSAudio(BaseModel):
    data: Optional[str] = None
    url: Optional[str] = None
    expires_at: Optional[int] = None
    id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class TTSOutput(BaseModel):
    # The service sends the string "null" while streaming.
    finish_reason: Optional[str] = None
    audio: TTSAudio = Field(default_factory=TTSAudio)

    model_config = ConfigDict(extra="ignore")

    @property
    def finished(self) -> bool:
        return self.finish_reason == "stop"


class TTSResponseChunk(BaseModel):
    output: TTSOutput = Field(default_factory=TTSOutput)
    request_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


__all__ = ["TTSAudio", "TTSInput", "TTSOutput", "TTSRequest", "TTSResponseChunk"]
