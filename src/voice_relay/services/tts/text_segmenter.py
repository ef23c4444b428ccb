"""
Segmentation policy for the audio side of a turn.

Two buffers are built from the same chunk sequence:

- the segment buffer holds text since the last synthesis flush and is
  handed out as soon as it grows past ``threshold`` characters;
- the whole buffer holds the entire turn and is handed out only when the
  turn ends, for one clean full-answer recording.

Usage:
    buffers = TurnBuffers(threshold=100)

    for chunk in chunks:
        if chunk.is_sentinel:
            segment, whole = buffers.finish()
            ...
        elif (segment := buffers.consume(chunk.content)) is not None:
            ...
"""

from typing import Optional


class TurnBuffers:
    """Segment and whole-turn text buffers owned by one audio driver."""

    def __init__(self, threshold: int = 100):
        self.threshold = threshold
        self._segment: list[str] = []
        self._segment_len = 0
        self._whole: list[str] = []
        self._whole_len = 0

    def consume(self, content: str) -> Optional[str]:
        """Append ``content`` and return the segment if it crossed the threshold."""
        if not content:
            return None

        self._segment.append(content)
        self._segment_len += len(content)
        self._whole.append(content)
        self._whole_len += len(content)

        if self._segment_len > self.threshold:
            return self._take_segment()
        return None

    def finish(self) -> tuple[Optional[str], Optional[str]]:
        """End the turn: return (segment, whole), each None when empty, and reset."""
        segment = self._take_segment() if self._segment_len else None
        whole = "".join(self._whole) if self._whole_len else None
        self._whole.clear()
        self._whole_len = 0
        return segment, whole

    def _take_segment(self) -> str:
        text = "".join(self._segment)
        self._segment.clear()
        self._segment_len = 0
        return text

    @property
    def segment_size(self) -> int:
        return self._segment_len

    @property
    def whole_size(self) -> int:
        return self._whole_len
