"""Tests for the segment and whole-turn buffers."""

from voice_relay.services.tts import TurnBuffers


def test_segment_held_until_threshold_exceeded() -> None:
    buffers = TurnBuffers(threshold=10)

    assert buffers.consume("12345") is None
    assert buffers.consume("67890") is None  # exactly 10 is not enough
    assert buffers.segment_size == 10

    assert buffers.consume("X") == "1234567890X"
    assert buffers.segment_size == 0
    assert buffers.whole_size == 11


def test_flush_triggers_on_the_chunk_that_crosses_threshold() -> None:
    buffers = TurnBuffers(threshold=100)
    chunk = "a" * 30
    flushed = []

    for _ in range(10):
        result = buffers.consume(chunk)
        if result is not None:
            flushed.append(result)
        assert buffers.segment_size <= 100

    # 30 + 30 + 30 + 30 = 120 > 100 flushes on the fourth chunk
    assert [len(text) for text in flushed] == [120, 120]
    assert buffers.segment_size == 60


def test_finish_returns_both_buffers_and_resets() -> None:
    buffers = TurnBuffers(threshold=10)
    buffers.consume("hello ")
    buffers.consume("world, ")
    buffers.consume("again")

    segment, whole = buffers.finish()

    assert segment == "again"
    assert whole == "hello world, again"
    assert buffers.segment_size == 0
    assert buffers.whole_size == 0
    assert buffers.finish() == (None, None)


def test_segments_concatenate_to_whole() -> None:
    buffers = TurnBuffers(threshold=7)
    pieces = ["The ", "quick ", "brown ", "fox ", "jumps ", "over ", "the ", "dog."]
    segments = [s for s in (buffers.consume(p) for p in pieces) if s is not None]

    tail, whole = buffers.finish()
    if tail is not None:
        segments.append(tail)

    assert "".join(segments) == whole == "".join(pieces)


def test_empty_content_is_ignored() -> None:
    buffers = TurnBuffers(threshold=1)

    assert buffers.consume("") is None
    assert buffers.finish() == (None, None)
