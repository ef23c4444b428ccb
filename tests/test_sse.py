"""Tests for Server-Sent Event parsing."""

import httpx
import pytest

from voice_relay.sse import iter_events, parse_event


def test_parse_event_supports_multiple_data_lines() -> None:
    event = parse_event(
        [
            "event: completion",
            "id: test-id",
            "data: part one",
            "data: part two",
        ]
    )

    assert event.event == "completion"
    assert event.event_id == "test-id"
    assert event.data == "part one\npart two"
    assert event.asdict() == {
        "event": "completion",
        "data": "part one\npart two",
        "id": "test-id",
    }


def test_parse_event_without_space_after_colon() -> None:
    event = parse_event(["id:1", "event:result", 'data:{"a":1}'])

    assert event.event_id == "1"
    assert event.event == "result"
    assert event.data == '{"a":1}'


@pytest.mark.asyncio
async def test_iter_events_skips_comments_and_splits_on_blank_lines() -> None:
    body = (
        "id:1\nevent:result\n:HTTP_STATUS/200\ndata:first\n\n"
        "id:2\nevent:result\n:HTTP_STATUS/200\ndata:second"
    ).encode("utf-8")
    response = httpx.Response(200, content=body)

    events = [event async for event in iter_events(response)]

    assert [event.data for event in events] == ["first", "second"]
    assert [event.event_id for event in events] == ["1", "2"]
