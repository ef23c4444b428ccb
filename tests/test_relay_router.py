"""Tests for the relay HTTP and WebSocket routes."""

from __future__ import annotations

import asyncio
import gc
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from voice_relay.app import create_app
from voice_relay.routers.relay import _reap_tasks
from voice_relay.schemas.chat import TURN_SENTINEL
from voice_relay.services.sessions import ConfigurationError
from voice_relay.services.tts import SynthesisEvent

AUDIO_URL = "https://audio.example.com/answer.wav"


class FakeLLM:
    def __init__(self, deltas: list[str]):
        self.deltas = deltas

    async def stream_deltas(self, messages):
        for piece in self.deltas:
            yield piece


class FakeTTSClient:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def synthesize(self, text: str, voice: Optional[str] = None):
        self.calls.append(text)
        yield SynthesisEvent(audio=b"pcm-frame")
        yield SynthesisEvent(finished=True, url=AUDIO_URL)


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.state.llm_client = FakeLLM(["Hi", " there"])
    app.state.tts_client = FakeTTSClient()
    return app


def test_preset_sessions_registered_on_startup(app) -> None:
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 2, "model": "test-model"}


def test_startup_fails_without_configuration(settings_factory) -> None:
    app = create_app(settings_factory(dashscope_api_key=None))

    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_stop_audio_stream_requires_known_session(app) -> None:
    with TestClient(app) as client:
        missing = client.get("/ws/stop-audio-stream")
        unknown = client.get("/ws/stop-audio-stream", params={"sessionid": "nope"})

    assert missing.status_code == 400
    assert unknown.status_code == 400


def test_stop_audio_stream_cancels_once(app) -> None:
    with TestClient(app) as client:
        first = client.get("/ws/stop-audio-stream", params={"sessionid": "sess1"})
        second = client.post("/ws/stop-audio-stream", params={"sessionid": "sess1"})
        session = app.state.session_registry.lookup("sess1")

    assert first.status_code == 200
    assert first.json() == {"session_id": "sess1", "status": "audio_stopped"}
    assert second.status_code == 409
    assert session.audio_cancelled


def test_create_and_delete_session(app) -> None:
    with TestClient(app) as client:
        created = client.post("/api/sessions", json={"session_id": "custom"})
        generated = client.post("/api/sessions")
        deleted = client.delete("/api/sessions/custom")
        missing = client.delete("/api/sessions/custom")
        registry = app.state.session_registry

        assert created.status_code == 201
        assert created.json()["session_id"] == "custom"
        assert generated.status_code == 201
        assert registry.lookup(generated.json()["session_id"]) is not None
        assert deleted.status_code == 200
        assert missing.status_code == 404
        assert registry.lookup("custom") is None


def test_create_session_reports_missing_configuration(app, settings_factory) -> None:
    with TestClient(app) as client:
        app.state.session_registry._settings = settings_factory(openai_api_model=None)
        response = client.post("/api/sessions", json={"session_id": "x"})

    assert response.status_code == 503
    assert response.json()["detail"]["missing"] == ["OPENAI_API_MODEL"]


def test_websocket_rejects_unknown_session(app) -> None:
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/text-stream?sessionid=nope"):
                pass

    assert exc_info.value.code == 1008


def test_text_stream_turn(app) -> None:
    with TestClient(app) as client:
        with client.websocket_connect("/ws/text-stream?sessionid=sess1") as ws:
            ws.send_text("hello")
            chunks = [ws.receive_json() for _ in range(3)]
        session = app.state.session_registry.lookup("sess1")

    assert [chunk["content"] for chunk in chunks] == ["Hi", " there", TURN_SENTINEL]
    assert len({chunk["id"] for chunk in chunks}) == 1
    assert [(m.role, m.content) for m in session.history] == [
        ("user", "hello"),
        ("assistant", "Hi there"),
    ]


def test_second_text_connection_is_refused(app) -> None:
    with TestClient(app) as client:
        with client.websocket_connect("/ws/text-stream?sessionid=sess1"):
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws/text-stream?sessionid=sess1"):
                    pass

    assert exc_info.value.code == 1008


def test_audio_stream_relays_segment_and_whole_results(app) -> None:
    with TestClient(app) as client:
        with client.websocket_connect("/ws/audio-stream?sessionid=sess2") as audio:
            with client.websocket_connect("/ws/text-stream?sessionid=sess2") as text:
                text.send_text("hello")
                chunks = [text.receive_json() for _ in range(3)]

            frame = audio.receive_bytes()
            segment_notice = audio.receive_json()
            whole_notice = audio.receive_json()

    turn_id = chunks[0]["id"]
    assert frame == b"pcm-frame"
    assert segment_notice == {"messageID": turn_id, "audioUrl": AUDIO_URL, "isSegment": True}
    assert whole_notice == {"messageID": turn_id, "audioUrl": AUDIO_URL, "isSegment": False}
    assert app.state.tts_client.calls == ["Hi there", "Hi there"]


@pytest.mark.asyncio
async def test_reap_tasks_collects_errors_of_finished_tasks() -> None:
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    loop.set_exception_handler(lambda _loop, context: reported.append(context))

    async def receive_after_close() -> None:
        raise RuntimeError('Cannot call "receive" once a disconnect message has been received.')

    pending = asyncio.create_task(asyncio.sleep(10))
    failed = asyncio.create_task(receive_after_close())
    await asyncio.sleep(0)
    assert failed.done()

    try:
        await _reap_tasks(pending, failed)
        assert pending.cancelled()
        del failed
        gc.collect()
        assert reported == []
    finally:
        loop.set_exception_handler(None)
