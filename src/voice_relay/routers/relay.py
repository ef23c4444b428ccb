"""WebSocket and control routes for the chat-to-speech relay."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import suppress
from typing import Optional

from fastapi import (
    APIRouter,
    Body,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from starlette.websockets import WebSocketState

from ..llm import ChatStreamClient
from ..schemas.chat import CreateSessionRequest, SessionResponse
from ..services.audio_stream import AudioStreamDriver
from ..services.sessions import (
    ChatSession,
    ConfigurationError,
    ConnectionKind,
    SessionRegistry,
)
from ..services.text_stream import TextStreamDriver
from ..services.tts import DashScopeTTSClient, SynthesisRelay

router = APIRouter(tags=["relay"])
logger = logging.getLogger(__name__)


def _require_session(registry: SessionRegistry, session_id: Optional[str]) -> ChatSession:
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing sessionid parameter")
    session = registry.lookup(session_id)
    if session is None:
        raise HTTPException(status_code=400, detail="Invalid sessionid")
    return session


async def _resolve_websocket_session(
    websocket: WebSocket, kind: ConnectionKind
) -> Optional[ChatSession]:
    """Look up the session and claim its connection slot, closing on failure."""

    registry: SessionRegistry = websocket.app.state.session_registry
    session_id = websocket.query_params.get("sessionid")
    session = registry.lookup(session_id) if session_id else None
    if session is None:
        logger.warning("Rejected %s stream for unknown session %r", kind, session_id)
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION, reason="Invalid sessionid"
        )
        return None
    if not session.attach(kind):
        logger.warning("Session %s already has a %s connection", session_id, kind)
        await websocket.close(
            code=status.WS_1008_POLICY_VIOLATION,
            reason=f"Session already has a {kind} connection",
        )
        return None
    return session


async def _close_quietly(websocket: WebSocket) -> None:
    if (
        websocket.application_state == WebSocketState.DISCONNECTED
        or websocket.client_state == WebSocketState.DISCONNECTED
    ):
        return
    with suppress(RuntimeError, OSError):
        await websocket.close()


async def _reap_tasks(*tasks: asyncio.Task) -> None:
    """Cancel unfinished tasks and collect errors of the finished ones."""

    for task in tasks:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task
        elif not task.cancelled() and task.exception() is not None:
            logger.debug("Audio stream task ended with %r", task.exception())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain inbound frames on the send-only audio socket until it closes."""

    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/text-stream")
async def text_stream(websocket: WebSocket) -> None:
    session = await _resolve_websocket_session(websocket, "text")
    if session is None:
        return

    await websocket.accept()
    logger.info("Text stream connected for session %s", session.session_id)
    llm: ChatStreamClient = websocket.app.state.llm_client
    driver = TextStreamDriver(session, llm)
    try:
        await driver.run(websocket)
    except Exception as exc:
        logger.error(
            "Text stream for session %s failed: %s",
            session.session_id,
            exc,
            exc_info=True,
        )
    finally:
        session.detach("text")
        await _close_quietly(websocket)


@router.websocket("/ws/audio-stream")
async def audio_stream(websocket: WebSocket) -> None:
    session = await _resolve_websocket_session(websocket, "audio")
    if session is None:
        return

    await websocket.accept()
    logger.info("Audio stream connected for session %s", session.session_id)
    app_state = websocket.app.state
    tts_client: DashScopeTTSClient = app_state.tts_client
    driver = AudioStreamDriver(
        session,
        SynthesisRelay(tts_client, voice=session.voice),
        threshold=app_state.settings.segment_flush_threshold,
    )

    driver_task = asyncio.create_task(driver.run(websocket))
    watch_task = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait(
            {driver_task, watch_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if driver_task in done:
            state = driver_task.result()
            logger.info("Audio stream for session %s ended (%s)", session.session_id, state.value)
        else:
            logger.info("Audio client for session %s disconnected", session.session_id)
    except WebSocketDisconnect:
        logger.info("Audio client for session %s disconnected", session.session_id)
    except Exception as exc:
        logger.error(
            "Audio stream for session %s failed: %s",
            session.session_id,
            exc,
            exc_info=True,
        )
    finally:
        await _reap_tasks(driver_task, watch_task)
        session.detach("audio")
        await _close_quietly(websocket)


@router.api_route("/ws/stop-audio-stream", methods=["GET", "POST"])
async def stop_audio_stream(
    request: Request,
    sessionid: Optional[str] = Query(default=None),
) -> dict[str, str]:
    """Cancel the audio pipeline of a session. The text side keeps running."""

    session = _require_session(request.app.state.session_registry, sessionid)
    if session.audio_cancelled:
        raise HTTPException(status_code=409, detail="Audio stream already stopped")
    session.cancel_audio()
    logger.info("Audio stream stopped for session %s", session.session_id)
    return {"session_id": session.session_id, "status": "audio_stopped"}


@router.post("/api/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    request: Request,
    payload: Optional[CreateSessionRequest] = Body(default=None),
) -> SessionResponse:
    registry: SessionRegistry = request.app.state.session_registry
    session_id = (payload.session_id if payload else None) or uuid.uuid4().hex
    try:
        session = registry.create(session_id)
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=503,
            detail={"message": "Server is not configured", "missing": exc.missing},
        ) from exc
    registry.register(session)
    return SessionResponse(session_id=session.session_id, status="created")


@router.delete("/api/sessions/{session_id}", response_model=SessionResponse)
async def delete_session(session_id: str, request: Request) -> SessionResponse:
    registry: SessionRegistry = request.app.state.session_registry
    if registry.remove(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionResponse(session_id=session_id, status="removed")


__all__ = ["router"]
