"""
WebSocket handler for /ws-audio.

- Binary frames: raw 16 kHz 16-bit mono PCM, appended to the session's sliding
  window; each append dispatches the whole post-trim window for transcription.
- Text frames: JSON control messages; {"type": "start"} resets the window.
- Outbound: {"type": "partial", "text": ...} from the response relay.

Messages of one connection are handled in arrival order; nothing in the loop
awaits the transcription service.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect

from streaming.session_registry import SessionRegistry
from streaming.transcription_dispatcher import TranscriptionDispatcher

logger = logging.getLogger(__name__)

CONTROL_START = "start"


def handle_control_message(registry: SessionRegistry, session_id: str, text: str) -> Optional[str]:
    """
    Apply a JSON control message. Returns the recognized kind, or None.

    Malformed or unknown messages are logged and ignored.
    """
    try:
        message = json.loads(text)
    except ValueError as e:
        logger.warning("Failed to parse text message from %s: %s", session_id, e)
        return None
    if not isinstance(message, dict):
        logger.warning("Ignoring non-object control message from %s", session_id)
        return None
    kind = message.get("type")
    if kind == CONTROL_START:
        registry.on_reset(session_id)
        return CONTROL_START
    logger.debug("Ignoring control message of type %r from %s", kind, session_id)
    return None


def handle_audio_frame(
    registry: SessionRegistry,
    dispatcher: TranscriptionDispatcher,
    session_id: str,
    data: bytes,
) -> Optional[asyncio.Task]:
    """
    Append a PCM frame and dispatch the resulting window.

    Frames for unknown sessions (closed, or never opened) and empty frames are
    dropped silently.
    """
    session = registry.lookup(session_id)
    if session is None:
        return None
    window = session.buffer.append(data)
    if window is None:
        return None
    return dispatcher.dispatch(session, window)


def build_ws_audio_handler(
    registry: SessionRegistry,
    dispatcher: TranscriptionDispatcher,
    get_metrics: Optional[Any] = None,
    idle_timeout: float = 300.0,
    new_session_id: Callable[[], str] = lambda: uuid.uuid4().hex,
) -> Callable:
    """
    Build the async WebSocket handler for /ws-audio.

    Args:
        registry: Session registry shared by all connections.
        dispatcher: Transcription dispatcher shared by all connections.
        get_metrics: Optional module with record_connection_open / record_connection_close.
        idle_timeout: Seconds without any inbound message before the connection is closed.
        new_session_id: Factory for connection ids.

    Returns:
        Async function (websocket: WebSocket) -> None for use with FastAPI.
    """
    metrics = get_metrics

    async def handle_ws_audio(websocket: WebSocket) -> None:
        await websocket.accept()
        session_id = new_session_id()
        session = registry.on_connect(session_id, websocket.send_text)
        if session is None:
            await websocket.close(code=1011, reason="Duplicate session id")
            return
        if metrics is not None:
            metrics.record_connection_open()

        try:
            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout)
                except asyncio.TimeoutError:
                    logger.info("Closing idle session %s", session_id)
                    await websocket.close(code=1000, reason="Idle timeout")
                    break
                if data.get("type") == "websocket.disconnect":
                    break
                if data.get("type") != "websocket.receive":
                    continue
                if data.get("bytes") is not None:
                    handle_audio_frame(registry, dispatcher, session_id, data["bytes"])
                elif data.get("text") is not None:
                    handle_control_message(registry, session_id, data["text"])
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Unexpected error in session %s", session_id)
        finally:
            registry.on_disconnect(session_id)
            if metrics is not None:
                metrics.record_connection_close()

    return handle_ws_audio
