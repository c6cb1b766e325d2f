"""
WebSocket gateway for /ws (live transcription).

- One connection drives at most one live session at a time. The connection
  holds the Session object it started, never just the id, and drops it once
  `stop` completes; a later session reusing that id is out of its reach.
- Inbound JSON frames are decoded into start/audio/stop messages and routed to
  the bound session.
- Every recoverable error becomes an `error` event; the socket stays open.
- On `stop`: finalize, persist (in the default executor), send `complete`,
  remove the session.
- On close: the bound session (if any) is removed and discarded, no final
  pass and no persistence.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from streaming.errors import InvalidState, SessionNotFound, StreamingError
from streaming.messages import (
    AudioMessage,
    StartMessage,
    StopMessage,
    complete_event,
    error_event,
    parse_client_message,
    started_event,
)
from streaming.registry import SessionRegistry
from streaming.session import FinalizedSession, Session

logger = logging.getLogger(__name__)


def build_ws_transcribe_handler(
    registry: SessionRegistry,
    persist_conversation: Optional[Callable[[str, str, int], Any]] = None,
    idle_timeout_s: float = 300.0,
    get_metrics: Optional[Any] = None,
) -> Callable:
    """
    Build the async WebSocket handler for /ws.

    Args:
        registry: Shared live-session registry.
        persist_conversation: Optional blocking (session_id, transcript, duration_ms) -> record,
            called once per completed session.
        idle_timeout_s: Close the receive loop after this long without a frame.
        get_metrics: Optional module with record_connection_open/close.

    Returns:
        Async function (websocket: WebSocket) -> None for use with FastAPI.
    """
    metrics = get_metrics

    async def handle_ws_transcribe(websocket: WebSocket) -> None:
        await websocket.accept()
        if metrics and hasattr(metrics, "record_connection_open"):
            metrics.record_connection_open()

        bound: Optional[Session] = None

        async def send_event(payload: Dict[str, Any]) -> None:
            try:
                await websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.debug("Dropped %s event: socket closed", payload.get("type"))

        async def persist(finalized: FinalizedSession) -> None:
            if persist_conversation is None:
                return
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(
                    None,
                    lambda: persist_conversation(
                        finalized.session_id, finalized.transcript, finalized.duration_ms
                    ),
                )
            except Exception as e:
                logger.error("Failed to save conversation %s: %s", finalized.session_id, e)
                await send_event(error_event("Failed to save conversation", code="persistence_failed"))

        def bound_session() -> Session:
            if bound is None:
                raise SessionNotFound("")
            return bound

        async def handle_frame(raw: Any) -> None:
            nonlocal bound
            message = parse_client_message(raw)

            if isinstance(message, StartMessage):
                if bound is not None:
                    raise InvalidState(f"Session {bound.session_id} is still open; send stop first")
                bound = await registry.create(send_event, message.session_id)
                await send_event(started_event(bound.session_id))

            elif isinstance(message, AudioMessage):
                await bound_session().apply(message)

            elif isinstance(message, StopMessage):
                session = bound_session()
                try:
                    finalized = await session.apply(message)
                    await persist(finalized)
                    await send_event(complete_event(finalized.transcript))
                finally:
                    bound = None
                    await registry.remove(session.session_id, session)

        try:
            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout_s)
                except asyncio.TimeoutError:
                    logger.info(
                        "Connection idle for %ss; closing (session %s)",
                        idle_timeout_s, bound.session_id if bound else None,
                    )
                    break
                if data.get("type") == "websocket.disconnect":
                    break
                if data.get("type") != "websocket.receive":
                    continue
                raw = data.get("text")
                if raw is None:
                    raw = data.get("bytes")
                try:
                    await handle_frame(raw)
                except StreamingError as e:
                    await send_event(error_event(e))
                except Exception as e:
                    logger.exception(
                        "Unexpected error handling frame for session %s",
                        bound.session_id if bound else None,
                    )
                    await send_event(error_event(str(e) or "Unknown error"))
        except WebSocketDisconnect:
            pass
        finally:
            if bound is not None:
                await registry.remove(bound.session_id, bound)
                bound.discard()
            if metrics and hasattr(metrics, "record_connection_close"):
                metrics.record_connection_close()

    return handle_ws_transcribe
