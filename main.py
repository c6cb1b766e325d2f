"""
Live voice transcription API.

The browser streams base64 audio chunks over /ws; every few chunks the server
sends a batch to the speech-to-text backend and pushes the text back. On stop
the full transcript is stored as a conversation.
"""
import logging
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

import config
import metrics.streaming_metrics as streaming_metrics
from storage.conversations import ConversationStore
from streaming.registry import SessionRegistry
from streaming.session import make_session_factory
from streaming.transcriber import TranscriptionInvoker
from streaming.websocket_server import build_ws_transcribe_handler
from transcription import create_transcriber

logger = logging.getLogger(__name__)


def create_app(
    transcribe: Optional[Callable[[bytes], str]] = None,
    store: Optional[ConversationStore] = None,
    registry: Optional[SessionRegistry] = None,
    flush_threshold: int = config.FLUSH_CHUNK_THRESHOLD,
    transcription_timeout_s: float = config.TRANSCRIPTION_TIMEOUT_SECONDS,
    idle_timeout_s: float = config.WS_IDLE_TIMEOUT_SECONDS,
    persist: bool = config.PERSIST_CONVERSATIONS,
) -> FastAPI:
    """
    Wire the transcription backend, session registry and store into a FastAPI app.

    Args:
        transcribe: Blocking bytes -> text backend (default: TRANSCRIBER_BACKEND from env).
            Unused when `registry` is given.
        store: Conversation store (default: DATABASE_URL from env, when persist is on).
        registry: Live-session registry (default: a fresh one for this app).
    """
    if store is None and persist:
        store = ConversationStore(config.DATABASE_URL)
    if registry is None:
        if transcribe is None:
            transcribe = create_transcriber(config.TRANSCRIBER_BACKEND)
        invoker = TranscriptionInvoker(
            transcribe,
            timeout_s=transcription_timeout_s,
            metrics=streaming_metrics,
        )
        registry = SessionRegistry(
            make_session_factory(invoker, flush_threshold=flush_threshold, metrics=streaming_metrics)
        )

    app = FastAPI(title="Live Voice Transcription API")
    app.state.registry = registry
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def health_check():
        return {
            "status": "ok",
            "message": "Live transcription API is running",
            "active_sessions": len(registry),
            "transcriber_backend": config.TRANSCRIBER_BACKEND,
        }

    @app.get("/metrics/streaming", include_in_schema=False)
    def metrics_streaming():
        """JSON snapshot of streaming metrics plus the live session count."""
        snapshot = streaming_metrics.get_snapshot()
        snapshot["active_sessions"] = len(registry)
        return snapshot

    @app.get("/conversations")
    def list_conversations():
        if store is None:
            return []
        return store.list_conversations()

    @app.get("/conversations/{session_id}")
    def get_conversation(session_id: str):
        record = store.get_conversation(session_id) if store is not None else None
        if record is None:
            raise HTTPException(status_code=404, detail=f"Conversation {session_id} not found")
        return record

    ws_handler = build_ws_transcribe_handler(
        registry,
        persist_conversation=store.save_conversation if store is not None else None,
        idle_timeout_s=idle_timeout_s,
        get_metrics=streaming_metrics,
    )
    app.websocket("/ws")(ws_handler)
    app.websocket("/api/socket")(ws_handler)

    return app


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    _configure_logging()
    logger.info("Starting transcription server on %s:%s (backend=%s)", config.HOST, config.PORT, config.TRANSCRIBER_BACKEND)
    uvicorn.run(create_app(), host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
