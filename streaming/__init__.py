"""
Real-time streaming layer.

- audio_buffer: per-session chunk buffer and count-based flush policy.
- transcriber: timed, bounded wrapper around the speech-to-text backend.
- session / registry: per-recording state machine and the live-session table.
- websocket_server: WebSocket handler for /ws (import separately to avoid pulling FastAPI).
"""

from streaming.audio_buffer import AudioChunk, ChunkBuffer, CountFlushPolicy, concat_chunks
from streaming.errors import (
    InvalidState,
    MalformedMessage,
    SessionNotFound,
    StreamingError,
    TranscriptionFailed,
)
from streaming.registry import SessionRegistry, new_session_id
from streaming.session import FinalizedSession, Session, SessionState, make_session_factory
from streaming.transcriber import TranscriptionInvoker, TranscriptionResult

__all__ = [
    "AudioChunk",
    "ChunkBuffer",
    "CountFlushPolicy",
    "concat_chunks",
    "InvalidState",
    "MalformedMessage",
    "SessionNotFound",
    "StreamingError",
    "TranscriptionFailed",
    "SessionRegistry",
    "new_session_id",
    "FinalizedSession",
    "Session",
    "SessionState",
    "make_session_factory",
    "TranscriptionInvoker",
    "TranscriptionResult",
]
