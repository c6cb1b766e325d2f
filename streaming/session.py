"""
Session state machine for one recording.

    IDLE -> RECORDING -> FINALIZING -> CLOSED

- RECORDING: audio is buffered; when the flush policy fires, a background task
  drains the buffer and transcribes it. Ingestion never waits on that task.
- At most one flush is in flight per session. Chunks arriving meanwhile stay
  buffered; when the in-flight call returns, the loop drains again if the
  buffer has crossed the threshold (bundling everything pending), otherwise
  the next crossing starts a new flush.
- FINALIZING: no new audio; wait for the in-flight flush, transcribe whatever
  remains (even below threshold), then CLOSED.
- discard(): connection went away; jump to CLOSED and drop late results.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from streaming.audio_buffer import AudioChunk, ChunkBuffer, CountFlushPolicy, concat_chunks
from streaming.errors import InvalidState, MalformedMessage, TranscriptionFailed
from streaming.messages import (
    AudioMessage,
    ClientMessage,
    StartMessage,
    StopMessage,
    error_event,
    transcript_event,
)
from streaming.transcriber import TranscriptionInvoker

logger = logging.getLogger(__name__)

TRANSCRIPT_SEPARATOR = " "

EmitFn = Callable[[Dict[str, Any]], Awaitable[None]]


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass(frozen=True)
class FinalizedSession:
    """What a finished session hands to persistence."""
    session_id: str
    transcript: str
    duration_ms: int


class Session:
    """
    Owns one session's buffer, transcript and lifecycle.

    Args:
        session_id: Registry key.
        invoker: Shared TranscriptionInvoker.
        emit: Coroutine sending an event dict to the session's client.
        policy: Flush policy (default: 5 chunks).
        clock: Wall clock in seconds, injectable for tests.
        metrics: Optional module with record_batch_flushed / record_session_completed /
            record_session_discarded.
    """

    def __init__(
        self,
        session_id: str,
        invoker: TranscriptionInvoker,
        emit: EmitFn,
        policy: Optional[CountFlushPolicy] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[Any] = None,
    ):
        self.session_id = session_id
        self.state = SessionState.IDLE
        self.buffer = ChunkBuffer()
        self.transcript = ""
        self.started_at: Optional[float] = None
        self.batches_sent = 0
        self._invoker = invoker
        self._emit = emit
        self._policy = policy or CountFlushPolicy()
        self._clock = clock
        self._metrics = metrics
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def flush_in_flight(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    def start(self) -> None:
        """IDLE -> RECORDING; records startedAt."""
        if self.state is not SessionState.IDLE:
            raise InvalidState(f"Session {self.session_id} already started")
        self.started_at = self._clock()
        self.state = SessionState.RECORDING

    async def apply(self, message: ClientMessage) -> Optional[FinalizedSession]:
        """Single transition function: dispatch one client message by kind."""
        if isinstance(message, AudioMessage):
            self.ingest(message.audio)
            return None
        if isinstance(message, StopMessage):
            return await self.finalize()
        if isinstance(message, StartMessage):
            raise InvalidState(f"Session {self.session_id} already started")
        raise MalformedMessage(f"Unsupported message: {type(message).__name__}")

    def ingest(self, data: bytes, received_at: Optional[float] = None) -> AudioChunk:
        """Buffer one chunk; schedule a flush if the policy fires and none is in flight."""
        if self.state is not SessionState.RECORDING:
            raise InvalidState(f"Cannot accept audio while session is {self.state.value}")
        chunk = self.buffer.append(data, received_at)
        if self._policy.should_flush(self.buffer) and not self.flush_in_flight:
            self._flush_task = asyncio.create_task(self._flush_loop())
            self._flush_task.add_done_callback(self._log_flush_crash)
        return chunk

    async def finalize(self) -> FinalizedSession:
        """
        RECORDING -> FINALIZING -> CLOSED.

        Waits for the in-flight flush, runs one last pass over any remaining
        chunks, and returns the final transcript and duration. A failed last
        pass is reported to the client and its audio dropped.
        """
        if self.state is not SessionState.RECORDING:
            raise InvalidState(f"Cannot stop while session is {self.state.value}")
        self.state = SessionState.FINALIZING

        await self.wait_idle()
        if len(self.buffer):
            await self._transcribe_batch(self.buffer.drain(), announce=False)

        duration_ms = int(round((self._clock() - self.started_at) * 1000))
        self.state = SessionState.CLOSED
        if self._metrics and hasattr(self._metrics, "record_session_completed"):
            self._metrics.record_session_completed()
        logger.info(
            "Session %s finalized: %s batches, %s chars, %sms",
            self.session_id, self.batches_sent, len(self.transcript), duration_ms,
        )
        return FinalizedSession(
            session_id=self.session_id,
            transcript=self.transcript,
            duration_ms=duration_ms,
        )

    async def wait_idle(self) -> None:
        """Wait until no flush is in flight."""
        if self._flush_task is not None:
            await asyncio.gather(self._flush_task, return_exceptions=True)

    def discard(self) -> None:
        """Best-effort cleanup: close without transcribing or persisting anything."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.buffer.clear()
        if self._metrics and hasattr(self._metrics, "record_session_discarded"):
            self._metrics.record_session_discarded()
        logger.info("Session %s discarded (in flight: %s)", self.session_id, self.flush_in_flight)

    async def _flush_loop(self) -> None:
        while self.state is SessionState.RECORDING and self._policy.should_flush(self.buffer):
            await self._transcribe_batch(self.buffer.drain())

    async def _transcribe_batch(self, batch: List[AudioChunk], announce: bool = True) -> None:
        audio = concat_chunks(batch)
        self.batches_sent += 1
        if self._metrics and hasattr(self._metrics, "record_batch_flushed"):
            self._metrics.record_batch_flushed()
        logger.debug(
            "Session %s batch %s: chunks %s-%s, %s bytes",
            self.session_id, self.batches_sent, batch[0].sequence, batch[-1].sequence, len(audio),
        )
        try:
            result = await self._invoker.invoke(audio)
        except TranscriptionFailed as e:
            if self.state is SessionState.CLOSED:
                return
            logger.warning("Session %s dropped batch %s: %s", self.session_id, self.batches_sent, e.reason)
            await self._emit(error_event(e))
            return

        if self.state is SessionState.CLOSED:
            logger.info("Session %s closed before batch %s returned; result dropped", self.session_id, self.batches_sent)
            return
        segment = result.text + TRANSCRIPT_SEPARATOR
        self.transcript += segment
        if announce:
            await self._emit(transcript_event(segment, self.transcript))

    def _log_flush_crash(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Session %s flush task crashed: %r", self.session_id, exc)


def make_session_factory(
    invoker: TranscriptionInvoker,
    flush_threshold: int = 5,
    metrics: Optional[Any] = None,
) -> Callable[[str, EmitFn], Session]:
    """Build the `(session_id, emit) -> Session` factory the registry uses."""

    def factory(session_id: str, emit: EmitFn) -> Session:
        return Session(
            session_id,
            invoker,
            emit,
            policy=CountFlushPolicy(flush_threshold),
            metrics=metrics,
        )

    return factory
