"""
Per-session audio chunk buffer and the count-based batch flush policy.

Chunks are kept exactly as received (encoded container fragments from the
browser's MediaRecorder), in arrival order. A flush drains a snapshot of every
buffered chunk; chunks that arrive afterwards start the next batch.
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

DEFAULT_FLUSH_THRESHOLD = 5


@dataclass(frozen=True)
class AudioChunk:
    """One audio fragment as received from the client."""
    data: bytes
    received_at: float  # wall clock, seconds
    sequence: int  # arrival order within the session, starting at 0


def concat_chunks(chunks: Sequence[AudioChunk]) -> bytes:
    """Join chunk payloads in the given order."""
    return b"".join(chunk.data for chunk in chunks)


class ChunkBuffer:
    """
    Ordered queue of audio chunks awaiting transcription.

    - `append()` never reorders; sequence numbers keep increasing across drains.
    - `drain()` removes exactly the chunks present at call time (FIFO).
    """

    def __init__(self):
        self._chunks: List[AudioChunk] = []
        self._next_sequence = 0
        self._total_appended = 0

    def append(self, data: bytes, received_at: Optional[float] = None) -> AudioChunk:
        """Append a raw chunk and return it with its timestamp and sequence."""
        chunk = AudioChunk(
            data=bytes(data),
            received_at=time.time() if received_at is None else received_at,
            sequence=self._next_sequence,
        )
        self._next_sequence += 1
        self._chunks.append(chunk)
        self._total_appended += len(chunk.data)
        return chunk

    def drain(self) -> List[AudioChunk]:
        """Remove and return all buffered chunks in arrival order."""
        batch = self._chunks
        self._chunks = []
        return batch

    def peek_all(self) -> bytes:
        """Concatenated bytes of everything buffered, without consuming."""
        return concat_chunks(self._chunks)

    def clear(self) -> None:
        """Drop buffered chunks (e.g. when a connection goes away)."""
        self._chunks = []

    def total_appended_bytes(self) -> int:
        """Total bytes ever appended (for stats)."""
        return self._total_appended

    def __len__(self) -> int:
        return len(self._chunks)


class CountFlushPolicy:
    """Flush once the buffer holds `threshold` chunks or more."""

    def __init__(self, threshold: int = DEFAULT_FLUSH_THRESHOLD):
        if threshold < 1:
            raise ValueError("flush threshold must be at least 1")
        self.threshold = threshold

    def should_flush(self, buffer: ChunkBuffer) -> bool:
        return len(buffer) >= self.threshold
