"""
Streaming observability metrics.

Thread-safe counters and latency samples for the /ws transcription socket.
Exposed via GET /metrics/streaming (JSON snapshot).
Updated by the WebSocket gateway, the sessions and the transcription invoker.
"""

import threading
from collections import deque
from typing import Any, Dict

# ----- Shared state (module-level for singleton behavior) -----
_lock = threading.Lock()
_active_connections = 0
_latency_samples: deque = deque(maxlen=1000)  # last N transcription call durations
_transcription_failure_count = 0
_batches_flushed = 0
_sessions_completed = 0
_sessions_discarded = 0


def record_connection_open() -> None:
    """Call when a WebSocket connection is accepted."""
    with _lock:
        global _active_connections
        _active_connections += 1


def record_connection_close() -> None:
    """Call when a WebSocket connection closes."""
    with _lock:
        global _active_connections
        _active_connections = max(0, _active_connections - 1)


def record_transcription_latency_ms(total_ms: float) -> None:
    """Record the duration of one successful transcription call."""
    with _lock:
        _latency_samples.append(total_ms)


def record_transcription_failure() -> None:
    """Call when a transcription call raises, times out or returns nothing."""
    with _lock:
        global _transcription_failure_count
        _transcription_failure_count += 1


def record_batch_flushed() -> None:
    """Call when a batch is drained from a session buffer."""
    with _lock:
        global _batches_flushed
        _batches_flushed += 1


def record_session_completed() -> None:
    with _lock:
        global _sessions_completed
        _sessions_completed += 1


def record_session_discarded() -> None:
    """Call when a connection closes with its session still open."""
    with _lock:
        global _sessions_discarded
        _sessions_discarded += 1


def reset() -> None:
    """Zero every counter (tests)."""
    global _active_connections, _transcription_failure_count, _batches_flushed
    global _sessions_completed, _sessions_discarded
    with _lock:
        _active_connections = 0
        _latency_samples.clear()
        _transcription_failure_count = 0
        _batches_flushed = 0
        _sessions_completed = 0
        _sessions_discarded = 0


def get_snapshot() -> Dict[str, Any]:
    """
    Return a JSON-serializable snapshot of streaming metrics.
    Used by GET /metrics/streaming.
    """
    with _lock:
        samples = list(_latency_samples)
        snapshot = {
            "active_connections": _active_connections,
            "transcription_failure_count": _transcription_failure_count,
            "batches_flushed": _batches_flushed,
            "sessions_completed": _sessions_completed,
            "sessions_discarded": _sessions_discarded,
        }
    n = len(samples)
    if n == 0:
        avg_latency_ms = None
        p95_latency_ms = None
    else:
        avg_latency_ms = round(sum(samples) / n, 2)
        sorted_s = sorted(samples)
        idx = max(0, int(0.95 * n) - 1)
        p95_latency_ms = round(sorted_s[idx], 2)
    snapshot.update({
        "avg_latency_ms": avg_latency_ms,
        "p95_latency_ms": p95_latency_ms,
        "latency_sample_count": n,
    })
    return snapshot
