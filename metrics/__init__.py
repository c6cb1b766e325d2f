"""
Observability and streaming metrics.
"""

from metrics.streaming_metrics import (
    get_snapshot,
    record_connection_open,
    record_connection_close,
    record_transcription_latency_ms,
    record_transcription_failure,
    record_batch_flushed,
    record_session_completed,
    record_session_discarded,
    reset,
)

__all__ = [
    "get_snapshot",
    "record_connection_open",
    "record_connection_close",
    "record_transcription_latency_ms",
    "record_transcription_failure",
    "record_batch_flushed",
    "record_session_completed",
    "record_session_discarded",
    "reset",
]
