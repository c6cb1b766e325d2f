"""
Transcription invoker: wraps the blocking speech-to-text call for one batch.

The backend runs in the default executor so a slow network round trip never
stalls the event loop (and therefore never stalls other sessions). Calls are
bounded by a timeout so a hung backend cannot hold a session's single
in-flight slot forever. No retries here; callers decide what to do on failure.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from streaming.errors import TranscriptionFailed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class TranscriptionResult:
    text: str
    meta: Dict[str, Any] = field(default_factory=dict)


class TranscriptionInvoker:
    """
    Stateless wrapper around a `transcribe(audio_bytes) -> str` callable.

    Args:
        transcribe: Blocking backend call (see `transcription.create_transcriber`).
        timeout_s: Upper bound for one call; None disables the bound.
        metrics: Optional module with record_transcription_latency_ms and
            record_transcription_failure.
    """

    def __init__(
        self,
        transcribe: Callable[[bytes], str],
        timeout_s: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        metrics: Optional[Any] = None,
    ):
        self._transcribe = transcribe
        self.timeout_s = timeout_s
        self._metrics = metrics

    async def invoke(self, audio_bytes: bytes) -> TranscriptionResult:
        """
        Transcribe one contiguous batch of audio.

        Returns:
            TranscriptionResult with the backend text and meta (bytes, inference_ms).

        Raises:
            TranscriptionFailed: backend error, timeout, empty input or empty text.
        """
        payload = bytes(audio_bytes)
        meta: Dict[str, Any] = {"bytes": len(payload), "inference_ms": None}
        if not payload:
            self._record_failure()
            raise TranscriptionFailed("empty audio batch")

        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        try:
            text = await asyncio.wait_for(
                loop.run_in_executor(None, self._transcribe, payload),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            meta["inference_ms"] = round((time.perf_counter() - start) * 1000)
            self._record_failure()
            logger.warning("Transcription timed out after %sms (%s bytes)", meta["inference_ms"], len(payload))
            raise TranscriptionFailed(f"timed out after {self.timeout_s}s")
        except Exception as e:
            meta["inference_ms"] = round((time.perf_counter() - start) * 1000)
            self._record_failure()
            logger.warning("Transcription backend error: %s", e)
            raise TranscriptionFailed(str(e)) from e

        meta["inference_ms"] = round((time.perf_counter() - start) * 1000)
        if not text or not text.strip():
            self._record_failure()
            raise TranscriptionFailed("No transcription generated")

        if self._metrics and hasattr(self._metrics, "record_transcription_latency_ms"):
            self._metrics.record_transcription_latency_ms(meta["inference_ms"])
        return TranscriptionResult(text=text, meta=meta)

    def _record_failure(self) -> None:
        if self._metrics and hasattr(self._metrics, "record_transcription_failure"):
            self._metrics.record_transcription_failure()
