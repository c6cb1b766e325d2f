"""
Local Whisper speech-to-text backend.

Runs an OpenAI Whisper model on one batch. The model is loaded on first use
and guarded by a lock so only one inference runs at a time across sessions.
"""

import logging
import os
import struct
import tempfile
import threading
from typing import Any, Optional

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """
    Blocking `transcribe(audio_bytes) -> str` backed by openai-whisper.

    Args:
        model_name: Whisper size (tiny, base, small, ...) or checkpoint path.
        language: Language code, or None for auto-detect.
        audio_format: "webm" (container bytes, decoded by ffmpeg) or
            "pcm16" (raw 16 kHz 16-bit mono, wrapped in a WAV header).
        model: Preloaded model (tests); skips whisper.load_model.
    """

    def __init__(
        self,
        model_name: str = "base",
        language: Optional[str] = None,
        audio_format: str = "webm",
        model: Optional[Any] = None,
    ):
        self.model_name = model_name
        self.language = language
        self.audio_format = audio_format
        self._model = model
        self._inference_lock = threading.Lock()

    def _get_model(self) -> Any:
        if self._model is None:
            import whisper

            logger.info("Loading Whisper model %s", self.model_name)
            self._model = whisper.load_model(self.model_name)
        return self._model

    def __call__(self, audio_bytes: bytes) -> str:
        if self.audio_format == "pcm16":
            payload, suffix = _raw_to_wav(audio_bytes), ".wav"
        else:
            payload, suffix = audio_bytes, f".{self.audio_format}"

        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as f:
            f.write(payload)
            path = f.name
        try:
            with self._inference_lock:
                model = self._get_model()
                result = model.transcribe(path, language=self.language)
        finally:
            if os.path.exists(path):
                os.unlink(path)
        return (result.get("text") or "").strip()


def _raw_to_wav(raw: bytes, sample_rate: int = 16000, sample_width: int = 2) -> bytes:
    """Wrap raw PCM (16 kHz, 16-bit mono) in a minimal WAV header."""
    n = len(raw)
    header = bytearray(44)
    header[0:4] = b"RIFF"
    struct.pack_into("<I", header, 4, 36 + n)
    header[8:12] = b"WAVE"
    header[12:16] = b"fmt "
    struct.pack_into("<I", header, 16, 16)  # fmt chunk size
    struct.pack_into("<H", header, 20, 1)   # PCM
    struct.pack_into("<H", header, 22, 1)   # mono
    struct.pack_into("<I", header, 24, sample_rate)
    struct.pack_into("<I", header, 28, sample_rate * sample_width)
    struct.pack_into("<H", header, 32, sample_width)  # block align
    struct.pack_into("<H", header, 34, sample_width * 8)
    header[36:40] = b"data"
    struct.pack_into("<I", header, 40, n)
    return bytes(header) + raw
