"""
Speech-to-text backends. Each is a blocking callable: bytes in, text out.

- gemini: hosted Gemini model (default).
- whisper: local openai-whisper model (install the `whisper` extra).
"""

from typing import Callable

import config

BACKENDS = ("gemini", "whisper")


def create_transcriber(backend: str = config.TRANSCRIBER_BACKEND) -> Callable[[bytes], str]:
    """Build the configured backend; nothing heavy is loaded until the first call."""
    if backend == "gemini":
        from transcription.gemini_backend import GeminiTranscriber

        return GeminiTranscriber(
            api_key=config.GEMINI_API_KEY,
            model_name=config.GEMINI_MODEL,
            mime_type=config.AUDIO_MIME_TYPE,
        )
    if backend == "whisper":
        from transcription.whisper_backend import WhisperTranscriber

        return WhisperTranscriber(
            model_name=config.WHISPER_MODEL,
            language=config.WHISPER_LANGUAGE,
            audio_format=config.AUDIO_FORMAT,
        )
    raise ValueError(f"Unknown transcriber backend {backend!r}; expected one of {BACKENDS}")
