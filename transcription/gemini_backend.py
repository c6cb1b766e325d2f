"""
Gemini speech-to-text backend.

Sends one batch of browser audio inline to a Gemini model and returns the
transcribed text. The client is configured lazily on the first call so the
app can start (and be tested) without credentials.
"""

import logging
import threading
from typing import Optional

import google.generativeai as genai

logger = logging.getLogger(__name__)

TRANSCRIBE_PROMPT = (
    "Please transcribe the following audio accurately. "
    "Focus on accuracy and maintain proper punctuation. "
    "Return only the transcribed text without any additional commentary or formatting."
)

# Low temperature for more literal transcription
GENERATION_CONFIG = {
    "temperature": 0.1,
    "top_k": 1,
    "top_p": 1,
    "max_output_tokens": 2048,
}


class GeminiTranscriber:
    """
    Blocking `transcribe(audio_bytes) -> str` backed by google-generativeai.

    Args:
        api_key: Gemini API key.
        model_name: Gemini model id.
        mime_type: MIME type of the concatenated audio (browser default audio/webm).
    """

    def __init__(self, api_key: str, model_name: str = "gemini-1.5-flash", mime_type: str = "audio/webm"):
        self.api_key = api_key
        self.model_name = model_name
        self.mime_type = mime_type
        self._model: Optional[genai.GenerativeModel] = None
        self._init_lock = threading.Lock()

    def _get_model(self) -> genai.GenerativeModel:
        with self._init_lock:
            if self._model is None:
                if not self.api_key:
                    raise RuntimeError("GEMINI_API_KEY is not set")
                genai.configure(api_key=self.api_key)
                self._model = genai.GenerativeModel(
                    self.model_name,
                    generation_config=GENERATION_CONFIG,
                )
                logger.info("Gemini transcriber initialized with model: %s", self.model_name)
            return self._model

    def __call__(self, audio_bytes: bytes) -> str:
        model = self._get_model()
        response = model.generate_content([
            TRANSCRIBE_PROMPT,
            {"mime_type": self.mime_type, "data": audio_bytes},
        ])
        if not response.candidates:
            raise RuntimeError("No transcription generated")
        text = (response.text or "").strip()
        if not text:
            raise RuntimeError("No transcription generated")
        return text
