"""
Production configuration via environment variables.
Load with python-dotenv; no hardcoded credentials or database paths.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


# ----- Server -----
PORT = int(os.environ.get("PORT", "8001"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ----- Speech-to-text -----
# gemini | whisper
TRANSCRIBER_BACKEND = os.environ.get("TRANSCRIBER_BACKEND", "gemini").lower()

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash")

# MediaRecorder in the browser produces webm/opus; pcm16 = raw 16 kHz 16-bit mono
AUDIO_MIME_TYPE = os.environ.get("AUDIO_MIME_TYPE", "audio/webm")
AUDIO_FORMAT = os.environ.get("AUDIO_FORMAT", "webm").lower()

# Whisper size (tiny, base, small, medium, large) or path to a local checkpoint
WHISPER_MODEL = os.environ.get("WHISPER_MODEL", "base")
WHISPER_LANGUAGE = os.environ.get("WHISPER_LANGUAGE", "") or None

# ----- Streaming -----
# Number of buffered chunks that triggers one transcription call
FLUSH_CHUNK_THRESHOLD = int(os.environ.get("FLUSH_CHUNK_THRESHOLD", "5"))
TRANSCRIPTION_TIMEOUT_SECONDS = float(os.environ.get("TRANSCRIPTION_TIMEOUT_SECONDS", "30"))
WS_IDLE_TIMEOUT_SECONDS = float(os.environ.get("WS_IDLE_TIMEOUT_SECONDS", "300"))

# ----- Persistence -----
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///conversations.db")
PERSIST_CONVERSATIONS = _env_bool("PERSIST_CONVERSATIONS", "true")

# ----- CORS (production: set to specific origins) -----
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
def get_cors_origins() -> list:
    """Return list of allowed CORS origins from env."""
    if CORS_ORIGINS == "*":
        return ["*"]
    return [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
