"""
Wire messages for the transcription socket.

Client -> server (JSON text frames):
    {"type": "start", "sessionId": "optional"}
    {"type": "audio", "audio": "<base64>"}
    {"type": "stop"}

Server -> client:
    {"type": "started", "sessionId": ...}
    {"type": "transcript", "text": ..., "fullTranscript": ...}
    {"type": "complete", "transcript": ...}
    {"type": "error", "message": ..., "code": ...}
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from streaming.errors import MalformedMessage, StreamingError


@dataclass(frozen=True)
class StartMessage:
    session_id: Optional[str] = None


@dataclass(frozen=True)
class AudioMessage:
    audio: bytes


@dataclass(frozen=True)
class StopMessage:
    pass


ClientMessage = Union[StartMessage, AudioMessage, StopMessage]


def parse_client_message(raw: Any) -> ClientMessage:
    """
    Decode one inbound frame into a client message.

    `sessionId` may be a string or an integer (clients that key sessions by a
    millisecond timestamp send a number); integers are kept as their decimal
    string. Empty ids and 0 mean "generate one".

    Raises:
        MalformedMessage: not text, not a JSON object, unknown type, or bad audio payload.
    """
    if not isinstance(raw, str):
        raise MalformedMessage("Expected a JSON text frame")
    try:
        data = json.loads(raw)
    except ValueError:
        raise MalformedMessage("Invalid JSON")
    if not isinstance(data, dict):
        raise MalformedMessage("Message must be a JSON object")

    kind = data.get("type")
    if kind == "start":
        session_id = data.get("sessionId")
        if session_id is not None and (
            isinstance(session_id, bool) or not isinstance(session_id, (str, int))
        ):
            raise MalformedMessage("sessionId must be a string or an integer")
        # falsy ids ("" / 0) fall back to a generated one
        return StartMessage(session_id=str(session_id) if session_id else None)
    if kind == "audio":
        return AudioMessage(audio=_decode_audio(data.get("audio")))
    if kind == "stop":
        return StopMessage()
    raise MalformedMessage(f"Unknown message type: {kind!r}")


def _decode_audio(payload: Any) -> bytes:
    if not isinstance(payload, str) or not payload:
        raise MalformedMessage("audio must be a non-empty base64 string")
    # data URLs from FileReader.readAsDataURL
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        audio = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedMessage("audio is not valid base64")
    if not audio:
        raise MalformedMessage("audio payload is empty")
    return audio


def started_event(session_id: str) -> Dict[str, Any]:
    return {"type": "started", "sessionId": session_id}


def transcript_event(text: str, full_transcript: str) -> Dict[str, Any]:
    return {"type": "transcript", "text": text, "fullTranscript": full_transcript}


def complete_event(transcript: str) -> Dict[str, Any]:
    return {"type": "complete", "transcript": transcript}


def error_event(error: Union[StreamingError, str], code: str = "internal_error") -> Dict[str, Any]:
    if isinstance(error, StreamingError):
        return {"type": "error", "message": error.message, "code": error.code}
    return {"type": "error", "message": str(error), "code": code}
