"""
Error taxonomy for the streaming session manager.

Every error here is recoverable: the WebSocket gateway turns it into an
``{"type": "error"}`` event and keeps the connection open.
"""


class StreamingError(Exception):
    """Base class; ``code`` is sent to the client alongside the message."""

    code = "streaming_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFound(StreamingError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__("Session not found")
        self.session_id = session_id


class InvalidState(StreamingError):
    code = "invalid_state"


class TranscriptionFailed(StreamingError):
    code = "transcription_failed"

    def __init__(self, reason: str):
        super().__init__(f"Failed to transcribe audio: {reason}")
        self.reason = reason


class MalformedMessage(StreamingError):
    code = "malformed_message"
