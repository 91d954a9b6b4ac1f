"""Exceptions raised inside the streaming transcription pipeline."""


class StreamingError(Exception):
    """Base class for recoverable streaming errors."""


class TranscriptionServiceError(StreamingError):
    """Raised for network failures, non-success statuses or unreadable bodies from the transcription API."""


class MalformedResponseError(StreamingError):
    """Raised when a transcription response does not have the expected structure."""
