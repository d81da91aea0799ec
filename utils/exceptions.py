"""
Custom Exceptions
Error taxonomy for the briefing pipeline and its collaborators.
"""


class BriefingError(Exception):
    """Base error for the briefing platform."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BriefingError):
    """Missing or invalid configuration."""
    pass


class SourceError(BriefingError):
    """A source adapter could not fetch or parse its input."""

    def __init__(self, message: str, source: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.source = source


class LLMError(BriefingError):
    """Text generation call failed."""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class ScoringError(BriefingError):
    """Scoring response could not be parsed."""
    pass


class ScriptGenerationError(BriefingError):
    """Script generation produced no usable script."""
    pass


class AudioGenerationError(BriefingError):
    """Audio synthesis failed or its input was rejected."""
    pass


class StorageError(BriefingError):
    """Relational store read/write failed."""
    pass


class InvalidTransition(StorageError):
    """Episode status change would move the state machine backwards."""

    def __init__(self, message: str, current: str = None, target: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.current = current
        self.target = target


class BlobStorageError(StorageError):
    """Blob upload failed."""
    pass


class ChatSessionNotFound(StorageError):
    """Chat turn addressed to a session that does not exist."""

    def __init__(self, session_id: str):
        super().__init__("Chat session not found", {"session_id": session_id})
        self.session_id = session_id


class NotificationError(BriefingError):
    """Notification delivery failed."""
    pass
