"""
Utils Module
Logging setup and the exception hierarchy.
"""
from .logger import setup_logger, setup_logging, get_logger
from .exceptions import (
    AudioGenerationError,
    BlobStorageError,
    BriefingError,
    ChatSessionNotFound,
    ConfigurationError,
    InvalidTransition,
    LLMError,
    NotificationError,
    ScoringError,
    ScriptGenerationError,
    SourceError,
    StorageError,
)

__all__ = [
    "setup_logger",
    "setup_logging",
    "get_logger",
    "AudioGenerationError",
    "BlobStorageError",
    "BriefingError",
    "ChatSessionNotFound",
    "ConfigurationError",
    "InvalidTransition",
    "LLMError",
    "NotificationError",
    "ScoringError",
    "ScriptGenerationError",
    "SourceError",
    "StorageError",
]
