"""
Storage Module
Relational store (memory / SQLAlchemy) and blob store (local / S3).
"""
from .base import BriefingStore, PUBLISHED_STATUSES, apply_episode_update
from .blob import BlobStore, LocalBlobStore, S3BlobStore
from .factory import get_blob_store, get_store
from .memory import InMemoryBriefingStore
from .sql import SqlBriefingStore

__all__ = [
    # Relational
    "BriefingStore",
    "PUBLISHED_STATUSES",
    "apply_episode_update",
    "InMemoryBriefingStore",
    "SqlBriefingStore",
    "get_store",
    # Blob
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "get_blob_store",
]
