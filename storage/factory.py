"""Store construction from ``StorageSettings``."""

from __future__ import annotations

import logging
from typing import Optional

from utils.exceptions import ConfigurationError

from .base import BriefingStore
from .blob import BlobStore, LocalBlobStore, S3BlobStore
from .memory import InMemoryBriefingStore


logger = logging.getLogger(__name__)


def get_store(settings=None, backend: Optional[str] = None) -> BriefingStore:
    if settings is None:
        from config import get_storage_settings
        settings = get_storage_settings()

    backend = (backend or settings.backend or "sql").strip().lower()
    if backend == "memory":
        return InMemoryBriefingStore()
    if backend == "sql":
        from .sql import SqlBriefingStore
        return SqlBriefingStore(settings.database_url)
    raise ConfigurationError(f"Unsupported storage backend: {backend}", {"supported": ["memory", "sql"]})


def get_blob_store(settings=None, backend: Optional[str] = None) -> BlobStore:
    if settings is None:
        from config import get_storage_settings
        settings = get_storage_settings()

    backend = (backend or settings.blob_backend or "local").strip().lower()
    if backend == "local":
        return LocalBlobStore(settings.blob_root, settings.public_base_url)
    if backend == "s3":
        return S3BlobStore(
            settings.bucket,
            endpoint_url=settings.s3_endpoint,
            region=settings.s3_region,
            key_id=settings.s3_key_id,
            secret=settings.s3_secret,
        )
    raise ConfigurationError(f"Unsupported blob backend: {backend}", {"supported": ["local", "s3"]})
