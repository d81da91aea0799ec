"""Blob stores for rendered audio: local filesystem and S3-compatible buckets."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from utils.exceptions import BlobStorageError


logger = logging.getLogger(__name__)


def _clean_key(path: str) -> str:
    key = str(path or "").strip().lstrip("/")
    if not key or ".." in key.split("/"):
        raise BlobStorageError("Invalid blob path", {"path": path})
    return key


class BlobStore(ABC):
    """Durable blob storage; ``put`` overwrites an existing object at the same path."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return its public URL."""

    @abstractmethod
    def public_url(self, path: str) -> str:
        ...


class LocalBlobStore(BlobStore):
    """Writes blobs under ``root``; URLs are ``public_base_url/<path>``."""

    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{_clean_key(path)}"

    def _write(self, key: str, data: bytes) -> None:
        target = self.root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        key = _clean_key(path)
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as exc:
            raise BlobStorageError(f"Local blob write failed: {exc}", {"path": key}) from exc
        logger.info("blob_stored backend=local path=%s bytes=%d", key, len(data))
        return self.public_url(key)


class S3BlobStore(BlobStore):
    """
    S3-compatible object storage (AWS S3, DigitalOcean Spaces, MinIO...).

    Objects are written with ``public-read`` so the returned URL plays
    directly in a podcast client.
    """

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        key_id: Optional[str] = None,
        secret: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        if client is None:
            import boto3

            session = boto3.session.Session()
            client = session.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                aws_access_key_id=key_id,
                aws_secret_access_key=secret,
            )
        self.client = client

    def public_url(self, path: str) -> str:
        key = _clean_key(path)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            protocol, _, host = self.endpoint_url.partition("://")
            return f"{protocol}://{self.bucket}.{host.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        key = _clean_key(path)
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )
        except Exception as exc:
            raise BlobStorageError(f"S3 upload failed: {exc}", {"bucket": self.bucket, "path": key}) from exc
        logger.info("blob_stored backend=s3 bucket=%s path=%s bytes=%d", self.bucket, key, len(data))
        return self.public_url(key)
