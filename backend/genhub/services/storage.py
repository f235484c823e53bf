"""Object storage offload (S3 or S3-compatible).

Generated media is re-hosted here so callers get a durable URL instead of a
provider URL that expires. The boto3 client is synchronous; every call is
pushed to a worker thread so polling dispatches are never blocked.

Usage:
    storage = create_storage(get_settings())
    url = await storage.upload_buffer(data, "images/flux", "image/png")
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import boto3
import httpx

from genhub.services.errors import StorageNotConfiguredError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Byte helpers
# ---------------------------------------------------------------------------

_FORMAT_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


def detect_image_format(data: bytes) -> str:
    """Sniff JPEG/PNG/GIF/WEBP from magic bytes; PNG when unknown."""
    if data[:2] == b"\xff\xd8":
        return "jpg"
    if data[:4] == b"\x89PNG":
        return "png"
    if data[:3] == b"GIF":
        return "gif"
    if data[:4] == b"RIFF":
        return "webp"
    return "png"


def extension_for(content_type: str) -> str:
    """``image/png; charset=binary`` → ``png``."""
    subtype = content_type.split(";", 1)[0].strip().split("/", 1)
    if len(subtype) != 2 or not subtype[1]:
        return "bin"
    return subtype[1].lower()


def generate_unique_filename(extension: str = "png") -> str:
    return f"{int(time.time() * 1000)}_{secrets.token_hex(8)}.{extension}"


# ---------------------------------------------------------------------------
# Storage contract
# ---------------------------------------------------------------------------

@runtime_checkable
class ObjectStorage(Protocol):
    """Upload primitive consumed by the media offloader."""

    def is_configured(self) -> bool: ...

    async def upload_buffer(
        self, data: bytes, path_prefix: str = "uploads", content_type: str | None = None
    ) -> str: ...

    async def upload_from_url(self, url: str, path_prefix: str = "uploads") -> str: ...

    async def delete_file(self, key: str) -> None: ...


@dataclass(frozen=True)
class StorageConfig:
    access_key_id: str
    secret_access_key: str
    region: str
    bucket: str
    endpoint_url: str | None = None
    public_base_url: str | None = None


class S3Storage:
    """S3 uploader. Stateless after ``initialize``; safe for concurrent use."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, download_timeout: float = 30.0):
        self._client: Any = None
        self._config: StorageConfig | None = None
        self._http_client = http_client
        self._download_timeout = download_timeout

    def initialize(self, config: StorageConfig, client: Any = None) -> None:
        """Bind credentials. ``client`` overrides the boto3 client (tests)."""
        self._config = config
        self._client = client or boto3.client(
            "s3",
            region_name=config.region,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            endpoint_url=config.endpoint_url or None,
        )
        logger.info("S3 storage initialized (bucket=%s, region=%s)", config.bucket, config.region)

    def is_configured(self) -> bool:
        return self._client is not None and self._config is not None

    def _require(self) -> StorageConfig:
        config = self._config
        if config is None or self._client is None:
            raise StorageNotConfiguredError("S3 storage not initialized. Call initialize() first.")
        return config

    def public_url(self, key: str) -> str:
        config = self._require()
        if config.public_base_url:
            return f"{config.public_base_url.rstrip('/')}/{key}"
        return f"https://{config.bucket}.s3.{config.region}.amazonaws.com/{key}"

    async def upload_buffer(
        self,
        data: bytes,
        path_prefix: str = "uploads",
        content_type: str | None = None,
        filename: str | None = None,
    ) -> str:
        """Upload bytes under ``<path_prefix>/<epoch-ms>_<hex>.<ext>`` and return the public URL."""
        config = self._require()
        if not content_type:
            fmt = detect_image_format(data)
            content_type = _FORMAT_CONTENT_TYPES[fmt]
            ext = fmt
        else:
            ext = extension_for(content_type)

        name = f"{filename}.{ext}" if filename else generate_unique_filename(ext)
        key = f"{path_prefix.strip('/')}/{name}"

        await asyncio.to_thread(
            self._client.put_object,
            Bucket=config.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        url = self.public_url(key)
        logger.info("Uploaded %d bytes to %s", len(data), url)
        return url

    async def upload_from_url(self, url: str, path_prefix: str = "uploads") -> str:
        self._require()
        client = self._http_client or httpx.AsyncClient(timeout=self._download_timeout)
        own_client = self._http_client is None
        try:
            resp = await client.get(url, follow_redirects=True)
            resp.raise_for_status()
        finally:
            if own_client:
                await client.aclose()
        return await self.upload_buffer(
            resp.content, path_prefix, resp.headers.get("content-type")
        )

    async def delete_file(self, key: str) -> None:
        config = self._require()
        await asyncio.to_thread(self._client.delete_object, Bucket=config.bucket, Key=key)
        logger.info("Deleted s3://%s/%s", config.bucket, key)


def create_storage(settings: Any) -> S3Storage:
    """Build the process-wide storage client from settings.

    Left uninitialised when credentials are missing; adapters configured for
    offload will then fail at construction.
    """
    storage = S3Storage(download_timeout=settings.DOWNLOAD_TIMEOUT)
    if settings.storage_enabled:
        storage.initialize(StorageConfig(
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            region=settings.S3_REGION,
            bucket=settings.S3_BUCKET,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            public_base_url=settings.S3_PUBLIC_BASE_URL or None,
        ))
    else:
        logger.warning(
            "S3 storage not configured. Set S3_ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY and S3_BUCKET."
        )
    return storage
