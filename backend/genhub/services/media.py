"""Media offload: re-host provider output in object storage.

URL offload is a pass-through when the provider config has offload
disabled. Base64 offload has no original URL to fall back on, so it refuses
to run when offload is disabled.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
from urllib.parse import urlparse

import httpx

from genhub.schemas.generation import ProviderConfig
from genhub.services.errors import StorageUploadError
from genhub.services.retry import RetryConfig, retry_with_backoff
from genhub.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_PATH_PREFIX = "default"

_DATA_URI_RE = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,", re.IGNORECASE)


def strip_data_uri(data: str) -> str:
    return _DATA_URI_RE.sub("", data.strip(), count=1)


def decode_base64(data: str) -> bytes:
    """Decode base64 with or without a ``data:`` prefix. Raises ValueError."""
    payload = strip_data_uri(data)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


def to_data_uri(data: bytes, content_type: str = "image/png") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def guess_content_type(url: str, default: str = "image/png") -> str:
    """Content type from the URL path extension, ``default`` when unknown."""
    path = urlparse(url).path
    guessed, _ = mimetypes.guess_type(path)
    return guessed or default


class MediaOffloader:
    """Downloads provider output and uploads it to object storage."""

    def __init__(
        self,
        config: ProviderConfig,
        storage: ObjectStorage | None,
        http_client: httpx.AsyncClient,
        retry: RetryConfig | None = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.http_client = http_client
        self.retry = retry or RetryConfig()

    @property
    def enabled(self) -> bool:
        return self.config.storage_offload

    def _prefix(self, prefix: str | None) -> str:
        return prefix or self.config.storage_path_prefix or DEFAULT_PATH_PREFIX

    def _require_storage(self) -> ObjectStorage:
        if self.storage is None or not self.storage.is_configured():
            raise StorageUploadError("Object storage is not configured")
        return self.storage

    async def _download(self, url: str) -> httpx.Response:
        resp = await self.http_client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return resp

    async def offload_url(self, url: str, content_type: str, prefix: str | None = None) -> str:
        """Return a storage URL for ``url`` (or ``url`` itself when offload is off)."""
        if not self.enabled:
            logger.info("[%s] Storage offload disabled, returning provider URL", self.config.adapter_name)
            return url

        path_prefix = self._prefix(prefix)
        try:
            storage = self._require_storage()
            logger.info("[%s] Downloading %s (%s)", self.config.adapter_name, url, content_type)
            resp = await retry_with_backoff(
                lambda: self._download(url),
                self.retry,
                operation_name=f"{self.config.adapter_name} download media",
            )
            data = resp.content
            logger.info(
                "[%s] Uploading %d bytes under %s/", self.config.adapter_name, len(data), path_prefix,
            )
            stored = await storage.upload_buffer(data, path_prefix, content_type)
        except StorageUploadError:
            raise
        except Exception as e:
            logger.error("[%s] Failed to offload %s: %s", self.config.adapter_name, url, e)
            raise StorageUploadError(
                "Failed to download or upload media",
                {"url": url, "error": str(e)},
            ) from e

        if not stored:
            raise StorageUploadError("Storage upload returned no URL", {"url": url})
        logger.info("[%s] Media stored at %s", self.config.adapter_name, stored)
        return stored

    async def offload_base64(
        self, data: str, prefix: str | None = None, content_type: str | None = None
    ) -> str:
        """Upload inline base64 media; fails when offload is disabled."""
        if not self.enabled:
            logger.warning("[%s] offload_base64 called with storage offload disabled", self.config.adapter_name)
            raise StorageUploadError("Cannot upload base64 media: storage offload is disabled")

        path_prefix = self._prefix(prefix)
        try:
            storage = self._require_storage()
            payload = decode_base64(data)
            logger.info(
                "[%s] Uploading %d bytes of base64 media under %s/",
                self.config.adapter_name, len(payload), path_prefix,
            )
            stored = await storage.upload_buffer(payload, path_prefix, content_type)
        except StorageUploadError:
            raise
        except Exception as e:
            logger.error("[%s] Failed to upload base64 media: %s", self.config.adapter_name, e)
            raise StorageUploadError("Failed to upload base64 media", {"error": str(e)}) from e

        if not stored:
            raise StorageUploadError("Storage upload returned no URL")
        return stored
