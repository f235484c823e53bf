from __future__ import annotations

import re
from typing import Any

import httpx
import pytest

from conftest import Router
from genhub.config import Settings
from genhub.services.errors import StorageNotConfiguredError
from genhub.services.storage import (
    ObjectStorage,
    S3Storage,
    StorageConfig,
    create_storage,
    detect_image_format,
    extension_for,
    generate_unique_filename,
)

JPEG = b"\xff\xd8\xff\xe0rest"
PNG = b"\x89PNG\r\n\x1a\nrest"


class FakeS3Client:
    """Records boto3 ``put_object`` / ``delete_object`` calls."""

    def __init__(self) -> None:
        self.put: list[dict[str, Any]] = []
        self.deleted: list[dict[str, Any]] = []

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.put.append(kwargs)
        return {"ETag": '"abc"'}

    def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        self.deleted.append(kwargs)
        return {}


def s3(public_base_url: str | None = None, http_client: httpx.AsyncClient | None = None):
    client = FakeS3Client()
    storage = S3Storage(http_client=http_client)
    storage.initialize(
        StorageConfig(
            access_key_id="AKIA",
            secret_access_key="secret",
            region="eu-west-1",
            bucket="media",
            public_base_url=public_base_url,
        ),
        client=client,
    )
    return storage, client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("data, fmt", [
    (JPEG, "jpg"),
    (PNG, "png"),
    (b"GIF89a...", "gif"),
    (b"RIFF\x00\x00\x00\x00WEBP", "webp"),
    (b"\x00\x01unknown", "png"),
])
def test_detect_image_format(data, fmt):
    assert detect_image_format(data) == fmt


def test_extension_for_content_type():
    assert extension_for("video/mp4") == "mp4"
    assert extension_for("image/png; charset=binary") == "png"
    assert extension_for("garbage") == "bin"


def test_unique_filename_shape():
    name = generate_unique_filename("webp")
    assert re.fullmatch(r"\d{13}_[0-9a-f]{16}\.webp", name)
    assert generate_unique_filename() != generate_unique_filename()


# ---------------------------------------------------------------------------
# S3Storage
# ---------------------------------------------------------------------------

def test_s3_storage_satisfies_protocol():
    assert isinstance(S3Storage(), ObjectStorage)


@pytest.mark.asyncio
async def test_calls_before_initialize_fail_with_configuration_error():
    storage = S3Storage()
    assert not storage.is_configured()
    with pytest.raises(StorageNotConfiguredError):
        await storage.upload_buffer(PNG, "images")
    with pytest.raises(StorageNotConfiguredError):
        await storage.delete_file("images/a.png")
    with pytest.raises(StorageNotConfiguredError):
        storage.public_url("images/a.png")


@pytest.mark.asyncio
async def test_upload_buffer_with_content_type():
    storage, client = s3()

    url = await storage.upload_buffer(b"mp4-bytes", "videos/kling/", "video/mp4")

    put = client.put[0]
    assert put["Bucket"] == "media"
    assert put["ContentType"] == "video/mp4"
    assert put["Body"] == b"mp4-bytes"
    assert re.fullmatch(r"videos/kling/\d+_[0-9a-f]{16}\.mp4", put["Key"])
    assert url == f"https://media.s3.eu-west-1.amazonaws.com/{put['Key']}"


@pytest.mark.asyncio
async def test_upload_buffer_sniffs_missing_content_type():
    storage, client = s3(public_base_url="https://cdn.test/")

    url = await storage.upload_buffer(JPEG, "images", filename="fixed")

    assert client.put[0]["Key"] == "images/fixed.jpg"
    assert client.put[0]["ContentType"] == "image/jpeg"
    assert url == "https://cdn.test/images/fixed.jpg"


@pytest.mark.asyncio
async def test_upload_from_url(router: Router):
    router.add("GET", "https://provider.test/a", httpx.Response(200, content=PNG, headers={"content-type": "image/png"}))
    storage, client = s3(http_client=httpx.AsyncClient(transport=router.transport))

    await storage.upload_from_url("https://provider.test/a", "mirrors")

    assert client.put[0]["Body"] == PNG
    assert client.put[0]["Key"].startswith("mirrors/")
    assert client.put[0]["Key"].endswith(".png")


@pytest.mark.asyncio
async def test_delete_file():
    storage, client = s3()
    await storage.delete_file("images/a.png")
    assert client.deleted == [{"Bucket": "media", "Key": "images/a.png"}]


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def test_create_storage_without_credentials_is_uninitialised():
    storage = create_storage(Settings(_env_file=None, S3_ACCESS_KEY_ID="", S3_BUCKET=""))
    assert not storage.is_configured()


def test_create_storage_with_credentials(monkeypatch):
    built = {}

    def fake_client(service, **kwargs):
        built.update(kwargs, service=service)
        return FakeS3Client()

    monkeypatch.setattr("genhub.services.storage.boto3.client", fake_client)
    settings = Settings(
        _env_file=None,
        S3_ACCESS_KEY_ID="AKIA",
        S3_SECRET_ACCESS_KEY="secret",
        S3_BUCKET="media",
        S3_ENDPOINT_URL="https://minio.test",
    )

    storage = create_storage(settings)

    assert storage.is_configured()
    assert built["service"] == "s3"
    assert built["endpoint_url"] == "https://minio.test"
    assert built["aws_access_key_id"] == "AKIA"
