from __future__ import annotations

import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from photo_library.core.errors import StorageError
from photo_library.core.settings import CACHE_CONTROL, StorageSettings

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}
ORIGINAL_KEY_PATTERN = re.compile(r"photos/([^/]+)/original")


class BlobStore(Protocol):
    """Narrow object-storage interface the pipeline writes through."""

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        ...

    def get_object(self, key: str) -> bytes:
        ...

    def delete_object(self, key: str) -> None:
        ...

    def public_url(self, key: str) -> str:
        ...

    def key_from_url(self, url: str) -> str:
        ...


def infer_extension(filename: str | None, content_type: str | None) -> str:
    """File extension for an original: from the filename, else from the content type."""
    suffix = PurePosixPath(filename or "").suffix.lower()
    if suffix:
        return suffix
    return CONTENT_TYPE_EXTENSIONS.get((content_type or "").lower(), ".bin")


def build_original_key(storage_id: str, extension: str) -> str:
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return f"photos/{storage_id}/original{extension}"


def build_rendition_key(storage_id: str, variant_name: str) -> str:
    return f"photos/{storage_id}/{variant_name}.jpg"


def storage_id_from_key(key: str) -> Optional[str]:
    match = ORIGINAL_KEY_PATTERN.search(key)
    return match.group(1) if match else None


def combine_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key.lstrip('/')}"


def split_url(base_url: str, url: str) -> str:
    """Invert ``combine_url``; URLs outside ``base_url`` are returned from their ``photos/`` segment."""
    base = base_url.rstrip("/")
    if url.startswith(base + "/"):
        return url[len(base) + 1 :]
    marker = url.find("photos/")
    if marker >= 0:
        return url[marker:]
    raise ValueError(f"URL is not served from this blob store: {url}")


class S3BlobStore:
    """S3-compatible store (AWS S3, Cloudflare R2, MinIO) backed by boto3."""

    def __init__(
        self,
        bucket: str,
        public_base_url: str,
        *,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: str = "auto",
        presign_expires_seconds: int = 600,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.presign_expires_seconds = presign_expires_seconds
        if client is None:
            client_kwargs: dict[str, Any] = {
                "region_name": region,
                "config": Config(signature_version="s3v4", retries={"max_attempts": 1}),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            if access_key_id and secret_access_key:
                client_kwargs["aws_access_key_id"] = access_key_id
                client_kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **client_kwargs)
        self.client = client

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "S3BlobStore":
        if not settings.bucket:
            raise StorageError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        return cls(
            settings.bucket,
            settings.public_base_url,
            endpoint_url=settings.endpoint_url,
            access_key_id=settings.access_key_id,
            secret_access_key=settings.secret_access_key,
            region=settings.region,
            presign_expires_seconds=settings.presign_expires_seconds,
        )

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl=CACHE_CONTROL,
        )

    def get_object(self, key: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=key)
        body = response.get("Body")
        if body is None:
            raise StorageError(f"Empty response body for {key}")
        return body.read()

    def delete_object(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def presign_put(self, key: str, content_type: str, expires_in: Optional[int] = None) -> str:
        """Pre-signed PUT URL the client uploads an original through."""
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in or self.presign_expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to presign upload for {key}: {exc}") from exc

    def public_url(self, key: str) -> str:
        return combine_url(self.public_base_url, key)

    def key_from_url(self, url: str) -> str:
        return split_url(self.public_base_url, url)


class LocalBlobStore:
    """Filesystem store for development and tests; keys map to relative paths."""

    def __init__(self, base_path: str | Path, public_base_url: str) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key.lstrip("/"))
        if ".." in relative.parts:
            raise StorageError(f"Invalid storage key: {key}")
        return self.base_path.joinpath(*relative.parts)

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def get_object(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.exists():
            raise FileNotFoundError(f"Key not found: {key}")
        return path.read_bytes()

    def delete_object(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path_for(key).exists()

    def public_url(self, key: str) -> str:
        return combine_url(self.public_base_url, key)

    def key_from_url(self, url: str) -> str:
        return split_url(self.public_base_url, url)


def get_blob_store(settings: Optional[StorageSettings] = None) -> BlobStore:
    settings = settings or StorageSettings.from_env()
    if settings.backend == "s3":
        logger.info("Using S3 blob store (bucket=%s)", settings.bucket)
        return S3BlobStore.from_settings(settings)
    if settings.backend == "local":
        logger.info("Using local blob store at %s", settings.local_dir)
        return LocalBlobStore(settings.local_dir, settings.public_base_url)
    raise StorageError(f"Unknown storage backend: {settings.backend}")
