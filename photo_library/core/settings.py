from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

ACCEPTED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass(frozen=True)
class RenditionSpec:
    name: str
    max_size: int
    quality: int


# Generated in this order, one at a time.
RENDITIONS: tuple[RenditionSpec, ...] = (
    RenditionSpec("thumb", 320, 80),
    RenditionSpec("list", 1024, 88),
    RenditionSpec("detail", 2048, 92),
)


@dataclass
class StorageSettings:
    backend: str
    public_base_url: str
    local_dir: str = "./storage"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    bucket: Optional[str] = None
    region: str = "auto"
    presign_expires_seconds: int = 600

    @classmethod
    def from_env(cls) -> "StorageSettings":
        backend = os.getenv("STORAGE_BACKEND", "local").lower()
        return cls(
            backend=backend,
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000/media").rstrip("/"),
            local_dir=os.getenv("LOCAL_STORAGE_DIR", "./storage"),
            endpoint_url=os.getenv("S3_ENDPOINT_URL"),
            access_key_id=os.getenv("S3_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("S3_SECRET_ACCESS_KEY"),
            bucket=os.getenv("S3_BUCKET"),
            region=os.getenv("S3_REGION", "auto"),
            presign_expires_seconds=int(os.getenv("PRESIGN_EXPIRES_SECONDS", "600")),
        )


@dataclass
class GeocoderSettings:
    access_token: Optional[str]
    base_url: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    timeout: float = 2.0
    workers: int = 2

    @property
    def enabled(self) -> bool:
        return bool(self.access_token)

    @classmethod
    def from_env(cls) -> "GeocoderSettings":
        return cls(
            access_token=os.getenv("MAPBOX_ACCESS_TOKEN") or None,
            base_url=os.getenv(
                "MAPBOX_BASE_URL", "https://api.mapbox.com/geocoding/v5/mapbox.places"
            ),
            workers=int(os.getenv("GEOCODE_WORKERS", "2")),
        )


@dataclass
class PipelineSettings:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    accepted_content_types: frozenset[str] = ACCEPTED_CONTENT_TYPES
    renditions: tuple[RenditionSpec, ...] = RENDITIONS
    blurhash_components: tuple[int, int] = (4, 3)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))),
        )


def database_url_from_env() -> str:
    return os.getenv("DATABASE_URL", "sqlite+pysqlite:///./photo_library.db")
