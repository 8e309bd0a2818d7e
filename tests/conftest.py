from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from photo_library.index import init_db, session_factory


class MemoryBlobStore:
    """In-memory blob store; keys map to bytes, URLs live under a fake CDN."""

    base_url = "https://cdn.example.test"

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.deleted: list[str] = []

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data
        self.content_types[key] = content_type

    def get_object(self, key: str) -> bytes:
        if key not in self.objects:
            raise FileNotFoundError(key)
        return self.objects[key]

    def delete_object(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: str) -> str:
        return url[len(self.base_url) + 1 :]


def make_image_bytes(
    size: tuple[int, int] = (64, 48),
    color: tuple[int, ...] | str = (200, 30, 30),
    fmt: str = "JPEG",
    mode: str = "RGB",
    exif: Image.Exif | None = None,
) -> bytes:
    img = Image.new(mode, size, color=color)
    buffer = BytesIO()
    if exif is not None:
        img.save(buffer, format=fmt, exif=exif)
    else:
        img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def session_local():
    engine = init_db("sqlite+pysqlite:///:memory:")
    return session_factory(engine)


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()
