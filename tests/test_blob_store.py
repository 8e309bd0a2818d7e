from __future__ import annotations

from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from photo_library.core.errors import StorageError
from photo_library.core.settings import CACHE_CONTROL, StorageSettings
from photo_library.storage import (
    LocalBlobStore,
    S3BlobStore,
    build_original_key,
    build_rendition_key,
    get_blob_store,
    infer_extension,
    storage_id_from_key,
)
from photo_library.storage.blob_store import combine_url, split_url


class _Body:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data


class StubS3Client:
    def __init__(self) -> None:
        self.puts: list[dict] = []
        self.deletes: list[dict] = []
        self.presigned: list[tuple] = []
        self.objects: dict[str, bytes] = {}
        self.fail_presign = False

    def put_object(self, **kwargs) -> dict:
        self.puts.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict:
        return {"Body": _Body(self.objects[Key])}

    def delete_object(self, **kwargs) -> dict:
        self.deletes.append(kwargs)
        return {}

    def generate_presigned_url(self, method: str, Params: dict, ExpiresIn: int) -> str:
        if self.fail_presign:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "nope"}}, method)
        self.presigned.append((method, Params, ExpiresIn))
        return f"https://signed.example.test/{Params['Key']}?expires={ExpiresIn}"


def test_key_layout() -> None:
    assert build_original_key("abc", ".jpg") == "photos/abc/original.jpg"
    assert build_original_key("abc", "png") == "photos/abc/original.png"
    assert build_rendition_key("abc", "thumb") == "photos/abc/thumb.jpg"
    assert storage_id_from_key("photos/abc/original.jpg") == "abc"
    assert storage_id_from_key("https://cdn/photos/xyz/original.webp") == "xyz"
    assert storage_id_from_key("photos/abc/thumb.jpg") is None


@pytest.mark.parametrize(
    "filename,content_type,expected",
    [
        ("IMG_0001.JPG", "image/jpeg", ".jpg"),
        ("scan.png", None, ".png"),
        ("", "image/webp", ".webp"),
        (None, "image/jpeg", ".jpg"),
        ("noext", "application/octet-stream", ".bin"),
    ],
)
def test_infer_extension(filename, content_type, expected) -> None:
    assert infer_extension(filename, content_type) == expected


def test_url_helpers_round_trip() -> None:
    url = combine_url("https://cdn.example.test/", "/photos/a/thumb.jpg")
    assert url == "https://cdn.example.test/photos/a/thumb.jpg"
    assert split_url("https://cdn.example.test", url) == "photos/a/thumb.jpg"
    assert split_url("https://other.test", url) == "photos/a/thumb.jpg"
    with pytest.raises(ValueError):
        split_url("https://cdn.example.test", "https://elsewhere.test/x.jpg")


def test_local_store_round_trip(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path / "media", "http://localhost:8000/media/")
    key = "photos/abc/original.jpg"
    store.put_object(key, b"payload", "image/jpeg")

    assert store.exists(key)
    assert store.get_object(key) == b"payload"
    assert (tmp_path / "media" / "photos" / "abc" / "original.jpg").read_bytes() == b"payload"
    assert not list((tmp_path / "media" / "photos" / "abc").glob("*.part"))

    url = store.public_url(key)
    assert url == "http://localhost:8000/media/photos/abc/original.jpg"
    assert store.key_from_url(url) == key

    store.delete_object(key)
    assert not store.exists(key)
    # Deleting a missing key is not an error.
    store.delete_object(key)
    with pytest.raises(FileNotFoundError):
        store.get_object(key)


def test_local_store_rejects_path_traversal(tmp_path: Path) -> None:
    store = LocalBlobStore(tmp_path, "http://localhost/media")
    with pytest.raises(StorageError):
        store.put_object("photos/../../etc/passwd", b"x", "text/plain")


def test_s3_store_sets_cache_headers() -> None:
    client = StubS3Client()
    store = S3BlobStore("bucket", "https://cdn.example.test/", client=client)
    store.put_object("photos/a/thumb.jpg", b"jpeg", "image/jpeg")

    assert client.puts == [
        {
            "Bucket": "bucket",
            "Key": "photos/a/thumb.jpg",
            "Body": b"jpeg",
            "ContentType": "image/jpeg",
            "CacheControl": CACHE_CONTROL,
        }
    ]
    assert store.get_object("photos/a/thumb.jpg") == b"jpeg"
    assert store.public_url("photos/a/thumb.jpg") == "https://cdn.example.test/photos/a/thumb.jpg"

    store.delete_object("photos/a/thumb.jpg")
    assert client.deletes == [{"Bucket": "bucket", "Key": "photos/a/thumb.jpg"}]


def test_s3_presign_put() -> None:
    client = StubS3Client()
    store = S3BlobStore("bucket", "https://cdn.example.test", presign_expires_seconds=300, client=client)
    url = store.presign_put("photos/a/original.jpg", "image/jpeg")

    assert url.startswith("https://signed.example.test/photos/a/original.jpg")
    method, params, expires = client.presigned[0]
    assert method == "put_object"
    assert params == {"Bucket": "bucket", "Key": "photos/a/original.jpg", "ContentType": "image/jpeg"}
    assert expires == 300

    client.fail_presign = True
    with pytest.raises(StorageError):
        store.presign_put("photos/a/original.jpg", "image/jpeg", 60)


def test_get_blob_store_selects_backend(tmp_path: Path) -> None:
    local = get_blob_store(
        StorageSettings(backend="local", public_base_url="http://x/media", local_dir=str(tmp_path))
    )
    assert isinstance(local, LocalBlobStore)

    with pytest.raises(StorageError):
        get_blob_store(StorageSettings(backend="s3", public_base_url="http://x", bucket=None))
    with pytest.raises(StorageError):
        get_blob_store(StorageSettings(backend="ftp", public_base_url="http://x"))
