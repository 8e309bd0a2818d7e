from __future__ import annotations

import importlib
from datetime import datetime, timezone
from pathlib import Path

from fastapi.testclient import TestClient

from conftest import make_image_bytes
from photo_library.imaging import sha256_hex
from photo_library.index import PhotoRow


def _setup_api(tmp_path: Path, monkeypatch, **env: str):
    db_path = tmp_path / "api.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_DIR", str(tmp_path / "media"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://testserver/media")
    monkeypatch.delenv("MAPBOX_ACCESS_TOKEN", raising=False)
    monkeypatch.delenv("MAX_UPLOAD_BYTES", raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    from photo_library.api import http_api

    return importlib.reload(http_api)


def _upload(client: TestClient, data: bytes, filename: str = "photo.jpg", content_type="image/jpeg"):
    return client.post(
        "/photos/upload",
        files={"file": (filename, data, content_type)},
        headers={"X-User-Id": "user-1"},
    )


def test_health(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_upload_and_fetch_photo(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    resp = _upload(client, make_image_bytes((640, 480)), "Pier.jpg")
    assert resp.status_code == 200
    body = resp.json()
    photo_id = body["photo_id"]
    assert body["detail_url"].endswith("/detail.jpg")

    resp = client.get(f"/photos/{photo_id}")
    assert resp.status_code == 200
    payload = resp.json()
    photo = payload["photo"]
    assert payload["needs_reprocessing"] is False
    assert photo["title"] == "Pier"
    assert photo["status"] == "published"
    assert photo["is_visible"] is True
    assert photo["orientation"] == "landscape"
    assert [r["variant_name"] for r in photo["renditions"]] == ["thumb", "list", "detail"]

    # Local storage serves the renditions it wrote.
    thumb_url = photo["renditions"][0]["url"]
    resp = client.get(thumb_url.replace("http://testserver", ""))
    assert resp.status_code == 200
    assert resp.content[:2] == b"\xff\xd8"


def test_upload_rejects_bad_files(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    resp = _upload(client, b"not an image")
    assert resp.status_code == 400

    gif = make_image_bytes(fmt="GIF", mode="P", color=1)
    resp = _upload(client, gif, "anim.gif", "image/gif")
    assert resp.status_code == 400
    assert "Unsupported" in resp.json()["detail"]


def test_upload_too_large(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch, MAX_UPLOAD_BYTES="200")
    client = TestClient(http_api.app)

    resp = _upload(client, make_image_bytes((128, 128)))
    assert resp.status_code == 413


def test_duplicate_upload_and_check(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)
    data = make_image_bytes((100, 100), color=(5, 90, 200))

    first = _upload(client, data, "Original.jpg").json()
    resp = _upload(client, data, "Again.jpg")
    assert resp.status_code == 409
    assert resp.json()["photo_id"] == first["photo_id"]

    resp = client.post("/photos/check-duplicate", json={"checksum": sha256_hex(data)})
    assert resp.status_code == 200
    body = resp.json()
    assert body["exists"] is True
    assert body["existing_photo"]["photo_id"] == first["photo_id"]
    assert body["existing_photo"]["title"] == "Original"
    assert body["existing_photo"]["thumb_url"].endswith("/thumb.jpg")

    resp = client.post("/photos/check-duplicate", json={"checksum": "f" * 64})
    assert resp.json() == {"exists": False, "existing_photo": None}

    resp = client.post("/photos/check-duplicate", json={"checksum": "not-a-hash"})
    assert resp.status_code == 400


def test_presign_requires_s3_backend(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    request = {"filename": "a.jpg", "content_type": "image/jpeg", "file_size": 1024}
    resp = client.post("/photos/upload/presign", json=request)
    assert resp.status_code == 400
    assert "s3" in resp.json()["detail"]

    resp = client.post("/photos/upload/presign", json={**request, "content_type": "image/gif"})
    assert resp.status_code == 400
    resp = client.post("/photos/upload/presign", json={**request, "file_size": 0})
    assert resp.status_code == 400
    resp = client.post("/photos/upload/presign", json={**request, "file_size": 10**10})
    assert resp.status_code == 400


def test_presign_with_s3_store(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)

    class PresigningStore:
        def presign_put(self, key: str, content_type: str, expires_in: int) -> str:
            return f"https://signed.test/{key}?ct={content_type}&exp={expires_in}"

    monkeypatch.setattr(http_api, "blob_store", PresigningStore())
    client = TestClient(http_api.app)

    resp = client.post(
        "/photos/upload/presign",
        json={"filename": "Beach.PNG", "content_type": "image/png", "file_size": 2048},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["key"] == f"photos/{body['storage_id']}/original.png"
    assert body["upload_url"].startswith(f"https://signed.test/{body['key']}")
    assert body["public_base_url"] == "http://testserver/media"
    assert datetime.fromisoformat(body["expires_at"]) > datetime.now(timezone.utc)


def test_complete_upload(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)
    key = "photos/direct-9/original.png"
    http_api.blob_store.put_object(key, make_image_bytes((200, 300), fmt="PNG"), "image/png")

    resp = client.post(
        "/photos/upload/complete",
        json={
            "storage_id": "direct-9",
            "key": "photos/someone-else/original.png",
            "filename": "p.png",
            "content_type": "image/png",
        },
    )
    assert resp.status_code == 400

    resp = client.post(
        "/photos/upload/complete",
        json={"storage_id": "direct-9", "key": key, "filename": "Tower.png", "content_type": "image/png"},
    )
    assert resp.status_code == 200
    photo_id = resp.json()["photo_id"]
    photo = client.get(f"/photos/{photo_id}").json()["photo"]
    assert photo["title"] == "Tower"
    assert photo["orientation"] == "portrait"

    resp = client.post(
        "/photos/upload/complete",
        json={"storage_id": "direct-9", "key": key, "filename": "Tower.png", "content_type": "image/png"},
    )
    assert resp.status_code == 409
    assert resp.json()["photo_id"] == photo_id
    assert (tmp_path / "media" / key).is_file()


def test_edit_endpoints(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)
    photo_id = _upload(client, make_image_bytes()).json()["photo_id"]

    resp = client.post(f"/photos/{photo_id}/visibility", json={"is_visible": False})
    assert resp.status_code == 200
    assert resp.json() == {"photo_id": photo_id, "is_visible": False, "visibility": "private"}

    resp = client.patch(f"/photos/{photo_id}", json={"title": "  Renamed ", "city": "Porto"})
    assert resp.status_code == 200
    assert resp.json()["photo"]["title"] == "Renamed"
    assert resp.json()["photo"]["city"] == "Porto"

    resp = client.patch(f"/photos/{photo_id}", json={"title": "x" * 300})
    assert resp.status_code == 400

    resp = client.put(f"/photos/{photo_id}/tags", json={"tags": ["Night", "Harbour"]})
    assert resp.status_code == 200
    assert sorted(tag["slug"] for tag in resp.json()["tags"]) == ["harbour", "night"]


def test_draft_cannot_be_made_visible(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)
    photo_id = _upload(client, make_image_bytes()).json()["photo_id"]
    with http_api.SessionLocal() as session:
        photo = session.get(PhotoRow, photo_id)
        photo.status = "draft"
        session.commit()

    resp = client.post(f"/photos/{photo_id}/visibility", json={"is_visible": True})
    assert resp.status_code == 409
    assert client.get(f"/photos/{photo_id}").json()["needs_reprocessing"] is True


def test_years_reprocess_and_delete(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    assert client.get("/photos/years").json() == {"years": []}
    photo_id = _upload(client, make_image_bytes()).json()["photo_id"]
    assert client.get("/photos/years").json() == {"years": [datetime.now(timezone.utc).year]}

    resp = client.post(f"/photos/{photo_id}/reprocess", headers={"X-User-Id": "admin"})
    assert resp.status_code == 200
    assert resp.json()["photo_id"] == photo_id

    resp = client.delete(f"/photos/{photo_id}")
    assert resp.status_code == 200
    assert resp.json() == {"deleted": photo_id, "blobs_not_deleted": []}
    assert not list((tmp_path / "media" / "photos").rglob("*.jpg"))
    assert client.get("/photos/years").json() == {"years": []}


def test_unknown_photo_returns_404(tmp_path: Path, monkeypatch) -> None:
    http_api = _setup_api(tmp_path, monkeypatch)
    client = TestClient(http_api.app)

    assert client.get("/photos/missing").status_code == 404
    assert client.post("/photos/missing/reprocess").status_code == 404
    assert client.post("/photos/missing/visibility", json={"is_visible": True}).status_code == 404
    assert client.delete("/photos/missing").status_code == 404
