from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import make_image_bytes
from photo_library.imaging import sha256_hex
from photo_library.index import (
    PhotoRow,
    PhotoYearCache,
    find_photo_by_checksum,
    load_photo_detail,
    load_photo_years,
    set_photo_tags,
)
from photo_library.ingest import PhotoPipeline


def _ingest(session_local, blob_store, data: bytes, filename: str = "a.jpg") -> str:
    pipeline = PhotoPipeline(session_local, blob_store, sleep=lambda _: None)
    return pipeline.ingest(data, filename, "image/jpeg", None).photo_id


def test_load_photo_detail(session_local, blob_store) -> None:
    data = make_image_bytes((300, 200))
    photo_id = _ingest(session_local, blob_store, data, "Bridge.jpg")
    with session_local() as session:
        set_photo_tags(session, photo_id, ["water", "Architecture"])
        session.commit()
        detail = load_photo_detail(session, photo_id)

    assert detail.id == photo_id
    assert detail.title == "Bridge"
    assert detail.original_checksum == sha256_hex(data)
    assert detail.original_url.startswith(blob_store.base_url)
    assert [r.variant_name for r in detail.renditions] == ["thumb", "list", "detail"]
    assert detail.histogram is not None and detail.histogram.bins == 256
    assert [t.name for t in detail.tags] == ["Architecture", "water"]
    assert detail.exif is None
    assert detail.is_visible is True
    payload = detail.model_dump(mode="json")
    assert payload["renditions"][0]["url"].endswith("/thumb.jpg")


def test_load_photo_detail_missing(session_local) -> None:
    with session_local() as session:
        assert load_photo_detail(session, "missing") is None


def test_find_photo_by_checksum(session_local, blob_store) -> None:
    data = make_image_bytes((90, 60))
    photo_id = _ingest(session_local, blob_store, data, "Dock.jpg")
    checksum = sha256_hex(data)

    with session_local() as session:
        match = find_photo_by_checksum(session, checksum.upper())
        assert match.photo_id == photo_id
        assert match.title == "Dock"
        assert match.thumb_url.endswith("/thumb.jpg")
        assert find_photo_by_checksum(session, "0" * 64) is None


@pytest.mark.parametrize("checksum", ["", "abc", "z" * 64, "0" * 63, "0" * 64 + "\n"])
def test_find_photo_by_checksum_rejects_malformed_input(session_local, checksum) -> None:
    with session_local() as session:
        with pytest.raises(ValueError):
            find_photo_by_checksum(session, checksum)


def test_load_photo_years_prefers_capture_time(session_local) -> None:
    with session_local() as session:
        session.add_all(
            [
                PhotoRow(
                    id="a",
                    width=1,
                    height=1,
                    captured_at=datetime(2015, 3, 1, tzinfo=timezone.utc),
                    uploaded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                ),
                PhotoRow(id="b", width=1, height=1, uploaded_at=datetime(2022, 6, 1, tzinfo=timezone.utc)),
                PhotoRow(
                    id="c",
                    width=1,
                    height=1,
                    captured_at=datetime(2015, 8, 1, tzinfo=timezone.utc),
                    uploaded_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                ),
            ]
        )
        session.commit()
        assert load_photo_years(session) == [2022, 2015]


def test_year_cache_recomputes_after_invalidation(session_local) -> None:
    cache = PhotoYearCache()
    with session_local() as session:
        assert cache.get(session) == []
        assert cache.is_cached

        session.add(PhotoRow(id="a", width=1, height=1, captured_at=datetime(2019, 1, 1)))
        session.commit()
        assert cache.get(session) == []

        cache.invalidate()
        assert not cache.is_cached
        assert cache.get(session) == [2019]


def test_year_cache_returns_copies(session_local) -> None:
    cache = PhotoYearCache()
    with session_local() as session:
        session.add(PhotoRow(id="a", width=1, height=1, captured_at=datetime(2019, 1, 1)))
        session.commit()
        years = cache.get(session)
        years.append(1900)
        assert cache.get(session) == [2019]
