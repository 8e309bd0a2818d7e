from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from photo_library.core.errors import PhotoNotFoundError, PhotoStateError
from photo_library.storage.blob_store import BlobStore

from .schema import AssetRow, PhotoRow, TagRow

logger = logging.getLogger(__name__)

# Editable text fields and their maximum lengths.
METADATA_TEXT_FIELDS = {
    "title": 255,
    "description": 4000,
    "place_name": 255,
    "city": 255,
    "region": 255,
    "country": 255,
}
EDITABLE_FIELDS = frozenset(METADATA_TEXT_FIELDS) | {"captured_at"}


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or uuid.uuid4().hex


def _get_photo(session: Session, photo_id: str) -> PhotoRow:
    photo = session.get(PhotoRow, photo_id)
    if photo is None:
        raise PhotoNotFoundError(f"Photo not found: {photo_id}")
    return photo


def set_photo_visibility(
    session: Session, photo_id: str, visible: bool, user_id: Optional[str] = None
) -> PhotoRow:
    """Show or hide a photo. Only published photos may become visible."""
    photo = _get_photo(session, photo_id)
    if visible and photo.status != "published":
        raise PhotoStateError(
            f"Photo {photo_id} is {photo.status}; only published photos can be made visible"
        )
    photo.is_visible = visible
    photo.visibility = "public" if visible else "private"
    photo.updated_by = user_id
    session.flush()
    return photo


def update_photo_metadata(
    session: Session, photo_id: str, user_id: Optional[str] = None, **fields: object
) -> PhotoRow:
    """Apply operator edits to the descriptive fields of a photo.

    Text values are trimmed; empty strings clear the field.
    """
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    photo = _get_photo(session, photo_id)
    for name, value in fields.items():
        if name == "captured_at":
            if value is not None and not isinstance(value, datetime):
                raise ValueError("captured_at must be a datetime or None")
            photo.captured_at = value
            continue
        if value is None:
            setattr(photo, name, None)
            continue
        if not isinstance(value, str):
            raise ValueError(f"{name} must be a string")
        text = value.strip()
        if len(text) > METADATA_TEXT_FIELDS[name]:
            raise ValueError(f"{name} exceeds {METADATA_TEXT_FIELDS[name]} characters")
        setattr(photo, name, text or None)
    photo.updated_by = user_id
    session.flush()
    return photo


def upsert_tag(session: Session, name: str, user_id: Optional[str] = None) -> TagRow:
    normalized = name.strip()
    if not normalized:
        raise ValueError("Tag name is required")
    slug = _slugify(normalized)
    existing = session.scalar(select(TagRow).where(TagRow.slug == slug))
    if existing:
        return existing
    tag = TagRow(
        id=str(uuid.uuid4()), name=normalized, slug=slug, created_by=user_id, updated_by=user_id
    )
    session.add(tag)
    session.flush()
    return tag


def set_photo_tags(
    session: Session, photo_id: str, tag_names: Iterable[str], user_id: Optional[str] = None
) -> list[TagRow]:
    """Replace the tags on a photo, creating missing tags by slug."""
    photo = _get_photo(session, photo_id)
    tags: list[TagRow] = []
    seen: set[str] = set()
    for name in tag_names:
        tag = upsert_tag(session, name, user_id)
        if tag.id in seen:
            continue
        seen.add(tag.id)
        tags.append(tag)
    photo.tags = tags
    photo.updated_by = user_id
    session.flush()
    return tags


def delete_photo(session: Session, blob_store: BlobStore, photo_id: str) -> list[str]:
    """Delete a photo, its derived rows, its original asset and every blob.

    Rows are removed first; blob deletions are best effort. Returns the URLs
    that could not be deleted.
    """
    photo = _get_photo(session, photo_id)
    urls = [rendition.url for rendition in photo.renditions]
    asset_id = photo.asset_original_id
    if photo.asset is not None:
        urls.append(photo.asset.url)

    session.delete(photo)
    session.flush()
    if asset_id is not None:
        still_used = session.scalar(
            select(PhotoRow.id).where(PhotoRow.asset_original_id == asset_id)
        )
        if still_used is None:
            session.execute(delete(AssetRow).where(AssetRow.id == asset_id))
    session.commit()

    failed: list[str] = []
    for url in urls:
        try:
            key = blob_store.key_from_url(url)
            blob_store.delete_object(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to delete blob %s for photo %s: %s", url, photo_id, exc)
            failed.append(url)
    logger.info("Deleted photo %s (%d blobs)", photo_id, len(urls) - len(failed))
    return failed
