"""Relational store for photos, renditions, EXIF, histograms and tags."""

from .records import build_photo_detail, find_photo_by_checksum, load_photo_detail, load_photo_row
from .schema import (
    AssetRow,
    Base,
    PhotoExifRow,
    PhotoHistogramRow,
    PhotoRenditionRow,
    PhotoRow,
    TagRow,
    create_engine_from_url,
    init_db,
    photo_tags,
    session_factory,
)
from .updates import (
    delete_photo,
    set_photo_tags,
    set_photo_visibility,
    update_photo_metadata,
    upsert_tag,
)
from .years import PhotoYearCache, load_photo_years

__all__ = [
    "AssetRow",
    "Base",
    "PhotoExifRow",
    "PhotoHistogramRow",
    "PhotoRenditionRow",
    "PhotoRow",
    "PhotoYearCache",
    "TagRow",
    "build_photo_detail",
    "create_engine_from_url",
    "delete_photo",
    "find_photo_by_checksum",
    "init_db",
    "load_photo_detail",
    "load_photo_row",
    "load_photo_years",
    "photo_tags",
    "session_factory",
    "set_photo_tags",
    "set_photo_visibility",
    "update_photo_metadata",
    "upsert_tag",
]
