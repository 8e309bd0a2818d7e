from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from photo_library.core.models import (
    DuplicateMatch,
    ExifData,
    Histogram,
    PhotoDetail,
    Rendition,
    Tag,
)
from photo_library.imaging.hashing import is_sha256_hex

from .schema import (
    AssetRow,
    PhotoExifRow,
    PhotoHistogramRow,
    PhotoRenditionRow,
    PhotoRow,
    TagRow,
)

RENDITION_ORDER = {"thumb": 0, "list": 1, "detail": 2}


def _load_exif(row: PhotoExifRow | None, photo: PhotoRow) -> ExifData | None:
    if row is None:
        return None
    return ExifData(
        camera_make=row.camera_make,
        camera_model=row.camera_model,
        lens_model=row.lens_model,
        focal_length_mm=row.focal_length_mm,
        aperture=row.aperture,
        shutter_s=row.shutter_s,
        iso=row.iso,
        exposure_compensation_ev=row.exposure_compensation_ev,
        metering_mode=row.metering_mode,
        white_balance_mode=row.white_balance_mode,
        shooting_mode=row.shooting_mode,
        datetime_original=row.exif_datetime_original,
        gps_lat=photo.latitude,
        gps_lon=photo.longitude,
        color_space=row.color_space,
        bit_depth=row.bit_depth,
    )


def _load_histogram(row: PhotoHistogramRow | None) -> Histogram | None:
    if row is None:
        return None
    return Histogram(
        bins=row.bins,
        counts_luma=list(row.counts_luma),
        counts_red=list(row.counts_red),
        counts_green=list(row.counts_green),
        counts_blue=list(row.counts_blue),
        highlights_pct=row.highlights_pct,
        shadows_pct=row.shadows_pct,
    )


def _load_renditions(rows: list[PhotoRenditionRow]) -> list[Rendition]:
    ordered = sorted(rows, key=lambda r: RENDITION_ORDER.get(r.variant_name, len(RENDITION_ORDER)))
    return [
        Rendition(
            variant_name=row.variant_name,
            url=row.url,
            width=row.width,
            height=row.height,
            file_size=row.file_size,
            checksum=row.checksum,
        )
        for row in ordered
    ]


def _load_tags(rows: list[TagRow]) -> list[Tag]:
    return [
        Tag(id=row.id, name=row.name, slug=row.slug, color=row.color)
        for row in sorted(rows, key=lambda t: t.name.lower())
    ]


def build_photo_detail(row: PhotoRow) -> PhotoDetail:
    asset = row.asset
    return PhotoDetail(
        id=row.id,
        title=row.title,
        description=row.description,
        captured_at=row.captured_at,
        uploaded_at=row.uploaded_at,
        original_url=asset.url if asset else None,
        original_checksum=asset.checksum if asset else None,
        width=row.width,
        height=row.height,
        aspect_ratio=row.aspect_ratio,
        orientation=row.orientation,
        place_name=row.place_name,
        city=row.city,
        region=row.region,
        country=row.country,
        latitude=row.latitude,
        longitude=row.longitude,
        dominant_color=row.dominant_color,
        blurhash=row.blurhash,
        megapixels=row.megapixels,
        dynamic_range_usage=row.dynamic_range_usage,
        is_visible=row.is_visible,
        status=row.status,
        visibility=row.visibility,
        renditions=_load_renditions(row.renditions),
        exif=_load_exif(row.exif, row),
        histogram=_load_histogram(row.histogram),
        tags=_load_tags(row.tags),
    )


def load_photo_row(session: Session, photo_id: str) -> Optional[PhotoRow]:
    """Photo with its asset, renditions, EXIF, histogram and tags eagerly loaded."""
    return session.scalar(
        select(PhotoRow)
        .where(PhotoRow.id == photo_id)
        .options(
            selectinload(PhotoRow.asset),
            selectinload(PhotoRow.renditions),
            selectinload(PhotoRow.exif),
            selectinload(PhotoRow.histogram),
            selectinload(PhotoRow.tags),
        )
    )


def load_photo_detail(session: Session, photo_id: str) -> Optional[PhotoDetail]:
    row = load_photo_row(session, photo_id)
    if row is None:
        return None
    return build_photo_detail(row)


def find_photo_by_checksum(session: Session, checksum: str) -> Optional[DuplicateMatch]:
    """Look up an existing photo whose original has this SHA-256 checksum.

    Raises ValueError when ``checksum`` is not a 64-character hex string.
    """
    if not isinstance(checksum, str) or not is_sha256_hex(checksum):
        raise ValueError("Invalid checksum format. Expected SHA-256 hex string.")
    asset = session.scalar(select(AssetRow).where(AssetRow.checksum == checksum.lower()))
    if asset is None or not asset.photos:
        return None
    photo = asset.photos[0]
    thumb = next((r for r in photo.renditions if r.variant_name == "thumb"), None)
    return DuplicateMatch(
        photo_id=photo.id,
        title=photo.title,
        thumb_url=thumb.url if thumb else None,
    )
