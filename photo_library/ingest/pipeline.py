"""Photo ingestion pipeline.

Takes one original image from raw bytes to a published photo record:

1. acquire the original (read back from blob storage with retry, or store it);
2. decode and validate it, hashing and measuring it once;
3. extract EXIF (best effort);
4. persist the Asset, a draft Photo and the optional EXIF row;
5. render the thumb/list/detail JPEGs one tier at a time;
6. upload each rendition with retry (exhaustion rolls the whole run back);
7. insert rendition rows (failure tolerated);
8. compute histogram and dominant colour from *detail*, blurhash from *list*;
9. insert the histogram (failure tolerated) and publish the photo;
10. invalidate the year cache and hand GPS coordinates to the geocode queue.

Every step that creates durable state pushes its inverse onto a
``Compensation`` stack, which is unwound only on a fatal failure.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from photo_library.core.errors import (
    DuplicatePhotoError,
    IngestError,
    PayloadTooLargeError,
    PhotoNotFoundError,
    StorageError,
)
from photo_library.core.models import ExifData, HistogramData, IngestResult
from photo_library.core.retry import STORAGE_RETRY, RetryPolicy, with_retry
from photo_library.core.settings import RENDITIONS, PipelineSettings, RenditionSpec
from photo_library.imaging.hashing import sha256_hex
from photo_library.imaging.histogram import compute_histogram
from photo_library.imaging.transform import (
    DecodedImage,
    compute_dominant_color,
    compute_perceptual_hash,
    decode_image,
    ensure_supported_type,
    resize_and_encode,
    rgb_to_hex,
)
from photo_library.index.schema import (
    AssetRow,
    PhotoExifRow,
    PhotoHistogramRow,
    PhotoRenditionRow,
    PhotoRow,
)
from photo_library.storage.blob_store import (
    BlobStore,
    build_original_key,
    build_rendition_key,
    infer_extension,
    storage_id_from_key,
)

from .compensation import Compensation
from .exif_reader import extract_exif

logger = logging.getLogger(__name__)

JPEG_CONTENT_TYPE = "image/jpeg"
UNTITLED = "Untitled"


class GeocodeSubmitter(Protocol):
    def enqueue(self, photo_id: str, lat: float, lon: float, user_id: Optional[str]) -> None:
        ...


class CacheInvalidator(Protocol):
    def invalidate(self) -> None:
        ...


@dataclass
class GeneratedRendition:
    name: str
    data: bytes
    width: int
    height: int
    file_size: int
    checksum: str
    key: str
    url: str


@dataclass
class DerivedData:
    histogram: HistogramData
    dominant_color: str
    blurhash: str

    @property
    def dynamic_range_usage(self) -> str:
        return f"{self.histogram.dynamic_range_usage:.2f}"


def derive_title(filename: str | None) -> str:
    stem = PurePath(filename or "").stem.strip()
    return stem or UNTITLED


def derive_orientation(width: int, height: int) -> str:
    if width == height:
        return "square"
    return "landscape" if width > height else "portrait"


def aspect_ratio_text(width: int, height: int) -> str:
    return f"{width / height:.4f}"


def megapixels_text(width: int, height: int) -> str:
    return f"{(width * height) / 1_000_000:.2f}"


def needs_reprocessing(photo: PhotoRow) -> bool:
    """True when a prior run left the photo unpublished or missing derived data."""
    if photo.status != "published":
        return True
    if not photo.blurhash or not photo.dominant_color:
        return True
    if photo.histogram is None:
        return True
    present = {rendition.variant_name for rendition in photo.renditions}
    return any(spec.name not in present for spec in RENDITIONS)


class PhotoPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        blob_store: BlobStore,
        settings: Optional[PipelineSettings] = None,
        *,
        geocode_queue: Optional[GeocodeSubmitter] = None,
        year_cache: Optional[CacheInvalidator] = None,
        storage_retry: RetryPolicy = STORAGE_RETRY,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.settings = settings or PipelineSettings()
        self.geocode_queue = geocode_queue
        self.year_cache = year_cache
        self.storage_retry = storage_retry
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep} if sleep is not None else {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def ingest(
        self,
        original_bytes: bytes,
        filename: str,
        content_type: Optional[str],
        uploader_id: Optional[str],
    ) -> IngestResult:
        """Server-mediated upload: validate, store the original, then process it."""
        self._check_size(original_bytes)
        decoded = decode_image(original_bytes)
        accepted_type = ensure_supported_type(
            content_type, decoded.content_type, self.settings.accepted_content_types
        )
        checksum = sha256_hex(original_bytes)
        self._check_duplicate(checksum)

        storage_id = str(uuid.uuid4())
        original_key = build_original_key(storage_id, infer_extension(filename, accepted_type))
        logger.info("Ingest: storing original %s (%d bytes)", original_key, len(original_bytes))
        self._storage_call(
            lambda: self.blob_store.put_object(original_key, original_bytes, accepted_type),
            "store-original",
            {"storage_id": storage_id, "key": original_key},
        )

        compensation = Compensation()
        compensation.push(
            f"delete original {original_key}",
            lambda: self.blob_store.delete_object(original_key),
        )
        return self._process(
            storage_id,
            original_key,
            original_bytes,
            decoded,
            checksum,
            filename,
            uploader_id,
            compensation,
        )

    def ingest_uploaded(
        self,
        storage_id: str,
        original_key: str,
        filename: str,
        content_type: Optional[str],
        uploader_id: Optional[str],
    ) -> IngestResult:
        """Direct upload: the client already PUT the original at ``original_key``."""
        self._check_original_unclaimed(original_key)
        logger.info("Ingest: reading original %s", original_key)
        original_bytes = self._storage_call(
            lambda: self.blob_store.get_object(original_key),
            "read-original",
            {"storage_id": storage_id, "key": original_key},
        )

        compensation = Compensation()
        compensation.push(
            f"delete original {original_key}",
            lambda: self.blob_store.delete_object(original_key),
        )
        try:
            self._check_size(original_bytes)
            decoded = decode_image(original_bytes)
            ensure_supported_type(
                content_type, decoded.content_type, self.settings.accepted_content_types
            )
            checksum = sha256_hex(original_bytes)
            self._check_duplicate(checksum)
        except Exception:
            compensation.unwind()
            raise
        return self._process(
            storage_id,
            original_key,
            original_bytes,
            decoded,
            checksum,
            filename,
            uploader_id,
            compensation,
        )

    def reprocess(self, photo_id: str, operator_id: Optional[str] = None) -> IngestResult:
        """Regenerate renditions, histogram and derived fields from the stored original."""
        with self.session_factory() as session:
            photo = session.get(PhotoRow, photo_id)
            if photo is None:
                raise PhotoNotFoundError(f"Photo not found: {photo_id}")
            asset = photo.asset
            if asset is None:
                raise PhotoNotFoundError(f"Original asset not found for photo {photo_id}")
            asset_url = asset.url
            rendition_urls = [row.url for row in photo.renditions]

        storage_id = storage_id_from_key(asset_url)
        if storage_id is None:
            raise IngestError(f"Cannot determine storage id from asset URL: {asset_url}")
        original_key = self.blob_store.key_from_url(asset_url)
        logger.info("Reprocess: photo %s from %s", photo_id, original_key)

        original_bytes = self._storage_call(
            lambda: self.blob_store.get_object(original_key),
            "read-original-reprocess",
            {"photo_id": photo_id, "key": original_key},
        )
        decoded = decode_image(original_bytes)

        try:
            with self.session_factory() as session:
                session.execute(delete(PhotoRenditionRow).where(PhotoRenditionRow.photo_id == photo_id))
                session.execute(delete(PhotoHistogramRow).where(PhotoHistogramRow.photo_id == photo_id))
                session.commit()
        except SQLAlchemyError as exc:
            raise IngestError(f"Failed to clear derived data for photo {photo_id}: {exc}") from exc
        # Old rendition blobs are overwritten by key anyway; failures here are not fatal.
        for url in rendition_urls:
            try:
                self.blob_store.delete_object(self.blob_store.key_from_url(url))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Reprocess: failed to delete old rendition %s: %s", url, exc)
        logger.info("Reprocess: removed %d old renditions", len(rendition_urls))

        detail_url = self._derive_and_publish(
            photo_id, storage_id, decoded, operator_id, Compensation()
        )
        self._invalidate_years()
        logger.info("Reprocess complete: photo %s", photo_id)
        return IngestResult(photo_id=photo_id, detail_url=detail_url)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _process(
        self,
        storage_id: str,
        original_key: str,
        original_bytes: bytes,
        decoded: DecodedImage,
        checksum: str,
        filename: str,
        uploader_id: Optional[str],
        compensation: Compensation,
    ) -> IngestResult:
        exif = extract_exif(original_bytes)
        logger.info(
            "Ingest: decoded %dx%d %s (exif=%s)",
            decoded.width,
            decoded.height,
            decoded.format,
            exif is not None,
        )

        photo_id = str(uuid.uuid4())
        asset_id = str(uuid.uuid4())
        try:
            self._persist_baseline(
                photo_id,
                asset_id,
                original_key,
                original_bytes,
                decoded,
                checksum,
                filename,
                exif,
                uploader_id,
            )
        except SQLAlchemyError as exc:
            if self._claimed_elsewhere(original_key):
                # Another run recorded this original first; its blob is not ours to delete.
                compensation.discard(f"delete original {original_key}")
            compensation.unwind()
            raise IngestError(f"Failed to persist photo record: {exc}") from exc
        compensation.push(
            f"delete records for photo {photo_id}",
            lambda: self._delete_records(photo_id, asset_id),
        )

        detail_url = self._derive_and_publish(
            photo_id, storage_id, decoded, uploader_id, compensation
        )
        self._invalidate_years()
        if exif is not None and exif.has_gps:
            self._enqueue_geocode(photo_id, exif, uploader_id)
        logger.info("Ingest complete: photo %s", photo_id)
        return IngestResult(photo_id=photo_id, detail_url=detail_url)

    def _persist_baseline(
        self,
        photo_id: str,
        asset_id: str,
        original_key: str,
        original_bytes: bytes,
        decoded: DecodedImage,
        checksum: str,
        filename: str,
        exif: Optional[ExifData],
        user_id: Optional[str],
    ) -> None:
        width, height = decoded.width, decoded.height
        with self.session_factory() as session:
            session.add(
                AssetRow(
                    id=asset_id,
                    kind="image",
                    url=self.blob_store.public_url(original_key),
                    width=width,
                    height=height,
                    file_size=len(original_bytes),
                    checksum=checksum,
                    created_by=user_id,
                    updated_by=user_id,
                )
            )
            session.flush()
            session.add(
                PhotoRow(
                    id=photo_id,
                    title=derive_title(filename),
                    description=exif.description if exif else None,
                    captured_at=exif.datetime_original if exif else None,
                    uploaded_at=datetime.now(timezone.utc),
                    asset_original_id=asset_id,
                    width=width,
                    height=height,
                    aspect_ratio=aspect_ratio_text(width, height),
                    orientation=derive_orientation(width, height),
                    latitude=exif.gps_lat if exif else None,
                    longitude=exif.gps_lon if exif else None,
                    megapixels=megapixels_text(width, height),
                    is_visible=False,
                    status="draft",
                    visibility="private",
                    created_by=user_id,
                    updated_by=user_id,
                )
            )
            session.commit()

        if exif is None:
            return
        try:
            with self.session_factory() as session:
                session.add(_exif_row(photo_id, exif, user_id))
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to insert EXIF for photo %s, continuing: %s", photo_id, exc)

    def _derive_and_publish(
        self,
        photo_id: str,
        storage_id: str,
        decoded: DecodedImage,
        user_id: Optional[str],
        compensation: Compensation,
    ) -> str:
        try:
            renditions = [
                self._generate_rendition(decoded, storage_id, spec)
                for spec in self.settings.renditions
            ]
            by_name = {rendition.name: rendition for rendition in renditions}
            detail = by_name.get("detail")
            listing = by_name.get("list")
            if detail is None or listing is None:
                raise IngestError("Missing required renditions for derived data computation")

            self._upload_renditions(photo_id, storage_id, renditions, compensation)
            self._persist_renditions(photo_id, renditions, user_id)
            derived = self._compute_derived(detail, listing)
        except Exception as exc:
            failed = compensation.unwind()
            if failed:
                logger.error("Rollback for photo %s left behind: %s", photo_id, failed)
            if isinstance(exc, IngestError):
                raise
            raise IngestError(f"Processing failed for photo {photo_id}: {exc}") from exc

        self._persist_histogram(photo_id, derived.histogram, user_id)
        self._publish(photo_id, derived, user_id)
        compensation.clear()
        return detail.url

    def _generate_rendition(
        self, decoded: DecodedImage, storage_id: str, spec: RenditionSpec
    ) -> GeneratedRendition:
        logger.debug("Generating %s rendition", spec.name)
        rendered = resize_and_encode(decoded.image, spec.max_size, spec.quality)
        key = build_rendition_key(storage_id, spec.name)
        return GeneratedRendition(
            name=spec.name,
            data=rendered.data,
            width=rendered.width,
            height=rendered.height,
            file_size=len(rendered.data),
            checksum=sha256_hex(rendered.data),
            key=key,
            url=self.blob_store.public_url(key),
        )

    def _upload_renditions(
        self,
        photo_id: str,
        storage_id: str,
        renditions: list[GeneratedRendition],
        compensation: Compensation,
    ) -> None:
        for rendition in renditions:
            result = with_retry(
                lambda: self.blob_store.put_object(rendition.key, rendition.data, JPEG_CONTENT_TYPE),
                policy=self.storage_retry,
                operation_name=f"upload-{rendition.name}",
                context={"storage_id": storage_id, "key": rendition.key},
                **self._retry_kwargs,
            )
            if not result.ok:
                raise IngestError(
                    f"Failed to upload {rendition.name} rendition for photo {photo_id} after "
                    f"{result.attempts} attempts: {result.error}"
                ) from result.error
            key = rendition.key
            compensation.push(
                f"delete rendition {key}", lambda key=key: self.blob_store.delete_object(key)
            )

    def _persist_renditions(
        self, photo_id: str, renditions: list[GeneratedRendition], user_id: Optional[str]
    ) -> None:
        try:
            with self.session_factory() as session:
                session.add_all(
                    PhotoRenditionRow(
                        photo_id=photo_id,
                        variant_name=rendition.name,
                        url=rendition.url,
                        width=rendition.width,
                        height=rendition.height,
                        file_size=rendition.file_size,
                        checksum=rendition.checksum,
                        created_by=user_id,
                        updated_by=user_id,
                    )
                    for rendition in renditions
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to insert renditions for photo %s, continuing: %s", photo_id, exc)

    def _compute_derived(
        self, detail: GeneratedRendition, listing: GeneratedRendition
    ) -> DerivedData:
        components_x, components_y = self.settings.blurhash_components
        derived = DerivedData(
            histogram=compute_histogram(detail.data),
            dominant_color=rgb_to_hex(compute_dominant_color(detail.data)),
            blurhash=compute_perceptual_hash(listing.data, components_x, components_y),
        )
        logger.info(
            "Derived data: dominant=%s blurhash=%d chars range=%s",
            derived.dominant_color,
            len(derived.blurhash),
            derived.dynamic_range_usage,
        )
        return derived

    def _persist_histogram(
        self, photo_id: str, histogram: HistogramData, user_id: Optional[str]
    ) -> None:
        try:
            with self.session_factory() as session:
                session.add(
                    PhotoHistogramRow(
                        photo_id=photo_id,
                        bins=histogram.bins,
                        counts_luma=histogram.counts_luma,
                        counts_red=histogram.counts_red,
                        counts_green=histogram.counts_green,
                        counts_blue=histogram.counts_blue,
                        highlights_pct=round(histogram.highlights_pct, 2),
                        shadows_pct=round(histogram.shadows_pct, 2),
                        created_by=user_id,
                        updated_by=user_id,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to insert histogram for photo %s, continuing: %s", photo_id, exc)

    def _publish(self, photo_id: str, derived: DerivedData, user_id: Optional[str]) -> None:
        try:
            with self.session_factory() as session:
                photo = session.get(PhotoRow, photo_id)
                if photo is None:
                    logger.warning("Photo %s vanished before publishing", photo_id)
                    return
                photo.dominant_color = derived.dominant_color
                photo.blurhash = derived.blurhash
                photo.dynamic_range_usage = derived.dynamic_range_usage
                photo.status = "published"
                photo.visibility = "public"
                photo.is_visible = True
                photo.updated_by = user_id
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to publish photo %s, continuing: %s", photo_id, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_size(self, data: bytes) -> None:
        if len(data) > self.settings.max_upload_bytes:
            limit_mb = self.settings.max_upload_bytes / 1024 / 1024
            raise PayloadTooLargeError(f"File size exceeds {limit_mb:g}MB limit")

    def _original_owner(self, original_key: str) -> Optional[str]:
        """Id of the asset already recorded for ``original_key``, if any."""
        url = self.blob_store.public_url(original_key)
        with self.session_factory() as session:
            return session.scalars(select(AssetRow.id).where(AssetRow.url == url)).first()

    def _claimed_elsewhere(self, original_key: str) -> bool:
        try:
            return self._original_owner(original_key) is not None
        except SQLAlchemyError as exc:
            logger.warning("Could not check ownership of %s: %s", original_key, exc)
            return False

    def _check_original_unclaimed(self, original_key: str) -> None:
        asset_id = self._original_owner(original_key)
        if asset_id is None:
            return
        with self.session_factory() as session:
            photo_id = session.scalars(
                select(PhotoRow.id).where(PhotoRow.asset_original_id == asset_id)
            ).first()
        raise DuplicatePhotoError("This upload has already been processed.", photo_id=photo_id)

    def _check_duplicate(self, checksum: str) -> None:
        with self.session_factory() as session:
            asset = session.scalars(select(AssetRow).where(AssetRow.checksum == checksum)).first()
            if asset is None:
                return
            photo_id = asset.photos[0].id if asset.photos else None
        raise DuplicatePhotoError("This image has already been uploaded.", photo_id=photo_id)

    def _storage_call(self, operation: Callable[[], Any], name: str, context: dict) -> Any:
        result = with_retry(
            operation,
            policy=self.storage_retry,
            operation_name=name,
            context=context,
            **self._retry_kwargs,
        )
        if not result.ok:
            raise StorageError(
                f"{name} failed after {result.attempts} attempts: {result.error}"
            ) from result.error
        return result.value

    def _delete_records(self, photo_id: str, asset_id: str) -> None:
        with self.session_factory() as session:
            session.execute(delete(PhotoHistogramRow).where(PhotoHistogramRow.photo_id == photo_id))
            session.execute(delete(PhotoRenditionRow).where(PhotoRenditionRow.photo_id == photo_id))
            session.execute(delete(PhotoExifRow).where(PhotoExifRow.photo_id == photo_id))
            session.execute(delete(PhotoRow).where(PhotoRow.id == photo_id))
            session.execute(delete(AssetRow).where(AssetRow.id == asset_id))
            session.commit()

    def _invalidate_years(self) -> None:
        if self.year_cache is None:
            return
        try:
            self.year_cache.invalidate()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to invalidate photo year cache: %s", exc)

    def _enqueue_geocode(self, photo_id: str, exif: ExifData, user_id: Optional[str]) -> None:
        if self.geocode_queue is None or exif.gps_lat is None or exif.gps_lon is None:
            return
        try:
            self.geocode_queue.enqueue(photo_id, exif.gps_lat, exif.gps_lon, user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to enqueue geocoding for photo %s: %s", photo_id, exc)


def _exif_row(photo_id: str, exif: ExifData, user_id: Optional[str]) -> PhotoExifRow:
    return PhotoExifRow(
        photo_id=photo_id,
        camera_make=exif.camera_make,
        camera_model=exif.camera_model,
        lens_model=exif.lens_model,
        focal_length_mm=exif.focal_length_mm,
        aperture=exif.aperture,
        shutter_s=exif.shutter_s,
        iso=exif.iso,
        exposure_compensation_ev=exif.exposure_compensation_ev,
        metering_mode=exif.metering_mode,
        white_balance_mode=exif.white_balance_mode,
        shooting_mode=exif.shooting_mode,
        exif_datetime_original=exif.datetime_original,
        color_space=exif.color_space,
        bit_depth=exif.bit_depth,
        created_by=user_id,
        updated_by=user_id,
    )
