"""Background reverse geocoding for freshly ingested photos.

``GeocodeQueue.enqueue`` hands the work to an executor and returns at once;
the ingestion call never holds the future. ``run_geocode_task`` is the task
body and its own error boundary: nothing it does can raise into a caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional

from sqlalchemy.orm import Session

from photo_library.core.models import GeocodedLocation
from photo_library.core.retry import GEOCODE_RETRY, RetryPolicy, with_retry
from photo_library.core.settings import GeocoderSettings
from photo_library.index.schema import PhotoRow

from .geocoder import MapboxGeocoder, ReverseGeocoder

logger = logging.getLogger(__name__)

LOCATION_FIELDS = ("country", "region", "city", "place_name")


def needs_geocoding(photo: PhotoRow) -> bool:
    return any(not getattr(photo, field) for field in LOCATION_FIELDS)


def location_updates(photo: PhotoRow, geocoded: GeocodedLocation) -> dict[str, str]:
    """Geocoded values for the location fields that are still empty on ``photo``."""
    updates: dict[str, str] = {}
    for field in LOCATION_FIELDS:
        value = getattr(geocoded, field)
        if not getattr(photo, field) and value:
            updates[field] = value
    return updates


def execute_geocode_task(
    session_factory: Callable[[], Session],
    geocoder: ReverseGeocoder,
    token: Optional[str],
    photo_id: str,
    latitude: float,
    longitude: float,
    user_id: Optional[str],
    *,
    policy: RetryPolicy = GEOCODE_RETRY,
    sleep: Optional[Callable[[float], None]] = None,
) -> dict[str, str]:
    """Fill empty location fields of one photo; returns the fields written. May raise."""
    if not token:
        logger.info("Geocode: skipping photo %s, MAPBOX_ACCESS_TOKEN not configured", photo_id)
        return {}

    with session_factory() as session:
        photo = session.get(PhotoRow, photo_id)
        if photo is None:
            raise LookupError(f"Photo not found: {photo_id}")
        if not needs_geocoding(photo):
            logger.info("Geocode: skipping photo %s, all location fields populated", photo_id)
            return {}

    retry_kwargs = {"sleep": sleep} if sleep is not None else {}
    result = with_retry(
        lambda: geocoder.reverse_geocode(latitude, longitude, token),
        policy=policy,
        operation_name="photo-geocode",
        context={"photo_id": photo_id, "latitude": latitude, "longitude": longitude},
        **retry_kwargs,
    )
    if not result.ok:
        raise result.error
    geocoded = result.value
    if geocoded is None:
        logger.info("Geocode: no location returned for photo %s (%s, %s)", photo_id, latitude, longitude)
        return {}

    # Re-read right before writing so an operator edit made during the lookup wins.
    with session_factory() as session:
        photo = session.get(PhotoRow, photo_id)
        if photo is None:
            raise LookupError(f"Photo not found: {photo_id}")
        updates = location_updates(photo, geocoded)
        if not updates:
            logger.info("Geocode: no new location data for photo %s", photo_id)
            return {}
        for field, value in updates.items():
            setattr(photo, field, value)
        photo.updated_by = user_id
        session.commit()

    logger.info("Geocode: updated photo %s with %s", photo_id, updates)
    return updates


def run_geocode_task(
    session_factory: Callable[[], Session],
    geocoder: ReverseGeocoder,
    token: Optional[str],
    photo_id: str,
    latitude: float,
    longitude: float,
    user_id: Optional[str],
    **kwargs,
) -> None:
    """Error boundary around ``execute_geocode_task``; logs every failure, never raises."""
    try:
        execute_geocode_task(
            session_factory, geocoder, token, photo_id, latitude, longitude, user_id, **kwargs
        )
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "Geocode task failed for photo %s (%s, %s): %s: %s",
            photo_id,
            latitude,
            longitude,
            type(exc).__name__,
            exc,
        )


class GeocodeQueue:
    """Fire-and-forget submitter for geocode tasks."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[GeocoderSettings] = None,
        *,
        geocoder: Optional[ReverseGeocoder] = None,
        executor: Optional[Executor] = None,
        policy: RetryPolicy = GEOCODE_RETRY,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or GeocoderSettings.from_env()
        self.geocoder = geocoder or MapboxGeocoder(self.settings)
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(1, self.settings.workers), thread_name_prefix="geocode"
        )
        self.policy = policy
        self.sleep = sleep

    def enqueue(
        self, photo_id: str, latitude: float, longitude: float, user_id: Optional[str]
    ) -> None:
        kwargs = {"policy": self.policy}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        self.executor.submit(
            run_geocode_task,
            self.session_factory,
            self.geocoder,
            self.settings.access_token,
            photo_id,
            latitude,
            longitude,
            user_id,
            **kwargs,
        )
        logger.debug("Geocode: queued photo %s", photo_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=wait)
