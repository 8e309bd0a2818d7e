from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from photo_library.core.models import GeocodedLocation
from photo_library.core.settings import GeocoderSettings

logger = logging.getLogger(__name__)

FEATURE_TYPES = "country,region,place,locality,neighborhood"


class ReverseGeocoder(Protocol):
    def reverse_geocode(
        self, latitude: float, longitude: float, token: str
    ) -> Optional[GeocodedLocation]: ...


def _context_value(feature: dict[str, Any], type_prefix: str) -> Optional[str]:
    place_types = feature.get("place_type") or []
    if any(str(t).startswith(type_prefix) for t in place_types):
        return feature.get("text") or None
    for item in feature.get("context") or []:
        if str(item.get("id", "")).startswith(type_prefix):
            return item.get("text") or None
    return None


def parse_mapbox_response(data: dict[str, Any]) -> Optional[GeocodedLocation]:
    """Normalise the most specific (first) feature of a Mapbox reverse lookup."""
    features = data.get("features") or []
    if not features:
        return None
    feature = features[0]
    city = _context_value(feature, "place") or _context_value(feature, "locality")
    place_name = _context_value(feature, "neighborhood") or feature.get("text") or None
    return GeocodedLocation(
        country=_context_value(feature, "country"),
        region=_context_value(feature, "region"),
        city=city,
        place_name=place_name,
    )


class MapboxGeocoder:
    """Reverse geocoder backed by the Mapbox places API.

    Raises on HTTP and network errors so callers can retry; returns None when
    Mapbox has no feature for the coordinates.
    """

    def __init__(
        self, settings: Optional[GeocoderSettings] = None, client: Optional[httpx.Client] = None
    ):
        self.settings = settings or GeocoderSettings.from_env()
        self.client = client or httpx.Client(timeout=self.settings.timeout)

    def reverse_geocode(
        self, latitude: float, longitude: float, token: str
    ) -> Optional[GeocodedLocation]:
        url = f"{self.settings.base_url.rstrip('/')}/{longitude},{latitude}.json"
        try:
            response = self.client.get(
                url,
                params={"access_token": token, "language": "en", "types": FEATURE_TYPES},
                headers={"Accept": "application/json"},
                timeout=self.settings.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TimeoutError(
                f"Mapbox request timed out after {self.settings.timeout * 1000:.0f}ms"
            ) from exc
        response.raise_for_status()
        return parse_mapbox_response(response.json())

    def close(self) -> None:
        self.client.close()
