"""Reverse geocoding of photo GPS coordinates."""

from .geocoder import MapboxGeocoder, ReverseGeocoder, parse_mapbox_response
from .tasks import GeocodeQueue, execute_geocode_task, run_geocode_task

__all__ = [
    "GeocodeQueue",
    "MapboxGeocoder",
    "ReverseGeocoder",
    "execute_geocode_task",
    "parse_mapbox_response",
    "run_geocode_task",
]
