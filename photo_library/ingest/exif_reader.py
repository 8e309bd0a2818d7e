from __future__ import annotations

import logging
import math
import numbers
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Optional

from PIL import Image

from photo_library.core.models import ExifData

logger = logging.getLogger(__name__)

EXIF_IFD_TAG = 34665  # ExifOffset
GPS_INFO_TAG = 34853  # GPSInfo
IMAGE_DESCRIPTION_TAG = 270
MAKE_TAG = 271
MODEL_TAG = 272
BITS_PER_SAMPLE_TAG = 258
DATETIME_TAG = 306  # DateTime fallback
EXPOSURE_TIME_TAG = 33434
FNUMBER_TAG = 33437
ISO_TAG = 34855  # PhotographicSensitivity
DATETIME_ORIGINAL_TAG = 36867
OFFSET_TIME_ORIGINAL_TAG = 36881
EXPOSURE_BIAS_TAG = 37380
METERING_MODE_TAG = 37383
FOCAL_LENGTH_TAG = 37386
COLOR_SPACE_TAG = 40961
WHITE_BALANCE_TAG = 41987
SCENE_CAPTURE_TYPE_TAG = 41990
LENS_MODEL_TAG = 42036

METERING_MODES = {
    0: "Unknown",
    1: "Average",
    2: "CenterWeightedAverage",
    3: "Spot",
    4: "MultiSpot",
    5: "Pattern",
    6: "Partial",
    255: "Other",
}
WHITE_BALANCE_MODES = {0: "Auto", 1: "Manual"}
SCENE_CAPTURE_TYPES = {0: "Standard", 1: "Landscape", 2: "Portrait", 3: "Night"}
COLOR_SPACES = {1: "sRGB", 2: "Adobe RGB", 65535: "Uncalibrated"}


def _to_float(value: object) -> Optional[float]:
    if isinstance(value, tuple) and len(value) == 2:
        if not value[1]:
            return None
        return float(value[0]) / float(value[1])
    if isinstance(value, numbers.Real):
        result = float(value)
        # IFDRational with a zero denominator reports NaN.
        return None if math.isnan(result) else result
    return None


def _to_int(value: object) -> Optional[int]:
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    converted = _to_float(value)
    return int(converted) if converted is not None else None


def _to_text(value: object) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if value is None:
        return None
    text = str(value).replace("\x00", "").strip()
    return text or None


def _convert_gps_coordinate(values: object, ref: object) -> Optional[float]:
    if not isinstance(values, tuple) or len(values) != 3 or ref is None:
        return None
    parts = [_to_float(v) for v in values]
    if any(p is None for p in parts):
        return None
    degrees, minutes, seconds = parts  # type: ignore[misc]
    coordinate = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if isinstance(ref, str) and ref.strip().upper() in {"S", "W"}:
        coordinate *= -1
    return coordinate


def _parse_offset(value: object) -> Optional[timezone]:
    text = _to_text(value)
    if not text or len(text) != 6 or text[0] not in "+-" or text[3] != ":":
        return None
    try:
        hours, minutes = int(text[1:3]), int(text[4:6])
    except ValueError:
        return None
    delta = timedelta(hours=hours, minutes=minutes)
    return timezone(-delta if text[0] == "-" else delta)


def _parse_datetime(value: object, offset: object = None) -> Optional[datetime]:
    text = _to_text(value)
    if not text:
        return None
    try:
        parsed = datetime.strptime(text[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=_parse_offset(offset) or timezone.utc)


def _lookup(table: dict[int, str], value: object) -> Optional[str]:
    code = _to_int(value)
    if code is None:
        return None
    return table.get(code, str(code))


def extract_exif(data: bytes) -> Optional[ExifData]:
    """Best-effort EXIF parse of an encoded image.

    Returns None when the image carries no EXIF at all or when parsing fails
    for any reason; ingestion treats both the same way.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            exif = img.getexif()
            if not exif:
                return None
            tags: dict[int, object] = dict(exif.items())
            tags.update(exif.get_ifd(EXIF_IFD_TAG))
            gps_info = exif.get_ifd(GPS_INFO_TAG)

        gps_lat: Optional[float] = None
        gps_lon: Optional[float] = None
        if gps_info:
            gps_lat = _convert_gps_coordinate(gps_info.get(2), gps_info.get(1))
            gps_lon = _convert_gps_coordinate(gps_info.get(4), gps_info.get(3))
            if gps_lat is None or gps_lon is None:
                gps_lat = gps_lon = None

        iso_raw = tags.get(ISO_TAG)
        result = ExifData(
            camera_make=_to_text(tags.get(MAKE_TAG)),
            camera_model=_to_text(tags.get(MODEL_TAG)),
            lens_model=_to_text(tags.get(LENS_MODEL_TAG)),
            focal_length_mm=_to_float(tags.get(FOCAL_LENGTH_TAG)),
            aperture=_to_float(tags.get(FNUMBER_TAG)),
            shutter_s=_to_float(tags.get(EXPOSURE_TIME_TAG)),
            iso=_to_int(iso_raw),
            exposure_compensation_ev=_to_float(tags.get(EXPOSURE_BIAS_TAG)),
            metering_mode=_lookup(METERING_MODES, tags.get(METERING_MODE_TAG)),
            white_balance_mode=_lookup(WHITE_BALANCE_MODES, tags.get(WHITE_BALANCE_TAG)),
            shooting_mode=_lookup(SCENE_CAPTURE_TYPES, tags.get(SCENE_CAPTURE_TYPE_TAG)),
            datetime_original=_parse_datetime(
                tags.get(DATETIME_ORIGINAL_TAG) or tags.get(DATETIME_TAG),
                tags.get(OFFSET_TIME_ORIGINAL_TAG),
            ),
            gps_lat=gps_lat,
            gps_lon=gps_lon,
            color_space=_lookup(COLOR_SPACES, tags.get(COLOR_SPACE_TAG)),
            bit_depth=_to_int(tags.get(BITS_PER_SAMPLE_TAG)),
            description=_to_text(tags.get(IMAGE_DESCRIPTION_TAG)),
        )
    except Exception as exc:  # noqa: BLE001
        # Ingest never fails because of malformed EXIF.
        logger.warning("Failed to parse EXIF metadata: %s", exc)
        return None

    return None if result.is_empty() else result
