from datetime import datetime, timedelta, timezone

from PIL import Image
from PIL.TiffImagePlugin import IFDRational

from conftest import make_image_bytes
from photo_library.ingest.exif_reader import (
    _convert_gps_coordinate,
    _parse_datetime,
    _to_float,
    extract_exif,
)


def _camera_exif() -> Image.Exif:
    exif = Image.Exif()
    exif[36867] = "2021:01:02 03:04:05"
    exif[36881] = "+02:00"  # OffsetTimeOriginal
    exif[271] = "TestMake"
    exif[272] = "TestModel"
    exif[270] = "Harbour at dawn"
    exif[33434] = (1, 60)  # ExposureTime 1/60s
    exif[33437] = (4, 1)  # FNumber f/4
    exif[34855] = 200  # ISO
    exif[37386] = (35, 1)  # FocalLength 35mm
    exif[37383] = 5  # MeteringMode
    exif[41987] = 0  # WhiteBalance
    exif[40961] = 1  # ColorSpace
    exif[42036] = "TestLens"
    return exif


def test_extract_exif_reads_camera_fields() -> None:
    exif = extract_exif(make_image_bytes(exif=_camera_exif()))
    assert exif is not None
    assert exif.camera_make == "TestMake"
    assert exif.camera_model == "TestModel"
    assert exif.lens_model == "TestLens"
    assert exif.description == "Harbour at dawn"
    assert exif.iso == 200
    assert exif.focal_length_mm == 35.0
    assert exif.aperture == 4.0
    assert exif.shutter_s == 1 / 60
    assert exif.metering_mode == "Pattern"
    assert exif.white_balance_mode == "Auto"
    assert exif.color_space == "sRGB"
    assert not exif.has_gps


def test_extract_exif_applies_offset_time() -> None:
    exif = extract_exif(make_image_bytes(exif=_camera_exif()))
    assert exif is not None
    expected = datetime(2021, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=2)))
    assert exif.datetime_original == expected
    assert exif.datetime_original.astimezone(timezone.utc).hour == 1


def test_extract_exif_without_metadata_returns_none() -> None:
    assert extract_exif(make_image_bytes()) is None
    assert extract_exif(make_image_bytes(fmt="PNG")) is None


def test_extract_exif_tolerates_garbage() -> None:
    assert extract_exif(b"definitely not an image") is None
    assert extract_exif(b"") is None


def test_extract_exif_ignores_unparseable_dates() -> None:
    exif = Image.Exif()
    exif[36867] = "not a date"
    exif[271] = "Make"
    parsed = extract_exif(make_image_bytes(exif=exif))
    assert parsed is not None
    assert parsed.datetime_original is None
    assert parsed.camera_make == "Make"


def test_convert_gps_coordinate_applies_hemisphere() -> None:
    lat = _convert_gps_coordinate((40.0, 42.0, 46.08), "N")
    lon = _convert_gps_coordinate((74.0, 0.0, 21.6), "W")
    assert lat is not None and abs(lat - 40.7128) < 1e-4
    assert lon is not None and abs(lon + 74.006) < 1e-4
    assert _convert_gps_coordinate((33.0, 52.0, 0.0), b"S") < 0


def test_convert_gps_coordinate_rejects_incomplete_values() -> None:
    assert _convert_gps_coordinate((40.0, 42.0), "N") is None
    assert _convert_gps_coordinate((40.0, 42.0, 1.0), None) is None
    assert _convert_gps_coordinate(((1, 0), 0.0, 0.0), "N") is None


def test_to_float_handles_rationals() -> None:
    assert _to_float(IFDRational(1, 4)) == 0.25
    assert _to_float((3, 2)) == 1.5
    assert _to_float(IFDRational(1, 0)) is None
    assert _to_float("1.5") is None


def test_parse_datetime_defaults_to_utc() -> None:
    parsed = _parse_datetime("2019:07:04 18:30:00")
    assert parsed == datetime(2019, 7, 4, 18, 30, tzinfo=timezone.utc)
    assert _parse_datetime("2019:07:04 18:30:00", "-05:30").utcoffset() == timedelta(
        hours=-5, minutes=-30
    )
    assert _parse_datetime("2019:07:04 18:30:00", "bogus").tzinfo == timezone.utc
    assert _parse_datetime("") is None
