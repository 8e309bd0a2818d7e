from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ExifData(BaseModel):
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    focal_length_mm: Optional[float] = None
    aperture: Optional[float] = None
    shutter_s: Optional[float] = None
    iso: Optional[int] = None
    exposure_compensation_ev: Optional[float] = None
    metering_mode: Optional[str] = None
    white_balance_mode: Optional[str] = None
    shooting_mode: Optional[str] = None
    datetime_original: Optional[datetime] = None
    gps_lat: Optional[float] = None
    gps_lon: Optional[float] = None
    color_space: Optional[str] = None
    bit_depth: Optional[int] = None
    description: Optional[str] = None

    @property
    def has_gps(self) -> bool:
        return self.gps_lat is not None and self.gps_lon is not None

    def is_empty(self) -> bool:
        return not any(value is not None for value in self.model_dump().values())


class HistogramData(BaseModel):
    """256-bucket luma and per-channel counts over a raw RGB pixel buffer."""

    bins: int = 256
    counts_luma: list[int]
    counts_red: list[int]
    counts_green: list[int]
    counts_blue: list[int]
    highlights_pct: float
    shadows_pct: float
    total_pixels: int

    @property
    def dynamic_range_usage(self) -> float:
        return max(0.0, 100.0 - self.highlights_pct - self.shadows_pct)


class GeocodedLocation(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    place_name: Optional[str] = None


class IngestResult(BaseModel):
    photo_id: str
    detail_url: str


class Rendition(BaseModel):
    variant_name: str
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    checksum: Optional[str] = None


class Histogram(BaseModel):
    bins: int
    counts_luma: list[int]
    counts_red: list[int]
    counts_green: list[int]
    counts_blue: list[int]
    highlights_pct: Optional[float] = None
    shadows_pct: Optional[float] = None


class Tag(BaseModel):
    id: str
    name: str
    slug: Optional[str] = None
    color: Optional[str] = None


class PhotoDetail(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    captured_at: Optional[datetime] = None
    uploaded_at: datetime
    original_url: Optional[str] = None
    original_checksum: Optional[str] = None
    width: int
    height: int
    aspect_ratio: Optional[str] = None
    orientation: Optional[str] = None
    place_name: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    dominant_color: Optional[str] = None
    blurhash: Optional[str] = None
    megapixels: Optional[str] = None
    dynamic_range_usage: Optional[str] = None
    is_visible: bool = False
    status: str = "draft"
    visibility: str = "private"
    renditions: list[Rendition] = Field(default_factory=list)
    exif: Optional[ExifData] = None
    histogram: Optional[Histogram] = None
    tags: list[Tag] = Field(default_factory=list)


class DuplicateMatch(BaseModel):
    photo_id: str
    title: Optional[str] = None
    thumb_url: Optional[str] = None
