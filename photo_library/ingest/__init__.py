"""Ingest pipeline: EXIF extraction, renditions, derived data and publishing."""

from .compensation import Compensation
from .exif_reader import extract_exif
from .pipeline import PhotoPipeline, derive_orientation, derive_title, needs_reprocessing

__all__ = [
    "Compensation",
    "PhotoPipeline",
    "derive_orientation",
    "derive_title",
    "extract_exif",
    "needs_reprocessing",
]
