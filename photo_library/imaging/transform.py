from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, Union

import numpy as np
from PIL import Image, ImageCms, ImageOps, UnidentifiedImageError

from photo_library.core.errors import ImageDecodeError, UnsupportedImageTypeError

from . import blurhash

logger = logging.getLogger(__name__)

BLURHASH_SAMPLE_SIZE = 32

ImageSource = Union[bytes, Image.Image]


@dataclass
class DecodedImage:
    image: Image.Image
    format: str
    content_type: str
    width: int
    height: int


@dataclass
class RenderedImage:
    data: bytes
    width: int
    height: int


def decode_image(data: bytes) -> DecodedImage:
    """Fully decode ``data`` and apply the embedded EXIF orientation.

    Raises ImageDecodeError for bytes Pillow cannot read (or that lack
    dimensions); the format is reported, not judged, here.
    """
    if not data:
        raise ImageDecodeError("Empty image payload.")
    try:
        with Image.open(BytesIO(data)) as raw:
            fmt = (raw.format or "").upper()
            raw.load()
            image = ImageOps.exif_transpose(raw)
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Unable to decode image: {exc}") from exc
    except (OSError, SyntaxError, ValueError, EOFError) as exc:
        raise ImageDecodeError(f"Image data is malformed or truncated: {exc}") from exc

    width, height = image.size
    if not width or not height:
        raise ImageDecodeError("Unable to read image dimensions.")
    content_type = f"image/{fmt.lower()}" if fmt else ""
    return DecodedImage(
        image=image, format=fmt, content_type=content_type, width=width, height=height
    )


def ensure_supported_type(
    declared_type: str | None, sniffed_type: str | None, accepted: Iterable[str]
) -> str:
    """Return the accepted content type, preferring the one sniffed from the bytes."""
    accepted_set = set(accepted)
    if sniffed_type and sniffed_type in accepted_set:
        return sniffed_type
    if declared_type and declared_type.lower() in accepted_set:
        return declared_type.lower()
    raise UnsupportedImageTypeError("Unsupported file type. Allowed: JPEG, PNG, WebP.")


def to_srgb(image: Image.Image) -> Image.Image:
    """Return an RGB copy of ``image`` in the sRGB colour space."""
    icc_profile = image.info.get("icc_profile")
    if icc_profile and image.mode in ("RGB", "RGBA", "CMYK", "L"):
        try:
            source = ImageCms.ImageCmsProfile(BytesIO(icc_profile))
            target = ImageCms.createProfile("sRGB")
            base = image.convert("RGB") if image.mode in ("RGBA", "L") else image
            return ImageCms.profileToProfile(base, source, target, outputMode="RGB")
        except (ImageCms.PyCMSError, OSError, ValueError) as exc:
            logger.debug("ICC conversion failed, falling back to plain RGB: %s", exc)
    if image.mode == "RGB":
        return image.copy()
    return image.convert("RGB")


def prepare_image(source: ImageSource) -> Image.Image:
    """Decode (when given bytes), auto-orient and normalise to sRGB."""
    if isinstance(source, Image.Image):
        return to_srgb(source)
    return to_srgb(decode_image(source).image)


def fit_inside(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale (width, height) to fit a max_dimension box; never enlarges."""
    if max_dimension <= 0:
        raise ValueError("max_dimension must be positive")
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / longest
    return max(1, min(max_dimension, round(width * scale))), max(
        1, min(max_dimension, round(height * scale))
    )


def resize_and_encode(source: ImageSource, max_dimension: int, quality: int) -> RenderedImage:
    """Render a JPEG that fits inside ``max_dimension`` at ``quality`` (0-100).

    ``source`` is never mutated, so one decoded original can feed every tier.
    """
    if not 0 <= quality <= 100:
        raise ValueError("JPEG quality must be between 0 and 100")
    image = prepare_image(source)
    target = fit_inside(image.width, image.height, max_dimension)
    if target != image.size:
        image = image.resize(target, Image.Resampling.LANCZOS, reducing_gap=3.0)

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True, progressive=True)
    return RenderedImage(data=buffer.getvalue(), width=image.width, height=image.height)


def compute_dominant_color(source: ImageSource) -> tuple[int, int, int]:
    """Most populated bin of a 16x16x16 RGB histogram, reported as the bin centre."""
    pixels = np.asarray(prepare_image(source), dtype=np.uint8).reshape(-1, 3)
    if pixels.size == 0:
        return (0, 0, 0)
    quantised = (pixels >> 4).astype(np.int64)
    bins = (quantised[:, 0] << 8) | (quantised[:, 1] << 4) | quantised[:, 2]
    counts = np.bincount(bins, minlength=4096)
    best = int(np.argmax(counts))
    return (((best >> 8) & 0xF) * 16 + 8, ((best >> 4) & 0xF) * 16 + 8, (best & 0xF) * 16 + 8)


def rgb_to_hex(rgb: tuple[int, int, int]) -> str:
    r, g, b = (max(0, min(255, int(round(c)))) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def compute_perceptual_hash(
    source: ImageSource, components_x: int = 4, components_y: int = 3
) -> str:
    """Blurhash of the image scaled to fit inside a 32x32 box."""
    image = prepare_image(source).convert("RGBA")
    scale = BLURHASH_SAMPLE_SIZE / max(image.width, image.height)
    size = (
        max(1, min(BLURHASH_SAMPLE_SIZE, round(image.width * scale))),
        max(1, min(BLURHASH_SAMPLE_SIZE, round(image.height * scale))),
    )
    sample = image.resize(size, Image.Resampling.BILINEAR)
    return blurhash.encode(np.asarray(sample, dtype=np.uint8), components_x, components_y)
