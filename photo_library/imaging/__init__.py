"""Pure image functions: decoding, renditions, histograms and hashes."""

from .blurhash import encode as encode_blurhash
from .hashing import is_sha256_hex, sha256_hex
from .histogram import compute_histogram
from .transform import (
    DecodedImage,
    RenderedImage,
    compute_dominant_color,
    compute_perceptual_hash,
    decode_image,
    ensure_supported_type,
    fit_inside,
    resize_and_encode,
    rgb_to_hex,
)

__all__ = [
    "DecodedImage",
    "RenderedImage",
    "compute_dominant_color",
    "compute_histogram",
    "compute_perceptual_hash",
    "decode_image",
    "encode_blurhash",
    "ensure_supported_type",
    "fit_inside",
    "is_sha256_hex",
    "resize_and_encode",
    "rgb_to_hex",
    "sha256_hex",
]
