from __future__ import annotations

import numpy as np

from photo_library.core.models import HistogramData

from .transform import ImageSource, prepare_image

BUCKETS = 256
HIGHLIGHT_THRESHOLD = 230
SHADOW_THRESHOLD = 25

# BT.709 luma coefficients.
LUMA_R = 0.2126
LUMA_G = 0.7152
LUMA_B = 0.0722


def luma_values(rgb: np.ndarray) -> np.ndarray:
    """Per-pixel BT.709 luma, rounded half-up and clamped to [0, 255]."""
    weighted = LUMA_R * rgb[:, 0] + LUMA_G * rgb[:, 1] + LUMA_B * rgb[:, 2]
    return np.clip(np.floor(weighted + 0.5), 0, 255).astype(np.int64)


def histogram_from_pixels(rgb: np.ndarray) -> HistogramData:
    """Histogram over an ``(n, 3)`` uint8 array; extra channels must already be dropped."""
    total = int(rgb.shape[0])
    channels = rgb.astype(np.int64)
    luma = luma_values(channels)

    counts_luma = np.bincount(luma, minlength=BUCKETS)
    counts_red = np.bincount(channels[:, 0], minlength=BUCKETS)
    counts_green = np.bincount(channels[:, 1], minlength=BUCKETS)
    counts_blue = np.bincount(channels[:, 2], minlength=BUCKETS)

    highlight_count = int(counts_luma[HIGHLIGHT_THRESHOLD:].sum())
    shadow_count = int(counts_luma[: SHADOW_THRESHOLD + 1].sum())
    highlights_pct = (highlight_count / total) * 100 if total > 0 else 0.0
    shadows_pct = (shadow_count / total) * 100 if total > 0 else 0.0

    return HistogramData(
        bins=BUCKETS,
        counts_luma=[int(v) for v in counts_luma],
        counts_red=[int(v) for v in counts_red],
        counts_green=[int(v) for v in counts_green],
        counts_blue=[int(v) for v in counts_blue],
        highlights_pct=highlights_pct,
        shadows_pct=shadows_pct,
        total_pixels=total,
    )


def compute_histogram(source: ImageSource) -> HistogramData:
    """Luma and R/G/B histograms of every pixel; alpha is ignored."""
    image = prepare_image(source)
    rgb = np.asarray(image, dtype=np.uint8).reshape(-1, 3)
    return histogram_from_pixels(rgb)
