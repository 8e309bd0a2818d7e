"""Blurhash encoder over an RGB(A) pixel array.

Produces the same strings as the reference encoder (woltapp/blurhash) for the
same pixels: a base83 string made of a size flag, a quantised AC maximum, the
DC colour and one two-character entry per AC component.
"""

from __future__ import annotations

import math

import numpy as np

BASE83_CHARACTERS = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz#$%*+,-.:;=?@[]^_{|}~"
)


def encode83(value: int, length: int) -> str:
    result = []
    for i in range(1, length + 1):
        digit = (value // (83 ** (length - i))) % 83
        result.append(BASE83_CHARACTERS[digit])
    return "".join(result)


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    v = values.astype(np.float64) / 255.0
    return np.where(v <= 0.04045, v / 12.92, ((v + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(value: float) -> int:
    v = max(0.0, min(1.0, value))
    if v <= 0.0031308:
        return int(v * 12.92 * 255 + 0.5)
    return int((1.055 * math.pow(v, 1 / 2.4) - 0.055) * 255 + 0.5)


def _sign_pow(value: float, exponent: float) -> float:
    return math.copysign(math.pow(abs(value), exponent), value)


def _encode_dc(rgb: np.ndarray) -> int:
    r, g, b = (linear_to_srgb(float(c)) for c in rgb)
    return (r << 16) + (g << 8) + b


def _encode_ac(rgb: np.ndarray, maximum_value: float) -> int:
    quant = [
        int(max(0, min(18, math.floor(_sign_pow(float(c) / maximum_value, 0.5) * 9 + 9.5))))
        for c in rgb
    ]
    return quant[0] * 19 * 19 + quant[1] * 19 + quant[2]


def encode(pixels: np.ndarray, components_x: int = 4, components_y: int = 3) -> str:
    """Encode an ``(height, width, 3|4)`` uint8 array; alpha is ignored."""
    if not (1 <= components_x <= 9 and 1 <= components_y <= 9):
        raise ValueError("Blurhash components must be between 1 and 9")
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        raise ValueError("Expected an (height, width, channels) RGB or RGBA array")
    height, width = pixels.shape[:2]
    if width == 0 or height == 0:
        raise ValueError("Cannot encode an empty image")

    linear = srgb_to_linear(pixels[:, :, :3])
    xs = np.arange(width)
    ys = np.arange(height)

    factors: list[np.ndarray] = []
    for j in range(components_y):
        basis_y = np.cos(math.pi * j * ys / height)
        for i in range(components_x):
            basis_x = np.cos(math.pi * i * xs / width)
            basis = np.outer(basis_y, basis_x)
            normalisation = 1.0 if (i == 0 and j == 0) else 2.0
            scale = normalisation / (width * height)
            factors.append(np.einsum("yx,yxc->c", basis, linear) * scale)

    dc = factors[0]
    ac = factors[1:]

    size_flag = (components_x - 1) + (components_y - 1) * 9
    parts = [encode83(size_flag, 1)]

    if ac:
        actual_maximum = max(float(np.max(np.abs(component))) for component in ac)
        quantised_maximum = int(max(0, min(82, math.floor(actual_maximum * 166 - 0.5))))
        maximum_value = (quantised_maximum + 1) / 166
        parts.append(encode83(quantised_maximum, 1))
    else:
        maximum_value = 1.0
        parts.append(encode83(0, 1))

    parts.append(encode83(_encode_dc(dc), 4))
    for component in ac:
        parts.append(encode83(_encode_ac(component, maximum_value), 2))
    return "".join(parts)
