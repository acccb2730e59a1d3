#!/usr/bin/env python3
"""
Color conversions and naming for reaction color analysis.

RGB -> HEX / HSL / LAB, CIE76 color difference, and nearest-name lookup
against a small palette of reference colors.
"""

import colorsys
import math
from typing import NamedTuple

import numpy as np
from scipy.spatial.distance import cdist


class RGB(NamedTuple):
    r: int
    g: int
    b: int


class HSL(NamedTuple):
    h: int  # 0-359
    s: int  # 0-100
    l: int  # 0-100


class Lab(NamedTuple):
    l: float
    a: float
    b: float


# D65 reference white
XN, YN, ZN = 0.95047, 1.0, 1.08883

EPSILON = 0.008856
KAPPA = 903.3

# Reference palette for color naming. Order matters: ties go to the first entry.
COLOR_NAMES = {
    '#FF0000': 'Red', '#00FF00': 'Green', '#0000FF': 'Blue',
    '#FFFF00': 'Yellow', '#FF00FF': 'Magenta', '#00FFFF': 'Cyan',
    '#800080': 'Purple', '#FFA500': 'Orange', '#FFC0CB': 'Pink',
    '#A52A2A': 'Brown', '#000000': 'Black', '#FFFFFF': 'White',
    '#808080': 'Gray', '#800000': 'Maroon', '#008000': 'Dark Green',
    '#000080': 'Navy', '#808000': 'Olive', '#4B0082': 'Indigo',
    '#8B4513': 'Saddle Brown', '#2F4F4F': 'Dark Slate Gray',
}


# =============================================================================
# Hex
# =============================================================================

def rgb_to_hex(r: int, g: int, b: int) -> str:
    """Convert an RGB triple to a lowercase ``#rrggbb`` string."""
    return '#' + ''.join(f"{round_half_up(c):02x}" for c in (r, g, b))


def hex_to_rgb(hex_value: str) -> RGB:
    """Parse ``#rrggbb`` (or ``rrggbb``, any case) into an RGB triple."""
    digits = hex_value[1:] if hex_value.startswith('#') else hex_value
    if len(digits) != 6:
        raise ValueError(f"Invalid hex color: {hex_value!r}")
    try:
        return RGB(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
    except ValueError:
        raise ValueError(f"Invalid hex color: {hex_value!r}") from None


# =============================================================================
# HSL
# =============================================================================

def rgb_to_hsl(r: int, g: int, b: int) -> HSL:
    """Convert RGB (0-255) to integer HSL: h in [0, 360), s and l in [0, 100]."""
    # colorsys.rgb_to_hls returns (Hue, Lightness, Saturation), all 0-1
    h, l, s = colorsys.rgb_to_hls(r / 255, g / 255, b / 255)
    return HSL(round_half_up(h * 360) % 360, round_half_up(s * 100), round_half_up(l * 100))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding up."""
    return int(math.floor(value + 0.5))


# =============================================================================
# LAB
# =============================================================================

def rgb_to_lab(rgb: np.ndarray) -> np.ndarray:
    """Convert RGB array (0-255) of shape (n, 3) to LAB color space."""
    rgb_norm = np.asarray(rgb, dtype=np.float64).reshape(-1, 3) / 255.0

    # Apply gamma correction
    mask = rgb_norm > 0.04045
    rgb_linear = np.where(mask, ((rgb_norm + 0.055) / 1.055) ** 2.4, rgb_norm / 12.92)

    # RGB to XYZ matrix
    r, g, b = rgb_linear[:, 0], rgb_linear[:, 1], rgb_linear[:, 2]
    x = r * 0.4124564 + g * 0.3575761 + b * 0.1804375
    y = r * 0.2126729 + g * 0.7151522 + b * 0.0721750
    z = r * 0.0193339 + g * 0.1191920 + b * 0.9503041

    x, y, z = x / XN, y / YN, z / ZN

    fx = np.where(x > EPSILON, np.cbrt(x), (KAPPA * x + 16) / 116)
    fy = np.where(y > EPSILON, np.cbrt(y), (KAPPA * y + 16) / 116)
    fz = np.where(z > EPSILON, np.cbrt(z), (KAPPA * z + 16) / 116)

    L = 116 * fy - 16
    a = 500 * (fx - fy)
    b_val = 200 * (fy - fz)

    return np.column_stack([L, a, b_val])


def rgb_to_lab_tuple(r: int, g: int, b: int) -> Lab:
    """Convert a single RGB triple to a LAB tuple."""
    lab = rgb_to_lab(np.array([[r, g, b]]))[0]
    return Lab(float(lab[0]), float(lab[1]), float(lab[2]))


def color_difference(lab1, lab2) -> float:
    """Delta E (CIE76): Euclidean distance between two LAB colors."""
    return math.sqrt(
        (lab1[0] - lab2[0]) ** 2 +
        (lab1[1] - lab2[1]) ** 2 +
        (lab1[2] - lab2[2]) ** 2
    )


# =============================================================================
# Naming
# =============================================================================

_PALETTE_NAMES = list(COLOR_NAMES.values())
_PALETTE_RGB = np.array([hex_to_rgb(h) for h in COLOR_NAMES], dtype=np.float64)


def get_color_name(hex_value: str) -> str:
    """Name of the palette color nearest to ``hex_value`` in RGB space."""
    rgb = np.array([hex_to_rgb(hex_value)], dtype=np.float64)
    distances = cdist(rgb, _PALETTE_RGB)[0]
    return _PALETTE_NAMES[int(np.argmin(distances))]
