"""
Per-region image features.

Every feature is a scalar roughly in [0, 1] computed from the RGB pixels of a
region's bounding box crop.
"""

from dataclasses import dataclass

import cv2
import numpy as np

from parkspace.config import (
    NOISE_FLOOR, EDGE_MAGNITUDE_FLOOR, OCCUPANCY_THRESHOLD,
    EDGE_DENSITY_THRESHOLD, TEXTURE_COMPLEXITY_THRESHOLD, COLOR_VARIANCE_THRESHOLD
)

# 8-neighbourhood offsets (dy, dx) walked clockwise from the top-left corner
_RING = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))


@dataclass(frozen=True)
class RegionFeatures:
    non_zero_count: int
    coverage: float
    brightness: float
    edge_density: float
    texture_complexity: float
    color_variance: float
    shadow_score: float
    dynamic_threshold: float


def to_luma(pixels: np.ndarray) -> np.ndarray:
    """ITU-R 601 luma (0-255) as float32."""
    rgb = pixels[:, :, :3].astype(np.float32)
    return 0.299 * rgb[:, :, 0] + 0.587 * rgb[:, :, 1] + 0.114 * rgb[:, :, 2]


def count_non_zero(pixels: np.ndarray) -> int:
    """Pixels where any channel rises above the noise floor."""
    return int(np.count_nonzero(np.any(pixels[:, :, :3] > NOISE_FLOOR, axis=2)))


def brightness(luma: np.ndarray) -> float:
    return float(luma.mean() / 255.0)


def edge_density(luma: np.ndarray) -> float:
    """Sum of significant Sobel magnitudes, normalized by pixel count x 255."""
    h, w = luma.shape
    if h < 3 or w < 3:
        return 0.0
    gx = cv2.Sobel(luma, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(luma, cv2.CV_32F, 0, 1, ksize=3)
    magnitude = cv2.magnitude(gx, gy)

    # Only interior pixels have a full 3x3 neighbourhood
    interior = magnitude[1:-1, 1:-1]
    strength = float(interior[interior > EDGE_MAGNITUDE_FLOOR].sum())
    return strength / (h * w * 255.0)


def texture_complexity(luma: np.ndarray) -> float:
    """Fraction of interior pixels whose local binary pattern is uniform.

    A pattern is uniform when walking the 8-neighbour ring flips between
    brighter/not-brighter at most twice.
    """
    h, w = luma.shape
    if h < 3 or w < 3:
        return 0.0

    center = luma[1:-1, 1:-1]
    bits = [
        luma[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx] > center
        for dy, dx in _RING
    ]
    transitions = np.zeros(center.shape, dtype=np.uint8)
    for i in range(8):
        transitions += bits[i] != bits[(i + 1) % 8]

    return float(np.count_nonzero(transitions <= 2) / center.size)


def color_variance(pixels: np.ndarray) -> float:
    """Mean of per-channel population variances, normalized by 255^2."""
    rgb = pixels[:, :, :3].reshape(-1, 3).astype(np.float64)
    return float(rgb.var(axis=0).mean() / (255.0 * 255.0))


def shadow_score(edges: float, texture: float, colors: float, light: float) -> float:
    """Shadow likelihood from already computed features.

    Flat, untextured, low-variance and dark regions score high.
    """
    edge_score = max(0.0, 1 - edges / (EDGE_DENSITY_THRESHOLD * 1.5))
    texture_score = max(0.0, 1 - texture / (TEXTURE_COMPLEXITY_THRESHOLD * 1.5))
    color_score = max(0.0, 1 - colors / (COLOR_VARIANCE_THRESHOLD * 1.5))
    brightness_score = max(0.0, 1 - light / 0.5)
    return edge_score * 0.4 + texture_score * 0.3 + color_score * 0.2 + brightness_score * 0.1


def dynamic_threshold(light: float, colors: float) -> float:
    # Darker and more colorful scenes produce more false positives
    return OCCUPANCY_THRESHOLD * (1 + (0.5 - light)) * (1 + colors)


def extract_features(pixels: np.ndarray) -> RegionFeatures:
    """Compute all features for a region crop (H x W x 3 or 4, uint8)."""
    h, w = pixels.shape[:2]
    if h == 0 or w == 0:
        raise ValueError("Cannot extract features from an empty crop")

    luma = to_luma(pixels)
    non_zero = count_non_zero(pixels)
    light = brightness(luma)
    edges = edge_density(luma)
    texture = texture_complexity(luma)
    colors = color_variance(pixels)

    return RegionFeatures(
        non_zero_count=non_zero,
        coverage=non_zero / (h * w),
        brightness=light,
        edge_density=edges,
        texture_complexity=texture,
        color_variance=colors,
        shadow_score=shadow_score(edges, texture, colors, light),
        dynamic_threshold=dynamic_threshold(light, colors)
    )
