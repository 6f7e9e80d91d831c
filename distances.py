"""
Distance and angle measures between points, plus the histogram-mode
estimator used to infer characteristic spacing from a page's own geometry.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

import numpy as np

from geometry import Point


def euclidean(point1: Point, point2: Point) -> float:
    """Straight-line distance."""
    return math.hypot(point2.x - point1.x, point2.y - point1.y)


def weighted_euclidean(point1: Point, point2: Point, wx: float = 1.0, wy: float = 1.0) -> float:
    """
    Euclidean distance with per-axis weights: sqrt(wx * dx^2 + wy * dy^2).

    A small ``wx`` makes horizontal offsets cheap (neighbours on the same
    baseline win); a large ``wx`` makes them expensive (neighbours stacked
    vertically win).
    """
    dx = point2.x - point1.x
    dy = point2.y - point1.y
    return math.sqrt(wx * dx * dx + wy * dy * dy)


def horizontal(point1: Point, point2: Point) -> float:
    """Signed horizontal distance from point1 to point2."""
    return point2.x - point1.x


def vertical(point1: Point, point2: Point) -> float:
    """Signed vertical distance from point1 to point2."""
    return point2.y - point1.y


def angle(point1: Point, point2: Point) -> float:
    """Angle of the vector point1 -> point2 in degrees, in [-180, 180]."""
    return math.degrees(math.atan2(point2.y - point1.y, point2.x - point1.x))


def peak_average_distance(distances: Iterable[float]) -> Optional[float]:
    """
    Mean of the most populated unit-width histogram bucket.

    Each distance is bucketed by ``floor(value)``. When several buckets share
    the highest count, the bucket with the smallest key wins. Non-finite
    samples are ignored.

    Returns
    -------
    Optional[float]
        ``None`` when there are no usable samples.
    """
    values = np.fromiter(distances, dtype=np.float64)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return None

    keys = np.floor(values).astype(np.int64)
    # np.unique sorts the keys, and argmax returns the first maximum
    buckets, counts = np.unique(keys, return_counts=True)
    peak = buckets[int(np.argmax(counts))]
    return float(values[keys == peak].mean())


__all__ = [
    "angle",
    "euclidean",
    "horizontal",
    "peak_average_distance",
    "vertical",
    "weighted_euclidean",
]
