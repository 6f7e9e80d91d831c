"""
Geometry primitives for page layout analysis.

Points and boxes are expressed in page coordinates with the origin at the
bottom-left corner of the page (y grows upwards), the same convention used by
the cell bboxes throughout this repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

Box = Tuple[float, float, float, float]  # (x0, y0, x1, y1)


@dataclass(frozen=True)
class Point:
    """A real-valued point (x, y)."""

    x: float
    y: float


@dataclass(frozen=True)
class LineSegment:
    """Straight segment between two points."""

    point1: Point
    point2: Point

    @property
    def midpoint(self) -> Point:
        return Point((self.point1.x + self.point2.x) / 2, (self.point1.y + self.point2.y) / 2)


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned rectangle.

    Parameters
    ----------
    left / right:
        Horizontal extent, ``left <= right``.
    bottom / top:
        Vertical extent, ``bottom <= top``.

    Inverted extents are the caller's responsibility; the helpers below do
    not reorder them.
    """

    left: float
    bottom: float
    right: float
    top: float

    # ------------------------------------------------------------------ #
    # Named corners
    # ------------------------------------------------------------------ #
    @property
    def bottom_left(self) -> Point:
        return Point(self.left, self.bottom)

    @property
    def bottom_right(self) -> Point:
        return Point(self.right, self.bottom)

    @property
    def top_left(self) -> Point:
        return Point(self.left, self.top)

    @property
    def top_right(self) -> Point:
        return Point(self.right, self.top)

    @property
    def centroid(self) -> Point:
        return Point((self.left + self.right) / 2, (self.bottom + self.top) / 2)

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.top - self.bottom

    # ------------------------------------------------------------------ #
    # Set operations
    # ------------------------------------------------------------------ #
    def union(self, other: "BoundingBox") -> "BoundingBox":
        """Smallest box containing both boxes."""
        return BoundingBox(
            min(self.left, other.left),
            min(self.bottom, other.bottom),
            max(self.right, other.right),
            max(self.top, other.top),
        )

    def intersects_with(self, other: "BoundingBox") -> bool:
        """Closed-interval test: boxes sharing only an edge still intersect."""
        if self.left > other.right or other.left > self.right:
            return False
        if self.top < other.bottom or other.top < self.bottom:
            return False
        return True

    @classmethod
    def from_boxes(cls, boxes: Iterable["BoundingBox"]) -> "BoundingBox":
        """Union of a non-empty collection of boxes."""
        iterator = iter(boxes)
        try:
            result = next(iterator)
        except StopIteration:
            raise ValueError("Cannot build the union of an empty box collection") from None
        for box in iterator:
            result = result.union(box)
        return result

    # ------------------------------------------------------------------ #
    # Conversions
    # ------------------------------------------------------------------ #
    def as_tuple(self) -> Box:
        """Return the (x0, y0, x1, y1) tuple form."""
        return (self.left, self.bottom, self.right, self.top)

    def to_dict(self) -> dict:
        """Return the {"x0", "y0", "x1", "y1"} dict form used by cell payloads."""
        return {"x0": self.left, "y0": self.bottom, "x1": self.right, "y1": self.top}

    @classmethod
    def from_dict(cls, bbox: dict) -> "BoundingBox":
        return cls(float(bbox["x0"]), float(bbox["y0"]), float(bbox["x1"]), float(bbox["y1"]))


__all__ = [
    "Box",
    "BoundingBox",
    "LineSegment",
    "Point",
]
