"""
Spatial index utilities for nearest-neighbour lookups.

This module exposes two build-once, query-many indexes with the same query
interface:
    * `KdTree` - a 2-d tree stored as flat numpy arrays (one slot per node,
      children referenced by slot index, -1 for "no child"). Used for point
      anchors with an axis-monotone metric such as (weighted) Euclidean.
    * `LinearScanIndex` - exhaustive scan. Used when anchors are not points
      (e.g. line segments) and a tree cannot prune.

Both are immutable after construction, so concurrent queries from worker
threads need no locking.
"""

from __future__ import annotations

import heapq
import logging
import math
from typing import Any, Callable, Generic, List, NamedTuple, Sequence, Tuple, TypeVar

import numpy as np

from geometry import Point

logger = logging.getLogger(__name__)

T = TypeVar("T")

Metric = Callable[[Any, Any], float]


class Neighbour(NamedTuple):
    """A stored item returned by a query, with its slot and distance."""

    item: Any
    index: int
    distance: float


def _push_candidate(heap: List[Tuple[float, int]], k: int, distance: float, index: int) -> None:
    """Keep the k smallest (distance, index) pairs; ties prefer the lower index."""
    entry = (-distance, -index)
    if len(heap) < k:
        heapq.heappush(heap, entry)
    elif entry > heap[0]:
        heapq.heapreplace(heap, entry)


def _sorted_neighbours(items: Sequence[T], heap: List[Tuple[float, int]]) -> List[Neighbour]:
    ordered = sorted((-neg_d, -neg_i) for neg_d, neg_i in heap)
    return [Neighbour(items[index], index, distance) for distance, index in ordered]


class KdTree(Generic[T]):
    """
    Immutable 2-d tree over items projected to points.

    Parameters
    ----------
    items:
        Items to store. Their order defines the indexes reported by queries.
    point_func:
        Projection item -> `Point` used as the stored location.
    """

    def __init__(self, items: Sequence[T], point_func: Callable[[T], Point]):
        self.items: Tuple[T, ...] = tuple(items)
        self._points: Tuple[Point, ...] = tuple(point_func(item) for item in self.items)

        n = len(self.items)
        self._coords = np.array([(p.x, p.y) for p in self._points], dtype=np.float64).reshape(n, 2)
        self._node_item = np.full(n, -1, dtype=np.int64)
        self._node_axis = np.zeros(n, dtype=np.int8)
        self._left = np.full(n, -1, dtype=np.int64)
        self._right = np.full(n, -1, dtype=np.int64)

        self._size = 0
        self._root = self._build(np.arange(n, dtype=np.int64), 0)

        for array in (self._coords, self._node_item, self._node_axis, self._left, self._right):
            array.setflags(write=False)
        logger.debug("Built KdTree over %d items (%d nodes)", n, self._size)

    def __len__(self) -> int:
        return len(self.items)

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #
    def _build(self, indices: np.ndarray, depth: int) -> int:
        """Fill one node slot with the median of `indices` and recurse."""
        if indices.size == 0:
            return -1

        axis = depth % 2
        ordered = indices[np.argsort(self._coords[indices, axis], kind="stable")]
        median = ordered.size // 2

        node = self._size
        self._size += 1
        self._node_item[node] = ordered[median]
        self._node_axis[node] = axis
        self._left[node] = self._build(ordered[:median], depth + 1)
        self._right[node] = self._build(ordered[median + 1:], depth + 1)
        return node

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def find_nearest_neighbours(
        self,
        item: T,
        k: int,
        anchor_func: Callable[[T], Point],
        metric: Metric,
    ) -> List[Neighbour]:
        """
        Return up to `k` stored items nearest to `anchor_func(item)`.

        The stored entry that *is* `item` is skipped. Results are sorted by
        ascending distance (ties by ascending index). NaN distances are
        never reported.
        """
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")
        if self._root < 0:
            return []

        query = anchor_func(item)
        heap: List[Tuple[float, int]] = []
        self._search(self._root, query, item, k, metric, heap)
        return _sorted_neighbours(self.items, heap)

    def _search(
        self,
        node: int,
        query: Point,
        exclude: T,
        k: int,
        metric: Metric,
        heap: List[Tuple[float, int]],
    ) -> None:
        index = int(self._node_item[node])
        if self.items[index] is not exclude:
            distance = metric(query, self._points[index])
            if not math.isnan(distance):
                _push_candidate(heap, k, distance, index)

        axis = int(self._node_axis[node])
        split = float(self._coords[index, axis])
        value = query.x if axis == 0 else query.y
        if value < split:
            near, far = int(self._left[node]), int(self._right[node])
        else:
            near, far = int(self._right[node]), int(self._left[node])

        if near >= 0:
            self._search(near, query, exclude, k, metric, heap)

        if far >= 0:
            plane = Point(split, query.y) if axis == 0 else Point(query.x, split)
            if len(heap) < k or metric(query, plane) <= -heap[0][0]:
                self._search(far, query, exclude, k, metric, heap)


class LinearScanIndex(Generic[T]):
    """Exhaustive nearest-neighbour index with the `KdTree` query interface."""

    def __init__(self, items: Sequence[T], anchor_func: Callable[[T], Any]):
        self.items: Tuple[T, ...] = tuple(items)
        self._anchors = tuple(anchor_func(item) for item in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def find_nearest_neighbours(
        self,
        item: T,
        k: int,
        anchor_func: Callable[[T], Any],
        metric: Metric,
    ) -> List[Neighbour]:
        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")

        query = anchor_func(item)
        heap: List[Tuple[float, int]] = []
        for index, (stored, anchor) in enumerate(zip(self.items, self._anchors)):
            if stored is item:
                continue
            distance = metric(query, anchor)
            if math.isnan(distance):
                continue
            _push_candidate(heap, k, distance, index)
        return _sorted_neighbours(self.items, heap)


__all__ = [
    "KdTree",
    "LinearScanIndex",
    "Metric",
    "Neighbour",
]
