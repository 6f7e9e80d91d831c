"""
Bounded nearest-neighbour clustering.

Every eligible item (the pivot) looks up its k nearest candidates in a
spatial index. An edge pivot -> candidate is kept when the distance is
finite, within the pivot's maximum distance, and accepted by the strategy.
Connected components of the resulting undirected graph are the clusters.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from parallel import parallel_map
from spatial_index import KdTree

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(item: Any) -> bool:
    return True


def _always_pair(pivot: Any, candidate: Any) -> bool:
    return True


@dataclass(frozen=True)
class ClusteringStrategy(Generic[T]):
    """
    Metric and filters for one clustering run.

    Parameters
    ----------
    distance:
        Distance between a pivot anchor and a candidate anchor.
    max_distance:
        Largest accepted distance for a given pivot. May be ``math.inf``.
    pivot_anchor / candidate_anchor:
        Projections of an item to the location used when it acts as pivot,
        respectively as candidate (e.g. trailing edge vs. leading edge).
    pivot_eligible:
        Items failing this predicate never start an edge (they can still be
        reached as candidates).
    accept:
        Final pairwise filter on (pivot, candidate).
    index_factory:
        Builds the spatial index over (items, candidate_anchor). The default
        `KdTree` needs point anchors and an axis-monotone distance; use
        `LinearScanIndex` for anything else.
    """

    distance: Callable[[Any, Any], float]
    max_distance: Callable[[T], float]
    pivot_anchor: Callable[[T], Any]
    candidate_anchor: Callable[[T], Any]
    pivot_eligible: Callable[[T], bool] = _always
    accept: Callable[[T, T], bool] = _always_pair
    index_factory: Callable[..., Any] = KdTree


def group_indexes(adjacency: Sequence[Sequence[int]]) -> List[List[int]]:
    """
    Connected components of an adjacency list, treated as undirected.

    Groups hold ascending indexes and are ordered by their smallest index, so
    the result depends only on the edge set, not on the order edges were found.
    """
    n = len(adjacency)
    parent = list(range(n))
    rank = [0] * n

    def find(node: int) -> int:
        while parent[node] != node:
            parent[node] = parent[parent[node]]
            node = parent[node]
        return node

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra == rb:
            return
        if rank[ra] < rank[rb]:
            parent[ra] = rb
        elif rank[ra] > rank[rb]:
            parent[rb] = ra
        else:
            parent[rb] = ra
            rank[ra] += 1

    for i, neighbours in enumerate(adjacency):
        for j in neighbours:
            union(i, j)

    clusters: Dict[int, List[int]] = defaultdict(list)
    for idx in range(n):
        clusters[find(idx)].append(idx)
    return sorted(clusters.values(), key=lambda group: group[0])


def nearest_neighbour_clusters(
    items: Sequence[T],
    strategy: ClusteringStrategy,
    k: int = 2,
    max_workers: Optional[int] = None,
) -> List[List[int]]:
    """
    Cluster `items` by their accepted nearest-neighbour edges.

    Returns
    -------
    List[List[int]]
        One list of indexes into `items` per connected component. Every
        index appears exactly once; isolated items are singletons.
    """
    items = list(items)
    if not items:
        return []

    index = strategy.index_factory(items, strategy.candidate_anchor)

    def accepted_edges(pivot_index: int) -> List[int]:
        pivot = items[pivot_index]
        if not strategy.pivot_eligible(pivot):
            return []

        limit = strategy.max_distance(pivot)
        edges: List[int] = []
        for neighbour in index.find_nearest_neighbours(
            pivot, k, strategy.pivot_anchor, strategy.distance
        ):
            if not math.isfinite(neighbour.distance) or neighbour.distance > limit:
                continue
            if strategy.accept(pivot, neighbour.item):
                edges.append(neighbour.index)
        return edges

    adjacency = parallel_map(accepted_edges, range(len(items)), max_workers)
    groups = group_indexes(adjacency)

    logger.debug(
        "Clustered %d items into %d groups (%d edges, k=%d)",
        len(items),
        len(groups),
        sum(len(edges) for edges in adjacency),
        k,
    )
    return groups


__all__ = [
    "ClusteringStrategy",
    "group_indexes",
    "nearest_neighbour_clusters",
]
