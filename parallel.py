"""
Bounded data-parallel fan-out.

Work items are mapped over a thread pool and joined before returning; each
item's result lands in its own slot of the returned list, in input order.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def resolve_max_workers(max_workers: Optional[int]) -> int:
    """
    Translate the caller's worker bound into a concrete thread count.

    None means the host's available concurrency.
    """
    if max_workers is None:
        return os.cpu_count() or 1
    if max_workers < 1:
        raise ValueError(f"max_workers must be None or at least 1, got {max_workers}")
    return max_workers


def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: Optional[int] = None,
) -> List[R]:
    """
    Apply `func` to every item, fanning out over at most `max_workers` threads.

    Results are returned in input order. The first exception raised by a
    worker propagates to the caller after the pool shuts down.
    """
    workers = min(resolve_max_workers(max_workers), len(items))
    if workers <= 1:
        return [func(item) for item in items]

    logger.debug("Fanning out %d work items over %d threads", len(items), workers)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(func, items))


__all__ = ["parallel_map", "resolve_max_workers"]
