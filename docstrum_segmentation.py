"""
Docstrum Page Segmentation Module
=================================
Groups words into text lines and text blocks using the Document Spectrum
(Docstrum) approach: nearest-neighbour clustering driven by spacing
statistics estimated from the page itself, with no fixed gap thresholds.

Pipeline (see `get_blocks`):
0. Drop blank words.
1. Estimate within-line and between-line spacing from nearest neighbours
   (peak of a unit-width histogram).
2. Cluster words into lines (distance bound + within-line angle gate).
3. Cluster lines into blocks (distance between horizontally overlapping
   line edges).
4. Merge blocks whose bounding boxes still intersect, e.g. justified text.

Based on 'The document spectrum for page layout analysis' by L. O'Gorman,
working on bounding boxes rather than connected components.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from clustering import ClusteringStrategy, nearest_neighbour_clusters
from distances import (
    angle,
    euclidean,
    horizontal,
    peak_average_distance,
    vertical,
    weighted_euclidean,
)
from geometry import BoundingBox, LineSegment, Point
from layout_data_classes import (
    AngleBounds,
    TextBlock,
    TextLine,
    TextOrientation,
    Word,
    dominant_orientation,
)
from parallel import parallel_map
from segmentation_config import DocstrumOptions
from spatial_index import KdTree, LinearScanIndex

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

WITHIN_LINE_ANGLE_BOUNDS = AngleBounds(-30, 30)      # deg - bottom-right -> bottom-left angle on one line
BETWEEN_LINE_ANGLE_BOUNDS = AngleBounds(-135, -45)   # deg - centroid -> centroid angle to the line below
BETWEEN_LINE_MULTIPLIER = 1.3                        # block cutoff as a multiple of between-line distance
NEIGHBOUR_COUNT = 2                                  # nearest candidates examined per word / line
WITHIN_LINE_X_WEIGHT = 0.5                           # horizontal weight for the within-line spacing scan
BETWEEN_LINE_X_WEIGHT = 50.0                         # horizontal weight for the between-line spacing scan
WITHIN_LINE_DISTANCE_FACTOR = 3.0                    # line cutoff = min(3 * within, sqrt(2) * between)
BETWEEN_LINE_DISTANCE_FACTOR = math.sqrt(2)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _is_blank(word: Optional[Word]) -> bool:
    return word is None or not word.text or not word.text.strip()


def order_line_words(words: Iterable[Word]) -> List[Word]:
    """
    Order the words of one line along its reading direction.

    NORMAL: ascending left edge; ROTATE180: descending right edge;
    ROTATE90: descending top edge; ROTATE270: ascending bottom edge.
    """
    words = list(words)
    orientation = dominant_orientation(words)
    if orientation == TextOrientation.ROTATE180:
        return sorted(words, key=lambda w: w.bounding_box.right, reverse=True)
    if orientation == TextOrientation.ROTATE90:
        return sorted(words, key=lambda w: w.bounding_box.top, reverse=True)
    if orientation == TextOrientation.ROTATE270:
        return sorted(words, key=lambda w: w.bounding_box.bottom)
    return sorted(words, key=lambda w: w.bounding_box.left)


def overlapping_middle_distance(pivot: LineSegment, candidate: LineSegment) -> float:
    """
    Distance between two horizontal line edges.

    If the segments overlap horizontally, take the middle of the overlapping
    span and return the distance between that x at the pivot's y and at the
    candidate's y. Segments with no horizontal overlap are never joinable:
    the distance is ``math.inf``.
    """
    left = max(pivot.point1.x, candidate.point1.x)
    overlap = min(pivot.point2.x, candidate.point2.x) - left
    if overlap < 0:
        return math.inf

    middle = left + overlap / 2
    return euclidean(Point(middle, pivot.point1.y), Point(middle, candidate.point1.y))


def _line_bottom_edge(line: TextLine) -> LineSegment:
    box = line.bounding_box
    return LineSegment(box.bottom_left, box.bottom_right)


def _line_top_edge(line: TextLine) -> LineSegment:
    box = line.bounding_box
    return LineSegment(box.top_left, box.top_right)


# =============================================================================
# PHASE 1 - SPACING ESTIMATION
# =============================================================================

def estimate_spacing(
    words: Sequence[Word],
    within_line: AngleBounds = WITHIN_LINE_ANGLE_BOUNDS,
    between_line: AngleBounds = BETWEEN_LINE_ANGLE_BOUNDS,
    k: int = NEIGHBOUR_COUNT,
    max_workers: Optional[int] = None,
) -> Tuple[List[float], List[float]]:
    """
    Sample within-line and between-line distances from nearest neighbours.

    Returns
    -------
    Tuple[List[float], List[float]]
        (within-line samples, between-line samples). Sample order is not
        meaningful.
    """
    tree_within = KdTree(words, lambda w: w.bounding_box.bottom_left)
    tree_between = KdTree(words, lambda w: w.bounding_box.top_left)

    def within_metric(p1: Point, p2: Point) -> float:
        return weighted_euclidean(p1, p2, wx=WITHIN_LINE_X_WEIGHT)

    def between_metric(p1: Point, p2: Point) -> float:
        return weighted_euclidean(p1, p2, wx=BETWEEN_LINE_X_WEIGHT)

    def sample_word(word: Word) -> Tuple[List[float], List[float]]:
        box = word.bounding_box
        within: List[float] = []
        between: List[float] = []

        for neighbour in tree_within.find_nearest_neighbours(
            word, k, lambda w: w.bounding_box.bottom_right, within_metric
        ):
            other = neighbour.item.bounding_box
            if within_line.contains(angle(box.bottom_right, other.bottom_left)):
                within.append(abs(horizontal(box.bottom_right, other.bottom_left)))

        for neighbour in tree_between.find_nearest_neighbours(
            word, k, lambda w: w.bounding_box.bottom_left, between_metric
        ):
            other = neighbour.item.bounding_box
            if between_line.contains(angle(box.centroid, other.centroid)):
                between.append(abs(vertical(box.bottom_left, other.top_left)))

        return within, between

    within_samples: List[float] = []
    between_samples: List[float] = []
    for within, between in parallel_map(sample_word, words, max_workers):
        within_samples.extend(within)
        between_samples.extend(between)
    return within_samples, between_samples


# =============================================================================
# PHASE 2 - LINES
# =============================================================================

def get_lines(
    words: Sequence[Word],
    max_distance: float,
    within_line: AngleBounds = WITHIN_LINE_ANGLE_BOUNDS,
    k: int = NEIGHBOUR_COUNT,
    max_workers: Optional[int] = None,
) -> List[TextLine]:
    """
    Cluster words into text lines.

    A word's bottom-right corner links to a neighbour's bottom-left corner
    when they are at most `max_distance` apart (Euclidean) and the angle
    between them lies within `within_line`. Pass ``math.inf`` to rely on the
    angle gate alone.
    """
    if not words:
        return []

    strategy = ClusteringStrategy(
        distance=euclidean,
        max_distance=lambda pivot: max_distance,
        pivot_anchor=lambda w: w.bounding_box.bottom_right,
        candidate_anchor=lambda w: w.bounding_box.bottom_left,
        accept=lambda pivot, candidate: within_line.contains(
            angle(pivot.bounding_box.bottom_right, candidate.bounding_box.bottom_left)
        ),
    )
    groups = nearest_neighbour_clusters(words, strategy, k=k, max_workers=max_workers)
    return [TextLine(tuple(order_line_words(words[i] for i in group))) for group in groups]


# =============================================================================
# PHASE 3 - BLOCKS
# =============================================================================

def get_line_groups(
    lines: Sequence[TextLine],
    max_distance: float,
    k: int = NEIGHBOUR_COUNT,
    max_workers: Optional[int] = None,
) -> List[TextBlock]:
    """
    Cluster text lines into blocks.

    A line's bottom edge links to another line's top edge when the two
    overlap horizontally and the distance between the middles of the
    overlapping span is at most `max_distance`.
    """
    if not lines:
        return []

    strategy = ClusteringStrategy(
        distance=overlapping_middle_distance,
        max_distance=lambda pivot: max_distance,
        pivot_anchor=_line_bottom_edge,
        candidate_anchor=_line_top_edge,
        index_factory=LinearScanIndex,
    )
    groups = nearest_neighbour_clusters(lines, strategy, k=k, max_workers=max_workers)
    return [TextBlock(tuple(lines[i] for i in group)) for group in groups]


# =============================================================================
# PHASE 4 - MERGE OVERLAPPING BLOCKS
# =============================================================================

def merge_overlapping_blocks(
    blocks: Sequence[TextBlock],
    within_line: AngleBounds = WITHIN_LINE_ANGLE_BOUNDS,
    k: int = NEIGHBOUR_COUNT,
    max_workers: Optional[int] = None,
    debug: Optional[Dict[str, Any]] = None,
) -> List[TextBlock]:
    """
    Merge blocks whose bounding boxes intersect (e.g. justified text).

    Every block has its lines rebuilt from its words with no distance limit
    (angle gate only). When block b intersects block c, c's words are added
    to b, b's lines are rebuilt and ordered by descending bottom edge, c is
    discarded, and the scan for b starts over. Blocks that never merge keep
    the line order produced by clustering.

    Returns the surviving blocks; their order is not meaningful.
    """
    slots: List[Optional[TextBlock]] = list(blocks)
    rebuilt = [False] * len(slots)
    merges: List[Dict[str, Any]] = []

    def rebuild(words: Sequence[Word]) -> List[TextLine]:
        return get_lines(words, math.inf, within_line, k=k, max_workers=max_workers)

    changed = True
    while changed:
        changed = False
        for b in range(len(slots)):
            if slots[b] is None:
                continue
            if not rebuilt[b]:
                slots[b] = TextBlock(tuple(rebuild(slots[b].words)))
                rebuilt[b] = True

            restart = True
            while restart:
                restart = False
                for c in range(len(slots)):
                    if b == c or slots[c] is None:
                        continue
                    if not slots[b].bounding_box.intersects_with(slots[c].bounding_box):
                        continue

                    merged_words = slots[b].words + slots[c].words
                    merged_lines = sorted(
                        rebuild(merged_words),
                        key=lambda line: line.bounding_box.bottom,
                        reverse=True,
                    )
                    merges.append({
                        "into": b,
                        "from": c,
                        "word_count": len(merged_words),
                        "line_count": len(merged_lines),
                    })
                    slots[b] = TextBlock(tuple(merged_lines))
                    slots[c] = None
                    changed = True
                    restart = True
                    break

    if debug is not None:
        debug["merges"] = merges
    if merges:
        logger.debug("Merged %d overlapping block pairs", len(merges))
    return [block for block in slots if block is not None]


# =============================================================================
# MAIN SEGMENTATION
# =============================================================================

def get_blocks(
    words: Optional[Iterable[Optional[Word]]],
    within_line: Optional[AngleBounds] = None,
    between_line: Optional[AngleBounds] = None,
    between_line_multiplier: Optional[float] = None,
    max_workers: Optional[int] = None,
    options: Optional[DocstrumOptions] = None,
    debug: Optional[Dict[str, Any]] = None,
) -> List[TextBlock]:
    """
    Segment a page's words into text blocks made of text lines.

    Keyword arguments override the corresponding fields of `options`
    (defaults: within-line [-30, 30], between-line [-135, -45],
    multiplier 1.3, host concurrency).

    Returns
    -------
    List[TextBlock]
        Every non-blank input word appears in exactly one line of one block.
        Empty when there are no non-blank words. When spacing cannot be
        estimated (e.g. a single word), one block with one line holding all
        words in input order.
    """
    options = options or DocstrumOptions()
    if not options.validate():
        raise ValueError(f"Invalid segmentation options: {options}")

    within_line = within_line or options.within_line
    between_line = between_line or options.between_line
    if between_line_multiplier is None:
        between_line_multiplier = options.between_line_multiplier
    if not between_line_multiplier > 0:
        raise ValueError(f"between_line_multiplier must be positive, got {between_line_multiplier}")
    if max_workers is None:
        max_workers = options.max_workers
    k = options.neighbour_count

    if debug is not None:
        debug.clear()
        debug["inputs"] = {
            "within_line": within_line.to_dict(),
            "between_line": between_line.to_dict(),
            "between_line_multiplier": between_line_multiplier,
            "max_workers": max_workers,
            "neighbour_count": k,
        }

    # 0. Filter blank words
    filtered = [word for word in (words or ()) if not _is_blank(word)]
    if debug is not None:
        debug["inputs"]["word_count"] = len(filtered)
    if not filtered:
        return []

    # 1. Estimate within-line and between-line spacing
    within_samples, between_samples = estimate_spacing(
        filtered, within_line, between_line, k=k, max_workers=max_workers
    )
    within_line_distance = peak_average_distance(within_samples)
    between_line_distance = peak_average_distance(between_samples)
    logger.debug(
        "Spacing: within-line %s (%d samples), between-line %s (%d samples)",
        within_line_distance, len(within_samples),
        between_line_distance, len(between_samples),
    )
    if debug is not None:
        debug["spacing"] = {
            "within_line_samples": len(within_samples),
            "between_line_samples": len(between_samples),
            "within_line_distance": within_line_distance,
            "between_line_distance": between_line_distance,
        }

    if within_line_distance is None or between_line_distance is None:
        logger.debug("Spacing could not be estimated, returning a single block")
        blocks = [TextBlock((TextLine(tuple(filtered)),))]
        if debug is not None:
            debug["fallback"] = True
            _summarize(debug, blocks)
        return blocks

    # 2. Lines
    max_distance_within_line = min(
        WITHIN_LINE_DISTANCE_FACTOR * within_line_distance,
        BETWEEN_LINE_DISTANCE_FACTOR * between_line_distance,
    )
    lines = get_lines(filtered, max_distance_within_line, within_line, k=k, max_workers=max_workers)

    # 3. Blocks
    max_distance_between_line = between_line_multiplier * between_line_distance
    blocks = get_line_groups(lines, max_distance_between_line, k=k, max_workers=max_workers)
    logger.debug(
        "Found %d lines (cutoff %.3f) and %d blocks (cutoff %.3f)",
        len(lines), max_distance_within_line, len(blocks), max_distance_between_line,
    )
    if debug is not None:
        debug["fallback"] = False
        debug["lines"] = {"count": len(lines), "max_distance": max_distance_within_line}
        debug["blocks"] = {"count": len(blocks), "max_distance": max_distance_between_line}

    # 4. Merge overlapping blocks
    blocks = merge_overlapping_blocks(blocks, within_line, k=k, max_workers=max_workers, debug=debug)

    if debug is not None:
        _summarize(debug, blocks)
    return blocks


def _summarize(debug: Dict[str, Any], blocks: Sequence[TextBlock]) -> None:
    debug["summary"] = {
        "final_blocks": len(blocks),
        "final_lines": sum(len(block) for block in blocks),
        "final_words": sum(len(block.words) for block in blocks),
    }


# =============================================================================
# CELL ADAPTER
# =============================================================================

_ORIENTATIONS = {orientation.value: orientation for orientation in TextOrientation}


def words_from_cells(cells: Iterable[Dict[str, Any]]) -> List[Word]:
    """
    Build words from cell dicts of the form
    ``{"text": str, "bbox": {"x0", "y0", "x1", "y1"}, "orientation": str}``
    with bottom-left origin coordinates. ``orientation`` is optional
    ("normal", "rotate90", "rotate180", "rotate270"). The cell itself is
    kept as the word's metadata.
    """
    words: List[Word] = []
    for idx, cell in enumerate(cells):
        bbox = cell.get("bbox")
        if not bbox:
            raise ValueError(f"Cell {idx} has no bbox")
        try:
            box = BoundingBox.from_dict(bbox)
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Cell {idx} has a malformed bbox {bbox!r}: {e}") from e

        orientation_name = cell.get("orientation") or TextOrientation.NORMAL.value
        orientation = _ORIENTATIONS.get(str(orientation_name).lower())
        if orientation is None:
            raise ValueError(f"Cell {idx} has unknown orientation {orientation_name!r}")

        words.append(Word(cell.get("text") or "", box, orientation, metadata=cell))
    return words


__all__ = [
    "BETWEEN_LINE_ANGLE_BOUNDS",
    "BETWEEN_LINE_MULTIPLIER",
    "NEIGHBOUR_COUNT",
    "WITHIN_LINE_ANGLE_BOUNDS",
    "estimate_spacing",
    "get_blocks",
    "get_line_groups",
    "get_lines",
    "merge_overlapping_blocks",
    "order_line_words",
    "overlapping_middle_distance",
    "words_from_cells",
]
