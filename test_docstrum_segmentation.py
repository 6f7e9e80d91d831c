"""
Test Docstrum page segmentation (words -> lines -> blocks).

Synthetic pages use 10pt-high words, 30pt wide, 5pt apart, on a 14pt line
pitch, so the estimated within-line distance is 5 and the between-line
distance (bottom of a line to top of the line below) is 4.
"""

import math

import numpy as np
import pytest

from docstrum_segmentation import (
    estimate_spacing,
    get_blocks,
    merge_overlapping_blocks,
    order_line_words,
    overlapping_middle_distance,
    words_from_cells,
)
from distances import peak_average_distance
from geometry import BoundingBox, LineSegment, Point
from layout_data_classes import AngleBounds, TextBlock, TextLine, TextOrientation, Word
from segmentation_config import DocstrumOptions

WORD_WIDTH = 30.0
WORD_GAP = 5.0
WORD_HEIGHT = 10.0
LINE_PITCH = 14.0


def make_word(text, left, bottom, width=WORD_WIDTH, height=WORD_HEIGHT,
              orientation=TextOrientation.NORMAL):
    return Word(text, BoundingBox(left, bottom, left + width, bottom + height), orientation)


def make_line_words(line_no, x0, top_bottom=700.0, count=4, prefix="w"):
    bottom = top_bottom - LINE_PITCH * line_no
    return [
        make_word(f"{prefix}{line_no}.{j}", x0 + (WORD_WIDTH + WORD_GAP) * j, bottom)
        for j in range(count)
    ]


def make_column(x0, lines=5, words_per_line=4, prefix="w"):
    words = []
    for i in range(lines):
        words.extend(make_line_words(i, x0, count=words_per_line, prefix=prefix))
    return words


def word_partition(blocks):
    return frozenset(frozenset(id(w) for w in block.words) for block in blocks)


def line_partition(blocks):
    return frozenset(
        frozenset(id(w) for w in line.words) for block in blocks for line in block.lines
    )


# =============================================================================
# Edge cases
# =============================================================================

def test_empty_and_blank_input():
    assert get_blocks(None) == []
    assert get_blocks([]) == []
    blanks = [make_word("", 0, 0), make_word("   ", 40, 0), make_word("\t\n", 80, 0)]
    assert get_blocks(blanks) == [], "All-blank words should produce no blocks"


def test_single_word():
    word = make_word("Alone", 100.0, 500.0)
    blocks = get_blocks([word])

    assert len(blocks) == 1
    assert len(blocks[0].lines) == 1
    assert blocks[0].lines[0].words == (word,)


def test_fallback_keeps_input_order():
    """One line and nothing below: no between-line samples, single fallback block."""
    right = make_word("right", 135.0, 300.0)
    left = make_word("left", 100.0, 300.0)
    debug = {}
    blocks = get_blocks([right, make_word(" ", 0, 0), left], debug=debug)

    assert len(blocks) == 1 and len(blocks[0].lines) == 1
    assert blocks[0].lines[0].words == (right, left)
    assert debug["fallback"] is True
    assert debug["spacing"]["between_line_distance"] is None


# =============================================================================
# Spacing estimation
# =============================================================================

def test_estimate_spacing_on_regular_column():
    words = make_column(50.0)
    within, between = estimate_spacing(words, max_workers=1)

    print(f"Within-line samples: {len(within)}, between-line samples: {len(between)}")
    assert within and all(math.isclose(d, WORD_GAP) for d in within)
    # the second neighbour below (two lines down) also passes the angle gate
    assert math.isclose(min(between), LINE_PITCH - WORD_HEIGHT)
    assert math.isclose(peak_average_distance(between), LINE_PITCH - WORD_HEIGHT)


# =============================================================================
# Full pipeline
# =============================================================================

def test_single_column_forms_one_block_of_lines():
    words = make_column(50.0, lines=5, words_per_line=4)
    debug = {}
    blocks = get_blocks(words, max_workers=2, debug=debug)

    print(f"Spacing: {debug['spacing']}")
    assert math.isclose(debug["spacing"]["within_line_distance"], 5.0)
    assert math.isclose(debug["spacing"]["between_line_distance"], 4.0)
    assert len(blocks) == 1, f"Expected 1 block, got {len(blocks)}"
    assert len(blocks[0].lines) == 5

    for line in blocks[0].lines:
        assert len(line.words) == 4
        lefts = [w.bounding_box.left for w in line.words]
        assert lefts == sorted(lefts), "Normal lines are ordered left to right"

    assert debug["summary"]["final_words"] == 20


def test_two_columns_stay_separate():
    """Columns without horizontal overlap are never joined into one block."""
    left_column = make_column(50.0, prefix="L")
    right_column = make_column(350.0, prefix="R")
    blocks = get_blocks(left_column + right_column, max_workers=1)

    assert len(blocks) == 2, f"Expected 2 blocks, got {len(blocks)}"
    for block in blocks:
        prefixes = {w.text[0] for w in block.words}
        assert len(prefixes) == 1, f"Block mixes columns: {block.text}"
        assert len(block.lines) == 5


def test_paragraph_gap_splits_blocks():
    top = make_column(50.0, lines=3, prefix="A")
    bottom = [
        make_word(w.text.replace("A", "B"), w.bounding_box.left, w.bounding_box.bottom - 100.0)
        for w in top
    ]
    blocks = get_blocks(top + bottom, max_workers=1)

    assert len(blocks) == 2
    assert {len(b.lines) for b in blocks} == {3}


def test_partition_on_random_page():
    rng = np.random.default_rng(2024)
    words = []
    for i in range(250):
        left, bottom = rng.uniform(0, 500), rng.uniform(0, 700)
        width, height = rng.uniform(5, 40), rng.uniform(6, 12)
        text = "" if i % 25 == 0 else f"w{i}"
        words.append(Word(text, BoundingBox(left, bottom, left + width, bottom + height)))

    blocks = get_blocks(words, max_workers=4)

    expected = {id(w) for w in words if w.text.strip()}
    seen = [id(w) for block in blocks for line in block.lines for w in line.words]
    assert len(seen) == len(set(seen)), "A word appears more than once"
    assert set(seen) == expected, "Output words differ from non-blank input words"
    assert all(block.lines and all(line.words for line in block.lines) for block in blocks)


def test_deterministic_partition():
    words = make_column(50.0, lines=8) + make_column(260.0, lines=6, prefix="x")
    rng = np.random.default_rng(5)
    jittered = [
        Word(
            w.text,
            BoundingBox(
                w.bounding_box.left + rng.uniform(-0.4, 0.4),
                w.bounding_box.bottom + rng.uniform(-0.4, 0.4),
                w.bounding_box.right + rng.uniform(-0.4, 0.4),
                w.bounding_box.top + rng.uniform(-0.4, 0.4),
            ),
        )
        for w in words
    ]

    first = get_blocks(jittered, max_workers=4)
    second = get_blocks(jittered, max_workers=4)
    sequential = get_blocks(jittered, max_workers=1)

    assert word_partition(first) == word_partition(second)
    assert line_partition(first) == line_partition(second)
    assert word_partition(first) == word_partition(sequential)


def test_keyword_arguments_override_options():
    words = make_column(50.0, lines=3)
    options = DocstrumOptions(between_line_multiplier=0.5, max_workers=1)
    debug = {}

    # multiplier 0.5 -> cutoff 2.0 < 4.0: every line becomes its own block
    assert len(get_blocks(words, options=options)) == 3
    assert len(get_blocks(words, between_line_multiplier=1.3, options=options, debug=debug)) == 1
    assert debug["inputs"]["between_line_multiplier"] == 1.3


def test_invalid_configuration_raises():
    words = make_column(50.0, lines=2)
    with pytest.raises(ValueError):
        get_blocks(words, options=DocstrumOptions(max_workers=0))
    with pytest.raises(ValueError):
        get_blocks(words, between_line_multiplier=-1.0)


# =============================================================================
# Phase helpers
# =============================================================================

def test_merge_overlapping_blocks():
    """Interleaved line clusters (e.g. justified text) merge into one block."""
    line0 = make_line_words(0, 50.0, prefix="a")
    line1 = make_line_words(1, 50.0, prefix="b")
    line2 = make_line_words(2, 50.0, prefix="c")
    block_a = TextBlock((TextLine(tuple(line0)), TextLine(tuple(line2))))
    block_b = TextBlock((TextLine(tuple(line1)),))
    assert block_a.bounding_box.intersects_with(block_b.bounding_box)

    debug = {}
    merged = merge_overlapping_blocks([block_a, block_b], max_workers=1, debug=debug)

    assert len(merged) == 1, f"Expected 1 merged block, got {len(merged)}"
    block = merged[0]
    all_words = line0 + line1 + line2
    assert sorted(id(w) for w in block.words) == sorted(id(w) for w in all_words)
    bottoms = [line.bounding_box.bottom for line in block.lines]
    assert bottoms == [700.0, 686.0, 672.0], "Merged lines are ordered by descending bottom"
    assert len(debug["merges"]) == 1


def test_non_intersecting_blocks_untouched():
    block_a = TextBlock((TextLine(tuple(make_line_words(0, 50.0))),))
    block_b = TextBlock((TextLine(tuple(make_line_words(0, 400.0))),))
    result = merge_overlapping_blocks([block_a, block_b], max_workers=1)

    assert len(result) == 2
    assert [len(b.words) for b in result] == [4, 4]


def test_overlapping_middle_distance():
    pivot = LineSegment(Point(0.0, 100.0), Point(50.0, 100.0))
    below = LineSegment(Point(30.0, 96.0), Point(90.0, 96.0))
    touching = LineSegment(Point(50.0, 96.0), Point(60.0, 96.0))
    apart = LineSegment(Point(60.0, 96.0), Point(90.0, 96.0))

    assert overlapping_middle_distance(pivot, below) == 4.0
    assert overlapping_middle_distance(pivot, touching) == 4.0
    assert overlapping_middle_distance(pivot, apart) == math.inf


def test_order_line_words_by_orientation():
    def rotated(text, left, bottom, right, top, orientation):
        return Word(text, BoundingBox(left, bottom, right, top), orientation)

    r90 = [rotated(t, 10, b, 20, b + 20, TextOrientation.ROTATE90) for t, b in (("b", 50), ("a", 80))]
    assert [w.text for w in order_line_words(r90)] == ["a", "b"], "Rotate90 reads top to bottom"

    r270 = [rotated(t, 10, b, 20, b + 20, TextOrientation.ROTATE270) for t, b in (("b", 80), ("a", 50))]
    assert [w.text for w in order_line_words(r270)] == ["a", "b"], "Rotate270 reads bottom to top"

    r180 = [rotated(t, l, 10, l + 20, 20, TextOrientation.ROTATE180) for t, l in (("b", 10), ("a", 40))]
    assert [w.text for w in order_line_words(r180)] == ["a", "b"], "Rotate180 reads right to left"

    normal = [make_word("b", 60, 0), make_word("a", 10, 0)]
    assert [w.text for w in order_line_words(normal)] == ["a", "b"]


def test_custom_angle_bounds_are_used():
    words = make_column(50.0, lines=3)
    # a within-line gate that excludes horizontal neighbours leaves no samples
    blocks = get_blocks(words, within_line=AngleBounds(45, 60), max_workers=1)
    assert len(blocks) == 1 and len(blocks[0].lines) == 1
    assert blocks[0].lines[0].words == tuple(words)


# =============================================================================
# Cell adapter
# =============================================================================

def test_words_from_cells():
    cells = [
        {"text": "Total", "bbox": {"x0": 100.0, "y0": 200.0, "x1": 130.0, "y1": 210.0}},
        {"text": "Up", "bbox": {"x0": 10, "y0": 20, "x1": 20, "y1": 60}, "orientation": "rotate90"},
    ]
    words = words_from_cells(cells)

    assert words[0].bounding_box == BoundingBox(100.0, 200.0, 130.0, 210.0)
    assert words[0].text_orientation == TextOrientation.NORMAL
    assert words[1].text_orientation == TextOrientation.ROTATE90
    assert words[0].metadata is cells[0]


def test_words_from_cells_rejects_malformed():
    with pytest.raises(ValueError):
        words_from_cells([{"text": "x"}])
    with pytest.raises(ValueError):
        words_from_cells([{"text": "x", "bbox": {"x0": 0, "y0": 0}}])
    with pytest.raises(ValueError):
        words_from_cells([{"text": "x", "bbox": {"x0": 0, "y0": 0, "x1": 1, "y1": 1}, "orientation": "sideways"}])


def test_options_dict_round_trip():
    options = DocstrumOptions(within_line=AngleBounds(-20, 20), max_workers=3)
    restored = DocstrumOptions.from_dict(options.to_dict())

    assert restored == options
    assert DocstrumOptions.from_dict(None) == DocstrumOptions()
    assert DocstrumOptions.from_dict({"between_line": [-120, -60]}).between_line == AngleBounds(-120, -60)
    assert not DocstrumOptions(neighbour_count=0).validate()


def main():
    print("\n" + "=" * 80)
    print("DOCSTRUM SEGMENTATION TEST SUITE")
    print("=" * 80)
    return pytest.main([__file__, "-q"])


if __name__ == "__main__":
    exit(main())
