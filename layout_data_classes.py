"""
Layout Data Classes
===================

Hierarchical data structure produced by page segmentation:

    TextBlock
        └── TextLine (ordered)
                └── Word (ordered, supplied by the upstream text pipeline)

Words are immutable and compared by identity: two words with the same text
and box are still two different words. Lines and blocks hold their members in
tuples, so the aggregate bounding box computed at construction always equals
the union of the current members.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from geometry import BoundingBox


# ============================================================================
# ORIENTATION
# ============================================================================

class TextOrientation(Enum):
    """Reading direction of a word, as rotation of the text baseline."""

    NORMAL = "normal"
    ROTATE90 = "rotate90"
    ROTATE180 = "rotate180"
    ROTATE270 = "rotate270"


def dominant_orientation(words: Iterable["Word"]) -> TextOrientation:
    """Most common orientation; ties go to the first one encountered."""
    counts = Counter(word.text_orientation for word in words)
    if not counts:
        return TextOrientation.NORMAL
    return counts.most_common(1)[0][0]


# ============================================================================
# ANGLE BOUNDS
# ============================================================================

@dataclass(frozen=True)
class AngleBounds:
    """Closed interval of angles in degrees."""

    lower: float
    upper: float

    def __post_init__(self) -> None:
        if self.lower > self.upper:
            raise ValueError(
                f"AngleBounds lower bound {self.lower} is greater than upper bound {self.upper}"
            )

    def contains(self, angle: float) -> bool:
        """Whether the angle lies within the bounds, both ends inclusive."""
        return self.lower <= angle <= self.upper

    def to_dict(self) -> Dict[str, float]:
        return {"lower": self.lower, "upper": self.upper}


# ============================================================================
# WORD
# ============================================================================

@dataclass(frozen=True, eq=False)
class Word:
    """
    A recognized word with its bounding box and reading direction.

    ``metadata`` carries whatever the upstream pipeline attached to the word
    (e.g. the source cell); segmentation never inspects it.
    """
    text: str
    bounding_box: BoundingBox
    text_orientation: TextOrientation = TextOrientation.NORMAL
    metadata: Optional[Mapping[str, Any]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.text is None:
            raise ValueError("Word text must not be None")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "bbox": self.bounding_box.to_dict(),
            "orientation": self.text_orientation.value,
        }


# ============================================================================
# TEXT LINE
# ============================================================================

@dataclass(frozen=True, eq=False)
class TextLine:
    """A non-empty, ordered run of words."""

    words: Tuple[Word, ...]
    bounding_box: BoundingBox = field(init=False)
    text_orientation: TextOrientation = field(init=False)

    def __post_init__(self) -> None:
        words = tuple(self.words)
        if not words:
            raise ValueError("TextLine requires at least one word")
        object.__setattr__(self, "words", words)
        object.__setattr__(self, "bounding_box", BoundingBox.from_boxes(w.bounding_box for w in words))
        object.__setattr__(self, "text_orientation", dominant_orientation(words))

    @property
    def text(self) -> str:
        return " ".join(word.text for word in self.words)

    def __len__(self) -> int:
        return len(self.words)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "bbox": self.bounding_box.to_dict(),
            "orientation": self.text_orientation.value,
            "words": [word.to_dict() for word in self.words],
        }


# ============================================================================
# TEXT BLOCK
# ============================================================================

@dataclass(frozen=True, eq=False)
class TextBlock:
    """A non-empty, ordered group of text lines."""

    lines: Tuple[TextLine, ...]
    bounding_box: BoundingBox = field(init=False)

    def __post_init__(self) -> None:
        lines = tuple(self.lines)
        if not lines:
            raise ValueError("TextBlock requires at least one line")
        object.__setattr__(self, "lines", lines)
        object.__setattr__(self, "bounding_box", BoundingBox.from_boxes(l.bounding_box for l in lines))

    @property
    def words(self) -> Tuple[Word, ...]:
        return tuple(word for line in self.lines for word in line.words)

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "bbox": self.bounding_box.to_dict(),
            "line_count": len(self.lines),
            "word_count": sum(len(line) for line in self.lines),
            "lines": [line.to_dict() for line in self.lines],
        }


__all__ = [
    "AngleBounds",
    "TextBlock",
    "TextLine",
    "TextOrientation",
    "Word",
    "dominant_orientation",
]
