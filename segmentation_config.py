"""
Configuration for Docstrum page segmentation.

Provides a dataclass with the algorithm defaults, validation, and
round-tripping to plain dicts for dict-based configuration.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from layout_data_classes import AngleBounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocstrumOptions:
    """
    Tuning parameters for `get_blocks`.

    within_line:
        Angles (degrees) between a word's bottom-right corner and a neighbour's
        bottom-left corner for the two to sit on the same line.
    between_line:
        Angles between word centroids for the two to sit on adjacent lines
        (neighbour below).
    between_line_multiplier:
        Maximum line-to-line distance for blocking, as a multiple of the
        estimated between-line distance.
    max_workers:
        Thread bound for the neighbour searches. None = host concurrency,
        1 = run inline.
    neighbour_count:
        Number of nearest candidates examined per item.
    """
    within_line: AngleBounds = AngleBounds(-30, 30)
    between_line: AngleBounds = AngleBounds(-135, -45)
    between_line_multiplier: float = 1.3
    max_workers: Optional[int] = None
    neighbour_count: int = 2

    def validate(self) -> bool:
        """
        Validate configuration options.

        Returns:
            True if configuration is valid, False otherwise
        """
        valid = True
        if not self.between_line_multiplier > 0:
            logger.error("between_line_multiplier must be positive, got %r", self.between_line_multiplier)
            valid = False
        if self.max_workers is not None and self.max_workers < 1:
            logger.error("max_workers must be None or at least 1, got %r", self.max_workers)
            valid = False
        if self.neighbour_count < 1:
            logger.error("neighbour_count must be at least 1, got %r", self.neighbour_count)
            valid = False
        return valid

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'within_line': self.within_line.to_dict(),
            'between_line': self.between_line.to_dict(),
            'between_line_multiplier': self.between_line_multiplier,
            'max_workers': self.max_workers,
            'neighbour_count': self.neighbour_count,
        }

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "DocstrumOptions":
        """
        Create options from a dict. Missing keys keep their defaults and
        unknown keys are ignored with a warning.
        """
        if not config:
            return cls()

        known = set(cls.__dataclass_fields__)
        unknown = set(config) - known
        if unknown:
            logger.warning("Ignoring unknown segmentation options: %s", ", ".join(sorted(unknown)))

        kwargs: Dict[str, Any] = {key: value for key, value in config.items() if key in known}
        for key in ('within_line', 'between_line'):
            bounds = kwargs.get(key)
            if isinstance(bounds, dict):
                kwargs[key] = AngleBounds(float(bounds['lower']), float(bounds['upper']))
            elif isinstance(bounds, (list, tuple)):
                kwargs[key] = AngleBounds(float(bounds[0]), float(bounds[1]))
        return cls(**kwargs)


__all__ = ["DocstrumOptions"]
