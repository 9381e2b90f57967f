"""
Coordinate mapping from global desktop pixels to absolute virtual coordinates.

Input simulation issues absolute pointer moves in a fixed 0..65535 range that
spans the whole virtual desktop (the union of all monitor bounds), independent
of physical resolution or monitor layout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from models.errors import InvalidArgumentError

ABSOLUTE_MAX = 65535.0


@dataclass(frozen=True)
class Rect:
    """Integer rectangle in global desktop pixels."""
    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    @classmethod
    def from_sequence(cls, values: Sequence[int]) -> "Rect":
        if len(values) != 4:
            raise InvalidArgumentError(f"monitor rectangle must be [left, top, width, height], got {list(values)}")
        left, top, width, height = (int(v) for v in values)
        if width <= 0 or height <= 0:
            raise InvalidArgumentError(f"monitor rectangle must have positive size, got {list(values)}")
        return cls(left, top, width, height)


class VirtualDesktop:
    """
    The bounding rectangle of all monitors.

    Example:
        desktop = VirtualDesktop([Rect(0, 0, 1920, 1080), Rect(1920, 0, 1280, 1024)])
        ax, ay = desktop.to_absolute_virtual(2000, 500)
    """

    def __init__(self, monitors: Iterable[Rect]):
        self.monitors: List[Rect] = list(monitors)
        if not self.monitors:
            raise InvalidArgumentError("at least one monitor is required")
        left = min(m.left for m in self.monitors)
        top = min(m.top for m in self.monitors)
        right = max(m.right for m in self.monitors)
        bottom = max(m.bottom for m in self.monitors)
        self.bounds = Rect(left, top, right - left, bottom - top)

    @classmethod
    def from_config(cls, monitors: Iterable[Sequence[int]]) -> "VirtualDesktop":
        """Build from ``[[left, top, width, height], ...]`` as found in config.yaml."""
        return cls(Rect.from_sequence(m) for m in monitors)

    def to_absolute_virtual(self, global_x: int, global_y: int) -> Tuple[float, float]:
        """
        Map a global pixel to the absolute 0..65535 range.

        Divides by (width - 1) / (height - 1) so the last pixel column and row
        reach 65535. Points outside the bounds are clamped, not extrapolated.
        """
        b = self.bounds
        abs_x = (global_x - b.left) * ABSOLUTE_MAX / max(1, b.width - 1)
        abs_y = (global_y - b.top) * ABSOLUTE_MAX / max(1, b.height - 1)
        return (_clamp(abs_x), _clamp(abs_y))


def to_absolute_virtual(global_x: int, global_y: int, desktop: VirtualDesktop) -> Tuple[float, float]:
    """Functional form of VirtualDesktop.to_absolute_virtual."""
    return desktop.to_absolute_virtual(global_x, global_y)


def _clamp(value: float) -> float:
    return min(ABSOLUTE_MAX, max(0.0, value))
