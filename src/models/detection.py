"""
Detection result models shared by the template and neural detectors.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from screen.mapper import VirtualDesktop

Point = Tuple[int, int]


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in pixel coordinates.

    Attributes:
        x1: Left edge x coordinate.
        y1: Top edge y coordinate.
        x2: Right edge x coordinate.
        y2: Bottom edge y coordinate.
    """
    x1: float
    y1: float
    x2: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return as (x1, y1, x2, y2) tuple."""
        return (self.x1, self.y1, self.x2, self.y2)

    def as_int_tuple(self) -> Tuple[int, int, int, int]:
        """Return as rounded integer (x1, y1, x2, y2) tuple."""
        return (round(self.x1), round(self.y1), round(self.x2), round(self.y2))

    def iou(self, other: "BoundingBox") -> float:
        """Intersection-over-union with another box (0 when disjoint)."""
        ix1 = max(self.x1, other.x1)
        iy1 = max(self.y1, other.y1)
        ix2 = min(self.x2, other.x2)
        iy2 = min(self.y2, other.y2)
        inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
        if inter <= 0:
            return 0.0
        union = self.area + other.area - inter
        if union <= 0:
            return 0.0
        return inter / union

    def offset(self, dx: float, dy: float) -> "BoundingBox":
        return BoundingBox(self.x1 + dx, self.y1 + dy, self.x2 + dx, self.y2 + dy)

    @classmethod
    def from_xywh(cls, x: float, y: float, w: float, h: float) -> "BoundingBox":
        """Create from (x, y, width, height) format."""
        return cls(x1=x, y1=y, x2=x + w, y2=y + h)

    @classmethod
    def from_center(cls, center: Point, size: Tuple[int, int]) -> "BoundingBox":
        """Integer box of ``size`` (w, h) whose top-left is ``center - size // 2``."""
        w, h = size
        x = center[0] - w // 2
        y = center[1] - h // 2
        return cls.from_xywh(x, y, w, h)


class DetectionKind(str, Enum):
    """Which detector produced a result."""

    TEMPLATE = "template"
    NEURAL = "neural"


@dataclass(frozen=True)
class DetectionResult:
    """
    Outcome of one detection, regardless of the algorithm that produced it.

    When ``success`` is False the geometric fields carry zero defaults and must
    not be interpreted by consumers.

    Attributes:
        success: Whether the confidence cleared the configured threshold.
        confidence: Score as a percentage in [0, 100].
        center_point_in_image: Pixel location inside the analyzed frame.
        center_point_on_desktop: Absolute virtual-desktop coordinate (0..65535),
            only populated by ``map_to_desktop``.
        bounding_box: Box in frame pixels (neural results, template matches).
        points: Accepted centers in multi-target template mode, else empty.
        label: Class name for neural results, empty for template matching.
        class_id: Class index for neural results.
        kind: Producer of the result.
    """
    success: bool = False
    confidence: float = 0.0
    center_point_in_image: Point = (0, 0)
    center_point_on_desktop: Tuple[float, float] = (0.0, 0.0)
    bounding_box: Optional[BoundingBox] = None
    points: Tuple[Point, ...] = field(default_factory=tuple)
    label: str = ""
    class_id: Optional[int] = None
    kind: DetectionKind = DetectionKind.TEMPLATE

    @property
    def multiple_points(self) -> bool:
        return len(self.points) > 0

    @classmethod
    def failed(cls, kind: DetectionKind = DetectionKind.TEMPLATE, confidence: float = 0.0) -> "DetectionResult":
        """A miss with deterministic zero-valued geometry."""
        return cls(success=False, confidence=confidence, kind=kind)

    def global_point(self, frame_origin: Point) -> Point:
        """Center point in global desktop pixels for a frame captured at ``frame_origin``."""
        return (frame_origin[0] + self.center_point_in_image[0], frame_origin[1] + self.center_point_in_image[1])

    def map_to_desktop(self, desktop: "VirtualDesktop", frame_origin: Point = (0, 0)) -> "DetectionResult":
        """Return a copy with ``center_point_on_desktop`` populated; misses are returned unchanged."""
        if not self.success:
            return self
        gx, gy = self.global_point(frame_origin)
        return replace(self, center_point_on_desktop=desktop.to_absolute_virtual(gx, gy))

    def to_dict(self) -> dict:
        d = {
            "success": self.success,
            "confidence": self.confidence,
            "center_point_in_image": list(self.center_point_in_image),
            "center_point_on_desktop": list(self.center_point_on_desktop),
            "kind": self.kind.value,
        }
        if self.bounding_box is not None:
            d["bounding_box"] = list(self.bounding_box.as_tuple())
        if self.points:
            d["points"] = [list(p) for p in self.points]
        if self.label:
            d["label"] = self.label
        if self.class_id is not None:
            d["class_id"] = self.class_id
        return d
