"""
Template matching detector.

Slides a grayscale template over a grayscale frame with one of OpenCV's
cross-correlation metrics and reports the best match (single-target mode) or
every match that survives a greedy radius suppression (multi-target mode).

This is a best-effort detector: configuration errors raise, but a failure
while correlating a frame comes back as DetectionResult(success=False) so an
automation step can simply retry on the next frame.

Not safe for concurrent use; at most one detect() in flight per instance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import cv2
import numpy as np

from models.config import MatchMode, TemplateMatchingConfig, parse_enum
from models.detection import BoundingBox, DetectionKind, DetectionResult
from models.errors import InvalidArgumentError, InvalidStateError

from .base import Detector
from .image_utils import load_image, normalize_image

Roi = Tuple[int, int, int, int]  # (x, y, width, height)

_CV_MODES = {
    MatchMode.SQDIFF: cv2.TM_SQDIFF,
    MatchMode.SQDIFF_NORMED: cv2.TM_SQDIFF_NORMED,
    MatchMode.CCORR: cv2.TM_CCORR,
    MatchMode.CCORR_NORMED: cv2.TM_CCORR_NORMED,
    MatchMode.CCOEFF: cv2.TM_CCOEFF,
    MatchMode.CCOEFF_NORMED: cv2.TM_CCOEFF_NORMED,
}

# Candidates checked per vectorized step of multi-target suppression
_SUPPRESSION_BLOCK = 1024


def to_unit_score(values: Union[float, np.ndarray], mode: MatchMode, template_area: int) -> Union[float, np.ndarray]:
    """
    Map raw metric values onto a 0..1 "higher is better" scale.

    Normalized metrics are used as-is; raw metrics are divided by their largest
    possible value for 8-bit data. Squared-difference scores are inverted.
    """
    scores = np.asarray(values, dtype=np.float64)
    if not mode.is_normalized:
        full_scale = 255.0 * 255.0 * max(1, template_area)
        if mode is MatchMode.CCOEFF:
            full_scale /= 4.0
        scores = scores / full_scale
    if mode.is_squared_difference:
        scores = 1.0 - scores
    scores = np.clip(np.nan_to_num(scores, nan=0.0, posinf=1.0, neginf=0.0), 0.0, 1.0)
    if scores.ndim == 0:
        return float(scores)
    return scores


class TemplateMatcher(Detector):
    """
    Locates a template image inside frames.

    Example:
        matcher = TemplateMatcher(MatchMode.CCOEFF_NORMED, threshold=0.9)
        matcher.set_template("ok_button.png")
        result = matcher.detect(frame)
        if result.success:
            click(result.center_point_in_image)
    """

    def __init__(
        self,
        mode: Union[MatchMode, str] = MatchMode.CCOEFF_NORMED,
        threshold: float = 0.9,
        multiple_points: bool = False,
        suppression_radius: int = 10,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Args:
            mode: Correlation metric.
            threshold: Minimum 0..1 score for a match.
            multiple_points: Report every suppressed match instead of the best one.
            suppression_radius: Per-axis pixel radius used by multi-target suppression.
            logger: Logger to use; defaults to the module logger.

        Raises:
            InvalidArgumentError: On an unknown mode or out-of-range values.
        """
        self._log = logger or logging.getLogger(__name__)
        self._mode = parse_enum(MatchMode, mode, "mode")
        self._threshold = 0.9
        self._suppression_radius = 10
        self._multiple_points = bool(multiple_points)
        self._template: Optional[np.ndarray] = None
        self._template_path: Optional[str] = None
        self._roi: Optional[Roi] = None
        self._use_roi = False

        self.set_threshold(threshold)
        self.set_suppression_radius(suppression_radius)

    @classmethod
    def from_config(cls, cfg: TemplateMatchingConfig, logger: Optional[logging.Logger] = None) -> "TemplateMatcher":
        return cls(
            mode=cfg.mode,
            threshold=cfg.threshold,
            multiple_points=cfg.multiple_points,
            suppression_radius=cfg.suppression_radius,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def mode(self) -> MatchMode:
        return self._mode

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def suppression_radius(self) -> int:
        return self._suppression_radius

    @property
    def multiple_points(self) -> bool:
        return self._multiple_points

    @property
    def template_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) of the current template."""
        if self._template is None:
            return None
        h, w = self._template.shape[:2]
        return (w, h)

    def set_match_mode(self, mode: Union[MatchMode, str]) -> None:
        self._mode = parse_enum(MatchMode, mode, "mode")

    def set_threshold(self, threshold: float) -> None:
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise InvalidArgumentError("threshold must be a number")
        if not 0.0 <= threshold <= 1.0:
            raise InvalidArgumentError(f"threshold must be between 0 and 1 (got {threshold})")
        self._threshold = float(threshold)

    def set_suppression_radius(self, radius: int) -> None:
        if isinstance(radius, bool) or not isinstance(radius, int):
            raise InvalidArgumentError("suppression radius must be an integer")
        if radius < 0:
            raise InvalidArgumentError("suppression radius cannot be negative")
        self._suppression_radius = radius

    def enable_multiple_points(self) -> None:
        self._multiple_points = True

    def disable_multiple_points(self) -> None:
        self._multiple_points = False

    def set_roi(self, roi: Roi) -> None:
        """Restrict the search to (x, y, width, height); takes effect once enabled."""
        if len(roi) != 4:
            raise InvalidArgumentError("roi must be (x, y, width, height)")
        self._roi = tuple(int(v) for v in roi)

    def enable_roi(self) -> None:
        self._use_roi = True

    def disable_roi(self) -> None:
        self._use_roi = False

    def set_template(self, template: Union[str, Path, np.ndarray]) -> None:
        """
        Set the template from a file path or an image array.

        Setting the same path twice is a no-op.

        Raises:
            InvalidArgumentError: If the image cannot be read or is empty.
        """
        path: Optional[str] = None
        if not isinstance(template, np.ndarray):
            path = str(template)
            if path == self._template_path and self._template is not None:
                return

        image = load_image(template)
        if image.size == 0:
            raise InvalidArgumentError("template image is empty")
        self._template = normalize_image(image)
        self._template_path = path
        self._log.debug(f"Template set: {path or 'array'} size={self.template_size}")

    @staticmethod
    def normalize(image: np.ndarray) -> np.ndarray:
        """8-bit single-channel copy of ``image`` (see image_utils.normalize_image)."""
        return normalize_image(image)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, frame: Optional[np.ndarray]) -> DetectionResult:
        """
        Search ``frame`` for the current template.

        Raises:
            InvalidStateError: If no template has been set.
        """
        if self._template is None:
            raise InvalidStateError("Template not set. Call set_template first.")
        if frame is None or frame.size == 0:
            return DetectionResult.failed()

        try:
            source = normalize_image(frame)
        except InvalidArgumentError as e:
            self._log.debug(f"Frame cannot be normalized: {e}")
            return DetectionResult.failed()
        search, offset = self._search_region(source)

        th, tw = self._template.shape[:2]
        if search.shape[0] < th or search.shape[1] < tw:
            return DetectionResult.failed()

        try:
            surface = cv2.matchTemplate(search, self._template, _CV_MODES[self._mode])
            if self._multiple_points:
                return self._detect_multiple(surface, offset)
            return self._detect_single(surface, offset)
        except (cv2.error, ValueError) as e:
            self._log.debug(f"Template correlation failed: {e}")
            return DetectionResult.failed()

    def _search_region(self, source: np.ndarray) -> Tuple[np.ndarray, Tuple[int, int]]:
        if not self._use_roi or self._roi is None:
            return source, (0, 0)
        x, y, w, h = self._roi
        rows, cols = source.shape[:2]
        if w <= 0 or h <= 0 or x < 0 or y < 0 or x + w > cols or y + h > rows:
            return source, (0, 0)
        return source[y:y + h, x:x + w], (x, y)

    def _center_of(self, top_left: Tuple[int, int], offset: Tuple[int, int]) -> Tuple[int, int]:
        th, tw = self._template.shape[:2]
        return (int(top_left[0]) + tw // 2 + offset[0], int(top_left[1]) + th // 2 + offset[1])

    def _detect_single(self, surface: np.ndarray, offset: Tuple[int, int]) -> DetectionResult:
        min_val, max_val, min_loc, max_loc = cv2.minMaxLoc(surface)
        if self._mode.is_squared_difference:
            raw, loc = min_val, min_loc
        else:
            raw, loc = max_val, max_loc

        score = to_unit_score(raw, self._mode, self._template.size)
        confidence = min(100.0, max(0.0, score * 100.0))
        if score < self._threshold:
            return DetectionResult.failed(confidence=confidence)

        center = self._center_of(loc, offset)
        return DetectionResult(
            success=True,
            confidence=confidence,
            center_point_in_image=center,
            bounding_box=BoundingBox.from_center(center, self.template_size),
            kind=DetectionKind.TEMPLATE,
        )

    def _detect_multiple(self, surface: np.ndarray, offset: Tuple[int, int]) -> DetectionResult:
        scores = to_unit_score(surface, self._mode, self._template.size)
        ys, xs = np.nonzero(scores >= self._threshold)
        if len(xs) == 0:
            return DetectionResult.failed()

        candidate_scores = scores[ys, xs]
        order = np.argsort(-candidate_scores, kind="stable")
        radius = self._suppression_radius

        # A cell is suppressed once an accepted match lies within radius on both axes
        suppressed = np.zeros(scores.shape, dtype=bool)
        accepted: List[Tuple[int, int]] = []
        pos = 0
        while pos < len(order):
            block = order[pos:pos + _SUPPRESSION_BLOCK]
            free = np.flatnonzero(~suppressed[ys[block], xs[block]])
            if free.size == 0:
                pos += len(block)
                continue

            idx = block[free[0]]
            x, y = int(xs[idx]), int(ys[idx])
            accepted.append(self._center_of((x, y), offset))
            suppressed[max(0, y - radius):y + radius + 1, max(0, x - radius):x + radius + 1] = True
            pos += int(free[0]) + 1

        confidence = min(100.0, max(0.0, float(candidate_scores.max()) * 100.0))
        first = accepted[0]
        return DetectionResult(
            success=True,
            confidence=confidence,
            center_point_in_image=first,
            bounding_box=BoundingBox.from_center(first, self.template_size),
            points=tuple(accepted),
            kind=DetectionKind.TEMPLATE,
        )
