"""
Preview overlays for detection results.
"""

from __future__ import annotations

from typing import Iterable, Union

import cv2
import numpy as np

from models.detection import BoundingBox, DetectionKind, DetectionResult

from .image_utils import ensure_color

# Colors (BGR)
COLOR_SINGLE = (50, 205, 50)      # Lime green - single-target match
COLOR_MULTI = (0, 165, 255)       # Orange - multi-target matches
COLOR_NEURAL = (50, 205, 50)
COLOR_TEXT = (255, 255, 255)


def _draw_box(frame: np.ndarray, box: BoundingBox, color, thickness: int = 2) -> None:
    x1, y1, x2, y2 = box.as_int_tuple()
    cv2.rectangle(frame, (x1, y1), (x2, y2), color, thickness)


def _draw_caption(frame: np.ndarray, box: BoundingBox, label: str, color) -> None:
    x1, y1, _, _ = box.as_int_tuple()
    font = cv2.FONT_HERSHEY_SIMPLEX
    font_scale = 0.5
    thickness = 1
    (text_w, text_h), _ = cv2.getTextSize(label, font, font_scale, thickness)
    top = max(0, y1 - text_h - 6)
    cv2.rectangle(frame, (x1, top), (x1 + text_w + 4, top + text_h + 6), color, -1)
    cv2.putText(frame, label, (x1 + 2, top + text_h + 2), font, font_scale, COLOR_TEXT, thickness)


def _draw_one(frame: np.ndarray, result: DetectionResult) -> None:
    if not result.success:
        return

    if result.kind is DetectionKind.NEURAL:
        if result.bounding_box is None:
            return
        _draw_box(frame, result.bounding_box, COLOR_NEURAL)
        name = result.label or (str(result.class_id) if result.class_id is not None else "")
        _draw_caption(frame, result.bounding_box, f"{name} {result.confidence:.0f}%".strip(), COLOR_NEURAL)
        return

    if result.multiple_points:
        if result.bounding_box is None:
            size = (10, 10)
        else:
            size = (int(round(result.bounding_box.width)), int(round(result.bounding_box.height)))
        for point in result.points:
            _draw_box(frame, BoundingBox.from_center(point, size), COLOR_MULTI)
        return

    if result.bounding_box is not None:
        _draw_box(frame, result.bounding_box, COLOR_SINGLE)
    else:
        cv2.drawMarker(frame, result.center_point_in_image, COLOR_SINGLE, cv2.MARKER_CROSS, 20, 2)


def draw_detection_result(
    frame: np.ndarray,
    results: Union[DetectionResult, Iterable[DetectionResult], None],
) -> np.ndarray:
    """
    Return an annotated BGR copy of ``frame``.

    Single-target matches get a green box, multi-target matches an orange box
    per point, neural results a box with a "label confidence%" caption.
    Failed results draw nothing. The input frame is never modified.
    """
    annotated = ensure_color(frame).copy()
    if results is None:
        return annotated
    if isinstance(results, DetectionResult):
        results = [results]
    for result in results:
        _draw_one(annotated, result)
    return annotated
