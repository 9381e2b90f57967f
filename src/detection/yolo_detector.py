"""
YOLO detector on an ONNX Runtime session.

Frame -> letterbox into the pooled canvas -> NCHW float tensor -> inference ->
decode ([1, attrs, N] or [1, N, attrs]) -> class-aware NMS -> boxes mapped back
into frame pixels.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from inference.backend import InferenceSession, create_session
from inference.buffers import InferenceBuffers
from models.config import YoloOptions
from models.detection import BoundingBox, DetectionKind, DetectionResult
from models.errors import InvalidArgumentError, InvalidStateError, ShapeMismatchError

from .base import Detector
from .image_utils import ensure_color
from .yolo_decode import decode, letterbox, nms, reverse_letterbox

Roi = Tuple[int, int, int, int]  # (x, y, width, height)


def clamp_roi(roi: Optional[Roi], width: int, height: int) -> Roi:
    """Intersect ``roi`` with the frame; the full frame when ``roi`` is None."""
    if roi is None:
        return (0, 0, width, height)
    x, y, w, h = (int(v) for v in roi)
    x1, y1 = max(0, x), max(0, y)
    x2, y2 = min(width, x + w), min(height, y + h)
    return (x1, y1, max(0, x2 - x1), max(0, y2 - y1))


class YoloDetector(Detector):
    """
    Neural detector bound to one model session and one buffer set.

    Options are fixed for the lifetime of the detector. After a shape mismatch
    (the model was swapped under us) or close(), detect() raises
    InvalidStateError; build a new detector instead.

    Not safe for concurrent use; at most one detect() in flight per instance.
    """

    def __init__(
        self,
        session: InferenceSession,
        options: Optional[YoloOptions] = None,
        labels: Optional[Sequence[str]] = None,
        class_ids: Optional[Iterable[int]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._log = logger or logging.getLogger(__name__)
        self.options = options or YoloOptions()
        self.labels: List[str] = list(labels or [])
        self.class_ids = None if class_ids is None else [int(c) for c in class_ids]

        self._session: Optional[InferenceSession] = session
        self._input_name = session.get_inputs()[0].name
        self.buffers = InferenceBuffers(self.options.input_size)
        self._failure: Optional[str] = None

    @classmethod
    def from_model(
        cls,
        model_path: Union[str, Path],
        options: Optional[YoloOptions] = None,
        labels: Optional[Sequence[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "YoloDetector":
        options = options or YoloOptions()
        session = create_session(str(model_path), options, logger=logger)
        return cls(session, options=options, labels=labels, logger=logger)

    @property
    def session(self) -> Optional[InferenceSession]:
        return self._session

    @property
    def closed(self) -> bool:
        return self._session is None

    def label_for(self, class_id: int) -> str:
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return str(class_id)

    def detect(
        self,
        frame: Optional[np.ndarray],
        roi: Optional[Roi] = None,
        conf_threshold: Optional[float] = None,
        class_ids: Optional[Iterable[int]] = None,
    ) -> List[DetectionResult]:
        """
        Run the model on ``frame`` (BGR, BGRA or grayscale).

        Args:
            frame: Image to analyze.
            roi: Optional (x, y, width, height) region; clamped to the frame.
            conf_threshold: Overrides options.conf_threshold (0-1).
            class_ids: Overrides the detector's class filter.

        Returns:
            One result per surviving box, highest confidence first. Empty when
            nothing cleared the threshold.

        Raises:
            InvalidStateError: After close() or a previous shape mismatch.
            ShapeMismatchError: If the output shape differs from the first run.
        """
        if self._session is None:
            raise InvalidStateError("YOLO detector has been closed")
        if self._failure is not None:
            raise InvalidStateError(f"YOLO detector is unusable after an earlier failure: {self._failure}")
        if frame is None or frame.size == 0:
            return []

        threshold = self.options.conf_threshold if conf_threshold is None else conf_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidArgumentError(f"conf_threshold must be between 0 and 1 (got {threshold})")

        rx, ry, rw, rh = clamp_roi(roi, frame.shape[1], frame.shape[0])
        if rw <= 0 or rh <= 0:
            return []
        crop = ensure_color(frame[ry:ry + rh, rx:rx + rw])

        _, info = letterbox(crop, self.buffers.size, self.buffers.canvas)
        tensor = self.buffers.write_tensor_from_canvas()

        outputs = self._session.run(None, {self._input_name: tensor})
        try:
            output = self.buffers.store_output(np.asarray(outputs[0]))
        except ShapeMismatchError as e:
            self._failure = str(e)
            self._log.error(f"YOLO output shape changed: {e}")
            raise

        wanted = self.class_ids if class_ids is None else list(class_ids)
        candidates = decode(output, threshold, wanted)
        candidates = candidates.take(nms(candidates, self.options.nms_iou))
        if len(candidates) == 0:
            return []

        boxes = reverse_letterbox(candidates.boxes, info)
        boxes[:, [0, 2]] += rx
        boxes[:, [1, 3]] += ry

        results: List[DetectionResult] = []
        for (x1, y1, x2, y2), score, cid in zip(boxes, candidates.scores, candidates.class_ids):
            box = BoundingBox(float(x1), float(y1), float(x2), float(y2))
            cx, cy = box.center
            results.append(
                DetectionResult(
                    success=True,
                    confidence=min(100.0, max(0.0, float(score) * 100.0)),
                    center_point_in_image=(int(round(cx)), int(round(cy))),
                    bounding_box=box,
                    label=self.label_for(int(cid)),
                    class_id=int(cid),
                    kind=DetectionKind.NEURAL,
                )
            )
        return results

    def close(self) -> None:
        """Release the session and buffers. Safe to call twice."""
        if self._session is None:
            return
        self.buffers.release()
        self._session = None

    def __enter__(self) -> "YoloDetector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
