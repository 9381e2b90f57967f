"""
YOLO pre/post-processing.

- letterbox(): aspect-preserving resize into a square canvas with black padding
- interpret_dims(): detect [1, attrs, N] vs [1, N, attrs] output layouts
- decode(): best class per candidate + confidence filter
- nms(): class-aware greedy non-maximum suppression
- reverse_letterbox(): map canvas boxes back into source image pixels

Boxes inside this module are plain float arrays; conversion to
DetectionResult happens in the detector.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import cv2
import numpy as np

from models.errors import InvalidArgumentError


@dataclass(frozen=True)
class LetterboxInfo:
    """Scale and padding applied by letterbox(), needed to invert it."""
    scale: float
    pad_x: int
    pad_y: int
    new_width: int
    new_height: int


@dataclass(frozen=True)
class Candidates:
    """Decoded candidates: boxes are (N, 4) cx, cy, w, h in canvas pixels."""
    boxes: np.ndarray
    scores: np.ndarray
    class_ids: np.ndarray

    def __len__(self) -> int:
        return int(self.scores.shape[0])

    def take(self, indices: np.ndarray) -> "Candidates":
        return Candidates(self.boxes[indices], self.scores[indices], self.class_ids[indices])


def letterbox(image: np.ndarray, size: int, canvas: Optional[np.ndarray] = None) -> Tuple[np.ndarray, LetterboxInfo]:
    """
    Resize a BGR image into a ``size`` x ``size`` canvas, centered, black padding.

    When ``canvas`` is given it is overwritten in place and returned.
    """
    h0, w0 = image.shape[:2]
    if h0 == 0 or w0 == 0:
        raise InvalidArgumentError("cannot letterbox an empty image")

    r = min(size / w0, size / h0)
    nw = min(size, max(1, int(round(w0 * r))))
    nh = min(size, max(1, int(round(h0 * r))))
    pad_x = (size - nw) // 2
    pad_y = (size - nh) // 2

    if canvas is None:
        canvas = np.zeros((size, size, 3), dtype=np.uint8)
    else:
        canvas.fill(0)

    if (nw, nh) == (w0, h0):
        resized = image
    else:
        resized = cv2.resize(image, (nw, nh), interpolation=cv2.INTER_LINEAR)
    canvas[pad_y:pad_y + nh, pad_x:pad_x + nw] = resized
    return canvas, LetterboxInfo(scale=r, pad_x=pad_x, pad_y=pad_y, new_width=nw, new_height=nh)


def interpret_dims(dims: Iterable[int]) -> Tuple[bool, int, int]:
    """
    Return (channels_first, num_candidates, num_attributes) for an output shape.

    (1, 84, 8400) -> (True, 8400, 84); (1, 8400, 84) -> (False, 8400, 84).
    The smaller of the two trailing axes is taken as the attribute axis.
    """
    dims = tuple(int(d) for d in dims)
    if len(dims) != 3 or dims[0] != 1:
        raise InvalidArgumentError(f"Unexpected output shape {list(dims)}")

    if dims[1] < dims[2]:
        channels_first, attrs, num = True, dims[1], dims[2]
    else:
        channels_first, num, attrs = False, dims[1], dims[2]

    if attrs < 5:
        raise InvalidArgumentError(f"YOLO output with fewer than 5 attributes is not supported (got {attrs})")
    return channels_first, num, attrs


def decode(
    output: np.ndarray,
    conf_threshold: float,
    class_ids: Optional[Iterable[int]] = None,
) -> Candidates:
    """
    Decode a raw YOLO output tensor.

    Each candidate keeps only its best class; candidates whose best score is
    not positive or below ``conf_threshold`` are dropped, as are candidates
    whose best class is not in ``class_ids`` (when given).
    """
    channels_first, _num, _attrs = interpret_dims(output.shape)
    rows = output[0].T if channels_first else output[0]

    boxes = rows[:, :4].astype(np.float32, copy=False)
    class_scores = rows[:, 4:]
    best = np.argmax(class_scores, axis=1)
    best_scores = class_scores[np.arange(class_scores.shape[0]), best]

    keep = (best_scores > 0) & (best_scores >= conf_threshold)
    if class_ids is not None:
        keep &= np.isin(best, np.fromiter(class_ids, dtype=np.int64))

    return Candidates(
        boxes=np.ascontiguousarray(boxes[keep]),
        scores=best_scores[keep].astype(np.float32, copy=False),
        class_ids=best[keep].astype(np.int64, copy=False),
    )


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    out = np.empty_like(boxes, dtype=np.float32)
    out[:, 0] = boxes[:, 0] - boxes[:, 2] / 2
    out[:, 1] = boxes[:, 1] - boxes[:, 3] / 2
    out[:, 2] = boxes[:, 0] + boxes[:, 2] / 2
    out[:, 3] = boxes[:, 1] + boxes[:, 3] / 2
    return out


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    ix1 = np.maximum(box[0], others[:, 0])
    iy1 = np.maximum(box[1], others[:, 1])
    ix2 = np.minimum(box[2], others[:, 2])
    iy2 = np.minimum(box[3], others[:, 3])
    inter = np.clip(ix2 - ix1, 0, None) * np.clip(iy2 - iy1, 0, None)
    area = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    areas = np.clip(others[:, 2] - others[:, 0], 0, None) * np.clip(others[:, 3] - others[:, 1], 0, None)
    union = area + areas - inter
    return np.where(union > 0, inter / np.where(union > 0, union, 1), 0.0)


def nms(candidates: Candidates, iou_threshold: float) -> np.ndarray:
    """
    Class-aware greedy NMS.

    Walks candidates by descending score (ties keep decode order) and
    suppresses lower-ranked boxes of the same class whose IoU with a kept box
    exceeds ``iou_threshold``. Returns kept indices in score order.
    """
    n = len(candidates)
    if n == 0:
        return np.empty((0,), dtype=np.int64)

    xyxy = cxcywh_to_xyxy(candidates.boxes)
    order = np.argsort(-candidates.scores, kind="stable")
    suppressed = np.zeros(n, dtype=bool)
    kept = []

    for rank, i in enumerate(order):
        if suppressed[i]:
            continue
        kept.append(i)
        rest = order[rank + 1:]
        rest = rest[~suppressed[rest] & (candidates.class_ids[rest] == candidates.class_ids[i])]
        if rest.size == 0:
            continue
        overlaps = _iou_one_to_many(xyxy[i], xyxy[rest])
        suppressed[rest[overlaps > iou_threshold]] = True

    return np.asarray(kept, dtype=np.int64)


def reverse_letterbox(boxes: np.ndarray, info: LetterboxInfo) -> np.ndarray:
    """Map (N, 4) cx, cy, w, h canvas boxes to (N, 4) x1, y1, x2, y2 source-image boxes."""
    xyxy = cxcywh_to_xyxy(boxes)
    xyxy[:, [0, 2]] -= info.pad_x
    xyxy[:, [1, 3]] -= info.pad_y
    xyxy /= info.scale
    return xyxy
