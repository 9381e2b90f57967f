"""
Detection interfaces.

We keep this lightweight so the pipeline can drive either backend:
- template matching (classical CV, single reference image)
- YOLO (neural network via ONNX Runtime)
"""

from __future__ import annotations

from typing import List, Union

import numpy as np

from models.detection import DetectionResult


class Detector:
    """Detector interface returning results in frame-pixel space."""

    def detect(self, frame: np.ndarray) -> Union[DetectionResult, List[DetectionResult]]:
        raise NotImplementedError

    def close(self) -> None:
        """Release any held resources. No-op by default."""
