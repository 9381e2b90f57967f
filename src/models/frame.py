"""
FrameData model for captured screen frames.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass
class FrameData:
    """
    Metadata and payload for a captured frame.

    Attributes:
        frame: The raw frame data as a numpy array (BGR, BGRA or grayscale).
        width: Frame width in pixels.
        height: Frame height in pixels.
        timestamp: Unix timestamp when frame was captured.
        frame_index: Sequential frame number since start.
        source: Identifier for the capture source.
        origin: Global top-left of the frame on the virtual desktop.
    """
    frame: np.ndarray
    width: int
    height: int
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None
    origin: Tuple[int, int] = (0, 0)

    @classmethod
    def from_numpy(
        cls,
        frame: np.ndarray,
        timestamp: float,
        frame_index: int = 0,
        source: Optional[str] = None,
        origin: Tuple[int, int] = (0, 0),
    ) -> "FrameData":
        """Create FrameData from a numpy array."""
        h, w = frame.shape[:2]
        return cls(
            frame=frame,
            width=w,
            height=h,
            timestamp=timestamp,
            frame_index=frame_index,
            source=source,
            origin=(int(origin[0]), int(origin[1])),
        )

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.frame.shape

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height)."""
        return (self.width, self.height)
