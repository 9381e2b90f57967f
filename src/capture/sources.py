"""
Concrete frame sources.

- CallableFrameSource: wraps the on-demand capture function of the host
  application (returns a frame, or a (frame, origin) pair)
- ImageFileSource: serves a single image from disk, for offline runs and tests
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

import numpy as np

from detection.image_utils import load_image
from models.frame import FrameData

from .base import FrameSource

Origin = Tuple[int, int]
CaptureResult = Union[None, np.ndarray, Tuple[np.ndarray, Origin]]


class CallableFrameSource(FrameSource):
    """
    Frame source backed by a capture function.

    The function is called once per read(). It may return a frame (captured at
    ``origin``), a ``(frame, origin)`` tuple, or None when nothing was captured.
    Exceptions raised by the function are logged and reported as None.
    """

    def __init__(
        self,
        capture_fn: Callable[[], CaptureResult],
        origin: Origin = (0, 0),
        source_id: str = "capture",
    ):
        super().__init__(source_id)
        self._capture_fn = capture_fn
        self._origin = origin

    def open(self) -> None:
        self._is_open = True
        self._frame_index = 0

    def read(self) -> Optional[FrameData]:
        if not self._is_open:
            return None

        try:
            captured = self._capture_fn()
        except Exception as e:
            logging.warning(f"Capture failed on {self.source_id}: {e}")
            return None

        if captured is None:
            return None
        if isinstance(captured, tuple):
            frame, origin = captured
        else:
            frame, origin = captured, self._origin
        if frame is None or frame.size == 0:
            return None

        frame_data = FrameData.from_numpy(
            frame,
            timestamp=time.time(),
            frame_index=self._frame_index,
            source=self.source_id,
            origin=origin,
        )
        self._frame_index += 1
        return frame_data


class ImageFileSource(FrameSource):
    """
    Serves one image file as a frame.

    With ``repeat=False`` (default) read() returns the image once and then
    None, so iterating the source yields exactly one frame.
    """

    def __init__(
        self,
        path: Union[str, Path],
        origin: Origin = (0, 0),
        repeat: bool = False,
        source_id: Optional[str] = None,
    ):
        super().__init__(source_id or Path(path).name)
        self.path = Path(path)
        self.origin = origin
        self.repeat = repeat
        self._image: Optional[np.ndarray] = None

    def open(self) -> None:
        try:
            self._image = load_image(self.path)
        except ValueError as e:
            raise RuntimeError(f"Cannot open image source {self.path}: {e}") from e
        self._is_open = True
        self._frame_index = 0
        logging.info(f"Image source opened: {self.path} ({self._image.shape[1]}x{self._image.shape[0]})")

    def read(self) -> Optional[FrameData]:
        if not self._is_open or self._image is None:
            return None
        if not self.repeat and self._frame_index > 0:
            return None

        frame_data = FrameData.from_numpy(
            self._image.copy(),
            timestamp=time.time(),
            frame_index=self._frame_index,
            source=self.source_id,
            origin=self.origin,
        )
        self._frame_index += 1
        return frame_data

    def close(self) -> None:
        self._image = None
        super().close()
