"""
FrameSource interface for the capture collaborator.

Screen/window capture itself lives outside the engine. A source only has to
produce FrameData: the raw pixels plus the global top-left of the captured
area on the virtual desktop, so detections can be mapped back to the screen.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from models.frame import FrameData


class FrameSource(ABC):
    """
    Abstract base class for frame sources.

    Lifecycle:
        1. Create instance
        2. Call open() to initialize the source
        3. Call read() repeatedly to get frames
        4. Call close() to release resources

    Can also be used as a context manager:
        with ImageFileSource("screenshot.png") as source:
            for frame_data in source:
                process(frame_data)
    """

    def __init__(self, source_id: str = "default"):
        self._source_id = source_id
        self._is_open = False
        self._frame_index = 0

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Number of frames read since open."""
        return self._frame_index

    @abstractmethod
    def open(self) -> None:
        """
        Open/initialize the source. Must be called before read().

        Raises:
            RuntimeError: If the source cannot be opened.
        """

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """
        Read the next frame.

        Returns:
            FrameData, or None if no frame is available right now (or ever again).
        """

    def close(self) -> None:
        """Release resources. Safe to call multiple times."""
        self._is_open = False

    def __enter__(self) -> "FrameSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameData]:
        """Yield frames until read() returns None. The source must be open."""
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")

        while True:
            frame_data = self.read()
            if frame_data is None:
                break
            yield frame_data
