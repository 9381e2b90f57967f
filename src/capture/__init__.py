"""
Capture layer: frame sources feeding the detection loop.
"""

from .base import FrameSource
from .sources import CallableFrameSource, ImageFileSource

__all__ = [
    "FrameSource",
    "CallableFrameSource",
    "ImageFileSource",
]
