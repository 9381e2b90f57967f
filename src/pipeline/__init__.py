"""
Pipeline module for the detection engine.

The pipeline orchestrates the per-frame flow:
- Frame acquisition from capture sources
- Detection (template matching or YOLO)
- Mapping hits onto the virtual desktop
- Handing results to callbacks
"""

from .engine import DetectionLoop, LoopConfig, LoopStats

__all__ = [
    "DetectionLoop",
    "LoopConfig",
    "LoopStats",
]
