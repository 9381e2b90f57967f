"""
Detection Module

Template matching and YOLO detectors producing DetectionResult values.
"""

from .base import Detector
from .template_matching import TemplateMatcher
from .yolo_detector import YoloDetector
from .yolo_manager import YoloManager
from .labels import SidecarLabelProvider
from .draw import draw_detection_result

__all__ = [
    'Detector',
    'TemplateMatcher',
    'YoloDetector',
    'YoloManager',
    'SidecarLabelProvider',
    'draw_detection_result',
]
