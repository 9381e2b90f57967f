"""
Typed models for the detection engine.

Value types shared by the detectors, the provisioner and the capture layer.
"""

from .frame import FrameData
from .detection import BoundingBox, DetectionKind, DetectionResult
from .registry import ModelEntry, ModelRegistry
from .progress import DownloadProgress, DownloadStatus
from .errors import (
    DetectionEngineError,
    DownloadError,
    IntegrityMismatchError,
    InvalidArgumentError,
    InvalidStateError,
    MalformedRegistryError,
    ProvisioningError,
    ShapeMismatchError,
)
from .config import (
    Config,
    DesktopConfig,
    GpuBackend,
    MatchMode,
    OptimizationLevel,
    ProvisioningConfig,
    TemplateMatchingConfig,
    YoloOptions,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "BoundingBox",
    "DetectionKind",
    "DetectionResult",
    # Registry / provisioning
    "ModelEntry",
    "ModelRegistry",
    "DownloadProgress",
    "DownloadStatus",
    # Errors
    "DetectionEngineError",
    "DownloadError",
    "IntegrityMismatchError",
    "InvalidArgumentError",
    "InvalidStateError",
    "MalformedRegistryError",
    "ProvisioningError",
    "ShapeMismatchError",
    # Config
    "Config",
    "DesktopConfig",
    "GpuBackend",
    "MatchMode",
    "OptimizationLevel",
    "ProvisioningConfig",
    "TemplateMatchingConfig",
    "YoloOptions",
]
