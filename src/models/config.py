"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from .errors import InvalidArgumentError

E = TypeVar("E", bound=Enum)


class MatchMode(str, Enum):
    """Cross-correlation metrics usable for template matching."""

    SQDIFF = "sqdiff"
    SQDIFF_NORMED = "sqdiff_normed"
    CCORR = "ccorr"
    CCORR_NORMED = "ccorr_normed"
    CCOEFF = "ccoeff"
    CCOEFF_NORMED = "ccoeff_normed"

    @property
    def is_squared_difference(self) -> bool:
        return self in (MatchMode.SQDIFF, MatchMode.SQDIFF_NORMED)

    @property
    def is_normalized(self) -> bool:
        return self.value.endswith("_normed")


class GpuBackend(str, Enum):
    """Execution backends the neural detector can run on."""

    CPU = "cpu"
    CUDA = "cuda"
    DIRECTML = "directml"


class OptimizationLevel(str, Enum):
    """Graph optimization level passed to the inference runtime."""

    DISABLED = "disabled"
    BASIC = "basic"
    EXTENDED = "extended"
    ALL = "all"


def parse_enum(enum_cls: Type[E], value: Union[str, E], name: str) -> E:
    """Parse ``value`` into ``enum_cls`` or raise InvalidArgumentError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidArgumentError(f"{name} must be one of: {allowed} (got {value!r})") from None


def _check_unit_interval(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"{name} must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise InvalidArgumentError(f"{name} must be between 0 and 1 (got {value})")
    return float(value)


@dataclass
class TemplateMatchingConfig:
    """Template matching detector configuration."""
    mode: str = MatchMode.CCOEFF_NORMED.value
    threshold: float = 0.9
    multiple_points: bool = False
    suppression_radius: int = 10

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TemplateMatchingConfig":
        return cls(
            mode=d.get("mode", MatchMode.CCOEFF_NORMED.value),
            threshold=d.get("threshold", 0.9),
            multiple_points=d.get("multiple_points", False),
            suppression_radius=d.get("suppression_radius", 10),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "threshold": self.threshold,
            "multiple_points": self.multiple_points,
            "suppression_radius": self.suppression_radius,
        }


@dataclass(frozen=True)
class YoloOptions:
    """
    Neural detector options.

    Fixed for the lifetime of a detector: tensor shapes depend on ``input_size``,
    so changing any of these requires a new detector (and buffer pool).

    Attributes:
        input_size: Square network input edge in pixels.
        nms_iou: IoU above which a lower-ranked same-class box is suppressed.
        gpu_backend: Requested execution backend.
        use_gpu_if_available: Also try other available accelerators before CPU.
        optimization_level: Runtime graph optimization level.
        conf_threshold: Minimum class score (0-1) for a candidate to be kept.
    """
    input_size: int = 640
    nms_iou: float = 0.45
    gpu_backend: GpuBackend = GpuBackend.CPU
    use_gpu_if_available: bool = False
    optimization_level: OptimizationLevel = OptimizationLevel.ALL
    conf_threshold: float = 0.25

    def __post_init__(self):
        if isinstance(self.input_size, bool) or not isinstance(self.input_size, int):
            raise InvalidArgumentError("input_size must be an integer")
        if self.input_size <= 0 or self.input_size % 32 != 0:
            raise InvalidArgumentError(f"input_size must be a positive multiple of 32 (got {self.input_size})")
        object.__setattr__(self, "nms_iou", _check_unit_interval(self.nms_iou, "nms_iou"))
        object.__setattr__(self, "conf_threshold", _check_unit_interval(self.conf_threshold, "conf_threshold"))
        object.__setattr__(self, "gpu_backend", parse_enum(GpuBackend, self.gpu_backend, "gpu_backend"))
        object.__setattr__(
            self,
            "optimization_level",
            parse_enum(OptimizationLevel, self.optimization_level, "optimization_level"),
        )
        object.__setattr__(self, "use_gpu_if_available", bool(self.use_gpu_if_available))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "YoloOptions":
        return cls(
            input_size=d.get("input_size", 640),
            nms_iou=d.get("nms_iou", 0.45),
            gpu_backend=d.get("gpu_backend", GpuBackend.CPU.value),
            use_gpu_if_available=d.get("use_gpu_if_available", False),
            optimization_level=d.get("optimization_level", OptimizationLevel.ALL.value),
            conf_threshold=d.get("conf_threshold", 0.25),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_size": self.input_size,
            "nms_iou": self.nms_iou,
            "gpu_backend": self.gpu_backend.value,
            "use_gpu_if_available": self.use_gpu_if_available,
            "optimization_level": self.optimization_level.value,
            "conf_threshold": self.conf_threshold,
        }


@dataclass
class ProvisioningConfig:
    """Model download/verification configuration."""
    model_dir: str = "data/models"
    registry_path: str = "config/models.yaml"
    chunk_size: int = 128 * 1024
    timeout_seconds: float = 30.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ProvisioningConfig":
        return cls(
            model_dir=d.get("model_dir", "data/models"),
            registry_path=d.get("registry_path", "config/models.yaml"),
            chunk_size=d.get("chunk_size", 128 * 1024),
            timeout_seconds=d.get("timeout_seconds", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_dir": self.model_dir,
            "registry_path": self.registry_path,
            "chunk_size": self.chunk_size,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class DesktopConfig:
    """Monitor layout as [left, top, width, height] rectangles in global pixels."""
    monitors: List[List[int]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DesktopConfig":
        return cls(monitors=[list(m) for m in (d.get("monitors") or [])])

    def to_dict(self) -> Dict[str, Any]:
        return {"monitors": [list(m) for m in self.monitors]}


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    template: TemplateMatchingConfig = field(default_factory=TemplateMatchingConfig)
    yolo: YoloOptions = field(default_factory=YoloOptions)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)
    desktop: Optional[DesktopConfig] = None
    log_path: str = "logs/detection.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        desktop_dict = d.get("desktop")
        return cls(
            template=TemplateMatchingConfig.from_dict(d.get("template", {}) or {}),
            yolo=YoloOptions.from_dict(d.get("yolo", {}) or {}),
            provisioning=ProvisioningConfig.from_dict(d.get("provisioning", {}) or {}),
            desktop=DesktopConfig.from_dict(desktop_dict) if desktop_dict else None,
            log_path=d.get("log_path", "logs/detection.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "template": self.template.to_dict(),
            "yolo": self.yolo.to_dict(),
            "provisioning": self.provisioning.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
        if self.desktop:
            d["desktop"] = self.desktop.to_dict()
        return d
