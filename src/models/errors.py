"""
Error taxonomy for the detection engine.

Configuration and provisioning errors are raised to the caller and must stop the
pipeline. Per-frame detection misses are never raised; they come back as
DetectionResult(success=False).
"""

from __future__ import annotations

from typing import Optional, Sequence


class DetectionEngineError(Exception):
    """Base class for all engine errors."""


class InvalidArgumentError(DetectionEngineError, ValueError):
    """Out-of-range threshold, unknown mode or otherwise invalid configuration."""


class InvalidStateError(DetectionEngineError, RuntimeError):
    """Operation attempted before the required setup (e.g. detect without template)."""


class ShapeMismatchError(DetectionEngineError, RuntimeError):
    """The network reported an output shape different from the established one."""

    def __init__(self, expected: Sequence[int], actual: Sequence[int], message: Optional[str] = None):
        self.expected = tuple(int(d) for d in expected)
        self.actual = tuple(int(d) for d in actual)
        super().__init__(
            message
            or f"Output shape changed from {list(self.expected)} to {list(self.actual)}; "
            "the model was swapped or is incompatible"
        )


class ProvisioningError(DetectionEngineError):
    """
    Raised when a model cannot be provisioned.

    Attributes:
        model_name: Registry key of the model (None for registry-level failures).
        stage: Provisioning stage that failed ("registry", "download", "verify", "install").
    """

    def __init__(self, message: str, model_name: Optional[str] = None, stage: str = "download"):
        self.model_name = model_name
        self.stage = stage
        prefix = f"[{model_name}] " if model_name else ""
        super().__init__(f"{prefix}{stage}: {message}")


class MalformedRegistryError(ProvisioningError, ValueError):
    """The model registry declaration could not be parsed or validated."""

    def __init__(self, message: str, model_name: Optional[str] = None):
        super().__init__(message, model_name=model_name, stage="registry")


class IntegrityMismatchError(ProvisioningError):
    """Downloaded artifact digest does not match the registry's sha256."""

    def __init__(self, model_name: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"sha256 mismatch (expected {expected}, got {actual})",
            model_name=model_name,
            stage="verify",
        )


class DownloadError(ProvisioningError):
    """Transport or filesystem failure while fetching or installing an artifact."""
