"""
Model provisioning: registry loading, download, verification and install.
"""

from .manifest import load_registry
from .downloader import (
    LABEL_SUFFIX,
    MODEL_SUFFIX,
    ModelProvisioner,
    ProgressRecorder,
    ProvisionedModel,
    sha256_file,
)

__all__ = [
    "LABEL_SUFFIX",
    "MODEL_SUFFIX",
    "ModelProvisioner",
    "ProgressRecorder",
    "ProvisionedModel",
    "load_registry",
    "sha256_file",
]
