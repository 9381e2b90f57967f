"""
Registry manifest loading.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from models.registry import ModelRegistry


def load_registry(registry_path: str, base_dir: Optional[str] = None) -> ModelRegistry:
    """
    Load the model registry declared at ``registry_path``.

    Relative paths are taken relative to ``base_dir`` when given, else to the
    working directory.

    Raises:
        MalformedRegistryError: If the file is missing, unreadable or invalid.
    """
    if base_dir and not os.path.isabs(registry_path):
        registry_path = os.path.join(base_dir, registry_path)
    registry = ModelRegistry.from_file(registry_path)
    logging.debug(f"Loaded {len(registry)} model(s) from {registry_path}")
    return registry
