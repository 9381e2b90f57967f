"""Image conversion helpers shared by the detectors."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import cv2
import numpy as np

from models.errors import InvalidArgumentError

ImageInput = Union[str, Path, np.ndarray]


def to_uint8(image: np.ndarray) -> np.ndarray:
    """Saturating conversion to 8-bit depth (values rounded, then clipped to 0..255)."""
    if image.dtype == np.uint8:
        return image
    if image.dtype == np.bool_:
        return image.astype(np.uint8)
    return np.clip(np.rint(image), 0, 255).astype(np.uint8)


def normalize_image(image: np.ndarray) -> np.ndarray:
    """
    Convert to single-channel 8-bit grayscale.

    Always returns a new array, even when no conversion was needed, so callers
    never end up sharing (and mutating) the input buffer.
    """
    if image is None or image.size == 0:
        raise InvalidArgumentError("cannot normalize an empty image")

    converted = to_uint8(image)
    depth_converted = converted is not image
    if converted.ndim == 3 and converted.shape[2] == 1:
        converted = converted[:, :, 0]

    if converted.ndim == 2:
        return converted if depth_converted else converted.copy()
    if converted.ndim != 3:
        raise InvalidArgumentError(f"unsupported image shape {image.shape}")

    channels = converted.shape[2]
    if channels == 3:
        return cv2.cvtColor(converted, cv2.COLOR_BGR2GRAY)
    if channels == 4:
        return cv2.cvtColor(converted, cv2.COLOR_BGRA2GRAY)
    raise InvalidArgumentError(f"unsupported channel count {channels}")


def ensure_color(image: np.ndarray) -> np.ndarray:
    """Ensure the ndarray is three-channel 8-bit BGR."""
    image = to_uint8(image)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 1:
        return cv2.cvtColor(image[:, :, 0], cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def load_image(image_input: ImageInput, flags: int = cv2.IMREAD_UNCHANGED) -> np.ndarray:
    """Load an image input from disk (or pass an ndarray through as a copy)."""
    if isinstance(image_input, np.ndarray):
        return image_input.copy()

    path = Path(image_input)
    if not path.exists():
        raise InvalidArgumentError(f"Image path not found: {path}")
    image = cv2.imread(str(path), flags)
    if image is None:
        raise InvalidArgumentError(f"Unable to read image from path: {path}")
    return image
