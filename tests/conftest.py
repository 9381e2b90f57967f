"""
Pytest configuration and shared fixtures.
"""

import hashlib
import os
import sys
from types import SimpleNamespace
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))


# ---------------------------------------------------------------------------
# Synthetic images
# ---------------------------------------------------------------------------

def noise_image(height: int, width: int, channels: int = 0, seed: int = 0) -> np.ndarray:
    """Random 8-bit texture; any patch of it matches only at its own position."""
    rng = np.random.default_rng(seed)
    shape = (height, width) if channels == 0 else (height, width, channels)
    return rng.integers(0, 256, size=shape, dtype=np.uint8)


def paste(frame: np.ndarray, patch: np.ndarray, x: int, y: int) -> np.ndarray:
    h, w = patch.shape[:2]
    frame[y:y + h, x:x + w] = patch
    return frame


@pytest.fixture
def screen():
    """A 120x200 BGR noise frame."""
    return noise_image(120, 200, channels=3, seed=1)


# ---------------------------------------------------------------------------
# YOLO fakes
# ---------------------------------------------------------------------------

class FakeSession:
    """Stand-in for onnxruntime.InferenceSession returning canned outputs."""

    def __init__(self, outputs, metadata: Optional[Dict[str, str]] = None, input_name: str = "images"):
        self._outputs = outputs if isinstance(outputs, list) else [outputs]
        self._input_name = input_name
        self.metadata = metadata or {}
        self.calls: List[Dict[str, np.ndarray]] = []

    def get_inputs(self):
        return [SimpleNamespace(name=self._input_name, shape=[1, 3, 64, 64])]

    def get_outputs(self):
        return [SimpleNamespace(name="output0")]

    def run(self, output_names, input_feed):
        self.calls.append({k: v.copy() for k, v in input_feed.items()})
        index = min(len(self.calls), len(self._outputs)) - 1
        return [self._outputs[index]]

    def get_modelmeta(self):
        return SimpleNamespace(custom_metadata_map=self.metadata)


def yolo_rows() -> np.ndarray:
    """
    Ten candidates in [N, attrs] layout (4 box values + 2 class scores),
    boxes in 64x64 canvas pixels.

    Row 1 overlaps row 0 with the same class and must be suppressed; row 2
    overlaps too but is another class; row 4 is below 0.25.
    """
    rows = np.zeros((10, 6), dtype=np.float32)
    rows[0] = [32, 32, 16, 8, 0.9, 0.1]
    rows[1] = [33, 32, 16, 8, 0.8, 0.0]
    rows[2] = [33, 32, 16, 8, 0.0, 0.7]
    rows[3] = [10, 40, 6, 6, 0.6, 0.0]
    rows[4] = [50, 50, 4, 4, 0.1, 0.05]
    return rows


@pytest.fixture
def yolo_output_nac():
    """Output tensor shaped [1, N, attrs]."""
    return yolo_rows()[np.newaxis, :, :]


@pytest.fixture
def yolo_output_anc():
    """The same candidates shaped [1, attrs, N]."""
    return np.ascontiguousarray(yolo_rows().T[np.newaxis, :, :])


# ---------------------------------------------------------------------------
# Provisioning fakes
# ---------------------------------------------------------------------------

MODEL_BYTES = bytes(range(256)) * 40


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fake_http(payload: bytes, chunk: int = 1000, content_length: bool = True) -> MagicMock:
    """requests.Session mock whose get() streams ``payload``."""
    response = MagicMock()
    response.headers = {"Content-Length": str(len(payload))} if content_length else {}
    response.iter_content.side_effect = lambda chunk_size=1: iter(
        [payload[i:i + chunk] for i in range(0, len(payload), chunk)]
    )
    session = MagicMock()
    session.get.return_value = response
    return session


@pytest.fixture
def registry_text():
    return f"""
tiny:
  url: "https://models.example/tiny.onnx"
  sha256: "{sha256_hex(MODEL_BYTES)}"
  size: {len(MODEL_BYTES)}
other:
  url: "https://models.example/other.onnx"
  sha256: "{sha256_hex(b'other')}"
  size: 5
"""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
template:
  mode: "ccoeff_normed"
  threshold: 0.9
  multiple_points: false
  suppression_radius: 10

yolo:
  input_size: 640
  nms_iou: 0.45
  gpu_backend: "cpu"

provisioning:
  model_dir: "data/models"
  registry_path: "config/models.yaml"

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "template": {
            "mode": "ccoeff_normed",
            "threshold": 0.9,
            "multiple_points": False,
            "suppression_radius": 10,
        },
        "yolo": {
            "input_size": 640,
            "nms_iou": 0.45,
            "gpu_backend": "cpu",
            "use_gpu_if_available": False,
            "optimization_level": "all",
            "conf_threshold": 0.25,
        },
        "provisioning": {
            "model_dir": "data/models",
            "registry_path": "config/models.yaml",
            "chunk_size": 131072,
            "timeout_seconds": 30.0,
        },
        "desktop": {"monitors": [[0, 0, 1920, 1080], [1920, 0, 1280, 1024]]},
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
