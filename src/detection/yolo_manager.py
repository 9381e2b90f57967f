"""
YOLO manager: one lazily created detector per registry model.

ensure_model() provisions the artifact (download + verify), opens an inference
session, makes sure a label sidecar exists and caches the resulting
YoloDetector. detect() then answers "where is <object_name>?" for a model key
with the single best match.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from inference.backend import InferenceSession, create_session
from models.config import YoloOptions
from models.detection import DetectionKind, DetectionResult
from models.errors import ShapeMismatchError
from provisioning.downloader import ModelProvisioner, ProgressListener, ProvisionedModel

from .labels import LabelProvider, SidecarLabelProvider, ensure_labels_sidecar
from .yolo_detector import YoloDetector

SessionFactory = Callable[[str, YoloOptions], InferenceSession]


def index_of_label(labels: Sequence[str], name: str) -> int:
    """Case-insensitive position of ``name`` in ``labels``, or -1."""
    wanted = name.strip().lower()
    for i, label in enumerate(labels):
        if label.lower() == wanted:
            return i
    return -1


@dataclass
class _LoadedModel:
    model: ProvisionedModel
    detector: YoloDetector
    lock: threading.Lock = field(default_factory=threading.Lock)


class YoloManager:
    """
    Thread-safe cache of YOLO detectors keyed by model name.

    Creation of a model happens at most once even under concurrent callers;
    detections on the same model are serialized (one buffer set per model),
    detections on different models run in parallel.
    """

    def __init__(
        self,
        provisioner: ModelProvisioner,
        options: Optional[YoloOptions] = None,
        label_provider: Optional[LabelProvider] = None,
        session_factory: Optional[SessionFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.provisioner = provisioner
        self.options = options or YoloOptions()
        self._log = logger or logging.getLogger(__name__)
        self._labels = label_provider or SidecarLabelProvider()
        self._session_factory = session_factory or (
            lambda path, opts: create_session(path, opts, logger=self._log)
        )
        self._models: Dict[str, _LoadedModel] = {}
        self._create_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Forward provisioning progress for models loaded through this manager."""
        return self.provisioner.subscribe(listener)

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def ensure_model(self, key: str) -> YoloDetector:
        """Provision and load ``key`` if needed; returns its detector."""
        return self._get_or_create(key).detector

    def has_session(self, key: str) -> bool:
        with self._lock:
            return key in self._models

    def _get_or_create(self, key: str) -> _LoadedModel:
        with self._lock:
            loaded = self._models.get(key)
            if loaded is not None:
                return loaded
            create_lock = self._create_locks.setdefault(key, threading.Lock())

        with create_lock:
            with self._lock:
                loaded = self._models.get(key)
            if loaded is not None:
                return loaded

            loaded = self._create(key)
            with self._lock:
                self._models[key] = loaded
            return loaded

    def _create(self, key: str) -> _LoadedModel:
        model = self.provisioner.provision(key)
        session = self._session_factory(str(model.path), self.options)
        ensure_labels_sidecar(key, model.path, session, logger=self._log)
        labels = self._labels.get_labels(key, model.path)
        detector = YoloDetector(session, options=self.options, labels=labels, logger=self._log)
        self._log.info(f"Model {key} loaded with {len(labels)} classes")
        return _LoadedModel(model=model, detector=detector)

    def unload_model(self, key: str) -> bool:
        """Close and forget the detector for ``key``. Returns False if it was not loaded."""
        with self._lock:
            loaded = self._models.pop(key, None)
        if loaded is None:
            return False
        with loaded.lock:
            loaded.detector.close()
        self._log.info(f"Model {key} unloaded")
        return True

    def _evict(self, key: str, loaded: _LoadedModel) -> None:
        # Only drop the entry if no other caller has already replaced it
        with self._lock:
            if self._models.get(key) is loaded:
                del self._models[key]
        with loaded.lock:
            loaded.detector.close()
        self._log.warning(f"Model {key} evicted after an output shape mismatch")

    def close(self) -> None:
        with self._lock:
            keys = list(self._models)
        for key in keys:
            self.unload_model(key)

    def __enter__(self) -> "YoloManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def available_models(self) -> List[str]:
        """Registry models with an installed artifact, sorted case-insensitively."""
        installed = [key for key in self.provisioner.registry if self.provisioner.is_installed(key)]
        return sorted(installed, key=str.lower)

    def classes_for_model(self, key: str) -> List[str]:
        """Class names of ``key``; empty when the model or its labels are missing."""
        with self._lock:
            loaded = self._models.get(key)
        if loaded is not None:
            return list(loaded.detector.labels)

        path = self.provisioner.artifact_path(key)
        if not path.is_file():
            self._log.warning(f"Model file for {key} not found: {path}")
            return []
        try:
            return list(self._labels.get_labels(key, path))
        except OSError as e:
            self._log.warning(f"Could not load labels for {key}: {e}")
            return []

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(
        self,
        key: str,
        object_name: str,
        frame: np.ndarray,
        threshold: float,
        roi: Optional[Tuple[int, int, int, int]] = None,
    ) -> DetectionResult:
        """
        Best detection of ``object_name`` in ``frame`` using model ``key``.

        Unknown labels, empty ROIs and frames without a match come back as
        success=False. Provisioning errors propagate. A shape mismatch also
        propagates, and the broken detector is dropped so the next call for
        ``key`` loads a fresh one.
        """
        loaded = self._get_or_create(key)
        class_id = index_of_label(loaded.detector.labels, object_name)
        if class_id < 0:
            self._log.debug(f"Model {key} has no class named {object_name!r}")
            return DetectionResult.failed(kind=DetectionKind.NEURAL)

        try:
            with loaded.lock:
                results = loaded.detector.detect(frame, roi=roi, conf_threshold=threshold, class_ids=[class_id])
        except ShapeMismatchError:
            self._evict(key, loaded)
            raise
        if not results:
            return DetectionResult.failed(kind=DetectionKind.NEURAL)
        return results[0]
