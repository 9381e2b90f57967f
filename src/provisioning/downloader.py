"""
Model provisioner: download, verify and install registry models.

Protocol per model name:
1. An existing artifact whose sha256 matches the registry is used as-is
   (no network access).
2. Otherwise the artifact is streamed into a unique ``*.part`` file while the
   digest is computed incrementally.
3. A digest mismatch discards the download and raises IntegrityMismatchError.
4. Only a verified file is moved into place (os.replace), so a crash mid-way
   never leaves a corrupt model under the final name.

Progress is published to subscribers as DownloadProgress events whose
percentage never decreases within one run.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
import uuid
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

import requests

from models.config import ProvisioningConfig
from models.errors import DownloadError, IntegrityMismatchError, ProvisioningError
from models.progress import DownloadProgress, DownloadStatus
from models.registry import ModelEntry, ModelRegistry

from .manifest import load_registry

ProgressListener = Callable[[DownloadProgress], None]

MODEL_SUFFIX = ".onnx"
LABEL_SUFFIX = ".labels.txt"

# One lock per target path, shared by every provisioner in the process.
# Entries disappear once no caller holds the lock.
_PATH_LOCKS: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = os.path.normcase(str(path.resolve()))
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = _PATH_LOCKS[key] = threading.Lock()
        return lock


def _content_length(headers) -> int:
    """Declared body size, or 0 when the header is missing or malformed."""
    try:
        return max(0, int(headers.get("Content-Length") or 0))
    except (TypeError, ValueError):
        return 0


def sha256_file(path: Union[str, Path], chunk_size: int = 128 * 1024) -> str:
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


@dataclass(frozen=True)
class ProvisionedModel:
    """A verified, installed model artifact."""
    name: str
    path: Path
    sha256: str
    size: int
    downloaded: bool


class ProgressRecorder:
    """Listener that keeps every event it receives (CLI output, tests)."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[DownloadProgress] = []

    def __call__(self, event: DownloadProgress) -> None:
        with self._lock:
            self.events.append(event)

    def for_model(self, name: str) -> List[DownloadProgress]:
        with self._lock:
            return [e for e in self.events if e.model_name == name]

    @property
    def statuses(self) -> List[DownloadStatus]:
        return [e.status for e in self.events]

    @property
    def percents(self) -> List[int]:
        return [e.progress_percent for e in self.events]


class _RunReporter:
    """Publishes events for one provisioning run, keeping percentages monotonic."""

    def __init__(self, provisioner: "ModelProvisioner", name: str):
        self._provisioner = provisioner
        self._name = name
        self.last_percent = 0
        self.last_status: Optional[DownloadStatus] = None

    def __call__(self, status: DownloadStatus, percent: int, message: Optional[str] = None) -> None:
        percent = max(self.last_percent, min(100, max(0, int(percent))))
        if status is DownloadStatus.DOWNLOADING and self.last_status is status and percent == self.last_percent:
            return
        self.last_percent = percent
        self.last_status = status
        self._provisioner._emit(DownloadProgress(self._name, status, percent, message))


class ModelProvisioner:
    """
    Downloads and verifies the models declared in a ModelRegistry.

    Safe to call concurrently: runs for the same model serialize on a
    per-path lock, runs for different models proceed in parallel.

    Example:
        provisioner = ModelProvisioner(ModelRegistry.from_file("config/models.yaml"), "data/models")
        unsubscribe = provisioner.subscribe(print)
        model = provisioner.provision("yolov8n")
    """

    def __init__(
        self,
        registry: ModelRegistry,
        model_dir: Union[str, Path],
        session: Optional[requests.Session] = None,
        chunk_size: int = 128 * 1024,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
        replace_attempts: int = 5,
        retry_delay: float = 0.2,
    ):
        self.registry = registry
        self.model_dir = Path(model_dir)
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.replace_attempts = max(1, replace_attempts)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()
        self._log = logger or logging.getLogger(__name__)
        self._listeners: List[ProgressListener] = []
        self._listeners_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        cfg: ProvisioningConfig,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ModelProvisioner":
        return cls(
            load_registry(cfg.registry_path),
            cfg.model_dir,
            session=session,
            chunk_size=cfg.chunk_size,
            timeout=cfg.timeout_seconds,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Progress observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unsubscribes it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: DownloadProgress) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self._log.warning(f"Progress listener failed for {event.model_name}: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def entry(self, name: str) -> ModelEntry:
        try:
            return self.registry[name]
        except KeyError:
            raise ProvisioningError("model is not declared in the registry", model_name=name, stage="registry") from None

    def artifact_path(self, name: str) -> Path:
        return self.model_dir / f"{name}{MODEL_SUFFIX}"

    def labels_path(self, name: str) -> Path:
        """Label sidecar next to the artifact, one class name per line."""
        return self.model_dir / f"{name}{LABEL_SUFFIX}"

    def is_installed(self, name: str) -> bool:
        """Whether an artifact file exists (not re-verified)."""
        return self.artifact_path(name).is_file()

    # ------------------------------------------------------------------
    # Provision / uninstall
    # ------------------------------------------------------------------

    def provision(self, name: str) -> ProvisionedModel:
        """
        Make sure a verified artifact for ``name`` is installed.

        Raises:
            ProvisioningError: Unknown model name.
            IntegrityMismatchError: Downloaded bytes do not match the registry digest.
            DownloadError: Transport or filesystem failure.
        """
        entry = self.entry(name)
        target = self.artifact_path(name)
        report = _RunReporter(self, name)

        with _lock_for(target):
            report(DownloadStatus.STARTING, 0)
            try:
                if target.is_file():
                    digest = sha256_file(target, self.chunk_size)
                    if digest == entry.sha256:
                        report(DownloadStatus.COMPLETED, 100, "already installed")
                        self._log.debug(f"Model {name} already installed at {target}")
                        return ProvisionedModel(name, target, digest, target.stat().st_size, downloaded=False)
                    self._log.warning(f"Installed artifact for {name} has an unexpected digest, downloading again")

                self._log.info(f"Downloading model {name} from {entry.url}")
                digest = self._download(name, entry, target, report)
            except ProvisioningError as e:
                report(DownloadStatus.FAILED, report.last_percent, str(e))
                self._log.error(f"Provisioning {name} failed: {e}")
                raise
            except (requests.RequestException, OSError) as e:
                err = DownloadError(str(e), model_name=name, stage="download")
                report(DownloadStatus.FAILED, report.last_percent, str(err))
                self._log.error(f"Provisioning {name} failed: {err}")
                raise err from e

            report(DownloadStatus.COMPLETED, 100)
            self._log.info(f"Model {name} installed at {target}")
            return ProvisionedModel(name, target, digest, target.stat().st_size, downloaded=True)

    def _download(self, name: str, entry: ModelEntry, target: Path, report: _RunReporter) -> str:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f"{target.name}.{uuid.uuid4().hex[:8]}.part")
        hasher = hashlib.sha256()

        try:
            response = self._session.get(entry.url, stream=True, timeout=self.timeout)
            try:
                response.raise_for_status()
                total = _content_length(response.headers) or entry.size
                received = 0
                with open(tmp, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        hasher.update(chunk)
                        received += len(chunk)
                        if total > 0:
                            report(DownloadStatus.DOWNLOADING, received * 100 // total)
            finally:
                response.close()

            report(DownloadStatus.VERIFYING, 100)
            digest = hasher.hexdigest()
            if digest != entry.sha256:
                raise IntegrityMismatchError(name, entry.sha256, digest)

            self._install(name, tmp, target)
            return digest
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError as e:
                    self._log.warning(f"Could not remove temporary file {tmp}: {e}")

    def _install(self, name: str, tmp: Path, target: Path) -> None:
        for attempt in range(self.replace_attempts):
            try:
                os.replace(tmp, target)
                return
            except OSError as e:
                if attempt == self.replace_attempts - 1:
                    raise DownloadError(f"cannot move artifact into place: {e}", model_name=name, stage="install") from e
                wait_time = self.retry_delay * (attempt + 1)
                self._log.warning(f"Install of {name} failed ({e}), retrying in {wait_time:.1f}s")
                time.sleep(wait_time)

    def uninstall(self, name: str) -> bool:
        """Remove the artifact and its label sidecar. Returns True if an artifact was deleted."""
        target = self.artifact_path(name)
        with _lock_for(target):
            removed = False
            try:
                if target.is_file():
                    target.unlink()
                    removed = True
                labels = self.labels_path(name)
                if labels.is_file():
                    labels.unlink()
            except OSError as e:
                self._log.error(f"Failed to uninstall model {name}: {e}")
                return False

        if removed:
            self._log.info(f"Model {name} uninstalled")
        else:
            self._log.warning(f"Model {name} was not installed")
        return removed
