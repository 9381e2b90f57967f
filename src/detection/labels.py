"""
Class label providers for YOLO models.

Labels are looked up in a ``<model_key>.labels.txt`` sidecar next to the ONNX
file (one class per line, index = class id). When a model is provisioned
without a sidecar, the labels are recovered from the ONNX custom metadata that
Ultralytics exports write (``names: {0: 'person', 1: 'bicycle', ...}``).
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

import yaml

from provisioning.downloader import LABEL_SUFFIX

METADATA_KEYS = ("names", "labels", "classes")
_INDEXED_KEY = re.compile(r"^names?(\d+)$")


class LabelProvider(Protocol):
    def get_labels(self, model_key: str, model_path: Union[str, Path]) -> List[str]:
        ...


def sidecar_path(model_key: str, model_path: Union[str, Path]) -> Path:
    return Path(model_path).parent / f"{model_key}{LABEL_SUFFIX}"


class SidecarLabelProvider:
    """Reads ``<model_key>.labels.txt`` from the model's directory."""

    def get_labels(self, model_key: str, model_path: Union[str, Path]) -> List[str]:
        path = sidecar_path(model_key, model_path)
        if not path.exists():
            raise FileNotFoundError(f"Label file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]


def _sort_key(key: Any) -> int:
    try:
        return int(key)
    except (TypeError, ValueError):
        return 1 << 31


def _clean(values) -> List[str]:
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def parse_label_metadata(raw: str) -> List[str]:
    """
    Parse a label list from metadata text.

    Accepts a mapping (``{0: 'person', 1: 'car'}``), a list (``['person', 'car']``)
    or plain comma / newline separated text.
    """
    if raw is None or not str(raw).strip():
        return []

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:
        parsed = None

    if isinstance(parsed, dict):
        return _clean(v for _, v in sorted(parsed.items(), key=lambda kv: _sort_key(kv[0])))
    if isinstance(parsed, list):
        return _clean(parsed)

    return _clean(re.split(r"[\n,]", str(raw).replace("\r", "")))


def labels_from_metadata(custom: Mapping[str, str]) -> List[str]:
    """Extract labels from an ONNX custom metadata map (empty list if none)."""
    if not custom:
        return []

    for key in METADATA_KEYS:
        raw = custom.get(key)
        if raw and str(raw).strip():
            return parse_label_metadata(raw)

    # Rare exports use names0=..., names1=...
    indexed: Dict[int, str] = {}
    for key, value in custom.items():
        m = _INDEXED_KEY.match(key)
        if m and value and str(value).strip():
            indexed[int(m.group(1))] = str(value).strip()
    return [indexed[i] for i in sorted(indexed)]


def labels_from_session(session) -> List[str]:
    """Labels embedded in an inference session's model metadata."""
    meta = session.get_modelmeta()
    custom = getattr(meta, "custom_metadata_map", None) or {}
    return labels_from_metadata(custom)


def ensure_labels_sidecar(
    model_key: str,
    model_path: Union[str, Path],
    session,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Write the label sidecar from session metadata if it does not exist yet.

    Returns True if a sidecar exists afterwards. Failures are logged, not raised.
    """
    log = logger or logging.getLogger(__name__)
    path = sidecar_path(model_key, model_path)
    if path.exists():
        return True

    try:
        labels = labels_from_session(session)
        if not labels:
            log.warning(f"No labels found in model metadata for {model_key}; provide {path.name} manually")
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(labels) + "\n")
        log.info(f"Wrote {len(labels)} labels from model metadata to {path}")
        return True
    except Exception as e:
        log.warning(f"Could not extract labels for {model_key}: {e}")
        return False
