"""
Model registry: declarative name -> (url, sha256, size) mapping.

The declaration is YAML (JSON is accepted too, being a YAML subset). A single
malformed entry fails the whole load; nothing is downloaded from a registry
that could not be validated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Union

import yaml

from .errors import MalformedRegistryError

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of overwriting."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise MalformedRegistryError(f"duplicate key {key!r} at line {key_node.start_mark.line + 1}")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


@dataclass(frozen=True)
class ModelEntry:
    """
    One downloadable model artifact.

    Attributes:
        url: Download location.
        sha256: Expected digest, 64 lowercase hex characters.
        size: Advisory size in bytes (progress only, never validated).
    """
    url: str
    sha256: str
    size: int = 0

    @classmethod
    def from_dict(cls, name: str, d: Any) -> "ModelEntry":
        if not isinstance(d, Mapping):
            raise MalformedRegistryError("entry must be a mapping", model_name=name)

        url = d.get("url")
        if not isinstance(url, str) or not url.strip():
            raise MalformedRegistryError("missing or empty 'url'", model_name=name)

        sha = d.get("sha256")
        if not isinstance(sha, str):
            raise MalformedRegistryError("missing 'sha256'", model_name=name)
        sha = sha.strip().lower()
        if not _SHA256_RE.match(sha):
            raise MalformedRegistryError("'sha256' must be 64 hex characters", model_name=name)

        size = d.get("size", 0)
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise MalformedRegistryError("'size' must be a non-negative integer", model_name=name)

        return cls(url=url.strip(), sha256=sha, size=size)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "sha256": self.sha256, "size": self.size}


class ModelRegistry(Mapping[str, ModelEntry]):
    """Read-only mapping of model name to ModelEntry."""

    def __init__(self, models: Mapping[str, ModelEntry]):
        self._models = MappingProxyType(dict(models))

    @classmethod
    def from_declaration(cls, source: Union[str, bytes, Mapping[str, Any]]) -> "ModelRegistry":
        """
        Parse a registry declaration.

        Args:
            source: YAML/JSON text or an already-parsed mapping.

        Raises:
            MalformedRegistryError: If parsing or validation fails.
        """
        if isinstance(source, (str, bytes)):
            try:
                data = yaml.load(source, Loader=_UniqueKeyLoader)
            except MalformedRegistryError:
                raise
            except yaml.YAMLError as e:
                raise MalformedRegistryError(f"unparseable declaration: {e}") from e
        else:
            data = source

        if not isinstance(data, Mapping):
            raise MalformedRegistryError("declaration must be a mapping of model name to entry")

        models: Dict[str, ModelEntry] = {}
        for name, entry in data.items():
            if not isinstance(name, str) or not name.strip():
                raise MalformedRegistryError(f"invalid model name {name!r}")
            models[name] = ModelEntry.from_dict(name, entry)
        return cls(models)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ModelRegistry":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise MalformedRegistryError(f"cannot read {path}: {e}") from e
        return cls.from_declaration(text)

    def __getitem__(self, name: str) -> ModelEntry:
        return self._models[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: entry.to_dict() for name, entry in self._models.items()}
