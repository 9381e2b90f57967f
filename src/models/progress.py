"""
Provisioning progress events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DownloadStatus(str, Enum):
    STARTING = "starting"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DownloadProgress:
    """
    One progress notification for a model provisioning run.

    Within a run, ``progress_percent`` never decreases.
    """
    model_name: str
    status: DownloadStatus
    progress_percent: int
    message: Optional[str] = None

    def __str__(self) -> str:
        suffix = f" - {self.message}" if self.message else ""
        return f"{self.model_name}: {self.status.value} {self.progress_percent}%{suffix}"
