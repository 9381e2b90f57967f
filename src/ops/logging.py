"""
Logging setup.
"""

from __future__ import annotations

import logging
import os

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(log_path: str, log_level: str = "INFO") -> None:
    """Log to ``log_path`` and stderr. An empty ``log_path`` logs to stderr only."""
    level = str(log_level).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")

    handlers = [logging.StreamHandler()]
    if log_path:
        log_dir = os.path.dirname(log_path)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.insert(0, logging.FileHandler(log_path))

    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
