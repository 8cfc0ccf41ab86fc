"""Centralized helpers for resolving the application's data directory."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent
DATA_ROOT = APP_ROOT / "data"

DATA_DIR_ENV = "CONTACT_MANAGER_DATA_DIR"


def resolve_data_root(override: Optional[str] = None) -> Path:
    """Return the configured data directory without creating it."""
    candidate = override or os.environ.get(DATA_DIR_ENV)
    if not candidate:
        return DATA_ROOT
    path = Path(candidate).expanduser()
    if not path.is_absolute():
        path = (APP_ROOT / path).resolve()
    return path


def ensure_data_root(override: Optional[str] = None) -> Path:
    """Return the data root, creating it as needed."""
    data_root = resolve_data_root(override)
    if not data_root.exists():
        LOGGER.info("Creating data directory %s", data_root)
    data_root.mkdir(parents=True, exist_ok=True)
    return data_root
