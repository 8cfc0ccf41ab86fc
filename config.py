"""Runtime configuration for the contact manager backend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from data_paths import resolve_data_root

CONTACTS_TABLE = "Contacts"
ACTIVITIES_TABLE = "Activities"
SETTINGS_TABLE = "Settings"

DEFAULT_DATABASE_NAME = "contact_manager.db"
DEFAULT_PORT = 5002


@dataclass(frozen=True)
class StoreConfig:
    """Where the store lives and how its tables are named."""

    data_dir: Path
    database_name: str = DEFAULT_DATABASE_NAME
    timezone: str = "UTC"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    contacts_table: str = CONTACTS_TABLE
    activities_table: str = ACTIVITIES_TABLE
    settings_table: str = SETTINGS_TABLE

    @property
    def database_file(self) -> Path:
        if self.database_name == ":memory:":
            return Path(self.database_name)
        return self.data_dir / self.database_name


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_config(env_file: Optional[str] = None) -> StoreConfig:
    """Build a StoreConfig from the environment, reading ``.env`` first."""
    load_dotenv(env_file)
    return StoreConfig(
        data_dir=resolve_data_root(),
        database_name=os.environ.get("CONTACT_MANAGER_DB") or DEFAULT_DATABASE_NAME,
        timezone=os.environ.get("CONTACT_MANAGER_TIMEZONE") or "UTC",
        host=os.environ.get("CONTACT_MANAGER_HOST") or "127.0.0.1",
        port=_env_int("CONTACT_MANAGER_PORT", DEFAULT_PORT),
    )
