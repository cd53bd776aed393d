"""Locations of the sync store and the provider read cache.

Production deployments point ``DATABASE_URI`` at a shared database; the data
directory only backs the single-node SQLite default and the HTTP read cache.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

DATA_DIR_ENV: Final[str] = "DISPUTESYNC_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"
HTTP_CACHE_ENV: Final[str] = "DISPUTESYNC_HTTP_CACHE"

SYNC_DB_FILENAME: Final[str] = "disputesync.db"
READ_CACHE_FILENAME: Final[str] = "provider_reads.db"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def _file(self, filename: str) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self._file(SYNC_DB_FILENAME)}"

    def read_cache_path(self) -> Path:
        override = os.getenv(HTTP_CACHE_ENV)
        if override:
            return Path(override).expanduser().resolve()
        return self._file(READ_CACHE_FILENAME)


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def get_storage_config() -> StorageConfig:
    env_dir = os.getenv(DATA_DIR_ENV)
    if env_dir:
        return StorageConfig(data_dir=Path(env_dir))
    xdg = os.getenv("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return StorageConfig(data_dir=base / "disputesync")


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    env_uri = os.getenv(DATABASE_URI_ENV)
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
