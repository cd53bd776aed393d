"""Application configuration helpers."""

from __future__ import annotations

from .connections import ConnectionSpec, connections_file_from_env, load_connection_specs
from .env import env_float, env_int, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import CacheConfig, ResilienceConfig, RetryPolicy
from .logging import configure_logging, parse_level
from .security import VAULT_KEY_ENV, VaultConfig, get_vault_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "VAULT_KEY_ENV",
    "CacheConfig",
    "ConfigurationError",
    "ConnectionSpec",
    "DatabaseConfig",
    "MissingConfigurationError",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "VaultConfig",
    "configure_logging",
    "connections_file_from_env",
    "env_float",
    "env_int",
    "get_database_config",
    "get_storage_config",
    "get_sync_config",
    "get_vault_config",
    "load_connection_specs",
    "parse_level",
    "require_env_var",
    "require_env_vars",
]
