"""Secret vault configuration."""

from __future__ import annotations

from dataclasses import dataclass

from .env import require_env_var

VAULT_KEY_ENV = "DISPUTESYNC_VAULT_KEY"


@dataclass(frozen=True)
class VaultConfig:
    """Holds the Fernet key used to seal connection secrets at rest."""

    key: str


def get_vault_config() -> VaultConfig:
    return VaultConfig(key=require_env_var(VAULT_KEY_ENV))
