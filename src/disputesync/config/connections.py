"""Operator-managed connection definitions loaded from a TOML file.

Secrets never live in the file itself: any key ending in ``_env`` names the
environment variable holding the value, e.g.::

    [[connections]]
    id = "stripe-acct-1"
    kind = "stripe"

    [connections.secrets]
    api_key_env = "STRIPE_API_KEY"
    signing_secret_env = "STRIPE_WEBHOOK_SECRET"

    [connections.rate_limit]
    per_minute = 90

    [connections.capabilities]
    notes = { write = false }
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, cast

from .env import require_env_vars
from .errors import ConfigurationError

if TYPE_CHECKING:
    from pathlib import Path

ENV_SUFFIX: Final[str] = "_env"
DEFAULT_CONNECTIONS_ENV: Final[str] = "DISPUTESYNC_CONNECTIONS_FILE"


@dataclass(frozen=True, slots=True)
class ConnectionSpec:
    connection_id: str
    adapter_kind: str
    base_url: str | None = None
    secrets: dict[str, str] = field(default_factory=dict[str, str])
    rate_limit_per_minute: int | None = None
    rate_limit_capacity: int | None = None
    capability_overrides: dict[str, dict[str, bool]] = field(
        default_factory=dict[str, dict[str, bool]]
    )


def _resolve_secrets(raw: dict[str, Any], *, connection_id: str) -> dict[str, str]:
    env_names = {
        key.removesuffix(ENV_SUFFIX): str(value)
        for key, value in raw.items()
        if key.endswith(ENV_SUFFIX)
    }
    resolved = require_env_vars(tuple(env_names.values())) if env_names else {}
    secrets: dict[str, str] = {}
    for key, value in raw.items():
        if key.endswith(ENV_SUFFIX):
            continue
        if not isinstance(value, str):
            raise ConfigurationError(f"Secret {key!r} of {connection_id} must be a string")
        secrets[key] = value
    for key, env_name in env_names.items():
        secrets[key] = resolved[env_name]
    return secrets


def _parse_capabilities(raw: dict[str, Any], *, connection_id: str) -> dict[str, dict[str, bool]]:
    overrides: dict[str, dict[str, bool]] = {}
    for entity, flags in raw.items():
        if not isinstance(flags, dict):
            raise ConfigurationError(
                f"Capability override {entity!r} of {connection_id} must be a table"
            )
        typed_flags = cast(dict[str, Any], flags)
        overrides[entity] = {op: bool(value) for op, value in typed_flags.items()}
    return overrides


def _parse_entry(entry: dict[str, Any]) -> ConnectionSpec:
    try:
        connection_id = str(entry["id"])
        adapter_kind = str(entry["kind"])
    except KeyError as exc:
        raise ConfigurationError(f"Connection entry missing field {exc.args[0]!r}") from exc

    rate_limit = cast(dict[str, Any], entry.get("rate_limit", {}))
    per_minute = rate_limit.get("per_minute")
    capacity = rate_limit.get("capacity")
    return ConnectionSpec(
        connection_id=connection_id,
        adapter_kind=adapter_kind,
        base_url=entry.get("base_url"),
        secrets=_resolve_secrets(
            cast(dict[str, Any], entry.get("secrets", {})), connection_id=connection_id
        ),
        rate_limit_per_minute=int(per_minute) if per_minute is not None else None,
        rate_limit_capacity=int(capacity) if capacity is not None else None,
        capability_overrides=_parse_capabilities(
            cast(dict[str, Any], entry.get("capabilities", {})), connection_id=connection_id
        ),
    )


def load_connection_specs(path: Path) -> list[ConnectionSpec]:
    """Parse every ``[[connections]]`` entry of ``path``."""

    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Connections file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Connections file {path} is not valid TOML: {exc}") from exc

    entries = document.get("connections", [])
    if not isinstance(entries, list):
        raise ConfigurationError("'connections' must be an array of tables")
    specs = [_parse_entry(cast(dict[str, Any], entry)) for entry in cast(list[Any], entries)]

    seen: set[str] = set()
    for spec in specs:
        if spec.connection_id in seen:
            raise ConfigurationError(f"Duplicate connection id: {spec.connection_id}")
        seen.add(spec.connection_id)
    return specs


def connections_file_from_env() -> str | None:
    return os.getenv(DEFAULT_CONNECTIONS_ENV)
