"""Declarative provider descriptors.

One descriptor fully describes an external system kind: where it lives, how it
authenticates, what it can read and write, how its webhooks are signed and how
its payloads map onto the canonical shapes. The generic adapter runner and the
normalizer interpret these tables; no provider gets its own code path.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from disputesync.domain.errors import CapabilityError
from disputesync.domain.model.connection import RateLimitPolicy
from disputesync.domain.model.enums import (
    AuthScheme,
    Entity,
    Operation,
    OutboundAction,
    SyncEventType,
)

type Capabilities = Mapping[Entity, frozenset[Operation]]


class SignatureScheme(StrEnum):
    HMAC_SHA256_HEX = "hmac_sha256_hex"
    HMAC_SHA256_BASE64 = "hmac_sha256_base64"
    STRIPE_V1 = "stripe_v1"


MISSING: Any = object()


def dig(data: object, path: str) -> Any:
    """Follow a dotted path through nested mappings and lists (``Events.0.Type``)."""

    current: object = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]  # pyright: ignore[reportUnknownVariableType]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):  # pyright: ignore[reportUnknownArgumentType]
                return MISSING
            current = current[index]  # pyright: ignore[reportUnknownVariableType]
        else:
            return MISSING
    return current


def first_present(data: object, paths: tuple[str, ...]) -> Any:
    """Return the first value found along ``paths`` that is not missing, None or blank."""

    for path in paths:
        value = dig(data, path)
        if value is MISSING or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return MISSING


def _assign(target: dict[str, Any], path: str, value: object) -> None:
    parts = path.split(".")
    node = target
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


@dataclass(frozen=True, slots=True)
class FieldRule:
    sources: tuple[str, ...]
    convert: str = "text"


@dataclass(frozen=True, slots=True)
class FieldTable:
    """Maps canonical paths (``dispute.amount``) to provider source paths.

    Rules under ``folio.`` are read relative to each item of the first list
    found along ``folio_items``.
    """

    fields: Mapping[str, FieldRule]
    folio_items: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class WebhookSpec:
    signature_header: str
    scheme: SignatureScheme
    event_id_paths: tuple[str, ...]
    event_type_paths: tuple[str, ...]
    event_types: Mapping[str, SyncEventType]
    occurred_at_paths: tuple[str, ...] = ()
    partition_paths: tuple[str, ...] = ()
    tolerance_seconds: int = 300


@dataclass(frozen=True, slots=True)
class TokenEndpoint:
    url: str
    style: Literal["form", "json"] = "form"
    scope: str | None = None


@dataclass(frozen=True, slots=True)
class ReadRoute:
    path: str
    items_path: str
    id_path: str
    created_type: SyncEventType
    updated_type: SyncEventType
    since_param: str | None = None


@dataclass(frozen=True, slots=True)
class WriteRoute:
    method: str
    path: str
    body: Mapping[str, str]
    static: Mapping[str, Any] = field(default_factory=dict[str, Any])

    def render(self, payload: Mapping[str, Any]) -> tuple[str, str, dict[str, Any]]:
        """Build ``(method, path, body)`` from a canonical outbound payload."""

        try:
            path = self.path.format_map(payload)
        except KeyError as exc:
            raise CapabilityError(
                f"Outbound payload lacks {exc.args[0]!r} required by {self.path}"
            ) from exc
        body: dict[str, Any] = {}
        for target, constant in self.static.items():
            _assign(body, target, constant)
        for target, key in self.body.items():
            value = payload.get(key)
            if value is None or value == "":
                continue
            _assign(body, target, value)
        return self.method, path, body


ACTION_ENTITIES: Mapping[OutboundAction, Entity] = {
    OutboundAction.PUSH_NOTE: Entity.NOTES,
    OutboundAction.PUSH_FLAG: Entity.FLAGS,
    OutboundAction.PUSH_ALERT: Entity.ALERTS,
    OutboundAction.PUSH_OUTCOME: Entity.OUTCOMES,
}


@dataclass(frozen=True, slots=True)
class ProviderDescriptor:
    kind: str
    display_name: str
    category: Literal["pms", "dispute"]
    base_url: str
    auth_scheme: AuthScheme
    capabilities: Capabilities
    rate_limit: RateLimitPolicy
    timeout_seconds: float = 30.0
    auth_header: str = "Authorization"
    auth_prefix: str = "Bearer "
    token_endpoint: TokenEndpoint | None = None
    webhook: WebhookSpec | None = None
    field_tables: Mapping[str, FieldTable] = field(default_factory=dict[str, FieldTable])
    reads: Mapping[Entity, ReadRoute] = field(default_factory=dict[Entity, ReadRoute])
    writes: Mapping[OutboundAction, WriteRoute] = field(
        default_factory=dict[OutboundAction, WriteRoute]
    )
    default_currency: str = "USD"
    cache_reads: bool = False

    def field_table_for(self, event_type: SyncEventType | str) -> FieldTable | None:
        """Exact event type first, then its family (``dispute``), then ``*``."""

        key = str(event_type)
        family = key.split(".", 1)[0]
        for candidate in (key, family, "*"):
            table = self.field_tables.get(candidate)
            if table is not None:
                return table
        return None


def capabilities(**entities: str) -> Capabilities:
    """Shorthand: ``capabilities(notes="rw", disputes="r")``."""

    matrix: dict[Entity, frozenset[Operation]] = {}
    for name, flags in entities.items():
        ops: set[Operation] = set()
        if "r" in flags:
            ops.add(Operation.READ)
        if "w" in flags:
            ops.add(Operation.WRITE)
        matrix[Entity(name)] = frozenset(ops)
    return matrix
