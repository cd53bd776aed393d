"""Configured links to external systems and their credential state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime  # noqa: TC003

from disputesync.domain.clock import utcnow
from disputesync.domain.model.enums import AuthScheme, ConnectionStatus

type CapabilityMatrix = dict[str, dict[str, bool]]


@dataclass(frozen=True)
class CredentialState:
    """Token material for one connection. Replaced wholesale, never edited in place.

    ``expires_at_ms == 0`` marks a non-expiring credential.
    """

    auth_scheme: AuthScheme
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at_ms: int = 0

    def is_usable(self, *, now_ms: int, buffer_ms: int) -> bool:
        if not self.access_token:
            return False
        if self.expires_at_ms == 0:
            return True
        return now_ms < self.expires_at_ms - buffer_ms

    def cleared(self) -> CredentialState:
        return replace(self, access_token=None, refresh_token=None, expires_at_ms=0)

    def __composite_values__(self) -> tuple[AuthScheme, str | None, str | None, int]:
        """For SQLAlchemy composite columns (adapter-side convenience)."""
        return (self.auth_scheme, self.access_token, self.refresh_token, self.expires_at_ms)


@dataclass(frozen=True)
class RateLimitPolicy:
    capacity: int
    refill_per_minute: int

    def __composite_values__(self) -> tuple[int, int]:
        return (self.capacity, self.refill_per_minute)


@dataclass(eq=False, kw_only=True)
class Connection:
    connection_id: str
    adapter_kind: str
    base_url: str
    credentials: CredentialState
    rate_limit: RateLimitPolicy
    capabilities: CapabilityMatrix = field(default_factory=dict[str, dict[str, bool]])
    sealed_secrets: bytes | None = field(default=None, repr=False)
    status: ConnectionStatus = ConnectionStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status is ConnectionStatus.ACTIVE

    def allows(self, entity: str, operation: str) -> bool:
        return bool(self.capabilities.get(entity, {}).get(operation, False))
