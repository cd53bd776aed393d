"""Ports implemented by provider adapters and infrastructure collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from contextlib import AbstractContextManager
    from datetime import datetime

    from disputesync.domain.model import Connection, Entity, OutboundAction
    from disputesync.domain.providers import WebhookSpec


@dataclass(frozen=True, slots=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None = None
    expires_in_seconds: int | None = None


@dataclass(frozen=True, slots=True)
class WriteResponse:
    status_code: int
    retry_after: float | None = None
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300  # noqa: PLR2004


@runtime_checkable
class Authenticator(Protocol):
    """Token grants. ``AuthError`` for rejected credentials, ``TransientNetworkError`` otherwise."""

    async def refresh(
        self, connection: Connection, secrets: Mapping[str, str], refresh_token: str
    ) -> TokenGrant: ...

    async def primary_grant(
        self, connection: Connection, secrets: Mapping[str, str]
    ) -> TokenGrant: ...


@runtime_checkable
class Reader(Protocol):
    async def fetch(
        self,
        connection: Connection,
        token: str,
        entity: Entity,
        *,
        since: datetime | None = None,
    ) -> list[dict[str, Any]]: ...


@runtime_checkable
class Writer(Protocol):
    async def send(
        self,
        connection: Connection,
        token: str,
        action: OutboundAction,
        payload: Mapping[str, Any],
    ) -> WriteResponse: ...


@runtime_checkable
class ProviderAdapter(Authenticator, Reader, Writer, Protocol):
    """Everything the engine needs from one provider kind."""

    async def aclose(self) -> None: ...


@runtime_checkable
class SecretVault(Protocol):
    def seal(self, secrets: Mapping[str, str]) -> bytes: ...

    def reveal(self, sealed: bytes | None) -> AbstractContextManager[dict[str, str]]:
        """Decrypt for the duration of the ``with`` block only."""
        ...


class SignatureVerifier(Protocol):
    def __call__(
        self,
        spec: WebhookSpec,
        secret: str,
        body: bytes,
        headers: Mapping[str, str],
        *,
        now: datetime,
    ) -> None:
        """Raise ``InvalidSignature`` unless ``body`` was signed with ``secret``."""
        ...
