"""Credential and token manager.

Owns every mutation of a connection's credential state. Renewal for one
connection is single-flight: concurrent callers queue on a per-connection lock
and re-check after acquiring it, so a provider sees one token request rather
than a burst.
"""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from disputesync.domain.alerts import raise_alert
from disputesync.domain.clock import Clock, epoch_ms, utcnow
from disputesync.domain.errors import AuthError, UnknownConnection
from disputesync.domain.locks import KeyedLocks
from disputesync.domain.model import (
    AlertLevel,
    AlertScope,
    AuthScheme,
    Connection,
    ConnectionStatus,
    CredentialState,
)
from disputesync.domain.ports.unit_of_work import SyncUnitOfWork

if TYPE_CHECKING:
    from collections.abc import Mapping

    from disputesync.domain.ports.adapters import Authenticator, SecretVault, TokenGrant
    from disputesync.domain.rate_limit import RateLimiter

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]

log = getLogger(__name__)

DEFAULT_BUFFER_MS = 5 * 60 * 1000


class TokenManager:
    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        authenticators: Mapping[str, Authenticator],
        vault: SecretVault,
        limiter: RateLimiter,
        buffer_ms: int = DEFAULT_BUFFER_MS,
        clock: Clock = utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._authenticators = authenticators
        self._vault = vault
        self._limiter = limiter
        self._buffer_ms = buffer_ms
        self._clock = clock
        self._locks = KeyedLocks()

    def _load(self, connection_id: str) -> Connection:
        with self._uow_factory() as uow:
            connection = uow.repositories.connections.get(connection_id)
        if connection is None:
            raise UnknownConnection(f"Unknown connection: {connection_id}")
        if connection.status is not ConnectionStatus.ACTIVE:
            raise AuthError(
                f"Connection {connection_id} is {connection.status}; operator action required",
                connection_id=connection_id,
            )
        return connection

    def _usable(self, credentials: CredentialState) -> bool:
        return credentials.is_usable(now_ms=epoch_ms(self._clock()), buffer_ms=self._buffer_ms)

    def _static_key(self, connection: Connection) -> str:
        with self._vault.reveal(connection.sealed_secrets) as secrets:
            key = secrets.get("api_key")
        if not key:
            raise AuthError(
                f"Connection {connection.connection_id} has no api_key secret",
                connection_id=connection.connection_id,
            )
        return key

    async def get_valid_token(self, connection_id: str) -> str:
        """Return a token that will not expire within the buffer window."""

        connection = self._load(connection_id)
        if connection.credentials.auth_scheme.is_static:
            return self._static_key(connection)
        if self._usable(connection.credentials):
            return connection.credentials.access_token or ""

        async with self._locks(connection_id):
            connection = self._load(connection_id)
            if self._usable(connection.credentials):
                return connection.credentials.access_token or ""
            return await self._renew(connection)

    async def force_refresh(self, connection_id: str, *, stale_token: str | None = None) -> str:
        """Renew after a provider rejected ``stale_token``.

        If another caller already replaced that token while we waited for the
        lock, the fresh one is returned without a second grant.
        """

        connection = self._load(connection_id)
        if connection.credentials.auth_scheme.is_static:
            return self._static_key(connection)

        async with self._locks(connection_id):
            connection = self._load(connection_id)
            current = connection.credentials.access_token
            if (
                stale_token is not None
                and current is not None
                and current != stale_token
                and self._usable(connection.credentials)
            ):
                return current
            return await self._renew(connection)

    async def _renew(self, connection: Connection) -> str:
        authenticator = self._authenticators.get(connection.adapter_kind)
        if authenticator is None:
            raise UnknownConnection(f"No authenticator for {connection.adapter_kind}")

        credentials = connection.credentials
        grant: TokenGrant | None = None
        failures: list[str] = []
        with self._vault.reveal(connection.sealed_secrets) as secrets:
            if credentials.refresh_token:
                try:
                    await self._limiter.acquire(connection)
                    grant = await authenticator.refresh(
                        connection, secrets, credentials.refresh_token
                    )
                except AuthError as exc:
                    log.warning("Token refresh failed for %s: %s", connection.connection_id, exc)
                    failures.append(f"refresh: {exc}")
            if grant is None and credentials.auth_scheme is AuthScheme.OAUTH2_CLIENT_CREDENTIALS:
                try:
                    await self._limiter.acquire(connection)
                    grant = await authenticator.primary_grant(connection, secrets)
                except AuthError as exc:
                    log.warning(
                        "Client-credentials grant failed for %s: %s", connection.connection_id, exc
                    )
                    failures.append(f"grant: {exc}")

        if grant is None:
            reason = "; ".join(failures) or "no refresh token or primary grant available"
            self._mark_unauthenticated(connection.connection_id, reason)
            raise AuthError(
                f"Connection {connection.connection_id} could not be re-authenticated: {reason}",
                connection_id=connection.connection_id,
            )
        return self._store_grant(connection.connection_id, grant)

    def _store_grant(self, connection_id: str, grant: TokenGrant) -> str:
        now_ms = epoch_ms(self._clock())
        with self._uow_factory() as uow:
            connection = uow.repositories.connections.get(connection_id)
            if connection is None:
                raise UnknownConnection(f"Unknown connection: {connection_id}")
            previous = connection.credentials
            connection.credentials = CredentialState(
                auth_scheme=previous.auth_scheme,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token or previous.refresh_token,
                expires_at_ms=(
                    now_ms + grant.expires_in_seconds * 1000 if grant.expires_in_seconds else 0
                ),
            )
            connection.updated_at = self._clock()
            uow.commit()
        log.info("Renewed access token for %s", connection_id)
        return grant.access_token

    def reject(self, connection_id: str, reason: str) -> None:
        """The provider refused a freshly renewed credential; stop using the connection."""

        log.error("Connection %s rejected after token renewal: %s", connection_id, reason)
        self._mark_unauthenticated(connection_id, reason)

    def _mark_unauthenticated(self, connection_id: str, reason: str) -> None:
        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            connection = repositories.connections.get(connection_id)
            if connection is None:
                return
            connection.status = ConnectionStatus.UNAUTHENTICATED
            connection.credentials = connection.credentials.cleared()
            connection.updated_at = now
            paused = repositories.tasks.pause_for_connection(connection_id)
            raise_alert(
                repositories,
                AlertScope.CONNECTION,
                connection_id,
                f"Re-authorization required ({reason}); {paused} outbound task(s) paused",
                at=now,
                level=AlertLevel.ERROR,
            )
            uow.commit()

    def reauthorize(
        self,
        connection_id: str,
        *,
        secrets: Mapping[str, str] | None = None,
        refresh_token: str | None = None,
    ) -> int:
        """Operator action: reactivate a connection and resume its paused tasks."""

        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            connection = repositories.connections.get(connection_id)
            if connection is None:
                raise UnknownConnection(f"Unknown connection: {connection_id}")
            if secrets is not None:
                connection.sealed_secrets = self._vault.seal(secrets)
            connection.credentials = CredentialState(
                auth_scheme=connection.credentials.auth_scheme,
                refresh_token=refresh_token,
            )
            connection.status = ConnectionStatus.ACTIVE
            connection.updated_at = now
            resumed = repositories.tasks.resume_for_connection(connection_id, now=now)
            uow.commit()
        log.info("Connection %s re-authorized; %d task(s) resumed", connection_id, resumed)
        return resumed
