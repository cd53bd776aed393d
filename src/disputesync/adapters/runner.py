"""Generic provider adapter driven entirely by a ``ProviderDescriptor``."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, cast
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from disputesync.adapters.http_resilience import ResilientClient
from disputesync.adapters.schema import parse_token_response
from disputesync.adapters.signatures import sign_body
from disputesync.config.http_resilience import CacheConfig, ResilienceConfig, RetryPolicy
from disputesync.domain.errors import (
    AuthError,
    CapabilityError,
    MalformedPayload,
    TransientNetworkError,
)
from disputesync.domain.model import AuthScheme
from disputesync.domain.ports.adapters import TokenGrant, WriteResponse
from disputesync.domain.providers import MISSING, SignatureScheme, dig

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from disputesync.domain.model import Connection, Entity, OutboundAction
    from disputesync.domain.providers import ProviderDescriptor

log = getLogger(__name__)

type ClientFactory = Callable[[ResilienceConfig], ResilientClient]

_AUTH_STATUSES = frozenset({400, 401, 403})
_RETRY_STATUSES = frozenset({408, 425, 429})


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds from a ``Retry-After`` header given as a number or an HTTP date."""

    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return max((moment - (now or datetime.now(UTC))).total_seconds(), 0.0)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class GenericAdapter:
    """Reads, writes and token grants for one provider kind.

    One ``ResilientClient`` is kept per base URL so sandbox and production
    connections of the same kind do not share connection pools.
    """

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        *,
        retry: RetryPolicy | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.descriptor = descriptor
        self._retry = retry or RetryPolicy()
        self._client_factory = client_factory or _default_client_factory
        self._clients: dict[str, ResilientClient] = {}

    @property
    def kind(self) -> str:
        return self.descriptor.kind

    def _client(self, connection: Connection) -> ResilientClient:
        base_url = connection.base_url or self.descriptor.base_url
        client = self._clients.get(base_url)
        if client is None:
            config = ResilienceConfig(
                name=self.descriptor.kind,
                base_url=base_url,
                timeout_seconds=self.descriptor.timeout_seconds,
                retry=self._retry,
                cache=CacheConfig(enabled=True) if self.descriptor.cache_reads else None,
                default_headers={"Accept": "application/json"},
            )
            client = self._clients[base_url] = self._client_factory(config)
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def _auth_headers(self, token: str, body: bytes = b"") -> dict[str, str]:
        descriptor = self.descriptor
        if descriptor.auth_scheme is AuthScheme.HMAC_SIGNED:
            return {
                descriptor.auth_header: sign_body(token, body, SignatureScheme.HMAC_SHA256_HEX)
            }
        return {descriptor.auth_header: f"{descriptor.auth_prefix}{token}"}

    async def _send(
        self,
        connection: Connection,
        method: str,
        url: str,
        *,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._client(connection).request(
                method,
                url,
                content=content,
                headers=dict(headers or {}),
                params=dict(params or {}),
            )
        except httpx.HTTPError as exc:
            raise TransientNetworkError(
                f"{method} {url} to {connection.connection_id} failed: {exc}"
            ) from exc

    # tokens ---------------------------------------------------------------------

    async def refresh(
        self, connection: Connection, secrets: Mapping[str, str], refresh_token: str
    ) -> TokenGrant:
        return await self._grant(
            connection,
            secrets,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def primary_grant(self, connection: Connection, secrets: Mapping[str, str]) -> TokenGrant:
        return await self._grant(connection, secrets, {"grant_type": "client_credentials"})

    async def _grant(
        self,
        connection: Connection,
        secrets: Mapping[str, str],
        fields: dict[str, str],
    ) -> TokenGrant:
        endpoint = self.descriptor.token_endpoint
        if endpoint is None:
            raise AuthError(
                f"{self.kind} issues no tokens; static credentials must be re-entered",
                connection_id=connection.connection_id,
            )
        client_id = secrets.get("client_id")
        client_secret = secrets.get("client_secret")
        if not client_id or not client_secret:
            raise AuthError(
                f"Connection {connection.connection_id} lacks client_id/client_secret",
                connection_id=connection.connection_id,
            )
        form = {**fields, "client_id": client_id, "client_secret": client_secret}
        if endpoint.scope and fields["grant_type"] == "client_credentials":
            form["scope"] = endpoint.scope

        if endpoint.style == "json":
            content = json.dumps(form).encode("utf-8")
            content_type = "application/json"
        else:
            content = urlencode(form).encode("ascii")
            content_type = "application/x-www-form-urlencoded"
        response = await self._send(
            connection,
            "POST",
            endpoint.url,
            content=content,
            headers={"Content-Type": content_type},
        )

        if response.status_code in _AUTH_STATUSES:
            raise AuthError(
                f"{self.kind} rejected {fields['grant_type']} grant: HTTP {response.status_code}",
                connection_id=connection.connection_id,
            )
        if response.is_error:
            raise TransientNetworkError(
                f"{self.kind} token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        try:
            token = parse_token_response(response.json())
        except (ValueError, ValidationError) as exc:
            raise TransientNetworkError(f"{self.kind} token response is malformed: {exc}") from exc
        return TokenGrant(
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_in_seconds=token.expires_in,
        )

    # reads ------------------------------------------------------------------------

    async def fetch(
        self,
        connection: Connection,
        token: str,
        entity: Entity,
        *,
        since: datetime | None = None,
    ) -> list[dict[str, Any]]:
        route = self.descriptor.reads.get(entity)
        if route is None:
            raise CapabilityError(f"{self.kind} has no read route for {entity}")
        params: dict[str, str] = {}
        if since is not None and route.since_param:
            params[route.since_param] = since.astimezone(UTC).isoformat().replace("+00:00", "Z")

        response = await self._send(
            connection, "GET", route.path, headers=self._auth_headers(token), params=params
        )
        if response.status_code in {401, 403}:
            raise AuthError(
                f"{self.kind} rejected read of {entity}: HTTP {response.status_code}",
                connection_id=connection.connection_id,
            )
        if response.status_code in _RETRY_STATUSES or response.status_code >= 500:  # noqa: PLR2004
            raise TransientNetworkError(
                f"{self.kind} read of {entity} returned HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.is_error:
            raise CapabilityError(
                f"{self.kind} refused read of {entity}: HTTP {response.status_code}"
            )

        try:
            document = response.json()
        except ValueError as exc:
            raise MalformedPayload(f"{self.kind} {entity} response is not JSON") from exc
        items = dig(document, route.items_path) if route.items_path else document
        if items is MISSING or not isinstance(items, list):
            raise MalformedPayload(
                f"{self.kind} {entity} response has no list at {route.items_path!r}"
            )
        rows = [
            cast(dict[str, Any], item) for item in cast(list[Any], items) if isinstance(item, dict)
        ]
        log.debug("Fetched %d %s from %s", len(rows), entity, connection.connection_id)
        return rows

    # writes -----------------------------------------------------------------------

    async def send(
        self,
        connection: Connection,
        token: str,
        action: OutboundAction,
        payload: Mapping[str, Any],
    ) -> WriteResponse:
        route = self.descriptor.writes.get(action)
        if route is None:
            raise CapabilityError(f"{self.kind} has no write route for {action}")
        method, path, body = route.render(payload)
        content = json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")
        headers = {"Content-Type": "application/json", **self._auth_headers(token, content)}
        response = await self._send(connection, method, path, content=content, headers=headers)
        return WriteResponse(
            status_code=response.status_code,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            body=response.text[:500],
        )
