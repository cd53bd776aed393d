"""Webhook ingestion: verify, parse, dedup and persist before acknowledging."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any, cast

from disputesync.domain.clock import Clock, utcnow
from disputesync.domain.errors import (
    InvalidSignature,
    MalformedPayload,
    NormalizationError,
    UnknownConnection,
)
from disputesync.domain.model import ConnectionStatus, SyncEvent, SyncEventType
from disputesync.domain.normalization import parse_timestamp
from disputesync.domain.providers import MISSING, first_present

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from disputesync.domain.capabilities import CapabilityRegistry
    from disputesync.domain.model import Connection
    from disputesync.domain.ports import SecretVault, SignatureVerifier, SyncUnitOfWork
    from disputesync.domain.providers import WebhookSpec

log = getLogger(__name__)

SIGNING_SECRET = "signing_secret"


class IngestOutcome(StrEnum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class IngestResult:
    outcome: IngestOutcome
    connection_id: str
    event_id: str
    event_type: str
    sequence: int | None = None


def partition_key(connection_id: str, ref: str) -> str:
    return f"{connection_id}:{ref}"


class WebhookIngestor:
    """Turns an authenticated webhook delivery into at most one persisted ``SyncEvent``.

    Nothing is processed here. Once ``ingest`` returns the event is durable
    and the caller may acknowledge; normalization happens later off the queue.
    """

    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        registry: CapabilityRegistry,
        vault: SecretVault,
        verifier: SignatureVerifier,
        clock: Clock = utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._registry = registry
        self._vault = vault
        self._verifier = verifier
        self._clock = clock

    def resolve_connection(self, adapter_kind: str, connection_id: str | None = None) -> Connection:
        """Pick the receiving connection for a delivery to ``/webhooks/{adapter_kind}``."""

        with self._uow_factory() as uow:
            connections = uow.repositories.connections
            if connection_id is not None:
                connection = connections.get(connection_id)
                if connection is None or connection.adapter_kind != adapter_kind:
                    raise UnknownConnection(
                        f"No {adapter_kind} connection with id {connection_id}"
                    )
                candidates = [connection]
            else:
                candidates = [
                    item
                    for item in connections.list(adapter_kind=adapter_kind)
                    if item.status is not ConnectionStatus.DISCONNECTED
                ]
        if not candidates:
            raise UnknownConnection(f"No connection configured for {adapter_kind}")
        if len(candidates) > 1:
            raise UnknownConnection(
                f"{len(candidates)} {adapter_kind} connections exist; pass ?connection=<id>"
            )
        if candidates[0].status is ConnectionStatus.DISCONNECTED:
            raise UnknownConnection(f"Connection {candidates[0].connection_id} is disconnected")
        return candidates[0]

    def ingest(
        self, connection_id: str, raw_body: bytes, headers: Mapping[str, str]
    ) -> IngestResult:
        with self._uow_factory() as uow:
            connection = uow.repositories.connections.get(connection_id)
        if connection is None or connection.status is ConnectionStatus.DISCONNECTED:
            raise UnknownConnection(f"Unknown or disconnected connection: {connection_id}")

        spec = self._registry.descriptor(connection.adapter_kind).webhook
        if spec is None:
            raise UnknownConnection(f"{connection.adapter_kind} does not deliver webhooks")

        now = self._clock()
        self._verify(connection, spec, raw_body, headers, now=now)
        payload = self._parse(raw_body)

        event_id = first_present(payload, spec.event_id_paths)
        if event_id is MISSING:
            raise MalformedPayload(f"{connection.adapter_kind} webhook carries no event id")
        event_id = str(event_id)
        provider_type = first_present(payload, spec.event_type_paths)
        provider_type = "" if provider_type is MISSING else str(provider_type)

        event_type = spec.event_types.get(provider_type)
        if event_type is None:
            log.info(
                "Ignoring %s event %s of unmapped type %r",
                connection.adapter_kind,
                event_id,
                provider_type,
            )
            return IngestResult(
                outcome=IngestOutcome.IGNORED,
                connection_id=connection_id,
                event_id=event_id,
                event_type=provider_type,
            )

        ref = first_present(payload, spec.partition_paths)
        return self.record(
            connection_id,
            event_id=event_id,
            event_type=event_type,
            raw_payload=payload,
            occurred_at=self._occurred_at(payload, spec, event_id, fallback=now),
            partition_ref=event_id if ref is MISSING else str(ref),
            received_at=now,
        )

    def record(
        self,
        connection_id: str,
        *,
        event_id: str,
        event_type: SyncEventType,
        raw_payload: dict[str, Any],
        occurred_at: datetime,
        partition_ref: str,
        received_at: datetime | None = None,
    ) -> IngestResult:
        """Persist one event unless ``(connection_id, event_id)`` is already stored.

        Also the entry point for synthetic events produced by polling.
        """

        event = SyncEvent(
            event_id=event_id,
            event_type=event_type,
            source_connection_id=connection_id,
            partition_key=partition_key(connection_id, partition_ref),
            raw_payload=raw_payload,
            occurred_at=occurred_at,
            received_at=received_at or self._clock(),
        )
        with self._uow_factory() as uow:
            inserted = uow.repositories.events.add_if_absent(event)
            uow.commit()

        if not inserted:
            log.info("Duplicate delivery of %s event %s ignored", connection_id, event_id)
            return IngestResult(
                outcome=IngestOutcome.DUPLICATE,
                connection_id=connection_id,
                event_id=event_id,
                event_type=event_type,
            )
        log.debug("Persisted %s event %s as #%s", connection_id, event_id, event.sequence)
        return IngestResult(
            outcome=IngestOutcome.ACCEPTED,
            connection_id=connection_id,
            event_id=event_id,
            event_type=event_type,
            sequence=event.sequence,
        )

    def _verify(
        self,
        connection: Connection,
        spec: WebhookSpec,
        raw_body: bytes,
        headers: Mapping[str, str],
        *,
        now: datetime,
    ) -> None:
        lowered = {key.lower(): value for key, value in headers.items()}
        with self._vault.reveal(connection.sealed_secrets) as secrets:
            secret = secrets.get(SIGNING_SECRET)
            if not secret:
                raise InvalidSignature(
                    f"Connection {connection.connection_id} has no signing secret configured"
                )
            self._verifier(spec, secret, raw_body, lowered, now=now)

    @staticmethod
    def _parse(raw_body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedPayload(f"Webhook body is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedPayload("Webhook body must be a JSON object")
        return cast(dict[str, Any], payload)

    @staticmethod
    def _occurred_at(
        payload: Mapping[str, Any],
        spec: WebhookSpec,
        event_id: str,
        *,
        fallback: datetime,
    ) -> datetime:
        raw = first_present(payload, spec.occurred_at_paths)
        if raw is MISSING:
            return fallback
        try:
            return parse_timestamp(raw)
        except NormalizationError:
            log.warning("Event %s has unparseable timestamp %r; using receive time", event_id, raw)
            return fallback
