"""Sync orchestrator: webhook and scheduled flows over the shared ingest path."""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any

from disputesync.domain.alerts import raise_alert
from disputesync.domain.clock import Clock, utcnow
from disputesync.domain.locks import KeyedLocks
from disputesync.domain.errors import (
    AuthError,
    CapabilityError,
    CaseLocked,
    ConcurrencyConflict,
    MalformedPayload,
    NormalizationError,
    RateLimitExceeded,
    SyncError,
    TransientNetworkError,
    UnknownConnection,
)
from disputesync.domain.model import (
    AlertScope,
    CanonicalRecord,
    Connection,
    ConnectionStatus,
    CredentialState,
    EventStatus,
    Operation,
    RateLimitPolicy,
    TaskStatus,
)
from disputesync.domain.normalization import redact
from disputesync.domain.providers import MISSING, dig

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from disputesync.config.connections import ConnectionSpec
    from disputesync.domain.capabilities import CapabilityRegistry
    from disputesync.domain.cases import CaseService, TransitionListener
    from disputesync.domain.credentials import TokenManager
    from disputesync.domain.dispatch import OutboundDispatcher
    from disputesync.domain.ingestion import IngestResult, WebhookIngestor
    from disputesync.domain.model import CaseStatus, DisputeCase, ManualDecision
    from disputesync.domain.normalization import EventNormalizer
    from disputesync.domain.ports import Reader, SecretVault, SyncUnitOfWork
    from disputesync.domain.providers import ReadRoute
    from disputesync.domain.rate_limit import RateLimiter

log = getLogger(__name__)

POLLED_MARKER = "polled"

_POLL_ERRORS = (
    AuthError,
    CapabilityError,
    MalformedPayload,
    RateLimitExceeded,
    TransientNetworkError,
)


@dataclass(frozen=True, slots=True)
class WorkerSettings:
    event_workers: int = 4
    outbound_workers: int = 4
    batch_size: int = 50
    poll_interval_seconds: float = 300.0
    sweep_interval_seconds: float = 900.0
    idle_sleep_seconds: float = 1.0
    # store driver errors the worker loop logs and outlives, e.g. SQLAlchemyError
    storage_errors: tuple[type[Exception], ...] = ()


def content_hash(item: Mapping[str, Any]) -> str:
    encoded = json.dumps(item, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class SyncOrchestrator:
    """Entry point for every flow. All collaborators are passed in explicitly."""

    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        registry: CapabilityRegistry,
        vault: SecretVault,
        ingestor: WebhookIngestor,
        normalizer: EventNormalizer,
        cases: CaseService,
        dispatcher: OutboundDispatcher,
        tokens: TokenManager,
        limiter: RateLimiter,
        readers: Mapping[str, Reader],
        settings: WorkerSettings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._uow_factory = unit_of_work_factory
        self._registry = registry
        self._vault = vault
        self._ingestor = ingestor
        self._normalizer = normalizer
        self._cases = cases
        self._dispatcher = dispatcher
        self._tokens = tokens
        self._limiter = limiter
        self._readers = readers
        self._settings = settings or WorkerSettings()
        self._clock = clock
        self._partitions = KeyedLocks()
        self._pairs = KeyedLocks()
        self._last_polled: dict[str, datetime] = {}

        # fan-out is planned inside the case unit of work
        self._cases.set_outbox(self._dispatcher.plan)

    # collaborator interface ---------------------------------------------------

    def get_case(self, case_id: UUID) -> DisputeCase | None:
        return self._cases.get_case(case_id)

    def list_cases_by_status(self, status: CaseStatus) -> Sequence[DisputeCase]:
        return self._cases.list_cases_by_status(status)

    def submit_manual_override(
        self, case_id: UUID, decision: ManualDecision, *, actor: str = "user", reason: str = ""
    ) -> DisputeCase:
        return self._cases.submit_manual_override(case_id, decision, actor=actor, reason=reason)

    def on_case_transition(self, callback: TransitionListener) -> Callable[[], None]:
        return self._cases.on_case_transition(callback)

    # connections ----------------------------------------------------------------

    def connect(self, spec: ConnectionSpec) -> Connection:
        """Create or reconfigure a connection from operator configuration."""

        descriptor = self._registry.descriptor(spec.adapter_kind)
        capabilities = self._registry.narrowed(spec.adapter_kind, spec.capability_overrides)
        rate_limit = RateLimitPolicy(
            capacity=spec.rate_limit_capacity or descriptor.rate_limit.capacity,
            refill_per_minute=(
                spec.rate_limit_per_minute or descriptor.rate_limit.refill_per_minute
            ),
        )
        secrets = dict(spec.secrets)
        # an authorization-code grant is bootstrapped with an operator-supplied refresh token
        credentials = CredentialState(
            auth_scheme=descriptor.auth_scheme, refresh_token=secrets.pop("refresh_token", None)
        )
        sealed = self._vault.seal(secrets)
        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            connection = repositories.connections.get(spec.connection_id)
            if connection is None:
                connection = Connection(
                    connection_id=spec.connection_id,
                    adapter_kind=spec.adapter_kind,
                    base_url=spec.base_url or descriptor.base_url,
                    credentials=credentials,
                    rate_limit=rate_limit,
                    capabilities=capabilities,
                    sealed_secrets=sealed,
                    created_at=now,
                    updated_at=now,
                )
                repositories.connections.add(connection)
            else:
                if connection.adapter_kind != spec.adapter_kind:
                    raise UnknownConnection(
                        f"{spec.connection_id} is already a {connection.adapter_kind} connection"
                    )
                connection.base_url = spec.base_url or descriptor.base_url
                connection.rate_limit = rate_limit
                connection.capabilities = capabilities
                connection.sealed_secrets = sealed
                connection.credentials = credentials
                connection.status = ConnectionStatus.ACTIVE
                connection.updated_at = now
                repositories.tasks.resume_for_connection(spec.connection_id, now=now)
            uow.commit()
        self._limiter.forget(spec.connection_id)
        log.info("Connected %s (%s)", spec.connection_id, spec.adapter_kind)
        return connection

    def disconnect(self, connection_id: str) -> int:
        """Erase secrets and tokens, mark disconnected and drop the connection's open tasks."""

        now = self._clock()
        with self._uow_factory() as uow:
            repositories = uow.repositories
            connection = repositories.connections.get(connection_id)
            if connection is None:
                raise UnknownConnection(f"Unknown connection: {connection_id}")
            connection.sealed_secrets = None
            connection.credentials = connection.credentials.cleared()
            connection.status = ConnectionStatus.DISCONNECTED
            connection.updated_at = now
            cancelled = repositories.tasks.cancel_for_connection(connection_id, now=now)
            uow.commit()
        self._limiter.forget(connection_id)
        log.info("Disconnected %s; %d open task(s) cancelled", connection_id, cancelled)
        return cancelled

    def reauthorize(
        self,
        connection_id: str,
        *,
        secrets: Mapping[str, str] | None = None,
        refresh_token: str | None = None,
    ) -> int:
        return self._tokens.reauthorize(
            connection_id, secrets=secrets, refresh_token=refresh_token
        )

    # inbound --------------------------------------------------------------------

    def handle_webhook(
        self,
        adapter_kind: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        *,
        connection_id: str | None = None,
    ) -> IngestResult:
        connection = self._ingestor.resolve_connection(adapter_kind, connection_id)
        return self._ingestor.ingest(connection.connection_id, raw_body, headers)

    async def process_pending_events(self, *, limit: int | None = None) -> int:
        """Normalize and apply pending events; partitions run concurrently, each in order."""

        batch = limit or self._settings.batch_size
        with self._uow_factory() as uow:
            pending = list(uow.repositories.events.pending(limit=batch))
        if not pending:
            return 0

        by_partition: dict[str, list[int]] = {}
        for event in pending:
            assert event.sequence is not None
            by_partition.setdefault(event.partition_key, []).append(event.sequence)

        semaphore = asyncio.Semaphore(max(self._settings.event_workers, 1))

        async def drain(key: str, sequences: list[int]) -> int:
            async with semaphore, self._partitions(key):
                done = 0
                for sequence in sequences:
                    if self._process_event(sequence):
                        done += 1
                    await asyncio.sleep(0)
                return done

        results = await asyncio.gather(
            *(drain(key, sequences) for key, sequences in by_partition.items())
        )
        return sum(results)

    def _process_event(self, sequence: int) -> bool:
        now = self._clock()
        with self._uow_factory() as uow:
            event = uow.repositories.events.get(sequence)
            if event is None or event.status is not EventStatus.PENDING:
                return False
            connection = uow.repositories.connections.get(event.source_connection_id)

        if connection is None:
            return self._finish_event(sequence, error="source connection no longer exists")
        try:
            payload = self._normalizer.normalize(
                connection.adapter_kind, event.event_type, event.raw_payload
            )
        except NormalizationError as exc:
            log.warning(
                "Event %s/%s not normalized: %s", event.source_connection_id, event.event_id, exc
            )
            log.debug("Rejected payload: %s", redact(event.raw_payload))
            return self._finish_event(sequence, error=str(exc), alert=True)

        try:
            self._cases.apply_event(event.source_connection_id, event.event_type, payload)
        except (CaseLocked, ConcurrencyConflict) as exc:
            log.warning("Event %s could not be applied: %s", event.event_id, exc)
            return self._finish_event(sequence, error=str(exc))

        with self._uow_factory() as uow:
            stored = uow.repositories.events.get(sequence)
            if stored is not None:
                stored.mark_processed(payload, at=now)
                uow.commit()
        log.debug("Processed event #%d (%s)", sequence, event.event_type)
        return True

    def _finish_event(self, sequence: int, *, error: str, alert: bool = False) -> bool:
        now = self._clock()
        with self._uow_factory() as uow:
            event = uow.repositories.events.get(sequence)
            if event is None:
                return False
            event.mark_error(error, at=now)
            if alert:
                raise_alert(
                    uow.repositories,
                    AlertScope.CONNECTION,
                    event.source_connection_id,
                    f"Event {event.event_id} ({event.event_type}) rejected: {error}",
                    at=now,
                )
            uow.commit()
        return True

    # polling --------------------------------------------------------------------

    async def poll_connection(self, connection_id: str) -> int:
        """Fetch readable entities, diff against canonical records, emit synthetic events."""

        with self._uow_factory() as uow:
            connection = uow.repositories.connections.get(connection_id)
        if connection is None:
            raise UnknownConnection(f"Unknown connection: {connection_id}")
        if not connection.is_active:
            log.info("Skipping poll of %s (%s)", connection_id, connection.status)
            return 0
        reader = self._readers.get(connection.adapter_kind)
        if reader is None:
            return 0

        descriptor = self._registry.descriptor(connection.adapter_kind)
        since = self._last_polled.get(connection_id)
        started = self._clock()
        emitted = 0
        for entity, route in descriptor.reads.items():
            if not self._registry.allows(connection, entity, Operation.READ):
                continue
            await self._limiter.acquire(connection)
            token = await self._tokens.get_valid_token(connection_id)
            items = await reader.fetch(connection, token, entity, since=since)
            for item in items:
                external_id = dig(item, route.id_path)
                if external_id is MISSING or external_id is None:
                    log.warning("%s %s item without id skipped", connection_id, entity)
                    continue
                if self._emit_if_changed(connection, entity, str(external_id), item, route):
                    emitted += 1
        self._last_polled[connection_id] = started
        log.info("Polled %s: %d change(s)", connection_id, emitted)
        return emitted

    def _emit_if_changed(
        self,
        connection: Connection,
        entity: str,
        external_id: str,
        item: dict[str, Any],
        route: ReadRoute,
    ) -> bool:
        digest = content_hash(item)
        now = self._clock()
        with self._uow_factory() as uow:
            record = uow.repositories.records.get(
                connection_id=connection.connection_id, entity=entity, external_id=external_id
            )
            if record is not None and record.content_hash == digest:
                return False
        event_type = route.created_type if record is None else route.updated_type

        # the event goes in first; re-emitting after a crash dedups on the same event id
        self._ingestor.record(
            connection.connection_id,
            event_id=f"poll:{entity}:{external_id}:{digest[:16]}",
            event_type=event_type,
            raw_payload={POLLED_MARKER: entity, "data": item},
            occurred_at=now,
            partition_ref=external_id,
        )
        with self._uow_factory() as uow:
            records = uow.repositories.records
            record = records.get(
                connection_id=connection.connection_id, entity=entity, external_id=external_id
            )
            if record is None:
                records.add(
                    CanonicalRecord(
                        connection_id=connection.connection_id,
                        entity=entity,
                        external_id=external_id,
                        content_hash=digest,
                        payload=item,
                        updated_at=now,
                    )
                )
            else:
                record.content_hash = digest
                record.payload = item
                record.updated_at = now
            uow.commit()
        return True

    async def poll_all(self) -> int:
        with self._uow_factory() as uow:
            connections = list(uow.repositories.connections.list(status=ConnectionStatus.ACTIVE))
        total = 0
        for connection in connections:
            try:
                total += await self.poll_connection(connection.connection_id)
            except _POLL_ERRORS as exc:
                log.warning("Poll of %s failed: %s", connection.connection_id, exc)
        return total

    # outbound and housekeeping ------------------------------------------------------

    async def dispatch_due(self, *, limit: int | None = None) -> dict[TaskStatus, int]:
        batch = limit or self._settings.batch_size
        tasks = self._dispatcher.due(limit=batch)
        semaphore = asyncio.Semaphore(max(self._settings.outbound_workers, 1))
        summary: dict[TaskStatus, int] = {}

        async def run(task_id: UUID, pair: str) -> None:
            async with semaphore, self._pairs(pair):
                status = await self._dispatcher.run_task(task_id)
            if status is not None:
                summary[status] = summary.get(status, 0) + 1

        await asyncio.gather(
            *(run(task.task_id, f"{task.case_id}:{task.target_connection_id}") for task in tasks)
        )
        return summary

    def sweep(self) -> list[UUID]:
        return self._cases.sweep()

    def recover(self) -> int:
        """Requeue tasks left in flight by a previous run."""

        with self._uow_factory() as uow:
            count = uow.repositories.tasks.reset_in_flight()
            uow.commit()
        if count:
            log.warning("Requeued %d task(s) left in flight", count)
        return count

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        """Worker loop for both queues plus scheduled polling and sweeps until ``stop`` is set."""

        stop = stop or asyncio.Event()
        settings = self._settings
        survivable = (SyncError, *settings.storage_errors)
        self.recover()

        async def drain(step: Callable[[], Awaitable[object]]) -> None:
            while not stop.is_set():
                try:
                    worked = await step()
                except survivable:
                    log.exception("Worker step %s failed; backing off", step.__name__)
                    worked = False
                await _pause(stop, 0 if worked else settings.idle_sleep_seconds)

        async def scheduled(interval: float, step: Callable[[], object]) -> None:
            while not stop.is_set():
                try:
                    result = step()
                    if asyncio.iscoroutine(result):
                        await result
                except survivable:
                    log.exception("Scheduled step %s failed", step.__name__)
                await _pause(stop, interval)

        log.info("Sync workers started")
        await asyncio.gather(
            drain(self.process_pending_events),
            drain(self.dispatch_due),
            scheduled(settings.poll_interval_seconds, self.poll_all),
            scheduled(settings.sweep_interval_seconds, self.sweep),
        )
        log.info("Sync workers stopped")


async def _pause(stop: asyncio.Event, seconds: float) -> None:
    if seconds <= 0:
        await asyncio.sleep(0)
        return
    with suppress(TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=seconds)
