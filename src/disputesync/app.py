"""Application wiring: builds the orchestrator and its collaborators from configuration."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from disputesync.adapters.providers import BUILTIN_DESCRIPTORS
from disputesync.adapters.runner import GenericAdapter
from disputesync.adapters.signatures import verify_signature
from disputesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    is_started,
    startup,
)
from disputesync.adapters.vault import FernetSecretVault
from disputesync.config import get_sync_config, get_vault_config, load_connection_specs
from disputesync.domain.capabilities import CapabilityRegistry
from disputesync.domain.cases import CaseService
from disputesync.domain.clock import utcnow
from disputesync.domain.credentials import TokenManager
from disputesync.domain.dispatch import DispatchPolicy, OutboundDispatcher
from disputesync.domain.errors import UnknownConnection
from disputesync.domain.ingestion import WebhookIngestor
from disputesync.domain.normalization import EventNormalizer
from disputesync.domain.orchestrator import SyncOrchestrator, WorkerSettings
from disputesync.domain.rate_limit import RateLimiter

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path
    from uuid import UUID

    from disputesync.adapters.runner import ClientFactory
    from disputesync.config import SyncConfig
    from disputesync.domain.clock import Clock
    from disputesync.domain.model import Alert, Connection
    from disputesync.domain.ports.adapters import SecretVault
    from disputesync.domain.ports.unit_of_work import SyncUnitOfWork
    from disputesync.domain.providers import ProviderDescriptor

UnitOfWorkFactory = Callable[[], "SyncUnitOfWork"]


log = getLogger(__name__)


@dataclass(slots=True)
class SyncApplication:
    """The wired engine plus the resources that need closing."""

    orchestrator: SyncOrchestrator
    registry: CapabilityRegistry
    adapters: dict[str, GenericAdapter]
    unit_of_work_factory: UnitOfWorkFactory

    async def aclose(self) -> None:
        for adapter in self.adapters.values():
            await adapter.aclose()


def build_application(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    vault: SecretVault | None = None,
    config: SyncConfig | None = None,
    descriptors: Iterable[ProviderDescriptor] = BUILTIN_DESCRIPTORS,
    client_factory: ClientFactory | None = None,
    clock: Clock = utcnow,
) -> SyncApplication:
    """Assemble every collaborator explicitly; nothing is looked up globally later on.

    Without a ``unit_of_work_factory`` the SQLAlchemy store is started and
    migrated. Without a ``vault`` the Fernet key is read from the environment.
    """

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemySyncUnitOfWork
    effective_vault = vault or FernetSecretVault(get_vault_config().key)
    settings = config or get_sync_config()

    registry = CapabilityRegistry(descriptors)
    adapters = {
        kind: GenericAdapter(registry.descriptor(kind), client_factory=client_factory)
        for kind in registry.kinds()
    }
    limiter = RateLimiter(
        blocking=settings.rate_limit_blocking, wait_seconds=settings.rate_limit_wait_seconds
    )
    tokens = TokenManager(
        unit_of_work_factory=unit_of_work_factory,
        authenticators=adapters,
        vault=effective_vault,
        limiter=limiter,
        buffer_ms=settings.token_refresh_buffer_ms,
        clock=clock,
    )
    ingestor = WebhookIngestor(
        unit_of_work_factory=unit_of_work_factory,
        registry=registry,
        vault=effective_vault,
        verifier=verify_signature,
        clock=clock,
    )
    cases = CaseService(
        unit_of_work_factory=unit_of_work_factory,
        write_retries=settings.case_write_retries,
        clock=clock,
    )
    dispatcher = OutboundDispatcher(
        unit_of_work_factory=unit_of_work_factory,
        registry=registry,
        writers=adapters,
        tokens=tokens,
        limiter=limiter,
        policy=DispatchPolicy(
            max_attempts=settings.max_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
        ),
        clock=clock,
    )
    orchestrator = SyncOrchestrator(
        unit_of_work_factory=unit_of_work_factory,
        registry=registry,
        vault=effective_vault,
        ingestor=ingestor,
        normalizer=EventNormalizer(registry),
        cases=cases,
        dispatcher=dispatcher,
        tokens=tokens,
        limiter=limiter,
        readers=adapters,
        settings=WorkerSettings(
            event_workers=settings.event_workers,
            outbound_workers=settings.outbound_workers,
            batch_size=settings.batch_size,
            poll_interval_seconds=settings.poll_interval_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            idle_sleep_seconds=settings.idle_sleep_seconds,
            storage_errors=(SQLAlchemyError,),
        ),
        clock=clock,
    )
    log.info("Sync engine wired for %d provider kinds", len(adapters))
    return SyncApplication(
        orchestrator=orchestrator,
        registry=registry,
        adapters=adapters,
        unit_of_work_factory=unit_of_work_factory,
    )


def connect_from_file(
    application: SyncApplication, path: Path, *, only: Sequence[str] = ()
) -> list[Connection]:
    """Create or update every connection defined in a connections TOML file."""

    specs = load_connection_specs(path)
    if only:
        wanted = set(only)
        missing = wanted - {spec.connection_id for spec in specs}
        if missing:
            raise UnknownConnection(f"Not in {path}: {', '.join(sorted(missing))}")
        specs = [spec for spec in specs if spec.connection_id in wanted]
    return [application.orchestrator.connect(spec) for spec in specs]


def list_alerts(
    application: SyncApplication, *, include_acknowledged: bool = False
) -> list[Alert]:
    with application.unit_of_work_factory() as uow:
        return list(uow.repositories.alerts.list(include_acknowledged=include_acknowledged))


def acknowledge_alert(application: SyncApplication, alert_id: UUID) -> Alert:
    with application.unit_of_work_factory() as uow:
        alert = uow.repositories.alerts.get(alert_id)
        if alert is None:
            raise LookupError(f"Unknown alert: {alert_id}")
        alert.acknowledged = True
        uow.commit()
    return alert
