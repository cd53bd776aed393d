from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.pool import StaticPool

from disputesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    shutdown,
    startup,
)
from disputesync.adapters.vault import FernetSecretVault
from tests.helpers.harness import SyncHarness, build_harness
from tests.helpers.providers import FIXED_NOW, MutableClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from disputesync.domain.ports import SyncUnitOfWork


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    # one shared connection so the webhook threadpool sees the same in-memory database
    engine = create_engine(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(sqlite_engine: Engine) -> Iterator[Callable[[], SyncUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemySyncUnitOfWork
    finally:
        shutdown()


@pytest.fixture
def vault() -> FernetSecretVault:
    return FernetSecretVault(FernetSecretVault.generate_key())


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(FIXED_NOW)


@pytest.fixture
def harness(
    sqlite_unit_of_work: Callable[[], SyncUnitOfWork],
    vault: FernetSecretVault,
    clock: MutableClock,
) -> SyncHarness:
    return build_harness(sqlite_unit_of_work, vault, clock)
