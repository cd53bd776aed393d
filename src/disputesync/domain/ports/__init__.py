"""Domain ports."""

from __future__ import annotations

from .adapters import (
    Authenticator,
    ProviderAdapter,
    Reader,
    SecretVault,
    SignatureVerifier,
    TokenGrant,
    Writer,
    WriteResponse,
)
from .persistence import (
    AlertRepository,
    CanonicalRecordRepository,
    CaseRepository,
    ConnectionRepository,
    OutboundTaskRepository,
    Repository,
    SyncEventRepository,
)
from .unit_of_work import RepositoryCollection, SyncRepositories, SyncUnitOfWork, UnitOfWork

__all__ = [
    "AlertRepository",
    "Authenticator",
    "CanonicalRecordRepository",
    "CaseRepository",
    "ConnectionRepository",
    "OutboundTaskRepository",
    "ProviderAdapter",
    "Reader",
    "Repository",
    "RepositoryCollection",
    "SecretVault",
    "SignatureVerifier",
    "SyncEventRepository",
    "SyncRepositories",
    "SyncUnitOfWork",
    "TokenGrant",
    "UnitOfWork",
    "WriteResponse",
    "Writer",
]
