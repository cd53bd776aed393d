"""Error taxonomy of the synchronization engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from disputesync.domain.model.enums import CaseStatus


class SyncError(RuntimeError):
    """Base class for engine errors."""


class AuthError(SyncError):
    """Credentials are invalid or expired beyond refresh."""

    def __init__(self, message: str, *, connection_id: str | None = None) -> None:
        super().__init__(message)
        self.connection_id = connection_id


class CapabilityError(SyncError):
    """An operation the provider does not declare was requested."""


class RateLimitExceeded(SyncError):
    """No rate-limit capacity was available within the allowed wait."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Rate limit exhausted for connection {connection_id}")
        self.connection_id = connection_id


class NormalizationError(SyncError):
    """A provider payload could not be mapped onto the canonical shapes."""


class TransientNetworkError(SyncError):
    """Timeout, connection failure or retryable status from a provider."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class InvalidSignature(SyncError):
    """A webhook signature did not verify."""


class MalformedPayload(SyncError):
    """A webhook body was not parseable or lacked its event id."""


class UnknownConnection(SyncError):
    """A connection id or adapter kind could not be resolved."""


class IllegalTransition(SyncError):
    """A case status change that the lifecycle graph does not allow."""

    def __init__(self, source: CaseStatus, target: CaseStatus, message: str | None = None) -> None:
        super().__init__(message or f"Illegal transition {source} -> {target}")
        self.source = source
        self.target = target


class SubmissionBlocked(IllegalTransition):
    """SUBMITTED was requested without a confidence score or manual override."""


class CaseLocked(SyncError):
    """Case details were edited outside PENDING/IN_REVIEW."""


class ConcurrencyConflict(SyncError):
    """A concurrent writer changed the case first."""


class UnknownCase(SyncError):
    """No dispute case with the given id exists."""
