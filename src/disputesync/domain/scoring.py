"""Deterministic confidence scoring for dispute cases.

The score is a pure function of the case, its evidence, the reference date and
an explicit context; the same inputs always give the same breakdown.

    reason component     win_rate(reason) * 40
    evidence component   present_required / required * 35
    fraud component      fraud_heuristic(case) * 25
    adjustment           days-to-due and property history, within +/-25
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Final

from disputesync.domain.model import EvidenceType, Recommendation

if TYPE_CHECKING:
    from disputesync.domain.model import DisputeCase

REASON_WEIGHT: Final[float] = 0.40
EVIDENCE_WEIGHT: Final[float] = 0.35
FRAUD_WEIGHT: Final[float] = 0.25
MAX_ADJUSTMENT: Final[int] = 25
DEFAULT_WIN_RATE: Final[float] = 0.5

AUTO_SUBMIT_THRESHOLD: Final[int] = 85
REVIEW_THRESHOLD: Final[int] = 70
GATHER_THRESHOLD: Final[int] = 40

_E = EvidenceType

DEFAULT_REQUIRED_EVIDENCE: Final[frozenset[EvidenceType]] = frozenset(
    {_E.FOLIO, _E.RESERVATION_CONFIRMATION, _E.AUTH_SIGNATURE, _E.ID_SCAN}
)

# Historical chargeback win rates for lodging, by network reason code.
DEFAULT_WIN_RATES: Final[Mapping[str, float]] = {
    # Visa fraud
    "10.1": 0.35, "10.2": 0.40, "10.3": 0.55, "10.4": 0.60, "10.5": 0.45,
    # Visa authorization
    "11.1": 0.50, "11.2": 0.55, "11.3": 0.55,
    # Visa processing errors
    "12.1": 0.45, "12.2": 0.50, "12.3": 0.45, "12.4": 0.50,
    "12.5": 0.70, "12.6": 0.70, "12.7": 0.55,
    # Visa consumer disputes
    "13.1": 0.65, "13.2": 0.70, "13.3": 0.50, "13.4": 0.45,
    "13.5": 0.50, "13.6": 0.60, "13.7": 0.55, "13.8": 0.55, "13.9": 0.50,
    # Mastercard
    "4837": 0.55, "4853": 0.60, "4855": 0.65, "4863": 0.55, "4834": 0.70,
    # card-network neutral reasons as reported by processors
    "fraudulent": 0.55, "unrecognized": 0.60, "duplicate": 0.70,
    "product_not_received": 0.65, "credit_not_processed": 0.55,
    "subscription_canceled": 0.50, "product_unacceptable": 0.50, "general": 0.50,
}  # fmt: skip

DEFAULT_REQUIRED_BY_REASON: Final[Mapping[str, frozenset[EvidenceType]]] = {
    "13.1": frozenset(
        {_E.FOLIO, _E.RESERVATION_CONFIRMATION, _E.KEY_CARD_LOG, _E.CHECKOUT_SIGNATURE}
    ),
    "product_not_received": frozenset(
        {_E.FOLIO, _E.RESERVATION_CONFIRMATION, _E.KEY_CARD_LOG, _E.CHECKOUT_SIGNATURE}
    ),
    "13.7": frozenset(
        {_E.FOLIO, _E.RESERVATION_CONFIRMATION, _E.CANCELLATION_POLICY, _E.CORRESPONDENCE}
    ),
    "subscription_canceled": frozenset(
        {_E.FOLIO, _E.RESERVATION_CONFIRMATION, _E.CANCELLATION_POLICY, _E.CORRESPONDENCE}
    ),
    "13.6": frozenset({_E.FOLIO, _E.CANCELLATION_POLICY, _E.CORRESPONDENCE}),
    "credit_not_processed": frozenset({_E.FOLIO, _E.CANCELLATION_POLICY, _E.CORRESPONDENCE}),
    "12.6": frozenset({_E.FOLIO, _E.RESERVATION_CONFIRMATION}),
    "duplicate": frozenset({_E.FOLIO, _E.RESERVATION_CONFIRMATION}),
}  # fmt: skip


@dataclass(frozen=True, slots=True)
class ScoringTables:
    """Injected reference data; the defaults ship with the package."""

    win_rates: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_WIN_RATES))
    required_by_reason: Mapping[str, frozenset[EvidenceType]] = field(
        default_factory=lambda: dict(DEFAULT_REQUIRED_BY_REASON)
    )
    default_required: frozenset[EvidenceType] = DEFAULT_REQUIRED_EVIDENCE
    default_win_rate: float = DEFAULT_WIN_RATE

    def win_rate(self, reason_code: str) -> float:
        key = reason_code.strip()
        rate = self.win_rates.get(key)
        if rate is None:
            rate = self.win_rates.get(key.lower(), self.default_win_rate)
        return rate

    def required_evidence(self, reason_code: str) -> frozenset[EvidenceType]:
        key = reason_code.strip()
        return self.required_by_reason.get(
            key, self.required_by_reason.get(key.lower(), self.default_required)
        )


DEFAULT_TABLES: Final[ScoringTables] = ScoringTables()


@dataclass(frozen=True, slots=True)
class ScoringContext:
    """Facts about the world outside the case.

    ``property_win_rate`` is None when the property has no decided cases for
    this reason code yet.
    """

    repeat_disputes: int = 0
    property_win_rate: float | None = None


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    reason_code_score: float
    evidence_score: float
    fraud_indicator_score: float
    adjustment: int
    total: int
    recommendation: Recommendation
    missing_evidence: tuple[EvidenceType, ...] = ()

    def as_details(self) -> dict[str, object]:
        return {
            "reason_code_score": round(self.reason_code_score, 2),
            "evidence_score": round(self.evidence_score, 2),
            "fraud_indicator_score": round(self.fraud_indicator_score, 2),
            "adjustment": self.adjustment,
            "total": self.total,
            "recommendation": self.recommendation.value,
            "missing_evidence": [item.value for item in self.missing_evidence],
        }


def _clamp[T: (int, float)](value: T, low: T, high: T) -> T:
    return max(low, min(high, value))


def recommend(total: int) -> Recommendation:
    if total >= AUTO_SUBMIT_THRESHOLD:
        return Recommendation.AUTO_SUBMIT
    if total >= REVIEW_THRESHOLD:
        return Recommendation.REVIEW_RECOMMENDED
    if total >= GATHER_THRESHOLD:
        return Recommendation.GATHER_MORE_EVIDENCE
    return Recommendation.UNLIKELY_TO_WIN


def fraud_heuristic(case: DisputeCase, context: ScoringContext) -> float:
    value = 0.5
    if case.card_present is True:
        value += 0.2
    elif case.card_present is False:
        value -= 0.1

    if case.ip_country and case.property_country:
        value += 0.15 if case.ip_country == case.property_country else -0.15

    if context.repeat_disputes == 0:
        value += 0.05
    elif context.repeat_disputes == 1:
        value -= 0.1
    else:
        value -= 0.25
    return _clamp(value, 0.0, 1.0)


def _due_adjustment(due_date: str, today: date) -> int:
    if not due_date:
        return 0
    try:
        due = date.fromisoformat(due_date)
    except ValueError:
        return 0
    days_left = (due - today).days
    if days_left < 0:
        return -10
    if days_left <= 2:  # noqa: PLR2004
        return -5
    if days_left <= 6:  # noqa: PLR2004
        return 0
    if days_left <= 13:  # noqa: PLR2004
        return 2
    return 5


def _history_adjustment(property_win_rate: float | None) -> int:
    if property_win_rate is None:
        return 0
    return _clamp(round((property_win_rate - 0.5) * 30), -15, 15)


def score(
    case: DisputeCase,
    evidence: Iterable[EvidenceType],
    *,
    now: datetime,
    context: ScoringContext | None = None,
    tables: ScoringTables = DEFAULT_TABLES,
) -> ScoreBreakdown:
    context = context or ScoringContext()
    present = frozenset(evidence)

    reason_component = tables.win_rate(case.reason_code) * REASON_WEIGHT * 100

    required = tables.required_evidence(case.reason_code)
    missing = tuple(sorted(required - present))
    coverage = 1.0 if not required else (len(required) - len(missing)) / len(required)
    evidence_component = coverage * EVIDENCE_WEIGHT * 100

    fraud_component = fraud_heuristic(case, context) * FRAUD_WEIGHT * 100

    adjustment = _clamp(
        _due_adjustment(case.due_date, now.date())
        + _history_adjustment(context.property_win_rate),
        -MAX_ADJUSTMENT,
        MAX_ADJUSTMENT,
    )

    total = _clamp(
        round(reason_component + evidence_component + fraud_component + adjustment), 0, 100
    )
    return ScoreBreakdown(
        reason_code_score=reason_component,
        evidence_score=evidence_component,
        fraud_indicator_score=fraud_component,
        adjustment=adjustment,
        total=total,
        recommendation=recommend(total),
        missing_evidence=missing,
    )
