"""Provider-agnostic shapes every adapter normalizes into.

Missing optional values are empty strings or zero so downstream code stays
branch-free. Money is always integer minor units next to an ISO-4217 code and
dates are ISO ``YYYY-MM-DD`` strings.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, cast


@dataclass(frozen=True, slots=True)
class GuestProfile:
    guest_id: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    country: str = ""


@dataclass(frozen=True, slots=True)
class Reservation:
    reservation_id: str = ""
    confirmation_number: str = ""
    status: str = ""
    check_in: str = ""
    check_out: str = ""
    room_number: str = ""
    guest_id: str = ""
    property_id: str = ""
    total_amount: int = 0
    currency: str = ""


@dataclass(frozen=True, slots=True)
class FolioLine:
    line_id: str = ""
    reservation_id: str = ""
    category: str = ""
    description: str = ""
    amount: int = 0
    currency: str = ""
    posted_on: str = ""


@dataclass(frozen=True, slots=True)
class Rate:
    rate_code: str = ""
    description: str = ""
    amount: int = 0
    currency: str = ""


@dataclass(frozen=True, slots=True)
class DisputeDetails:
    dispute_id: str = ""
    status: str = ""
    amount: int = 0
    currency: str = ""
    reason_code: str = ""
    dispute_date: str = ""
    due_date: str = ""
    card_brand: str = ""
    card_present: bool | None = None
    ip_country: str = ""
    property_id: str = ""
    property_country: str = ""
    guest_ref: str = ""
    guest_name: str = ""
    reservation_ref: str = ""


@dataclass(frozen=True, slots=True)
class DocumentRef:
    document_id: str = ""
    dispute_id: str = ""
    evidence_type: str = ""
    reference: str = ""


@dataclass(frozen=True, slots=True)
class CanonicalPayload:
    reservation: Reservation = field(default_factory=Reservation)
    guest: GuestProfile = field(default_factory=GuestProfile)
    dispute: DisputeDetails = field(default_factory=DisputeDetails)
    rate: Rate = field(default_factory=Rate)
    document: DocumentRef = field(default_factory=DocumentRef)
    folio: tuple[FolioLine, ...] = ()

    @property
    def is_dispute(self) -> bool:
        return bool(self.dispute.dispute_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["folio"] = [asdict(line) for line in self.folio]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CanonicalPayload:
        def build[T](shape: type[T], raw: object) -> T:
            names = {item.name for item in fields(shape)}  # type: ignore[arg-type]
            values = cast(dict[str, Any], raw) if isinstance(raw, dict) else {}
            return shape(**{key: value for key, value in values.items() if key in names})

        folio_raw = data.get("folio") or []
        return cls(
            reservation=build(Reservation, data.get("reservation")),
            guest=build(GuestProfile, data.get("guest")),
            dispute=build(DisputeDetails, data.get("dispute")),
            rate=build(Rate, data.get("rate")),
            document=build(DocumentRef, data.get("document")),
            folio=tuple(build(FolioLine, line) for line in cast(list[Any], folio_raw)),
        )
