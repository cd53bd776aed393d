"""Table-driven normalization of provider payloads into canonical shapes.

The per-provider knowledge lives in ``FieldTable`` data. This module only
interprets those tables and supplies the shared converters (dates, currency,
money, phone numbers, names, flags and a few vocabulary maps).
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, cast

from disputesync.domain.errors import NormalizationError, UnknownConnection
from disputesync.domain.model import (
    CanonicalPayload,
    DisputeDetails,
    DocumentRef,
    EvidenceType,
    FolioLine,
    GuestProfile,
    Rate,
    Reservation,
    SyncEventType,
)
from disputesync.domain.providers import MISSING, first_present

if TYPE_CHECKING:
    from disputesync.domain.capabilities import CapabilityRegistry
    from disputesync.domain.providers import FieldRule, FieldTable

log = getLogger(__name__)

UNKNOWN_GUEST: Final[str] = "Unknown Guest"

# Dates ------------------------------------------------------------------------

_MONTHS: Final[dict[str, int]] = {
    name: index
    for index, name in enumerate(
        ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"),
        start=1,
    )
}
_EPOCH_RE = re.compile(r"^\d{10,13}$")
_DD_MMM_YY_RE = re.compile(r"^(\d{1,2})[-/\s]([A-Za-z]{3})[-/\s](\d{2,4})$")
_MM_DD_YYYY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_YYYY_MM_DD_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")


def _from_epoch(value: int | float) -> datetime:
    seconds = value / 1000 if value >= 1e12 else value  # noqa: PLR2004
    return datetime.fromtimestamp(seconds, tz=UTC)


def parse_timestamp(value: object) -> datetime:
    """Parse any supported date or timestamp form into an aware UTC datetime.

    Accepts ISO-8601 (``Z`` suffix included), epoch seconds or milliseconds
    (numeric or digit strings), ``DD-MMM-YY[YY]``, ``MM/DD/YYYY`` and
    ``YYYY/MM/DD``. Anything else raises ``NormalizationError``.
    """

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, bool):
        raise NormalizationError(f"Unparseable date: {value!r}")
    try:
        if isinstance(value, int | float):
            return _from_epoch(value)
        if not isinstance(value, str):
            raise NormalizationError(f"Unparseable date: {value!r}")

        text = value.strip()
        if _EPOCH_RE.match(text):
            return _from_epoch(int(text))
        if match := _DD_MMM_YY_RE.match(text):
            month = _MONTHS.get(match.group(2).upper())
            if month is not None:
                year = int(match.group(3))
                year = year + 2000 if year < 100 else year  # noqa: PLR2004
                return datetime(year, month, int(match.group(1)), tzinfo=UTC)
        if match := _MM_DD_YYYY_RE.match(text):
            return datetime(
                int(match.group(3)), int(match.group(1)), int(match.group(2)), tzinfo=UTC
            )
        if match := _YYYY_MM_DD_RE.match(text):
            return datetime(
                int(match.group(1)), int(match.group(2)), int(match.group(3)), tzinfo=UTC
            )
        normalized = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
        parsed = datetime.fromisoformat(normalized)
    except (ValueError, OverflowError, OSError) as exc:
        raise NormalizationError(f"Unparseable date: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def normalize_date(value: object) -> str:
    return parse_timestamp(value).astimezone(UTC).date().isoformat()


# Currency and money -------------------------------------------------------------

_NUMERIC_CURRENCIES: Final[dict[int, str]] = {
    840: "USD", 978: "EUR", 826: "GBP", 124: "CAD", 36: "AUD",
    392: "JPY", 756: "CHF", 484: "MXN", 986: "BRL", 156: "CNY",
    356: "INR", 702: "SGD", 344: "HKD", 554: "NZD", 752: "SEK",
    578: "NOK", 208: "DKK", 710: "ZAR", 682: "SAR", 784: "AED",
    764: "THB", 410: "KRW",
}  # fmt: skip
_CURRENCY_ALIASES: Final[dict[str, str]] = {
    "DOLLAR": "USD", "DOLLARS": "USD", "US": "USD", "$": "USD",
    "EURO": "EUR", "EUROS": "EUR", "€": "EUR",
    "POUND": "GBP", "POUNDS": "GBP", "STERLING": "GBP", "£": "GBP",
    "YEN": "JPY", "¥": "JPY", "FRANC": "CHF",
}  # fmt: skip
_CURRENCY_EXPONENTS: Final[dict[str, int]] = {
    "JPY": 0, "KRW": 0, "VND": 0, "CLP": 0, "ISK": 0, "XOF": 0,
    "BHD": 3, "KWD": 3, "OMR": 3, "JOD": 3, "TND": 3,
}  # fmt: skip


def normalize_currency(value: object) -> str:
    """ISO-4217 alpha code from alpha, numeric or common alias forms."""

    if isinstance(value, int) and not isinstance(value, bool):
        code = _NUMERIC_CURRENCIES.get(value)
        if code is None:
            raise NormalizationError(f"Unknown numeric currency code: {value}")
        return code
    text = str(value).strip().upper()
    if text.isdigit():
        return normalize_currency(int(text))
    if re.fullmatch(r"[A-Z]{3}", text):
        return text
    alias = _CURRENCY_ALIASES.get(text)
    if alias is None:
        raise NormalizationError(f"Unknown currency: {value!r}")
    return alias


def currency_exponent(currency: str) -> int:
    return _CURRENCY_EXPONENTS.get(currency, 2)


def to_minor_units(value: object, currency: str) -> int:
    """Convert a major-unit amount (``"$1,234.56"``, ``"1.234,56"``, ``(12.00)``) to minor units."""

    if isinstance(value, bool):
        raise NormalizationError(f"Unparseable amount: {value!r}")
    if isinstance(value, int | float | Decimal):
        amount = Decimal(str(value))
    else:
        text = str(value).strip()
        negative = text.startswith(("-", "("))
        digits = re.sub(r"[^0-9.,]", "", text)
        if not digits:
            raise NormalizationError(f"Unparseable amount: {value!r}")
        if digits.rfind(",") > digits.rfind("."):
            # European notation: dot groups thousands, comma marks decimals
            digits = digits.replace(".", "").replace(",", ".")
        else:
            digits = digits.replace(",", "")
        try:
            amount = Decimal(digits)
        except InvalidOperation as exc:
            raise NormalizationError(f"Unparseable amount: {value!r}") from exc
        if negative:
            amount = -amount
    scaled = amount.scaleb(currency_exponent(currency))
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def minor_units(value: object) -> int:
    """Amount already expressed in minor units (``48750`` or ``"48750"``)."""

    if isinstance(value, bool):
        raise NormalizationError(f"Unparseable amount: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value).strip()).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise NormalizationError(f"Unparseable minor-unit amount: {value!r}") from exc


# People and contact details -----------------------------------------------------

_MIN_PHONE_DIGITS: Final[int] = 7
_NANP_DIGITS: Final[int] = 10


def normalize_phone(value: object) -> str:
    digits = re.sub(r"[^\d+]", "", str(value))
    if len(digits.lstrip("+")) < _MIN_PHONE_DIGITS:
        return ""
    if digits.startswith("+"):
        return digits
    if len(digits) == _NANP_DIGITS:
        return "+1" + digits
    return "+" + digits


_FIRST_KEYS = ("firstName", "first_name", "givenName", "FirstName", "GivenName", "nameFirst")
_LAST_KEYS = ("lastName", "last_name", "surname", "LastName", "Surname", "FamilyName", "nameLast")
_FULL_KEYS = ("fullName", "full_name", "name", "Name", "GuestName", "guestName")


def split_name(value: object) -> tuple[str, str, str]:
    """``(first, last, full)`` from ``"Last, First"``, ``"First Last"`` or a name mapping."""

    if isinstance(value, Mapping):
        mapping = cast(Mapping[str, object], value)
        first = next((str(mapping[k]).strip() for k in _FIRST_KEYS if mapping.get(k)), "")
        last = next((str(mapping[k]).strip() for k in _LAST_KEYS if mapping.get(k)), "")
        if first or last:
            return first, last, " ".join(part for part in (first, last) if part)
        full = next((mapping[k] for k in _FULL_KEYS if mapping.get(k)), "")
        return split_name(full) if full else ("", "", "")

    text = " ".join(str(value).split())
    if not text:
        return "", "", ""
    if "," in text:
        last, _, first = (part.strip() for part in text.partition(","))
        return first, last, " ".join(part for part in (first, last) if part)
    words = text.split(" ")
    if len(words) == 1:
        return words[0], "", words[0]
    return words[0], words[-1], text


def normalize_bool(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "y", "1", "present", "card_present"}:
        return True
    if text in {"false", "no", "n", "0", "absent", "card_not_present"}:
        return False
    return None


def normalize_country(value: object) -> str:
    text = str(value).strip().upper()
    return text if re.fullmatch(r"[A-Z]{2}", text) else ""


# Vocabularies -------------------------------------------------------------------

_CARD_BRANDS: Final[dict[str, str]] = {
    "VI": "Visa", "VISA": "Visa", "VS": "Visa",
    "MC": "Mastercard", "MASTERCARD": "Mastercard", "MASTER": "Mastercard",
    "AX": "American Express", "AMEX": "American Express",
    "AMERICAN_EXPRESS": "American Express",
    "DS": "Discover", "DISCOVER": "Discover",
    "DC": "Diners Club", "DINERS": "Diners Club",
    "JC": "JCB", "JCB": "JCB",
    "UP": "UnionPay", "UNIONPAY": "UnionPay", "CUP": "UnionPay",
}  # fmt: skip


def normalize_card_brand(value: object) -> str:
    key = re.sub(r"[\s-]+", "_", str(value).strip().upper())
    return _CARD_BRANDS.get(key, "Unknown")


_RESERVATION_STATUSES: Final[dict[str, str]] = {
    "CONFIRMED": "confirmed", "RESERVED": "confirmed", "BOOKED": "confirmed",
    "GUARANTEED": "confirmed", "DEFINITE": "confirmed",
    "CHECKED_IN": "checked_in", "IN_HOUSE": "checked_in", "INHOUSE": "checked_in",
    "ARRIVED": "checked_in", "STARTED": "checked_in",
    "CHECKED_OUT": "checked_out", "DEPARTED": "checked_out", "PROCESSED": "checked_out",
    "COMPLETED": "checked_out",
    "CANCELLED": "cancelled", "CANCELED": "cancelled", "CXL": "cancelled", "VOID": "cancelled",
    "NO_SHOW": "no_show", "NOSHOW": "no_show",
    "PENDING": "pending", "TENTATIVE": "pending", "WAITLIST": "pending", "INQUIRY": "pending",
}  # fmt: skip


def normalize_reservation_status(value: object) -> str:
    key = re.sub(r"[\s-]+", "_", str(value).strip().upper())
    return _RESERVATION_STATUSES.get(key, "unknown")


_FOLIO_CATEGORIES: Final[tuple[tuple[str, tuple[str, ...]], ...]] = (
    ("food_beverage", ("FOOD", "BEVERAGE", "RESTAURANT", "BAR", "ROOM_SERVICE", "BREAKFAST")),
    ("room", ("ROOM", "ACCOMMODATION", "LODGING", "NIGHTLY")),
    ("tax", ("TAX", "VAT", "GST")),
    ("payment", ("PAYMENT", "DEPOSIT", "CREDIT_CARD", "CASH")),
    ("adjustment", ("ADJ", "REFUND", "DISCOUNT", "REBATE", "COMP")),
    ("fee", ("FEE", "SURCHARGE", "DAMAGE", "NO_SHOW")),
    ("incidental", ("MINIBAR", "PARKING", "SPA", "LAUNDRY", "TELEPHONE", "WIFI", "MISC")),
)


def normalize_folio_category(value: object) -> str:
    key = re.sub(r"[\s-]+", "_", str(value).strip().upper())
    for category, markers in _FOLIO_CATEGORIES:
        if any(marker in key for marker in markers):
            return category
    return "other"


_EVIDENCE_ALIASES: Final[dict[str, EvidenceType]] = {
    "ID": EvidenceType.ID_SCAN,
    "PASSPORT": EvidenceType.ID_SCAN,
    "DRIVERS_LICENSE": EvidenceType.ID_SCAN,
    "ID_VERIFICATION": EvidenceType.ID_SCAN,
    "SIGNATURE": EvidenceType.AUTH_SIGNATURE,
    "REGISTRATION_CARD": EvidenceType.AUTH_SIGNATURE,
    "SIGNED_RECEIPT": EvidenceType.CHECKOUT_SIGNATURE,
    "INVOICE": EvidenceType.FOLIO,
    "BILL": EvidenceType.FOLIO,
    "ITEMIZED_CHARGES": EvidenceType.FOLIO,
    "CONFIRMATION": EvidenceType.RESERVATION_CONFIRMATION,
    "BOOKING_CONFIRMATION": EvidenceType.RESERVATION_CONFIRMATION,
    "TERMS_AND_CONDITIONS": EvidenceType.CANCELLATION_POLICY,
    "KEY_CARD_ACCESS_LOG": EvidenceType.KEY_CARD_LOG,
    "SURVEILLANCE_FOOTAGE": EvidenceType.CCTV_FOOTAGE,
    "EMAIL": EvidenceType.CORRESPONDENCE,
}


def normalize_evidence_type(value: object) -> str:
    key = re.sub(r"[\s-]+", "_", str(value).strip().upper())
    if key in EvidenceType.__members__:
        return EvidenceType[key].value
    return _EVIDENCE_ALIASES.get(key, EvidenceType.OTHER).value


def _text(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


CONVERTERS: Final[dict[str, Callable[[object], object]]] = {
    "text": _text,
    "upper": lambda value: _text(value).upper(),
    "lower": lambda value: _text(value).lower(),
    "date": normalize_date,
    "currency": normalize_currency,
    "phone": normalize_phone,
    "full_name": lambda value: split_name(value)[2],
    "first_name": lambda value: split_name(value)[0],
    "last_name": lambda value: split_name(value)[1],
    "bool": normalize_bool,
    "country": normalize_country,
    "card_brand": normalize_card_brand,
    "reservation_status": normalize_reservation_status,
    "folio_category": normalize_folio_category,
    "evidence_type": normalize_evidence_type,
}
MONEY_CONVERTERS: Final[frozenset[str]] = frozenset({"amount", "minor_units"})

# PII redaction for logs -----------------------------------------------------------

_REDACT_KEYS: Final[frozenset[str]] = frozenset(
    {
        "password", "secret", "token", "access_token", "refresh_token", "accessToken",
        "refreshToken", "api_key", "apiKey", "card_number", "cardNumber", "cvv", "cvc",
        "passport", "passportNumber", "ssn",
    }
)  # fmt: skip
_MASK_KEYS: Final[frozenset[str]] = frozenset(
    {"email", "Email", "phone", "Phone", "phoneNumber", "phone_number", "mobile"}
)


def redact(data: object) -> object:
    """Copy of ``data`` with credentials removed and contact details masked."""

    if isinstance(data, list):
        return [redact(item) for item in cast(list[object], data)]
    if not isinstance(data, Mapping):
        return data
    result: dict[str, object] = {}
    for key, value in cast(Mapping[str, object], data).items():
        if key in _REDACT_KEYS:
            result[key] = "***REDACTED***"
        elif key in _MASK_KEYS:
            text = str(value)
            result[key] = "***" + text[-4:] if len(text) > 4 else "***"  # noqa: PLR2004
        else:
            result[key] = redact(value)
    return result


# Normalizer ---------------------------------------------------------------------

_SHAPES: Final[dict[str, type]] = {
    "reservation": Reservation,
    "guest": GuestProfile,
    "dispute": DisputeDetails,
    "rate": Rate,
    "document": DocumentRef,
}
_REQUIRED_BY_FAMILY: Final[dict[str, tuple[str, ...]]] = {
    "dispute": ("dispute.dispute_id", "dispute.amount"),
    "reservation": ("reservation.reservation_id",),
    "document": ("document.reference",),
}


def _apply_rules(
    source: object,
    rules: Mapping[str, FieldRule],
    *,
    default_currency: str,
) -> dict[str, dict[str, Any]]:
    values: dict[str, dict[str, Any]] = {}
    money: list[tuple[str, str, object, str]] = []
    for path, rule in rules.items():
        shape, _, name = path.partition(".")
        raw = first_present(source, rule.sources)
        if raw is MISSING:
            continue
        if rule.convert in MONEY_CONVERTERS:
            money.append((shape, name, raw, rule.convert))
            continue
        converter = CONVERTERS.get(rule.convert)
        if converter is None:
            raise NormalizationError(f"Unknown converter {rule.convert!r} for {path}")
        converted = converter(raw)
        if converted is None or converted == "":
            continue
        values.setdefault(shape, {})[name] = converted

    # amounts need the currency of their own shape
    for shape, name, raw, kind in money:
        bucket = values.setdefault(shape, {})
        currency = bucket.get("currency") or default_currency
        bucket.setdefault("currency", currency)
        bucket[name] = to_minor_units(raw, currency) if kind == "amount" else minor_units(raw)
    return values


class EventNormalizer:
    """Maps raw provider payloads to ``CanonicalPayload`` using descriptor field tables."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    def normalize(
        self,
        adapter_kind: str,
        event_type: SyncEventType | str,
        raw_payload: Mapping[str, Any],
    ) -> CanonicalPayload:
        try:
            descriptor = self._registry.descriptor(adapter_kind)
        except UnknownConnection as exc:
            raise NormalizationError(str(exc)) from exc
        table = descriptor.field_table_for(event_type)
        if table is None:
            raise NormalizationError(f"{adapter_kind} has no field table for {event_type}")

        scalar_rules = {p: r for p, r in table.fields.items() if not p.startswith("folio.")}
        folio_rules = {
            p.removeprefix("folio."): r for p, r in table.fields.items() if p.startswith("folio.")
        }
        values = _apply_rules(
            raw_payload, scalar_rules, default_currency=descriptor.default_currency
        )
        folio = self._folio_lines(table, raw_payload, folio_rules, descriptor.default_currency)

        shapes = {name: cls(**values.get(name, {})) for name, cls in _SHAPES.items()}
        payload = CanonicalPayload(folio=folio, **shapes)
        self._check_required(payload, str(event_type), values)
        return self._with_guest_defaults(payload, adapter_kind)

    def _folio_lines(
        self,
        table: FieldTable,
        raw_payload: Mapping[str, Any],
        rules: Mapping[str, FieldRule],
        default_currency: str,
    ) -> tuple[FolioLine, ...]:
        if not rules:
            return ()
        items = first_present(raw_payload, table.folio_items)
        if not isinstance(items, list):
            return ()
        lines: list[FolioLine] = []
        for item in cast(list[object], items):
            # rules are keyed "field" here; wrap them so _apply_rules sees "line.field"
            line_values = _apply_rules(
                item,
                {f"line.{name}": rule for name, rule in rules.items()},
                default_currency=default_currency,
            )
            lines.append(FolioLine(**line_values.get("line", {})))
        return tuple(lines)

    @staticmethod
    def _check_required(
        payload: CanonicalPayload,
        event_type: str,
        values: Mapping[str, Mapping[str, Any]],
    ) -> None:
        family = event_type.split(".", 1)[0]
        required = list(_REQUIRED_BY_FAMILY.get(family, ()))
        if payload.is_dispute and "dispute.amount" not in required:
            required.append("dispute.amount")
        missing = [
            path
            for path in required
            if path.partition(".")[2] not in values.get(path.partition(".")[0], {})
        ]
        if missing:
            raise NormalizationError(
                f"{event_type} payload lacks required field(s): {', '.join(missing)}"
            )

    @staticmethod
    def _with_guest_defaults(payload: CanonicalPayload, adapter_kind: str) -> CanonicalPayload:
        dispute = payload.dispute
        guest = payload.guest
        if payload.is_dispute and not dispute.guest_name:
            name = guest.full_name or UNKNOWN_GUEST
            if name == UNKNOWN_GUEST:
                log.warning(
                    "%s dispute %s has no guest name; defaulting to %r",
                    adapter_kind,
                    dispute.dispute_id,
                    UNKNOWN_GUEST,
                )
            dispute = replace(dispute, guest_name=name)
        if guest.guest_id and not guest.full_name:
            log.warning(
                "%s guest %s has no name; defaulting to %r",
                adapter_kind,
                guest.guest_id,
                UNKNOWN_GUEST,
            )
            guest = replace(guest, full_name=UNKNOWN_GUEST)
        if dispute is payload.dispute and guest is payload.guest:
            return payload
        return replace(payload, guest=guest, dispute=dispute)
