"""Webhook signature verification and request signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import TYPE_CHECKING

from disputesync.domain.errors import InvalidSignature
from disputesync.domain.providers import SignatureScheme

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from disputesync.domain.providers import WebhookSpec


def _digest(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def sign_body(secret: str, body: bytes, scheme: SignatureScheme) -> str:
    """Signature header value for ``body`` as ``scheme`` expects it.

    ``STRIPE_V1`` needs a timestamp; use ``stripe_signature`` for it.
    """

    if scheme is SignatureScheme.HMAC_SHA256_HEX:
        return _digest(secret, body).hex()
    if scheme is SignatureScheme.HMAC_SHA256_BASE64:
        return base64.b64encode(_digest(secret, body)).decode("ascii")
    raise ValueError(f"{scheme} signatures carry a timestamp; use stripe_signature()")


def stripe_signature(secret: str, body: bytes, *, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + body
    return f"t={timestamp},v1={_digest(secret, signed).hex()}"


def _parse_stripe_header(value: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    candidates: list[str] = []
    for part in value.split(","):
        key, _, item = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(item)
            except ValueError as exc:
                raise InvalidSignature("Signature timestamp is not an integer") from exc
        elif key == "v1":
            candidates.append(item)
    if timestamp is None or not candidates:
        raise InvalidSignature("Signature header lacks t= or v1= elements")
    return timestamp, candidates


def verify_signature(
    spec: WebhookSpec,
    secret: str,
    body: bytes,
    headers: Mapping[str, str],
    *,
    now: datetime,
) -> None:
    """Raise ``InvalidSignature`` unless ``body`` was signed with ``secret``.

    ``headers`` must have lowercase keys.
    """

    provided = headers.get(spec.signature_header.lower())
    if not provided:
        raise InvalidSignature(f"Missing {spec.signature_header} header")

    if spec.scheme is SignatureScheme.STRIPE_V1:
        timestamp, candidates = _parse_stripe_header(provided)
        if abs(now.timestamp() - timestamp) > spec.tolerance_seconds:
            raise InvalidSignature("Signature timestamp outside tolerance")
        expected = stripe_signature(secret, body, timestamp=timestamp).rsplit("=", 1)[1]
        if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
            raise InvalidSignature("Signature mismatch")
        return

    candidate = provided.strip().removeprefix("sha256=")
    expected = sign_body(secret, body, spec.scheme)
    if not hmac.compare_digest(expected, candidate):
        raise InvalidSignature("Signature mismatch")
