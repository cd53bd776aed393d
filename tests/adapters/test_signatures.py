from __future__ import annotations

from datetime import UTC, datetime

import pytest

from disputesync.adapters.providers import CLOUDBEDS, MEWS, STRIPE
from disputesync.adapters.signatures import sign_body, stripe_signature, verify_signature
from disputesync.domain.errors import InvalidSignature
from disputesync.domain.providers import SignatureScheme

FOX = b"The quick brown fox jumps over the lazy dog"
NOW = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)
BODY = b'{"id":"evt_1"}'


def test_sign_body_known_vectors() -> None:
    assert (
        sign_body("key", FOX, SignatureScheme.HMAC_SHA256_HEX)
        == "f7bc83f430538424b13298e6aa6fb143ef4d59a14946175997479dbc2d1a3cd8"
    )
    assert (
        sign_body("key", FOX, SignatureScheme.HMAC_SHA256_BASE64)
        == "97yD9DBThCSxMpjmqm+xQ+9NWaFJRhdZl0edvC0aPNg="
    )
    with pytest.raises(ValueError, match="stripe_signature"):
        sign_body("key", FOX, SignatureScheme.STRIPE_V1)


def test_hex_and_base64_schemes_verify() -> None:
    assert MEWS.webhook is not None
    assert CLOUDBEDS.webhook is not None
    hex_signature = sign_body("s", BODY, SignatureScheme.HMAC_SHA256_HEX)
    b64_signature = sign_body("s", BODY, SignatureScheme.HMAC_SHA256_BASE64)

    verify_signature(MEWS.webhook, "s", BODY, {"x-mews-signature": hex_signature}, now=NOW)
    verify_signature(
        MEWS.webhook, "s", BODY, {"x-mews-signature": f"sha256={hex_signature}"}, now=NOW
    )
    verify_signature(
        CLOUDBEDS.webhook, "s", BODY, {"x-cloudbeds-signature": b64_signature}, now=NOW
    )

    with pytest.raises(InvalidSignature, match="mismatch"):
        verify_signature(
            MEWS.webhook, "s", BODY + b" ", {"x-mews-signature": hex_signature}, now=NOW
        )
    with pytest.raises(InvalidSignature, match="Missing X-Cloudbeds-Signature"):
        verify_signature(CLOUDBEDS.webhook, "s", BODY, {}, now=NOW)


def test_stripe_signature_accepts_any_v1_candidate() -> None:
    assert STRIPE.webhook is not None
    stamp = int(NOW.timestamp())
    header = stripe_signature("whsec", BODY, timestamp=stamp)

    verify_signature(STRIPE.webhook, "whsec", BODY, {"stripe-signature": header}, now=NOW)
    # rolled secrets send one v1 per active secret
    rolled = f"t={stamp},v1={'0' * 64},{header.split(',')[1]}"
    verify_signature(STRIPE.webhook, "whsec", BODY, {"stripe-signature": rolled}, now=NOW)

    with pytest.raises(InvalidSignature, match="mismatch"):
        verify_signature(STRIPE.webhook, "other", BODY, {"stripe-signature": header}, now=NOW)


def test_stripe_signature_enforces_tolerance_and_format() -> None:
    assert STRIPE.webhook is not None
    stale = stripe_signature("whsec", BODY, timestamp=int(NOW.timestamp()) - 301)
    fresh = stripe_signature("whsec", BODY, timestamp=int(NOW.timestamp()) - 299)

    with pytest.raises(InvalidSignature, match="tolerance"):
        verify_signature(STRIPE.webhook, "whsec", BODY, {"stripe-signature": stale}, now=NOW)
    verify_signature(STRIPE.webhook, "whsec", BODY, {"stripe-signature": fresh}, now=NOW)

    for header, match in (
        ("v1=abc", "lacks"),
        ("t=1700000000", "lacks"),
        ("t=yesterday,v1=abc", "not an integer"),
    ):
        with pytest.raises(InvalidSignature, match=match):
            verify_signature(STRIPE.webhook, "whsec", BODY, {"stripe-signature": header}, now=NOW)
