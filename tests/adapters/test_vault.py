from __future__ import annotations

import pytest

from disputesync.adapters.vault import FernetSecretVault
from disputesync.config.errors import ConfigurationError


def test_sealed_secrets_round_trip_and_are_cleared() -> None:
    vault = FernetSecretVault(FernetSecretVault.generate_key())
    sealed = vault.seal({"api_key": "sk_live_1", "signing_secret": "whsec"})

    assert b"sk_live_1" not in sealed
    with vault.reveal(sealed) as secrets:
        assert secrets == {"api_key": "sk_live_1", "signing_secret": "whsec"}
        leaked = secrets
    assert leaked == {}


def test_reveal_of_nothing_is_empty() -> None:
    vault = FernetSecretVault(FernetSecretVault.generate_key())

    with vault.reveal(None) as secrets:
        assert secrets == {}


def test_key_problems_are_configuration_errors() -> None:
    with pytest.raises(ConfigurationError, match="not a valid Fernet key"):
        FernetSecretVault("short")

    sealed = FernetSecretVault(FernetSecretVault.generate_key()).seal({"api_key": "x"})
    other = FernetSecretVault(FernetSecretVault.generate_key())
    with pytest.raises(ConfigurationError, match="cannot be decrypted"), other.reveal(sealed):
        pass
