"""Fernet-backed vault for connection secrets at rest."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import TYPE_CHECKING, cast

from cryptography.fernet import Fernet, InvalidToken

from disputesync.config.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class FernetSecretVault:
    """Seals a connection's secret map into one encrypted blob.

    ``reveal`` yields a fresh dict and empties it when the block exits so
    plaintext does not outlive the operation that needed it.
    """

    def __init__(self, key: str | bytes) -> None:
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("Vault key is not a valid Fernet key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def seal(self, secrets: Mapping[str, str]) -> bytes:
        return self._fernet.encrypt(json.dumps(dict(secrets), sort_keys=True).encode("utf-8"))

    @contextmanager
    def reveal(self, sealed: bytes | None) -> Iterator[dict[str, str]]:
        secrets: dict[str, str] = {}
        if sealed:
            try:
                decoded = json.loads(self._fernet.decrypt(sealed))
            except InvalidToken as exc:
                raise ConfigurationError(
                    "Sealed secrets cannot be decrypted with the configured vault key"
                ) from exc
            secrets.update(cast(dict[str, str], decoded))
        try:
            yield secrets
        finally:
            secrets.clear()
