"""
Serialization of state values.

Values persisted by a state store are JSON-shaped. A few types need an
envelope to survive the round trip:

- ``Secret`` -> ``{"@secret": "v1:<base64>"}``, encrypted with the scope password
- ``datetime`` -> ``{"@date": "<iso-8601>"}``
- ``ResourceOutput`` -> its output fields (identity is re-attached on read)

Secrets are encrypted individually so the rest of a state record stays
readable on disk.
"""

from __future__ import annotations

import base64
from datetime import datetime
from typing import Any

import nacl.encoding
import nacl.exceptions
import nacl.hash
import nacl.secret

from crucible.core.errors import SecretError, StateStoreError

ENCRYPTION_VERSION_V1 = "v1:"
SECRET_KEY = "@secret"
DATE_KEY = "@date"


class Secret:
    """A sensitive string that is encrypted whenever it is persisted."""

    __slots__ = ("unencrypted", "name")

    def __init__(self, unencrypted: str, name: str | None = None) -> None:
        self.unencrypted = unencrypted
        self.name = name

    def __repr__(self) -> str:
        label = f"{self.name}=" if self.name else ""
        return f"Secret({label}******)"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Secret) and other.unencrypted == self.unencrypted

    def __hash__(self) -> int:
        return hash(("secret", self.unencrypted))


def secret(value: str | None, name: str | None = None) -> Secret:
    """Wrap ``value`` so it is encrypted in state."""
    if value is None:
        raise SecretError("Secret value is undefined", {"name": name} if name else None)
    return Secret(value, name)


def _box(password: str) -> nacl.secret.SecretBox:
    key = nacl.hash.blake2b(
        password.encode("utf-8"),
        digest_size=nacl.secret.SecretBox.KEY_SIZE,
        person=b"crucible-secret",
        encoder=nacl.encoding.RawEncoder,
    )
    return nacl.secret.SecretBox(key)


def encrypt(value: str, password: str) -> str:
    """Encrypt ``value``; the random nonce is stored alongside the ciphertext."""
    encrypted = _box(password).encrypt(value.encode("utf-8"))
    return ENCRYPTION_VERSION_V1 + base64.b64encode(bytes(encrypted)).decode("ascii")


def decrypt(value: str, password: str) -> str:
    if not value.startswith(ENCRYPTION_VERSION_V1):
        raise SecretError("Unsupported secret encoding", {"prefix": value[:3]})
    payload = base64.b64decode(value[len(ENCRYPTION_VERSION_V1) :])
    try:
        return _box(password).decrypt(payload).decode("utf-8")
    except nacl.exceptions.CryptoError as exc:
        raise SecretError("Failed to decrypt secret: wrong password or corrupted value") from exc


def serialize(value: Any, *, password: str | None = None) -> Any:
    """Convert ``value`` into a JSON-compatible structure."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Secret):
        if not password:
            raise SecretError(
                "Cannot persist a secret without a password; set CRUCIBLE_PASSWORD "
                "or pass password= to crucible.app()"
            )
        return {SECRET_KEY: encrypt(value.unencrypted, password)}
    if isinstance(value, datetime):
        return {DATE_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {str(key): serialize(item, password=password) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item, password=password) for item in value]
    raise StateStoreError(
        f"Cannot serialize value of type {type(value).__name__}",
        {"type": type(value).__name__},
    )


def deserialize(value: Any, *, password: str | None = None) -> Any:
    """Inverse of :func:`serialize`."""
    if isinstance(value, list):
        return [deserialize(item, password=password) for item in value]
    if not isinstance(value, dict):
        return value
    if len(value) == 1 and SECRET_KEY in value:
        if not password:
            raise SecretError("Cannot read a secret from state without a password")
        return Secret(decrypt(value[SECRET_KEY], password))
    if len(value) == 1 and DATE_KEY in value:
        return datetime.fromisoformat(value[DATE_KEY])
    return {key: deserialize(item, password=password) for key, item in value.items()}
