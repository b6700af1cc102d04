"""Random tokens and one-way fingerprints.

``one_way_hash`` is a deterministic scrypt digest with fixed, modest cost
parameters, meant for deduplication fingerprints and lookup keys.  It is not
a password hash: there is no per-value salt and the cost is far too low for
credential storage.
"""

from __future__ import annotations

import secrets

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from hmsvault.constants import (
    DEFAULT_TOKEN_BYTES,
    HASH_LENGTH,
    HASH_N,
    HASH_P,
    HASH_R,
    LEGACY_KDF_SALT,
)


def generate_token(length: int = DEFAULT_TOKEN_BYTES) -> str:
    """Return ``length`` bytes from the OS CSPRNG, hex encoded."""
    if length <= 0:
        raise ValueError("length must be > 0")
    return secrets.token_hex(length)


def one_way_hash(data: str | bytes, *, salt: bytes = LEGACY_KDF_SALT) -> str:
    """Return a hex scrypt fingerprint of ``data``.

    The same input and salt always produce the same digest.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    kdf = Scrypt(salt=salt, length=HASH_LENGTH, n=HASH_N, r=HASH_R, p=HASH_P)
    return kdf.derive(data).hex()
