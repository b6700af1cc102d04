"""Key material resolution for local field encryption.

The active key is resolved once, either from an explicitly provisioned hex
key or by stretching a passphrase with scrypt.  Passphrase derivation uses a
random per-deployment salt stored next to the application data, so two
deployments sharing a passphrase still end up with different keys.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from hmsvault.constants import (
    DEFAULT_PASSPHRASE,
    KDF_N,
    KDF_P,
    KDF_R,
    KDF_SALT_SIZE,
    KEY_SIZE,
    LEGACY_KDF_SALT,
)
from hmsvault.logging import get_logger
from hmsvault.security.errors import ConfigurationError

if TYPE_CHECKING:
    from hmsvault.config import Settings

log = get_logger("hmsvault.security.keys")

_VERSION_RE = re.compile(r"[A-Za-z0-9_.-]{1,32}")


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a KEY_SIZE key from a passphrase with scrypt."""
    kdf = Scrypt(salt=salt, length=KEY_SIZE, n=KDF_N, r=KDF_R, p=KDF_P)
    return kdf.derive(passphrase.encode("utf-8"))


def decode_hex_key(value: str, *, name: str = "encryption key") -> bytes:
    """Decode a hex key, enforcing the cipher's exact key length."""
    try:
        key = bytes.fromhex(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} is not valid hex") from exc
    if len(key) != KEY_SIZE:
        raise ConfigurationError(f"{name} must be {KEY_SIZE} bytes, got {len(key)}")
    return key


def load_or_create_salt(salt_path: Path) -> bytes:
    """Return the deployment salt, generating and persisting it on first use."""
    salt_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(salt_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        salt = salt_path.read_bytes()
        if len(salt) < KDF_SALT_SIZE:
            raise ConfigurationError(
                f"Salt file {salt_path} is truncated ({len(salt)} bytes)"
            ) from None
        return salt

    salt = os.urandom(KDF_SALT_SIZE)
    with os.fdopen(fd, "wb") as fh:
        fh.write(salt)
    log.info("encryption_salt_created", path=str(salt_path))
    return salt


@dataclass(frozen=True)
class KeyRing:
    """The active key plus retired keys kept for decryption only."""

    active: bytes
    active_version: str | None = None
    retired: Mapping[str, bytes] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if len(self.active) != KEY_SIZE:
            raise ConfigurationError(f"Active key must be {KEY_SIZE} bytes")
        for version, key in self.retired.items():
            if len(key) != KEY_SIZE:
                raise ConfigurationError(f"Retired key {version!r} must be {KEY_SIZE} bytes")
        labels = list(self.retired)
        if self.active_version is not None:
            labels.append(self.active_version)
        for label in labels:
            if not _VERSION_RE.fullmatch(label):
                raise ConfigurationError(f"Invalid key version label {label!r}")
        if self.active_version is not None and self.active_version in self.retired:
            raise ConfigurationError(
                f"Key version {self.active_version!r} is both active and retired"
            )


class KeyManager:
    """Resolves the symmetric key used by FieldEncryptor.

    Resolution order:

    1. ``key_hex`` - an explicitly provisioned key, used as-is.
    2. ``passphrase`` - stretched with scrypt using the salt in ``salt_path``.
    3. The built-in development passphrase, only when
       ``allow_default_passphrase`` is set.

    With ``salt_path=None`` the legacy fixed salt is used so data written by
    older deployments stays readable.  Resolution is deterministic: the same
    inputs always give the same key.
    """

    def __init__(
        self,
        *,
        key_hex: str | None = None,
        passphrase: str | None = None,
        salt_path: Path | str | None = None,
        allow_default_passphrase: bool = False,
        key_version: str | None = None,
        retired_keys: Mapping[str, str] | None = None,
    ) -> None:
        self._key_hex = key_hex or None
        self._passphrase = passphrase or None
        self._salt_path = Path(salt_path) if salt_path is not None else None
        self._allow_default = allow_default_passphrase
        self._key_version = key_version
        self._retired_hex = dict(retired_keys or {})
        self._key = self.resolve_key()

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyManager:
        """Build a KeyManager from application settings."""
        return cls(
            key_hex=(
                settings.encryption_key.get_secret_value() if settings.encryption_key else None
            ),
            passphrase=(
                settings.encryption_passphrase.get_secret_value()
                if settings.encryption_passphrase
                else None
            ),
            salt_path=settings.encryption_salt_path,
            allow_default_passphrase=settings.is_development,
            key_version=settings.encryption_key_version,
            retired_keys={
                version: key.get_secret_value()
                for version, key in settings.encryption_retired_keys.items()
            },
        )

    @property
    def key(self) -> bytes:
        """The resolved active key."""
        return self._key

    @property
    def source(self) -> str:
        """Where the active key came from: ``configured`` or ``derived``."""
        return "configured" if self._key_hex else "derived"

    def resolve_key(self) -> bytes:
        """Resolve the active key from the configured material.

        Raises:
            ConfigurationError: If the configured key is malformed, or no key
                or passphrase is configured and the default passphrase is not
                allowed.
        """
        if self._key_hex:
            return decode_hex_key(self._key_hex)

        passphrase = self._passphrase
        if passphrase is None:
            if not self._allow_default:
                raise ConfigurationError(
                    "No encryption key or passphrase configured "
                    "(set ENCRYPTION_KEY or ENCRYPTION_PASSPHRASE)"
                )
            log.warning("encryption_default_passphrase_in_use")
            passphrase = DEFAULT_PASSPHRASE

        if self._salt_path is None:
            log.warning("encryption_legacy_salt_in_use")
            salt = LEGACY_KDF_SALT
        else:
            salt = load_or_create_salt(self._salt_path)

        return derive_key(passphrase, salt)

    def key_ring(self) -> KeyRing:
        """Build the key ring for FieldEncryptor from the active and retired keys."""
        retired = {
            version: decode_hex_key(value, name=f"retired key {version!r}")
            for version, value in self._retired_hex.items()
        }
        return KeyRing(active=self._key, active_version=self._key_version, retired=retired)
