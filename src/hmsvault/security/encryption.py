"""AES-256-GCM encryption for sensitive values stored at rest.

Every call draws a fresh random nonce, and the GCM authentication tag is kept
next to the ciphertext so that tampering or a wrong key is always detected on
decryption.  Text values are packaged as an envelope string::

    <nonce-hex>:<tag-hex>:<ciphertext-hex>

When the active key carries a version label the first segment is prefixed
with ``<version>$`` so decryption can pick the right key after a rotation.
Binary payloads (attachments, scans) are returned as an EncryptedEnvelope and
left to the caller to persist.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from hmsvault.constants import (
    ENVELOPE_SEPARATOR,
    KEY_SIZE,
    KEY_VERSION_SEPARATOR,
    NONCE_SIZE,
    TAG_SIZE,
)
from hmsvault.security.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedEnvelopeError,
)
from hmsvault.security.keys import KeyRing

__all__ = [
    "KEY_SIZE",
    "NONCE_SIZE",
    "TAG_SIZE",
    "EncryptedEnvelope",
    "FieldEncryptor",
]

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def _unhex(segment: str, name: str) -> bytes:
    if len(segment) % 2 or not _HEX_RE.fullmatch(segment):
        raise MalformedEnvelopeError(f"Envelope {name} segment is not valid hex")
    return bytes.fromhex(segment)


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Nonce, authentication tag and ciphertext of one encryption call."""

    nonce: bytes
    tag: bytes
    ciphertext: bytes
    key_version: str | None = None

    def to_string(self) -> str:
        """Serialize as ``nonce:tag:ciphertext`` hex segments."""
        head = self.nonce.hex()
        if self.key_version is not None:
            head = f"{self.key_version}{KEY_VERSION_SEPARATOR}{head}"
        return ENVELOPE_SEPARATOR.join((head, self.tag.hex(), self.ciphertext.hex()))

    @classmethod
    def from_string(cls, value: str) -> EncryptedEnvelope:
        """Parse an envelope string.

        Raises:
            MalformedEnvelopeError: If the value does not have exactly three
                hex segments with the expected nonce and tag lengths.
        """
        if not isinstance(value, str):
            raise MalformedEnvelopeError(f"Envelope must be a string, got {type(value).__name__}")

        parts = value.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            raise MalformedEnvelopeError(
                f"Invalid encrypted data format: expected 3 segments, got {len(parts)}"
            )
        head, tag_hex, ciphertext_hex = parts

        key_version = None
        if KEY_VERSION_SEPARATOR in head:
            key_version, head = head.split(KEY_VERSION_SEPARATOR, 1)
            if not key_version:
                raise MalformedEnvelopeError("Envelope has an empty key version tag")

        nonce = _unhex(head, "nonce")
        tag = _unhex(tag_hex, "tag")
        ciphertext = _unhex(ciphertext_hex, "ciphertext")
        if len(nonce) != NONCE_SIZE:
            raise MalformedEnvelopeError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(tag) != TAG_SIZE:
            raise MalformedEnvelopeError(f"Tag must be {TAG_SIZE} bytes, got {len(tag)}")
        return cls(nonce=nonce, tag=tag, ciphertext=ciphertext, key_version=key_version)

    def to_bytes(self) -> bytes:
        """Concatenate as ``nonce || tag || ciphertext`` for single-blob storage.

        The blob form carries no key version; ``FieldEncryptor.open`` reads
        such envelopes by trying the active key and then each retired key.
        """
        return self.nonce + self.tag + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> EncryptedEnvelope:
        """Split a blob produced by ``to_bytes``. The result is untagged."""
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise MalformedEnvelopeError(
                f"Encrypted blob too short: {len(data)} bytes"
            )
        return cls(
            nonce=data[:NONCE_SIZE],
            tag=data[NONCE_SIZE : NONCE_SIZE + TAG_SIZE],
            ciphertext=data[NONCE_SIZE + TAG_SIZE :],
        )


class FieldEncryptor:
    """Encrypts and decrypts individual values with AES-256-GCM.

    Instances hold only immutable key material and may be shared freely
    between threads and request handlers.
    """

    def __init__(self, key: bytes | None = None, *, key_ring: KeyRing | None = None) -> None:
        if key_ring is None:
            if key is None:
                raise ConfigurationError("FieldEncryptor requires a key or a key ring")
            if len(key) != KEY_SIZE:
                raise ConfigurationError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
            key_ring = KeyRing(active=key)
        self._ring = key_ring
        self._active = AESGCM(key_ring.active)
        self._retired = {version: AESGCM(k) for version, k in key_ring.retired.items()}

    @property
    def key_version(self) -> str | None:
        """Version label written into new envelopes, if any."""
        return self._ring.active_version

    # ------------------------------------------------------------------
    # Binary payloads
    # ------------------------------------------------------------------

    def encrypt_bytes(self, data: bytes) -> EncryptedEnvelope:
        """Encrypt a binary payload under the active key."""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._active.encrypt(nonce, bytes(data), None)
        return EncryptedEnvelope(
            nonce=nonce,
            tag=sealed[-TAG_SIZE:],
            ciphertext=sealed[:-TAG_SIZE],
            key_version=self._ring.active_version,
        )

    def decrypt_bytes(self, ciphertext: bytes, nonce: bytes, tag: bytes) -> bytes:
        """Decrypt a binary payload from its three parts.

        Raises:
            MalformedEnvelopeError: If nonce or tag have the wrong length.
            AuthenticationError: If the tag does not verify under any known key.
        """
        if len(nonce) != NONCE_SIZE:
            raise MalformedEnvelopeError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(tag) != TAG_SIZE:
            raise MalformedEnvelopeError(f"Tag must be {TAG_SIZE} bytes, got {len(tag)}")
        return self.open(EncryptedEnvelope(nonce=nonce, tag=tag, ciphertext=ciphertext))

    def open(self, envelope: EncryptedEnvelope) -> bytes:
        """Verify and decrypt an envelope.

        A tagged envelope is opened with the key for its version.  An untagged
        one is tried against the active key and then each retired key.
        """
        if envelope.key_version is not None:
            if envelope.key_version == self._ring.active_version:
                ciphers = [self._active]
            elif envelope.key_version in self._retired:
                ciphers = [self._retired[envelope.key_version]]
            else:
                raise AuthenticationError(
                    f"Decryption failed: no key for version {envelope.key_version!r}"
                )
        else:
            ciphers = [self._active, *self._retired.values()]

        sealed = envelope.ciphertext + envelope.tag
        for cipher in ciphers:
            try:
                return cipher.decrypt(envelope.nonce, sealed, None)
            except InvalidTag:
                continue
        raise AuthenticationError("Decryption failed: authentication tag did not verify")

    # ------------------------------------------------------------------
    # Text values
    # ------------------------------------------------------------------

    def encrypt_value(self, plaintext: str) -> str:
        """Encrypt a string and return its envelope string."""
        return self.encrypt_bytes(plaintext.encode("utf-8")).to_string()

    def decrypt_value(self, envelope: str) -> str:
        """Decrypt an envelope string produced by ``encrypt_value``.

        Raises:
            MalformedEnvelopeError: If the envelope does not parse.
            AuthenticationError: If the tag does not verify.
        """
        data = self.open(EncryptedEnvelope.from_string(envelope))
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEnvelopeError("Decrypted payload is not UTF-8 text") from exc

    def reencrypt(self, envelope: str) -> str:
        """Re-encrypt an envelope under the active key.

        Used to migrate values off retired keys after a rotation.
        """
        data = self.open(EncryptedEnvelope.from_string(envelope))
        return self.encrypt_bytes(data).to_string()

    def needs_reencrypt(self, envelope: str) -> bool:
        """Whether an envelope was written under something other than the active version."""
        return EncryptedEnvelope.from_string(envelope).key_version != self._ring.active_version

    @staticmethod
    def is_encrypted(value: object) -> bool:
        """Heuristic: does the value look like an envelope string?"""
        if not isinstance(value, str):
            return False
        try:
            EncryptedEnvelope.from_string(value)
        except MalformedEnvelopeError:
            return False
        return True
