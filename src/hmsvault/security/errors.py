"""Exception taxonomy for the data-protection layer."""

from __future__ import annotations

from typing import Any


class DataProtectionError(Exception):
    """Base class for every error raised by HMS Vault."""


class ConfigurationError(DataProtectionError, ValueError):
    """Raised when no usable key material can be resolved."""


class MalformedEnvelopeError(DataProtectionError, ValueError):
    """Raised when a ciphertext string is not a valid three-segment envelope."""


class AuthenticationError(DataProtectionError):
    """Raised when the authentication tag does not verify.

    Either the envelope was tampered with or it was produced under a key
    this process does not hold.
    """


class FieldDecryptionError(DataProtectionError):
    """A single record field could not be decrypted.

    Only ever produced inside the field codec, which downgrades it to a
    warning and keeps the field's stored value.
    """

    def __init__(self, field: str, cause: Exception) -> None:
        super().__init__(f"Failed to decrypt field {field!r}: {cause}")
        self.field = field
        self.cause = cause


class RemoteServiceError(DataProtectionError):
    """Raised when the external secret service cannot complete a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
