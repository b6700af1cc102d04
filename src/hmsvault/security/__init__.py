"""Security module for HMS Vault.

Provides application-layer encryption for sensitive record fields and files
stored at rest.
"""

from hmsvault.security.encryption import EncryptedEnvelope, FieldEncryptor
from hmsvault.security.errors import (
    AuthenticationError,
    ConfigurationError,
    DataProtectionError,
    FieldDecryptionError,
    MalformedEnvelopeError,
    RemoteServiceError,
)
from hmsvault.security.fields import FieldCodec, FieldOutcome
from hmsvault.security.keys import KeyManager, KeyRing
from hmsvault.security.tokens import generate_token, one_way_hash

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DataProtectionError",
    "EncryptedEnvelope",
    "FieldCodec",
    "FieldDecryptionError",
    "FieldEncryptor",
    "FieldOutcome",
    "KeyManager",
    "KeyRing",
    "MalformedEnvelopeError",
    "RemoteServiceError",
    "generate_token",
    "one_way_hash",
]
