"""Encrypt and decrypt selected fields of a record.

Records are plain mappings (ORM rows already converted to dicts, request
payloads).  Which fields are protected is decided by the caller on every
call.  Decryption is field-local: each field produces a FieldOutcome and a
failure leaves only that field opaque, so one corrupted value or one value
written under an unknown key never blocks reading the rest of the record.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from hmsvault.logging import get_logger
from hmsvault.security.encryption import FieldEncryptor
from hmsvault.security.errors import DataProtectionError, FieldDecryptionError

log = get_logger("hmsvault.security.fields")


@dataclass(frozen=True)
class FieldOutcome:
    """Result of decrypting one field."""

    field: str
    ok: bool
    value: Any = None
    error: FieldDecryptionError | None = None


class FieldCodec:
    """Applies a FieldEncryptor to named fields of a record."""

    def __init__(self, encryptor: FieldEncryptor) -> None:
        self._encryptor = encryptor

    def encrypt_fields(self, record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a shallow copy of ``record`` with the named fields encrypted.

        Only non-empty string values are encrypted; absent, empty and
        non-string values are copied through untouched.
        """
        result = dict(record)
        for name in fields:
            value = result.get(name)
            if isinstance(value, str) and value:
                result[name] = self._encryptor.encrypt_value(value)
        return result

    def decrypt_fields(self, record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a shallow copy of ``record`` with the named fields decrypted.

        Never raises for a bad field value: a field that fails to decrypt
        keeps its stored value and a warning is logged.
        """
        result, _ = self.decrypt_fields_with_report(record, fields)
        return result

    def decrypt_fields_with_report(
        self, record: Mapping[str, Any], fields: Iterable[str]
    ) -> tuple[dict[str, Any], list[FieldOutcome]]:
        """Like ``decrypt_fields`` but also return one outcome per attempted field."""
        outcomes = [
            self._decrypt_one(name, record[name])
            for name in dict.fromkeys(fields)
            if isinstance(record.get(name), str) and record[name]
        ]

        result = dict(record)
        for outcome in outcomes:
            if outcome.ok:
                result[outcome.field] = outcome.value
        return result, outcomes

    def _decrypt_one(self, name: str, value: str) -> FieldOutcome:
        try:
            plaintext = self._encryptor.decrypt_value(value)
        except DataProtectionError as exc:
            error = FieldDecryptionError(name, exc)
            log.warning(
                "field_decryption_failed",
                field=name,
                reason=type(exc).__name__,
                looks_encrypted=self._encryptor.is_encrypted(value),
            )
            return FieldOutcome(field=name, ok=False, error=error)
        return FieldOutcome(field=name, ok=True, value=plaintext)
