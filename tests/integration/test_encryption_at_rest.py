"""Integration tests for encryption at rest.

Uses real cryptographic operations (no mocking of encryption) to verify that
KeyManager + FieldEncryptor + FieldCodec produce correct round-trip
behaviour on patient records, detect tampering, survive key rotation, and
support Unicode content.
"""

import re
from pathlib import Path

import pytest

from hmsvault.config import Settings
from hmsvault.security import (
    AuthenticationError,
    FieldCodec,
    FieldEncryptor,
    KeyManager,
    MalformedEnvelopeError,
)
from hmsvault.security.encryption import KEY_SIZE, NONCE_SIZE, TAG_SIZE

PROTECTED_FIELDS = ["ssn", "diagnosis", "notes", "phone"]

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def key_manager(tmp_path: Path) -> KeyManager:
    """Create a real KeyManager with a test passphrase and temp salt file."""
    return KeyManager(
        passphrase="integration-test-passphrase-long-enough",
        salt_path=tmp_path / "test_salt.bin",
    )


@pytest.fixture()
def encryptor(key_manager: KeyManager) -> FieldEncryptor:
    """Create a real FieldEncryptor using the derived key."""
    return FieldEncryptor(key=key_manager.key)


@pytest.fixture()
def codec(encryptor: FieldEncryptor) -> FieldCodec:
    return FieldCodec(encryptor)


@pytest.fixture()
def patient() -> dict:
    return {
        "id": 1042,
        "tenant_id": "st-marys",
        "name": "John",
        "ssn": "123-45-6789",
        "diagnosis": "Type 2 diabetes mellitus",
        "notes": "",
        "phone": None,
        "age": 57,
    }


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_key_manager_derives_32_byte_key(key_manager: KeyManager) -> None:
    """KeyManager should produce a 256-bit (32-byte) key."""
    assert len(key_manager.key) == KEY_SIZE


@pytest.mark.integration
def test_key_manager_consistent_across_instances(tmp_path: Path) -> None:
    """Two KeyManagers with the same passphrase and salt file yield the same key."""
    salt_file = tmp_path / "shared_salt.bin"
    passphrase = "consistent-key-derivation-test!!"

    km1 = KeyManager(passphrase=passphrase, salt_path=salt_file)
    km2 = KeyManager(passphrase=passphrase, salt_path=salt_file)

    assert km1.key == km2.key


@pytest.mark.integration
def test_settings_to_encryptor(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Environment configuration resolves to a working encryptor."""
    monkeypatch.setenv("ENCRYPTION_PASSPHRASE", "from-the-environment")
    monkeypatch.setenv("ENCRYPTION_SALT_PATH", str(tmp_path / "salt.bin"))

    km = KeyManager.from_settings(Settings(_env_file=None))
    enc = FieldEncryptor(key_ring=km.key_ring())

    assert (tmp_path / "salt.bin").exists()
    assert enc.decrypt_value(enc.encrypt_value("ok")) == "ok"


# ---------------------------------------------------------------------------
# Patient record round-trip
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_patient_record_round_trip(codec: FieldCodec, patient: dict) -> None:
    """Protected fields are opaque at rest and restored on read."""
    stored = codec.encrypt_fields(patient, PROTECTED_FIELDS)

    assert stored["ssn"] != patient["ssn"]
    assert stored["diagnosis"] != patient["diagnosis"]
    # empty and non-string values pass through unchanged
    assert stored["notes"] == ""
    assert stored["phone"] is None
    assert stored["name"] == "John"
    assert stored["age"] == 57

    assert codec.decrypt_fields(stored, PROTECTED_FIELDS) == patient


@pytest.mark.integration
def test_stored_values_use_envelope_format(codec: FieldCodec, patient: dict) -> None:
    stored = codec.encrypt_fields(patient, PROTECTED_FIELDS)
    nonce, tag, ciphertext = stored["ssn"].split(":")
    assert len(bytes.fromhex(nonce)) == NONCE_SIZE
    assert len(bytes.fromhex(tag)) == TAG_SIZE
    assert len(bytes.fromhex(ciphertext)) == len(patient["ssn"].encode())


@pytest.mark.integration
def test_end_to_end_patient_note(encryptor: FieldEncryptor) -> None:
    envelope = encryptor.encrypt_value("patient-note")
    assert re.fullmatch(r"[0-9a-f]+:[0-9a-f]+:[0-9a-f]+", envelope)
    assert encryptor.decrypt_value(envelope) == "patient-note"


# ---------------------------------------------------------------------------
# Unicode support
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_unicode_content_round_trip(codec: FieldCodec) -> None:
    """Encryption should correctly handle Unicode content."""
    record = {
        "notes": (
            "Emoji test: \U0001f680\U0001f30d — CJK: 你好"
            " — Cyrillic: Привет"
        ),
    }
    stored = codec.encrypt_fields(record, ["notes"])
    assert stored["notes"] != record["notes"]
    assert codec.decrypt_fields(stored, ["notes"]) == record


# ---------------------------------------------------------------------------
# Tampering
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_single_value_api_rejects_tampering(encryptor: FieldEncryptor) -> None:
    """decrypt_value fails loudly on a flipped ciphertext byte."""
    nonce, tag, ciphertext = encryptor.encrypt_value("important").split(":")
    raw = bytearray(bytes.fromhex(ciphertext))
    raw[1] ^= 0xFF
    with pytest.raises(AuthenticationError, match="Decryption failed"):
        encryptor.decrypt_value(f"{nonce}:{tag}:{raw.hex()}")


@pytest.mark.integration
def test_single_value_api_rejects_garbage(encryptor: FieldEncryptor) -> None:
    with pytest.raises(MalformedEnvelopeError):
        encryptor.decrypt_value("this is not real ciphertext at all!!")


@pytest.mark.integration
def test_record_read_survives_one_tampered_field(codec: FieldCodec, patient: dict) -> None:
    """A tampered field stays opaque while the rest of the record decrypts."""
    stored = codec.encrypt_fields(patient, PROTECTED_FIELDS)
    nonce, tag, ciphertext = stored["ssn"].split(":")
    tampered = f"{nonce}:{'00' * TAG_SIZE}:{ciphertext}"
    stored["ssn"] = tampered

    restored = codec.decrypt_fields(stored, PROTECTED_FIELDS)

    assert restored["ssn"] == tampered
    assert restored["diagnosis"] == patient["diagnosis"]
    assert restored["name"] == "John"


@pytest.mark.integration
def test_legacy_plaintext_passes_through(codec: FieldCodec) -> None:
    """Values written before encryption was enabled are returned unchanged."""
    legacy = {"notes": "plain old text from before encryption was enabled"}
    assert codec.decrypt_fields(legacy, ["notes"]) == legacy


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_different_keys_cannot_decrypt(tmp_path: Path) -> None:
    """Data encrypted with one key should not decrypt with a different key."""
    km1 = KeyManager(passphrase="first-passphrase-long-enough!!", salt_path=tmp_path / "1")
    km2 = KeyManager(passphrase="second-passphrase-different!!", salt_path=tmp_path / "2")

    envelope = FieldEncryptor(key=km1.key).encrypt_value("secret")

    with pytest.raises(AuthenticationError):
        FieldEncryptor(key=km2.key).decrypt_value(envelope)


@pytest.mark.integration
def test_rotation_with_retired_key(codec: FieldCodec, key_manager: KeyManager, patient: dict):
    """After rotating, records written under the old key still read, then migrate."""
    stored = codec.encrypt_fields(patient, PROTECTED_FIELDS)

    new_key = "5a" * KEY_SIZE
    rotated = KeyManager(
        key_hex=new_key,
        key_version="2025-01",
        retired_keys={"2024-01": key_manager.key.hex()},
    )
    new_encryptor = FieldEncryptor(key_ring=rotated.key_ring())
    new_codec = FieldCodec(new_encryptor)

    assert new_codec.decrypt_fields(stored, PROTECTED_FIELDS) == patient

    migrated = {
        name: new_encryptor.reencrypt(value) if new_encryptor.is_encrypted(value) else value
        for name, value in stored.items()
    }
    assert migrated["ssn"].startswith("2025-01$")

    current_only = FieldCodec(FieldEncryptor(key=bytes.fromhex(new_key)))
    _, outcomes = current_only.decrypt_fields_with_report(migrated, PROTECTED_FIELDS)
    assert all(not o.ok for o in outcomes)  # tagged envelopes need a versioned ring
    versioned_only = FieldCodec(
        FieldEncryptor(key_ring=KeyManager(key_hex=new_key, key_version="2025-01").key_ring())
    )
    assert versioned_only.decrypt_fields(migrated, PROTECTED_FIELDS) == patient
