"""Shared test fixtures for HMS Vault."""

from __future__ import annotations

import os
from typing import Any

import pytest

from hmsvault.config import get_settings
from hmsvault.security.errors import RemoteServiceError

_SETTINGS_ENV_PREFIXES = ("ENCRYPTION_", "VAULT_")
_SETTINGS_ENV_NAMES = {"JWT_SECRET", "ENVIRONMENT", "LOG_LEVEL"}


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Run every test with a clean environment and an empty working directory.

    Keeps a developer's real ENCRYPTION_* / VAULT_* variables or .env file
    from leaking into tests, and makes relative salt paths land in tmp_path.
    """
    for name in list(os.environ):
        upper = name.upper()
        if upper.startswith(_SETTINGS_ENV_PREFIXES) or upper in _SETTINGS_ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_key() -> bytes:
    """A fixed 256-bit key."""
    return bytes(range(32))


class FakeSecretService:
    """In-memory stand-in for the external secret service.

    Ciphertext handles embed the key version so rotation can be observed,
    and every version ever issued stays decryptable.
    """

    def __init__(self) -> None:
        self.mounts: set[str] = set()
        self.key_versions: dict[str, int] = {}
        self.secrets: dict[str, list[dict[str, Any]]] = {}
        self.healthy = True
        self.closed = False

    async def health(self) -> dict[str, Any]:
        if not self.healthy:
            raise RemoteServiceError("Secret service error 503", status_code=503)
        return {"initialized": True, "sealed": False, "version": "1.15.0"}

    async def mount(self, mount_point: str, options: dict[str, Any]) -> bool:
        if mount_point in self.mounts:
            return False
        self.mounts.add(mount_point)
        return True

    async def encrypt(self, key_name: str, plaintext_b64: str) -> str:
        version = self.key_versions.setdefault(key_name, 1)
        return f"vault:v{version}:{key_name}:{plaintext_b64[::-1]}"

    async def decrypt(self, key_name: str, ciphertext: str) -> str:
        _, _, owner, payload = ciphertext.split(":", 3)
        if owner != key_name:
            raise RemoteServiceError("cipher: message authentication failed", status_code=400)
        return payload[::-1]

    async def write_secret(self, path: str, data: dict[str, Any]) -> None:
        self.secrets.setdefault(path, []).append(dict(data))

    async def read_secret(self, path: str) -> dict[str, Any]:
        if path not in self.secrets:
            raise RemoteServiceError("Secret service error 404", status_code=404)
        return self.secrets[path][-1]

    async def rotate(self, key_name: str) -> None:
        self.key_versions[key_name] = self.key_versions.get(key_name, 1) + 1

    async def create_key(self, key_name: str) -> None:
        self.key_versions.setdefault(key_name, 1)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def service() -> FakeSecretService:
    """An empty in-memory secret service."""
    return FakeSecretService()

