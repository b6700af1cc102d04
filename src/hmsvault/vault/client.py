"""Client for remote envelope encryption and secret storage.

The key used by ``encrypt_data``/``decrypt_data`` never leaves the external
service; this process only ever sees the service's opaque ciphertext handle.
Remote failures always surface as RemoteServiceError.  There is no fallback
to local encryption, since callers need to know which backend protected
their data.
"""

from __future__ import annotations

import base64
import binascii
import re
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any

from hmsvault.constants import DEFAULT_TRANSIT_KEY, DEFAULT_TRANSIT_MOUNT
from hmsvault.logging import get_logger
from hmsvault.security.errors import RemoteServiceError
from hmsvault.vault.backend import SecretBackend, VaultHTTPBackend

if TYPE_CHECKING:
    from hmsvault.config import Settings

log = get_logger("hmsvault.vault.client")

_KEY_NAME_RE = re.compile(r"[A-Za-z0-9_.-]{1,128}")
_PATH_SEGMENT_RE = re.compile(r"[A-Za-z0-9_.-]+")


class VaultState(Enum):
    """Lifecycle of the connection to the secret service."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def _check_key_name(key_name: str) -> str:
    if not _KEY_NAME_RE.fullmatch(key_name or ""):
        raise ValueError(f"Invalid key name: {key_name!r}")
    return key_name


def _check_path(path: str) -> str:
    segments = (path or "").strip("/").split("/")
    if any(
        not _PATH_SEGMENT_RE.fullmatch(s) or s in {".", ".."} for s in segments
    ):
        raise ValueError(f"Invalid secret path: {path!r}")
    return "/".join(segments)


class RemoteSecretClient:
    """Envelope encryption, key rotation and secret storage via the secret service.

    The client owns one backend connection for the lifetime of the process:
    acquire it with ``initialize()`` (or ``async with``) at startup and pass
    the client to whatever needs it; release it with ``close()`` at shutdown.
    """

    def __init__(
        self,
        backend: SecretBackend,
        *,
        default_key: str = DEFAULT_TRANSIT_KEY,
        transit_mount: str = DEFAULT_TRANSIT_MOUNT,
    ) -> None:
        self._backend = backend
        self._default_key = _check_key_name(default_key)
        self._transit_mount = transit_mount
        self._state = VaultState.UNINITIALIZED

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoteSecretClient:
        """Build a client backed by the Vault HTTP API."""
        backend = VaultHTTPBackend(
            settings.vault_addr,
            settings.vault_token.get_secret_value() if settings.vault_token else None,
            transit_mount=settings.vault_transit_mount,
            kv_mount=settings.vault_kv_mount,
            timeout=settings.vault_timeout,
        )
        return cls(
            backend,
            default_key=settings.vault_default_key,
            transit_mount=settings.vault_transit_mount,
        )

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is VaultState.READY

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Probe the service and make sure the transit engine is mounted.

        An already-mounted engine counts as success.  Any other failure moves
        the client to FAILED and is re-raised; nothing is retried here.
        """
        self._state = VaultState.INITIALIZING
        try:
            health = await self._backend.health()
            log.info(
                "vault_connection_established",
                version=health.get("version"),
                sealed=health.get("sealed"),
            )
            created = await self._backend.mount(
                self._transit_mount,
                {"type": "transit", "description": "HMS encryption engine"},
            )
        except RemoteServiceError as exc:
            self._state = VaultState.FAILED
            log.error("vault_initialization_failed", error=str(exc), status=exc.status_code)
            raise
        except BaseException as exc:
            # Includes cancellation, so the client never stays INITIALIZING
            self._state = VaultState.FAILED
            log.error(
                "vault_initialization_failed", error=str(exc), error_type=type(exc).__name__
            )
            raise

        if created:
            log.info("transit_engine_mounted", mount=self._transit_mount)
        else:
            log.info("transit_engine_already_mounted", mount=self._transit_mount)
        self._state = VaultState.READY
        log.info("vault_initialized")

    async def close(self) -> None:
        """Release the backend connection."""
        await self._backend.close()
        self._state = VaultState.UNINITIALIZED

    async def __aenter__(self) -> RemoteSecretClient:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _require_ready(self) -> None:
        if self._state is not VaultState.READY:
            raise RemoteServiceError(
                f"Secret service client is {self._state.value}; call initialize() first"
            )

    # ------------------------------------------------------------------
    # Envelope encryption
    # ------------------------------------------------------------------

    async def encrypt_data(self, plaintext: str | bytes, key_name: str | None = None) -> str:
        """Encrypt under a remote key and return the service's ciphertext handle."""
        self._require_ready()
        key = _check_key_name(key_name or self._default_key)
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        return await self._backend.encrypt(key, base64.b64encode(plaintext).decode("ascii"))

    async def decrypt_data(self, ciphertext: str, key_name: str | None = None) -> str:
        """Decrypt a ciphertext handle produced by ``encrypt_data``."""
        raw = await self.decrypt_bytes(ciphertext, key_name)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RemoteServiceError("Decrypted payload is not UTF-8 text") from exc

    async def decrypt_bytes(self, ciphertext: str, key_name: str | None = None) -> bytes:
        """Decrypt a ciphertext handle, returning raw bytes."""
        self._require_ready()
        key = _check_key_name(key_name or self._default_key)
        plaintext_b64 = await self._backend.decrypt(key, ciphertext)
        try:
            return base64.b64decode(plaintext_b64, validate=True)
        except binascii.Error as exc:
            raise RemoteServiceError("Secret service returned invalid base64 plaintext") from exc

    async def rotate_key(self, key_name: str | None = None) -> None:
        """Ask the service for a new version of a transit key.

        Ciphertext produced under earlier versions stays decryptable; the
        service keeps the old versions.
        """
        self._require_ready()
        key = _check_key_name(key_name or self._default_key)
        await self._backend.rotate(key)
        log.info("transit_key_rotated", key=key)

    async def create_key(self, key_name: str | None = None) -> None:
        """Create a transit key ahead of first use."""
        self._require_ready()
        key = _check_key_name(key_name or self._default_key)
        await self._backend.create_key(key)
        log.info("transit_key_created", key=key)

    # ------------------------------------------------------------------
    # Versioned secrets
    # ------------------------------------------------------------------

    async def store_secret(self, path: str, data: dict[str, Any]) -> None:
        """Write a new version of the secret at ``path``."""
        self._require_ready()
        await self._backend.write_secret(_check_path(path), data)
        log.info("secret_stored", path=path)

    async def get_secret(self, path: str) -> dict[str, Any]:
        """Read the latest version of the secret at ``path``."""
        self._require_ready()
        try:
            return await self._backend.read_secret(_check_path(path))
        except RemoteServiceError as exc:
            log.error("secret_fetch_failed", path=path, error=str(exc))
            raise
