"""Transport to the external secret-management service.

``SecretBackend`` is the capability surface the rest of HMS Vault depends on.
``VaultHTTPBackend`` implements it over the HashiCorp Vault HTTP API
(transit engine for envelope encryption, KV v2 for versioned secrets).
Tests substitute an in-memory backend.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from hmsvault.constants import DEFAULT_KV_MOUNT, DEFAULT_TRANSIT_MOUNT, VAULT_REQUEST_TIMEOUT
from hmsvault.security.errors import RemoteServiceError


class SecretBackend(Protocol):
    """Capabilities offered by the external secret service."""

    async def health(self) -> dict[str, Any]:
        """Probe the service; raise RemoteServiceError if it is not usable."""
        ...

    async def mount(self, mount_point: str, options: dict[str, Any]) -> bool:
        """Mount a capability. Returns False if it was already mounted."""
        ...

    async def encrypt(self, key_name: str, plaintext_b64: str) -> str:
        """Encrypt base64 plaintext under a named key, returning the service's ciphertext."""
        ...

    async def decrypt(self, key_name: str, ciphertext: str) -> str:
        """Decrypt a ciphertext handle, returning base64 plaintext."""
        ...

    async def write_secret(self, path: str, data: dict[str, Any]) -> None: ...

    async def read_secret(self, path: str) -> dict[str, Any]: ...

    async def rotate(self, key_name: str) -> None: ...

    async def create_key(self, key_name: str) -> None: ...

    async def close(self) -> None: ...


def _error_messages(response: httpx.Response) -> list[Any]:
    try:
        body = response.json()
    except ValueError:
        return [response.text[:200]] if response.text else []
    if isinstance(body, dict):
        return list(body.get("errors") or [])
    return []


class VaultHTTPBackend:
    """SecretBackend speaking the Vault HTTP API.

    One ``httpx.AsyncClient`` (and its connection pool) is opened lazily and
    reused until ``close()``.  Every request is bounded by ``timeout``.
    """

    def __init__(
        self,
        addr: str,
        token: str | None = None,
        *,
        transit_mount: str = DEFAULT_TRANSIT_MOUNT,
        kv_mount: str = DEFAULT_KV_MOUNT,
        timeout: float = VAULT_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not addr:
            raise ValueError("addr is required")
        self._addr = addr.rstrip("/")
        self._token = token
        self._transit = transit_mount.strip("/")
        self._kv = kv_mount.strip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        """Return authentication headers."""
        return {"X-Vault-Token": self._token} if self._token else {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._addr,
                headers=self._headers(),
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body ({} for no content)."""
        try:
            response = await self._http().request(
                method, f"/v1/{path}", json=json_data, params=params
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise RemoteServiceError(
                f"Secret service error {status} on {method} {path}",
                status_code=status,
                errors=_error_messages(exc.response),
            ) from exc
        except httpx.RequestError as exc:
            raise RemoteServiceError(f"Secret service request failed: {exc}") from exc

        if response.status_code == 204 or not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                f"Secret service returned invalid JSON on {method} {path}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise RemoteServiceError(f"Unexpected response shape on {method} {path}")
        return body

    @staticmethod
    def _field(body: dict[str, Any], *keys: str) -> Any:
        value: Any = body
        for key in keys:
            if not isinstance(value, dict) or key not in value:
                raise RemoteServiceError(f"Secret service response missing {'.'.join(keys)}")
            value = value[key]
        return value

    async def health(self) -> dict[str, Any]:
        return await self._request(
            "GET", "sys/health", params={"standbyok": "true", "perfstandbyok": "true"}
        )

    async def mount(self, mount_point: str, options: dict[str, Any]) -> bool:
        try:
            await self._request("POST", f"sys/mounts/{mount_point.strip('/')}", json_data=options)
        except RemoteServiceError as exc:
            if exc.status_code == 400 and any("already in use" in str(e) for e in exc.errors):
                return False
            raise
        return True

    async def encrypt(self, key_name: str, plaintext_b64: str) -> str:
        body = await self._request(
            "POST", f"{self._transit}/encrypt/{key_name}", json_data={"plaintext": plaintext_b64}
        )
        return str(self._field(body, "data", "ciphertext"))

    async def decrypt(self, key_name: str, ciphertext: str) -> str:
        body = await self._request(
            "POST", f"{self._transit}/decrypt/{key_name}", json_data={"ciphertext": ciphertext}
        )
        return str(self._field(body, "data", "plaintext"))

    async def write_secret(self, path: str, data: dict[str, Any]) -> None:
        await self._request("POST", f"{self._kv}/data/{path}", json_data={"data": data})

    async def read_secret(self, path: str) -> dict[str, Any]:
        body = await self._request("GET", f"{self._kv}/data/{path}")
        data = self._field(body, "data", "data")
        if not isinstance(data, dict):
            raise RemoteServiceError(f"Secret at {path} is not a key-value document")
        return data

    async def rotate(self, key_name: str) -> None:
        await self._request("POST", f"{self._transit}/keys/{key_name}/rotate")

    async def create_key(self, key_name: str) -> None:
        await self._request("POST", f"{self._transit}/keys/{key_name}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
