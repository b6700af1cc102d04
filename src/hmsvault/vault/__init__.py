"""Remote secret management for HMS Vault.

Delegates envelope encryption, key rotation and versioned secret storage to
an external secret service.
"""

from hmsvault.vault.backend import SecretBackend, VaultHTTPBackend
from hmsvault.vault.client import RemoteSecretClient, VaultState

__all__ = ["RemoteSecretClient", "SecretBackend", "VaultHTTPBackend", "VaultState"]
