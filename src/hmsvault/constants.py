"""Centralized constants for HMS Vault."""

# AES-256-GCM
KEY_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16

# Envelope wire format: <nonce-hex>:<tag-hex>:<ciphertext-hex>
ENVELOPE_SEPARATOR = ":"
KEY_VERSION_SEPARATOR = "$"

# scrypt parameters for passphrase key derivation
KDF_SALT_SIZE = 16
KDF_N = 2**14
KDF_R = 8
KDF_P = 1

# Legacy values kept for data written before per-deployment salts existed
LEGACY_KDF_SALT = b"salt"
DEFAULT_PASSPHRASE = "default-secret"

# scrypt parameters for one_way_hash (fingerprints, not passwords)
HASH_N = 1024
HASH_R = 8
HASH_P = 1
HASH_LENGTH = 64

# Tokens
DEFAULT_TOKEN_BYTES = 32

# Remote secret service
DEFAULT_VAULT_ADDR = "http://vault:8200"
DEFAULT_TRANSIT_MOUNT = "transit"
DEFAULT_KV_MOUNT = "secret"
DEFAULT_TRANSIT_KEY = "hms-data"
VAULT_REQUEST_TIMEOUT = 10.0
