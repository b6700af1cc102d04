"""Configuration management for HMS Vault."""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hmsvault.constants import (
    DEFAULT_KV_MOUNT,
    DEFAULT_TRANSIT_KEY,
    DEFAULT_TRANSIT_MOUNT,
    DEFAULT_VAULT_ADDR,
    KEY_SIZE,
    VAULT_REQUEST_TIMEOUT,
)


def _check_hex_key(value: str, name: str) -> None:
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be hex encoded") from exc
    if len(raw) != KEY_SIZE:
        raise ValueError(f"{name} must decode to {KEY_SIZE} bytes, got {len(raw)}")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Local encryption
    encryption_key: SecretStr | None = Field(
        default=None, description="Hex-encoded 256-bit key (takes precedence over passphrase)"
    )
    encryption_passphrase: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("encryption_passphrase", "jwt_secret"),
        description="Passphrase the key is derived from when no raw key is configured",
    )
    encryption_salt_path: Path | None = Field(
        default=Path("data/encryption_salt.bin"),
        description="Per-deployment KDF salt file (created on first use)",
    )
    encryption_key_version: str | None = Field(
        default=None, description="Version label written into new envelopes"
    )
    encryption_retired_keys: Annotated[
        dict[str, SecretStr],
        Field(
            default_factory=dict,
            description="Retired hex keys by version label, used for decryption only",
        ),
    ]

    # Remote secret service
    vault_addr: str = Field(
        default=DEFAULT_VAULT_ADDR,
        validation_alias=AliasChoices("vault_addr", "vault_endpoint"),
        description="Secret service endpoint URL",
    )
    vault_token: SecretStr | None = Field(default=None, description="Secret service token")
    vault_transit_mount: str = Field(default=DEFAULT_TRANSIT_MOUNT)
    vault_kv_mount: str = Field(default=DEFAULT_KV_MOUNT)
    vault_default_key: str = Field(default=DEFAULT_TRANSIT_KEY)
    vault_timeout: float = Field(
        default=VAULT_REQUEST_TIMEOUT, gt=0, description="Per-request timeout in seconds"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("encryption_key")
    @classmethod
    def _validate_encryption_key(cls, v: SecretStr | None) -> SecretStr | None:
        if v is not None and v.get_secret_value():
            _check_hex_key(v.get_secret_value(), "encryption_key")
        return v

    @field_validator("encryption_retired_keys")
    @classmethod
    def _validate_retired_keys(cls, v: dict[str, SecretStr]) -> dict[str, SecretStr]:
        for version, key in v.items():
            _check_hex_key(key.get_secret_value(), f"encryption_retired_keys[{version}]")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
