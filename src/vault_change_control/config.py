"""Configuration for the change-control client.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

`VAULT_ADDR` and `VAULT_TOKEN` follow the names the Vault CLI uses. The token
owns the cubbyhole where pending requests and unseal buckets are kept, so it
should belong to a dedicated service identity rather than to a human operator.
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChangeControlSettings(BaseSettings):
    """Settings for talking to Vault and laying out cubbyhole storage.

    Environment variables:
    - VAULT_ADDR                   (optional)
    - VAULT_TOKEN
    - CHANGE_CONTROL_USER_TOKEN    (optional)
    - LOG_LEVEL                    (optional)
    - VAULT_TIMEOUT_SECONDS        (optional)
    - CHANGE_CONTROL_WRAP_TTL      (optional)
    - CHANGE_CONTROL_REQUESTS_PATH (optional)
    - CHANGE_CONTROL_UNSEAL_PATH   (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `ChangeControlSettings(_env_file=path_to_env)`.
    """

    vault_address: str = Field(
        default="http://127.0.0.1:8200",
        validation_alias="VAULT_ADDR",
        description="Base URL of the Vault server",
    )
    vault_token: str = Field(
        default="",
        validation_alias="VAULT_TOKEN",
        description="Service token whose cubbyhole stores pending requests",
    )
    user_token: str = Field(
        default="",
        validation_alias="CHANGE_CONTROL_USER_TOKEN",
        description="Token identifying the operator; defaults to VAULT_TOKEN",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="VAULT_TIMEOUT_SECONDS",
        description="Per-call HTTP timeout against Vault",
    )

    wrap_ttl: str = Field(
        default="60m",
        validation_alias="CHANGE_CONTROL_WRAP_TTL",
        description="Lifetime of the single-use wrapping token holding one unseal share",
    )

    requests_path: str = Field(
        default="requests",
        validation_alias="CHANGE_CONTROL_REQUESTS_PATH",
        description="Cubbyhole prefix for pending change requests",
    )
    unseal_path: str = Field(
        default="unseal_wrapping_tokens",
        validation_alias="CHANGE_CONTROL_UNSEAL_PATH",
        description="Cubbyhole prefix for unseal wrapping token buckets",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_vault_token(self) -> ChangeControlSettings:
        if not self.vault_token.strip():
            raise ValueError("VAULT_TOKEN is required")
        return self

    @property
    def operator_token(self) -> str:
        """Token used to identify the operator running the CLI."""

        return self.user_token.strip() or self.vault_token
