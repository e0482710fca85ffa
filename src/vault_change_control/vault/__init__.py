"""Vault collaborator: HTTP client and caller identity."""

from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import (
    GenerateRootStatus,
    TokenInfo,
    VaultClient,
    VaultError,
)

__all__ = [
    "AuthInfo",
    "GenerateRootStatus",
    "TokenInfo",
    "VaultClient",
    "VaultError",
]
