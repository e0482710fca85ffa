"""Multi-party ceremonies backed by Vault unseal shares."""

from vault_change_control.ceremony.root_token import RootTokenGenerator
from vault_change_control.ceremony.unseal import UnsealRelay

__all__ = [
    "RootTokenGenerator",
    "UnsealRelay",
]
