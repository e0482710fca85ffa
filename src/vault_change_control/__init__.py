"""Vault change control.

Provides:
- policy change requests stored under the hash of their own content
- approval by key holders contributing unseal shares asynchronously
- root token generation from those shares, for applying approved changes
"""

__version__ = "0.1.0"

from vault_change_control.config import ChangeControlSettings

__all__ = ["__version__", "ChangeControlSettings"]
