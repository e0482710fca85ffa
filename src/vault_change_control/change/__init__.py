"""Change request package initialization."""

from vault_change_control.change.base import ApprovalProgress, ChangeContext, ChangeRequest
from vault_change_control.change.hashing import compute_change_id
from vault_change_control.change.policy import PolicyRequest
from vault_change_control.change.registry import (
    RequestRegistry,
    build_context,
    build_registry,
)

__all__ = [
    "ApprovalProgress",
    "ChangeContext",
    "ChangeRequest",
    "PolicyRequest",
    "RequestRegistry",
    "build_context",
    "build_registry",
    "compute_change_id",
]
