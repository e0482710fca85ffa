"""Caller identity passed through the change-control layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AuthInfo:
    """The operator's Vault credentials.

    The registry and the ceremonies never look inside; only request variants
    use it to check what the caller is allowed to do.
    """

    token: str

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError("Vault token is required")

    def __repr__(self) -> str:
        return "AuthInfo(token=<redacted>)"
