"""Error taxonomy for change requests and root token ceremonies.

Every error raised by this package derives from :class:`ChangeControlError` so
callers can catch the whole family at the boundary (CLI, HTTP handler) while
still branching on the specific failure.
"""

from __future__ import annotations

from dataclasses import dataclass


class ChangeControlError(Exception):
    """Base class for change-control failures."""

    # Set when a live root credential may be left behind and needs an operator.
    security_sensitive = False


class InputValidationError(ChangeControlError, ValueError):
    """Raised when a request payload is missing fields or has an unknown type."""


class NotFoundError(ChangeControlError, LookupError):
    """Raised when no request is stored under a change ID."""


@dataclass(frozen=True, slots=True)
class IntegrityMismatchError(ChangeControlError):
    """Raised when a stored request no longer hashes to its change ID."""

    change_id: str
    computed: str

    def __str__(self) -> str:
        return f"Hashes do not match for change ID {self.change_id!r}"


class UnauthorizedError(ChangeControlError, PermissionError):
    """Raised when the caller may not act on a request."""


class NotActionableError(ChangeControlError):
    """Raised when a request is stale and can no longer be approved."""


class ThresholdNotMetError(ChangeControlError):
    """Raised when a root token ceremony ended without producing a token."""


class DecodeError(ChangeControlError):
    """Raised when a generated root token could not be decoded.

    Vault may already have minted a live root token at this point, so the
    failure is security sensitive: an operator has to find and revoke it.
    """

    security_sensitive = True


class CorruptStateError(ChangeControlError):
    """Raised when a stored unseal bucket is missing its wrapping tokens."""


class ExpiredShareError(ChangeControlError):
    """Raised when a wrapping token is expired or already consumed."""


class ProtocolError(ChangeControlError):
    """Raised when Vault answers successfully but without the expected payload."""


class CeremonyAbortedError(ChangeControlError):
    """Raised when Vault rejected an unseal share during root token generation."""


class RootTokenRevocationError(ChangeControlError):
    """Raised when a generated root token could not be revoked after use.

    The token may still be live, so an operator has to find and revoke it.
    """

    security_sensitive = True
