"""Abstract base class for change requests.

This interface allows pluggable request types. The registry owns storage
lookups and integrity checks; each request type decides who may act on it and
what approving it does.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from vault_change_control.ceremony.root_token import RootTokenGenerator
from vault_change_control.ceremony.unseal import UnsealRelay
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultClient

DEFAULT_REQUESTS_PATH = "requests"


@dataclass(frozen=True, slots=True)
class ChangeContext:
    """Collaborators a request needs to verify and apply itself."""

    vault: VaultClient
    unseals: UnsealRelay
    root_tokens: RootTokenGenerator
    requests_path: str = DEFAULT_REQUESTS_PATH

    def request_path(self, change_id: str) -> str:
        return f"{self.requests_path.strip('/')}/{change_id}"


@dataclass(frozen=True, slots=True)
class ApprovalProgress:
    """Outcome of recording one approval."""

    change_id: str
    collected: int
    required: int
    applied: bool


class ChangeRequest(BaseModel, ABC):
    """A pending change, stored under the hash of its own fields.

    Subclasses declare their payload as pydantic fields with the persisted
    (PascalCase) name as alias. Fields must not change after creation: they
    are what the change ID is computed from.
    """

    type: str = Field(alias="Type")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    _context: ChangeContext | None = PrivateAttr(default=None)

    def bind(self, context: ChangeContext) -> Self:
        self._context = context
        return self

    @property
    def context(self) -> ChangeContext:
        if self._context is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a ChangeContext")
        return self._context

    def to_record(self) -> dict[str, Any]:
        """Fields as written to the cubbyhole."""

        return self.model_dump(mode="json", by_alias=True)

    @abstractmethod
    def is_root_only(self) -> bool:
        """Whether approving needs root-equivalent authority."""

    @abstractmethod
    def verify(self, auth: AuthInfo) -> None:
        """Check that the request can still be acted on by ``auth``.

        Raises:
            UnauthorizedError: The caller may not see or act on the request.
            NotActionableError: The request is stale or already fully approved.
        """

    @abstractmethod
    def approve(self, change_id: str, unseal_key: str) -> ApprovalProgress:
        """Record one approver's unseal share.

        Approvals accumulate across calls. The call that reaches the required
        count applies the change and deletes the stored request.
        """

    @abstractmethod
    def reject(self, auth: AuthInfo, change_id: str) -> None:
        """Authorize ``auth`` and delete the stored request."""

    @classmethod
    @abstractmethod
    def create(cls, context: ChangeContext, auth: AuthInfo, raw: dict[str, Any]) -> str:
        """Validate ``raw``, authorize ``auth``, persist the request and return its change ID."""
