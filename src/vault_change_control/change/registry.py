"""Registry of change request types.

All reads and writes of pending requests go through :class:`RequestRegistry`.
It resolves the stored `Type` discriminator to a request class, and refuses to
hand out any stored request whose content no longer hashes to its change ID.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from vault_change_control.ceremony.root_token import RootTokenGenerator
from vault_change_control.ceremony.unseal import UnsealRelay
from vault_change_control.change.base import ApprovalProgress, ChangeContext, ChangeRequest
from vault_change_control.change.hashing import compute_change_id, is_change_id
from vault_change_control.change.policy import PolicyRequest
from vault_change_control.config import ChangeControlSettings
from vault_change_control.errors import (
    InputValidationError,
    IntegrityMismatchError,
    NotFoundError,
)
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultClient

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TYPES: Mapping[str, type[ChangeRequest]] = {
    "policy": PolicyRequest,
}


def _type_of(raw: Mapping[str, Any]) -> str:
    value = raw.get("Type")
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError("Type field is empty")
    return value.strip().lower()


class RequestRegistry:
    """Dispatches change requests to their type and guards their integrity."""

    def __init__(
        self,
        context: ChangeContext,
        request_types: Mapping[str, type[ChangeRequest]] | None = None,
    ) -> None:
        self._context = context
        self._types: dict[str, type[ChangeRequest]] = {}
        for name, request_cls in (request_types or DEFAULT_REQUEST_TYPES).items():
            self.register(name, request_cls)

    def register(self, type_name: str, request_cls: type[ChangeRequest]) -> None:
        key = type_name.strip().lower()
        if not key:
            raise ValueError("type_name must be non-empty")
        self._types[key] = request_cls

    @property
    def request_types(self) -> list[str]:
        return sorted(self._types)

    def _resolve(self, type_name: str) -> type[ChangeRequest]:
        request_cls = self._types.get(type_name)
        if request_cls is None:
            raise InputValidationError(f"Unsupported request type: {type_name}")
        return request_cls

    def add(self, auth: AuthInfo, raw: Mapping[str, Any]) -> str:
        """Create a request from ``raw`` and return its change ID."""

        if not isinstance(raw, Mapping):
            raise InputValidationError("Request payload must be an object")
        request_cls = self._resolve(_type_of(raw))
        return request_cls.create(self._context, auth, dict(raw))

    def _load(self, change_id: str) -> ChangeRequest:
        if not is_change_id(change_id):
            raise InputValidationError(f"Malformed change ID: {change_id!r}")

        record = self._context.vault.read_cubbyhole(self._context.request_path(change_id))
        if record is None:
            raise NotFoundError(f"Change ID not found: {change_id}")

        request_cls = self._resolve(_type_of(record))
        # Strict: a stored field whose type changed must not be coerced back
        # into a value that still matches the change ID.
        try:
            request = request_cls.model_validate(record, strict=True)
        except ValidationError as e:
            raise InputValidationError(f"Stored request {change_id} is malformed") from e

        computed = compute_change_id(request)
        if computed != change_id:
            logger.warning(
                "Stored request does not match its change ID",
                extra={"change_id": change_id, "computed": computed},
            )
            raise IntegrityMismatchError(change_id=change_id, computed=computed)

        return request.bind(self._context)

    def get(self, auth: AuthInfo, change_id: str) -> ChangeRequest:
        """Fetch a request that is intact and still actionable by ``auth``."""

        request = self._load(change_id)
        request.verify(auth)
        return request

    def remove(self, auth: AuthInfo, change_id: str) -> None:
        """Reject and delete a request; authorization is up to its type."""

        request = self._load(change_id)
        request.reject(auth, change_id)

    def approve(self, auth: AuthInfo, change_id: str, unseal_key: str) -> ApprovalProgress:
        """Record ``unseal_key`` as an approval of the request."""

        request = self.get(auth, change_id)
        return request.approve(change_id, unseal_key)

    @staticmethod
    def is_root_only(request: ChangeRequest) -> bool:
        return request.is_root_only()


def build_context(settings: ChangeControlSettings, vault: VaultClient) -> ChangeContext:
    """Wire the ceremonies and storage layout described by ``settings``."""

    return ChangeContext(
        vault=vault,
        unseals=UnsealRelay(vault, path_prefix=settings.unseal_path, wrap_ttl=settings.wrap_ttl),
        root_tokens=RootTokenGenerator(vault),
        requests_path=settings.requests_path,
    )


def build_registry(settings: ChangeControlSettings, vault: VaultClient) -> RequestRegistry:
    return RequestRegistry(build_context(settings, vault))
