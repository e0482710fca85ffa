"""Policy change requests.

An operator proposes new rules for a named ACL policy. The proposal is stored
in the service cubbyhole together with the rules in force at the time, and is
applied only once as many key holders as Vault's unseal threshold have
contributed their unseal share. Those shares generate a short-lived root token
that writes the policy and is revoked straight afterwards.

An empty proposal deletes the policy.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field

from vault_change_control.change.base import ApprovalProgress, ChangeContext, ChangeRequest
from vault_change_control.change.hashing import compute_change_id
from vault_change_control.errors import (
    InputValidationError,
    NotActionableError,
    RootTokenRevocationError,
    UnauthorizedError,
)
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultError

logger = logging.getLogger(__name__)

# Vault refuses to modify these policies.
PROTECTED_POLICIES = frozenset({"root"})

# Any of these on the policy path lets a caller see the request.
READ_CAPABILITIES = frozenset({"read", "sudo", "root"})


def _policy_path(name: str) -> str:
    return f"sys/policies/acl/{name}"


def _require_policy_access(context: ChangeContext, auth: AuthInfo, name: str) -> None:
    capabilities = set(context.vault.capabilities_self(auth.token, _policy_path(name)))
    if "deny" in capabilities or not capabilities & READ_CAPABILITIES:
        raise UnauthorizedError(f"Token may not read policy {name!r}")


def _revoke_root_token(
    context: ChangeContext, root_token: str, *, failure: Exception | None = None
) -> None:
    """Revoke ``root_token``; if that fails, report it together with ``failure``."""

    try:
        context.vault.revoke_self(root_token)
    except Exception as e:
        message = f"Root token could not be revoked ({e}); search for it and revoke it"
        if failure is not None:
            message = f"Applying the change failed ({failure}). {message}"
        raise RootTokenRevocationError(message) from (failure or e)


class PolicyRequest(ChangeRequest):
    """Proposed replacement of one ACL policy."""

    type: str = Field(default="policy", alias="Type")
    name: str = Field(alias="Name")
    policy: str = Field(default="", alias="Policy")
    previous: str = Field(default="", alias="Previous")
    required: int = Field(default=0, ge=0, alias="Required")
    requester: str = Field(default="", alias="Requester")
    requester_accessor: str = Field(default="", alias="RequesterAccessor")

    def is_root_only(self) -> bool:
        return True

    def verify(self, auth: AuthInfo) -> None:
        context = self.context
        _require_policy_access(context, auth, self.name)

        current = context.vault.read_policy(self.name, token=auth.token) or ""
        if current != self.previous:
            raise NotActionableError(
                f"Policy {self.name!r} has changed since this request was created"
            )

        collected = len(context.unseals.pending(compute_change_id(self)))
        if self.required and collected >= self.required:
            raise NotActionableError("Request has already collected every approval")

    def approve(self, change_id: str, unseal_key: str) -> ApprovalProgress:
        context = self.context

        wrapping_tokens = context.unseals.append_unseal(change_id, unseal_key)
        if len(wrapping_tokens) < self.required:
            logger.info(
                "Policy request approval recorded",
                extra={
                    "change_id": change_id,
                    "collected": len(wrapping_tokens),
                    "required": self.required,
                },
            )
            return ApprovalProgress(
                change_id=change_id,
                collected=len(wrapping_tokens),
                required=self.required,
                applied=False,
            )

        # Redeeming consumes every wrapping token, so a failure from here on
        # leaves a bucket nobody can use again.
        try:
            unseals = context.unseals.unwrap_unseals(wrapping_tokens)
            try:
                root_token = context.root_tokens.generate_root_token(unseals)
            finally:
                unseals.clear()

            try:
                self._apply(root_token)
            except Exception as e:
                _revoke_root_token(context, root_token, failure=e)
                raise
        except Exception:
            context.unseals.discard(change_id)
            raise

        # The policy is in force now, so the request is spent even if the
        # revocation below fails.
        try:
            _revoke_root_token(context, root_token)
        finally:
            context.vault.delete_cubbyhole(context.request_path(change_id))
            context.unseals.discard(change_id)

        logger.info(
            "Policy request applied",
            extra={"change_id": change_id, "policy": self.name},
        )
        return ApprovalProgress(
            change_id=change_id,
            collected=len(wrapping_tokens),
            required=self.required,
            applied=True,
        )

    def _apply(self, root_token: str) -> None:
        vault = self.context.vault
        if self.policy:
            vault.write_policy(self.name, self.policy, token=root_token)
        else:
            vault.delete_policy(self.name, token=root_token)

    def reject(self, auth: AuthInfo, change_id: str) -> None:
        context = self.context
        _require_policy_access(context, auth, self.name)

        context.vault.delete_cubbyhole(context.request_path(change_id))
        context.unseals.discard(change_id)
        logger.info("Policy request rejected", extra={"change_id": change_id})

    @classmethod
    def create(cls, context: ChangeContext, auth: AuthInfo, raw: dict[str, Any]) -> str:
        name = raw.get("Name")
        if not isinstance(name, str) or not name.strip():
            raise InputValidationError("Policy name must be non-empty")
        name = name.strip().lower()
        if "/" in name:
            raise InputValidationError(f"Invalid policy name: {name!r}")
        if name in PROTECTED_POLICIES:
            raise InputValidationError(f"Policy {name!r} cannot be changed")

        rules = raw.get("Policy", "")
        if not isinstance(rules, str):
            raise InputValidationError("Policy must be a string")

        _require_policy_access(context, auth, name)

        try:
            previous = context.vault.read_policy(name, token=auth.token) or ""
        except VaultError as e:
            if e.status_code == 403:
                raise UnauthorizedError(f"Token may not read policy {name!r}") from e
            raise
        if rules and rules == previous:
            raise InputValidationError("Proposed policy is identical to the current policy")

        requester = context.vault.lookup_self(auth.token)
        request = cls(
            name=name,
            policy=rules,
            previous=previous,
            required=context.vault.seal_threshold(),
            requester=requester.display_name,
            requester_accessor=requester.accessor,
        )

        change_id = compute_change_id(request)
        context.vault.write_cubbyhole(context.request_path(change_id), request.to_record())

        logger.info(
            "Policy request created",
            extra={"change_id": change_id, "policy": name, "required": request.required},
        )
        return change_id
