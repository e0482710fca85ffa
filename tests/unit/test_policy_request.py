"""Unit tests for the policy change request lifecycle."""

from __future__ import annotations

import itertools

import pytest
import requests

from vault_change_control.change.policy import PolicyRequest
from vault_change_control.change.registry import RequestRegistry
from vault_change_control.errors import (
    CeremonyAbortedError,
    ExpiredShareError,
    InputValidationError,
    NotActionableError,
    RootTokenRevocationError,
    UnauthorizedError,
)
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultError

RULES = 'path "secret/data/*" { capabilities = ["read", "list"] }'


@pytest.mark.parametrize(
    "payload",
    [
        {"Type": "policy"},
        {"Type": "policy", "Name": "  "},
        {"Type": "policy", "Name": "root"},
        {"Type": "policy", "Name": "team/readonly"},
        {"Type": "policy", "Name": "readonly", "Policy": ["not", "a", "string"]},
    ],
)
def test_create_validates_payload(
    registry: RequestRegistry, auth: AuthInfo, vault, payload: dict[str, object]
) -> None:
    with pytest.raises(InputValidationError):
        registry.add(auth, payload)
    assert vault.cubbyhole_writes == []


def test_create_rejects_proposal_identical_to_current(
    registry: RequestRegistry, auth: AuthInfo, vault
) -> None:
    vault.policies["readonly"] = RULES

    with pytest.raises(InputValidationError):
        registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})


def test_create_requires_read_access(registry: RequestRegistry, vault) -> None:
    vault.capabilities["intern-token"] = ["create"]

    with pytest.raises(UnauthorizedError):
        registry.add(AuthInfo(token="intern-token"), {"Type": "policy", "Name": "readonly"})
    assert vault.cubbyhole_writes == []


def test_create_snapshots_current_policy_and_threshold(
    registry: RequestRegistry, auth: AuthInfo, vault
) -> None:
    vault.policies["readonly"] = "old rules"
    vault.threshold = 2

    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    request = registry.get(auth, change_id)

    assert isinstance(request, PolicyRequest)
    assert request.previous == "old rules"
    assert request.required == 2
    assert request.requester == "token-operator-token"


def test_approvals_accumulate_until_threshold(
    registry: RequestRegistry, auth: AuthInfo, vault
) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})

    first = registry.approve(auth, change_id, "share-one")
    second = registry.approve(AuthInfo(token="second-approver"), change_id, "share-two")

    assert (first.collected, first.required, first.applied) == (1, 3, False)
    assert (second.collected, second.required, second.applied) == (2, 3, False)
    assert f"requests/{change_id}" in vault.cubbyhole
    assert "readonly" not in vault.policies

    final = registry.approve(AuthInfo(token="third-approver"), change_id, "share-three")

    assert final.applied is True
    assert final.collected == 3
    assert vault.policies["readonly"] == RULES
    assert vault.policy_writes == [("readonly", RULES, str(vault.root_token))]
    assert vault.revoked == [str(vault.root_token)]
    assert f"requests/{change_id}" not in vault.cubbyhole
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole


def test_empty_proposal_deletes_policy(registry: RequestRegistry, auth: AuthInfo, vault) -> None:
    vault.policies["legacy"] = "old rules"
    vault.threshold = 1

    change_id = registry.add(auth, {"Type": "policy", "Name": "legacy"})
    progress = registry.approve(auth, change_id, "share-one")

    assert progress.applied is True
    assert "legacy" not in vault.policies
    assert vault.revoked == [str(vault.root_token)]


def test_expired_share_resets_progress(registry: RequestRegistry, auth: AuthInfo, vault) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    registry.approve(auth, change_id, "share-one")
    registry.approve(auth, change_id, "share-two")
    vault.expire("wrap-1")

    with pytest.raises(ExpiredShareError):
        registry.approve(auth, change_id, "share-three")

    assert vault.attempts_started == 0
    assert "readonly" not in vault.policies
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole
    # The request itself survives; approvals start over.
    assert registry.approve(auth, change_id, "share-one").collected == 1


def test_rejected_share_aborts_ceremony(registry: RequestRegistry, auth: AuthInfo, vault) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    registry.approve(auth, change_id, "share-one")
    registry.approve(auth, change_id, "share-two")

    with pytest.raises(CeremonyAbortedError):
        registry.approve(auth, change_id, "not-a-share")

    assert vault.cancel_calls == 1
    assert vault.attempt is None
    assert vault.revoked == []
    assert "readonly" not in vault.policies
    assert f"requests/{change_id}" in vault.cubbyhole
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole


def test_fully_collected_request_is_not_actionable(
    registry: RequestRegistry, auth: AuthInfo, vault
) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    vault.cubbyhole[f"unseal_wrapping_tokens/{change_id}"] = {"wrapping_tokens": "a;b;c"}

    with pytest.raises(NotActionableError):
        registry.get(auth, change_id)


def test_reject_deletes_request_and_bucket(
    registry: RequestRegistry, auth: AuthInfo, vault
) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    registry.approve(auth, change_id, "share-one")

    registry.remove(auth, change_id)

    assert f"requests/{change_id}" not in vault.cubbyhole
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole


def test_unbound_request_cannot_act(auth: AuthInfo) -> None:
    request = PolicyRequest(name="readonly")

    with pytest.raises(RuntimeError):
        request.verify(auth)


def test_connection_lost_mid_ceremony_cancels_and_resets(
    registry: RequestRegistry, auth: AuthInfo, vault, monkeypatch: pytest.MonkeyPatch
) -> None:
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})
    registry.approve(auth, change_id, "share-one")
    registry.approve(auth, change_id, "share-two")

    submit = vault.generate_root_update
    calls = itertools.count(1)

    def drop_second_share(key: str, nonce: str):
        if next(calls) == 2:
            raise requests.ConnectionError("connection reset by peer")
        return submit(key, nonce)

    monkeypatch.setattr(vault, "generate_root_update", drop_second_share)

    with pytest.raises(CeremonyAbortedError) as exc_info:
        registry.approve(auth, change_id, "share-three")

    assert isinstance(exc_info.value.__cause__, requests.ConnectionError)
    assert vault.cancel_calls == 1
    assert vault.attempt is None
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole
    assert f"requests/{change_id}" in vault.cubbyhole

    # Nothing is left stuck: the same request can collect approvals again.
    for share in ("share-one", "share-two", "share-three"):
        progress = registry.approve(auth, change_id, share)
    assert progress.applied is True
    assert vault.policies["readonly"] == RULES


def test_connection_lost_while_applying_revokes_and_resets(
    registry: RequestRegistry, auth: AuthInfo, vault, monkeypatch: pytest.MonkeyPatch
) -> None:
    vault.threshold = 1
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})

    def unreachable(name: str, rules: str, *, token: str | None = None) -> None:
        raise requests.ConnectionError("connection reset by peer")

    monkeypatch.setattr(vault, "write_policy", unreachable)

    with pytest.raises(requests.ConnectionError):
        registry.approve(auth, change_id, "share-one")

    assert vault.revoked == [str(vault.root_token)]
    assert "readonly" not in vault.policies
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole
    assert registry.get(auth, change_id).required == 1


def test_failed_apply_and_failed_revoke_are_both_reported(
    registry: RequestRegistry, auth: AuthInfo, vault, monkeypatch: pytest.MonkeyPatch
) -> None:
    vault.threshold = 1
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})

    def bad_rules(name: str, rules: str, *, token: str | None = None) -> None:
        raise VaultError(400, ["failed to parse policy"])

    def revoke_unavailable(token: str) -> None:
        raise VaultError(503, ["revoke unavailable"])

    monkeypatch.setattr(vault, "write_policy", bad_rules)
    monkeypatch.setattr(vault, "revoke_self", revoke_unavailable)

    with pytest.raises(RootTokenRevocationError) as exc_info:
        registry.approve(auth, change_id, "share-one")

    error = exc_info.value
    assert error.security_sensitive is True
    assert "failed to parse policy" in str(error)
    assert "revoke unavailable" in str(error)
    assert isinstance(error.__cause__, VaultError)
    assert error.__cause__.status_code == 400
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole
    assert f"requests/{change_id}" in vault.cubbyhole


def test_failed_revoke_after_apply_is_security_sensitive(
    registry: RequestRegistry, auth: AuthInfo, vault, monkeypatch: pytest.MonkeyPatch
) -> None:
    vault.threshold = 1
    change_id = registry.add(auth, {"Type": "policy", "Name": "readonly", "Policy": RULES})

    def revoke_unavailable(token: str) -> None:
        raise VaultError(503, ["revoke unavailable"])

    monkeypatch.setattr(vault, "revoke_self", revoke_unavailable)

    with pytest.raises(RootTokenRevocationError) as exc_info:
        registry.approve(auth, change_id, "share-one")

    assert exc_info.value.security_sensitive is True
    assert "revoke unavailable" in str(exc_info.value)
    # The change itself went through, so the request is spent.
    assert vault.policies["readonly"] == RULES
    assert f"requests/{change_id}" not in vault.cubbyhole
    assert f"unseal_wrapping_tokens/{change_id}" not in vault.cubbyhole
