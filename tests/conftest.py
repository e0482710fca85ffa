"""Test configuration and fixtures."""

from __future__ import annotations

import base64
import copy
import itertools
import threading
import uuid
from typing import Any

import pytest

from vault_change_control.ceremony.root_token import RootTokenGenerator
from vault_change_control.ceremony.unseal import UnsealRelay
from vault_change_control.change.base import ChangeContext
from vault_change_control.change.registry import RequestRegistry
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import GenerateRootStatus, TokenInfo, VaultError

VALID_SHARES = ("share-one", "share-two", "share-three")
ROOT_TOKEN = uuid.UUID("6f1c2a9e-3b7d-4e58-9a0c-1d2e3f405162")


class InMemoryVault:
    """Stand-in for VaultClient keeping every piece of state in dictionaries."""

    def __init__(self, *, threshold: int = 3, valid_shares: tuple[str, ...] = VALID_SHARES) -> None:
        self.threshold = threshold
        self.valid_shares = set(valid_shares)
        self.root_token = ROOT_TOKEN

        self.cubbyhole: dict[str, dict[str, Any]] = {}
        self.cubbyhole_writes: list[str] = []
        self.policies: dict[str, str] = {}
        self.policy_writes: list[tuple[str, str, str | None]] = []
        self.capabilities: dict[str, list[str]] = {}
        self.revoked: list[str] = []

        self.wrapped: dict[str, dict[str, Any]] = {}
        self.wrap_ttls: list[str] = []
        self._wrap_counter = itertools.count(1)
        self._wrap_lock = threading.Lock()

        self.attempt: dict[str, Any] | None = None
        self.attempts_started = 0
        self.cancel_calls = 0
        self.fail_cancel = False

    # cubbyhole

    def read_cubbyhole(self, path: str) -> dict[str, Any] | None:
        data = self.cubbyhole.get(path)
        return copy.deepcopy(data) if data is not None else None

    def write_cubbyhole(self, path: str, data: dict[str, Any]) -> None:
        self.cubbyhole[path] = copy.deepcopy(data)
        self.cubbyhole_writes.append(path)

    def delete_cubbyhole(self, path: str) -> None:
        self.cubbyhole.pop(path, None)

    # generate-root

    def _status(self, encoded: str = "") -> GenerateRootStatus:
        attempt = self.attempt or {"nonce": "", "keys": []}
        return GenerateRootStatus(
            nonce=attempt["nonce"],
            started=self.attempt is not None,
            progress=len(attempt["keys"]),
            required=self.threshold,
            complete=bool(encoded),
            encoded_token=encoded,
        )

    def generate_root_init(self, otp: str) -> GenerateRootStatus:
        if self.attempt is not None:
            raise VaultError(400, ["root generation already in progress"])
        self.attempts_started += 1
        self.attempt = {"nonce": str(uuid.uuid4()), "otp": otp, "keys": []}
        return self._status()

    def generate_root_update(self, key: str, nonce: str) -> GenerateRootStatus:
        if self.attempt is None or self.attempt["nonce"] != nonce:
            raise VaultError(400, ["no root generation in progress"])
        if key not in self.valid_shares:
            raise VaultError(400, ["invalid key"])
        if key in self.attempt["keys"]:
            raise VaultError(400, ["key already provided"])
        self.attempt["keys"].append(key)

        if len(self.attempt["keys"]) < self.threshold:
            return self._status()

        pad = base64.b64decode(self.attempt["otp"])
        masked = bytes(a ^ b for a, b in zip(self.root_token.bytes, pad))
        status = self._status(base64.b64encode(masked).decode("ascii"))
        self.attempt = None
        return status

    def generate_root_cancel(self) -> None:
        self.cancel_calls += 1
        if self.fail_cancel:
            raise VaultError(500, ["cancel failed"])
        self.attempt = None

    # response wrapping

    def wrap_data(self, ttl: str, data: dict[str, Any]) -> str:
        with self._wrap_lock:
            token = f"wrap-{next(self._wrap_counter)}"
        self.wrapped[token] = dict(data)
        self.wrap_ttls.append(ttl)
        return token

    def unwrap_data(self, wrapping_token: str) -> dict[str, Any]:
        data = self.wrapped.pop(wrapping_token, None)
        if data is None:
            raise VaultError(400, ["wrapping token is not valid or does not exist"])
        return data

    def expire(self, wrapping_token: str) -> None:
        self.wrapped.pop(wrapping_token, None)

    # system and tokens

    def seal_threshold(self) -> int:
        return self.threshold

    def read_policy(self, name: str, *, token: str | None = None) -> str | None:
        return self.policies.get(name)

    def write_policy(self, name: str, rules: str, *, token: str | None = None) -> None:
        self.policy_writes.append((name, rules, token))
        self.policies[name] = rules

    def delete_policy(self, name: str, *, token: str | None = None) -> None:
        self.policy_writes.append((name, "", token))
        self.policies.pop(name, None)

    def lookup_self(self, token: str) -> TokenInfo:
        return TokenInfo(
            accessor=f"accessor-{token}", display_name=f"token-{token}", policies=["default"]
        )

    def capabilities_self(self, token: str, path: str) -> list[str]:
        return self.capabilities.get(token, ["read"])

    def revoke_self(self, token: str) -> None:
        self.revoked.append(token)

    def close(self) -> None:
        pass


@pytest.fixture
def vault() -> InMemoryVault:
    return InMemoryVault()


@pytest.fixture
def context(vault: InMemoryVault) -> ChangeContext:
    return ChangeContext(
        vault=vault,  # type: ignore[arg-type]
        unseals=UnsealRelay(vault),  # type: ignore[arg-type]
        root_tokens=RootTokenGenerator(vault),  # type: ignore[arg-type]
    )


@pytest.fixture
def registry(context: ChangeContext) -> RequestRegistry:
    return RequestRegistry(context)


@pytest.fixture
def auth() -> AuthInfo:
    return AuthInfo(token="operator-token")
