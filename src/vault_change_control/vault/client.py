"""Vault HTTP API client wrapper.

This intentionally wraps the handful of Vault endpoints the change-control
workflow needs, to keep HTTP calls out of request/ceremony code and make tests
easy. The client authenticates as a service token; calls that must run with
the operator's privileges accept an explicit ``token``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)


class VaultError(RuntimeError):
    """Raised when Vault answers with a non-success status."""

    def __init__(self, status_code: int, errors: list[str], *, path: str = "") -> None:
        self.status_code = status_code
        self.errors = errors
        self.path = path
        detail = "; ".join(errors) if errors else "no error detail"
        super().__init__(f"Vault returned {status_code} for {path or 'request'}: {detail}")


@dataclass(frozen=True, slots=True)
class GenerateRootStatus:
    """Progress of a root token generation attempt."""

    nonce: str
    started: bool
    progress: int
    required: int
    complete: bool
    encoded_token: str


@dataclass(frozen=True, slots=True)
class TokenInfo:
    """Subset of `auth/token/lookup-self` needed to attribute requests."""

    accessor: str
    display_name: str
    policies: list[str]


class VaultClient:
    """Small wrapper around the Vault HTTP API."""

    def __init__(
        self,
        *,
        address: str,
        token: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not address:
            raise ValueError("Vault address is required")
        if not token:
            raise ValueError("Vault token is required")

        self._base_url = address.rstrip("/") + "/v1"
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": "vault-change-control",
            }
        )
        logger.debug("Vault client configured", extra={"address": address})

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    @staticmethod
    def _errors(resp: requests.Response) -> list[str]:
        try:
            body = resp.json()
        except ValueError:
            return [resp.text] if resp.text else []
        errors = body.get("errors") if isinstance(body, dict) else None
        if not isinstance(errors, list):
            return []
        return [str(e) for e in errors]

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        """Send one request and return the decoded JSON body.

        Returns None for empty (204) responses, and for 404 when
        ``allow_missing`` is set.
        """

        request_headers = {"X-Vault-Token": token or self._token}
        if headers:
            request_headers.update(headers)

        resp = self._session.request(
            method,
            self._url(path),
            json=payload,
            headers=request_headers,
            timeout=self._timeout,
        )
        if resp.status_code == 404 and allow_missing:
            return None
        if resp.status_code >= 400:
            raise VaultError(resp.status_code, self._errors(resp), path=path)
        if resp.status_code == 204 or not resp.content:
            return None

        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Vault response for {path}: not an object")
        return data

    # -- cubbyhole -----------------------------------------------------------

    def read_cubbyhole(self, path: str) -> dict[str, Any] | None:
        """Return the secret's data, or None if nothing is stored at ``path``."""

        body = self._request("GET", f"cubbyhole/{path}", allow_missing=True)
        if body is None:
            return None
        data = body.get("data")
        if not isinstance(data, dict):
            return {}
        return data

    def write_cubbyhole(self, path: str, data: dict[str, Any]) -> None:
        self._request("POST", f"cubbyhole/{path}", payload=data)

    def delete_cubbyhole(self, path: str) -> None:
        self._request("DELETE", f"cubbyhole/{path}", allow_missing=True)

    # -- root token generation -----------------------------------------------

    @staticmethod
    def _parse_generate_root(body: dict[str, Any] | None) -> GenerateRootStatus:
        if body is None:
            raise ValueError("Unexpected generate-root response: empty body")

        # Older Vault releases only populate `encoded_root_token`.
        encoded = body.get("encoded_token") or body.get("encoded_root_token") or ""
        return GenerateRootStatus(
            nonce=str(body.get("nonce") or ""),
            started=bool(body.get("started")),
            progress=int(body.get("progress") or 0),
            required=int(body.get("required") or 0),
            complete=bool(body.get("complete")),
            encoded_token=str(encoded),
        )

    def generate_root_init(self, otp: str) -> GenerateRootStatus:
        body = self._request("PUT", "sys/generate-root/attempt", payload={"otp": otp})
        return self._parse_generate_root(body)

    def generate_root_update(self, key: str, nonce: str) -> GenerateRootStatus:
        body = self._request(
            "PUT", "sys/generate-root/update", payload={"key": key, "nonce": nonce}
        )
        return self._parse_generate_root(body)

    def generate_root_cancel(self) -> None:
        self._request("DELETE", "sys/generate-root/attempt")

    # -- response wrapping ---------------------------------------------------

    def wrap_data(self, ttl: str, data: dict[str, Any]) -> str:
        """Wrap ``data`` in a single-use token that expires after ``ttl``."""

        body = self._request(
            "POST",
            "sys/wrapping/wrap",
            payload=data,
            headers={"X-Vault-Wrap-TTL": ttl},
        )
        wrap_info = (body or {}).get("wrap_info")
        if not isinstance(wrap_info, dict):
            raise ValueError("Unexpected wrap response: missing wrap_info")
        token = wrap_info.get("token")
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Unexpected wrap response: missing token")
        return token

    def unwrap_data(self, wrapping_token: str) -> dict[str, Any]:
        """Redeem a wrapping token. Vault refuses once it is used or expired."""

        body = self._request("POST", "sys/wrapping/unwrap", payload={"token": wrapping_token})
        data = (body or {}).get("data")
        if not isinstance(data, dict):
            return {}
        return data

    # -- system and token helpers --------------------------------------------

    def seal_threshold(self) -> int:
        """Number of unseal shares needed to reconstruct the master key."""

        body = self._request("GET", "sys/seal-status") or {}
        threshold = body.get("t")
        if not isinstance(threshold, int) or threshold <= 0:
            raise ValueError("Unexpected seal-status response: missing threshold")
        return threshold

    def read_policy(self, name: str, *, token: str | None = None) -> str | None:
        body = self._request("GET", f"sys/policies/acl/{name}", token=token, allow_missing=True)
        if body is None:
            return None
        data = body.get("data")
        if isinstance(data, dict) and isinstance(data.get("policy"), str):
            return data["policy"]
        return ""

    def write_policy(self, name: str, rules: str, *, token: str | None = None) -> None:
        self._request("PUT", f"sys/policies/acl/{name}", token=token, payload={"policy": rules})

    def delete_policy(self, name: str, *, token: str | None = None) -> None:
        self._request("DELETE", f"sys/policies/acl/{name}", token=token, allow_missing=True)

    def lookup_self(self, token: str) -> TokenInfo:
        body = self._request("GET", "auth/token/lookup-self", token=token) or {}
        data = body.get("data")
        if not isinstance(data, dict):
            raise ValueError("Unexpected lookup-self response: missing data")
        policies = data.get("policies")
        return TokenInfo(
            accessor=str(data.get("accessor") or ""),
            display_name=str(data.get("display_name") or ""),
            policies=[str(p) for p in policies] if isinstance(policies, list) else [],
        )

    def capabilities_self(self, token: str, path: str) -> list[str]:
        body = (
            self._request("POST", "sys/capabilities-self", token=token, payload={"paths": [path]})
            or {}
        )
        caps = body.get(path, body.get("capabilities"))
        if not isinstance(caps, list):
            return []
        return [str(c) for c in caps]

    def revoke_self(self, token: str) -> None:
        self._request("POST", "auth/token/revoke-self", token=token)

    def close(self) -> None:
        self._session.close()
