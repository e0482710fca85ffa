"""Asynchronous collection of unseal shares.

Key holders hand over their unseal share at different times. Each share is
wrapped by Vault into a single-use, time-limited token straight away, so the
raw share is never stored. The wrapping tokens for one change ID are kept in a
cubbyhole "bucket" as a single `;`-delimited string until enough of them have
arrived to be redeemed together.

Appends for the same change ID are serialized within this process. Cubbyhole
writes have no compare-and-swap, so two processes appending to the same bucket
at once can still lose a share; callers running several workers must route a
change ID to one of them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from vault_change_control.errors import (
    CorruptStateError,
    ExpiredShareError,
    InputValidationError,
    ProtocolError,
)
from vault_change_control.vault.client import VaultClient, VaultError

logger = logging.getLogger(__name__)

WRAPPING_TOKEN_SEPARATOR = ";"
BUCKET_FIELD = "wrapping_tokens"
UNSEAL_FIELD = "unseal_token"

DEFAULT_UNSEAL_PATH = "unseal_wrapping_tokens"
DEFAULT_WRAP_TTL = "60m"


class UnsealRelay:
    """Wraps incoming unseal shares and redeems them in submission order."""

    def __init__(
        self,
        vault: VaultClient,
        *,
        path_prefix: str = DEFAULT_UNSEAL_PATH,
        wrap_ttl: str = DEFAULT_WRAP_TTL,
    ) -> None:
        self._vault = vault
        self._path_prefix = path_prefix.strip("/")
        self._wrap_ttl = wrap_ttl
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _bucket_path(self, change_id: str) -> str:
        return f"{self._path_prefix}/{change_id}"

    def _lock_for(self, change_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(change_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[change_id] = lock
            return lock

    def _load_unlocked(self, change_id: str) -> list[str]:
        path = self._bucket_path(change_id)
        data = self._vault.read_cubbyhole(path)
        if data is None:
            return []

        raw = data.get(BUCKET_FIELD)
        if not isinstance(raw, str) or not raw:
            raise CorruptStateError(f"Could not find key {BUCKET_FIELD!r} in cubbyhole at {path}")
        return raw.split(WRAPPING_TOKEN_SEPARATOR)

    def pending(self, change_id: str) -> list[str]:
        """Return the wrapping tokens collected so far without touching them."""

        with self._lock_for(change_id):
            return self._load_unlocked(change_id)

    def append_unseal(self, change_id: str, share: str) -> list[str]:
        """Wrap ``share`` and add it to the bucket for ``change_id``.

        Returns:
            Every wrapping token in the bucket, oldest first, so the caller can
            compare the count with the number of shares required.
        """

        if not share:
            raise InputValidationError("Unseal share must be non-empty")

        with self._lock_for(change_id):
            wrapping_tokens = self._load_unlocked(change_id)

            wrapping_token = self._vault.wrap_data(self._wrap_ttl, {UNSEAL_FIELD: share})
            wrapping_tokens.append(wrapping_token)

            self._vault.write_cubbyhole(
                self._bucket_path(change_id),
                {BUCKET_FIELD: WRAPPING_TOKEN_SEPARATOR.join(wrapping_tokens)},
            )

        logger.info(
            "Unseal share wrapped",
            extra={"change_id": change_id, "collected": len(wrapping_tokens)},
        )
        return wrapping_tokens

    def unwrap_unseals(self, wrapping_tokens: Sequence[str]) -> list[str]:
        """Redeem every wrapping token, in order, for its unseal share.

        All or nothing: the first token Vault refuses (expired or already
        used) aborts the batch and no share is returned.
        """

        unseals: list[str] = []
        for position, wrapping_token in enumerate(wrapping_tokens, start=1):
            try:
                data = self._vault.unwrap_data(wrapping_token)
            except VaultError as e:
                unseals.clear()
                raise ExpiredShareError(
                    f"Wrapping token {position} of {len(wrapping_tokens)} timed out "
                    "or was already used. Progress reset."
                ) from e

            unseal = data.get(UNSEAL_FIELD)
            if not isinstance(unseal, str) or not unseal:
                unseals.clear()
                raise ProtocolError(
                    f"Wrapping token {position} of {len(wrapping_tokens)} "
                    f"did not contain {UNSEAL_FIELD!r}"
                )
            unseals.append(unseal)

        return unseals

    def discard(self, change_id: str) -> None:
        """Delete the bucket for ``change_id``. Unredeemed tokens simply expire."""

        # The lock outlives the bucket: a thread may already be waiting on it.
        with self._lock_for(change_id):
            self._vault.delete_cubbyhole(self._bucket_path(change_id))
