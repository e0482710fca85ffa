"""Root token regeneration from unseal shares.

Vault's generate-root ceremony returns the new root token XOR-ed with a
one-time pad chosen by the caller. The pad lives only in memory for the
duration of one call; neither it nor the decoded token is ever persisted.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import uuid
from collections.abc import Sequence

import requests

from vault_change_control.errors import (
    CeremonyAbortedError,
    DecodeError,
    ThresholdNotMetError,
)
from vault_change_control.vault.client import GenerateRootStatus, VaultClient, VaultError

logger = logging.getLogger(__name__)

OTP_BYTES = 16

_DECODE_FAILURE = "Could not decode root token. Please search and revoke"


def _wipe(buffer: bytearray) -> None:
    for i in range(len(buffer)):
        buffer[i] = 0


def xor_base64(encoded: str, pad: bytes | bytearray) -> bytearray:
    """XOR the base64-decoded ``encoded`` value with ``pad``.

    Raises:
        DecodeError: if ``encoded`` is not base64 or its length differs from the pad.
    """

    try:
        masked = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"{_DECODE_FAILURE}: encoded token is not base64") from e

    if len(masked) != len(pad):
        raise DecodeError(
            f"{_DECODE_FAILURE}: encoded token is {len(masked)} bytes, pad is {len(pad)}"
        )
    return bytearray(a ^ b for a, b in zip(masked, pad, strict=True))


def format_token(token_bytes: bytes | bytearray) -> str:
    """Render raw token bytes as the canonical UUID string Vault uses."""

    try:
        return str(uuid.UUID(bytes=bytes(token_bytes)))
    except ValueError as e:
        raise DecodeError(f"{_DECODE_FAILURE}: token is not a UUID") from e


class RootTokenGenerator:
    """Drives one generate-root attempt per call.

    Vault allows a single attempt at a time, so a call fails while another
    attempt (from this or any other client) is still in progress.
    """

    def __init__(self, vault: VaultClient, *, otp_bytes: int = OTP_BYTES) -> None:
        if otp_bytes <= 0:
            raise ValueError("otp_bytes must be a positive integer")
        self._vault = vault
        self._otp_bytes = otp_bytes

    def _cancel(self) -> Exception | None:
        try:
            self._vault.generate_root_cancel()
        except (VaultError, requests.RequestException) as e:
            return e
        return None

    def _submit_shares(
        self, shares: Sequence[str], status: GenerateRootStatus
    ) -> GenerateRootStatus:
        nonce = status.nonce
        for position, share in enumerate(shares, start=1):
            try:
                status = self._vault.generate_root_update(share, nonce)
            except Exception as e:
                # A rejected or unanswered share leaves the attempt in an unknown
                # state; stop here so the next ceremony can start.
                cancel_error = self._cancel()
                if cancel_error is not None:
                    raise CeremonyAbortedError(
                        f"Could not generate root token: share {position} failed ({e}), "
                        f"and cancelling the attempt failed ({cancel_error})"
                    ) from e
                raise CeremonyAbortedError(
                    f"Could not generate root token: share {position} failed ({e})"
                ) from e

            logger.debug(
                "Unseal share accepted",
                extra={"progress": status.progress, "required": status.required},
            )
            if status.encoded_token:
                break
        return status

    def generate_root_token(self, shares: Sequence[str]) -> str:
        """Generate a new root token from ``shares``, submitted in order.

        Raises:
            CeremonyAbortedError: Vault rejected a share; the attempt was cancelled.
            ThresholdNotMetError: every share was accepted but no token came back.
            DecodeError: a token was generated but could not be decoded. It may be
                live, so an operator must search for it and revoke it.
        """

        pad = bytearray(secrets.token_bytes(self._otp_bytes))
        try:
            otp = base64.b64encode(pad).decode("ascii")

            status = self._vault.generate_root_init(otp)
            logger.info(
                "Root token generation started",
                extra={"required": status.required, "submitted": len(shares)},
            )

            if not status.encoded_token:
                status = self._submit_shares(shares, status)

            if not status.encoded_token:
                cancel_error = self._cancel()
                message = "Could not generate root token. Was vault re-keyed just now?"
                if cancel_error is not None:
                    message = f"{message} Cancelling the attempt also failed ({cancel_error})"
                raise ThresholdNotMetError(message)

            token_bytes = xor_base64(status.encoded_token, pad)
            try:
                token = format_token(token_bytes)
            finally:
                _wipe(token_bytes)
        finally:
            _wipe(pad)

        logger.info("Root token generated")
        return token
