"""CLI entrypoint for vault change control.

Unseal shares are always read from the terminal without echo (or from stdin
when it is not a terminal), never from arguments, so they stay out of shell
history and process listings.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from vault_change_control import __version__
from vault_change_control.change.registry import RequestRegistry, build_context
from vault_change_control.config import ChangeControlSettings
from vault_change_control.errors import ChangeControlError
from vault_change_control.logging import configure_logging
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultClient, VaultError

logger = logging.getLogger(__name__)


def _read_secret(prompt: str) -> str:
    if sys.stdin.isatty():
        return getpass.getpass(prompt).strip()
    return sys.stdin.readline().strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-change-control",
        description="Multi-party approval of sensitive Vault changes",
    )
    parser.add_argument(
        "--version", action="version", version=f"vault-change-control {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    add_policy = subparsers.add_parser(
        "add-policy-request", help="Propose new rules for an ACL policy"
    )
    add_policy.add_argument("--name", required=True, help="Policy name")
    add_policy.add_argument(
        "--policy-file",
        type=Path,
        default=None,
        help="File holding the proposed HCL rules (omit to propose deleting the policy)",
    )

    for command, help_text in (
        ("show-request", "Show a pending request"),
        ("approve-request", "Approve a pending request with your unseal share"),
        ("reject-request", "Reject and delete a pending request"),
    ):
        sub = subparsers.add_parser(command, help=help_text)
        sub.add_argument("--change-id", required=True, help="Change ID returned on creation")

    generate_root = subparsers.add_parser(
        "generate-root", help="Generate a root token from unseal shares"
    )
    generate_root.add_argument(
        "--shares",
        type=int,
        required=True,
        help="Number of unseal shares to read",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ChangeControlSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    vault = VaultClient(
        address=settings.vault_address,
        token=settings.vault_token,
        timeout=settings.timeout_seconds,
    )
    auth = AuthInfo(token=settings.operator_token)
    context = build_context(settings, vault)
    registry = RequestRegistry(context)

    try:
        if args.command == "add-policy-request":
            rules = ""
            if args.policy_file is not None:
                rules = args.policy_file.read_text(encoding="utf-8")
            change_id = registry.add(auth, {"Type": "policy", "Name": args.name, "Policy": rules})
            print(change_id)
            return 0

        if args.command == "show-request":
            request = registry.get(auth, args.change_id)
            collected = len(context.unseals.pending(args.change_id))
            print(
                json.dumps(
                    {
                        "change_id": args.change_id,
                        "root_only": registry.is_root_only(request),
                        "approvals": collected,
                        "request": request.to_record(),
                    },
                    indent=2,
                    ensure_ascii=False,
                )
            )
            return 0

        if args.command == "approve-request":
            unseal_key = _read_secret("Unseal key: ")
            progress = registry.approve(auth, args.change_id, unseal_key)
            if progress.applied:
                print(f"Change {progress.change_id} applied")
            else:
                print(f"Approvals: {progress.collected}/{progress.required}")
            return 0

        if args.command == "reject-request":
            registry.remove(auth, args.change_id)
            print(f"Change {args.change_id} rejected")
            return 0

        if args.command == "generate-root":
            if args.shares <= 0:
                parser.error("--shares must be a positive integer")
            shares = [_read_secret(f"Unseal key {i + 1}: ") for i in range(args.shares)]
            print(context.root_tokens.generate_root_token(shares))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ChangeControlError as e:
        if e.security_sensitive:
            logger.critical(
                "A root token may still be live; search for it and revoke it",
                extra={"command": args.command},
                exc_info=True,
            )
            print(str(e), file=sys.stderr)
            return 3
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 1

    except VaultError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 1

    finally:
        vault.close()


if __name__ == "__main__":
    raise SystemExit(main())
