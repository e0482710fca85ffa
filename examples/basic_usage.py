#!/usr/bin/env python3
"""Programmatic policy change example.

This demonstrates using the change-control components directly:

* load settings from `.env`
* propose a policy change and print its change ID
* approve it with one unseal share read from stdin

Run it once per key holder; the change is applied when enough shares arrive.
"""

from __future__ import annotations

import argparse
import getpass
from pathlib import Path
from typing import Sequence

from vault_change_control.change.registry import build_registry
from vault_change_control.config import ChangeControlSettings
from vault_change_control.errors import ChangeControlError
from vault_change_control.logging import configure_logging
from vault_change_control.vault.auth import AuthInfo
from vault_change_control.vault.client import VaultClient


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Propose or approve a policy change.")
    parser.add_argument("--name", help="Policy to change (omit when approving)")
    parser.add_argument("--rules", type=Path, help="File with the proposed HCL rules")
    parser.add_argument("--change-id", help="Approve this pending change instead of proposing")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = ChangeControlSettings()
    configure_logging(settings.log_level)

    vault = VaultClient(address=settings.vault_address, token=settings.vault_token)
    registry = build_registry(settings, vault)
    auth = AuthInfo(token=settings.operator_token)

    try:
        if args.change_id:
            progress = registry.approve(auth, args.change_id, getpass.getpass("Unseal key: "))
            print(f"{progress.collected}/{progress.required} approvals, applied={progress.applied}")
            return 0

        rules = args.rules.read_text(encoding="utf-8") if args.rules else ""
        change_id = registry.add(auth, {"Type": "policy", "Name": args.name, "Policy": rules})
        print(f"Change ID: {change_id}")
        return 0
    except ChangeControlError as e:
        print(f"Failed: {e}")
        return 1
    finally:
        vault.close()


if __name__ == "__main__":
    raise SystemExit(main())
