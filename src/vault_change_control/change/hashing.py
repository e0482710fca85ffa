"""Content addressing for change requests.

A change ID is the SHA-256 of the request's canonical JSON form: every declared
field under its persisted name, keys sorted, no insignificant whitespace. The
same ID is recomputed on every read, so a stored request that was edited in
place no longer matches the ID it is stored under.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from pydantic import BaseModel

CHANGE_ID_PATTERN = re.compile(r"[0-9a-f]{64}")


def canonical_fields(request: BaseModel) -> dict[str, Any]:
    """Return the fields covered by the change ID, keyed by persisted name."""

    return request.model_dump(mode="json", by_alias=True)


def canonical_bytes(request: BaseModel) -> bytes:
    return json.dumps(
        canonical_fields(request),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_change_id(request: BaseModel) -> str:
    """Hex digest identifying ``request`` by content."""

    return hashlib.sha256(canonical_bytes(request)).hexdigest()


def is_change_id(value: str) -> bool:
    return bool(CHANGE_ID_PATTERN.fullmatch(value))
