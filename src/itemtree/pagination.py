from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Mapping

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


@dataclass(frozen=True)
class Cursor:
    """Keyset position: the (created_at, id) of the last row already returned."""

    created_at: str
    id: str


def parse_limit(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError("limit must be an integer") from exc
    if value < 1 or value > MAX_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_LIMIT}")
    return value


def encode_cursor(cursor: Cursor) -> str:
    payload = json.dumps(
        {"created_at": cursor.created_at, "id": cursor.id},
        separators=(",", ":"),
    ).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_cursor(raw: str) -> Cursor:
    raw = raw.strip()
    if not raw:
        raise ValueError("cursor must be a non-empty string")
    padded = raw + "=" * ((4 - (len(raw) % 4)) % 4)
    try:
        obj = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("cursor is invalid") from exc
    if not isinstance(obj, dict):
        raise ValueError("cursor is invalid")
    created_at = obj.get("created_at")
    row_id = obj.get("id")
    if not isinstance(created_at, str) or not created_at:
        raise ValueError("cursor is invalid")
    if not isinstance(row_id, str) or not row_id:
        raise ValueError("cursor is invalid")
    return Cursor(created_at=created_at, id=row_id)


def page_args(args: Mapping[str, str]) -> tuple[int, Cursor | None]:
    """Read ``limit`` and ``cursor`` query arguments, defaulting the limit."""
    limit = parse_limit(args.get("limit")) or DEFAULT_LIMIT
    raw_cursor = args.get("cursor")
    cursor = decode_cursor(raw_cursor) if raw_cursor else None
    return limit, cursor
