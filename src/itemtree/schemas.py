from __future__ import annotations

from typing import Literal

ItemType = Literal["folder", "document", "file", "link", "app", "shortcut"]
PermissionLevel = Literal["read", "write", "admin"]
VisibilityType = Literal["hidden", "public"]

VALID_ITEM_TYPES: set[ItemType] = {"folder", "document", "file", "link", "app", "shortcut"}
VALID_PERMISSIONS: set[PermissionLevel] = {"read", "write", "admin"}
VALID_VISIBILITY_TYPES: set[VisibilityType] = {"hidden", "public"}

# admin > write > read; a missing permission ranks below read.
PERMISSION_RANK: dict[PermissionLevel, int] = {"read": 1, "write": 2, "admin": 3}


def permission_rank(level: PermissionLevel | None) -> int:
    if level is None:
        return 0
    return PERMISSION_RANK[level]


def highest_permission(levels: list[PermissionLevel]) -> PermissionLevel | None:
    best: PermissionLevel | None = None
    for level in levels:
        if permission_rank(level) > permission_rank(best):
            best = level
    return best


def parse_item_type(value: str) -> ItemType:
    if value not in VALID_ITEM_TYPES:
        raise ValueError("type must be one of " + ", ".join(sorted(VALID_ITEM_TYPES)))
    return value  # type: ignore[return-value]


def parse_permission(value: str) -> PermissionLevel:
    if value not in VALID_PERMISSIONS:
        raise ValueError("permission must be read, write, or admin")
    return value  # type: ignore[return-value]


def parse_visibility_type(value: str) -> VisibilityType:
    if value not in VALID_VISIBILITY_TYPES:
        raise ValueError("visibility type must be hidden or public")
    return value  # type: ignore[return-value]


MAX_ITEM_NAME_LENGTH = 500


def parse_item_name(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("name is required")
    name = value.strip()
    if len(name) > MAX_ITEM_NAME_LENGTH:
        raise ValueError(f"name must be at most {MAX_ITEM_NAME_LENGTH} characters")
    return name
