from __future__ import annotations

import sqlite3

from .errors import AccessDenied, ItemTreeError
from .models import Item
from .resolver import PermissionResolver
from .schemas import PermissionLevel, VisibilityType, permission_rank
from .store import ItemStore


def effective_permission(
    level: PermissionLevel | None, visibility: set[VisibilityType]
) -> PermissionLevel | None:
    """Combine a resolved membership level with the item's visibility flags.

    Public lends Read to anyone. Hidden hides the item from everyone below
    Write, including readers who only reach it through Public.
    """
    if level is None and "public" in visibility:
        level = "read"
    if "hidden" in visibility and permission_rank(level) < permission_rank("write"):
        return None
    return level


class AuthorizationGate:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.items = ItemStore(conn)
        self.resolver = PermissionResolver(conn)

    def authorize(
        self, account_id: str | None, item: Item, required: PermissionLevel
    ) -> PermissionLevel:
        level = effective_permission(
            self.resolver.resolve(account_id, item.path),
            self.resolver.resolve_visibility(item.path),
        )
        if level is None or permission_rank(level) < permission_rank(required):
            raise AccessDenied(item.id, required)
        return level

    def authorize_item(
        self,
        account_id: str | None,
        item_id: str,
        required: PermissionLevel,
        *,
        include_recycled: bool = False,
    ) -> Item:
        item = self.items.get_by_id(item_id, include_recycled=include_recycled)
        self.authorize(account_id, item, required)
        return item

    def authorize_many(
        self, account_id: str | None, items: list[Item], required: PermissionLevel
    ) -> tuple[list[Item], dict[str, ItemTreeError]]:
        """Split ``items`` into allowed ones and per-id failures, in one round-trip."""
        paths = [item.path for item in items]
        levels = self.resolver.resolve_many(account_id, paths)
        visibilities = self.resolver.resolve_visibility_many(paths)
        allowed: list[Item] = []
        failures: dict[str, ItemTreeError] = {}
        for item in items:
            key = item.path.encode()
            level = effective_permission(levels[key], visibilities[key])
            if permission_rank(level) < permission_rank(required):
                failures[item.id] = AccessDenied(item.id, required)
            else:
                allowed.append(item)
        return allowed, failures

    def filter_visible(self, account_id: str | None, items: list[Item]) -> list[Item]:
        allowed, _ = self.authorize_many(account_id, items, "read")
        return allowed
