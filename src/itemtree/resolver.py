"""Effective permission and visibility, inherited down the hierarchy.

Permission uses the nearest grant: walking from the item up to the root, the
first path carrying any membership of the account decides, and shallower
grants are ignored. Each lookup is a single query over all the prefixes of
the item's path.
"""

from __future__ import annotations

import sqlite3
from collections import defaultdict

from .errors import AccessDenied
from .memberships import MembershipStore
from .paths import ItemPath
from .schemas import PermissionLevel, VisibilityType, highest_permission, permission_rank
from .visibility import VisibilityStore


def _nearest_level(
    path: ItemPath, levels_by_path: dict[str, list[PermissionLevel]]
) -> PermissionLevel | None:
    for prefix in reversed(path.prefixes()):
        levels = levels_by_path.get(prefix.encode())
        if levels:
            return highest_permission(levels)
    return None


class PermissionResolver:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.memberships = MembershipStore(conn)
        self.visibilities = VisibilityStore(conn)

    def resolve(self, account_id: str | None, item_path: ItemPath) -> PermissionLevel | None:
        return self.resolve_many(account_id, [item_path])[item_path.encode()]

    def resolve_many(
        self, account_id: str | None, paths: list[ItemPath]
    ) -> dict[str, PermissionLevel | None]:
        """Resolve several paths with one query, keyed by encoded path."""
        if account_id is None:
            return {path.encode(): None for path in paths}
        levels_by_path: dict[str, list[PermissionLevel]] = defaultdict(list)
        for membership in self.memberships.list_for_prefixes(account_id, paths):
            levels_by_path[membership.item_path.encode()].append(membership.permission)
        return {path.encode(): _nearest_level(path, levels_by_path) for path in paths}

    def resolve_visibility(self, item_path: ItemPath) -> set[VisibilityType]:
        return self.resolve_visibility_many([item_path])[item_path.encode()]

    def resolve_visibility_many(self, paths: list[ItemPath]) -> dict[str, set[VisibilityType]]:
        # A flag set on any ancestor-or-self applies; a descendant cannot clear it.
        types_by_path: dict[str, set[VisibilityType]] = defaultdict(set)
        for visibility in self.visibilities.list_for_prefixes(paths):
            types_by_path[visibility.item_path.encode()].add(visibility.type)
        result: dict[str, set[VisibilityType]] = {}
        for path in paths:
            effective: set[VisibilityType] = set()
            for prefix in path.prefixes():
                effective |= types_by_path.get(prefix.encode(), set())
            result[path.encode()] = effective
        return result

    def assert_permission(
        self, account_id: str | None, item_path: ItemPath, required: PermissionLevel
    ) -> PermissionLevel:
        level = self.resolve(account_id, item_path)
        if level is None or permission_rank(level) < permission_rank(required):
            raise AccessDenied(item_path.id, required)
        return level
