from __future__ import annotations

import sqlite3
from collections import defaultdict, deque
from typing import Any, Iterable

from .errors import ItemNotFound
from .models import Item, json_dumps, now
from .paths import ItemPath, depth, descendant_range
from .schemas import ItemType


def subtree_clause(
    column: str, path: ItemPath, *, include_self: bool = True
) -> tuple[str, tuple[str, ...]]:
    """SQL condition matching ``path`` (optionally) and every path below it.

    Expressed as a range on the encoded path so an index on the column serves it.
    """
    low, high = descendant_range(path)
    if include_self:
        return f"({column} = ? OR ({column} >= ? AND {column} < ?))", (path.encode(), low, high)
    return f"({column} >= ? AND {column} < ?)", (low, high)


def _sibling_sort_key(item: Item) -> tuple[bool, str, str, str]:
    # Missing keys sort last; created_at then id break any tie.
    return (item.order is None, item.order or "", item.created_at, item.id)


def sort_for_tree(items: Iterable[Item], root: ItemPath) -> list[Item]:
    """Order items breadth first below ``root``: by depth, then sibling order."""
    by_parent: dict[str | None, list[Item]] = defaultdict(list)
    pool = list(items)
    for item in pool:
        by_parent[item.parent_id].append(item)
    for siblings in by_parent.values():
        siblings.sort(key=_sibling_sort_key)

    ordered: list[Item] = []
    seen: set[str] = set()
    queue: deque[str] = deque()
    root_item = next((item for item in pool if item.id == root.id), None)
    if root_item is not None:
        ordered.append(root_item)
        seen.add(root_item.id)
    queue.append(root.id)
    while queue:
        parent_id = queue.popleft()
        for child in by_parent.get(parent_id, []):
            if child.id in seen:
                continue
            seen.add(child.id)
            ordered.append(child)
            queue.append(child.id)

    # Rows whose parent is missing from the result go last, by depth.
    leftovers = [item for item in pool if item.id not in seen]
    leftovers.sort(key=lambda item: (depth(item.path), _sibling_sort_key(item)))
    return ordered + leftovers


class ItemStore:
    """Item rows and the path-prefix queries everything else is built on."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def _select(self, where: str, params: Iterable[Any], suffix: str = "") -> list[Item]:
        rows = self.conn.execute(f"SELECT * FROM items WHERE {where}{suffix}", tuple(params))
        return [Item.from_row(row) for row in rows.fetchall()]

    def get_by_id(self, item_id: str, *, include_recycled: bool = False) -> Item:
        row = self.conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        if row is None or (row["deleted_at"] is not None and not include_recycled):
            raise ItemNotFound(item_id)
        return Item.from_row(row)

    def find(self, item_id: str, *, include_recycled: bool = False) -> Item | None:
        try:
            return self.get_by_id(item_id, include_recycled=include_recycled)
        except ItemNotFound:
            return None

    def get_many(self, ids: list[str], *, include_recycled: bool = False) -> dict[str, Item]:
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        where = f"id IN ({placeholders})"
        if not include_recycled:
            where += " AND deleted_at IS NULL"
        return {item.id: item for item in self._select(where, ids)}

    def get_descendants(
        self,
        path: ItemPath,
        *,
        include_recycled: bool = False,
        types: Iterable[ItemType] | None = None,
        ordered: bool = True,
        include_self: bool = False,
    ) -> list[Item]:
        clause, params = subtree_clause("path", path, include_self=include_self)
        if not include_recycled:
            clause += " AND deleted_at IS NULL"
        items = self._select(clause, params, " ORDER BY path")
        if ordered:
            items = sort_for_tree(items, path)
        if types is not None:
            wanted = set(types)
            items = [item for item in items if item.type in wanted]
        return items

    def get_children(self, path: ItemPath, *, include_recycled: bool = False) -> list[Item]:
        clause, params = subtree_clause("path", path, include_self=False)
        clause += " AND instr(substr(path, ?), '.') = 0"
        all_params = (*params, len(path.encode()) + 2)
        if not include_recycled:
            clause += " AND deleted_at IS NULL"
        children = self._select(clause, all_params)
        children.sort(key=_sibling_sort_key)
        return children

    def children_names(self, path: ItemPath) -> list[str]:
        return [child.name for child in self.get_children(path)]

    def get_ancestor_chain(self, path: ItemPath, *, include_recycled: bool = True) -> list[Item]:
        """Ancestors of ``path`` and the item itself, root first, in one lookup."""
        encoded = [prefix.encode() for prefix in path.prefixes()]
        placeholders = ", ".join("?" for _ in encoded)
        where = f"path IN ({placeholders})"
        if not include_recycled:
            where += " AND deleted_at IS NULL"
        items = self._select(where, encoded)
        items.sort(key=lambda item: depth(item.path))
        return items

    def count_descendants(self, path: ItemPath) -> int:
        clause, params = subtree_clause("path", path, include_self=False)
        row = self.conn.execute(f"SELECT COUNT(*) FROM items WHERE {clause}", params).fetchone()
        return int(row[0])

    def levels_below(self, path: ItemPath) -> int:
        """Number of levels between ``path`` and its deepest descendant."""
        clause, params = subtree_clause("path", path, include_self=False)
        row = self.conn.execute(
            f"SELECT MAX(length(path) - length(replace(path, '.', ''))) FROM items WHERE {clause}",
            params,
        ).fetchone()
        if row[0] is None:
            return 0
        return int(row[0]) + 1 - depth(path)

    def insert(self, item: Item) -> Item:
        self.insert_many([item])
        return item

    def insert_many(self, items: list[Item]) -> None:
        self.conn.executemany(
            """
            INSERT INTO items (
                id,
                path,
                name,
                description,
                item_type,
                extra_json,
                sort_order,
                creator_id,
                created_at,
                updated_at,
                deleted_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    item.id,
                    item.path.encode(),
                    item.name,
                    item.description,
                    item.type,
                    json_dumps(item.extra),
                    item.order,
                    item.creator_id,
                    item.created_at,
                    item.updated_at,
                    item.deleted_at,
                )
                for item in items
            ],
        )

    def update_path(self, item_id: str, new_path: ItemPath) -> None:
        self.conn.execute(
            "UPDATE items SET path = ?, updated_at = ? WHERE id = ?",
            (new_path.encode(), now(), item_id),
        )

    def update_order(self, item_id: str, order: str | None) -> None:
        self.conn.execute(
            "UPDATE items SET sort_order = ?, updated_at = ? WHERE id = ?",
            (order, now(), item_id),
        )

    def update_orders(self, orders: list[tuple[str, str]]) -> None:
        self.conn.executemany(
            "UPDATE items SET sort_order = ? WHERE id = ?",
            [(order, item_id) for item_id, order in orders],
        )

    def update_properties(
        self,
        item_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Item:
        assignments: list[str] = []
        params: list[Any] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if extra is not None:
            assignments.append("extra_json = ?")
            params.append(json_dumps(extra))
        if not assignments:
            raise ValueError("Nothing to update")
        assignments.append("updated_at = ?")
        params.append(now())
        self.conn.execute(
            f"UPDATE items SET {', '.join(assignments)} WHERE id = ?",
            (*params, item_id),
        )
        return self.get_by_id(item_id)

    def rewrite_descendant_paths(self, old_prefix: ItemPath, new_prefix: ItemPath) -> int:
        """Re-root ``old_prefix`` and its subtree under ``new_prefix`` in one statement.

        Membership and visibility rows follow through their cascading foreign key.
        """
        clause, params = subtree_clause("path", old_prefix)
        cursor = self.conn.execute(
            f"UPDATE items SET path = ? || substr(path, ?) WHERE {clause}",
            (new_prefix.encode(), len(old_prefix.encode()) + 1, *params),
        )
        return cursor.rowcount

    def mark_recycled(self, path: ItemPath, deleted_at: str) -> int:
        clause, params = subtree_clause("path", path)
        cursor = self.conn.execute(
            f"UPDATE items SET deleted_at = ? WHERE {clause}",
            (deleted_at, *params),
        )
        return cursor.rowcount

    def clear_recycled(self, path: ItemPath) -> int:
        clause, params = subtree_clause("path", path)
        cursor = self.conn.execute(
            f"UPDATE items SET deleted_at = NULL WHERE {clause} AND deleted_at IS NOT NULL",
            params,
        )
        return cursor.rowcount
