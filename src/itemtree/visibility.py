from __future__ import annotations

import sqlite3
from uuid import uuid4

from .models import ItemVisibility, now
from .paths import ItemPath
from .schemas import VisibilityType
from .store import subtree_clause


class VisibilityStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def list_for_prefixes(self, paths: list[ItemPath]) -> list[ItemVisibility]:
        encoded = sorted({prefix.encode() for path in paths for prefix in path.prefixes()})
        if not encoded:
            return []
        placeholders = ", ".join("?" for _ in encoded)
        rows = self.conn.execute(
            f"SELECT * FROM item_visibilities WHERE item_path IN ({placeholders})",
            tuple(encoded),
        ).fetchall()
        return [ItemVisibility.from_row(row) for row in rows]

    def list_at(self, item_path: ItemPath) -> list[ItemVisibility]:
        rows = self.conn.execute(
            "SELECT * FROM item_visibilities WHERE item_path = ? ORDER BY created_at, id",
            (item_path.encode(),),
        ).fetchall()
        return [ItemVisibility.from_row(row) for row in rows]

    def list_below(self, item_path: ItemPath) -> list[ItemVisibility]:
        clause, params = subtree_clause("item_path", item_path)
        rows = self.conn.execute(
            f"SELECT * FROM item_visibilities WHERE {clause} ORDER BY item_path",
            params,
        ).fetchall()
        return [ItemVisibility.from_row(row) for row in rows]

    def nearest(
        self, item_path: ItemPath, visibility_type: VisibilityType
    ) -> ItemVisibility | None:
        """The closest ancestor-or-self row of the given type."""
        rows = [v for v in self.list_for_prefixes([item_path]) if v.type == visibility_type]
        if not rows:
            return None
        return max(rows, key=lambda v: len(v.item_path))

    def add(
        self, *, item_path: ItemPath, visibility_type: VisibilityType, creator_id: str | None
    ) -> ItemVisibility:
        visibility = ItemVisibility(
            id=str(uuid4()),
            item_path=item_path,
            type=visibility_type,
            creator_id=creator_id,
            created_at=now(),
        )
        self.add_many([visibility])
        return visibility

    def add_many(self, visibilities: list[ItemVisibility]) -> None:
        self.conn.executemany(
            """
            INSERT INTO item_visibilities (id, item_path, visibility_type, creator_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (v.id, v.item_path.encode(), v.type, v.creator_id, v.created_at)
                for v in visibilities
            ],
        )

    def delete_below(self, item_path: ItemPath, visibility_type: VisibilityType) -> int:
        clause, params = subtree_clause("item_path", item_path)
        cursor = self.conn.execute(
            f"DELETE FROM item_visibilities WHERE {clause} AND visibility_type = ?",
            (*params, visibility_type),
        )
        return cursor.rowcount
