from __future__ import annotations

import sqlite3
from typing import Any
from uuid import uuid4

from .models import Item, RecycledItemData, now
from .pagination import Cursor, encode_cursor
from .paths import ItemPath
from .store import subtree_clause


class RecycledStore:
    """Pointer rows marking the root of each recycled subtree."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_for_item(self, item_id: str) -> RecycledItemData | None:
        row = self.conn.execute(
            "SELECT * FROM recycled_item_data WHERE item_id = ?", (item_id,)
        ).fetchone()
        return RecycledItemData.from_row(row) if row else None

    def add(self, item_id: str, creator_id: str | None) -> RecycledItemData:
        data = RecycledItemData(
            id=str(uuid4()), item_id=item_id, creator_id=creator_id, created_at=now()
        )
        self.conn.execute(
            """
            INSERT INTO recycled_item_data (id, item_id, creator_id, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (data.id, data.item_id, data.creator_id, data.created_at),
        )
        return data

    def delete_for_item(self, item_id: str) -> int:
        cursor = self.conn.execute("DELETE FROM recycled_item_data WHERE item_id = ?", (item_id,))
        return cursor.rowcount

    def delete_below(self, path: ItemPath) -> int:
        """Drop rows of items strictly below ``path``."""
        clause, params = subtree_clause("path", path, include_self=False)
        cursor = self.conn.execute(
            f"""
            DELETE FROM recycled_item_data
            WHERE item_id IN (SELECT id FROM items WHERE {clause})
            """,
            params,
        )
        return cursor.rowcount

    def count(self) -> int:
        return int(self.conn.execute("SELECT COUNT(*) FROM recycled_item_data").fetchone()[0])

    def list_under(
        self,
        admin_paths: list[ItemPath],
        *,
        limit: int | None,
        cursor: Cursor | None,
    ) -> tuple[list[tuple[RecycledItemData, Item]], str | None]:
        """Recycle roots lying at or below any of ``admin_paths``, newest first."""
        if not admin_paths:
            return [], None
        scopes: list[str] = []
        params: list[Any] = []
        for path in admin_paths:
            clause, clause_params = subtree_clause("i.path", path)
            scopes.append(clause)
            params.extend(clause_params)
        where = [f"({' OR '.join(scopes)})"]
        if cursor is not None:
            where.append("(r.created_at < ? OR (r.created_at = ? AND r.id < ?))")
            params.extend([cursor.created_at, cursor.created_at, cursor.id])
        sql = f"""
            SELECT
                r.id AS r_id,
                r.item_id AS r_item_id,
                r.creator_id AS r_creator_id,
                r.created_at AS r_created_at,
                i.*
            FROM recycled_item_data r
            JOIN items i ON i.id = r.item_id
            WHERE {' AND '.join(where)}
            ORDER BY r.created_at DESC, r.id DESC
        """
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit + 1)
        rows = self.conn.execute(sql, tuple(params)).fetchall()

        next_cursor = None
        if limit is not None and len(rows) > limit:
            last = rows[limit - 1]
            next_cursor = encode_cursor(Cursor(created_at=last["r_created_at"], id=last["r_id"]))
            rows = rows[:limit]
        return [
            (
                RecycledItemData(
                    id=row["r_id"],
                    item_id=row["r_item_id"],
                    creator_id=row["r_creator_id"],
                    created_at=row["r_created_at"],
                ),
                Item.from_row(row),
            )
            for row in rows
        ], next_cursor
