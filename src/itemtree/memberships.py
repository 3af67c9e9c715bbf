from __future__ import annotations

import sqlite3
from uuid import uuid4

from .errors import MembershipConflict, MembershipNotFound
from .models import ItemMembership, now
from .paths import ItemPath
from .schemas import PermissionLevel
from .store import subtree_clause


class MembershipStore:
    """Membership rows, keyed by the path of the item they are attached to."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get(self, membership_id: str) -> ItemMembership:
        row = self.conn.execute(
            "SELECT * FROM item_memberships WHERE id = ?", (membership_id,)
        ).fetchone()
        if row is None:
            raise MembershipNotFound(membership_id)
        return ItemMembership.from_row(row)

    def get_for_account_at(self, account_id: str, item_path: ItemPath) -> ItemMembership | None:
        row = self.conn.execute(
            "SELECT * FROM item_memberships WHERE account_id = ? AND item_path = ?",
            (account_id, item_path.encode()),
        ).fetchone()
        return ItemMembership.from_row(row) if row else None

    def list_at(self, item_path: ItemPath) -> list[ItemMembership]:
        rows = self.conn.execute(
            "SELECT * FROM item_memberships WHERE item_path = ? ORDER BY created_at, id",
            (item_path.encode(),),
        ).fetchall()
        return [ItemMembership.from_row(row) for row in rows]

    def list_for_prefixes(
        self, account_id: str, paths: list[ItemPath]
    ) -> list[ItemMembership]:
        """Rows of ``account_id`` attached to any ancestor-or-self of ``paths``."""
        encoded = sorted({prefix.encode() for path in paths for prefix in path.prefixes()})
        if not encoded:
            return []
        placeholders = ", ".join("?" for _ in encoded)
        rows = self.conn.execute(
            f"""
            SELECT * FROM item_memberships
            WHERE account_id = ? AND item_path IN ({placeholders})
            """,
            (account_id, *encoded),
        ).fetchall()
        return [ItemMembership.from_row(row) for row in rows]

    def list_for_paths(self, paths: list[ItemPath]) -> list[ItemMembership]:
        """Rows of every account attached to exactly one of ``paths``."""
        encoded = sorted({path.encode() for path in paths})
        if not encoded:
            return []
        placeholders = ", ".join("?" for _ in encoded)
        rows = self.conn.execute(
            f"SELECT * FROM item_memberships WHERE item_path IN ({placeholders})",
            tuple(encoded),
        ).fetchall()
        return [ItemMembership.from_row(row) for row in rows]

    def list_below(self, item_path: ItemPath) -> list[ItemMembership]:
        """Rows attached to ``item_path`` or anywhere beneath it."""
        clause, params = subtree_clause("item_path", item_path)
        rows = self.conn.execute(
            f"SELECT * FROM item_memberships WHERE {clause} ORDER BY item_path, account_id",
            params,
        ).fetchall()
        return [ItemMembership.from_row(row) for row in rows]

    def count_admins_covering(self, item_path: ItemPath, *, excluding: str | None = None) -> int:
        """Admin rows on ``item_path`` or any of its ancestors."""
        encoded = [path.encode() for path in item_path.prefixes()]
        placeholders = ", ".join("?" for _ in encoded)
        row = self.conn.execute(
            f"""
            SELECT COUNT(*) FROM item_memberships
            WHERE item_path IN ({placeholders}) AND permission = 'admin' AND id != ?
            """,
            (*encoded, excluding or ""),
        ).fetchone()
        return int(row[0])

    def list_admin_paths(self, account_id: str) -> list[ItemPath]:
        rows = self.conn.execute(
            """
            SELECT item_path FROM item_memberships
            WHERE account_id = ? AND permission = 'admin'
            """,
            (account_id,),
        ).fetchall()
        return [ItemPath.parse(row["item_path"]) for row in rows]

    def add(
        self,
        *,
        account_id: str,
        item_path: ItemPath,
        permission: PermissionLevel,
        creator_id: str | None,
    ) -> ItemMembership:
        if self.get_for_account_at(account_id, item_path) is not None:
            raise MembershipConflict(account_id, item_path.id)
        created_at = now()
        membership = ItemMembership(
            id=str(uuid4()),
            account_id=account_id,
            item_path=item_path,
            permission=permission,
            creator_id=creator_id,
            created_at=created_at,
            updated_at=created_at,
        )
        self.add_many([membership])
        return membership

    def add_many(self, memberships: list[ItemMembership]) -> None:
        self.conn.executemany(
            """
            INSERT INTO item_memberships (
                id,
                account_id,
                item_path,
                permission,
                creator_id,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    m.id,
                    m.account_id,
                    m.item_path.encode(),
                    m.permission,
                    m.creator_id,
                    m.created_at,
                    m.updated_at,
                )
                for m in memberships
            ],
        )

    def update_permission(self, membership_id: str, permission: PermissionLevel) -> ItemMembership:
        cursor = self.conn.execute(
            "UPDATE item_memberships SET permission = ?, updated_at = ? WHERE id = ?",
            (permission, now(), membership_id),
        )
        if cursor.rowcount == 0:
            raise MembershipNotFound(membership_id)
        return self.get(membership_id)

    def delete(self, membership_id: str) -> None:
        cursor = self.conn.execute("DELETE FROM item_memberships WHERE id = ?", (membership_id,))
        if cursor.rowcount == 0:
            raise MembershipNotFound(membership_id)
