from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator
from uuid import uuid4

from .config import db_path, db_timeout


def _connect() -> sqlite3.Connection:
    # Autocommit mode: transactions are opened explicitly by transaction().
    conn = sqlite3.connect(db_path(), timeout=db_timeout(), isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db() -> None:
    with get_connection() as conn:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                description TEXT,
                item_type TEXT NOT NULL,
                extra_json TEXT NOT NULL DEFAULT '{}',
                sort_order TEXT,
                creator_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                deleted_at TEXT
            );
            CREATE TABLE IF NOT EXISTS item_memberships (
                id TEXT PRIMARY KEY,
                account_id TEXT NOT NULL,
                item_path TEXT NOT NULL,
                permission TEXT NOT NULL,
                creator_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(account_id, item_path),
                FOREIGN KEY(item_path) REFERENCES items(path)
                    ON UPDATE CASCADE ON DELETE CASCADE
            );
            CREATE TABLE IF NOT EXISTS item_visibilities (
                id TEXT PRIMARY KEY,
                item_path TEXT NOT NULL,
                visibility_type TEXT NOT NULL,
                creator_id TEXT,
                created_at TEXT NOT NULL,
                UNIQUE(item_path, visibility_type),
                FOREIGN KEY(item_path) REFERENCES items(path)
                    ON UPDATE CASCADE ON DELETE CASCADE
            );
            CREATE TABLE IF NOT EXISTS recycled_item_data (
                id TEXT PRIMARY KEY,
                item_id TEXT NOT NULL UNIQUE,
                creator_id TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_items_deleted ON items(deleted_at);
            CREATE INDEX IF NOT EXISTS idx_memberships_path ON item_memberships(item_path);
            CREATE INDEX IF NOT EXISTS idx_memberships_account
            ON item_memberships(account_id, permission);
            CREATE INDEX IF NOT EXISTS idx_recycled_created
            ON recycled_item_data(created_at, id);
            """
        )


@contextmanager
def get_connection() -> Iterator[sqlite3.Connection]:
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the body atomically: commit on success, roll back on any exception.

    The outermost call takes the write lock up front (BEGIN IMMEDIATE) so reads
    made inside the body stay valid until commit. Nested calls use savepoints.
    """
    if conn.in_transaction:
        name = f"sp_{uuid4().hex}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
