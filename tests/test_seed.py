from __future__ import annotations

import sqlite3

from itemtree.seed import seed_database


def test_seed_course_profile(tmp_path, monkeypatch):
    db_path = tmp_path / "seed.db"
    monkeypatch.setenv("ITEMTREE_DB_PATH", str(db_path))

    summary = seed_database(
        accounts=4,
        roots=3,
        folders=5,
        leaves=10,
        seed=123,
        shortcuts=2,
        shares=6,
        hidden=2,
        public=1,
        recycled=1,
        max_depth=3,
        profile="course",
    )
    assert summary["skipped"] is False
    assert len(summary["accounts"]) == 4
    assert (summary["roots"], summary["folders"], summary["leaves"]) == (3, 5, 10)
    assert summary["recycled"] == 1

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute("SELECT * FROM items").fetchall()
        assert len(rows) == 3 + 5 + 10 + summary["shortcuts"]
        by_id = {row["id"]: row for row in rows}

        roots = [row for row in rows if "." not in row["path"]]
        assert {row["name"] for row in roots} <= {
            "Introduction to Biology",
            "Applied Statistics",
            "History of Science",
            "Creative Writing",
        }
        assert all(row["sort_order"] is None for row in roots)

        for row in rows:
            ids = row["path"].split(".")
            assert ids[-1] == row["id"]
            assert len(ids) <= 3
            if len(ids) > 1:
                parent = by_id[ids[-2]]
                assert parent["item_type"] == "folder"
                assert parent["path"] == ".".join(ids[:-1])
                assert row["sort_order"]

        admins = conn.execute(
            "SELECT COUNT(*) AS c FROM item_memberships WHERE permission = 'admin'"
        ).fetchone()
        assert admins["c"] >= len(roots)
        recycled_roots = conn.execute("SELECT COUNT(*) AS c FROM recycled_item_data").fetchone()
        assert recycled_roots["c"] == 1
    finally:
        conn.close()


def test_seed_skips_populated_database(tmp_path, monkeypatch):
    monkeypatch.setenv("ITEMTREE_DB_PATH", str(tmp_path / "seed.db"))

    first = seed_database(accounts=2, roots=1, folders=1, leaves=1, seed=7)
    assert first["skipped"] is False
    assert seed_database(accounts=2, roots=1, folders=1, leaves=1, seed=7) == {"skipped": True}
