from __future__ import annotations

from itemtree.db import get_connection, init_db, transaction
from itemtree.memberships import MembershipStore
from itemtree.models import Item, now
from itemtree.paths import ItemPath
from itemtree.recycled import RecycledStore
from itemtree.store import ItemStore


def _open(tmp_path, monkeypatch):
    monkeypatch.setenv("ITEMTREE_DB_PATH", str(tmp_path / "store.db"))
    init_db()
    return get_connection()


def _item(raw_path: str, order: str | None = None, item_type: str = "folder") -> Item:
    stamp = now()
    path = ItemPath.parse(raw_path)
    return Item(
        id=path.id,
        path=path,
        name=path.id.upper(),
        type=item_type,  # type: ignore[arg-type]
        order=order,
        created_at=stamp,
        updated_at=stamp,
    )


def test_descendant_queries_do_not_leak_across_id_prefixes(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        store.insert_many(
            [
                _item("1"),
                _item("1.2", "V"),
                _item("1.2.5", "V"),
                _item("12"),
                _item("12.3", "V"),
                _item("123"),
            ]
        )
        descendants = store.get_descendants(ItemPath.parse("1"))
        assert [item.id for item in descendants] == ["2", "5"]
        assert [item.id for item in store.get_children(ItemPath.parse("1"))] == ["2"]
        assert store.count_descendants(ItemPath.parse("12")) == 1
        assert store.levels_below(ItemPath.parse("1")) == 2
        assert store.levels_below(ItemPath.parse("123")) == 0


def test_children_and_descendants_follow_order_keys(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        store.insert_many(
            [
                _item("r"),
                _item("r.b", "k"),
                _item("r.a", "V"),
                _item("r.a.z", "k"),
                _item("r.a.y", "V"),
                _item("r.c", "s"),
            ]
        )
        children = store.get_children(ItemPath.parse("r"))
        assert [child.id for child in children] == ["a", "b", "c"]
        ordered = store.get_descendants(ItemPath.parse("r"), include_self=True)
        assert [item.id for item in ordered] == ["r", "a", "b", "c", "y", "z"]
        documents = store.get_descendants(ItemPath.parse("r"), types=["document"])
        assert documents == []


def test_ancestor_chain_is_root_first(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        store.insert_many([_item("a"), _item("a.b", "V"), _item("a.b.c", "V")])
        chain = store.get_ancestor_chain(ItemPath.parse("a.b.c"))
        assert [item.id for item in chain] == ["a", "b", "c"]


def test_rewrite_descendant_paths_carries_memberships(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        memberships = MembershipStore(conn)
        with transaction(conn):
            store.insert_many(
                [_item("a"), _item("a.b", "V"), _item("a.b.c", "V"), _item("x")]
            )
            memberships.add(
                account_id="u1",
                item_path=ItemPath.parse("a.b.c"),
                permission="read",
                creator_id="u0",
            )
        with transaction(conn):
            changed = store.rewrite_descendant_paths(
                ItemPath.parse("a.b"), ItemPath.parse("x.b")
            )
        assert changed == 2
        assert store.get_by_id("c").path.encode() == "x.b.c"
        (moved,) = memberships.list_below(ItemPath.parse("x"))
        assert moved.item_path.encode() == "x.b.c"
        assert memberships.list_below(ItemPath.parse("a")) == []


def test_recycle_marks_and_clears_whole_subtree(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        recycled = RecycledStore(conn)
        with transaction(conn):
            store.insert_many(
                [_item("a"), _item("a.b", "V"), _item("a.b.c", "V"), _item("a.d", "k")]
            )
            store.mark_recycled(ItemPath.parse("a.b"), "2024-01-01T00:00:00+00:00")
            recycled.add("b", "u1")
            assert store.mark_recycled(ItemPath.parse("a"), "2024-02-01T00:00:00+00:00") == 4
            assert recycled.delete_below(ItemPath.parse("a")) == 1
            recycled.add("a", "u1")

        assert store.get_by_id("c", include_recycled=True).deleted_at.startswith("2024-02")
        assert recycled.get_for_item("b") is None
        assert recycled.count() == 1

        with transaction(conn):
            assert store.clear_recycled(ItemPath.parse("a")) == 4
            recycled.delete_for_item("a")
        assert [item.id for item in store.get_descendants(ItemPath.parse("a"))] == [
            "b",
            "d",
            "c",
        ]
        assert recycled.count() == 0


def test_delete_below_keeps_the_root_row(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        recycled = RecycledStore(conn)
        store.insert_many([_item("a"), _item("a.b", "V"), _item("ab")])
        recycled.add("a", "u1")
        recycled.add("b", "u1")
        recycled.add("ab", "u1")

        assert recycled.delete_below(ItemPath.parse("a")) == 1
        assert recycled.get_for_item("a") is not None
        assert recycled.get_for_item("ab") is not None


def test_update_properties(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        store = ItemStore(conn)
        store.insert(_item("a"))
        updated = store.update_properties("a", name="Renamed", extra={"k": 1})
        assert updated.name == "Renamed"
        assert updated.extra == {"k": 1}
        assert store.get_many(["a", "missing"]).keys() == {"a"}
