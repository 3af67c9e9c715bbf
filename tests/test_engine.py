from __future__ import annotations

import sqlite3
import threading

from itemtree.db import get_connection, init_db
from itemtree.engine import Limits, copy_name
from itemtree.events import CollectingEventSink, Failure, Success
from itemtree.memberships import MembershipStore
from itemtree.paths import ItemPath, is_descendant_of
from itemtree.recycled import RecycledStore
from itemtree.rescale import RescaleQueue
from itemtree.service import ItemService
from itemtree.sharing import SharingService
from itemtree.visibility import VisibilityStore


def _open(tmp_path, monkeypatch):
    monkeypatch.setenv("ITEMTREE_DB_PATH", str(tmp_path / "engine.db"))
    init_db()
    return get_connection()


def _service(conn, limits: Limits | None = None) -> tuple[ItemService, CollectingEventSink]:
    sink = CollectingEventSink()
    return ItemService(conn, limits=limits or Limits(), events=sink), sink


def _build(service: ItemService, actor: str = "owner") -> dict[str, str]:
    """A: [B: [C: [D], E], F]   X: []"""
    ids: dict[str, str] = {}
    ids["A"] = service.create(actor, name="A").id
    ids["B"] = service.create(actor, name="B", parent_id=ids["A"]).id
    ids["C"] = service.create(actor, name="C", parent_id=ids["B"]).id
    ids["D"] = service.create(actor, name="D", item_type="document", parent_id=ids["C"]).id
    ids["E"] = service.create(actor, name="E", item_type="document", parent_id=ids["B"]).id
    ids["F"] = service.create(actor, name="F", parent_id=ids["A"]).id
    ids["X"] = service.create(actor, name="X").id
    return ids


def _snapshot(conn) -> dict[str, list[tuple]]:
    return {
        "items": [
            tuple(row)
            for row in conn.execute(
                "SELECT id, path, sort_order, deleted_at FROM items ORDER BY id"
            ).fetchall()
        ],
        "memberships": [
            tuple(row)
            for row in conn.execute(
                "SELECT account_id, item_path, permission FROM item_memberships ORDER BY id"
            ).fetchall()
        ],
        "visibilities": [
            tuple(row)
            for row in conn.execute(
                "SELECT item_path, visibility_type FROM item_visibilities ORDER BY id"
            ).fetchall()
        ],
    }


def test_move_keeps_descendant_set(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, sink = _service(conn)
        ids = _build(service)
        before = {item.id for item in service.get_descendants("owner", ids["B"])}

        result = service.engine.move("owner", ids["B"], ids["X"])

        assert result.ok
        (moved,) = result.succeeded
        assert moved.path.encode() == f"{ids['X']}.{ids['B']}"
        descendants = service.items.get_descendants(moved.path)
        assert {item.id for item in descendants} == before
        assert len(descendants) == len(before)
        for item in descendants:
            assert is_descendant_of(item.path, moved.path)
            assert item.path.ids[: len(moved.path)] == moved.path.ids
        assert [child.id for child in service.get_children("owner", ids["A"])] == [ids["F"]]
        assert sink.for_operation("move")[0].outcome == Success(moved)


def test_move_into_itself_or_descendant_is_cyclic(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        for destination in (ids["B"], ids["C"]):
            result = service.engine.move("owner", ids["B"], destination)
            assert [failure.kind for failure in result.failed] == ["InvalidMoveCyclic"]
        assert service.items.get_by_id(ids["B"]).parent_id == ids["A"]


def test_move_validations(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        same_parent = service.engine.move("owner", ids["C"], ids["B"])
        assert same_parent.failed[0].kind == "InvalidMoveTarget"
        into_document = service.engine.move("owner", ids["F"], ids["E"])
        assert into_document.failed[0].kind == "ItemNotFolder"
        stranger = service.engine.move("stranger", ids["F"], ids["X"])
        assert stranger.failed[0].kind == "AccessDenied"
        missing = service.engine.move("owner", "missing", ids["X"])
        assert missing.failed[0].kind == "ItemNotFound"


def test_move_limits(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn, Limits(max_descendants_for_move=2, max_tree_levels=4))
        ids = _build(service)
        too_many = service.engine.move("owner", ids["B"], ids["X"])
        assert too_many.failed[0].kind == "TooManyDescendants"
        g = service.create("owner", name="G", parent_id=ids["F"])
        too_deep = service.engine.move("owner", ids["C"], g.id)
        assert too_deep.failed[0].kind == "HierarchyTooDeep"


def test_memberships_follow_a_move(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        sharing = SharingService(conn)
        ids = _build(service)
        sharing.grant("owner", ids["C"], "reader", "read")
        sharing.set_visibility("owner", ids["C"], "hidden")

        service.engine.move("owner", ids["B"], ids["X"])

        d = service.items.get_by_id(ids["D"])
        assert service.engine.gate.resolver.resolve("reader", d.path) == "read"
        assert "hidden" in service.engine.gate.resolver.resolve_visibility(d.path)
        (membership,) = MembershipStore(conn).list_below(ItemPath.parse(ids["X"]))[1:]
        assert membership.item_path.ids[0] == ids["X"]


def test_move_to_root_keeps_actor_in_control(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        result = service.engine.move("owner", ids["C"], None)
        (moved,) = result.succeeded
        assert moved.path.is_root
        assert moved.order is None
        membership = MembershipStore(conn).get_for_account_at("owner", moved.path)
        assert membership is not None and membership.permission == "admin"


def test_move_after_previous_sibling(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        service.engine.move("owner", ids["E"], ids["A"], previous_sibling_id=ids["B"])
        children = service.get_children("owner", ids["A"])
        assert [child.id for child in children] == [ids["B"], ids["E"], ids["F"]]


def test_copy_produces_disjoint_subtree(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        sharing = SharingService(conn)
        ids = _build(service)
        sharing.grant("owner", ids["B"], "reader", "read")
        sharing.grant("owner", ids["C"], "editor", "write")
        sharing.set_visibility("owner", ids["C"], "hidden")
        sharing.set_visibility("owner", ids["E"], "public")
        shortcut = service.create(
            "owner",
            name="Link to D",
            item_type="shortcut",
            parent_id=ids["B"],
            extra={"shortcut": {"target": ids["D"]}},
        )

        result = service.engine.copy("owner", ids["B"], ids["X"])

        (root,) = result.succeeded
        assert root.name == "B (2)"
        assert root.parent_id == ids["X"]
        originals = service.items.get_descendants(
            service.items.get_by_id(ids["B"]).path, include_self=True
        )
        copies = service.items.get_descendants(root.path, include_self=True)
        assert len(copies) == len(originals)
        assert not {item.id for item in copies} & {item.id for item in originals}
        assert [item.name for item in copies[1:]] == [item.name for item in originals[1:]]

        copied_d = next(item for item in copies if item.name == "D")
        copied_shortcut = next(item for item in copies if item.name == shortcut.name)
        assert copied_shortcut.extra == {"shortcut": {"target": copied_d.id}}

        memberships = MembershipStore(conn)
        original_grants = sorted(
            (m.account_id, m.permission, len(m.item_path))
            for m in memberships.list_below(originals[0].path)
        )
        copied_grants = sorted(
            (m.account_id, m.permission, len(m.item_path))
            for m in memberships.list_below(root.path)
            if m.account_id != "owner"
        )
        assert copied_grants == original_grants
        assert memberships.get_for_account_at("owner", root.path).permission == "admin"
        assert {m.creator_id for m in memberships.list_below(root.path)} == {"owner"}

        copied_flags = {
            (v.item_path.id, v.type) for v in VisibilityStore(conn).list_below(root.path)
        }
        copied_c = next(item for item in copies if item.name == "C")
        assert copied_flags == {(copied_c.id, "hidden")}


def test_copy_names_increment():
    assert copy_name("Report") == "Report (2)"
    assert copy_name("Report (2)") == "Report (3)"
    assert copy_name("Report (9)") == "Report (10)"
    assert len(copy_name("x" * 500)) == 500


def test_copy_is_all_or_nothing(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        count = conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

        def broken(rows):
            raise sqlite3.IntegrityError("boom")

        monkeypatch.setattr(service.engine.memberships, "add_many", broken)
        result = service.engine.copy("owner", ids["A"], None)

        assert result.failed[0].kind == "CopyAborted"
        assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == count


def test_recycle_then_restore_reproduces_prior_state(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        sharing = SharingService(conn)
        ids = _build(service)
        sharing.grant("owner", ids["B"], "reader", "read")
        sharing.set_visibility("owner", ids["C"], "hidden")
        before = _snapshot(conn)
        recycled = RecycledStore(conn)

        result = service.engine.recycle("owner", ids["A"])
        assert result.ok
        b = service.items.get_by_id(ids["B"], include_recycled=True)
        assert b.deleted_at is not None
        assert recycled.count() == 1
        assert recycled.get_for_item(ids["A"]) is not None
        assert service.items.find(ids["B"]) is None

        again = service.engine.recycle("owner", ids["A"])
        assert again.failed[0].kind == "ItemAlreadyRecycled"

        restored = service.engine.restore("owner", ids["A"])
        assert restored.ok
        assert recycled.count() == 0
        assert service.items.get_by_id(ids["B"]).deleted_at is None
        assert _snapshot(conn) == before


def test_restore_requires_live_parent(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        assert service.engine.restore("owner", ids["C"]).failed[0].kind == "ItemNotFound"

        service.engine.recycle("owner", ids["F"])
        # Parent recycled behind the engine's back, so F keeps its own row.
        service.items.mark_recycled(service.items.get_by_id(ids["A"]).path, "2024-01-01")
        orphaned = service.engine.restore("owner", ids["F"])
        assert orphaned.failed[0].kind == "OrphanedRestore"
        assert RecycledStore(conn).get_for_item(ids["F"]) is not None


def test_recycling_an_ancestor_folds_nested_recycle_rows(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        recycled = RecycledStore(conn)

        service.engine.recycle("owner", ids["C"])
        service.engine.recycle("owner", ids["B"])
        assert recycled.count() == 1
        assert recycled.get_for_item(ids["C"]) is None
        assert service.engine.restore("owner", ids["C"]).failed[0].kind == "ItemNotFound"

        assert service.engine.restore("owner", ids["B"]).ok
        assert recycled.count() == 0
        for name in "BCDE":
            assert service.items.get_by_id(ids[name]).deleted_at is None


def test_recycling_below_a_recycled_item_fails(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        service.engine.recycle("owner", ids["B"])
        result = service.engine.recycle("owner", ids["C"])
        assert result.failed[0].kind == "ItemAlreadyRecycled"


def test_reorder_scenario(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        a = service.create("owner", name="A")
        b = service.create("owner", name="B", parent_id=a.id)
        c = service.create("owner", name="C", parent_id=a.id, previous_sibling_id=b.id)
        assert [child.name for child in service.get_children("owner", a.id)] == ["B", "C"]

        result = service.engine.reorder("owner", c.id, None)

        assert result.ok
        assert [child.name for child in service.get_children("owner", a.id)] == ["C", "B"]
        assert service.items.get_by_id(c.id).path == c.path


def test_reorder_after_sibling_and_unknown_sibling(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        a = service.create("owner", name="A")
        children = [service.create("owner", name=name, parent_id=a.id) for name in "BCD"]
        b, c, d = children

        service.engine.reorder("owner", b.id, c.id)
        assert [x.name for x in service.get_children("owner", a.id)] == ["C", "B", "D"]
        service.engine.reorder("owner", c.id, "unknown")
        assert [x.name for x in service.get_children("owner", a.id)] == ["B", "D", "C"]

        root = service.engine.reorder("owner", a.id, None)
        assert root.failed[0].kind == "CannotReorderRootItem"


def test_batch_reports_partial_failure(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, sink = _service(conn)
        ids = _build(service)

        result = service.engine.move("owner", [ids["F"], ids["B"], "missing"], ids["C"])

        assert [item.id for item in result.succeeded] == [ids["F"]]
        assert [(f.id, f.kind) for f in result.failed] == [
            (ids["B"], "InvalidMoveCyclic"),
            ("missing", "ItemNotFound"),
        ]
        events = sink.for_operation("move")
        assert [event.target_id for event in events] == [ids["F"], ids["B"], "missing"]
        assert isinstance(events[0].outcome, Success)
        assert isinstance(events[2].outcome, Failure)
        assert result.to_dict()["failed"][1] == {
            "id": "missing",
            "error": "ItemNotFound",
            "message": "Item missing not found",
        }


def test_single_target_failure_emits_no_event(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, sink = _service(conn)
        ids = _build(service)
        sink.events.clear()
        result = service.engine.move("owner", ids["B"], ids["C"])
        assert not result.ok
        assert sink.events == []


def test_cancelled_batch_reports_remaining_targets(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        ids = _build(service)
        cancel = threading.Event()
        cancel.set()
        result = service.engine.recycle("owner", [ids["E"], ids["F"]], cancel=cancel)
        assert result.succeeded == []
        assert [f.kind for f in result.failed] == ["Cancelled", "Cancelled"]
        assert service.items.find(ids["E"]) is not None


def test_restored_item_keeps_a_distinct_key(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service, _ = _service(conn)
        parent = service.create("owner", name="P")
        a = service.create("owner", name="A", parent_id=parent.id)
        x = service.create("owner", name="X", parent_id=parent.id)
        service.engine.recycle("owner", x.id)
        y = service.create("owner", name="Y", parent_id=parent.id)

        assert service.engine.restore("owner", x.id).ok

        children = service.get_children("owner", parent.id)
        assert [child.name for child in children] == ["A", "X", "Y"]
        keys = [child.order for child in children]
        assert len(set(keys)) == 3
        assert service.items.get_by_id(y.id).order != service.items.get_by_id(x.id).order
        assert a.order < x.order


def test_colliding_sibling_keys_fail_one_target_and_rescale(tmp_path, monkeypatch):
    queue = RescaleQueue(attempts=1, backoff_seconds=0)
    try:
        with _open(tmp_path, monkeypatch) as conn:
            sink = CollectingEventSink()
            service = ItemService(conn, limits=Limits(), events=sink, rescale=queue)
            parent = service.create("owner", name="P")
            a = service.create("owner", name="A", parent_id=parent.id)
            x = service.create("owner", name="X", parent_id=parent.id)
            y = service.create("owner", name="Y", parent_id=parent.id)
            service.items.update_order(y.id, x.order)
            first, second = service.items.get_children(parent.path)[1:]

            result = service.engine.reorder("owner", [a.id, "missing"], first.id)

            assert result.succeeded == []
            assert [(f.id, f.kind) for f in result.failed] == [
                (a.id, "InvalidOrderKey"),
                ("missing", "ItemNotFound"),
            ]
            assert [e.target_id for e in sink.for_operation("reorder")] == [a.id, "missing"]

            queue.join(timeout=10)
            keys = [child.order for child in service.items.get_children(parent.path)]
            assert len(set(keys)) == 3
            assert service.engine.reorder("owner", a.id, first.id).ok
            children = service.get_children("owner", parent.id)
            assert [child.id for child in children] == [first.id, a.id, second.id]
    finally:
        queue.shutdown()


def test_crossed_moves_on_two_connections_cannot_form_a_cycle(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as first, get_connection() as second:
        service, _ = _service(first)
        other = ItemService(second, limits=Limits(), events=CollectingEventSink())
        x = service.create("owner", name="X")
        y = service.create("owner", name="Y")

        assert service.engine.move("owner", x.id, y.id).ok
        crossed = other.engine.move("owner", y.id, x.id)

        assert [f.kind for f in crossed.failed] == ["InvalidMoveCyclic"]
        assert other.items.get_by_id(y.id).path.encode() == y.id
        assert other.items.get_by_id(x.id).path.encode() == f"{y.id}.{x.id}"
