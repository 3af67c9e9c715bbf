from __future__ import annotations

import sqlite3
from contextlib import contextmanager

from itemtree.db import get_connection, init_db
from itemtree.engine import Limits
from itemtree.events import CollectingEventSink
from itemtree.ordering import evenly_spaced_keys
from itemtree.rescale import RescaleQueue, rescale_children
from itemtree.service import ItemService


def _open(tmp_path, monkeypatch):
    monkeypatch.setenv("ITEMTREE_DB_PATH", str(tmp_path / "rescale.db"))
    init_db()
    return get_connection()


def test_rescale_children_preserves_order(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        service = ItemService(conn, limits=Limits(), events=CollectingEventSink())
        root = service.create("owner", name="Root")
        children = [service.create("owner", name=str(i), parent_id=root.id) for i in range(5)]
        service.items.update_order(children[2].id, "s" + "z" * 300)

        assert rescale_children(conn, root.id) == 5

        rescaled = service.items.get_children(root.path)
        assert [child.name for child in rescaled] == ["0", "1", "2", "3", "4"]
        assert [child.order for child in rescaled] == evenly_spaced_keys(5)


def test_rescale_of_missing_parent_is_a_no_op(tmp_path, monkeypatch):
    with _open(tmp_path, monkeypatch) as conn:
        assert rescale_children(conn, "missing") == 0


def test_long_key_schedules_background_rescale(tmp_path, monkeypatch):
    queue = RescaleQueue(attempts=1, backoff_seconds=0)
    try:
        with _open(tmp_path, monkeypatch) as conn:
            service = ItemService(
                conn,
                limits=Limits(order_key_max_length=1),
                events=CollectingEventSink(),
                rescale=queue,
            )
            root = service.create("owner", name="Root")
            # Appending halves the remaining gap; the seventh key needs two digits.
            for i in range(7):
                service.create("owner", name=str(i), parent_id=root.id)
            queue.join(timeout=10)

            children = service.items.get_children(root.path)
            assert [child.name for child in children] == [str(i) for i in range(7)]
            assert [child.order for child in children] == evenly_spaced_keys(7)
            assert queue.failures == []
    finally:
        queue.shutdown()


def test_failed_rescale_is_logged_not_raised(caplog):
    @contextmanager
    def broken_connection():
        raise sqlite3.OperationalError("database is locked")
        yield

    queue = RescaleQueue(attempts=2, backoff_seconds=0, connect=broken_connection)
    try:
        assert queue.schedule("parent")
        queue.join(timeout=10)
    finally:
        queue.shutdown()

    (failure,) = queue.failures
    assert failure.kind == "RescaleFailed"
    assert failure.data == {"parent_id": "parent"}
    assert "Rescaling children of parent failed" in caplog.text
