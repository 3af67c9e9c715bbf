from __future__ import annotations

import sqlite3
from typing import Any, Callable

from flask import Flask, jsonify, request

from .auth import current_account
from .db import get_connection
from .engine import BatchResult
from .errors import ItemTreeError
from .events import EventSink
from .pagination import page_args
from .rescale import RescaleQueue
from .service import ItemService
from .sharing import SharingService

MAX_BATCH_IDS = 100


def _json_error(message: str, status_code: int) -> tuple[Any, int]:
    return jsonify({"error": message}), status_code


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} is required")
    return value.strip()


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _optional_object(data: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be an object")
    return value


def _require_ids(data: dict[str, Any]) -> list[str]:
    value = data.get("ids")
    if not isinstance(value, list) or not value:
        raise ValueError("ids must be a non-empty list")
    if len(value) > MAX_BATCH_IDS:
        raise ValueError(f"ids must contain at most {MAX_BATCH_IDS} entries")
    if not all(isinstance(item_id, str) and item_id for item_id in value):
        raise ValueError("ids must be non-empty strings")
    return value


def _batch_response(result: BatchResult) -> Any:
    return jsonify(result.to_dict())


def register_routes(app: Flask) -> None:
    state = app.extensions["itemtree"]
    events: EventSink = state["events"]
    rescale: RescaleQueue | None = state["rescale"]

    def item_service(conn: sqlite3.Connection) -> ItemService:
        return ItemService(conn, events=events, rescale=rescale)

    def handler(fn: Callable[..., Any]) -> Callable[..., Any]:
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return fn(*args, **kwargs)
            except ItemTreeError:
                raise
            except ValueError as exc:
                return _json_error(str(exc), 400)

        wrapper.__name__ = fn.__name__
        return wrapper

    @app.errorhandler(ItemTreeError)
    def handle_item_tree_error(exc: ItemTreeError) -> tuple[Any, int]:
        return jsonify(exc.to_dict()), exc.status_code

    @app.get("/health")
    def health() -> Any:
        return jsonify({"status": "ok"})

    @app.get("/stats")
    def stats() -> Any:
        with get_connection() as conn:
            items = conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]
            recycled = conn.execute(
                "SELECT COUNT(*) FROM items WHERE deleted_at IS NOT NULL"
            ).fetchone()[0]
            memberships = conn.execute("SELECT COUNT(*) FROM item_memberships").fetchone()[0]
            visibilities = conn.execute("SELECT COUNT(*) FROM item_visibilities").fetchone()[0]
        return jsonify(
            {
                "items": items,
                "recycled_items": recycled,
                "memberships": memberships,
                "visibilities": visibilities,
            }
        )

    # Items

    @app.post("/items")
    @handler
    def create_item() -> Any:
        payload = request.get_json(silent=True) or {}
        name = _require_str(payload, "name")
        item_type = _optional_str(payload, "type") or "folder"
        parent_id = _optional_str(payload, "parent_id")
        previous_item_id = _optional_str(payload, "previous_item_id")
        description = _optional_str(payload, "description")
        extra = _optional_object(payload, "extra")
        with get_connection() as conn:
            item = item_service(conn).create(
                current_account(),
                name=name,
                item_type=item_type,
                parent_id=parent_id,
                previous_sibling_id=previous_item_id,
                description=description,
                extra=extra,
            )
        return jsonify(item.to_dict()), 201

    @app.get("/items/<item_id>")
    def get_item(item_id: str) -> Any:
        with get_connection() as conn:
            item = item_service(conn).get(current_account(), item_id)
        return jsonify(item.to_dict())

    @app.patch("/items/<item_id>")
    @handler
    def update_item(item_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        with get_connection() as conn:
            item = item_service(conn).update(
                current_account(),
                item_id,
                name=_optional_str(payload, "name"),
                description=_optional_str(payload, "description"),
                extra=_optional_object(payload, "extra"),
            )
        return jsonify(item.to_dict())

    @app.get("/items/<item_id>/children")
    def get_children(item_id: str) -> Any:
        with get_connection() as conn:
            children = item_service(conn).get_children(current_account(), item_id)
        return jsonify({"items": [child.to_dict() for child in children]})

    @app.get("/items/<item_id>/descendants")
    def get_descendants(item_id: str) -> Any:
        with get_connection() as conn:
            descendants = item_service(conn).get_descendants(current_account(), item_id)
        return jsonify({"items": [item.to_dict() for item in descendants]})

    @app.get("/items/<item_id>/parents")
    def get_parents(item_id: str) -> Any:
        with get_connection() as conn:
            parents = item_service(conn).get_ancestors(current_account(), item_id)
        return jsonify({"items": [item.to_dict() for item in parents]})

    @app.patch("/items/<item_id>/reorder")
    @handler
    def reorder_item(item_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        previous_item_id = _optional_str(payload, "previous_item_id")
        with get_connection() as conn:
            result = item_service(conn).engine.reorder(
                current_account(), item_id, previous_item_id
            )
        if result.failed:
            raise result.failed[0].error
        return jsonify(result.succeeded[0].to_dict())

    @app.get("/items/recycled")
    @handler
    def list_recycled() -> Any:
        limit, cursor = page_args(request.args)
        with get_connection() as conn:
            entries, next_cursor = item_service(conn).recycled(
                current_account(), limit=limit, cursor=cursor
            )
        return jsonify({"items": entries, "next_cursor": next_cursor})

    # Batch mutations

    @app.post("/items/move")
    @handler
    def move_items() -> Any:
        payload = request.get_json(silent=True) or {}
        ids = _require_ids(payload)
        parent_id = _optional_str(payload, "parent_id")
        previous_item_id = _optional_str(payload, "previous_item_id")
        with get_connection() as conn:
            result = item_service(conn).engine.move(
                current_account(), ids, parent_id, previous_item_id
            )
        return _batch_response(result)

    @app.post("/items/copy")
    @handler
    def copy_items() -> Any:
        payload = request.get_json(silent=True) or {}
        ids = _require_ids(payload)
        parent_id = _optional_str(payload, "parent_id")
        with get_connection() as conn:
            result = item_service(conn).engine.copy(current_account(), ids, parent_id)
        return _batch_response(result)

    @app.post("/items/recycle")
    @handler
    def recycle_items() -> Any:
        payload = request.get_json(silent=True) or {}
        ids = _require_ids(payload)
        with get_connection() as conn:
            result = item_service(conn).engine.recycle(current_account(), ids)
        return _batch_response(result)

    @app.post("/items/restore")
    @handler
    def restore_items() -> Any:
        payload = request.get_json(silent=True) or {}
        ids = _require_ids(payload)
        with get_connection() as conn:
            result = item_service(conn).engine.restore(current_account(), ids)
        return _batch_response(result)

    # Memberships

    @app.post("/items/<item_id>/memberships")
    @handler
    def create_membership(item_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        account_id = _require_str(payload, "account_id")
        permission = _require_str(payload, "permission")
        with get_connection() as conn:
            membership = SharingService(conn).grant(
                current_account(), item_id, account_id, permission
            )
        return jsonify(membership.to_dict()), 201

    @app.get("/items/<item_id>/memberships")
    def list_memberships(item_id: str) -> Any:
        with get_connection() as conn:
            memberships = SharingService(conn).list_memberships(current_account(), item_id)
        return jsonify({"memberships": [m.to_dict() for m in memberships]})

    @app.patch("/memberships/<membership_id>")
    @handler
    def update_membership(membership_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        permission = _require_str(payload, "permission")
        with get_connection() as conn:
            membership = SharingService(conn).update_permission(
                current_account(), membership_id, permission
            )
        return jsonify(membership.to_dict())

    @app.delete("/memberships/<membership_id>")
    def delete_membership(membership_id: str) -> Any:
        with get_connection() as conn:
            membership = SharingService(conn).revoke(current_account(), membership_id)
        return jsonify(membership.to_dict())

    # Visibilities

    @app.get("/items/<item_id>/visibilities")
    def list_visibilities(item_id: str) -> Any:
        with get_connection() as conn:
            visibilities = SharingService(conn).list_visibilities(current_account(), item_id)
        return jsonify({"visibilities": [v.to_dict() for v in visibilities]})

    @app.post("/items/<item_id>/visibilities")
    @handler
    def create_visibility(item_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        visibility_type = _require_str(payload, "type")
        with get_connection() as conn:
            visibility = SharingService(conn).set_visibility(
                current_account(), item_id, visibility_type
            )
        return jsonify(visibility.to_dict()), 201

    @app.delete("/items/<item_id>/visibilities/<visibility_type>")
    @handler
    def delete_visibility(item_id: str, visibility_type: str) -> Any:
        with get_connection() as conn:
            removed = SharingService(conn).clear_visibility(
                current_account(), item_id, visibility_type
            )
        return jsonify({"removed": removed})
