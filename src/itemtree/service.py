from __future__ import annotations

import logging
import sqlite3
from typing import Any
from uuid import uuid4

from .authorization import AuthorizationGate
from .db import transaction
from .engine import Limits, SubtreeMutationEngine
from .errors import AccessDenied, HierarchyTooDeep, InvalidOrderKey, ItemNotFolder
from .events import EventSink, MutationEvent, Success
from .memberships import MembershipStore
from .models import Item, now
from .pagination import Cursor
from .paths import append, depth
from .recycled import RecycledStore
from .rescale import RescaleQueue
from .schemas import parse_item_name, parse_item_type
from .store import ItemStore

logger = logging.getLogger(__name__)


class ItemService:
    """Single-item reads and writes around the mutation engine.

    Every call takes the acting account id (``None`` for anonymous access) and
    fails closed with an ``ItemTreeError``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        limits: Limits | None = None,
        events: EventSink | None = None,
        rescale: RescaleQueue | None = None,
    ) -> None:
        self.conn = conn
        self.engine = SubtreeMutationEngine(conn, limits=limits, events=events, rescale=rescale)
        self.items = ItemStore(conn)
        self.memberships = MembershipStore(conn)
        self.recycled_items = RecycledStore(conn)
        self.gate = AuthorizationGate(conn)

    @property
    def limits(self) -> Limits:
        return self.engine.limits

    def create(
        self,
        actor_id: str | None,
        *,
        name: str,
        item_type: str = "folder",
        parent_id: str | None = None,
        previous_sibling_id: str | None = None,
        description: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Item:
        name = parse_item_name(name)
        kind = parse_item_type(item_type)
        if extra is not None and not isinstance(extra, dict):
            raise ValueError("extra must be an object")
        if actor_id is None:
            raise AccessDenied(parent_id or "root", "write")

        with transaction(self.conn):
            parent = None
            if parent_id is not None:
                parent = self.items.get_by_id(parent_id)
                if not parent.is_folder:
                    raise ItemNotFolder(parent.id)
                self.gate.authorize(actor_id, parent, "write")
            item_id = str(uuid4())
            path = append(parent.path if parent else None, item_id)
            if depth(path) > self.limits.max_tree_levels:
                raise HierarchyTooDeep(depth(path), self.limits.max_tree_levels)
            order = None
            if parent is not None:
                try:
                    order = self.engine.allocate_key(parent.path, previous_sibling_id)
                except InvalidOrderKey:
                    # Picked up once this transaction has rolled back.
                    self.engine.schedule_rescale(parent.id)
                    raise
            stamp = now()
            item = Item(
                id=item_id,
                path=path,
                name=name,
                type=kind,
                order=order,
                description=description,
                extra=extra or {},
                creator_id=actor_id,
                created_at=stamp,
                updated_at=stamp,
            )
            self.items.insert(item)
            if parent is None:
                self.memberships.add(
                    account_id=actor_id, item_path=path, permission="admin", creator_id=actor_id
                )

        logger.debug("Created %s %s under %s", kind, item.id, parent_id)
        self.engine.events.emit(MutationEvent("create", item.id, Success(item), actor_id))
        if parent is not None and (
            self.engine.key_needs_rescale(order) or self.engine.children_need_rescale(parent.path)
        ):
            self.engine.schedule_rescale(parent.id)
        return item

    def get(self, actor_id: str | None, item_id: str) -> Item:
        return self.gate.authorize_item(actor_id, item_id, "read")

    def get_children(self, actor_id: str | None, item_id: str) -> list[Item]:
        parent = self.gate.authorize_item(actor_id, item_id, "read")
        if not parent.is_folder:
            raise ItemNotFolder(parent.id)
        return self.gate.filter_visible(actor_id, self.items.get_children(parent.path))

    def get_descendants(self, actor_id: str | None, item_id: str) -> list[Item]:
        item = self.gate.authorize_item(actor_id, item_id, "read")
        return self.gate.filter_visible(actor_id, self.items.get_descendants(item.path))

    def get_ancestors(self, actor_id: str | None, item_id: str) -> list[Item]:
        """Visible ancestors of the item, root first, without the item itself."""
        item = self.gate.authorize_item(actor_id, item_id, "read")
        chain = self.items.get_ancestor_chain(item.path, include_recycled=False)
        return self.gate.filter_visible(actor_id, [a for a in chain if a.id != item.id])

    def update(
        self,
        actor_id: str | None,
        item_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Item:
        if name is not None:
            name = parse_item_name(name)
        if extra is not None and not isinstance(extra, dict):
            raise ValueError("extra must be an object")
        with transaction(self.conn):
            self.gate.authorize_item(actor_id, item_id, "write")
            return self.items.update_properties(
                item_id, name=name, description=description, extra=extra
            )

    def recycled(
        self, actor_id: str | None, *, limit: int | None = None, cursor: Cursor | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Recycle roots the actor administers, newest first."""
        if actor_id is None:
            return [], None
        admin_paths = self.memberships.list_admin_paths(actor_id)
        rows, next_cursor = self.recycled_items.list_under(admin_paths, limit=limit, cursor=cursor)
        allowed, _ = self.gate.authorize_many(actor_id, [item for _, item in rows], "admin")
        allowed_ids = {item.id for item in allowed}
        entries = [
            {**data.to_dict(), "item": item.to_dict()}
            for data, item in rows
            if item.id in allowed_ids
        ]
        return entries, next_cursor
