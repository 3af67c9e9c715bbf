"""Move, copy, recycle, restore and reorder over whole subtrees.

Every operation takes one or many target ids. Each target is handled in its
own transaction and re-validated from rows read inside it, so a batch may
commit some targets and fail others; the result lists both.
"""

from __future__ import annotations

import copy as copy_module
import logging
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable
from uuid import uuid4

from . import config
from .authorization import AuthorizationGate
from .db import transaction
from .errors import (
    Cancelled,
    CannotReorderRootItem,
    CopyAborted,
    HierarchyTooDeep,
    InvalidMoveCyclic,
    InvalidMoveTarget,
    InvalidOrderKey,
    ItemAlreadyRecycled,
    ItemNotFolder,
    ItemNotFound,
    ItemTreeError,
    OrphanedRestore,
    StorageError,
    TooManyDescendants,
)
from .events import EventSink, Failure, LoggingEventSink, MutationEvent, Operation, Success
from .memberships import MembershipStore
from .models import Item, ItemMembership, ItemVisibility, now
from .ordering import key_after, needs_rescale, siblings_need_rescale
from .paths import ItemPath, append, depth, is_descendant_of, parent_path
from .recycled import RecycledStore
from .rescale import RescaleQueue
from .schemas import MAX_ITEM_NAME_LENGTH, PermissionLevel, parse_permission
from .store import ItemStore
from .visibility import VisibilityStore

logger = logging.getLogger(__name__)

_COPY_SUFFIX = re.compile(r" \((\d+)\)$")


@dataclass(frozen=True)
class Limits:
    max_tree_levels: int = config.DEFAULT_MAX_TREE_LEVELS
    max_descendants_for_move: int = config.DEFAULT_MAX_DESCENDANTS_FOR_MOVE
    max_descendants_for_copy: int = config.DEFAULT_MAX_DESCENDANTS_FOR_COPY
    max_descendants_for_recycle: int = config.DEFAULT_MAX_DESCENDANTS_FOR_RECYCLE
    move_permission: PermissionLevel = "admin"
    order_key_max_length: int = config.DEFAULT_ORDER_KEY_MAX_LENGTH

    @classmethod
    def from_env(cls) -> Limits:
        return cls(
            max_tree_levels=config.max_tree_levels(),
            max_descendants_for_move=config.max_descendants_for_move(),
            max_descendants_for_copy=config.max_descendants_for_copy(),
            max_descendants_for_recycle=config.max_descendants_for_recycle(),
            move_permission=parse_permission(config.move_permission()),
            order_key_max_length=config.order_key_max_length(),
        )


@dataclass(frozen=True)
class TargetFailure:
    id: str
    error: ItemTreeError

    @property
    def kind(self) -> str:
        return self.error.kind

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "error": self.error.kind, "message": self.error.message}


@dataclass
class BatchResult:
    succeeded: list[Item] = field(default_factory=list)
    failed: list[TargetFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": [item.to_dict() for item in self.succeeded],
            "failed": [failure.to_dict() for failure in self.failed],
        }


def copy_name(name: str) -> str:
    """``"Name"`` becomes ``"Name (2)"``, ``"Name (2)"`` becomes ``"Name (3)"``."""
    match = _COPY_SUFFIX.search(name)
    if match:
        suffix = f" ({int(match.group(1)) + 1})"
        base = name[: match.start()]
    else:
        suffix = " (2)"
        base = name
    return base[: MAX_ITEM_NAME_LENGTH - len(suffix)] + suffix


def _target_list(target_ids: str | Iterable[str]) -> list[str]:
    if isinstance(target_ids, str):
        return [target_ids]
    return list(dict.fromkeys(target_ids))


class SubtreeMutationEngine:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        limits: Limits | None = None,
        events: EventSink | None = None,
        rescale: RescaleQueue | None = None,
    ) -> None:
        self.conn = conn
        self.limits = limits or Limits.from_env()
        self.events = events or LoggingEventSink()
        self.rescale = rescale
        self.items = ItemStore(conn)
        self.memberships = MembershipStore(conn)
        self.visibilities = VisibilityStore(conn)
        self.recycled = RecycledStore(conn)
        self.gate = AuthorizationGate(conn)

    # Batch plumbing

    def _run_batch(
        self,
        operation: Operation,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        apply: Callable[[str, list[str]], Item],
        cancel: threading.Event | None,
    ) -> BatchResult:
        ids = _target_list(target_ids)
        # A lone target fails closed: only successes are announced.
        report_failures = len(ids) > 1
        result = BatchResult()
        for index, target_id in enumerate(ids):
            if cancel is not None and cancel.is_set():
                for remaining in ids[index:]:
                    error = Cancelled(remaining)
                    self._record_failure(
                        result, operation, actor_id, remaining, error, report_failures
                    )
                logger.info("%s cancelled with %d targets left", operation, len(ids) - index)
                break
            touched_parents: list[str] = []
            try:
                with transaction(self.conn):
                    item = apply(target_id, touched_parents)
            except InvalidOrderKey as exc:
                self._record_failure(result, operation, actor_id, target_id, exc, report_failures)
                # Stored sibling keys collide; fresh keys let the next attempt through.
                self.schedule_rescale(exc.data["parent_id"])
                continue
            except ItemTreeError as exc:
                self._record_failure(result, operation, actor_id, target_id, exc, report_failures)
                continue
            except (sqlite3.Error, ValueError) as exc:
                error = StorageError(target_id, str(exc))
                self._record_failure(result, operation, actor_id, target_id, error, report_failures)
                continue
            result.succeeded.append(item)
            logger.debug("%s %s committed", operation, target_id)
            self.events.emit(MutationEvent(operation, target_id, Success(item), actor_id))
            for parent_id in touched_parents:
                self.schedule_rescale(parent_id)
        return result

    def _record_failure(
        self,
        result: BatchResult,
        operation: Operation,
        actor_id: str | None,
        target_id: str,
        error: ItemTreeError,
        emit: bool,
    ) -> None:
        result.failed.append(TargetFailure(target_id, error))
        if emit:
            self.events.emit(
                MutationEvent(operation, target_id, Failure.from_error(error), actor_id)
            )

    def schedule_rescale(self, parent_id: str) -> None:
        if self.rescale is None:
            logger.warning("Children of %s need rescaling but no rescale queue is set", parent_id)
            return
        self.rescale.schedule(parent_id)

    def allocate_key(
        self,
        parent: ItemPath,
        previous_sibling_id: str | None,
        *,
        exclude: str | None = None,
        first_when_unset: bool = False,
    ) -> str:
        """A key placing a new child of ``parent`` right after ``previous_sibling_id``.

        Without a previous sibling the key goes at the end, or at the front when
        ``first_when_unset``. An unknown previous sibling also means the end.
        Recycled children keep their keys reserved so a restore cannot collide.
        Raises ``InvalidOrderKey`` when stored sibling keys leave no gap.
        """
        siblings = [
            s for s in self.items.get_children(parent, include_recycled=True) if s.id != exclude
        ]
        try:
            return self._key_between(siblings, previous_sibling_id, first_when_unset)
        except ValueError as exc:
            raise InvalidOrderKey(parent.id, str(exc)) from exc

    @staticmethod
    def _key_between(
        siblings: list[Item], previous_sibling_id: str | None, first_when_unset: bool
    ) -> str:
        keys = [s.order for s in siblings if s.order is not None]
        if previous_sibling_id is None and first_when_unset:
            return key_after(None, keys[0] if keys else None)
        position = next(
            (index for index, sibling in enumerate(siblings) if sibling.id == previous_sibling_id),
            None,
        )
        if position is None or siblings[position].order is None:
            return key_after(keys[-1] if keys else None, None)
        following = next(
            (s.order for s in siblings[position + 1 :] if s.order is not None),
            None,
        )
        return key_after(siblings[position].order, following)

    def key_needs_rescale(self, key: str | None) -> bool:
        return needs_rescale(key, max_length=self.limits.order_key_max_length)

    def children_need_rescale(self, parent: ItemPath) -> bool:
        """Any child key of ``parent`` missing, shared or over-long."""
        keys = [child.order for child in self.items.get_children(parent, include_recycled=True)]
        return siblings_need_rescale(keys, max_length=self.limits.order_key_max_length)

    def _check_depth(self, new_root: ItemPath, source: ItemPath) -> None:
        resulting = depth(new_root) + self.items.levels_below(source)
        if resulting > self.limits.max_tree_levels:
            raise HierarchyTooDeep(resulting, self.limits.max_tree_levels)

    def _destination(self, actor_id: str | None, parent_id: str | None) -> Item | None:
        if parent_id is None:
            return None
        parent = self.items.get_by_id(parent_id)
        if not parent.is_folder:
            raise ItemNotFolder(parent.id)
        self.gate.authorize(actor_id, parent, "write")
        return parent

    # Move

    def move(
        self,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        new_parent_id: str | None,
        previous_sibling_id: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        def apply(target_id: str, touched: list[str]) -> Item:
            return self._move_one(actor_id, target_id, new_parent_id, previous_sibling_id, touched)

        return self._run_batch("move", actor_id, target_ids, apply, cancel)

    def _move_one(
        self,
        actor_id: str | None,
        target_id: str,
        new_parent_id: str | None,
        previous_sibling_id: str | None,
        touched: list[str],
    ) -> Item:
        item = self.items.get_by_id(target_id)
        self.gate.authorize(actor_id, item, self.limits.move_permission)
        if new_parent_id is not None:
            candidate = self.items.get_by_id(new_parent_id)
            if is_descendant_of(candidate.path, item.path):
                raise InvalidMoveCyclic(item.id, new_parent_id)
        if item.parent_id == new_parent_id:
            raise InvalidMoveTarget(item.id, new_parent_id)
        parent = self._destination(actor_id, new_parent_id)

        count = self.items.count_descendants(item.path)
        if count > self.limits.max_descendants_for_move:
            raise TooManyDescendants(count, self.limits.max_descendants_for_move)
        new_path = append(parent.path if parent else None, item.id)
        self._check_depth(new_path, item.path)

        order = None
        if parent is not None:
            order = self.allocate_key(parent.path, previous_sibling_id, exclude=item.id)
        self.items.rewrite_descendant_paths(item.path, new_path)
        self.items.update_order(item.id, order)

        if parent is None and actor_id is not None:
            # Access held through the old ancestors is gone at a new root.
            if self.memberships.get_for_account_at(actor_id, new_path) is None:
                self.memberships.add(
                    account_id=actor_id, item_path=new_path, permission="admin", creator_id=actor_id
                )
        if parent is not None and (
            self.key_needs_rescale(order) or self.children_need_rescale(parent.path)
        ):
            touched.append(parent.id)
        return self.items.get_by_id(item.id)

    # Copy

    def copy(
        self,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        new_parent_id: str | None,
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        def apply(target_id: str, touched: list[str]) -> Item:
            return self._copy_one(actor_id, target_id, new_parent_id, touched)

        return self._run_batch("copy", actor_id, target_ids, apply, cancel)

    def _copy_one(
        self,
        actor_id: str | None,
        target_id: str,
        new_parent_id: str | None,
        touched: list[str],
    ) -> Item:
        source = self.items.get_by_id(target_id)
        self.gate.authorize(actor_id, source, "read")
        parent = self._destination(actor_id, new_parent_id)

        subtree = self.items.get_descendants(source.path, include_self=True)
        if len(subtree) - 1 > self.limits.max_descendants_for_copy:
            raise TooManyDescendants(len(subtree) - 1, self.limits.max_descendants_for_copy)

        # Every new id is known before the first row is written.
        id_map = {item.id: str(uuid4()) for item in subtree}
        root_path = append(parent.path if parent else None, id_map[source.id])
        self._check_depth(root_path, source.path)

        def mapped(path: ItemPath) -> ItemPath:
            tail = path.ids[len(source.path) :]
            return ItemPath(root_path.ids + tuple(id_map[item_id] for item_id in tail))

        stamp = now()
        copies: list[Item] = []
        for original in subtree:
            is_root = original.id == source.id
            copies.append(
                Item(
                    id=id_map[original.id],
                    path=mapped(original.path),
                    name=copy_name(original.name) if is_root else original.name,
                    type=original.type,
                    order=None if is_root else original.order,
                    description=original.description,
                    extra=self._copy_extra(original, id_map),
                    creator_id=actor_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
        if parent is not None:
            copies[0].order = self.allocate_key(parent.path, None)

        memberships = [
            ItemMembership(
                id=str(uuid4()),
                account_id=membership.account_id,
                item_path=mapped(membership.item_path),
                permission=membership.permission,
                creator_id=actor_id,
                created_at=stamp,
                updated_at=stamp,
            )
            for membership in self.memberships.list_below(source.path)
            if membership.item_id in id_map
        ]
        if actor_id is not None and not any(
            m.account_id == actor_id and m.item_path == root_path for m in memberships
        ):
            memberships.append(
                ItemMembership(
                    id=str(uuid4()),
                    account_id=actor_id,
                    item_path=root_path,
                    permission="admin",
                    creator_id=actor_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
        # Public is not carried over to a copy.
        visibilities = [
            ItemVisibility(
                id=str(uuid4()),
                item_path=mapped(visibility.item_path),
                type=visibility.type,
                creator_id=actor_id,
                created_at=stamp,
            )
            for visibility in self.visibilities.list_below(source.path)
            if visibility.type == "hidden" and visibility.item_path.id in id_map
        ]

        try:
            self.items.insert_many(copies)
            self.memberships.add_many(memberships)
            self.visibilities.add_many(visibilities)
        except sqlite3.Error as exc:
            raise CopyAborted(source.id, str(exc)) from exc

        if parent is not None and (
            self.key_needs_rescale(copies[0].order) or self.children_need_rescale(parent.path)
        ):
            touched.append(parent.id)
        return self.items.get_by_id(copies[0].id)

    @staticmethod
    def _copy_extra(original: Item, id_map: dict[str, str]) -> dict[str, Any]:
        extra = copy_module.deepcopy(original.extra)
        if original.type == "shortcut":
            shortcut = extra.get("shortcut")
            if isinstance(shortcut, dict) and shortcut.get("target") in id_map:
                shortcut["target"] = id_map[shortcut["target"]]
        return extra

    # Recycle and restore

    def recycle(
        self,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        def apply(target_id: str, touched: list[str]) -> Item:
            return self._recycle_one(actor_id, target_id)

        return self._run_batch("recycle", actor_id, target_ids, apply, cancel)

    def _recycle_one(self, actor_id: str | None, target_id: str) -> Item:
        item = self.items.get_by_id(target_id, include_recycled=True)
        self.gate.authorize(actor_id, item, "admin")
        # deleted_at is set on a whole subtree, so this covers recycled ancestors too.
        if item.is_recycled:
            raise ItemAlreadyRecycled(item.id)
        count = self.items.count_descendants(item.path)
        if count > self.limits.max_descendants_for_recycle:
            raise TooManyDescendants(count, self.limits.max_descendants_for_recycle)
        self.items.mark_recycled(item.path, now())
        # Only the outermost recycled item keeps a recycle-bin row.
        self.recycled.delete_below(item.path)
        self.recycled.add(item.id, actor_id)
        return self.items.get_by_id(item.id, include_recycled=True)

    def restore(
        self,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        def apply(target_id: str, touched: list[str]) -> Item:
            return self._restore_one(actor_id, target_id, touched)

        return self._run_batch("restore", actor_id, target_ids, apply, cancel)

    def _restore_one(self, actor_id: str | None, target_id: str, touched: list[str]) -> Item:
        if self.recycled.get_for_item(target_id) is None:
            raise ItemNotFound(target_id)
        item = self.items.get_by_id(target_id, include_recycled=True)
        self.gate.authorize(actor_id, item, "admin")
        if item.parent_id is not None:
            parent = self.items.find(item.parent_id, include_recycled=True)
            if parent is None or parent.is_recycled:
                raise OrphanedRestore(item.id, item.parent_id)
        self.items.clear_recycled(item.path)
        self.recycled.delete_for_item(item.id)
        parent_of_item = parent_path(item.path)
        if parent_of_item is not None and self.children_need_rescale(parent_of_item):
            touched.append(parent_of_item.id)
        return self.items.get_by_id(item.id)

    # Reorder

    def reorder(
        self,
        actor_id: str | None,
        target_ids: str | Iterable[str],
        previous_sibling_id: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        def apply(target_id: str, touched: list[str]) -> Item:
            return self._reorder_one(actor_id, target_id, previous_sibling_id, touched)

        return self._run_batch("reorder", actor_id, target_ids, apply, cancel)

    def _reorder_one(
        self,
        actor_id: str | None,
        target_id: str,
        previous_sibling_id: str | None,
        touched: list[str],
    ) -> Item:
        item = self.items.get_by_id(target_id)
        self.gate.authorize(actor_id, item, "write")
        parent = parent_path(item.path)
        if parent is None:
            raise CannotReorderRootItem(item.id)
        if previous_sibling_id == item.id:
            return item
        order = self.allocate_key(
            parent, previous_sibling_id, exclude=item.id, first_when_unset=True
        )
        self.items.update_order(item.id, order)
        if self.key_needs_rescale(order) or self.children_need_rescale(parent):
            touched.append(parent.id)
        return self.items.get_by_id(item.id)
