from __future__ import annotations

from typing import Any


class ItemTreeError(Exception):
    """Base class for every failure the core reports to a caller.

    ``kind`` is the stable error name reported in batch results and events,
    ``status_code`` is what the HTTP layer answers with.
    """

    kind = "ItemTreeError"
    status_code = 500

    def __init__(self, message: str | None = None, **data: Any) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.data:
            payload["data"] = self.data
        return payload


class ItemNotFound(ItemTreeError):
    kind = "ItemNotFound"
    status_code = 404

    def __init__(self, item_id: str | None = None) -> None:
        message = f"Item {item_id} not found" if item_id else "Item not found"
        super().__init__(message, item_id=item_id)


class AccessDenied(ItemTreeError):
    kind = "AccessDenied"
    status_code = 403

    def __init__(self, item_id: str, required: str) -> None:
        super().__init__(
            f"Account cannot {required} item {item_id}", item_id=item_id, required=required
        )


class InvalidMoveCyclic(ItemTreeError):
    kind = "InvalidMoveCyclic"
    status_code = 400

    def __init__(self, item_id: str, parent_id: str) -> None:
        super().__init__(
            f"Cannot move item {item_id} into itself or one of its descendants",
            item_id=item_id,
            parent_id=parent_id,
        )


class InvalidMoveTarget(ItemTreeError):
    kind = "InvalidMoveTarget"
    status_code = 400

    def __init__(self, item_id: str, parent_id: str | None) -> None:
        super().__init__(
            f"Item {item_id} is already at this location", item_id=item_id, parent_id=parent_id
        )


class OrphanedRestore(ItemTreeError):
    kind = "OrphanedRestore"
    status_code = 409

    def __init__(self, item_id: str, parent_id: str | None) -> None:
        super().__init__(
            f"Cannot restore item {item_id}: parent {parent_id} is missing or recycled",
            item_id=item_id,
            parent_id=parent_id,
        )


class CopyAborted(ItemTreeError):
    kind = "CopyAborted"
    status_code = 500

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(f"Copy of item {item_id} aborted: {reason}", item_id=item_id)


class InvalidIdentifier(ItemTreeError, ValueError):
    kind = "InvalidIdentifier"
    status_code = 400

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid item identifier: {value!r}", value=value)


class NotAPrefix(ItemTreeError, ValueError):
    kind = "NotAPrefix"
    status_code = 400

    def __init__(self, path: str, prefix: str) -> None:
        super().__init__(f"{prefix} is not a prefix of {path}", path=path, prefix=prefix)


class RescaleFailed(ItemTreeError):
    kind = "RescaleFailed"
    status_code = 500

    def __init__(self, parent_id: str, reason: str) -> None:
        super().__init__(
            f"Rescaling children of {parent_id} failed: {reason}", parent_id=parent_id
        )


class ItemNotFolder(ItemTreeError):
    kind = "ItemNotFolder"
    status_code = 400

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} is not a folder", item_id=item_id)


class HierarchyTooDeep(ItemTreeError):
    kind = "HierarchyTooDeep"
    status_code = 400

    def __init__(self, depth: int, maximum: int) -> None:
        super().__init__(
            f"Resulting hierarchy depth {depth} exceeds {maximum}", depth=depth, maximum=maximum
        )


class TooManyDescendants(ItemTreeError):
    kind = "TooManyDescendants"
    status_code = 400

    def __init__(self, count: int, maximum: int) -> None:
        super().__init__(
            f"Item has {count} descendants, maximum is {maximum}", count=count, maximum=maximum
        )


class ItemAlreadyRecycled(ItemTreeError):
    kind = "ItemAlreadyRecycled"
    status_code = 409

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item {item_id} is already recycled", item_id=item_id)


class CannotReorderRootItem(ItemTreeError):
    kind = "CannotReorderRootItem"
    status_code = 400

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Root item {item_id} has no siblings to reorder", item_id=item_id)


class MembershipConflict(ItemTreeError):
    kind = "MembershipConflict"
    status_code = 409

    def __init__(self, account_id: str, item_id: str) -> None:
        super().__init__(
            f"Account {account_id} already has a membership on item {item_id}",
            account_id=account_id,
            item_id=item_id,
        )


class MembershipNotFound(ItemTreeError):
    kind = "MembershipNotFound"
    status_code = 404

    def __init__(self, membership_id: str) -> None:
        super().__init__(f"Membership {membership_id} not found", membership_id=membership_id)


class VisibilityConflict(ItemTreeError):
    kind = "VisibilityConflict"
    status_code = 409

    def __init__(self, item_id: str, visibility_type: str) -> None:
        super().__init__(
            f"Item {item_id} already has visibility {visibility_type} at or above it",
            item_id=item_id,
            type=visibility_type,
        )


class CannotModifyParentVisibility(ItemTreeError):
    kind = "CannotModifyParentVisibility"
    status_code = 403

    def __init__(self, item_id: str, visibility_type: str) -> None:
        super().__init__(
            f"Visibility {visibility_type} of item {item_id} is inherited from an ancestor",
            item_id=item_id,
            type=visibility_type,
        )


class Cancelled(ItemTreeError):
    kind = "Cancelled"
    status_code = 409

    def __init__(self, item_id: str) -> None:
        super().__init__(
            f"Operation cancelled before item {item_id} was processed", item_id=item_id
        )


class StorageError(ItemTreeError):
    kind = "StorageError"
    status_code = 503

    def __init__(self, item_id: str, reason: str) -> None:
        super().__init__(
            f"Storage failure while processing item {item_id}: {reason}", item_id=item_id
        )


class VisibilityNotFound(ItemTreeError):
    kind = "VisibilityNotFound"
    status_code = 404

    def __init__(self, item_id: str, visibility_type: str) -> None:
        super().__init__(
            f"Item {item_id} has no {visibility_type} visibility",
            item_id=item_id,
            type=visibility_type,
        )


class InvalidOrderKey(ItemTreeError):
    kind = "InvalidOrderKey"
    status_code = 409

    def __init__(self, parent_id: str, reason: str) -> None:
        super().__init__(
            f"Cannot place an item under {parent_id}: {reason}", parent_id=parent_id
        )


class CannotDeleteOnlyAdmin(ItemTreeError):
    kind = "CannotDeleteOnlyAdmin"
    status_code = 403

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Cannot remove the only admin of item {item_id}", item_id=item_id)
