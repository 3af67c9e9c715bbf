from __future__ import annotations

import logging
import sqlite3

from .authorization import AuthorizationGate
from .db import transaction
from .errors import (
    CannotDeleteOnlyAdmin,
    CannotModifyParentVisibility,
    VisibilityConflict,
    VisibilityNotFound,
)
from .memberships import MembershipStore
from .models import ItemMembership, ItemVisibility
from .resolver import PermissionResolver
from .schemas import parse_permission, parse_visibility_type
from .store import ItemStore
from .visibility import VisibilityStore

logger = logging.getLogger(__name__)


class SharingService:
    """Memberships and visibility flags. Changing either requires Admin."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.items = ItemStore(conn)
        self.memberships = MembershipStore(conn)
        self.visibilities = VisibilityStore(conn)
        self.resolver = PermissionResolver(conn)
        self.gate = AuthorizationGate(conn)

    def grant(
        self, actor_id: str | None, item_id: str, account_id: str, permission: str
    ) -> ItemMembership:
        level = parse_permission(permission)
        if not isinstance(account_id, str) or not account_id.strip():
            raise ValueError("account_id is required")
        with transaction(self.conn):
            item = self.gate.authorize_item(actor_id, item_id, "admin")
            membership = self.memberships.add(
                account_id=account_id.strip(),
                item_path=item.path,
                permission=level,
                creator_id=actor_id,
            )
        logger.info("Granted %s on %s to %s", level, item.id, membership.account_id)
        return membership

    def update_permission(
        self, actor_id: str | None, membership_id: str, permission: str
    ) -> ItemMembership:
        level = parse_permission(permission)
        with transaction(self.conn):
            membership = self.memberships.get(membership_id)
            self.gate.authorize_item(actor_id, membership.item_id, "admin", include_recycled=True)
            if membership.permission == "admin" and level != "admin":
                self._keep_an_admin(membership)
            return self.memberships.update_permission(membership_id, level)

    def revoke(self, actor_id: str | None, membership_id: str) -> ItemMembership:
        """Delete a membership. Some other Admin must still cover the item afterwards."""
        with transaction(self.conn):
            membership = self.memberships.get(membership_id)
            self.gate.authorize_item(actor_id, membership.item_id, "admin", include_recycled=True)
            self._keep_an_admin(membership)
            self.memberships.delete(membership_id)
        logger.info("Revoked membership %s on %s", membership.id, membership.item_id)
        return membership

    def _keep_an_admin(self, membership: ItemMembership) -> None:
        others = self.memberships.count_admins_covering(
            membership.item_path, excluding=membership.id
        )
        if others == 0:
            raise CannotDeleteOnlyAdmin(membership.item_id)

    def list_memberships(self, actor_id: str | None, item_id: str) -> list[ItemMembership]:
        """The membership deciding each account's access to the item.

        Per account that is the grant on the nearest ancestor-or-self.
        """
        item = self.gate.authorize_item(actor_id, item_id, "read")
        nearest: dict[str, ItemMembership] = {}
        for membership in self.memberships.list_for_paths(item.path.prefixes()):
            current = nearest.get(membership.account_id)
            if current is None or len(membership.item_path) > len(current.item_path):
                nearest[membership.account_id] = membership
        return sorted(nearest.values(), key=lambda m: (m.created_at, m.account_id))

    def list_visibilities(self, actor_id: str | None, item_id: str) -> list[ItemVisibility]:
        item = self.gate.authorize_item(actor_id, item_id, "read")
        return self.visibilities.list_for_prefixes([item.path])

    def set_visibility(
        self, actor_id: str | None, item_id: str, visibility_type: str
    ) -> ItemVisibility:
        kind = parse_visibility_type(visibility_type)
        with transaction(self.conn):
            item = self.gate.authorize_item(actor_id, item_id, "admin")
            if kind in self.resolver.resolve_visibility(item.path):
                raise VisibilityConflict(item.id, kind)
            visibility = self.visibilities.add(
                item_path=item.path, visibility_type=kind, creator_id=actor_id
            )
        logger.info("Set %s visibility on %s", kind, item.id)
        return visibility

    def clear_visibility(self, actor_id: str | None, item_id: str, visibility_type: str) -> int:
        """Remove the flag set on this item, with any same-type rows below it."""
        kind = parse_visibility_type(visibility_type)
        with transaction(self.conn):
            item = self.gate.authorize_item(actor_id, item_id, "admin")
            nearest = self.visibilities.nearest(item.path, kind)
            if nearest is None:
                raise VisibilityNotFound(item.id, kind)
            if nearest.item_path != item.path:
                raise CannotModifyParentVisibility(item.id, kind)
            removed = self.visibilities.delete_below(item.path, kind)
        logger.info("Cleared %s visibility on %s (%d rows)", kind, item.id, removed)
        return removed
