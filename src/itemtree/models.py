from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .paths import ItemPath
from .schemas import ItemType, PermissionLevel, VisibilityType


def now() -> str:
    return datetime.now(UTC).isoformat()


def json_dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


@dataclass
class Item:
    id: str
    path: ItemPath
    name: str
    type: ItemType
    order: str | None = None
    description: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    creator_id: str | None = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None

    @property
    def parent_id(self) -> str | None:
        return self.path.parent_id

    @property
    def is_folder(self) -> bool:
        return self.type == "folder"

    @property
    def is_recycled(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Item:
        return cls(
            id=row["id"],
            path=ItemPath.parse(row["path"]),
            name=row["name"],
            type=row["item_type"],
            order=row["sort_order"],
            description=row["description"],
            extra=json.loads(row["extra_json"]) if row["extra_json"] else {},
            creator_id=row["creator_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path.encode(),
            "parent_id": self.parent_id,
            "name": self.name,
            "type": self.type,
            "order": self.order,
            "description": self.description,
            "extra": self.extra,
            "creator_id": self.creator_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }


@dataclass
class ItemMembership:
    id: str
    account_id: str
    item_path: ItemPath
    permission: PermissionLevel
    creator_id: str | None
    created_at: str
    updated_at: str

    @property
    def item_id(self) -> str:
        return self.item_path.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ItemMembership:
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            item_path=ItemPath.parse(row["item_path"]),
            permission=row["permission"],
            creator_id=row["creator_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "item_id": self.item_id,
            "item_path": self.item_path.encode(),
            "permission": self.permission,
            "creator_id": self.creator_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class ItemVisibility:
    id: str
    item_path: ItemPath
    type: VisibilityType
    creator_id: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ItemVisibility:
        return cls(
            id=row["id"],
            item_path=ItemPath.parse(row["item_path"]),
            type=row["visibility_type"],
            creator_id=row["creator_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_id": self.item_path.id,
            "item_path": self.item_path.encode(),
            "type": self.type,
            "creator_id": self.creator_id,
            "created_at": self.created_at,
        }


@dataclass
class RecycledItemData:
    id: str
    item_id: str
    creator_id: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> RecycledItemData:
        return cls(
            id=row["id"],
            item_id=row["item_id"],
            creator_id=row["creator_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "creator_id": self.creator_id,
            "created_at": self.created_at,
        }
