"""Materialized paths.

An item's path is the ordered tuple of its ancestors' ids ending with its own
id, stored as the ids joined by ``SEPARATOR``. Every prefix comparison works on
whole segments: id ``12`` is never an ancestor of id ``123``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .errors import InvalidIdentifier, NotAPrefix

SEPARATOR = "."
# The character right after SEPARATOR in code point order. Every descendant
# path of ``p`` sorts inside [p + ".", p + "/").
_RANGE_END = chr(ord(SEPARATOR) + 1)


def validate_id(value: str) -> str:
    if not isinstance(value, str) or not value or SEPARATOR in value:
        raise InvalidIdentifier(str(value))
    return value


@dataclass(frozen=True)
class ItemPath:
    ids: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.ids:
            raise InvalidIdentifier("")
        for item_id in self.ids:
            validate_id(item_id)

    @classmethod
    def root(cls, item_id: str) -> ItemPath:
        return cls((validate_id(item_id),))

    @classmethod
    def parse(cls, raw: str) -> ItemPath:
        if not isinstance(raw, str) or not raw:
            raise InvalidIdentifier(str(raw))
        return cls(tuple(raw.split(SEPARATOR)))

    def encode(self) -> str:
        return SEPARATOR.join(self.ids)

    def __str__(self) -> str:
        return self.encode()

    def __len__(self) -> int:
        return len(self.ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids)

    @property
    def id(self) -> str:
        return self.ids[-1]

    @property
    def parent_id(self) -> str | None:
        return self.ids[-2] if len(self.ids) > 1 else None

    @property
    def is_root(self) -> bool:
        return len(self.ids) == 1

    def prefixes(self) -> list[ItemPath]:
        """All ancestor-or-self paths, root first."""
        return [ItemPath(self.ids[: index + 1]) for index in range(len(self.ids))]


def append(parent: ItemPath | None, new_id: str) -> ItemPath:
    validate_id(new_id)
    if parent is None:
        return ItemPath((new_id,))
    return ItemPath(parent.ids + (new_id,))


def parent_path(path: ItemPath) -> ItemPath | None:
    if path.is_root:
        return None
    return ItemPath(path.ids[:-1])


def depth(path: ItemPath) -> int:
    return len(path.ids)


def is_descendant_of(path: ItemPath, ancestor: ItemPath) -> bool:
    """True when ``ancestor`` equals ``path`` or is one of its ancestors."""
    size = len(ancestor.ids)
    return size <= len(path.ids) and path.ids[:size] == ancestor.ids


def rewrite_prefix(path: ItemPath, old_prefix: ItemPath, new_prefix: ItemPath) -> ItemPath:
    if not is_descendant_of(path, old_prefix):
        raise NotAPrefix(path.encode(), old_prefix.encode())
    return ItemPath(new_prefix.ids + path.ids[len(old_prefix.ids) :])


def descendant_range(path: ItemPath) -> tuple[str, str]:
    """Bounds ``[low, high)`` of the encoded paths strictly below ``path``."""
    encoded = path.encode()
    return encoded + SEPARATOR, encoded + _RANGE_END
