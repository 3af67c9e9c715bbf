from __future__ import annotations

import argparse
import json
import random
from dataclasses import dataclass
from typing import Any

from faker import Faker

from .config import seed_value
from .db import get_connection, init_db
from .engine import Limits
from .errors import ItemTreeError
from .models import Item
from .paths import depth
from .schemas import ItemType, PermissionLevel
from .service import ItemService
from .sharing import SharingService


@dataclass(frozen=True)
class SeedProfile:
    name: str
    root_names: tuple[str, ...]
    folder_names: tuple[str, ...]


COURSE_PROFILE = SeedProfile(
    name="course",
    root_names=(
        "Introduction to Biology",
        "Applied Statistics",
        "History of Science",
        "Creative Writing",
    ),
    folder_names=(
        "Week 1",
        "Week 2",
        "Readings",
        "Assignments",
        "Labs",
        "Resources",
    ),
)


DEFAULT_PROFILE = SeedProfile(
    name="default",
    root_names=(
        "Team Space",
        "Projects",
        "Archive",
    ),
    folder_names=(
        "Drafts",
        "Shared",
        "Reference",
        "Meetings",
    ),
)

LEAF_TYPES: tuple[ItemType, ...] = ("document", "file", "link", "app")
SHARE_PERMISSIONS: tuple[PermissionLevel, ...] = ("read", "read", "write", "admin")


def _pick_profile(name: str) -> SeedProfile:
    normalized = name.strip().lower()
    if normalized == COURSE_PROFILE.name:
        return COURSE_PROFILE
    return DEFAULT_PROFILE


def _unique_accounts(faker: Faker, count: int, rng: random.Random) -> list[str]:
    accounts: list[str] = []
    seen: set[str] = set()
    while len(accounts) < count:
        handle = faker.user_name()
        if handle in seen:
            handle = f"{handle}{rng.randint(1, 999)}"
        if handle in seen:
            continue
        seen.add(handle)
        accounts.append(handle)
    return accounts


def _leaf_extra(faker: Faker, rng: random.Random, item_type: ItemType) -> dict[str, Any]:
    if item_type == "document":
        return {"document": {"content": faker.paragraph(nb_sentences=3)}}
    if item_type == "file":
        return {
            "file": {
                "name": faker.file_name(),
                "mimetype": faker.mime_type(),
                "size": rng.randint(1_000, 5_000_000),
            }
        }
    if item_type == "link":
        return {"embeddedLink": {"url": faker.url()}}
    return {"app": {"url": faker.url()}}


def seed_database(
    accounts: int,
    roots: int,
    folders: int,
    leaves: int,
    seed: int | None,
    *,
    shortcuts: int = 2,
    shares: int = 10,
    hidden: int = 2,
    public: int = 1,
    recycled: int = 1,
    max_depth: int = 4,
    profile: str = "default",
) -> dict[str, Any]:
    """Build a random forest through the regular services.

    Returns a summary of what was created. Does nothing when items already exist.
    """
    init_db()
    rng = random.Random(seed)
    faker = Faker()
    if seed is not None:
        Faker.seed(seed)
    selected_profile = _pick_profile(profile)
    limits = Limits.from_env()
    max_depth = max(2, min(max_depth, limits.max_tree_levels))

    with get_connection() as conn:
        existing = conn.execute("SELECT id FROM items LIMIT 1").fetchone()
        if existing:
            return {"skipped": True}
        service = ItemService(conn, limits=limits)
        sharing = SharingService(conn)

        account_ids = _unique_accounts(faker, max(accounts, 1), rng)
        owners: dict[str, str] = {}

        def owner_of(item: Item) -> str:
            return owners[item.path.ids[0]]

        root_names = list(selected_profile.root_names)
        while len(root_names) < roots:
            root_names.append(faker.catch_phrase())
        root_items: list[Item] = []
        for name in root_names[: max(roots, 1)]:
            owner = rng.choice(account_ids)
            root = service.create(owner, name=name, description=faker.sentence(nb_words=10))
            owners[root.id] = owner
            root_items.append(root)

        folder_items: list[Item] = list(root_items)
        for _ in range(folders):
            candidates = [f for f in folder_items if depth(f.path) < max_depth]
            parent = rng.choice(candidates)
            name = rng.choice(selected_profile.folder_names)
            folder = service.create(owner_of(parent), name=name, parent_id=parent.id)
            folder_items.append(folder)

        leaf_items: list[Item] = []
        for _ in range(leaves):
            candidates = [f for f in folder_items if depth(f.path) < max_depth]
            parent = rng.choice(candidates)
            item_type = rng.choice(LEAF_TYPES)
            leaf = service.create(
                owner_of(parent),
                name=faker.sentence(nb_words=4).rstrip("."),
                item_type=item_type,
                parent_id=parent.id,
                extra=_leaf_extra(faker, rng, item_type),
            )
            leaf_items.append(leaf)

        shortcut_items: list[Item] = []
        for _ in range(shortcuts if leaf_items else 0):
            target = rng.choice(leaf_items)
            parent = rng.choice([f for f in folder_items if depth(f.path) < max_depth])
            if parent.path.ids[0] != target.path.ids[0]:
                continue
            shortcut_items.append(
                service.create(
                    owner_of(parent),
                    name=f"Shortcut to {target.name}",
                    item_type="shortcut",
                    parent_id=parent.id,
                    extra={"shortcut": {"target": target.id}},
                )
            )

        every_item = folder_items + leaf_items + shortcut_items
        granted = 0
        for _ in range(shares):
            item = rng.choice(every_item)
            account = rng.choice(account_ids)
            if account == owner_of(item):
                continue
            try:
                sharing.grant(owner_of(item), item.id, account, rng.choice(SHARE_PERMISSIONS))
            except ItemTreeError:
                continue
            granted += 1

        flagged = {"hidden": 0, "public": 0}
        for visibility_type, count, pool in (
            ("hidden", hidden, folder_items[len(root_items) :] + leaf_items),
            ("public", public, root_items),
        ):
            for item in rng.sample(pool, k=min(count, len(pool))):
                try:
                    sharing.set_visibility(owner_of(item), item.id, visibility_type)
                except ItemTreeError:
                    continue
                flagged[visibility_type] += 1

        recycled_count = 0
        for item in rng.sample(leaf_items, k=min(recycled, len(leaf_items))):
            result = service.engine.recycle(owner_of(item), item.id)
            recycled_count += len(result.succeeded)

    return {
        "skipped": False,
        "accounts": account_ids,
        "roots": len(root_items),
        "folders": len(folder_items) - len(root_items),
        "leaves": len(leaf_items),
        "shortcuts": len(shortcut_items),
        "memberships": granted,
        "hidden": flagged["hidden"],
        "public": flagged["public"],
        "recycled": recycled_count,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed itemtree demo data")
    parser.add_argument("--accounts", type=int, default=8)
    parser.add_argument("--roots", type=int, default=3)
    parser.add_argument("--folders", type=int, default=12)
    parser.add_argument("--leaves", type=int, default=30)
    parser.add_argument("--shortcuts", type=int, default=3)
    parser.add_argument("--shares", type=int, default=15)
    parser.add_argument("--hidden", type=int, default=3)
    parser.add_argument("--public", type=int, default=1)
    parser.add_argument("--recycled", type=int, default=2)
    parser.add_argument("--max-depth", type=int, default=4)
    parser.add_argument("--profile", type=str, default="default")
    args = parser.parse_args()
    summary = seed_database(
        accounts=args.accounts,
        roots=args.roots,
        folders=args.folders,
        leaves=args.leaves,
        seed=seed_value(),
        shortcuts=args.shortcuts,
        shares=args.shares,
        hidden=args.hidden,
        public=args.public,
        recycled=args.recycled,
        max_depth=args.max_depth,
        profile=args.profile,
    )
    print(json.dumps(summary, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
