from __future__ import annotations

import os
from pathlib import Path

DEFAULT_DB_PATH = "./data/itemtree.db"
DEFAULT_DB_TIMEOUT = 5.0
DEFAULT_MAX_REQUEST_BYTES = 1_000_000
DEFAULT_MAX_TREE_LEVELS = 15
DEFAULT_MAX_DESCENDANTS_FOR_MOVE = 500
DEFAULT_MAX_DESCENDANTS_FOR_COPY = 300
DEFAULT_MAX_DESCENDANTS_FOR_RECYCLE = 500
DEFAULT_MOVE_PERMISSION = "admin"
DEFAULT_ORDER_KEY_MAX_LENGTH = 256
DEFAULT_RESCALE_ATTEMPTS = 3
DEFAULT_RESCALE_BACKOFF_SECONDS = 0.2
DEFAULT_LOG_LEVEL = "INFO"


def _positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _non_negative_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def db_path() -> str:
    path = os.environ.get("ITEMTREE_DB_PATH", DEFAULT_DB_PATH)
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return path


def db_timeout() -> float:
    return _non_negative_float("ITEMTREE_DB_TIMEOUT", DEFAULT_DB_TIMEOUT)


def api_key() -> str | None:
    raw = os.environ.get("ITEMTREE_API_KEY")
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def max_request_bytes() -> int:
    return _positive_int("ITEMTREE_MAX_REQUEST_BYTES", DEFAULT_MAX_REQUEST_BYTES)


def max_tree_levels() -> int:
    return _positive_int("ITEMTREE_MAX_TREE_LEVELS", DEFAULT_MAX_TREE_LEVELS)


def max_descendants_for_move() -> int:
    return _positive_int("ITEMTREE_MAX_DESCENDANTS_FOR_MOVE", DEFAULT_MAX_DESCENDANTS_FOR_MOVE)


def max_descendants_for_copy() -> int:
    return _positive_int("ITEMTREE_MAX_DESCENDANTS_FOR_COPY", DEFAULT_MAX_DESCENDANTS_FOR_COPY)


def max_descendants_for_recycle() -> int:
    return _positive_int(
        "ITEMTREE_MAX_DESCENDANTS_FOR_RECYCLE", DEFAULT_MAX_DESCENDANTS_FOR_RECYCLE
    )


def move_permission() -> str:
    raw = os.environ.get("ITEMTREE_MOVE_PERMISSION")
    if raw is None or raw == "":
        return DEFAULT_MOVE_PERMISSION
    lowered = raw.strip().lower()
    if lowered in {"read", "write", "admin"}:
        return lowered
    return DEFAULT_MOVE_PERMISSION


def order_key_max_length() -> int:
    return _positive_int("ITEMTREE_ORDER_KEY_MAX_LENGTH", DEFAULT_ORDER_KEY_MAX_LENGTH)


def rescale_attempts() -> int:
    return _positive_int("ITEMTREE_RESCALE_ATTEMPTS", DEFAULT_RESCALE_ATTEMPTS)


def rescale_backoff_seconds() -> float:
    return _non_negative_float("ITEMTREE_RESCALE_BACKOFF_SECONDS", DEFAULT_RESCALE_BACKOFF_SECONDS)


def log_level() -> str:
    raw = os.environ.get("ITEMTREE_LOG_LEVEL")
    if not raw:
        return DEFAULT_LOG_LEVEL
    lowered = raw.strip().upper()
    if lowered in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        return lowered
    return DEFAULT_LOG_LEVEL


def seed_value() -> int | None:
    raw = os.environ.get("ITEMTREE_SEED")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
