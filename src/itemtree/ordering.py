"""Sibling order keys.

Keys are base-62 fractions written as strings of digits (``0-9A-Za-z``) with no
trailing ``"0"``. Digit order matches ASCII order, so plain string comparison
(Python or SQLite's BINARY collation) is numeric comparison, and there is
always room for another key between two distinct keys.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .config import order_key_max_length

DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
BASE = len(DIGITS)
_DIGIT_VALUE = {digit: value for value, digit in enumerate(DIGITS)}


def _validate_key(key: str) -> None:
    if not key:
        raise ValueError("order key must be non-empty")
    if key.endswith(DIGITS[0]):
        raise ValueError(f"order key {key!r} has a trailing zero")
    for char in key:
        if char not in _DIGIT_VALUE:
            raise ValueError(f"order key {key!r} contains invalid digit {char!r}")


def _midpoint(low: str, high: str | None) -> str:
    # low == "" stands for 0, high is None stands for 1.
    if high is not None:
        shared = 0
        while shared < len(high) and (low[shared] if shared < len(low) else DIGITS[0]) == high[
            shared
        ]:
            shared += 1
        if shared > 0:
            return high[:shared] + _midpoint(low[shared:], high[shared:])

    low_digit = _DIGIT_VALUE[low[0]] if low else 0
    high_digit = _DIGIT_VALUE[high[0]] if high is not None else BASE
    if high_digit - low_digit > 1:
        return DIGITS[(low_digit + high_digit) // 2]
    if high is not None and len(high) > 1:
        return high[0]
    return DIGITS[low_digit] + _midpoint(low[1:], None)


def key_after(previous: str | None, next_key: str | None) -> str:
    """Return a key strictly between ``previous`` and ``next_key``.

    Either bound may be ``None``: a missing ``previous`` yields a key before
    ``next_key``, a missing ``next_key`` a key after ``previous``, both missing
    an initial key.
    """
    if previous is not None:
        _validate_key(previous)
    if next_key is not None:
        _validate_key(next_key)
        if previous is not None and previous >= next_key:
            raise ValueError(f"order key {previous!r} is not before {next_key!r}")
    return _midpoint(previous or "", next_key)


def needs_rescale(key: str | None, *, max_length: int | None = None) -> bool:
    if key is None:
        return False
    limit = max_length if max_length is not None else order_key_max_length()
    return len(key) > limit


def siblings_need_rescale(keys: Sequence[str | None], *, max_length: int | None = None) -> bool:
    if len(keys) < 2:
        return False
    if any(key is None for key in keys):
        return True
    if len(set(keys)) != len(keys):
        return True
    return any(needs_rescale(key, max_length=max_length) for key in keys)


def evenly_spaced_keys(count: int) -> list[str]:
    """``count`` fixed-width keys spread over (0, 1) in increasing order."""
    if count <= 0:
        return []
    # Leave at least a full digit of room between neighbours.
    width = 1
    while BASE**width < (count + 1) * BASE:
        width += 1
    span = BASE**width
    keys: list[str] = []
    for index in range(1, count + 1):
        value = index * span // (count + 1)
        digits = []
        for _ in range(width):
            value, remainder = divmod(value, BASE)
            digits.append(DIGITS[remainder])
        keys.append("".join(reversed(digits)).rstrip(DIGITS[0]))
    return keys


def rescale_plan(siblings_in_order: Iterable[object]) -> list[tuple[str, str]]:
    """Fresh keys for siblings, preserving the given order.

    Accepts items (anything with an ``id`` attribute) or plain ids.
    """
    ids = [getattr(sibling, "id", sibling) for sibling in siblings_in_order]
    return list(zip(ids, evenly_spaced_keys(len(ids))))  # type: ignore[arg-type]
