"""Pagination and id helpers shared by the monitor tools."""

import re
from typing import Generic, NamedTuple, TypeVar

T = TypeVar("T")

_NUMERIC_ID = re.compile(r"^\d+$")


class Page(NamedTuple, Generic[T]):
    """One page of a filtered result list"""

    items: list[T]
    total: int
    start: int
    end: int
    has_more: bool


def paginate(items: list[T], page_size: int | None = None, page_idx: int = 0) -> Page[T]:
    """
    Slice a list into a page.

    Args:
        items: Full (already filtered) result list
        page_size: Maximum items per page; None returns everything
        page_idx: 0-based page number

    Returns:
        Page with the slice and its position. Pages past the end are empty,
        never an error.

    Raises:
        ValueError: If page_size is not positive or page_idx is negative
    """
    total = len(items)
    if page_size is None:
        return Page(list(items), total, 0, total, False)

    if page_size <= 0:
        raise ValueError("page_size must be positive")
    if page_idx < 0:
        raise ValueError("page_idx must be non-negative")

    start = page_idx * page_size
    end = min(start + page_size, total)
    page_items = items[start:end] if start < total else []
    return Page(page_items, total, start, max(end, start), start + len(page_items) < total)


def normalize_prefixed_id(value: str | int | None, prefix: str) -> str | None:
    """
    Normalize a user-supplied id to its canonical prefixed form.

    ``1``, ``"1"`` and ``"req_1"`` all become ``"req_1"`` for prefix ``req``.
    Other strings are returned stripped but otherwise unchanged, so that the
    lookup reports them as unknown.
    """
    if value is None:
        return None

    raw = str(value).strip()
    if not raw:
        return None

    if raw.startswith(f"{prefix}_"):
        return raw

    if _NUMERIC_ID.match(raw):
        return f"{prefix}_{raw}"

    return raw
