"""Keyset pagination over rows ordered by (timestamp, id), newest first.

A page is produced by fetching one row more than requested in descending
order, dropping the surplus oldest rows and reversing what is left into
chronological order. The cursor names the oldest row that was returned and is
an exclusive upper bound for the next page. Because ``id`` breaks ties between
equal timestamps, every row is returned exactly once across pages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from sparks_chat.core.errors import InvalidCursor

T = TypeVar("T")

_SEPARATOR = "~"


@dataclass(frozen=True, order=True)
class PageKey:
    """Ordering key of a row. ``id`` is None for a bare-timestamp cursor."""

    created_at: str
    id: Optional[str] = None


def encode_cursor(key: PageKey) -> str:
    if key.id is None:
        return key.created_at
    return f"{key.created_at}{_SEPARATOR}{key.id}"


def decode_cursor(cursor: str) -> PageKey:
    """Parse a cursor. A bare timestamp bounds on created_at alone.

    Timestamps never contain the separator, so the first one splits the
    cursor and ids may contain it.
    """
    cursor = cursor.strip()
    if not cursor:
        raise InvalidCursor("Cursor must not be empty")
    created_at, sep, row_id = cursor.partition(_SEPARATOR)
    if not sep:
        return PageKey(created_at=cursor)
    if not created_at or not row_id:
        raise InvalidCursor(f"Malformed cursor: {cursor!r}")
    return PageKey(created_at=created_at, id=row_id)


@dataclass
class Page(Generic[T]):
    items: list[T]
    next_cursor: Optional[str] = None


class KeysetPaginator(Generic[T]):
    """Generic overfetch-and-pop paginator.

    ``fetch(before, count)`` must return up to ``count`` rows strictly older
    than ``before`` (or the newest rows when ``before`` is None), ordered by
    ``(created_at desc, id desc)``. ``key`` extracts the ordering key of a row.
    """

    def __init__(
        self,
        fetch: Callable[[Optional[PageKey], int], Awaitable[list[T]]],
        key: Callable[[T], PageKey],
        overfetch: int = 1,
    ):
        if overfetch < 1:
            raise ValueError("overfetch must be at least 1")
        self._fetch = fetch
        self._key = key
        self._overfetch = overfetch

    async def page(self, limit: int, cursor: Optional[str] = None) -> Page[T]:
        before = decode_cursor(cursor) if cursor else None
        rows = list(await self._fetch(before, limit + self._overfetch))
        return trim_page(rows, limit, self._key)


def trim_page(rows_desc: list[T], limit: int, key: Callable[[T], PageKey]) -> Page[T]:
    """Drop surplus oldest rows, then return the rest oldest-first."""
    has_more = False
    while len(rows_desc) > limit:
        rows_desc.pop()
        has_more = True
    next_cursor: Optional[str] = None
    if has_more and rows_desc:
        # the oldest row kept bounds the next page
        next_cursor = encode_cursor(key(rows_desc[-1]))
    rows_desc.reverse()
    return Page(items=rows_desc, next_cursor=next_cursor)
