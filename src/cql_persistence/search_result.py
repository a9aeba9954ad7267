"""
SearchResult: lazy find result that supports both await (-> list) and .stream().

Usage::

    # Batch mode: await to get every matching record
    users = await collection.find({"age": {">=": 25}})

    # Stream mode: page through the table without buffering it
    async for user in collection.find().stream(batch_size=500):
        process(user)

    # One row, one page
    user = await collection.find({"name": "Joe"}).first()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Coroutine, Generator

T = TypeVar("T")


class SearchResult(Generic[T]):
    """
    Deferred query result.

    No statement is executed at construction time; execution happens when
    the caller awaits the result, iterates ``.stream()`` or calls ``first()``.

    Parameters
    ----------
    list_fn:
        Zero-argument async callable that returns a ``list[T]``.
    stream_fn:
        Callable ``(fetch_size: int | None) -> AsyncGenerator[T, None]``.
    first_page_size:
        Rows ``first()`` asks for; enough to cover rows skipped
        client-side.
    """

    __slots__ = ("_first_page_size", "_list_fn", "_stream_fn")

    def __init__(
        self,
        list_fn: Callable[[], Coroutine[Any, Any, list[T]]],
        stream_fn: Callable[[int | None], AsyncGenerator[T, None]],
        *,
        first_page_size: int = 1,
    ) -> None:
        self._list_fn = list_fn
        self._stream_fn = stream_fn
        self._first_page_size = first_page_size

    def __await__(self) -> Generator[Any, None, list[T]]:
        return self._list_fn().__await__()

    def stream(self, *, batch_size: int | None = None) -> AsyncGenerator[T, None]:
        """Return an async iterator over the matching records.

        Args:
            batch_size: Rows fetched per page.  ``None`` keeps the driver
                default.
        """
        return self._stream_fn(batch_size)

    async def first(self) -> T | None:
        """Return the first result, or ``None`` if nothing matched.

        Reads a single page and stops; later pages are never requested.
        """
        rows = self._stream_fn(self._first_page_size)
        try:
            async for item in rows:
                return item
            return None
        finally:
            await rows.aclose()
