"""Session port and its cassandra-driver implementation.

The driver reports completion on its own I/O thread through
``ResponseFuture`` callbacks.  ``CassandraSession`` bridges those callbacks
onto the running event loop with ``call_soon_threadsafe`` so every public
method is a plain coroutine (or async iterator).

Paged reads fetch the next page only after the consumer has drained the
current one.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    runtime_checkable,
)

from cassandra.query import BatchStatement, SimpleStatement

from .exceptions import StoreError

if TYPE_CHECKING:
    from collections.abc import (
        AsyncIterator,
        Awaitable,
        Callable,
        Sequence,
    )

    from cassandra.cluster import ResponseFuture, Session
    from cassandra.query import PreparedStatement

    from .statements import CompiledStatement

logger = logging.getLogger(__name__)

Row = dict[str, Any]

# The driver binds a whole list to ``IN ?``; the parenthesised form takes
# one value per marker.
_IN_LIST_MARKER = re.compile(r"\bIN \(\?\)")


@runtime_checkable
class ICqlSession(Protocol):
    """
    What the collection facade needs from a store session.

    Rows are plain dicts keyed by column name.  Every failure surfaces as
    :class:`StoreError`.
    """

    async def execute(self, text: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run one statement and return every resulting row."""
        ...

    async def batch(self, statements: Sequence[CompiledStatement]) -> None:
        """Apply several mutations as one logged batch."""
        ...

    def stream(
        self,
        text: str,
        params: Sequence[Any] = (),
        *,
        fetch_size: int | None = None,
    ) -> AsyncIterator[Row]:
        """Yield rows page by page."""
        ...

    async def shutdown(self) -> None:
        ...


async def each_row(
    session: ICqlSession,
    text: str,
    params: Sequence[Any],
    on_row: Callable[[int, Row], Awaitable[Any] | Any],
    *,
    fetch_size: int | None = None,
) -> int:
    """Call ``on_row(index, row)`` for every row; return the row count.

    ``on_row`` may be a plain function or a coroutine function.
    """
    count = 0
    async for row in session.stream(text, params, fetch_size=fetch_size):
        result = on_row(count, row)
        if asyncio.iscoroutine(result):
            await result
        count += 1
    return count


def rewrite_markers(text: str) -> str:
    """Translate ``IN (?)`` into the driver's list-binding ``IN ?``."""
    return _IN_LIST_MARKER.sub("IN ?", text)


class CassandraSession:
    """:class:`ICqlSession` over a connected ``cassandra.cluster.Session``.

    Parameterised statements are prepared once and cached by text.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._prepared: dict[str, PreparedStatement] = {}

    @property
    def driver_session(self) -> Session:
        return self._session

    @property
    def keyspace(self) -> str | None:
        return self._session.keyspace

    async def prepare(self, text: str) -> PreparedStatement:
        """Prepare ``text`` (cached); raises :class:`StoreError` on failure."""
        cql = rewrite_markers(text)
        prepared = self._prepared.get(cql)
        if prepared is not None:
            return prepared
        loop = asyncio.get_running_loop()
        try:
            prepared = await loop.run_in_executor(None, self._session.prepare, cql)
        except Exception as e:
            raise StoreError(str(e), statement=text, original=e) from e
        self._prepared[cql] = prepared
        logger.debug("Prepared statement: %s", cql)
        return prepared

    async def execute(self, text: str, params: Sequence[Any] = ()) -> list[Row]:
        rows: list[Row] = []
        async for page in self._pages(text, params, None):
            rows.extend(page)
        return rows

    async def stream(
        self,
        text: str,
        params: Sequence[Any] = (),
        *,
        fetch_size: int | None = None,
    ) -> AsyncIterator[Row]:
        async for page in self._pages(text, params, fetch_size):
            for row in page:
                yield row

    async def batch(self, statements: Sequence[CompiledStatement]) -> None:
        if not statements:
            return
        batch = BatchStatement()
        for statement in statements:
            prepared = await self.prepare(statement.text)
            batch.add(prepared, tuple(statement.params))
        logger.debug("Executing batch of %d statements", len(statements))
        future = self._submit(batch, "BATCH")
        await self._result(future, "BATCH")

    async def shutdown(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._session.shutdown)
        self._prepared.clear()

    # -- driver bridge -------------------------------------------------------

    async def _statement(
        self, text: str, params: Sequence[Any], fetch_size: int | None
    ) -> Any:
        statement: Any
        if params:
            statement = (await self.prepare(text)).bind(tuple(params))
        else:
            statement = SimpleStatement(text)
        if fetch_size is not None:
            statement.fetch_size = fetch_size
        return statement

    def _submit(self, statement: Any, text: str) -> ResponseFuture:
        try:
            return self._session.execute_async(statement)
        except Exception as e:
            raise StoreError(str(e), statement=text, original=e) from e

    async def _result(self, future: ResponseFuture, text: str) -> Any:
        loop = asyncio.get_running_loop()
        done: asyncio.Future[Any] = loop.create_future()

        def on_success(result: Any) -> None:
            loop.call_soon_threadsafe(_settle, done, result, None)

        def on_error(error: BaseException) -> None:
            loop.call_soon_threadsafe(_settle, done, None, error)

        future.add_callbacks(on_success, on_error)
        try:
            return await done
        except Exception as e:
            raise StoreError(str(e), statement=text, original=e) from e

    async def _pages(
        self, text: str, params: Sequence[Any], fetch_size: int | None
    ) -> AsyncIterator[list[Row]]:
        logger.debug("Executing: %s %r", text, tuple(params))
        statement = await self._statement(text, params, fetch_size)
        future = self._submit(statement, text)

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[tuple[Any, BaseException | None]] = asyncio.Queue()

        def on_page(rows: Any) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (rows, None))

        def on_error(error: BaseException) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, (None, error))

        # callbacks stay registered and fire once per page
        future.add_callbacks(on_page, on_error)
        while True:
            rows, error = await queue.get()
            if error is not None:
                raise StoreError(str(error), statement=text, original=error)
            yield list(rows or ())
            if not future.has_more_pages:
                break
            future.start_fetching_next_page()


def _settle(
    done: asyncio.Future[Any], result: Any, error: BaseException | None
) -> None:
    if done.done():
        return
    if error is not None:
        done.set_exception(error)
    else:
        done.set_result(result)
