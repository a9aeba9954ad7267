"""
CassandraCollection: executes one model's statements against a session.

Every operation compiles its statements up front, so invalid criteria or
records raise before anything reaches the store.  Rows coming back are
converted to records keyed by attribute name.

``update`` and ``destroy`` on criteria that do not pin the full primary key
run in two phases: a key-only ``SELECT ... ALLOW FILTERING`` followed by a
batch of keyed mutations.  The phases are not atomic; a row modified
between the read and the batch is written anyway, and a row that starts
matching after the read is missed.  Results of ``update`` are the caller's
values merged onto the matched keys, not a re-read of the stored rows.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigurationError, StoreError
from .query_options import Criteria
from .schema import ModelDefinition, compile_schema, describe_from_rows
from .search_result import SearchResult
from .session import each_row
from .statements import (
    CompiledStatement,
    MutationPlan,
    StatementBuilder,
    StatementKind,
)
from .types import from_native_value, to_generic_value

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from .schema import SchemaDescriptor
    from .session import ICqlSession, Row

logger = logging.getLogger(__name__)

Record = dict[str, Any]


class CassandraCollection:
    """Statement execution for one model definition."""

    def __init__(
        self,
        definition: ModelDefinition | Mapping[str, Any],
        session: ICqlSession,
        *,
        keyspace: str | None = None,
    ) -> None:
        self.schema: SchemaDescriptor = compile_schema(definition)
        self.builder = StatementBuilder(self.schema)
        self._session = session
        self._keyspace = keyspace

    @property
    def table_name(self) -> str:
        return self.schema.table_name

    # -- records -------------------------------------------------------------

    def to_record(self, row: Mapping[str, Any]) -> Record:
        """Convert a store row into a record keyed by attribute name.

        Columns outside the schema keep their column name.
        """
        record: Record = {}
        for column, value in row.items():
            attr = self.schema.column_to_attr.get(column)
            if attr is None:
                record[column] = from_native_value(value)
            else:
                record[attr] = to_generic_value(value, self.schema.attr_types[attr])
        return record

    def _key_record(self, row: Mapping[str, Any]) -> Record:
        return {
            self.schema.attribute_for(c): from_native_value(row[c])
            for c in self.schema.key_columns
        }

    # -- crud ----------------------------------------------------------------

    async def create(
        self, values: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> Record | list[Record]:
        """Insert one record or many in a single batch.

        Every record is validated before anything is sent; one invalid
        record fails the whole call.  Returns the records with generated
        keys and applied defaults.
        """
        single = isinstance(values, Mapping)
        if single:
            items = [values]
        elif isinstance(values, Sequence) and not isinstance(values, (str, bytes)):
            items = list(values)
        else:
            raise TypeError(
                f"create expects a mapping or a list of mappings, "
                f"got {type(values).__name__}"
            )
        if not items:
            return []
        built = [self.builder.build_insert(item) for item in items]
        await self._session.batch([statement for statement, _ in built])
        records = [record for _, record in built]
        logger.debug("Inserted %d record(s) into %s", len(records), self.table_name)
        return records[0] if single else records

    def find(self, criteria: Any = None) -> SearchResult[Record]:
        """Return a lazy result: ``await`` it for a list, or ``.stream()`` it.

        ``skip`` is applied client-side; the store is asked for
        ``limit + skip`` rows and the first ``skip`` are discarded.
        """
        normalized = Criteria.normalize(criteria, self.schema)
        statement = self.builder.build_select(normalized)
        skip = normalized.skip or 0

        async def list_fn() -> list[Record]:
            rows = await self._session.execute(statement.text, statement.params)
            return [self.to_record(row) for row in rows[skip:]]

        async def stream_fn(batch_size: int | None) -> AsyncGenerator[Record, None]:
            index = 0
            async for row in self._session.stream(
                statement.text, statement.params, fetch_size=batch_size
            ):
                if index >= skip:
                    yield self.to_record(row)
                index += 1

        return SearchResult(list_fn, stream_fn, first_page_size=skip + 1)

    async def count(self, criteria: Any = None) -> int:
        normalized = Criteria.normalize(criteria, self.schema)
        statement = self.builder.build_count(normalized)
        rows = await self._session.execute(statement.text, statement.params)
        if not rows:
            return 0
        return int(rows[0].get("count", 0))

    async def update(self, criteria: Any, values: Mapping[str, Any]) -> list[Record]:
        """Apply ``values`` to every matching row.

        Returns one record per matched key with ``values`` merged in.
        """
        normalized = Criteria.normalize(criteria, self.schema)
        plan = self.builder.build_update(normalized, values)
        changes = {
            self.schema.attribute_for(self.schema.resolve(name)): value
            for name, value in values.items()
        }
        keys = await self._apply(plan, normalized)
        return [{**key, **changes} for key in keys]

    async def destroy(self, criteria: Any = None) -> list[Record]:
        """Delete every matching row; returns the deleted keys."""
        normalized = Criteria.normalize(criteria, self.schema)
        plan = self.builder.build_delete(normalized)
        return await self._apply(plan, normalized)

    async def _apply(
        self, plan: CompiledStatement | MutationPlan, criteria: Criteria
    ) -> list[Record]:
        if isinstance(plan, CompiledStatement):
            await self._session.execute(plan.text, plan.params)
            key = self.builder.key_record(criteria)
            return [key] if key is not None else []

        rows = await self._session.execute(plan.select.text, plan.select.params)
        statements = plan.statements_for(rows)
        if statements:
            await self._session.batch(statements)
        logger.debug(
            "Applied %s to %d row(s) of %s",
            plan.kind.value,
            len(statements),
            self.table_name,
        )
        return [self._key_record(row) for row in rows]

    async def stream(
        self,
        criteria: Any,
        sink: Callable[[Record], Awaitable[Any] | Any],
        *,
        fetch_size: int | None = None,
    ) -> int:
        """Push converted rows into ``sink`` as pages arrive.

        ``sink`` may be a plain function or a coroutine function.  Returns
        the number of records pushed.
        """
        if not callable(sink):
            raise TypeError("sink must be callable")
        normalized = Criteria.normalize(criteria, self.schema)
        statement = self.builder.build_select(normalized)
        skip = normalized.skip or 0
        pushed = 0

        async def on_row(index: int, row: Row) -> None:
            nonlocal pushed
            if index < skip:
                return
            result = sink(self.to_record(row))
            if asyncio.iscoroutine(result):
                await result
            pushed += 1

        await each_row(
            self._session,
            statement.text,
            statement.params,
            on_row,
            fetch_size=fetch_size,
        )
        return pushed

    async def query(
        self,
        statement: str | Sequence[str],
        params: Sequence[Any] | Sequence[Sequence[Any]] | None = None,
    ) -> list[Record]:
        """Run raw CQL.

        A single statement returns its rows converted to records.  A list of
        statements runs as one batch, with ``params`` holding one parameter
        sequence per statement, and returns an empty list.
        """
        if isinstance(statement, str):
            rows = await self._session.execute(statement, tuple(params or ()))
            return [self.to_record(row) for row in rows]
        if not isinstance(statement, Sequence):
            raise TypeError(
                f"query expects a statement or a list of statements, "
                f"got {type(statement).__name__}"
            )
        per_statement = list(params or [()] * len(statement))
        if len(per_statement) != len(statement):
            raise TypeError("query expects one parameter sequence per statement")
        await self._session.batch(
            [
                CompiledStatement(text, tuple(p), StatementKind.BATCH)
                for text, p in zip(statement, per_statement)
            ]
        )
        return []

    # -- schema --------------------------------------------------------------

    async def define(self) -> None:
        """Create the table and its secondary indexes."""
        await self._run(self.builder.build_create_table())
        for statement in self.builder.build_create_indexes():
            await self._run(statement)
        logger.info("Defined table %s", self.table_name)

    async def drop(self) -> None:
        """Drop the table; a table that is already absent is not an error."""
        try:
            await self._run(self.builder.build_drop_table())
        except StoreError as e:
            if not e.is_absent:
                raise
            logger.debug("Table %s already absent", self.table_name)
            return
        logger.info("Dropped table %s", self.table_name)

    async def describe(self) -> dict[str, dict[str, Any]] | None:
        """Describe the live table, or ``None`` if it does not exist."""
        columns, indexes = await self._live_schema()
        return describe_from_rows(self.schema, columns, indexes)

    async def alter(self) -> None:
        """Create the table if missing, else add missing columns and indexes."""
        columns, indexes = await self._live_schema()
        if not columns:
            await self.define()
            return
        for statement in self.builder.build_alter_table(
            row["column_name"] for row in columns
        ):
            await self._run(statement)
        existing = {row["index_name"] for row in indexes}
        for name, text in self.schema.index_statements.items():
            if name not in existing:
                await self._session.execute(text)
        logger.info("Altered table %s", self.table_name)

    async def _live_schema(self) -> tuple[list[Row], list[Row]]:
        if not self._keyspace:
            raise ConfigurationError(
                f"A keyspace is required to describe {self.table_name!r}"
            )
        columns_query, indexes_query = self.builder.build_describe(self._keyspace)
        columns = await self._session.execute(
            columns_query.text, columns_query.params
        )
        indexes = await self._session.execute(
            indexes_query.text, indexes_query.params
        )
        return columns, indexes

    async def _run(self, statement: CompiledStatement) -> list[Row]:
        return await self._session.execute(statement.text, statement.params)
