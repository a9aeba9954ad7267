"""CQL statement builder.

Every statement is emitted with ``?`` placeholders and an ordered parameter
tuple; values never appear in statement text.

Mutations whose criteria pin the full primary key by equality go straight
to a single ``UPDATE``/``DELETE``.  Anything else is planned as a
:class:`MutationPlan`: a key-only ``SELECT ... ALLOW FILTERING`` followed by
one keyed mutation per returned row.  The two phases are not atomic; a row
inserted between them is not affected.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .criteria import Conjunction, parse_criteria, render
from .exceptions import CriteriaError, ImmutableKeyError, MissingKeyError
from .query_options import Criteria
from .schema import (
    DESCRIBE_COLUMNS_CQL,
    DESCRIBE_INDEXES_CQL,
    SchemaDescriptor,
)
from .types import generate_time_uuid, to_native_value

logger = logging.getLogger(__name__)


class StatementKind(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    BATCH = "batch"
    COUNT = "count"
    DDL = "ddl"


@dataclass(frozen=True)
class CompiledStatement:
    """Statement text plus its positional parameters."""

    text: str
    params: tuple[Any, ...] = ()
    kind: StatementKind = StatementKind.SELECT
    allow_filtering: bool = False


@dataclass(frozen=True)
class MutationPlan:
    """
    Two-phase mutation for criteria that do not pin a single row.

    Attributes:
        select: Key-only select locating the affected rows.
        template: Keyed ``UPDATE``/``DELETE`` with the key predicate last.
        leading_params: Parameters bound before the key values (SET values).
        kind: ``UPDATE`` or ``DELETE``.
        key_columns: Key columns read from each selected row, in order.
    """

    select: CompiledStatement
    template: str
    leading_params: tuple[Any, ...]
    kind: StatementKind
    key_columns: tuple[str, ...]

    def statements_for(
        self, rows: Iterable[Mapping[str, Any]]
    ) -> list[CompiledStatement]:
        """One keyed mutation per selected row."""
        return [
            CompiledStatement(
                self.template,
                (*self.leading_params, *(row[c] for c in self.key_columns)),
                self.kind,
            )
            for row in rows
        ]


class StatementBuilder:
    """Builds parameterised statements for one table."""

    def __init__(self, schema: SchemaDescriptor) -> None:
        self.schema = schema

    @property
    def table(self) -> str:
        return self.schema.table_name

    # -- reads ---------------------------------------------------------------

    def build_select(self, criteria: Criteria | None = None) -> CompiledStatement:
        """``SELECT`` every column, using the key fast path when possible.

        The fast path applies only when the where pins the full key by
        equality and nothing else constrains the read; it carries no
        ``ORDER BY``/``LIMIT``/``ALLOW FILTERING``.
        """
        criteria = criteria or Criteria()
        columns = ", ".join(f'"{c}"' for c in self.schema.columns)
        return self._read(
            f"SELECT {columns} FROM {self.table}",
            criteria,
            StatementKind.SELECT,
            limit=criteria.fetch_limit,
            sort=True,
        )

    def build_count(self, criteria: Criteria | None = None) -> CompiledStatement:
        """``SELECT COUNT(*)``; a limit is passed through as ``LIMIT``."""
        criteria = criteria or Criteria()
        return self._read(
            f"SELECT COUNT(*) FROM {self.table}",
            criteria,
            StatementKind.COUNT,
            limit=criteria.limit,
            sort=False,
        )

    def _read(
        self,
        head: str,
        criteria: Criteria,
        kind: StatementKind,
        *,
        limit: int | None,
        sort: bool,
    ) -> CompiledStatement:
        conjunction = self._conjunction(criteria.where)
        params: tuple[Any, ...] = ()
        allow_filtering = False
        text = head
        if conjunction:
            predicate = render(conjunction, self.schema)
            text += f" WHERE {predicate.text}"
            params = predicate.params
            if conjunction.key_values(self.schema) is not None:
                logger.debug("Key lookup on %s", self.table)
                return CompiledStatement(text, params, kind)
            allow_filtering = True
        if sort and criteria.sort:
            order = ", ".join(
                f'"{self.schema.resolve(name)}" {"ASC" if asc else "DESC"}'
                for name, asc in criteria.sort
            )
            text += f" ORDER BY {order}"
        if limit is not None:
            text += f" LIMIT {limit}"
        if allow_filtering:
            text += " ALLOW FILTERING"
        return CompiledStatement(text, params, kind, allow_filtering)

    # -- writes --------------------------------------------------------------

    def build_insert(
        self, record: Mapping[str, Any]
    ) -> tuple[CompiledStatement, dict[str, Any]]:
        """Build an ``INSERT`` and return it with the completed record.

        The completed record is keyed by attribute name and carries the
        generated key and applied defaults.

        Raises:
            TypeError: ``record`` is not a mapping.
            ImmutableKeyError: the record sets an auto-increment key.
            MissingKeyError: a non-generated key attribute is absent.
            UnknownFieldError: a field is not part of the schema.
        """
        if not isinstance(record, Mapping):
            raise TypeError(
                f"Insert values must be a mapping, got {type(record).__name__}"
            )
        values: dict[str, Any] = {}
        for name, value in record.items():
            values[self.schema.resolve(name)] = value

        partition = self.schema.partition_key_column
        if self.schema.auto_increment:
            if partition in values:
                raise ImmutableKeyError(self.schema.partition_key_attr)
            values[partition] = generate_time_uuid()
        for column in self.schema.key_columns:
            if column not in values:
                raise MissingKeyError(self.schema.attribute_for(column))

        for column, default in self.schema.default_values.items():
            if column not in values:
                values[column] = copy.deepcopy(default)

        columns = ", ".join(f'"{c}"' for c in values)
        placeholders = ", ".join("?" for _ in values)
        statement = CompiledStatement(
            f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
            tuple(self._native(c, v) for c, v in values.items()),
            StatementKind.INSERT,
        )
        completed = {self.schema.attribute_for(c): v for c, v in values.items()}
        return statement, completed

    def build_update(
        self, criteria: Criteria | None, values: Mapping[str, Any]
    ) -> CompiledStatement | MutationPlan:
        """``UPDATE`` directly by key, or plan a select-then-update.

        Raises:
            CriteriaError: ``values`` is empty.
            ImmutableKeyError: ``values`` sets a key column.
        """
        if not isinstance(values, Mapping) or not values:
            raise CriteriaError("No values to update")
        assignments: dict[str, Any] = {}
        for name, value in values.items():
            column = self.schema.resolve(name)
            if column in self.schema.key_columns:
                raise ImmutableKeyError(name, "is part of the primary key")
            assignments[column] = value

        set_clause = ", ".join(f'"{c}" = ?' for c in assignments)
        set_params = tuple(self._native(c, v) for c, v in assignments.items())
        return self._mutation(
            f"UPDATE {self.table} SET {set_clause}",
            set_params,
            criteria,
            StatementKind.UPDATE,
        )

    def build_delete(
        self, criteria: Criteria | None = None
    ) -> CompiledStatement | MutationPlan:
        """``DELETE`` directly by key, or plan a select-then-delete."""
        return self._mutation(
            f"DELETE FROM {self.table}", (), criteria, StatementKind.DELETE
        )

    def _mutation(
        self,
        head: str,
        leading: tuple[Any, ...],
        criteria: Criteria | None,
        kind: StatementKind,
    ) -> CompiledStatement | MutationPlan:
        key_columns = self.schema.key_columns
        key_where = " AND ".join(f'"{c}" = ?' for c in key_columns)
        template = f"{head} WHERE {key_where}"

        conjunction = self._conjunction(criteria.where if criteria else None)
        pinned = conjunction.key_values(self.schema) if conjunction else None
        if pinned is not None:
            params = (*leading, *(self._native(c, pinned[c]) for c in key_columns))
            return CompiledStatement(template, params, kind)

        keys = ", ".join(f'"{c}"' for c in key_columns)
        select_text = f"SELECT {keys} FROM {self.table}"
        if conjunction:
            predicate = render(conjunction, self.schema)
            select = CompiledStatement(
                f"{select_text} WHERE {predicate.text} ALLOW FILTERING",
                predicate.params,
                StatementKind.SELECT,
                True,
            )
        else:
            select = CompiledStatement(select_text, (), StatementKind.SELECT)
        logger.debug("Planning %s on %s through a key select", kind.value, self.table)
        return MutationPlan(select, template, leading, kind, key_columns)

    # -- ddl -----------------------------------------------------------------

    def build_create_table(self) -> CompiledStatement:
        return CompiledStatement(
            self.schema.create_table_statement, (), StatementKind.DDL
        )

    def build_create_indexes(self) -> list[CompiledStatement]:
        return [
            CompiledStatement(text, (), StatementKind.DDL)
            for text in self.schema.index_statements.values()
        ]

    def build_drop_table(self) -> CompiledStatement:
        return CompiledStatement(
            self.schema.drop_table_statement, (), StatementKind.DDL
        )

    def build_alter_table(
        self, existing_columns: Iterable[str]
    ) -> list[CompiledStatement]:
        return [
            CompiledStatement(text, (), StatementKind.DDL)
            for text in self.schema.alter_statements(existing_columns)
        ]

    def build_describe(
        self, keyspace: str
    ) -> tuple[CompiledStatement, CompiledStatement]:
        """Column and index queries against ``system_schema``."""
        params = (keyspace, self.table)
        return (
            CompiledStatement(DESCRIBE_COLUMNS_CQL, params),
            CompiledStatement(DESCRIBE_INDEXES_CQL, params),
        )

    # -- helpers -------------------------------------------------------------

    def key_record(self, criteria: Criteria | None) -> dict[str, Any] | None:
        """``{attribute: value}`` when ``criteria`` pins the full key, else None."""
        conjunction = self._conjunction(criteria.where if criteria else None)
        pinned = conjunction.key_values(self.schema) if conjunction else None
        if pinned is None:
            return None
        return {self.schema.attribute_for(c): v for c, v in pinned.items()}

    def _conjunction(self, where: Mapping[str, Any] | None) -> Conjunction:
        if not where:
            return Conjunction(())
        return parse_criteria(where, self.schema)

    def _native(self, column: str, value: Any) -> Any:
        return to_native_value(value, self.schema.column_types[column])
