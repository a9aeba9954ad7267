"""
Model definition -> table schema.

``compile_schema`` turns a store-agnostic :class:`ModelDefinition` into an
immutable :class:`SchemaDescriptor`: the attribute/column name maps, native
column types, the (optionally compound) primary key, and the DDL needed to
create the table and its secondary indexes.

Column names are always lower-cased.  The store folds unquoted identifiers
to lower case, so mixed-case names would otherwise silently diverge between
DDL and queries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from .exceptions import SchemaError, UnknownFieldError
from .types import TIME_UUID, from_native_type, to_native_type

logger = logging.getLogger(__name__)

AUDIT_ATTRIBUTES = frozenset({"createdAt", "updatedAt"})

DESCRIBE_COLUMNS_CQL = (
    "SELECT column_name, type, kind, position FROM system_schema.columns "
    "WHERE keyspace_name = ? AND table_name = ?"
)
DESCRIBE_INDEXES_CQL = (
    "SELECT index_name, options FROM system_schema.indexes "
    "WHERE keyspace_name = ? AND table_name = ?"
)


class AttributeDefinition(BaseModel):
    """One model field as declared by the ORM layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    type: str | None = "string"
    column_name: str | None = Field(default=None, alias="columnName")
    primary_key: bool = Field(default=False, alias="primaryKey")
    auto_increment: bool = Field(default=False, alias="autoIncrement")
    clustering: tuple[str, ...] = Field(default=(), alias="clusterPosition")
    unique: bool = False
    index: bool = False
    default_value: Any = Field(
        default=None,
        validation_alias=AliasChoices("default_value", "defaultsTo", "defaultValue"),
    )

    @property
    def column(self) -> str:
        return (self.column_name or self.name).lower()

    @property
    def has_default(self) -> bool:
        return "default_value" in self.model_fields_set


class ModelDefinition(BaseModel):
    """A named set of attributes, optionally bound to an explicit table."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    identity: str
    table_name: str | None = Field(default=None, alias="tableName")
    attributes: dict[str, AttributeDefinition] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("attributes", "definition"),
    )

    @field_validator("attributes", mode="before")
    @classmethod
    def _expand_attributes(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        expanded: dict[str, Any] = {}
        for name, raw in value.items():
            if isinstance(raw, AttributeDefinition):
                expanded[name] = raw
            elif isinstance(raw, str):
                expanded[name] = {"name": name, "type": raw}
            elif isinstance(raw, Mapping):
                expanded[name] = {"name": name, **raw}
            elif callable(raw):
                # instance methods declared on the model are not columns
                continue
            else:
                raise SchemaError(f"Invalid definition for attribute {name!r}")
        return expanded


@dataclass(frozen=True)
class SchemaDescriptor:
    """Compiled, read-only view of one model's table layout."""

    table_name: str
    attr_to_column: Mapping[str, str]
    column_to_attr: Mapping[str, str]
    attr_types: Mapping[str, str | None]
    column_types: Mapping[str, str]
    partition_key_attr: str
    partition_key_column: str
    clustering_columns: tuple[str, ...]
    auto_increment: bool
    indexed_columns: frozenset[str]
    default_values: Mapping[str, Any]
    create_table_statement: str
    index_statements: Mapping[str, str]
    attributes: Mapping[str, AttributeDefinition] = field(repr=False)

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self.column_types)

    @property
    def key_columns(self) -> tuple[str, ...]:
        return (self.partition_key_column, *self.clustering_columns)

    @property
    def key_attributes(self) -> tuple[str, ...]:
        return tuple(self.column_to_attr[c] for c in self.key_columns)

    @property
    def drop_table_statement(self) -> str:
        return f"DROP TABLE {self.table_name}"

    def resolve(self, name: str) -> str:
        """Resolve a column or attribute name to its column.

        Column names are checked first, then attribute names.
        """
        if name in self.column_to_attr:
            return name
        column = self.attr_to_column.get(name)
        if column is None:
            raise UnknownFieldError(
                name, self.table_name, [*self.attr_to_column, *self.column_to_attr]
            )
        return column

    def attribute_for(self, column: str) -> str:
        return self.column_to_attr[column]

    def alter_statements(self, existing_columns: Iterable[str]) -> list[str]:
        """``ALTER TABLE ... ADD`` for every regular column missing live."""
        existing = set(existing_columns)
        statements = []
        for column, native in self.column_types.items():
            if column in existing:
                continue
            if column in self.key_columns:
                logger.warning(
                    "Key column %r missing from live table %r; it cannot be added",
                    column,
                    self.table_name,
                )
                continue
            statements.append(f'ALTER TABLE {self.table_name} ADD "{column}" {native}')
        return statements


def compile_schema(model: ModelDefinition | Mapping[str, Any]) -> SchemaDescriptor:
    """Derive a :class:`SchemaDescriptor` from a model definition.

    Raises:
        SchemaError: on a missing or duplicate primary key, auto-increment on a
            non-key attribute, duplicate columns, or unresolvable clustering
            references.
    """
    if not isinstance(model, ModelDefinition):
        try:
            model = ModelDefinition.model_validate(model)
        except ValidationError as e:
            raise SchemaError(str(e)) from e
    identity = model.identity
    table = model.table_name or identity.lower()

    attr_to_column: dict[str, str] = {}
    column_to_attr: dict[str, str] = {}
    attr_types: dict[str, str | None] = {}
    column_types: dict[str, str] = {}
    defaults: dict[str, Any] = {}
    flagged: list[str] = []
    primary: AttributeDefinition | None = None

    for name, attribute in model.attributes.items():
        column = attribute.column
        if column in column_to_attr:
            raise SchemaError(
                f"Column {column!r} is mapped by both {column_to_attr[column]!r} "
                f"and {name!r}",
                identity,
            )
        attr_to_column[name] = column
        column_to_attr[column] = name
        attr_types[name] = attribute.type

        if attribute.auto_increment and not attribute.primary_key:
            raise SchemaError(
                f"Autoincrement attribute {name!r} is not the primary key", identity
            )
        column_types[column] = (
            TIME_UUID if attribute.auto_increment else to_native_type(attribute.type)
        )

        if attribute.has_default:
            if name in AUDIT_ATTRIBUTES:
                logger.warning(
                    "Default value for attribute %r is not supported; ignoring", name
                )
            else:
                defaults[column] = attribute.default_value

        if attribute.primary_key:
            if primary is not None:
                raise SchemaError(
                    f"Duplicate primary key definition: {primary.name!r} and {name!r}",
                    identity,
                )
            primary = attribute
        if attribute.unique or attribute.index:
            flagged.append(column)

    if primary is None:
        raise SchemaError("Missing primary key definition", identity)

    partition = primary.column
    clustering = _resolve_clustering(
        primary, attr_to_column, column_to_attr, identity
    )

    indexed: list[str] = []
    index_statements: dict[str, str] = {}
    for column in dict.fromkeys(flagged):
        if column == partition:
            logger.debug("Skipping secondary index on partition key %r", column)
            continue
        indexed.append(column)
        index_name = f"idx__{table}__{column}"
        index_statements[index_name] = (
            f'CREATE INDEX {index_name} ON {table} ("{column}")'
        )

    return SchemaDescriptor(
        table_name=table,
        attr_to_column=MappingProxyType(attr_to_column),
        column_to_attr=MappingProxyType(column_to_attr),
        attr_types=MappingProxyType(attr_types),
        column_types=MappingProxyType(column_types),
        partition_key_attr=primary.name,
        partition_key_column=partition,
        clustering_columns=clustering,
        auto_increment=primary.auto_increment,
        indexed_columns=frozenset(indexed),
        default_values=MappingProxyType(defaults),
        create_table_statement=_create_table(
            table, column_types, partition, clustering
        ),
        index_statements=MappingProxyType(index_statements),
        attributes=MappingProxyType(dict(model.attributes)),
    )


def _resolve_clustering(
    primary: AttributeDefinition,
    attr_to_column: Mapping[str, str],
    column_to_attr: Mapping[str, str],
    identity: str,
) -> tuple[str, ...]:
    resolved: list[str] = []
    for ref in primary.clustering:
        if ref in attr_to_column:
            column = attr_to_column[ref]
        elif ref in column_to_attr:
            column = ref
        else:
            raise SchemaError(f"Unknown clustering column {ref!r}", identity)
        if column == primary.column or column in resolved:
            raise SchemaError(f"Clustering column {ref!r} is repeated", identity)
        resolved.append(column)
    return tuple(resolved)


def _create_table(
    table: str,
    column_types: Mapping[str, str],
    partition: str,
    clustering: tuple[str, ...],
) -> str:
    columns = ", ".join(f'"{c}" {t}' for c, t in column_types.items())
    key = ", ".join(f'"{c}"' for c in (partition, *clustering))
    return f"CREATE TABLE {table} ({columns}, PRIMARY KEY ({key}))"


def describe_from_rows(
    schema: SchemaDescriptor,
    column_rows: Iterable[Mapping[str, Any]],
    index_rows: Iterable[Mapping[str, Any]] = (),
) -> dict[str, dict[str, Any]] | None:
    """Rebuild an attribute description from ``system_schema`` rows.

    Only columns known to ``schema`` are reported.  Returns ``None`` when the
    table has no columns (does not exist).
    """
    indexed = set()
    for row in index_rows:
        target = (row.get("options") or {}).get("target", "")
        indexed.add(target.strip('"'))

    described: dict[str, dict[str, Any]] = {}
    partition_keys: list[str] = []
    seen = False
    for row in column_rows:
        seen = True
        column = row["column_name"]
        attr = schema.column_to_attr.get(column)
        if attr is None:
            continue
        entry: dict[str, Any] = {
            "columnName": column,
            "type": from_native_type(row["type"]).value,
        }
        kind = row.get("kind")
        if kind == "partition_key":
            partition_keys.append(attr)
        elif kind == "regular":
            entry["index"] = column in indexed
        described[attr] = entry

    if not seen:
        return None
    if len(partition_keys) == 1:
        described[partition_keys[0]]["primaryKey"] = True
    elif partition_keys:
        logger.warning(
            "Compound partition key detected on %r; primary key not reported",
            schema.table_name,
        )

    merged = {
        name: attribute.model_dump(by_alias=True, exclude_defaults=True)
        for name, attribute in schema.attributes.items()
    }
    for name, entry in described.items():
        merged.setdefault(name, {}).update(entry)
    return merged
