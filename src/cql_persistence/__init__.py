"""Cassandra/CQL persistence adapter.

Compiles store-agnostic model definitions into table DDL and criteria
objects into parameterised CQL, executes them over cassandra-driver, and
returns records keyed by attribute name.
"""

from __future__ import annotations

# Adapter surface
from .adapter import CassandraAdapter, ConnectionRegistry, RegisteredConnection
from .collection import CassandraCollection
from .config import ConnectionConfig, MigrateStrategy
from .connection import CassandraConnectionManager

# Compilation
from .criteria import (
    ComparisonOperator,
    CompiledPredicate,
    compile_criteria,
    parse_criteria,
)
from .exceptions import (
    CollectionNotRegisteredError,
    ConfigurationError,
    ConflictingOperatorError,
    ConnectError,
    CqlPersistenceError,
    CriteriaError,
    IdentityDuplicateError,
    IdentityMissingError,
    ImmutableKeyError,
    InvalidConnectionError,
    MissingKeyError,
    SchemaError,
    StoreError,
    UnknownFieldError,
    UnsupportedOperatorError,
    UnsupportedTypeError,
)
from .query_options import Criteria
from .schema import (
    AttributeDefinition,
    ModelDefinition,
    SchemaDescriptor,
    compile_schema,
)
from .search_result import SearchResult

# Session
from .session import CassandraSession, ICqlSession, each_row
from .statements import (
    CompiledStatement,
    MutationPlan,
    StatementBuilder,
    StatementKind,
)
from .types import (
    GenericType,
    from_native_type,
    from_native_value,
    to_native_type,
    to_native_value,
)

__all__ = [
    # Adapter
    "CassandraAdapter",
    "CassandraCollection",
    "CassandraConnectionManager",
    "ConnectionConfig",
    "ConnectionRegistry",
    "MigrateStrategy",
    "RegisteredConnection",
    "SearchResult",
    # Session
    "CassandraSession",
    "ICqlSession",
    "each_row",
    # Compilation
    "AttributeDefinition",
    "ModelDefinition",
    "SchemaDescriptor",
    "compile_schema",
    "ComparisonOperator",
    "CompiledPredicate",
    "Criteria",
    "compile_criteria",
    "parse_criteria",
    "CompiledStatement",
    "MutationPlan",
    "StatementBuilder",
    "StatementKind",
    "GenericType",
    "from_native_type",
    "from_native_value",
    "to_native_type",
    "to_native_value",
    # Exceptions
    "CqlPersistenceError",
    "IdentityMissingError",
    "IdentityDuplicateError",
    "InvalidConnectionError",
    "CollectionNotRegisteredError",
    "ConfigurationError",
    "ConnectError",
    "SchemaError",
    "UnsupportedTypeError",
    "CriteriaError",
    "UnknownFieldError",
    "ConflictingOperatorError",
    "UnsupportedOperatorError",
    "ImmutableKeyError",
    "MissingKeyError",
    "StoreError",
]
