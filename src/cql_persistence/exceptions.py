"""Exception hierarchy for the CQL persistence adapter.

All exceptions inherit from ``CqlPersistenceError`` and provide
``to_dict()`` for API-friendly error responses.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any

_ABSENT_MARKERS = (
    "non existing",
    "non-existing",
    "unconfigured table",
    "does not exist",
    "doesn't exist",
    "not found",
)


class CqlPersistenceError(Exception):
    """Root exception for the adapter."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


# -- registry / lookup -------------------------------------------------------


class IdentityMissingError(CqlPersistenceError):
    """Raised when a connection is registered without an identity."""

    def __init__(self) -> None:
        super().__init__("Connection is missing an identity")


class IdentityDuplicateError(CqlPersistenceError):
    """Raised when a connection identity is registered twice."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Connection {identity!r} is already registered")


class InvalidConnectionError(CqlPersistenceError):
    """Raised when an operation names an unknown connection."""

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"Connection {identity!r} is not registered")


class CollectionNotRegisteredError(CqlPersistenceError):
    """Raised when an operation names a collection unknown to its connection."""

    def __init__(self, connection: str, collection: str) -> None:
        self.connection = connection
        self.collection = collection
        super().__init__(
            f"Collection {collection!r} is not registered on connection "
            f"{connection!r}"
        )


class ConfigurationError(CqlPersistenceError):
    """Raised when the connection configuration is inconsistent."""


class ConnectError(CqlPersistenceError):
    """Raised when connecting to the cluster fails."""


# -- compilation -------------------------------------------------------------


class SchemaError(CqlPersistenceError):
    """Raised when a model definition cannot be compiled."""

    def __init__(self, message: str, model: str | None = None) -> None:
        self.model = model
        super().__init__(message if model is None else f"{model}: {message}")


class UnsupportedTypeError(CqlPersistenceError):
    """Raised in strict mode for attribute types with no native mapping."""

    def __init__(self, type_name: str | None) -> None:
        self.type_name = type_name
        super().__init__(f"Unsupported attribute type {type_name!r}")


class CriteriaError(CqlPersistenceError):
    """Raised when a criteria object cannot be compiled."""


class UnknownFieldError(CriteriaError):
    """
    Criteria or record references a field not in the schema.

    Provides fuzzy-matched suggestions for likely intended names.
    """

    def __init__(self, field: str, table: str, available: list[str]) -> None:
        self.field = field
        self.table = table
        self.available = sorted(available)
        self.suggestions = get_close_matches(field, self.available, n=3, cutoff=0.6)

        message = f"Unknown field {field!r} on {table!r}."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_FIELD",
            "field": self.field,
            "table": self.table,
            "suggestions": self.suggestions,
            "available_fields": self.available,
        }


class ConflictingOperatorError(CriteriaError):
    """Two bounds on the same side of a range target one attribute."""

    def __init__(self, column: str, first: str, second: str) -> None:
        self.column = column
        self.operators = (first, second)
        super().__init__(
            f"Mutually exclusive operations {first!r} and {second!r} "
            f"on {column!r}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "CONFLICTING_OPERATOR",
            "column": self.column,
            "operators": list(self.operators),
        }


class UnsupportedOperatorError(CriteriaError):
    """A bound object uses an operator that has no CQL rendering."""

    def __init__(self, operator: str, valid_operators: list[str]) -> None:
        self.operator = operator
        self.valid_operators = valid_operators
        self.suggestions = get_close_matches(operator, valid_operators, n=3, cutoff=0.6)

        message = f"Unsupported operation {operator!r}."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNSUPPORTED_OPERATOR",
            "operator": self.operator,
            "suggestions": self.suggestions,
            "valid_operators": sorted(self.valid_operators),
        }


# -- keys --------------------------------------------------------------------


class ImmutableKeyError(CqlPersistenceError):
    """Raised when a write tries to set a generated or key column."""

    def __init__(self, attribute: str, reason: str = "is generated") -> None:
        self.attribute = attribute
        super().__init__(f"Key attribute {attribute!r} {reason} and cannot be set")


class MissingKeyError(CqlPersistenceError):
    """Raised when an insert omits a key that is not generated."""

    def __init__(self, attribute: str) -> None:
        self.attribute = attribute
        super().__init__(f"Missing key attribute {attribute!r} in the insert request")


# -- store -------------------------------------------------------------------


class StoreError(CqlPersistenceError):
    """Wraps an error reported by the underlying session."""

    def __init__(
        self,
        message: str,
        *,
        statement: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        self.statement = statement
        self.original = original
        super().__init__(message)

    @property
    def is_absent(self) -> bool:
        """True when the store reported the target object as already absent."""
        text = str(self.original if self.original is not None else self).lower()
        return any(marker in text for marker in _ABSENT_MARKERS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "STORE_ERROR",
            "message": str(self),
            "statement": self.statement,
            "cause": type(self.original).__name__ if self.original else None,
        }
