"""
Compile a criteria object into a parameterised CQL predicate.

A criteria object maps attribute (or column) names to values:

- a scalar (string, number, date, ...) -> ``"col" = ?``
- a list -> ``"col" IN (?)`` with the whole list bound as one parameter
- a mapping of comparison operators -> ``"col" >= ? AND "col" < ?``

Keys are joined with ``AND``; an ``and`` key holding a list of criteria
objects is flattened into the enclosing conjunction.  The raw object is
parsed once into a tagged :data:`CriteriaValue` tree; rendering walks the
tree without re-inspecting Python types.

Example::

    >>> compile_criteria({"age": {"greaterThanOrEqual": 25, "<": 50}}, schema)
    CompiledPredicate(text='"age" >= ? AND "age" < ?', params=(25, 50))
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from .exceptions import (
    ConflictingOperatorError,
    CriteriaError,
    UnsupportedOperatorError,
)
from .types import to_native_value

if TYPE_CHECKING:
    from .schema import SchemaDescriptor

logger = logging.getLogger(__name__)


class ComparisonOperator(str, Enum):
    """Operators a CQL predicate can render."""

    EQ = "="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    IN = "IN"


OPERATOR_ALIASES: dict[str, ComparisonOperator] = {
    "lessThan": ComparisonOperator.LT,
    "lessThanOrEqual": ComparisonOperator.LE,
    "greaterThan": ComparisonOperator.GT,
    "greaterThanOrEqual": ComparisonOperator.GE,
}

BOUND_OPERATORS = (
    ComparisonOperator.LT,
    ComparisonOperator.LE,
    ComparisonOperator.GT,
    ComparisonOperator.GE,
)

# Operators sharing a side of a range.
_EXCLUSIVE: dict[ComparisonOperator, ComparisonOperator] = {
    ComparisonOperator.LT: ComparisonOperator.LE,
    ComparisonOperator.LE: ComparisonOperator.LT,
    ComparisonOperator.GT: ComparisonOperator.GE,
    ComparisonOperator.GE: ComparisonOperator.GT,
}

_CONJUNCTION_KEY = "and"
_DISJUNCTION_KEY = "or"
_SCALAR_TYPES = (str, bytes, bool, int, float, Decimal, date, time, uuid.UUID)
_ORDERABLE_TYPES = (str, int, float, Decimal, date, time, uuid.UUID)


@dataclass(frozen=True)
class Scalar:
    value: Any


@dataclass(frozen=True)
class ListValue:
    values: tuple[Any, ...]


@dataclass(frozen=True)
class BoundObject:
    bounds: tuple[tuple[ComparisonOperator, Any], ...]


CriteriaValue = Union[Scalar, ListValue, BoundObject]


@dataclass(frozen=True)
class Conjunction:
    """Predicates joined with ``AND``; names already resolved to columns."""

    terms: tuple[tuple[str, CriteriaValue], ...]

    def __bool__(self) -> bool:
        return bool(self.terms)

    def key_values(self, schema: SchemaDescriptor) -> dict[str, Any] | None:
        """Return ``{column: value}`` when the terms pin exactly the full key.

        Every key column must be matched by a single equality and no other
        predicate may be present; otherwise ``None``.
        """
        if len(self.terms) != len(schema.key_columns):
            return None
        pinned: dict[str, Any] = {}
        for column, value in self.terms:
            if column not in schema.key_columns or not isinstance(value, Scalar):
                return None
            pinned[column] = value.value
        if len(pinned) != len(schema.key_columns):
            return None
        return pinned


@dataclass(frozen=True)
class CompiledPredicate:
    text: str
    params: tuple[Any, ...]


def normalize_operator(key: str) -> ComparisonOperator:
    """Map an operator alias or raw token to a bound operator."""
    op = OPERATOR_ALIASES.get(key)
    if op is not None:
        return op
    try:
        op = ComparisonOperator(key)
    except ValueError:
        op = None
    if op not in BOUND_OPERATORS:
        raise UnsupportedOperatorError(
            key, [*OPERATOR_ALIASES, *(o.value for o in BOUND_OPERATORS)]
        )
    return op  # type: ignore[return-value]


def parse_criteria(
    criteria: Mapping[str, Any], schema: SchemaDescriptor
) -> Conjunction:
    """Resolve names and classify every value into a :data:`CriteriaValue`.

    Raises:
        UnknownFieldError: a key is neither a column nor an attribute.
        ConflictingOperatorError: ``<``/``<=`` or ``>``/``>=`` on one attribute.
        UnsupportedOperatorError: a bound object uses an unrenderable operator.
        CriteriaError: a value has an unsupported shape.
    """
    if not isinstance(criteria, Mapping):
        raise CriteriaError("The criteria must be a mapping")
    return Conjunction(tuple(_parse_terms(criteria, schema)))


def _parse_terms(
    criteria: Mapping[str, Any], schema: SchemaDescriptor
) -> list[tuple[str, CriteriaValue]]:
    terms: list[tuple[str, CriteriaValue]] = []
    for key, raw in criteria.items():
        if key == _CONJUNCTION_KEY and _is_sequence(raw):
            for nested in raw:
                if not isinstance(nested, Mapping):
                    raise CriteriaError("'and' expects a list of mappings")
                terms.extend(_parse_terms(nested, schema))
            continue
        if key == _DISJUNCTION_KEY and key not in schema.attr_to_column:
            # CQL has no OR
            raise UnsupportedOperatorError(key, [_CONJUNCTION_KEY])
        column = schema.resolve(key)
        terms.append((column, _classify(column, raw)))
    return terms


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _classify(column: str, raw: Any) -> CriteriaValue:
    if raw is None:
        raise CriteriaError(f"Value for attribute {column!r} must not be null")
    if isinstance(raw, _SCALAR_TYPES):
        return Scalar(raw)
    if isinstance(raw, (list, tuple, set, frozenset)):
        if not raw:
            raise CriteriaError(f"Empty list for attribute {column!r}")
        return ListValue(tuple(raw))
    if isinstance(raw, Mapping):
        return _parse_bounds(column, raw)
    raise CriteriaError(
        f"Value for attribute {column!r} must be a scalar, list or mapping, "
        f"got {type(raw).__name__}"
    )


def _parse_bounds(column: str, raw: Mapping[str, Any]) -> BoundObject:
    if not raw:
        raise CriteriaError(f"Empty operator mapping for attribute {column!r}")
    seen: dict[ComparisonOperator, str] = {}
    bounds: list[tuple[ComparisonOperator, Any]] = []
    for key, operand in raw.items():
        op = normalize_operator(key)
        rival = _EXCLUSIVE[op]
        if rival in seen:
            raise ConflictingOperatorError(column, seen[rival], key)
        if op in seen:
            raise ConflictingOperatorError(column, seen[op], key)
        if isinstance(operand, bool) or not isinstance(operand, _ORDERABLE_TYPES):
            raise CriteriaError(
                f"Invalid operand type {type(operand).__name__!r} for {key!r} "
                f"on {column!r}"
            )
        seen[op] = key
        bounds.append((op, operand))
    return BoundObject(tuple(bounds))


def render(
    conjunction: Conjunction, schema: SchemaDescriptor | None = None
) -> CompiledPredicate:
    """Render a parsed conjunction into clause text and ordered parameters.

    With a ``schema``, parameters are coerced to the column's native type.
    """
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in conjunction.terms:
        native = schema.column_types.get(column) if schema is not None else None
        if isinstance(value, Scalar):
            clauses.append(f'"{column}" = ?')
            params.append(_bind(value.value, native))
        elif isinstance(value, ListValue):
            clauses.append(f'"{column}" IN (?)')
            params.append([_bind(v, native) for v in value.values])
        else:
            for op, operand in value.bounds:
                clauses.append(f'"{column}" {op.value} ?')
                params.append(_bind(operand, native))
    return CompiledPredicate(" AND ".join(clauses), tuple(params))


def _bind(value: Any, native: str | None) -> Any:
    return value if native is None else to_native_value(value, native)


def compile_criteria(
    criteria: Mapping[str, Any] | Conjunction, schema: SchemaDescriptor
) -> CompiledPredicate:
    """Compile ``criteria`` against ``schema`` into clause text and params."""
    if isinstance(criteria, Conjunction):
        conjunction = criteria
    else:
        conjunction = parse_criteria(criteria, schema)
    compiled = render(conjunction, schema)
    logger.debug("Compiled criteria: %s %r", compiled.text, compiled.params)
    return compiled
