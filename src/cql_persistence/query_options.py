"""
Criteria normalisation for the collection facade.

Callers pass criteria in several shapes: nothing at all, a bare where
mapping, a ``{"where": ..., "limit": ..., "skip": ..., "sort": ...}``
mapping, or a bare primary-key value (``find(some_id)``).  ``Criteria``
resolves all of them once on entry so the statement builder sees a single
shape.

The where mapping defines *what* to match; ``limit``/``skip``/``sort``
define *how* rows are returned.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from .exceptions import CriteriaError

if TYPE_CHECKING:
    from .schema import SchemaDescriptor

OPTION_KEYS = frozenset({"where", "limit", "skip", "sort"})

_ASCENDING = {"asc": True, "ascending": True, "desc": False, "descending": False}
_KEY_TYPES = (str, int, float, Decimal, date, uuid.UUID, bytes)


@dataclass(frozen=True)
class Criteria:
    """
    Immutable, normalised criteria.

    Attributes:
        where: Attribute/column predicates (``None`` = no filter).
        limit: Maximum number of rows.
        skip: Rows to discard from the start of the result.
        sort: ``(name, ascending)`` pairs in priority order.
    """

    where: Mapping[str, Any] | None = None
    limit: int | None = None
    skip: int | None = None
    sort: tuple[tuple[str, bool], ...] = field(default_factory=tuple)

    @classmethod
    def normalize(cls, raw: Any, schema: SchemaDescriptor) -> Criteria:
        """Build ``Criteria`` from any accepted caller shape.

        Raises:
            TypeError: ``raw`` has no accepted shape.
            CriteriaError: invalid limit, skip or sort values.
        """
        if raw is None:
            return cls()
        if isinstance(raw, Criteria):
            return raw
        if isinstance(raw, Mapping):
            if raw and set(raw) <= OPTION_KEYS:
                return cls(
                    where=_where(raw.get("where")),
                    # CQL rejects LIMIT 0
                    limit=_count("limit", raw.get("limit"), minimum=1),
                    skip=_count("skip", raw.get("skip")),
                    sort=parse_sort(raw.get("sort")),
                )
            return cls(where=dict(raw) or None)
        if isinstance(raw, _KEY_TYPES) and not isinstance(raw, bool):
            return cls(where={schema.partition_key_attr: raw})
        if isinstance(raw, (list, tuple)) and raw:
            return cls(where={schema.partition_key_attr: list(raw)})
        raise TypeError(
            f"Criteria must be a mapping or a primary key value, "
            f"got {type(raw).__name__}"
        )

    def with_pagination(
        self, limit: int | None = None, skip: int | None = None
    ) -> Criteria:
        """Return a copy with updated pagination parameters."""
        return Criteria(
            where=self.where,
            limit=limit if limit is not None else self.limit,
            skip=skip if skip is not None else self.skip,
            sort=self.sort,
        )

    @property
    def fetch_limit(self) -> int | None:
        """Rows to request from the store; ``skip`` is applied client-side."""
        if self.limit is None:
            return None
        return self.limit + (self.skip or 0)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dictionary."""
        result: dict[str, Any] = {}
        if self.where:
            result["where"] = dict(self.where)
        if self.limit is not None:
            result["limit"] = self.limit
        if self.skip is not None:
            result["skip"] = self.skip
        if self.sort:
            result["sort"] = {name: 1 if asc else -1 for name, asc in self.sort}
        return result


def _where(value: Any) -> Mapping[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise CriteriaError("'where' must be a mapping")
    return dict(value) or None


def _count(name: str, value: Any, *, minimum: int = 0) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise CriteriaError(
            f"{name!r} must be an integer of at least {minimum}, got {value!r}"
        )
    return value


def parse_sort(sort: Any) -> tuple[tuple[str, bool], ...]:
    """Parse sort input into ``(name, ascending)`` pairs.

    Accepts ``{"age": 1, "name": -1}``, ``"age DESC"``, ``"-age"``,
    ``"age asc, name desc"``, or a list of strings / ``(name, direction)``
    tuples.
    """
    if not sort:
        return ()
    if isinstance(sort, Mapping):
        return tuple((name, _direction(name, d)) for name, d in sort.items())
    if isinstance(sort, str):
        return tuple(_parse_sort_token(t) for t in sort.split(",") if t.strip())
    if isinstance(sort, Sequence):
        pairs: list[tuple[str, bool]] = []
        for item in sort:
            if isinstance(item, tuple) and len(item) == 2:
                pairs.append((item[0], _direction(item[0], item[1])))
            elif isinstance(item, str):
                pairs.append(_parse_sort_token(item))
            else:
                raise CriteriaError(f"Invalid sort item {item!r}")
        return tuple(pairs)
    raise CriteriaError(f"Invalid sort {sort!r}")


def _parse_sort_token(token: str) -> tuple[str, bool]:
    parts = token.split()
    if len(parts) == 1:
        name = parts[0]
        if name.startswith("-"):
            return name[1:], False
        return name, True
    if len(parts) == 2:
        return parts[0], _direction(parts[0], parts[1])
    raise CriteriaError(f"Invalid sort {token!r}")


def _direction(name: str, direction: Any) -> bool:
    if isinstance(direction, bool):
        return direction
    if isinstance(direction, int) and direction in (1, -1):
        return direction == 1
    if isinstance(direction, str) and direction.lower() in _ASCENDING:
        return _ASCENDING[direction.lower()]
    raise CriteriaError(f"Invalid sort direction {direction!r} for {name!r}")
