"""Generic attribute types <-> CQL column types, and driver value unwrapping."""

from __future__ import annotations

import ipaddress
import json
import logging
import uuid
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from cassandra.util import Date, SortedSet, Time

from .exceptions import UnsupportedTypeError

logger = logging.getLogger(__name__)

FALLBACK_NATIVE_TYPE = "text"
TIME_UUID = "timeuuid"


class GenericType(str, Enum):
    """Attribute types understood by model definitions."""

    STRING = "string"
    TEXT = "text"
    JSON = "json"
    EMAIL = "email"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    BINARY = "binary"
    ARRAY = "array"


_NATIVE_BY_GENERIC: dict[GenericType, str] = {
    GenericType.STRING: "text",
    GenericType.TEXT: "text",
    GenericType.JSON: "text",
    GenericType.EMAIL: "ascii",
    GenericType.INTEGER: "bigint",
    GenericType.FLOAT: "double",
    GenericType.BOOLEAN: "boolean",
    GenericType.DATE: "timestamp",
    GenericType.DATETIME: "timestamp",
    GenericType.BINARY: "blob",
    GenericType.ARRAY: "list<text>",
}

# Canonical inverse; several generic types share a native type.
_GENERIC_BY_NATIVE: dict[str, GenericType] = {
    "text": GenericType.STRING,
    "varchar": GenericType.STRING,
    "ascii": GenericType.EMAIL,
    "bigint": GenericType.INTEGER,
    "int": GenericType.INTEGER,
    "varint": GenericType.INTEGER,
    "counter": GenericType.INTEGER,
    "double": GenericType.FLOAT,
    "float": GenericType.FLOAT,
    "decimal": GenericType.FLOAT,
    "boolean": GenericType.BOOLEAN,
    "timestamp": GenericType.DATETIME,
    "date": GenericType.DATE,
    "blob": GenericType.BINARY,
    "list<text>": GenericType.ARRAY,
    "timeuuid": GenericType.STRING,
    "uuid": GenericType.STRING,
    "inet": GenericType.STRING,
}


def to_native_type(generic_type: str | None, *, strict: bool = False) -> str:
    """Map a generic attribute type to its CQL column type.

    Unknown types fall back to ``text`` with a warning, unless ``strict``.
    """
    name = (generic_type or "").lower()
    try:
        return _NATIVE_BY_GENERIC[GenericType(name)]
    except ValueError:
        if strict:
            raise UnsupportedTypeError(generic_type) from None
        logger.warning(
            "Unregistered type %r. Treating as %r.", generic_type, FALLBACK_NATIVE_TYPE
        )
        return FALLBACK_NATIVE_TYPE


def from_native_type(native_type: str) -> GenericType:
    """Map a CQL column type back to its canonical generic type."""
    name = native_type.lower().replace(" ", "")
    generic = _GENERIC_BY_NATIVE.get(name)
    if generic is not None:
        return generic
    if name.startswith(("list<", "set<")):
        return GenericType.ARRAY
    if name.startswith("map<"):
        return GenericType.JSON
    logger.warning("Unregistered native type %r. Treating as string.", native_type)
    return GenericType.STRING


def from_native_value(value: Any) -> Any:
    """Unwrap driver value types into plain scalars, lists and dicts."""
    if value is None:
        return None
    if isinstance(value, (str, bytes, bool, int, float, datetime)):
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Date):
        return value.date()
    if isinstance(value, Time):
        return value.time()
    if isinstance(value, (date, time)):
        return value
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return str(value)
    if isinstance(value, Mapping):
        # tuple keys stay hashable as-is
        return {
            k if isinstance(k, tuple) else from_native_value(k): from_native_value(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset, SortedSet)):
        return [from_native_value(v) for v in value]
    return value


def generate_time_uuid() -> str:
    """Return a new time-ordered unique identifier as a string."""
    return str(uuid.uuid1())


def to_native_value(value: Any, native_type: str) -> Any:
    """Coerce a generic value into what the driver binds for ``native_type``."""
    if value is None:
        return None
    if native_type in (TIME_UUID, "uuid") and isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            # let the store report the malformed identifier
            return value
    if native_type.startswith("list<") and isinstance(value, (list, tuple, set)):
        inner = native_type[5:-1]
        return [to_native_value(v, inner) for v in value]
    if native_type in ("text", "ascii"):
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if not isinstance(value, str):
            return str(value)
    if native_type == "bigint" and isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def to_generic_value(value: Any, generic_type: str | None) -> Any:
    """Unwrap a driver value and decode json attributes."""
    value = from_native_value(value)
    if (generic_type or "").lower() == GenericType.JSON and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
