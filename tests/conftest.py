"""Shared fixtures: model definitions and an in-memory recording session."""

from __future__ import annotations

import copy
from collections import deque
from typing import Any

import pytest

from cql_persistence.schema import compile_schema
from cql_persistence.statements import StatementBuilder

USER_MODEL: dict[str, Any] = {
    "identity": "users",
    "attributes": {
        "id": {"type": "string", "primaryKey": True, "autoIncrement": True},
        "name": "string",
        "age": "integer",
        "email": {"type": "email", "unique": True},
        "createdAt": "datetime",
        "updatedAt": "datetime",
    },
}

READING_MODEL: dict[str, Any] = {
    "identity": "Reading",
    "attributes": {
        "device": {
            "type": "string",
            "primaryKey": True,
            "clusterPosition": ["takenAt"],
        },
        "takenAt": {"type": "datetime", "columnName": "taken_at"},
        "value": "float",
        "status": {"type": "string", "defaultsTo": "new", "index": True},
    },
}


class RecordingSession:
    """In-memory session that records statements and replays queued rows.

    ``queue(rows)`` enqueues the result of the next ``execute``/``stream``;
    when the queue is empty an empty result is returned.  ``fail(error)``
    makes the next ``execute`` raise.
    """

    def __init__(self, keyspace: str | None = "test_ks") -> None:
        self.keyspace = keyspace
        self.log: list[tuple[str, Any]] = []
        self.batches: list[list[Any]] = []
        self.fetch_sizes: list[int | None] = []
        self.shutdown_calls = 0
        self._results: deque[list[dict[str, Any]]] = deque()
        self._errors: deque[Exception] = deque()

    def queue(self, *rows: dict[str, Any]) -> RecordingSession:
        self._results.append(list(rows))
        return self

    def fail(self, error: Exception) -> None:
        self._errors.append(error)

    @property
    def executed(self) -> list[tuple[str, tuple[Any, ...]]]:
        return [entry for kind, entry in self.log if kind in ("execute", "stream")]

    async def execute(self, text: str, params: Any = ()) -> list[dict[str, Any]]:
        self.log.append(("execute", (text, tuple(params))))
        if self._errors:
            raise self._errors.popleft()
        return self._results.popleft() if self._results else []

    async def batch(self, statements: Any) -> None:
        self.log.append(("batch", list(statements)))
        self.batches.append(list(statements))

    async def stream(self, text: str, params: Any = (), *, fetch_size=None):
        self.log.append(("stream", (text, tuple(params))))
        self.fetch_sizes.append(fetch_size)
        rows = self._results.popleft() if self._results else []
        for row in rows:
            yield row

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def session() -> RecordingSession:
    return RecordingSession()


@pytest.fixture
def session_factory() -> type[RecordingSession]:
    """For fakes that create their own session, e.g. connection managers."""
    return RecordingSession


@pytest.fixture
def user_schema():
    return compile_schema(USER_MODEL)


@pytest.fixture
def reading_schema():
    return compile_schema(READING_MODEL)


@pytest.fixture
def user_builder(user_schema):
    return StatementBuilder(user_schema)


@pytest.fixture
def reading_builder(reading_schema):
    return StatementBuilder(reading_schema)


@pytest.fixture
def user_model() -> dict[str, Any]:
    return copy.deepcopy(USER_MODEL)


@pytest.fixture
def reading_model() -> dict[str, Any]:
    return copy.deepcopy(READING_MODEL)
