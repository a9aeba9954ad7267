"""Tests for CassandraCollection against the recording session."""

from __future__ import annotations

import uuid

import pytest

from cql_persistence.collection import CassandraCollection
from cql_persistence.exceptions import (
    ConfigurationError,
    ImmutableKeyError,
    StoreError,
    UnknownFieldError,
)
from cql_persistence.schema import DESCRIBE_COLUMNS_CQL, DESCRIBE_INDEXES_CQL


@pytest.fixture
def users(user_model, session):
    return CassandraCollection(user_model, session, keyspace="test_ks")


@pytest.fixture
def readings(reading_model, session):
    return CassandraCollection(reading_model, session, keyspace="test_ks")


# -- create --------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_generated_key_is_returned(self, users, session) -> None:
        record = await users.create({"name": "Joe"})
        assert record["id"]
        assert uuid.UUID(record["id"]).version == 1
        assert len(session.batches) == 1
        (statement,) = session.batches[0]
        assert statement.text.startswith("INSERT INTO users")

    @pytest.mark.asyncio
    async def test_reinsert_with_generated_key_fails(self, users, session) -> None:
        record = await users.create({"name": "Joe"})
        with pytest.raises(ImmutableKeyError):
            await users.create({"id": record["id"], "name": "Joe"})
        assert len(session.batches) == 1

    @pytest.mark.asyncio
    async def test_many_records_in_one_batch(self, users, session) -> None:
        records = await users.create([{"name": "a"}, {"name": "b"}])
        assert len(records) == 2
        assert records[0]["id"] != records[1]["id"]
        assert len(session.batches) == 1
        assert len(session.batches[0]) == 2

    @pytest.mark.asyncio
    async def test_invalid_item_fails_whole_batch(self, users, session) -> None:
        with pytest.raises(UnknownFieldError):
            await users.create([{"name": "a"}, {"nickname": "b"}])
        assert session.log == []

    @pytest.mark.asyncio
    async def test_empty_list(self, users, session) -> None:
        assert await users.create([]) == []
        assert session.log == []

    @pytest.mark.asyncio
    async def test_wrong_shape(self, users) -> None:
        with pytest.raises(TypeError):
            await users.create("Joe")  # type: ignore[arg-type]


# -- find / count --------------------------------------------------------------


class TestFind:
    @pytest.mark.asyncio
    async def test_rows_become_records(self, users, session) -> None:
        key = uuid.uuid1()
        session.queue({"id": key, "name": "Joe", "createdat": None})
        records = await users.find({"name": "Joe"})
        assert records == [{"id": str(key), "name": "Joe", "createdAt": None}]

    @pytest.mark.asyncio
    async def test_compile_errors_raise_before_execution(self, users, session) -> None:
        with pytest.raises(UnknownFieldError):
            users.find({"nope": 1})
        assert session.log == []

    @pytest.mark.asyncio
    async def test_skip_is_applied_client_side(self, users, session) -> None:
        session.queue({"name": "a"}, {"name": "b"}, {"name": "c"})
        records = await users.find({"limit": 2, "skip": 1})
        assert [r["name"] for r in records] == ["b", "c"]
        assert session.executed[0][0].endswith("LIMIT 3")

    @pytest.mark.asyncio
    async def test_stream(self, users, session) -> None:
        session.queue({"name": "a"}, {"name": "b"}, {"name": "c"})
        names = [r["name"] async for r in users.find({"skip": 1}).stream(batch_size=2)]
        assert names == ["b", "c"]
        assert session.fetch_sizes == [2]

    @pytest.mark.asyncio
    async def test_first(self, users, session) -> None:
        session.queue({"name": "a"}, {"name": "b"})
        assert (await users.find().first()) == {"name": "a"}
        assert [kind for kind, _ in session.log] == ["stream"]
        assert session.fetch_sizes == [1]

    @pytest.mark.asyncio
    async def test_first_reads_past_skipped_rows(self, users, session) -> None:
        session.queue({"name": "a"}, {"name": "b"}, {"name": "c"})
        assert (await users.find({"skip": 2}).first()) == {"name": "c"}
        assert session.fetch_sizes == [3]

    @pytest.mark.asyncio
    async def test_first_without_rows(self, users) -> None:
        assert (await users.find().first()) is None

    @pytest.mark.asyncio
    async def test_count(self, users, session) -> None:
        session.queue({"count": 4})
        assert await users.count({"name": "Joe"}) == 4
        assert session.executed[0][0].startswith("SELECT COUNT(*) FROM users")

    @pytest.mark.asyncio
    async def test_count_without_rows(self, users) -> None:
        assert await users.count() == 0


# -- update / destroy ----------------------------------------------------------


class TestMutations:
    @pytest.mark.asyncio
    async def test_direct_destroy_issues_one_delete(self, readings, session) -> None:
        deleted = await readings.destroy({"device": "d1", "takenAt": 5})
        assert session.log == [
            (
                "execute",
                (
                    'DELETE FROM reading WHERE "device" = ? AND "taken_at" = ?',
                    ("d1", 5),
                ),
            )
        ]
        assert deleted == [{"device": "d1", "takenAt": 5}]

    @pytest.mark.asyncio
    async def test_filtered_destroy_selects_then_batches(
        self, readings, session
    ) -> None:
        session.queue(
            {"device": "a", "taken_at": 1},
            {"device": "b", "taken_at": 2},
            {"device": "c", "taken_at": 3},
        )
        deleted = await readings.destroy({"status": "old"})
        kinds = [kind for kind, _ in session.log]
        assert kinds == ["execute", "batch"]
        assert session.log[0][1][0].startswith('SELECT "device", "taken_at"')
        assert len(session.batches[0]) == 3
        texts = [s.text for s in session.batches[0]]
        assert all(text.startswith("DELETE FROM reading") for text in texts)
        assert [d["device"] for d in deleted] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_filtered_destroy_without_matches(self, readings, session) -> None:
        assert await readings.destroy({"status": "old"}) == []
        assert session.batches == []

    @pytest.mark.asyncio
    async def test_update_merges_values(self, readings, session) -> None:
        session.queue({"device": "a", "taken_at": 1})
        updated = await readings.update({"status": "new"}, {"value": 9.5})
        assert updated == [{"device": "a", "takenAt": 1, "value": 9.5}]
        (statement,) = session.batches[0]
        assert statement.params == (9.5, "a", 1)

    @pytest.mark.asyncio
    async def test_direct_update(self, users, session) -> None:
        key = str(uuid.uuid1())
        updated = await users.update(key, {"name": "Ann"})
        assert updated == [{"id": key, "name": "Ann"}]
        assert session.executed == [
            ('UPDATE users SET "name" = ? WHERE "id" = ?', ("Ann", uuid.UUID(key)))
        ]

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, users, session) -> None:
        session.fail(StoreError("boom"))
        with pytest.raises(StoreError, match="boom"):
            await users.destroy(str(uuid.uuid1()))


# -- stream / query ------------------------------------------------------------


@pytest.mark.asyncio
async def test_stream_into_sync_and_async_sinks(users, session) -> None:
    seen = []
    session.queue({"name": "a"}, {"name": "b"})
    assert await users.stream(None, seen.append) == 2

    async def sink(record):
        seen.append(record["name"])

    session.queue({"name": "c"})
    assert await users.stream({}, sink) == 1
    assert seen == [{"name": "a"}, {"name": "b"}, "c"]


@pytest.mark.asyncio
async def test_stream_rejects_non_callable_sink(users) -> None:
    with pytest.raises(TypeError):
        await users.stream(None, "sink")  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_raw_query(users, session) -> None:
    session.queue({"id": uuid.UUID(int=1), "extra": 1})
    rows = await users.query("SELECT * FROM users WHERE id = ?", [1])
    assert rows == [{"id": str(uuid.UUID(int=1)), "extra": 1}]
    assert session.executed == [("SELECT * FROM users WHERE id = ?", (1,))]


@pytest.mark.asyncio
async def test_raw_query_batch(users, session) -> None:
    await users.query(["DELETE FROM a WHERE k = ?", "DELETE FROM b"], [[1], []])
    assert [s.params for s in session.batches[0]] == [(1,), ()]


# -- schema --------------------------------------------------------------------


class TestSchema:
    @pytest.mark.asyncio
    async def test_define(self, users, session) -> None:
        await users.define()
        assert [text for text, _ in session.executed] == [
            users.schema.create_table_statement,
            'CREATE INDEX idx__users__email ON users ("email")',
        ]

    @pytest.mark.asyncio
    async def test_drop_swallows_absence(self, users, session) -> None:
        session.fail(StoreError("unconfigured table users"))
        await users.drop()

    @pytest.mark.asyncio
    async def test_drop_propagates_other_errors(self, users, session) -> None:
        session.fail(StoreError("Unauthorized"))
        with pytest.raises(StoreError):
            await users.drop()

    @pytest.mark.asyncio
    async def test_describe(self, users, session) -> None:
        session.queue(
            {"column_name": "id", "type": "timeuuid", "kind": "partition_key"}
        )
        described = await users.describe()
        assert described["id"]["primaryKey"] is True
        assert session.executed == [
            (DESCRIBE_COLUMNS_CQL, ("test_ks", "users")),
            (DESCRIBE_INDEXES_CQL, ("test_ks", "users")),
        ]

    @pytest.mark.asyncio
    async def test_describe_absent(self, users) -> None:
        assert await users.describe() is None

    @pytest.mark.asyncio
    async def test_describe_needs_keyspace(self, user_model, session) -> None:
        collection = CassandraCollection(user_model, session)
        with pytest.raises(ConfigurationError):
            await collection.describe()

    @pytest.mark.asyncio
    async def test_alter_defines_missing_table(self, users, session) -> None:
        await users.alter()
        texts = [text for text, _ in session.executed]
        assert users.schema.create_table_statement in texts

    @pytest.mark.asyncio
    async def test_alter_adds_columns_and_indexes(self, readings, session) -> None:
        session.queue(
            {"column_name": "device", "type": "text", "kind": "partition_key"},
            {"column_name": "taken_at", "type": "timestamp", "kind": "clustering"},
        )
        session.queue()
        await readings.alter()
        texts = [text for text, _ in session.executed][2:]
        assert texts == [
            'ALTER TABLE reading ADD "value" double',
            'ALTER TABLE reading ADD "status" text',
            'CREATE INDEX idx__reading__status ON reading ("status")',
        ]
