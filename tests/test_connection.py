"""Tests for CassandraConnectionManager with the driver's Cluster patched out."""

from __future__ import annotations

import pytest
from cassandra.query import dict_factory

from cql_persistence import connection as connection_module
from cql_persistence.config import ConnectionConfig
from cql_persistence.connection import HEALTH_CHECK_CQL, CassandraConnectionManager
from cql_persistence.exceptions import ConnectError
from cql_persistence.session import CassandraSession


class _Answer:
    def __init__(self, error=None):
        self.error = error
        self.has_more_pages = False

    def add_callbacks(self, callback, errback):
        if self.error is not None:
            errback(self.error)
        else:
            callback([{"system.now()": 1}])


class FakeDriverSession:
    def __init__(self, keyspace):
        self.keyspace = keyspace
        self.row_factory = None
        self.default_timeout = 10.0
        self.queries = []
        self.error = None
        self.shutdown_calls = 0

    def execute_async(self, statement):
        self.queries.append(statement.query_string)
        return _Answer(self.error)

    def shutdown(self):
        self.shutdown_calls += 1


class FakeCluster:
    instances: list[FakeCluster] = []
    connect_error: Exception | None = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.sessions = []
        self.shutdown_calls = 0
        FakeCluster.instances.append(self)

    def connect(self, keyspace=None):
        if FakeCluster.connect_error is not None:
            raise FakeCluster.connect_error
        session = FakeDriverSession(keyspace)
        self.sessions.append(session)
        return session

    def shutdown(self):
        self.shutdown_calls += 1


@pytest.fixture(autouse=True)
def fake_cluster(monkeypatch):
    FakeCluster.instances = []
    FakeCluster.connect_error = None
    monkeypatch.setattr(connection_module, "Cluster", FakeCluster)
    return FakeCluster


def _manager(**settings):
    return CassandraConnectionManager(ConnectionConfig(identity="main", **settings))


class TestConnect:
    @pytest.mark.asyncio
    async def test_builds_cluster_from_config(self, fake_cluster) -> None:
        manager = _manager(
            contact_points=("a", "b"), port=9142, keyspace="app", protocol_version=4
        )
        session = await manager.connect()
        assert isinstance(session, CassandraSession)
        (cluster,) = fake_cluster.instances
        assert cluster.kwargs == {
            "contact_points": ["a", "b"],
            "port": 9142,
            "protocol_version": 4,
        }
        assert session.keyspace == "app"
        assert session.driver_session.row_factory is dict_factory
        assert manager.is_connected

    @pytest.mark.asyncio
    async def test_credentials_become_auth_provider(self, fake_cluster) -> None:
        await _manager(user="u", password="p").connect()
        provider = fake_cluster.instances[0].kwargs["auth_provider"]
        assert provider.username == "u"

    @pytest.mark.asyncio
    async def test_extra_cluster_kwargs_are_forwarded(self, fake_cluster) -> None:
        config = ConnectionConfig(identity="main")
        await CassandraConnectionManager(config, compression=False).connect()
        assert fake_cluster.instances[0].kwargs["compression"] is False

    @pytest.mark.asyncio
    async def test_request_timeout(self) -> None:
        session = await _manager(request_timeout=3.0).connect()
        assert session.driver_session.default_timeout == 3.0

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, fake_cluster) -> None:
        manager = _manager()
        first = await manager.connect()
        assert await manager.connect() is first
        assert len(fake_cluster.instances) == 1

    @pytest.mark.asyncio
    async def test_connect_failure_shuts_cluster_down(self, fake_cluster) -> None:
        fake_cluster.connect_error = RuntimeError("NoHostAvailable")
        manager = _manager()
        with pytest.raises(ConnectError, match="NoHostAvailable"):
            await manager.connect()
        assert fake_cluster.instances[0].shutdown_calls == 1
        assert not manager.is_connected


class TestLifecycle:
    def test_session_before_connect(self) -> None:
        with pytest.raises(ConnectError, match="Not connected"):
            _ = _manager().session

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_cluster) -> None:
        manager = _manager()
        session = await manager.connect()
        await manager.close()
        await manager.close()
        assert session.driver_session.shutdown_calls == 1
        assert fake_cluster.instances[0].shutdown_calls == 1
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        manager = _manager()
        assert await manager.health_check() is False
        session = await manager.connect()
        assert await manager.health_check() is True
        assert session.driver_session.queries == [HEALTH_CHECK_CQL]
        session.driver_session.error = RuntimeError("timeout")
        assert await manager.health_check() is False
