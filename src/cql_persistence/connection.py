"""CassandraConnectionManager: cluster lifecycle, session and health check."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from cassandra.cluster import Cluster
from cassandra.query import dict_factory

from .config import ConnectionConfig
from .exceptions import ConnectError, StoreError
from .session import CassandraSession

logger = logging.getLogger(__name__)

HEALTH_CHECK_CQL = "SELECT now() FROM system.local"


class CassandraConnectionManager:
    """Own one ``Cluster`` and its shared :class:`CassandraSession`."""

    def __init__(self, config: ConnectionConfig, **cluster_kwargs: Any) -> None:
        self._config = config
        self._cluster_kwargs = cluster_kwargs
        self._cluster: Cluster | None = None
        self._session: CassandraSession | None = None

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    async def connect(self) -> CassandraSession:
        """Connect the cluster and cache the session. Idempotent."""
        if self._session is not None:
            return self._session
        config = self._config
        kwargs: dict[str, Any] = {
            "contact_points": list(config.contact_points),
            "port": config.port,
            **self._cluster_kwargs,
        }
        auth_provider = config.build_auth_provider()
        if auth_provider is not None:
            kwargs["auth_provider"] = auth_provider
        if config.protocol_version is not None:
            kwargs["protocol_version"] = config.protocol_version

        try:
            cluster = Cluster(**kwargs)
        except Exception as e:
            raise ConnectError(str(e)) from e
        loop = asyncio.get_running_loop()
        try:
            driver_session = await loop.run_in_executor(
                None, cluster.connect, config.keyspace
            )
        except Exception as e:
            await loop.run_in_executor(None, cluster.shutdown)
            raise ConnectError(str(e)) from e

        driver_session.row_factory = dict_factory
        if config.request_timeout is not None:
            driver_session.default_timeout = config.request_timeout
        self._cluster = cluster
        self._session = CassandraSession(driver_session)
        logger.info(
            "Connected %r to %s:%d (keyspace=%s)",
            config.identity,
            ",".join(config.contact_points),
            config.port,
            config.keyspace,
        )
        return self._session

    @property
    def session(self) -> CassandraSession:
        """Return the shared session; raises if not connected."""
        if self._session is None:
            raise ConnectError("Not connected; call connect() first")
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def close(self) -> None:
        """Shut the session and the cluster down. Idempotent."""
        session, cluster = self._session, self._cluster
        self._session = None
        self._cluster = None
        if session is not None:
            await session.shutdown()
        if cluster is not None:
            await asyncio.get_running_loop().run_in_executor(None, cluster.shutdown)
            logger.info("Closed connection %r", self._config.identity)

    async def health_check(self) -> bool:
        """Query the local node; return True if it answers."""
        if self._session is None:
            return False
        try:
            await self._session.execute(HEALTH_CHECK_CQL)
            return True
        except StoreError:
            return False
