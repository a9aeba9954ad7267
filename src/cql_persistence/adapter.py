"""
CassandraAdapter: the operation surface consumed by the ORM runtime.

Connections are registered once under an identity together with the model
definitions they serve.  Every data operation is then addressed by
``(connection_id, collection_id)``.

Example::

    adapter = CassandraAdapter()
    await adapter.register_connection(
        {"identity": "main", "keyspace": "app", "migrate": "alter"},
        {"user": {"attributes": {"id": {"type": "string", "primaryKey": True,
                                        "autoIncrement": True},
                                 "name": "string"}}},
    )
    user = await adapter.create("main", "user", {"name": "Joe"})
    await adapter.teardown()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .collection import CassandraCollection
from .config import ConnectionConfig, MigrateStrategy
from .connection import CassandraConnectionManager
from .exceptions import (
    CollectionNotRegisteredError,
    IdentityDuplicateError,
    InvalidConnectionError,
)
from .schema import ModelDefinition

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from .collection import Record

logger = logging.getLogger(__name__)

ModelDefinitions = Mapping[str, Any]


@dataclass
class RegisteredConnection:
    """One live connection and the collections bound to its session."""

    config: ConnectionConfig
    manager: CassandraConnectionManager
    collections: dict[str, CassandraCollection] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.config.identity or ""


class ConnectionRegistry:
    """Registered connections keyed by identity.

    Owned by one adapter; only ``register_connection`` and ``teardown``
    mutate it.
    """

    def __init__(self) -> None:
        self._connections: dict[str, RegisteredConnection] = {}

    def __contains__(self, identity: object) -> bool:
        return identity in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._connections))

    def add(self, entry: RegisteredConnection) -> None:
        if entry.identity in self._connections:
            raise IdentityDuplicateError(entry.identity)
        self._connections[entry.identity] = entry

    def get(self, identity: str) -> RegisteredConnection:
        try:
            return self._connections[identity]
        except KeyError:
            raise InvalidConnectionError(identity) from None

    def remove(self, identity: str) -> RegisteredConnection:
        entry = self.get(identity)
        del self._connections[identity]
        return entry

    def collection(self, identity: str, collection: str) -> CassandraCollection:
        entry = self.get(identity)
        try:
            return entry.collections[collection]
        except KeyError:
            raise CollectionNotRegisteredError(identity, collection) from None


class CassandraAdapter:
    """Connection registration, schema management and CRUD dispatch."""

    def __init__(
        self,
        *,
        manager_factory: Callable[
            [ConnectionConfig], CassandraConnectionManager
        ] = CassandraConnectionManager,
    ) -> None:
        self.registry = ConnectionRegistry()
        self._manager_factory = manager_factory

    # -- lifecycle -----------------------------------------------------------

    async def register_connection(
        self,
        config: ConnectionConfig | Mapping[str, Any],
        models: ModelDefinitions | None = None,
    ) -> None:
        """Connect, bind every model to the session and run the migration.

        Raises:
            IdentityMissingError: the config has no identity.
            IdentityDuplicateError: the identity is already registered.
            ConfigurationError: the config is otherwise invalid.
            ConnectError: the cluster could not be reached.
            SchemaError: a model definition does not compile.
        """
        config = ConnectionConfig.from_mapping(config)
        identity = config.identity or ""
        if identity in self.registry:
            raise IdentityDuplicateError(identity)

        manager = self._manager_factory(config)
        session = await manager.connect()
        entry = RegisteredConnection(config, manager)
        keyspace = config.keyspace or getattr(session, "keyspace", None)
        # the entry is registered only after the migration succeeded
        try:
            for name, definition in (models or {}).items():
                entry.collections[name] = CassandraCollection(
                    _with_identity(name, definition), session, keyspace=keyspace
                )
            await self._migrate(entry)
            self.registry.add(entry)
        except Exception:
            await manager.close()
            raise
        logger.info(
            "Registered connection %r with %d collection(s)",
            identity,
            len(entry.collections),
        )

    async def teardown(self, connection_id: str | None = None) -> None:
        """Close one connection, or every connection when ``None``.

        Every selected connection is closed even if an earlier ``close()``
        fails; the first failure is re-raised afterwards.
        """
        identities = list(self.registry) if connection_id is None else [connection_id]
        errors: list[Exception] = []
        for identity in identities:
            entry = self.registry.remove(identity)
            try:
                await entry.manager.close()
            except Exception as e:
                logger.exception("Failed to close connection %r", identity)
                errors.append(e)
                continue
            logger.info("Tore down connection %r", identity)
        if errors:
            raise errors[0]

    async def _migrate(self, entry: RegisteredConnection) -> None:
        strategy = entry.config.migrate
        if strategy is MigrateStrategy.SAFE:
            return
        logger.info("Migrating %r with strategy %r", entry.identity, strategy.value)
        for collection in entry.collections.values():
            if strategy is MigrateStrategy.DROP:
                await collection.drop()
                await collection.define()
            else:
                await collection.alter()

    # -- schema --------------------------------------------------------------

    async def describe(
        self, connection_id: str, collection_id: str
    ) -> dict[str, dict[str, Any]] | None:
        return await self._collection(connection_id, collection_id).describe()

    async def define(self, connection_id: str, collection_id: str) -> None:
        await self._collection(connection_id, collection_id).define()

    async def drop(self, connection_id: str, collection_id: str) -> None:
        await self._collection(connection_id, collection_id).drop()

    # -- data ----------------------------------------------------------------

    async def create(
        self, connection_id: str, collection_id: str, values: Mapping[str, Any]
    ) -> Record:
        collection = self._collection(connection_id, collection_id)
        return await collection.create(values)  # type: ignore[return-value]

    async def create_each(
        self,
        connection_id: str,
        collection_id: str,
        values: Sequence[Mapping[str, Any]],
    ) -> list[Record]:
        collection = self._collection(connection_id, collection_id)
        if not values:
            return []
        return await collection.create(list(values))  # type: ignore[return-value]

    async def find(
        self, connection_id: str, collection_id: str, criteria: Any = None
    ) -> list[Record]:
        return await self._collection(connection_id, collection_id).find(criteria)

    async def count(
        self, connection_id: str, collection_id: str, criteria: Any = None
    ) -> int:
        return await self._collection(connection_id, collection_id).count(criteria)

    async def update(
        self,
        connection_id: str,
        collection_id: str,
        criteria: Any,
        values: Mapping[str, Any],
    ) -> list[Record]:
        collection = self._collection(connection_id, collection_id)
        return await collection.update(criteria, values)

    async def destroy(
        self, connection_id: str, collection_id: str, criteria: Any = None
    ) -> list[Record]:
        return await self._collection(connection_id, collection_id).destroy(criteria)

    async def stream(
        self,
        connection_id: str,
        collection_id: str,
        criteria: Any,
        sink: Callable[[Record], Awaitable[Any] | Any],
    ) -> int:
        collection = self._collection(connection_id, collection_id)
        return await collection.stream(criteria, sink)

    async def query(
        self,
        connection_id: str,
        collection_id: str,
        statement: str | Sequence[str],
        params: Sequence[Any] | None = None,
    ) -> list[Record]:
        collection = self._collection(connection_id, collection_id)
        return await collection.query(statement, params)

    def _collection(
        self, connection_id: str, collection_id: str
    ) -> CassandraCollection:
        return self.registry.collection(connection_id, collection_id)


def _with_identity(
    name: str, definition: ModelDefinition | Mapping[str, Any]
) -> ModelDefinition | Mapping[str, Any]:
    if isinstance(definition, ModelDefinition) or "identity" in definition:
        return definition
    if "attributes" in definition or "definition" in definition:
        return {**definition, "identity": name}
    # a bare attribute mapping
    return {"identity": name, "attributes": definition}
