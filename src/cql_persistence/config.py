"""ConnectionConfig: validated connection settings for one cluster."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from cassandra.auth import PlainTextAuthProvider
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from .exceptions import ConfigurationError, IdentityMissingError


class MigrateStrategy(str, Enum):
    """What ``register_connection`` does to existing tables.

    ``safe`` never touches the schema and is the only production setting.
    """

    SAFE = "safe"
    ALTER = "alter"
    DROP = "drop"


class ConnectionConfig(BaseModel):
    """Immutable connection settings.

    ``database`` is accepted as a synonym for ``keyspace``.  ``user`` and
    ``password`` build a plain-text auth provider and cannot be combined with
    an explicit ``auth_provider``.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        arbitrary_types_allowed=True,
    )

    identity: str | None = None
    contact_points: tuple[str, ...] = Field(
        default=("127.0.0.1",), alias="contactPoints"
    )
    port: int = Field(default=9042, ge=1, le=65535)
    keyspace: str | None = Field(
        default=None, validation_alias=AliasChoices("keyspace", "database")
    )
    user: str | None = None
    password: str | None = None
    auth_provider: Any = Field(default=None, alias="authProvider")
    migrate: MigrateStrategy = MigrateStrategy.SAFE
    protocol_version: int | None = Field(default=None, alias="protocolVersion")
    request_timeout: float | None = Field(
        default=None, gt=0, alias="requestTimeout"
    )

    @model_validator(mode="after")
    def _check_auth(self) -> ConnectionConfig:
        if self.user is not None and self.auth_provider is not None:
            raise ValueError(
                "user and password are not allowed if auth_provider is specified"
            )
        return self

    @classmethod
    def from_mapping(
        cls, raw: ConnectionConfig | Mapping[str, Any]
    ) -> ConnectionConfig:
        """Validate ``raw``, raising this package's errors instead of pydantic's.

        Raises:
            IdentityMissingError: no identity was given.
            ConfigurationError: any other invalid setting.
        """
        if isinstance(raw, ConnectionConfig):
            config = raw
        else:
            try:
                config = cls.model_validate(raw)
            except ValidationError as e:
                raise ConfigurationError(str(e)) from e
        if not config.identity:
            raise IdentityMissingError
        return config

    def build_auth_provider(self) -> Any:
        """The explicit provider, a plain-text one from credentials, or None."""
        if self.auth_provider is not None:
            return self.auth_provider
        if self.user is None:
            return None
        # the provider requires a string password
        return PlainTextAuthProvider(username=self.user, password=self.password or "")
