"""Database: a Redis client bound to a registry and a persistence strategy."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import redis

from redohm.config import RedohmConfig
from redohm.locking import LockingPersistence
from redohm.protocol import Persistence, ScriptedPersistence, publish_schema
from redohm.registry import Registry, default_registry
from redohm.scripts import ScriptRunner

logger = logging.getLogger(__name__)


class Database:
    """Entry point that wires models to a store.

    Creating a Database binds `registry` (the default registry when omitted)
    so that every model registered there reads and writes through `client`.

    Example::

        db = Database.from_url("redis://localhost:6379/0")
        db.setup()
        user = User.create(email="a@example.com", city="Lisbon")
    """

    def __init__(
        self,
        client: Any,
        *,
        registry: Registry | None = None,
        config: RedohmConfig | None = None,
    ) -> None:
        self.client = client
        self.config = config or RedohmConfig()
        self.registry = registry if registry is not None else default_registry
        self.scripts = ScriptRunner(client, self.config.script_dir)
        self.persistence: Persistence
        if self.config.use_scripts:
            self.persistence = ScriptedPersistence(client, self.scripts)
        else:
            self.persistence = LockingPersistence(client, self.config)
        self.registry.bind(self)

    @classmethod
    def from_url(
        cls,
        url: str | None = None,
        *,
        registry: Registry | None = None,
        config: RedohmConfig | None = None,
    ) -> Database:
        config = config or RedohmConfig()
        client = redis.Redis.from_url(url or config.url, decode_responses=True)
        return cls(client, registry=registry, config=config)

    def setup(self) -> None:
        """Resolve type references and publish every schema to the store."""
        self.registry.resolve()
        for name in self.registry.types():
            publish_schema(self.client, self.registry.schema(name))
        logger.debug("Database set up with %d type(s)", len(self.registry))

    def flush(self) -> None:
        self.client.flushdb()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
