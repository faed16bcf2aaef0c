"""Atomic save and delete through server-side scripts.

The scripts read the declared uniques, indices and collections of a type from
the store itself (`{Type}:uniques`, `{Type}:indices`, `{Type}:collections`),
so each save and delete republishes its schema in the same MULTI/EXEC as
the script. A flushed or restarted store therefore never runs a save
against missing name sets.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from redohm.errors import RedohmError, UniqueConstraintViolation
from redohm.registry import TypeSchema
from redohm.scripts import ScriptRunner

logger = logging.getLogger(__name__)

STATUS_OK = 200
STATUS_NOT_UNIQUE = 500


class Persistence(Protocol):
    """Save/delete strategy used by the model layer."""

    def save(self, schema: TypeSchema, key: str | None, attrs: Sequence[str]) -> str: ...

    def delete(self, schema: TypeSchema, key: str) -> str: ...


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def queue_schema(pipe: Any, schema: TypeSchema) -> None:
    """Queue commands that replace the stored unique/index/collection name sets."""
    keys = schema.keys
    pipe.delete(keys.uniques, keys.indices, keys.collections)
    if schema.uniques:
        pipe.sadd(keys.uniques, *schema.uniques)
    if schema.indices:
        pipe.sadd(keys.indices, *schema.indices)
    if schema.collections:
        pipe.sadd(keys.collections, *schema.collections)


def publish_schema(client: Any, schema: TypeSchema) -> None:
    pipe = client.pipeline(transaction=True)
    queue_schema(pipe, schema)
    pipe.execute()
    logger.debug(
        "Published schema %s: uniques=%s indices=%s collections=%s",
        schema.name,
        list(schema.uniques),
        list(schema.indices),
        list(schema.collections),
    )


def parse_reply(schema: TypeSchema, reply: Sequence[Any]) -> str:
    """Turn a `[status, [field, value]]` script reply into an id."""
    status = int(reply[0])
    detail = [_text(v) for v in reply[1]]
    if status == STATUS_OK:
        return detail[1]
    if status == STATUS_NOT_UNIQUE:
        raise UniqueConstraintViolation(schema.name, detail[0])
    raise RedohmError(f"Unexpected script status {status} for '{schema.name}': {detail}")


class ScriptedPersistence:
    """Runs saves and deletes as single atomic scripts."""

    def __init__(self, client: Any, runner: ScriptRunner) -> None:
        self.client = client
        self.runner = runner

    def save(self, schema: TypeSchema, key: str | None, attrs: Sequence[str]) -> str:
        reply = self.runner.run(
            "save",
            [schema.name, key or ""],
            list(attrs),
            prelude=lambda pipe: queue_schema(pipe, schema),
        )
        return parse_reply(schema, reply)

    def delete(self, schema: TypeSchema, key: str) -> str:
        reply = self.runner.run(
            "delete", [schema.name, key], prelude=lambda pipe: queue_schema(pipe, schema)
        )
        return parse_reply(schema, reply)
