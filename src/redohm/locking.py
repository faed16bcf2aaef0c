"""Lock-based save and delete for stores without server-side scripting.

The critical section of a save (read old index/unique state, replace the
hash, write the new state) runs under a per-entity advisory lock, so writers
of the same entity wait for each other and the last one wins. Inside the
lock the write phase is a MULTI/EXEC guarded by WATCH on the entity keys and
the unique maps; the unique maps are shared with other entities, and a
change to them between the check and EXEC fails the save with
ConcurrentWriteError.
"""

from __future__ import annotations

import logging
import time
from types import TracebackType
from typing import Any, Sequence

from redis.exceptions import WatchError

from redohm.config import RedohmConfig
from redohm.errors import ConcurrentWriteError, LockContentionError, UniqueConstraintViolation
from redohm.registry import TypeSchema

logger = logging.getLogger(__name__)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _expired(value: str, now: float) -> bool:
    try:
        return float(value) < now
    except ValueError:
        return True


def pairs_to_dict(attrs: Sequence[str]) -> dict[str, str]:
    """Convert a flattened `[name, value, ...]` list to a dict."""
    if len(attrs) % 2:
        raise ValueError("Wrong number of attribute/value pairs")
    return {str(attrs[i]): str(attrs[i + 1]) for i in range(0, len(attrs), 2)}


class EntityLock:
    """Advisory lock stored as an expiry timestamp under a single key.

    A holder that crashes leaves a timestamp behind; once it is in the past
    any waiter may take the lock over, but only after confirming with GETSET
    that it replaced the stale value it observed.
    """

    def __init__(
        self,
        client: Any,
        key: str,
        *,
        timeout_ms: int = 5000,
        lease_ms: int = 30000,
        backoff_ms: int = 10,
        backoff_max_ms: int = 500,
    ) -> None:
        self.client = client
        self.key = key
        self.timeout_ms = timeout_ms
        self.lease_ms = lease_ms
        self.backoff_ms = backoff_ms
        self.backoff_max_ms = backoff_max_ms
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def _new_token(self) -> str:
        return f"{time.time() + self.lease_ms / 1000.0:.6f}"

    def _try_acquire(self) -> bool:
        token = self._new_token()
        if self.client.set(self.key, token, nx=True):
            self._token = token
            return True

        current = _text(self.client.get(self.key))
        if current is None or not _expired(current, time.time()):
            return False

        token = self._new_token()
        previous = _text(self.client.getset(self.key, token))
        if previous is None or previous == current:
            logger.warning("Took over expired lock %s (expired at %s)", self.key, current)
            self._token = token
            return True
        # Somebody else won the takeover; their token now sits in the key.
        return False

    def acquire(self) -> None:
        deadline = time.monotonic() + self.timeout_ms / 1000.0
        delay = self.backoff_ms / 1000.0
        while not self._try_acquire():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockContentionError(self.key, self.timeout_ms)
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, self.backoff_max_ms / 1000.0)

    def release(self) -> None:
        """Delete the key only if it still holds this lock's token."""
        if self._token is None:
            return
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(self.key)
                if _text(pipe.get(self.key)) != self._token:
                    return
                pipe.multi()
                pipe.delete(self.key)
                try:
                    pipe.execute()
                except WatchError:
                    # Taken over after our lease ran out; the key is not ours.
                    logger.warning("Lock %s was taken over before release", self.key)
        finally:
            self._token = None

    def __enter__(self) -> EntityLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class LockingPersistence:
    """Save/delete with the same guarantees as the scripts, using a lock instead."""

    def __init__(self, client: Any, config: RedohmConfig | None = None) -> None:
        self.client = client
        self.config = config or RedohmConfig()

    def lock(self, key: str) -> EntityLock:
        cfg = self.config
        return EntityLock(
            self.client,
            key,
            timeout_ms=cfg.lock_timeout_ms,
            lease_ms=cfg.lock_lease_ms,
            backoff_ms=cfg.lock_backoff_ms,
            backoff_max_ms=cfg.lock_backoff_max_ms,
        )

    def _detect_duplicate(
        self, reader: Any, schema: TypeSchema, values: dict[str, str], entity_id: str | None
    ) -> str | None:
        for attr in schema.uniques:
            value = values.get(attr)
            if value is None:
                continue
            owner = _text(reader.hget(schema.keys.unique(attr), value))
            if owner is not None and owner != entity_id:
                return attr
        return None

    def _read_old_state(
        self, pipe: Any, schema: TypeSchema, key: str, entity_id: str
    ) -> tuple[list[tuple[str, str]], list[str], list[str]]:
        """Return (owned unique entries, old index keys, memo members)."""
        keys = schema.keys
        owned: list[tuple[str, str]] = []
        if schema.uniques:
            old = pipe.hmget(key, list(schema.uniques))
            for attr, value in zip(schema.uniques, old):
                value = _text(value)
                if value is None:
                    continue
                if _text(pipe.hget(keys.unique(attr), value)) == entity_id:
                    owned.append((keys.unique(attr), value))

        old_indices: list[str] = []
        if schema.indices:
            old = pipe.hmget(key, list(schema.indices))
            for attr, value in zip(schema.indices, old):
                value = _text(value)
                if value is not None:
                    old_indices.append(keys.index(attr, value))

        memo = [_text(m) or "" for m in pipe.smembers(keys.entity_indices(entity_id))]
        return owned, old_indices, memo

    def _queue_cleanup(
        self,
        pipe: Any,
        schema: TypeSchema,
        entity_id: str,
        owned: list[tuple[str, str]],
        old_indices: list[str],
        memo: list[str],
    ) -> None:
        for unique_key, value in owned:
            pipe.hdel(unique_key, value)
        for index in set(old_indices) | set(memo):
            pipe.srem(index, entity_id)
        pipe.delete(schema.keys.entity_indices(entity_id))

    def save(self, schema: TypeSchema, key: str | None, attrs: Sequence[str]) -> str:
        keys = schema.keys
        values = pairs_to_dict(attrs)
        if key is None:
            # Checked before INCR so a rejected create does not consume an id;
            # checked again under the lock.
            duplicate = self._detect_duplicate(self.client, schema, values, None)
            if duplicate is not None:
                raise UniqueConstraintViolation(schema.name, duplicate)
            entity_id = str(self.client.incr(keys.id_counter))
        else:
            entity_id = keys.id_from_key(key)

        with self.lock(keys.lock(entity_id)):
            self._write(schema, entity_id, values)
        return entity_id

    def _write(self, schema: TypeSchema, entity_id: str, values: dict[str, str]) -> None:
        """Replace the entity's state; runs with the entity lock held."""
        keys = schema.keys
        key = keys.entity(entity_id)
        with self.client.pipeline() as pipe:
            pipe.watch(
                key,
                keys.entity_indices(entity_id),
                *[keys.unique(attr) for attr in schema.uniques],
            )
            duplicate = self._detect_duplicate(pipe, schema, values, entity_id)
            if duplicate is not None:
                raise UniqueConstraintViolation(schema.name, duplicate)
            owned, old_indices, memo = self._read_old_state(pipe, schema, key, entity_id)

            pipe.multi()
            pipe.sadd(keys.all, entity_id)
            self._queue_cleanup(pipe, schema, entity_id, owned, old_indices, memo)
            pipe.delete(key)
            if values:
                pipe.hset(key, mapping=values)
            for attr in schema.uniques:
                value = values.get(attr)
                if value is not None:
                    pipe.hset(keys.unique(attr), value, entity_id)
            for attr in schema.indices:
                value = values.get(attr)
                if value is not None:
                    index = keys.index(attr, value)
                    pipe.sadd(index, entity_id)
                    pipe.sadd(keys.entity_indices(entity_id), index)
            try:
                pipe.execute()
            except WatchError as e:
                raise ConcurrentWriteError(
                    f"'{schema.name}:{entity_id}' changed during save; please retry"
                ) from e

    def delete(self, schema: TypeSchema, key: str) -> str:
        keys = schema.keys
        entity_id = keys.id_from_key(key)

        with self.lock(keys.lock(entity_id)), self.client.pipeline() as pipe:
            pipe.watch(key, keys.entity_indices(entity_id))
            owned, old_indices, memo = self._read_old_state(pipe, schema, key, entity_id)

            pipe.multi()
            self._queue_cleanup(pipe, schema, entity_id, owned, old_indices, memo)
            for name in schema.collections:
                pipe.delete(keys.collection(entity_id, name))
            pipe.delete(key, keys.counters(entity_id))
            pipe.srem(keys.all, entity_id)
            try:
                pipe.execute()
            except WatchError as e:
                raise ConcurrentWriteError(
                    f"'{schema.name}:{entity_id}' changed during delete; please retry"
                ) from e

        return entity_id
