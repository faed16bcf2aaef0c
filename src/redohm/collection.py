"""Collections of ids: lists, sets and composed (multi) sets."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager, contextmanager
from typing import TYPE_CHECKING, Any, Generic, Iterable, Iterator, Sequence, TypeVar

from redohm.command import Command, Operand, evaluate
from redohm.errors import IndexNotFoundError

if TYPE_CHECKING:
    from redohm.keys import KeyNamespace
    from redohm.model import Model

M = TypeVar("M", bound="Model")


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def sort_options(
    order: str | None = None, limit: tuple[int, int] | None = None
) -> dict[str, Any]:
    """Translate `order="ALPHA DESC"` and `limit=(start, count)` to SORT arguments."""
    opts: dict[str, Any] = {}
    if order:
        for token in order.upper().split():
            if token == "ALPHA":
                opts["alpha"] = True
            elif token == "DESC":
                opts["desc"] = True
            elif token != "ASC":
                raise ValueError(f"Unknown sort order token '{token}'")
    if limit is not None:
        start, num = limit
        opts["start"] = start
        opts["num"] = num
    return opts


class Collection(ABC, Generic[M]):
    """Behaviour shared by every collection of ids of one model type."""

    model: type[M]

    @property
    def client(self) -> Any:
        return self.model.database().client

    @property
    def keys(self) -> KeyNamespace:
        return self.model.__schema__.keys

    @abstractmethod
    def _execute(self) -> AbstractContextManager[str]:
        """Return a context manager that yields the key holding the ids."""

    @abstractmethod
    def ids(self) -> list[str]: ...

    @abstractmethod
    def size(self) -> int: ...

    @abstractmethod
    def include(self, model: M) -> bool: ...

    def fetch(self, ids: Iterable[Any]) -> list[M]:
        """Load the hashes for `ids` in a single pipelined round trip."""
        ids = [_text(i) for i in ids]
        if not ids:
            return []
        pipe = self.client.pipeline(transaction=False)
        for entity_id in ids:
            pipe.hgetall(self.keys.entity(entity_id))
        rows = pipe.execute()
        return [self.model._from_store(entity_id, row) for entity_id, row in zip(ids, rows)]

    def __iter__(self) -> Iterator[M]:
        ids = self.ids()
        batch = self.model.database().config.fetch_batch_size
        for start in range(0, len(ids), batch):
            yield from self.fetch(ids[start : start + batch])

    def to_list(self) -> list[M]:
        return self.fetch(self.ids())

    def __len__(self) -> int:
        return self.size()

    def __bool__(self) -> bool:
        return not self.empty()

    def __contains__(self, model: object) -> bool:
        return isinstance(model, self.model) and self.include(model)

    def empty(self) -> bool:
        return self.size() == 0

    def _to_pattern(self, attribute: str) -> str:
        schema = self.model.__schema__
        if attribute in schema.counters:
            return self.keys.counter_sort_pattern(attribute)
        if attribute in schema.attributes:
            return self.keys.sort_pattern(attribute)
        raise IndexNotFoundError(schema.name, attribute, kind="attribute")

    def sort(
        self,
        *,
        order: str | None = None,
        limit: tuple[int, int] | None = None,
        get: str | None = None,
        by: str | None = None,
    ) -> list[Any]:
        """Sort with the store's SORT command.

        Without `by` the ids themselves are sorted. With `get`, the values of
        that attribute are returned instead of model instances.
        """
        opts = sort_options(order, limit)
        if get is not None:
            opts["get"] = self._to_pattern(get)
        if by is not None:
            opts["by"] = by
        with self._execute() as key:
            result = self.client.sort(key, **opts)
        if get is not None:
            return [None if v is None else _text(v) for v in result]
        return self.fetch(result)

    def sort_by(
        self,
        attribute: str,
        *,
        order: str | None = None,
        limit: tuple[int, int] | None = None,
        get: str | None = None,
    ) -> list[Any]:
        """Sort by the value of an attribute or counter of each member."""
        return self.sort(order=order, limit=limit, get=get, by=self._to_pattern(attribute))

    def first(self, *, by: str | None = None, order: str | None = None) -> M | None:
        if by is not None:
            found = self.sort_by(by, order=order, limit=(0, 1))
        else:
            found = self.sort(order=order, limit=(0, 1))
        return found[0] if found else None

    def get(self, entity_id: Any) -> M | None:
        """Return the member with `entity_id`, or None if it is not a member."""
        if str(entity_id) in self.ids():
            return self.model.get(entity_id)
        return None


class ListCollection(Collection[M]):
    """An ordered list of ids, stored as a list key."""

    def __init__(self, key: str, model: type[M]) -> None:
        self.key = key
        self.model = model

    def __repr__(self) -> str:
        return f"ListCollection({self.key!r})"

    @contextmanager
    def _execute(self) -> Iterator[str]:
        yield self.key

    def ids(self) -> list[str]:
        return [_text(i) for i in self.client.lrange(self.key, 0, -1)]

    def size(self) -> int:
        return int(self.client.llen(self.key))

    def first(self, *, by: str | None = None, order: str | None = None) -> M | None:
        if by is not None or order is not None:
            return super().first(by=by, order=order)
        return self._at(0)

    def last(self) -> M | None:
        return self._at(-1)

    def _at(self, index: int) -> M | None:
        entity_id = self.client.lindex(self.key, index)
        return None if entity_id is None else self.model.get(_text(entity_id))

    def include(self, model: M) -> bool:
        # Lists have no membership command; this reads the whole list.
        if model.is_new:
            return False
        return model.id in self.ids()

    def push(self, model: M) -> None:
        self.client.rpush(self.key, model.id)

    def unshift(self, model: M) -> None:
        self.client.lpush(self.key, model.id)

    def delete(self, model: M) -> None:
        """Remove every occurrence of `model`."""
        self.client.lrem(self.key, 0, model.id)

    def replace(self, models: Sequence[M]) -> None:
        ids = [m.id for m in models]
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(self.key)
        if ids:
            pipe.rpush(self.key, *ids)
        pipe.execute()


class BasicSet(Collection[M]):
    """Read operations for sets, whether stored or composed."""

    def ids(self) -> list[str]:
        with self._execute() as key:
            return [_text(i) for i in self.client.smembers(key)]

    def size(self) -> int:
        with self._execute() as key:
            return int(self.client.scard(key))

    def include(self, model: M) -> bool:
        if model.is_new:
            return False
        return self.exists(model.id)

    def exists(self, entity_id: Any) -> bool:
        with self._execute() as key:
            return bool(self.client.sismember(key, str(entity_id)))

    def get(self, entity_id: Any) -> M | None:
        if self.exists(entity_id):
            return self.model.get(entity_id)
        return None


class Set(BasicSet[M]):
    """A set stored under a single key, e.g. `User:all` or an index."""

    def __init__(self, key: str, model: type[M]) -> None:
        self.key = key
        self.model = model

    def __repr__(self) -> str:
        return f"Set({self.key!r})"

    @contextmanager
    def _execute(self) -> Iterator[str]:
        yield self.key

    def find(self, **criteria: Any) -> BasicSet[M]:
        """Narrow the set to members matching every criterion."""
        terms = self.model._index_terms(criteria)
        if self.key == self.keys.all:
            # Membership in any index implies membership in `all`.
            if len(terms) == 1 and isinstance(terms[0], str):
                return Set(terms[0], self.model)
            return MultiSet(Command.build("sinterstore", *terms), self.model)
        return MultiSet(Command("sinterstore", self.key, *terms), self.model)

    def except_(self, **criteria: Any) -> MultiSet[M]:
        return MultiSet(self.key, self.model).except_(**criteria)

    def union(self, **criteria: Any) -> MultiSet[M]:
        return MultiSet(self.key, self.model).union(**criteria)


class MutableSet(Set[M]):
    """A set of ids owned by an entity, e.g. `User:1:posts`."""

    def __repr__(self) -> str:
        return f"MutableSet({self.key!r})"

    def add(self, model: M) -> None:
        self.client.sadd(self.key, model.id)

    def delete(self, model: M) -> None:
        self.client.srem(self.key, model.id)

    def replace(self, models: Sequence[M]) -> None:
        ids = [m.id for m in models]
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(self.key)
        if ids:
            pipe.sadd(self.key, *ids)
        pipe.execute()


class MultiSet(BasicSet[M]):
    """A set defined by a set-algebra expression over other keys.

    Each read evaluates the expression into scratch keys and deletes them
    before returning, whether or not the read succeeded.
    """

    def __init__(self, command: Operand, model: type[M]) -> None:
        self.command = command
        self.model = model

    def __repr__(self) -> str:
        return f"MultiSet({self.command!r})"

    @contextmanager
    def _execute(self) -> Iterator[str]:
        client = self.client
        scratch: list[str] = []
        try:
            yield evaluate(self.command, self.keys, client, scratch)
        finally:
            Command.clean(client, scratch)

    def _intersected(self, criteria: dict[str, Any]) -> Operand:
        return Command.build("sinterstore", *self.model._index_terms(criteria))

    def find(self, **criteria: Any) -> MultiSet[M]:
        terms = self.model._index_terms(criteria)
        return MultiSet(Command("sinterstore", self.command, *terms), self.model)

    def except_(self, **criteria: Any) -> MultiSet[M]:
        return MultiSet(
            Command("sdiffstore", self.command, self._intersected(criteria)), self.model
        )

    def union(self, **criteria: Any) -> MultiSet[M]:
        return MultiSet(
            Command("sunionstore", self.command, self._intersected(criteria)), self.model
        )
