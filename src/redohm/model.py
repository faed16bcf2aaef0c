"""Model base class, field descriptors and collection declarations."""

from __future__ import annotations

import re
import sys
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Optional, TypeVar, get_args

from pydantic import BaseModel, create_model

from redohm.collection import BasicSet, ListCollection, MutableSet, Set
from redohm.command import Command, Operand
from redohm.errors import IndexNotFoundError, MissingIdentityError, SchemaError
from redohm.registry import CollectionSpec, Registry, TypeSchema, default_registry

if TYPE_CHECKING:
    from redohm.database import Database

T = TypeVar("T")
M = TypeVar("M", bound="Model")

_SENTINEL = object()
_RESERVED = frozenset({"id"})


def to_store_value(value: Any, *, omit_false: bool = False) -> str | None:
    """Return the string stored for `value`, or None when nothing is stored.

    Floats keep their `repr` so `1.0` stays `"1.0"`; truncating it would
    produce a different index key than the one written on save.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        if value:
            return "true"
        return None if omit_false else "false"
    if isinstance(value, Enum):
        return to_store_value(value.value, omit_false=omit_false)
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _snake_case(name: str) -> str:
    return re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name).lower()


class Field(Generic[T]):
    """Persisted attribute descriptor.

    Declared through annotations (`name: Field[str] = Field(index=True)`);
    values are coerced to `T` on construction and when loaded from the store.
    """

    def __init__(
        self,
        default: Any = _SENTINEL,
        *,
        default_factory: Any | None = None,
        index: bool = False,
        unique: bool = False,
    ) -> None:
        self.default = default
        self.default_factory = default_factory
        self.index = index
        self.unique = unique
        self.name: str = ""
        self.annotation: Any = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj._attributes.get(self.name)

    def __set__(self, obj: Any, value: Any) -> None:
        obj._attributes[self.name] = value

    def __repr__(self) -> str:
        flags = [f for f in ("index", "unique") if getattr(self, f)]
        return f"Field({self.name!r}{', ' + ', '.join(flags) if flags else ''})"

    def has_default(self) -> bool:
        return self.default is not _SENTINEL or self.default_factory is not None

    def get_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _SENTINEL:
            return self.default
        raise ValueError(f"Field '{self.name}' has no default")


class _Declaration:
    """Base for declarations that point at another model type."""

    def __init__(self, target: str | type[Model]) -> None:
        self.target = target
        self.name: str = ""
        self.owner: type[Model] | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner = owner

    @property
    def target_name(self) -> str:
        if isinstance(self.target, str):
            return self.target
        return self.target.__schema__.name

    def target_model(self, owner: type[Model]) -> type[Model]:
        if not isinstance(self.target, str):
            return self.target
        registry = owner.__registry__
        registry.ensure_resolved()
        return registry.get(self.target)


class Counter:
    """Integer counter kept in `{Type}:{id}:counters`, changed with `incr`/`decr`."""

    def __init__(self) -> None:
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj._counter_value(self.name)


class SetOf(_Declaration):
    """A set of ids of `target` owned by each instance: `{Type}:{id}:{name}`."""

    kind = "set"

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return MutableSet(obj._collection_key(self.name), self.target_model(type(obj)))


class ListOf(_Declaration):
    """An ordered list of ids of `target` owned by each instance."""

    kind = "list"

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return ListCollection(obj._collection_key(self.name), self.target_model(type(obj)))


class Reference(_Declaration):
    """Points at one instance of `target` through an indexed `<name>_id` attribute."""

    @property
    def attribute(self) -> str:
        return f"{self.name}_id"

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        ref_id = obj._attributes.get(self.attribute)
        if ref_id is None:
            return None
        cached = obj._memo.get(self.name)
        if cached is not None and cached[0] == ref_id:
            return cached[1]
        value = self.target_model(type(obj)).get(ref_id)
        obj._memo[self.name] = (ref_id, value)
        return value

    def __set__(self, obj: Any, value: Any) -> None:
        if value is None:
            obj._attributes[self.attribute] = None
            obj._memo.pop(self.name, None)
            return
        obj._attributes[self.attribute] = value.id
        obj._memo[self.name] = (value.id, value)


class HasMany(_Declaration):
    """The instances of `target` whose `<reference>_id` points back at this one."""

    def __init__(self, target: str | type[Model], reference: str | None = None) -> None:
        super().__init__(target)
        self.reference = reference

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        reference = self.reference or _snake_case(type(obj).__schema__.name)
        return self.target_model(type(obj)).find(**{f"{reference}_id": obj.id})


def _resolve_annotation(ann: Any, module_name: str) -> Any:
    """Resolve string annotations and extract the inner type from Field[T]."""
    if isinstance(ann, str):
        module = sys.modules.get(module_name, None)
        ns = vars(module) if module else {}
        try:
            ann = eval(ann, ns)  # noqa: S307
        except Exception:
            return Any

    origin = getattr(ann, "__origin__", None)
    if origin is Field:
        args = get_args(ann)
        return args[0] if args else Any
    return ann


def _collect_fields(cls: type) -> dict[str, Field[Any]]:
    """Collect Field descriptors from class annotations."""
    fields: dict[str, Field[Any]] = {}
    annotations = cls.__dict__.get("__annotations__", {})

    for name, ann in annotations.items():
        origin = getattr(ann, "__origin__", None)
        is_field_ann = origin is Field or (isinstance(ann, str) and ann.startswith("Field"))
        if not is_field_ann:
            continue
        if name in _RESERVED:
            raise SchemaError(f"'{cls.__name__}.{name}' is reserved and cannot be a field")

        val = cls.__dict__.get(name, _SENTINEL)
        if isinstance(val, Field):
            field_desc = val
        elif val is _SENTINEL or val is None:
            field_desc = Field()
        else:
            field_desc = Field(default=val)

        field_desc.name = name
        field_desc.annotation = _resolve_annotation(ann, cls.__module__)
        fields[name] = field_desc

        if not isinstance(cls.__dict__.get(name), Field):
            setattr(cls, name, field_desc)

    return fields


def _build_pydantic_model(model_name: str, fields: dict[str, Field[Any]]) -> type[BaseModel]:
    """Build a Pydantic model from Field definitions; every field may be absent."""
    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        ann = f.annotation if f.annotation is not None else Any
        if f.default_factory is not None:
            from pydantic import Field as PydanticField

            pydantic_fields[name] = (
                Optional[ann],
                PydanticField(default_factory=f.default_factory),
            )
        elif f.default is not _SENTINEL:
            pydantic_fields[name] = (Optional[ann], f.default)
        else:
            pydantic_fields[name] = (Optional[ann], None)

    return create_model(model_name, **pydantic_fields)  # type: ignore[call-overload]


class Model:
    """Base class for persisted entities.

    Example::

        class User(Model):
            email: Field[str] = Field(unique=True)
            city: Field[str] = Field(index=True)
            points = Counter()
            posts = SetOf("Post")

    The class is registered under its name (or `name=`) in `registry=`
    (the process-wide default registry when omitted).
    """

    __schema__: ClassVar[TypeSchema]
    __registry__: ClassVar[Registry]
    _pydantic_model: ClassVar[type[BaseModel]]
    _field_definitions: ClassVar[dict[str, Field[Any]]]

    def __init_subclass__(
        cls, name: str | None = None, registry: Registry | None = None, **kwargs: Any
    ) -> None:
        super().__init_subclass__(**kwargs)

        fields = _collect_fields(cls)
        counters: list[str] = []
        collections: dict[str, CollectionSpec] = {}
        references: dict[str, str] = {}

        for attr_name, value in list(cls.__dict__.items()):
            if isinstance(value, Counter):
                counters.append(attr_name)
            elif isinstance(value, (SetOf, ListOf)):
                collections[attr_name] = CollectionSpec(attr_name, value.kind, value.target_name)
            elif isinstance(value, Reference):
                references[attr_name] = value.target_name
                if value.attribute in fields:
                    raise SchemaError(
                        f"'{cls.__name__}.{value.attribute}' clashes with reference '{attr_name}'"
                    )
                ref_field: Field[Any] = Field(index=True)
                ref_field.name = value.attribute
                ref_field.annotation = str
                fields[value.attribute] = ref_field
                setattr(cls, value.attribute, ref_field)
            elif isinstance(value, HasMany):
                references[attr_name] = value.target_name

        type_name = name or cls.__name__
        cls._field_definitions = fields
        cls.__schema__ = TypeSchema(
            name=type_name,
            attributes=tuple(fields),
            indices=tuple(n for n, f in fields.items() if f.index),
            uniques=tuple(n for n, f in fields.items() if f.unique),
            counters=tuple(counters),
            collections=collections,
            references=references,
        )
        cls._pydantic_model = _build_pydantic_model(f"_{type_name}Model", fields)
        cls.__registry__ = registry if registry is not None else default_registry
        cls.__registry__.register(cls)

    def __init__(self, **data: Any) -> None:
        self._attributes: dict[str, Any] = {}
        self._memo: dict[str, Any] = {}
        entity_id = data.pop("id", None)
        self._id: str | None = None if entity_id is None else str(entity_id)

        attributes = self.__schema__.attributes
        values = {k: data.pop(k) for k in list(data) if k in attributes}
        validated = self._pydantic_model(**values)
        for name in attributes:
            self._attributes[name] = getattr(validated, name)
        self._assign_declarations(data)

    def _assign_declarations(self, data: dict[str, Any]) -> None:
        for name, value in data.items():
            if not isinstance(getattr(type(self), name, None), Reference):
                raise TypeError(f"'{type(self).__name__}' has no attribute '{name}'")
            setattr(self, name, value)

    # --- Class-level access ---

    @classmethod
    def database(cls) -> Database:
        return cls.__registry__.database

    @classmethod
    def all(cls: type[M]) -> Set[M]:
        return Set(cls.__schema__.keys.all, cls)

    @classmethod
    def find(cls: type[M], **criteria: Any) -> BasicSet[M]:
        """Find instances whose indexed attributes match every criterion.

        A list, tuple or set value matches any of its members.
        """
        return cls.all().find(**criteria)

    @classmethod
    def fetch(cls: type[M], ids: Any) -> list[M]:
        return cls.all().fetch(ids)

    @classmethod
    def exists(cls, entity_id: Any) -> bool:
        client = cls.database().client
        return bool(client.sismember(cls.__schema__.keys.all, str(entity_id)))

    @classmethod
    def get(cls: type[M], entity_id: Any) -> M | None:
        if entity_id is None or not cls.exists(entity_id):
            return None
        return cls(id=entity_id).load()

    @classmethod
    def find_unique(cls: type[M], attribute: str, value: Any) -> M | None:
        schema = cls.__schema__
        if attribute not in schema.uniques:
            raise IndexNotFoundError(schema.name, attribute, kind="unique")
        stored = to_store_value(value)
        if stored is None:
            return None
        entity_id = cls.database().client.hget(schema.keys.unique(attribute), stored)
        return cls.get(entity_id) if entity_id is not None else None

    @classmethod
    def create(cls: type[M], **data: Any) -> M:
        return cls(**data).save()

    @classmethod
    def _index_terms(cls, criteria: dict[str, Any]) -> list[Operand]:
        """Resolve `find` criteria to index keys, checking every attribute locally."""
        if not criteria:
            raise ValueError(
                f"find() needs at least one criterion. Use {cls.__name__}.get(id) to look up by id."
            )
        schema = cls.__schema__
        terms: list[Operand] = []
        for attribute, value in criteria.items():
            if attribute not in schema.indices:
                raise IndexNotFoundError(schema.name, attribute)
            if isinstance(value, (list, tuple, set, frozenset)):
                if not value:
                    raise ValueError(f"Empty value list for '{schema.name}.{attribute}'")
                keys = [schema.keys.index(attribute, _index_value(v)) for v in value]
                terms.append(Command.build("sunionstore", *keys))
            else:
                terms.append(schema.keys.index(attribute, _index_value(value)))
        return terms

    @classmethod
    def _from_store(cls: type[M], entity_id: str, row: dict[str, Any]) -> M:
        instance = cls.__new__(cls)
        instance._attributes = {}
        instance._memo = {}
        instance._id = entity_id
        instance._apply_row(row)
        return instance

    # --- Identity ---

    @property
    def id(self) -> str:
        if self._id is None:
            raise MissingIdentityError(self.__schema__.name)
        return self._id

    @property
    def is_new(self) -> bool:
        return self._id is None

    @property
    def key(self) -> str:
        return self.__schema__.keys.entity(self.id)

    def _collection_key(self, name: str) -> str:
        return self.__schema__.keys.collection(self.id, name)

    # --- Persistence ---

    def _flatten(self) -> list[str]:
        omit_false = self.database().config.omit_false
        flat: list[str] = []
        for name in self.__schema__.attributes:
            value = to_store_value(self._attributes.get(name), omit_false=omit_false)
            if value is not None:
                flat.extend((name, value))
        return flat

    def save(self: M) -> M:
        """Persist every attribute and rebuild indices and unique maps.

        Raises UniqueConstraintViolation without touching the store when a
        unique value belongs to another instance; the attributes set on this
        object are kept so they can be corrected and saved again.
        """
        db = self.database()
        key = None if self.is_new else self.key
        self._id = db.persistence.save(self.__schema__, key, self._flatten())
        return self

    def delete(self) -> None:
        """Delete this instance, its indices, uniques, counters and collections."""
        self.database().persistence.delete(self.__schema__, self.key)

    def update(self: M, **data: Any) -> M:
        self.update_attributes(**data)
        return self.save()

    def update_attributes(self, **data: Any) -> None:
        attributes = self.__schema__.attributes
        values = {k: data.pop(k) for k in list(data) if k in attributes}
        if values:
            merged = {**self._attributes, **values}
            validated = self._pydantic_model(**merged)
            for name in values:
                self._attributes[name] = getattr(validated, name)
        self._assign_declarations(data)

    def _apply_row(self, row: dict[str, Any]) -> None:
        values = {name: row.get(name) for name in self.__schema__.attributes}
        validated = self._pydantic_model(**values)
        for name in self.__schema__.attributes:
            self._attributes[name] = getattr(validated, name)
        self._memo.clear()

    def load(self: M) -> M:
        """Replace the local attributes with the stored ones."""
        if not self.is_new:
            self._apply_row(self.database().client.hgetall(self.key))
        return self

    def get_attribute(self, attribute: str) -> Any:
        """Re-read a single attribute from the store."""
        if attribute not in self.__schema__.attributes:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{attribute}'")
        raw = self.database().client.hget(self.key, attribute)
        validated = self._pydantic_model(**{**self._attributes, attribute: raw})
        self._attributes[attribute] = getattr(validated, attribute)
        return self._attributes[attribute]

    def set_attribute(self, attribute: str, value: Any) -> None:
        """Write one attribute straight to the hash.

        Indices and unique maps are not updated; use `update` for that.
        """
        if attribute not in self.__schema__.attributes:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{attribute}'")
        client = self.database().client
        stored = to_store_value(value, omit_false=self.database().config.omit_false)
        if stored is None:
            client.hdel(self.key, attribute)
        else:
            client.hset(self.key, attribute, stored)
        self._attributes[attribute] = value

    # --- Counters ---

    def _check_counter(self, name: str) -> None:
        if name not in self.__schema__.counters:
            raise SchemaError(f"'{self.__schema__.name}.{name}' is not a counter")

    def _counter_value(self, name: str) -> int:
        if self.is_new:
            return 0
        value = self.database().client.hget(self.__schema__.keys.counters(self.id), name)
        return int(value or 0)

    def incr(self, counter: str, count: int = 1) -> int:
        self._check_counter(counter)
        keys = self.__schema__.keys
        return int(self.database().client.hincrby(keys.counters(self.id), counter, count))

    def decr(self, counter: str, count: int = 1) -> int:
        return self.incr(counter, -count)

    # --- Dunder / export ---

    def model_dump(self) -> dict[str, Any]:
        return {name: self._attributes.get(name) for name in self.__schema__.attributes}

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump()
        if not self.is_new:
            data = {"id": self.id, **data}
        return data

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self.model_dump().items())
        ident = f"id={self._id!r}, " if self._id is not None else ""
        return f"{self.__class__.__name__}({ident}{fields})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Model):
            return NotImplemented
        if self.is_new or other.is_new:
            return self is other
        return type(self) is type(other) and self.key == other.key

    def __hash__(self) -> int:
        if self.is_new:
            return object.__hash__(self)
        return hash(self.key)


def _index_value(value: Any) -> str:
    stored = to_store_value(value)
    if stored is None:
        raise ValueError("Cannot look up an index by None; unset attributes are not indexed")
    return stored
