"""Type registry: schema descriptors keyed by type name."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from redohm.errors import SchemaError, UnboundRegistryError
from redohm.keys import KeyNamespace

if TYPE_CHECKING:
    from redohm.database import Database
    from redohm.model import Model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    """A set or list of ids owned by each instance of a type."""

    name: str
    kind: str  # 'set' or 'list'
    target: str


@dataclass
class TypeSchema:
    """Everything the persistence layer needs to know about one entity type."""

    name: str
    attributes: tuple[str, ...] = ()
    indices: tuple[str, ...] = ()
    uniques: tuple[str, ...] = ()
    counters: tuple[str, ...] = ()
    collections: dict[str, CollectionSpec] = field(default_factory=dict)
    references: dict[str, str] = field(default_factory=dict)

    @property
    def keys(self) -> KeyNamespace:
        return KeyNamespace(self.name)

    def targets(self) -> set[str]:
        """Names of every other type this schema refers to."""
        names = set(self.references.values())
        names.update(spec.target for spec in self.collections.values())
        return names


class Registry:
    """Maps type names to model classes and their schemas.

    Declarations may name types that are defined later. `resolve()` binds
    every such reference and fails on the first name nobody registered.
    """

    def __init__(self) -> None:
        self._models: dict[str, type[Model]] = {}
        self._resolved = False
        self._database: Database | None = None
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)

    def register(self, model: type[Model]) -> None:
        name = model.__schema__.name
        with self._lock:
            previous = self._models.get(name)
            if previous is not None and previous is not model:
                logger.debug("Replacing registered type %s", name)
            self._models[name] = model
            self._resolved = False

    def get(self, name: str) -> type[Model]:
        try:
            return self._models[name]
        except KeyError:
            raise SchemaError(f"Unknown type '{name}'") from None

    def schema(self, name: str) -> TypeSchema:
        return self.get(name).__schema__

    def types(self) -> list[str]:
        return sorted(self._models)

    @property
    def resolved(self) -> bool:
        return self._resolved

    def resolve(self) -> None:
        """Check that every referenced type name is registered."""
        with self._lock:
            missing: list[str] = []
            for name, model in self._models.items():
                for target in sorted(model.__schema__.targets()):
                    if target not in self._models:
                        missing.append(f"{name} -> {target}")
            if missing:
                raise SchemaError(f"Unresolved type references: {', '.join(missing)}")
            self._resolved = True

    def ensure_resolved(self) -> None:
        if not self._resolved:
            self.resolve()

    def bind(self, database: Database) -> None:
        self._database = database

    @property
    def database(self) -> Database:
        if self._database is None:
            raise UnboundRegistryError()
        return self._database

    def describe(self) -> dict[str, Any]:
        """Return a JSON-friendly summary of every registered schema."""
        return {
            name: {
                "attributes": list(m.__schema__.attributes),
                "indices": list(m.__schema__.indices),
                "uniques": list(m.__schema__.uniques),
                "counters": list(m.__schema__.counters),
                "collections": {
                    c.name: {"kind": c.kind, "target": c.target}
                    for c in m.__schema__.collections.values()
                },
            }
            for name, m in sorted(self._models.items())
        }


default_registry = Registry()
