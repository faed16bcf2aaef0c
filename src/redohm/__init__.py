"""redohm: object-hash mapping over Redis with atomic, indexed saves."""

__version__ = "0.1.0"

from redohm.collection import ListCollection, MultiSet, MutableSet, Set
from redohm.config import RedohmConfig
from redohm.database import Database
from redohm.errors import (
    ConcurrentWriteError,
    IndexNotFoundError,
    LockContentionError,
    MissingIdentityError,
    RedohmError,
    SchemaError,
    UnboundRegistryError,
    UniqueConstraintViolation,
)
from redohm.model import Counter, Field, HasMany, ListOf, Model, Reference, SetOf
from redohm.registry import Registry, default_registry

__all__ = [
    "__version__",
    "Model",
    "Field",
    "Counter",
    "SetOf",
    "ListOf",
    "Reference",
    "HasMany",
    "Database",
    "Registry",
    "default_registry",
    "RedohmConfig",
    "Set",
    "MutableSet",
    "MultiSet",
    "ListCollection",
    "RedohmError",
    "MissingIdentityError",
    "IndexNotFoundError",
    "UniqueConstraintViolation",
    "SchemaError",
    "UnboundRegistryError",
    "LockContentionError",
    "ConcurrentWriteError",
]
