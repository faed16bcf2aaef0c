"""Key layout for entity types.

Every key redohm reads or writes is built here. The layout is shared with
other deployments of the same data, so it must not change::

    {Type}:id                        integer counter
    {Type}:all                       set of ids
    {Type}:uniques                   set of unique attribute names
    {Type}:uniques:{attr}            hash: value -> id
    {Type}:indices                   set of indexed attribute names
    {Type}:indices:{attr}:{value}    set of ids
    {Type}:collections               set of collection attribute names
    {Type}:{id}                      hash of attributes
    {Type}:{id}:_indices             set of index keys this id belongs to
    {Type}:{id}:counters             hash of counters
    {Type}:{id}:{collection}         set or list of ids
"""

from __future__ import annotations

import secrets
from typing import Any

SEPARATOR = ":"
VOLATILE_PREFIX = "~"


def join_key(*parts: Any) -> str:
    """Join key parts with the separator."""
    return SEPARATOR.join(str(p) for p in parts)


class KeyNamespace:
    """Builds the keys owned by one entity type."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name

    def __repr__(self) -> str:
        return f"KeyNamespace({self.type_name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyNamespace):
            return NotImplemented
        return self.type_name == other.type_name

    def __hash__(self) -> int:
        return hash(self.type_name)

    # --- Type-level keys ---

    @property
    def id_counter(self) -> str:
        return join_key(self.type_name, "id")

    @property
    def all(self) -> str:
        return join_key(self.type_name, "all")

    @property
    def uniques(self) -> str:
        return join_key(self.type_name, "uniques")

    def unique(self, attribute: str) -> str:
        return join_key(self.type_name, "uniques", attribute)

    @property
    def indices(self) -> str:
        return join_key(self.type_name, "indices")

    def index(self, attribute: str, value: str) -> str:
        # An empty value still yields a distinct key: `User:indices:name:`.
        return join_key(self.type_name, "indices", attribute, value)

    @property
    def collections(self) -> str:
        return join_key(self.type_name, "collections")

    # --- Instance keys ---

    def entity(self, entity_id: Any) -> str:
        return join_key(self.type_name, entity_id)

    def entity_indices(self, entity_id: Any) -> str:
        return join_key(self.type_name, entity_id, "_indices")

    def counters(self, entity_id: Any) -> str:
        return join_key(self.type_name, entity_id, "counters")

    def collection(self, entity_id: Any, name: str) -> str:
        return join_key(self.type_name, entity_id, name)

    def lock(self, entity_id: Any) -> str:
        return join_key(self.type_name, entity_id, "_lock")

    def id_from_key(self, key: str) -> str:
        prefix = self.type_name + SEPARATOR
        if not key.startswith(prefix):
            raise ValueError(f"Key '{key}' does not belong to type '{self.type_name}'")
        return key[len(prefix) :]

    # --- Sorting and scratch space ---

    def sort_pattern(self, attribute: str) -> str:
        return f"{self.type_name}{SEPARATOR}*->{attribute}"

    def counter_sort_pattern(self, counter: str) -> str:
        return f"{self.type_name}{SEPARATOR}*{SEPARATOR}counters->{counter}"

    def scratch(self) -> str:
        """Return a fresh scratch key under the volatile prefix."""
        return join_key(VOLATILE_PREFIX, self.type_name, secrets.token_hex(16))

    @property
    def scratch_pattern(self) -> str:
        return join_key(VOLATILE_PREFIX, self.type_name, "*")
