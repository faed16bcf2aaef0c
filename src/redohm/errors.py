"""Structured error types for redohm."""

from __future__ import annotations

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

# Connection and timeout failures are redis-py's own exceptions and are never
# wrapped or retried here; callers that want to catch them can use this tuple.
STORE_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError)


class RedohmError(Exception):
    """Base error for all redohm errors."""


class MissingIdentityError(RedohmError):
    """Raised when an operation needs the id of an entity that was never saved."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name
        super().__init__(
            f"'{type_name}' instance has no id yet. Save it before building keys "
            "or touching its collections."
        )


class IndexNotFoundError(RedohmError):
    """Raised when a lookup references an attribute without an index."""

    def __init__(self, type_name: str, attribute: str, kind: str = "index") -> None:
        self.type_name = type_name
        self.attribute = attribute
        self.kind = kind
        super().__init__(f"No {kind} declared for '{type_name}.{attribute}'")


class UniqueConstraintViolation(RedohmError):
    """Raised when a save would map a unique value to a second identity."""

    def __init__(self, type_name: str, attribute: str) -> None:
        self.type_name = type_name
        self.attribute = attribute
        super().__init__(f"'{type_name}.{attribute}' is not unique")


class ScriptUnavailableError(RedohmError):
    """Raised internally when the store does not know a script's SHA1."""

    def __init__(self, name: str, sha: str) -> None:
        self.name = name
        self.sha = sha
        super().__init__(f"Script '{name}' ({sha}) is not loaded on the server")


class SchemaError(RedohmError):
    """Raised for invalid model declarations or unresolved type references."""


class UnboundRegistryError(RedohmError):
    """Raised when a model is used before its registry is bound to a database."""

    def __init__(self) -> None:
        super().__init__(
            "Registry is not bound to a database. Create a Database with this "
            "registry before using its models."
        )


class LockContentionError(RedohmError):
    """Raised when an entity lock cannot be acquired within timeout."""

    def __init__(self, key: str, timeout_ms: int) -> None:
        self.key = key
        self.timeout_ms = timeout_ms
        super().__init__(f"Could not acquire lock '{key}' within {timeout_ms}ms timeout")


class ConcurrentWriteError(RedohmError):
    """Raised when a watched key changed between the read and write phases."""

    def __init__(self, message: str = "Concurrent write detected; please retry") -> None:
        super().__init__(message)
