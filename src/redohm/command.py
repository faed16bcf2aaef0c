"""Set-algebra expressions evaluated into scratch keys."""

from __future__ import annotations

import logging
from typing import Any, Union

from redohm.keys import KeyNamespace

logger = logging.getLogger(__name__)

SET_OPERATIONS = ("sinterstore", "sunionstore", "sdiffstore")

Operand = Union[str, "Command"]


class Command:
    """A store command whose operands are keys or nested commands.

    Evaluating a command stores its result under a fresh scratch key. Nested
    commands are evaluated first, innermost outwards, and every scratch key
    created along the way is appended to the caller's `scratch` list so the
    caller can delete them when done.
    """

    def __init__(self, operation: str, *args: Operand) -> None:
        if operation not in SET_OPERATIONS:
            raise ValueError(f"Unsupported set operation '{operation}'")
        if not args:
            raise ValueError(f"'{operation}' needs at least one operand")
        self.operation = operation
        self.args = args

    @classmethod
    def build(cls, operation: str, head: Operand, *tail: Operand) -> Operand:
        """Return `head` alone when there is nothing to combine it with."""
        if not tail:
            return head
        return cls(operation, head, *tail)

    def __repr__(self) -> str:
        return f"Command({self.operation!r}, {', '.join(repr(a) for a in self.args)})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Command):
            return NotImplemented
        return self.operation == other.operation and self.args == other.args

    def call(self, namespace: KeyNamespace, client: Any, scratch: list[str]) -> str:
        params = [
            arg.call(namespace, client, scratch) if isinstance(arg, Command) else arg
            for arg in self.args
        ]
        key = namespace.scratch()
        scratch.append(key)
        getattr(client, self.operation)(key, *params)
        return key

    @staticmethod
    def clean(client: Any, scratch: list[str]) -> None:
        if scratch:
            client.delete(*scratch)
            logger.debug("Deleted %d scratch key(s)", len(scratch))
            scratch.clear()


def evaluate(operand: Operand, namespace: KeyNamespace, client: Any, scratch: list[str]) -> str:
    """Resolve an operand to a key, evaluating it if it is a command."""
    if isinstance(operand, Command):
        return operand.call(namespace, client, scratch)
    return operand
