"""redohm info: list the entity types present in the store."""

from __future__ import annotations

from typing import Any, Optional

import typer

from redohm.cli import _exitcodes as ec
from redohm.cli._output import print_error, print_object, print_table
from redohm.cli._storage import open_client
from redohm.errors import STORE_UNAVAILABLE_ERRORS
from redohm.keys import SEPARATOR, VOLATILE_PREFIX, KeyNamespace

_ALL_SUFFIX = f"{SEPARATOR}all"


def discover_types(client: Any) -> list[str]:
    """Return the type names that own an `{Type}:all` set."""
    names = set()
    for key in client.scan_iter(match=f"*{_ALL_SUFFIX}", count=500):
        if key.startswith(VOLATILE_PREFIX + SEPARATOR):
            continue
        names.add(key[: -len(_ALL_SUFFIX)])
    return sorted(names)


def describe_type(client: Any, type_name: str) -> dict[str, Any]:
    keys = KeyNamespace(type_name)
    return {
        "type": type_name,
        "count": int(client.scard(keys.all)),
        "last_id": int(client.get(keys.id_counter) or 0),
        "indices": sorted(client.smembers(keys.indices)),
        "uniques": sorted(client.smembers(keys.uniques)),
        "collections": sorted(client.smembers(keys.collections)),
    }


def info_cmd(
    type_name: Optional[str] = typer.Option(None, "--type", "-t", help="Only show this type"),
) -> None:
    """Show entity types, live counts and declared indices found in the store."""
    from redohm.cli import state

    json_mode = state.json_output
    client = open_client()
    try:
        names = [type_name] if type_name else discover_types(client)
        data = [describe_type(client, name) for name in names]
    except STORE_UNAVAILABLE_ERRORS as e:
        print_error(f"Cannot reach store: {e}")
        raise typer.Exit(ec.STORE_ERROR)
    finally:
        client.close()

    if json_mode:
        print_object(data, json_mode=True)
        return
    if not data:
        print("No entity types found.")
        return
    headers = ["type", "count", "last_id", "indices", "uniques", "collections"]
    print_table(headers, [[row[h] for h in headers] for row in data])
