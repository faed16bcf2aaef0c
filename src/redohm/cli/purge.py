"""redohm purge-scratch: delete scratch keys left behind by interrupted queries."""

from __future__ import annotations

from typing import Optional

import typer

from redohm.cli import _exitcodes as ec
from redohm.cli._output import print_error, print_object
from redohm.cli._storage import open_client
from redohm.errors import STORE_UNAVAILABLE_ERRORS
from redohm.keys import VOLATILE_PREFIX, KeyNamespace, join_key

_BATCH = 500


def purge_cmd(
    type_name: Optional[str] = typer.Option(None, "--type", "-t", help="Only this type"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count keys without deleting"),
) -> None:
    """Delete leftover scratch keys (`~:*`)."""
    from redohm.cli import state

    if type_name:
        pattern = KeyNamespace(type_name).scratch_pattern
    else:
        pattern = join_key(VOLATILE_PREFIX, "*")
    client = open_client()
    deleted = 0
    try:
        batch: list[str] = []
        for key in client.scan_iter(match=pattern, count=_BATCH):
            batch.append(key)
            if len(batch) >= _BATCH:
                deleted += len(batch) if dry_run else client.delete(*batch)
                batch = []
        if batch:
            deleted += len(batch) if dry_run else client.delete(*batch)
    except STORE_UNAVAILABLE_ERRORS as e:
        print_error(f"Cannot reach store: {e}")
        raise typer.Exit(ec.STORE_ERROR)
    finally:
        client.close()

    if state.json_output:
        print_object({"pattern": pattern, "keys": deleted, "dry_run": dry_run}, json_mode=True)
    elif dry_run:
        print(f"{deleted} scratch key(s) match {pattern}")
    else:
        print(f"Deleted {deleted} scratch key(s)")
