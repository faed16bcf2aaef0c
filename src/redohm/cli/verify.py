"""redohm verify: check index and unique-map consistency for model types."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

import typer

from redohm.cli import _exitcodes as ec
from redohm.cli._loader import load_models
from redohm.cli._output import print_error, print_object
from redohm.cli._storage import open_client
from redohm.errors import STORE_UNAVAILABLE_ERRORS
from redohm.registry import TypeSchema


@dataclass
class Drift:
    """One inconsistency between entity hashes and their index structures."""

    type_name: str
    check: str
    key: str
    detail: str


def check_schema(client: Any, schema: TypeSchema) -> list[Drift]:
    """Compare every entity of `schema` with its indices and unique maps.

    An id is in `{Type}:indices:{attr}:{value}` exactly when its hash holds
    `value` for `attr`, and `{Type}:uniques:{attr}` maps each stored value
    to the one id whose hash holds it.
    """
    keys = schema.keys
    drift: list[Drift] = []
    ids = sorted(client.smembers(keys.all))
    rows = {}
    if ids:
        pipe = client.pipeline(transaction=False)
        for entity_id in ids:
            pipe.hgetall(keys.entity(entity_id))
        rows = dict(zip(ids, pipe.execute()))

    for entity_id, row in rows.items():
        for attr in schema.indices:
            value = row.get(attr)
            if value is None:
                continue
            index = keys.index(attr, value)
            if not client.sismember(index, entity_id):
                drift.append(Drift(schema.name, "index", index, f"missing id {entity_id}"))
        for attr in schema.uniques:
            value = row.get(attr)
            if value is None:
                continue
            owner = client.hget(keys.unique(attr), value)
            if owner != entity_id:
                drift.append(
                    Drift(
                        schema.name,
                        "unique",
                        keys.unique(attr),
                        f"{value!r} maps to {owner!r}, expected {entity_id}",
                    )
                )

    for attr in schema.indices:
        prefix = keys.index(attr, "")
        for index in client.scan_iter(match=f"{prefix}*", count=500):
            value = index[len(prefix) :]
            for member in client.smembers(index):
                row = rows.get(member)
                if row is None or row.get(attr) != value:
                    drift.append(Drift(schema.name, "index", index, f"stale id {member}"))

    for attr in schema.uniques:
        for value, owner in client.hgetall(keys.unique(attr)).items():
            row = rows.get(owner)
            if row is None or row.get(attr) != value:
                drift.append(
                    Drift(schema.name, "unique", keys.unique(attr), f"stale entry {value!r}")
                )
    return drift


def verify_cmd(
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    strict: bool = typer.Option(False, "--strict", help="Non-zero exit on any drift"),
) -> None:
    """Verify that indices and unique maps agree with the stored entities."""
    from redohm.cli import state

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        model_types = load_models(models, models_path)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    json_mode = state.json_output
    client = open_client()
    try:
        drift: list[Drift] = []
        for name in sorted(model_types):
            drift.extend(check_schema(client, model_types[name].__schema__))
    except STORE_UNAVAILABLE_ERRORS as e:
        print_error(f"Cannot reach store: {e}")
        raise typer.Exit(ec.STORE_ERROR)
    finally:
        client.close()

    if json_mode:
        status = "drift" if drift else "ok"
        print_object({"status": status, "drift": [asdict(d) for d in drift]}, json_mode=True)
    elif not drift:
        print(f"OK: {len(model_types)} type(s) consistent.")
    else:
        print(f"Drift found: {len(drift)} problem(s)")
        for d in drift:
            print(f"  {d.type_name} [{d.check}] {d.key}: {d.detail}")

    if drift and strict:
        raise typer.Exit(ec.INVARIANT_DRIFT)
