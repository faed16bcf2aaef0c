"""redohm scripts: manage the server-side script cache."""

from __future__ import annotations

import typer

from redohm.cli import _exitcodes as ec
from redohm.cli._output import print_error, print_table
from redohm.cli._storage import config_from_env, open_client
from redohm.errors import STORE_UNAVAILABLE_ERRORS
from redohm.scripts import ScriptRunner

app = typer.Typer(no_args_is_help=True)


@app.command("load")
def load_cmd() -> None:
    """Load the bundled save/delete scripts and print their SHA1s."""
    from redohm.cli import state

    client = open_client()
    try:
        loaded = ScriptRunner(client, config_from_env().script_dir).load_all()
    except STORE_UNAVAILABLE_ERRORS as e:
        print_error(f"Cannot reach store: {e}")
        raise typer.Exit(ec.STORE_ERROR)
    finally:
        client.close()

    rows = [[name, sha] for name, sha in loaded.items()]
    print_table(["script", "sha"], rows, json_mode=state.json_output)
