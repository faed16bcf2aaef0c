"""redohm CLI: operator console for inspecting a redohm store."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from redohm.cli import info, purge, scripts_cmd, verify

app = typer.Typer(
    name="redohm",
    help="redohm CLI: inspect entity types, check indices and manage scripts.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    url: str | None = None
    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("redohm")
        except Exception:
            v = "unknown"
        print(f"redohm {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(
        None,
        "--url",
        envvar="REDOHM_URL",
        help="Store URL (default: redis://localhost:6379/0)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug records to stderr"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all redohm commands."""
    state.url = url
    state.json_output = json_output
    state.verbose = verbose
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(scripts_cmd.app, name="scripts", help="Server-side script cache commands")

app.command(name="info")(info.info_cmd)
app.command(name="verify")(verify.verify_cmd)
app.command(name="purge-scratch")(purge.purge_cmd)


def main() -> None:
    """Entry point for the redohm CLI."""
    app()
