"""kvindex CLI: populate a local index store and run secondary-index queries."""

from __future__ import annotations

from typing import Optional

import typer

from kvindex.cli import put, query

app = typer.Typer(
    name="kvi",
    help="kvindex CLI: run secondary-index queries against a local index store.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "kvindex.db"
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("kvindex")
        except Exception:
            v = "unknown"
        print(f"kvi {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="KVINDEX_DB",
        help="Index store path or sqlite:/// URI (default: kvindex.db)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all kvi commands."""
    from kvindex.errors import StorageBackendError
    from kvindex.storage import parse_storage_target

    resolved = db or "kvindex.db"
    if resolved.startswith("sqlite:"):
        try:
            resolved = parse_storage_target(storage_uri=resolved).db_path
        except StorageBackendError as e:
            raise typer.BadParameter(str(e), param_hint="--db")

    state.db = resolved
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="put")(put.put_cmd)
app.command(name="delete")(put.delete_cmd)
app.command(name="keys")(query.keys_cmd)
app.command(name="query")(query.query_cmd)


def main() -> None:
    """Entry point for the kvi CLI."""
    app()
