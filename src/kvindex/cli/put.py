"""kvi put / kvi delete: maintain objects and their index postings."""

from __future__ import annotations

from typing import Optional

import typer

from kvindex.cli import _exitcodes as ec
from kvindex.cli._output import print_error, print_object
from kvindex.cli._storage import open_cli_store
from kvindex.errors import KvIndexError
from kvindex.types import IndexKind, IndexName, Location, Namespace, Term


def _parse_index_args(index_args: list[str]) -> dict[str, list[Term]]:
    """Parse repeated ``NAME=VALUE`` options into an index mapping."""
    indexes: dict[str, list[Term]] = {}
    for arg in index_args:
        name, sep, raw = arg.partition("=")
        if not sep:
            raise typer.BadParameter(f"Expected NAME=VALUE, got '{arg}'", param_hint="--index")
        try:
            index = IndexName.parse(name)
        except KvIndexError as e:
            raise typer.BadParameter(str(e), param_hint="--index")
        if index.kind is IndexKind.INTEGER:
            try:
                term: Term = int(raw)
            except ValueError:
                raise typer.BadParameter(
                    f"Integer index {name} needs an integer value, got '{raw}'",
                    param_hint="--index",
                )
        else:
            term = raw
        indexes.setdefault(index.full_name, []).append(term)
    return indexes


def put_cmd(
    bucket: str = typer.Argument(..., help="Bucket name"),
    key: str = typer.Argument(..., help="Object key"),
    index_args: Optional[list[str]] = typer.Option(
        None, "--index", "-i", help="NAME=VALUE posting, e.g. email_bin=a@b.c (repeatable)"
    ),
    bucket_type: Optional[str] = typer.Option(None, "--type", help="Bucket type"),
) -> None:
    """Store an object key and replace its index postings."""
    from kvindex.cli import state

    indexes = _parse_index_args(index_args or [])
    try:
        location = Location(Namespace.of(bucket, bucket_type), key)
    except KvIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    store = open_cli_store()
    try:
        store.put(location, indexes)
    except KvIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()

    fmt = "json" if state.json_output else "text"
    print_object(
        {
            "bucket": str(location.namespace),
            "key": key,
            "postings": sum(len(terms) for terms in indexes.values()),
        },
        fmt=fmt,
    )


def delete_cmd(
    bucket: str = typer.Argument(..., help="Bucket name"),
    key: str = typer.Argument(..., help="Object key"),
    bucket_type: Optional[str] = typer.Option(None, "--type", help="Bucket type"),
) -> None:
    """Remove an object key and its index postings."""
    try:
        location = Location(Namespace.of(bucket, bucket_type), key)
    except KvIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    store = open_cli_store()
    try:
        removed = store.delete(location)
    except KvIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()

    if not removed:
        print_error(f"Key '{key}' not found in {location.namespace}")
        raise typer.Exit(ec.GENERAL_ERROR)
