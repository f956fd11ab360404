"""kvi keys / kvi query: run secondary-index queries."""

from __future__ import annotations

from typing import Any, Optional

import typer

from kvindex.cli import _exitcodes as ec
from kvindex.cli._output import (
    entries_document,
    entry_row,
    format_continuation,
    parse_continuation,
    print_error,
    print_object,
    print_table,
)
from kvindex.cli._storage import open_client
from kvindex.client import IndexClient
from kvindex.errors import InvalidQueryError, KvIndexError
from kvindex.query import (
    ExactMatch,
    Match,
    QueryDescriptor,
    RangeMatch,
    bucket_index_query,
    build_query,
)
from kvindex.types import BUCKET_INDEX, Entry, IndexKind, IndexName, Namespace, Term


def _resolve_format(fmt: Optional[str]) -> str:
    from kvindex.cli import state

    if fmt is None:
        return "json" if state.json_output else "text"
    if fmt not in ("text", "json", "yaml"):
        raise typer.BadParameter(f"Unknown format '{fmt}'", param_hint="--format")
    return fmt


def _term(index: IndexName, raw: str) -> Term:
    if index.kind is IndexKind.INTEGER:
        try:
            return int(raw)
        except ValueError as e:
            raise InvalidQueryError(
                f"Integer index {index} needs integer values, got '{raw}'"
            ) from e
    return raw


def _match(
    index: IndexName,
    value: Optional[str],
    start: Optional[str],
    end: Optional[str],
) -> Match:
    if value is not None:
        if start is not None or end is not None:
            raise InvalidQueryError("Use either --value or --min/--max, not both")
        return ExactMatch(_term(index, value))
    if start is None or end is None:
        raise InvalidQueryError("A range query needs both --min and --max")
    return RangeMatch(_term(index, start), _term(index, end))


def _run(
    descriptor: QueryDescriptor,
    *,
    stream: bool,
    prefetch: Optional[int],
    fmt: str,
) -> None:
    client = open_client()
    try:
        if stream:
            _run_streaming(client, descriptor, prefetch, fmt)
        else:
            _run_materialized(client, descriptor, fmt)
    except InvalidQueryError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except KvIndexError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        client.close()


def _run_materialized(client: IndexClient, descriptor: QueryDescriptor, fmt: str) -> None:
    response = client.execute(descriptor)
    _print_results(list(response.entries), response.continuation, descriptor, fmt)


def _run_streaming(
    client: IndexClient,
    descriptor: QueryDescriptor,
    prefetch: Optional[int],
    fmt: str,
) -> None:
    with_term = descriptor.returns_terms
    collected: list[Entry] = []
    with client.execute_streaming(descriptor, prefetch) as future:
        response = future.result()
        for entry in response:
            if fmt == "text":
                row = entry_row(entry, with_term=with_term)
                print("\t".join("" if v is None else str(v) for v in row))
            else:
                collected.append(entry)
        future.wait()
        continuation = response.continuation
    if fmt == "text":
        if continuation is not None:
            print(f"continuation: {format_continuation(continuation)}")
        return
    print_object(entries_document(collected, continuation, with_term=with_term), fmt=fmt)


def _print_results(
    entries: list[Entry],
    continuation: bytes | None,
    descriptor: QueryDescriptor,
    fmt: str,
) -> None:
    with_term = descriptor.returns_terms
    if fmt != "text":
        print_object(entries_document(entries, continuation, with_term=with_term), fmt=fmt)
        return
    headers = ["key", "term"] if with_term else ["key"]
    rows: list[list[Any]] = [entry_row(e, with_term=with_term) for e in entries]
    print_table(headers, rows)
    if continuation is not None:
        print(f"continuation: {format_continuation(continuation)}")


def keys_cmd(
    bucket: str = typer.Argument(..., help="Bucket name"),
    bucket_type: Optional[str] = typer.Option(None, "--type", help="Bucket type"),
    max_results: Optional[int] = typer.Option(None, "--max-results", help="Max keys to return"),
    continuation: Optional[str] = typer.Option(
        None, "--continuation", help="Resume from a previous continuation"
    ),
    stream: bool = typer.Option(False, "--stream", help="Print keys as pages arrive"),
    prefetch: Optional[int] = typer.Option(
        None, "--prefetch", help="Pages buffered ahead of the consumer when streaming"
    ),
    fmt: Optional[str] = typer.Option(None, "--format", help="Output format: text, json or yaml"),
) -> None:
    """List every key in a bucket."""
    resolved_fmt = _resolve_format(fmt)
    try:
        descriptor = bucket_index_query(
            Namespace.of(bucket, bucket_type),
            max_results=max_results,
            continuation=parse_continuation(continuation),
        )
    except (KvIndexError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    _run(descriptor, stream=stream, prefetch=prefetch, fmt=resolved_fmt)


def query_cmd(
    bucket: str = typer.Argument(..., help="Bucket name"),
    index: str = typer.Argument(..., help="Index name: NAME_bin, NAME_int, $bucket or $key"),
    value: Optional[str] = typer.Option(None, "--value", help="Exact term to match"),
    start: Optional[str] = typer.Option(None, "--min", help="Range start (inclusive)"),
    end: Optional[str] = typer.Option(None, "--max", help="Range end (inclusive)"),
    bucket_type: Optional[str] = typer.Option(None, "--type", help="Bucket type"),
    return_terms: bool = typer.Option(False, "--return-terms", help="Include matched terms"),
    term_regex: Optional[str] = typer.Option(
        None, "--term-regex", help="Filter range results by term regex (binary indexes)"
    ),
    sort: bool = typer.Option(False, "--sort", help="Order results by term, then key"),
    max_results: Optional[int] = typer.Option(None, "--max-results", help="Max results"),
    continuation: Optional[str] = typer.Option(
        None, "--continuation", help="Resume from a previous continuation"
    ),
    stream: bool = typer.Option(False, "--stream", help="Print entries as pages arrive"),
    prefetch: Optional[int] = typer.Option(
        None, "--prefetch", help="Pages buffered ahead of the consumer when streaming"
    ),
    fmt: Optional[str] = typer.Option(None, "--format", help="Output format: text, json or yaml"),
) -> None:
    """Query a secondary index by exact value or range."""
    resolved_fmt = _resolve_format(fmt)
    try:
        namespace = Namespace.of(bucket, bucket_type)
        index_name = IndexName.parse(index)
        if index_name.name == BUCKET_INDEX:
            match: Match = ExactMatch(bucket)
        else:
            match = _match(index_name, value, start, end)
        descriptor = build_query(
            namespace,
            index_name,
            match,
            max_results=max_results,
            continuation=parse_continuation(continuation),
            return_terms=return_terms,
            term_regex=term_regex,
            pagination_sort=True if sort else None,
        )
    except (KvIndexError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    _run(descriptor, stream=stream, prefetch=prefetch, fmt=resolved_fmt)
