"""Output formatting helpers for the CLI."""

from __future__ import annotations

import base64
import json
import sys
from typing import Any

import yaml

from kvindex.types import Entry


def print_table(headers: list[str], rows: list[list[Any]]) -> None:
    """Print rows under aligned column headers."""
    if not rows:
        return

    widths = [len(h) for h in headers]
    str_rows = [["" if v is None else str(v) for v in row] for row in rows]
    for row in str_rows:
        for i, val in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print(
            "  ".join(val.ljust(widths[i]) if i < len(widths) else val for i, val in enumerate(row))
        )


def print_object(data: dict[str, Any] | list[Any], *, fmt: str = "text") -> None:
    """Print a single object or list as JSON, YAML or key-value pairs."""
    if fmt == "json":
        print(json.dumps(data, indent=2, default=str))
        return
    if fmt == "yaml":
        print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), end="")
        return

    if isinstance(data, list):
        for item in data:
            print(f"  {item}")
        return

    for k, v in data.items():
        print(f"{k}: {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)


def format_continuation(token: bytes | None) -> str | None:
    if token is None:
        return None
    return base64.urlsafe_b64encode(token).decode("ascii")


def parse_continuation(text: str | None) -> bytes | None:
    if text is None:
        return None
    return base64.urlsafe_b64decode(text.encode("ascii"))


def entry_row(entry: Entry, *, with_term: bool) -> list[Any]:
    if with_term:
        return [entry.key, entry.term]
    return [entry.key]


def entries_document(
    entries: list[Entry], continuation: bytes | None, *, with_term: bool
) -> dict[str, Any]:
    """Structured form of a query result for JSON/YAML output."""
    items: list[dict[str, Any]] = []
    for entry in entries:
        item: dict[str, Any] = {"key": entry.key}
        if with_term:
            item["term"] = entry.term
        items.append(item)
    return {
        "count": len(items),
        "entries": items,
        "continuation": format_continuation(continuation),
    }
