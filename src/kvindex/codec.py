"""Canonical wire encoding of query descriptors.

Encoding is a pure function of the descriptor: equal descriptors always encode to
equal bytes (sorted keys, compact separators, bytes fields as base64).
"""

from __future__ import annotations

import base64
import json
from typing import Any

from kvindex.errors import InvalidQueryError, TransportError
from kvindex.query import ExactMatch, QueryDescriptor, RangeMatch
from kvindex.types import IndexKind, IndexName, Namespace


def _b64(data: bytes | None) -> str | None:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str | None) -> bytes | None:
    if data is None:
        return None
    return base64.b64decode(data.encode("ascii"))


def encode_query(descriptor: QueryDescriptor) -> bytes:
    """Encode a descriptor for a transport."""
    match = descriptor.match
    payload: dict[str, Any] = {
        "bucket_type": descriptor.namespace.bucket_type,
        "bucket": descriptor.namespace.bucket,
        "index": descriptor.index.full_name,
        "kind": descriptor.index.kind.value,
        "max_results": descriptor.max_results,
        "continuation": _b64(descriptor.continuation),
        "return_terms": descriptor.return_terms,
        "term_regex": descriptor.term_regex,
        "pagination_sort": descriptor.pagination_sort,
        "cover_context": _b64(descriptor.coverage_context),
        "timeout": descriptor.timeout_ms,
    }
    if isinstance(match, RangeMatch):
        payload["qtype"] = "range"
        payload["range_min"] = match.start
        payload["range_max"] = match.end
    else:
        payload["qtype"] = "eq"
        payload["key"] = match.value
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_query(data: bytes) -> QueryDescriptor:
    """Decode bytes produced by :func:`encode_query` back into a descriptor."""
    try:
        payload = json.loads(data.decode("utf-8"))
        index = IndexName(
            payload["index"].removesuffix("_" + payload["kind"]),
            IndexKind(payload["kind"]),
        )
        if payload["qtype"] == "range":
            match: ExactMatch | RangeMatch = RangeMatch(payload["range_min"], payload["range_max"])
        else:
            match = ExactMatch(payload["key"])
        return QueryDescriptor(
            namespace=Namespace(payload["bucket_type"], payload["bucket"]),
            index=index,
            match=match,
            max_results=payload["max_results"],
            continuation=_unb64(payload["continuation"]),
            return_terms=payload["return_terms"],
            term_regex=payload["term_regex"],
            pagination_sort=payload["pagination_sort"],
            coverage_context=_unb64(payload["cover_context"]),
            timeout_ms=payload["timeout"],
        )
    except (ValueError, KeyError, TypeError, AttributeError, InvalidQueryError) as e:
        raise TransportError("decode_query", f"Malformed query encoding: {e}") from e
