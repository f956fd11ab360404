"""Query descriptors: what to ask a secondary index, validated up front."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, replace
from typing import Any, Union

from kvindex.errors import InvalidQueryError
from kvindex.types import (
    BUCKET,
    BUCKET_INDEX,
    KEY,
    IndexKind,
    IndexName,
    Namespace,
    Term,
)


@dataclass(frozen=True)
class ExactMatch:
    """Match entries whose term equals ``value``."""

    value: Term

    def to_spec(self) -> list[Any]:
        return ["eq", self.value]


@dataclass(frozen=True)
class RangeMatch:
    """Match entries whose term lies in ``[start, end]`` (inclusive)."""

    start: Term
    end: Term

    def to_spec(self) -> list[Any]:
        return ["range", self.start, self.end]


Match = Union[ExactMatch, RangeMatch]


@dataclass(frozen=True)
class QueryDescriptor:
    """Immutable description of one secondary-index query.

    Usually built with :func:`build_query` or one of the per-kind factories.
    Every construction path, including ``dataclasses.replace`` and
    :func:`kvindex.codec.decode_query`, validates the combination of options
    before anything touches the network.

    Raises:
        InvalidQueryError: for an inverted range, a term filter on an integer
            index or an exact match, a non-positive ``max_results`` or
            ``timeout_ms``, an empty continuation, or a value whose type does
            not match the index kind.
    """

    namespace: Namespace
    index: IndexName
    match: Match
    max_results: int | None = None
    continuation: bytes | None = None
    return_terms: bool = False
    term_regex: str | None = None
    pagination_sort: bool | None = None
    coverage_context: bytes | None = None
    timeout_ms: int | None = None

    def __post_init__(self) -> None:
        match = self.match
        if isinstance(match, RangeMatch):
            _check_term(self.index, match.start, "start")
            _check_term(self.index, match.end, "end")
            if _term_order(match.start) > _term_order(match.end):
                raise InvalidQueryError(
                    f"Range start {match.start!r} is greater than end {match.end!r}",
                    field="match",
                )
        elif isinstance(match, ExactMatch):
            _check_term(self.index, match.value, "value")
        else:
            raise InvalidQueryError(f"Unknown match type: {type(match).__name__}", field="match")

        if self.index.name == BUCKET_INDEX and match != ExactMatch(self.namespace.bucket):
            raise InvalidQueryError(
                "The $bucket index only matches the bucket's own name", field="match"
            )

        if self.term_regex is not None:
            if self.index.kind is IndexKind.INTEGER:
                raise InvalidQueryError(
                    "Term filters are not supported on integer indexes", field="term_regex"
                )
            if not isinstance(match, RangeMatch):
                raise InvalidQueryError(
                    "Term filters are only supported on range queries", field="term_regex"
                )
            try:
                re.compile(self.term_regex)
            except re.error as e:
                raise InvalidQueryError(f"Invalid term filter: {e}", field="term_regex") from e

        if self.max_results is not None and self.max_results <= 0:
            raise InvalidQueryError("max_results must be positive", field="max_results")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise InvalidQueryError("timeout_ms must be positive", field="timeout_ms")
        if self.continuation is not None and not self.continuation:
            raise InvalidQueryError("continuation must not be empty", field="continuation")

    @property
    def is_range(self) -> bool:
        return isinstance(self.match, RangeMatch)

    @property
    def returns_terms(self) -> bool:
        """True when entries carry their index term."""
        return self.return_terms or self.index.name == BUCKET_INDEX

    def with_continuation(self, continuation: bytes | None) -> QueryDescriptor:
        return replace(self, continuation=continuation)

    def with_max_results(self, max_results: int | None) -> QueryDescriptor:
        return replace(self, max_results=max_results)

    def shape_key(self) -> str:
        """Fingerprint of namespace + index + match, shared by all pages of a query."""
        canonical = json.dumps(
            [
                self.namespace.bucket_type,
                self.namespace.bucket,
                self.index.full_name,
                self.match.to_spec(),
            ],
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def _check_term(index: IndexName, value: Any, field: str) -> None:
    if index.kind is IndexKind.INTEGER:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidQueryError(
                f"Integer index {index} requires int values, got {type(value).__name__}",
                field=field,
            )
    elif not isinstance(value, str):
        raise InvalidQueryError(
            f"Binary index {index} requires str values, got {type(value).__name__}",
            field=field,
        )


def _term_order(value: Term) -> Any:
    # Binary terms order by their UTF-8 bytes, as the store compares them.
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def build_query(
    namespace: Namespace,
    index: IndexName,
    match: Match,
    *,
    max_results: int | None = None,
    continuation: bytes | None = None,
    return_terms: bool = False,
    term_regex: str | None = None,
    pagination_sort: bool | None = None,
    coverage_context: bytes | None = None,
    timeout_ms: int | None = None,
) -> QueryDescriptor:
    """Build a validated :class:`QueryDescriptor` from keyword options."""
    return QueryDescriptor(
        namespace=namespace,
        index=index,
        match=match,
        max_results=max_results,
        continuation=continuation,
        return_terms=return_terms,
        term_regex=term_regex,
        pagination_sort=pagination_sort,
        coverage_context=coverage_context,
        timeout_ms=timeout_ms,
    )


def _match_for(value: Term | None, start: Term | None, end: Term | None) -> Match:
    if value is not None:
        if start is not None or end is not None:
            raise InvalidQueryError(
                "Use either an exact value or a start/end range, not both", field="match"
            )
        return ExactMatch(value)
    if start is None or end is None:
        raise InvalidQueryError("A range query needs both start and end", field="match")
    return RangeMatch(start, end)


def bin_index_query(
    namespace: Namespace,
    index: str,
    value: str | None = None,
    *,
    start: str | None = None,
    end: str | None = None,
    **options: Any,
) -> QueryDescriptor:
    """Query a binary (string-valued) index by exact value or range."""
    return build_query(
        namespace, IndexName.binary(index), _match_for(value, start, end), **options
    )


def int_index_query(
    namespace: Namespace,
    index: str,
    value: int | None = None,
    *,
    start: int | None = None,
    end: int | None = None,
    **options: Any,
) -> QueryDescriptor:
    """Query an integer index by exact value or range."""
    return build_query(
        namespace, IndexName.integer(index), _match_for(value, start, end), **options
    )


def bucket_index_query(
    namespace: Namespace,
    *,
    coverage_context: bytes | None = None,
    **options: Any,
) -> QueryDescriptor:
    """List every key in a bucket through the ``$bucket`` pseudo-index."""
    return build_query(
        namespace,
        BUCKET,
        ExactMatch(namespace.bucket),
        coverage_context=coverage_context,
        **options,
    )


def key_index_query(
    namespace: Namespace,
    start: str,
    end: str,
    **options: Any,
) -> QueryDescriptor:
    """List keys in ``[start, end]`` through the ``$key`` pseudo-index."""
    return build_query(namespace, KEY, RangeMatch(start, end), **options)
