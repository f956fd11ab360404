"""Materialized execution: follow continuations and collect every entry."""

from __future__ import annotations

import heapq
import logging
from typing import Any

from kvindex.codec import encode_query
from kvindex.errors import QueryExecutionError
from kvindex.query import QueryDescriptor
from kvindex.transport import Transport
from kvindex.types import Entry, IndexQueryResponse

logger = logging.getLogger(__name__)


def sort_key(entry: Entry) -> tuple[Any, str]:
    """Pagination-sort order: index term, then key."""
    term = entry.term
    if isinstance(term, str):
        return (term.encode("utf-8"), entry.key)
    if term is None:
        return (b"", entry.key)
    return (term, entry.key)


def merge_page(collected: list[Entry], page: tuple[Entry, ...]) -> list[Entry]:
    """Merge a sorted page into already-sorted entries."""
    if not collected or not page:
        return collected + list(page)
    if sort_key(collected[-1]) <= sort_key(page[0]):
        return collected + list(page)
    return list(heapq.merge(collected, page, key=sort_key))


def execute_materialized(
    transport: Transport,
    descriptor: QueryDescriptor,
) -> IndexQueryResponse:
    """Run ``descriptor`` to completion and return every entry.

    Pages are requested one after another, each resuming from the previous
    page's continuation, until a page carries no continuation or
    ``max_results`` entries have been collected. In the latter case the last
    continuation is kept on the response so a later query can resume.

    Raises:
        QueryExecutionError: if any page request fails. The entries collected so
            far are attached as ``partial``.
    """
    entries: list[Entry] = []
    continuation = descriptor.continuation
    request = descriptor
    pages = 0

    while True:
        try:
            batch = transport.fetch(encode_query(request))
        except Exception as e:
            logger.warning("Index query on %s failed after %d pages", descriptor.index, pages)
            partial = IndexQueryResponse(tuple(entries), continuation)
            raise QueryExecutionError(partial, e) from e
        pages += 1

        # Without terms the pages keep the transport's (term, key) order.
        if descriptor.pagination_sort and descriptor.returns_terms:
            entries = merge_page(entries, batch.entries)
        else:
            entries.extend(batch.entries)
        continuation = batch.continuation

        if continuation is None:
            break
        if descriptor.max_results is not None:
            remaining = descriptor.max_results - len(entries)
            if remaining <= 0:
                break
            request = request.with_continuation(continuation).with_max_results(remaining)
        else:
            request = request.with_continuation(continuation)

    logger.debug(
        "Index query on %s returned %d entries in %d pages", descriptor.index, len(entries), pages
    )
    return IndexQueryResponse(tuple(entries), continuation)
