"""Transport contract and a local, store-backed transport.

A transport accepts an encoded query (see :mod:`kvindex.codec`) and answers with
response batches. ``fetch`` answers one page synchronously; ``submit`` starts an
asynchronous request that calls ``on_page`` zero or more times in fetch order and
then ``on_complete`` exactly once, also after cancellation.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import threading
import zlib
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from kvindex.codec import decode_query
from kvindex.config import KvIndexConfig
from kvindex.errors import KvIndexError, TransportError
from kvindex.query import QueryDescriptor, RangeMatch
from kvindex.storage import IndexStore
from kvindex.types import BUCKET_INDEX, Entry, Location, ResponseBatch, Term

logger = logging.getLogger(__name__)

PageCallback = Callable[[ResponseBatch], None]
CompletionCallback = Callable[[BaseException | None], None]


@runtime_checkable
class CancelHandle(Protocol):
    """Handle returned by :meth:`Transport.submit` to abort a request."""

    def cancel(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    """Contract the query layer needs from the network side."""

    def fetch(self, encoded_query: bytes) -> ResponseBatch: ...

    def submit(
        self,
        encoded_query: bytes,
        on_page: PageCallback,
        on_complete: CompletionCallback,
    ) -> CancelHandle: ...


# --- Continuations ---


def encode_continuation(shape_key: str, term: Term, key: str) -> bytes:
    """Build an opaque token pointing just past ``(term, key)``."""
    raw = json.dumps([shape_key, term, key], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw)


def decode_continuation(token: bytes, shape_key: str) -> tuple[Term, str]:
    """Return the ``(term, key)`` cursor of a token issued for ``shape_key``."""
    try:
        issued_for, term, key = json.loads(base64.urlsafe_b64decode(token))
    except (ValueError, TypeError) as e:
        raise TransportError("continuation", f"Malformed continuation: {e}") from e
    if issued_for != shape_key:
        raise TransportError("continuation", "Continuation was issued for a different query")
    return term, key


# --- Coverage ---


def coverage_plan(partitions: int) -> list[bytes]:
    """Coverage contexts that together cover a bucket exactly once."""
    if partitions <= 0:
        raise ValueError("partitions must be positive")
    return [f"partition:{i}:{partitions}".encode() for i in range(partitions)]


def _parse_coverage(context: bytes) -> tuple[int, int]:
    try:
        tag, index, total = context.decode("ascii").split(":")
        part, parts = int(index), int(total)
    except (UnicodeDecodeError, ValueError) as e:
        raise TransportError("coverage", f"Unrecognized coverage context {context!r}") from e
    if tag != "partition" or parts <= 0 or not 0 <= part < parts:
        raise TransportError("coverage", f"Unrecognized coverage context {context!r}")
    return part, parts


def _in_partition(key: str, part: int, parts: int) -> bool:
    return zlib.crc32(key.encode("utf-8")) % parts == part


class _LocalRequest:
    """One in-flight ``submit`` served by a daemon worker thread."""

    def __init__(
        self,
        transport: LocalTransport,
        encoded_query: bytes,
        on_page: PageCallback,
        on_complete: CompletionCallback,
    ) -> None:
        self._transport = transport
        self._encoded_query = encoded_query
        self._on_page = on_page
        self._on_complete = on_complete
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def _run(self) -> None:
        error: BaseException | None = None
        try:
            self._deliver()
        except KvIndexError as e:
            error = e
        except Exception as e:
            logger.warning("Local request failed unexpectedly: %s", e)
            error = TransportError("submit", str(e))
        self._on_complete(error)

    def _deliver(self) -> None:
        entries, continuation = self._transport.read_page(self._encoded_query)
        chunk_size = self._transport.chunk_size
        chunks = [entries[i : i + chunk_size] for i in range(0, len(entries), chunk_size)]
        if continuation is not None and not chunks:
            chunks = [[]]
        for n, chunk in enumerate(chunks):
            if self._cancelled.is_set():
                logger.debug("Local request cancelled after %d chunks", n)
                return
            last = n == len(chunks) - 1
            self._on_page(ResponseBatch(tuple(chunk), continuation if last else None))


class LocalTransport:
    """Serves index queries from an :class:`IndexStore`.

    Pages hold ``max_results`` entries, or ``config.page_size`` when the query sets
    no limit. Asynchronous requests stream each page in chunks of ``chunk_size``.
    """

    def __init__(
        self,
        store: IndexStore,
        config: KvIndexConfig | None = None,
        *,
        chunk_size: int = 100,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._store = store
        self._config = config or KvIndexConfig()
        self.chunk_size = chunk_size

    def fetch(self, encoded_query: bytes) -> ResponseBatch:
        entries, continuation = self.read_page(encoded_query)
        return ResponseBatch(tuple(entries), continuation)

    def submit(
        self,
        encoded_query: bytes,
        on_page: PageCallback,
        on_complete: CompletionCallback,
    ) -> CancelHandle:
        request = _LocalRequest(self, encoded_query, on_page, on_complete)
        request.start()
        return request

    def read_page(self, encoded_query: bytes) -> tuple[list[Entry], bytes | None]:
        """Answer one page of an encoded query."""
        descriptor = decode_query(encoded_query)
        shape = descriptor.shape_key()
        limit = descriptor.max_results or self._config.page_size

        if isinstance(descriptor.match, RangeMatch):
            start, end = descriptor.match.start, descriptor.match.end
        else:
            start = end = descriptor.match.value
        cursor = None
        if descriptor.continuation is not None:
            cursor = decode_continuation(descriptor.continuation, shape)

        term_filter = re.compile(descriptor.term_regex) if descriptor.term_regex else None
        partition = None
        if descriptor.coverage_context is not None:
            partition = _parse_coverage(descriptor.coverage_context)

        logger.debug(
            "Reading page of %s on %s (limit=%d, resumed=%s)",
            descriptor.index,
            descriptor.namespace,
            limit,
            cursor is not None,
        )
        matched: list[tuple[Term, str]] = []
        # One extra match tells us whether another page exists.
        while len(matched) <= limit:
            rows = self._store.scan(
                descriptor.namespace,
                descriptor.index,
                start,
                end,
                after=cursor,
                limit=self._config.page_size,
            )
            if not rows:
                break
            cursor = rows[-1]
            for term, key in rows:
                if term_filter is not None and not term_filter.search(str(term)):
                    continue
                if partition is not None and not _in_partition(key, *partition):
                    continue
                matched.append((term, key))
                if len(matched) > limit:
                    break

        continuation = None
        if len(matched) > limit:
            matched = matched[:limit]
            last_term, last_key = matched[-1]
            continuation = encode_continuation(shape, last_term, last_key)

        return [self._entry(descriptor, term, key) for term, key in matched], continuation

    @staticmethod
    def _entry(descriptor: QueryDescriptor, term: Term, key: str) -> Entry:
        location = Location(descriptor.namespace, key)
        if descriptor.index.name == BUCKET_INDEX:
            return Entry(location, descriptor.namespace.bucket)
        if descriptor.return_terms:
            return Entry(location, term)
        return Entry(location)
