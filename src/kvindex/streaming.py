"""Streaming execution: asynchronous page delivery behind a blocking iterator.

Transport callbacks push response batches into a bounded relay buffer; the
caller pulls entries one at a time from a single-pass iterator. One
``threading.Condition`` guards the buffer, the bridge state and the one-shot
consumption flag. No lock is held while calling into the transport.

Usage::

    with client.execute_streaming(query, prefetch_batches=2) as future:
        response = future.result()
        for entry in response:
            print(entry.key)
        future.wait()
        token = response.continuation
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterator
from enum import Enum
from functools import partial
from types import TracebackType

from kvindex.codec import encode_query
from kvindex.config import KvIndexConfig
from kvindex.errors import (
    AlreadyConsumedError,
    InvalidQueryError,
    PrematureContinuationAccessError,
    QueryExecutionError,
    StreamingInterrupted,
)
from kvindex.query import QueryDescriptor
from kvindex.transport import CancelHandle, Transport
from kvindex.types import Entry, IndexQueryResponse, ResponseBatch

logger = logging.getLogger(__name__)


class BridgeState(str, Enum):
    """Lifecycle of a streaming bridge; the last three states are terminal."""

    IDLE = "idle"
    FETCHING = "fetching"
    DELIVERING = "delivering"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BridgeState.EXHAUSTED, BridgeState.FAILED, BridgeState.CANCELLED)


class StreamingBridge:
    """Relays batches from transport callbacks to a blocking consumer.

    Each page request gets a sequence number; callbacks carrying an older
    number are ignored. Page requests are issued by one producer thread per
    bridge, so transport callbacks never run on the consumer's thread, even
    when a transport calls them synchronously from ``submit``. The completion
    callback of one page queues the request for the next.
    Page callbacks wait while the buffer holds ``capacity`` batches.
    """

    def __init__(
        self,
        transport: Transport,
        descriptor: QueryDescriptor,
        capacity: int,
        config: KvIndexConfig | None = None,
    ) -> None:
        if capacity <= 0:
            raise InvalidQueryError("prefetch_batches must be positive", field="prefetch_batches")
        self._transport = transport
        self._descriptor = descriptor
        self._capacity = capacity
        self._config = config or KvIndexConfig()

        self._cond = threading.Condition()
        self._buffer: deque[ResponseBatch] = deque()
        self._current: deque[Entry] = deque()
        self._state = BridgeState.IDLE
        self._error: BaseException | None = None
        self._continuation: bytes | None = None
        self._received = 0
        self._consumed = 0
        self._seq = 0
        self._inflight = False
        self._cancel_handle: CancelHandle | None = None
        self._pending: tuple[QueryDescriptor, int] | None = None
        self._producer: threading.Thread | None = None
        self._claimed = False
        self._drained = False
        self._interrupted = False
        self._released = False
        self._terminated = threading.Event()

    # --- Introspection ---

    @property
    def state(self) -> BridgeState:
        with self._cond:
            return self._state

    @property
    def error(self) -> BaseException | None:
        with self._cond:
            return self._error

    @property
    def descriptor(self) -> QueryDescriptor:
        return self._descriptor

    # --- Producer side ---

    def start(self) -> None:
        with self._cond:
            if self._state is not BridgeState.IDLE:
                return
            self._state = BridgeState.FETCHING
            self._inflight = True
            self._pending = (self._descriptor, self._seq)
            self._producer = threading.Thread(
                target=self._produce, name="kvindex-stream-producer", daemon=True
            )
        logger.debug("Streaming %s on %s", self._descriptor.index, self._descriptor.namespace)
        self._producer.start()

    def _produce(self) -> None:
        while True:
            with self._cond:
                while self._pending is None and not self._state.is_terminal:
                    self._cond.wait()
                if self._pending is None:
                    return
                request, seq = self._pending
                self._pending = None
                if self._state is BridgeState.CANCELLED:
                    self._inflight = False
                    self._check_terminated_locked()
                    return
            self._issue(request, seq)

    def _issue(self, request: QueryDescriptor, seq: int) -> None:
        try:
            handle = self._transport.submit(
                encode_query(request),
                partial(self._on_page, seq),
                partial(self._on_complete, seq),
            )
        except Exception as e:
            self._on_complete(seq, e)
            return
        with self._cond:
            if seq != self._seq or not self._inflight:
                return
            self._cancel_handle = handle
            cancel_now = self._state is BridgeState.CANCELLED
        if cancel_now:
            handle.cancel()

    def _on_page(self, seq: int, batch: ResponseBatch) -> None:
        with self._cond:
            while (
                seq == self._seq
                and self._state is not BridgeState.CANCELLED
                and len(self._buffer) >= self._capacity
            ):
                self._cond.wait()
            if seq != self._seq or self._state.is_terminal:
                return
            self._state = BridgeState.DELIVERING
            self._continuation = batch.continuation
            if batch.entries:
                self._buffer.append(batch)
                self._received += len(batch.entries)
            self._cond.notify_all()

    def _on_complete(self, seq: int, error: BaseException | None) -> None:
        with self._cond:
            if seq != self._seq or not self._inflight:
                return
            self._inflight = False
            self._cancel_handle = None
            if self._state is BridgeState.CANCELLED:
                pass
            elif error is not None:
                logger.warning("Streaming %s failed: %s", self._descriptor.index, error)
                self._state = BridgeState.FAILED
                self._error = error
            elif self._continuation is not None and not self._limit_reached_locked():
                next_request = self._descriptor.with_continuation(self._continuation)
                if self._descriptor.max_results is not None:
                    next_request = next_request.with_max_results(
                        self._descriptor.max_results - self._received
                    )
                self._seq += 1
                self._pending = (next_request, self._seq)
                self._inflight = True
                self._continuation = None
                self._state = BridgeState.FETCHING
            else:
                self._state = BridgeState.EXHAUSTED
                logger.debug("Streaming %s exhausted", self._descriptor.index)
            self._cond.notify_all()
            self._check_terminated_locked()

    def _limit_reached_locked(self) -> bool:
        limit = self._descriptor.max_results
        return limit is not None and self._received >= limit

    # --- Consumer side ---

    def claim(self) -> None:
        """Mark the stream as consumed; only the first call succeeds."""
        with self._cond:
            if self._claimed:
                raise AlreadyConsumedError()
            self._claimed = True

    def next_entry(self) -> Entry:
        """Block until an entry is available and return it.

        Raises:
            StopIteration: when the stream is exhausted or was cancelled.
            StreamingInterrupted: once the consumer has been interrupted.
            QueryExecutionError: when the transport reported a failure.
        """
        try:
            with self._cond:
                return self._next_locked()
        except KeyboardInterrupt as e:
            self.interrupt()
            raise StreamingInterrupted() from e

    def _next_locked(self) -> Entry:
        while True:
            if self._interrupted:
                raise StreamingInterrupted()
            if self._current:
                self._consumed += 1
                return self._current.popleft()
            if self._buffer:
                self._current.extend(self._buffer.popleft().entries)
                self._cond.notify_all()
                continue
            if self._state is BridgeState.EXHAUSTED:
                self._drained = True
                self._release_locked()
                raise StopIteration
            if self._state is BridgeState.CANCELLED:
                raise StopIteration
            if self._state is BridgeState.FAILED:
                self._release_locked()
                partial_response = IndexQueryResponse((), self._continuation)
                raise QueryExecutionError(partial_response, self._error, delivered=self._consumed)
            self._wait_for_entries()

    def _wait_for_entries(self) -> None:
        self._cond.wait(self._config.consumer_poll_interval_s)

    def interrupt(self) -> None:
        """Interrupt the consumer; safe to call from any thread."""
        with self._cond:
            handle = self._interrupt_locked()
        if handle is not None:
            handle.cancel()

    def _interrupt_locked(self) -> CancelHandle | None:
        if self._interrupted:
            return None
        logger.debug("Streaming %s interrupted", self._descriptor.index)
        self._interrupted = True
        handle = self._cancel_locked()
        self._release_locked()
        self._cond.notify_all()
        return handle

    def continuation(self) -> bytes | None:
        with self._cond:
            if self._state is BridgeState.EXHAUSTED and self._drained and not self._interrupted:
                return self._continuation
        raise PrematureContinuationAccessError()

    # --- Termination ---

    def cancel(self) -> bool:
        """Abort the stream. Returns False if it had already terminated."""
        with self._cond:
            if self._state.is_terminal:
                return False
            handle = self._cancel_locked()
            self._release_locked()
            self._cond.notify_all()
        logger.debug("Streaming %s cancelled", self._descriptor.index)
        if handle is not None:
            handle.cancel()
        return True

    def _cancel_locked(self) -> CancelHandle | None:
        if self._state.is_terminal:
            return None
        self._state = BridgeState.CANCELLED
        self._check_terminated_locked()
        return self._cancel_handle if self._inflight else None

    def _release_locked(self) -> None:
        if self._released:
            return
        self._released = True
        self._buffer.clear()
        self._current.clear()
        logger.debug(
            "Released relay buffer for %s (%d entries received, %d consumed)",
            self._descriptor.index,
            self._received,
            self._consumed,
        )

    def _check_terminated_locked(self) -> None:
        if self._state.is_terminal and not self._inflight:
            self._terminated.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until the bridge is terminal and no page request is in flight."""
        return self._terminated.wait(timeout)

    @property
    def released(self) -> bool:
        with self._cond:
            return self._released


class _EntryIterator(Iterator[Entry]):
    def __init__(self, bridge: StreamingBridge) -> None:
        self._bridge = bridge

    def __next__(self) -> Entry:
        return self._bridge.next_entry()


class StreamingResponse:
    """Single-pass view over the entries of a streaming index query."""

    def __init__(self, bridge: StreamingBridge) -> None:
        self._bridge = bridge

    def __iter__(self) -> Iterator[Entry]:
        self._bridge.claim()
        return _EntryIterator(self._bridge)

    @property
    def continuation(self) -> bytes | None:
        """Continuation of the last page, readable once iteration has ended.

        Raises:
            PrematureContinuationAccessError: if the stream has not been fully
                consumed.
        """
        return self._bridge.continuation()

    @property
    def has_continuation(self) -> bool:
        return self.continuation is not None

    def interrupt(self) -> None:
        """Make the current and every later ``next()`` raise StreamingInterrupted."""
        self._bridge.interrupt()


class StreamingFuture:
    """Completion handle of a streaming query, separate from its iterator."""

    def __init__(self, bridge: StreamingBridge, config: KvIndexConfig | None = None) -> None:
        self._bridge = bridge
        self._response = StreamingResponse(bridge)
        self._config = config or KvIndexConfig()

    @property
    def query(self) -> QueryDescriptor:
        return self._bridge.descriptor

    @property
    def state(self) -> BridgeState:
        return self._bridge.state

    @property
    def cause(self) -> BaseException | None:
        """The transport failure, if the query failed."""
        return self._bridge.error

    def result(self) -> StreamingResponse:
        return self._response

    def done(self) -> bool:
        return self._bridge.wait(0)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until background fetching has stopped. Returns False on timeout."""
        return self._bridge.wait(timeout)

    def cancel(self) -> bool:
        return self._bridge.cancel()

    def __enter__(self) -> StreamingFuture:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cancel()
        self.wait(self._config.cancel_wait_timeout_s)


def execute_streaming(
    transport: Transport,
    descriptor: QueryDescriptor,
    prefetch_batches: int | None = None,
    config: KvIndexConfig | None = None,
) -> StreamingFuture:
    """Start ``descriptor`` and return a handle to its streamed entries.

    Raises:
        InvalidQueryError: if ``prefetch_batches`` is not positive.
    """
    config = config or KvIndexConfig()
    capacity = config.prefetch_batches if prefetch_batches is None else prefetch_batches
    bridge = StreamingBridge(transport, descriptor, capacity, config)
    future = StreamingFuture(bridge, config)
    bridge.start()
    return future
