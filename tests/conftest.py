"""Shared test fixtures for kvindex tests."""

from __future__ import annotations

import threading
from collections.abc import Callable

import pytest

from kvindex import KvIndexConfig, Namespace
from kvindex.codec import decode_query
from kvindex.errors import TransportError
from kvindex.storage import IndexStore
from kvindex.transport import LocalTransport
from kvindex.types import Entry, Location, ResponseBatch

USERS = Namespace("default", "users")


def entries(namespace: Namespace, *keys: str, term: str | int | None = None) -> tuple[Entry, ...]:
    return tuple(Entry(Location(namespace, k), term) for k in keys)


class ScriptedTransport:
    """Transport that answers from a fixed script keyed by continuation.

    ``script`` maps the continuation a request carries (``None`` for the first
    page) to either a list of batches (delivered one ``on_page`` call each) or
    an exception. ``gate``, when given, must be set before an asynchronous
    request delivers anything. With ``synchronous=True``, ``submit`` delivers
    every callback on the calling thread before it returns.
    """

    def __init__(
        self,
        script: dict[bytes | None, list[ResponseBatch] | BaseException],
        *,
        gate: threading.Event | None = None,
        synchronous: bool = False,
    ) -> None:
        self.script = script
        self.gate = gate
        self.synchronous = synchronous
        self.requests: list = []
        self.cancelled = threading.Event()
        self.completed = threading.Event()
        self._threads: list[threading.Thread] = []

    def _answer(self, encoded_query: bytes) -> list[ResponseBatch]:
        descriptor = decode_query(encoded_query)
        self.requests.append(descriptor)
        answer = self.script.get(descriptor.continuation)
        if answer is None:
            raise TransportError("fetch", f"no page for {descriptor.continuation!r}")
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def fetch(self, encoded_query: bytes) -> ResponseBatch:
        batches = self._answer(encoded_query)
        merged = tuple(e for b in batches for e in b.entries)
        return ResponseBatch(merged, batches[-1].continuation if batches else None)

    def submit(
        self,
        encoded_query: bytes,
        on_page: Callable[[ResponseBatch], None],
        on_complete: Callable[[BaseException | None], None],
    ) -> _ScriptedRequest:
        request = _ScriptedRequest(self, encoded_query, on_page, on_complete)
        if self.synchronous:
            request.run()
            return request
        thread = threading.Thread(target=request.run, daemon=True)
        self._threads.append(thread)
        thread.start()
        return request


class _ScriptedRequest:
    def __init__(self, transport, encoded_query, on_page, on_complete) -> None:
        self._transport = transport
        self._encoded_query = encoded_query
        self._on_page = on_page
        self._on_complete = on_complete
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()
        self._transport.cancelled.set()

    def run(self) -> None:
        if self._transport.gate is not None:
            while not self._transport.gate.wait(0.01):
                if self._cancelled.is_set():
                    break
        error = None
        try:
            for batch in self._transport._answer(self._encoded_query):
                if self._cancelled.is_set():
                    break
                self._on_page(batch)
        except Exception as e:
            error = e
        self._on_complete(error)
        self._transport.completed.set()


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def store(tmp_db):
    """Create an IndexStore with a temporary database."""
    s = IndexStore(tmp_db)
    yield s
    s.close()


@pytest.fixture
def seeded_store(store):
    """Store with ten users indexed by email, age and team."""
    for i in range(10):
        store.put(
            Location(USERS, f"user{i:02d}"),
            {
                "email_bin": [f"user{i:02d}@example.com"],
                "age_int": [20 + i],
                "team_bin": ["red" if i % 2 == 0 else "blue"],
            },
        )
    store.put(Location(Namespace("default", "other"), "stray"), {"email_bin": ["x@y.z"]})
    return store


@pytest.fixture
def config():
    return KvIndexConfig(page_size=4, consumer_poll_interval_s=0.01, cancel_wait_timeout_s=2.0)


@pytest.fixture
def local_transport(seeded_store, config):
    return LocalTransport(seeded_store, config, chunk_size=2)
