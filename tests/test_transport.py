"""Tests for LocalTransport paging, continuations, filters and async delivery."""

from __future__ import annotations

import threading

import pytest

from kvindex import (
    KvIndexConfig,
    TransportError,
    bin_index_query,
    bucket_index_query,
    int_index_query,
    key_index_query,
)
from kvindex.codec import encode_query
from kvindex.transport import (
    CancelHandle,
    LocalTransport,
    Transport,
    coverage_plan,
    decode_continuation,
    encode_continuation,
)
from kvindex.types import Location
from tests.conftest import USERS


def fetch(transport, query):
    return transport.fetch(encode_query(query))


def test_local_transport_satisfies_protocol(local_transport):
    assert isinstance(local_transport, Transport)


def test_page_without_limit_uses_page_size(local_transport):
    batch = fetch(local_transport, bucket_index_query(USERS))
    assert [e.key for e in batch.entries] == ["user00", "user01", "user02", "user03"]
    assert batch.continuation is not None


def test_bucket_entries_carry_bucket_name(local_transport):
    batch = fetch(local_transport, bucket_index_query(USERS, max_results=2))
    assert [e.term for e in batch.entries] == ["users", "users"]


def test_continuation_resumes_next_page(local_transport):
    q = int_index_query(USERS, "age", start=20, end=29, max_results=3)
    first = fetch(local_transport, q)
    second = fetch(local_transport, q.with_continuation(first.continuation))
    assert [e.key for e in first.entries] == ["user00", "user01", "user02"]
    assert [e.key for e in second.entries] == ["user03", "user04", "user05"]


def test_last_page_has_no_continuation(local_transport):
    q = int_index_query(USERS, "age", start=20, end=29, max_results=10)
    batch = fetch(local_transport, q)
    assert len(batch) == 10
    assert batch.continuation is None


def test_continuation_from_other_query_is_rejected(local_transport):
    a = int_index_query(USERS, "age", start=20, end=29, max_results=2)
    b = int_index_query(USERS, "age", start=21, end=29, max_results=2)
    token = fetch(local_transport, a).continuation
    with pytest.raises(TransportError):
        fetch(local_transport, b.with_continuation(token))


def test_malformed_continuation_is_rejected(local_transport):
    q = bucket_index_query(USERS, continuation=b"%%%")
    with pytest.raises(TransportError):
        fetch(local_transport, q)


def test_continuation_token_round_trip():
    token = encode_continuation("shape", 5, "k")
    assert decode_continuation(token, "shape") == (5, "k")


def test_return_terms(local_transport):
    q = int_index_query(USERS, "age", start=21, end=22, return_terms=True)
    batch = fetch(local_transport, q)
    assert [(e.key, e.term) for e in batch.entries] == [("user01", 21), ("user02", 22)]

    q = int_index_query(USERS, "age", start=21, end=22)
    assert all(e.term is None for e in fetch(local_transport, q).entries)


def test_exact_match(local_transport):
    batch = fetch(local_transport, bin_index_query(USERS, "team", "red", max_results=10))
    assert [e.key for e in batch.entries] == ["user00", "user02", "user04", "user06", "user08"]


def test_term_regex_filters_and_fills_page(local_transport, seeded_store):
    seeded_store.put(Location(USERS, "zed"), {"email_bin": ["zed@elsewhere.org"]})
    q = bin_index_query(
        USERS, "email", start="a", end="zzz", term_regex="elsewhere", return_terms=True
    )
    batch = fetch(local_transport, q)
    assert [(e.key, e.term) for e in batch.entries] == [("zed", "zed@elsewhere.org")]
    assert batch.continuation is None


def test_key_index_range(local_transport):
    batch = fetch(local_transport, key_index_query(USERS, "user07", "user09"))
    assert [e.key for e in batch.entries] == ["user07", "user08", "user09"]


def test_coverage_plan_partitions_cover_bucket_once(seeded_store):
    transport = LocalTransport(seeded_store, KvIndexConfig(page_size=100))
    keys: list[str] = []
    for context in coverage_plan(3):
        batch = fetch(transport, bucket_index_query(USERS, coverage_context=context))
        keys.extend(e.key for e in batch.entries)
    assert sorted(keys) == [f"user{i:02d}" for i in range(10)]


def test_unknown_coverage_context_is_rejected(local_transport):
    with pytest.raises(TransportError):
        fetch(local_transport, bucket_index_query(USERS, coverage_context=b"vnode:7"))


def test_coverage_plan_requires_partitions():
    with pytest.raises(ValueError):
        coverage_plan(0)


def test_chunk_size_must_be_positive(seeded_store):
    with pytest.raises(ValueError):
        LocalTransport(seeded_store, chunk_size=0)


def test_submit_delivers_chunks_then_completes(local_transport):
    pages = []
    outcome: list = []
    done = threading.Event()

    def on_complete(error):
        outcome.append(error)
        done.set()

    handle = local_transport.submit(
        encode_query(bucket_index_query(USERS, max_results=5)), pages.append, on_complete
    )
    assert isinstance(handle, CancelHandle)
    assert done.wait(5)
    assert outcome == [None]
    assert [len(p) for p in pages] == [2, 2, 1]
    assert [p.continuation is not None for p in pages] == [False, False, True]


def test_submit_reports_errors_to_completion(local_transport):
    outcome: list = []
    done = threading.Event()

    def on_complete(error):
        outcome.append(error)
        done.set()

    local_transport.submit(b"garbage", lambda batch: None, on_complete)
    assert done.wait(5)
    assert isinstance(outcome[0], TransportError)


def test_cancelled_submit_still_completes(local_transport):
    release = threading.Event()
    pages = []
    outcome: list = []
    done = threading.Event()

    def on_page(batch):
        pages.append(batch)
        release.wait(5)

    def on_complete(error):
        outcome.append(error)
        done.set()

    handle = local_transport.submit(
        encode_query(bucket_index_query(USERS, max_results=8)), on_page, on_complete
    )
    handle.cancel()
    release.set()
    assert done.wait(5)
    assert outcome == [None]
    assert len(pages) <= 1
