"""Tests for query descriptors, index names and namespaces."""

from __future__ import annotations

import pytest

from kvindex import (
    BUCKET,
    KEY,
    ExactMatch,
    IndexKind,
    IndexName,
    InvalidQueryError,
    Namespace,
    QueryDescriptor,
    RangeMatch,
    bin_index_query,
    bucket_index_query,
    build_query,
    int_index_query,
    key_index_query,
)
from tests.conftest import USERS

# --- Namespace / IndexName ---


def test_namespace_defaults_bucket_type():
    ns = Namespace.of("users")
    assert ns.bucket_type == "default"
    assert str(ns) == "default/users"


@pytest.mark.parametrize("bucket_type,bucket", [("default", ""), ("", "users")])
def test_namespace_rejects_empty_names(bucket_type, bucket):
    with pytest.raises(InvalidQueryError):
        Namespace(bucket_type, bucket)


def test_index_full_names():
    assert IndexName.binary("email").full_name == "email_bin"
    assert IndexName.binary("email_bin").full_name == "email_bin"
    assert IndexName.integer("age").full_name == "age_int"
    assert BUCKET.full_name == "$bucket"
    assert KEY.full_name == "$key"


def test_index_parse():
    assert IndexName.parse("age_int") == IndexName("age", IndexKind.INTEGER)
    assert IndexName.parse("$bucket") is not None
    assert IndexName.parse("$bucket").kind is IndexKind.BINARY
    with pytest.raises(InvalidQueryError):
        IndexName.parse("age")


def test_reserved_index_is_always_binary():
    with pytest.raises(InvalidQueryError):
        IndexName("$bucket", IndexKind.INTEGER)


# --- build_query validation ---


def test_range_with_min_greater_than_max_is_rejected():
    with pytest.raises(InvalidQueryError) as exc:
        int_index_query(USERS, "age", start=30, end=20)
    assert exc.value.field == "match"


def test_binary_range_ordering_uses_bytes():
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", start="b", end="a")
    q = bin_index_query(USERS, "email", start="a", end="a")
    assert q.match == RangeMatch("a", "a")


def test_term_regex_rejected_for_integer_index():
    with pytest.raises(InvalidQueryError) as exc:
        int_index_query(USERS, "age", start=1, end=5, term_regex="^1")
    assert exc.value.field == "term_regex"


def test_term_regex_rejected_for_exact_match():
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", "a@b.c", term_regex="^a")


def test_term_regex_must_compile():
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", start="a", end="z", term_regex="(")


def test_term_regex_allowed_on_binary_range():
    q = bin_index_query(USERS, "email", start="a", end="z", term_regex="@example")
    assert q.term_regex == "@example"


@pytest.mark.parametrize("max_results", [0, -1])
def test_max_results_must_be_positive(max_results):
    with pytest.raises(InvalidQueryError):
        bucket_index_query(USERS, max_results=max_results)


def test_value_type_must_match_index_kind():
    with pytest.raises(InvalidQueryError):
        int_index_query(USERS, "age", "30")  # type: ignore[arg-type]
    with pytest.raises(InvalidQueryError):
        int_index_query(USERS, "age", True)
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", 3)  # type: ignore[arg-type]


def test_exact_and_range_are_exclusive():
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", "a", start="a", end="b")
    with pytest.raises(InvalidQueryError):
        bin_index_query(USERS, "email", start="a")


def test_bucket_index_only_matches_own_bucket():
    with pytest.raises(InvalidQueryError):
        build_query(USERS, BUCKET, ExactMatch("elsewhere"))


def test_empty_continuation_rejected():
    with pytest.raises(InvalidQueryError):
        bucket_index_query(USERS, continuation=b"")


# --- Descriptor behaviour ---


def test_bucket_query_returns_terms_and_keeps_coverage_context():
    q = bucket_index_query(USERS, coverage_context=b"partition:0:2")
    assert q.match == ExactMatch("users")
    assert q.returns_terms
    assert q.coverage_context == b"partition:0:2"


def test_key_query_is_a_binary_range():
    q = key_index_query(USERS, "a", "m")
    assert q.index == KEY
    assert q.is_range
    assert not q.returns_terms


def test_descriptor_is_immutable():
    q = bucket_index_query(USERS)
    with pytest.raises(AttributeError):
        q.max_results = 5  # type: ignore[misc]


def test_with_continuation_keeps_shape():
    q = bin_index_query(USERS, "email", start="a", end="z", max_results=10)
    resumed = q.with_continuation(b"token")
    assert resumed.continuation == b"token"
    assert q.continuation is None
    assert resumed.shape_key() == q.shape_key()
    assert resumed.with_max_results(3).shape_key() == q.shape_key()


def test_shape_key_differs_across_queries():
    a = bin_index_query(USERS, "email", start="a", end="z")
    b = bin_index_query(USERS, "email", start="a", end="y")
    c = bin_index_query(Namespace("other", "users"), "email", start="a", end="z")
    assert len({a.shape_key(), b.shape_key(), c.shape_key()}) == 3


def test_direct_construction_is_validated():
    with pytest.raises(InvalidQueryError):
        QueryDescriptor(USERS, IndexName.integer("age"), RangeMatch(5, 1))
    with pytest.raises(InvalidQueryError):
        QueryDescriptor(USERS, IndexName.integer("age"), ExactMatch("5"))
    with pytest.raises(InvalidQueryError):
        QueryDescriptor(USERS, IndexName.binary("email"), ExactMatch("a"), term_regex="a")
    with pytest.raises(InvalidQueryError):
        QueryDescriptor(USERS, BUCKET, ExactMatch("elsewhere"))


def test_derived_descriptors_are_validated():
    q = int_index_query(USERS, "age", start=1, end=5)
    with pytest.raises(InvalidQueryError):
        q.with_continuation(b"")
    with pytest.raises(InvalidQueryError):
        q.with_max_results(0)
