"""Value types shared by queries, transports and responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from kvindex.errors import InvalidQueryError

DEFAULT_BUCKET_TYPE = "default"

BUCKET_INDEX = "$bucket"
KEY_INDEX = "$key"

Term = Union[str, int]


@dataclass(frozen=True, order=True)
class Namespace:
    """A (bucket type, bucket) pair identifying a collection of objects."""

    bucket_type: str
    bucket: str

    def __post_init__(self) -> None:
        if not isinstance(self.bucket, str) or not self.bucket:
            raise InvalidQueryError("Bucket name must be a non-empty string", field="bucket")
        if not isinstance(self.bucket_type, str) or not self.bucket_type:
            raise InvalidQueryError(
                "Bucket type must be a non-empty string", field="bucket_type"
            )

    @classmethod
    def of(cls, bucket: str, bucket_type: str | None = None) -> Namespace:
        return cls(bucket_type or DEFAULT_BUCKET_TYPE, bucket)

    def __str__(self) -> str:
        return f"{self.bucket_type}/{self.bucket}"


@dataclass(frozen=True, order=True)
class Location:
    """Where an object lives: its namespace and key."""

    namespace: Namespace
    key: str


class IndexKind(str, Enum):
    BINARY = "bin"
    INTEGER = "int"


@dataclass(frozen=True)
class IndexName:
    """A secondary index name tagged with the kind of values it holds.

    User indexes are addressed on the wire by their full name (``email_bin``,
    ``age_int``). The reserved ``$bucket`` and ``$key`` pseudo-indexes are
    always binary and carry no suffix.
    """

    name: str
    kind: IndexKind

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidQueryError("Index name must be non-empty", field="index")
        if self.is_reserved and self.kind is not IndexKind.BINARY:
            raise InvalidQueryError(
                f"Reserved index {self.name} only holds binary values", field="index"
            )

    @classmethod
    def binary(cls, name: str) -> IndexName:
        return cls(name.removesuffix("_bin"), IndexKind.BINARY)

    @classmethod
    def integer(cls, name: str) -> IndexName:
        return cls(name.removesuffix("_int"), IndexKind.INTEGER)

    @classmethod
    def parse(cls, full_name: str) -> IndexName:
        """Resolve a wire name (``foo_bin``, ``bar_int``, ``$bucket``) to an IndexName."""
        if full_name in (BUCKET_INDEX, KEY_INDEX):
            return cls(full_name, IndexKind.BINARY)
        if full_name.endswith("_int"):
            return cls.integer(full_name)
        if full_name.endswith("_bin"):
            return cls.binary(full_name)
        raise InvalidQueryError(
            f"Index name '{full_name}' must end in _bin or _int", field="index"
        )

    @property
    def is_reserved(self) -> bool:
        return self.name in (BUCKET_INDEX, KEY_INDEX)

    @property
    def full_name(self) -> str:
        if self.is_reserved:
            return self.name
        return f"{self.name}_{self.kind.value}"

    def __str__(self) -> str:
        return self.full_name


BUCKET = IndexName(BUCKET_INDEX, IndexKind.BINARY)
KEY = IndexName(KEY_INDEX, IndexKind.BINARY)


@dataclass(frozen=True)
class Entry:
    """One matched object, with its index term when the query returns terms."""

    location: Location
    term: Term | None = None

    @property
    def key(self) -> str:
        return self.location.key


@dataclass(frozen=True)
class ResponseBatch:
    """One page (or chunk of a page) of index query results.

    A present continuation means further pages exist.
    """

    entries: tuple[Entry, ...] = ()
    continuation: bytes | None = None

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class IndexQueryResponse:
    """Fully collected result of an index query."""

    entries: tuple[Entry, ...] = field(default_factory=tuple)
    continuation: bytes | None = None

    @property
    def has_continuation(self) -> bool:
        return self.continuation is not None

    @property
    def has_entries(self) -> bool:
        return bool(self.entries)

    def keys(self) -> list[str]:
        return [e.key for e in self.entries]

    def __len__(self) -> int:
        return len(self.entries)
