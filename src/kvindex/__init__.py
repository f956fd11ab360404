"""kvindex: secondary-index (2i) queries over a key-value store."""

__version__ = "0.1.0"

from kvindex.client import IndexClient
from kvindex.config import KvIndexConfig
from kvindex.errors import (
    AlreadyConsumedError,
    InvalidQueryError,
    KvIndexError,
    PrematureContinuationAccessError,
    QueryExecutionError,
    StorageBackendError,
    StreamingInterrupted,
    TransportError,
)
from kvindex.query import (
    ExactMatch,
    QueryDescriptor,
    RangeMatch,
    bin_index_query,
    bucket_index_query,
    build_query,
    int_index_query,
    key_index_query,
)
from kvindex.streaming import BridgeState, StreamingFuture, StreamingResponse
from kvindex.types import (
    BUCKET,
    KEY,
    Entry,
    IndexKind,
    IndexName,
    IndexQueryResponse,
    Location,
    Namespace,
    ResponseBatch,
)

__all__ = [
    "__version__",
    "IndexClient",
    "KvIndexConfig",
    "KvIndexError",
    "InvalidQueryError",
    "TransportError",
    "QueryExecutionError",
    "StreamingInterrupted",
    "AlreadyConsumedError",
    "PrematureContinuationAccessError",
    "StorageBackendError",
    "QueryDescriptor",
    "ExactMatch",
    "RangeMatch",
    "build_query",
    "bin_index_query",
    "int_index_query",
    "bucket_index_query",
    "key_index_query",
    "BridgeState",
    "StreamingFuture",
    "StreamingResponse",
    "Namespace",
    "Location",
    "IndexKind",
    "IndexName",
    "BUCKET",
    "KEY",
    "Entry",
    "ResponseBatch",
    "IndexQueryResponse",
]
