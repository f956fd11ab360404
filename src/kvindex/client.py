"""IndexClient: runs secondary-index queries over a transport."""

from __future__ import annotations

from typing import Any

from kvindex.assembler import execute_materialized
from kvindex.config import KvIndexConfig
from kvindex.query import (
    QueryDescriptor,
    bin_index_query,
    bucket_index_query,
    int_index_query,
    key_index_query,
)
from kvindex.storage import IndexStore
from kvindex.streaming import StreamingFuture, execute_streaming
from kvindex.transport import LocalTransport, Transport
from kvindex.types import IndexQueryResponse, Namespace


class IndexClient:
    """Binds a transport and a config; builds and executes index queries.

    Example::

        client = IndexClient.local("kvindex.db")
        ns = client.namespace("users")
        response = client.execute(client.bin_query(ns, "email", "a@b.c"))

        with client.execute_streaming(client.bucket_query(ns)) as future:
            for entry in future.result():
                ...
    """

    def __init__(self, transport: Transport, config: KvIndexConfig | None = None) -> None:
        self._transport = transport
        self._config = config or KvIndexConfig()
        self._store: IndexStore | None = None

    @classmethod
    def local(
        cls, db_path: str | None = None, config: KvIndexConfig | None = None
    ) -> IndexClient:
        """Client over a local sqlite index store."""
        config = config or KvIndexConfig()
        store = IndexStore(db_path or config.db_path)
        client = cls(LocalTransport(store, config), config)
        client._store = store
        return client

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def config(self) -> KvIndexConfig:
        return self._config

    @property
    def store(self) -> IndexStore | None:
        return self._store

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None

    def __enter__(self) -> IndexClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # --- Query builders ---

    def namespace(self, bucket: str, bucket_type: str | None = None) -> Namespace:
        return Namespace(bucket_type or self._config.default_bucket_type, bucket)

    def bucket_query(self, namespace: Namespace, **options: Any) -> QueryDescriptor:
        return bucket_index_query(namespace, **options)

    def key_query(
        self, namespace: Namespace, start: str, end: str, **options: Any
    ) -> QueryDescriptor:
        return key_index_query(namespace, start, end, **options)

    def bin_query(
        self, namespace: Namespace, index: str, value: str | None = None, **options: Any
    ) -> QueryDescriptor:
        return bin_index_query(namespace, index, value, **options)

    def int_query(
        self, namespace: Namespace, index: str, value: int | None = None, **options: Any
    ) -> QueryDescriptor:
        return int_index_query(namespace, index, value, **options)

    # --- Execution ---

    def execute(self, descriptor: QueryDescriptor) -> IndexQueryResponse:
        """Collect every page of ``descriptor``. See :func:`execute_materialized`."""
        return execute_materialized(self._transport, descriptor)

    def execute_streaming(
        self,
        descriptor: QueryDescriptor,
        prefetch_batches: int | None = None,
    ) -> StreamingFuture:
        """Stream ``descriptor``'s entries. See :func:`execute_streaming`."""
        return execute_streaming(self._transport, descriptor, prefetch_batches, self._config)
