"""SQLite-backed local index store used by :class:`kvindex.transport.LocalTransport`."""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from kvindex.errors import InvalidQueryError, StorageBackendError
from kvindex.types import (
    BUCKET_INDEX,
    KEY_INDEX,
    IndexKind,
    IndexName,
    Location,
    Namespace,
    Term,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a plain path or a sqlite URI."""

    uri: str
    db_path: str


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve a sqlite target from a path or a ``sqlite:///`` URI."""
    if storage_uri is None:
        path = db_path or "kvindex.db"
        return StorageTarget(uri=f"sqlite:///{path}", db_path=path)

    parsed = urlparse(storage_uri)
    if parsed.scheme != "sqlite":
        raise StorageBackendError(
            "parse_storage_uri",
            f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
        )
    sqlite_path = parsed.path
    if parsed.netloc:
        sqlite_path = f"{parsed.netloc}{sqlite_path}"
    elif sqlite_path.startswith("//"):
        # sqlite:////abs/path -> /abs/path
        sqlite_path = sqlite_path[1:]
    elif sqlite_path.startswith("/") and sqlite_path != "/:memory:":
        # sqlite:///rel/path -> rel/path
        sqlite_path = sqlite_path[1:]
    if sqlite_path == "/:memory:":
        sqlite_path = ":memory:"
    if not sqlite_path:
        raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
    if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
        raise StorageBackendError(
            "parse_storage_uri",
            f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
        )
    return StorageTarget(uri=storage_uri, db_path=sqlite_path)


class IndexStore:
    """Objects and their secondary-index postings, kept in one sqlite database.

    A single connection is shared between threads; every statement runs under
    ``self._lock``.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageBackendError("open", str(e)) from e
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS objects (
                bucket_type TEXT NOT NULL,
                bucket TEXT NOT NULL,
                key TEXT NOT NULL,
                PRIMARY KEY (bucket_type, bucket, key)
            );

            CREATE TABLE IF NOT EXISTS postings (
                bucket_type TEXT NOT NULL,
                bucket TEXT NOT NULL,
                index_name TEXT NOT NULL,
                term,
                key TEXT NOT NULL,
                PRIMARY KEY (bucket_type, bucket, index_name, term, key)
            );
        """)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Writes ---

    def put(
        self,
        location: Location,
        indexes: Mapping[str, Iterable[Term]] | None = None,
    ) -> None:
        """Store an object key and replace its index postings.

        ``indexes`` maps full index names (``email_bin``, ``age_int``) to terms.
        """
        postings: list[tuple[str, Term]] = []
        for full_name, terms in (indexes or {}).items():
            index = IndexName.parse(full_name)
            if index.is_reserved:
                raise InvalidQueryError(
                    f"Index {full_name} is maintained by the store", field="index"
                )
            for term in terms:
                if index.kind is IndexKind.INTEGER:
                    if isinstance(term, bool) or not isinstance(term, int):
                        raise InvalidQueryError(
                            f"Integer index {full_name} requires int terms", field="index"
                        )
                elif not isinstance(term, str):
                    raise InvalidQueryError(
                        f"Binary index {full_name} requires str terms", field="index"
                    )
                postings.append((index.full_name, term))

        ns = location.namespace
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR IGNORE INTO objects (bucket_type, bucket, key) VALUES (?, ?, ?)",
                    (ns.bucket_type, ns.bucket, location.key),
                )
                self._conn.execute(
                    "DELETE FROM postings WHERE bucket_type = ? AND bucket = ? AND key = ?",
                    (ns.bucket_type, ns.bucket, location.key),
                )
                self._conn.executemany(
                    "INSERT OR IGNORE INTO postings "
                    "(bucket_type, bucket, index_name, term, key) VALUES (?, ?, ?, ?, ?)",
                    [
                        (ns.bucket_type, ns.bucket, name, term, location.key)
                        for name, term in postings
                    ],
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageBackendError("put", str(e)) from e
        logger.debug("Stored %s/%s with %d postings", ns, location.key, len(postings))

    def delete(self, location: Location) -> bool:
        """Remove an object and its postings. Returns False if it did not exist."""
        ns = location.namespace
        params = (ns.bucket_type, ns.bucket, location.key)
        with self._lock:
            try:
                cursor = self._conn.execute(
                    "DELETE FROM objects WHERE bucket_type = ? AND bucket = ? AND key = ?",
                    params,
                )
                self._conn.execute(
                    "DELETE FROM postings WHERE bucket_type = ? AND bucket = ? AND key = ?",
                    params,
                )
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageBackendError("delete", str(e)) from e
        return cursor.rowcount > 0

    # --- Reads ---

    def scan(
        self,
        namespace: Namespace,
        index: IndexName,
        start: Term,
        end: Term,
        *,
        after: tuple[Term, str] | None = None,
        limit: int = 1000,
    ) -> list[tuple[Term, str]]:
        """Return up to ``limit`` ``(term, key)`` rows with ``start <= term <= end``.

        Rows are ordered by term then key and begin strictly after ``after``.
        For ``$bucket`` and ``$key`` the term is the key itself (``$bucket``
        ignores the bounds).
        """
        params: list[Any] = [namespace.bucket_type, namespace.bucket]
        if index.name in (BUCKET_INDEX, KEY_INDEX):
            sql = "SELECT key, key FROM objects WHERE bucket_type = ? AND bucket = ?"
            if index.name == KEY_INDEX:
                sql += " AND key >= ? AND key <= ?"
                params.extend([start, end])
            if after is not None:
                sql += " AND key > ?"
                params.append(after[1])
            sql += " ORDER BY key LIMIT ?"
        else:
            sql = (
                "SELECT term, key FROM postings "
                "WHERE bucket_type = ? AND bucket = ? AND index_name = ? "
                "AND term >= ? AND term <= ?"
            )
            params.extend([index.full_name, start, end])
            if after is not None:
                sql += " AND (term > ? OR (term = ? AND key > ?))"
                params.extend([after[0], after[0], after[1]])
            sql += " ORDER BY term, key LIMIT ?"
        params.append(limit)

        with self._lock:
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageBackendError("scan", str(e)) from e
        return [(row[0], row[1]) for row in rows]

    def count(self, namespace: Namespace, index: IndexName | None = None) -> int:
        """Count objects in a bucket, or postings of one index."""
        with self._lock:
            if index is None or index.is_reserved:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM objects WHERE bucket_type = ? AND bucket = ?",
                    (namespace.bucket_type, namespace.bucket),
                ).fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM postings "
                    "WHERE bucket_type = ? AND bucket = ? AND index_name = ?",
                    (namespace.bucket_type, namespace.bucket, index.full_name),
                ).fetchone()
        return int(row[0])


def open_store(db_path: str | None = None, *, storage_uri: str | None = None) -> IndexStore:
    """Open an index store from a path or a sqlite URI."""
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    return IndexStore(target.db_path)
