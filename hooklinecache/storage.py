"""SQLite-backed named caches of HTTP responses.

A cache maps a request key (method + URL, GET only) to a stored response.
Caches are created on first open and live until deleted explicitly, so the
store survives restarts of the dispatcher.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from .models import Request, Response

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a cache storage operation fails."""

    pass


RequestLike = Request | str


def _as_request(request: RequestLike) -> Request:
    if isinstance(request, Request):
        return request
    return Request(url=request)


def init_db(db_path: str) -> sqlite3.Connection:
    """Initialize the cache database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StorageError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS caches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                cache_name TEXT NOT NULL,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                response_url TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                PRIMARY KEY (cache_name, method, url)
            )
        """)

        # Metadata table for worker bookkeeping (e.g., active version)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS _metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StorageError(f"Failed to initialize cache database: {e}")
    except OSError as e:
        raise StorageError(f"Failed to create cache database directory: {e}")


def _row_to_response(row: sqlite3.Row) -> Response:
    return Response(
        status=row["status"],
        body=bytes(row["body"]),
        headers=json.loads(row["headers"]),
        status_text=row["status_text"],
        url=row["response_url"],
    )


class Cache:
    """A single named cache. Obtain instances through CacheStorage.open()."""

    def __init__(self, storage: "CacheStorage", name: str) -> None:
        self._storage = storage
        self.name = name

    def __repr__(self) -> str:
        return f"Cache({self.name!r})"

    def match(self, request: RequestLike) -> Response | None:
        """Return the stored response for a request, or None on a miss.

        Non-GET requests never match.
        """
        method, url = _as_request(request).key
        if method != "GET":
            return None

        row = self._storage._query_one(
            "SELECT * FROM entries WHERE cache_name = ? AND method = ? AND url = ?",
            (self.name, method, url),
        )
        return _row_to_response(row) if row is not None else None

    def put(self, request: RequestLike, response: Response) -> None:
        """Store a response, overwriting any previous entry for the same key.

        Raises:
            StorageError: If the request is not a GET or the write fails.
        """
        self.put_all([(_as_request(request), response)])

    def put_all(self, items: Iterable[tuple[Request, Response]]) -> None:
        """Store several responses in one transaction."""
        rows = []
        stored_at = datetime.now(UTC).isoformat()
        for request, response in items:
            method, url = request.key
            if method != "GET":
                raise StorageError(f"Request method '{method}' is unsupported for cache storage")
            rows.append(
                (
                    self.name,
                    method,
                    url,
                    response.status,
                    response.status_text,
                    json.dumps(dict(response.headers)),
                    sqlite3.Binary(response.body),
                    response.url or url,
                    stored_at,
                )
            )

        self._storage._ensure_cache(self.name)
        self._storage._execute_many(
            """
            INSERT OR REPLACE INTO entries
            (cache_name, method, url, status, status_text, headers, body, response_url, stored_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

    def add_all(self, requests: Iterable[RequestLike], fetch: Callable[[Request], Response]) -> None:
        """Fetch every request and store all responses, or store nothing.

        Args:
            requests: Requests (or URLs) to fetch.
            fetch: Callable performing the network fetch.

        Raises:
            StorageError: If any response has a non-ok status.
            NetworkError: If any fetch fails (propagated from fetch).
        """
        fetched: list[tuple[Request, Response]] = []
        for item in requests:
            request = _as_request(item)
            response = fetch(request)
            if not response.ok:
                raise StorageError(f"Fetching {request.url} for cache '{self.name}' returned status {response.status}")
            fetched.append((request, response))

        self.put_all(fetched)
        logger.debug("Stored %d entries in cache %s", len(fetched), self.name)

    def delete(self, request: RequestLike) -> bool:
        """Delete the entry for a request. Returns True if an entry was removed."""
        method, url = _as_request(request).key
        deleted = self._storage._execute(
            "DELETE FROM entries WHERE cache_name = ? AND method = ? AND url = ?",
            (self.name, method, url),
        )
        return deleted > 0

    def keys(self) -> list[str]:
        """URLs of every stored entry, oldest first."""
        rows = self._storage._query_all(
            "SELECT url FROM entries WHERE cache_name = ? ORDER BY stored_at, url",
            (self.name,),
        )
        return [row["url"] for row in rows]

    def size(self) -> int:
        """Total body bytes stored in this cache."""
        row = self._storage._query_one(
            "SELECT COALESCE(SUM(LENGTH(body)), 0) AS total FROM entries WHERE cache_name = ?",
            (self.name,),
        )
        return int(row["total"])


class CacheStorage:
    """The set of named caches held in one SQLite database.

    Thread-safe: every statement runs under a single lock, so overlapping
    writes to the same key are last-write-wins.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    def open(self, name: str) -> Cache:
        """Open a cache by name, creating it if it doesn't exist."""
        if not name:
            raise StorageError("Cache name cannot be empty")
        self._ensure_cache(name)
        return Cache(self, name)

    def has(self, name: str) -> bool:
        return self._query_one("SELECT 1 FROM caches WHERE name = ?", (name,)) is not None

    def keys(self) -> list[str]:
        """Names of every cache, in creation order."""
        rows = self._query_all("SELECT name FROM caches ORDER BY id", ())
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        """Delete a cache and all of its entries. Returns True if it existed."""
        try:
            with self._lock:
                self._conn.execute("DELETE FROM entries WHERE cache_name = ?", (name,))
                cursor = self._conn.execute("DELETE FROM caches WHERE name = ?", (name,))
                self._conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete cache '{name}': {e}")

    def match(self, request: RequestLike) -> Response | None:
        """Look a request up in every cache, in creation order."""
        for name in self.keys():
            response = Cache(self, name).match(request)
            if response is not None:
                return response
        return None

    def total_size(self) -> int:
        """Sum of body bytes across every cache."""
        return sum(Cache(self, name).size() for name in self.keys())

    def get_meta(self, key: str) -> str | None:
        row = self._query_one("SELECT value FROM _metadata WHERE key = ?", (key,))
        return row["value"] if row is not None else None

    def set_meta(self, key: str, value: str) -> None:
        self._execute("INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)", (key, value))

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Internal helpers

    def _ensure_cache(self, name: str) -> None:
        self._execute(
            "INSERT OR IGNORE INTO caches (name, created_at) VALUES (?, ?)",
            (name, datetime.now(UTC).isoformat()),
        )

    def _execute(self, sql: str, params: tuple) -> int:
        try:
            with self._lock:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Cache storage write failed: {e}")

    def _execute_many(self, sql: str, rows: list[tuple]) -> None:
        try:
            with self._lock:
                self._conn.executemany(sql, rows)
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cache storage write failed: {e}")

    def _query_one(self, sql: str, params: tuple) -> sqlite3.Row | None:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cache storage read failed: {e}")

    def _query_all(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Cache storage read failed: {e}")
