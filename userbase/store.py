"""SQLite-backed document store client.

Documents are JSON objects kept one per row, keyed by an opaque identifier.
A :class:`DocumentStore` owns a single connection for the lifetime of the
process: call :meth:`DocumentStore.open` on startup and
:meth:`DocumentStore.close` on shutdown. Requests share that connection;
the store serialises access to it and runs every write in its own
``BEGIN IMMEDIATE`` transaction.
"""
from __future__ import annotations

import json
import logging
import re
import secrets
import sqlite3
import threading
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from .errors import StoreUnavailableError

logger = logging.getLogger("userbase.store")

MEMORY = ":memory:"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MEMORY_URLS = {"sqlite://", "sqlite://:memory:", "sqlite:///:memory:", MEMORY}
_SQLITE_PREFIX = "sqlite:///"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

Document = Dict[str, Any]
Filter = Mapping[str, Any]


class DuplicateKeyError(Exception):
    """A write would give two documents the same value for a unique field."""

    def __init__(self, field: Optional[str], value: Any = None) -> None:
        label = field or "unique field"
        super().__init__(f"Duplicate value for {label}")
        self.field = field
        self.value = value


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _generate_id() -> str:
    return secrets.token_hex(12)


def _check_identifier(name: str, kind: str) -> str:
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid {kind} name: {name!r}")
    return name


def resolve_store_path(url: str) -> str:
    """Translate a store connection string into a SQLite database path."""

    value = (url or "").strip()
    if not value:
        raise ValueError("Store URL must not be empty")
    if value in _MEMORY_URLS:
        return MEMORY
    if value.startswith(_SQLITE_PREFIX):
        raw = value[len(_SQLITE_PREFIX):]
    elif "://" in value:
        raise ValueError(f"Unsupported store URL: {value}")
    else:
        raw = value
    if not raw:
        raise ValueError(f"Store URL does not name a database file: {value}")
    return str(Path(raw).expanduser().resolve(strict=False))


def _encode(document: Mapping[str, Any]) -> str:
    return json.dumps(document, separators=(",", ":"), sort_keys=True)


def _decode(row: sqlite3.Row) -> Document:
    document: Document = {"id": str(row["id"])}
    document.update(json.loads(row["document"]))
    return document


def _where(filter: Optional[Filter]) -> Tuple[str, List[Any]]:
    if not filter:
        return "", []

    clauses: List[str] = []
    params: List[Any] = []
    for key, value in filter.items():
        _check_identifier(key, "field")
        if key == "id":
            clauses.append("id = ?")
            params.append(str(value))
            continue
        path = f"$.{key}"
        if value is None:
            clauses.append("json_type(document, ?) IS NULL")
            params.append(path)
        elif isinstance(value, bool):
            clauses.append("json_extract(document, ?) = ?")
            params.extend([path, 1 if value else 0])
        elif isinstance(value, int) and not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f"Filter on {key!r} is outside the storable integer range")
        elif isinstance(value, (int, float, str)):
            clauses.append("json_extract(document, ?) = ?")
            params.extend([path, value])
        else:
            raise ValueError(f"Filter on {key!r} must be a scalar value")
    return " WHERE " + " AND ".join(clauses), params


class Collection:
    """A named set of documents inside a :class:`DocumentStore`."""

    def __init__(self, store: "DocumentStore", name: str, *, timestamps: bool = False) -> None:
        self._store = store
        self.name = _check_identifier(name, "collection")
        self.timestamps = timestamps
        self._unique_fields: Set[str] = set()

    @property
    def unique_fields(self) -> Tuple[str, ...]:
        return tuple(sorted(self._unique_fields))

    def create_unique_index(self, field: str) -> None:
        """Reject documents that share a value for ``field``.

        Documents without the field never conflict with each other.
        """

        _check_identifier(field, "field")
        if field == "id":
            return
        index = f"{self.name}__{field}__unique"
        with self._store._transaction(self.name) as conn:
            try:
                conn.execute(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS "{index}" '
                    f"ON \"{self.name}\"(json_extract(document, '$.{field}'))"
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateKeyError(field) from exc
        self._unique_fields.add(field)
        logger.debug("Unique index on %s.%s is in place", self.name, field)

    def insert_one(self, document: Mapping[str, Any]) -> Document:
        """Store a new document and return it with its assigned ``id``."""

        if "id" in document:
            raise ValueError("Document identifiers are assigned by the store")

        body: Document = dict(document)
        if self.timestamps:
            now = _serialize_datetime(_current_timestamp())
            body["createdAt"] = now
            body["updatedAt"] = now

        document_id = _generate_id()
        with self._store._transaction(self.name) as conn:
            self._check_unique(conn, body, exclude_id=None)
            try:
                conn.execute(
                    f'INSERT INTO "{self.name}" (id, document) VALUES (?, ?)',
                    (document_id, _encode(body)),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateKeyError(self._field_from_error(exc)) from exc

        stored: Document = {"id": document_id}
        stored.update(body)
        return stored

    def find(self, filter: Optional[Filter] = None) -> List[Document]:
        where, params = _where(filter)
        query = f'SELECT id, document FROM "{self.name}"{where} ORDER BY rowid'
        with self._store._session(self.name) as conn:
            logger.debug("%s [%s]", query, params)
            rows = conn.execute(query, params).fetchall()
        return [_decode(row) for row in rows]

    def find_one(self, filter: Optional[Filter] = None) -> Optional[Document]:
        with self._store._session(self.name) as conn:
            row = self._first(conn, filter)
        if row is None:
            return None
        return _decode(row)

    def count(self, filter: Optional[Filter] = None) -> int:
        where, params = _where(filter)
        with self._store._session(self.name) as conn:
            row = conn.execute(f'SELECT COUNT(*) AS total FROM "{self.name}"{where}', params).fetchone()
        return int(row["total"])

    def find_one_and_update(
        self,
        filter: Optional[Filter],
        patch: Mapping[str, Any],
        *,
        return_updated: bool = True,
    ) -> Optional[Document]:
        """Merge ``patch`` into the first match.

        Keys absent from ``patch`` keep their values; keys mapped to ``None``
        are removed. Returns the document after (or before) the merge, or
        ``None`` when nothing matches.
        """

        if "id" in patch:
            raise ValueError("Document identifiers are immutable")

        with self._store._transaction(self.name) as conn:
            row = self._first(conn, filter)
            if row is None:
                return None

            before = _decode(row)
            body = {key: value for key, value in before.items() if key != "id"}
            for key, value in patch.items():
                if value is None:
                    body.pop(key, None)
                else:
                    body[key] = value
            if self.timestamps:
                body["updatedAt"] = _serialize_datetime(_current_timestamp())

            self._check_unique(conn, body, exclude_id=before["id"])
            try:
                conn.execute(
                    f'UPDATE "{self.name}" SET document = ? WHERE id = ?',
                    (_encode(body), before["id"]),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateKeyError(self._field_from_error(exc)) from exc

        if not return_updated:
            return before
        after: Document = {"id": before["id"]}
        after.update(body)
        return after

    def find_one_and_delete(self, filter: Optional[Filter]) -> Optional[Document]:
        with self._store._transaction(self.name) as conn:
            row = self._first(conn, filter)
            if row is None:
                return None
            conn.execute(f'DELETE FROM "{self.name}" WHERE id = ?', (row["id"],))
        return _decode(row)

    def _first(self, conn: sqlite3.Connection, filter: Optional[Filter]) -> Optional[sqlite3.Row]:
        where, params = _where(filter)
        query = f'SELECT id, document FROM "{self.name}"{where} ORDER BY rowid LIMIT 1'
        logger.debug("%s [%s]", query, params)
        return conn.execute(query, params).fetchone()

    def _check_unique(self, conn: sqlite3.Connection, body: Mapping[str, Any], *, exclude_id: Optional[str]) -> None:
        for field in sorted(self._unique_fields):
            value = body.get(field)
            if value is None:
                continue
            query = f"SELECT id FROM \"{self.name}\" WHERE json_extract(document, '$.{field}') = ?"
            params: List[Any] = [value]
            if exclude_id is not None:
                query += " AND id != ?"
                params.append(exclude_id)
            if conn.execute(query + " LIMIT 1", params).fetchone() is not None:
                raise DuplicateKeyError(field, value)

    def _field_from_error(self, exc: sqlite3.IntegrityError) -> Optional[str]:
        # SQLite names the violated index: "UNIQUE constraint failed: index 'users__email__unique'"
        match = re.search(rf"\b{re.escape(self.name)}__(\w+?)__unique\b", str(exc))
        if match is not None:
            return match.group(1)
        if len(self._unique_fields) == 1:
            return next(iter(self._unique_fields))
        return None


class DocumentStore:
    """Process-wide handle on the document database."""

    def __init__(self, url: str, *, timeout: float = 5.0) -> None:
        self.url = url
        self.path = resolve_store_path(url)
        self.timeout = timeout
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._collections: Dict[str, Collection] = {}
        self._tables: Set[str] = set()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "DocumentStore":
        """Connect to the database. Calling it on an open store is a no-op."""

        with self._lock:
            if self._conn is not None:
                return self
            try:
                if self.path != MEMORY:
                    _ensure_directory(Path(self.path))
                conn = sqlite3.connect(
                    self.path,
                    timeout=self.timeout,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("SELECT json('{}')")
            except (sqlite3.Error, OSError) as exc:
                raise StoreUnavailableError(f"Unable to open document store at {self.url}") from exc
            self._conn = conn
            self._tables = set()
        logger.info("Document store opened at %s", self.path)
        return self

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            self._tables = set()
        if conn is not None:
            conn.close()
            logger.info("Document store closed")

    def __enter__(self) -> "DocumentStore":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def ping(self) -> bool:
        try:
            with self._session() as conn:
                conn.execute("SELECT 1").fetchone()
        except StoreUnavailableError:
            return False
        return True

    def collection(self, name: str, *, timestamps: bool = False) -> Collection:
        """Return the named collection, creating its table on first use."""

        with self._lock:
            existing = self._collections.get(name)
            if existing is None:
                existing = Collection(self, name, timestamps=timestamps)
                self._collections[name] = existing
            elif existing.timestamps != timestamps:
                raise ValueError(f"Collection {name!r} is already configured with timestamps={existing.timestamps}")
        return existing

    @contextmanager
    def _session(self, collection: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn
            if conn is None:
                raise StoreUnavailableError("Document store is not open")
            try:
                if collection is not None and collection not in self._tables:
                    conn.execute(
                        f'CREATE TABLE IF NOT EXISTS "{collection}" ('
                        "id TEXT PRIMARY KEY, document TEXT NOT NULL)"
                    )
                    self._tables.add(collection)
                yield conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                logger.error("Document store operation failed: %s", exc)
                raise StoreUnavailableError(str(exc)) from exc

    @contextmanager
    def _transaction(self, collection: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        with self._session(collection) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    with suppress(sqlite3.Error):
                        conn.execute("ROLLBACK")
                raise


__all__ = [
    "Collection",
    "DocumentStore",
    "DuplicateKeyError",
    "MEMORY",
    "resolve_store_path",
]
