"""
auth/repository.py -- Swappable persistence behind the credential stores.

Pattern: Repository. Stores keep the authoritative collection in memory and
hand the full collection to save() after every mutation; load() returns the
full collection at startup. Two implementations share that contract:

  JsonFileRepository -- one JSON array per file (users.json, sessions.json,
      api-keys.json). Written to a temp file in the same directory with mode
      0600 and moved into place with os.replace(), so a crash mid-write never
      leaves a truncated file.

  SqlRepository -- SQLAlchemy Core table per collection with an (id, data)
      shape; data is the JSON record. save() replaces the table contents in a
      single transaction.

Both raise StorageError (an OSError) on any I/O or database failure. Nothing
here swallows errors: a corrupt users.json stops startup instead of silently
starting with an empty user set.

Also hosts the key-file helpers used for .key and .jwt-secret.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import os
import secrets
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Generic, TypeVar

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StorageError

T = TypeVar("T")

_DIR_MODE = 0o700
_FILE_MODE = 0o600


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_private_dir(path: Path) -> None:
    """Create path (and parents) if missing and restrict it to the owner."""
    try:
        path.mkdir(parents=True, exist_ok=True, mode=_DIR_MODE)
        os.chmod(path, _DIR_MODE)
    except OSError as exc:
        raise StorageError(f"Could not prepare directory {path}: {exc}") from exc


def write_private_file(path: Path, content: str) -> None:
    """Atomically replace path with content, readable by the owner only."""
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _FILE_MODE)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def read_or_create_key_file(path: Path, nbytes: int) -> bytes:
    """Return the hex-decoded key stored at path, generating it on first use.

    A new key is nbytes of os-level randomness, hex-encoded, mode 0600.
    A file that exists but does not decode to nbytes is a StorageError --
    regenerating would make every existing ciphertext unreadable.
    """
    try:
        text = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        key = secrets.token_bytes(nbytes)
        try:
            write_private_file(path, key.hex())
        except OSError as exc:
            raise StorageError(f"Could not write key file {path}: {exc}") from exc
        return key
    except OSError as exc:
        raise StorageError(f"Could not read key file {path}: {exc}") from exc

    try:
        key = bytes.fromhex(text)
    except ValueError as exc:
        raise StorageError(f"Key file {path} is not valid hex") from exc
    if len(key) != nbytes:
        raise StorageError(f"Key file {path} holds {len(key)} bytes, expected {nbytes}")
    return key


# ---------------------------------------------------------------------------
# Repository contract
# ---------------------------------------------------------------------------


class Repository(Generic[T]):
    """Load/save a whole collection of records.

    Records must expose .id, .to_record() and be rebuildable by the factory
    passed to the concrete repository (usually Entity.from_record).
    """

    def load(self) -> list[T]:
        raise NotImplementedError

    def save(self, items: Iterable[T]) -> None:
        raise NotImplementedError


class JsonFileRepository(Repository[T]):
    """Persist a collection as a JSON array in a single owner-only file."""

    def __init__(self, path: Path, factory: Callable[[dict[str, Any]], T]) -> None:
        self.path = path
        self._factory = factory

    def load(self) -> list[T]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Could not read {self.path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, list):
            raise StorageError(f"{self.path} must contain a JSON array")
        return [self._factory(item) for item in data]

    def save(self, items: Iterable[T]) -> None:
        payload = json.dumps([item.to_record() for item in items], indent=2)
        try:
            write_private_file(self.path, payload)
        except OSError as exc:
            raise StorageError(f"Could not write {self.path}: {exc}") from exc


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_metadata = MetaData()

_TABLES = {
    name: Table(
        name,
        _metadata,
        Column("id", String(64), primary_key=True),
        Column("data", Text, nullable=False),  # JSON record
    )
    for name in ("users", "sessions", "api_keys")
}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during a save.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_sql_engine(db_url: str) -> Engine:
    """Create an engine and the collection tables for db_url."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Saves run in worker threads via asyncio.to_thread.
        connect_args["check_same_thread"] = False
    try:
        engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(engine, "connect", _set_wal_mode)
        _metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not open database: {exc}") from exc
    return engine


class SqlRepository(Repository[T]):
    """Persist a collection as (id, json) rows in one table."""

    def __init__(self, engine: Engine, table_name: str, factory: Callable[[dict[str, Any]], T]) -> None:
        if table_name not in _TABLES:
            raise ValueError(f"Unknown table: {table_name!r}")
        self.engine = engine
        self._table = _TABLES[table_name]
        self._factory = factory

    def load(self) -> list[T]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(self._table.c.data)).fetchall()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read table {self._table.name}: {exc}") from exc
        return [self._factory(json.loads(row.data)) for row in rows]

    def save(self, items: Iterable[T]) -> None:
        rows = [{"id": item.id, "data": json.dumps(item.to_record())} for item in items]
        try:
            with self.engine.begin() as conn:
                conn.execute(self._table.delete())
                if rows:
                    conn.execute(self._table.insert(), rows)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not write table {self._table.name}: {exc}") from exc
