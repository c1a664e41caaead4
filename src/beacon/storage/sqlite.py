# src/beacon/storage/sqlite.py
"""SQLite-backed DurableStore using SQLAlchemy Core.

A single ``kv_entries`` table holds every persisted key. SQLite is
configured for WAL journaling and a busy timeout so sink and queue worker
threads can write concurrently with the host thread.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Self

from sqlalchemy import (
    Column,
    Connection,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

kv_entries_table = Table(
    "kv_entries",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", LargeBinary, nullable=False),
)


class SQLiteStore:
    """Durable store persisted in a SQLite database file."""

    def __init__(self, connection_string: str) -> None:
        """Open (and create if needed) the store.

        Args:
            connection_string: SQLAlchemy SQLite URL,
                e.g. "sqlite:///./beacon.db" or "sqlite:///:memory:"

        Raises:
            ValueError: If the URL is not a SQLite URL
        """
        if not connection_string.startswith("sqlite"):
            raise ValueError(f"SQLiteStore requires a sqlite:// URL, got {connection_string!r}")
        self.connection_string = connection_string
        self._engine: Engine | None = self._create_engine(connection_string)
        # Serializes access; in-memory databases share a single connection
        self._lock = threading.RLock()
        metadata.create_all(self._engine)

    @staticmethod
    def _create_engine(connection_string: str) -> Engine:
        if ":memory:" in connection_string or connection_string in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise each thread sees its own empty database
            engine = create_engine(
                connection_string,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(connection_string, echo=False)
        SQLiteStore._configure_sqlite(engine)
        return engine

    @staticmethod
    def _configure_sqlite(engine: Engine) -> None:
        """Register PRAGMAs applied to every new connection.

        - journal_mode=WAL (readers never block the writer)
        - busy_timeout=5000 (contention tolerance)
        """

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    @classmethod
    def in_memory(cls) -> Self:
        """Create an in-memory store for testing."""
        return cls("sqlite:///:memory:")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("SQLiteStore is closed")
        return self._engine

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Connection with transaction handling (commit on exit, rollback on error)."""
        with self._lock, self.engine.begin() as conn:
            yield conn

    def get(self, key: str) -> bytes | None:
        with self.connection() as conn:
            row = conn.execute(select(kv_entries_table.c.value).where(kv_entries_table.c.key == key)).first()
        if row is None:
            return None
        return bytes(row[0])

    def set(self, key: str, value: bytes) -> None:
        with self.connection() as conn:
            conn.execute(kv_entries_table.delete().where(kv_entries_table.c.key == key))
            conn.execute(kv_entries_table.insert().values(key=key, value=bytes(value)))

    def delete(self, key: str) -> None:
        with self.connection() as conn:
            conn.execute(kv_entries_table.delete().where(kv_entries_table.c.key == key))

    def delete_prefix(self, prefix: str) -> int:
        with self.connection() as conn:
            result = conn.execute(
                kv_entries_table.delete().where(kv_entries_table.c.key.startswith(prefix, autoescape=True))
            )
        return int(result.rowcount)

    def keys(self, prefix: str = "") -> list[str]:
        query = select(kv_entries_table.c.key).order_by(kv_entries_table.c.key)
        if prefix:
            query = query.where(kv_entries_table.c.key.startswith(prefix, autoescape=True))
        with self.connection() as conn:
            return [row[0] for row in conn.execute(query)]

    def count(self) -> int:
        with self.connection() as conn:
            return int(conn.execute(select(func.count()).select_from(kv_entries_table)).scalar_one())

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
