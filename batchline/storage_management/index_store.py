"""Durable integer counters used to name batch files."""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import Protocol

from sqlalchemy import create_engine, event, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Engine

from .tables import metadata, queue_index

logger = logging.getLogger(__name__)


class IndexStore(Protocol):
    """Persistence interface for the queue index.

    ``get`` followed by ``set`` is not atomic. Callers that may seal files
    from several threads must serialize the read-modify-write themselves.
    """

    def get(self, key: str) -> int:
        """Return the stored value, or 0 if the key was never set."""
        ...

    def set(self, key: str, value: int) -> None:
        """Persist ``value`` under ``key``."""
        ...


class MemoryIndexStore:
    """In-process IndexStore; values are lost when the process exits."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._values: dict[str, int] = dict(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> int:
        with self._lock:
            return self._values.get(key, 0)

    def set(self, key: str, value: int) -> None:
        with self._lock:
            self._values[key] = value


class SqliteIndexStore:
    """SQLite-backed IndexStore with rows scoped by write key."""

    def __init__(self, db_path: Path, scope: str) -> None:
        """Open (creating if needed) the database at ``db_path``.

        Args:
            db_path: SQLite database file.
            scope: Namespace for keys, normally the write key.
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._scope = scope
        self._engine: Engine = create_engine(f"sqlite:///{db_path}", future=True)
        event.listen(self._engine, "connect", _apply_pragmas)
        metadata.create_all(self._engine)

    def get(self, key: str) -> int:
        stmt = select(queue_index.c.value).where(
            queue_index.c.scope == self._scope,
            queue_index.c.key == key,
        )
        with self._engine.connect() as conn:
            value = conn.execute(stmt).scalar_one_or_none()
        return int(value) if value is not None else 0

    def set(self, key: str, value: int) -> None:
        stmt = insert(queue_index).values(scope=self._scope, key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[queue_index.c.scope, queue_index.c.key],
            set_={"value": stmt.excluded.value},
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()


def _apply_pragmas(dbapi_connection, connection_record) -> None:
    """Use WAL with synchronous=FULL so a committed index survives power loss."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=FULL;")
    cursor.close()
