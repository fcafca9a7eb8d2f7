"""Definition stores and the installed-state side-table.

The lifecycle controller only talks to the protocols defined here.  Two
implementations are provided: a dict-backed store for embedding and tests,
and a SQLite store that persists live definitions together with their
installed-state records so separate processes can apply and unpatch.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .codec import dumps, loads
from .registry import PatchKey, PatchKind
from .tree import Node

DEFAULT_DB_PATH = Path("data/fpatch.sqlite")
LOGGER = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@runtime_checkable
class DefinitionLookup(Protocol):
    """Read access to whatever definition is currently active."""

    def find_live_definition(self, identifier: str, kind: PatchKind) -> Optional[Node]:
        """Return the live definition, or ``None`` when it cannot be found."""


@runtime_checkable
class DefinitionStore(DefinitionLookup, Protocol):
    """Read/write access to the active definitions."""

    def set_live_definition(self, identifier: str, kind: PatchKind, value: Node) -> None:
        """Overwrite the active definition."""

    def remove_live_definition(self, identifier: str, kind: PatchKind) -> None:
        """Remove (unbind) the active definition."""


class InMemoryDefinitionStore:
    """Dict-backed :class:`DefinitionStore`."""

    def __init__(self, definitions: Mapping[Tuple[str, PatchKind | str], Node] | None = None) -> None:
        self._definitions: Dict[PatchKey, Node] = {}
        for (identifier, kind), value in (definitions or {}).items():
            self._definitions[(identifier, PatchKind(kind))] = value

    def find_live_definition(self, identifier: str, kind: PatchKind) -> Optional[Node]:
        return self._definitions.get((identifier, PatchKind(kind)))

    def set_live_definition(self, identifier: str, kind: PatchKind, value: Node) -> None:
        self._definitions[(identifier, PatchKind(kind))] = value

    def remove_live_definition(self, identifier: str, kind: PatchKind) -> None:
        self._definitions.pop((identifier, PatchKind(kind)), None)

    def keys(self) -> List[PatchKey]:
        return list(self._definitions)


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    """Installed state for one (identifier, kind).

    ``pristine`` is ``None`` when nothing was defined before the first apply.
    """

    pristine: Optional[Node]
    current_applied: Node


class SnapshotTable:
    """In-memory side-table of installed-state records."""

    def __init__(self) -> None:
        self._records: Dict[PatchKey, SnapshotRecord] = {}

    def get(self, identifier: str, kind: PatchKind) -> Optional[SnapshotRecord]:
        return self._records.get((identifier, PatchKind(kind)))

    def record_apply(
        self,
        identifier: str,
        kind: PatchKind,
        *,
        live_before: Optional[Node],
        applied: Node,
    ) -> SnapshotRecord:
        """Record an apply; ``live_before`` only becomes pristine the first time."""
        key = (identifier, PatchKind(kind))
        existing = self._records.get(key)
        pristine = live_before if existing is None else existing.pristine
        record = SnapshotRecord(pristine=pristine, current_applied=applied)
        self._records[key] = record
        return record

    def clear(self, identifier: str, kind: PatchKind) -> None:
        self._records.pop((identifier, PatchKind(kind)), None)

    def installed(self) -> List[PatchKey]:
        return list(self._records)


class SQLiteDefinitionStore:
    """SQLite-backed :class:`DefinitionStore` with persistent snapshots."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path).resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = self._open_connection()
        self._bootstrap()
        self.snapshots = SQLiteSnapshotTable(self)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SQLiteDefinitionStore":
        paths = config.get("paths") or {}
        db_path = paths.get("db_path")
        if db_path:
            return cls(Path(db_path))
        data_path = paths.get("data") or "data"
        return cls(Path(data_path) / "fpatch.sqlite")

    def _open_connection(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        return connection

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError(f"Store at {self.db_path} is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "SQLiteDefinitionStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _bootstrap(self) -> None:
        self.connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS definitions (
                identifier TEXT NOT NULL,
                kind TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (identifier, kind)
            );

            CREATE TABLE IF NOT EXISTS snapshots (
                identifier TEXT NOT NULL,
                kind TEXT NOT NULL,
                pristine TEXT,
                current_applied TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (identifier, kind)
            );
            """
        )
        self.connection.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        connection = self.connection
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise

    # Definition operations -----------------------------------------------------------
    def find_live_definition(self, identifier: str, kind: PatchKind) -> Optional[Node]:
        cursor = self.connection.execute(
            "SELECT value FROM definitions WHERE identifier = ? AND kind = ?",
            (identifier, PatchKind(kind).value),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return loads(row["value"])

    def set_live_definition(self, identifier: str, kind: PatchKind, value: Node) -> None:
        LOGGER.debug("Writing %s '%s' to %s", PatchKind(kind).value, identifier, self.db_path)
        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO definitions (identifier, kind, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(identifier, kind) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (identifier, PatchKind(kind).value, dumps(value), _utc_now()),
            )

    def remove_live_definition(self, identifier: str, kind: PatchKind) -> None:
        LOGGER.debug("Removing %s '%s' from %s", PatchKind(kind).value, identifier, self.db_path)
        with self._transaction() as connection:
            connection.execute(
                "DELETE FROM definitions WHERE identifier = ? AND kind = ?",
                (identifier, PatchKind(kind).value),
            )

    def keys(self) -> List[PatchKey]:
        cursor = self.connection.execute("SELECT identifier, kind FROM definitions ORDER BY identifier, kind")
        return [(row["identifier"], PatchKind(row["kind"])) for row in cursor.fetchall()]


class SQLiteSnapshotTable:
    """Installed-state records persisted next to the definitions."""

    def __init__(self, store: SQLiteDefinitionStore) -> None:
        self._store = store

    def get(self, identifier: str, kind: PatchKind) -> Optional[SnapshotRecord]:
        cursor = self._store.connection.execute(
            "SELECT pristine, current_applied FROM snapshots WHERE identifier = ? AND kind = ?",
            (identifier, PatchKind(kind).value),
        )
        row = cursor.fetchone()
        if not row:
            return None
        current = loads(row["current_applied"])
        assert current is not None
        return SnapshotRecord(pristine=loads(row["pristine"]), current_applied=current)

    def record_apply(
        self,
        identifier: str,
        kind: PatchKind,
        *,
        live_before: Optional[Node],
        applied: Node,
    ) -> SnapshotRecord:
        existing = self.get(identifier, kind)
        pristine = live_before if existing is None else existing.pristine
        with self._store._transaction() as connection:
            connection.execute(
                """
                INSERT INTO snapshots (identifier, kind, pristine, current_applied, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(identifier, kind) DO UPDATE SET
                    current_applied = excluded.current_applied,
                    updated_at = excluded.updated_at
                """,
                (
                    identifier,
                    PatchKind(kind).value,
                    None if pristine is None else dumps(pristine),
                    dumps(applied),
                    _utc_now(),
                ),
            )
        return SnapshotRecord(pristine=pristine, current_applied=applied)

    def clear(self, identifier: str, kind: PatchKind) -> None:
        with self._store._transaction() as connection:
            connection.execute(
                "DELETE FROM snapshots WHERE identifier = ? AND kind = ?",
                (identifier, PatchKind(kind).value),
            )

    def installed(self) -> List[PatchKey]:
        cursor = self._store.connection.execute(
            "SELECT identifier, kind FROM snapshots ORDER BY identifier, kind"
        )
        return [(row["identifier"], PatchKind(row["kind"])) for row in cursor.fetchall()]


class SnapshotStore(Protocol):
    """Common interface of :class:`SnapshotTable` and :class:`SQLiteSnapshotTable`."""

    def get(self, identifier: str, kind: PatchKind) -> Optional[SnapshotRecord]: ...

    def record_apply(
        self,
        identifier: str,
        kind: PatchKind,
        *,
        live_before: Optional[Node],
        applied: Node,
    ) -> SnapshotRecord: ...

    def clear(self, identifier: str, kind: PatchKind) -> None: ...

    def installed(self) -> List[PatchKey]: ...


class PristineLookup:
    """Upstream view of a store that patches are installed into.

    Installed pairs answer with their recorded pristine value, so validating
    after an apply still compares against what existed before patching.
    Everything else reads through to the store.
    """

    def __init__(self, store: DefinitionLookup, snapshots: SnapshotStore) -> None:
        self._store = store
        self._snapshots = snapshots

    def find_live_definition(self, identifier: str, kind: PatchKind) -> Optional[Node]:
        record = self._snapshots.get(identifier, kind)
        if record is not None:
            return record.pristine
        return self._store.find_live_definition(identifier, kind)


__all__ = [
    "DEFAULT_DB_PATH",
    "DefinitionLookup",
    "DefinitionStore",
    "InMemoryDefinitionStore",
    "PristineLookup",
    "SQLiteDefinitionStore",
    "SQLiteSnapshotTable",
    "SnapshotRecord",
    "SnapshotStore",
    "SnapshotTable",
]
