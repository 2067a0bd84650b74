"""Offline mutation queue.

Created: 2026-09-09

Mutations made while a service is unreachable are persisted to SQLite
and replayed later in enqueue order (see ``myme.sync.replay``). The
schema is versioned with ``PRAGMA user_version`` and migrated once when
the queue is opened.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from myme.config import get_config_dir
from myme.errors import StorageFailure

logger = logging.getLogger(__name__)

QUEUE_DB_NAME = "offline_queue.db"
SCHEMA_VERSION = 1

_MIGRATIONS: dict[int, str] = {
    1: """
    CREATE TABLE IF NOT EXISTS mutation_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        target TEXT NOT NULL,
        payload_json TEXT NOT NULL,
        enqueued_at INTEGER NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_mutation_queue_order ON mutation_queue(enqueued_at, id);
    CREATE INDEX IF NOT EXISTS idx_mutation_queue_target ON mutation_queue(target);
    """,
}

_COLUMNS = "id, kind, target, payload_json, enqueued_at, attempts, last_error"
_ORDER = "ORDER BY enqueued_at ASC, id ASC"


class MutationKind(str, Enum):
    """Writes that can be deferred while offline."""

    GMAIL_MARK_READ = "gmail_mark_read"
    GMAIL_MARK_UNREAD = "gmail_mark_unread"
    GMAIL_STAR = "gmail_star"
    GMAIL_UNSTAR = "gmail_unstar"
    GMAIL_ARCHIVE = "gmail_archive"
    GMAIL_TRASH = "gmail_trash"
    GMAIL_ADD_LABELS = "gmail_add_labels"
    GMAIL_REMOVE_LABELS = "gmail_remove_labels"
    GITHUB_CREATE_ISSUE = "github_create_issue"
    GITHUB_UPDATE_ISSUE = "github_update_issue"

    @property
    def service(self) -> str:
        return "google" if self.value.startswith("gmail_") else "github"


@dataclass
class Mutation:
    """A deferred write: what to do, to which remote object, with which params.

    ``target`` identifies the remote object (a Gmail message id, or
    ``owner/repo#number`` for an issue) and is what ``has_pending_for``
    matches on.
    """

    kind: MutationKind
    target: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "target": self.target, "params": self.params}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Mutation:
        return cls(
            kind=MutationKind(data["kind"]),
            target=data["target"],
            params=dict(data.get("params", {})),
        )


@dataclass
class QueuedMutation:
    id: int
    mutation: Mutation
    enqueued_at: int  # unix milliseconds
    attempts: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mutation": self.mutation.to_dict(),
            "enqueued_at": self.enqueued_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class OfflineQueue:
    """SQLite-backed FIFO of pending mutations.

    Args:
        path: Database file. Defaults to ``~/.myme/offline_queue.db``;
            ``":memory:"`` gives a throwaway queue.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        if path is None:
            path = get_config_dir() / QUEUE_DB_NAME
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._path = path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._migrate()
        except sqlite3.Error as e:
            raise StorageFailure(f"Failed to open offline queue at {path}: {e}") from e

    def _migrate(self) -> None:
        with self._lock:
            version = self._conn.execute("PRAGMA user_version").fetchone()[0]
            if version > SCHEMA_VERSION:
                raise StorageFailure(
                    f"Offline queue schema v{version} is newer than supported v{SCHEMA_VERSION}"
                )
            for target in range(version + 1, SCHEMA_VERSION + 1):
                logger.info("Migrating offline queue schema to v%d", target)
                self._conn.executescript(_MIGRATIONS[target])
                self._conn.execute(f"PRAGMA user_version = {target}")
                self._conn.commit()

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                with self._conn:
                    return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StorageFailure(f"Offline queue write failed: {e}") from e

    def _read(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageFailure(f"Offline queue read failed: {e}") from e

    @staticmethod
    def _row_to_queued(row: tuple) -> QueuedMutation:
        id_, kind, target, payload_json, enqueued_at, attempts, last_error = row
        try:
            params = json.loads(payload_json)
            mutation = Mutation(kind=MutationKind(kind), target=target, params=params)
        except ValueError as e:
            raise StorageFailure(f"Corrupt queue entry {id_}: {e}") from e
        return QueuedMutation(
            id=id_,
            mutation=mutation,
            enqueued_at=enqueued_at,
            attempts=attempts,
            last_error=last_error,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(self, mutation: Mutation) -> int:
        """Append a mutation; returns its queue id."""
        cur = self._write(
            "INSERT INTO mutation_queue (kind, target, payload_json, enqueued_at) "
            "VALUES (?, ?, ?, ?)",
            (mutation.kind.value, mutation.target, json.dumps(mutation.params), _now_ms()),
        )
        logger.info("Queued %s for %s (id=%d)", mutation.kind.value, mutation.target, cur.lastrowid)
        return cur.lastrowid

    def complete(self, entry_id: int) -> None:
        self._write("DELETE FROM mutation_queue WHERE id = ?", (entry_id,))

    def record_failure(self, entry_id: int, error: str) -> None:
        self._write(
            "UPDATE mutation_queue SET attempts = attempts + 1, last_error = ? WHERE id = ?",
            (error, entry_id),
        )

    def remove_exceeding(self, max_attempts: int) -> int:
        """Delete entries with ``attempts >= max_attempts``; returns how many."""
        cur = self._write("DELETE FROM mutation_queue WHERE attempts >= ?", (max_attempts,))
        if cur.rowcount:
            logger.warning(
                "Dropped %d queued mutation(s) after %d attempts", cur.rowcount, max_attempts
            )
        return cur.rowcount

    def clear(self) -> int:
        cur = self._write("DELETE FROM mutation_queue")
        return cur.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def peek(self) -> QueuedMutation | None:
        """Oldest pending entry, or None when the queue is empty."""
        rows = self._read(f"SELECT {_COLUMNS} FROM mutation_queue {_ORDER} LIMIT 1")
        return self._row_to_queued(rows[0]) if rows else None

    def list_pending(self) -> list[QueuedMutation]:
        rows = self._read(f"SELECT {_COLUMNS} FROM mutation_queue {_ORDER}")
        return [self._row_to_queued(r) for r in rows]

    def list_exceeding(self, max_attempts: int) -> list[QueuedMutation]:
        rows = self._read(
            f"SELECT {_COLUMNS} FROM mutation_queue WHERE attempts >= ? {_ORDER}",
            (max_attempts,),
        )
        return [self._row_to_queued(r) for r in rows]

    def pending_count(self) -> int:
        rows = self._read("SELECT COUNT(*) FROM mutation_queue")
        return int(rows[0][0]) if rows else 0

    def has_pending_for(self, target: str) -> bool:
        rows = self._read("SELECT 1 FROM mutation_queue WHERE target = ? LIMIT 1", (target,))
        return bool(rows)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
