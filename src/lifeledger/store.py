from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .errors import (
    AlreadyVerified,
    AlreadyVerifier,
    CannotRemoveAdmin,
    NotAVerifier,
    NotFound,
    SelfVerificationForbidden,
    Unauthorized,
)
from .models.event import LifeEvent


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _row_to_event(row: sqlite3.Row) -> LifeEvent:
    return LifeEvent(
        id=int(row["id"]),
        owner=str(row["owner"]),
        event_type=str(row["event_type"]),
        description=str(row["description"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        verified=bool(row["verified"]),
        verifier=str(row["verifier"]) if row["verifier"] is not None else None,
        document_ref=str(row["document_ref"]),
    )


def _read_revision(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM meta WHERE key = 'revision'").fetchone()
    return int(row["value"]) if row is not None else 0


def _read_admin(conn: sqlite3.Connection) -> Optional[str]:
    row = conn.execute("SELECT value FROM meta WHERE key = 'admin'").fetchone()
    return str(row["value"]) if row is not None else None


def _is_verifier(conn: sqlite3.Connection, identity: str) -> bool:
    row = conn.execute("SELECT 1 FROM verifiers WHERE identity = ?", (identity,)).fetchone()
    return row is not None


class LedgerStore:
    """SQLite persistence for a single ledger.

    The database is the source of truth when several processes share it.
    Every write runs in one BEGIN IMMEDIATE transaction that re-checks its
    preconditions, raises the typed ledger error when they no longer hold,
    and bumps meta.revision so other handles know to reload.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('revision', '1') "
                "ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1"
            )
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS meta(
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS events(
                  id INTEGER PRIMARY KEY,
                  owner TEXT NOT NULL,
                  event_type TEXT NOT NULL CHECK (event_type <> ''),
                  description TEXT NOT NULL CHECK (description <> ''),
                  created_at TEXT NOT NULL,
                  verified INTEGER NOT NULL DEFAULT 0,
                  verifier TEXT,
                  document_ref TEXT NOT NULL DEFAULT ''
                );

                CREATE INDEX IF NOT EXISTS idx_events_owner ON events(owner, id);

                CREATE TABLE IF NOT EXISTS verifiers(
                  identity TEXT PRIMARY KEY,
                  added_at TEXT NOT NULL
                );
                """
            )
        finally:
            conn.close()

    def get_admin(self) -> Optional[str]:
        conn = self._connect()
        try:
            return _read_admin(conn)
        finally:
            conn.close()

    def get_revision(self) -> int:
        conn = self._connect()
        try:
            return _read_revision(conn)
        finally:
            conn.close()

    def set_admin(self, admin: str) -> None:
        """Record the admin and enrol it as a verifier. Refuses to replace a different admin."""
        current = self.get_admin()
        if current == admin:
            return
        with self._write() as conn:
            current = _read_admin(conn)
            if current is not None and current != admin:
                raise ValueError(f"Ledger at {self.db_path} already belongs to admin {current!r}")
            conn.execute("INSERT OR IGNORE INTO meta(key, value) VALUES('admin', ?)", (admin,))
            conn.execute(
                "INSERT OR IGNORE INTO verifiers(identity, added_at) VALUES(?, ?)",
                (admin, _iso_now()),
            )

    def append_event(
        self,
        *,
        owner: str,
        event_type: str,
        description: str,
        created_at: datetime,
        document_ref: str,
    ) -> LifeEvent:
        """Insert a new event under the next free id and return it."""
        with self._write() as conn:
            row = conn.execute("SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM events").fetchone()
            event = LifeEvent(
                id=int(row["next_id"]),
                owner=owner,
                event_type=event_type,
                description=description,
                created_at=created_at,
                document_ref=document_ref,
            )
            conn.execute(
                """
                INSERT INTO events(
                  id, owner, event_type, description, created_at,
                  verified, verifier, document_ref
                )
                VALUES(?, ?, ?, ?, ?, 0, NULL, ?)
                """,
                (
                    event.id,
                    event.owner,
                    event.event_type,
                    event.description,
                    event.created_at.isoformat(),
                    event.document_ref,
                ),
            )
        return event

    def verify_event(self, event_id: int, verifier: str) -> LifeEvent:
        """Flip an event to verified, re-checking every precondition in the transaction."""
        with self._write() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
            if row is None:
                raise NotFound(f"Event {event_id} does not exist")
            event = _row_to_event(row)
            if event.verified:
                raise AlreadyVerified(f"Event {event_id} was already verified by {event.verifier}")
            if verifier == event.owner:
                raise SelfVerificationForbidden(f"{verifier} cannot verify their own event {event_id}")
            if not _is_verifier(conn, verifier):
                raise Unauthorized(f"{verifier} is not a verifier")
            conn.execute(
                "UPDATE events SET verified = 1, verifier = ? WHERE id = ? AND verified = 0",
                (verifier, event_id),
            )
        return event.mark_verified(verifier)

    def add_verifier(self, identity: str) -> None:
        with self._write() as conn:
            if _is_verifier(conn, identity):
                raise AlreadyVerifier(f"{identity} is already a verifier")
            conn.execute(
                "INSERT INTO verifiers(identity, added_at) VALUES(?, ?)",
                (identity, _iso_now()),
            )

    def remove_verifier(self, identity: str) -> None:
        with self._write() as conn:
            if identity == _read_admin(conn):
                raise CannotRemoveAdmin("The admin cannot be removed from the verifier set")
            if not _is_verifier(conn, identity):
                raise NotAVerifier(f"{identity} is not a verifier")
            conn.execute("DELETE FROM verifiers WHERE identity = ?", (identity,))

    def load_state(self) -> tuple[int, list[LifeEvent], set[str]]:
        """Read revision, events (by id) and verifiers from one consistent snapshot."""
        conn = self._connect()
        try:
            conn.execute("BEGIN")
            revision = _read_revision(conn)
            events = [_row_to_event(row) for row in conn.execute("SELECT * FROM events ORDER BY id")]
            verifiers = {str(row["identity"]) for row in conn.execute("SELECT identity FROM verifiers")}
            conn.execute("COMMIT")
            return revision, events, verifiers
        finally:
            conn.close()

    def load_events(self) -> list[LifeEvent]:
        return self.load_state()[1]

    def load_verifiers(self) -> set[str]:
        return self.load_state()[2]
