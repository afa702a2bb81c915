"""
Conversation Store — the durable, append-only conversation log.

Every conversation is an ordered sequence of messages kept in SQLite. The
store never updates or deletes a message row: appends are single INSERTs
inside a transaction, so a reader sees either the whole message (metadata
included) or nothing.

The same database holds the companion records the harness needs to survive a
restart:
- confirmations: pending/resolved human-approval requests
- scheduled_tasks: deferred and recurring tool calls
- task_firings: (task, occurrence) pairs already delivered, for deduplication

Multi-record operations (append + confirmation state, append + task
reschedule) share one transaction via ``transaction()``.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog

from studybuddy.errors import StoreError
from studybuddy.models import (
    ConfirmationState,
    Message,
    PendingConfirmation,
    ScheduledTask,
    new_id,
    utcnow,
)

logger = structlog.get_logger(__name__)

CONVERSATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    conversation_id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    conversation_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    message_id TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (conversation_id, seq),
    FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
);
"""

CONFIRMATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS confirmations (
    request_id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    state TEXT NOT NULL,
    created_at REAL NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_confirmations_state ON confirmations(state);
CREATE INDEX IF NOT EXISTS idx_confirmations_conversation ON confirmations(conversation_id);
"""

TASK_SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    task_id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    next_run_at REAL NOT NULL,
    payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS task_firings (
    task_id TEXT NOT NULL,
    occurrence REAL NOT NULL,
    fired_at REAL NOT NULL,
    PRIMARY KEY (task_id, occurrence)
);

CREATE INDEX IF NOT EXISTS idx_tasks_next_run ON scheduled_tasks(next_run_at);
"""


class ConversationStore:
    """
    Durable persistence for conversations and their companion records.

    Uses synchronous SQLite from the event-loop thread. Writers are expected
    to hold the owning conversation's lane (see harness/lanes.py); SQLite
    transactions make each write atomic.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._tx_depth = 0
        logger.info("conversation_store.initializing", path=str(self._db_path))

    def initialize(self) -> None:
        """Create database connection and ensure schema exists."""
        if self._conn is not None:
            logger.debug("conversation_store.already_initialized", path=str(self._db_path))
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._best_effort_chmod(self._db_path.parent, 0o700)

        # isolation_level=None: transactions are managed explicitly below.
        self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(CONVERSATION_SCHEMA)
        self._conn.executescript(CONFIRMATION_SCHEMA)
        self._conn.executescript(TASK_SCHEMA)
        self._best_effort_chmod(self._db_path, 0o600)

        logger.info("conversation_store.initialized", path=str(self._db_path))

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            self._tx_depth = 0

    def _require_connection(self) -> sqlite3.Connection:
        """Return an initialized SQLite connection or raise a clear error."""
        if self._conn is None:
            raise StoreError("ConversationStore is not initialized. Call initialize() first.")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Group writes into one atomic transaction.

        Nested calls join the outermost transaction; only the outermost
        commits or rolls back.
        """
        conn = self._require_connection()
        if self._tx_depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        self._tx_depth += 1
        try:
            yield conn
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.execute("ROLLBACK")
            raise
        else:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                conn.execute("COMMIT")

    # -------------------------------------------------------------------------
    # Conversations and messages
    # -------------------------------------------------------------------------

    def create_conversation(self, conversation_id: Optional[str] = None) -> str:
        """Create a conversation (idempotent) and return its id."""
        conversation_id = conversation_id or new_id()[:12]
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO conversations (conversation_id, created_at) VALUES (?, ?)",
                (conversation_id, utcnow().isoformat()),
            )
        return conversation_id

    def list_conversations(self) -> list[dict[str, Any]]:
        """Return every conversation with its message count, newest first."""
        conn = self._require_connection()
        rows = conn.execute(
            """SELECT c.conversation_id, c.created_at, COUNT(m.seq) AS message_count
               FROM conversations c
               LEFT JOIN messages m ON m.conversation_id = c.conversation_id
               GROUP BY c.conversation_id
               ORDER BY c.created_at DESC"""
        ).fetchall()
        return [dict(row) for row in rows]

    def append(self, conversation_id: str, message: Message) -> Message:
        """Append one message to the end of a conversation."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO conversations (conversation_id, created_at) VALUES (?, ?)",
                (conversation_id, utcnow().isoformat()),
            )
            row = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            seq = row[0] + 1
            try:
                conn.execute(
                    """INSERT INTO messages
                       (conversation_id, seq, message_id, role, created_at, payload)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        conversation_id,
                        seq,
                        message.id,
                        message.role,
                        message.created_at.isoformat(),
                        message.model_dump_json(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Cannot append message {message.id}: {e}") from e

        logger.debug(
            "conversation_store.appended",
            conversation_id=conversation_id,
            seq=seq,
            role=message.role,
            has_metadata=message.metadata is not None,
        )
        return message

    def append_many(self, conversation_id: str, messages: list[Message]) -> list[Message]:
        """Append several messages atomically, preserving their order."""
        with self.transaction():
            for message in messages:
                self.append(conversation_id, message)
        return messages

    def read(self, conversation_id: str) -> list[Message]:
        """Return every message of a conversation in append order."""
        conn = self._require_connection()
        rows = conn.execute(
            "SELECT payload FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
            (conversation_id,),
        ).fetchall()
        return [Message.model_validate_json(row["payload"]) for row in rows]

    def message_count(self, conversation_id: str) -> int:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
        ).fetchone()
        return row[0] if row is not None else 0

    # -------------------------------------------------------------------------
    # Confirmations
    # -------------------------------------------------------------------------

    def save_confirmation(self, confirmation: PendingConfirmation) -> None:
        """Insert or update a confirmation record."""
        with self.transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO confirmations
                   (request_id, conversation_id, state, created_at, payload)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    confirmation.request_id,
                    confirmation.conversation_id,
                    confirmation.state.value,
                    confirmation.created_at.timestamp(),
                    confirmation.model_dump_json(),
                ),
            )

    def load_confirmation(self, request_id: str) -> Optional[PendingConfirmation]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT payload FROM confirmations WHERE request_id = ?", (request_id,)
        ).fetchone()
        if row is None:
            return None
        return PendingConfirmation.model_validate_json(row["payload"])

    def list_confirmations(
        self,
        conversation_id: Optional[str] = None,
        states: Optional[tuple[ConfirmationState, ...]] = (ConfirmationState.PENDING,),
    ) -> list[PendingConfirmation]:
        """List confirmations, oldest first, filtered by conversation and state."""
        query = "SELECT payload FROM confirmations WHERE 1=1"
        params: list[Any] = []
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(conversation_id)
        if states:
            query += f" AND state IN ({', '.join('?' for _ in states)})"
            params.extend(s.value for s in states)
        query += " ORDER BY created_at ASC"

        conn = self._require_connection()
        rows = conn.execute(query, params).fetchall()
        return [PendingConfirmation.model_validate_json(row["payload"]) for row in rows]

    # -------------------------------------------------------------------------
    # Scheduled tasks
    # -------------------------------------------------------------------------

    def save_task(self, task: ScheduledTask) -> None:
        """Insert or update a scheduled task."""
        with self.transaction() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO scheduled_tasks
                   (task_id, conversation_id, next_run_at, payload)
                   VALUES (?, ?, ?, ?)""",
                (
                    task.task_id,
                    task.conversation_id,
                    task.next_run_at.timestamp(),
                    task.model_dump_json(),
                ),
            )

    def delete_task(self, task_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM scheduled_tasks WHERE task_id = ?", (task_id,))
        return cursor.rowcount > 0

    def load_task(self, task_id: str) -> Optional[ScheduledTask]:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT payload FROM scheduled_tasks WHERE task_id = ?", (task_id,)
        ).fetchone()
        if row is None:
            return None
        return ScheduledTask.model_validate_json(row["payload"])

    def list_tasks(
        self,
        conversation_id: Optional[str] = None,
        due_before: Optional[datetime] = None,
    ) -> list[ScheduledTask]:
        """List scheduled tasks ordered by their next run time."""
        query = "SELECT payload FROM scheduled_tasks WHERE 1=1"
        params: list[Any] = []
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(conversation_id)
        if due_before is not None:
            query += " AND next_run_at <= ?"
            params.append(due_before.timestamp())
        query += " ORDER BY next_run_at ASC"

        conn = self._require_connection()
        rows = conn.execute(query, params).fetchall()
        return [ScheduledTask.model_validate_json(row["payload"]) for row in rows]

    def record_firing(self, task_id: str, occurrence: datetime) -> bool:
        """
        Record that a task occurrence was delivered.

        Returns False when the occurrence was already recorded.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO task_firings (task_id, occurrence, fired_at)
                   VALUES (?, ?, ?)""",
                (task_id, occurrence.timestamp(), utcnow().timestamp()),
            )
        return cursor.rowcount > 0

    def has_fired(self, task_id: str, occurrence: datetime) -> bool:
        conn = self._require_connection()
        row = conn.execute(
            "SELECT 1 FROM task_firings WHERE task_id = ? AND occurrence = ?",
            (task_id, occurrence.timestamp()),
        ).fetchone()
        return row is not None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        conn = self._require_connection()

        def _count(table: str) -> int:
            row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            return row[0] if row is not None else 0

        return {
            "conversations": _count("conversations"),
            "messages": _count("messages"),
            "confirmations": _count("confirmations"),
            "scheduled_tasks": _count("scheduled_tasks"),
            "db_path": str(self._db_path),
        }

    @staticmethod
    def _best_effort_chmod(path: Path, mode: int) -> None:
        """Attempt chmod without failing on unsupported filesystems."""
        if not path.exists():
            return
        try:
            path.chmod(mode)
        except OSError:
            logger.debug("conversation_store.chmod_skipped", path=str(path), mode=oct(mode))
