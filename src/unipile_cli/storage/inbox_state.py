"""Summary: Persistent and in-memory inbox polling state.

Importance: Tracks per-scope cursors, a global message archive, and per-scope seen marks so polling is idempotent across runs.
Alternatives: Keep seen IDs in a JSON file rewritten on every poll.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from unipile_cli.errors import StateStoreUnavailableError
from unipile_cli.models import (
    ArchivedMessage,
    Message,
    PersistedMessageResult,
    PersistedScopeState,
    PollScope,
)
from unipile_cli.scope import format_timestamp


logger = logging.getLogger(__name__)

INBOX_DB_FILE = "inbox.db"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS watch_scope_state (
        scope_key TEXT PRIMARY KEY,
        profile_name TEXT NOT NULL,
        account_id TEXT NOT NULL,
        chat_ids TEXT NOT NULL,
        sender_id TEXT,
        since_cursor TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inbox_message_store (
        account_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        chat_id TEXT,
        sender_id TEXT,
        timestamp TEXT,
        payload_json TEXT NOT NULL,
        first_seen_at TEXT NOT NULL,
        last_seen_at TEXT NOT NULL,
        PRIMARY KEY (account_id, message_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scope_message_seen (
        scope_key TEXT NOT NULL,
        account_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        seen_at TEXT NOT NULL,
        PRIMARY KEY (scope_key, account_id, message_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_scope_message_seen_scope_seen_at
    ON scope_message_seen(scope_key, seen_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_inbox_message_store_timestamp
    ON inbox_message_store(timestamp)
    """,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InboxState(ABC):
    """Summary: Interface shared by persistent and per-run polling state.

    Importance: Lets the poll orchestrator run identically with or without a database.
    Alternatives: Branch on a --no-state flag throughout the orchestrator.
    """

    persistent: bool = False

    @abstractmethod
    def get_cursor(self, scope_key: str) -> str | None:
        """Summary: Return the stored cursor for a scope, if any."""

    @abstractmethod
    def upsert_scope_state(self, scope_key: str, scope: PollScope, since_cursor: str | None) -> None:
        """Summary: Insert or update the cursor row for a scope."""

    @abstractmethod
    def reset_scope(self, scope_key: str) -> None:
        """Summary: Forget the cursor and seen marks of a scope."""

    @abstractmethod
    def persist_message(self, scope_key: str, message: Message) -> PersistedMessageResult:
        """Summary: Record a message and report store and scope novelty."""

    def close(self) -> None:
        return None

    def __enter__(self) -> "InboxState":
        return self

    def __exit__(self, exc_type: object, exc: object, traceback: object) -> None:
        self.close()


class MemoryInboxState(InboxState):
    """Summary: Per-run polling state held only in memory.

    Importance: Supports stateless one-off checks; every fresh process re-emits previously seen messages.
    Alternatives: Require the SQLite store for all polling.
    """

    persistent = False

    def __init__(self) -> None:
        self._cursors: dict[str, str | None] = {}
        self._archive: set[tuple[str, str]] = set()
        self._seen: set[tuple[str, str, str]] = set()

    def get_cursor(self, scope_key: str) -> str | None:
        return self._cursors.get(scope_key)

    def upsert_scope_state(self, scope_key: str, scope: PollScope, since_cursor: str | None) -> None:
        self._cursors[scope_key] = since_cursor

    def reset_scope(self, scope_key: str) -> None:
        self._cursors.pop(scope_key, None)
        self._seen = {mark for mark in self._seen if mark[0] != scope_key}

    def persist_message(self, scope_key: str, message: Message) -> PersistedMessageResult:
        archive_key = (message.account_id, message.id)
        seen_key = (scope_key, message.account_id, message.id)
        is_new_in_store = archive_key not in self._archive
        is_new_for_scope = seen_key not in self._seen
        self._archive.add(archive_key)
        self._seen.add(seen_key)
        return PersistedMessageResult(
            is_new_in_store=is_new_in_store, is_new_for_scope=is_new_for_scope
        )


class InboxStateStore(InboxState):
    """Summary: SQLite-backed inbox state with durable commits per write.

    Importance: Lets an interrupted watch resume on restart with the same scope key.
    Alternatives: Use a key-value store such as LMDB.
    """

    persistent = True

    def __init__(
        self, db_path: str | Path, clock: Callable[[], datetime] = utc_now
    ) -> None:
        """Summary: Initialize the store with a database path.

        Importance: Keeps the state file location configurable per installation.
        Alternatives: Hardcode the path under the config directory.
        """

        self._db_path = Path(db_path)
        self._clock = clock
        self._connection: sqlite3.Connection | None = None

    @classmethod
    def open(
        cls, db_path: str | Path, clock: Callable[[], datetime] = utc_now
    ) -> "InboxStateStore":
        """Summary: Open the database, apply pragmas, and create tables.

        Importance: Converts missing SQLite support or unwritable paths into a typed, opt-out-able failure.
        Alternatives: Let sqlite3 errors propagate raw.
        """

        store = cls(db_path, clock=clock)
        try:
            store._db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            connection = sqlite3.connect(store._db_path)
            connection.execute("PRAGMA journal_mode = WAL")
            connection.execute("PRAGMA synchronous = FULL")
            for statement in _SCHEMA:
                connection.execute(statement)
            connection.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StateStoreUnavailableError(
                f"Inbox state storage is unavailable at {store._db_path}: {exc}. "
                "Run inbox commands with --no-state to skip persistence."
            ) from exc
        store._connection = connection
        return store

    @property
    def path(self) -> Path:
        return self._db_path

    def get_cursor(self, scope_key: str) -> str | None:
        row = self._conn().execute(
            "SELECT since_cursor FROM watch_scope_state WHERE scope_key = ? LIMIT 1",
            (scope_key,),
        ).fetchone()
        return row[0] if row else None

    def get_scope_state(self, scope_key: str) -> PersistedScopeState | None:
        """Summary: Fetch the full cursor row for a scope.

        Importance: Supports status reporting for a scope without a pull.
        Alternatives: Expose only the cursor value.
        """

        row = self._conn().execute(
            """
            SELECT scope_key, profile_name, account_id, chat_ids, sender_id, since_cursor, updated_at
            FROM watch_scope_state
            WHERE scope_key = ?
            """,
            (scope_key,),
        ).fetchone()
        if not row:
            return None
        return PersistedScopeState(
            scope_key=row[0],
            profile_name=row[1],
            account_id=row[2],
            chat_ids=json.loads(row[3]),
            sender_id=row[4],
            since_cursor=row[5],
            updated_at=row[6],
        )

    def upsert_scope_state(self, scope_key: str, scope: PollScope, since_cursor: str | None) -> None:
        connection = self._conn()
        with connection:
            connection.execute(
                """
                INSERT INTO watch_scope_state (
                    scope_key, profile_name, account_id, chat_ids, sender_id, since_cursor, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(scope_key) DO UPDATE SET
                    profile_name = excluded.profile_name,
                    account_id = excluded.account_id,
                    chat_ids = excluded.chat_ids,
                    sender_id = excluded.sender_id,
                    since_cursor = excluded.since_cursor,
                    updated_at = excluded.updated_at
                """,
                (
                    scope_key,
                    scope.profile_name,
                    scope.account_id,
                    json.dumps(list(scope.chat_ids)),
                    scope.sender_id,
                    since_cursor,
                    self._now(),
                ),
            )

    def reset_scope(self, scope_key: str) -> None:
        """Summary: Delete the cursor row and seen marks of one scope.

        Importance: Enables explicit replay while preserving the global archive and its first_seen_at.
        Alternatives: Delete archived messages too.
        """

        connection = self._conn()
        with connection:
            connection.execute("DELETE FROM scope_message_seen WHERE scope_key = ?", (scope_key,))
            connection.execute("DELETE FROM watch_scope_state WHERE scope_key = ?", (scope_key,))
        logger.info("Reset inbox state for scope %s.", scope_key)

    def persist_message(self, scope_key: str, message: Message) -> PersistedMessageResult:
        """Summary: Archive a message and mark it seen for a scope.

        Importance: Returns independent store and scope novelty; only scope novelty gates delivery.
        Alternatives: Dedupe only against the global archive.
        """

        now = self._now()
        payload_json = json.dumps(message.to_dict(), sort_keys=True)
        connection = self._conn()
        with connection:
            inserted = connection.execute(
                """
                INSERT OR IGNORE INTO inbox_message_store (
                    account_id, message_id, chat_id, sender_id, timestamp,
                    payload_json, first_seen_at, last_seen_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.account_id,
                    message.id,
                    message.chat_id,
                    message.sender_id,
                    message.timestamp,
                    payload_json,
                    now,
                    now,
                ),
            )
            is_new_in_store = inserted.rowcount > 0
            if not is_new_in_store:
                connection.execute(
                    """
                    UPDATE inbox_message_store
                    SET chat_id = ?, sender_id = ?, timestamp = ?, payload_json = ?, last_seen_at = ?
                    WHERE account_id = ? AND message_id = ?
                    """,
                    (
                        message.chat_id,
                        message.sender_id,
                        message.timestamp,
                        payload_json,
                        now,
                        message.account_id,
                        message.id,
                    ),
                )
            seen = connection.execute(
                """
                INSERT OR IGNORE INTO scope_message_seen (scope_key, account_id, message_id, seen_at)
                VALUES (?, ?, ?, ?)
                """,
                (scope_key, message.account_id, message.id, now),
            )
        return PersistedMessageResult(
            is_new_in_store=is_new_in_store, is_new_for_scope=seen.rowcount > 0
        )

    def get_archived_message(self, account_id: str, message_id: str) -> ArchivedMessage | None:
        row = self._conn().execute(
            """
            SELECT account_id, message_id, chat_id, sender_id, timestamp,
                   payload_json, first_seen_at, last_seen_at
            FROM inbox_message_store
            WHERE account_id = ? AND message_id = ?
            """,
            (account_id, message_id),
        ).fetchone()
        if not row:
            return None
        return ArchivedMessage(
            account_id=row[0],
            message_id=row[1],
            chat_id=row[2],
            sender_id=row[3],
            timestamp=row[4],
            payload=json.loads(row[5]),
            first_seen_at=row[6],
            last_seen_at=row[7],
        )

    def close(self) -> None:
        """Summary: Commit pending work and release the connection.

        Importance: Must run on every exit path so no half-written transaction is left behind.
        Alternatives: Rely on interpreter shutdown to close the file.
        """

        if self._connection is None:
            return
        try:
            self._connection.commit()
        finally:
            self._connection.close()
            self._connection = None

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StateStoreUnavailableError("Inbox state store is not open")
        return self._connection

    def _now(self) -> str:
        return format_timestamp(self._clock())


def default_state_path(config_dir: str | Path) -> Path:
    """Summary: Provide the default inbox state database path."""

    return Path(config_dir) / INBOX_DB_FILE
