"""Summary: Tests for the SQLite and in-memory inbox state stores.

Importance: Ensures per-scope novelty, archive timestamps, and cursor rows survive reopen and reset.
Alternatives: Rely on manual inspection of inbox.db.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from unipile_cli.errors import StateStoreUnavailableError
from unipile_cli.models import Message
from unipile_cli.scope import build_scope, build_scope_key
from unipile_cli.storage.inbox_state import InboxStateStore, MemoryInboxState, default_state_path


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def _message(message_id: str, text: str = "hello") -> Message:
    return Message(
        id=message_id,
        account_id="acc-1",
        chat_id="chat-1",
        sender_id="s-1",
        text=text,
        timestamp="2024-06-01T11:59:00.000Z",
    )


def test_persist_message_is_idempotent_per_scope(tmp_path: Path) -> None:
    """Summary: Persisting twice reports novelty only the first time.

    Importance: Delivery is gated on scope novelty, so duplicates must never be re-emitted.
    Alternatives: Check only row counts.
    """

    with InboxStateStore.open(tmp_path / "inbox.db") as store:
        first = store.persist_message("scope-a", _message("m1"))
        second = store.persist_message("scope-a", _message("m1"))
    assert (first.is_new_in_store, first.is_new_for_scope) == (True, True)
    assert (second.is_new_in_store, second.is_new_for_scope) == (False, False)


def test_second_scope_sees_archived_message_as_new(tmp_path: Path) -> None:
    store = InboxStateStore.open(tmp_path / "inbox.db")
    try:
        store.persist_message("scope-a", _message("m1"))
        other = store.persist_message("scope-b", _message("m1"))
    finally:
        store.close()
    assert other.is_new_in_store is False
    assert other.is_new_for_scope is True


def test_archive_update_preserves_first_seen_at(tmp_path: Path) -> None:
    clock = _Clock()
    store = InboxStateStore.open(tmp_path / "inbox.db", clock=clock)
    try:
        store.persist_message("scope-a", _message("m1", text="draft"))
        clock.advance(90)
        store.persist_message("scope-a", _message("m1", text="edited"))
        archived = store.get_archived_message("acc-1", "m1")
    finally:
        store.close()
    assert archived is not None
    assert archived.first_seen_at == "2024-06-01T12:00:00.000Z"
    assert archived.last_seen_at == "2024-06-01T12:01:30.000Z"
    assert archived.payload["text"] == "edited"


def test_scope_state_round_trips_across_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "inbox.db"
    scope = build_scope("default", "acc-1", chat_ids=["b", "a"], sender_id="s-1")
    key = build_scope_key(scope)
    with InboxStateStore.open(db_path) as store:
        assert store.get_cursor(key) is None
        store.upsert_scope_state(key, scope, "2024-06-01T11:58:59.000Z")
        store.upsert_scope_state(key, scope, "2024-06-01T11:59:59.000Z")
    with InboxStateStore.open(db_path) as store:
        state = store.get_scope_state(key)
    assert state is not None
    assert state.since_cursor == "2024-06-01T11:59:59.000Z"
    assert state.chat_ids == ["a", "b"]
    assert state.sender_id == "s-1"


def test_reset_scope_clears_cursor_and_seen_marks_only(tmp_path: Path) -> None:
    """Summary: Reset forgets the scope but keeps the archive.

    Importance: Replays must re-emit messages without losing first_seen_at audit data.
    Alternatives: Drop the whole database to replay.
    """

    scope = build_scope("default", "acc-1")
    key = build_scope_key(scope)
    with InboxStateStore.open(tmp_path / "inbox.db") as store:
        store.persist_message(key, _message("m1"))
        store.persist_message("other-scope", _message("m1"))
        store.upsert_scope_state(key, scope, "2024-06-01T11:58:59.000Z")
        store.reset_scope(key)
        assert store.get_cursor(key) is None
        replay = store.persist_message(key, _message("m1"))
        untouched = store.persist_message("other-scope", _message("m1"))
        assert store.get_archived_message("acc-1", "m1") is not None
    assert replay.is_new_for_scope is True
    assert replay.is_new_in_store is False
    assert untouched.is_new_for_scope is False


def test_open_failure_raises_state_store_unavailable(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    with pytest.raises(StateStoreUnavailableError, match="--no-state"):
        InboxStateStore.open(blocker / "inbox.db")


def test_memory_state_matches_store_semantics() -> None:
    state = MemoryInboxState()
    scope = build_scope("default", "acc-1")
    key = build_scope_key(scope)
    assert state.persistent is False
    assert state.persist_message(key, _message("m1")).is_new_for_scope is True
    assert state.persist_message(key, _message("m1")).is_new_for_scope is False
    assert state.persist_message("other", _message("m1")).is_new_in_store is False
    state.upsert_scope_state(key, scope, "2024-06-01T11:58:59.000Z")
    assert state.get_cursor(key) == "2024-06-01T11:58:59.000Z"
    state.reset_scope(key)
    assert state.get_cursor(key) is None
    assert state.persist_message(key, _message("m1")).is_new_for_scope is True


def test_default_state_path() -> None:
    assert default_state_path("/tmp/cfg") == Path("/tmp/cfg") / "inbox.db"
