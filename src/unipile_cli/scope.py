"""Summary: Poll scope keys, timestamp parsing, and cursor arithmetic.

Importance: Guarantees repeated pull/watch invocations land on the same state row and never miss boundary messages.
Alternatives: Key state by account only and trust provider timestamp precision.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from unipile_cli.models import PollScope


CURSOR_OVERLAP = timedelta(seconds=1)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
WILDCARD = "*"


def parse_timestamp(value: str | None) -> datetime | None:
    """Summary: Parse an ISO-8601 timestamp into an aware UTC datetime.

    Importance: Provider timestamps may be missing or malformed; those are ignored rather than fatal.
    Alternatives: Store raw strings and compare lexicographically.
    """

    if not value or not value.strip():
        return None
    cleaned = value.strip().replace("Z", "+00:00").replace("z", "+00:00")
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Summary: Render a datetime as ISO-8601 UTC with millisecond precision.

    Importance: Produces the cursor format accepted by the provider's `after` filter.
    Alternatives: Use datetime.isoformat with offsets.
    """

    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def epoch_seconds(value: str | None) -> float:
    parsed = parse_timestamp(value)
    return parsed.timestamp() if parsed else 0.0


def normalize_chat_ids(chat_ids: Iterable[str]) -> tuple[str, ...]:
    """Summary: Trim, drop blanks, dedupe, and sort chat IDs.

    Importance: Makes scope keys invariant under input ordering and duplicates.
    Alternatives: Require callers to pass canonical lists.
    """

    cleaned = {chat_id.strip() for chat_id in chat_ids if chat_id and chat_id.strip()}
    return tuple(sorted(cleaned))


def build_scope(
    profile_name: str,
    account_id: str,
    chat_ids: Iterable[str] = (),
    sender_id: str | None = None,
    custom_key: str | None = None,
) -> PollScope:
    """Summary: Build a normalized PollScope from raw command inputs.

    Importance: Normalizes once so every consumer sees the same canonical scope.
    Alternatives: Normalize lazily inside the key builder only.
    """

    sender = sender_id.strip() if sender_id and sender_id.strip() else None
    custom = custom_key.strip() if custom_key and custom_key.strip() else None
    return PollScope(
        profile_name=profile_name,
        account_id=account_id,
        chat_ids=normalize_chat_ids(chat_ids),
        sender_id=sender,
        custom_key=custom,
    )


def build_scope_key(scope: PollScope) -> str:
    """Summary: Build the deterministic state key for a polling scope.

    Importance: Same scope always yields the same key, so state accumulates in one row.
    Alternatives: Hash the scope fields into an opaque digest.
    """

    custom = (scope.custom_key or "").strip()
    if custom:
        return f"{scope.profile_name}|{custom}"
    chat_ids = normalize_chat_ids(scope.chat_ids)
    chat_part = ",".join(chat_ids) if chat_ids else WILDCARD
    sender_part = (scope.sender_id or "").strip() or WILDCARD
    return f"{scope.profile_name}|{scope.account_id}|chat={chat_part}|sender={sender_part}"


def compute_next_since_cursor(
    current: str | None,
    timestamps: Iterable[str | None],
    overlap: timedelta = CURSOR_OVERLAP,
) -> str | None:
    """Summary: Compute the next low-watermark cursor with a trailing overlap.

    Importance: Re-requests a small window each poll since provider timestamp inclusivity is not guaranteed.
    Alternatives: Advance the cursor to the exact newest timestamp.
    """

    candidates = [parsed for parsed in (parse_timestamp(value) for value in timestamps) if parsed]
    current_parsed = parse_timestamp(current)
    if current_parsed is not None:
        candidates.append(current_parsed)
    if not candidates:
        return current
    newest = max(candidates)
    return format_timestamp(max(EPOCH, newest - overlap))
