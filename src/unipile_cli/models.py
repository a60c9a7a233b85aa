"""Summary: Domain model dataclasses for unipile-cli.

Importance: Defines the provider entities, scoring results, and polling records shared across services.
Alternatives: Pass raw provider dictionaries through every layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar


T = TypeVar("T")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


@dataclass(frozen=True)
class Account:
    """Summary: A messaging account connected to the provider (WhatsApp, LinkedIn, ...).

    Importance: Every chat, attendee, and message is scoped to one account.
    Alternatives: Address accounts only by their raw identifiers.
    """

    id: str
    type: str
    name: str
    created_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Account":
        return Account(
            id=str(payload.get("id", "")),
            type=str(payload.get("type", "")),
            name=str(payload.get("name", "")),
            created_at=_optional_str(payload.get("created_at")),
            raw=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "name": self.name, "created_at": self.created_at}


@dataclass(frozen=True)
class Attendee:
    """Summary: A chat participant that may be targeted as a message recipient.

    Importance: The candidate unit ranked by contact resolution.
    Alternatives: Resolve recipients from chats only.
    """

    id: str
    provider_id: str
    name: str
    account_id: str = ""
    is_self: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Attendee":
        return Attendee(
            id=str(payload.get("id", "")),
            provider_id=str(payload.get("provider_id") or ""),
            name=str(payload.get("name") or ""),
            account_id=str(payload.get("account_id") or ""),
            is_self=payload.get("is_self") in (1, True, "1", "true"),
            raw=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "name": self.name,
            "account_id": self.account_id,
            "is_self": self.is_self,
        }


@dataclass(frozen=True)
class Chat:
    """Summary: A conversation on one account.

    Importance: Supplies recency signals and existing threads to reuse when sending.
    Alternatives: Always start new chats when sending.
    """

    id: str
    account_id: str
    account_type: str = ""
    provider_id: str | None = None
    attendee_provider_id: str | None = None
    name: str | None = None
    type: int | None = None
    timestamp: str | None = None
    unread_count: int = 0
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Chat":
        chat_type = payload.get("type")
        return Chat(
            id=str(payload.get("id", "")),
            account_id=str(payload.get("account_id") or ""),
            account_type=str(payload.get("account_type") or ""),
            provider_id=_optional_str(payload.get("provider_id")),
            attendee_provider_id=_optional_str(payload.get("attendee_provider_id")),
            name=_optional_str(payload.get("name")),
            type=chat_type if isinstance(chat_type, int) else None,
            timestamp=_optional_str(payload.get("timestamp")),
            unread_count=int(payload.get("unread_count") or 0),
            raw=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "account_type": self.account_type,
            "provider_id": self.provider_id,
            "attendee_provider_id": self.attendee_provider_id,
            "name": self.name,
            "type": self.type,
            "timestamp": self.timestamp,
            "unread_count": self.unread_count,
        }


@dataclass(frozen=True)
class Message:
    """Summary: A message observed on one account.

    Importance: Core unit for inbox polling, archiving, and per-scope dedupe.
    Alternatives: Track only message identifiers without payloads.
    """

    id: str
    account_id: str
    chat_id: str | None = None
    sender_id: str | None = None
    text: str | None = None
    timestamp: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> "Message":
        return Message(
            id=str(payload.get("id", "")),
            account_id=str(payload.get("account_id") or ""),
            chat_id=_optional_str(payload.get("chat_id")),
            sender_id=_optional_str(payload.get("sender_id")),
            text=payload.get("text") if isinstance(payload.get("text"), str) else None,
            timestamp=_optional_str(payload.get("timestamp")),
            raw=payload,
        )

    def to_dict(self) -> dict[str, Any]:
        """Summary: Provider payload with the normalized fields laid over it.

        Importance: Values filled in after fetching, such as the account of a per-chat message, reach the archive.
        Alternatives: Archive the provider payload untouched.
        """

        payload = dict(self.raw)
        fields = {
            "id": self.id,
            "account_id": self.account_id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        for key, value in fields.items():
            if value is not None or key not in payload:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class ListPage(Generic[T]):
    """Summary: One page of a paginated provider listing.

    Importance: Keeps the continuation cursor next to the items it belongs to.
    Alternatives: Return items only and lose pagination state.
    """

    items: list[T]
    cursor: str | None = None


@dataclass(frozen=True)
class OracleHit:
    """Summary: One semantic ranking hit returned by the oracle."""

    text: str
    source: str | None = None
    score: float | None = None


@dataclass(frozen=True)
class OracleResult:
    """Summary: Result of querying the semantic ranking oracle.

    Importance: Models unavailability as data so resolution never fails on it.
    Alternatives: Raise exceptions and catch them in every caller.
    """

    available: bool
    hits: list[OracleHit] = field(default_factory=list)
    error: str | None = None

    @staticmethod
    def unavailable(error: str) -> "OracleResult":
        return OracleResult(available=False, hits=[], error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "hits": [
                {"text": hit.text, "source": hit.source, "score": hit.score} for hit in self.hits
            ],
            "error": self.error,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    """Summary: An attendee with its lexical, recency, semantic, and blended scores.

    Importance: Exposes every signal so operators can see why a candidate ranked where it did.
    Alternatives: Return only the blended score.
    """

    attendee: Attendee
    lexical: float
    recency: float
    semantic: float
    total: float
    reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "attendee": self.attendee.to_dict(),
            "lexical": self.lexical,
            "recency": self.recency,
            "semantic": self.semantic,
            "total": self.total,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class Resolution:
    """Summary: Outcome of resolving a free-text query to a recipient.

    Importance: Distinguishes resolved, ambiguous, and not_found so callers never auto-send on a guess.
    Alternatives: Return the top candidate and let callers decide.
    """

    query: str
    status: str
    candidates: list[ScoredCandidate]
    threshold: float
    margin: float
    selected: ScoredCandidate | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "status": self.status,
            "selected": self.selected.to_dict() if self.selected else None,
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "threshold": self.threshold,
            "margin": self.margin,
        }


@dataclass(frozen=True)
class PollScope:
    """Summary: The profile, account, chat filter, and sender filter of one polling stream.

    Importance: Identifies which cursor and seen-set a pull or watch round belongs to.
    Alternatives: Track a single cursor per account.
    """

    profile_name: str
    account_id: str
    chat_ids: tuple[str, ...] = ()
    sender_id: str | None = None
    custom_key: str | None = None


@dataclass(frozen=True)
class PersistedScopeState:
    """Summary: Stored cursor row for one scope key."""

    scope_key: str
    profile_name: str
    account_id: str
    chat_ids: list[str]
    sender_id: str | None
    since_cursor: str | None
    updated_at: str


@dataclass(frozen=True)
class ArchivedMessage:
    """Summary: Global archive row for a message, shared by all scopes.

    Importance: Preserves first/last observation times for audit across repeated polls.
    Alternatives: Keep only per-scope seen marks.
    """

    account_id: str
    message_id: str
    chat_id: str | None
    sender_id: str | None
    timestamp: str | None
    payload: dict[str, Any]
    first_seen_at: str
    last_seen_at: str


@dataclass(frozen=True)
class PersistedMessageResult:
    """Summary: Independent novelty flags returned when persisting a message.

    Importance: Only the scope flag gates delivery; the store flag is informational.
    Alternatives: Return a single "is new" flag.
    """

    is_new_in_store: bool
    is_new_for_scope: bool
