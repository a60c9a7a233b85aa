"""Summary: Contact resolution scoring and decision policy.

Importance: Turns a free-text recipient query into resolved, ambiguous, or not_found so sends never act on weak guesses.
Alternatives: Require explicit attendee IDs for every send.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime

from unipile_cli.models import Attendee, Chat, OracleResult, Resolution, ScoredCandidate
from unipile_cli.scope import parse_timestamp


RESOLVED = "resolved"
AMBIGUOUS = "ambiguous"
NOT_FOUND = "not_found"

RECENT_CHAT_TAG_MIN = 0.65
SEMANTIC_TAG_MIN = 0.5

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ResolutionPolicy:
    """Summary: Tunable weights and cutoffs for contact resolution.

    Importance: Keeps the blend weights, floor, threshold, and margin in configuration rather than code.
    Alternatives: Hardcode the constants inside the ranker.
    """

    threshold: float = 0.9
    margin: float = 0.15
    floor: float = 0.35
    max_candidates: int = 5
    lexical_weight: float = 0.75
    recency_weight: float = 0.15
    semantic_weight: float = 0.10
    pin_exact_id: bool = True

    def with_overrides(
        self,
        threshold: float | None = None,
        margin: float | None = None,
        max_candidates: int | None = None,
    ) -> "ResolutionPolicy":
        """Summary: Return a copy with per-call overrides applied.

        Importance: Lets CLI flags override profile defaults for one invocation.
        Alternatives: Mutate the shared policy instance.
        """

        return ResolutionPolicy(
            threshold=self.threshold if threshold is None else threshold,
            margin=self.margin if margin is None else margin,
            floor=self.floor,
            max_candidates=self.max_candidates if max_candidates is None else max_candidates,
            lexical_weight=self.lexical_weight,
            recency_weight=self.recency_weight,
            semantic_weight=self.semantic_weight,
            pin_exact_id=self.pin_exact_id,
        )


def normalize(value: str) -> str:
    """Summary: Normalize text for fuzzy matching.

    Importance: Makes user input and provider names comparable regardless of case, accents, or punctuation.
    Alternatives: Compare raw strings case-insensitively.
    """

    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value.lower())
    folded = "".join(char for char in decomposed if not unicodedata.combining(char))
    cleaned = _NON_ALNUM.sub(" ", folded)
    return _WHITESPACE.sub(" ", cleaned).strip()


def tokenize(value: str) -> list[str]:
    cleaned = normalize(value)
    return cleaned.split(" ") if cleaned else []


def lexical_score(query: str, attendee: Attendee) -> tuple[float, list[str]]:
    """Summary: Score a query against one attendee's name and identifiers.

    Importance: Rewards exact and substring identity matches over fuzzy token overlap.
    Alternatives: Use edit distance on the full name.
    """

    query_norm = normalize(query)
    if not query_norm:
        return 0.0, []
    provider_id_norm = normalize(attendee.provider_id)
    name_norm = normalize(attendee.name)

    if query_norm == normalize(attendee.id) or query_norm == provider_id_norm:
        return 1.0, ["exact_id"]
    if provider_id_norm and query_norm in provider_id_norm:
        return 0.95, ["provider_id_contains"]
    if name_norm == query_norm:
        return 0.94, ["exact_name"]
    if name_norm and query_norm in name_norm:
        return 0.90, ["name_contains"]

    query_tokens = tokenize(query)
    name_tokens = tokenize(attendee.name)
    if not query_tokens or not name_tokens:
        return 0.0, []
    name_token_set = set(name_tokens)
    overlap = sum(1 for token in query_tokens if token in name_token_set)
    if overlap == 0:
        return 0.0, []
    recall = overlap / len(query_tokens)
    precision = overlap / len(name_tokens)
    harmonic = (2 * recall * precision) / (recall + precision)
    return harmonic * 0.88, ["token_overlap"]


def recency_scores(chats: list[Chat]) -> dict[str, float]:
    """Summary: Build min-max normalized recency scores per counterpart provider ID.

    Importance: Favors people the account talked to recently when names collide.
    Alternatives: Use raw unread counts as an activity signal.
    """

    newest: dict[str, datetime] = {}
    for chat in chats:
        provider_id = chat.attendee_provider_id
        if not provider_id:
            continue
        timestamp = parse_timestamp(chat.timestamp)
        if timestamp is None:
            continue
        current = newest.get(provider_id)
        if current is None or timestamp > current:
            newest[provider_id] = timestamp
    if not newest:
        return {}
    lowest = min(newest.values())
    highest = max(newest.values())
    if lowest == highest:
        return {provider_id: 0.5 for provider_id in newest}
    span = (highest - lowest).total_seconds()
    return {
        provider_id: (value - lowest).total_seconds() / span
        for provider_id, value in newest.items()
    }


def semantic_boost(attendee: Attendee, oracle_result: OracleResult) -> float:
    """Summary: Compute a light boost from semantic oracle hits.

    Importance: Adds memory context when available without ever blocking resolution.
    Alternatives: Ignore external context entirely.
    """

    if not oracle_result.available or not oracle_result.hits:
        return 0.0
    name = normalize(attendee.name)
    provider_id = normalize(attendee.provider_id)
    name_tokens = tokenize(attendee.name)
    best = 0.0
    for hit in oracle_result.hits:
        haystack = normalize(f"{hit.text} {hit.source or ''}")
        if provider_id and provider_id in haystack:
            best = max(best, 1.0)
            continue
        if name and name in haystack:
            best = max(best, 0.8)
            continue
        if name_tokens:
            found = sum(1 for token in name_tokens if token in haystack)
            best = max(best, found / len(name_tokens) * 0.6)
    return best


def rank_contacts(
    query: str,
    attendees: list[Attendee],
    chats: list[Chat],
    oracle_result: OracleResult,
    policy: ResolutionPolicy | None = None,
) -> list[ScoredCandidate]:
    """Summary: Score and rank every non-self attendee for a query.

    Importance: Produces the ordered shortlist shown to operators and used by the decider.
    Alternatives: Rank by lexical score only.
    """

    policy = policy or ResolutionPolicy()
    recency_by_provider_id = recency_scores(chats)
    ranked: list[ScoredCandidate] = []
    for attendee in attendees:
        if attendee.is_self:
            continue
        lexical, reasons = lexical_score(query, attendee)
        recency = recency_by_provider_id.get(attendee.provider_id, 0.0)
        semantic = semantic_boost(attendee, oracle_result)
        total = (
            lexical * policy.lexical_weight
            + recency * policy.recency_weight
            + semantic * policy.semantic_weight
        )
        if policy.pin_exact_id and "exact_id" in reasons:
            total = 1.0
        total = min(1.0, max(0.0, total))
        if recency >= RECENT_CHAT_TAG_MIN:
            reasons.append("recent_chat")
        if semantic >= SEMANTIC_TAG_MIN:
            reasons.append("semantic_hint")
        ranked.append(
            ScoredCandidate(
                attendee=attendee,
                lexical=lexical,
                recency=recency,
                semantic=semantic,
                total=total,
                reasons=tuple(reasons),
            )
        )
    return sorted(ranked, key=lambda candidate: -candidate.total)


def resolve_contacts(
    query: str,
    attendees: list[Attendee],
    chats: list[Chat],
    oracle_result: OracleResult,
    policy: ResolutionPolicy | None = None,
) -> Resolution:
    """Summary: Resolve a query to one attendee or return a shortlist.

    Importance: Requires both an absolute confidence and a margin over the runner-up before resolving.
    Alternatives: Always pick the highest-scoring candidate.
    """

    policy = policy or ResolutionPolicy()
    ranked = rank_contacts(query, attendees, chats, oracle_result, policy)
    ranked = ranked[: max(0, policy.max_candidates)]
    top = ranked[0] if ranked else None
    runner_up = ranked[1] if len(ranked) > 1 else None

    if top is None or top.total < policy.floor:
        return Resolution(
            query=query,
            status=NOT_FOUND,
            candidates=ranked,
            threshold=policy.threshold,
            margin=policy.margin,
        )

    clear_lead = runner_up is None or top.total - runner_up.total >= policy.margin
    status = RESOLVED if top.total >= policy.threshold and clear_lead else AMBIGUOUS
    return Resolution(
        query=query,
        status=status,
        candidates=ranked,
        threshold=policy.threshold,
        margin=policy.margin,
        selected=top,
    )
