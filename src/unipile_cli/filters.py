"""Summary: Provider-type matching, group detection, and phone routing helpers.

Importance: Keeps the small heuristics used by accounts, chats, and send commands testable in one place.
Alternatives: Inline the heuristics in each CLI handler.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from unipile_cli.models import Chat


MAX_PROVIDER_TYPO_DISTANCE = 2
MIN_PHONE_DIGITS = 8
WHATSAPP = "WHATSAPP"

_NON_TOKEN = re.compile(r"[^A-Z0-9]")
_NON_DIGIT = re.compile(r"[^0-9]")


@dataclass(frozen=True)
class ProviderFilter:
    """Summary: Outcome of matching a user-typed provider name to known account types."""

    requested: str
    resolved: str | None = None
    hint: str | None = None


def normalize_provider_token(value: str) -> str:
    return _NON_TOKEN.sub("", value.strip().upper())


def levenshtein_distance(left: str, right: str) -> int:
    """Summary: Compute the edit distance between two strings.

    Importance: Tolerates small typos such as "whatsap" or "linkdin".
    Alternatives: Use difflib.get_close_matches ratios.
    """

    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def resolve_provider_filter(value: str, available_types: list[str]) -> ProviderFilter:
    """Summary: Map a provider filter to one of the available account types.

    Importance: Accepts case and punctuation differences plus close typos, and explains the interpretation.
    Alternatives: Require the exact provider type string.
    """

    requested = normalize_provider_token(value)
    if not requested:
        return ProviderFilter(requested=requested)
    canonical_by_token: dict[str, str] = {}
    for provider_type in available_types:
        token = normalize_provider_token(provider_type)
        if token and token not in canonical_by_token:
            canonical_by_token[token] = provider_type
    if requested in canonical_by_token:
        return ProviderFilter(requested=requested, resolved=canonical_by_token[requested])

    best_token: str | None = None
    best_distance = 0
    for token in canonical_by_token:
        distance = levenshtein_distance(requested, token)
        if best_token is None or distance < best_distance:
            best_token, best_distance = token, distance
    if best_token is not None and best_distance <= MAX_PROVIDER_TYPO_DISTANCE:
        canonical = canonical_by_token[best_token]
        return ProviderFilter(
            requested=requested,
            resolved=canonical,
            hint=f'Provider "{value}" interpreted as "{canonical}".',
        )
    if canonical_by_token:
        available = ", ".join(canonical_by_token.values())
        return ProviderFilter(
            requested=requested,
            hint=f'Unknown provider "{value}". Available types: {available}',
        )
    return ProviderFilter(requested=requested, hint=f'Unknown provider "{value}".')


def is_group_chat(chat: Chat) -> bool:
    """Summary: Decide whether a chat is a group conversation.

    Importance: WhatsApp identifiers are precise; other providers fall back to a missing counterpart.
    Alternatives: Trust the provider's chat type everywhere.
    """

    explicit = chat.raw.get("is_group")
    if isinstance(explicit, bool):
        return explicit
    if chat.account_type.upper() == WHATSAPP:
        provider_id = chat.provider_id or ""
        if provider_id.endswith("@g.us"):
            return True
        if provider_id.endswith("@s.whatsapp.net"):
            return False
        if chat.type == 1:
            return True
        if chat.type == 0:
            return False
    return not chat.attendee_provider_id


def to_whatsapp_provider_id(value: str | None) -> str | None:
    """Summary: Convert a phone-like string into a WhatsApp attendee provider ID.

    Importance: Lets `send --to-query +1 555 0100 200` start a chat without a directory lookup.
    Alternatives: Always resolve through chat attendees.
    """

    if not value:
        return None
    digits = _NON_DIGIT.sub("", value)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return f"{digits}@s.whatsapp.net"
