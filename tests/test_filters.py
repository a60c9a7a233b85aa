"""Summary: Tests for provider filters, group detection, and phone routing helpers."""

from __future__ import annotations

import pytest

from unipile_cli.filters import (
    is_group_chat,
    levenshtein_distance,
    normalize_provider_token,
    resolve_provider_filter,
    to_whatsapp_provider_id,
)
from unipile_cli.models import Chat


TYPES = ["WHATSAPP", "LINKEDIN", "TELEGRAM"]


def test_normalize_and_distance() -> None:
    assert normalize_provider_token(" whats-app ") == "WHATSAPP"
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("same", "same") == 0


def test_provider_filter_exact_typo_and_unknown() -> None:
    """Summary: Exact matches are silent, typos are corrected with a hint, unknowns list options.

    Importance: Operators should see how their filter was interpreted.
    Alternatives: Reject anything that is not an exact type.
    """

    exact = resolve_provider_filter("whatsapp", TYPES)
    assert (exact.resolved, exact.hint) == ("WHATSAPP", None)

    typo = resolve_provider_filter("linkdin", TYPES)
    assert typo.resolved == "LINKEDIN"
    assert typo.hint == 'Provider "linkdin" interpreted as "LINKEDIN".'

    unknown = resolve_provider_filter("signal", TYPES)
    assert unknown.resolved is None
    assert unknown.hint == 'Unknown provider "signal". Available types: WHATSAPP, LINKEDIN, TELEGRAM'

    assert resolve_provider_filter("signal", []).hint == 'Unknown provider "signal".'


@pytest.mark.parametrize(
    ("chat", "expected"),
    [
        (Chat(id="c", account_id="a", account_type="WHATSAPP", provider_id="123@g.us"), True),
        (
            Chat(
                id="c",
                account_id="a",
                account_type="WHATSAPP",
                provider_id="447700900123@s.whatsapp.net",
            ),
            False,
        ),
        (Chat(id="c", account_id="a", account_type="WHATSAPP", type=1, attendee_provider_id="x"), True),
        (Chat(id="c", account_id="a", account_type="WHATSAPP", type=0), False),
        (Chat(id="c", account_id="a", account_type="LINKEDIN", attendee_provider_id="p-1"), False),
        (Chat(id="c", account_id="a", account_type="LINKEDIN"), True),
        (Chat(id="c", account_id="a", account_type="LINKEDIN", raw={"is_group": False}), False),
    ],
)
def test_is_group_chat(chat: Chat, expected: bool) -> None:
    assert is_group_chat(chat) is expected


def test_whatsapp_provider_id_requires_enough_digits() -> None:
    assert to_whatsapp_provider_id("+44 7700 900-123") == "447700900123@s.whatsapp.net"
    assert to_whatsapp_provider_id("555-0100") is None
    assert to_whatsapp_provider_id("John") is None
    assert to_whatsapp_provider_id(None) is None
