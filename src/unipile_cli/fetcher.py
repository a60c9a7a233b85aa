"""Summary: Paginated, scoped message fetching.

Importance: Hides account-wide versus per-chat listing and cursor following behind one call.
Alternatives: Let the poll orchestrator page through the provider directly.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, TypeVar

from unipile_cli.models import ListPage, Message
from unipile_cli.unipile import MessagingProvider


logger = logging.getLogger(__name__)

T = TypeVar("T")


def paginate(fetch_page: Callable[[str | None], ListPage[T]], max_pages: int) -> list[T]:
    """Summary: Follow continuation cursors and collect items.

    Importance: Stops on an empty cursor, an empty page, a repeated cursor, or the page cap so a misbehaving provider cannot loop forever.
    Alternatives: Trust the provider to eventually return no cursor.
    """

    items: list[T] = []
    cursor: str | None = None
    seen_cursors: set[str] = set()
    for _ in range(max(1, max_pages)):
        page = fetch_page(cursor)
        items.extend(page.items)
        if not page.items or not page.cursor:
            break
        if page.cursor in seen_cursors:
            logger.warning("Pagination cursor %s repeated; stopping.", page.cursor)
            break
        seen_cursors.add(page.cursor)
        cursor = page.cursor
    return items


def dedupe_messages(messages: Iterable[Message]) -> list[Message]:
    """Summary: Drop repeated (account_id, id) pairs, keeping the first occurrence."""

    seen: set[tuple[str, str]] = set()
    unique: list[Message] = []
    for message in messages:
        key = (message.account_id, message.id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(message)
    return unique


class MessageFetcher:
    """Summary: Fetches messages for a poll scope from the messaging provider.

    Importance: One account-wide stream without chat filters, one stream per chat otherwise.
    Alternatives: Always fetch per chat by listing chats first.
    """

    def __init__(self, provider: MessagingProvider) -> None:
        self._provider = provider

    def fetch(
        self,
        account_id: str,
        chat_ids: Iterable[str] = (),
        sender_id: str | None = None,
        since: str | None = None,
        page_size: int = 100,
        max_pages: int = 5,
    ) -> list[Message]:
        """Summary: Fetch, filter, and dedupe messages for a scope.

        Importance: Provider errors propagate unchanged; retrying is the caller's decision.
        Alternatives: Swallow per-chat failures and return partial results.
        """

        chat_ids = list(chat_ids)
        collected: list[Message] = []
        if not chat_ids:
            collected.extend(
                paginate(
                    lambda cursor: self._provider.list_messages(
                        account_id,
                        limit=page_size,
                        cursor=cursor,
                        after=since,
                        sender_id=sender_id,
                    ),
                    max_pages,
                )
            )
        else:
            for chat_id in chat_ids:
                collected.extend(
                    paginate(
                        lambda cursor, chat_id=chat_id: self._provider.list_chat_messages(
                            chat_id,
                            limit=page_size,
                            cursor=cursor,
                            after=since,
                            sender_id=sender_id,
                        ),
                        max_pages,
                    )
                )
        messages = [_with_account(message, account_id) for message in collected]
        if sender_id:
            messages = [message for message in messages if message.sender_id == sender_id]
        return dedupe_messages(messages)


def _with_account(message: Message, account_id: str) -> Message:
    if message.account_id:
        return message
    return replace(message, account_id=account_id)
