"""Summary: Output rendering for CLI commands.

Importance: Keeps JSON output machine-parseable and text output readable from one call site.
Alternatives: Use a table library such as rich.
"""

from __future__ import annotations

import json
from typing import Any, Callable, TextIO

from unipile_cli.filters import is_group_chat
from unipile_cli.models import Account, Chat, Message, OracleResult, Resolution


OUTPUT_TEXT = "text"
OUTPUT_JSON = "json"


def print_result(
    mode: str,
    payload: Any,
    render_text: Callable[[], str],
    stream: TextIO | None = None,
) -> None:
    """Summary: Print a command result as indented JSON or human-readable text.

    Importance: Scripts parse stdout; logs stay on stderr.
    Alternatives: Print JSON only.
    """

    if mode == OUTPUT_JSON:
        text = json.dumps(payload, indent=2, default=str)
    else:
        text = render_text()
    print(text, file=stream)


def format_accounts(accounts: list[Account], hint: str | None = None) -> str:
    lines: list[str] = []
    if hint:
        lines.extend([hint, ""])
    if not accounts:
        lines.append("No accounts found.")
        return "\n".join(lines)
    lines.append("Accounts:")
    lines.extend(f"- {account.id}  {account.type}  {account.name}" for account in accounts)
    return "\n".join(lines)


def format_chats(chats: list[Chat]) -> str:
    if not chats:
        return "No chats found."
    lines = ["Chats:"]
    for chat in chats:
        label = "group" if is_group_chat(chat) else "direct"
        lines.append(
            f"- {chat.id}  [{label}]  {chat.name or '(no name)'}  unread={chat.unread_count}"
        )
    return "\n".join(lines)


def format_messages(messages: list[Message]) -> str:
    if not messages:
        return "No messages found."
    lines = ["Messages:"]
    for message in messages:
        lines.append(
            f"- {message.timestamp or ''} chat={message.chat_id or ''} message={message.id} "
            f"sender={message.sender_id or ''} text={message.text or ''}"
        )
    return "\n".join(lines)


def format_resolution(resolution: Resolution, oracle: OracleResult) -> str:
    """Summary: Render a resolution with per-signal scores for every candidate.

    Importance: Operators need to see why a send was blocked.
    Alternatives: Print only the status.
    """

    lines = [f"Query: {resolution.query}", f"Status: {resolution.status}"]
    if oracle.available:
        lines.append(f"QMD: available ({len(oracle.hits)} hit(s))")
    else:
        lines.append(f"QMD: unavailable ({oracle.error or 'unknown error'})")
    if resolution.selected is not None:
        top = resolution.selected
        lines.append(
            f"Top match: {top.attendee.name} [attendee_id={top.attendee.id} "
            f"provider_id={top.attendee.provider_id}] score={top.total:.3f}"
        )
    if resolution.candidates:
        lines.append("Candidates:")
        for candidate in resolution.candidates:
            lines.append(
                f"- {candidate.attendee.name} ({candidate.attendee.id}) "
                f"total={candidate.total:.3f} lexical={candidate.lexical:.3f} "
                f"recency={candidate.recency:.3f} qmd={candidate.semantic:.3f} "
                f"[{','.join(candidate.reasons)}]"
            )
    return "\n".join(lines)


def format_doctor_checks(checks: list[dict[str, str]], summary: str) -> str:
    headline = {
        "fail": "Doctor result: FAIL",
        "pass_with_warnings": "Doctor result: PASS_WITH_WARNINGS",
    }.get(summary, "Doctor result: PASS")
    lines = [headline, "", "Checks:"]
    for check in checks:
        lines.append(f"- [{check['status'].upper()}] {check['name']}: {check['detail']}")
    return "\n".join(lines)
