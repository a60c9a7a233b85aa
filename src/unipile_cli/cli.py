"""Summary: Command-line interface for unipile-cli.

Importance: Provides the automation-safe entry point for messaging workflows.
Alternatives: Use a CLI framework like Typer or Click.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import uvicorn

from unipile_cli.api import create_app
from unipile_cli.app import AppContext, AppServices, build_context
from unipile_cli.config import AppConfig, save_profiles, upsert_profile
from unipile_cli.credentials import SecretStore
from unipile_cli.errors import ProviderApiError, UnipileCliError
from unipile_cli.filters import is_group_chat
from unipile_cli.formatting import (
    OUTPUT_JSON,
    OUTPUT_TEXT,
    format_accounts,
    format_chats,
    format_doctor_checks,
    format_messages,
    format_resolution,
    print_result,
)
from unipile_cli.services import PullRequest, PullResult, ResolveRequest, SendRequest, WatchRequest
from unipile_cli.unipile import MessagingProvider


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNRESOLVED = 2
EXIT_AUTH = 3


@dataclass(frozen=True)
class CommandEnv:
    """Summary: Per-invocation inputs shared by every command handler.

    Importance: Lets tests inject a fake provider and secret store without patching modules.
    Alternatives: Read globals inside each handler.
    """

    config: AppConfig
    output: str
    profile: str | None
    provider: MessagingProvider | None = None
    secret_store: SecretStore | None = None

    def context(self) -> AppContext:
        return build_context(self.config, profile_name=self.profile, secret_store=self.secret_store)

    def services(self) -> AppServices:
        return self.context().services(provider=self.provider)


def _global_options(defaults: bool) -> argparse.ArgumentParser:
    """Summary: Build the global flags accepted before or after the command words."""

    default = None if defaults else argparse.SUPPRESS
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--profile", type=str, default=default)
    common.add_argument(
        "--output", choices=[OUTPUT_TEXT, OUTPUT_JSON], default=OUTPUT_TEXT if defaults else default
    )
    common.add_argument("--json", action="store_true", default=False if defaults else default)
    common.add_argument(
        "--non-interactive",
        action="store_true",
        default=False if defaults else default,
        help="Never prompt (commands are non-interactive already)",
    )
    return common


def _add_oracle_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--no-qmd", action="store_true", help="Disable the semantic oracle")
    parser.add_argument("--qmd-command", type=str, default=None)
    parser.add_argument("--qmd-collection", type=str, default=None)
    parser.add_argument("--threshold", type=float, default=None)
    parser.add_argument("--margin", type=float, default=None)


def _add_inbox_scope_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--account-id", type=str, required=True)
    parser.add_argument("--chat-id", dest="chat_ids", action="append", default=[])
    parser.add_argument("--sender-id", type=str, default=None)
    parser.add_argument("--state-key", type=str, default=None)


def _add_pull_flags(parser: argparse.ArgumentParser) -> None:
    _add_inbox_scope_flags(parser)
    parser.add_argument("--since", type=str, default=None)
    parser.add_argument("--no-state", action="store_true")
    parser.add_argument("--reset-state", action="store_true")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--max-pages", type=int, default=5)


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines every supported command and its flags.
    Alternatives: Parse `--flag value` pairs by hand.
    """

    leaf = _global_options(defaults=False)
    parser = argparse.ArgumentParser(
        prog="unipile", description="Unipile messaging CLI", parents=[_global_options(defaults=True)]
    )
    groups = parser.add_subparsers(dest="group", required=True)

    auth = groups.add_parser("auth", help="Manage profile credentials").add_subparsers(
        dest="action", required=True
    )
    auth_set = auth.add_parser("set", parents=[leaf], help="Store DSN and API key")
    auth_set.add_argument("--dsn", type=str, required=True)
    auth_set.add_argument("--api-key", type=str, required=True)
    auth_set.add_argument("--qmd-collection", type=str, default=None)
    auth_set.add_argument("--qmd-command", type=str, default=None)
    auth_set.add_argument("--threshold", type=float, default=None)
    auth_set.add_argument("--margin", type=float, default=None)
    auth_set.set_defaults(command="auth set")
    auth.add_parser("status", parents=[leaf], help="Show profile status").set_defaults(
        command="auth status"
    )

    accounts = groups.add_parser("accounts", help="Connected accounts").add_subparsers(
        dest="action", required=True
    )
    accounts_list = accounts.add_parser("list", parents=[leaf], help="List accounts")
    accounts_list.add_argument("--provider", type=str, default=None)
    accounts_list.add_argument("--limit", type=int, default=100)
    accounts_list.set_defaults(command="accounts list")

    chats = groups.add_parser("chats", help="Chats").add_subparsers(dest="action", required=True)
    chats_list = chats.add_parser("list", parents=[leaf], help="List chats")
    chats_list.add_argument("--account-id", type=str, required=True)
    chats_list.add_argument("--query", type=str, default=None)
    chats_list.add_argument("--group-only", action="store_true")
    chats_list.add_argument("--limit", type=int, default=250)
    chats_list.set_defaults(command="chats list")

    contacts = groups.add_parser("contacts", help="Contact resolution").add_subparsers(
        dest="action", required=True
    )
    for action in ("search", "resolve"):
        contact = contacts.add_parser(action, parents=[leaf], help=f"{action.title()} contacts")
        contact.add_argument("--account-id", type=str, required=True)
        contact.add_argument("--query", type=str, required=True)
        contact.add_argument("--limit", type=int, default=250)
        contact.add_argument("--max-candidates", type=int, default=5)
        _add_oracle_flags(contact)
        contact.set_defaults(command=f"contacts {action}")

    send = groups.add_parser("send", parents=[leaf], help="Send a message")
    send.add_argument("--account-id", type=str, required=True)
    send.add_argument("--text", type=str, required=True)
    target = send.add_mutually_exclusive_group()
    target.add_argument("--chat-id", type=str, default=None)
    target.add_argument("--attendee-id", type=str, default=None)
    target.add_argument("--to-query", type=str, default=None)
    send.add_argument(
        "--attachment",
        dest="attachments",
        action="append",
        default=[],
        help="File path; repeat or separate with commas",
    )
    _add_oracle_flags(send)
    send.set_defaults(command="send")

    inbox = groups.add_parser("inbox", help="Inbox polling").add_subparsers(
        dest="action", required=True
    )
    pull = inbox.add_parser("pull", parents=[leaf], help="Pull new messages once")
    _add_pull_flags(pull)
    pull.set_defaults(command="inbox pull")
    watch = inbox.add_parser("watch", parents=[leaf], help="Poll for new messages")
    _add_pull_flags(watch)
    watch.add_argument("--interval-seconds", type=float, default=20.0)
    watch.add_argument("--max-iterations", type=int, default=None)
    watch.add_argument("--once", action="store_true")
    watch.set_defaults(command="inbox watch")
    state = inbox.add_parser("state", parents=[leaf], help="Show the stored cursor of a scope")
    _add_inbox_scope_flags(state)
    state.set_defaults(command="inbox state")

    doctor = groups.add_parser("doctor", help="Diagnostics").add_subparsers(
        dest="action", required=True
    )
    doctor_run = doctor.add_parser("run", parents=[leaf], help="Run readiness checks")
    doctor_run.add_argument("--account-id", type=str, default=None)
    doctor_run.add_argument("--qmd-query", type=str, default="recent contact from today")
    doctor_run.add_argument("--skip-qmd", action="store_true")
    doctor_run.set_defaults(command="doctor run")

    serve = groups.add_parser("serve", parents=[leaf], help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(command="serve")
    return parser


def cmd_auth_set(args: argparse.Namespace, env: CommandEnv) -> int:
    context = env.context()
    updated = upsert_profile(
        context.profiles,
        context.profile_name,
        dsn=args.dsn,
        qmd_collection=args.qmd_collection,
        qmd_command=args.qmd_command,
        auto_send_threshold=args.threshold,
        auto_send_margin=args.margin,
    )
    save_profiles(env.config.config_path, updated)
    backend = context.credentials.set_api_key(context.profile_name, args.api_key)
    payload = {"ok": True, "profile": context.profile_name, "dsn": args.dsn, "secret_backend": backend}
    print_result(
        env.output,
        payload,
        lambda: f"Profile: {context.profile_name}\nDSN: {args.dsn}\nAPI key: saved ({backend})",
    )
    return EXIT_OK


def cmd_auth_status(args: argparse.Namespace, env: CommandEnv) -> int:
    context = env.context()
    profile = context.profile
    secret = context.credentials.get_api_key(context.profile_name)
    payload = {
        "profile": context.profile_name,
        "dsn_configured": bool(profile.dsn),
        "api_key_configured": bool(secret.value),
        "secret_backend": secret.backend,
        "qmd_collection": profile.qmd_collection,
        "qmd_command": profile.qmd_command,
    }
    print_result(
        env.output,
        payload,
        lambda: "\n".join(
            [
                f"Profile: {payload['profile']}",
                f"DSN configured: {payload['dsn_configured']}",
                f"API key configured: {payload['api_key_configured']}",
                f"Secret backend: {payload['secret_backend']}",
                f"QMD command: {payload['qmd_command']}",
                f"QMD collection: {payload['qmd_collection']}",
            ]
        ),
    )
    return EXIT_OK


def cmd_accounts_list(args: argparse.Namespace, env: CommandEnv) -> int:
    listing = env.services().accounts.list_accounts(provider=args.provider, limit=args.limit)
    hint = listing.provider_filter.hint if listing.provider_filter else None
    print_result(env.output, listing.to_dict(), lambda: format_accounts(listing.accounts, hint))
    return EXIT_OK


def cmd_chats_list(args: argparse.Namespace, env: CommandEnv) -> int:
    chats = env.services().chats.list_chats(
        args.account_id, query=args.query, group_only=args.group_only, limit=args.limit
    )
    payload = {
        "account_id": args.account_id,
        "count": len(chats),
        "query": args.query,
        "group_only": args.group_only,
        "chats": [{**chat.to_dict(), "is_group": is_group_chat(chat)} for chat in chats],
    }
    print_result(env.output, payload, lambda: format_chats(chats))
    return EXIT_OK


def _contacts(args: argparse.Namespace, env: CommandEnv, resolve_only: bool) -> int:
    result = env.services().contacts.resolve(
        ResolveRequest(
            account_id=args.account_id,
            query=args.query,
            threshold=args.threshold,
            margin=args.margin,
            max_candidates=args.max_candidates,
            use_oracle=not args.no_qmd,
            oracle_command=args.qmd_command,
            oracle_collection=args.qmd_collection,
            limit=args.limit,
        )
    )
    print_result(
        env.output, result.to_dict(), lambda: format_resolution(result.resolution, result.oracle)
    )
    if resolve_only and not result.resolved:
        return EXIT_UNRESOLVED
    return EXIT_OK


def cmd_contacts_search(args: argparse.Namespace, env: CommandEnv) -> int:
    return _contacts(args, env, resolve_only=False)


def cmd_contacts_resolve(args: argparse.Namespace, env: CommandEnv) -> int:
    return _contacts(args, env, resolve_only=True)


def cmd_send(args: argparse.Namespace, env: CommandEnv) -> int:
    attachments = tuple(
        Path(part.strip())
        for value in args.attachments
        for part in value.split(",")
        if part.strip()
    )
    outcome = env.services().sender.send(
        SendRequest(
            account_id=args.account_id,
            text=args.text,
            chat_id=args.chat_id,
            attendee_id=args.attendee_id,
            to_query=args.to_query,
            attachments=attachments,
            threshold=args.threshold,
            margin=args.margin,
            use_oracle=not args.no_qmd,
            oracle_command=args.qmd_command,
            oracle_collection=args.qmd_collection,
        )
    )

    def render() -> str:
        if outcome.blocked and outcome.contact is not None:
            details = format_resolution(outcome.contact.resolution, outcome.contact.oracle)
            return f"Send blocked: {outcome.reason}\n\n{details}"
        if outcome.mode == "new_chat_whatsapp_phone":
            return f"Sent message to {args.to_query} via direct WhatsApp phone routing."
        if outcome.mode == "new_chat" and outcome.attendee is not None:
            return f"Started new chat with {outcome.attendee.name}. chat_id={outcome.chat_id or ''}"
        return f"Sent message to chat {outcome.chat_id}. message_id={outcome.message_id or ''}"

    print_result(env.output, outcome.to_dict(), render)
    return EXIT_UNRESOLVED if outcome.blocked else EXIT_OK


def _pull_request(args: argparse.Namespace) -> PullRequest:
    return PullRequest(
        account_id=args.account_id,
        chat_ids=tuple(args.chat_ids),
        sender_id=args.sender_id,
        state_key=args.state_key,
        since=getattr(args, "since", None),
        use_state=not getattr(args, "no_state", False),
        reset_state=getattr(args, "reset_state", False),
        limit=getattr(args, "limit", 100),
        max_pages=getattr(args, "max_pages", 5),
    )


def cmd_inbox_pull(args: argparse.Namespace, env: CommandEnv) -> int:
    result = env.services().inbox.pull(_pull_request(args))
    print_result(env.output, result.to_dict(), lambda: format_messages(result.messages))
    return EXIT_OK


def cmd_inbox_watch(args: argparse.Namespace, env: CommandEnv) -> int:
    def on_round(result: PullResult, round_number: int) -> None:
        if not result.messages:
            return
        payload = {"mode": "watch_event", "poll_index": round_number, **result.to_dict()}
        print_result(env.output, payload, lambda: format_messages(result.messages))

    summary = env.services().inbox.watch(
        WatchRequest(
            pull=_pull_request(args),
            interval_seconds=args.interval_seconds,
            max_iterations=args.max_iterations,
            once=args.once,
        ),
        on_round=on_round,
    )
    print_result(
        env.output,
        summary.to_dict(),
        lambda: "\n".join(
            [
                "Watch completed.",
                f"Account: {summary.account_id}",
                f"Scope: {summary.scope_key}",
                f"Polls: {summary.rounds}",
                f"New messages: {summary.total_new}",
                f"Last cursor: {summary.last_cursor or '(none)'}",
            ]
        ),
    )
    return EXIT_OK


def cmd_inbox_state(args: argparse.Namespace, env: CommandEnv) -> int:
    scope_key, state = env.services().inbox.scope_state(_pull_request(args))
    payload = {
        "scope_key": scope_key,
        "found": state is not None,
        "since_cursor": state.since_cursor if state else None,
        "updated_at": state.updated_at if state else None,
    }
    print_result(
        env.output,
        payload,
        lambda: (
            f"Scope: {scope_key}\nCursor: {state.since_cursor or '(none)'}\nUpdated: {state.updated_at}"
            if state
            else f"Scope: {scope_key}\nNo stored state."
        ),
    )
    return EXIT_OK


def cmd_doctor_run(args: argparse.Namespace, env: CommandEnv) -> int:
    context = env.context()
    provider_factory = (lambda: env.provider) if env.provider is not None else None
    report = context.doctor(provider_factory=provider_factory).run(
        account_id=args.account_id, oracle_query=args.qmd_query, skip_oracle=args.skip_qmd
    )
    payload = report.to_dict()
    print_result(env.output, payload, lambda: format_doctor_checks(payload["checks"], report.summary))
    return EXIT_ERROR if report.summary == "fail" else EXIT_OK


def cmd_serve(args: argparse.Namespace, env: CommandEnv) -> int:
    app = create_app(env.config, profile_name=env.profile, secret_store=env.secret_store)
    uvicorn.run(app, host=args.host or env.config.api_host, port=args.port or env.config.api_port)
    return EXIT_OK


COMMANDS: list[tuple[str, Callable[[argparse.Namespace, CommandEnv], int]]] = [
    ("auth set", cmd_auth_set),
    ("auth status", cmd_auth_status),
    ("accounts list", cmd_accounts_list),
    ("chats list", cmd_chats_list),
    ("contacts search", cmd_contacts_search),
    ("contacts resolve", cmd_contacts_resolve),
    ("send", cmd_send),
    ("inbox pull", cmd_inbox_pull),
    ("inbox watch", cmd_inbox_watch),
    ("inbox state", cmd_inbox_state),
    ("doctor run", cmd_doctor_run),
    ("serve", cmd_serve),
]


def run_cli(
    argv: list[str] | None = None,
    provider: MessagingProvider | None = None,
    secret_store: SecretStore | None = None,
) -> int:
    """Summary: Execute a CLI command and return its exit code.

    Importance: Maps typed errors to stable exit codes for automation (1 error, 2 unresolved, 3 auth).
    Alternatives: Let exceptions escape with tracebacks.
    """

    args = build_parser().parse_args(argv)
    handlers = dict(COMMANDS)
    try:
        config = AppConfig.from_env()
        logging.basicConfig(
            level=getattr(logging, config.log_level, logging.WARNING),
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
        env = CommandEnv(
            config=config,
            output=OUTPUT_JSON if args.json else args.output,
            profile=args.profile,
            provider=provider,
            secret_store=secret_store,
        )
        return handlers[args.command](args, env)
    except ProviderApiError as exc:
        print(str(exc), file=sys.stderr)
        if exc.error_type:
            print(f"type={exc.error_type}", file=sys.stderr)
        return EXIT_AUTH if exc.is_auth_error else EXIT_ERROR
    except UnipileCliError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_ERROR


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
