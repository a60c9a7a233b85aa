"""Summary: Core application services for unipile-cli.

Importance: Orchestrates account listing, contact resolution, sending, inbox polling, and diagnostics.
Alternatives: Put the orchestration directly in the CLI handlers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from unipile_cli.errors import ProviderApiError, StateStoreUnavailableError, UnipileCliError
from unipile_cli.fetcher import MessageFetcher, paginate
from unipile_cli.filters import (
    ProviderFilter,
    is_group_chat,
    normalize_provider_token,
    resolve_provider_filter,
    to_whatsapp_provider_id,
)
from unipile_cli.models import (
    Account,
    Attendee,
    Chat,
    Message,
    OracleResult,
    PersistedScopeState,
    PollScope,
    Resolution,
)
from unipile_cli.oracle import OracleFactory
from unipile_cli.resolver import RESOLVED, ResolutionPolicy, resolve_contacts
from unipile_cli.scope import (
    build_scope,
    build_scope_key,
    compute_next_since_cursor,
    epoch_seconds,
)
from unipile_cli.storage.inbox_state import InboxState, InboxStateStore, MemoryInboxState, utc_now
from unipile_cli.unipile import MessagingProvider, SendReceipt


logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 250
DEFAULT_CONTEXT_PAGES = 4


@dataclass(frozen=True)
class AccountListing:
    accounts: list[Account]
    provider_filter: ProviderFilter | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": len(self.accounts),
            "accounts": [account.to_dict() for account in self.accounts],
            "provider_requested": self.provider_filter.requested if self.provider_filter else None,
            "provider_resolved": self.provider_filter.resolved if self.provider_filter else None,
            "provider_hint": self.provider_filter.hint if self.provider_filter else None,
        }


@dataclass(frozen=True)
class AccountService:
    """Summary: Lists connected accounts with an optional provider-type filter.

    Importance: Lets operators find account IDs for every other command.
    Alternatives: Print the raw provider response.
    """

    provider: MessagingProvider

    def list_accounts(self, provider: str | None = None, limit: int = 100) -> AccountListing:
        accounts = self.provider.list_accounts(limit=limit).items
        if provider is None:
            return AccountListing(accounts=accounts)
        provider_filter = resolve_provider_filter(provider, [account.type for account in accounts])
        if provider_filter.resolved is None:
            return AccountListing(accounts=[], provider_filter=provider_filter)
        wanted = normalize_provider_token(provider_filter.resolved)
        filtered = [
            account for account in accounts if normalize_provider_token(account.type) == wanted
        ]
        return AccountListing(accounts=filtered, provider_filter=provider_filter)


@dataclass(frozen=True)
class ChatListService:
    """Summary: Lists chats of an account with name and group filters."""

    provider: MessagingProvider

    def list_chats(
        self,
        account_id: str,
        query: str | None = None,
        group_only: bool = False,
        limit: int = DEFAULT_CONTEXT_LIMIT,
    ) -> list[Chat]:
        needle = (query or "").strip().lower()
        chats = self.provider.list_chats(account_id, limit=limit).items
        selected: list[Chat] = []
        for chat in chats:
            if group_only and not is_group_chat(chat):
                continue
            if needle and needle not in f"{chat.name or ''} {chat.id}".lower():
                continue
            selected.append(chat)
        return selected


@dataclass(frozen=True)
class ResolutionContext:
    attendees: list[Attendee]
    chats: list[Chat]


@dataclass(frozen=True)
class ResolveRequest:
    """Summary: Inputs for one contact search or resolution call."""

    account_id: str
    query: str
    threshold: float | None = None
    margin: float | None = None
    max_candidates: int = 5
    use_oracle: bool = True
    oracle_command: str | None = None
    oracle_collection: str | None = None
    limit: int = DEFAULT_CONTEXT_LIMIT


@dataclass(frozen=True)
class ContactResolution:
    account_id: str
    attendee_count: int
    chat_count: int
    oracle: OracleResult
    resolution: Resolution

    @property
    def resolved(self) -> bool:
        return self.resolution.status == RESOLVED and self.resolution.selected is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "attendee_count": self.attendee_count,
            "chat_count": self.chat_count,
            "qmd": self.oracle.to_dict(),
            "resolution": self.resolution.to_dict(),
        }


@dataclass(frozen=True)
class ContactService:
    """Summary: Resolves free-text recipient queries against an account's attendees.

    Importance: Combines provider data, the semantic oracle, and the profile policy into one decision.
    Alternatives: Resolve contacts client-side in the CLI handler.
    """

    provider: MessagingProvider
    oracle_factory: OracleFactory
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)

    def load_context(
        self,
        account_id: str,
        limit: int = DEFAULT_CONTEXT_LIMIT,
        max_pages: int = DEFAULT_CONTEXT_PAGES,
    ) -> ResolutionContext:
        """Summary: Fetch the attendee and chat pools used for ranking.

        Importance: Follows pagination so large address books are fully considered.
        Alternatives: Rank only the first page of attendees.
        """

        attendees = paginate(
            lambda cursor: self.provider.list_attendees(account_id, limit=limit, cursor=cursor),
            max_pages,
        )
        chats = paginate(
            lambda cursor: self.provider.list_chats(account_id, limit=limit, cursor=cursor),
            max_pages,
        )
        return ResolutionContext(attendees=attendees, chats=chats)

    def query_oracle(
        self,
        query: str,
        enabled: bool = True,
        command: str | None = None,
        collection: str | None = None,
    ) -> OracleResult:
        oracle = self.oracle_factory.build(enabled=enabled, command=command, collection=collection)
        return oracle.query(query)

    def resolve(
        self, request: ResolveRequest, context: ResolutionContext | None = None
    ) -> ContactResolution:
        """Summary: Rank candidates for a query and decide whether one is safe to act on.

        Importance: Oracle failure never blocks resolution; it only removes the semantic signal.
        Alternatives: Require the oracle for every resolution.
        """

        context = context or self.load_context(request.account_id, limit=request.limit)
        oracle_result = self.query_oracle(
            request.query,
            enabled=request.use_oracle,
            command=request.oracle_command,
            collection=request.oracle_collection,
        )
        policy = self.policy.with_overrides(
            threshold=request.threshold,
            margin=request.margin,
            max_candidates=request.max_candidates,
        )
        resolution = resolve_contacts(
            request.query, context.attendees, context.chats, oracle_result, policy
        )
        return ContactResolution(
            account_id=request.account_id,
            attendee_count=len(context.attendees),
            chat_count=len(context.chats),
            oracle=oracle_result,
            resolution=resolution,
        )


@dataclass(frozen=True)
class SendRequest:
    """Summary: Inputs for one send command."""

    account_id: str
    text: str
    chat_id: str | None = None
    attendee_id: str | None = None
    to_query: str | None = None
    attachments: tuple[Path, ...] = ()
    threshold: float | None = None
    margin: float | None = None
    use_oracle: bool = True
    oracle_command: str | None = None
    oracle_collection: str | None = None


@dataclass(frozen=True)
class SendOutcome:
    """Summary: Result of a send attempt, either sent or blocked by resolution."""

    status: str
    mode: str | None
    account_id: str
    chat_id: str | None = None
    message_id: str | None = None
    attendee: Attendee | None = None
    target_provider_id: str | None = None
    reason: str | None = None
    contact: ContactResolution | None = None
    attachments_count: int = 0

    @property
    def blocked(self) -> bool:
        return self.status == "blocked"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "mode": self.mode,
            "account_id": self.account_id,
            "chat_id": self.chat_id,
            "message_id": self.message_id,
            "attachments_count": self.attachments_count,
        }
        if self.attendee is not None:
            payload["attendee_id"] = self.attendee.id
            payload["attendee_provider_id"] = self.attendee.provider_id
        if self.target_provider_id:
            payload["target_provider_id"] = self.target_provider_id
        if self.reason:
            payload["reason"] = self.reason
        if self.contact is not None:
            payload["resolution"] = self.contact.to_dict()
        return payload


@dataclass(frozen=True)
class SendService:
    """Summary: Sends messages by chat ID, attendee ID, phone number, or resolved query.

    Importance: Refuses to send unless the recipient resolution is confident.
    Alternatives: Ask interactively which candidate to use.
    """

    provider: MessagingProvider
    contacts: ContactService

    def send(self, request: SendRequest) -> SendOutcome:
        attachments = _check_attachments(request.attachments)
        if request.chat_id:
            receipt = self.provider.send_message(
                request.chat_id, request.text, account_id=request.account_id, attachments=attachments
            )
            return self._sent("existing_chat", request, receipt, chat_id=request.chat_id)

        phone_target = to_whatsapp_provider_id(request.to_query)
        if request.to_query and phone_target and not request.attendee_id:
            try:
                receipt = self.provider.start_chat(
                    request.account_id, [phone_target], text=request.text, attachments=attachments
                )
            except ProviderApiError as exc:
                logger.info("Direct phone routing failed (%s); resolving contact instead.", exc)
            else:
                return self._sent(
                    "new_chat_whatsapp_phone", request, receipt, target_provider_id=phone_target
                )

        context = self.contacts.load_context(request.account_id)
        contact: ContactResolution | None = None
        if request.attendee_id:
            attendee = next(
                (
                    item
                    for item in context.attendees
                    if request.attendee_id in (item.id, item.provider_id)
                ),
                None,
            )
            if attendee is None:
                raise UnipileCliError(
                    f'Attendee "{request.attendee_id}" not found in account {request.account_id}. '
                    "Use contacts search first."
                )
        elif request.to_query:
            contact = self.contacts.resolve(
                ResolveRequest(
                    account_id=request.account_id,
                    query=request.to_query,
                    threshold=request.threshold,
                    margin=request.margin,
                    use_oracle=request.use_oracle,
                    oracle_command=request.oracle_command,
                    oracle_collection=request.oracle_collection,
                ),
                context=context,
            )
            if not contact.resolved:
                return SendOutcome(
                    status="blocked",
                    mode=None,
                    account_id=request.account_id,
                    reason=contact.resolution.status,
                    contact=contact,
                    attachments_count=len(attachments),
                )
            attendee = contact.resolution.selected.attendee
        else:
            raise UnipileCliError("send requires one of --chat-id, --attendee-id, or --to-query.")

        existing = next(
            (
                chat
                for chat in context.chats
                if chat.attendee_provider_id and chat.attendee_provider_id == attendee.provider_id
            ),
            None,
        )
        if existing is not None:
            receipt = self.provider.send_message(
                existing.id, request.text, account_id=request.account_id, attachments=attachments
            )
            return self._sent(
                "existing_chat", request, receipt, chat_id=existing.id, attendee=attendee, contact=contact
            )
        receipt = self.provider.start_chat(
            request.account_id, [attendee.provider_id], text=request.text, attachments=attachments
        )
        return self._sent("new_chat", request, receipt, attendee=attendee, contact=contact)

    def _sent(
        self,
        mode: str,
        request: SendRequest,
        receipt: SendReceipt,
        chat_id: str | None = None,
        attendee: Attendee | None = None,
        contact: ContactResolution | None = None,
        target_provider_id: str | None = None,
    ) -> SendOutcome:
        return SendOutcome(
            status="sent",
            mode=mode,
            account_id=request.account_id,
            chat_id=receipt.chat_id or chat_id,
            message_id=receipt.message_id,
            attendee=attendee,
            target_provider_id=target_provider_id,
            contact=contact,
            attachments_count=len(request.attachments),
        )


def _check_attachments(paths: tuple[Path, ...]) -> list[Path]:
    missing = [str(path) for path in paths if not Path(path).is_file()]
    if missing:
        raise UnipileCliError(f"Attachment not found: {', '.join(missing)}")
    return [Path(path) for path in paths]


@dataclass(frozen=True)
class PullRequest:
    """Summary: Inputs for one inbox pull round."""

    account_id: str
    chat_ids: tuple[str, ...] = ()
    sender_id: str | None = None
    state_key: str | None = None
    since: str | None = None
    use_state: bool = True
    reset_state: bool = False
    limit: int = 100
    max_pages: int = 5


@dataclass(frozen=True)
class PullResult:
    """Summary: Outcome of one pull round for a scope.

    Importance: Reports only scope-novel messages plus the counters needed to audit dedupe.
    Alternatives: Return every fetched message and let callers dedupe.
    """

    scope_key: str
    account_id: str
    state_used: bool
    since: str | None
    next_cursor: str | None
    messages: list[Message]
    fetched: int
    new_in_store: int
    new_for_scope: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "scope_key": self.scope_key,
            "state_used": self.state_used,
            "since": self.since,
            "next_since_cursor": self.next_cursor,
            "fetched": self.fetched,
            "new_in_store": self.new_in_store,
            "new_for_scope": self.new_for_scope,
            "count": len(self.messages),
            "messages": [message.to_dict() for message in self.messages],
        }


@dataclass(frozen=True)
class WatchRequest:
    pull: PullRequest
    interval_seconds: float = 20.0
    max_iterations: int | None = None
    once: bool = False


@dataclass(frozen=True)
class WatchSummary:
    scope_key: str
    account_id: str
    state_used: bool
    rounds: int
    total_new: int
    last_cursor: str | None
    interrupted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": "watch_done",
            "account_id": self.account_id,
            "scope_key": self.scope_key,
            "state_used": self.state_used,
            "polls": self.rounds,
            "total_new_messages": self.total_new,
            "last_since_cursor": self.last_cursor,
            "interrupted": self.interrupted,
        }


@dataclass(frozen=True)
class InboxService:
    """Summary: Stateful, idempotent inbox polling for pull and watch commands.

    Importance: Delivers each message at most once per scope across runs, restarts, and pagination strategies.
    Alternatives: Track seen IDs in memory for the life of one process only.
    """

    fetcher: MessageFetcher
    profile_name: str
    state_db_path: str
    clock: Callable[[], datetime] = utc_now

    def scope_for(self, request: PullRequest) -> tuple[PollScope, str]:
        scope = build_scope(
            self.profile_name,
            request.account_id,
            chat_ids=request.chat_ids,
            sender_id=request.sender_id,
            custom_key=request.state_key,
        )
        return scope, build_scope_key(scope)

    def open_state(self, use_state: bool) -> InboxState:
        """Summary: Open the durable store, or per-run memory when state is disabled.

        Importance: The store is opened once per command and shared by every round.
        Alternatives: Reopen the database on each round.
        """

        if not use_state:
            return MemoryInboxState()
        return InboxStateStore.open(self.state_db_path, clock=self.clock)

    def pull(self, request: PullRequest) -> PullResult:
        scope, scope_key = self.scope_for(request)
        with self.open_state(request.use_state) as state:
            if request.reset_state:
                state.reset_scope(scope_key)
            return self._pull_round(state, scope, scope_key, request, request.since)

    def watch(
        self,
        request: WatchRequest,
        on_round: Callable[[PullResult, int], None],
        sleep: Callable[[float], None] = time.sleep,
    ) -> WatchSummary:
        """Summary: Repeat pull rounds at a fixed interval until a stop condition.

        Importance: State is committed after every round, so an interrupted watch resumes where it stopped.
        Alternatives: Run pull from cron.
        """

        if request.interval_seconds <= 0:
            raise UnipileCliError("--interval-seconds must be greater than 0.")
        if request.max_iterations is not None and request.max_iterations < 1:
            raise UnipileCliError("--max-iterations must be at least 1.")
        pull = request.pull
        scope, scope_key = self.scope_for(pull)
        rounds = 0
        total_new = 0
        cursor: str | None = pull.since
        interrupted = False
        with self.open_state(pull.use_state) as state:
            if pull.reset_state:
                state.reset_scope(scope_key)
            try:
                while True:
                    explicit_since = pull.since if rounds == 0 else None
                    result = self._pull_round(state, scope, scope_key, pull, explicit_since)
                    rounds += 1
                    total_new += len(result.messages)
                    cursor = result.next_cursor
                    on_round(result, rounds)
                    if request.once:
                        break
                    if request.max_iterations is not None and rounds >= request.max_iterations:
                        break
                    sleep(request.interval_seconds)
            except KeyboardInterrupt:
                interrupted = True
                logger.info("Watch interrupted after %s round(s).", rounds)
        logger.info("Watch finished: %s round(s), %s new message(s).", rounds, total_new)
        return WatchSummary(
            scope_key=scope_key,
            account_id=pull.account_id,
            state_used=pull.use_state,
            rounds=rounds,
            total_new=total_new,
            last_cursor=cursor,
            interrupted=interrupted,
        )

    def scope_state(self, request: PullRequest) -> tuple[str, PersistedScopeState | None]:
        """Summary: Look up the stored cursor row for a scope without pulling."""

        _, scope_key = self.scope_for(request)
        store = InboxStateStore.open(self.state_db_path)
        with store:
            return scope_key, store.get_scope_state(scope_key)

    def _pull_round(
        self,
        state: InboxState,
        scope: PollScope,
        scope_key: str,
        request: PullRequest,
        explicit_since: str | None,
    ) -> PullResult:
        since = explicit_since or state.get_cursor(scope_key)
        fetched = self.fetcher.fetch(
            request.account_id,
            chat_ids=scope.chat_ids,
            sender_id=scope.sender_id,
            since=since,
            page_size=request.limit,
            max_pages=request.max_pages,
        )
        ordered = sorted(fetched, key=lambda message: (epoch_seconds(message.timestamp), message.id))
        fresh: list[Message] = []
        new_in_store = 0
        for message in ordered:
            persisted = state.persist_message(scope_key, message)
            if persisted.is_new_in_store:
                new_in_store += 1
            if persisted.is_new_for_scope:
                fresh.append(message)
        next_cursor = compute_next_since_cursor(since, [message.timestamp for message in ordered])
        state.upsert_scope_state(scope_key, scope, next_cursor)
        return PullResult(
            scope_key=scope_key,
            account_id=request.account_id,
            state_used=state.persistent,
            since=since,
            next_cursor=next_cursor,
            messages=fresh,
            fetched=len(ordered),
            new_in_store=new_in_store,
            new_for_scope=len(fresh),
        )


@dataclass(frozen=True)
class DoctorCheck:
    name: str
    status: str
    detail: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass(frozen=True)
class DoctorReport:
    profile: str
    account_id: str | None
    account_count: int | None
    checks: list[DoctorCheck]

    @property
    def summary(self) -> str:
        statuses = {check.status for check in self.checks}
        if "fail" in statuses:
            return "fail"
        if "warn" in statuses:
            return "pass_with_warnings"
        return "pass"

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "summary": self.summary,
            "account_id": self.account_id,
            "account_count": self.account_count,
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass(frozen=True)
class DoctorService:
    """Summary: Runs readiness checks for configuration, the provider API, state storage, and the oracle.

    Importance: Gives operators one command that explains why automation would fail.
    Alternatives: Debug each command individually.
    """

    profile_name: str
    dsn: str
    api_key: str | None
    secret_backend: str
    provider_factory: Callable[[], MessagingProvider]
    oracle_factory: OracleFactory
    state_db_path: str

    def run(
        self,
        account_id: str | None = None,
        oracle_query: str = "recent contact from today",
        skip_oracle: bool = False,
    ) -> DoctorReport:
        checks: list[DoctorCheck] = []
        if self.dsn.strip():
            checks.append(DoctorCheck("profile.dsn", "pass", f"Configured ({self.dsn})"))
        else:
            checks.append(
                DoctorCheck(
                    "profile.dsn", "fail", "Missing DSN. Run: unipile auth set --dsn ... --api-key ..."
                )
            )
        if self.api_key:
            checks.append(
                DoctorCheck("profile.api_key", "pass", f"Configured ({self.secret_backend})")
            )
        else:
            checks.append(
                DoctorCheck(
                    "profile.api_key",
                    "fail",
                    "Missing API key. Run: unipile auth set --dsn ... --api-key ...",
                )
            )

        account_count: int | None = None
        if not any(check.status == "fail" for check in checks):
            account_count = self._check_provider(checks, account_id)
        checks.append(self._check_state_store())
        checks.append(self._check_oracle(oracle_query, skip_oracle))
        return DoctorReport(
            profile=self.profile_name,
            account_id=account_id,
            account_count=account_count,
            checks=checks,
        )

    def _check_provider(self, checks: list[DoctorCheck], account_id: str | None) -> int | None:
        provider = self.provider_factory()
        try:
            accounts = provider.list_accounts(limit=50).items
        except ProviderApiError as exc:
            checks.append(
                DoctorCheck("unipile.accounts", "fail", f"Unable to reach Unipile API ({exc})")
            )
            checks.append(
                DoctorCheck("unipile.account_id", "skip", "Skipped because accounts check failed")
            )
            return None
        checks.append(
            DoctorCheck(
                "unipile.accounts",
                "pass",
                f"Fetched {len(accounts)} account(s) with current API key",
            )
        )
        if not account_id:
            checks.append(
                DoctorCheck(
                    "unipile.account_id",
                    "skip",
                    "Not provided; pass --account-id to validate attendee/chat endpoints too",
                )
            )
            return len(accounts)
        if not any(account.id == account_id for account in accounts):
            checks.append(
                DoctorCheck(
                    "unipile.account_id", "fail", f"Account {account_id} not found in /api/v1/accounts"
                )
            )
            return len(accounts)
        try:
            attendees = provider.list_attendees(account_id, limit=25).items
            chats = provider.list_chats(account_id, limit=25).items
        except ProviderApiError as exc:
            checks.append(DoctorCheck("unipile.messaging_scope", "fail", str(exc)))
            return len(accounts)
        checks.append(
            DoctorCheck(
                "unipile.messaging_scope",
                "pass",
                f"Account {account_id}: attendees={len(attendees)}, chats={len(chats)}",
            )
        )
        return len(accounts)

    def _check_state_store(self) -> DoctorCheck:
        try:
            store = InboxStateStore.open(self.state_db_path)
        except StateStoreUnavailableError as exc:
            return DoctorCheck("state.sqlite", "warn", str(exc))
        store.close()
        return DoctorCheck("state.sqlite", "pass", f"Writable ({self.state_db_path})")

    def _check_oracle(self, query: str, skip: bool) -> DoctorCheck:
        if skip:
            return DoctorCheck("qmd.query", "skip", "Skipped by --skip-qmd")
        result = self.oracle_factory.build(max_hits=5).query(query)
        if result.available:
            return DoctorCheck(
                "qmd.query", "pass", f'Available ({len(result.hits)} hit(s) for query "{query}")'
            )
        return DoctorCheck("qmd.query", "warn", f"Unavailable ({result.error or 'unknown error'})")
