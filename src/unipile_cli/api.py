"""Summary: FastAPI application exposing resolution and inbox polling over HTTP.

Importance: Lets local agents and integrations call the same services as the CLI.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from unipile_cli.app import AppServices, build_context
from unipile_cli.config import AppConfig
from unipile_cli.credentials import SecretStore
from unipile_cli.errors import (
    ConfigurationError,
    ProviderApiError,
    StateStoreUnavailableError,
)
from unipile_cli.services import PullRequest, ResolveRequest
from unipile_cli.unipile import MessagingProvider


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResolveBody(BaseModel):
    """Summary: Request payload for contact resolution.

    Importance: Mirrors the `contacts resolve` flags for API clients.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    account_id: str
    query: str = Field(min_length=1)
    threshold: float | None = Field(default=None, ge=0, le=1)
    margin: float | None = Field(default=None, ge=0, le=1)
    max_candidates: int = Field(default=5, ge=1, le=50)
    use_qmd: bool = True


class PullBody(BaseModel):
    """Summary: Request payload for one inbox pull round.

    Importance: Scope fields map to the same scope key the CLI uses, so state is shared.
    Alternatives: Keep a separate API-only cursor.
    """

    account_id: str
    chat_ids: list[str] = Field(default_factory=list)
    sender_id: str | None = None
    state_key: str | None = None
    since: str | None = None
    use_state: bool = True
    reset_state: bool = False
    limit: int = Field(default=100, ge=1, le=250)
    max_pages: int = Field(default=5, ge=1, le=50)


def create_app(
    config: AppConfig,
    profile_name: str | None = None,
    secret_store: SecretStore | None = None,
    provider: MessagingProvider | None = None,
) -> FastAPI:
    """Summary: Create a FastAPI app wired to unipile-cli services.

    Importance: Ensures the API layer shares configuration, credentials, and state storage with the CLI.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="unipile-cli API", version="0.1.0")
    app.state.services = None

    def get_services() -> AppServices:
        """Summary: Build services on first use.

        Importance: Lets /health answer even when the profile is not configured yet.
        Alternatives: Build services at startup and refuse to boot without credentials.
        """

        if app.state.services is None:
            context = build_context(config, profile_name=profile_name, secret_store=secret_store)
            app.state.services = context.services(provider=provider)
        return app.state.services

    def call(action: Callable[[], T]) -> T:
        try:
            return action()
        except ProviderApiError as exc:
            status = 401 if exc.is_auth_error else 502
            raise HTTPException(status_code=status, detail=str(exc)) from exc
        except StateStoreUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except ConfigurationError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/accounts", dependencies=[Depends(require_api_key)])
    def list_accounts(provider: str | None = None, limit: int = 100) -> dict[str, Any]:
        listing = call(lambda: get_services().accounts.list_accounts(provider=provider, limit=limit))
        return listing.to_dict()

    @app.post("/contacts/resolve", dependencies=[Depends(require_api_key)])
    def resolve_contact(payload: ResolveBody) -> dict[str, Any]:
        """Summary: Resolve a recipient query without sending anything.

        Importance: Lets callers inspect candidates before choosing to send.
        Alternatives: Combine resolution and send in one endpoint.
        """

        request = ResolveRequest(
            account_id=payload.account_id,
            query=payload.query,
            threshold=payload.threshold,
            margin=payload.margin,
            max_candidates=payload.max_candidates,
            use_oracle=payload.use_qmd,
        )
        result = call(lambda: get_services().contacts.resolve(request))
        return result.to_dict()

    @app.post("/inbox/pull", dependencies=[Depends(require_api_key)])
    def pull_inbox(payload: PullBody) -> dict[str, Any]:
        request = PullRequest(
            account_id=payload.account_id,
            chat_ids=tuple(payload.chat_ids),
            sender_id=payload.sender_id,
            state_key=payload.state_key,
            since=payload.since,
            use_state=payload.use_state,
            reset_state=payload.reset_state,
            limit=payload.limit,
            max_pages=payload.max_pages,
        )
        result = call(lambda: get_services().inbox.pull(request))
        return result.to_dict()

    return app
