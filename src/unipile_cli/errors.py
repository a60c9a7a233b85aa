"""Summary: Error types raised across unipile-cli.

Importance: Gives callers enough structure (status, kind, detail) to branch programmatically.
Alternatives: Raise bare RuntimeError and parse messages at the edges.
"""

from __future__ import annotations

from typing import Any


class UnipileCliError(Exception):
    """Summary: Base class for all application errors.

    Importance: Lets entrypoints catch application failures without masking bugs.
    Alternatives: Catch Exception at the top level.
    """


class ConfigurationError(UnipileCliError):
    """Summary: Raised when a profile is missing a DSN, API key, or is unknown.

    Importance: Configuration problems are fatal and must never be retried.
    Alternatives: Fall back to environment variables silently.
    """


class StateStoreUnavailableError(UnipileCliError):
    """Summary: Raised when the inbox state database cannot be opened.

    Importance: Only fatal when persistent state was requested; callers may pass --no-state.
    Alternatives: Degrade silently to in-memory state.
    """


class ProviderApiError(UnipileCliError):
    """Summary: Failure response from the messaging provider API.

    Importance: Carries status, type, and detail so authentication failures are reported distinctly.
    Alternatives: Surface raw HTTP errors from urllib.
    """

    def __init__(
        self,
        message: str,
        status: int,
        body: Any = None,
        error_type: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.error_type = error_type
        self.detail = detail

    @property
    def is_auth_error(self) -> bool:
        return self.status == 401
