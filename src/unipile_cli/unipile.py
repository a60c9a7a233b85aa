"""Summary: Messaging provider interface and the Unipile REST client.

Importance: Encapsulates every call to the provider so services only see typed pages and receipts.
Alternatives: Use a vendor SDK with its own pagination helpers.
"""

from __future__ import annotations

import json
import mimetypes
import secrets
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from unipile_cli.errors import ProviderApiError
from unipile_cli.models import Account, Attendee, Chat, ListPage, Message


API_PREFIX = "/api/v1"


@dataclass(frozen=True)
class SendReceipt:
    """Summary: Provider acknowledgement for a sent message or a started chat."""

    object: str
    message_id: str | None
    chat_id: str | None = None

    @staticmethod
    def from_payload(payload: Any, chat_id: str | None = None) -> "SendReceipt":
        body = payload if isinstance(payload, dict) else {}
        return SendReceipt(
            object=str(body.get("object") or ""),
            message_id=body.get("message_id"),
            chat_id=body.get("chat_id") or chat_id,
        )


class MessagingProvider(ABC):
    """Summary: Abstract interface for the messaging provider API.

    Importance: Lets services and tests swap the live REST client for fakes.
    Alternatives: Call the REST client directly from services.
    """

    @abstractmethod
    def list_accounts(self, limit: int | None = None, cursor: str | None = None) -> ListPage[Account]:
        """Summary: List connected accounts."""

    @abstractmethod
    def list_attendees(
        self, account_id: str, limit: int | None = None, cursor: str | None = None
    ) -> ListPage[Attendee]:
        """Summary: List chat attendees of one account."""

    @abstractmethod
    def list_chats(
        self,
        account_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        unread: bool | None = None,
    ) -> ListPage[Chat]:
        """Summary: List chats of one account."""

    @abstractmethod
    def list_messages(
        self,
        account_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        after: str | None = None,
        sender_id: str | None = None,
    ) -> ListPage[Message]:
        """Summary: List messages across every chat of one account."""

    @abstractmethod
    def list_chat_messages(
        self,
        chat_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        after: str | None = None,
        sender_id: str | None = None,
    ) -> ListPage[Message]:
        """Summary: List messages of one chat."""

    @abstractmethod
    def send_message(
        self,
        chat_id: str,
        text: str,
        account_id: str | None = None,
        attachments: Iterable[Path] = (),
    ) -> SendReceipt:
        """Summary: Send a message to an existing chat."""

    @abstractmethod
    def start_chat(
        self,
        account_id: str,
        attendee_ids: list[str],
        text: str | None = None,
        attachments: Iterable[Path] = (),
    ) -> SendReceipt:
        """Summary: Start a new chat with one or more attendees."""


class UnipileClient(MessagingProvider):
    """Summary: REST client for the Unipile API authenticated by an API key.

    Importance: Provides the only network boundary of the application.
    Alternatives: Use requests or httpx with a session object.
    """

    def __init__(
        self,
        dsn: str,
        api_key: str,
        timeout: float = 30.0,
        opener: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        """Summary: Initialize the client.

        Importance: Stores the DSN and credential for repeated requests.
        Alternatives: Pass credentials on every call.
        """

        self._base_url = dsn.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._opener = opener

    def list_accounts(self, limit: int | None = None, cursor: str | None = None) -> ListPage[Account]:
        payload = self._request(_with_query("/accounts", {"limit": limit, "cursor": cursor}))
        return _page(payload, Account.from_payload)

    def list_attendees(
        self, account_id: str, limit: int | None = None, cursor: str | None = None
    ) -> ListPage[Attendee]:
        path = _with_query(
            "/chat_attendees", {"limit": limit, "cursor": cursor, "account_id": account_id}
        )
        return _page(self._request(path), Attendee.from_payload)

    def list_chats(
        self,
        account_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        unread: bool | None = None,
    ) -> ListPage[Chat]:
        path = _with_query(
            "/chats",
            {"limit": limit, "cursor": cursor, "account_id": account_id, "unread": unread},
        )
        return _page(self._request(path), Chat.from_payload)

    def list_messages(
        self,
        account_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        after: str | None = None,
        sender_id: str | None = None,
    ) -> ListPage[Message]:
        path = _with_query(
            "/messages",
            {
                "limit": limit,
                "cursor": cursor,
                "account_id": account_id,
                "after": after,
                "sender_id": sender_id,
            },
        )
        return _page(self._request(path), Message.from_payload)

    def list_chat_messages(
        self,
        chat_id: str,
        limit: int | None = None,
        cursor: str | None = None,
        after: str | None = None,
        sender_id: str | None = None,
    ) -> ListPage[Message]:
        path = _with_query(
            f"/chats/{urllib.parse.quote(chat_id, safe='')}/messages",
            {"limit": limit, "cursor": cursor, "after": after, "sender_id": sender_id},
        )
        return _page(self._request(path), Message.from_payload)

    def send_message(
        self,
        chat_id: str,
        text: str,
        account_id: str | None = None,
        attachments: Iterable[Path] = (),
    ) -> SendReceipt:
        fields = [("text", text)]
        if account_id:
            fields.append(("account_id", account_id))
        body, content_type = encode_multipart(fields, attachments)
        payload = self._request(
            f"/chats/{urllib.parse.quote(chat_id, safe='')}/messages",
            method="POST",
            data=body,
            content_type=content_type,
        )
        return SendReceipt.from_payload(payload, chat_id=chat_id)

    def start_chat(
        self,
        account_id: str,
        attendee_ids: list[str],
        text: str | None = None,
        attachments: Iterable[Path] = (),
    ) -> SendReceipt:
        fields = [("account_id", account_id)]
        fields.extend(("attendees_ids", attendee_id) for attendee_id in attendee_ids)
        if text:
            fields.append(("text", text))
        body, content_type = encode_multipart(fields, attachments)
        payload = self._request("/chats", method="POST", data=body, content_type=content_type)
        return SendReceipt.from_payload(payload)

    def _request(
        self,
        path: str,
        method: str = "GET",
        data: bytes | None = None,
        content_type: str | None = None,
    ) -> Any:
        """Summary: Send an authenticated request and decode the JSON response.

        Importance: Converts HTTP failures into ProviderApiError with status, type, and detail.
        Alternatives: Return raw responses to callers.
        """

        headers = {"X-API-KEY": self._api_key, "accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        request = urllib.request.Request(
            f"{self._base_url}{API_PREFIX}{path}",
            data=data,
            headers=headers,
            method=method,
        )
        try:
            with self._opener(request, timeout=self._timeout) as response:
                raw = response.read().decode("utf-8")
                response_type = response.headers.get("Content-Type", "")
        except urllib.error.HTTPError as exc:
            error_raw = exc.read().decode("utf-8", errors="replace")
            error_type = exc.headers.get("Content-Type", "") if exc.headers else ""
            raise _api_error(exc.code, _decode_body(error_raw, error_type)) from exc
        except urllib.error.URLError as exc:
            raise ProviderApiError(f"Unipile request failed: {exc.reason}", status=0) from exc
        return _decode_body(raw, response_type)


def _api_error(status: int, body: Any) -> ProviderApiError:
    detail = body.get("detail") if isinstance(body, dict) else None
    error_type = body.get("type") if isinstance(body, dict) else None
    detail = detail if isinstance(detail, str) else None
    error_type = error_type if isinstance(error_type, str) else None
    message = f"Unipile request failed ({status})"
    if detail:
        message = f"{message}: {detail}"
    return ProviderApiError(message, status=status, body=body, error_type=error_type, detail=detail)


def _decode_body(raw: str, content_type: str) -> Any:
    if not raw:
        return None
    if "application/json" in content_type or raw.lstrip().startswith(("{", "[")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def _page(payload: Any, parse: Callable[[dict[str, Any]], Any]) -> ListPage[Any]:
    body = payload if isinstance(payload, dict) else {}
    items = [parse(item) for item in body.get("items") or [] if isinstance(item, dict)]
    cursor = body.get("cursor")
    return ListPage(items=items, cursor=str(cursor) if cursor else None)


def _with_query(path: str, params: dict[str, Any]) -> str:
    """Summary: Append non-empty query parameters to a path.

    Importance: Keeps optional filters out of the URL when unset.
    Alternatives: Always send every parameter.
    """

    cleaned: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    query = urllib.parse.urlencode(cleaned)
    return f"{path}?{query}" if query else path


def encode_multipart(
    fields: list[tuple[str, str]], attachments: Iterable[Path] = ()
) -> tuple[bytes, str]:
    """Summary: Encode form fields and attachment files as multipart/form-data.

    Importance: The provider's send endpoints accept only multipart bodies.
    Alternatives: Use requests' files= support.
    """

    boundary = f"----unipile-cli-{secrets.token_hex(12)}"
    body = bytearray()
    for name, value in fields:
        body.extend(f"--{boundary}\r\n".encode("utf-8"))
        body.extend(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode("utf-8"))
        body.extend(value.encode("utf-8"))
        body.extend(b"\r\n")
    for path in attachments:
        attachment = Path(path)
        mime_type = mimetypes.guess_type(attachment.name)[0] or "application/octet-stream"
        body.extend(f"--{boundary}\r\n".encode("utf-8"))
        body.extend(
            (
                f'Content-Disposition: form-data; name="attachments"; filename="{_form_quote(attachment.name)}"\r\n'
                f"Content-Type: {mime_type}\r\n\r\n"
            ).encode("utf-8")
        )
        body.extend(attachment.read_bytes())
        body.extend(b"\r\n")
    body.extend(f"--{boundary}--\r\n".encode("utf-8"))
    return bytes(body), f"multipart/form-data; boundary={boundary}"


def _form_quote(value: str) -> str:
    # Percent-encode the characters that would end the quoted header value or the header line.
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")
