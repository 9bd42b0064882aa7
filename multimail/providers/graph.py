"""Microsoft Graph adapter: search and send through graph.microsoft.com."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from multimail.config import ProviderConfig
from multimail.mail.types import (
    NO_SUBJECT,
    UNKNOWN_PARTY,
    CanonicalEmailMessage,
    Provider,
    SendResult,
)
from multimail.providers.base import ProviderCallFailed, error_message

logger = logging.getLogger(__name__)

#: sendMail answers 202 with no body, so there is no real message ID to report.
SENT_SENTINEL = "sent"

_SELECT = "id,conversationId,subject,from,toRecipients,receivedDateTime,bodyPreview,isRead"


# ── Wire shapes ────────────────────────────────────────────────────────────────


def _address(recipient: Any) -> str:
    if not isinstance(recipient, dict):
        return ""
    email = recipient.get("emailAddress") or {}
    return str(email.get("address") or "")


@dataclass(frozen=True)
class _GraphMessage:
    """The subset of a Graph ``message`` resource we rely on."""

    id: str
    conversation_id: str
    subject: str
    sender: str
    recipients: list[str] = field(default_factory=list)
    received: str = ""
    body_preview: str = ""
    is_read: bool | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "_GraphMessage":
        is_read = data.get("isRead")
        return cls(
            id=str(data.get("id", "")),
            conversation_id=str(data.get("conversationId") or ""),
            subject=str(data.get("subject") or ""),
            sender=_address(data.get("from")),
            recipients=[a for a in (_address(r) for r in data.get("toRecipients") or []) if a],
            received=str(data.get("receivedDateTime") or ""),
            body_preview=str(data.get("bodyPreview") or ""),
            is_read=bool(is_read) if is_read is not None else None,
        )

    def to_canonical(self) -> CanonicalEmailMessage:
        return CanonicalEmailMessage(
            id=self.id,
            thread_id=self.conversation_id or None,
            subject=self.subject or NO_SUBJECT,
            sender=self.sender or UNKNOWN_PARTY,
            recipient=", ".join(self.recipients) or UNKNOWN_PARTY,
            date=self.received,
            preview=self.body_preview,
            provider=Provider.MICROSOFT,
            read_flag=self.is_read,
        )


def search_expression(query: str) -> str:
    """Quote query for ``$search``; embedded double quotes are backslash-escaped."""
    return '"' + query.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_send_payload(to: str, subject: str, body: str) -> dict[str, Any]:
    """Return the ``sendMail`` request body for a single plain-text message."""
    return {
        "message": {
            "subject": subject,
            "body": {"contentType": "Text", "content": body},
            "toRecipients": [{"emailAddress": {"address": to}}],
        },
        "saveToSentItems": True,
    }


# ── Adapter ────────────────────────────────────────────────────────────────────


class GraphAdapter:
    """Translates canonical search/send calls into Microsoft Graph requests.

    Graph refuses ``$orderby`` together with ``$search``, so a non-empty
    query is sent as ``$search`` alone and relevance order comes back;
    the search aggregator re-sorts by date either way.
    """

    provider = Provider.MICROSOFT

    def __init__(self, http: httpx.AsyncClient, config: ProviderConfig) -> None:
        self._http = http
        self._base = config.api_base.rstrip("/")

    async def search(
        self, token: str, query: str, max_results: int
    ) -> list[CanonicalEmailMessage]:
        params: dict[str, Any] | None = {"$top": max_results, "$select": _SELECT}
        if query:
            params["$search"] = search_expression(query)
        else:
            params["$orderby"] = "receivedDateTime desc"

        messages: list[CanonicalEmailMessage] = []
        url: str | None = f"{self._base}/messages"
        while url and len(messages) < max_results:
            data = await self._request("GET", url, token, params=params) or {}
            messages.extend(
                _GraphMessage.from_json(m).to_canonical()
                for m in data.get("value") or []
                if isinstance(m, dict)
            )
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        logger.debug("Graph search %r: %d message(s)", query, len(messages))
        return messages[:max_results]

    async def send(self, token: str, to: str, subject: str, body: str) -> SendResult:
        await self._request(
            "POST",
            f"{self._base}/sendMail",
            token,
            json=build_send_payload(to, subject, body),
        )
        logger.info("Sent Graph message to %s: %r", to, subject)
        return SendResult(provider_message_id=SENT_SENTINEL)

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Issue an authorized request and return the decoded JSON body, if any.

        Raises ProviderCallFailed for transport errors and non-2xx responses.
        """
        try:
            response = await self._http.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise ProviderCallFailed(self.provider, None, str(exc)) from exc

        if response.is_error:
            raise ProviderCallFailed(self.provider, response.status_code, error_message(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderCallFailed(
                self.provider, response.status_code, "response is not valid JSON"
            ) from exc
