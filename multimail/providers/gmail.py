"""Gmail REST adapter: search and send through gmail.googleapis.com."""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from email.header import Header
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

#: Query used when the caller passes an empty search string.
DEFAULT_QUERY = "in:inbox"

_METADATA_HEADERS = ["Subject", "From", "To", "Date"]
_UNREAD = "UNREAD"


# ── Wire shapes ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _MessageRef:
    """One entry of ``users.messages.list``."""

    id: str
    thread_id: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "_MessageRef":
        return cls(id=str(data.get("id", "")), thread_id=str(data.get("threadId", "")))


@dataclass(frozen=True)
class _MessageDetail:
    """The subset of ``users.messages.get`` (format=metadata) we rely on."""

    id: str
    thread_id: str
    snippet: str
    label_ids: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "_MessageDetail":
        payload = data.get("payload") or {}
        headers: dict[str, str] = {}
        for h in payload.get("headers") or []:
            if isinstance(h, dict) and "name" in h:
                # First occurrence wins, matching how mail clients display duplicates.
                headers.setdefault(str(h["name"]).lower(), str(h.get("value", "")))
        return cls(
            id=str(data.get("id", "")),
            thread_id=str(data.get("threadId", "")),
            snippet=str(data.get("snippet", "")),
            label_ids=[str(lbl) for lbl in data.get("labelIds") or []],
            headers=headers,
        )

    def to_canonical(self) -> CanonicalEmailMessage:
        return CanonicalEmailMessage(
            id=self.id,
            thread_id=self.thread_id or None,
            subject=self.headers.get("subject") or NO_SUBJECT,
            sender=self.headers.get("from") or UNKNOWN_PARTY,
            recipient=self.headers.get("to") or UNKNOWN_PARTY,
            date=self.headers.get("date", ""),
            preview=self.snippet,
            provider=Provider.GMAIL,
            read_flag=_UNREAD not in self.label_ids,
        )


def build_raw_message(to: str, subject: str, body: str) -> str:
    """Return a minimal RFC 2822 message, base64url-encoded without padding.

    Non-ASCII subjects are RFC 2047 encoded; the body is sent as UTF-8 text.

    Raises:
        ValueError: if to or subject contains a CR or LF, which would end
            the header early.
    """
    for name, value in (("To", to), ("Subject", subject)):
        if "\r" in value or "\n" in value:
            raise ValueError(f"{name} header may not contain line breaks: {value!r}")
    if not subject.isascii():
        subject = Header(subject, "utf-8").encode(linesep="\r\n")
    message = "\r\n".join(
        [
            f"To: {to}",
            f"Subject: {subject}",
            'Content-Type: text/plain; charset="UTF-8"',
            "",
            body,
        ]
    )
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii").rstrip("=")


# ── Adapter ────────────────────────────────────────────────────────────────────


class GmailAdapter:
    """Translates canonical search/send calls into Gmail API requests.

    Search is two-step: list matching IDs with Gmail's own query syntax, then
    fetch each message's headers concurrently.
    """

    provider = Provider.GMAIL

    def __init__(self, http: httpx.AsyncClient, config: ProviderConfig) -> None:
        self._http = http
        self._base = config.api_base.rstrip("/")

    async def search(
        self, token: str, query: str, max_results: int
    ) -> list[CanonicalEmailMessage]:
        data = await self._request(
            "GET",
            "/messages",
            token,
            params={"q": query or DEFAULT_QUERY, "maxResults": max_results},
        )
        refs = [
            _MessageRef.from_json(m)
            for m in (data or {}).get("messages") or []
            if isinstance(m, dict) and m.get("id")
        ]
        if not refs:
            return []

        details = await asyncio.gather(*(self._fetch_detail(token, ref) for ref in refs))
        messages = [d.to_canonical() for d in details if d is not None]
        logger.debug("Gmail search %r: %d id(s), %d fetched", query, len(refs), len(messages))
        return messages

    async def send(self, token: str, to: str, subject: str, body: str) -> SendResult:
        data = await self._request(
            "POST",
            "/messages/send",
            token,
            json={"raw": build_raw_message(to, subject, body)},
        )
        data = data or {}
        logger.info("Sent Gmail message to %s: %r", to, subject)
        return SendResult(
            provider_message_id=data.get("id"),
            thread_id=data.get("threadId"),
        )

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _fetch_detail(self, token: str, ref: _MessageRef) -> _MessageDetail | None:
        """Fetch one message's metadata; None (logged) if the fetch fails."""
        try:
            data = await self._request(
                "GET",
                f"/messages/{ref.id}",
                token,
                params={"format": "metadata", "metadataHeaders": _METADATA_HEADERS},
            )
        except ProviderCallFailed as exc:
            logger.warning("Skipping Gmail message %s: %s", ref.id, exc)
            return None
        return _MessageDetail.from_json(data or {})

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Issue an authorized request and return the decoded JSON body.

        Raises ProviderCallFailed for transport errors and non-2xx responses.
        """
        try:
            response = await self._http.request(
                method,
                f"{self._base}{path}",
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
