"""Provider adapter interface and shared error type."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from multimail.mail.types import CanonicalEmailMessage, Provider, SendResult

if TYPE_CHECKING:
    from multimail.config import Settings


class ProviderCallFailed(Exception):
    """A provider API call failed.

    Carries the provider and the upstream status (None for transport errors)
    so callers can attribute and isolate the failure.
    """

    def __init__(self, provider: Provider, status: int | None, message: str) -> None:
        self.provider = provider
        self.status = status
        self.message = message
        where = f"HTTP {status}" if status is not None else "transport error"
        super().__init__(f"{provider.value} API error ({where}): {message}")


@runtime_checkable
class MailProvider(Protocol):
    """Canonical search/send capability set every adapter implements."""

    provider: Provider

    async def search(
        self, token: str, query: str, max_results: int
    ) -> list[CanonicalEmailMessage]:
        ...

    async def send(self, token: str, to: str, subject: str, body: str) -> SendResult:
        ...


def error_message(response: httpx.Response) -> str:
    """Best-effort extraction of ``error.message`` from a provider error body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return response.reason_phrase or "Unknown error"


def build_adapters(http: httpx.AsyncClient, settings: Settings) -> dict[Provider, MailProvider]:
    """Return one adapter per supported provider, sharing the HTTP client."""
    from multimail.providers.gmail import GmailAdapter
    from multimail.providers.graph import GraphAdapter

    return {
        Provider.GMAIL: GmailAdapter(http, settings.provider_config(Provider.GMAIL)),
        Provider.MICROSOFT: GraphAdapter(http, settings.provider_config(Provider.MICROSOFT)),
    }
