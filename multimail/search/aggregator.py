"""Fan-out search across every connected account, merged newest-first."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from multimail.accounts.store import AccountStore
from multimail.accounts.tokens import TokenManager
from multimail.mail.types import CanonicalEmailMessage, EmailAccount, Provider
from multimail.providers.base import MailProvider

logger = logging.getLogger(__name__)

NO_ACCOUNTS_NOTICE = (
    "No email accounts connected or no accounts match the specified provider."
)


@dataclass(frozen=True)
class AccountStatus:
    """How one account fared in a fan-out search."""

    provider: Provider
    email_address: str
    ok: bool
    result_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "email": self.email_address,
            "connected": True,
            "ok": self.ok,
            "results": self.result_count,
            "error": self.error,
        }


@dataclass(frozen=True)
class SearchOutcome:
    """Merged search result. ``total`` counts messages before truncation."""

    query: str
    messages: list[CanonicalEmailMessage] = field(default_factory=list)
    total: int = 0
    accounts: list[AccountStatus] = field(default_factory=list)
    notice: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "emails": [m.to_dict() for m in self.messages],
            "total": self.total,
            "query": self.query,
            "providers": [a.provider.value for a in self.accounts],
            "accounts": [a.to_dict() for a in self.accounts],
        }


def parse_message_date(value: str) -> datetime | None:
    """Parse an RFC 2822 (Gmail) or ISO-8601 (Graph) date; None if neither.

    Naive results are assumed to be UTC so every date is comparable.
    """
    if not value:
        return None
    parsed: datetime | None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            parsed = None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_newest_first(messages: list[CanonicalEmailMessage]) -> list[CanonicalEmailMessage]:
    """Sort by date descending; unparsable dates go last in their input order."""

    def key(message: CanonicalEmailMessage) -> tuple[bool, float]:
        parsed = parse_message_date(message.date)
        if parsed is None:
            return True, 0.0
        return False, -parsed.timestamp()

    return sorted(messages, key=key)


class SearchAggregator:
    """Runs one search per eligible account concurrently and merges the results.

    A failing account never fails the whole search: its branch yields no
    messages and its status carries the error. Each branch is attempted
    exactly once per call; there is no retry.

    Usage::

        aggregator = SearchAggregator(store, tokens, adapters)
        outcome = await aggregator.search(user_id, "from:alice", max_results=10)
    """

    def __init__(
        self,
        store: AccountStore,
        tokens: TokenManager,
        adapters: dict[Provider, MailProvider],
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._adapters = adapters

    async def search(
        self,
        owner_id: str,
        query: str,
        max_results: int = 20,
        provider: Provider | None = None,
    ) -> SearchOutcome:
        """Search all of owner_id's accounts, optionally narrowed to one provider.

        Raises:
            StoreUnavailable: if the account list cannot be loaded.
        """
        accounts = await self._store.list_accounts(owner_id)
        eligible = [
            a for a in accounts
            if (provider is None or a.provider == provider) and a.provider in self._adapters
        ]
        if not eligible:
            logger.info("Search %r: no eligible accounts (provider=%s)", query, provider)
            return SearchOutcome(query=query, notice=NO_ACCOUNTS_NOTICE)

        branches = await asyncio.gather(
            *(self._search_account(a, query, max_results) for a in eligible)
        )

        merged: list[CanonicalEmailMessage] = []
        statuses: list[AccountStatus] = []
        for messages, status in branches:
            merged.extend(messages)
            statuses.append(status)

        ordered = sort_newest_first(merged)
        logger.info(
            "Search %r: %d message(s) from %d account(s), %d failed",
            query,
            len(ordered),
            len(eligible),
            sum(1 for s in statuses if not s.ok),
        )
        return SearchOutcome(
            query=query,
            messages=ordered[:max_results],
            total=len(ordered),
            accounts=statuses,
        )

    async def _search_account(
        self, account: EmailAccount, query: str, max_results: int
    ) -> tuple[list[CanonicalEmailMessage], AccountStatus]:
        """Search a single account; failures are logged and reported, never raised."""
        try:
            token = await self._tokens.ensure_fresh_token(account)
            messages = await self._adapters[account.provider].search(token, query, max_results)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Search failed for %s account %s: %s",
                account.provider.value,
                account.email_address,
                exc,
            )
            return [], AccountStatus(
                provider=account.provider,
                email_address=account.email_address,
                ok=False,
                error=str(exc),
            )
        return messages, AccountStatus(
            provider=account.provider,
            email_address=account.email_address,
            ok=True,
            result_count=len(messages),
        )
