"""Account store client: reads and writes provider credentials.

The store itself (engine, row-level access control) lives elsewhere; this
module only speaks its RPC contract:

    get_user_email_accounts(p_user_id)          -> rows
    upsert_email_account(p_user_id, p_provider, p_email, p_access_token,
                         p_refresh_token, p_expires_at, p_account_data)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx

from multimail.mail.types import EmailAccount, Provider

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """Raised when the account store cannot be reached or rejects a call."""


@runtime_checkable
class AccountStore(Protocol):
    """Async interface every account store implementation provides."""

    async def list_accounts(self, owner_id: str) -> list[EmailAccount]:
        ...

    async def upsert_account(self, account: EmailAccount) -> None:
        ...


def parse_expiry(value: Any) -> datetime:
    """Parse a stored expiry into an aware UTC datetime.

    Naive values are assumed to be UTC. Unparsable values are treated as
    already expired so the token manager refreshes them.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            logger.warning("Unparsable expires_at %r; treating token as expired", value)
            return datetime.fromtimestamp(0, tz=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def account_from_row(row: dict[str, Any]) -> EmailAccount | None:
    """Map a store row to an EmailAccount; None for unsupported providers."""
    try:
        provider = Provider(str(row.get("provider", "")))
    except ValueError:
        logger.warning(
            "Skipping account %s with unsupported provider %r",
            row.get("id"),
            row.get("provider"),
        )
        return None
    return EmailAccount(
        id=str(row.get("id", "")),
        owner_id=str(row.get("user_id", "")),
        provider=provider,
        email_address=str(row.get("email", "")),
        access_token=str(row.get("access_token", "")),
        refresh_token=str(row.get("refresh_token") or ""),
        expires_at=parse_expiry(row.get("expires_at")),
        provider_profile=dict(row.get("account_data") or {}),
    )


class RpcAccountStore:
    """AccountStore backed by the hosted store's HTTP RPC endpoints.

    Usage::

        async with httpx.AsyncClient() as http:
            store = RpcAccountStore(http, base_url, api_key)
            accounts = await store.list_accounts(user_id)
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str, api_key: str) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def list_accounts(self, owner_id: str) -> list[EmailAccount]:
        rows = await self._rpc("get_user_email_accounts", {"p_user_id": owner_id})
        if not isinstance(rows, list):
            return []
        accounts = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            account = account_from_row(row)
            if account is not None:
                accounts.append(account)
        logger.debug("Loaded %d account(s) for user %s", len(accounts), owner_id)
        return accounts

    async def upsert_account(self, account: EmailAccount) -> None:
        await self._rpc(
            "upsert_email_account",
            {
                "p_user_id": account.owner_id,
                "p_provider": account.provider.value,
                "p_email": account.email_address,
                "p_access_token": account.access_token,
                "p_refresh_token": account.refresh_token,
                "p_expires_at": account.expires_at.isoformat(),
                "p_account_data": account.provider_profile,
            },
        )
        logger.debug("Upserted %s account %s", account.provider.value, account.email_address)

    async def _rpc(self, function: str, params: dict[str, Any]) -> Any:
        """POST to an RPC function; returns the decoded JSON body (or None)."""
        url = f"{self._base_url}/rest/v1/rpc/{function}"
        try:
            response = await self._http.post(url, json=params, headers=self._headers)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"{function}: {exc}") from exc

        if response.is_error:
            raise StoreUnavailable(
                f"{function} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise StoreUnavailable(f"{function} returned invalid JSON") from exc
