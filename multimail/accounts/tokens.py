"""Access-token lifecycle: refresh tokens shortly before they expire."""

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx

from multimail.accounts.store import AccountStore
from multimail.config import ProviderConfig
from multimail.mail.types import EmailAccount, Provider

logger = logging.getLogger(__name__)

#: Tokens expiring within this window are refreshed before use.
REFRESH_WINDOW = timedelta(minutes=5)


class TokenRefreshFailed(Exception):
    """Raised internally when a refresh-token exchange does not succeed."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Hands out access tokens, refreshing them through the provider when stale.

    Refresh failures are soft: the existing (possibly expired) token is
    returned and the real failure surfaces on the next provider call. There
    is no locking, so two concurrent callers may both refresh the same
    account; the store keeps whichever write lands last.
    """

    def __init__(
        self,
        store: AccountStore,
        http: httpx.AsyncClient,
        providers: dict[Provider, ProviderConfig],
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._http = http
        self._providers = providers
        self._now = now

    async def ensure_fresh_token(self, account: EmailAccount) -> str:
        """Return a usable access token for account.

        Raises:
            StoreUnavailable: if a refresh succeeded but could not be persisted.
        """
        now = self._now()
        if account.expires_at - now >= REFRESH_WINDOW:
            return account.access_token

        logger.info(
            "Refreshing %s token for %s (expires %s)",
            account.provider.value,
            account.email_address,
            account.expires_at.isoformat(),
        )
        try:
            access_token, expires_in = await self._exchange(account)
        except TokenRefreshFailed as exc:
            logger.warning(
                "Token refresh failed for %s %s: %s; using existing token",
                account.provider.value,
                account.email_address,
                exc,
            )
            return account.access_token

        refreshed = dataclasses.replace(
            account,
            access_token=access_token,
            expires_at=now + timedelta(seconds=expires_in),
        )
        await self._store.upsert_account(refreshed)
        return access_token

    async def _exchange(self, account: EmailAccount) -> tuple[str, int]:
        """Run the provider's refresh-token grant; returns (token, expires_in)."""
        config = self._providers.get(account.provider)
        if config is None:
            raise TokenRefreshFailed(f"no OAuth client configured for {account.provider.value}")
        if not account.refresh_token:
            raise TokenRefreshFailed("account has no refresh token")

        form = {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": account.refresh_token,
            "grant_type": "refresh_token",
        }
        if config.scope:
            form["scope"] = config.scope

        try:
            response = await self._http.post(config.token_url, data=form)
        except httpx.HTTPError as exc:
            raise TokenRefreshFailed(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if response.is_error:
            detail = payload.get("error_description") or payload.get("error") or response.text[:200]
            raise TokenRefreshFailed(f"HTTP {response.status_code}: {detail}")

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshFailed("token response has no access_token")
        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise TokenRefreshFailed(
                f"token response has invalid expires_in {payload.get('expires_in')!r}"
            ) from exc
        return str(access_token), expires_in
