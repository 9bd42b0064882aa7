"""Shared pytest fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from multimail.config import (
    GMAIL_API_BASE,
    GOOGLE_TOKEN_URL,
    GRAPH_API_BASE,
    MICROSOFT_TOKEN_URL,
    ProviderConfig,
    Settings,
)
from multimail.mail.types import EmailAccount, Provider

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed clock used by token tests."""
    return NOW


@pytest.fixture
def provider_configs() -> dict[Provider, ProviderConfig]:
    return {
        Provider.GMAIL: ProviderConfig(
            provider=Provider.GMAIL,
            client_id="google-client",
            client_secret="google-secret",
            token_url=GOOGLE_TOKEN_URL,
            api_base=GMAIL_API_BASE,
        ),
        Provider.MICROSOFT: ProviderConfig(
            provider=Provider.MICROSOFT,
            client_id="ms-client",
            client_secret="ms-secret",
            token_url=MICROSOFT_TOKEN_URL.format(tenant="common"),
            api_base=GRAPH_API_BASE,
            scope="offline_access Mail.Read Mail.Send",
        ),
    }


@pytest.fixture
def settings(tmp_path: Path, provider_configs: dict[Provider, ProviderConfig]) -> Settings:
    """Local-store settings with no Anthropic key."""
    return Settings(
        user_id="user-1",
        providers=provider_configs,
        db_path=tmp_path / "accounts.db",
    )


@pytest.fixture
def gmail_account() -> EmailAccount:
    """A Gmail account whose token is valid for another hour."""
    return EmailAccount(
        id="acct-gmail",
        owner_id="user-1",
        provider=Provider.GMAIL,
        email_address="me@gmail.com",
        access_token="gmail-token",
        refresh_token="gmail-refresh",
        expires_at=NOW + timedelta(hours=1),
    )


@pytest.fixture
def graph_account() -> EmailAccount:
    """A Microsoft account whose token is valid for another hour."""
    return EmailAccount(
        id="acct-ms",
        owner_id="user-1",
        provider=Provider.MICROSOFT,
        email_address="me@outlook.com",
        access_token="ms-token",
        refresh_token="ms-refresh",
        expires_at=NOW + timedelta(hours=1),
    )
