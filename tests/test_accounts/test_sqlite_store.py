"""Tests for SQLiteAccountStore: all tests use a temporary SQLite file."""

import dataclasses
from datetime import datetime, timezone
from pathlib import Path

import pytest

from multimail.accounts.sqlite_store import SQLiteAccountStore
from multimail.accounts.store import StoreUnavailable
from multimail.mail.types import EmailAccount, Provider


@pytest.fixture
def store(tmp_path: Path) -> SQLiteAccountStore:
    return SQLiteAccountStore(db_path=tmp_path / "nested" / "accounts.db")


class TestListAccounts:
    @pytest.mark.asyncio
    async def test_empty_store_returns_empty_list(self, store: SQLiteAccountStore) -> None:
        assert await store.list_accounts("user-1") == []

    @pytest.mark.asyncio
    async def test_returns_only_owners_accounts(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        other = dataclasses.replace(gmail_account, id="other", owner_id="user-2")
        await store.upsert_account(gmail_account)
        await store.upsert_account(other)

        accounts = await store.list_accounts("user-1")
        assert [a.id for a in accounts] == ["acct-gmail"]

    @pytest.mark.asyncio
    async def test_preserves_connection_order(
        self,
        store: SQLiteAccountStore,
        gmail_account: EmailAccount,
        graph_account: EmailAccount,
    ) -> None:
        await store.upsert_account(graph_account)
        await store.upsert_account(gmail_account)

        accounts = await store.list_accounts("user-1")
        assert [a.provider for a in accounts] == [Provider.MICROSOFT, Provider.GMAIL]

    @pytest.mark.asyncio
    async def test_round_trips_all_fields(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        account = dataclasses.replace(gmail_account, provider_profile={"historyId": "42"})
        await store.upsert_account(account)

        (loaded,) = await store.list_accounts("user-1")
        assert loaded == account
        assert loaded.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_skips_unsupported_provider_rows(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        await store.upsert_account(gmail_account)
        with store._conn:
            store._conn.execute(
                "INSERT INTO email_accounts (id, user_id, provider, email, access_token, expires_at)"
                " VALUES ('x', 'user-1', 'yahoo', 'me@yahoo.com', 't', '2026-01-01T00:00:00')"
            )

        accounts = await store.list_accounts("user-1")
        assert [a.email_address for a in accounts] == ["me@gmail.com"]


class TestUpsertAccount:
    @pytest.mark.asyncio
    async def test_updates_existing_row_by_owner_provider_address(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        await store.upsert_account(gmail_account)
        new_expiry = datetime(2026, 3, 2, tzinfo=timezone.utc)
        refreshed = dataclasses.replace(
            gmail_account, id="ignored", access_token="new-token", expires_at=new_expiry
        )
        await store.upsert_account(refreshed)

        accounts = await store.list_accounts("user-1")
        assert len(accounts) == 1
        assert accounts[0].id == "acct-gmail"
        assert accounts[0].access_token == "new-token"
        assert accounts[0].expires_at == new_expiry
        assert accounts[0].refresh_token == "gmail-refresh"

    @pytest.mark.asyncio
    async def test_generates_id_when_missing(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        await store.upsert_account(dataclasses.replace(gmail_account, id=""))

        (loaded,) = await store.list_accounts("user-1")
        assert len(loaded.id) == 32

    @pytest.mark.asyncio
    async def test_closed_connection_raises_store_unavailable(
        self, store: SQLiteAccountStore, gmail_account: EmailAccount
    ) -> None:
        store.close()
        with pytest.raises(StoreUnavailable):
            await store.upsert_account(gmail_account)
        with pytest.raises(StoreUnavailable):
            await store.list_accounts("user-1")
