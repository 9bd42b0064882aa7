"""Tests for CLI commands: the runtime is mocked, CliRunner used throughout."""

import dataclasses
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner, Result

from multimail.accounts.store import StoreUnavailable
from multimail.compose.flow import FlowOutcome, FlowState
from multimail.mail.types import CanonicalEmailMessage, EmailAccount, Provider
from multimail.search.aggregator import AccountStatus, SearchOutcome


# ── Helpers ─────────────────────────────────────────────────────────────────────


def _runtime() -> MagicMock:
    rt = MagicMock()
    rt.aggregator.search = AsyncMock(return_value=SearchOutcome(query=""))
    rt.store.list_accounts = AsyncMock(return_value=[])
    rt.store.upsert_account = AsyncMock()
    rt.flow.respond = AsyncMock()
    return rt


def _invoke(rt: MagicMock, *args: str, input: str | None = None) -> Result:
    from multimail.cli.main import cli

    @asynccontextmanager
    async def fake_open_runtime(settings: Any):
        rt.settings = settings
        yield rt

    runner = CliRunner()
    with patch("multimail.cli.commands.open_runtime", fake_open_runtime), patch(
        "multimail.cli.main.load_dotenv"
    ):
        return runner.invoke(cli, ["--user-id", "user-1", *args], input=input)


def _message(msg_id: str, subject: str) -> CanonicalEmailMessage:
    return CanonicalEmailMessage(
        id=msg_id,
        subject=subject,
        sender="alice@example.com",
        recipient="me@gmail.com",
        date="2026-03-01T09:00:00Z",
        preview="...",
        provider=Provider.GMAIL,
    )


# ── search ─────────────────────────────────────────────────────────────────────


class TestSearchCommand:
    def test_prints_results_table(self) -> None:
        rt = _runtime()
        rt.aggregator.search = AsyncMock(
            return_value=SearchOutcome(
                query="budget",
                messages=[_message("m1", "Budget review")],
                total=1,
                accounts=[AccountStatus(Provider.GMAIL, "me@gmail.com", ok=True, result_count=1)],
            )
        )

        result = _invoke(rt, "search", "budget", "--limit", "5", "--provider", "gmail")

        assert result.exit_code == 0, result.output
        assert "Budget review" in result.output
        assert "showing 1 of 1" in result.output
        rt.aggregator.search.assert_awaited_once_with("user-1", "budget", 5, Provider.GMAIL)

    def test_reports_failed_accounts(self) -> None:
        rt = _runtime()
        rt.aggregator.search = AsyncMock(
            return_value=SearchOutcome(
                query="",
                accounts=[
                    AccountStatus(
                        Provider.MICROSOFT, "me@outlook.com", ok=False, error="Token expired"
                    )
                ],
            )
        )

        result = _invoke(rt, "search")

        assert result.exit_code == 0, result.output
        assert "me@outlook.com" in result.output
        assert "Token expired" in result.output

    def test_prints_notice_when_no_accounts(self) -> None:
        rt = _runtime()
        rt.aggregator.search = AsyncMock(
            return_value=SearchOutcome(query="x", notice="No email accounts connected")
        )

        result = _invoke(rt, "search", "x")

        assert "No email accounts connected" in result.output

    def test_rejects_unknown_provider(self) -> None:
        result = _invoke(_runtime(), "search", "x", "--provider", "yahoo")
        assert result.exit_code != 0

    def test_store_failure_is_reported(self) -> None:
        rt = _runtime()
        rt.aggregator.search = AsyncMock(side_effect=StoreUnavailable("HTTP 503"))

        result = _invoke(rt, "search", "x")

        assert result.exit_code == 0
        assert "Account store error" in result.output


# ── accounts / add-account ─────────────────────────────────────────────────────


class TestAccountsCommand:
    def test_empty_store_hints_at_add_account(self) -> None:
        result = _invoke(_runtime(), "accounts")
        assert "add-account" in result.output

    def test_lists_accounts_and_flags_expired_tokens(self, gmail_account: EmailAccount) -> None:
        expired = EmailAccount(
            id="old",
            owner_id="user-1",
            provider=Provider.MICROSOFT,
            email_address="old@outlook.com",
            access_token="t",
            refresh_token="r",
            expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )
        fresh = dataclasses.replace(
            gmail_account, expires_at=datetime.now(timezone.utc) + timedelta(hours=1)
        )
        rt = _runtime()
        rt.store.list_accounts = AsyncMock(return_value=[fresh, expired])

        result = _invoke(rt, "accounts")

        assert result.exit_code == 0, result.output
        assert "me@gmail.com" in result.output
        assert "old@outlook.com" in result.output
        assert "expired" in result.output
        assert "2 account(s)" in result.output


class TestAddAccountCommand:
    def test_upserts_account_with_expiry(self) -> None:
        rt = _runtime()

        result = _invoke(
            rt,
            "add-account",
            "--provider", "microsoft",
            "--email", "me@outlook.com",
            "--access-token", "tok",
            "--refresh-token", "ref",
            "--expires-in", "600",
        )

        assert result.exit_code == 0, result.output
        account: EmailAccount = rt.store.upsert_account.call_args.args[0]
        assert account.owner_id == "user-1"
        assert account.provider == Provider.MICROSOFT
        assert account.email_address == "me@outlook.com"
        assert account.refresh_token == "ref"
        remaining = account.expires_at - datetime.now(timezone.utc)
        assert timedelta(minutes=9) < remaining <= timedelta(minutes=10)
        assert "Saved microsoft account" in result.output

    def test_requires_access_token(self) -> None:
        result = _invoke(_runtime(), "add-account", "--provider", "gmail", "--email", "a@b.c")
        assert result.exit_code != 0


# ── chat ───────────────────────────────────────────────────────────────────────


class TestChatCommand:
    def test_passes_accumulated_history_to_flow(self) -> None:
        rt = _runtime()
        seen_history: list[int] = []

        async def respond(message: str, history: list, provider: Provider | None) -> FlowOutcome:
            seen_history.append(len(history))
            if message == "yes":
                return FlowOutcome(FlowState.SENT, "Email sent successfully!")
            return FlowOutcome(FlowState.AWAITING_CONFIRMATION, "To: a@example.com\nSubject: Hi")

        rt.flow.respond = AsyncMock(side_effect=respond)

        result = _invoke(rt, "chat", "--provider", "gmail", input="email a\nyes\n\n")

        assert result.exit_code == 0, result.output
        assert seen_history == [0, 2]
        assert rt.flow.respond.call_args.args[2] == Provider.GMAIL
        assert "Email sent successfully!" in result.output


# ── serve ──────────────────────────────────────────────────────────────────────


class TestServeCommand:
    def test_runs_stdio_server_with_settings(self, tmp_path: Path) -> None:
        from multimail.cli.main import cli

        serve_stdio = AsyncMock()
        runner = CliRunner()
        with patch("multimail.cli.commands.serve_stdio", serve_stdio), patch(
            "multimail.cli.main.load_dotenv"
        ):
            result = runner.invoke(cli, ["--user-id", "user-9", "serve"])

        assert result.exit_code == 0, result.output
        settings = serve_stdio.await_args.args[0]
        assert settings.user_id == "user-9"

    def test_requires_user_id(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from multimail.cli.main import cli

        monkeypatch.delenv("MULTIMAIL_USER_ID", raising=False)
        with patch("multimail.cli.main.load_dotenv"):
            result = CliRunner().invoke(cli, ["serve"])

        assert result.exit_code != 0
        assert "User ID is required" in result.output
