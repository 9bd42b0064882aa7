"""CLI command implementations: all commands run against an open Runtime."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from multimail.accounts.store import StoreUnavailable
from multimail.compose.flow import FlowState
from multimail.config import Settings
from multimail.mail.types import ConversationTurn, EmailAccount, Provider, Role
from multimail.runtime import open_runtime
from multimail.server.app import serve_stdio

logger = logging.getLogger(__name__)
console = Console(width=200)

_PROVIDER_CHOICE = click.Choice([p.value for p in Provider])


def _provider(value: str | None) -> Provider | None:
    return Provider(value) if value else None


# ── serve ──────────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def serve(settings: Settings) -> None:
    """Run the email MCP server on stdio for one user."""
    if not settings.user_id:
        raise click.UsageError("User ID is required: pass --user-id or set MULTIMAIL_USER_ID.")
    logging.getLogger().setLevel(logging.INFO)
    try:
        asyncio.run(serve_stdio(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


# ── search ─────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("query", default="")
@click.option("--limit", default=20, show_default=True, help="Number of results.")
@click.option("--provider", type=_PROVIDER_CHOICE, default=None, help="Only search one provider.")
@click.pass_obj
def search(settings: Settings, query: str, limit: int, provider: str | None) -> None:
    """Search every connected account, newest first."""
    asyncio.run(_search_async(settings, query, limit, _provider(provider)))


async def _search_async(
    settings: Settings, query: str, limit: int, provider: Provider | None
) -> None:
    async with open_runtime(settings) as rt:
        try:
            outcome = await rt.aggregator.search(settings.user_id, query, limit, provider)
        except StoreUnavailable as exc:
            console.print(f"[red]Account store error: {exc}[/red]")
            return

    if outcome.notice:
        console.print(f"[yellow]{outcome.notice}[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=40)
    table.add_column("From", max_width=30)
    table.add_column("Date", width=32)
    table.add_column("Provider", width=10)
    for i, message in enumerate(outcome.messages, start=1):
        style = "bold" if message.read_flag is False else ""
        table.add_row(
            str(i),
            f"[{style}]{message.subject}[/{style}]" if style else message.subject,
            message.sender,
            message.date,
            message.provider.value,
        )

    console.print(f"\nResults for [bold]{query or '(inbox)'!r}[/bold] "
                  f"(showing {len(outcome.messages)} of {outcome.total})\n")
    console.print(table)
    for status in outcome.accounts:
        if not status.ok:
            console.print(
                f"  [red]✗ {status.provider.value} {status.email_address}: {status.error}[/red]"
            )


# ── accounts ───────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def accounts(settings: Settings) -> None:
    """List connected accounts and token expiry."""
    asyncio.run(_accounts_async(settings))


async def _accounts_async(settings: Settings) -> None:
    async with open_runtime(settings) as rt:
        try:
            rows = await rt.store.list_accounts(settings.user_id)
        except StoreUnavailable as exc:
            console.print(f"[red]Account store error: {exc}[/red]")
            return

    if not rows:
        console.print(
            "[yellow]No email accounts connected. "
            "Use `multimail add-account` to register one.[/yellow]"
        )
        return

    now = datetime.now(timezone.utc)
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Provider", width=10)
    table.add_column("Address", max_width=40)
    table.add_column("Token expires", width=26)
    for account in rows:
        expired = account.expires_at <= now
        expiry = account.expires_at.strftime("%Y-%m-%d %H:%M UTC")
        table.add_row(
            account.provider.value,
            account.email_address,
            f"[red]{expiry} (expired)[/red]" if expired else expiry,
        )
    providers = sorted({a.provider.value for a in rows})
    console.print(f"\n{len(rows)} account(s) connected, providers: {', '.join(providers)}\n")
    console.print(table)


@click.command("add-account")
@click.option("--provider", type=_PROVIDER_CHOICE, required=True)
@click.option("--email", "email_address", required=True, help="Mailbox address.")
@click.option("--access-token", required=True)
@click.option("--refresh-token", default="", help="Needed for automatic refresh.")
@click.option("--expires-in", default=3600, show_default=True, help="Seconds until expiry.")
@click.pass_obj
def add_account(
    settings: Settings,
    provider: str,
    email_address: str,
    access_token: str,
    refresh_token: str,
    expires_in: int,
) -> None:
    """Register tokens obtained elsewhere (e.g. an OAuth playground)."""
    account = EmailAccount(
        id=uuid.uuid4().hex,
        owner_id=settings.user_id,
        provider=Provider(provider),
        email_address=email_address,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    asyncio.run(_add_account_async(settings, account))


async def _add_account_async(settings: Settings, account: EmailAccount) -> None:
    async with open_runtime(settings) as rt:
        try:
            await rt.store.upsert_account(account)
        except StoreUnavailable as exc:
            console.print(f"[red]Account store error: {exc}[/red]")
            return
    console.print(f"[green]Saved {account.provider.value} account {account.email_address}.[/green]")


# ── chat ───────────────────────────────────────────────────────────────────────


@click.command()
@click.option("--provider", type=_PROVIDER_CHOICE, default=None, help="Send from this provider.")
@click.pass_obj
def chat(settings: Settings, provider: str | None) -> None:
    """Compose emails conversationally; reply "yes" or "confirm" to send a draft."""
    asyncio.run(_chat_async(settings, _provider(provider)))


async def _chat_async(settings: Settings, provider: Provider | None) -> None:
    history: list[ConversationTurn] = []
    async with open_runtime(settings) as rt:
        console.print("[dim]Describe the email to send. Empty line or Ctrl+D to quit.[/dim]")
        while True:
            try:
                message = click.prompt("you", default="", show_default=False)
            except click.Abort:
                break
            if not message.strip():
                break

            outcome = await rt.flow.respond(message, history, provider)
            history.append(ConversationTurn(Role.USER, message))
            history.append(ConversationTurn(Role.ASSISTANT, outcome.message))

            style = {
                FlowState.SENT: "green",
                FlowState.ABORTED: "yellow",
                FlowState.AWAITING_CONFIRMATION: "blue",
            }.get(outcome.state, "red" if outcome.is_error else "white")
            console.print(Panel(outcome.message, title=outcome.state.value, border_style=style))
