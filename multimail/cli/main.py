"""CLI entry point for the multi-account email MCP server."""

import logging

import click
from dotenv import load_dotenv

from multimail.config import Settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


@click.group()
@click.option("--user-id", envvar="MULTIMAIL_USER_ID", default=None, help="Account owner ID.")
@click.option("-v", "--verbose", is_flag=True, help="Log at INFO level.")
@click.pass_context
def cli(ctx: click.Context, user_id: str | None, verbose: bool) -> None:
    """Search and send email across connected Gmail and Microsoft accounts."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ctx.obj = Settings.from_env(user_id=user_id)


# Import and register commands after cli is defined to avoid circular imports.
from multimail.cli.commands import accounts, add_account, chat, search, serve  # noqa: E402

cli.add_command(serve)
cli.add_command(search)
cli.add_command(accounts)
cli.add_command(add_account)
cli.add_command(chat)
