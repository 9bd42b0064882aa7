"""Wires settings into a ready-to-use set of services."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from anthropic import AsyncAnthropic

from multimail.accounts.sqlite_store import SQLiteAccountStore
from multimail.accounts.store import AccountStore, RpcAccountStore
from multimail.accounts.tokens import TokenManager
from multimail.compose.flow import SendConfirmationFlow
from multimail.compose.llm import (
    AnthropicComposer,
    AnthropicExtractor,
    Composer,
    Extractor,
    TemplateExtractor,
)
from multimail.config import Settings
from multimail.mail.types import ConversationTurn, Provider
from multimail.providers.base import MailProvider, build_adapters
from multimail.search.aggregator import SearchAggregator
from multimail.server.tools import ToolSurface

logger = logging.getLogger(__name__)


class _UnconfiguredComposer:
    """Stands in when no Anthropic key is set; drafting needs the model."""

    async def compose(self, request: str, history: list[ConversationTurn]) -> str:
        return "Drafting emails needs ANTHROPIC_API_KEY to be configured."


@dataclass
class Runtime:
    settings: Settings
    store: AccountStore
    tokens: TokenManager
    adapters: dict[Provider, MailProvider]
    aggregator: SearchAggregator
    flow: SendConfirmationFlow
    tools: ToolSurface


@asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[Runtime]:
    """Async context manager that yields a fully wired Runtime.

    Owns the shared HTTP client (and the SQLite connection when the local
    store is used) and closes them on exit.

    Example::

        async with open_runtime(Settings.from_env()) as rt:
            outcome = await rt.aggregator.search(rt.settings.user_id, "in:inbox")
    """
    if not settings.user_id:
        raise ValueError("user id must be provided or MULTIMAIL_USER_ID env var must be set")

    async with httpx.AsyncClient(timeout=settings.http_timeout) as http:
        sqlite_store: SQLiteAccountStore | None = None
        store: AccountStore
        if settings.uses_remote_store:
            store = RpcAccountStore(http, settings.store_url, settings.store_key)
            logger.info("Using account store at %s", settings.store_url)
        else:
            sqlite_store = SQLiteAccountStore(settings.db_path)
            store = sqlite_store
            logger.info("Using local account store %s", settings.db_path)

        composer: Composer
        extractor: Extractor
        if settings.anthropic_api_key:
            client = AsyncAnthropic(api_key=settings.anthropic_api_key)
            composer = AnthropicComposer(client, settings.compose_model)
            extractor = AnthropicExtractor(client, settings.extract_model)
        else:
            logger.warning("ANTHROPIC_API_KEY not set; drafting disabled, template extraction only")
            composer = _UnconfiguredComposer()
            extractor = TemplateExtractor()

        tokens = TokenManager(store, http, settings.providers)
        adapters = build_adapters(http, settings)
        aggregator = SearchAggregator(store, tokens, adapters)
        flow = SendConfirmationFlow(settings.user_id, store, tokens, adapters, composer, extractor)
        tools = ToolSurface(settings.user_id, aggregator, flow)
        try:
            yield Runtime(settings, store, tokens, adapters, aggregator, flow, tools)
        finally:
            if sqlite_store is not None:
                sqlite_store.close()
