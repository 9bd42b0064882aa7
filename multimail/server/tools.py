"""MCP tool definitions, argument validation, and routing."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from mcp import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from multimail.compose.flow import FlowState, SendConfirmationFlow
from multimail.mail.types import DraftEmail, Provider
from multimail.search.aggregator import SearchAggregator

logger = logging.getLogger(__name__)

ProviderName = Literal["gmail", "microsoft"]


class SchemaValidationFailed(Exception):
    """Tool arguments do not match the declared schema."""

    def __init__(self, tool_name: str, error: ValidationError) -> None:
        self.tool_name = tool_name
        problems = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'arguments'}: {e['msg']}"
            for e in error.errors()
        )
        super().__init__(f"Invalid arguments for {tool_name}: {problems}")


# ── Argument schemas ───────────────────────────────────────────────────────────


class _ToolArgs(BaseModel):
    model_config = ConfigDict(strict=True)


class SearchEmailsArgs(_ToolArgs):
    query: str = Field(description="Search query for emails")
    maxResults: int = Field(20, ge=1, le=100, description="Maximum number of results")
    provider: ProviderName | None = Field(None, description="Specific provider to search")


class GetEmailArgs(_ToolArgs):
    emailId: str = Field(description="ID of the email to retrieve")
    provider: ProviderName = Field(description="Email provider")


class ComposeEmailArgs(_ToolArgs):
    to: str = Field(description="Recipient email address")
    subject: str = Field(description="Email subject")
    body: str = Field(description="Email body content")
    provider: ProviderName | None = Field(None, description="Provider to send from")


class SummarizeEmailsArgs(_ToolArgs):
    emailIds: list[str] = Field(description="Array of email IDs to summarize")
    provider: ProviderName = Field(description="Email provider")


_TOOL_SPECS: dict[str, tuple[str, type[_ToolArgs]]] = {
    "search_emails": ("Search for emails across connected accounts", SearchEmailsArgs),
    "get_email": ("Get detailed content of a specific email", GetEmailArgs),
    "compose_email": ("Compose and send an email", ComposeEmailArgs),
    "summarize_emails": ("Get a summary of multiple emails", SummarizeEmailsArgs),
}


# ── Response envelopes ─────────────────────────────────────────────────────────


def text_result(text: str, *, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=is_error,
    )


def json_result(data: Any) -> types.CallToolResult:
    return text_result(json.dumps(data, indent=2))


def _provider(name: str | None) -> Provider | None:
    return Provider(name) if name else None


# ── Tool surface ───────────────────────────────────────────────────────────────


class ToolSurface:
    """Validates tool calls and routes them to search or compose.

    Every call resolves to a ``CallToolResult``; nothing raises out of
    ``call``. Invalid arguments are rejected before any account or provider
    is touched.
    """

    def __init__(
        self,
        owner_id: str,
        aggregator: SearchAggregator,
        flow: SendConfirmationFlow,
    ) -> None:
        self._owner_id = owner_id
        self._aggregator = aggregator
        self._flow = flow
        self._handlers: dict[str, Callable[[Any], Awaitable[types.CallToolResult]]] = {
            "search_emails": self._search_emails,
            "get_email": self._get_email,
            "compose_email": self._compose_email,
            "summarize_emails": self._summarize_emails,
        }

    def list_tools(self) -> list[types.Tool]:
        return [
            types.Tool(name=name, description=description, inputSchema=model.model_json_schema())
            for name, (description, model) in _TOOL_SPECS.items()
        ]

    async def call(self, name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        spec = _TOOL_SPECS.get(name)
        if spec is None:
            return text_result(f"Unknown tool: {name}", is_error=True)

        try:
            args = validate_arguments(name, arguments)
        except SchemaValidationFailed as exc:
            logger.warning("%s", exc)
            return text_result(str(exc), is_error=True)

        logger.debug("Tool call %s %s", name, args)
        try:
            return await self._handlers[name](args)
        except Exception as exc:  # noqa: BLE001
            logger.error("Tool %s failed: %s", name, exc, exc_info=True)
            return text_result(f"Error running {name}: {exc}", is_error=True)

    # ── Handlers ───────────────────────────────────────────────────────────────

    async def _search_emails(self, args: SearchEmailsArgs) -> types.CallToolResult:
        outcome = await self._aggregator.search(
            self._owner_id,
            args.query,
            max_results=args.maxResults,
            provider=_provider(args.provider),
        )
        if outcome.notice:
            return text_result(outcome.notice)
        return json_result(outcome.to_dict())

    async def _get_email(self, args: GetEmailArgs) -> types.CallToolResult:
        return text_result("Email detail retrieval not yet implemented", is_error=True)

    async def _compose_email(self, args: ComposeEmailArgs) -> types.CallToolResult:
        draft = DraftEmail(to=args.to, subject=args.subject, body=args.body)
        outcome = await self._flow.dispatch(draft, _provider(args.provider))
        if outcome.state != FlowState.SENT:
            return text_result(outcome.message, is_error=True)
        return json_result(
            {
                "success": True,
                "message": "Email sent successfully",
                "provider": outcome.provider.value if outcome.provider else None,
                "to": draft.to,
                "subject": draft.subject,
                "messageId": outcome.result.provider_message_id if outcome.result else None,
            }
        )

    async def _summarize_emails(self, args: SummarizeEmailsArgs) -> types.CallToolResult:
        return text_result("Email summarization not yet implemented", is_error=True)


def validate_arguments(name: str, arguments: dict[str, Any] | None) -> _ToolArgs:
    """Validate raw tool arguments against the tool's schema.

    Raises:
        SchemaValidationFailed: on any type, range, enum, or required-field error.
    """
    _, model = _TOOL_SPECS[name]
    try:
        return model.model_validate(arguments or {})
    except ValidationError as exc:
        raise SchemaValidationFailed(name, exc) from exc
