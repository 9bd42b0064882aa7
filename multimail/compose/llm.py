"""Composition and extraction capabilities backed by Claude."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from anthropic import AsyncAnthropic
from anthropic.types import TextBlock, ToolUseBlock

from multimail.compose.prompts import (
    COMPOSE_SYSTEM_PROMPT,
    DRAFT_TOOL,
    EXTRACTION_SYSTEM_PROMPT,
    build_compose_messages,
    extraction_payload,
    parse_draft,
    render_draft,
)
from multimail.mail.types import ConversationTurn, DraftEmail

logger = logging.getLogger(__name__)

_COMPOSE_MAX_TOKENS = 1024
_EXTRACT_MAX_TOKENS = 1000


class CompositionError(Exception):
    """Raised when the model does not return a usable draft or reply."""


@runtime_checkable
class Composer(Protocol):
    async def compose(self, request: str, history: list[ConversationTurn]) -> str:
        """Return the assistant reply; drafts use the ``render_draft`` template."""
        ...


@runtime_checkable
class Extractor(Protocol):
    async def extract(self, text: str) -> str:
        """Return ``{"to","subject","body"}`` as JSON, or ``NO_EMAIL_FOUND``."""
        ...


class AnthropicComposer:
    """Drafts emails with Claude using a forced tool call.

    The model returns the draft fields as structured tool input and the
    template is rendered locally, so labels and ordering are always exact.
    """

    def __init__(self, client: AsyncAnthropic, model: str) -> None:
        self._client = client
        self._model = model

    async def compose(self, request: str, history: list[ConversationTurn]) -> str:
        """Draft an email or reply conversationally.

        Raises:
            CompositionError: if no record_email_draft call comes back.
        """
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=_COMPOSE_MAX_TOKENS,
            system=COMPOSE_SYSTEM_PROMPT,
            tools=[DRAFT_TOOL],  # type: ignore[list-item]
            tool_choice={"type": "tool", "name": "record_email_draft"},
            messages=build_compose_messages(request, history),  # type: ignore[arg-type]
        )

        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == "record_email_draft":
                return _render_tool_input(block.input)  # type: ignore[arg-type]

        raise CompositionError(
            f"Model did not return a record_email_draft call "
            f"(stop_reason={response.stop_reason!r})"
        )


def _render_tool_input(data: dict[str, object]) -> str:
    """Turn record_email_draft input into the reply text shown to the user."""
    if data.get("action") == "draft":
        to, subject, body = (str(data.get(k) or "").strip() for k in ("to", "subject", "body"))
        if to and subject and body:
            return render_draft(DraftEmail(to=to, subject=subject, body=body))
        logger.warning("Draft missing fields (to=%r, subject=%r); asking the user", to, subject)
        return "I need a recipient, a subject, and a message to draft this email. What's missing?"
    reply = str(data.get("reply") or "").strip()
    if not reply:
        raise CompositionError("record_email_draft reply was empty")
    return reply


class AnthropicExtractor:
    """Re-parses a drafted message into ``{to, subject, body}`` with Claude."""

    def __init__(self, client: AsyncAnthropic, model: str) -> None:
        self._client = client
        self._model = model

    async def extract(self, text: str) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=_EXTRACT_MAX_TOKENS,
            temperature=0,
            system=EXTRACTION_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": text}],
        )
        parts = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(parts).strip()


class TemplateExtractor:
    """Deterministic extractor for text produced by ``render_draft``."""

    async def extract(self, text: str) -> str:
        return extraction_payload(parse_draft(text))
