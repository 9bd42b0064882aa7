"""Draft → confirm → re-extract → send state machine.

The machine keeps no state of its own. Every call rebuilds its position from
the conversation history the caller passes in, plus the new user message:

    drafting ──draft shown──▶ awaiting_confirmation ──"yes"/"confirm"──▶ sent
        ▲                              │                         └──▶ aborted
        └──────── any other reply ─────┘
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from multimail.accounts.store import AccountStore
from multimail.accounts.tokens import TokenManager
from multimail.compose.llm import Composer, Extractor
from multimail.compose.prompts import NO_EMAIL_FOUND, looks_like_draft
from multimail.mail.types import (
    ConversationTurn,
    DraftEmail,
    EmailAccount,
    Provider,
    Role,
    SendResult,
)
from multimail.providers.base import MailProvider

logger = logging.getLogger(__name__)

CONFIRMATION_TOKENS = frozenset({"yes", "confirm"})

NOTHING_TO_CONFIRM = (
    "I don't see any email to confirm sending. Please try composing your email again."
)
INCOMPLETE_DRAFT = (
    "I couldn't find all the required email details. Please try composing your email again."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class FlowState(str, Enum):
    DRAFTING = "drafting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SENT = "sent"
    ABORTED = "aborted"


class DraftNotFound(Exception):
    """No parseable draft precedes the confirmation."""


class ExtractionSentinel(DraftNotFound):
    """The extractor answered NO_EMAIL_FOUND."""


class NoEligibleAccount(Exception):
    """No connected account matches the requested provider."""


@dataclass(frozen=True)
class FlowOutcome:
    """What the machine did with one user message."""

    state: FlowState
    message: str
    draft: DraftEmail | None = None
    result: SendResult | None = None
    provider: Provider | None = None
    is_error: bool = False


def is_confirmation(message: str) -> bool:
    """True only for an exact (trimmed, case-insensitive) confirmation token."""
    return message.strip().lower() in CONFIRMATION_TOKENS


def last_assistant_turn(history: list[ConversationTurn]) -> str | None:
    for turn in reversed(history):
        if turn.role == Role.ASSISTANT:
            return turn.text
    return None


def parse_extraction(raw: str) -> DraftEmail:
    """Validate an extractor response against its contract.

    Raises:
        ExtractionSentinel: if the extractor returned NO_EMAIL_FOUND.
        DraftNotFound: if the response is not a JSON object with
            non-empty to, subject, and body.
    """
    text = _FENCE_RE.sub("", raw.strip())
    if text == NO_EMAIL_FOUND:
        raise ExtractionSentinel("extractor found no email in the previous message")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DraftNotFound(f"extractor response is not JSON: {text[:80]!r}") from exc
    if not isinstance(data, dict):
        raise DraftNotFound("extractor response is not a JSON object")

    fields = {k: data.get(k) for k in ("to", "subject", "body")}
    missing = [k for k, v in fields.items() if not isinstance(v, str) or not v]
    if missing:
        raise DraftNotFound(f"extracted draft is missing {', '.join(missing)}")
    return DraftEmail(to=fields["to"], subject=fields["subject"], body=fields["body"])  # type: ignore[arg-type]


def select_account(
    accounts: list[EmailAccount], provider: Provider | None
) -> EmailAccount:
    """First account of the requested provider, or the first account overall.

    Raises:
        NoEligibleAccount: if nothing matches.
    """
    for account in accounts:
        if provider is None or account.provider == provider:
            return account
    if provider is not None:
        raise NoEligibleAccount(f"No {provider.value} account connected.")
    raise NoEligibleAccount("No email accounts connected. Please connect an email account first.")


class SendConfirmationFlow:
    """Orchestrates drafting, confirmation, re-extraction, and dispatch.

    Usage::

        flow = SendConfirmationFlow(user_id, store, tokens, adapters, composer, extractor)
        outcome = await flow.respond("email a@example.com saying hi", history=[])
        ...
        outcome = await flow.respond("yes", history=[..., assistant_turn])
    """

    def __init__(
        self,
        owner_id: str,
        store: AccountStore,
        tokens: TokenManager,
        adapters: dict[Provider, MailProvider],
        composer: Composer,
        extractor: Extractor,
    ) -> None:
        self._owner_id = owner_id
        self._store = store
        self._tokens = tokens
        self._adapters = adapters
        self._composer = composer
        self._extractor = extractor

    async def respond(
        self,
        message: str,
        history: list[ConversationTurn],
        provider: Provider | None = None,
    ) -> FlowOutcome:
        """Advance the conversation by one user message. Never raises."""
        if is_confirmation(message):
            return await self._confirm(history, provider)
        return await self._draft(message, history)

    async def dispatch(self, draft: DraftEmail, provider: Provider | None = None) -> FlowOutcome:
        """Send draft from the selected account. Never raises.

        Failures come back as a drafting outcome with ``is_error`` set so the
        caller can retry with a new request.
        """
        try:
            accounts = await self._store.list_accounts(self._owner_id)
            account = select_account(accounts, provider)
        except NoEligibleAccount as exc:
            logger.info("Send skipped: %s", exc)
            return FlowOutcome(FlowState.DRAFTING, str(exc), draft=draft, is_error=True)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not load accounts for send: %s", exc)
            return FlowOutcome(FlowState.DRAFTING, f"Send failed: {exc}", draft=draft, is_error=True)

        adapter = self._adapters.get(account.provider)
        if adapter is None:
            return FlowOutcome(
                FlowState.DRAFTING,
                f"Send failed: unsupported email provider {account.provider.value}",
                draft=draft,
                is_error=True,
            )

        try:
            token = await self._tokens.ensure_fresh_token(account)
            result = await adapter.send(token, draft.to, draft.subject, draft.body)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Send via %s account %s failed: %s",
                account.provider.value,
                account.email_address,
                exc,
            )
            return FlowOutcome(
                FlowState.DRAFTING,
                f"Send failed: {exc}",
                draft=draft,
                provider=account.provider,
                is_error=True,
            )

        logger.info("Email sent via %s to %s", account.provider.value, draft.to)
        return FlowOutcome(
            FlowState.SENT,
            (
                "Email sent successfully!\n\n"
                f"To: {draft.to}\nSubject: {draft.subject}\n\nBody:\n{draft.body}"
            ),
            draft=draft,
            result=result,
            provider=account.provider,
        )

    # ── Internal ───────────────────────────────────────────────────────────────

    async def _draft(self, message: str, history: list[ConversationTurn]) -> FlowOutcome:
        try:
            reply = await self._composer.compose(message, history)
        except Exception as exc:  # noqa: BLE001
            logger.error("Composition failed: %s", exc, exc_info=True)
            return FlowOutcome(
                FlowState.DRAFTING,
                "Sorry, I couldn't draft that email. Please try again.",
                is_error=True,
            )
        state = FlowState.AWAITING_CONFIRMATION if looks_like_draft(reply) else FlowState.DRAFTING
        return FlowOutcome(state, reply)

    async def _confirm(
        self, history: list[ConversationTurn], provider: Provider | None
    ) -> FlowOutcome:
        previous = last_assistant_turn(history)
        if previous is None:
            return FlowOutcome(FlowState.ABORTED, NOTHING_TO_CONFIRM)

        try:
            raw = await self._extractor.extract(previous)
            draft = parse_extraction(raw)
        except ExtractionSentinel as exc:
            logger.info("Confirmation aborted: %s", exc)
            return FlowOutcome(FlowState.ABORTED, NOTHING_TO_CONFIRM)
        except DraftNotFound as exc:
            logger.warning("Confirmation aborted: %s", exc)
            return FlowOutcome(FlowState.ABORTED, INCOMPLETE_DRAFT)
        except Exception as exc:  # noqa: BLE001
            logger.error("Extraction failed: %s", exc, exc_info=True)
            return FlowOutcome(
                FlowState.ABORTED,
                "I couldn't process the email details. Please try composing your email again.",
                is_error=True,
            )

        return await self.dispatch(draft, provider)
