"""Canonical data types shared by the store, adapters, search, and compose layers."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

NO_SUBJECT = "No Subject"
UNKNOWN_PARTY = "Unknown"


class Provider(str, Enum):
    """Supported mail providers.

    Values match the strings stored by the account store and accepted by the
    tool schemas, so they round-trip without a mapping step.
    """

    GMAIL = "gmail"
    MICROSOFT = "microsoft"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class EmailAccount:
    """One authorized mailbox on one provider, owned by one user.

    Instances are short-lived copies of account store rows; use
    ``dataclasses.replace`` and ``AccountStore.upsert_account`` to change one.
    ``expires_at`` is always the real expiry of ``access_token``.
    """

    id: str
    owner_id: str
    provider: Provider
    email_address: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    provider_profile: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalEmailMessage:
    """A provider-agnostic email summary, built only by provider adapters."""

    id: str
    subject: str
    sender: str
    recipient: str
    date: str
    preview: str
    provider: Provider
    thread_id: str | None = None
    read_flag: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used in tool responses."""
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipient,
            "date": self.date,
            "snippet": self.preview,
            "provider": self.provider.value,
            "isRead": self.read_flag,
        }


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str


@dataclass(frozen=True)
class DraftEmail:
    """An email awaiting confirmation. Never persisted."""

    to: str
    subject: str
    body: str


@dataclass(frozen=True)
class SendResult:
    provider_message_id: str | None = None
    thread_id: str | None = None
