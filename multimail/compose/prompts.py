"""Draft template, model prompts, and tool definitions for email composition."""

import json
import re
from typing import Any

from multimail.mail.types import ConversationTurn, DraftEmail

#: Literal returned by the extractor when no draft can be located.
NO_EMAIL_FOUND = "NO_EMAIL_FOUND"

DRAFT_INTRO = "I'll help you send this email. Please review the details:"
DRAFT_HEADING = "Email Details"
BODY_HEADING = "Email Body:"
CONFIRM_PROMPT = 'Does this look correct? Please respond with "yes" or "confirm" to send the email.'


# ── Draft template ─────────────────────────────────────────────────────────────


def render_draft(draft: DraftEmail) -> str:
    """Render a draft in the fixed template the confirmation step re-parses.

    Labels and their order are a contract with the extractor; change them
    together with ``parse_draft`` and ``EXTRACTION_SYSTEM_PROMPT``.
    """
    return "\n".join(
        [
            DRAFT_INTRO,
            "",
            DRAFT_HEADING,
            f"To: {draft.to}",
            f"Subject: {draft.subject}",
            "",
            BODY_HEADING,
            draft.body,
            "",
            CONFIRM_PROMPT,
        ]
    )


_DRAFT_RE = re.compile(
    r"^To:[ \t]*(?P<to>[^\n]+?)[ \t]*\n"
    r"Subject:[ \t]*(?P<subject>[^\n]+?)[ \t]*\n"
    r"\n?"
    + re.escape(BODY_HEADING)
    + r"[ \t]*\n(?P<body>.*?)\n{0,2}"
    + re.escape(CONFIRM_PROMPT),
    re.MULTILINE | re.DOTALL,
)


def parse_draft(text: str) -> DraftEmail | None:
    """Inverse of ``render_draft``; None if the template is not present."""
    match = _DRAFT_RE.search(text)
    if match is None:
        return None
    return DraftEmail(
        to=match.group("to"),
        subject=match.group("subject"),
        body=match.group("body"),
    )


def looks_like_draft(text: str) -> bool:
    """True if text carries the labeled To:/Subject: lines of a draft."""
    return bool(re.search(r"^To:.+\n^Subject:.+", text, re.MULTILINE))


# ── Composition ────────────────────────────────────────────────────────────────

COMPOSE_SYSTEM_PROMPT = """\
You are an AI email assistant. Your job is to help users compose and send emails.

When the user wants to send an email:
1. Extract the recipient's email address, the subject, and the message content.
2. Write the body professionally with a salutation (e.g. "Hi", "Dear"), the
   message, and a sign-off (e.g. "Best regards") followed by the sender's name.
3. Preserve line breaks, URLs, and links exactly as provided.

Call record_email_draft with action "draft" and the to/subject/body fields.
If required information is missing, or the message is not about sending an
email, call record_email_draft with action "reply" and a helpful reply.
"""

#: Anthropic tool schema for a structured draft (or a plain reply).
DRAFT_TOOL: dict[str, Any] = {
    "name": "record_email_draft",
    "description": "Record an email draft for user confirmation, or a plain reply.",
    "input_schema": {
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ["draft", "reply"],
                "description": "'draft' when all email fields are known; otherwise 'reply'.",
            },
            "to": {"type": "string", "description": "Recipient email address."},
            "subject": {"type": "string", "description": "Subject line."},
            "body": {
                "type": "string",
                "description": "Complete body with salutation and sign-off.",
            },
            "reply": {
                "type": "string",
                "description": "Message to the user when action is 'reply'.",
            },
        },
        "required": ["action"],
    },
}


def build_compose_messages(
    request: str, history: list[ConversationTurn]
) -> list[dict[str, str]]:
    """Build the Anthropic messages list: prior turns, then the new request."""
    messages = [{"role": turn.role.value, "content": turn.text} for turn in history if turn.text]
    messages.append({"role": "user", "content": request})
    return messages


# ── Extraction ─────────────────────────────────────────────────────────────────

EXTRACTION_SYSTEM_PROMPT = f"""\
You are an email parser. Extract the email details from a message that
contains an email preview in this format:

{DRAFT_INTRO}

{DRAFT_HEADING}
To: [email]
Subject: [subject]

{BODY_HEADING}
[body]

If you find these details, return them in this EXACT format (no other text):
{{"to": "[email address]", "subject": "[subject line]", "body": "[complete body]"}}

If you cannot find valid email details, respond with exactly: {NO_EMAIL_FOUND}

Rules:
1. Only return the JSON object or {NO_EMAIL_FOUND}, nothing else
2. Include the complete email body with all line breaks
3. Do not modify any of the content
4. If any required field is missing, return {NO_EMAIL_FOUND}
"""


def extraction_payload(draft: DraftEmail | None) -> str:
    """Encode a parsed draft in the extractor's response contract."""
    if draft is None:
        return NO_EMAIL_FOUND
    return json.dumps({"to": draft.to, "subject": draft.subject, "body": draft.body})
