"""Tests for the draft template and extraction contract."""

import json

import pytest

from multimail.compose.prompts import (
    CONFIRM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    NO_EMAIL_FOUND,
    build_compose_messages,
    extraction_payload,
    looks_like_draft,
    parse_draft,
    render_draft,
)
from multimail.mail.types import ConversationTurn, DraftEmail, Role

DRAFT = DraftEmail(
    to="a@example.com",
    subject="Project update",
    body="Hi Ana,\n\nThe report is ready: https://example.com/r?id=1\n\nBest regards,\nSam",
)


class TestRenderDraft:
    def test_labels_appear_in_fixed_order(self) -> None:
        text = render_draft(DRAFT)
        lines = text.split("\n")
        assert lines[0] == "I'll help you send this email. Please review the details:"
        assert lines[2] == "Email Details"
        assert lines[3] == "To: a@example.com"
        assert lines[4] == "Subject: Project update"
        assert lines[6] == "Email Body:"
        assert text.endswith(CONFIRM_PROMPT)

    def test_rendered_draft_looks_like_draft(self) -> None:
        assert looks_like_draft(render_draft(DRAFT))

    def test_plain_reply_does_not_look_like_draft(self) -> None:
        assert not looks_like_draft("Who should I send this to?")


class TestParseDraft:
    def test_recovers_fields_including_multiline_body(self) -> None:
        assert parse_draft(render_draft(DRAFT)) == DRAFT

    def test_tolerates_surrounding_text(self) -> None:
        text = "Sure thing!\n\n" + render_draft(DRAFT)
        assert parse_draft(text) == DRAFT

    def test_missing_confirmation_prompt_returns_none(self) -> None:
        text = render_draft(DRAFT).replace(CONFIRM_PROMPT, "")
        assert parse_draft(text) is None

    def test_unrelated_text_returns_none(self) -> None:
        assert parse_draft("Hello there") is None

    @pytest.mark.parametrize("body", ["Hello\n", "Hello\n\n", "\nHello", ""])
    def test_leading_and_trailing_newlines_in_body_survive(self, body: str) -> None:
        draft = DraftEmail(to="a@example.com", subject="Hi", body=body)
        assert parse_draft(render_draft(draft)) == draft

    def test_single_newline_before_confirmation_is_accepted(self) -> None:
        text = render_draft(DRAFT).replace("\n\n" + CONFIRM_PROMPT, "\n" + CONFIRM_PROMPT)
        assert parse_draft(text) == DRAFT


class TestExtractionPayload:
    def test_none_is_sentinel(self) -> None:
        assert extraction_payload(None) == NO_EMAIL_FOUND

    def test_draft_is_json_object(self) -> None:
        assert json.loads(extraction_payload(DRAFT)) == {
            "to": DRAFT.to,
            "subject": DRAFT.subject,
            "body": DRAFT.body,
        }

    def test_system_prompt_names_sentinel(self) -> None:
        assert NO_EMAIL_FOUND in EXTRACTION_SYSTEM_PROMPT


class TestBuildComposeMessages:
    def test_history_then_request(self) -> None:
        history = [
            ConversationTurn(Role.USER, "email bob"),
            ConversationTurn(Role.ASSISTANT, "What should it say?"),
            ConversationTurn(Role.ASSISTANT, ""),
        ]
        assert build_compose_messages("say hi", history) == [
            {"role": "user", "content": "email bob"},
            {"role": "assistant", "content": "What should it say?"},
            {"role": "user", "content": "say hi"},
        ]
