# =============================================================================
# Unit Tests: Conversation Persistence & Chat Streaming
# =============================================================================
#
# Test groups:
#   1. Conversation service (titles, scoping, sequence numbers)
#   2. POST /chat stream generator (mid-stream errors, post-stream persistence)
#   3. Request model validation
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError

from documesh.db.models import AgentMessage
from documesh.models.requests import ChatRequest
from documesh.services.conversations import (
    ConversationNotFoundError,
    add_message,
    create_conversation,
    get_conversation,
    make_title,
    message_text,
)

ORG_UUID = "11111111-1111-1111-1111-111111111111"


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


@dataclass
class FakeConversation:
    """Lightweight stand-in for the AgentConversation ORM model."""

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    org_id: uuid.UUID = uuid.UUID(ORG_UUID)
    title: str = "How many resumes?"
    updated_at: object = None
    messages: list = field(default_factory=list)


def _session_finding(conversation):
    session = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = conversation
    session.execute = AsyncMock(return_value=result)
    session.scalar = AsyncMock()
    session.flush = AsyncMock()
    return session


# ---------------------------------------------------------------------------
# 1. Conversation Service
# ---------------------------------------------------------------------------


class TestMakeTitle:
    """Tests for make_title."""

    def test_short_message_kept(self):
        assert make_title("How many resumes?") == "How many resumes?"

    def test_exactly_fifty_kept(self):
        message = "x" * 50
        assert make_title(message) == message

    def test_long_message_truncated_with_ellipsis(self):
        title = make_title("y" * 80)
        assert len(title) == 50
        assert title.endswith("...")


class TestConversationService:
    """Tests for create/get/add with a mocked session."""

    def test_create_adds_first_user_message(self):
        session = MagicMock()
        session.flush = AsyncMock()

        conversation = _run(create_conversation(
            session, ORG_UUID, "user-7", "List the top skills",
        ))

        assert conversation.title == "List the top skills"
        assert conversation.user_id == "user-7"
        added = [c.args[0] for c in session.add.call_args_list]
        first_message = added[1]
        assert isinstance(first_message, AgentMessage)
        assert first_message.role == "user"
        assert first_message.sequence_number == 0
        assert first_message.content == [{"type": "text", "text": "List the top skills"}]

    def test_get_with_invalid_id_skips_db(self):
        session = _session_finding(None)

        assert _run(get_conversation(session, "nope", ORG_UUID)) is None
        session.execute.assert_not_called()

    def test_get_returns_scoped_match(self):
        conversation = FakeConversation()
        session = _session_finding(conversation)

        found = _run(get_conversation(session, str(conversation.id), ORG_UUID))

        assert found is conversation

    def test_add_to_unknown_conversation_raises(self):
        session = _session_finding(None)

        with pytest.raises(ConversationNotFoundError):
            _run(add_message(session, str(uuid.uuid4()), ORG_UUID, "model", "hi"))
        session.add.assert_not_called()

    def test_add_uses_next_sequence_number(self):
        conversation = FakeConversation()
        session = _session_finding(conversation)
        session.scalar.return_value = 3

        message = _run(add_message(
            session, str(conversation.id), ORG_UUID, "model", "42 resumes.",
            metadata={"request_id": "req-1"},
        ))

        assert message.sequence_number == 3
        assert message.role == "model"
        assert message.conversation_id == conversation.id
        assert message.metadata_ == {"request_id": "req-1"}
        assert conversation.updated_at is not None
        session.flush.assert_awaited()

    def test_message_text_joins_parts(self):
        message = AgentMessage(
            role="model",
            content=[{"type": "text", "text": "a"}, {"type": "text", "text": "b"}],
            sequence_number=1,
        )
        assert message_text(message) == "ab"


# ---------------------------------------------------------------------------
# 2. Chat Stream Generator
# ---------------------------------------------------------------------------


def _drain(agen) -> list[str]:
    async def _collect():
        return [chunk async for chunk in agen]
    return _run(_collect())


def _fake_chat(chunks, error=None):
    async def _chat(*args, **kwargs):
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error
    return _chat


class TestChatStream:
    """Tests for the POST /chat streaming body."""

    def test_chunks_streamed_and_exchange_persisted(self):
        from documesh.api import chat as chat_api

        request = ChatRequest(message="How many?", conversation_id=str(uuid.uuid4()))

        with (
            patch.object(chat_api, "chat", _fake_chat(["42 ", "resumes."])),
            patch.object(chat_api, "_persist_exchange", new_callable=AsyncMock) as persist,
        ):
            chunks = _drain(chat_api._stream_answer(request, ORG_UUID, MagicMock(), "req-1"))

        assert chunks == ["42 ", "resumes."]
        persist.assert_awaited_once()
        kwargs = persist.call_args.kwargs
        assert kwargs["answer"] == "42 resumes."
        assert kwargs["user_message"] == "How many?"
        assert kwargs["org_id"] == ORG_UUID

    def test_persist_user_message_false_stores_answer_only(self):
        from documesh.api import chat as chat_api

        request = ChatRequest(
            message="How many?",
            conversation_id=str(uuid.uuid4()),
            persist_user_message=False,
        )

        with (
            patch.object(chat_api, "chat", _fake_chat(["ok"])),
            patch.object(chat_api, "_persist_exchange", new_callable=AsyncMock) as persist,
        ):
            _drain(chat_api._stream_answer(request, ORG_UUID, MagicMock(), "req-1"))

        assert persist.call_args.kwargs["user_message"] is None

    def test_no_conversation_id_skips_persistence(self):
        from documesh.api import chat as chat_api

        request = ChatRequest(message="How many?")

        with (
            patch.object(chat_api, "chat", _fake_chat(["ok"])),
            patch.object(chat_api, "_persist_exchange", new_callable=AsyncMock) as persist,
        ):
            _drain(chat_api._stream_answer(request, ORG_UUID, MagicMock(), "req-1"))

        persist.assert_not_called()

    def test_mid_stream_failure_becomes_error_line(self):
        from documesh.api import chat as chat_api

        request = ChatRequest(message="How many?", conversation_id=str(uuid.uuid4()))

        with (
            patch.object(chat_api, "chat", _fake_chat(["Partial "], RuntimeError("boom"))),
            patch.object(chat_api, "_persist_exchange", new_callable=AsyncMock) as persist,
        ):
            chunks = _drain(chat_api._stream_answer(request, ORG_UUID, MagicMock(), "req-1"))

        assert chunks == ["Partial ", chat_api.STREAM_ERROR_MESSAGE]
        assert "boom" not in "".join(chunks)
        persist.assert_not_called()


# ---------------------------------------------------------------------------
# 3. Request Model Validation
# ---------------------------------------------------------------------------


class TestChatRequest:
    """Tests for the ChatRequest model."""

    def test_defaults(self):
        request = ChatRequest(message="hi")
        assert request.history == []
        assert request.conversation_id is None
        assert request.persist_user_message is True

    def test_empty_message_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest(message="")

    def test_history_roles_validated(self):
        with pytest.raises(ValidationError):
            ChatRequest(message="hi", history=[{"role": "system", "content": "x"}])

    def test_history_accepts_part_lists(self):
        request = ChatRequest(message="hi", history=[
            {"role": "model", "content": [{"type": "text", "text": "earlier"}]},
        ])
        assert request.history[0].role == "model"
