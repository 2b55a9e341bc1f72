# =============================================================================
# Conversation Service: Durable AI Studio History
# =============================================================================
#
# The agent loop holds its working turns in memory only. This service is the
# durable side: after a chat stream completes, the API layer stores the user
# message and the assembled model answer here, and the client replays them
# as `history` on the next call.
#
# Every read and write is scoped by org_id. A conversation id from another
# organization behaves exactly like an unknown id.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from documesh.db.models import AgentConversation, AgentMessage

logger = logging.getLogger(__name__)

_TITLE_MAX_LENGTH = 50


class ConversationNotFoundError(LookupError):
    """Raised when a conversation does not exist for the calling org."""


def make_title(initial_message: str) -> str:
    """First 50 characters of the opening message, ellipsised if longer."""
    if len(initial_message) > _TITLE_MAX_LENGTH:
        return initial_message[: _TITLE_MAX_LENGTH - 3] + "..."
    return initial_message


async def create_conversation(
    session: AsyncSession,
    org_id: str,
    user_id: str | None,
    initial_message: str,
) -> AgentConversation:
    """Create a conversation whose first message (sequence 0) is the user's."""
    conversation = AgentConversation(
        org_id=uuid.UUID(str(org_id)),
        user_id=user_id,
        title=make_title(initial_message),
    )
    session.add(conversation)
    await session.flush()

    session.add(AgentMessage(
        conversation_id=conversation.id,
        role="user",
        content=[{"type": "text", "text": initial_message}],
        sequence_number=0,
    ))
    await session.flush()

    logger.info(
        "Conversation created: conversation_id=%s, org_id=%s",
        conversation.id, org_id,
    )
    return conversation


async def get_conversation(
    session: AsyncSession,
    conversation_id: str,
    org_id: str,
    refresh: bool = False,
) -> AgentConversation | None:
    """
    Fetch a conversation (with messages) if it belongs to org_id.

    `refresh=True` reloads rows already in the session, picking up
    server-side defaults written by an earlier flush.
    """
    try:
        conversation_key = uuid.UUID(str(conversation_id))
        org_key = uuid.UUID(str(org_id))
    except ValueError:
        return None

    stmt = select(AgentConversation).where(
        AgentConversation.id == conversation_key,
        AgentConversation.org_id == org_key,
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def add_message(
    session: AsyncSession,
    conversation_id: str,
    org_id: str,
    role: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> AgentMessage:
    """
    Append a text message to a conversation.

    Raises:
        ConversationNotFoundError: Unknown id, or owned by another org.
    """
    conversation = await get_conversation(session, conversation_id, org_id)
    if conversation is None:
        raise ConversationNotFoundError(
            f"Conversation {conversation_id} not found or access denied"
        )

    next_sequence = await session.scalar(
        select(func.coalesce(func.max(AgentMessage.sequence_number) + 1, 0)).where(
            AgentMessage.conversation_id == conversation.id
        )
    )

    message = AgentMessage(
        conversation_id=conversation.id,
        role=role,
        content=[{"type": "text", "text": content}],
        sequence_number=next_sequence,
        metadata_=metadata,
    )
    session.add(message)
    # Touch the parent so listings sort by most recent activity
    conversation.updated_at = func.now()
    await session.flush()

    logger.debug(
        "Message added: conversation_id=%s, role=%s, sequence=%d",
        conversation_id, role, next_sequence,
    )
    return message


def message_text(message: AgentMessage) -> str:
    """Concatenate the text parts of a stored message."""
    return "".join(
        part.get("text", "")
        for part in message.content or []
        if isinstance(part, dict)
    )
