# =============================================================================
# Conversations API: Stored Chat History
# =============================================================================
#
# POST /conversations        create a conversation from its first message
# GET  /conversations/{id}   read one back, messages in order
#
# Both are scoped to the caller's organization. An id owned by another
# organization is reported as 404, same as an id that does not exist.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from documesh.api.deps import get_current_org_id
from documesh.db.engine import get_async_session
from documesh.db.models import AgentConversation
from documesh.models.requests import CreateConversationRequest
from documesh.models.responses import ConversationResponse, MessageResponse
from documesh.services import conversations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


def _to_response(conversation: AgentConversation) -> ConversationResponse:
    return ConversationResponse(
        id=str(conversation.id),
        title=conversation.title,
        user_id=conversation.user_id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        messages=[
            MessageResponse(
                id=str(message.id),
                role=message.role,
                content=conversations.message_text(message),
                sequence_number=message.sequence_number,
                created_at=message.created_at,
            )
            for message in conversation.messages
        ],
    )


@router.post(
    "",
    response_model=ConversationResponse,
    status_code=201,
    summary="Start a stored conversation",
)
async def create_conversation_endpoint(
    request: CreateConversationRequest,
    org_id: str = Depends(get_current_org_id),
    session: AsyncSession = Depends(get_async_session),
) -> ConversationResponse:
    """
    Create a conversation whose first message is `initial_message`.

    Follow up with POST /chat using the returned id and
    `persist_user_message=false` for that same first message.
    """
    conversation = await conversations.create_conversation(
        session, org_id, request.user_id, request.initial_message,
    )
    # Reload to pick up server-side timestamps and the first message
    conversation = await conversations.get_conversation(
        session, str(conversation.id), org_id, refresh=True,
    )
    return _to_response(conversation)


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    summary="Get a stored conversation",
)
async def get_conversation_endpoint(
    conversation_id: str,
    org_id: str = Depends(get_current_org_id),
    session: AsyncSession = Depends(get_async_session),
) -> ConversationResponse:
    conversation = await conversations.get_conversation(
        session, conversation_id, org_id,
    )
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found.")
    return _to_response(conversation)
