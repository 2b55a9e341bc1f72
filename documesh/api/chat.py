# =============================================================================
# Chat API: Streaming Agent Endpoint
# =============================================================================
#
# Provides POST /chat, which runs the tool-calling agent for one user
# message and streams the answer back as plain text.
#
# FLOW:
#   1. Resolve the tenant from the API key (deps.get_current_org_id)
#   2. Resolve the LLM provider; a missing key is a 503 before any byte
#      is streamed
#   3. Stream the agent's chunks as they are produced
#   4. If a conversation_id was given, store the exchange after the
#      stream completes, on its own session
#
# Once streaming has started the status code is already 200, so an agent
# failure mid-stream is logged and turned into a short error line that
# the user sees at the end of the answer.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from documesh.agents.chat import chat
from documesh.api.deps import get_current_org_id
from documesh.db.engine import async_session_factory, get_async_session
from documesh.models.requests import ChatRequest
from documesh.services import conversations
from documesh.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Agent Chat"])

STREAM_ERROR_MESSAGE = (
    "\n\nSorry, something went wrong while generating this answer. "
    "Please try again."
)


# ---------------------------------------------------------------------------
# POST /chat: Ask the agent
# ---------------------------------------------------------------------------


@router.post(
    "/chat",
    response_class=StreamingResponse,
    summary="Chat with the document analytics agent",
    description=(
        "Send one message to the agent. The agent may query your "
        "organization's submissions with read-only SQL and look up "
        "individual submissions before answering. The answer is streamed "
        "as plain text."
    ),
)
async def chat_endpoint(
    request: ChatRequest,
    org_id: str = Depends(get_current_org_id),
    session: AsyncSession = Depends(get_async_session),
) -> StreamingResponse:
    """
    Stream the agent's answer.

    Error handling:
    - Missing API key for the LLM → 503 Service Unavailable
    - Unknown conversation_id → 404 Not Found
    - Agent failure after streaming began → error line in the stream
    """
    try:
        llm = get_llm_provider()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e

    if request.conversation_id is not None:
        conversation = await conversations.get_conversation(
            session, request.conversation_id, org_id,
        )
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found.")

    request_id = str(uuid.uuid4())
    logger.info(
        "Chat request: org_id=%s, message='%s', history_turns=%d, "
        "conversation_id=%s, request_id=%s",
        org_id, request.message[:80], len(request.history),
        request.conversation_id, request_id,
    )

    return StreamingResponse(
        _stream_answer(request, org_id, llm, request_id),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Request-ID": request_id,
        },
    )


async def _stream_answer(
    request: ChatRequest,
    org_id: str,
    llm: LLMProvider,
    request_id: str,
) -> AsyncIterator[str]:
    chunks: list[str] = []
    try:
        async for chunk in chat(
            request.message,
            request.history,
            org_id,
            llm=llm,
            request_id=request_id,
        ):
            chunks.append(chunk)
            yield chunk
    except Exception:
        logger.exception("Agent failed mid-stream: request_id=%s", request_id)
        yield STREAM_ERROR_MESSAGE
        return

    if request.conversation_id is not None:
        await _persist_exchange(
            conversation_id=request.conversation_id,
            org_id=org_id,
            user_message=request.message if request.persist_user_message else None,
            answer="".join(chunks),
            request_id=request_id,
        )


# ---------------------------------------------------------------------------
# Post-stream Persistence
# ---------------------------------------------------------------------------


async def _persist_exchange(
    conversation_id: str,
    org_id: str,
    user_message: str | None,
    answer: str,
    request_id: str,
) -> None:
    """
    Store the user message (optional) and the assembled answer.

    Uses its own DB session: the request session is already closed by the
    time the stream finishes.
    """
    try:
        async with async_session_factory() as session:
            if user_message is not None:
                await conversations.add_message(
                    session, conversation_id, org_id, "user", user_message,
                )
            await conversations.add_message(
                session, conversation_id, org_id, "model", answer,
                metadata={"request_id": request_id},
            )
            await session.commit()
    except Exception as e:
        logger.warning(
            "Failed to persist chat exchange: conversation_id=%s, "
            "request_id=%s, error=%s",
            conversation_id, request_id, e,
        )
