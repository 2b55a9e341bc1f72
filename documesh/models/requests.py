# =============================================================================
# API Request Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# Note there is no org field anywhere: the tenant comes from the API key.
# =============================================================================

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatTurn(BaseModel):
    """
    One earlier turn of the conversation, replayed by the client.

    `content` is either plain text or a list of parts such as
    {"type": "text", "text": "..."}. Tool turns are accepted and ignored.
    """

    role: Literal["user", "model", "tool"]
    content: str | list[Any] = ""


class ChatRequest(BaseModel):
    """
    Request body for POST /chat: one new message for the agent.

    Example:
        {
            "message": "How many resumes mention Kubernetes?",
            "history": [],
            "conversation_id": null
        }
    """

    message: str = Field(
        ...,
        min_length=1,
        max_length=10000,
        description="The new user message",
        examples=["How many resumes did we process this month?"],
    )

    history: list[ChatTurn] = Field(
        default_factory=list,
        description="Earlier turns, oldest first",
    )

    # When set, the exchange is appended to this stored conversation
    # once the stream completes
    conversation_id: str | None = Field(
        default=None,
        description="Stored conversation to append this exchange to",
    )

    # Clients that created the conversation with this very message (via
    # POST /conversations) pass False so it is not stored twice
    persist_user_message: bool = Field(
        default=True,
        description="Also store the user message (not only the answer)",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "message": "List the top 5 technical skills across all resumes",
                    "history": [],
                },
                {
                    "message": "And which candidates have the first one?",
                    "history": [
                        {"role": "user", "content": "List the top 5 technical skills"},
                        {"role": "model", "content": "| Skill | Count |\n|---|---|\n| Python | 12 |"},
                    ],
                    "conversation_id": "0b1c2d3e-4f50-6172-8394-a5b6c7d8e9f0",
                },
            ]
        }
    )


class CreateConversationRequest(BaseModel):
    """Request body for POST /conversations."""

    initial_message: str = Field(
        ...,
        min_length=1,
        max_length=10000,
        description="First user message; also used to derive the title",
    )
    user_id: str | None = Field(
        default=None,
        description="Optional identifier of the end user within the organization",
    )
