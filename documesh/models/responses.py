# =============================================================================
# API Response Models: Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from DB models
# Stored messages keep provider-neutral content parts plus free-form
# metadata; the API exposes the flattened text so clients can replay it
# directly as `history`.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class MessageResponse(BaseModel):
    """One stored conversation message."""

    id: str
    role: str = Field(description="'user' or 'model'")
    content: str = Field(description="Text of the message")
    sequence_number: int
    created_at: datetime | None = None


class ConversationResponse(BaseModel):
    """A stored conversation, with its messages in order."""

    id: str
    title: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    messages: list[MessageResponse] = Field(default_factory=list)
