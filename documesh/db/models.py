# =============================================================================
# Database Models: SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌────────────────┐        ┌──────────────────────────────────────┐
# │ organizations  │        │ submissions                          │
# ├────────────────┤        ├──────────────────────────────────────┤
# │ id (PK, uuid)  │──1:N──▶│ id (PK, uuid)                        │
# │ name           │        │ org_id (FK → organizations.id)       │
# │ api_key_hash   │        │ document_type  ('RESUME', 'INVOICE') │
# │ allowed_ips    │        │ pipeline_version ('resume-v1.0.0')   │
# │ created_at     │        │ file_key                             │
# └────────────────┘        │ status (pending → ... → completed)   │
#         │                 │ final_data (jsonb)                   │
#         │                 │ raw_extraction (jsonb)               │
#         │                 │ created_at                           │
#         │                 └──────────────────────────────────────┘
#         │
#         │        ┌──────────────────────┐       ┌───────────────────────┐
#         └──1:N──▶│ agent_conversations  │──1:N─▶│ agent_messages        │
#                  ├──────────────────────┤       ├───────────────────────┤
#                  │ id, org_id, user_id  │       │ conversation_id (FK)  │
#                  │ title                │       │ role, content (jsonb) │
#                  │ created/updated_at   │       │ sequence_number       │
#                  └──────────────────────┘       └───────────────────────┘
#
# `submissions` is the ONLY table the agent's SQL tool may read, and only
# through the Query Guard. `org_id` is the tenant column the guard scopes on.
#
# The identity tables managed by the auth service (users, sessions,
# accounts, verifications, memberships) live in the same database but are
# not mapped here; the Query Guard blocks them by name.
# =============================================================================

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class SubmissionStatus(str, enum.Enum):
    """
    Tracks the extraction pipeline state for a submission.

    State machine:
        PENDING → PROCESSING → COMPLETED
                             → FAILED

    Stored by VALUE (lowercase) so that model-written SQL such as
    `WHERE status = 'completed'` matches.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Organization(Base):
    """
    A tenant. Every submission and conversation belongs to exactly one.

    The server-to-server API key is stored only as a SHA-256 hash
    (see documesh.services.auth); the raw key is shown once at creation.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    api_key_hash: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True,
    )

    # CIDR blocks / addresses allowed to call the API (enforced upstream)
    allowed_ips: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name='{self.name}')>"


class Submission(Base):
    """
    A document uploaded for processing, plus the data extracted from it.

    Written by the ingestion worker; read-only from this service.
    """

    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id"),
        nullable=False,
    )

    # Discriminator: selects the extraction pipeline and the UI renderer
    document_type: Mapped[str] = mapped_column(Text, nullable=False)

    # Exact pipeline logic version used for this submission
    pipeline_version: Mapped[str] = mapped_column(Text, nullable=False)

    file_key: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(
            SubmissionStatus,
            name="status",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=SubmissionStatus.PENDING,
    )

    # Validated, schema-shaped payload (shape depends on document_type)
    final_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    # Unvalidated LLM/OCR output, kept for debugging prompt changes
    raw_extraction: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_submissions_org_id_created_at", "org_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Submission(id={self.id}, document_type='{self.document_type}', "
            f"status={self.status})>"
        )


class AgentConversation(Base):
    """A persisted AI Studio conversation, scoped to one organization."""

    __tablename__ = "agent_conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    messages: Mapped[list["AgentMessage"]] = relationship(
        "AgentMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="AgentMessage.sequence_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<AgentConversation(id={self.id}, title='{self.title}')>"


class AgentMessage(Base):
    """
    One persisted turn of a conversation.

    Only user and model turns are stored. Tool turns exist in memory for
    the duration of a single chat call and are never persisted.
    """

    __tablename__ = "agent_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agent_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    # List of parts, e.g. [{"type": "text", "text": "..."}]
    content: Mapped[list] = mapped_column(JSONB, nullable=False)

    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Trailing underscore avoids conflict with SQLAlchemy's `.metadata`
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    conversation: Mapped["AgentConversation"] = relationship(
        "AgentConversation", back_populates="messages",
    )

    __table_args__ = (
        Index(
            "ix_agent_messages_conversation_sequence",
            "conversation_id",
            "sequence_number",
            unique=True,
        ),
    )
