# =============================================================================
# Database Package
# =============================================================================
# Provides the async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - get_async_session: FastAPI dependency for database sessions
#   - async_session_factory: self-managed sessions (agent tools, persistence)
#   - Base: SQLAlchemy declarative base for ORM models
#   - Organization, Submission: tenants and their extracted documents
#   - AgentConversation, AgentMessage: persisted chat history
# =============================================================================
