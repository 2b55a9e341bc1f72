# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine on the asyncpg driver. Every database round trip in
# this service is awaited, so it never blocks the event loop that drives the
# agent's streaming responses.
#
# SESSION LIFECYCLE:
# Two session patterns exist in this codebase:
#
# 1. Dependency-injected (get_async_session via Depends):
#    Used by request handlers that read or write application rows
#    (tenant lookup, conversation persistence). Auto-commits when the
#    handler returns, rolls back on exception.
#
# 2. Self-managed (async_session_factory() directly):
#    Used by the agent's tools and by post-stream persistence. Each guarded
#    query gets its OWN session, and therefore its own pooled connection and
#    transaction. The Query Guard's `SET LOCAL` resource limits live and die
#    with that transaction; the session is closed without commit, which
#    rolls the read-only transaction back.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from documesh.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo (debug mode): Logs all SQL statements, including the scoped
#   statements the Query Guard produces.
# - pool_size / max_overflow: Concurrent chat calls each hold at most one
#   connection at a time (tool calls run sequentially within a chat).
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
)

# expire_on_commit=False: loaded objects stay readable after commit, which
# the API layer relies on when serialising conversations it just wrote.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is committed when the handler returns and rolled back if
    the handler raises.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
