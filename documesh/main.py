# =============================================================================
# FastAPI Application: DocuMesh Agent Service
# =============================================================================
#
# Wires the routers together and configures logging.
#
# Usage:
#     uvicorn documesh.main:app --reload --port 8000
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from documesh.api import chat, conversations
from documesh.config import settings
from documesh.models.responses import HealthResponse

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Starting %s v%s (llm_provider=%s, model=%s, auth_enabled=%s)",
        settings.app_name, settings.app_version,
        settings.llm_provider, settings.llm_model, settings.auth_enabled,
    )
    yield

    # Imported lazily: the engine is only needed once the app has served
    from documesh.db.engine import async_engine

    await async_engine.dispose()
    logger.info("Shut down %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.include_router(chat.router)
app.include_router(conversations.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    """Liveness check; does not touch the database or the LLM."""
    return HealthResponse(version=settings.app_version, service=settings.app_name)
