# =============================================================================
# Agent Tools: Capabilities the Model May Invoke
# =============================================================================
#
# The agent exposes exactly two capabilities:
#
#   getSubmissionDetails(id)  → one submission, tenant-checked
#   queryDatabase(query)      → Query Guard (validate, scope, execute)
#
# Each tool is a small class with a ToolSpec (name, description, JSON-schema
# arguments derived from a Pydantic model) and an async `execute()`.
#
# TENANT ISOLATION: the tenant id arrives through ToolContext, built by the
# agent loop from the authenticated caller. Neither argument schema has an
# org field, and any org-like key the model sends is ignored.
#
# Tools return plain dicts: either the data or {"error": "..."}. Errors are
# forwarded to the model as tool results so it can correct itself.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from documesh.services import submissions
from documesh.services.llm import ToolSpec
from documesh.services.query_guard import ALLOWED_TABLE, execute_guarded_query

logger = logging.getLogger(__name__)

ACCESS_DENIED_MESSAGE = "Access denied. Document does not belong to your organization."
NOT_FOUND_MESSAGE = "Submission not found."


@dataclass
class ToolContext:
    """Per-chat-call state threaded into every tool invocation."""

    org_id: str
    request_id: str
    session_factory: Any  # async_sessionmaker: `async with session_factory() as s`


class AgentTool(Protocol):
    """Interface every agent tool implements."""

    spec: ToolSpec

    async def execute(
        self,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> dict[str, Any]:
        ...


# ---------------------------------------------------------------------------
# Argument Schemas
# ---------------------------------------------------------------------------


class GetSubmissionDetailsArgs(BaseModel):
    id: str = Field(..., description="The ID of the submission/resume.")


class QueryDatabaseArgs(BaseModel):
    query: str = Field(
        ...,
        description=(
            f"The complete SQL SELECT query to execute. Must reference the "
            f"{ALLOWED_TABLE} table. Only SELECT queries are allowed; results "
            f"are automatically scoped to the user's organization, limited "
            f"to 100 rows, with a 5-second timeout."
        ),
    )


# ---------------------------------------------------------------------------
# Tool 1: Single-Record Lookup
# ---------------------------------------------------------------------------


class GetSubmissionDetailsTool:
    """Fetch one submission by id, refusing records of other tenants."""

    spec = ToolSpec(
        name="getSubmissionDetails",
        description=(
            "Get detailed information about a specific resume/submission "
            "using its ID."
        ),
        parameters=GetSubmissionDetailsArgs.model_json_schema(),
    )

    async def execute(
        self,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> dict[str, Any]:
        start_time = time.monotonic()
        try:
            args = GetSubmissionDetailsArgs.model_validate(arguments)
        except ValidationError:
            return {"error": "Invalid arguments: 'id' must be a string."}

        async with context.session_factory() as session:
            submission = await submissions.find_by_id(session, args.id)

            if submission is None:
                result = {"error": NOT_FOUND_MESSAGE}
            elif str(submission.org_id).lower() != str(context.org_id).lower():
                logger.warning(
                    "Tool access denied: tool=getSubmissionDetails, id=%s, "
                    "org_id=%s, request_id=%s",
                    args.id, context.org_id, context.request_id,
                )
                return {"error": ACCESS_DENIED_MESSAGE}
            else:
                result = submissions.submission_to_dict(submission)

        logger.info(
            "Tool result: tool=getSubmissionDetails, id=%s, found=%s, "
            "duration_ms=%d, request_id=%s",
            args.id, "error" not in result,
            int((time.monotonic() - start_time) * 1000), context.request_id,
        )
        return result


# ---------------------------------------------------------------------------
# Tool 2: Guarded SQL
# ---------------------------------------------------------------------------


class QueryDatabaseTool:
    """Run one model-written SELECT through the Query Guard."""

    spec = ToolSpec(
        name="queryDatabase",
        description=(
            f"Execute a read-only SQL SELECT query against the {ALLOWED_TABLE} "
            f"table for analytics, aggregations and filtering over resumes "
            f"and invoices. All queries are automatically scoped to the "
            f"user's organization. Examples: 'SELECT COUNT(*) FROM "
            f"{ALLOWED_TABLE}', 'SELECT final_data->>'fullName' FROM "
            f"{ALLOWED_TABLE} WHERE document_type = 'RESUME''."
        ),
        parameters=QueryDatabaseArgs.model_json_schema(),
    )

    async def execute(
        self,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> dict[str, Any]:
        # The raw value goes to the guard unvalidated: a missing or
        # non-string query is one of the guard's own rejections.
        query = arguments.get("query")

        # Dedicated session: the guard's SET LOCAL limits and READ ONLY
        # mode die with this transaction when the session closes.
        async with context.session_factory() as session:
            outcome = await execute_guarded_query(
                session,
                query,
                context.org_id,
                request_id=context.request_id,
            )
        return outcome.to_payload()


DEFAULT_TOOLS: tuple[AgentTool, ...] = (
    GetSubmissionDetailsTool(),
    QueryDatabaseTool(),
)
