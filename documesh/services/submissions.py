# =============================================================================
# Submission Repository: Read Access for the Agent
# =============================================================================
# Thin async wrappers over the `submissions` table. This service never
# writes submissions; the ingestion worker owns their lifecycle.
#
# NOTE: Lookups here are by primary key only and are NOT tenant-scoped.
# Callers compare `submission.org_id` against the caller's tenant before
# returning anything (see the agent's getSubmissionDetails tool).
# =============================================================================

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from documesh.db.models import Submission


async def find_by_id(session: AsyncSession, submission_id: str) -> Submission | None:
    """Fetch a submission by id. Ids that are not UUIDs resolve to None."""
    try:
        key = uuid.UUID(str(submission_id))
    except ValueError:
        return None
    return await session.get(Submission, key)


def submission_to_dict(submission: Submission) -> dict[str, Any]:
    """
    Serialise a submission for a tool result.

    `raw_extraction` is left out: it is unvalidated pipeline output and
    can be far larger than the validated `final_data`.
    """
    return {
        "id": str(submission.id),
        "org_id": str(submission.org_id),
        "document_type": submission.document_type,
        "pipeline_version": submission.pipeline_version,
        "file_key": submission.file_key,
        "status": getattr(submission.status, "value", submission.status),
        "final_data": submission.final_data,
        "created_at": submission.created_at.isoformat() if submission.created_at else None,
    }
