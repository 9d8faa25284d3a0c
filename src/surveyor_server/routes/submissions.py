"""Submission endpoints — consumed by the Upload layer.

The Upload layer lists pending submissions, posts each ``payload`` to the
server, then confirms acceptance here so the local copy is dropped.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from surveyor_flows.engine import FlowEngine
from surveyor_flows.models.submission import Submission

from surveyor_server.config import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from surveyor_server.dependencies import get_engine

router = APIRouter(tags=["submissions"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class PendingSubmission(BaseModel):
    run_uuid: str
    org_uuid: str | None = None
    flow_uuid: str
    flow_revision: int
    completed_on: datetime | None = None
    legacy: bool = False
    # Upload body for the server's run-creation endpoint
    payload: dict[str, Any]

    @classmethod
    def from_submission(cls, submission: Submission) -> "PendingSubmission":
        return cls(
            run_uuid=submission.run_uuid,
            org_uuid=submission.org_uuid,
            flow_uuid=submission.flow_uuid,
            flow_revision=submission.flow_revision,
            completed_on=submission.completed_on,
            legacy=submission.legacy,
            payload=submission.payload(),
        )


class PendingCount(BaseModel):
    count: int


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/submissions/pending")
async def list_pending(
    engine: FlowEngine = Depends(get_engine),
    org_uuid: str | None = Query(None),
    flow_uuid: str | None = Query(None),
    include_legacy: bool = Query(False),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
) -> list[PendingSubmission]:
    """Completed submissions awaiting upload, oldest completion first."""
    pending = await engine.list_pending(
        org_uuid=org_uuid, flow_uuid=flow_uuid, include_legacy=include_legacy,
    )
    return [PendingSubmission.from_submission(s) for s in pending[:limit]]


@router.get("/submissions/count")
async def count_pending(
    engine: FlowEngine = Depends(get_engine),
    org_uuid: str | None = Query(None),
    flow_uuid: str | None = Query(None),
) -> PendingCount:
    """Number of submissions awaiting upload, legacy ones included."""
    return PendingCount(
        count=await engine.count_pending(org_uuid=org_uuid, flow_uuid=flow_uuid)
    )


@router.post("/submissions/{run_uuid}/uploaded", status_code=204)
async def mark_uploaded(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> None:
    """Confirm server acceptance.  Returns 404 if nothing is pending for the run."""
    await engine.mark_uploaded(run_uuid)


@router.delete("/submissions/{run_uuid}", status_code=204)
async def discard(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> None:
    """Delete a run and its submission at the user's request."""
    await engine.discard(run_uuid)
