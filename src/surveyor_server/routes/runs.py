"""Run endpoints — start, inspect and drive flow runs.

Every endpoint names its run explicitly; the server keeps no notion of a
current run.  Mutating endpoints return the run as persisted.  By default
``start``/``resume`` keep advancing until the run waits again, which is
what the UI needs to render the next question; pass ``advance=false`` to
take exactly one transition.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from surveyor_flows.engine import FlowEngine
from surveyor_flows.models.run import Run, RunStatus, WaitInfo

from surveyor_server.dependencies import get_engine

router = APIRouter(tags=["runs"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class StartRunRequest(BaseModel):
    """Body for POST /runs."""
    flow_uuid: str
    contact: dict[str, Any] = {}
    org_uuid: str | None = None
    revision: int | None = None
    language: str | None = None
    advance: bool = True


class ResumeRequest(BaseModel):
    """Body for POST /runs/{run_uuid}/resume."""
    value: str
    advance: bool = True


class AsyncResultRequest(BaseModel):
    """Body for POST /runs/{run_uuid}/resume-async.

    ``result`` None or ``failed`` true means the lookup produced nothing.
    """
    result: Any = None
    failed: bool = False
    advance: bool = True


async def _advance_if_active(engine: FlowEngine, run: Run, advance: bool) -> Run:
    if advance and run.status == RunStatus.ACTIVE:
        return await engine.advance(run.run_uuid)
    return run


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/runs", status_code=201)
async def start_run(
    body: StartRunRequest,
    engine: FlowEngine = Depends(get_engine),
) -> Run:
    """Start a run of a cached flow.  Returns 404 if the flow is not cached."""
    run = await engine.start_run(
        body.flow_uuid,
        body.contact,
        org_uuid=body.org_uuid,
        revision=body.revision,
        language=body.language,
    )
    return await _advance_if_active(engine, run, body.advance)


@router.get("/runs/{run_uuid}")
async def get_run(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> Run:
    return await engine.get_run(run_uuid)


@router.get("/runs/{run_uuid}/wait")
async def get_wait(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> WaitInfo:
    """What the run's current node expects (input type, categories, messages)."""
    return await engine.get_wait(run_uuid)


@router.post("/runs/{run_uuid}/step")
async def step_run(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> Run:
    """Execute exactly one node."""
    return await engine.step(run_uuid)


@router.post("/runs/{run_uuid}/advance")
async def advance_run(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> Run:
    """Step until the run waits or terminates."""
    return await engine.advance(run_uuid)


@router.post("/runs/{run_uuid}/resume")
async def resume_run(
    run_uuid: str,
    body: ResumeRequest,
    engine: FlowEngine = Depends(get_engine),
) -> Run:
    """Deliver surveyor input.  Returns 409 if the run is not waiting for input."""
    run = await engine.resume(run_uuid, body.value)
    return await _advance_if_active(engine, run, body.advance)


@router.post("/runs/{run_uuid}/resume-async")
async def resume_async(
    run_uuid: str,
    body: AsyncResultRequest,
    engine: FlowEngine = Depends(get_engine),
) -> Run:
    """Deliver the result of an asynchronous lookup."""
    run = await engine.resume_async(run_uuid, body.result, failed=body.failed)
    return await _advance_if_active(engine, run, body.advance)


@router.post("/runs/{run_uuid}/cancel")
async def cancel_run(run_uuid: str, engine: FlowEngine = Depends(get_engine)) -> Run:
    """Abandon the run.  Returns 409 if it is completed or busy."""
    return await engine.cancel(run_uuid)
