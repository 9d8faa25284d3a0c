"""Flow cache endpoints — the Sync & Cache layer hands definitions in here.

Definitions are validated on the way in: a flow that fails the version
gate or structural validation is rejected with 422 and the list of
problems, and never reaches the cache.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from surveyor_flows.flows import FlowStore
from surveyor_flows.loader import check_definition, raw_spec_version
from surveyor_flows.models.flow import FlowDefinition
from surveyor_flows.version import is_supported

from surveyor_server.dependencies import get_flows

router = APIRouter(tags=["flows"])


# ------------------------------------------------------------------
# Response models
# ------------------------------------------------------------------

class FlowSummary(BaseModel):
    uuid: str
    name: str
    revision: int
    spec_version: str
    base_language: str
    question_count: int

    @classmethod
    def from_definition(cls, flow: FlowDefinition) -> "FlowSummary":
        return cls(
            uuid=flow.uuid,
            name=flow.name,
            revision=flow.revision,
            spec_version=flow.spec_version,
            base_language=flow.base_language,
            question_count=flow.question_count,
        )


class ValidationReport(BaseModel):
    """Result of POST /flows/validate."""
    supported: bool
    valid: bool
    problems: list[str] = []


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/flows", status_code=201)
async def add_flow(
    raw: dict[str, Any] = Body(...),
    flows: FlowStore = Depends(get_flows),
) -> FlowSummary:
    """Validate a synced definition and add it to the cache.

    Returns 422 if the version is unsupported or the graph is invalid.
    """
    return FlowSummary.from_definition(flows.add(raw))


@router.get("/flows")
async def list_flows(flows: FlowStore = Depends(get_flows)) -> list[FlowSummary]:
    """Latest cached revision of every flow, ordered by name."""
    return [FlowSummary.from_definition(f) for f in flows.latest()]


@router.post("/flows/validate")
async def validate_flow(raw: dict[str, Any] = Body(...)) -> ValidationReport:
    """Check a definition without caching it.

    The version gate runs first; an unsupported flow is not inspected
    further.
    """
    version = raw_spec_version(raw)
    if not is_supported(version):
        return ValidationReport(
            supported=False,
            valid=False,
            problems=[f"unsupported spec version {version!r}"],
        )
    problems = check_definition(raw)
    return ValidationReport(supported=True, valid=not problems, problems=problems)
