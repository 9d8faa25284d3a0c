"""Submission model — the frozen, upload-ready record of a completed run.

``Submission.from_run`` copies the step history and field values out of a
completed Run.  ``payload()`` produces the server's run-creation contract:

    {
      "flow": "<flow uuid>",
      "revision": 3,
      "contact": {...},
      "started": "<iso8601>",
      "completed": "<iso8601>",
      "steps": [
        {"node": "...", "arrived_on": "...", "left_on": "...",
         "actions": [{"type": "reply", "msg": "..."}],
         "rule": {"uuid": "...", "category": "...", "value": "..."}},
        ...
      ],
      "fields": {"age": "15"}
    }
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from surveyor_flows.models.run import Run, RunStatus, Step
from surveyor_flows.models.value import Value


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


class Submission(BaseModel):
    """Immutable snapshot of a completed run, owned by the upload layer."""

    model_config = ConfigDict(frozen=True)

    run_uuid: str
    org_uuid: Optional[str] = None
    flow_uuid: str
    flow_revision: int
    contact: Dict[str, Any] = {}
    started_on: datetime
    completed_on: Optional[datetime] = None
    steps: List[Step] = []
    fields: Dict[str, Value] = {}
    # True for records read from the pre-engine on-disk format
    legacy: bool = False

    @classmethod
    def from_run(cls, run: Run) -> "Submission":
        """Freeze a completed run.

        Raises:
            ValueError: if the run is not completed.
        """
        if run.status != RunStatus.COMPLETED:
            raise ValueError(
                f"Cannot build submission: run {run.run_uuid} status is "
                f"'{run.status.value}', expected 'completed'"
            )
        return cls(
            run_uuid=run.run_uuid,
            org_uuid=run.org_uuid,
            flow_uuid=run.flow_uuid,
            flow_revision=run.flow_revision,
            contact=dict(run.contact),
            started_on=run.created_on,
            completed_on=run.exited_on,
            steps=[s.model_copy(deep=True) for s in run.steps],
            fields=dict(run.field_values),
        )

    def payload(self) -> dict:
        """Build the upload body expected by the server."""
        steps = []
        for step in self.steps:
            entry: dict[str, Any] = {
                "node": step.node_id,
                "arrived_on": _iso(step.arrived_on),
                "left_on": _iso(step.left_on),
                "actions": [{"type": "reply", "msg": m} for m in step.messages],
            }
            if step.node_type == "rule_set":
                entry["rule"] = {
                    "uuid": step.rule_uuid,
                    "category": step.category,
                    "value": step.value,
                }
            steps.append(entry)

        return {
            "flow": self.flow_uuid,
            "revision": self.flow_revision,
            "contact": self.contact,
            "started": _iso(self.started_on),
            "completed": _iso(self.completed_on),
            "steps": steps,
            "fields": {k: v.as_text() for k, v in self.fields.items()},
        }
