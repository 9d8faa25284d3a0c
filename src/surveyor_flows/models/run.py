"""Run and step models — the mutable state of one flow execution.

A Run is owned by the engine while it advances and handed to the run store
on every transition.  It is intentionally decoupled from the ORM models in
``surveyor_db``: the store persists ``Run.model_dump(mode="json")`` and
validates it back, so a resumed run equals the persisted one field for field.

Status transitions:
    active -> waiting_for_input   (entered a wait_* ruleset)
    active -> waiting_for_async   (entered a webhook ruleset)
    waiting_* -> active           (input / async result delivered)
    active -> completed           (reached a null destination)
    any non-terminal -> abandoned (cancelled, or an evaluation error)
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from surveyor_flows.models.value import Value


class RunStatus(str, enum.Enum):
    ACTIVE = "active"
    WAITING_FOR_INPUT = "waiting_for_input"
    WAITING_FOR_ASYNC = "waiting_for_async"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


TERMINAL_STATUSES = {RunStatus.COMPLETED, RunStatus.ABANDONED}
WAITING_STATUSES = {RunStatus.WAITING_FOR_INPUT, RunStatus.WAITING_FOR_ASYNC}


class StepOutcome(str, enum.Enum):
    """How a step ended."""

    ADVANCED = "advanced"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class Step(BaseModel):
    """One entry in a run's history: a node that was executed."""

    node_id: str
    node_type: Literal["action_set", "rule_set"]
    arrived_on: datetime
    left_on: Optional[datetime] = None
    # Raw surveyor input or async result text, if the node consumed one
    value: Optional[str] = None
    # Resolved category name of the matched rule
    category: Optional[str] = None
    rule_uuid: Optional[str] = None
    # Rendered outbound messages produced by reply actions
    messages: List[str] = []
    # Run UUIDs started by flow actions in this step
    spawned_runs: List[str] = []
    outcome: StepOutcome = StepOutcome.ADVANCED
    # Error marker for failed or timed-out steps
    error: Optional[str] = None


class Run(BaseModel):
    """One execution of one flow revision for one contact."""

    run_uuid: str
    org_uuid: Optional[str] = None
    flow_uuid: str
    # Pins the definition the run started against; never migrated
    flow_revision: int
    parent_run_uuid: Optional[str] = None
    # Read-only snapshot of the contact context supplied at start
    contact: Dict[str, Any] = {}
    language: str
    # None once the run has reached a terminal status
    current_node_id: Optional[str] = None
    status: RunStatus = RunStatus.ACTIVE
    field_values: Dict[str, Value] = {}
    # Results delivered by asynchronous lookups, readable as extra.<key>
    extra: Dict[str, Any] = {}
    steps: List[Step] = []
    wait_expires_on: Optional[datetime] = None
    created_on: datetime
    modified_on: datetime
    exited_on: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_waiting(self) -> bool:
        return self.status in WAITING_STATUSES

    def last_value(self) -> Optional[str]:
        """Most recent raw response recorded in the step history."""
        for step in reversed(self.steps):
            if step.value is not None:
                return step.value
        return None


class WaitInfo(BaseModel):
    """What the current node of a waiting run expects.

    Returned to UI callers so they know which input widget to show.
    """

    run_uuid: str
    status: RunStatus
    node_id: Optional[str] = None
    ruleset_type: Optional[str] = None
    label: Optional[str] = None
    # Type-specific settings of the waiting node, e.g. the webhook to call
    config: Dict[str, Any] = Field(default_factory=dict)
    # Localized category names of the node's rules (excluding the catch-all)
    categories: List[str] = Field(default_factory=list)
    # Messages produced by the step that led to this wait
    messages: List[str] = Field(default_factory=list)
    wait_expires_on: Optional[datetime] = None
