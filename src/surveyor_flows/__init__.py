"""surveyor_flows — offline flow execution SDK for survey devices.

Public API:
    FlowEngine        — run state machine (start, step, advance, resume, cancel)
    FlowStore         — cache of validated flow definitions by uuid/revision
    OrgContext        — organization constants and locale settings
    RunStore          — ABC for durable run/submission persistence
    RuleMatcher       — first-match rule selection for rule sets
    LegacySubmissionReader — read-only access to pre-engine submissions

Definition handling:
    load_definition   — version gate + structural validation → FlowDefinition
    check_definition  — list structural problems without raising
    is_supported      — version gate predicate

Expressions:
    evaluate          — evaluate one expression to a typed Value
    render            — substitute {expr} spans in a template
    EvaluationContext — what expressions may read
"""

from surveyor_flows.engine import FlowEngine, OrgContext
from surveyor_flows.errors import (
    AsyncTimeoutError,
    EvaluationError,
    FlowEngineError,
    FlowNotFoundError,
    InvalidDefinitionError,
    InvalidRunStateError,
    PersistenceError,
    RunBusyError,
    RunNotFoundError,
    UnsupportedFlowTypeError,
    UnsupportedVersionError,
)
from surveyor_flows.expressions import EvaluationContext, evaluate, render
from surveyor_flows.flows import FlowStore
from surveyor_flows.interfaces import RunStore
from surveyor_flows.legacy import LegacySubmissionReader
from surveyor_flows.loader import check_definition, load_definition
from surveyor_flows.matcher import RuleMatcher
from surveyor_flows.models.flow import FlowDefinition
from surveyor_flows.models.run import Run, RunStatus, Step, StepOutcome, WaitInfo
from surveyor_flows.models.submission import Submission
from surveyor_flows.version import is_supported

__all__ = [
    # Engine & stores
    "FlowEngine",
    "FlowStore",
    "LegacySubmissionReader",
    "OrgContext",
    "RuleMatcher",
    "RunStore",
    # Definitions
    "FlowDefinition",
    "check_definition",
    "is_supported",
    "load_definition",
    # Runs
    "Run",
    "RunStatus",
    "Step",
    "StepOutcome",
    "Submission",
    "WaitInfo",
    # Expressions
    "EvaluationContext",
    "evaluate",
    "render",
    # Errors
    "AsyncTimeoutError",
    "EvaluationError",
    "FlowEngineError",
    "FlowNotFoundError",
    "InvalidDefinitionError",
    "InvalidRunStateError",
    "PersistenceError",
    "RunBusyError",
    "RunNotFoundError",
    "UnsupportedFlowTypeError",
    "UnsupportedVersionError",
]
