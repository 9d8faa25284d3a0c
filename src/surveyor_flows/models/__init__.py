"""Public model re-exports for surveyor_flows.

Consumers should import from ``surveyor_flows.models`` rather than
reaching into sub-modules directly.
"""

# --- Actions ---
from surveyor_flows.models.action import (
    Action,
    FlowRef,
    SaveToFieldAction,
    SendMessageAction,
    SetLanguageAction,
    StartFlowAction,
)

# --- Graph ---
from surveyor_flows.models.flow import (
    ActionSet,
    FlowDefinition,
    Node,
    RuleSet,
    RulesetType,
)

# --- Rules ---
from surveyor_flows.models.rule import (
    BetweenTest,
    DateCompareTest,
    GroupRef,
    GroupTest,
    HasDateTest,
    HasNumberTest,
    IsMissingTest,
    NotEmptyTest,
    NumberCompareTest,
    RegexTest,
    Rule,
    RuleTest,
    TextTest,
    TrueTest,
)

# --- Runs ---
from surveyor_flows.models.run import (
    Run,
    RunStatus,
    Step,
    StepOutcome,
    WaitInfo,
)
from surveyor_flows.models.submission import Submission

# --- Values ---
from surveyor_flows.models.value import (
    MISSING,
    BooleanValue,
    DateValue,
    MissingValue,
    NumberValue,
    TextValue,
    Value,
)

__all__ = [
    # Actions
    "Action",
    "FlowRef",
    "SaveToFieldAction",
    "SendMessageAction",
    "SetLanguageAction",
    "StartFlowAction",
    # Graph
    "ActionSet",
    "FlowDefinition",
    "Node",
    "RuleSet",
    "RulesetType",
    # Rules
    "BetweenTest",
    "DateCompareTest",
    "GroupRef",
    "GroupTest",
    "HasDateTest",
    "HasNumberTest",
    "IsMissingTest",
    "NotEmptyTest",
    "NumberCompareTest",
    "RegexTest",
    "Rule",
    "RuleTest",
    "TextTest",
    "TrueTest",
    # Runs
    "Run",
    "RunStatus",
    "Step",
    "StepOutcome",
    "Submission",
    "WaitInfo",
    # Values
    "MISSING",
    "BooleanValue",
    "DateValue",
    "MissingValue",
    "NumberValue",
    "TextValue",
    "Value",
]
