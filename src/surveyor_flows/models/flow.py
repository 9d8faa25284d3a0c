"""Graph models for flow definitions.

A flow is a directed graph of two node kinds:

  - ActionSet: runs its actions in order, then moves to ``destination``
  - RuleSet:   tests an operand against ordered rules to pick a destination

Nodes are held in mappings keyed by node id and refer to each other only by
id, so looping flows never create reference cycles.  ``FlowDefinition`` is
built by :func:`surveyor_flows.loader.load_definition`, which is the only
place that checks the graph's structural invariants.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from surveyor_flows.constants import (
    DEFAULT_OPERAND,
    FLOW_TYPE_SURVEY,
    WAIT_ASYNC_TYPES,
    WAIT_INPUT_TYPES,
)
from surveyor_flows.models.action import Action
from surveyor_flows.models.rule import Rule

RulesetType = Literal[
    # Waiting for surveyor input
    "wait_message",
    "wait_number",
    "wait_date",
    "wait_group",
    "wait_photo",
    "wait_video",
    "wait_audio",
    "wait_gps",
    # Waiting for an asynchronous lookup
    "webhook",
    # Evaluated immediately
    "expression",
    "contact_field",
    "flow_field",
]


class ActionSet(BaseModel):
    """Non-branching node.  ``destination`` None means terminal."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="uuid")
    actions: List[Action] = []
    destination: Optional[str] = None


class RuleSet(BaseModel):
    """Branching node.  Rule order is significant: first match wins."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="uuid")
    label: Optional[str] = None
    ruleset_type: RulesetType
    operand: str = DEFAULT_OPERAND
    rules: List[Rule]
    # Type-specific settings, e.g. {"webhook": url, "webhook_action": "GET"}
    config: Dict[str, Any] = {}

    @property
    def waits_for_input(self) -> bool:
        return self.ruleset_type in WAIT_INPUT_TYPES

    @property
    def waits_for_async(self) -> bool:
        return self.ruleset_type in WAIT_ASYNC_TYPES

    @property
    def destinations(self) -> List[Optional[str]]:
        return [r.destination for r in self.rules]


Node = Union[ActionSet, RuleSet]


class FlowDefinition(BaseModel):
    """Immutable, validated flow graph pinned to one server revision."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    name: str
    spec_version: str
    base_language: str
    # Declared language order; used as the deterministic fallback order
    languages: List[str] = []
    flow_type: str = FLOW_TYPE_SURVEY
    entry: str
    revision: int = 1
    action_sets: Dict[str, ActionSet]
    rule_sets: Dict[str, RuleSet]

    @property
    def is_survey(self) -> bool:
        return self.flow_type == FLOW_TYPE_SURVEY

    def get_node(self, node_id: str) -> Node:
        """Look up a node by id.

        Raises:
            KeyError: if no node has this id.
        """
        if node_id in self.action_sets:
            return self.action_sets[node_id]
        return self.rule_sets[node_id]

    def has_node(self, node_id: str) -> bool:
        return node_id in self.action_sets or node_id in self.rule_sets

    @property
    def question_count(self) -> int:
        """Number of nodes that wait for surveyor input."""
        return sum(1 for rs in self.rule_sets.values() if rs.waits_for_input)

    def language_order(self) -> List[str]:
        """Base language first, then declared languages in declared order."""
        order = [self.base_language]
        order.extend(lang for lang in self.languages if lang != self.base_language)
        return order
