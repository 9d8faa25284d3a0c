"""Flow definition loader and structural validator.

``load_definition`` turns a raw synced definition (the legacy surveyor JSON
shape: ``action_sets``, ``rule_sets``, ``entry``, ``base_language``,
``version``, ``flow_type``, ``metadata``) into an immutable
:class:`FlowDefinition`.  It fails closed: any structural defect rejects
the whole definition, so a partially valid graph is never executed.

Order of checks:
  1. Version gate (``UnsupportedVersionError``) — before anything else
  2. Node parsing into typed models
  3. Graph checks: duplicate ids, entry exists, destinations exist,
     catch-all rules, localization, static regex patterns
  4. Flow type (only survey flows execute)

This module is pure: no logging, no I/O.  Problems are collected as data
(``check_definition``) and only raised by ``load_definition``.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from pydantic import ValidationError

from surveyor_flows.constants import FLOW_TYPE_NAMES
from surveyor_flows.errors import InvalidDefinitionError, UnsupportedFlowTypeError
from surveyor_flows.models.action import SendMessageAction
from surveyor_flows.models.flow import ActionSet, FlowDefinition, RuleSet
from surveyor_flows.models.rule import RegexTest, rules_catch_all_count
from surveyor_flows.version import check_version


def raw_spec_version(raw: Mapping[str, Any]) -> Any:
    """The declared spec version of a raw definition (``version`` or ``spec_version``)."""
    return raw.get("version", raw.get("spec_version"))


def _raw_metadata(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = raw.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def raw_identity(raw: Mapping[str, Any]) -> tuple[str | None, int]:
    """Return ``(flow_uuid, revision)`` of a raw definition without validating it."""
    metadata = _raw_metadata(raw)
    uuid = metadata.get("uuid") or raw.get("uuid")
    revision = metadata.get("revision", raw.get("revision", 1))
    try:
        revision = int(revision)
    except (TypeError, ValueError):
        revision = 0
    return uuid, revision


def _format_errors(prefix: str, exc: ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        where = f"{prefix}.{loc}" if loc else prefix
        problems.append(f"{where}: {err.get('msg')}")
    return problems


def _build(raw: Any) -> tuple[FlowDefinition | None, list[str]]:
    """Parse and check a raw definition; return (definition, problems)."""
    if not isinstance(raw, Mapping):
        return None, ["definition must be a JSON object"]

    problems: list[str] = []
    if raw.get("metadata") is not None and not isinstance(raw["metadata"], Mapping):
        problems.append("metadata must be a JSON object")
    uuid, _ = raw_identity(raw)
    if not uuid:
        problems.append("flow uuid is missing")

    base_language = raw.get("base_language")
    if not base_language:
        problems.append("base_language is missing")

    raw_actions = raw.get("action_sets") or []
    raw_rules = raw.get("rule_sets") or []
    if not isinstance(raw_actions, list):
        problems.append("action_sets must be a list")
        raw_actions = []
    if not isinstance(raw_rules, list):
        problems.append("rule_sets must be a list")
        raw_rules = []

    # --- Duplicate node ids (within and across node kinds) ---
    seen: set[str] = set()
    for node in [*raw_actions, *raw_rules]:
        node_id = node.get("uuid") if isinstance(node, Mapping) else None
        if node_id is None:
            continue
        if node_id in seen:
            problems.append(f"duplicate node id {node_id!r}")
        seen.add(node_id)

    # --- Typed parsing ---
    action_sets: dict[str, ActionSet] = {}
    for i, node in enumerate(raw_actions):
        try:
            parsed = ActionSet.model_validate(node)
        except ValidationError as exc:
            problems.extend(_format_errors(f"action_sets[{i}]", exc))
            continue
        action_sets.setdefault(parsed.id, parsed)

    rule_sets: dict[str, RuleSet] = {}
    for i, node in enumerate(raw_rules):
        try:
            parsed = RuleSet.model_validate(node)
        except ValidationError as exc:
            problems.extend(_format_errors(f"rule_sets[{i}]", exc))
            continue
        if parsed.id not in action_sets:
            rule_sets.setdefault(parsed.id, parsed)

    metadata = _raw_metadata(raw)
    try:
        definition = FlowDefinition(
            uuid=uuid or "",
            name=metadata.get("name") or raw.get("name") or "",
            spec_version=str(raw_spec_version(raw) or ""),
            base_language=base_language or "",
            languages=list(raw.get("languages") or []),
            flow_type=raw.get("flow_type") or "S",
            entry=raw.get("entry") or "",
            revision=metadata.get("revision", raw.get("revision", 1)),
            action_sets=action_sets,
            rule_sets=rule_sets,
        )
    except ValidationError as exc:
        problems.extend(_format_errors("flow", exc))
        return None, problems

    problems.extend(_check_graph(definition))
    return definition, problems


def _check_graph(flow: FlowDefinition) -> list[str]:
    problems: list[str] = []

    if not flow.entry:
        problems.append("entry node is missing")
    elif not flow.has_node(flow.entry):
        problems.append(f"entry node {flow.entry!r} does not exist")

    for node in flow.action_sets.values():
        if node.destination is not None and not flow.has_node(node.destination):
            problems.append(
                f"action set {node.id!r} points to missing node {node.destination!r}"
            )
        for action in node.actions:
            if isinstance(action, SendMessageAction) and flow.base_language not in action.msg:
                problems.append(
                    f"action set {node.id!r} has a message without base language "
                    f"{flow.base_language!r}"
                )

    for ruleset in flow.rule_sets.values():
        if not ruleset.rules:
            problems.append(f"rule set {ruleset.id!r} has no rules")
            continue

        catch_alls = rules_catch_all_count(ruleset.rules)
        if ruleset.waits_for_input or ruleset.waits_for_async:
            if catch_alls != 1:
                problems.append(
                    f"rule set {ruleset.id!r} ({ruleset.ruleset_type}) must have exactly "
                    f"one catch-all rule, found {catch_alls}"
                )
        elif catch_alls > 1:
            problems.append(
                f"rule set {ruleset.id!r} has {catch_alls} catch-all rules"
            )

        for rule in ruleset.rules:
            if rule.destination is not None and not flow.has_node(rule.destination):
                problems.append(
                    f"rule set {ruleset.id!r} points to missing node {rule.destination!r}"
                )
            if flow.base_language not in rule.category:
                problems.append(
                    f"rule set {ruleset.id!r} has a category without base language "
                    f"{flow.base_language!r}"
                )
            if isinstance(rule.test, RegexTest):
                problems.extend(_check_regex(ruleset.id, rule.test))

    return problems


def _check_regex(ruleset_id: str, test: RegexTest) -> list[str]:
    """Compile patterns that contain no template spans."""
    patterns = test.test.values() if isinstance(test.test, dict) else [test.test]
    problems = []
    for pattern in patterns:
        if "{" in pattern:
            continue
        try:
            re.compile(pattern)
        except re.error as exc:
            problems.append(f"rule set {ruleset_id!r} has an invalid regex {pattern!r}: {exc}")
    return problems


def check_definition(raw: Any) -> list[str]:
    """Return every structural problem of a raw definition (empty if valid).

    Does not apply the version gate; see :func:`load_definition`.
    """
    definition, problems = _build(raw)
    if definition is not None and not definition.is_survey:
        problems.append(f"unsupported flow type {definition.flow_type!r}")
    return problems


def load_definition(raw: Any) -> FlowDefinition:
    """Gate, parse and validate a raw definition.

    Raises:
        UnsupportedVersionError: if the declared spec version is outside the
            supported range (checked before anything else).
        InvalidDefinitionError: if the graph has any structural defect.
        UnsupportedFlowTypeError: if the flow is not a survey flow.
    """
    if isinstance(raw, Mapping):
        check_version(raw_spec_version(raw))
    definition, problems = _build(raw)
    flow_uuid = raw_identity(raw)[0] if isinstance(raw, Mapping) else None
    if problems or definition is None:
        raise InvalidDefinitionError(problems, flow_uuid=flow_uuid)
    if not definition.is_survey:
        type_name = FLOW_TYPE_NAMES.get(definition.flow_type, definition.flow_type)
        raise UnsupportedFlowTypeError(
            [f"only survey flows can be executed, got {type_name!r}"],
            flow_uuid=flow_uuid,
        )
    return definition
