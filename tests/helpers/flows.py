"""Builders for raw flow definitions used across the test suite.

Each builder returns plain dicts in the synced definition shape, so tests
can tweak a single key before handing the definition to the loader.
"""

from typing import Any

AGE_FLOW_UUID = "a9e5f7c0-0000-4000-8000-000000000001"
CHILD_FLOW_UUID = "a9e5f7c0-0000-4000-8000-000000000002"
LOOKUP_FLOW_UUID = "a9e5f7c0-0000-4000-8000-000000000003"
LOOP_FLOW_UUID = "a9e5f7c0-0000-4000-8000-000000000004"


def reply(msg: str, lang: str = "eng") -> dict:
    return {"type": "reply", "msg": {lang: msg}}


def save(field: str, value: str) -> dict:
    return {"type": "save", "field": field, "value": value}


def action_set(uuid: str, actions: list[dict], destination: str | None = None) -> dict:
    return {"uuid": uuid, "actions": actions, "destination": destination}


def rule(
    test: dict,
    category: str,
    destination: str | None = None,
    *,
    uuid: str | None = None,
    lang: str = "eng",
) -> dict:
    return {
        "uuid": uuid or f"rule-{category.lower()}",
        "test": test,
        "category": {lang: category},
        "destination": destination,
    }


def other(destination: str | None = None) -> dict:
    return rule({"type": "true"}, "Other", destination, uuid="rule-other")


def rule_set(
    uuid: str,
    ruleset_type: str,
    rules: list[dict],
    *,
    operand: str = "@step.value",
    label: str | None = None,
    config: dict | None = None,
) -> dict:
    node: dict[str, Any] = {
        "uuid": uuid,
        "ruleset_type": ruleset_type,
        "operand": operand,
        "rules": rules,
        "label": label,
    }
    if config is not None:
        node["config"] = config
    return node


def flow(
    uuid: str,
    entry: str,
    *,
    action_sets: list[dict] | None = None,
    rule_sets: list[dict] | None = None,
    name: str = "Test Flow",
    version: str = "11.12",
    revision: int = 1,
    base_language: str = "eng",
    languages: list[str] | None = None,
    flow_type: str = "S",
) -> dict:
    return {
        "version": version,
        "flow_type": flow_type,
        "base_language": base_language,
        "languages": languages or [base_language],
        "entry": entry,
        "action_sets": action_sets or [],
        "rule_sets": rule_sets or [],
        "metadata": {"uuid": uuid, "name": name, "revision": revision},
    }


# =====================================================================
# Canned flows
# =====================================================================


def age_flow(**overrides: Any) -> dict:
    """A1 asks for the age, RS1 splits Minor (<18) from Adult (catch-all)."""
    definition = flow(
        AGE_FLOW_UUID,
        "A1",
        name="Age Check",
        action_sets=[action_set("A1", [reply("What is your age?")], "RS1")],
        rule_sets=[
            rule_set(
                "RS1",
                "wait_number",
                [
                    rule({"type": "lt", "test": "18"}, "Minor", uuid="rule-minor"),
                    rule({"type": "true"}, "Adult", uuid="rule-adult"),
                ],
                label="Age",
            ),
        ],
    )
    definition.update(overrides)
    return definition


def child_flow() -> dict:
    return flow(
        CHILD_FLOW_UUID,
        "C1",
        name="Follow Up",
        action_sets=[action_set("C1", [reply("Thanks for joining.")])],
    )


def parent_flow() -> dict:
    """Saves a field, starts the child flow, greets by name, then ends."""
    return flow(
        "a9e5f7c0-0000-4000-8000-000000000005",
        "P1",
        name="Registration",
        action_sets=[
            action_set(
                "P1",
                [
                    save("District", "{contact.district}"),
                    {"type": "flow", "flow": {"uuid": CHILD_FLOW_UUID, "name": "Follow Up"}},
                    reply("Hello {contact.name} from {district}"),
                ],
            ),
        ],
    )


def lookup_flow() -> dict:
    """L1 waits on a webhook; found -> L2, anything else -> L3."""
    return flow(
        LOOKUP_FLOW_UUID,
        "L1",
        name="Facility Lookup",
        rule_sets=[
            rule_set(
                "L1",
                "webhook",
                [
                    rule({"type": "contains_any", "test": "found"}, "Found", "L2"),
                    other("L3"),
                ],
                label="Lookup",
                config={"webhook": "https://example.org/facility", "webhook_action": "GET"},
            ),
        ],
        action_sets=[
            action_set("L2", [reply("Facility in {extra.district}")]),
            action_set("L3", [reply("Lookup unavailable")]),
        ],
    )


def loop_flow() -> dict:
    """Two action sets pointing at each other; never waits or ends."""
    return flow(
        LOOP_FLOW_UUID,
        "X1",
        name="Loop",
        action_sets=[
            action_set("X1", [reply("ping")], "X2"),
            action_set("X2", [reply("pong")], "X1"),
        ],
    )
