"""Definition loader tests: version gate, structural checks, flow type."""

import copy

import pytest
from pydantic import ValidationError

from helpers.flows import action_set, age_flow, flow, other, reply, rule, rule_set
from surveyor_flows.errors import (
    InvalidDefinitionError,
    UnsupportedFlowTypeError,
    UnsupportedVersionError,
)
from surveyor_flows.loader import check_definition, load_definition
from surveyor_flows.models.action import SendMessageAction
from surveyor_flows.models.flow import ActionSet, RuleSet
from surveyor_flows.models.rule import NumberCompareTest, TrueTest


class TestLoadDefinition:
    def test_age_flow_parses_typed_nodes(self):
        definition = load_definition(age_flow())
        assert definition.name == "Age Check"
        assert definition.entry == "A1"
        assert definition.question_count == 1

        a1 = definition.get_node("A1")
        assert isinstance(a1, ActionSet)
        assert isinstance(a1.actions[0], SendMessageAction)
        assert a1.destination == "RS1"

        rs1 = definition.get_node("RS1")
        assert isinstance(rs1, RuleSet)
        assert rs1.waits_for_input
        assert isinstance(rs1.rules[0].test, NumberCompareTest)
        assert isinstance(rs1.rules[1].test, TrueTest)

    def test_definition_is_immutable(self):
        definition = load_definition(age_flow())
        with pytest.raises(ValidationError):
            definition.entry = "RS1"

    def test_numeric_test_argument_accepts_json_number(self):
        raw = age_flow()
        raw["rule_sets"][0]["rules"][0]["test"]["test"] = 18
        definition = load_definition(raw)
        assert definition.get_node("RS1").rules[0].test.test == "18"

    def test_looping_graph_is_valid(self):
        raw = flow(
            "loop", "X1",
            action_sets=[action_set("X1", [reply("a")], "X2"), action_set("X2", [reply("b")], "X1")],
        )
        assert check_definition(raw) == []


class TestVersionGate:
    def test_newer_major_rejected_before_validation(self):
        # Broken graph: the version gate must still be what fails
        raw = age_flow(version="20.0", entry="nowhere", action_sets=[{"bogus": True}])
        with pytest.raises(UnsupportedVersionError) as exc_info:
            load_definition(raw)
        assert exc_info.value.spec_version == "20.0"

    def test_missing_version_rejected(self):
        raw = age_flow()
        del raw["version"]
        with pytest.raises(UnsupportedVersionError):
            load_definition(raw)

    def test_spec_version_key_accepted(self):
        raw = age_flow()
        raw["spec_version"] = raw.pop("version")
        assert load_definition(raw).spec_version == "11.12"


class TestStructuralChecks:
    def problems(self, raw):
        with pytest.raises(InvalidDefinitionError) as exc_info:
            load_definition(raw)
        return exc_info.value.problems

    def test_missing_entry_node(self):
        problems = self.problems(age_flow(entry="Z9"))
        assert any("entry node 'Z9' does not exist" in p for p in problems)

    def test_dangling_destination(self):
        raw = age_flow()
        raw["action_sets"][0]["destination"] = "Z9"
        assert any("missing node 'Z9'" in p for p in self.problems(raw))

    def test_duplicate_node_ids(self):
        raw = age_flow()
        raw["action_sets"].append(copy.deepcopy(raw["action_sets"][0]))
        assert any("duplicate node id 'A1'" in p for p in self.problems(raw))

    def test_wait_without_catch_all(self):
        raw = age_flow()
        raw["rule_sets"][0]["rules"].pop()
        assert any("exactly one catch-all" in p for p in self.problems(raw))

    def test_wait_with_two_catch_alls(self):
        raw = age_flow()
        raw["rule_sets"][0]["rules"].append(other())
        assert any("found 2" in p for p in self.problems(raw))

    def test_message_without_base_language(self):
        raw = age_flow()
        raw["action_sets"][0]["actions"] = [reply("Quel âge?", lang="fra")]
        assert any("without base language 'eng'" in p for p in self.problems(raw))

    def test_invalid_static_regex(self):
        raw = age_flow()
        raw["rule_sets"][0]["rules"].insert(0, rule({"type": "regex", "test": "("}, "Bad"))
        assert any("invalid regex" in p for p in self.problems(raw))

    def test_unknown_action_type(self):
        raw = age_flow()
        raw["action_sets"][0]["actions"].append({"type": "email", "to": "x"})
        assert any(p.startswith("action_sets[0]") for p in self.problems(raw))

    def test_unknown_ruleset_type(self):
        raw = age_flow()
        raw["rule_sets"][0]["ruleset_type"] = "wait_sms"
        assert any(p.startswith("rule_sets[0]") for p in self.problems(raw))

    def test_all_problems_reported(self):
        raw = age_flow(entry="Z9")
        raw["rule_sets"][0]["rules"].pop()
        problems = self.problems(raw)
        assert len(problems) >= 2

    def test_non_mapping_definition(self):
        with pytest.raises(InvalidDefinitionError):
            load_definition(["not", "a", "flow"])

    @pytest.mark.parametrize("metadata", [["uuid", "x"], "x", 7])
    def test_non_mapping_metadata(self, metadata):
        raw = age_flow()
        raw["metadata"] = metadata
        assert "metadata must be a JSON object" in self.problems(raw)
        assert "metadata must be a JSON object" in check_definition(raw)


class TestFlowType:
    def test_message_flow_rejected(self):
        with pytest.raises(UnsupportedFlowTypeError, match="Message"):
            load_definition(age_flow(flow_type="M"))

    def test_check_definition_reports_flow_type(self):
        problems = check_definition(age_flow(flow_type="V"))
        assert problems == ["unsupported flow type 'V'"]

    def test_immediate_ruleset_may_omit_catch_all(self):
        raw = flow(
            "calc", "E1",
            rule_sets=[
                rule_set("E1", "expression", [rule({"type": "gt", "test": "0"}, "Positive")],
                         operand="@(1 + 1)"),
            ],
        )
        assert check_definition(raw) == []
