"""LegacySubmissionReader tests against files written under tmp_path."""

import json

import pytest

from helpers.flows import AGE_FLOW_UUID
from surveyor_flows.legacy import LegacySubmissionReader

ORG = "org-1"


def write(base, name, record, *, org=ORG, flow=AGE_FLOW_UUID):
    folder = base / org / flow
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{name}.json"
    path.write_text(record if isinstance(record, str) else json.dumps(record), encoding="utf-8")
    return path


def record(completed=True, **overrides):
    data = {
        "flow": AGE_FLOW_UUID,
        "revision": 2,
        "contact": "contact-1",
        "started": "2024-03-01T08:00:00Z",
        "completed": "2024-03-01T08:05:00Z" if completed else False,
        "steps": [
            {
                "node": "A1",
                "arrived_on": "2024-03-01T08:00:00Z",
                "left_on": "2024-03-01T08:00:01Z",
                "actions": [{"type": "reply", "msg": "What is your age?"}],
            },
            {
                "node": "RS1",
                "arrived_on": "2024-03-01T08:00:01Z",
                "left_on": "2024-03-01T08:05:00Z",
                "rule": {"uuid": "rule-minor", "category": "Minor", "value": 15},
            },
        ],
        "fields": {"age": 15, "note": None},
    }
    data.update(overrides)
    return data


@pytest.fixture
def base(tmp_path):
    return tmp_path / "submissions"


class TestLegacySubmissionReader:
    def test_maps_completed_record(self, base):
        write(base, "sub-1", record())
        [submission] = LegacySubmissionReader(base).list_completed()

        assert submission.legacy is True
        assert submission.run_uuid == "sub-1"
        assert submission.org_uuid == ORG
        assert submission.flow_revision == 2
        assert submission.contact == {"uuid": "contact-1"}
        assert [s.node_type for s in submission.steps] == ["action_set", "rule_set"]
        assert submission.steps[0].messages == ["What is your age?"]
        assert submission.steps[1].category == "Minor"
        assert submission.steps[1].value == "15"
        assert {k: v.as_text() for k, v in submission.fields.items()} == {"age": "15"}

    def test_payload_matches_upload_shape(self, base):
        write(base, "sub-1", record())
        [submission] = LegacySubmissionReader(base).list_completed()
        payload = submission.payload()
        assert payload["flow"] == AGE_FLOW_UUID
        assert payload["steps"][1]["rule"]["category"] == "Minor"
        assert payload["completed"].startswith("2024-03-01T08:05:00")

    def test_incomplete_records_not_counted(self, base):
        write(base, "done", record())
        write(base, "open", record(completed=False))
        assert LegacySubmissionReader(base).count_completed() == 1

    def test_boolean_completed_flag(self, base):
        data = record()
        data["completed"] = True
        write(base, "done", data)
        [submission] = LegacySubmissionReader(base).list_completed()
        assert submission.completed_on is None

    def test_unreadable_file_is_skipped(self, base, caplog):
        write(base, "good", record())
        write(base, "broken", "{not json")
        assert LegacySubmissionReader(base).count_completed() == 1
        assert "broken.json" in caplog.text

    def test_filters_by_org_and_flow(self, base):
        write(base, "a", record())
        write(base, "b", record(), org="org-2")
        write(base, "c", record(), flow="other-flow")
        reader = LegacySubmissionReader(base)
        assert reader.count_completed() == 3
        assert reader.count_completed(org_uuid="org-2") == 1
        assert reader.count_completed(org_uuid=ORG, flow_uuid=AGE_FLOW_UUID) == 1

    def test_missing_directory_is_empty(self, tmp_path):
        assert LegacySubmissionReader(tmp_path / "absent").list_completed() == []
