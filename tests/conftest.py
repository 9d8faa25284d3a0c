import pytest

from helpers.flows import age_flow, child_flow, lookup_flow, loop_flow, parent_flow
from surveyor_flows.expressions import EvaluationContext
from surveyor_flows.flows import FlowStore


@pytest.fixture
def flow_store():
    flows = FlowStore()
    for raw in (age_flow(), child_flow(), parent_flow(), lookup_flow(), loop_flow()):
        flows.add(raw)
    return flows

@pytest.fixture
def ctx():
    return EvaluationContext(
        fields={},
        contact={"name": "Ana", "district": "Gasabo", "groups": [{"name": "Nurses"}]},
        org={"age_limit": 18},
    )
