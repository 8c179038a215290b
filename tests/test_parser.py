import copy
import json

import pytest

from flow_engine.activities import FormSubmission, Script
from flow_engine.errors import FlowValidationError
from flow_engine.models import ActivityState, FlowDefinition
from flow_engine.parser import FlowParser

from conftest import FAN_IN_FLOW, LINEAR_FLOW, SUSPEND_FLOW


def test_parse_flow_dict():
    flow = FlowParser().parse_dict({"flow": copy.deepcopy(LINEAR_FLOW)})
    assert flow.id == "linear"
    assert flow.app_id == 7
    assert [a.ref for a in flow.activities] == ["start", "double", "end"]
    assert isinstance(flow.get_activity("double"), Script)
    assert flow.links[1].expression == "destination.data = source.result"


def test_parse_yaml_with_camel_case_app_id():
    text = """
flow:
  id: 12
  name: Approval
  appId: 4
  activities:
    - {ref: start, kind: start}
    - {ref: form, kind: form, state: Suspended}
  links:
    - {source: start, destination: form}
"""
    flow = FlowParser().parse(text)
    assert flow.id == "12"
    assert flow.app_id == 4
    form = flow.get_activity("form", "form")
    assert isinstance(form, FormSubmission)
    assert form.state == ActivityState.SUSPENDED


def test_schema_errors_are_all_reported():
    payload = {"id": "bad", "activities": [{"ref": "a"}, {"kind": "start"}], "links": [{"source": "a"}]}
    with pytest.raises(FlowValidationError) as excinfo:
        FlowParser().parse_dict(payload)
    assert len(excinfo.value.errors) == 3


def test_unknown_kind_rejected():
    payload = {"id": "x", "activities": [{"ref": "a", "kind": "teleport"}]}
    with pytest.raises(FlowValidationError, match="Unknown activity kind 'teleport'"):
        FlowParser().parse_dict(payload)


def test_duplicate_refs_rejected():
    payload = {"id": "x", "activities": [{"ref": "a", "kind": "start"}, {"ref": "a", "kind": "passthrough"}]}
    with pytest.raises(FlowValidationError, match="Duplicate activity refs"):
        FlowParser().parse_dict(payload)


def test_unresolved_link_rejected():
    payload = copy.deepcopy(SUSPEND_FLOW)
    payload["links"].append({"source": "form", "destination": "nowhere"})
    with pytest.raises(FlowValidationError) as excinfo:
        FlowParser().parse_dict(payload)
    assert excinfo.value.errors == ["Link destination nowhere not defined"]


def test_cycle_detection():
    payload = copy.deepcopy(SUSPEND_FLOW)
    payload["links"].append({"source": "end", "destination": "start"})
    with pytest.raises(FlowValidationError, match="Cycle detected"):
        FlowParser().parse_dict(payload)
    assert FlowParser(strict=False).parse_dict(payload).id == "approval"


def test_invalid_yaml():
    with pytest.raises(FlowValidationError, match="Failed to parse YAML"):
        FlowParser().parse("flow: [unterminated")


def test_serialize_round_trip():
    parser = FlowParser()
    flow = parser.parse_dict(copy.deepcopy(FAN_IN_FLOW))
    for fmt in ("json", "yaml"):
        again = parser.parse(parser.serialize(flow, fmt=fmt), fmt=fmt)
        assert parser.to_dict(again) == parser.to_dict(flow)


def test_definition_round_trip_drops_state():
    flow = FlowParser().parse_dict(copy.deepcopy(SUSPEND_FLOW))
    flow.get_activity("form").state = ActivityState.SUSPENDED
    definition = FlowDefinition.from_flow(flow)
    assert "state" not in definition.activities[1]

    restored = FlowDefinition.from_json(definition.to_json())
    assert restored.id == "approval"
    assert restored.app_id == 3
    assert restored.get_flow().get_activity("form").state == ActivityState.PENDING
    assert json.loads(restored.to_json())["links"][1]["expression"] == "destination.data = source.data"


def test_get_activity_checks_kind():
    flow = FlowParser().parse_dict(copy.deepcopy(SUSPEND_FLOW))
    with pytest.raises(KeyError):
        flow.get_activity("missing")
    with pytest.raises(TypeError):
        flow.get_activity("form", "script")
