import copy

import pytest

from flow_engine.parser import FlowParser
from flow_engine.stitcher import GraphStitcher

from conftest import FAN_IN_FLOW, LINEAR_FLOW, SUSPEND_FLOW


def stitched(payload):
    flow = FlowParser().parse_dict(copy.deepcopy(payload))
    problems = GraphStitcher().stitch(flow)
    return flow, problems


@pytest.mark.parametrize("payload", [LINEAR_FLOW, SUSPEND_FLOW, FAN_IN_FLOW])
def test_previous_and_next_are_inverse(payload):
    flow, problems = stitched(payload)
    assert problems == []
    for a in flow.activities:
        for b in flow.activities:
            assert (a in b.previous) == (b in a.next)


def test_fan_in_edges_in_flow_order():
    flow, _ = stitched(FAN_IN_FLOW)
    join = flow.get_activity("join")
    assert [a.ref for a in join.previous] == ["a", "b"]
    assert [a.ref for a in flow.get_activity("start").next] == ["a", "b"]
    assert flow.get_activity("start").previous == []


def test_transfer_code_one_statement_per_link_in_previous_order():
    flow, _ = stitched(FAN_IN_FLOW)
    code = flow.get_activity("join").assign_code
    assert [(s.source, s.destination) for s in code.statements] == [("a", "join"), ("b", "join")]
    source = code.source
    assert source.startswith("def transfer(activity, variables, flow):")
    assert source.index("# link: a => join") < source.index("# link: b => join")
    assert "variables['a'] = flow.get_activity('a', 'passthrough').data" in source


def test_tokens_are_bound_structurally():
    flow, _ = stitched(LINEAR_FLOW)
    statement = flow.get_activity("end").assign_code.statements[0]
    assert statement.code == "activity.data = flow.get_activity('double', 'script').result"


def test_blank_expression_contributes_nothing():
    flow, _ = stitched(SUSPEND_FLOW)
    assert flow.get_activity("start").assign_code is None
    assert flow.get_activity("form").assign_code is None
    assert flow.get_activity("end").assign_code is not None


def test_broken_link_is_confined_to_its_activity():
    payload = copy.deepcopy(FAN_IN_FLOW)
    payload["links"][2]["expression"] = "variables['a'] = = source.data"
    flow, problems = stitched(payload)

    assert [(p.ref, p.piece) for p in problems] == [("join", "one or more links")]
    assert "Problem in one or more links for activity join" in str(problems[0])
    assert flow.get_activity("join").assign_code is None
    assert flow.get_activity("a").assign_code is not None
    assert [a.ref for a in flow.get_activity("join").previous] == ["a", "b"]


def test_assigning_source_is_a_problem():
    payload = copy.deepcopy(SUSPEND_FLOW)
    payload["links"][1]["expression"] = "source = destination"
    flow, problems = stitched(payload)
    assert [p.ref for p in problems] == ["end"]
    assert "cannot be reassigned" in problems[0].message


def test_restitching_recomputes_edges():
    flow, _ = stitched(SUSPEND_FLOW)
    flow.links.pop()
    GraphStitcher().stitch(flow)
    assert flow.get_activity("end").previous == []
    assert flow.get_activity("form").next == []
    assert flow.get_activity("end").assign_code is None
