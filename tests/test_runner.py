import json
import logging
from unittest.mock import AsyncMock

import pytest

from flow_engine.errors import CollaboratorError
from flow_engine.messages import WorkflowRequest
from flow_engine.models import LogLevel
from flow_engine.runner import FlowRunner, truncate_message

from conftest import LINEAR_FLOW, SUSPEND_FLOW, RecordingSink, definition


def make_runner(api, sink, script_runner):
    return FlowRunner(api_factory=lambda request: api, sink_factory=lambda request: sink, script=script_runner)


def test_truncate_long_message():
    message = "x" * 5000
    truncated = truncate_message(message)
    assert truncated == "x" * 1900 + " ... 3100 characters cut due to excessive length."


def test_short_messages_untouched():
    assert truncate_message("y" * 4000) == "y" * 4000


@pytest.mark.asyncio
async def test_fresh_run_saves_snapshot(store, script_runner):
    store.save_definition(definition(LINEAR_FLOW))
    sink = RecordingSink()
    runner = make_runner(store, sink, script_runner)

    result = await runner.run(WorkflowRequest(flow_id="linear", instance_id="run-1", data=5))

    assert result.state == "Complete"
    assert store.load_instance("run-1").state == "Complete"
    messages = [m for _, m, _ in sink.lines]
    assert messages[0] == "Request received by workflow, processing ..."
    assert "Execution Complete." in messages
    assert messages[-1] == "Done!"
    assert {instance_id for _, _, instance_id in sink.lines} == {"run-1"}


@pytest.mark.asyncio
async def test_resume_dispatches_to_stored_instance(store, script_runner):
    store.save_definition(definition(SUSPEND_FLOW))
    runner = make_runner(store, RecordingSink(), script_runner)
    first = await runner.run(WorkflowRequest(flow_id="approval", instance_id="run-2"))
    assert first.state == "Suspended"

    second = await make_runner(store, RecordingSink(), script_runner).run(
        WorkflowRequest(instance_id="run-2", resume_from="form", data={"ok": True})
    )
    assert second.state == "Complete"
    assert store.load_instance("run-2").state == "Complete"


@pytest.mark.asyncio
async def test_instance_id_generated_when_missing(store, script_runner):
    store.save_definition(definition(LINEAR_FLOW))
    result = await make_runner(store, None, script_runner).run(WorkflowRequest(flow_id="linear", data=1))
    assert result.id
    assert store.load_instance(result.id).state == "Complete"


@pytest.mark.asyncio
async def test_fetch_failure_is_fatal_and_done_is_logged(script_runner):
    api = AsyncMock()
    api.get_definition.side_effect = CollaboratorError("GET Core/FlowDefinition(missing) failed")
    sink = RecordingSink()

    result = await make_runner(api, sink, script_runner).run(WorkflowRequest(flow_id="missing", instance_id="run-3"))

    assert result is None
    levels = [level for level, _, _ in sink.lines]
    assert LogLevel.FATAL in levels
    fatal = next(m for level, m, _ in sink.lines if level == LogLevel.FATAL)
    assert fatal.startswith("Failed to process request, abandoning execution\nGET Core/FlowDefinition(missing) failed")
    assert sink.lines[-1][1] == "Done!"
    api.save_result.assert_not_called()


@pytest.mark.asyncio
async def test_failed_traversal_still_saves(store, script_runner):
    payload = {
        "id": "broken",
        "activities": [{"ref": "start", "kind": "start"}, {"ref": "s", "kind": "script", "code": "1 / 0"}],
        "links": [{"source": "start", "destination": "s"}],
    }
    store.save_definition(definition(payload))
    result = await make_runner(store, None, script_runner).run(WorkflowRequest(flow_id="broken", instance_id="run-4"))
    assert result.state == "Failed"
    assert store.load_instance("run-4").state == "Failed"


@pytest.mark.asyncio
async def test_failing_sink_is_disabled(store, script_runner, caplog):
    store.save_definition(definition(LINEAR_FLOW))
    sink = RecordingSink(fail=True)
    runner = make_runner(store, sink, script_runner)

    with caplog.at_level(logging.INFO, logger="workflow.runner"):
        result = await runner.run(WorkflowRequest(flow_id="linear", instance_id="run-5", data=1))

    assert result.state == "Complete"
    assert runner.sink is None
    assert "Log streaming has been disabled: hub unavailable" in caplog.text
    assert "Info:: Done!" in caplog.text

    entries = json.loads(store.load_instance("run-5").context_json)["execution_log"]
    disabled = [e for e in entries if "Log streaming has been disabled" in e["message"]]
    assert len(disabled) == 1
    assert disabled[0]["level"] == LogLevel.WARNING.value
    assert disabled[0]["message"] == "Realtime processing has failed:\nhub unavailable\nLog streaming has been disabled."
    assert runner.sink_error is None


@pytest.mark.asyncio
async def test_auth_token_not_logged(store, script_runner):
    store.save_definition(definition(LINEAR_FLOW))
    sink = RecordingSink()
    await make_runner(store, sink, script_runner).run(
        WorkflowRequest(flow_id="linear", instance_id="run-6", data=1, auth_token="secret-token")
    )
    assert not any("secret-token" in m for _, m, _ in sink.lines)
