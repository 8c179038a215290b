"""
Shared fixtures: sample flows, a fixed identity and a recording log sink
"""
import copy

import pytest

from flow_engine.instance import FlowInstance
from flow_engine.messages import User
from flow_engine.models import FlowDefinition
from flow_engine.persistence import SqliteFlowStore
from flow_engine.scripting import DEFAULT_IMPORTS, LibraryCatalog, ScriptRunner


LINEAR_FLOW = {
    "id": "linear",
    "name": "Linear",
    "app_id": 7,
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "double", "kind": "script", "code": "data * 2"},
        {"ref": "end", "kind": "passthrough"},
    ],
    "links": [
        {"source": "start", "destination": "double", "expression": "destination.data = source.data"},
        {"source": "double", "destination": "end", "expression": "destination.data = source.result"},
    ],
}

SUSPEND_FLOW = {
    "id": "approval",
    "name": "Approval",
    "app_id": 3,
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "form", "kind": "form", "form": {"fields": ["approved"]}},
        {"ref": "end", "kind": "passthrough"},
    ],
    "links": [
        {"source": "start", "destination": "form"},
        {"source": "form", "destination": "end", "expression": "destination.data = source.data"},
    ],
}

FAN_IN_FLOW = {
    "id": "fan-in",
    "name": "Fan in",
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "a", "kind": "passthrough"},
        {"ref": "b", "kind": "passthrough"},
        {"ref": "join", "kind": "passthrough"},
    ],
    "links": [
        {"source": "start", "destination": "a", "expression": "destination.data = source.data + 1"},
        {"source": "start", "destination": "b", "expression": "destination.data = source.data * 10"},
        {"source": "a", "destination": "join", "expression": "variables['a'] = source.data"},
        {"source": "b", "destination": "join", "expression": "variables['b'] = source.data"},
    ],
}

FORBIDDEN_FLOW = {
    "id": "forbidden",
    "name": "Forbidden",
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "shell", "kind": "script", "code": "import os\nos.getcwd()"},
    ],
    "links": [{"source": "start", "destination": "shell"}],
}

FORBIDDEN_LINK_FLOW = {
    "id": "forbidden-link",
    "name": "Forbidden link",
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "cwd", "kind": "passthrough"},
    ],
    "links": [{"source": "start", "destination": "cwd", "expression": "destination.data = os.getcwd()"}],
}

DIAMOND_WAIT_FLOW = {
    "id": "diamond",
    "name": "Diamond",
    "activities": [
        {"ref": "start", "kind": "start"},
        {"ref": "x", "kind": "passthrough"},
        {"ref": "w", "kind": "counting_wait"},
    ],
    "links": [
        {"source": "start", "destination": "x"},
        {"source": "start", "destination": "w"},
        {"source": "x", "destination": "w"},
    ],
}


class StaticIdentity:
    """Identity provider returning a fixed user."""

    def __init__(self, user=None):
        self.user = user or User(id="u-1", display_name="Ada Lovelace", email="ada@example.com")
        self.calls = 0

    async def who_am_i(self):
        self.calls += 1
        return self.user


class RecordingSink:
    """Log sink that keeps every line, or fails on every send."""

    def __init__(self, fail=False):
        self.fail = fail
        self.lines = []

    async def send(self, level, message, instance_id):
        if self.fail:
            raise ConnectionError("hub unavailable")
        self.lines.append((level, message, instance_id))


def definition(payload):
    return FlowDefinition.from_dict(copy.deepcopy(payload))


def log_messages(context):
    return [entry.message for entry in context.execution_log]


@pytest.fixture
def script_runner():
    """Runner over a small explicit catalog, so tests never scan site-packages."""
    return ScriptRunner(LibraryCatalog(list(DEFAULT_IMPORTS) + ["os"]))


@pytest.fixture
def identity():
    return StaticIdentity()


@pytest.fixture
def store(tmp_path):
    flow_store = SqliteFlowStore(str(tmp_path / "flows.db"))
    yield flow_store
    flow_store.close()


@pytest.fixture
def make_instance(script_runner):
    def factory(payload, log=None):
        return FlowInstance.from_definition(definition(payload), log=log, script=script_runner)

    return factory
