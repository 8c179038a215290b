"""Execution context: the run-time state of one execution attempt and the traversal driving it."""
from __future__ import annotations

import json
import traceback
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .activities import Activity
from .errors import FlowExecutionError
from .models import ActivityState, ExecutionState, Flow, LogEntry, LogLevel
from .parser import FlowParser
from .scripting import DEFAULT_IMPORTS, ScriptRunner
from .variables import VariableBag

# never written to a durable snapshot
TRANSIENT_VARIABLES = frozenset({"AuthToken"})

if TYPE_CHECKING:  # pragma: no cover
    from .clients import IdentityProvider
    from .instance import FlowInstance


class WorkflowContext:
    """Passed between activities as they execute.

    Holds the variable bag, the ordered execution log and the terminal
    classification of the attempt, and drives traversal from either the start
    activity or a resume point.
    """

    def __init__(
        self,
        flow: Flow,
        instance: Optional["FlowInstance"] = None,
        instance_id: str = "",
        variables: Optional[Dict[str, Any]] = None,
        execution_log: Optional[List[LogEntry]] = None,
        execution_state: Optional[ExecutionState] = None,
    ) -> None:
        self.flow = flow
        self.instance = instance
        self.instance_id = instance_id
        self.variables = VariableBag(variables)
        self.execution_log: List[LogEntry] = list(execution_log or [])
        self.execution_state = execution_state

    @classmethod
    def for_instance(cls, flow: Flow, instance: "FlowInstance") -> "WorkflowContext":
        # instance imports by default, a flow may override them through its variables
        variables: Dict[str, Any] = {"Imports": list(instance.imports)}
        variables.update(flow.variables)
        return cls(flow, instance=instance, instance_id=instance.id, variables=variables)

    @property
    def script(self) -> ScriptRunner:
        if self.instance is None:
            raise FlowExecutionError("Context is not bound to a flow instance")
        return self.instance.script

    @property
    def imports(self) -> List[str]:
        return self.variables.get_list("Imports", list(DEFAULT_IMPORTS))

    async def execute(
        self,
        data: Any,
        api: str,
        identity: "IdentityProvider",
        auth_token: Optional[str] = None,
        resume_from: Optional[str] = None,
    ) -> ExecutionState:
        await self.log(LogLevel.INFO, "Execution started")
        self.variables["AppId"] = self.instance.app_id if self.instance else self.flow.app_id
        self.variables["Data"] = data
        self.variables["Api"] = api
        self.variables["AuthToken"] = auth_token
        self.variables["InstanceId"] = str(self.instance_id)

        user = await identity.who_am_i()
        if self.instance is not None:
            self.instance.caller = user.id
        self.variables["UserId"] = user.id
        self.variables["UserName"] = user.display_name
        self.variables["UserEmail"] = user.email

        try:
            entry = self._start_activity() if resume_from is None else self._resume_point(resume_from)
            entry.accept(data, auth_token)
            await entry.execute(self)

            if all(a.state == ActivityState.COMPLETE for a in self.flow.activities):
                await self.log(LogLevel.INFO, "Execution Complete.")
                self.execution_state = ExecutionState.COMPLETE
            else:
                await self.log(LogLevel.INFO, "Execution awaiting further input.")
                self.execution_state = ExecutionState.SUSPENDED
        except Exception as exc:
            await self._log_failure(exc)
            self.execution_state = ExecutionState.FAILED

        return self.execution_state

    def _start_activity(self) -> Activity:
        starts = [a for a in self.flow.activities if a.kind == "start"]
        if len(starts) != 1:
            raise FlowExecutionError(
                f"Flow {self.flow.id} must have exactly one start activity, found {len(starts)}"
            )
        return starts[0]

    def _resume_point(self, ref: str) -> Activity:
        activity = self.flow.find_activity(ref)
        if activity is None:
            raise FlowExecutionError(f"No activity {ref} to resume from in flow {self.flow.id}")
        return activity

    async def _log_failure(self, exc: BaseException) -> None:
        await self.log(LogLevel.ERROR, "Execution failed.")
        detail = f"{exc}\n{''.join(traceback.format_tb(exc.__traceback__))}"
        await self.log(LogLevel.ERROR, detail)

        # TODO: confirm whether each nested cause should log its own message; today the
        # top-level message is repeated once per cause and tests pin that behaviour
        seen = {id(exc)}
        cause = _inner(exc)
        while cause is not None and id(cause) not in seen:
            seen.add(id(cause))
            await self.log(LogLevel.ERROR, detail)
            cause = _inner(cause)

    async def log(self, level: LogLevel, message: str) -> None:
        # kept locally for the durable snapshot, streamed through the instance
        self.execution_log.append(LogEntry(level, message))
        if self.instance is not None:
            await self.instance.log(level, message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_state": self.execution_state.value if self.execution_state else None,
            "instance_id": self.instance_id,
            "flow": FlowParser().to_dict(self.flow),
            "variables": {
                name: value for name, value in self.variables.to_dict().items() if name not in TRANSIENT_VARIABLES
            },
            "execution_log": [entry.to_dict() for entry in self.execution_log],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    @classmethod
    def from_dict(
        cls, payload: Dict[str, Any], instance: Optional["FlowInstance"] = None
    ) -> "WorkflowContext":
        state = payload.get("execution_state")
        return cls(
            flow=FlowParser().parse_dict(payload["flow"]),
            instance=instance,
            instance_id=payload.get("instance_id", ""),
            variables=payload.get("variables", {}),
            execution_log=[LogEntry.from_dict(e) for e in payload.get("execution_log", [])],
            execution_state=ExecutionState(state) if state else None,
        )

    @classmethod
    def from_json(cls, text: str, instance: Optional["FlowInstance"] = None) -> "WorkflowContext":
        return cls.from_dict(json.loads(text), instance)


def _inner(exc: BaseException) -> Optional[BaseException]:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__
