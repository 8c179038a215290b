"""Flow instance: a stitched flow bound to one execution history."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Sequence

from .context import WorkflowContext
from .models import FlowDefinition, Flow, LogLevel, utcnow
from .messages import FlowInstanceData, RequestKind, WorkflowRequest
from .scripting import DEFAULT_IMPORTS, LogCallback, ScriptRunner
from .stitcher import GraphStitcher, StitchProblem

if TYPE_CHECKING:  # pragma: no cover
    from .clients import IdentityProvider

logger = logging.getLogger(__name__)


class FlowInstance:
    """Owns a flow, its serialized definition and the context of the current attempt.

    Construction stitches the flow, so an instance never exposes a flow without
    its edges and transfer code. Problems found while stitching are kept in
    :attr:`stitch_problems` and written to the execution log of the next attempt.
    """

    def __init__(
        self,
        flow: Flow,
        flow_definition: str,
        name: str = "",
        app_id: int = 0,
        instance_id: str = "",
        log: Optional[LogCallback] = None,
        script: Optional[ScriptRunner] = None,
        context: Optional[WorkflowContext] = None,
        start: Optional[datetime] = None,
        imports: Optional[Sequence[str]] = None,
    ) -> None:
        self.id = instance_id
        self.app_id = app_id
        self.caller: Optional[str] = None
        self.name = name
        self.flow_definition = flow_definition
        self.flow = flow
        self.context = context
        self.start = start
        self.end: Optional[datetime] = None
        self.script = script or ScriptRunner()
        self.imports = list(imports) if imports is not None else list(DEFAULT_IMPORTS)
        self._log_hook = log
        self.stitch_problems: List[StitchProblem] = GraphStitcher().stitch(flow)

    @classmethod
    def from_definition(
        cls,
        definition: FlowDefinition,
        log: Optional[LogCallback] = None,
        script: Optional[ScriptRunner] = None,
        imports: Optional[Sequence[str]] = None,
    ) -> "FlowInstance":
        return cls(
            flow=definition.get_flow(),
            flow_definition=definition.to_json(),
            name=definition.name,
            app_id=definition.app_id,
            log=log,
            script=script,
            imports=imports,
        )

    @classmethod
    def from_instance_data(
        cls,
        data: FlowInstanceData,
        log: Optional[LogCallback] = None,
        script: Optional[ScriptRunner] = None,
        imports: Optional[Sequence[str]] = None,
    ) -> "FlowInstance":
        """Rehydrate a suspended instance from its durable snapshot."""
        context = WorkflowContext.from_json(data.context_json)
        flow = context.flow
        instance = cls(
            flow=flow,
            flow_definition=FlowDefinition.from_flow(flow).to_json(),
            name=data.name,
            app_id=flow.app_id,
            instance_id=data.id,
            log=log,
            script=script,
            imports=imports,
            context=context,
            start=data.start,
        )
        instance.caller = data.caller
        context.instance = instance
        return instance

    @property
    def log_streaming(self) -> bool:
        return self._log_hook is not None

    async def log(self, level: LogLevel, message: str) -> None:
        if self._log_hook is None:
            return
        try:
            await self._log_hook(level, message)
        except Exception as exc:
            self._log_hook = None
            logger.warning("Log streaming disabled for instance %s: %s", self.id, exc)
            if self.context is not None:
                await self.context.log(
                    LogLevel.WARNING,
                    f"Realtime processing has failed:\n{exc}\nLog streaming has been disabled.",
                )

    async def execute(self, request: WorkflowRequest, identity: "IdentityProvider") -> FlowInstanceData:
        self.start = utcnow()
        self.id = request.instance_id or self.id or str(uuid.uuid4())
        self.context = WorkflowContext.for_instance(self.flow, self)

        for problem in self.stitch_problems:
            await self.context.log(LogLevel.ERROR, str(problem))

        resume_from = request.resume_from if request.kind == RequestKind.RESUME else None
        await self.context.execute(
            request.data,
            request.api,
            identity,
            auth_token=request.auth_token,
            resume_from=resume_from,
        )
        return self.complete()

    def complete(self) -> FlowInstanceData:
        """Snapshot the instance after an execution attempt."""
        definition = FlowDefinition.from_json(self.flow_definition)
        state = self.context.execution_state if self.context else None
        return FlowInstanceData(
            id=self.id,
            name=self.name,
            caller=self.caller,
            flow_definition_id=definition.id,
            context_json=self.context.to_json() if self.context else "",
            state=state.value if state else None,
            start=self.start,
            end=utcnow(),
        )
