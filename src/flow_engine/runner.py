"""Request handling: load the right instance, execute it and save the result."""
from __future__ import annotations

import logging
import traceback
import uuid
from typing import Awaitable, Callable, Dict, Optional, Sequence

from .clients import FlowApi, HttpFlowApi, HttpLogSink, LogSink
from .instance import FlowInstance
from .messages import FlowInstanceData, RequestKind, WorkflowRequest
from .models import LogLevel
from .scripting import LogCallback, ScriptRunner

console = logging.getLogger("workflow.runner")

MAX_MESSAGE_LENGTH = 4000
KEPT_MESSAGE_LENGTH = 1900

ApiFactory = Callable[[WorkflowRequest], FlowApi]
SinkFactory = Callable[[WorkflowRequest], Optional[LogSink]]
InstanceLoader = Callable[[WorkflowRequest, FlowApi, LogCallback], Awaitable[FlowInstance]]


def truncate_message(message: str) -> str:
    if len(message) <= MAX_MESSAGE_LENGTH:
        return message
    cut = len(message) - KEPT_MESSAGE_LENGTH
    return f"{message[:KEPT_MESSAGE_LENGTH]} ... {cut} characters cut due to excessive length."


def http_api(request: WorkflowRequest) -> FlowApi:
    return HttpFlowApi(request.api, request.auth_token)


def http_sink(request: WorkflowRequest) -> Optional[LogSink]:
    if not request.api:
        return None
    return HttpLogSink(request.api, request.auth_token)


class FlowRunner:
    """Entry point for a single workflow request.

    Fresh runs fetch the flow definition, resumes fetch the stored instance
    snapshot; either way the instance is executed and its snapshot saved.
    Every failure on the way is logged as Fatal and ``"Done!"`` is always the
    last line.
    """

    def __init__(
        self,
        api_factory: Optional[ApiFactory] = None,
        sink_factory: Optional[SinkFactory] = None,
        script: Optional[ScriptRunner] = None,
        imports: Optional[Sequence[str]] = None,
    ) -> None:
        self.api_factory = api_factory or http_api
        self.sink_factory = sink_factory or http_sink
        self.script = script
        self.imports = imports
        self.sink: Optional[LogSink] = None
        self.sink_error: Optional[Exception] = None
        self._loaders: Dict[RequestKind, InstanceLoader] = {
            RequestKind.START: self._load_definition,
            RequestKind.RESUME: self._load_instance,
        }

    async def run(self, request: WorkflowRequest) -> Optional[FlowInstanceData]:
        if not request.instance_id:
            request = request.model_copy(update={"instance_id": str(uuid.uuid4())})
        instance_id = request.instance_id
        self.sink = self.sink_factory(request)
        self.sink_error = None

        async def hook(level: LogLevel, message: str) -> None:
            await self.log(level, message, instance_id)
            # the instance records the failure in its durable log and drops the hook
            if self.sink_error is not None:
                exc, self.sink_error = self.sink_error, None
                raise exc

        result: Optional[FlowInstanceData] = None
        try:
            await self.log(LogLevel.INFO, "Request received by workflow, processing ...", instance_id)
            await self.log(
                LogLevel.DEBUG,
                request.model_dump_json(by_alias=True, indent=2, exclude={"auth_token"}),
                instance_id,
            )

            api = self.api_factory(request)
            instance = await self._loaders[request.kind](request, api, hook)
            snapshot = await instance.execute(request, api)
            await api.save_result(snapshot)
            result = snapshot
        except Exception as exc:
            await self.log(
                LogLevel.FATAL,
                f"Failed to process request, abandoning execution\n{exc}\n{traceback.format_exc()}",
                instance_id,
            )
        finally:
            await self.log(LogLevel.INFO, "Done!", instance_id)
        return result

    async def _load_definition(
        self, request: WorkflowRequest, api: FlowApi, hook: LogCallback
    ) -> FlowInstance:
        definition = await api.get_definition(request.flow_id)
        return FlowInstance.from_definition(definition, log=hook, script=self.script, imports=self.imports)

    async def _load_instance(
        self, request: WorkflowRequest, api: FlowApi, hook: LogCallback
    ) -> FlowInstance:
        data = await api.get_instance(request.instance_id)
        return FlowInstance.from_instance_data(data, log=hook, script=self.script, imports=self.imports)

    async def log(self, level: LogLevel, message: str, instance_id: str) -> None:
        message = truncate_message(message)
        console.log(level.logging_level, "%s:: %s", level.value, message)

        if self.sink is None:
            return
        try:
            await self.sink.send(level, message, instance_id)
        except Exception as exc:
            self.sink = None
            self.sink_error = exc
            await self.log(LogLevel.ERROR, f"Log streaming has been disabled: {exc}", instance_id)
