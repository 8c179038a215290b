"""Flow engine: executes activity graphs that suspend for input and resume later."""

from .activities import Activity, register_activity
from .context import WorkflowContext
from .errors import (
    ActivityExecutionError,
    CollaboratorError,
    FlowEngineError,
    FlowExecutionError,
    FlowValidationError,
    ScriptCompilationError,
    ScriptError,
    ScriptRuntimeError,
    StitchError,
    VariableTypeError,
)
from .instance import FlowInstance
from .messages import FlowInstanceData, RequestKind, User, WorkflowRequest
from .models import ActivityState, ExecutionState, Flow, FlowDefinition, Link, LogEntry, LogLevel
from .parser import FlowParser
from .runner import FlowRunner
from .scripting import LibraryCatalog, ScriptRunner, default_catalog
from .stitcher import GraphStitcher, StitchProblem
from .variables import VariableBag

__version__ = "1.0.0"

__all__ = [
    "Activity",
    "ActivityExecutionError",
    "ActivityState",
    "CollaboratorError",
    "ExecutionState",
    "Flow",
    "FlowDefinition",
    "FlowEngineError",
    "FlowExecutionError",
    "FlowInstance",
    "FlowInstanceData",
    "FlowParser",
    "FlowRunner",
    "FlowValidationError",
    "GraphStitcher",
    "LibraryCatalog",
    "Link",
    "LogEntry",
    "LogLevel",
    "RequestKind",
    "ScriptCompilationError",
    "ScriptError",
    "ScriptRunner",
    "ScriptRuntimeError",
    "StitchError",
    "StitchProblem",
    "User",
    "VariableBag",
    "VariableTypeError",
    "WorkflowContext",
    "WorkflowRequest",
    "default_catalog",
    "register_activity",
]
