"""Built-in activity kinds."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..models import ActivityState, LogLevel
from .base import Activity, register_activity

if TYPE_CHECKING:  # pragma: no cover
    from ..context import WorkflowContext


@register_activity("start")
@dataclass(eq=False)
class Start(Activity):
    """Designated entry point of a fresh run; receives the request payload."""

    async def run(self, context: "WorkflowContext") -> ActivityState:
        return ActivityState.COMPLETE


@register_activity("passthrough")
@dataclass(eq=False)
class Passthrough(Activity):
    """Completes as soon as its inputs have been transferred."""

    async def run(self, context: "WorkflowContext") -> ActivityState:
        return ActivityState.COMPLETE


@register_activity("form")
@dataclass(eq=False)
class FormSubmission(Activity):
    """Halts the flow until a submission arrives through a resume request."""

    form: Dict[str, Any] = field(default_factory=dict)
    submitted: bool = False

    def accept(self, data: Any, auth_token: Optional[str] = None) -> None:
        super().accept(data, auth_token)
        self.submitted = True

    async def run(self, context: "WorkflowContext") -> ActivityState:
        if not self.submitted:
            return ActivityState.SUSPENDED
        await context.log(LogLevel.INFO, f"Form {self.ref} submitted.")
        return ActivityState.COMPLETE


@register_activity("script")
@dataclass(eq=False)
class Script(Activity):
    """Runs author supplied code; the value of its last expression is kept in ``result``."""

    code: str = ""
    result: Any = None

    async def run(self, context: "WorkflowContext") -> ActivityState:
        if self.code.strip():
            self.result = await context.script.run(
                self.code,
                context.imports,
                {
                    "activity": self,
                    "variables": context.variables,
                    "flow": context.flow,
                    "data": self.data,
                },
            )
        return ActivityState.COMPLETE
