"""Activity base class, the execution contract every graph node satisfies."""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Type

from ..errors import ActivityExecutionError, FlowValidationError
from ..models import ActivityState, LogLevel

if TYPE_CHECKING:  # pragma: no cover
    from ..context import WorkflowContext
    from ..stitcher import TransferCode

logger = logging.getLogger(__name__)

TRANSIENT = {"transient": True}

ACTIVITY_KINDS: Dict[str, Type["Activity"]] = {}


def register_activity(kind: str):
    """Class decorator registering an Activity subclass under a kind name."""

    def decorator(cls: Type["Activity"]) -> Type["Activity"]:
        if kind in ACTIVITY_KINDS and ACTIVITY_KINDS[kind] is not cls:
            logger.warning("Activity kind '%s' re-registered by %s", kind, cls.__name__)
        cls.kind = kind
        ACTIVITY_KINDS[kind] = cls
        return cls

    return decorator


def create_activity(spec: Dict[str, Any]) -> "Activity":
    """Build an activity from its serialized form."""
    kind = spec.get("kind")
    cls = ACTIVITY_KINDS.get(kind)
    if cls is None:
        raise FlowValidationError(f"Unknown activity kind '{kind}' for activity {spec.get('ref')}")
    return cls.from_dict(spec)


@dataclass(eq=False)
class Activity:
    """A node of the flow graph.

    Concrete kinds override :meth:`run`, which performs the activity's own effect
    and returns the state it should move to. :meth:`execute` wraps that with the
    transfer of predecessor outputs, failure handling and the hand-off to
    successors.
    """

    kind: ClassVar[str] = ""

    ref: str
    name: Optional[str] = None
    state: ActivityState = ActivityState.PENDING
    data: Any = None
    auth_token: Optional[str] = field(default=None, repr=False, metadata=TRANSIENT)
    previous: List["Activity"] = field(default_factory=list, repr=False, metadata=TRANSIENT)
    next: List["Activity"] = field(default_factory=list, repr=False, metadata=TRANSIENT)
    assign_code: Optional["TransferCode"] = field(default=None, repr=False, metadata=TRANSIENT)

    def accept(self, data: Any, auth_token: Optional[str] = None) -> None:
        """Hand the caller's payload to this activity before it is executed."""
        if auth_token is not None:
            self.auth_token = auth_token
        self.data = data

    def is_ready(self) -> bool:
        # a suspended join was already handed off by an earlier predecessor
        if self.state != ActivityState.PENDING:
            return False
        return all(p.state == ActivityState.COMPLETE for p in self.previous)

    async def execute(self, context: "WorkflowContext") -> None:
        resuming = self.state == ActivityState.SUSPENDED
        self.state = ActivityState.RUNNING
        await context.log(LogLevel.DEBUG, f"Executing activity {self.ref} ({self.kind})")

        try:
            if not resuming:
                await self.apply_transfer(context)
            self.state = await self.run(context)
        except Exception as exc:
            self.state = ActivityState.FAILED
            raise ActivityExecutionError(self.ref, str(exc)) from exc

        if self.state == ActivityState.SUSPENDED:
            await context.log(LogLevel.INFO, f"Activity {self.ref} is awaiting input.")
            return

        if self.state != ActivityState.COMPLETE:
            return

        for successor in self.next:
            if successor.is_ready():
                await successor.execute(context)

    async def apply_transfer(self, context: "WorkflowContext") -> None:
        """Populate inputs from completed predecessors using the stitched transfer code."""
        if self.assign_code is None:
            return
        await context.script.run_action(
            self.assign_code.invocation(),
            context.imports,
            {"activity": self, "variables": context.variables, "flow": context.flow},
        )

    async def run(self, context: "WorkflowContext") -> ActivityState:
        raise NotImplementedError

    @classmethod
    def persisted_fields(cls) -> List[dataclasses.Field]:
        return [f for f in dataclasses.fields(cls) if not f.metadata.get("transient")]

    def to_dict(self, include_state: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ref": self.ref, "kind": self.kind}
        for f in self.persisted_fields():
            if f.name == "ref":
                continue
            if f.name == "state":
                if include_state:
                    payload["state"] = self.state.value
                continue
            payload[f.name] = getattr(self, f.name)
        return payload

    @classmethod
    def from_dict(cls, spec: Dict[str, Any]) -> "Activity":
        kwargs: Dict[str, Any] = {}
        for f in cls.persisted_fields():
            if f.name in spec:
                kwargs[f.name] = spec[f.name]
        if "state" in kwargs:
            kwargs["state"] = ActivityState(kwargs["state"])
        return cls(**kwargs)
