"""Core data models used by the flow engine."""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .activities.base import Activity


class ActivityState(str, enum.Enum):
    """Lifecycle of a single activity."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUSPENDED = "Suspended"
    COMPLETE = "Complete"
    FAILED = "Failed"


class ExecutionState(str, enum.Enum):
    """Terminal classification of an execution attempt."""

    COMPLETE = "Complete"
    SUSPENDED = "Suspended"
    FAILED = "Failed"


class LogLevel(str, enum.Enum):
    """Severity of an execution log entry."""

    DEBUG = "Debug"
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"
    FATAL = "Fatal"

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self]


_LOGGING_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LogEntry:
    """One line of the durable execution log."""

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            level=LogLevel(data["level"]),
            message=data["message"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class Link:
    """Directed edge between two activities with an optional transfer expression."""

    source: str
    destination: str
    expression: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"source": self.source, "destination": self.destination}
        if self.expression:
            payload["expression"] = self.expression
        return payload


@dataclass
class Flow:
    """The static activity/link graph of a workflow."""

    id: str
    name: str
    activities: List["Activity"]
    links: List[Link]
    app_id: int = 0
    variables: Dict[str, Any] = field(default_factory=dict)

    def get_activity(self, ref: str, kind: Optional[str] = None) -> "Activity":
        """Look up an activity by reference, optionally checking its kind."""
        for activity in self.activities:
            if activity.ref == ref:
                if kind is not None and activity.kind != kind:
                    raise TypeError(
                        f"Activity {ref} is of kind '{activity.kind}', not '{kind}'"
                    )
                return activity
        raise KeyError(f"Activity {ref} not found in flow {self.id}")

    def find_activity(self, ref: str) -> Optional["Activity"]:
        return next((a for a in self.activities if a.ref == ref), None)

    def links_into(self, ref: str) -> List[Link]:
        return [link for link in self.links if link.destination == ref]


@dataclass
class FlowDefinition:
    """Persisted workflow definition as fetched from the API or a file."""

    id: str
    name: str
    app_id: int = 0
    activities: List[Dict[str, Any]] = field(default_factory=list)
    links: List[Dict[str, Any]] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FlowDefinition":
        if "flow" in payload:
            payload = payload["flow"]
        return cls(
            id=str(payload.get("id", "")),
            name=payload.get("name", ""),
            app_id=int(payload.get("app_id", payload.get("appId", 0)) or 0),
            activities=list(payload.get("activities", [])),
            links=list(payload.get("links", [])),
            variables=dict(payload.get("variables", {})),
        )

    @classmethod
    def from_json(cls, text: str) -> "FlowDefinition":
        return cls.from_dict(json.loads(text))

    @classmethod
    def from_flow(cls, flow: Flow) -> "FlowDefinition":
        from .parser import FlowParser

        return cls.from_dict(FlowParser().to_dict(flow, include_state=False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "app_id": self.app_id,
            "activities": self.activities,
            "links": self.links,
            "variables": self.variables,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def get_flow(self) -> Flow:
        from .parser import FlowParser

        return FlowParser().parse_dict(self.to_dict())
