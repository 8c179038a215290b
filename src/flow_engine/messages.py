"""Boundary messages exchanged with callers and the flow API."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class RequestKind(str, enum.Enum):
    """Whether a request begins a new instance or continues a suspended one."""

    START = "start"
    RESUME = "resume"


class WorkflowRequest(_Message):
    """A request to execute a flow.

    ``flowId`` starts a fresh instance; ``resumeFrom`` continues a suspended
    instance from the named activity.
    """

    flow_id: Optional[str] = Field(default=None, alias="flowId")
    instance_id: Optional[str] = Field(default=None, alias="instanceId")
    resume_from: Optional[str] = Field(default=None, alias="resumeFrom")
    data: Any = None
    api: str = ""
    auth_token: Optional[str] = Field(default=None, alias="authToken")

    @model_validator(mode="after")
    def _check_variant(self) -> "WorkflowRequest":
        if self.resume_from:
            if not self.instance_id:
                raise ValueError("resumeFrom requires instanceId")
        elif not self.flow_id:
            raise ValueError("a request needs flowId, or instanceId with resumeFrom")
        return self

    @property
    def kind(self) -> RequestKind:
        return RequestKind.RESUME if self.resume_from else RequestKind.START


class User(_Message):
    """The caller as resolved by the identity endpoint."""

    id: str
    display_name: str = Field(default="", alias="displayName")
    email: str = ""


class FlowInstanceData(_Message):
    """Durable snapshot of a flow instance after an execution attempt."""

    id: str
    name: str = ""
    caller: Optional[str] = None
    flow_definition_id: str = Field(default="", alias="flowDefinitionId")
    context_json: str = Field(default="", alias="contextJson")
    state: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
