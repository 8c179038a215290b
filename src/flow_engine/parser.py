"""Flow parser converts declarative definitions into runtime models."""
from __future__ import annotations

import json
from typing import Any, Dict, List

import yaml
from jsonschema import Draft7Validator

from .activities import create_activity
from .errors import FlowValidationError
from .models import Flow, Link

FLOW_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "activities"],
    "properties": {
        "id": {"type": ["string", "integer"]},
        "name": {"type": "string"},
        "app_id": {"type": ["integer", "null"]},
        "variables": {"type": "object"},
        "activities": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["ref", "kind"],
                "properties": {
                    "ref": {"type": "string", "minLength": 1},
                    "kind": {"type": "string", "minLength": 1},
                    "state": {
                        "enum": ["Pending", "Running", "Suspended", "Complete", "Failed"]
                    },
                },
            },
        },
        "links": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["source", "destination"],
                "properties": {
                    "source": {"type": "string"},
                    "destination": {"type": "string"},
                    "expression": {"type": ["string", "null"]},
                },
            },
        },
    },
}


class FlowParser:
    """Parser that understands YAML/JSON flow definitions."""

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict
        self._validator = Draft7Validator(FLOW_SCHEMA)

    def parse(self, data: str, fmt: str = "yaml") -> Flow:
        if fmt == "yaml":
            try:
                payload = yaml.safe_load(data)
            except yaml.YAMLError as exc:
                raise FlowValidationError(f"Failed to parse YAML: {exc}")
        elif fmt == "json":
            try:
                payload = json.loads(data)
            except json.JSONDecodeError as exc:
                raise FlowValidationError(f"Failed to parse JSON: {exc}")
        else:
            raise FlowValidationError(f"Unsupported flow format: {fmt}")
        if not isinstance(payload, dict):
            raise FlowValidationError("Flow definition must be a mapping")
        return self._from_dict(payload)

    def parse_dict(self, payload: Dict[str, Any]) -> Flow:
        return self._from_dict(payload)

    def _from_dict(self, payload: Dict[str, Any]) -> Flow:
        if "flow" in payload:
            payload = payload["flow"]
        if "appId" in payload and "app_id" not in payload:
            payload = {**payload, "app_id": payload["appId"]}
            payload.pop("appId")

        errors = [self._format_error(e) for e in self._validator.iter_errors(payload)]
        if errors:
            raise FlowValidationError("Flow definition is invalid:", errors)

        activities = [create_activity(spec) for spec in payload["activities"]]
        links = [self._parse_link(spec) for spec in payload.get("links", [])]

        flow = Flow(
            id=str(payload["id"]),
            name=payload.get("name", ""),
            activities=activities,
            links=links,
            app_id=int(payload.get("app_id") or 0),
            variables=dict(payload.get("variables", {})),
        )

        self._validate_flow(flow)
        return flow

    def _parse_link(self, spec: Dict[str, Any]) -> Link:
        return Link(
            source=spec["source"],
            destination=spec["destination"],
            expression=spec.get("expression"),
        )

    def _format_error(self, error) -> str:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        return f"{path}: {error.message}"

    def _validate_flow(self, flow: Flow) -> None:
        refs = [activity.ref for activity in flow.activities]
        duplicates = sorted({ref for ref in refs if refs.count(ref) > 1})
        if duplicates:
            raise FlowValidationError(f"Duplicate activity refs: {duplicates}")

        known = set(refs)
        problems: List[str] = []
        for link in flow.links:
            if link.source not in known:
                problems.append(f"Link source {link.source} not defined")
            if link.destination not in known:
                problems.append(f"Link destination {link.destination} not defined")
        if problems:
            raise FlowValidationError("Flow links are invalid:", problems)

        if self.strict:
            self._ensure_acyclic(flow)

    def _ensure_acyclic(self, flow: Flow) -> None:
        visited: Dict[str, str] = {}

        def visit(ref: str, stack: List[str]) -> None:
            state = visited.get(ref)
            if state == "temp":
                raise FlowValidationError(f"Cycle detected: {' -> '.join(stack + [ref])}")
            if state == "perm":
                return
            visited[ref] = "temp"
            for link in flow.links:
                if link.source == ref:
                    visit(link.destination, stack + [ref])
            visited[ref] = "perm"

        for activity in flow.activities:
            if activity.ref not in visited:
                visit(activity.ref, [])

    def to_dict(self, flow: Flow, include_state: bool = True) -> Dict[str, Any]:
        return {
            "id": flow.id,
            "name": flow.name,
            "app_id": flow.app_id,
            "variables": flow.variables,
            "activities": [a.to_dict(include_state=include_state) for a in flow.activities],
            "links": [link.to_dict() for link in flow.links],
        }

    def serialize(self, flow: Flow, fmt: str = "json") -> str:
        data = {"flow": self.to_dict(flow)}
        if fmt == "json":
            return json.dumps(data, ensure_ascii=False, indent=2, default=str)
        if fmt == "yaml":
            return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
        raise FlowValidationError(f"Unsupported serialisation format: {fmt}")
