"""External collaborators: the flow API, identity lookup and the realtime log sink."""
from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from .errors import CollaboratorError
from .messages import FlowInstanceData, User
from .models import FlowDefinition, LogLevel

DEFAULT_TIMEOUT = 30.0


class IdentityProvider(Protocol):
    async def who_am_i(self) -> User: ...


class FlowApi(IdentityProvider, Protocol):
    """Where definitions and instance snapshots live."""

    async def get_definition(self, flow_id: str) -> FlowDefinition: ...

    async def get_instance(self, instance_id: str) -> FlowInstanceData: ...

    async def save_result(self, data: FlowInstanceData) -> None: ...


class LogSink(Protocol):
    """Receives execution log lines as they are produced."""

    async def send(self, level: LogLevel, message: str, instance_id: str) -> None: ...


class _HttpCollaborator:
    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.auth_token = auth_token
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPError as exc:
            raise CollaboratorError(f"{method} {path} failed: {exc}") from exc


class HttpFlowApi(_HttpCollaborator):
    """Flow API reached over HTTP."""

    async def get_definition(self, flow_id: str) -> FlowDefinition:
        response = await self._request("GET", f"Core/FlowDefinition({flow_id})")
        return FlowDefinition.from_dict(response.json())

    async def get_instance(self, instance_id: str) -> FlowInstanceData:
        response = await self._request("GET", f"Core/FlowInstanceData({instance_id})")
        return FlowInstanceData.model_validate(response.json())

    async def save_result(self, data: FlowInstanceData) -> None:
        await self._request("PUT", f"Core/FlowInstanceData({data.id})", json=data.to_payload())

    async def who_am_i(self) -> User:
        response = await self._request("GET", "Core/User/Me()")
        return User.model_validate(response.json())


class HttpLogSink(_HttpCollaborator):
    """Pushes log lines to the realtime console hub."""

    async def send(self, level: LogLevel, message: str, instance_id: str) -> None:
        await self._request(
            "POST",
            "Hubs/Workflow/ConsoleSend",
            json={"level": level.value.lower(), "message": message, "instanceId": instance_id},
        )
