"""HTTP API for executing flows."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException

from .config import EngineSettings, configure_logging
from .errors import CollaboratorError, FlowValidationError
from .messages import WorkflowRequest
from .models import FlowDefinition
from .persistence import SqliteFlowStore
from .runner import FlowRunner

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[], FlowRunner]


def create_app(
    runner_factory: Optional[RunnerFactory] = None,
    store: Optional[SqliteFlowStore] = None,
) -> FastAPI:
    """Build the application.

    Every request gets its own runner. When a local store is given, definitions
    can be uploaded and snapshots read back through it.
    """
    runner_factory = runner_factory or FlowRunner
    app = FastAPI(title="Flow Engine", version="1.0.0")

    @app.post("/execute")
    async def execute(request: WorkflowRequest) -> Dict[str, Any]:
        result = await runner_factory().run(request)
        if result is None:
            raise HTTPException(status_code=502, detail="Failed to process request, abandoning execution")
        return result.to_payload()

    if store is None:
        return app

    @app.post("/definitions", status_code=201)
    def save_definition(payload: Dict[str, Any]) -> Dict[str, str]:
        definition = FlowDefinition.from_dict(payload)
        try:
            definition.get_flow()
        except FlowValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        store.save_definition(definition)
        return {"id": definition.id}

    @app.get("/instances/{instance_id}")
    def get_instance(instance_id: str) -> Dict[str, Any]:
        try:
            return store.load_instance(instance_id).to_payload()
        except CollaboratorError as exc:
            raise HTTPException(status_code=404, detail=str(exc))

    return app


def app_from_env() -> FastAPI:
    """Application factory for uvicorn, configured from the environment."""
    settings = EngineSettings.from_env()
    configure_logging(settings.log_level)

    if settings.database is None:
        return create_app(lambda: FlowRunner(imports=settings.imports))

    store = SqliteFlowStore(settings.database, user=settings.local_user())
    logger.info("Using local flow store at %s", settings.database)
    return create_app(
        lambda: FlowRunner(
            api_factory=lambda request: store,
            sink_factory=lambda request: None,
            imports=settings.imports,
        ),
        store=store,
    )
