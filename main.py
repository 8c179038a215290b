"""
Flow engine API entry point
"""
import uvicorn

from flow_engine.config import EngineSettings


if __name__ == "__main__":
    settings = EngineSettings.from_env()

    uvicorn.run(
        "flow_engine.api:app_from_env",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
