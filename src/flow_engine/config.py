"""Runtime settings read from the environment (and a ``.env`` file when present)."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .messages import User
from .scripting import DEFAULT_IMPORTS

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class EngineSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    database: Optional[str] = None
    log_level: str = "INFO"
    imports: List[str] = field(default_factory=lambda: list(DEFAULT_IMPORTS))
    user: str = "local"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineSettings":
        if dotenv:
            load_dotenv()
        imports = os.getenv("FLOW_ENGINE_IMPORTS")
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=int(os.getenv("API_PORT", "8000")),
            reload=os.getenv("API_RELOAD", "false").lower() == "true",
            database=os.getenv("FLOW_ENGINE_DB") or None,
            log_level=os.getenv("FLOW_ENGINE_LOG_LEVEL", "INFO").upper(),
            imports=[i.strip() for i in imports.split(",") if i.strip()] if imports else list(DEFAULT_IMPORTS),
            user=os.getenv("FLOW_ENGINE_USER", "local"),
        )

    def local_user(self) -> User:
        return User(id=self.user, display_name=self.user)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
