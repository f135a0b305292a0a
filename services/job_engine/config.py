"""
Engine configuration read from the environment
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .rules.catalog import DEFAULT_CATALOG_PATH


class EngineSettings(BaseModel):
    catalog_path: Path = DEFAULT_CATALOG_PATH
    database_url: Optional[str] = None
    # Bound on each external round-trip (worker lookup, store write, audit append)
    external_timeout: float = Field(5.0, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        catalog_path = os.getenv("JOB_ENGINE_CATALOG_PATH")
        return cls(
            catalog_path=Path(catalog_path) if catalog_path else DEFAULT_CATALOG_PATH,
            database_url=os.getenv("DATABASE_URL") or None,
            external_timeout=float(os.getenv("JOB_ENGINE_EXTERNAL_TIMEOUT", "5.0")),
            log_level=os.getenv("JOB_ENGINE_LOG_LEVEL", "INFO").upper(),
        )
