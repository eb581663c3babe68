from __future__ import annotations

import json
import os
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

# Persisted file next to the package unless TABULATOR_DB_PATH says otherwise
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "judging.sqlite")

ROMAN = ["I", "II", "III", "IV", "V", "VI", "VII", "VIII",
         "IX", "X", "XI", "XII", "XIII", "XIV", "XV", "XVI"]
DEFAULT_DISTRICTS = [f"District {r}" for r in ROMAN]

ALLOW_ADMIN_REGISTRATION = "allow_admin_registration"


def _parse_list_env(name: str) -> Optional[List[str]]:
    """Parse a list env var given as a comma-separated string or JSON list."""
    raw = os.environ.get(name)
    if not raw:
        return None
    if raw.startswith("["):
        return [str(v).strip() for v in json.loads(raw) if str(v).strip()]
    return [v.strip() for v in raw.split(",") if v.strip()]


class Settings(BaseSettings):
    db_path: str = DEFAULT_DB_PATH
    districts: List[str] = DEFAULT_DISTRICTS
    initial_load_timeout: float = 10.0
    db_busy_timeout: float = 10.0
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]
    allow_admin_registration: bool = False

    model_config = {"env_prefix": "TABULATOR_", "env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache()
def get_settings() -> Settings:
    overrides = {}
    districts = _parse_list_env("TABULATOR_DISTRICTS")
    if districts:
        overrides["districts"] = districts
    origins = _parse_list_env("TABULATOR_CORS_ORIGINS")
    if origins:
        overrides["cors_origins"] = origins
    return Settings(**overrides)
