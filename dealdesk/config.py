from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

ENV_PREFIX = "DEALDESK_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default).strip() or default


def _default_database_url() -> str:
    data_dir = Path(_env("DATA_DIR", str(Path.cwd() / "data"))).expanduser().resolve()
    return f"sqlite:///{data_dir / 'dealdesk.db'}"


class Settings(BaseModel):
    database_url: str = Field(default_factory=lambda: _env("DATABASE_URL", _default_database_url()))
    public_base_url: str = Field(default_factory=lambda: _env("PUBLIC_BASE_URL", "http://127.0.0.1:8001"))
    intake_link_default_days: int = Field(default_factory=lambda: int(_env("INTAKE_LINK_DEFAULT_DAYS", "7")))
    intake_link_max_days: int = Field(default_factory=lambda: int(_env("INTAKE_LINK_MAX_DAYS", "90")))
    notification_workers: int = Field(default_factory=lambda: int(_env("NOTIFICATION_WORKERS", "2")))
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
