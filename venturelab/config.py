from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


def _resolve_data_dir() -> Path:
    override = os.getenv("VENTURELAB_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent / "data"


class RetryPolicy(BaseModel):
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 8.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff delay (seconds) before retry number *attempt* (0-based)."""
        return min(self.initial_delay * self.multiplier ** attempt, self.max_delay)


class VerdictThresholds(BaseModel):
    green: float = 70.0
    yellow: float = 50.0


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_resolve_data_dir)
    database_url: str = ""

    llm_provider: str = "anthropic"
    llm_model: str = ""
    research_temperature: float = 0.7
    scoring_temperature: float = 0.2
    planning_temperature: float = 0.7
    max_tokens: int = 4000
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    rubric_version: str = "v1"
    thresholds: VerdictThresholds = Field(default_factory=VerdictThresholds)

    # Product policy switches.
    allow_parked_reentry: bool = False
    block_red_approval: bool = False

    approver: str = "owner"
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'venturelab.db'}"


def load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data


_ENV_OVERRIDES: dict[str, str] = {
    "VENTURELAB_DATABASE_URL": "database_url",
    "VENTURELAB_LOG_LEVEL": "log_level",
    "VENTURELAB_APPROVER": "approver",
    "LLM_PROVIDER": "llm_provider",
    "LLM_MODEL": "llm_model",
}


def load_settings(config_file: Path | None = None) -> Settings:
    """Build settings from defaults, then a YAML file, then environment variables."""
    values: dict[str, Any] = {}
    path = config_file or Path(os.getenv("VENTURELAB_CONFIG", "venturelab.yaml"))
    values.update(load_yaml(path))
    for env_key, field_name in _ENV_OVERRIDES.items():
        env_val = os.environ.get(env_key, "").strip()
        if env_val:
            values[field_name] = env_val
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = load_settings()
    settings.ensure_directories()
    return settings
