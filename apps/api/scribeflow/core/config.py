"""Application configuration."""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    auth_provider: Literal["mock", "firebase"] = "firebase"
    firebase_project_id: str | None = None
    firebase_audience: str | None = None
    callback_secret: str

    pipeline_provider: Literal["mock", "speechmatics"] = "speechmatics"
    speechmatics_api_key: str | None = None
    speechmatics_base_url: str = "https://asr.api.speechmatics.com/v2"
    pipeline_timeout_seconds: float = Field(default=30.0, gt=0)
    pipeline_max_retries: int = Field(default=3, ge=1)
    pipeline_backoff_base_seconds: float = Field(default=30.0, ge=0)

    ledger_max_retries: int = Field(default=3, ge=1)
    human_effort_multiplier: Decimal = Field(default=Decimal("4"), gt=0)

    model_config = SettingsConfigDict(env_prefix="SCRIBEFLOW_", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
