from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from patient_recon.services.reconcile.errors import ConfigError

logger = logging.getLogger("patient_recon.config")


class Settings(BaseSettings):
    database_url: str | None = None
    tenant_id: str | None = None
    created_by_id: str | None = None
    source_csv: Path = Path("PerfectRx.csv")
    annotated_csv: Path = Path("output.csv")
    pending_batch: Path = Path("output.json")
    progress_every: int = 100
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("database_url", "tenant_id", "created_by_id", mode="before")
    @classmethod
    def _coerce_blank_strings(cls, value):
        if isinstance(value, str):
            cleaned = value.strip()
            return cleaned or None
        return value

    @field_validator(
        "source_csv",
        "annotated_csv",
        "pending_batch",
        "progress_every",
        "log_level",
        mode="before",
    )
    @classmethod
    def _coerce_empty_defaults(cls, value, info):
        if value in {"", None}:
            return cls.model_fields[info.field_name].default
        return value


def load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']).upper()}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc


def require_database_url(settings: Settings) -> str:
    if not settings.database_url:
        raise ConfigError("DATABASE_URL environment variable is not set")
    return settings.database_url


def require_run_identity(settings: Settings) -> tuple[str, str]:
    missing = [
        name
        for name, value in {
            "TENANT_ID": settings.tenant_id,
            "CREATED_BY_ID": settings.created_by_id,
        }.items()
        if not value
    ]
    if missing:
        raise ConfigError("Missing required environment variables: " + ", ".join(missing))
    if settings.progress_every <= 0:
        logger.warning(
            "Config warning: PROGRESS_EVERY=%s disables progress checkpoints",
            settings.progress_every,
        )
    return settings.tenant_id, settings.created_by_id
