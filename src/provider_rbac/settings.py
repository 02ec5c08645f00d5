"""provider-rbac settings (Pydantic v2)."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MODULE_DIR = Path(__file__).resolve().parent


def _detect_repo_root(start: Path) -> Path:
    for p in [start, *start.parents]:
        if (p / "pyproject.toml").is_file():
            return p
        if (p / ".git").is_dir():
            return p
    return Path.cwd()


REPO_ROOT = _detect_repo_root(MODULE_DIR)


def _env_file() -> str:
    override = os.getenv("PROVIDER_RBAC_ENV_FILE")
    if override and override.strip():
        return str(Path(override).expanduser().resolve())
    return str((REPO_ROOT / ".env").resolve())


def _default_concurrency() -> int:
    cpu = os.cpu_count() or 2
    return max(1, min(4, cpu // 2))


class Settings(BaseSettings):
    """Controller settings loaded from PROVIDER_RBAC_* env vars (and repo-root .env)."""

    model_config = SettingsConfigDict(
        env_file=_env_file(),
        env_file_encoding="utf-8",
        env_prefix="PROVIDER_RBAC_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- Object store ------------------------------------------------------
    database_url: str | None = None
    database_echo: bool = False
    database_sqlite_busy_timeout_ms: int = Field(30_000, ge=0)

    # ---- Reconciler --------------------------------------------------------
    short_wait_seconds: float = Field(30.0, gt=0, lt=60)
    reconcile_timeout_seconds: float = Field(120.0, gt=0)

    # ---- Controller loop ---------------------------------------------------
    worker_concurrency: int = Field(default_factory=_default_concurrency, ge=1)
    worker_poll_interval: float = Field(0.5, gt=0)
    resync_interval_seconds: float = Field(60.0, gt=0)
    error_backoff_base_seconds: float = Field(1.0, ge=0)
    error_backoff_max_seconds: float = Field(300.0, ge=0)
    log_level: str = "INFO"

    # ---- Runtime filesystem ------------------------------------------------
    data_dir: Path = Field(default=REPO_ROOT / "data")

    @field_validator("log_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        return ("" if v is None else str(v).strip()).upper() or "INFO"

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        if not self.data_dir.is_absolute():
            self.data_dir = (REPO_ROOT / self.data_dir).resolve()
        else:
            self.data_dir = self.data_dir.expanduser().resolve()

        if not self.database_url:
            sqlite_path = (self.data_dir / "db" / "provider-rbac.sqlite").resolve()
            self.database_url = f"sqlite:///{sqlite_path.as_posix()}"

        if self.error_backoff_max_seconds < self.error_backoff_base_seconds:
            raise ValueError(
                "PROVIDER_RBAC_ERROR_BACKOFF_MAX_SECONDS must be >= "
                "PROVIDER_RBAC_ERROR_BACKOFF_BASE_SECONDS"
            )
        return self

    def backoff_seconds(self, failures: int) -> float:
        base = max(0.0, float(self.error_backoff_base_seconds))
        delay = base * (2 ** min(max(failures - 1, 0), 32))
        return min(float(self.error_backoff_max_seconds), delay)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(_env_file=_env_file())


__all__ = ["Settings", "get_settings"]
