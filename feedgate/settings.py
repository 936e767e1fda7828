"""
Pipeline settings.

Values come from a YAML file (feedgate/config/feedgate.yaml unless
FEEDGATE_CONFIG points elsewhere), then environment variables named
FEEDGATE_<FIELD>. A .env file in the working directory is loaded first.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from feedgate.core.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "feedgate.yaml"
ENV_PREFIX = "FEEDGATE_"


class DatabaseSettings(BaseModel):
    """Connection settings for the Postgres catalog store (DB_* variables)."""

    host: str = "localhost"
    port: int = 5432
    name: str = "feedgate"
    user: str = "feedgate"
    password: str | None = None

    @classmethod
    def from_env(cls, base: dict[str, Any] | None = None) -> "DatabaseSettings":
        """Build from DB_* variables layered over base (e.g. the YAML database mapping)."""
        values: dict[str, Any] = dict(base or {})
        for field_name in cls.model_fields:
            env_value = os.getenv(f"DB_{field_name.upper()}")
            if env_value is not None:
                values[field_name] = env_value
        return cls(**values)


class Settings(BaseModel):
    """
    Tunables for fetching, validation, the circuit breaker and operator APIs.

    Attributes:
        fetch_timeout_seconds: Hard timeout on feed downloads
        dry_run_sample_size: Records evaluated by a dry run
        pass_threshold: Indexable ratio at or above which a dry run passes
        warn_threshold: Indexable ratio at or above which a dry run warns
        expiry_threshold_percent: Breaker trips when expiry percentage exceeds this
        url_hash_threshold_ratio: Breaker trips when URL-hash fallback ratio exceeds this
        max_consecutive_failures: Failed runs after which a feed is auto-disabled
    """

    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    dry_run_sample_size: int = Field(default=50, ge=1)
    dry_run_error_sample_limit: int = Field(default=10, ge=0, le=10)
    pass_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    warn_threshold: float = Field(default=0.50, ge=0.0, le=1.0)

    expiry_threshold_percent: float = Field(default=20.0, ge=0.0, le=100.0)
    url_hash_threshold_ratio: float = Field(default=0.5, ge=0.0, le=1.0)

    max_consecutive_failures: int = Field(default=3, ge=1)
    run_error_sample_limit: int = Field(default=50, ge=0)

    failed_reject_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    warning_quarantine_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    warning_reject_ratio: float = Field(default=0.1, ge=0.0, le=1.0)

    reprocess_batch_limit: int = Field(default=100, ge=1)
    quarantine_page_limit_default: int = Field(default=20, ge=1)
    quarantine_page_limit_max: int = Field(default=100, ge=1)

    rules_path: str | None = None
    redis_url: str | None = None
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @model_validator(mode="after")
    def check_thresholds(self) -> "Settings":
        if self.warn_threshold > self.pass_threshold:
            raise ValueError("warn_threshold cannot exceed pass_threshold")
        if self.quarantine_page_limit_default > self.quarantine_page_limit_max:
            raise ValueError("quarantine_page_limit_default cannot exceed quarantine_page_limit_max")
        return self


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for field_name in Settings.model_fields:
        if field_name == "database":
            continue
        env_value = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
        if env_value is not None:
            overrides[field_name] = env_value
    if os.getenv("REDIS_URL"):
        overrides["redis_url"] = os.getenv("REDIS_URL")
    return overrides


def load_settings(path: str | Path | None = None, load_env_file: bool = True) -> Settings:
    """
    Load settings from YAML and the environment.

    Args:
        path: YAML file to read (defaults to FEEDGATE_CONFIG or the bundled file)
        load_env_file: Whether to load a .env file first

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If the file is missing or a value is invalid
    """
    if load_env_file:
        load_dotenv()

    config_path = Path(path or os.getenv("FEEDGATE_CONFIG") or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        raise ConfigurationError(f"Settings file not found: {config_path}")

    with open(config_path) as f:
        values = yaml.safe_load(f) or {}

    if not isinstance(values, dict):
        raise ConfigurationError(f"Settings file must contain a mapping: {config_path}")

    values.update(_env_overrides())
    database = values.get("database") or {}
    if not isinstance(database, dict):
        raise ConfigurationError(f"'database' must be a mapping: {config_path}")

    try:
        values["database"] = DatabaseSettings.from_env(database)
        return Settings(**values)
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
