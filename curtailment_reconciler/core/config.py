"""
Run configuration management.

Loads reconciliation settings from YAML files and environment variables and
validates them into RunConfig / DatabaseConfig models.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from curtailment_reconciler.core.exceptions import ConfigurationError

DEFAULT_VARIANTS = ["S19J_PRO", "S9", "M20S"]


def generate_run_id() -> str:
    return "reconcile_" + datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")


class RetryConfig(BaseModel):
    """
    Retry policy for upstream calls.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay_seconds: First backoff delay; doubles on each retry
        max_delay_seconds: Upper bound on a single backoff delay
        jitter_seconds: Random extra delay added to each backoff
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=30.0, ge=0.0)
    jitter_seconds: float = Field(default=0.5, ge=0.0)


class DatabaseConfig(BaseModel):
    """PostgreSQL connection settings (defaults come from DB_* env vars)."""

    host: str = "localhost"
    port: int = 5432
    database: str = "curtailment"
    user: str = "reconciler"
    password: str | None = None
    min_size: int = Field(default=2, ge=1)
    max_size: int = Field(default=10, ge=1)
    timeout: float = Field(default=30.0, gt=0)
    statement_timeout_ms: int = Field(default=60000, ge=0)


class RunConfig(BaseModel):
    """
    Everything a reconciliation run needs, passed explicitly into the engine.

    Attributes:
        run_id: Identifier of the run; reuse an old one to resume it
        variants: Miner models to reconcile
        batch_size: Partitions per batch
        concurrency: Partitions reprocessed in parallel within a batch
        inter_batch_delay_seconds: Pause between batches
        retry: Retry policy for upstream calls
        force: Reprocess Complete partitions as well
        completion_tolerance_pct: Shortfall accepted by the exit status
        verify_every_batches: Interim verification cadence (0 disables)
        refresh_summaries: Rebuild daily/monthly/yearly summaries after a run
        progress_backend: Where the progress log lives
        progress_dir: Directory of the file progress log
        default_difficulty: Difficulty used when no observation exists
        difficulty_file: Optional YAML file of observed difficulties
    """

    run_id: str = Field(default_factory=generate_run_id, pattern=r"^[A-Za-z0-9_\-][A-Za-z0-9_\-\.]*$")
    variants: list[str] = Field(default_factory=lambda: list(DEFAULT_VARIANTS), min_length=1)
    batch_size: int = Field(default=5, ge=1, le=500)
    concurrency: int = Field(default=3, ge=1, le=64)
    inter_batch_delay_seconds: float = Field(default=1.0, ge=0.0)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    force: bool = False
    completion_tolerance_pct: float = Field(default=0.0, ge=0.0, le=100.0)
    verify_every_batches: int = Field(default=0, ge=0)
    refresh_summaries: bool = True
    progress_backend: Literal["postgres", "file"] = "postgres"
    progress_dir: str = "logs/checkpoints"
    default_difficulty: int = Field(default=108105433845147, gt=0)
    difficulty_file: str | None = None

    @field_validator("variants")
    @classmethod
    def normalise_variants(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for variant in v:
            name = variant.strip().upper()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            raise ValueError("at least one variant is required")
        return seen


# Environment variable -> (section, field)
_ENV_OVERRIDES = {
    "RECONCILE_BATCH_SIZE": ("reconcile", "batch_size"),
    "RECONCILE_CONCURRENCY": ("reconcile", "concurrency"),
    "RECONCILE_DELAY_SECONDS": ("reconcile", "inter_batch_delay_seconds"),
    "RECONCILE_VARIANTS": ("reconcile", "variants"),
    "RECONCILE_TOLERANCE_PCT": ("reconcile", "completion_tolerance_pct"),
    "RECONCILE_PROGRESS_BACKEND": ("reconcile", "progress_backend"),
    "RECONCILE_PROGRESS_DIR": ("reconcile", "progress_dir"),
    "RECONCILE_DEFAULT_DIFFICULTY": ("reconcile", "default_difficulty"),
    "RECONCILE_MAX_ATTEMPTS": ("retry", "max_attempts"),
    "RECONCILE_RETRY_BASE_DELAY": ("retry", "base_delay_seconds"),
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "database"),
    "DB_USER": ("database", "user"),
    "DB_PASSWORD": ("database", "password"),
}


class RunConfigLoader:
    """
    Loads run configuration from a YAML file and the environment.

    Expected YAML format:
    ```yaml
    reconcile:
      batch_size: 5
      concurrency: 3
      inter_batch_delay_seconds: 1.0
      variants: [S19J_PRO, S9, M20S]
      retry:
        max_attempts: 3
        base_delay_seconds: 1.0

    database:
      host: localhost
      port: 5432
      database: curtailment
    ```

    Precedence, lowest to highest: model defaults, YAML file, environment,
    explicit overrides passed to load().
    """

    def __init__(self, config_path: str | Path | None = None, env_file: str | Path | None = None):
        """
        Initialize the loader.

        Args:
            config_path: Optional path to the YAML configuration file
            env_file: Optional .env file loaded into the environment first

        Raises:
            FileNotFoundError: If config_path is given but does not exist
        """
        self.config_path = Path(config_path) if config_path else None
        if self.config_path is not None and not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if env_file is not None:
            load_dotenv(env_file, override=False)

    def _read_file(self) -> dict[str, Any]:
        if self.config_path is None:
            return {}
        with open(self.config_path) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration file must contain a mapping at the top level")
        for section in ("reconcile", "database"):
            if section in config and not isinstance(config[section], dict):
                raise ConfigurationError(f"'{section}' section must be a mapping")
        return config

    def _apply_env(self, reconcile: dict[str, Any], database: dict[str, Any]) -> None:
        for env_name, (section, field) in _ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None or value == "":
                continue
            if section == "database":
                database[field] = value
            elif section == "retry":
                reconcile.setdefault("retry", {})[field] = value
            elif field == "variants":
                reconcile[field] = [v for v in value.split(",") if v.strip()]
            else:
                reconcile[field] = value

    def load(self, **overrides: Any) -> tuple[RunConfig, DatabaseConfig]:
        """
        Build validated configuration objects.

        Args:
            **overrides: RunConfig fields set explicitly (e.g. from CLI flags);
                None values are ignored. "retry" and "database" take dicts
                of RetryConfig / DatabaseConfig fields.

        Returns:
            (RunConfig, DatabaseConfig)

        Raises:
            ConfigurationError: If any value fails validation
        """
        config = self._read_file()
        reconcile = dict(config.get("reconcile") or {})
        database = dict(config.get("database") or {})
        if "retry" in reconcile:
            reconcile["retry"] = dict(reconcile["retry"] or {})

        self._apply_env(reconcile, database)

        retry_overrides = overrides.pop("retry", None)
        if retry_overrides:
            reconcile.setdefault("retry", {}).update(retry_overrides)
        database_overrides = overrides.pop("database", None) or {}
        database.update({k: v for k, v in database_overrides.items() if v is not None})
        reconcile.update({k: v for k, v in overrides.items() if v is not None})

        try:
            run_config = RunConfig(**reconcile)
            db_config = DatabaseConfig(**database)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if db_config.max_size < run_config.concurrency + 1:
            # Every worker holds a connection during its transaction; the scanner needs one more
            db_config = db_config.model_copy(update={"max_size": run_config.concurrency + 1})

        return run_config, db_config
