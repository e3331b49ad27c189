"""Orchestrator configuration with pydantic validation and YAML persistence.

All subsystems read their settings from one ``OrchestratorConfig`` tree that
``ConfigurationManager`` loads from ``~/.renote/config/orchestrator.yaml``.
A missing file yields the defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .rate_limiter import DEFAULT_LIMITS, ServiceLimit
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".renote"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config" / "orchestrator.yaml"


class QueueConfig(BaseModel):
    """Job store configuration.

    Attributes:
        database_path: SQLite database path
    """

    database_path: Path = Field(
        default=DEFAULT_HOME / "queue" / "jobs.db",
        description="SQLite database path",
    )

    @field_validator("database_path")
    @classmethod
    def expand_database_path(cls, v: Path) -> Path:
        return v.expanduser()


class DispatcherConfig(BaseModel):
    """Poll loop cadence.

    Attributes:
        batch_size: Due jobs selected per cycle
        initial_delay_seconds: Delay before the second cycle
        busy_delay_seconds: Delay after a cycle that found jobs
        drained_delay_seconds: Delay after the first empty cycle
        idle_growth_factor: Multiplier for repeated empty cycles
        error_growth_factor: Multiplier after a failed fetch
        max_delay_seconds: Upper bound on the poll delay
    """

    batch_size: int = Field(default=2, ge=1, le=100)
    initial_delay_seconds: float = Field(default=30.0, gt=0)
    busy_delay_seconds: float = Field(default=10.0, gt=0)
    drained_delay_seconds: float = Field(default=30.0, gt=0)
    idle_growth_factor: float = Field(default=1.2, ge=1.0, le=10.0)
    error_growth_factor: float = Field(default=1.5, ge=1.0, le=10.0)
    max_delay_seconds: float = Field(default=120.0, gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "DispatcherConfig":
        if self.busy_delay_seconds > self.max_delay_seconds:
            raise ValueError("busy_delay_seconds cannot exceed max_delay_seconds")
        return self


class RetryConfig(BaseModel):
    """Retry policy configuration.

    Attributes:
        max_retries: Default retry budget for new jobs (0-10)
        base_delay_minutes: Backoff unit in minutes
        backoff_multiplier: Exponential backoff multiplier (1.0-10.0)
        max_delay_minutes: Cap on a single backoff delay
    """

    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay_minutes: float = Field(default=1.0, ge=0.0, le=1440.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0, le=10.0)
    max_delay_minutes: float = Field(default=24 * 60, ge=0.0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            base_delay_minutes=self.base_delay_minutes,
            backoff_multiplier=self.backoff_multiplier,
            max_delay_minutes=self.max_delay_minutes,
        )


class RateLimitConfig(BaseModel):
    """Per-service request quotas keyed by service name."""

    services: Dict[str, ServiceLimit] = Field(
        default_factory=lambda: {name: limit.model_copy() for name, limit in DEFAULT_LIMITS.items()}
    )


class SchedulingConfig(BaseModel):
    """Multi-tier sync scheduler configuration.

    Attributes:
        owner_id: Workspace user whose accounts are scanned
        timezone: IANA zone used for the off-hours window
        frequent_interval_minutes: Frequent tier cadence and the activity base interval
        regular_interval_hours: Regular tier cadence
        deep_interval_days: Deep tier cadence
        off_hours_start: First hour of the off-hours window
        off_hours_end: First hour after the off-hours window
        max_processing_batch: Entities per bulk reprocessing job
        initial_sync_delay_seconds: Delay before the first frequent run
    """

    owner_id: Optional[str] = None
    timezone: str = "UTC"
    frequent_interval_minutes: int = Field(default=5, ge=1, le=24 * 60)
    regular_interval_hours: int = Field(default=24, ge=1, le=24 * 7)
    deep_interval_days: int = Field(default=7, ge=1, le=90)
    off_hours_start: int = Field(default=22, ge=0, le=23)
    off_hours_end: int = Field(default=6, ge=0, le=23)
    max_processing_batch: int = Field(default=5, ge=1, le=500)
    initial_sync_delay_seconds: float = Field(default=5.0, ge=0)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    class Config:
        validate_assignment = True


class OrchestratorConfig(BaseModel):
    """Main orchestrator configuration.

    Attributes:
        version: Configuration schema version
        queue: Job store configuration
        dispatcher: Poll loop cadence
        retry: Retry policy configuration
        rate_limits: Per-service quotas
        scheduling: Multi-tier scheduler configuration
    """

    version: int = Field(default=1, description="Configuration schema version")
    queue: QueueConfig = Field(default_factory=QueueConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)

    class Config:
        """Pydantic configuration."""
        validate_assignment = True
        extra = "forbid"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]


class ConfigurationManager:
    """Loads, saves and validates the orchestrator configuration file.

    Attributes:
        config_path: Path to configuration file
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Optional[OrchestratorConfig] = None

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> OrchestratorConfig:
        """Load and validate configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not self._config_path.exists():
            logger.debug(
                "No configuration file, using defaults",
                extra={"config_path": str(self._config_path)},
            )
            self._config = OrchestratorConfig()
            return self._config

        data = self._read(self._config_path)
        try:
            self._config = OrchestratorConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(_format_errors(exc))}"
            ) from exc

        logger.info("Loaded configuration", extra={"config_path": str(self._config_path)})
        return self._config

    def save(self, config: OrchestratorConfig) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json")
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        self._config = config
        logger.info("Saved configuration", extra={"config_path": str(self._config_path)})

    def validate(self, config_path: Optional[Path] = None) -> List[str]:
        """Validate a configuration file without keeping it.

        Returns:
            List of validation errors (empty if valid)
        """
        path = Path(config_path) if config_path else self._config_path
        if not path.exists():
            return [f"Configuration file not found: {path}"]

        try:
            OrchestratorConfig(**self._read(path))
        except ValidationError as exc:
            return _format_errors(exc)
        except ConfigurationError as exc:
            return [str(exc)]
        return []

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to load configuration: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration root must be a mapping")
        return data
