"""Tests for orchestrator configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from renote.orchestrator.config import (
    ConfigurationError,
    ConfigurationManager,
    DispatcherConfig,
    OrchestratorConfig,
    QueueConfig,
    RetryConfig,
    SchedulingConfig,
)


class TestDispatcherConfig:
    """Tests for DispatcherConfig validation."""

    def test_default_values(self) -> None:
        """Test the default poll cadence."""
        config = DispatcherConfig()
        assert config.batch_size == 2
        assert config.initial_delay_seconds == 30
        assert config.busy_delay_seconds == 10
        assert config.drained_delay_seconds == 30
        assert config.idle_growth_factor == 1.2
        assert config.error_growth_factor == 1.5
        assert config.max_delay_seconds == 120

    def test_busy_delay_cannot_exceed_max(self) -> None:
        """Test the cross-field bound."""
        with pytest.raises(ValidationError):
            DispatcherConfig(busy_delay_seconds=200, max_delay_seconds=120)

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            DispatcherConfig(batch_size=0)


class TestQueueConfig:
    """Tests for QueueConfig validation."""

    def test_database_path_expands_user(self) -> None:
        config = QueueConfig(database_path=Path("~/jobs.db"))
        assert "~" not in str(config.database_path)


class TestRetryConfig:
    """Tests for RetryConfig validation."""

    def test_to_policy_copies_backoff(self) -> None:
        policy = RetryConfig(base_delay_minutes=2, backoff_multiplier=3).to_policy()
        assert policy.delay_minutes(2) == 18

    def test_max_retries_upper_bound(self) -> None:
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=11)


class TestSchedulingConfig:
    """Tests for SchedulingConfig validation."""

    def test_default_values(self) -> None:
        config = SchedulingConfig()
        assert config.frequent_interval_minutes == 5
        assert config.regular_interval_hours == 24
        assert config.deep_interval_days == 7
        assert (config.off_hours_start, config.off_hours_end) == (22, 6)
        assert config.max_processing_batch == 5

    def test_unknown_timezone_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown timezone"):
            SchedulingConfig(timezone="Mars/Olympus_Mons")

    def test_assignment_is_validated(self) -> None:
        config = SchedulingConfig()
        with pytest.raises(ValidationError):
            config.off_hours_start = 24


class TestConfigurationManager:
    """Tests for loading, saving and validating configuration files."""

    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        manager = ConfigurationManager(config_path=tmp_path / "missing.yaml")
        config = manager.load()
        assert config == OrchestratorConfig()

    def test_save_then_load(self, tmp_path: Path) -> None:
        path = tmp_path / "config" / "orchestrator.yaml"
        manager = ConfigurationManager(config_path=path)
        config = OrchestratorConfig()
        config.scheduling.owner_id = "user-1"
        config.retry.max_retries = 5

        manager.save(config)
        loaded = ConfigurationManager(config_path=path).load()

        assert loaded.scheduling.owner_id == "user-1"
        assert loaded.retry.max_retries == 5
        assert loaded.rate_limits.services["workspace"].max_requests == 3

    def test_partial_file_merges_with_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "orchestrator.yaml"
        path.write_text(yaml.safe_dump({"dispatcher": {"batch_size": 4}}))

        config = ConfigurationManager(config_path=path).load()

        assert config.dispatcher.batch_size == 4
        assert config.dispatcher.busy_delay_seconds == 10

    def test_invalid_values_raise_configuration_error(self, tmp_path: Path) -> None:
        path = tmp_path / "orchestrator.yaml"
        path.write_text(yaml.safe_dump({"retry": {"max_retries": 99}}))

        with pytest.raises(ConfigurationError, match="retry.max_retries"):
            ConfigurationManager(config_path=path).load()

    def test_unknown_section_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "orchestrator.yaml"
        path.write_text(yaml.safe_dump({"telemetry": {"enabled": True}}))

        errors = ConfigurationManager(config_path=path).validate()

        assert errors
        assert any("telemetry" in error for error in errors)

    def test_non_mapping_root_is_an_error(self, tmp_path: Path) -> None:
        path = tmp_path / "orchestrator.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigurationManager(config_path=path).load()

    def test_empty_file_is_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "orchestrator.yaml"
        path.write_text("")

        assert ConfigurationManager(config_path=path).validate() == []

    def test_validate_missing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "missing.yaml"
        errors = ConfigurationManager(config_path=path).validate()
        assert errors == [f"Configuration file not found: {path}"]
