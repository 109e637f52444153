"""Tests for settings loading, env overrides, and logging configuration.

Validates ``load_settings``, ``apply_env_overrides`` and
``configure_logging`` defined in ``src/automl_experiment/config.py``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from automl_experiment.config import (
    apply_env_overrides,
    configure_logging,
    load_settings,
    load_yaml_mapping,
)
from automl_experiment.models import CacheBeforeTrainer, ExperimentSettings
from hypothesis import HealthCheck, given, settings, strategies as st
from pydantic import ValidationError
import pytest
import yaml

_ENV_VARS = ("AUTOML_MAX_EXPERIMENT_TIME", "AUTOML_MAX_MODELS", "AUTOML_LOG_LEVEL")


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove every ``AUTOML_*`` override variable."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def _write_yaml(path: Path, data: object) -> Path:
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


# ===========================================================================
# YAML loading
# ===========================================================================


@pytest.mark.unit
class TestLoadSettings:
    """load_settings reads and validates a YAML mapping."""

    def test_loads_fields(self, tmp_path: Path) -> None:
        # Arrange
        path = _write_yaml(
            tmp_path / "settings.yaml",
            {
                "max_experiment_time_seconds": 30,
                "max_models": 5,
                "cache_directory": str(tmp_path / "cache"),
                "cache_before_trainer": "off",
            },
        )

        # Act
        loaded = load_settings(path)

        # Assert
        assert loaded.max_experiment_time_seconds == 30.0
        assert loaded.max_models == 5
        assert loaded.cache_directory == tmp_path / "cache"
        assert loaded.cache_before_trainer == CacheBeforeTrainer.OFF

    def test_token_in_file_is_ignored(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "s.yaml", {"cancellation_token": True})

        loaded = load_settings(path)

        assert not loaded.cancellation_token.is_cancellation_requested

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="settings file not found"):
            load_settings(tmp_path / "missing.yaml")

    @pytest.mark.parametrize("content", ["- a\n- b\n", "just a string\n", ""])
    def test_non_mapping_raises(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(content, encoding="utf-8")

        with pytest.raises(ValueError, match="must contain a YAML mapping"):
            load_settings(path)

    def test_invalid_value_raises_validation_error(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "s.yaml", {"max_models": 0})

        with pytest.raises(ValidationError):
            load_settings(path)

    def test_yaml_mapping_label_in_message(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="plugin file not found"):
            load_yaml_mapping(tmp_path / "nope.yaml", "plugin")


# ===========================================================================
# Environment overrides
# ===========================================================================


@pytest.mark.unit
class TestApplyEnvOverrides:
    """AUTOML_* variables replace default values only."""

    def test_no_env_vars_returns_same_settings(self, clean_env: pytest.MonkeyPatch) -> None:
        s = ExperimentSettings()
        assert apply_env_overrides(s) is s

    def test_time_override(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AUTOML_MAX_EXPERIMENT_TIME", "120")

        result = apply_env_overrides(ExperimentSettings())

        assert result.max_experiment_time_seconds == 120.0

    def test_max_models_override(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AUTOML_MAX_MODELS", "7")

        result = apply_env_overrides(ExperimentSettings())

        assert result.max_models == 7

    def test_log_level_is_uppercased(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AUTOML_LOG_LEVEL", "debug")

        result = apply_env_overrides(ExperimentSettings())

        assert result.log_level == "DEBUG"

    def test_explicit_value_wins(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AUTOML_MAX_MODELS", "7")

        result = apply_env_overrides(ExperimentSettings(max_models=3))

        assert result.max_models == 3

    @pytest.mark.parametrize(
        ("var", "value"),
        [
            ("AUTOML_MAX_MODELS", "many"),
            ("AUTOML_MAX_MODELS", "0"),
            ("AUTOML_MAX_EXPERIMENT_TIME", "-5"),
            ("AUTOML_MAX_EXPERIMENT_TIME", "soon"),
            ("AUTOML_LOG_LEVEL", "   "),
        ],
    )
    def test_invalid_values_ignored(
        self, clean_env: pytest.MonkeyPatch, var: str, value: str
    ) -> None:
        clean_env.setenv(var, value)
        s = ExperimentSettings()

        assert apply_env_overrides(s) is s

    def test_token_survives_override(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AUTOML_MAX_MODELS", "2")
        s = ExperimentSettings()

        result = apply_env_overrides(s)

        assert result.cancellation_token is s.cancellation_token

    @given(n=st.integers(min_value=1, max_value=100_000))
    @settings(
        max_examples=20,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_any_positive_max_models_applies(
        self, clean_env: pytest.MonkeyPatch, n: int
    ) -> None:
        """Property: any positive integer in the env var is applied."""
        clean_env.setenv("AUTOML_MAX_MODELS", str(n))
        assert apply_env_overrides(ExperimentSettings()).max_models == n


# ===========================================================================
# Logging configuration
# ===========================================================================


@pytest.mark.unit
class TestConfigureLogging:
    """configure_logging sets up the package logger idempotently."""

    def test_sets_level(self, package_logger_cleanup: logging.Logger) -> None:
        configure_logging(ExperimentSettings(log_level="DEBUG"))
        assert package_logger_cleanup.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(
        self, package_logger_cleanup: logging.Logger
    ) -> None:
        configure_logging(ExperimentSettings(log_level="CHATTY"))
        assert package_logger_cleanup.level == logging.INFO

    def test_console_handler_added_once(
        self, package_logger_cleanup: logging.Logger
    ) -> None:
        configure_logging(ExperimentSettings())
        configure_logging(ExperimentSettings())

        consoles = [
            h for h in package_logger_cleanup.handlers if type(h) is logging.StreamHandler
        ]
        assert len(consoles) == 1

    def test_file_handler_added_once(
        self, tmp_path: Path, package_logger_cleanup: logging.Logger
    ) -> None:
        log_file = str(tmp_path / "experiment.log")
        s = ExperimentSettings(log_file=log_file)

        configure_logging(s)
        configure_logging(s)

        file_handlers = [
            h for h in package_logger_cleanup.handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1

    def test_file_receives_package_messages(
        self, tmp_path: Path, package_logger_cleanup: logging.Logger
    ) -> None:
        log_file = tmp_path / "experiment.log"
        configure_logging(ExperimentSettings(log_file=str(log_file)))

        logging.getLogger("automl_experiment.experiment").info("hello from the loop")
        for h in package_logger_cleanup.handlers:
            h.flush()

        assert "hello from the loop" in log_file.read_text(encoding="utf-8")
