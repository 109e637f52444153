"""Settings loading, environment overrides, and logging configuration.

Provides ``load_settings()`` to read ``ExperimentSettings`` from a YAML
file, ``apply_env_overrides()`` to let ``AUTOML_*`` environment variables
replace default values, and ``configure_logging()`` to set up the package
logger.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError
import yaml

from automl_experiment.models import ExperimentSettings

# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


def load_yaml_mapping(path: str | Path, label: str) -> dict[str, Any]:
    """Load a YAML file that must contain a mapping.

    Args:
        path: File path to the YAML file.
        label: Human-readable label for error messages (e.g. ``"settings"``).

    Returns:
        The parsed YAML content as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file does not parse to a dict.
    """
    file_path = Path(path)
    if not file_path.exists():
        msg = f"{label} file not found: {path}"
        raise FileNotFoundError(msg)

    with open(file_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        msg = f"{label} file must contain a YAML mapping, got {type(data).__name__}"
        raise ValueError(msg)

    return data


def load_settings(path: str | Path) -> ExperimentSettings:
    """Read ``ExperimentSettings`` from a YAML file.

    The cancellation token cannot be configured from a file; every loaded
    settings object gets a fresh, unset token.

    Args:
        path: Path to the settings YAML file.

    Returns:
        The validated settings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a mapping or fails validation.
    """
    data = load_yaml_mapping(path, "settings")
    data.pop("cancellation_token", None)
    return ExperimentSettings(**data)


# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "AUTOML_MAX_EXPERIMENT_TIME": "max_experiment_time_seconds",
    "AUTOML_MAX_MODELS": "max_models",
    "AUTOML_LOG_LEVEL": "log_level",
}
"""Maps environment variable names to ExperimentSettings field names."""


def apply_env_overrides(settings: ExperimentSettings) -> ExperimentSettings:
    """Apply ``AUTOML_*`` env var overrides to *settings*.

    Environment variables override **default** field values only; a field
    whose value differs from the ``ExperimentSettings`` default is left
    alone. Unparseable or invalid values are ignored.

    Args:
        settings: The settings to apply overrides to.

    Returns:
        A new ``ExperimentSettings`` with overrides applied, or *settings*
        itself when nothing changed.
    """
    defaults = ExperimentSettings()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if getattr(settings, field_name) != getattr(defaults, field_name):
            continue

        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return settings

    # Re-validate so that values rejected by the field validators are dropped.
    valid: dict[str, Any] = {}
    for field_name, value in overrides.items():
        try:
            ExperimentSettings(**{field_name: value})
        except ValidationError:
            continue
        valid[field_name] = value

    if not valid:
        return settings
    return settings.model_copy(update=valid)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string into the type of *field_name*.

    Returns:
        The parsed value, or ``None`` if parsing fails.
    """
    if field_name == "log_level":
        return raw.strip().upper() or None

    try:
        if field_name == "max_models":
            return int(raw)
        if field_name == "max_experiment_time_seconds":
            return float(raw)
    except ValueError:
        return None
    return None


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"


def configure_logging(settings: ExperimentSettings) -> None:
    """Configure the ``"automl_experiment"`` logger.

    Adds a console handler and, when ``settings.log_file`` is set, a file
    handler. Idempotent: repeated calls do not duplicate handlers.

    Args:
        settings: Settings providing ``log_level`` and optional ``log_file``.
    """
    package_logger = logging.getLogger("automl_experiment")
    package_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if not any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    ):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        package_logger.addHandler(console)

    if settings.log_file is not None:
        log_path = str(Path(settings.log_file).resolve())
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == log_path
            for h in package_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            package_logger.addHandler(file_handler)
