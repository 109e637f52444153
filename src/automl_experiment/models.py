"""Core data models for the AutoML experiment loop.

Defines the shared Pydantic models and enums used across the package:
experiment settings, the internal run record kept in the history ledger,
the caller-facing run detail, the tagged iteration outcome returned by
iteration runners, and the task/metric/column metadata forwarded to the
pipeline suggester.
"""

from __future__ import annotations

from enum import StrEnum
import math
from pathlib import Path
import sys
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from automl_experiment.cancellation import CancellationToken


class TaskKind(StrEnum):
    """Kind of machine-learning task an experiment searches pipelines for."""

    BINARY_CLASSIFICATION = "binary_classification"
    MULTICLASS_CLASSIFICATION = "multiclass_classification"
    REGRESSION = "regression"
    RANKING = "ranking"
    RECOMMENDATION = "recommendation"


class MetricDirection(StrEnum):
    """Whether the optimizing metric should be maximized or minimized."""

    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"


class CacheBeforeTrainer(StrEnum):
    """Hint to the pipeline suggester about caching data before the trainer."""

    AUTO = "auto"
    ON = "on"
    OFF = "off"


class ColumnPurpose(StrEnum):
    """Role a dataset column plays in training."""

    LABEL = "label"
    NUMERIC_FEATURE = "numeric_feature"
    CATEGORICAL_FEATURE = "categorical_feature"
    TEXT_FEATURE = "text_feature"
    WEIGHT = "weight"
    GROUP_ID = "group_id"
    IGNORE = "ignore"


class ExperimentState(StrEnum):
    """Lifecycle state of a single experiment."""

    READY = "ready"
    ITERATING = "iterating"
    STOPPED = "stopped"
    ABORTED = "aborted"


class OptimizingMetricInfo(BaseModel):
    """The metric an experiment optimizes and its direction.

    Attributes:
        name: Metric name (e.g. ``"accuracy"``, ``"rmse"``).
        direction: Whether higher or lower values are better.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    direction: MetricDirection = MetricDirection.MAXIMIZE

    @property
    def is_maximizing(self) -> bool:
        """Return ``True`` when larger metric values are better."""
        return self.direction == MetricDirection.MAXIMIZE


class DatasetColumnInfo(BaseModel):
    """Column metadata forwarded to the pipeline suggester.

    Attributes:
        name: Column name in the training dataset.
        type: Column data type name (e.g. ``"float"``, ``"string"``).
        purpose: Role of the column in training.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    purpose: ColumnPurpose


class ExperimentSettings(BaseModel):
    """Configuration for one experiment.

    Immutable for the lifetime of the experiment it configures. The
    cancellation token is the only member whose state changes, and it is
    changed from outside the loop.

    Attributes:
        max_experiment_time_seconds: Wall-clock budget. ``0`` lets exactly
            one iteration run to completion before the budget takes effect.
        max_models: Hard cap on the number of completed iterations.
        cache_directory: Optional root under which a per-experiment
            artifact directory is created.
        cancellation_token: Externally settable cooperative cancel flag.
        cache_before_trainer: Caching hint passed through to the suggester.
        log_level: Logging level string.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_experiment_time_seconds: float = 86400.0
    max_models: int = sys.maxsize
    cache_directory: Path | None = None
    cancellation_token: CancellationToken = Field(default_factory=CancellationToken)
    cache_before_trainer: CacheBeforeTrainer = CacheBeforeTrainer.AUTO
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("max_experiment_time_seconds")
    @classmethod
    def _time_must_be_non_negative(cls, v: float) -> float:
        """Reject negative or NaN time budgets."""
        if math.isnan(v) or v < 0:
            msg = "max_experiment_time_seconds must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("max_models")
    @classmethod
    def _max_models_must_be_positive(cls, v: int) -> int:
        """Validate that at least one model may be trained."""
        if v < 1:
            msg = "max_models must be >= 1"
            raise ValueError(msg)
        return v


# ---------------------------------------------------------------------------
# Run records
# ---------------------------------------------------------------------------


class RunRecord(BaseModel):
    """Outcome of one pipeline run as kept in the history ledger.

    Frozen: once appended to the ledger a record is never modified.

    Attributes:
        pipeline: The suggested pipeline that was run.
        run_succeeded: Whether training and evaluation completed.
        score: Value of the optimizing metric (NaN when the run failed).
        exception: The captured failure, if any.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    pipeline: Any
    run_succeeded: bool
    score: float = math.nan
    exception: BaseException | None = None


class RunDetail(RunRecord):
    """Caller-facing result of one iteration.

    Carries every ``RunRecord`` field plus trainer output and two timing
    fields the experiment loop fills in after the run returns. Not frozen
    so the loop can set the timings.

    Attributes:
        trainer_name: Name of the trainer at the end of the pipeline.
        validation_metrics: Metrics object produced by the evaluator.
        model: The trained model, if the runner keeps it.
        runtime_in_seconds: Wall-clock time of the whole iteration.
        pipeline_inference_time_in_seconds: Wall-clock time spent asking
            the suggester for the pipeline.
    """

    model_config = ConfigDict(frozen=False, arbitrary_types_allowed=True)

    trainer_name: str | None = None
    validation_metrics: Any = None
    model: Any = None
    runtime_in_seconds: float | None = None
    pipeline_inference_time_in_seconds: float | None = None


# ---------------------------------------------------------------------------
# Tagged iteration outcome
# ---------------------------------------------------------------------------


class Completed(BaseModel):
    """The runner produced a run record (successful or failed run)."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["completed"] = "completed"
    run_record: RunRecord
    run_detail: RunDetail


class Cancelled(BaseModel):
    """Training observed a cancellation request and stopped early."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cancelled"] = "cancelled"
    reason: str = "operation was cancelled"


class Failed(BaseModel):
    """The runner hit a defect before any run record existed."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Literal["failed"] = "failed"
    cause: BaseException


RunOutcome = Completed | Cancelled | Failed
