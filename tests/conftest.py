"""Shared fixtures and fake collaborators for the automl_experiment test suite."""

from __future__ import annotations

from collections.abc import Callable
import logging
from pathlib import Path
from typing import Any

from automl_experiment.context import ExecutionContext
from automl_experiment.experiment import Experiment
from automl_experiment.models import (
    ColumnPurpose,
    DatasetColumnInfo,
    ExperimentSettings,
    MetricDirection,
    OptimizingMetricInfo,
    RunDetail,
    RunRecord,
    TaskKind,
)
from pydantic import BaseModel, ConfigDict
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> ExperimentSettings:
    """Build valid ExperimentSettings with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed ExperimentSettings instance.
    """
    defaults: dict[str, Any] = {"max_experiment_time_seconds": 600.0}
    defaults.update(overrides)
    return ExperimentSettings(**defaults)


def make_metric_info(**overrides: Any) -> OptimizingMetricInfo:
    """Build a valid OptimizingMetricInfo (accuracy, maximized by default)."""
    defaults: dict[str, Any] = {
        "name": "accuracy",
        "direction": MetricDirection.MAXIMIZE,
    }
    defaults.update(overrides)
    return OptimizingMetricInfo(**defaults)


def make_columns() -> list[DatasetColumnInfo]:
    """Return a small label + feature column set."""
    return [
        DatasetColumnInfo(name="target", type="bool", purpose=ColumnPurpose.LABEL),
        DatasetColumnInfo(
            name="age", type="float", purpose=ColumnPurpose.NUMERIC_FEATURE
        ),
    ]


class FakePipeline:
    """Opaque pipeline identified by its name."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FakePipeline({self.name!r})"


def succeed(pipeline: Any, score: float, **detail: Any) -> tuple[RunRecord, RunDetail]:
    """Build the record pair of a successful run."""
    record = RunRecord(pipeline=pipeline, run_succeeded=True, score=score)
    run_detail = RunDetail(
        pipeline=pipeline,
        run_succeeded=True,
        score=score,
        trainer_name=detail.pop("trainer_name", str(pipeline)),
        **detail,
    )
    return record, run_detail


def fail(pipeline: Any, exc: BaseException) -> tuple[RunRecord, RunDetail]:
    """Build the record pair of a failed run."""
    record = RunRecord(pipeline=pipeline, run_succeeded=False, exception=exc)
    run_detail = RunDetail(
        pipeline=pipeline,
        run_succeeded=False,
        exception=exc,
        trainer_name=str(pipeline),
    )
    return record, run_detail


class SuggestCall(BaseModel):
    """Arguments of one ``get_next_pipeline`` call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    context: ExecutionContext
    history: Any
    column_info: Any
    task: TaskKind
    is_maximizing: bool
    cache_before_trainer: Any
    logger: Any
    trainer_allow_list: Any


class SequenceSuggester:
    """Suggests ``pipeline-1``, ``pipeline-2``, ... and ``None`` past *limit*."""

    def __init__(self, limit: int | None = None) -> None:
        self.limit = limit
        self.calls: list[SuggestCall] = []

    def get_next_pipeline(
        self,
        context: ExecutionContext,
        history: Any,
        column_info: Any,
        task: TaskKind,
        is_maximizing: bool,
        cache_before_trainer: Any,
        logger: logging.Logger,
        trainer_allow_list: Any,
    ) -> FakePipeline | None:
        self.calls.append(
            SuggestCall(
                context=context,
                history=history,
                column_info=column_info,
                task=task,
                is_maximizing=is_maximizing,
                cache_before_trainer=cache_before_trainer,
                logger=logger,
                trainer_allow_list=trainer_allow_list,
            )
        )
        n = len(self.calls)
        if self.limit is not None and n > self.limit:
            return None
        return FakePipeline(f"pipeline-{n}")


class RunCall(BaseModel):
    """Arguments of one ``IterationRunner.run`` call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    pipeline: Any
    artifact_directory: Path | None
    iteration_index: int
    context: ExecutionContext


Step = Callable[[Any, int, ExecutionContext], Any]


def _default_step(pipeline: Any, index: int, context: ExecutionContext) -> Any:
    return succeed(pipeline, 0.5 + index / 100)


class ScriptedRunner:
    """Iteration runner delegating each call to *step(pipeline, index, context)*."""

    def __init__(self, step: Step | None = None) -> None:
        self.step = step or _default_step
        self.calls: list[RunCall] = []

    def run(
        self,
        pipeline: Any,
        artifact_directory: Path | None,
        iteration_index: int,
        *,
        context: ExecutionContext,
    ) -> Any:
        self.calls.append(
            RunCall(
                pipeline=pipeline,
                artifact_directory=artifact_directory,
                iteration_index=iteration_index,
                context=context,
            )
        )
        return self.step(pipeline, iteration_index, context)


class NeverPerfect:
    """Metrics agent that never reports a perfect score."""

    def is_model_perfect(self, score: float) -> bool:
        return False


def make_experiment(
    *,
    settings: ExperimentSettings | None = None,
    suggester: Any = None,
    runner: Any = None,
    metrics_agent: Any = None,
    **kwargs: Any,
) -> Experiment:
    """Build an Experiment wired to fake collaborators.

    Args:
        settings: Settings, defaulting to ``make_settings()``.
        suggester: Suggester, defaulting to an unlimited ``SequenceSuggester``.
        runner: Runner, defaulting to an always-succeeding ``ScriptedRunner``.
        metrics_agent: Metrics agent, defaulting to ``NeverPerfect``.
        **kwargs: Extra keyword arguments for ``Experiment``.

    Returns:
        The constructed experiment.
    """
    kwargs.setdefault("task", TaskKind.BINARY_CLASSIFICATION)
    kwargs.setdefault("metric_info", make_metric_info())
    kwargs.setdefault("column_info", make_columns())
    kwargs.setdefault("propagation_interval_seconds", 0.01)
    return Experiment(
        settings=settings if settings is not None else make_settings(),
        suggester=suggester if suggester is not None else SequenceSuggester(),
        runner=runner if runner is not None else ScriptedRunner(),
        metrics_agent=metrics_agent if metrics_agent is not None else NeverPerfect(),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def suggester() -> SequenceSuggester:
    """Return an unlimited SequenceSuggester."""
    return SequenceSuggester()


@pytest.fixture()
def runner() -> ScriptedRunner:
    """Return a ScriptedRunner whose runs always succeed."""
    return ScriptedRunner()


@pytest.fixture()
def package_logger_cleanup() -> Any:
    """Remove handlers added to the ``automl_experiment`` logger by a test."""
    package_logger = logging.getLogger("automl_experiment")
    original_handlers = list(package_logger.handlers)
    original_level = package_logger.level
    yield package_logger
    for h in package_logger.handlers[:]:
        if h not in original_handlers:
            package_logger.removeHandler(h)
            h.close()
    package_logger.setLevel(original_level)
