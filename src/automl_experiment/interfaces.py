"""Protocols for the collaborators the experiment loop consumes.

Any object with matching methods satisfies these protocols; nothing needs
to inherit from them.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from automl_experiment.context import ExecutionContext
    from automl_experiment.models import (
        CacheBeforeTrainer,
        DatasetColumnInfo,
        RunDetail,
        RunOutcome,
        RunRecord,
        TaskKind,
    )


@runtime_checkable
class Pipeline(Protocol):
    """An opaque candidate pipeline, identified by its string form."""

    def __str__(self) -> str: ...


@runtime_checkable
class PipelineSuggester(Protocol):
    """Proposes the next pipeline to try given the run history."""

    def get_next_pipeline(  # noqa: D102
        self,
        context: ExecutionContext,
        history: Sequence[RunRecord],
        column_info: Sequence[DatasetColumnInfo],
        task: TaskKind,
        is_maximizing: bool,
        cache_before_trainer: CacheBeforeTrainer,
        logger: logging.Logger,
        trainer_allow_list: Sequence[str] | None,
    ) -> Pipeline | None: ...


@runtime_checkable
class IterationRunner(Protocol):
    """Trains and evaluates one pipeline.

    Returns either a tagged ``RunOutcome`` or a ``(RunRecord, RunDetail)``
    pair. May raise ``OperationCancelledError`` (or an exception group of
    them) when the context is cancelled mid-training.
    """

    def run(  # noqa: D102
        self,
        pipeline: Pipeline,
        artifact_directory: Path | None,
        iteration_index: int,
        *,
        context: ExecutionContext,
    ) -> RunOutcome | tuple[RunRecord, RunDetail]: ...


@runtime_checkable
class MetricsAgent(Protocol):
    """Judges whether a score cannot be improved upon."""

    def is_model_perfect(self, score: float) -> bool: ...  # noqa: D102


ProgressCallback = Callable[["RunDetail"], None]
