"""Experiment loop: iteration scheduling, termination policy, and cancellation.

``Experiment.execute()`` repeatedly asks the pipeline suggester for a
candidate, runs it through the iteration runner in a fresh execution
context, records the outcome in the history ledger, reports progress, and
decides whether to continue. The loop stops when:

- the suggester has no more candidates;
- a run reaches a perfect score;
- ``max_models`` runs have completed;
- the time budget has expired or the caller cancelled the experiment;
- the in-flight run was cancelled (partial results are returned).

It aborts with ``TrainingFailedError`` when the first three runs all fail,
and lets any other runner exception propagate unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence
import concurrent.futures
import logging
from pathlib import Path
import secrets
import time
from typing import Any

from automl_experiment.cancellation import (
    DEFAULT_PROPAGATION_INTERVAL_SECONDS,
    CancellationCoordinator,
)
from automl_experiment.context import (
    ExecutionContext,
    OperationCancelledError,
    SeedStream,
    make_log_relay,
)
from automl_experiment.history import HistoryLedger
from automl_experiment.interfaces import (
    IterationRunner,
    MetricsAgent,
    Pipeline,
    PipelineSuggester,
    ProgressCallback,
)
from automl_experiment.models import (
    Cancelled,
    Completed,
    DatasetColumnInfo,
    ExperimentSettings,
    ExperimentState,
    Failed,
    OptimizingMetricInfo,
    RunDetail,
    RunOutcome,
    RunRecord,
    TaskKind,
)

logger = logging.getLogger(__name__)

_CANCELLATION_ERRORS: tuple[type[Exception], ...] = (
    OperationCancelledError,
    concurrent.futures.CancelledError,
)

_OPERATION_CANCELLED_MESSAGE = (
    "Cancellation was caught after the maximum experiment time was reached "
    "or the experiment was cancelled, and the running context was stopped. Details: %s"
)


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class ExperimentError(Exception):
    """Experiment failure with diagnostic context.

    Attributes:
        diagnostics: Structured information about the failure (iterations
            completed, elapsed time).
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any]) -> None:
        """Initialize with a message and structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context.
        """
        super().__init__(message)
        self.diagnostics = diagnostics


class TrainingFailedError(ExperimentError):
    """The first runs of the experiment all failed.

    Attributes:
        cause: Exception captured by the last failed run.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None,
        diagnostics: dict[str, Any],
    ) -> None:
        super().__init__(message, diagnostics=diagnostics)
        self.cause = cause


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def create_model_directory(cache_directory: Path | None) -> Path | None:
    """Create the per-experiment artifact directory under *cache_directory*.

    Args:
        cache_directory: Root for experiment artifacts, or ``None``.

    Returns:
        Path of a new ``experiment_<random>`` directory, or ``None`` when no
        root was given.
    """
    if cache_directory is None:
        return None

    experiment_dir = Path(cache_directory) / f"experiment_{secrets.token_hex(4)}"
    experiment_dir.mkdir(parents=True, exist_ok=True)
    return experiment_dir


def _as_cancellation(exc: Exception) -> Cancelled | None:
    """Map a cancellation-shaped exception to a ``Cancelled`` outcome.

    Exception groups count as cancellation only when every exception they
    contain is one, as raised by trainers that train on several workers.

    Returns:
        The ``Cancelled`` outcome, or ``None`` for any other exception.
    """
    if isinstance(exc, _CANCELLATION_ERRORS):
        return Cancelled(reason=str(exc) or type(exc).__name__)
    if isinstance(exc, BaseExceptionGroup):
        _, rest = exc.split(_CANCELLATION_ERRORS)
        if rest is None:
            return Cancelled(reason=str(exc))
    return None


def _normalize_outcome(value: object) -> RunOutcome:
    """Accept either a tagged outcome or a ``(RunRecord, RunDetail)`` pair.

    Raises:
        TypeError: If the runner returned anything else.
    """
    if isinstance(value, Completed | Cancelled | Failed):
        return value
    if isinstance(value, tuple) and len(value) == 2:
        run_record, run_detail = value
        if isinstance(run_record, RunRecord) and isinstance(run_detail, RunDetail):
            return Completed(run_record=run_record, run_detail=run_detail)
    msg = f"Iteration runner returned an unsupported value: {value!r}"
    raise TypeError(msg)


# ---------------------------------------------------------------------------
# Experiment
# ---------------------------------------------------------------------------


class Experiment:
    """Drives one model-search experiment. ``execute()`` may be called once.

    Attributes:
        settings: Experiment configuration.
        task: Kind of task being searched.
        metric_info: Optimizing metric and its direction.
    """

    def __init__(
        self,
        *,
        settings: ExperimentSettings,
        task: TaskKind,
        metric_info: OptimizingMetricInfo,
        suggester: PipelineSuggester,
        runner: IterationRunner,
        metrics_agent: MetricsAgent,
        column_info: Sequence[DatasetColumnInfo] = (),
        trainer_allow_list: Sequence[str] | None = None,
        progress_callback: ProgressCallback | None = None,
        seed: int | None = None,
        experiment_logger: logging.Logger | None = None,
        propagation_interval_seconds: float = DEFAULT_PROPAGATION_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the experiment and create its artifact directory.

        Args:
            settings: Experiment configuration.
            task: Kind of task being searched.
            metric_info: Optimizing metric and its direction.
            suggester: Proposes the next pipeline given the history.
            runner: Trains and evaluates one pipeline.
            metrics_agent: Decides whether a score is perfect.
            column_info: Dataset column metadata for the suggester.
            trainer_allow_list: Trainer names the suggester may use, or
                ``None`` for all.
            progress_callback: Called with each run detail, best-effort.
            seed: Parent seed; ``None`` leaves every iteration unseeded.
            experiment_logger: Logger receiving loop and relayed context
                messages. Defaults to this module's logger.
            propagation_interval_seconds: Polling interval of the external
                cancellation token.
        """
        self.settings = settings
        self.task = task
        self.metric_info = metric_info
        self._suggester = suggester
        self._runner = runner
        self._metrics_agent = metrics_agent
        self._column_info = tuple(column_info)
        self._trainer_allow_list = (
            tuple(trainer_allow_list) if trainer_allow_list is not None else None
        )
        self._progress_callback = progress_callback
        self._logger = experiment_logger or logger
        self._propagation_interval = propagation_interval_seconds

        self._history = HistoryLedger()
        self._seed_stream = SeedStream(seed)
        self._child_seeds: list[int] = []
        self._relay = make_log_relay(self._logger)
        self._coordinator = CancellationCoordinator(
            self._history,
            settings.cancellation_token,
            experiment_logger=self._logger,
        )
        self._model_directory = create_model_directory(settings.cache_directory)
        self._state = ExperimentState.READY

    # -- introspection ------------------------------------------------------

    @property
    def state(self) -> ExperimentState:
        return self._state

    @property
    def history(self) -> tuple[RunRecord, ...]:
        """Snapshot of the history ledger in iteration order."""
        return self._history.snapshot()

    @property
    def model_directory(self) -> Path | None:
        return self._model_directory

    @property
    def child_seeds(self) -> tuple[int, ...]:
        """Seeds assigned to each iteration's context, in iteration order.

        Empty when the experiment runs without a parent seed.
        """
        return tuple(self._child_seeds)

    @property
    def budget_expired(self) -> bool:
        return self._coordinator.budget_expired.is_set()

    # -- main loop ----------------------------------------------------------

    def execute(self) -> list[RunDetail]:
        """Run the experiment until a stop condition is met.

        Returns:
            Run details of every completed iteration, in iteration order.

        Raises:
            RuntimeError: If called more than once.
            TrainingFailedError: If the first three runs all failed.
            Exception: Any non-cancellation error raised by the runner or
                the suggester, unchanged.
        """
        if self._state != ExperimentState.READY:
            msg = f"Experiment.execute() can only be called once (state={self._state})"
            raise RuntimeError(msg)

        self._state = ExperimentState.ITERATING
        self._start = time.monotonic()
        results: list[RunDetail] = []
        self._logger.info(
            "Experiment start: task=%s metric=%s (%s) max_models=%d budget=%ss",
            self.task,
            self.metric_info.name,
            self.metric_info.direction,
            self.settings.max_models,
            self.settings.max_experiment_time_seconds,
        )

        self._coordinator.start_budget_timer(self.settings.max_experiment_time_seconds)
        self._coordinator.start_propagation_timer(self._propagation_interval)
        try:
            self._run_iterations(results)
        except BaseException:
            self._state = ExperimentState.ABORTED
            raise
        finally:
            self._coordinator.stop()

        self._state = ExperimentState.STOPPED
        self._logger.info(
            "Experiment finished: %d runs in %.1fs",
            len(results),
            time.monotonic() - self._start,
        )
        return results

    def _run_iterations(self, results: list[RunDetail]) -> None:
        while True:
            iteration_start = time.monotonic()
            context = self._begin_iteration()
            try:
                pipeline = self._suggester.get_next_pipeline(
                    context,
                    self._history.snapshot(),
                    self._column_info,
                    self.task,
                    self.metric_info.is_maximizing,
                    self.settings.cache_before_trainer,
                    self._logger,
                    self._trainer_allow_list,
                )
                inference_seconds = time.monotonic() - iteration_start
                if pipeline is None:
                    self._logger.info(
                        "No pipeline candidates left after %d runs; ending experiment",
                        len(self._history),
                    )
                    return

                self._logger.debug("Evaluating pipeline %s", pipeline)
                outcome = _normalize_outcome(
                    self._runner.run(
                        pipeline,
                        self._model_directory,
                        len(self._history) + 1,
                        context=context,
                    )
                )
            except Exception as exc:
                cancelled = _as_cancellation(exc)
                if cancelled is None:
                    raise
                outcome = cancelled
            finally:
                context.unsubscribe(self._relay)

            if isinstance(outcome, Cancelled):
                self._logger.warning(_OPERATION_CANCELLED_MESSAGE, outcome.reason)
                return
            if isinstance(outcome, Failed):
                raise outcome.cause

            run_record = self._record(
                pipeline, outcome, results, iteration_start, inference_seconds
            )

            if self._metrics_agent.is_model_perfect(run_record.score):
                self._logger.info(
                    "Run %d reached a perfect score (%s); ending experiment",
                    len(self._history),
                    run_record.score,
                )
                return

            if self._history.should_abort():
                self._raise_training_failed()

            if not self._should_continue():
                return

    def _begin_iteration(self) -> ExecutionContext:
        context = self._seed_stream.new_context()
        if context.seed is not None:
            self._child_seeds.append(context.seed)
        context.subscribe(self._relay)
        self._coordinator.activate(context)
        return context

    def _record(
        self,
        pipeline: Pipeline,
        outcome: Completed,
        results: list[RunDetail],
        iteration_start: float,
        inference_seconds: float,
    ) -> RunRecord:
        """Append the run to the ledger, fill timings, and report progress.

        Returns:
            The frozen record stored in the ledger.
        """
        run_record = self._history.append(outcome.run_record)
        elapsed = time.monotonic() - iteration_start
        self._logger.debug(
            "%d\t%s\t%.3fs\t%s",
            len(self._history),
            run_record.score,
            elapsed,
            pipeline,
        )

        run_detail = outcome.run_detail
        run_detail.runtime_in_seconds = elapsed
        run_detail.pipeline_inference_time_in_seconds = inference_seconds
        self._report_progress(run_detail)
        results.append(run_detail)
        return run_record

    def _report_progress(self, run_detail: RunDetail) -> None:
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(run_detail)
        except Exception:
            self._logger.exception("Progress report callback raised an exception")

    def _should_continue(self) -> bool:
        return (
            len(self._history) < self.settings.max_models
            and not self.settings.cancellation_token.is_cancellation_requested
            and not self._coordinator.budget_expired.is_set()
        )

    def _raise_training_failed(self) -> None:
        last = self._history.last()
        cause = last.exception if last is not None else None
        raise TrainingFailedError(
            f"Training failed with the exception: {cause}",
            cause=cause,
            diagnostics={
                "iterations_completed": len(self._history),
                "elapsed_time": time.monotonic() - self._start,
            },
        ) from cause


def run_experiment(
    settings: ExperimentSettings,
    *,
    task: TaskKind,
    metric_info: OptimizingMetricInfo,
    suggester: PipelineSuggester,
    runner: IterationRunner,
    metrics_agent: MetricsAgent,
    column_info: Sequence[DatasetColumnInfo] = (),
    trainer_allow_list: Sequence[str] | None = None,
    progress_callback: ProgressCallback | None = None,
    seed: int | None = None,
) -> list[RunDetail]:
    """Build an ``Experiment`` and execute it.

    Args:
        settings: Experiment configuration.
        task: Kind of task being searched.
        metric_info: Optimizing metric and its direction.
        suggester: Proposes the next pipeline given the history.
        runner: Trains and evaluates one pipeline.
        metrics_agent: Decides whether a score is perfect.
        column_info: Dataset column metadata for the suggester.
        trainer_allow_list: Trainer names the suggester may use.
        progress_callback: Called with each run detail, best-effort.
        seed: Parent seed for the per-iteration seed stream.

    Returns:
        Run details of every completed iteration, in iteration order.
    """
    experiment = Experiment(
        settings=settings,
        task=task,
        metric_info=metric_info,
        suggester=suggester,
        runner=runner,
        metrics_agent=metrics_agent,
        column_info=column_info,
        trainer_allow_list=trainer_allow_list,
        progress_callback=progress_callback,
        seed=seed,
    )
    return experiment.execute()
