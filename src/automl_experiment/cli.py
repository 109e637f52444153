"""CLI entry point for running an AutoML experiment.

Provides ``main()`` as the ``automl-experiment`` console script. Loads
optional settings YAML, applies ``AUTOML_*`` environment overrides,
imports a plugin factory that supplies the suggester, runner and metrics
agent, and runs the experiment. Ctrl-C requests cooperative cancellation
instead of killing the process.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable, Iterator
import contextlib
import importlib
import signal
import sys
from typing import Any

from pydantic import BaseModel, ConfigDict

from automl_experiment.cancellation import CancellationToken
from automl_experiment.config import apply_env_overrides, configure_logging, load_settings
from automl_experiment.experiment import Experiment, ExperimentError
from automl_experiment.models import (
    DatasetColumnInfo,
    ExperimentSettings,
    OptimizingMetricInfo,
    RunDetail,
    TaskKind,
)
from automl_experiment.scoring import best_run


class ExperimentComponents(BaseModel):
    """Collaborators a plugin factory supplies to the CLI.

    Attributes:
        task: Kind of task being searched.
        metric_info: Optimizing metric and its direction.
        suggester: Pipeline suggester.
        runner: Iteration runner.
        metrics_agent: Perfect-score judge.
        column_info: Dataset column metadata.
        trainer_allow_list: Optional trainer allow-list.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: TaskKind
    metric_info: OptimizingMetricInfo
    suggester: Any
    runner: Any
    metrics_agent: Any
    column_info: list[DatasetColumnInfo] = []
    trainer_allow_list: list[str] | None = None


ComponentFactory = Callable[[ExperimentSettings], ExperimentComponents]


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="automl-experiment",
        description="Run an automated model-search experiment.",
    )
    parser.add_argument(
        "--plugin",
        required=True,
        help="Component factory as 'package.module:function'.",
    )
    parser.add_argument(
        "--settings",
        required=False,
        default=None,
        help="Path to an optional ExperimentSettings YAML file.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Parent seed for reproducible per-iteration seeds.",
    )
    return parser


def load_factory(spec: str) -> ComponentFactory:
    """Import the factory named by a ``module:attribute`` string.

    Args:
        spec: Import path such as ``"my_search.plugin:build"``.

    Returns:
        The imported callable.

    Raises:
        ValueError: If *spec* is malformed or does not name a callable.
        ImportError: If the module cannot be imported.
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        msg = f"plugin must look like 'module:function', got {spec!r}"
        raise ValueError(msg)

    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        msg = f"plugin {spec!r} does not name a callable"
        raise ValueError(msg)
    return factory


@contextlib.contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Route SIGINT to *token* for the duration of the block."""

    def _handler(signum: int, frame: object) -> None:
        print("Interrupt received; cancelling experiment...", file=sys.stderr)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _print_startup_summary(
    settings: ExperimentSettings,
    components: ExperimentComponents,
    seed: int | None,
) -> None:
    sep = "=" * 60
    print(sep)
    print("AutoML Experiment")
    print(sep)
    print(f"  Task:         {components.task}")
    print(
        f"  Metric:       {components.metric_info.name} "
        f"({components.metric_info.direction})"
    )
    print(f"  Time limit:   {settings.max_experiment_time_seconds}s")
    print(f"  Max models:   {settings.max_models}")
    print(f"  Seed:         {seed if seed is not None else 'none'}")
    print(sep)


def _print_progress(run: RunDetail) -> None:
    status = "ok" if run.run_succeeded else "failed"
    print(
        f"  {run.trainer_name or run.pipeline}: score={run.score} "
        f"[{status}] {run.runtime_in_seconds or 0.0:.2f}s"
    )


def main() -> int:
    """Entry point for the ``automl-experiment`` CLI.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    parser = _build_parser()
    args = parser.parse_args()

    try:
        settings = (
            load_settings(args.settings) if args.settings else ExperimentSettings()
        )
        settings = apply_env_overrides(settings)
        configure_logging(settings)

        components = load_factory(args.plugin)(settings)
        _print_startup_summary(settings, components, args.seed)

        experiment = Experiment(
            settings=settings,
            task=components.task,
            metric_info=components.metric_info,
            suggester=components.suggester,
            runner=components.runner,
            metrics_agent=components.metrics_agent,
            column_info=components.column_info,
            trainer_allow_list=components.trainer_allow_list,
            progress_callback=_print_progress,
            seed=args.seed,
        )
        with _cancel_on_interrupt(settings.cancellation_token):
            results = experiment.execute()

        print(f"Experiment completed with {len(results)} runs.")
        best = best_run(results, components.metric_info.direction)
        if best is not None:
            print(f"Best run: {best.trainer_name or best.pipeline} score={best.score}")

    except ExperimentError as exc:
        print(f"Experiment error: {exc}", file=sys.stderr)
        print(f"Diagnostics: {exc.diagnostics}", file=sys.stderr)
        return 1
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
