"""Experiment control loop for automated model search."""

from automl_experiment.cancellation import CancellationToken
from automl_experiment.context import ExecutionContext, OperationCancelledError
from automl_experiment.experiment import (
    Experiment,
    ExperimentError,
    TrainingFailedError,
    run_experiment,
)
from automl_experiment.models import (
    ExperimentSettings,
    OptimizingMetricInfo,
    RunDetail,
    RunRecord,
    TaskKind,
)

__all__ = [
    "CancellationToken",
    "ExecutionContext",
    "Experiment",
    "ExperimentError",
    "ExperimentSettings",
    "OperationCancelledError",
    "OptimizingMetricInfo",
    "RunDetail",
    "RunRecord",
    "TaskKind",
    "TrainingFailedError",
    "run_experiment",
]
