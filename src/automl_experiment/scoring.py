"""Score comparison helpers and a default metrics agent.

Provides direction-aware comparison functions (``is_improvement``,
``is_improvement_or_equal``), ``PerfectScoreMetricsAgent`` for the
experiment loop's perfect-score early exit, and ``best_run`` to pick the
winning result of a finished experiment.
"""

from __future__ import annotations

from collections.abc import Iterable
import math

from automl_experiment.models import MetricDirection, RunDetail


def is_improvement(
    new_score: float,
    old_score: float,
    direction: MetricDirection,
) -> bool:
    """Check if *new_score* is strictly better than *old_score*.

    Args:
        new_score: The candidate score to evaluate.
        old_score: The baseline score to compare against.
        direction: Whether to maximize or minimize the metric.

    Returns:
        True if *new_score* is strictly better than *old_score*.
    """
    if direction == MetricDirection.MAXIMIZE:
        return new_score > old_score
    return new_score < old_score


def is_improvement_or_equal(
    new_score: float,
    old_score: float,
    direction: MetricDirection,
) -> bool:
    """Check if *new_score* is better than or equal to *old_score*.

    Args:
        new_score: The candidate score to evaluate.
        old_score: The baseline score to compare against.
        direction: Whether to maximize or minimize the metric.

    Returns:
        True if *new_score* is at least as good as *old_score*.
    """
    if direction == MetricDirection.MAXIMIZE:
        return new_score >= old_score
    return new_score <= old_score


class PerfectScoreMetricsAgent:
    """Metrics agent treating any score at or beyond a bound as perfect.

    For a maximized metric such as accuracy the bound is typically ``1.0``;
    for a minimized error metric it is ``0.0``. NaN scores (failed runs)
    are never perfect.

    Attributes:
        perfect_value: Best achievable metric value.
        direction: Whether the metric is maximized or minimized.
    """

    def __init__(self, perfect_value: float, direction: MetricDirection) -> None:
        self.perfect_value = perfect_value
        self.direction = direction

    def is_model_perfect(self, score: float) -> bool:
        """Return whether *score* reaches ``perfect_value``."""
        if score is None or math.isnan(score):
            return False
        return is_improvement_or_equal(score, self.perfect_value, self.direction)


def best_run(
    results: Iterable[RunDetail],
    direction: MetricDirection,
) -> RunDetail | None:
    """Return the best successful result, keeping the earliest on ties.

    Args:
        results: Run details of a finished experiment.
        direction: Whether to maximize or minimize the metric.

    Returns:
        The successful result with the best score, or ``None`` when no run
        succeeded with a numeric score.
    """
    best: RunDetail | None = None
    for result in results:
        if not result.run_succeeded or math.isnan(result.score):
            continue
        if best is None or is_improvement(result.score, best.score, direction):
            best = result
    return best
