"""Append-only history of completed pipeline runs."""

from __future__ import annotations

from collections.abc import Iterator

from automl_experiment.models import RunRecord

# Number of leading failed runs after which the experiment is aborted.
FAILED_RUNS_ABORT_THRESHOLD = 3


class HistoryLedger:
    """Ordered, append-only sequence of ``RunRecord`` in iteration order.

    Records are only ever appended by the experiment loop. Readers on other
    threads (the budget timer) work on a tuple snapshot.
    """

    def __init__(self) -> None:
        self._records: list[RunRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RunRecord]:
        return iter(self.snapshot())

    def __getitem__(self, index: int) -> RunRecord:
        return self._records[index]

    def append(self, record: RunRecord) -> RunRecord:
        """Append the record of a completed iteration.

        Subclass instances such as ``RunDetail`` are mutable, so the ledger
        stores a plain, frozen ``RunRecord`` copy of their record fields.

        Returns:
            The record actually stored.

        Raises:
            TypeError: If *record* is not a ``RunRecord``.
        """
        if not isinstance(record, RunRecord):
            msg = f"History only accepts RunRecord, got {type(record).__name__}"
            raise TypeError(msg)
        if type(record) is not RunRecord:
            record = RunRecord.model_construct(
                **{name: getattr(record, name) for name in RunRecord.model_fields}
            )
        self._records.append(record)
        return record

    def snapshot(self) -> tuple[RunRecord, ...]:
        """Return an immutable copy of the ledger in iteration order."""
        return tuple(self._records)

    def last(self) -> RunRecord | None:
        return self._records[-1] if self._records else None

    def any_succeeded(self) -> bool:
        """Whether at least one recorded run succeeded."""
        return any(r.run_succeeded for r in self.snapshot())

    def should_abort(self) -> bool:
        """Whether the leading runs all failed.

        True exactly when the ledger holds ``FAILED_RUNS_ABORT_THRESHOLD``
        records and none of them succeeded.
        """
        records = self.snapshot()
        return len(records) == FAILED_RUNS_ABORT_THRESHOLD and not any(
            r.run_succeeded for r in records
        )
