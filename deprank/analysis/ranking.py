"""Interactive ranking of dataset columns by dependency on a reference variable.

Scores are computed in the background by a bounded worker pool, then a reorder thread waits for
the pool and sorts the columns. Any new request cancels the work in flight and waits until every
worker and reorder thread has stopped before touching the shared column list.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum

import pandas as pd

from deprank.data.dataset import Dataset
from deprank.data.ranges import DataRanges
from deprank.data.variables import Variable
from deprank.utils.config import DEFAULT_CONFIG, RankingConfig, parse_missing_threshold, parse_p_value
from deprank.utils.logging import get_logger

from .dependency_test import ScoringCancelled
from .similarity import SimilarityScorer


logger = get_logger(__name__)

QUICKSORT_PROGRESS_LIMIT = 0.9
"""Below this sort progress a single-column update re-runs quicksort, above it insertion sort."""
POOL_PROGRESS_SPAN = 0.99
"""Share of the progress bar covered by the score pool; the reorder finishes the rest."""


class SortState(StrEnum):
    UNSORTED = "unsorted"
    SORTING = "sorting"
    SORTED = "sorted"


class SortAlgorithm(StrEnum):
    QUICKSORT = "quicksort"
    INSERTION = "insertion"


@dataclass(eq=False)
class ColumnScore:
    """A ranked column and its dependency score (``None`` until computed)."""

    variable: Variable
    score: float | None = None

    @property
    def computed(self) -> bool:
        return self.score is not None


@dataclass(frozen=True)
class _SortRequest:
    """Parameters captured when background work is launched."""

    key: Variable
    ranges: DataRanges
    p_value: float
    missing_threshold: float


class _ReorderCancelled(Exception):
    pass


def await_futures(futures: Iterable[Future]) -> None:
    """Block until every future has finished or been cancelled.

    Futures cancelled by ``shutdown(cancel_futures=True)`` never notify
    :func:`concurrent.futures.wait`, so each one is awaited on its own condition.
    """
    for future in futures:
        try:
            future.exception()
        except CancelledError:
            pass


def quicksort(items: list, key: Callable[[object], float], cancel: threading.Event) -> None:
    """Sort ``items`` in place by decreasing ``key``.

    Lomuto partition around the middle element; unstable but deterministic. Subranges are
    processed from an explicit stack so that long runs of equal keys cannot exhaust the
    recursion limit.

    Raises:
        _ReorderCancelled: If ``cancel`` is set; checked at every comparison.
    """
    stack = [(0, len(items) - 1)]
    while stack:
        left, right = stack.pop()
        if left >= right:
            continue
        if cancel.is_set():
            raise _ReorderCancelled
        pivot = (left + right) // 2
        pivot_val = key(items[pivot])
        items[pivot], items[right] = items[right], items[pivot]
        store = left
        for i in range(left, right):
            if cancel.is_set():
                raise _ReorderCancelled
            if key(items[i]) > pivot_val:
                items[i], items[store] = items[store], items[i]
                store += 1
        items[right], items[store] = items[store], items[right]
        stack.append((store + 1, right))
        stack.append((left, store - 1))


def insertion_sort(items: list, key: Callable[[object], float], cancel: threading.Event) -> None:
    """Stable in-place sort by decreasing ``key``; cheap when items are nearly sorted.

    Raises:
        _ReorderCancelled: If ``cancel`` is set; checked at every comparison.
    """
    for i in range(1, len(items)):
        if cancel.is_set():
            raise _ReorderCancelled
        item = items[i]
        item_key = key(item)
        j = i - 1
        while j >= 0:
            if cancel.is_set():
                raise _ReorderCancelled
            if not item_key > key(items[j]):
                break
            items[j + 1] = items[j]
            j -= 1
        items[j + 1] = item


class RankingEngine:
    """Owns the ordered column list of a dataset and ranks it against a reference variable.

    States: ``UNSORTED`` (no reference variable), ``SORTING`` (scores and/or reorder in
    progress) and ``SORTED``. All public methods are serialized by a coordination lock; workers
    only ever write the score of the entry they were given, and the reorder thread sorts a
    private copy of the entry list that replaces the live one only if it was not cancelled.
    Readers therefore always see a complete ordering.

    Example:
        >>> engine = RankingEngine(ds, RankingConfig(dep_test="GAMMA_TEST"))
        >>> engine.sort(ds.get_variable("income"))
        >>> engine.wait()
        >>> engine.profile().head()
    """

    def __init__(
        self,
        dataset: Dataset,
        config: RankingConfig | None = None,
        scorer: SimilarityScorer | None = None,
    ) -> None:
        self._dataset = dataset
        self.config = config or DEFAULT_CONFIG
        self._scorer = scorer or SimilarityScorer(self.config)

        self._lock = threading.RLock()
        self._cancel = threading.Event()

        self._entries: list[ColumnScore] = []
        for var in dataset.included_variables():
            var.column = True
            self._entries.append(ColumnScore(var))

        self._sort_var: Variable | None = None
        self._ranges = DataRanges()
        self._p_value = self.config.p_value
        self._missing_threshold = self.config.missing_threshold

        self._pool: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []
        self._reorder: threading.Thread | None = None
        self._threaded = True
        self._inline_count = 0

    # ------------------------------------------------------------------ queries
    @property
    def dataset(self) -> Dataset:
        return self._dataset

    @property
    def ranges(self) -> DataRanges:
        """Copy of the row filter used by the current ranking."""
        return self._ranges.copy()

    @property
    def p_value(self) -> float:
        return self._p_value

    @property
    def missing_threshold(self) -> float:
        return self._missing_threshold

    @property
    def state(self) -> SortState:
        if self.sorting():
            return SortState.SORTING
        return SortState.UNSORTED if self._sort_var is None else SortState.SORTED

    def columns(self) -> list[Variable]:
        """Columns in their current order."""
        return [entry.variable for entry in self._entries]

    def entries(self) -> list[tuple[Variable, float | None]]:
        """``(variable, score)`` pairs in column order; ``None`` marks uncomputed scores."""
        return [(entry.variable, entry.score) for entry in self._entries]

    @property
    def column_count(self) -> int:
        return len(self._entries)

    def column(self, index: int) -> Variable:
        return self._entries[index].variable

    def column_index(self, variable: Variable) -> int:
        """Position of ``variable`` among the columns, -1 if it is not a column."""
        for i, entry in enumerate(self._entries):
            if entry.variable is variable:
                return i
        return -1

    def score(self, variable: Variable) -> float | None:
        """Score of a column.

        Raises:
            KeyError: If ``variable`` is not a column.
        """
        for entry in self._entries:
            if entry.variable is variable:
                return entry.score
        raise KeyError(f"Variable '{variable.name}' is not a column.")

    def score_at(self, index: int) -> float | None:
        return self._entries[index].score

    def profile(self, variables: Iterable[Variable] | None = None) -> pd.DataFrame:
        """Score table in column order with columns ``name``, ``alias`` and ``score``."""
        wanted = None if variables is None else {id(var) for var in variables}
        rows = [
            {"name": var.name, "alias": var.pretty_name, "score": float("nan") if score is None else score}
            for var, score in self.entries()
            if wanted is None or id(var) in wanted
        ]
        return pd.DataFrame(rows, columns=["name", "alias", "score"])

    def sort_key(self) -> Variable | None:
        return self._sort_var

    def unsorted(self) -> bool:
        return self._sort_var is None

    def sorted(self) -> bool:
        return self._sort_var is not None and not self.sorting()

    def sorting(self) -> bool:
        """True while score workers or a reorder thread are running."""
        if any(not f.done() for f in self._futures):
            return True
        thread = self._reorder
        return thread is not None and thread.is_alive()

    def sort_progress(self) -> float:
        """Estimated completion of the current ranking in ``[0, 1]``."""
        if self._sort_var is None:
            return 0.0
        if not self._threaded:
            total = len(self._entries)
            if total == 0:
                return 1.0
            return min(1.0, max(0.0, self._inline_count / total))
        futures = self._futures
        if futures:
            done = sum(f.done() for f in futures)
            if done < len(futures):
                return POOL_PROGRESS_SPAN * done / len(futures)
        thread = self._reorder
        if thread is not None and thread.is_alive():
            return POOL_PROGRESS_SPAN
        return 1.0

    def wait(self) -> None:
        """Block until the operation in flight (if any) has finished or was cancelled."""
        futures = list(self._futures)
        thread = self._reorder
        await_futures(futures)
        if thread is not None:
            thread.join()

    # ------------------------------------------------------------------ state transitions
    def sort(
        self,
        variable: Variable,
        ranges: DataRanges | None = None,
        p_value: float | None = None,
        missing_threshold: float | None = None,
    ) -> None:
        """Rank all columns against ``variable``.

        Cancels any work in flight, clears every score and launches a full recomputation
        followed by a quicksort.
        """
        with self._lock:
            if not variable.include:
                logger.info("sort_skipped_not_included", variable=variable.name)
                return
            self._cancel_current()
            if self._sort_var is not None:
                self._sort_var.sort_key = False
            variable.sort_key = True
            self._sort_var = variable
            self._ranges = ranges.copy() if ranges is not None else DataRanges()
            self._p_value = parse_p_value(p_value) if p_value is not None else self.config.p_value
            self._missing_threshold = (
                parse_missing_threshold(missing_threshold)
                if missing_threshold is not None
                else self.config.missing_threshold
            )
            logger.info("sort_started", reference=variable.name, columns=len(self._entries))
            self._launch_score_pool(clear=True)
            self._start_reorder(SortAlgorithm.QUICKSORT)

    def resort(self) -> None:
        """Recompute every score with the current parameters and reorder."""
        with self._lock:
            if self._sort_var is None:
                return
            self._cancel_current()
            self._launch_score_pool(clear=True)
            self._start_reorder(SortAlgorithm.QUICKSORT)

    def resort_ranges(self, ranges: DataRanges) -> None:
        """Re-rank after a change of the row filter.

        Scores are cleared and recomputed lazily, one at a time, by a stable insertion sort.
        """
        with self._lock:
            if self._sort_var is None:
                return
            self._cancel_current()
            self._ranges = ranges.copy()
            self._threaded = False
            self._inline_count = 0
            self._futures = []
            for entry in self._entries:
                entry.score = None
            self._start_reorder(SortAlgorithm.INSERTION)

    def resort_parameters(self, p_value: float, missing_threshold: float) -> None:
        """Re-rank with a new significance level and missing-value threshold."""
        with self._lock:
            if self._sort_var is None:
                return
            p_value = parse_p_value(p_value)
            missing_threshold = parse_missing_threshold(missing_threshold)
            self._cancel_current()
            self._p_value = p_value
            self._missing_threshold = missing_threshold
            self._launch_score_pool(clear=True)
            self._start_reorder(SortAlgorithm.QUICKSORT)

    def sort_column(self, variable: Variable) -> None:
        """Place a column whose score is missing (e.g. a newly added column)."""
        with self._lock:
            self._sort_column(variable, self.sort_progress())

    def _sort_column(self, variable: Variable, progress: float) -> None:
        if self._sort_var is None:
            logger.info("sort_column_skipped_unsorted", variable=variable.name)
            return
        if not variable.column:
            logger.info("sort_column_skipped_not_column", variable=variable.name)
            return
        self._cancel_current()
        self._launch_score_pool(clear=False)
        algorithm = SortAlgorithm.QUICKSORT if progress < QUICKSORT_PROGRESS_LIMIT else SortAlgorithm.INSERTION
        self._start_reorder(algorithm)

    def unsort(self) -> None:
        """Drop the reference variable and restore the natural column order."""
        with self._lock:
            if self._sort_var is None:
                return
            self._cancel_current()
            self._sort_var.sort_key = False
            self._sort_var = None
            self._threaded = True
            self._futures = []
            self._start_reorder(SortAlgorithm.QUICKSORT, natural=True)

    def stop_sorting(self) -> None:
        """Cancel work in flight and drop the reference variable, keeping the current order.

        The next column change restores the natural order.
        """
        with self._lock:
            self._cancel_current()
            if self._sort_var is not None:
                self._sort_var.sort_key = False
                self._sort_var = None

    def cancel(self) -> None:
        """Stop all background work.

        Returns only once no worker is writing scores and no reorder thread is running, so the
        caller may mutate columns and variables right afterwards.
        """
        with self._lock:
            self._cancel_current()

    @contextmanager
    def quiescent(self) -> Iterator[RankingEngine]:
        """Hold the coordination lock with all background work cancelled.

        Example:
            >>> with engine.quiescent():
            ...     var.alias = "Income (USD)"
        """
        with self._lock:
            self._cancel_current()
            yield self

    def close(self) -> None:
        self.cancel()

    # ------------------------------------------------------------------ column management
    def add_column(self, variable: Variable) -> int:
        """Add a column; returns its index (-1 for variables excluded from the calculations).

        While unsorted the column goes to its natural position, otherwise it is appended and
        placed by :meth:`sort_column`.
        """
        with self._lock:
            if not variable.include:
                return -1
            idx = self.column_index(variable)
            if idx != -1:
                return idx
            progress = self.sort_progress()
            self._cancel_current()
            variable.column = True
            if self._sort_var is None:
                pos = self._insert_natural(variable)
                self._restore_natural_order()
                return pos
            self._entries = [*self._entries, ColumnScore(variable)]
            self._sort_column(variable, progress)
            return len(self._entries) - 1

    def add_columns(self, variables: Iterable[Variable]) -> None:
        with self._lock:
            new: list[Variable] = []
            for var in variables:
                if var.include and self.column_index(var) == -1 and all(var is not v for v in new):
                    new.append(var)
            if not new:
                return
            self._cancel_current()
            for var in new:
                var.column = True
                if self._sort_var is None:
                    self._insert_natural(var)
                else:
                    self._entries = [*self._entries, ColumnScore(var)]
            if self._sort_var is None:
                self._restore_natural_order()
            else:
                self._launch_score_pool(clear=False)
                self._start_reorder(SortAlgorithm.QUICKSORT)

    def remove_column(self, variable: Variable) -> None:
        self.remove_columns([variable])

    def remove_columns(self, variables: Iterable[Variable], exclude: Variable | None = None) -> None:
        """Remove columns (except ``exclude``); an interrupted ranking is resumed afterwards."""
        with self._lock:
            targets = {id(var) for var in variables if var is not exclude and self.column_index(var) != -1}
            if not targets:
                return
            was_sorting = self.sorting()
            self._cancel_current()
            kept = []
            for entry in self._entries:
                if id(entry.variable) in targets:
                    entry.variable.column = False
                else:
                    kept.append(entry)
            self._entries = kept
            if self._sort_var is None:
                self._restore_natural_order()
            elif was_sorting:
                self._launch_score_pool(clear=False)
                self._start_reorder(SortAlgorithm.QUICKSORT)

    def _insert_natural(self, variable: Variable) -> int:
        """Insert a column at its natural position and return that position."""
        ridx = self._dataset.variable_index(variable)
        pos = sum(self._dataset.variable_index(entry.variable) < ridx for entry in self._entries)
        entries = list(self._entries)
        entries.insert(pos, ColumnScore(variable))
        self._entries = entries
        return pos

    def _restore_natural_order(self) -> None:
        """Relaunch the natural reorder when a cancelled unsort left the columns in score order."""
        index = self._dataset.variable_index
        entries = self._entries
        if any(index(a.variable) > index(b.variable) for a, b in zip(entries, entries[1:])):
            self._start_reorder(SortAlgorithm.QUICKSORT, natural=True)

    # ------------------------------------------------------------------ background work
    def _request(self) -> _SortRequest:
        if self._sort_var is None:
            raise ValueError("Background scoring requires a sort key.")
        return _SortRequest(self._sort_var, self._ranges.copy(), self._p_value, self._missing_threshold)

    def _cancel_current(self) -> None:
        """Signal cancellation and wait for quiescence. Caller holds the coordination lock."""
        self._cancel.set()
        pool = self._pool
        if pool is not None:
            if any(not f.done() for f in self._futures):
                logger.debug("suspending_scoring")
            pool.shutdown(wait=True, cancel_futures=True)
            self._pool = None
        thread = self._reorder
        if thread is not None:
            if thread.is_alive():
                logger.debug("suspending_sorting")
            thread.join()
            self._reorder = None
        self._futures = []
        self._cancel.clear()

    def _launch_score_pool(self, clear: bool) -> None:
        self._threaded = True
        if clear:
            for entry in self._entries:
                entry.score = None
        request = self._request()
        pending = [entry for entry in self._entries if not entry.computed]
        pool = ThreadPoolExecutor(max_workers=self.config.worker_count, thread_name_prefix="deprank-score")
        self._futures = [pool.submit(self._score_task, entry, request) for entry in pending]
        pool.shutdown(wait=False)
        self._pool = pool

    def _score_task(self, entry: ColumnScore, request: _SortRequest) -> None:
        if self._cancel.is_set():
            return
        try:
            value = self._compute_score(entry.variable, request)
        except ScoringCancelled:
            return
        if not self._cancel.is_set():
            entry.score = value

    def _compute_score(self, variable: Variable, request: _SortRequest) -> float:
        try:
            return self._scorer.score_pair(
                self._dataset,
                variable,
                request.key,
                request.ranges,
                p_value=request.p_value,
                missing_threshold=request.missing_threshold,
                cancel=self._cancel,
            )
        except ScoringCancelled:
            raise
        except Exception:
            logger.exception("score_failed", column=variable.name, reference=request.key.name)
            return 0.0

    def _start_reorder(self, algorithm: SortAlgorithm, natural: bool = False) -> None:
        request = None if natural else self._request()
        thread = threading.Thread(
            target=self._run_reorder,
            args=(algorithm, list(self._futures), request),
            name="deprank-reorder",
            daemon=True,
        )
        self._reorder = thread
        thread.start()

    def _run_reorder(self, algorithm: SortAlgorithm, futures: list[Future], request: _SortRequest | None) -> None:
        await_futures(futures)
        if self._cancel.is_set():
            return
        entries = list(self._entries)
        key = self._natural_key() if request is None else self._score_key(request)
        sorter = quicksort if algorithm == SortAlgorithm.QUICKSORT else insertion_sort
        try:
            sorter(entries, key, self._cancel)
            for entry in entries:
                key(entry)
        except (_ReorderCancelled, ScoringCancelled):
            return
        except Exception:
            logger.exception("reorder_failed", algorithm=algorithm.value)
            return
        if self._cancel.is_set():
            return
        self._entries = entries
        logger.debug("sort_finished", algorithm=algorithm.value, columns=len(entries))

    def _natural_key(self) -> Callable[[ColumnScore], float]:
        count = max(1, self._dataset.variable_count)

        def key(entry: ColumnScore) -> float:
            return 1.0 - self._dataset.variable_index(entry.variable) / count

        return key

    def _score_key(self, request: _SortRequest) -> Callable[[ColumnScore], float]:
        def key(entry: ColumnScore) -> float:
            if entry.score is None:
                # Inline fallback for scores the pool did not provide.
                value = self._compute_score(entry.variable, request)
                if self._cancel.is_set():
                    raise _ReorderCancelled
                entry.score = value
                self._inline_count += 1
            return entry.score

        return key
