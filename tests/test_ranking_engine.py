"""Tests for the concurrent ranking engine."""

import threading
import time

import numpy as np
import pandas as pd
import pytest

from deprank.analysis import ranking
from deprank.analysis.dependency_test import check_cancelled
from deprank.analysis.ranking import (
    RankingEngine,
    SortState,
    _ReorderCancelled,
    insertion_sort,
    quicksort,
)
from deprank.analysis.similarity import SimilarityScorer
from deprank.data.dataset import Dataset
from deprank.data.ranges import DataRanges, NumericRange
from deprank.utils.config import RankingConfig


class SlowScorer(SimilarityScorer):
    """Scorer that spends a fixed time per pair while honouring cancellation."""

    def __init__(self, config: RankingConfig, delay: float = 0.05, fail_on: str | None = None) -> None:
        super().__init__(config)
        self.delay = delay
        self.fail_on = fail_on
        self.calls: list[str] = []
        self._calls_lock = threading.Lock()

    def score_pair(self, dataset, varx, vary, ranges=None, *, p_value=None, missing_threshold=None, cancel=None):
        with self._calls_lock:
            self.calls.append(varx.name)
        if varx.name == self.fail_on:
            raise RuntimeError("boom")
        deadline = time.monotonic() + self.delay
        while time.monotonic() < deadline:
            check_cancelled(cancel)
            time.sleep(0.002)
        return super().score_pair(
            dataset,
            varx,
            vary,
            ranges,
            p_value=p_value,
            missing_threshold=missing_threshold,
            cancel=cancel,
        )


def _names(variables) -> list[str]:
    return [var.name for var in variables]


def _ranking(entries) -> list[tuple[float, str]]:
    """Entries ordered by score, with ties broken by name."""
    return sorted(((score, var.name) for var, score in entries), key=lambda item: (-item[0], item[1]))


def _assert_non_increasing(engine: RankingEngine) -> None:
    scores = [score for _, score in engine.entries()]
    assert all(score is not None for score in scores)
    assert all(a >= b for a, b in zip(scores, scores[1:]))


class TestSortAlgorithms:
    """Test the cancellable in-place sorts."""

    def test_quicksort_descending(self) -> None:
        """Test quicksort orders by decreasing key."""
        values = list(np.random.default_rng(0).uniform(0, 1, 200))
        quicksort(values, float, threading.Event())
        assert values == sorted(values, reverse=True)

    def test_quicksort_many_ties(self) -> None:
        """Test long runs of equal keys do not recurse deeply."""
        values = [0.0] * 1500 + [1.0]
        quicksort(values, float, threading.Event())
        assert values[0] == 1.0 and values[1:] == [0.0] * 1500

    def test_insertion_sort_is_stable(self) -> None:
        """Test ties keep their original order."""
        items = [(0.5, "a"), (0.9, "b"), (0.5, "c"), (0.1, "d"), (0.9, "e")]
        insertion_sort(items, lambda item: item[0], threading.Event())
        assert [tag for _, tag in items] == ["b", "e", "a", "c", "d"]

    def test_sorts_observe_cancellation(self) -> None:
        """Test a set event aborts both sorts."""
        cancel = threading.Event()
        cancel.set()
        for sorter in (quicksort, insertion_sort):
            with pytest.raises(_ReorderCancelled):
                sorter([0.1, 0.5, 0.3], float, cancel)


class TestRankingEngine:
    """Test RankingEngine state transitions and ordering."""

    @pytest.fixture
    def engine(self, mixed_dataset: Dataset, gamma_config: RankingConfig):
        engine = RankingEngine(mixed_dataset, gamma_config)
        yield engine
        engine.close()

    @pytest.fixture
    def slow_engine(self, mixed_dataset: Dataset, gamma_config: RankingConfig):
        engine = RankingEngine(mixed_dataset, gamma_config, scorer=SlowScorer(gamma_config))
        yield engine
        engine.close()

    def test_initial_state(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test a new engine lists the included variables unsorted."""
        assert engine.columns() == mixed_dataset.included_variables()
        assert "name" not in _names(engine.columns())
        assert engine.state == SortState.UNSORTED
        assert engine.unsorted() and not engine.sorting()
        assert engine.sort_progress() == 0.0
        assert all(score is None for _, score in engine.entries())
        assert all(var.column for var in engine.columns())

    def test_sort_orders_by_score(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test sorting computes every score and orders them non-increasingly."""
        x = mixed_dataset.get_variable("x")
        engine.sort(x)
        engine.wait()
        assert engine.state == SortState.SORTED
        assert engine.sorted() and engine.sort_key() is x and x.sort_key
        assert engine.sort_progress() == 1.0
        _assert_non_increasing(engine)
        assert set(_names(engine.columns()[:2])) == {"x", "y"}
        assert engine.score(mixed_dataset.get_variable("quad")) > 0.0
        assert engine.column_count == len(mixed_dataset.included_variables())

    def test_sort_is_idempotent(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test sorting twice with the same parameters gives the same ranking."""
        x = mixed_dataset.get_variable("x")
        engine.sort(x)
        engine.wait()
        first = {var.name: score for var, score in engine.entries()}
        first_scores = [score for _, score in engine.entries()]
        engine.sort(x)
        engine.wait()
        assert {var.name: score for var, score in engine.entries()} == first
        assert [score for _, score in engine.entries()] == first_scores

    def test_changing_sort_key(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test switching the reference variable moves the key flag."""
        x, quad = mixed_dataset.get_variable("x"), mixed_dataset.get_variable("quad")
        engine.sort(x)
        engine.sort(quad)
        engine.wait()
        assert not x.sort_key and quad.sort_key
        assert engine.columns()[0] is quad
        _assert_non_increasing(engine)

    def test_sort_ignores_excluded_variables(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test string variables cannot become the reference variable."""
        engine.sort(mixed_dataset.get_variable("name"))
        assert engine.state == SortState.UNSORTED

    def test_unsort_restores_natural_order(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test unsorting drops the key and restores the dataset order."""
        x = mixed_dataset.get_variable("noise")
        engine.sort(x)
        engine.wait()
        engine.unsort()
        engine.wait()
        assert engine.state == SortState.UNSORTED
        assert not x.sort_key
        assert engine.columns() == mixed_dataset.included_variables()

    def test_stop_sorting_keeps_order(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test stopping keeps the current order but drops the key."""
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        order = engine.columns()
        engine.stop_sorting()
        assert engine.unsorted()
        assert engine.columns() == order

    def test_resort_ranges_recomputes_inline(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test a filter change recomputes the scores during an insertion reorder."""
        x = mixed_dataset.get_variable("x")
        engine.sort(x)
        engine.wait()
        before = {var.name: score for var, score in engine.entries()}
        engine.resort_ranges(DataRanges([NumericRange(x, 5.0, 10.0)]))
        engine.wait()
        assert len(engine.ranges) == 1
        assert engine.sort_progress() == 1.0
        _assert_non_increasing(engine)
        after = {var.name: score for var, score in engine.entries()}
        assert after["quad"] != before["quad"]

    def test_resort_parameters(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test changing the p-value and missing threshold re-ranks."""
        engine.sort(mixed_dataset.get_variable("x"))
        engine.resort_parameters(0.01, 0.5)
        engine.wait()
        assert (engine.p_value, engine.missing_threshold) == (0.01, 0.5)
        _assert_non_increasing(engine)
        with pytest.raises(ValueError):
            engine.resort_parameters(0.0, 0.5)

    def test_resort_without_key_is_noop(self, engine: RankingEngine) -> None:
        """Test resorting an unsorted engine does nothing."""
        engine.resort()
        engine.resort_ranges(DataRanges())
        assert engine.state == SortState.UNSORTED
        assert all(score is None for _, score in engine.entries())

    def test_profile(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test the score table follows the column order."""
        profile = engine.profile()
        assert list(profile.columns) == ["name", "alias", "score"]
        assert profile["score"].isna().all()
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        subset = engine.profile([mixed_dataset.get_variable("quad"), mixed_dataset.get_variable("x")])
        assert list(subset["name"]) == ["x", "quad"]
        assert subset["score"].iloc[0] > 0.5

    def test_score_lookup(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test score access by variable and position."""
        with pytest.raises(KeyError):
            engine.score(mixed_dataset.get_variable("name"))
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        assert engine.score_at(0) == engine.score(engine.column(0))

    def test_column_management_unsorted(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test removed columns come back at their natural position."""
        quad = mixed_dataset.get_variable("quad")
        natural = mixed_dataset.included_variables()
        engine.remove_column(quad)
        assert quad not in engine.columns() and not quad.column
        assert engine.add_column(quad) == natural.index(quad)
        assert engine.columns() == natural
        assert engine.add_column(quad) == natural.index(quad)
        assert engine.add_column(mixed_dataset.get_variable("name")) == -1

    def test_remove_columns_with_exclude(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test bulk removal keeps the excluded variable."""
        x, noise = mixed_dataset.get_variable("x"), mixed_dataset.get_variable("noise")
        engine.remove_columns(mixed_dataset.included_variables(), exclude=x)
        assert engine.columns() == [x]
        engine.add_columns([noise, x, noise])
        assert engine.columns() == [x, noise]

    def test_add_columns_while_sorted(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test columns added to a sorted engine are scored and placed."""
        quad, when = mixed_dataset.get_variable("quad"), mixed_dataset.get_variable("when")
        engine.remove_columns([quad, when])
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        engine.add_columns([quad, when])
        engine.wait()
        assert engine.column_count == len(mixed_dataset.included_variables())
        _assert_non_increasing(engine)

    def test_resort_is_idempotent(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test resorting twice with a reference variable keeps scores and order."""
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        engine.resort()
        engine.wait()
        first = engine.entries()
        engine.resort()
        engine.wait()
        second = engine.entries()
        assert engine.sorted()
        assert dict(second) == dict(first)
        assert [score for _, score in second] == [score for _, score in first]
        assert _ranking(second) == _ranking(first)

    def test_add_column_to_sorted_engine_uses_insertion(
        self,
        engine: RankingEngine,
        mixed_dataset: Dataset,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a column added after the ranking finished is placed by an insertion reorder."""
        used = []

        def recording_insertion_sort(items, key, cancel):
            used.append(len(items))
            insertion_sort(items, key, cancel)

        monkeypatch.setattr(ranking, "insertion_sort", recording_insertion_sort)
        x, quad = mixed_dataset.get_variable("x"), mixed_dataset.get_variable("quad")
        engine.remove_column(quad)
        engine.sort(x)
        engine.wait()
        assert engine.sort_progress() == 1.0
        engine.add_column(quad)
        engine.wait()
        assert used == [len(mixed_dataset.included_variables())]
        assert _names(engine.columns()).count("quad") == 1
        assert engine.score(quad) > 0.0
        _assert_non_increasing(engine)

    def test_column_change_after_interrupted_unsort(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test adding or removing columns while unsorted brings back the natural order."""
        quad, noise = mixed_dataset.get_variable("quad"), mixed_dataset.get_variable("noise")
        engine.remove_column(quad)
        engine.sort(mixed_dataset.get_variable("noise"))
        engine.wait()
        engine.stop_sorting()
        assert engine.columns()[0] is noise
        natural = mixed_dataset.included_variables()
        assert engine.add_column(quad) == natural.index(quad)
        engine.wait()
        assert engine.columns() == natural

        engine.sort(noise)
        engine.wait()
        engine.unsort()
        engine.remove_column(quad)
        engine.wait()
        assert engine.columns() == [var for var in natural if var is not quad]

    def test_sort_column_requires_key(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test placing a column is a no-op while unsorted."""
        engine.sort_column(mixed_dataset.get_variable("x"))
        assert not engine.sorting()

    def test_background_scoring_requires_key(self, engine: RankingEngine) -> None:
        """Test launching score workers without a reference variable is rejected."""
        with pytest.raises(ValueError, match="sort key"):
            engine._launch_score_pool(clear=True)

    def test_worker_failure_scores_zero(self, mixed_dataset: Dataset, gamma_config: RankingConfig) -> None:
        """Test an exception in one score does not abort the ranking."""
        engine = RankingEngine(mixed_dataset, gamma_config, scorer=SlowScorer(gamma_config, delay=0, fail_on="quad"))
        engine.sort(mixed_dataset.get_variable("x"))
        engine.wait()
        engine.close()
        assert engine.score(mixed_dataset.get_variable("quad")) == 0.0
        _assert_non_increasing(engine)


class TestRankingEngineConcurrency:
    """Test cancellation and concurrent mutation of the ranking engine."""

    @pytest.fixture
    def scorer(self, gamma_config: RankingConfig) -> SlowScorer:
        return SlowScorer(gamma_config, delay=0.05)

    @pytest.fixture
    def engine(self, mixed_dataset: Dataset, gamma_config: RankingConfig, scorer: SlowScorer):
        engine = RankingEngine(mixed_dataset, gamma_config, scorer=scorer)
        yield engine
        engine.close()

    def test_cancel_reaches_quiescence(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test no score is written after cancel() returns and the column list stays whole."""
        columns = engine.columns()
        engine.sort(mixed_dataset.get_variable("x"))
        assert engine.sorting()
        engine.cancel()
        assert not engine.sorting()
        snapshot = engine.entries()
        time.sleep(0.2)
        assert engine.entries() == snapshot
        assert sorted(_names(engine.columns())) == sorted(_names(columns))

    def test_quiescent_context(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test the quiescent context cancels work and holds the lock."""
        engine.sort(mixed_dataset.get_variable("x"))
        with engine.quiescent() as quiet:
            assert quiet is engine
            assert not engine.sorting()
            mixed_dataset.get_variable("quad").alias = "Quadratic"
        assert engine.profile([mixed_dataset.get_variable("quad")])["alias"].iloc[0] == "Quadratic"

    def test_rapid_requests_leave_a_valid_ranking(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test interrupting sorts repeatedly never corrupts the column list."""
        names = sorted(_names(engine.columns()))
        for key in ("x", "quad", "noise", "x"):
            engine.sort(mixed_dataset.get_variable(key))
            time.sleep(0.01)
            assert sorted(_names(engine.columns())) == names
        engine.wait()
        assert engine.sort_key().name == "x"
        _assert_non_increasing(engine)

    def test_progress_is_monotone(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test progress only increases during one sort and ends at 1."""
        engine.sort(mixed_dataset.get_variable("x"))
        samples = []
        while engine.sorting():
            samples.append(engine.sort_progress())
            time.sleep(0.005)
        samples.append(engine.sort_progress())
        assert samples == sorted(samples)
        assert samples[-1] == 1.0

    def test_add_column_during_sort(
        self,
        engine: RankingEngine,
        mixed_dataset: Dataset,
        gamma_config: RankingConfig,
    ) -> None:
        """Test a column added mid-sort appears exactly once with a fresh score."""
        x, quad = mixed_dataset.get_variable("x"), mixed_dataset.get_variable("quad")
        engine.remove_column(quad)
        engine.sort(x)
        time.sleep(0.02)
        assert engine.sorting()
        engine.add_column(quad)
        engine.wait()
        assert _names(engine.columns()).count("quad") == 1
        expected = SimilarityScorer(gamma_config).score_pair(mixed_dataset, quad, x, DataRanges())
        assert engine.score(quad) == pytest.approx(expected)
        _assert_non_increasing(engine)

    def test_remove_column_during_sort(self, engine: RankingEngine, mixed_dataset: Dataset) -> None:
        """Test removing a column mid-sort resumes the ranking without it."""
        noise = mixed_dataset.get_variable("noise")
        engine.sort(mixed_dataset.get_variable("x"))
        time.sleep(0.02)
        engine.remove_column(noise)
        engine.wait()
        assert noise not in engine.columns()
        assert engine.sorted()
        _assert_non_increasing(engine)
