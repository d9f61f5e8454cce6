"""Normalized dependency score between two variables."""

from __future__ import annotations

import math
import threading

import numpy as np

from deprank.data.dataset import Dataset
from deprank.data.ranges import DataRanges
from deprank.data.slices import DataSlice2D
from deprank.data.variables import Variable
from deprank.utils.config import DEFAULT_CONFIG, RankingConfig

from .bin_optimizer import DEFAULT_BIN_OPTIMIZER, BinOptimizer
from .dependency_test import DependencyTester, ScoringCancelled, check_cancelled
from .information import joint_entropy, mutual_information


__all__ = ["ScoringCancelled", "SimilarityScorer", "comparable"]


def comparable(varx: Variable, vary: Variable) -> bool:
    """Weight variables are never compared, nor two subsample variables with each other."""
    return not (varx.weight() or vary.weight() or (varx.subsample() and vary.subsample()))


class SimilarityScorer:
    r"""Score the dependency of a variable pair in ``[0, 1]``.

    The score is the mutual information normalized by the joint entropy,
    :math:`I(X;Y) / H(X,Y)`, over an optimally binned joint histogram. It is 0 whenever the
    pair is not comparable, the MI is not finite, the dependency test reports independence or
    the joint entropy vanishes.

    Example:
        >>> scorer = SimilarityScorer(RankingConfig(dep_test="GAMMA_TEST"))
        >>> scorer.score(ds.slice_2d(ds.get_variable("x"), ds.get_variable("y")))
    """

    def __init__(
        self,
        config: RankingConfig = DEFAULT_CONFIG,
        bin_optimizer: BinOptimizer = DEFAULT_BIN_OPTIMIZER,
        tester: DependencyTester | None = None,
    ) -> None:
        self.config = config
        self.bin_optimizer = bin_optimizer
        self.tester = tester or DependencyTester(bin_optimizer)

    def score(
        self,
        sl: DataSlice2D,
        p_value: float | None = None,
        *,
        rng: np.random.Generator | None = None,
        cancel: threading.Event | None = None,
    ) -> float:
        """Dependency score of a 2D slice.

        Args:
            sl: Paired samples.
            p_value: Significance level (defaults to the configured one).
            rng: Random generator for surrogates (seeded from the config when omitted).
            cancel: Cancellation event; checked between the steps of the computation.

        Raises:
            ScoringCancelled: If ``cancel`` gets set before the score is complete.
        """
        if not comparable(sl.varx, sl.vary):
            return 0.0
        p_value = self.config.p_value if p_value is None else p_value
        rng = rng or np.random.default_rng(self.config.seed)

        check_cancelled(cancel)
        bins = self.bin_optimizer.optimal_bins_2d(sl)
        check_cancelled(cancel)
        mi = mutual_information(sl, *bins, self.bin_optimizer.max_hist_samples)
        if self.tester.is_independent(
            sl,
            mi,
            p_value,
            self.config.dep_test,
            bins=bins,
            surrogate_count=self.config.surrogate_count,
            threshold=self.config.threshold,
            rng=rng,
            cancel=cancel,
        ):
            return 0.0

        hxy = joint_entropy(sl, *bins, self.bin_optimizer.max_hist_samples)
        if not math.isfinite(hxy) or math.isclose(hxy, 0.0, abs_tol=1e-12):
            return 0.0
        w = mi / hxy
        if math.isnan(w):
            return 0.0
        return min(1.0, max(0.0, w))

    def score_pair(
        self,
        dataset: Dataset,
        varx: Variable,
        vary: Variable,
        ranges: DataRanges | None = None,
        *,
        p_value: float | None = None,
        missing_threshold: float | None = None,
        cancel: threading.Event | None = None,
    ) -> float:
        """Extract the slice of a pair and score it.

        Pairs whose missing fraction reaches ``missing_threshold`` score 0 without running the
        estimator.
        """
        missing_threshold = self.config.missing_threshold if missing_threshold is None else missing_threshold
        sl = dataset.slice_2d(varx, vary, ranges)
        if not sl.missing < missing_threshold:
            return 0.0
        return self.score(sl, p_value, cancel=cancel)
