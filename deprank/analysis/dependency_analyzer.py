"""Batch dependency analysis for dataset variables."""

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations
from typing import Self

import numpy as np
import pandas as pd

from deprank.data.dataset import Dataset
from deprank.data.ranges import DataRanges
from deprank.data.variables import Variable
from deprank.utils.config import DEFAULT_CONFIG, RankingConfig
from deprank.utils.logging import get_logger

from .base_analyser import BaseAnalyser
from .similarity import SimilarityScorer


logger = get_logger(__name__)


@dataclass(frozen=True)
class DependencyResult:
    """Dependency analysis outputs grouped for reporting.

    Attributes:
        target: Name of the reference variable, if one was configured.
        target_scores: DataFrame with columns `feature`, `alias`, `score` for
            feature-vs-target scores (sorted descending), or None without a target.
        matrix: Symmetric score matrix (rows/cols = analyzed variables), or None when only
            target scores were requested.
        feature_pairs: DataFrame with columns `feature_a`, `feature_b`, `score`, `pair`; sorted
            by strongest dependency. None together with `matrix`.
        pretty_by_col: Mapping from raw variable names to presentation labels.
    """

    target: str | None
    target_scores: pd.DataFrame | None
    matrix: pd.DataFrame | None
    feature_pairs: pd.DataFrame | None
    pretty_by_col: dict[str, str]


class DependencyAnalyzer(BaseAnalyser):
    """Non-interactive counterpart of the ranking engine.

    Scores every analyzed variable against a target (in parallel) and, on request, every
    pair of variables against each other.

    Example:
        >>> ds = Dataset.from_csv("survey.csv")
        >>> res = ds.make_dependency_analyzer(target="income").fit().result()
        >>> res.target_scores.head(10)
    """

    def __init__(
        self,
        dataset: Dataset,
        target: Variable | None = None,
        columns: Iterable[Variable] | None = None,
        ranges: DataRanges | None = None,
        config: RankingConfig | None = None,
        *,
        pairwise: bool = False,
        scorer: SimilarityScorer | None = None,
    ):
        """Initialize the analyzer; ``columns`` defaults to all included variables."""
        self._dataset = dataset
        self._target = target
        self._columns = [var for var in (columns or dataset.included_variables()) if var.include]
        self._ranges = ranges.copy() if ranges is not None else DataRanges()
        self.config = config or DEFAULT_CONFIG
        self._pairwise = pairwise or target is None
        self._scorer = scorer or SimilarityScorer(self.config)
        self._target_scores: pd.DataFrame | None = None
        self._matrix: pd.DataFrame | None = None

    def _score(self, varx: Variable, vary: Variable) -> float:
        return self._scorer.score_pair(self._dataset, varx, vary, self._ranges)

    def get_target_scores(self) -> pd.DataFrame:
        """Return the score of each analyzed variable against the target, strongest first.

        Raises:
            ValueError: If no target variable is configured.
        """
        if self._target is None:
            raise ValueError("Dependency analyzer has no target variable configured.")
        if self._target_scores is None:
            target = self._target
            features = [var for var in self._columns if var is not target]
            with ThreadPoolExecutor(max_workers=self.config.worker_count) as pool:
                scores = list(pool.map(lambda var: self._score(var, target), features))
            logger.info("target_scores_computed", target=target.name, features=len(features))
            self._target_scores = (
                pd.DataFrame(
                    {
                        "feature": [var.name for var in features],
                        "alias": [var.pretty_name for var in features],
                        "score": scores,
                    }
                )
                .sort_values("score", ascending=False, kind="stable")
                .reset_index(drop=True)
            )
        return self._target_scores

    def get_dependency_matrix(self) -> pd.DataFrame:
        """Compute the pairwise score matrix; the diagonal is 1."""
        if self._matrix is None:
            names = [var.name for var in self._columns]
            values = np.eye(len(names))
            pairs = list(combinations(range(len(self._columns)), 2))
            with ThreadPoolExecutor(max_workers=self.config.worker_count) as pool:
                scores = list(pool.map(lambda ij: self._score(self._columns[ij[0]], self._columns[ij[1]]), pairs))
            for (i, j), score in zip(pairs, scores, strict=True):
                values[i, j] = values[j, i] = score
            logger.info("dependency_matrix_computed", variables=len(names), pairs=len(pairs))
            self._matrix = pd.DataFrame(values, index=names, columns=names)
        return self._matrix

    def get_top_dependent_pairs(self, n: int = 20) -> pd.DataFrame:
        """Return the ``n`` most dependent variable pairs from the upper triangle of the matrix."""
        matrix = self.get_dependency_matrix()
        mask = np.triu(np.ones(matrix.shape, dtype=bool), k=1)

        return (
            matrix.where(mask)
            .melt(ignore_index=False, var_name="feature_b", value_name="score")
            .dropna()
            .reset_index()
            .rename(columns={"index": "feature_a"})
            .assign(pair=lambda d: d.feature_a + " vs " + d.feature_b)
            .sort_values("score", ascending=False, kind="stable")
            .head(n)
            .reset_index(drop=True)
        )

    def fit(self) -> Self:
        """Compute target scores and/or the pairwise matrix."""
        if self._target is not None:
            self.get_target_scores()
        if self._pairwise:
            self.get_dependency_matrix()
        return self

    def result(self, *, top_n_pairs: int = 20) -> DependencyResult:
        if self._target_scores is None and self._matrix is None:
            raise ValueError("Call fit() first")
        pretty = {var.name: var.pretty_name for var in self._columns}
        if self._target is not None:
            pretty[self._target.name] = self._target.pretty_name
        return DependencyResult(
            target=self._target.name if self._target is not None else None,
            target_scores=self._target_scores,
            matrix=self._matrix,
            feature_pairs=self.get_top_dependent_pairs(n=top_n_pairs) if self._matrix is not None else None,
            pretty_by_col=pretty,
        )
