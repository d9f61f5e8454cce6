"""Normalized, weighted sample sets extracted from a dataset."""

from __future__ import annotations

from dataclasses import dataclass, replace

import numpy as np

from .variables import Variable


@dataclass(frozen=True, eq=False)
class DataSlice1D:
    """Samples of one variable surviving the row filter and missing-value exclusion.

    Attributes:
        varx: Sliced variable.
        x: Normalized values in ``[0, 1]``.
        w: Sample weights (1 unless a weight variable is configured).
        countx: Number of distinct values (category count for categorical variables).
        missing: Fraction of filtered rows dropped because of missing values.
        labels: Optional label of each sample.
    """

    varx: Variable
    x: np.ndarray
    w: np.ndarray
    countx: int
    missing: float
    labels: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self.x)


@dataclass(frozen=True, eq=False)
class DataSlice2D:
    """Paired samples of two variables; see :class:`DataSlice1D` for the attributes."""

    varx: Variable
    vary: Variable
    x: np.ndarray
    y: np.ndarray
    w: np.ndarray
    countx: int
    county: int
    missing: float
    labels: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self.x)

    def shuffle(self, rng: np.random.Generator) -> DataSlice2D:
        """Surrogate slice with the ``y`` values permuted across samples.

        Marginals are preserved while any association between ``x`` and ``y`` is destroyed.
        """
        return replace(self, y=rng.permutation(self.y), labels=None)

    def subset(self, rows: np.ndarray) -> DataSlice2D:
        """Slice restricted to the samples at ``rows``, with distinct counts recomputed."""
        x, y = self.x[rows], self.y[rows]
        return replace(
            self,
            x=x,
            y=y,
            w=self.w[rows],
            countx=distinct_count(self.varx, x),
            county=distinct_count(self.vary, y),
            labels=None if self.labels is None else self.labels[rows],
        )

    def split(self, rng: np.random.Generator) -> tuple[DataSlice2D, DataSlice2D]:
        """Two disjoint random halves of the samples; the second one gets the odd sample."""
        rows = rng.permutation(len(self))
        half = len(rows) // 2
        return self.subset(rows[:half]), self.subset(rows[half:])


def distinct_count(variable: Variable, values: np.ndarray) -> int:
    """Observed distinct-value count, or the declared category count for categorical variables."""
    if variable.categorical():
        return variable.category_count
    return int(np.unique(values).size)
