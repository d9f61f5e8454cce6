r"""Optimal histogram bin counts following Shimazaki and Shinomoto.

The number of bins minimizes the estimated L2 risk of the histogram

.. math:: c(n) = \frac{2\bar{k} - v}{N^2 \Delta^2}

where :math:`\bar{k}` and :math:`v` are the mean and the *biased* variance of the bin counts,
:math:`N` the sample size and :math:`\Delta` the bin width (bin area in 2D). See
[Shimazaki & Shinomoto (2007)](http://toyoizumilab.brain.riken.jp/hideaki/res/histogram.html).

The search is deliberately approximate: the candidate grid, the histogram samples and the
resolution estimate are all stride-subsampled, bounded by the ceilings of :class:`BinOptimizer`.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from deprank.data.slices import DataSlice1D, DataSlice2D
from deprank.utils.logging import get_logger


logger = get_logger(__name__)

MAX_SEARCH_SAMPLE_SIZE = 1000
"""Maximum number of candidate bin counts evaluated per search."""
MAX_HIST_BINS = 100
"""Maximum number of bins per variable (bounds the resolution from below at 1/100)."""
MAX_RES_SAMPLE_SIZE = 10
"""Number of values sampled when searching for the minimum gap between values."""
MAX_HIST_SAMPLE_SIZE = 10000
"""Maximum number of samples used to build a histogram."""


def _stride(size: int, ceiling: int) -> int:
    return max(1, size // ceiling)


def histogram_1d(x: np.ndarray, w: np.ndarray, bins: int, max_samples: int = MAX_HIST_SAMPLE_SIZE) -> np.ndarray:
    """Weighted counts of normalized values over ``bins`` equal bins of ``[0, 1]``."""
    step = _stride(len(x), max_samples)
    idx = np.clip((x[::step] * bins).astype(np.int64), 0, bins - 1)
    return np.bincount(idx, weights=w[::step], minlength=bins).astype(float)


def histogram_2d(
    x: np.ndarray,
    y: np.ndarray,
    w: np.ndarray,
    bins_x: int,
    bins_y: int,
    max_samples: int = MAX_HIST_SAMPLE_SIZE,
) -> np.ndarray:
    """Weighted joint counts over a ``bins_x`` x ``bins_y`` grid of the unit square."""
    step = _stride(len(x), max_samples)
    ix = np.clip((x[::step] * bins_x).astype(np.int64), 0, bins_x - 1)
    iy = np.clip((y[::step] * bins_y).astype(np.int64), 0, bins_y - 1)
    flat = np.bincount(ix * bins_y + iy, weights=w[::step], minlength=bins_x * bins_y)
    return flat.reshape(bins_x, bins_y).astype(float)


def counts_mean_var(counts: np.ndarray) -> tuple[float, float]:
    """Mean and biased (population) variance of bin counts.

    The estimator divides by ``n``, not ``n - 1``: the cost function is derived for it.
    """
    mean = float(counts.mean())
    var = max(0.0, float(np.mean(counts * counts)) - mean * mean)
    return mean, var


def resolution(values: np.ndarray, max_samples: int = MAX_RES_SAMPLE_SIZE, max_bins: int = MAX_HIST_BINS) -> float:
    """Smallest positive gap between a few sampled values and all values, at least ``1/max_bins``."""
    res = np.inf
    for v in values[:: _stride(len(values), max_samples)]:
        diff = np.abs(values - v)
        positive = diff[diff > 0]
        if positive.size:
            res = min(res, float(positive.min()))
    return max(res, 1.0 / max_bins)


@dataclass(frozen=True)
class BinOptimizer:
    """Data-driven bin counts for 1D and 2D slices.

    The ceilings trade accuracy for speed on large tables and can be tuned per instance.

    Attributes:
        max_search_samples: Candidate bin counts evaluated at most (stride-subsampled beyond).
        max_hist_bins: Upper bound on bins per variable.
        max_res_samples: Values sampled to estimate the data resolution.
        max_hist_samples: Samples used to build each candidate histogram.
    """

    max_search_samples: int = MAX_SEARCH_SAMPLE_SIZE
    max_hist_bins: int = MAX_HIST_BINS
    max_res_samples: int = MAX_RES_SAMPLE_SIZE
    max_hist_samples: int = MAX_HIST_SAMPLE_SIZE

    def bin_limits(self, values: np.ndarray, count: int, categorical: bool, size_cap: int) -> tuple[int, int]:
        """Range ``[min, max]`` of candidate bin counts for one dimension.

        Categorical dimensions and dimensions with fewer than 5 distinct values are fixed to
        their distinct-value count.
        """
        if categorical or count < 5:
            return count, count
        res = resolution(values, self.max_res_samples, self.max_hist_bins)
        return 2, min(int(1.0 / res) + 1, count, size_cap)

    def optimal_bins_1d(self, sl: DataSlice1D) -> int:
        """Bin count minimizing the histogram cost of a 1D slice."""
        if sl.varx.categorical():
            return max(1, sl.countx)

        size = len(sl)
        min_bins, max_bins = self.bin_limits(sl.x, sl.countx, False, size // 2)
        num_values = max_bins - min_bins + 1
        if min_bins <= 0 or max_bins <= 0 or num_values <= 0:
            logger.debug("bin_limits_invalid", variable=sl.varx.name, limits=(min_bins, max_bins))
            return 1

        best_n = (min_bins + max_bins) // 2
        best_c = np.inf
        for i in range(0, num_values, _stride(num_values, self.max_search_samples)):
            n = min_bins + i
            k, v = counts_mean_var(histogram_1d(sl.x, sl.w, n, self.max_hist_samples))
            c = (2 * k - v) * n * n / (size * size)
            if c < best_c:
                best_c, best_n = c, n
        return best_n

    def optimal_bins_2d(self, sl: DataSlice2D) -> tuple[int, int]:
        """Pair of bin counts minimizing the joint histogram cost of a 2D slice."""
        if sl.varx.categorical() and sl.vary.categorical():
            return max(1, sl.countx), max(1, sl.county)

        size = len(sl)
        sqsize = int(np.sqrt(size / 2))
        min_x, max_x = self.bin_limits(sl.x, sl.countx, sl.varx.categorical(), sqsize)
        min_y, max_y = self.bin_limits(sl.y, sl.county, sl.vary.categorical(), sqsize)
        len_x = max_x - min_x + 1
        len_y = max_y - min_y + 1
        if min(min_x, max_x, len_x, min_y, max_y, len_y) <= 0:
            logger.debug(
                "bin_limits_invalid",
                x=sl.varx.name,
                y=sl.vary.name,
                limits_x=(min_x, max_x),
                limits_y=(min_y, max_y),
            )
            return 1, 1

        num_values = len_x * len_y
        best = ((min_x + max_x) // 2, (min_y + max_y) // 2)
        best_c = np.inf
        for i in range(0, num_values, _stride(num_values, self.max_search_samples)):
            nx = i // len_y + min_x
            ny = i % len_y + min_y
            counts = histogram_2d(sl.x, sl.y, sl.w, nx, ny, self.max_hist_samples)
            k, v = counts_mean_var(counts)
            area = 1.0 / (nx * ny)
            c = (2 * k - v) / (size * size * area * area)
            if c < best_c:
                best_c, best = c, (nx, ny)
        return best


DEFAULT_BIN_OPTIMIZER = BinOptimizer()
