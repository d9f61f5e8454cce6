"""Discrete mutual information and joint entropy of binned 2D slices (in nats)."""

from __future__ import annotations

import numpy as np
from scipy.special import rel_entr
from scipy.stats import entropy

from deprank.data.slices import DataSlice2D

from .bin_optimizer import MAX_HIST_SAMPLE_SIZE, histogram_2d


def joint_probabilities(
    sl: DataSlice2D,
    bins_x: int,
    bins_y: int,
    max_samples: int = MAX_HIST_SAMPLE_SIZE,
) -> np.ndarray | None:
    """Normalized weighted joint histogram, or ``None`` when the slice carries no mass."""
    if len(sl) == 0:
        return None
    counts = histogram_2d(sl.x, sl.y, sl.w, bins_x, bins_y, max_samples)
    total = counts.sum()
    if not total > 0:
        return None
    return counts / total


def mutual_information(
    sl: DataSlice2D,
    bins_x: int,
    bins_y: int,
    max_samples: int = MAX_HIST_SAMPLE_SIZE,
) -> float:
    r"""Plug-in mutual information :math:`I(X;Y) = \sum p_{xy} \log \frac{p_{xy}}{p_x p_y}`.

    Empty bins contribute 0. An empty or weightless slice yields NaN, left for the caller to
    treat as undecidable.
    """
    pxy = joint_probabilities(sl, bins_x, bins_y, max_samples)
    if pxy is None:
        return float("nan")
    px = pxy.sum(axis=1, keepdims=True)
    py = pxy.sum(axis=0, keepdims=True)
    return float(np.sum(rel_entr(pxy, px * py)))


def joint_entropy(
    sl: DataSlice2D,
    bins_x: int,
    bins_y: int,
    max_samples: int = MAX_HIST_SAMPLE_SIZE,
) -> float:
    r"""Joint entropy :math:`H(X,Y) = -\sum p_{xy} \log p_{xy}`; NaN for an empty slice."""
    pxy = joint_probabilities(sl, bins_x, bins_y, max_samples)
    if pxy is None:
        return float("nan")
    return float(entropy(pxy.ravel()))
