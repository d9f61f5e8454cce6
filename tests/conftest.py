"""Test configuration for deprank."""

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest


# Ensure the local package is importable when the repo isn't installed.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def mixed_frame() -> pd.DataFrame:
    """Synthetic table with dependent, independent, categorical, date and text columns."""
    gen = np.random.default_rng(7)
    n = 300
    x = gen.uniform(0, 10, n)
    return pd.DataFrame(
        {
            "x": x,
            "y": x.copy(),
            "quad": (x - 5) ** 2 + gen.normal(0, 0.5, n),
            "noise": gen.uniform(0, 1, n),
            "group": gen.choice(["a", "b", "c", "d"], n),
            "when": pd.Timestamp("2020-01-01") + pd.to_timedelta(gen.integers(0, 365, n), unit="D"),
            "name": [f"id_{i}" for i in range(n)],
        },
    )


@pytest.fixture
def mixed_dataset(mixed_frame: pd.DataFrame):
    from deprank.data.dataset import Dataset

    return Dataset.from_frame(mixed_frame)


@pytest.fixture
def gamma_config():
    """Deterministic configuration (no random surrogates)."""
    from deprank.utils.config import RankingConfig

    return RankingConfig(dep_test="GAMMA_TEST", max_workers=2, seed=0)
