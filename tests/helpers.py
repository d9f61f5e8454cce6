"""Slice builders shared by the estimator tests."""

import numpy as np

from deprank.data.slices import DataSlice2D, distinct_count
from deprank.data.variables import Variable, VariableKind


def numerical(name: str = "x", index: int = 0) -> Variable:
    return Variable(name=name, index=index, kind=VariableKind.NUMERICAL)


def categorical(name: str, k: int, index: int = 0) -> Variable:
    return Variable(name=name, index=index, kind=VariableKind.CATEGORICAL, categories=tuple(range(k)))


def category_values(codes: np.ndarray, k: int) -> np.ndarray:
    """Normalized values of category codes."""
    return (np.asarray(codes, dtype=float) + 0.5) / k


def make_slice(
    x: np.ndarray,
    y: np.ndarray,
    varx: Variable | None = None,
    vary: Variable | None = None,
    w: np.ndarray | None = None,
) -> DataSlice2D:
    varx = varx or numerical("x", 0)
    vary = vary or numerical("y", 1)
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    return DataSlice2D(
        varx=varx,
        vary=vary,
        x=x,
        y=y,
        w=np.ones(len(x)) if w is None else np.asarray(w, dtype=float),
        countx=distinct_count(varx, x),
        county=distinct_count(vary, y),
        missing=0.0,
    )
