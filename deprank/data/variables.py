"""Variable descriptors: type classification, normalization and missing-value handling."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import StrEnum

import numpy as np
import pandas as pd


class VariableKind(StrEnum):
    """Type classification of a dataset column."""

    NUMERICAL = "numerical"
    CATEGORICAL = "categorical"
    DATE = "date"
    STRING = "string"

    @classmethod
    def parse(cls, name: str) -> VariableKind:
        """Parse a type name as written in dictionaries and codebooks.

        Raises:
            ValueError: If the name does not denote a known kind.
        """
        aliases = {
            "int": cls.NUMERICAL,
            "integer": cls.NUMERICAL,
            "long": cls.NUMERICAL,
            "float": cls.NUMERICAL,
            "double": cls.NUMERICAL,
            "number": cls.NUMERICAL,
            "category": cls.CATEGORICAL,
            "str": cls.STRING,
        }
        key = name.strip().lower()
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unsupported variable type '{name}'.") from None


class WeightRole(StrEnum):
    """Role of a variable in sample weighting."""

    NONE = "none"
    SAMPLE = "sample"
    SUBSAMPLE = "subsample"


@dataclass(eq=False)
class Variable:
    """Typed column descriptor.

    Variables are owned by a :class:`~deprank.data.dataset.Dataset` and compared by identity;
    the ranking engine only keeps references to them.

    Attributes:
        name: Column name in the underlying DataFrame.
        index: Position of the column in the dataset (natural order).
        kind: Type classification.
        alias: Human-readable name, falls back to ``name`` when empty.
        vmin: Lower bound of the value range (numerical and date variables, in numeric units).
        vmax: Upper bound of the value range.
        categories: Ordered category values (categorical variables only).
        weight_role: Whether this variable is itself a sample/subsample weight.
        weight_variable: Variable holding the weights to apply to this variable's samples.
        include: False for variables that never take part in the calculations (strings).
        column: True while the variable is one of the ranking engine's columns.
        sort_key: True while the variable is the ranking engine's reference variable.
    """

    name: str
    index: int
    kind: VariableKind
    alias: str = ""
    vmin: float = 0.0
    vmax: float = 1.0
    categories: tuple[Hashable, ...] = field(default_factory=tuple)
    weight_role: WeightRole = WeightRole.NONE
    weight_variable: Variable | None = None
    include: bool = True
    column: bool = False
    sort_key: bool = False

    def __post_init__(self) -> None:
        if self.kind == VariableKind.STRING:
            self.include = False

    def __repr__(self) -> str:
        return f"Variable(name={self.name!r}, kind={self.kind.value})"

    # ------------------------------------------------------------------ classification
    def categorical(self) -> bool:
        return self.kind == VariableKind.CATEGORICAL

    def numerical(self) -> bool:
        return self.kind in (VariableKind.NUMERICAL, VariableKind.DATE)

    def string(self) -> bool:
        return self.kind == VariableKind.STRING

    def weight(self) -> bool:
        """True if the variable is a sample (or subsample) weight."""
        return self.weight_role != WeightRole.NONE

    def subsample(self) -> bool:
        return self.weight_role == WeightRole.SUBSAMPLE

    @property
    def pretty_name(self) -> str:
        """Alias if set, otherwise the column name."""
        return self.alias or self.name

    @property
    def category_count(self) -> int:
        return len(self.categories)

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name or alias."""
        query = query.strip().lower()
        return bool(query) and (query in self.name.lower() or query in self.alias.lower())

    # ------------------------------------------------------------------ values
    def numeric_values(self, values: pd.Series) -> np.ndarray:
        """Convert raw column values to floats (NaN for missing).

        Dates are converted to nanoseconds since the epoch; categories to their codes.
        """
        if self.kind == VariableKind.DATE:
            stamps = pd.to_datetime(values, errors="coerce")
            out = stamps.to_numpy(dtype="datetime64[ns]").astype("int64").astype(float)
            out[stamps.isna().to_numpy()] = np.nan
            return out
        if self.kind == VariableKind.CATEGORICAL:
            codes = pd.Categorical(values, categories=list(self.categories)).codes.astype(float)
            codes[codes < 0] = np.nan
            return codes
        return pd.to_numeric(values, errors="coerce").to_numpy(dtype=float)

    def is_missing(self, values: pd.Series) -> np.ndarray:
        """Boolean mask of missing entries in raw column values."""
        if self.string():
            return values.isna().to_numpy()
        return np.isnan(self.numeric_values(values))

    def normalize(self, values: pd.Series | np.ndarray | float) -> np.ndarray:
        """Map raw values into ``[0, 1]``.

        Categorical value ``i`` of ``k`` maps to the centre of the ``i``-th of ``k`` equal bins,
        so that a ``k``-bin histogram recovers the categories exactly.
        """
        if self.categorical():
            codes = self.numeric_values(pd.Series(np.atleast_1d(values)))
            return (codes + 0.5) / max(1, self.category_count)
        if isinstance(values, pd.Series):
            arr = self.numeric_values(values)
        else:
            arr = np.atleast_1d(np.asarray(values, dtype=float))
        span = self.vmax - self.vmin
        if span <= 0:
            return np.where(np.isnan(arr), np.nan, 0.0)
        return np.clip((arr - self.vmin) / span, 0.0, 1.0)

    def denormalize(self, values: np.ndarray | float) -> np.ndarray:
        """Inverse of :meth:`normalize` (categories for categorical variables)."""
        arr = np.atleast_1d(np.asarray(values, dtype=float))
        if self.categorical():
            k = max(1, self.category_count)
            idx = np.clip((arr * k).astype(int), 0, k - 1)
            return np.asarray([self.categories[i] for i in idx], dtype=object)
        return self.vmin + arr * (self.vmax - self.vmin)

    def format_range(self) -> str:
        """Compact textual description of the value range."""
        if self.categorical():
            return ";".join(str(c) for c in self.categories)
        if self.kind == VariableKind.DATE:
            lo, hi = pd.to_datetime([self.vmin, self.vmax])
            return f"{lo.date()},{hi.date()}"
        if self.string():
            return ""
        return f"{self.vmin:g},{self.vmax:g}"
