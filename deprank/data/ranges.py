"""Row filters: per-variable inclusion predicates."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np
import pandas as pd

from .variables import Variable


class Range(Protocol):
    """Inclusion predicate over the values of one variable."""

    variable: Variable

    def mask(self, frame: pd.DataFrame) -> np.ndarray: ...

    def contains(self, value: Any) -> bool: ...


@dataclass(frozen=True)
class NumericRange:
    """Closed interval ``[low, high]`` in raw numeric units (ns since epoch for dates).

    Rows with a missing value in the variable are outside the range.
    """

    variable: Variable
    low: float
    high: float

    @classmethod
    def normalized(cls, variable: Variable, low: float, high: float) -> NumericRange:
        """Build a range from bounds given in normalized ``[0, 1]`` units."""
        lo, hi = variable.denormalize([low, high])
        return cls(variable, float(lo), float(hi))

    def mask(self, frame: pd.DataFrame) -> np.ndarray:
        values = self.variable.numeric_values(frame[self.variable.name])
        with np.errstate(invalid="ignore"):
            return (self.low <= values) & (values <= self.high)

    def contains(self, value: Any) -> bool:
        num = self.variable.numeric_values(pd.Series([value]))[0]
        return bool(self.low <= num <= self.high)


@dataclass(frozen=True)
class CategoricalRange:
    """Set of accepted category values."""

    variable: Variable
    values: frozenset[Hashable]

    def mask(self, frame: pd.DataFrame) -> np.ndarray:
        return frame[self.variable.name].isin(self.values).to_numpy()

    def contains(self, value: Any) -> bool:
        return value in self.values


class DataRanges:
    """Row filter made of per-variable ranges.

    A row is inside the filter iff it satisfies every range. Ranges are immutable, so
    :meth:`copy` yields an independent snapshot that later edits of the live filter cannot touch.

    Example:
        >>> ranges = DataRanges()
        >>> ranges.set(NumericRange(ds.get_variable("age"), 18, 65))
        >>> snapshot = ranges.copy()
        >>> ds.row_count(snapshot)
    """

    def __init__(self, ranges: Iterable[Range] | DataRanges | None = None) -> None:
        self._ranges: dict[str, Range] = {}
        if isinstance(ranges, DataRanges):
            self._ranges.update(ranges._ranges)
        elif ranges is not None:
            for rng in ranges:
                self.set(rng)

    def set(self, rng: Range) -> None:
        """Add or replace the range of ``rng.variable``."""
        self._ranges[rng.variable.name] = rng

    def remove(self, variable: Variable) -> None:
        self._ranges.pop(variable.name, None)

    def get(self, variable: Variable) -> Range | None:
        return self._ranges.get(variable.name)

    def clear(self) -> None:
        self._ranges.clear()

    def copy(self) -> DataRanges:
        return DataRanges(self)

    def __contains__(self, variable: object) -> bool:
        return isinstance(variable, Variable) and variable.name in self._ranges

    def __iter__(self) -> Iterator[Range]:
        return iter(list(self._ranges.values()))

    def __len__(self) -> int:
        return len(self._ranges)

    def __repr__(self) -> str:
        return f"DataRanges({list(self._ranges)})"

    def mask(self, frame: pd.DataFrame) -> np.ndarray:
        """Boolean row mask of ``frame`` rows inside every range."""
        inside = np.ones(len(frame), dtype=bool)
        for rng in self:
            inside &= rng.mask(frame)
        return inside

    def is_row_included(self, row: Mapping[str, Any] | pd.Series) -> bool:
        """Evaluate the filter on a single row."""
        return all(rng.contains(row[rng.variable.name]) for rng in self)
