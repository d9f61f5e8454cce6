"""Dataset: a rectangular table of typed, possibly-missing columns."""

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler

from deprank.utils.logging import get_logger

from .ranges import DataRanges
from .slices import DataSlice1D, DataSlice2D, distinct_count
from .variables import Variable, VariableKind, WeightRole


if TYPE_CHECKING:
    from deprank.analysis.dependency_analyzer import DependencyAnalyzer
    from deprank.analysis.ranking import RankingEngine
    from deprank.utils.config import RankingConfig


logger = get_logger(__name__)

STRING_CATEGORICAL_MAX_COUNT = 100
"""Text columns with at most this many distinct values are categorical."""
NUMERICAL_CATEGORICAL_MAX_COUNT = 5
"""Integer columns with at most this many distinct values are categorical."""
STRING_MIN_FRACTION = 0.1
"""Text columns are kept as text when at least this fraction of values is non-numeric."""
DEFAULT_MISSING_STRING = "?"


class Dataset:
    """Table of named columns with typed variable descriptors and a normalized view.

    The raw frame is kept as loaded; :attr:`df_normalized` holds every non-string column mapped
    into ``[0, 1]`` (min/max scaling for numerical and date columns, bin centres for categories).
    Both frames are built once at construction and only read afterwards, so slices can be
    extracted concurrently from worker threads.

    Example:
        >>> ds = Dataset.from_csv("survey.csv")
        >>> age, income = ds.get_variable("age"), ds.get_variable("income")
        >>> sl = ds.slice_2d(income, age, DataRanges())
        >>> len(sl), sl.missing
    """

    def __init__(
        self,
        df: pd.DataFrame,
        variables: Sequence[Variable] | None = None,
        *,
        missing_string: str = DEFAULT_MISSING_STRING,
    ) -> None:
        """Initialize the dataset.

        Args:
            df: Loaded DataFrame; missing entries as NaN/NaT/None.
            variables: Descriptors for the columns of ``df`` (inferred when omitted).
            missing_string: Marker written for missing values when exporting tables.
        """
        self._df = df.reset_index(drop=True)
        self._variables: list[Variable] = list(variables) if variables is not None else infer_variables(self._df)
        self._by_name: dict[str, Variable] = {var.name: var for var in self._variables}
        self.missing_string = missing_string
        self._label_var: Variable | None = None
        self._df_normalized = self.normalize()

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        *,
        types: Mapping[str, VariableKind | str] | None = None,
        aliases: Mapping[str, str] | None = None,
        missing_string: str = DEFAULT_MISSING_STRING,
    ) -> "Dataset":
        """Build a dataset from a DataFrame, inferring the variable types.

        Args:
            df: Source frame; cells equal to ``missing_string`` are treated as missing.
            types: Explicit kinds per column, overriding inference.
            aliases: Display names per column.
            missing_string: Missing-value marker.

        Returns:
            Dataset with one variable per named column.
        """
        frame = df.replace(missing_string, np.nan) if missing_string else df.copy()
        named = [col for col in frame.columns if str(col).strip() != ""]
        for col in frame.columns:
            if col not in named:
                logger.warning("unnamed_column_skipped", position=list(frame.columns).index(col))
        frame = frame.loc[:, named]
        variables = infer_variables(frame, types=types)
        for var in variables:
            if aliases and var.name in aliases:
                var.alias = aliases[var.name]
        return cls(frame, variables, missing_string=missing_string)

    @classmethod
    def from_csv(
        cls,
        filepath: str | Path,
        *,
        types: Mapping[str, VariableKind | str] | None = None,
        aliases: Mapping[str, str] | None = None,
        missing_string: str = DEFAULT_MISSING_STRING,
        **read_kwargs: object,
    ) -> "Dataset":
        """Load a dataset from a CSV (or TSV, via ``sep``) file.

        Args:
            filepath: Path to the file; ``.gz`` files are decompressed transparently.
            types: Explicit kinds per column.
            aliases: Display names per column.
            missing_string: Missing-value marker in the file.
            **read_kwargs: Forwarded to :func:`pandas.read_csv`.
        """
        logger.info("loading_data", path=str(filepath))
        df = pd.read_csv(filepath, na_values=[missing_string], **read_kwargs)
        return cls.from_frame(df, types=types, aliases=aliases, missing_string=missing_string)

    # ------------------------------------------------------------------ table access
    @property
    def df(self) -> pd.DataFrame:
        """Raw DataFrame."""
        return self._df

    @property
    def df_normalized(self) -> pd.DataFrame:
        """Non-string columns mapped into ``[0, 1]``, NaN where missing."""
        return self._df_normalized

    def normalize(self) -> pd.DataFrame:
        """Compute the normalized view of the dataset with [sklearn's MinMaxScaler](https://scikit-learn.org/stable/modules/generated/sklearn.preprocessing.MinMaxScaler.html).

        The fitted data minima and maxima become the value ranges of the numerical and date
        variables.

        Returns:
            DataFrame with one float column per non-string variable.
        """
        numeric = [var for var in self._variables if var.numerical()]
        columns: dict[str, np.ndarray] = {}
        if numeric:
            raw = np.column_stack([var.numeric_values(self._df[var.name]) for var in numeric])
            observed = ~np.isnan(raw).all(axis=0)
            scaled = np.full_like(raw, np.nan)
            if observed.any():
                scaler = MinMaxScaler(clip=True)
                scaled[:, observed] = scaler.fit_transform(raw[:, observed])
                for var, lo, hi in zip(
                    [v for v, ok in zip(numeric, observed, strict=True) if ok],
                    scaler.data_min_,
                    scaler.data_max_,
                    strict=True,
                ):
                    var.vmin, var.vmax = float(lo), float(hi)
            for i, var in enumerate(numeric):
                columns[var.name] = scaled[:, i]
        for var in self._variables:
            if var.categorical():
                columns[var.name] = var.normalize(self._df[var.name])
        ordered = [var.name for var in self._variables if var.name in columns]
        return pd.DataFrame({name: columns[name] for name in ordered}, index=self._df.index)

    @property
    def row_total(self) -> int:
        return len(self._df)

    def row_count(self, ranges: DataRanges | None = None) -> int:
        """Number of rows inside ``ranges`` (all rows when omitted)."""
        if ranges is None or len(ranges) == 0:
            return len(self._df)
        return int(ranges.copy().mask(self._df).sum())

    def is_row_included(self, row: int, ranges: DataRanges) -> bool:
        return ranges.is_row_included(self._df.iloc[row])

    # ------------------------------------------------------------------ variables
    @property
    def variables(self) -> list[Variable]:
        """All variables in natural order."""
        return list(self._variables)

    @property
    def variable_count(self) -> int:
        return len(self._variables)

    def get_variable(self, key: str | int) -> Variable:
        """Look a variable up by column name or natural index.

        Raises:
            KeyError: If no such variable exists.
        """
        if isinstance(key, int):
            try:
                return self._variables[key]
            except IndexError:
                raise KeyError(f"No variable at index {key}.") from None
        if key not in self._by_name:
            raise KeyError(f"Unknown variable '{key}'.")
        return self._by_name[key]

    def variable_index(self, variable: Variable) -> int:
        """Natural position of ``variable`` (-1 if it does not belong to this dataset)."""
        try:
            return self._variables.index(variable)
        except ValueError:
            return -1

    def included_variables(self) -> list[Variable]:
        """Variables that take part in the calculations, in natural order."""
        return [var for var in self._variables if var.include]

    def find_variables(self, query: str) -> list[Variable]:
        """Variables whose name or alias contains ``query`` (case-insensitive)."""
        return [var for var in self._variables if var.matches(query)]

    def get_pretty_name(self, column_name: str) -> str:
        try:
            return self.get_variable(column_name).pretty_name
        except KeyError:
            return column_name.replace("_", " ").title()

    @property
    def label_variable(self) -> Variable | None:
        return self._label_var

    def set_label(self, variable: Variable | None) -> None:
        """Designate a string variable whose values annotate slice samples."""
        if variable is not None and not variable.string():
            raise ValueError(f"Label variable '{variable.name}' must be a string variable.")
        self._label_var = variable
        if variable is not None:
            logger.info("label_variable_set", variable=variable.name)

    def set_weight(self, variable: Variable, weight: str) -> None:
        """Apply weighting metadata to ``variable``.

        Args:
            variable: Variable to configure.
            weight: ``"sample weight"`` or ``"subsample weight"`` to flag the variable itself as a
                weight, otherwise the name of the variable holding this variable's weights.
        """
        key = weight.strip().lower()
        if key == "sample weight":
            variable.weight_role = WeightRole.SAMPLE
        elif key == "subsample weight":
            variable.weight_role = WeightRole.SUBSAMPLE
        elif key:
            wvar = self._by_name.get(weight.strip())
            if wvar is None:
                logger.warning("weight_variable_not_found", variable=variable.name, weight=weight)
                return
            variable.weight_variable = wvar
            return
        else:
            return
        logger.info("weight_variable_set", variable=variable.name, subsample=variable.subsample())

    # ------------------------------------------------------------------ value extraction
    def missing_fraction(self, variable: Variable, ranges: DataRanges | None = None) -> float:
        """Fraction of rows inside ``ranges`` with a missing value for ``variable``."""
        inside = self._filter_mask(ranges)
        total = int(inside.sum())
        if total == 0:
            return 1.0
        return float((inside & variable.is_missing(self._df[variable.name])).sum() / total)

    def slice_1d(self, varx: Variable, ranges: DataRanges | None = None) -> DataSlice1D:
        """Extract the normalized samples of ``varx`` inside ``ranges``."""
        inside = self._filter_mask(ranges)
        missing = varx.is_missing(self._df[varx.name])
        weights, wmissing = self._weights(varx)
        keep = inside & ~missing & ~wmissing
        x = self._df_normalized[varx.name].to_numpy()[keep]
        return DataSlice1D(
            varx=varx,
            x=x,
            w=weights[keep],
            countx=distinct_count(varx, x),
            missing=_missing_ratio(inside, missing | wmissing),
            labels=self._labels(keep),
        )

    def slice_2d(self, varx: Variable, vary: Variable, ranges: DataRanges | None = None) -> DataSlice2D:
        """Extract paired normalized samples of ``varx`` and ``vary`` inside ``ranges``.

        Rows missing either value are dropped and counted in :attr:`DataSlice2D.missing`.
        """
        inside = self._filter_mask(ranges)
        missing = varx.is_missing(self._df[varx.name]) | vary.is_missing(self._df[vary.name])
        weights, wmissing = self._weights(varx, vary)
        keep = inside & ~missing & ~wmissing
        x = self._df_normalized[varx.name].to_numpy()[keep]
        y = self._df_normalized[vary.name].to_numpy()[keep]
        return DataSlice2D(
            varx=varx,
            vary=vary,
            x=x,
            y=y,
            w=weights[keep],
            countx=distinct_count(varx, x),
            county=distinct_count(vary, y),
            missing=_missing_ratio(inside, missing | wmissing),
            labels=self._labels(keep),
        )

    def _filter_mask(self, ranges: DataRanges | None) -> np.ndarray:
        if ranges is None:
            return np.ones(len(self._df), dtype=bool)
        return ranges.mask(self._df)

    def _weights(self, *variables: Variable) -> tuple[np.ndarray, np.ndarray]:
        for var in variables:
            if var.weight_variable is not None:
                values = pd.to_numeric(self._df[var.weight_variable.name], errors="coerce").to_numpy(dtype=float)
                wmissing = np.isnan(values)
                return np.where(wmissing, 0.0, values), wmissing
        return np.ones(len(self._df)), np.zeros(len(self._df), dtype=bool)

    def _labels(self, keep: np.ndarray) -> np.ndarray | None:
        if self._label_var is None:
            return None
        return self._df[self._label_var.name].to_numpy(dtype=object)[keep]

    # ------------------------------------------------------------------ export
    def export_table(
        self,
        variables: Iterable[Variable],
        ranges: DataRanges | None = None,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Filtered data table and its dictionary.

        Returns:
            ``(data, dictionary)`` where ``data`` holds the selected columns of the rows inside
            ``ranges`` with missing entries written as :attr:`missing_string`, and ``dictionary``
            has columns ``alias``, ``type`` and ``range`` (one row per variable).
        """
        selected = list(variables)
        inside = self._filter_mask(ranges)
        data = self._df.loc[inside, [var.name for var in selected]].astype(object)
        data = data.where(data.notna(), self.missing_string).reset_index(drop=True)
        dictionary = pd.DataFrame(
            {
                "alias": [var.pretty_name for var in selected],
                "type": [var.kind.value for var in selected],
                "range": [var.format_range() for var in selected],
            },
        )
        return data, dictionary

    # ------------------------------------------------------------------ factories
    def make_ranking_engine(self, config: "RankingConfig | None" = None) -> "RankingEngine":
        """Instantiate an interactive ranking engine over the included variables."""
        from deprank.analysis.ranking import RankingEngine

        return RankingEngine(self, config=config)

    def make_dependency_analyzer(
        self,
        target: Variable | str | None = None,
        columns: Iterable[Variable | str] | None = None,
        ranges: DataRanges | None = None,
        config: "RankingConfig | None" = None,
    ) -> "DependencyAnalyzer":
        """Instantiate a batch dependency analyzer for this dataset."""
        from deprank.analysis.dependency_analyzer import DependencyAnalyzer

        def resolve(var: Variable | str) -> Variable:
            return self.get_variable(var) if isinstance(var, str) else var

        return DependencyAnalyzer(
            self,
            target=resolve(target) if target is not None else None,
            columns=[resolve(var) for var in columns] if columns is not None else None,
            ranges=ranges,
            config=config,
        )


def _missing_ratio(inside: np.ndarray, missing: np.ndarray) -> float:
    total = int(inside.sum())
    if total == 0:
        return 1.0
    return float((inside & missing).sum() / total)


def infer_variables(
    df: pd.DataFrame,
    types: Mapping[str, VariableKind | str] | None = None,
) -> list[Variable]:
    """Guess a :class:`Variable` for every column of ``df``.

    - datetimes are dates, booleans categorical
    - integer columns with few distinct values are categorical, other numbers numerical
    - text columns that mostly parse as numbers are converted and treated as numbers,
      otherwise categorical when they have few distinct values, else strings
    """
    types = types or {}
    variables = []
    for idx, col in enumerate(df.columns):
        name = str(col)
        series = df[col]
        if name in types:
            kind = VariableKind.parse(types[name]) if isinstance(types[name], str) else types[name]
        else:
            kind = _guess_kind(series)
        categories: tuple = ()
        if kind == VariableKind.CATEGORICAL:
            categories = _sorted_categories(series.dropna().unique())
        variables.append(Variable(name=name, index=idx, kind=kind, categories=categories))
    return variables


def _guess_kind(series: pd.Series) -> VariableKind:
    values = series.dropna()
    if pd.api.types.is_datetime64_any_dtype(series):
        return VariableKind.DATE
    if pd.api.types.is_bool_dtype(series):
        return VariableKind.CATEGORICAL
    if pd.api.types.is_integer_dtype(series) or (
        pd.api.types.is_float_dtype(series) and len(values) and np.all(np.mod(values, 1) == 0)
    ):
        if values.nunique() <= NUMERICAL_CATEGORICAL_MAX_COUNT:
            return VariableKind.CATEGORICAL
        return VariableKind.NUMERICAL
    if pd.api.types.is_numeric_dtype(series):
        return VariableKind.NUMERICAL
    if len(values) == 0:
        return VariableKind.NUMERICAL
    parsed = pd.to_numeric(values, errors="coerce")
    if parsed.isna().mean() < STRING_MIN_FRACTION:
        return _guess_kind(parsed)
    if values.nunique() <= STRING_CATEGORICAL_MAX_COUNT:
        return VariableKind.CATEGORICAL
    return VariableKind.STRING


def _sorted_categories(values: np.ndarray) -> tuple:
    try:
        return tuple(sorted(values))
    except TypeError:
        return tuple(sorted(values, key=str))
