"""Data module: variables, row filters, slices and the dataset container."""

from .dataset import Dataset, infer_variables
from .ranges import CategoricalRange, DataRanges, NumericRange
from .slices import DataSlice1D, DataSlice2D
from .variables import Variable, VariableKind, WeightRole


__all__ = [
    "CategoricalRange",
    "DataRanges",
    "DataSlice1D",
    "DataSlice2D",
    "Dataset",
    "NumericRange",
    "Variable",
    "VariableKind",
    "WeightRole",
    "infer_variables",
]
