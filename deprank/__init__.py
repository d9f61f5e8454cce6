"""Rank the variables of a tabular dataset by their statistical dependency on a reference variable."""

from .analysis import DependencyAnalyzer, RankingEngine, SimilarityScorer
from .data import DataRanges, Dataset, Variable, VariableKind
from .utils import DependencyTestAlgorithm, RankingConfig, configure_logging


__all__ = [
    "DataRanges",
    "Dataset",
    "DependencyAnalyzer",
    "DependencyTestAlgorithm",
    "RankingConfig",
    "RankingEngine",
    "SimilarityScorer",
    "Variable",
    "VariableKind",
    "configure_logging",
]
