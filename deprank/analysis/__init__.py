"""Analysis modules: binning, information estimates, dependency tests and ranking."""

from .bin_optimizer import DEFAULT_BIN_OPTIMIZER, BinOptimizer
from .dependency_analyzer import DependencyAnalyzer, DependencyResult
from .dependency_test import DependencyTester, ScoringCancelled
from .information import joint_entropy, mutual_information
from .ranking import ColumnScore, RankingEngine, SortAlgorithm, SortState
from .similarity import SimilarityScorer, comparable


__all__ = [
    "DEFAULT_BIN_OPTIMIZER",
    "BinOptimizer",
    "ColumnScore",
    "DependencyAnalyzer",
    "DependencyResult",
    "DependencyTester",
    "RankingEngine",
    "ScoringCancelled",
    "SimilarityScorer",
    "SortAlgorithm",
    "SortState",
    "comparable",
    "joint_entropy",
    "mutual_information",
]
