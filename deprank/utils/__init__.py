from .config import DEFAULT_CONFIG, DependencyTestAlgorithm, RankingConfig
from .logging import configure_logging, get_logger


__all__ = [
    "DEFAULT_CONFIG",
    "DependencyTestAlgorithm",
    "RankingConfig",
    "configure_logging",
    "get_logger",
]
