"""Ranking and similarity configuration."""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from enum import StrEnum
from typing import Any


class DependencyTestAlgorithm(StrEnum):
    """Accepted dependency-testing algorithms.

    The legacy integer ids (0-3) follow declaration order.
    """

    NO_TEST = "NO_TEST"
    SURROGATE_GAUSS = "SURROGATE_GAUSS"
    SURROGATE_GENERAL = "SURROGATE_GENERAL"
    GAMMA_TEST = "GAMMA_TEST"

    @property
    def id(self) -> int:
        return list(DependencyTestAlgorithm).index(self)

    @classmethod
    def parse(cls, value: DependencyTestAlgorithm | str | int) -> DependencyTestAlgorithm:
        """Parse an algorithm from its name (case-insensitive) or legacy id.

        Raises:
            ValueError: If the name or id is not supported.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
        elif isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Unsupported dependency test algorithm: {value!r}")


DEFAULT_P_VALUE = 0.05
DEFAULT_MISSING_THRESHOLD = 0.8
DEFAULT_SURROGATE_COUNT = 100
DEFAULT_THRESHOLD = 1e-3

# Preference keys accepted by ``RankingConfig.from_mapping``.
_PREFERENCE_KEYS = {
    "correlation.pvalue": "p_value",
    "missing.threshold": "missing_threshold",
    "correlation.algorithm": "dep_test",
    "correlation.surrogates": "surrogate_count",
    "correlation.threshold": "threshold",
}


def parse_p_value(value: float | str) -> float:
    """Parse a p-value from a float or a string such as ``"0.05"`` or ``"5%"``.

    Raises:
        ValueError: If the value is not a number in ``(0, 1]``.
    """
    p = _parse_fraction(value, "p-value")
    if not 0 < p <= 1:
        raise ValueError(f"p-value must be in (0, 1], got {value!r}.")
    return p


def parse_missing_threshold(value: float | str) -> float:
    """Parse a missing-value fraction threshold, e.g. ``0.8`` or ``"80%"``.

    Raises:
        ValueError: If the value is not a number in ``[0, 1]``.
    """
    t = _parse_fraction(value, "missing threshold")
    if not 0 <= t <= 1:
        raise ValueError(f"Missing threshold must be in [0, 1], got {value!r}.")
    return t


def _parse_fraction(value: float | str, what: str) -> float:
    if isinstance(value, str):
        text = value.strip()
        scale = 1.0
        if text.endswith("%"):
            text, scale = text[:-1].strip(), 0.01
        try:
            number = float(text) * scale
        except ValueError:
            raise ValueError(f"Cannot parse {what} from {value!r}.") from None
    else:
        number = float(value)
    if math.isnan(number):
        raise ValueError(f"{what.capitalize()} cannot be NaN.")
    return number


@dataclass(frozen=True)
class RankingConfig:
    """Parameters consumed by the similarity scorer, dependency tester and ranking engine.

    Attributes:
        p_value: Significance level of the dependency test.
        missing_threshold: Pairs whose missing fraction reaches this value are scored 0.
        dep_test: Dependency-test algorithm.
        surrogate_count: Number of surrogates drawn by the Gaussian surrogate test.
        threshold: Mutual-information threshold of the plain threshold test.
        max_workers: Size of the score worker pool (defaults to available cores minus one).
        seed: Seed of the surrogate random generator; ``None`` draws fresh entropy per score.
    """

    p_value: float = DEFAULT_P_VALUE
    missing_threshold: float = DEFAULT_MISSING_THRESHOLD
    dep_test: DependencyTestAlgorithm = DependencyTestAlgorithm.SURROGATE_GAUSS
    surrogate_count: int = DEFAULT_SURROGATE_COUNT
    threshold: float = DEFAULT_THRESHOLD
    max_workers: int | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "p_value", parse_p_value(self.p_value))
        object.__setattr__(self, "missing_threshold", parse_missing_threshold(self.missing_threshold))
        object.__setattr__(self, "dep_test", DependencyTestAlgorithm.parse(self.dep_test))
        if int(self.surrogate_count) < 1:
            raise ValueError(f"surrogate_count must be positive, got {self.surrogate_count}.")
        object.__setattr__(self, "surrogate_count", int(self.surrogate_count))
        if self.threshold < 0:
            raise ValueError(f"threshold must be non-negative, got {self.threshold}.")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {self.max_workers}.")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> RankingConfig:
        """Build a config from field names or preference keys (``correlation.pvalue`` etc).

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in mapping.items():
            name = _PREFERENCE_KEYS.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown configuration key '{key}'.")
            kwargs[name] = value
        return cls(**kwargs)

    def with_overrides(self, **kwargs: Any) -> RankingConfig:
        """Validated copy with some fields replaced."""
        return replace(self, **kwargs)

    @property
    def worker_count(self) -> int:
        """Worker pool size, keeping one core for the coordinating thread."""
        if self.max_workers is not None:
            return self.max_workers
        return max(1, (os.cpu_count() or 1) - 1)


DEFAULT_CONFIG = RankingConfig()


__all__ = [
    "DEFAULT_CONFIG",
    "DependencyTestAlgorithm",
    "RankingConfig",
    "parse_missing_threshold",
    "parse_p_value",
]
