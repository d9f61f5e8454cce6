"""Base analyzer class for the batch analysis components."""

from abc import ABC, abstractmethod
from typing import Any


class BaseAnalyser(ABC):
    """Abstract base class for batch analysis components.

    All analyzers must:
    1. Accept a :class:`~deprank.data.dataset.Dataset` in their constructor
    2. Implement fit() to perform the analysis and return self for chaining
    3. Implement result() to return a frozen dataclass with results

    New analyzers get a ``make_*`` factory method on ``Dataset`` that imports the analyzer
    lazily, resolves variable names and forwards the dataset.
    """

    @abstractmethod
    def fit(self) -> "BaseAnalyser":
        """Fit the analyzer to the data.

        Returns:
            Self for method chaining.
        """
        ...

    @abstractmethod
    def result(self) -> Any:
        """Return analysis results as a frozen dataclass instance.

        Raises:
            ValueError: If fit() has not been called yet.
        """
        ...
