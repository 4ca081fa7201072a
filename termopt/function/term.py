"""Interface implemented by every additive term of an objective."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from ..errors import NotSupportedError
from ..interval import Interval

Block = List[List[np.ndarray]]


class Term(ABC):
    """A differentiable summand bound to a fixed ordered list of variables.

    ``evaluate`` receives one array per bound variable holding its current
    user-space value. When ``gradient`` is given it is a list of zeroed arrays,
    one per variable, that the term fills in place. When ``hessian`` is given
    it is a nested list where ``hessian[i][j]`` is a zeroed
    ``(variable_dimension(i), variable_dimension(j))`` block, also filled in
    place. Terms may run concurrently on different threads and must not
    mutate shared state.
    """

    @abstractmethod
    def number_of_variables(self) -> int:
        """Arity of the term."""

    @abstractmethod
    def variable_dimension(self, var: int) -> int:
        """User-space dimension expected for variable slot ``var``."""

    @abstractmethod
    def evaluate(
        self,
        x: Sequence[np.ndarray],
        gradient: Optional[List[np.ndarray]] = None,
        hessian: Optional[Block] = None,
    ) -> float:
        """Return the term value, optionally filling gradient and Hessian."""

    def evaluate_interval(self, x: Sequence[Sequence[Interval]]) -> Interval:
        """Return an enclosure of the term over the interval box ``x``."""
        raise NotSupportedError(
            f"{type(self).__name__} does not support interval evaluation."
        )

    def release(self) -> None:
        """Free resources held by the term. Called once when an owning
        function is closed."""


__all__ = ["Block", "Term"]
