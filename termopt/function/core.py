"""The :class:`Function` facade tying registries, storage and evaluation."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from ..interval import Interval
from ..logging import get_logger
from .change_of_variables import ChangeOfVariables
from .evaluator import Evaluator
from .stats import EvaluationStats
from .storage import LocalStorage
from .term import Term
from .terms import TermRegistry
from .variables import VariableHandle, VariableRef, VariableRegistry

logger = get_logger(__name__)


class TermOwnership(Enum):
    """Whether :meth:`Function.close` releases the added terms."""

    OWNED = "owned"
    BORROWED = "borrowed"


class Function:
    """A sum of terms over shared variables.

    Variables are user-owned one-dimensional float64 arrays. Each one is given
    a slice of a flat global vector, the representation solvers work with.
    All variables must be added before the terms that use them, and no
    variable or term may be added while an evaluation is running.

    Example:
        >>> import numpy as np
        >>> from termopt.autodiff import TorchTerm
        >>> from termopt.function import Function
        >>> x = np.array([0.0])
        >>> y = np.array([0.0])
        >>> f = Function(number_of_threads=1)
        >>> hx, hy = f.add_variable(x), f.add_variable(y)
        >>> f.add_term(TorchTerm(lambda a, b: (a[0] - 1) ** 2 + 10 * (a[0] - b[0]) ** 2, [1, 1]), [hx, hy])
        >>> f.evaluate(f.copy_user_to_global())
        11.0
    """

    def __init__(
        self,
        hessian_enabled: bool = True,
        term_ownership: TermOwnership = TermOwnership.OWNED,
        number_of_threads: Optional[int] = None,
    ):
        self.term_ownership = term_ownership
        self._variables = VariableRegistry()
        self._terms = TermRegistry(self._variables, hessian_enabled=hessian_enabled)
        self._storage = LocalStorage()
        self._evaluator = Evaluator(
            self._variables, self._terms, self._storage, number_of_threads
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def add_variable(
        self,
        buffer: np.ndarray,
        dimension: Optional[int] = None,
        change_of_variables: Optional[ChangeOfVariables] = None,
    ) -> VariableHandle:
        """Register ``buffer`` as a variable, or replace its change of variables.

        Args:
            buffer: One-dimensional float64 array holding the user value.
            dimension: Number of leading entries of ``buffer`` forming the
                variable. Defaults to ``buffer.size`` (or the registered
                dimension when re-registering).
            change_of_variables: Optional reparameterization. The solver then
                works with its ``t_dimension`` scalars instead.

        Returns:
            Handle identifying the variable in :meth:`add_term`.

        Raises:
            InvalidArgumentError: On an invalid buffer or a dimension mismatch
                with an earlier registration or the change of variables.
        """
        self._storage.invalidate()
        return self._variables.add(buffer, dimension, change_of_variables)

    def add_term(
        self, term: Term, variables: Union[VariableRef, Sequence[VariableRef]]
    ) -> None:
        """Add ``term`` bound to ``variables`` (handles or registered buffers).

        Raises:
            InvalidArgumentError: If the arity or a variable dimension does not
                match the term, or a variable is not registered.
        """
        self._storage.invalidate()
        self._terms.add(term, variables)

    @property
    def hessian_enabled(self) -> bool:
        return self._terms.hessian_enabled

    @property
    def number_of_variables(self) -> int:
        return self._variables.number_of_variables

    @property
    def number_of_scalars(self) -> int:
        """Length of the global state vector."""
        return self._variables.number_of_scalars

    @property
    def number_of_terms(self) -> int:
        return self._terms.number_of_terms

    @property
    def number_of_threads(self) -> int:
        return self._evaluator.number_of_threads

    def set_number_of_threads(self, num: int) -> None:
        """Set the evaluation worker count; must be a positive integer."""
        self._evaluator.set_number_of_threads(num)

    # ------------------------------------------------------------------
    # State transfer
    # ------------------------------------------------------------------
    def copy_user_to_global(
        self, stats: Optional[EvaluationStats] = None
    ) -> np.ndarray:
        """Global vector holding the current user values in solver space."""
        return self._evaluator.copy_user_to_global(stats)

    def copy_global_to_user(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> None:
        """Write the global vector ``x`` back into the user buffers."""
        self._evaluator.copy_global_to_user(x, stats)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, x: np.ndarray, stats: Optional[EvaluationStats] = None) -> float:
        return self._evaluator.evaluate(x, stats)

    def evaluate_user(self, stats: Optional[EvaluationStats] = None) -> float:
        """Value at the point currently stored in the user buffers."""
        return self._evaluator.evaluate_user(stats)

    def evaluate_gradient(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray]:
        return self._evaluator.evaluate_gradient(x, stats)

    def evaluate_hessian(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        """Value, gradient and dense Hessian at ``x``.

        Raises:
            NotSupportedError: If Hessians are disabled or a variable used by
                a term has a change of variables.
        """
        return self._evaluator.evaluate_hessian(x, stats)

    def evaluate_sparse_hessian(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray, sparse.csc_matrix]:
        """Value, gradient and sparse (CSC) Hessian at ``x``."""
        return self._evaluator.evaluate_sparse_hessian(x, stats)

    def create_sparse_hessian_pattern(self) -> sparse.csc_matrix:
        return self._evaluator.create_sparse_hessian_pattern()

    def evaluate_interval(
        self, x: Sequence[Interval], stats: Optional[EvaluationStats] = None
    ) -> Interval:
        """Enclosure of the function over the box given per global scalar."""
        return self._evaluator.evaluate_interval(x, stats)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Stop the worker pool and release owned terms and transforms."""
        if self._closed:
            return
        self._closed = True
        self._evaluator.shutdown()
        if self.term_ownership is TermOwnership.OWNED:
            self._terms.release()
        self._variables.release()
        logger.debug("Closed function with %d term(s)", self.number_of_terms)

    def __enter__(self) -> "Function":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Function(variables={self.number_of_variables}, "
            f"scalars={self.number_of_scalars}, terms={self.number_of_terms}, "
            f"threads={self.number_of_threads})"
        )


__all__ = ["Function", "TermOwnership"]
