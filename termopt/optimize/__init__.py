"""Solver drivers built on the :class:`~termopt.function.Function` interface.

Example:
    >>> import numpy as np
    >>> from termopt.autodiff import TorchTerm
    >>> from termopt.function import Function
    >>> from termopt.optimize import newton
    >>> x = np.array([-1.2, 1.0])
    >>> f = Function(number_of_threads=1)
    >>> h = f.add_variable(x)
    >>> f.add_term(TorchTerm(lambda v: (1 - v[0]) ** 2 + 100 * (v[1] - v[0] ** 2) ** 2, [2]), h)
    >>> res = newton(f)
    >>> res.success, np.allclose(x, [1.0, 1.0])
    (True, True)
"""

from .core import (
    AUTO_SPARSE_THRESHOLD,
    ExitCondition,
    SolverConfig,
    SolverResults,
    SparsityMode,
    argument_converged,
    classify_value,
    function_converged,
    gradient_converged,
)
from .lbfgs import lbfgs
from .line_search import backtracking_armijo
from .nelder_mead import nelder_mead
from .newton import newton

__all__ = [
    "AUTO_SPARSE_THRESHOLD",
    "ExitCondition",
    "SolverConfig",
    "SolverResults",
    "SparsityMode",
    "argument_converged",
    "backtracking_armijo",
    "classify_value",
    "function_converged",
    "gradient_converged",
    "lbfgs",
    "nelder_mead",
    "newton",
]
