"""Assembly and evaluation of objectives built from additive terms.

Example:
    >>> import numpy as np
    >>> from termopt.function import Function
    >>> from termopt.autodiff import TorchTerm
    >>> x = np.array([1.0, 2.0])
    >>> f = Function(number_of_threads=1)
    >>> h = f.add_variable(x)
    >>> f.add_term(TorchTerm(lambda v: (v ** 2).sum(), [2]), h)
    >>> value, gradient = f.evaluate_gradient(f.copy_user_to_global())
    >>> value, gradient.tolist()
    (5.0, [2.0, 4.0])
"""

from .change_of_variables import Box, ChangeOfVariables, GreaterThanZero, Identity
from .core import Function, TermOwnership
from .evaluator import Evaluator, default_number_of_threads
from .stats import EvaluationStats
from .storage import LocalStorage
from .term import Term
from .terms import AddedTerm, TermRegistry
from .variables import AddedVariable, VariableHandle, VariableRegistry

__all__ = [
    "AddedTerm",
    "AddedVariable",
    "Box",
    "ChangeOfVariables",
    "EvaluationStats",
    "Evaluator",
    "Function",
    "GreaterThanZero",
    "Identity",
    "LocalStorage",
    "Term",
    "TermOwnership",
    "TermRegistry",
    "VariableHandle",
    "VariableRegistry",
    "default_number_of_threads",
]
