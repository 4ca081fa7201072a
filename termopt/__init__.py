"""termopt - unconstrained optimization of objectives built from additive terms."""

__version__ = "0.1.0"

from .autodiff import TorchTerm
from .errors import InvalidArgumentError, NotSupportedError, TermoptError
from .function import (
    Box,
    ChangeOfVariables,
    EvaluationStats,
    Function,
    GreaterThanZero,
    Term,
    TermOwnership,
    VariableHandle,
)
from .interval import Interval, interval_sum
from .logging import configure_logging, get_logger, set_log_level
from .optimize import (
    ExitCondition,
    SolverConfig,
    SolverResults,
    SparsityMode,
    lbfgs,
    nelder_mead,
    newton,
)

__all__ = [
    "Box",
    "ChangeOfVariables",
    "EvaluationStats",
    "ExitCondition",
    "Function",
    "GreaterThanZero",
    "Interval",
    "InvalidArgumentError",
    "NotSupportedError",
    "SolverConfig",
    "SolverResults",
    "SparsityMode",
    "Term",
    "TermOwnership",
    "TermoptError",
    "TorchTerm",
    "VariableHandle",
    "__version__",
    "configure_logging",
    "get_logger",
    "interval_sum",
    "lbfgs",
    "nelder_mead",
    "newton",
    "set_log_level",
]
