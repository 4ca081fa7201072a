"""Configuration, results and stopping criteria shared by the solver drivers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..function.stats import EvaluationStats

# Above this many scalars SparsityMode.AUTO assembles sparse Hessians.
AUTO_SPARSE_THRESHOLD = 100


class ExitCondition(Enum):
    """Reason a solver stopped."""

    GRADIENT_TOLERANCE = "gradient_tolerance"
    FUNCTION_TOLERANCE = "function_tolerance"
    ARGUMENT_TOLERANCE = "argument_tolerance"
    NO_CONVERGENCE = "no_convergence"
    NAN = "nan"
    INFINITY = "infinity"
    NA = "na"


class SparsityMode(Enum):
    """How Newton's method stores the Hessian."""

    DENSE = "dense"
    SPARSE = "sparse"
    AUTO = "auto"


@dataclass(frozen=True)
class SolverConfig:
    """
    Settings shared by all solver drivers.

    Args:
        maximum_iterations: Iteration cap. Must be positive.
        gradient_tolerance: Stop when ``|g|_inf / |g0|_inf`` drops below it.
        function_improvement_tolerance: Stop when
            ``|df| / (|f| + tol) < tol``.
        argument_improvement_tolerance: Stop when
            ``|dx| / (|x| + tol) < tol``.
        sparsity_mode: Hessian storage used by Newton's method.
        lbfgs_history: Number of correction pairs kept by L-BFGS.
        area_tolerance: Nelder-Mead stops when the simplex diameter drops
            below it.
    """

    maximum_iterations: int = 100
    gradient_tolerance: float = 1e-12
    function_improvement_tolerance: float = 1e-12
    argument_improvement_tolerance: float = 1e-12
    sparsity_mode: SparsityMode = SparsityMode.AUTO
    lbfgs_history: int = 10
    area_tolerance: float = 0.0

    def __post_init__(self) -> None:
        if self.maximum_iterations <= 0:
            raise ValueError("maximum_iterations must be positive.")
        for name in (
            "gradient_tolerance",
            "function_improvement_tolerance",
            "argument_improvement_tolerance",
            "area_tolerance",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative.")
        if self.lbfgs_history <= 0:
            raise ValueError("lbfgs_history must be positive.")

    def use_sparse(self, number_of_scalars: int) -> bool:
        if self.sparsity_mode is SparsityMode.AUTO:
            return number_of_scalars > AUTO_SPARSE_THRESHOLD
        return self.sparsity_mode is SparsityMode.SPARSE


@dataclass
class SolverResults:
    """Outcome and timing breakdown of one solver run."""

    exit_condition: ExitCondition = ExitCondition.NA
    fun: float = math.nan
    nit: int = 0
    grad_norm: float = math.nan
    startup_time: float = 0.0
    function_evaluation_time: float = 0.0
    stopping_criteria_time: float = 0.0
    matrix_factorization_time: float = 0.0
    linear_solver_time: float = 0.0
    backtracking_time: float = 0.0
    log_time: float = 0.0
    total_time: float = 0.0
    stats: EvaluationStats = field(default_factory=EvaluationStats)

    @property
    def success(self) -> bool:
        return self.exit_condition in (
            ExitCondition.GRADIENT_TOLERANCE,
            ExitCondition.FUNCTION_TOLERANCE,
            ExitCondition.ARGUMENT_TOLERANCE,
        )

    def report(self) -> str:
        lines = [
            f"Exit condition            : {self.exit_condition.value}",
            f"Function value            : {self.fun}",
            f"Iterations                : {self.nit}",
            f"Startup time              : {self.startup_time:.6f}",
            f"Function evaluation time  : {self.function_evaluation_time:.6f}",
            f"Stopping criteria time    : {self.stopping_criteria_time:.6f}",
            f"Matrix factorization time : {self.matrix_factorization_time:.6f}",
            f"Linear solver time        : {self.linear_solver_time:.6f}",
            f"Backtracking time         : {self.backtracking_time:.6f}",
            f"Log time                  : {self.log_time:.6f}",
            f"Total time                : {self.total_time:.6f}",
        ]
        return "\n".join(lines + [self.stats.report()])


def classify_value(value: float) -> ExitCondition | None:
    """NAN or INFINITY for a non-finite function value, else None."""
    if math.isnan(value):
        return ExitCondition.NAN
    if math.isinf(value):
        return ExitCondition.INFINITY
    return None


def gradient_converged(grad_norm: float, grad_norm0: float, tol: float) -> bool:
    """``|g|_inf / |g0|_inf < tol``; absolute when the first gradient is zero."""
    if grad_norm0 == 0.0:
        return grad_norm <= tol
    return grad_norm / grad_norm0 < tol


def function_converged(f_old: float, f_new: float, tol: float) -> bool:
    denominator = abs(f_new) + tol
    if denominator == 0.0:
        return f_old == f_new
    return abs(f_new - f_old) / denominator < tol


def argument_converged(step: np.ndarray, x: np.ndarray, tol: float) -> bool:
    step_norm = float(np.linalg.norm(step))
    denominator = float(np.linalg.norm(x)) + tol
    if denominator == 0.0:
        return step_norm == 0.0
    return step_norm / denominator < tol


__all__ = [
    "AUTO_SPARSE_THRESHOLD",
    "ExitCondition",
    "SolverConfig",
    "SolverResults",
    "SparsityMode",
    "argument_converged",
    "classify_value",
    "function_converged",
    "gradient_converged",
]
