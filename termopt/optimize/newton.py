"""Newton's method on a :class:`~termopt.function.Function`."""

from __future__ import annotations

import time
from typing import Optional

import numpy as np
from scipy import linalg, sparse
from scipy.sparse import linalg as sparse_linalg

from ..function import EvaluationStats, Function
from ..function.stats import timed
from ..logging import get_logger
from .core import (
    ExitCondition,
    SolverConfig,
    SolverResults,
    argument_converged,
    classify_value,
    function_converged,
    gradient_converged,
)
from .line_search import backtracking_armijo

logger = get_logger(__name__)

_MAX_REGULARIZATION_ATTEMPTS = 30


def _dense_step(
    hessian: np.ndarray, grad: np.ndarray, results: SolverResults
) -> Optional[np.ndarray]:
    with timed(results, "matrix_factorization_time"):
        try:
            factor = linalg.cho_factor(hessian)
        except linalg.LinAlgError:
            return None
    with timed(results, "linear_solver_time"):
        return linalg.cho_solve(factor, -grad)


def _sparse_step(
    hessian: sparse.csc_matrix, grad: np.ndarray, results: SolverResults
) -> Optional[np.ndarray]:
    with timed(results, "matrix_factorization_time"):
        try:
            lu = sparse_linalg.splu(hessian.tocsc())
        except RuntimeError:
            # splu signals an exactly singular matrix with RuntimeError.
            return None
    with timed(results, "linear_solver_time"):
        step = lu.solve(-grad)
    # LU does not detect indefiniteness; require a descent direction.
    if not np.all(np.isfinite(step)) or float(np.dot(grad, step)) >= 0.0:
        return None
    return step


def _newton_step(hessian, grad: np.ndarray, results: SolverResults) -> np.ndarray:
    """Solve ``(H + tau I) p = -g`` with the smallest working ``tau``."""
    is_sparse = sparse.issparse(hessian)
    n = grad.size
    eye = sparse.identity(n, format="csc") if is_sparse else np.eye(n)
    diag = hessian.diagonal()
    tau = 0.0
    for _ in range(_MAX_REGULARIZATION_ATTEMPTS):
        shifted = hessian + tau * eye if tau > 0.0 else hessian
        if is_sparse:
            step = _sparse_step(shifted, grad, results)
        else:
            step = _dense_step(shifted, grad, results)
        if step is not None:
            if tau > 0.0:
                logger.debug("Hessian regularized with tau=%g", tau)
            return step
        if tau == 0.0:
            tau = max(1e-8, 1e-3 * float(np.max(np.abs(diag), initial=0.0)))
        else:
            tau *= 10.0
    logger.warning("Could not regularize the Hessian; using steepest descent.")
    return -grad


def newton(
    function: Function,
    config: SolverConfig = SolverConfig(),
) -> SolverResults:
    """Damped Newton's method starting from the user buffers.

    The final point is written back to the user buffers.
    """
    start_time = time.perf_counter()
    results = SolverResults()
    stats: EvaluationStats = results.stats
    use_sparse = config.use_sparse(function.number_of_scalars)

    with timed(results, "startup_time"):
        x = function.copy_user_to_global(stats)

    def objective(point: np.ndarray) -> float:
        return function.evaluate(point, stats)

    grad_norm0 = None
    fx = np.nan
    while True:
        with timed(results, "function_evaluation_time"):
            if use_sparse:
                fx, grad, hessian = function.evaluate_sparse_hessian(x, stats)
            else:
                fx, grad, hessian = function.evaluate_hessian(x, stats)
        results.fun = fx

        with timed(results, "stopping_criteria_time"):
            bad_value = classify_value(fx)
            if bad_value is not None:
                results.exit_condition = bad_value
                break
            grad_norm = float(np.max(np.abs(grad), initial=0.0))
            results.grad_norm = grad_norm
            if grad_norm0 is None:
                grad_norm0 = grad_norm
            if gradient_converged(grad_norm, grad_norm0, config.gradient_tolerance):
                results.exit_condition = ExitCondition.GRADIENT_TOLERANCE
                break
            if results.nit >= config.maximum_iterations:
                results.exit_condition = ExitCondition.NO_CONVERGENCE
                break

        step = _newton_step(hessian, grad, results)

        with timed(results, "backtracking_time"):
            alpha, _ = backtracking_armijo(objective, x, step, grad, fx=fx)
        step = alpha * step
        x_new = x + step
        results.nit += 1

        with timed(results, "log_time"):
            logger.info(
                "newton it=%d f=%.6e |g|=%.3e alpha=%.3e",
                results.nit,
                fx,
                grad_norm,
                alpha,
            )

        with timed(results, "stopping_criteria_time"):
            f_new = objective(x_new)
            if function_converged(fx, f_new, config.function_improvement_tolerance):
                x, results.fun = x_new, f_new
                results.exit_condition = ExitCondition.FUNCTION_TOLERANCE
                break
            if argument_converged(step, x_new, config.argument_improvement_tolerance):
                x, results.fun = x_new, f_new
                results.exit_condition = ExitCondition.ARGUMENT_TOLERANCE
                break
        x = x_new

    function.copy_global_to_user(x, stats)
    results.total_time = time.perf_counter() - start_time
    logger.info(
        "newton finished: %s after %d iteration(s)",
        results.exit_condition.value,
        results.nit,
    )
    return results


__all__ = ["newton"]
