"""Limited-memory BFGS on a :class:`~termopt.function.Function`."""

from __future__ import annotations

import time
from collections import deque
from typing import Deque

import numpy as np

from ..function import Function
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


def _two_loop(
    g: np.ndarray, s_history: Deque[np.ndarray], y_history: Deque[np.ndarray]
) -> np.ndarray:
    q = g.copy()
    alpha_vals = []
    for s, y in reversed(list(zip(s_history, y_history))):
        rho = 1.0 / float(np.dot(y, s))
        alpha_i = rho * float(np.dot(s, q))
        q = q - alpha_i * y
        alpha_vals.append((rho, alpha_i, s, y))
    if len(s_history) > 0:
        last_s = s_history[-1]
        last_y = y_history[-1]
        gamma = float(np.dot(last_s, last_y) / np.dot(last_y, last_y))
    else:
        gamma = 1.0
    r = gamma * q
    for rho, alpha_i, s, y in reversed(alpha_vals):
        beta = rho * float(np.dot(y, r))
        r = r + s * (alpha_i - beta)
    return -r


def lbfgs(
    function: Function,
    config: SolverConfig = SolverConfig(),
) -> SolverResults:
    """L-BFGS with Armijo backtracking, starting from the user buffers."""
    start_time = time.perf_counter()
    results = SolverResults()
    stats = results.stats
    s_history: Deque[np.ndarray] = deque(maxlen=config.lbfgs_history)
    y_history: Deque[np.ndarray] = deque(maxlen=config.lbfgs_history)

    with timed(results, "startup_time"):
        x = function.copy_user_to_global(stats)

    def objective(point: np.ndarray) -> float:
        return function.evaluate(point, stats)

    with timed(results, "function_evaluation_time"):
        fx, grad = function.evaluate_gradient(x, stats)
    results.fun = fx
    grad_norm0 = float(np.max(np.abs(grad), initial=0.0))

    while True:
        with timed(results, "stopping_criteria_time"):
            bad_value = classify_value(fx)
            if bad_value is not None:
                results.exit_condition = bad_value
                break
            grad_norm = float(np.max(np.abs(grad), initial=0.0))
            results.grad_norm = grad_norm
            if gradient_converged(grad_norm, grad_norm0, config.gradient_tolerance):
                results.exit_condition = ExitCondition.GRADIENT_TOLERANCE
                break
            if results.nit >= config.maximum_iterations:
                results.exit_condition = ExitCondition.NO_CONVERGENCE
                break

        with timed(results, "linear_solver_time"):
            direction = _two_loop(grad, s_history, y_history)
            if float(np.dot(direction, grad)) >= 0.0:
                # Stale curvature pairs; restart from steepest descent.
                s_history.clear()
                y_history.clear()
                direction = -grad

        with timed(results, "backtracking_time"):
            alpha, _ = backtracking_armijo(objective, x, direction, grad, fx=fx)
        s = alpha * direction
        x_new = x + s

        with timed(results, "function_evaluation_time"):
            f_new, grad_new = function.evaluate_gradient(x_new, stats)
        results.nit += 1

        with timed(results, "log_time"):
            logger.info(
                "lbfgs it=%d f=%.6e |g|=%.3e alpha=%.3e",
                results.nit,
                f_new,
                grad_norm,
                alpha,
            )

        y = grad_new - grad
        if float(np.dot(y, s)) > 1e-12:
            s_history.append(s)
            y_history.append(y)

        with timed(results, "stopping_criteria_time"):
            f_converged = function_converged(
                fx, f_new, config.function_improvement_tolerance
            )
            x_converged = argument_converged(
                s, x_new, config.argument_improvement_tolerance
            )
        x, fx, grad = x_new, f_new, grad_new
        results.fun = fx
        if f_converged:
            results.exit_condition = ExitCondition.FUNCTION_TOLERANCE
            break
        if x_converged:
            results.exit_condition = ExitCondition.ARGUMENT_TOLERANCE
            break

    function.copy_global_to_user(x, stats)
    results.total_time = time.perf_counter() - start_time
    logger.info(
        "lbfgs finished: %s after %d iteration(s)",
        results.exit_condition.value,
        results.nit,
    )
    return results


__all__ = ["lbfgs"]
