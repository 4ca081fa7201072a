"""Derivative-free Nelder-Mead simplex search."""

from __future__ import annotations

import time

import numpy as np

from ..function import Function
from ..function.stats import timed
from ..logging import get_logger
from .core import (
    ExitCondition,
    SolverConfig,
    SolverResults,
    classify_value,
    function_converged,
)

logger = get_logger(__name__)

# Reflection, expansion, contraction and shrink coefficients.
ALPHA = 1.0
GAMMA = 2.0
RHO = 0.5
SIGMA = 0.5


def _initial_simplex(x0: np.ndarray) -> np.ndarray:
    n = x0.size
    simplex = np.tile(x0, (n + 1, 1))
    for i in range(n):
        step = 0.05 * x0[i] if x0[i] != 0.0 else 0.00025
        simplex[i + 1, i] += step
    return simplex


def nelder_mead(
    function: Function,
    config: SolverConfig = SolverConfig(),
) -> SolverResults:
    """Minimize using only function values, starting from the user buffers.

    Stops when the spread of function values over the simplex satisfies the
    function improvement tolerance, or when the simplex diameter falls below
    ``config.area_tolerance``.
    """
    start_time = time.perf_counter()
    results = SolverResults()
    stats = results.stats

    def objective(point: np.ndarray) -> float:
        with timed(results, "function_evaluation_time"):
            return function.evaluate(point, stats)

    with timed(results, "startup_time"):
        x0 = function.copy_user_to_global(stats)
        simplex = _initial_simplex(x0)
    values = np.array([objective(vertex) for vertex in simplex])

    tol = config.function_improvement_tolerance
    while True:
        order = np.argsort(values, kind="stable")
        simplex = simplex[order]
        values = values[order]
        results.fun = float(values[0])

        with timed(results, "stopping_criteria_time"):
            bad_value = classify_value(results.fun)
            if bad_value is not None:
                results.exit_condition = bad_value
                break
            if function_converged(float(values[-1]), float(values[0]), tol):
                results.exit_condition = ExitCondition.FUNCTION_TOLERANCE
                break
            distances = np.linalg.norm(simplex[1:] - simplex[0], axis=1)
            diameter = float(np.max(distances, initial=0.0))
            if diameter < config.area_tolerance:
                results.exit_condition = ExitCondition.ARGUMENT_TOLERANCE
                break
            if results.nit >= config.maximum_iterations:
                results.exit_condition = ExitCondition.NO_CONVERGENCE
                break

        centroid = simplex[:-1].mean(axis=0)
        worst = simplex[-1]
        reflected = centroid + ALPHA * (centroid - worst)
        f_reflected = objective(reflected)

        if values[0] <= f_reflected < values[-2]:
            simplex[-1], values[-1] = reflected, f_reflected
        elif f_reflected < values[0]:
            expanded = centroid + GAMMA * (reflected - centroid)
            f_expanded = objective(expanded)
            if f_expanded < f_reflected:
                simplex[-1], values[-1] = expanded, f_expanded
            else:
                simplex[-1], values[-1] = reflected, f_reflected
        else:
            if f_reflected < values[-1]:
                contracted = centroid + RHO * (reflected - centroid)
            else:
                contracted = centroid + RHO * (worst - centroid)
            f_contracted = objective(contracted)
            if f_contracted < min(f_reflected, values[-1]):
                simplex[-1], values[-1] = contracted, f_contracted
            else:
                best = simplex[0].copy()
                for i in range(1, simplex.shape[0]):
                    simplex[i] = best + SIGMA * (simplex[i] - best)
                    values[i] = objective(simplex[i])

        results.nit += 1
        with timed(results, "log_time"):
            logger.debug("nelder-mead it=%d f=%.6e", results.nit, values.min())

    function.copy_global_to_user(simplex[0], stats)
    results.total_time = time.perf_counter() - start_time
    logger.info(
        "nelder-mead finished: %s after %d iteration(s)",
        results.exit_condition.value,
        results.nit,
    )
    return results


__all__ = ["nelder_mead"]
