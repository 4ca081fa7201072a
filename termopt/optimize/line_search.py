"""Backtracking line search used by the derivative-based drivers."""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

Objective = Callable[[np.ndarray], float]


def backtracking_armijo(
    f: Objective,
    x: np.ndarray,
    p: np.ndarray,
    grad_fx: np.ndarray,
    fx: Optional[float] = None,
    alpha0: float = 1.0,
    rho: float = 0.5,
    c: float = 1e-4,
    max_iter: int = 50,
) -> tuple[float, int]:
    """Classic Armijo backtracking line search.

    Returns the accepted step length and the number of function
    evaluations. ``fx`` avoids re-evaluating ``f(x)`` when already known.
    Non-finite trial values are rejected like any other insufficient
    decrease.
    """
    if not (0 < c < 1):
        raise ValueError("Armijo constant c must lie in (0, 1)")
    if not (0 < rho < 1):
        raise ValueError("rho must lie in (0, 1)")
    alpha = float(alpha0)
    nfev = 0
    if fx is None:
        fx = f(x)
        nfev += 1
    grad_dot = float(np.dot(grad_fx, p))
    for _ in range(max_iter):
        f_new = f(x + alpha * p)
        nfev += 1
        if np.isfinite(f_new) and f_new <= fx + c * alpha * grad_dot:
            return alpha, nfev
        alpha *= rho
    return alpha, nfev


__all__ = ["backtracking_armijo"]
