"""Per-variable reparameterizations between user space and solver space.

A change of variables maps a solver-space point ``t`` (dimension
``t_dimension``) to the user-space value ``x`` (dimension ``x_dimension``)
that terms are evaluated at. The solver only ever sees ``t``; gradients
computed by terms with respect to ``x`` are pulled back to ``t`` with the
chain rule in :meth:`ChangeOfVariables.update_gradient`.

Example:
    >>> import numpy as np
    >>> from termopt.function import Function, GreaterThanZero
    >>> scale = np.array([2.0])
    >>> f = Function()
    >>> handle = f.add_variable(scale, change_of_variables=GreaterThanZero(1))
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from ..errors import InvalidArgumentError


class ChangeOfVariables(ABC):
    """Interface for a bijection ``x = phi(t)`` attached to one variable."""

    @abstractmethod
    def x_dimension(self) -> int:
        """Dimension of the user-space representation."""

    @abstractmethod
    def t_dimension(self) -> int:
        """Dimension of the solver-space representation."""

    @abstractmethod
    def t_to_x(self, t: np.ndarray) -> np.ndarray:
        """Map a solver-space point to user space."""

    @abstractmethod
    def x_to_t(self, x: np.ndarray) -> np.ndarray:
        """Map a user-space point to solver space."""

    @abstractmethod
    def update_gradient(
        self, gradient: np.ndarray, t: np.ndarray, user_gradient: np.ndarray
    ) -> None:
        """Add ``J(t)^T user_gradient`` to ``gradient`` in place.

        Args:
            gradient: Solver-space gradient slice of length ``t_dimension``.
            t: Current solver-space point.
            user_gradient: Gradient of the term with respect to ``x``.
        """

    @property
    def is_identity(self) -> bool:
        return False

    def release(self) -> None:
        """Free resources held by the transform. Called once on teardown."""


class Identity(ChangeOfVariables):
    """Variant used by variables registered without a change of variables."""

    def __init__(self, dimension: int):
        self._dimension = int(dimension)

    def x_dimension(self) -> int:
        return self._dimension

    def t_dimension(self) -> int:
        return self._dimension

    def t_to_x(self, t: np.ndarray) -> np.ndarray:
        return t

    def x_to_t(self, x: np.ndarray) -> np.ndarray:
        return x

    def update_gradient(
        self, gradient: np.ndarray, t: np.ndarray, user_gradient: np.ndarray
    ) -> None:
        gradient += user_gradient

    @property
    def is_identity(self) -> bool:
        return True


class GreaterThanZero(ChangeOfVariables):
    """Keeps every component strictly positive via ``x = exp(t)``."""

    def __init__(self, dimension: int = 1):
        if dimension < 1:
            raise InvalidArgumentError("GreaterThanZero: dimension must be positive.")
        self._dimension = int(dimension)

    def x_dimension(self) -> int:
        return self._dimension

    def t_dimension(self) -> int:
        return self._dimension

    def t_to_x(self, t: np.ndarray) -> np.ndarray:
        return np.exp(t)

    def x_to_t(self, x: np.ndarray) -> np.ndarray:
        return np.log(x)

    def update_gradient(
        self, gradient: np.ndarray, t: np.ndarray, user_gradient: np.ndarray
    ) -> None:
        gradient += user_gradient * np.exp(t)


class Box(ChangeOfVariables):
    """Keeps every component inside the open interval ``(a, b)``.

    Uses the logistic map ``x = a + (b - a) / (1 + exp(-t))``. User values on
    or outside the boundary are clipped just inside it by :meth:`x_to_t`.
    """

    def __init__(self, dimension: int, a: float, b: float):
        if dimension < 1:
            raise InvalidArgumentError("Box: dimension must be positive.")
        if not a < b:
            raise InvalidArgumentError("Box: require a < b.")
        self._dimension = int(dimension)
        self.a = float(a)
        self.b = float(b)

    def x_dimension(self) -> int:
        return self._dimension

    def t_dimension(self) -> int:
        return self._dimension

    def t_to_x(self, t: np.ndarray) -> np.ndarray:
        return self.a + (self.b - self.a) / (1.0 + np.exp(-t))

    def x_to_t(self, x: np.ndarray) -> np.ndarray:
        eps = 1e-12 * (self.b - self.a)
        x = np.clip(x, self.a + eps, self.b - eps)
        return np.log((x - self.a) / (self.b - x))

    def update_gradient(
        self, gradient: np.ndarray, t: np.ndarray, user_gradient: np.ndarray
    ) -> None:
        x = self.t_to_x(t)
        gradient += user_gradient * (x - self.a) * (self.b - x) / (self.b - self.a)


__all__ = ["ChangeOfVariables", "Identity", "GreaterThanZero", "Box"]
