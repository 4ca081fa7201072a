"""Registry assigning user variables to slots of the global state vector."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

import numpy as np

from ..errors import InvalidArgumentError
from ..logging import get_logger
from .change_of_variables import ChangeOfVariables, Identity

logger = get_logger(__name__)


@dataclass(frozen=True)
class VariableHandle:
    """Stable identity of a registered variable.

    ``index`` is the registration order; ``owner`` ties the handle to the
    registry that issued it.
    """

    index: int
    owner: int = field(repr=False)


@dataclass(eq=False)
class AddedVariable:
    """Registry record for one variable."""

    buffer: np.ndarray
    user_dimension: int
    solver_dimension: int
    global_index: int
    change_of_variables: ChangeOfVariables
    temp_space: np.ndarray

    @property
    def global_slice(self) -> slice:
        return slice(self.global_index, self.global_index + self.solver_dimension)

    @property
    def has_change_of_variables(self) -> bool:
        return not self.change_of_variables.is_identity


VariableRef = Union[VariableHandle, np.ndarray]


def _check_buffer(buffer: np.ndarray, dimension: int) -> None:
    if not isinstance(buffer, np.ndarray):
        raise InvalidArgumentError(
            f"add_variable: expected a numpy array, got {type(buffer).__name__}."
        )
    if buffer.ndim != 1 or buffer.dtype != np.float64:
        raise InvalidArgumentError(
            "add_variable: buffer must be a one-dimensional float64 array."
        )
    if not buffer.flags.writeable:
        raise InvalidArgumentError("add_variable: buffer must be writeable.")
    if dimension < 1 or dimension > buffer.size:
        raise InvalidArgumentError(
            f"add_variable: dimension {dimension} is invalid for a buffer "
            f"of size {buffer.size}."
        )


class VariableRegistry:
    """Arena of :class:`AddedVariable` records addressed by handle."""

    def __init__(self) -> None:
        self._variables: List[AddedVariable] = []
        # id(buffer) -> index; the record holds the buffer so ids stay unique.
        self._index_by_buffer: Dict[int, int] = {}
        self.number_of_scalars = 0

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[AddedVariable]:
        return iter(self._variables)

    @property
    def number_of_variables(self) -> int:
        return len(self._variables)

    def add(
        self,
        buffer: np.ndarray,
        dimension: Optional[int] = None,
        change_of_variables: Optional[ChangeOfVariables] = None,
    ) -> VariableHandle:
        """Register ``buffer`` or update the transform of a registered one."""
        existing = self._index_by_buffer.get(id(buffer))
        if existing is not None:
            variable = self._variables[existing]
            if dimension is None:
                dimension = variable.user_dimension
            self._update(variable, int(dimension), change_of_variables)
            return VariableHandle(existing, id(self))

        if dimension is None:
            dimension = getattr(buffer, "size", 0)
        dimension = int(dimension)
        _check_buffer(buffer, dimension)
        if change_of_variables is None:
            change_of_variables = Identity(dimension)
        elif change_of_variables.x_dimension() != dimension:
            raise InvalidArgumentError(
                "add_variable: dimension does not match the change of variables."
            )

        solver_dimension = int(change_of_variables.t_dimension())
        if solver_dimension < 1:
            raise InvalidArgumentError(
                "add_variable: change of variables has an empty solver dimension."
            )

        index = len(self._variables)
        self._variables.append(
            AddedVariable(
                buffer=buffer,
                user_dimension=dimension,
                solver_dimension=solver_dimension,
                global_index=self.number_of_scalars,
                change_of_variables=change_of_variables,
                temp_space=np.zeros(dimension),
            )
        )
        self._index_by_buffer[id(buffer)] = index
        self.number_of_scalars += solver_dimension
        logger.debug(
            "Registered variable %d (user dim %d, solver dim %d, offset %d)",
            index,
            dimension,
            solver_dimension,
            self._variables[index].global_index,
        )
        return VariableHandle(index, id(self))

    def _update(
        self,
        variable: AddedVariable,
        dimension: int,
        change_of_variables: Optional[ChangeOfVariables],
    ) -> None:
        if variable.user_dimension != dimension:
            raise InvalidArgumentError("add_variable: dimension mismatch.")
        if change_of_variables is None:
            change_of_variables = Identity(dimension)
        if change_of_variables.x_dimension() != variable.user_dimension:
            raise InvalidArgumentError("add_variable: x_dimension can not change.")
        if change_of_variables.t_dimension() != variable.solver_dimension:
            raise InvalidArgumentError("add_variable: t_dimension can not change.")
        if change_of_variables is not variable.change_of_variables:
            variable.change_of_variables.release()
            variable.change_of_variables = change_of_variables

    def resolve(self, ref: VariableRef) -> AddedVariable:
        """Look up the record for a handle or a registered buffer."""
        if isinstance(ref, VariableHandle):
            if ref.owner != id(self) or not 0 <= ref.index < len(self._variables):
                raise InvalidArgumentError("add_term: unknown variable handle.")
            return self._variables[ref.index]
        index = self._index_by_buffer.get(id(ref))
        if index is None:
            raise InvalidArgumentError("add_term: unknown variable.")
        return self._variables[index]

    def release(self) -> None:
        for variable in self._variables:
            variable.change_of_variables.release()


__all__ = ["AddedVariable", "VariableHandle", "VariableRef", "VariableRegistry"]
