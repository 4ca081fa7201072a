"""Registry of terms bound to registered variables."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Union

import numpy as np

from ..errors import InvalidArgumentError
from ..logging import get_logger
from .term import Block, Term
from .variables import AddedVariable, VariableRef, VariableRegistry

logger = get_logger(__name__)


@dataclass(eq=False)
class AddedTerm:
    """A term together with its resolved variables and Hessian scratch."""

    term: Term
    variables: List[AddedVariable]
    temp_variables: List[np.ndarray]
    hessian: Optional[Block] = None
    dimensions: List[int] = field(default_factory=list)
    # Solver-space gradient contribution, one array per bound variable.
    gradient: List[np.ndarray] = field(default_factory=list)

    @property
    def arity(self) -> int:
        return len(self.variables)

    @property
    def has_change_of_variables(self) -> bool:
        return any(var.has_change_of_variables for var in self.variables)


def _allocate_hessian(dimensions: Sequence[int]) -> Block:
    return [[np.zeros((d0, d1)) for d1 in dimensions] for d0 in dimensions]


class TermRegistry:
    """Ordered list of added terms plus the set of distinct term objects."""

    def __init__(self, variables: VariableRegistry, hessian_enabled: bool = True):
        self._variables = variables
        self.hessian_enabled = hessian_enabled
        self._terms: List[AddedTerm] = []
        # id(term) -> term; each distinct object appears once.
        self._distinct: Dict[int, Term] = {}

    def __len__(self) -> int:
        return len(self._terms)

    def __iter__(self) -> Iterator[AddedTerm]:
        return iter(self._terms)

    def __getitem__(self, index: int) -> AddedTerm:
        return self._terms[index]

    @property
    def number_of_terms(self) -> int:
        return len(self._terms)

    @property
    def distinct_terms(self) -> List[Term]:
        return list(self._distinct.values())

    def add(
        self, term: Term, variables: Union[VariableRef, Sequence[VariableRef]]
    ) -> AddedTerm:
        """Bind ``term`` to ``variables``; nothing is recorded on failure."""
        if isinstance(variables, np.ndarray) or not isinstance(variables, Sequence):
            variables = [variables]

        arity = term.number_of_variables()
        if arity != len(variables):
            raise InvalidArgumentError("add_term: incorrect number of arguments.")

        resolved: List[AddedVariable] = []
        dimensions: List[int] = []
        for var, ref in enumerate(variables):
            added = self._variables.resolve(ref)
            expected = term.variable_dimension(var)
            if added.user_dimension != expected:
                raise InvalidArgumentError(
                    f"add_term: variable {var} has dimension {added.user_dimension} "
                    f"but the term expects {expected}."
                )
            resolved.append(added)
            dimensions.append(expected)

        added_term = AddedTerm(
            term=term,
            variables=resolved,
            temp_variables=[var.temp_space for var in resolved],
            hessian=_allocate_hessian(dimensions) if self.hessian_enabled else None,
            dimensions=dimensions,
            gradient=[np.zeros(var.solver_dimension) for var in resolved],
        )
        self._terms.append(added_term)
        self._distinct[id(term)] = term
        logger.debug(
            "Added term %s over %d variable(s)", type(term).__name__, arity
        )
        return added_term

    def release(self) -> None:
        for term in self._distinct.values():
            term.release()
        self._distinct.clear()


__all__ = ["AddedTerm", "TermRegistry"]
