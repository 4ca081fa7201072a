"""Per-task scratch buffers used while evaluating gradients and Hessians."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from ..logging import get_logger
from .terms import TermRegistry
from .variables import VariableRegistry

logger = get_logger(__name__)


@dataclass
class TaskScratch:
    """Private buffer of one evaluation task.

    ``term_gradient`` holds one row per term slot and is sliced to the
    dimensions of the term being evaluated.
    """

    term_gradient: np.ndarray

    def term_gradient_views(self, dimensions: List[int]) -> List[np.ndarray]:
        views = []
        for var, dim in enumerate(dimensions):
            view = self.term_gradient[var, :dim]
            view.fill(0.0)
            views.append(view)
        return views


class LocalStorage:
    """Lazily (re)allocated scratch shared by all evaluations of a function.

    Registry changes only mark the storage dirty so that registering many
    variables and terms in a row does not reallocate each time.
    """

    def __init__(self) -> None:
        self.allocated = False
        self.tasks: List[TaskScratch] = []
        self.max_arity = 1
        self.max_variable_dimension = 1
        self.hessian_rows = np.zeros(0, dtype=np.int64)
        self.hessian_cols = np.zeros(0, dtype=np.int64)

    def invalidate(self) -> None:
        self.allocated = False

    def ensure_allocated(
        self,
        variables: VariableRegistry,
        terms: TermRegistry,
        number_of_tasks: int,
    ) -> None:
        if not self.allocated:
            self.allocate(variables, terms, number_of_tasks)

    def allocate(
        self,
        variables: VariableRegistry,
        terms: TermRegistry,
        number_of_tasks: int,
    ) -> None:
        self.max_variable_dimension = max(
            [1] + [var.user_dimension for var in variables]
        )
        self.max_arity = max([1] + [term.arity for term in terms])
        n = variables.number_of_scalars
        self.tasks = [
            TaskScratch(
                term_gradient=np.zeros((self.max_arity, self.max_variable_dimension))
            )
            for _ in range(number_of_tasks)
        ]
        self.hessian_rows, self.hessian_cols = hessian_indices(terms)
        self.allocated = True
        logger.debug(
            "Allocated local storage: %d task(s), %d scalars, max arity %d, "
            "max dimension %d, %d Hessian entries",
            number_of_tasks,
            n,
            self.max_arity,
            self.max_variable_dimension,
            self.hessian_rows.size,
        )


def hessian_indices(terms: TermRegistry) -> Tuple[np.ndarray, np.ndarray]:
    """Global (row, col) of every Hessian block entry, in assembly order.

    Entries are ordered term by term, then block ``(i, j)`` row-major, then
    element row-major, matching ``ravel`` of each block.
    """
    rows: List[np.ndarray] = []
    cols: List[np.ndarray] = []
    for added in terms:
        offsets = [var.global_index for var in added.variables]
        for var0, dim0 in enumerate(added.dimensions):
            for var1, dim1 in enumerate(added.dimensions):
                r = offsets[var0] + np.arange(dim0)
                c = offsets[var1] + np.arange(dim1)
                rr, cc = np.meshgrid(r, c, indexing="ij")
                rows.append(rr.ravel())
                cols.append(cc.ravel())
    if not rows:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
    return (
        np.concatenate(rows).astype(np.int64),
        np.concatenate(cols).astype(np.int64),
    )


__all__ = ["LocalStorage", "TaskScratch", "hessian_indices"]
