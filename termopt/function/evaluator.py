"""Evaluation of all terms of a function over the global state vector.

The term list is split into contiguous chunks, one per task, run on a
``joblib`` thread pool. Each task owns a
:class:`~termopt.function.storage.TaskScratch`. Term values go to a slot per
term; gradient contributions and Hessian blocks are owned by their
:class:`~termopt.function.terms.AddedTerm`. Global values, gradients and
Hessians are reduced in term order after every task has finished, so results
are identical for any number of threads.
"""

from __future__ import annotations

import numbers
import os
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed
from scipy import sparse

from ..errors import InvalidArgumentError, NotSupportedError
from ..interval import Interval
from ..logging import get_logger
from .stats import EvaluationStats, timed
from .storage import LocalStorage
from .terms import TermRegistry
from .variables import VariableRegistry

logger = get_logger(__name__)

TaskResult = Optional[BaseException]


def default_number_of_threads() -> int:
    return os.cpu_count() or 1


class Evaluator:
    """Copies data between representations and evaluates every term."""

    def __init__(
        self,
        variables: VariableRegistry,
        terms: TermRegistry,
        storage: LocalStorage,
        number_of_threads: Optional[int] = None,
    ):
        self.variables = variables
        self.terms = terms
        self.storage = storage
        self._parallel: Optional[Parallel] = None
        self.number_of_threads = default_number_of_threads()
        if number_of_threads is not None:
            self.set_number_of_threads(number_of_threads)

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------
    def set_number_of_threads(self, num: int) -> None:
        if isinstance(num, bool) or not isinstance(num, numbers.Integral) or num <= 0:
            raise InvalidArgumentError(
                f"set_number_of_threads: invalid number of threads {num!r}."
            )
        num = int(num)
        if num == self.number_of_threads:
            return
        self.shutdown()
        self.number_of_threads = num
        self.storage.invalidate()
        logger.debug("Using %d evaluation thread(s)", num)

    def shutdown(self) -> None:
        if self._parallel is not None:
            self._parallel.__exit__(None, None, None)
            self._parallel = None

    def _workers(self) -> Parallel:
        if self._parallel is None:
            # Terms write into shared scratch, so only threads will do.
            parallel = Parallel(n_jobs=self.number_of_threads, require="sharedmem")
            # Entering the context keeps the worker pool alive between calls.
            self._parallel = parallel.__enter__()
        return self._parallel

    def _run_tasks(self, task: Callable[[int, Sequence[int]], TaskResult]) -> None:
        """Run ``task`` over every chunk of terms.

        The first fault recorded by any task, in task order, is raised after
        all tasks have finished.
        """
        chunks = np.array_split(np.arange(len(self.terms)), self.number_of_threads)
        if self.number_of_threads == 1:
            errors: List[TaskResult] = [task(0, chunks[0])]
        else:
            errors = self._workers()(
                delayed(task)(t, chunk)
                for t, chunk in enumerate(chunks)
                if len(chunk) > 0
            )

        for error in errors:
            if error is not None:
                raise error

    # ------------------------------------------------------------------
    # Copying between representations
    # ------------------------------------------------------------------
    def check_point(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        n = self.variables.number_of_scalars
        if x.ndim != 1 or x.size != n:
            raise InvalidArgumentError(
                f"Expected a global vector of length {n}, got shape {x.shape}."
            )
        return x

    def copy_global_to_local(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> None:
        with timed(stats, "copy_time"):
            for var in self.variables:
                var.temp_space[:] = var.change_of_variables.t_to_x(x[var.global_slice])

    def copy_user_to_global(
        self, stats: Optional[EvaluationStats] = None
    ) -> np.ndarray:
        x = np.zeros(self.variables.number_of_scalars)
        with timed(stats, "copy_time"):
            for var in self.variables:
                x[var.global_slice] = var.change_of_variables.x_to_t(
                    var.buffer[: var.user_dimension]
                )
        return x

    def copy_global_to_user(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> None:
        x = self.check_point(x)
        with timed(stats, "copy_time"):
            for var in self.variables:
                var.buffer[: var.user_dimension] = var.change_of_variables.t_to_x(
                    x[var.global_slice]
                )

    def copy_user_to_local(self, stats: Optional[EvaluationStats] = None) -> None:
        with timed(stats, "copy_time"):
            for var in self.variables:
                var.temp_space[:] = var.buffer[: var.user_dimension]

    # ------------------------------------------------------------------
    # Value only
    # ------------------------------------------------------------------
    def evaluate_from_local_storage(
        self, stats: Optional[EvaluationStats] = None
    ) -> float:
        terms = self.terms
        values = np.zeros(len(terms))

        def task(t: int, indices: Sequence[int]) -> TaskResult:
            error = None
            for i in indices:
                added = terms[i]
                try:
                    values[i] = added.term.evaluate(added.temp_variables)
                except Exception as exc:
                    if error is None:
                        error = exc
            return error

        if stats is not None:
            stats.evaluations_without_gradient += 1
        with timed(stats, "evaluate_time"):
            self._run_tasks(task)
        return float(values.sum())

    def evaluate(self, x: np.ndarray, stats: Optional[EvaluationStats] = None) -> float:
        x = self.check_point(x)
        self.copy_global_to_local(x, stats)
        return self.evaluate_from_local_storage(stats)

    def evaluate_user(self, stats: Optional[EvaluationStats] = None) -> float:
        self.copy_user_to_local(stats)
        return self.evaluate_from_local_storage(stats)

    # ------------------------------------------------------------------
    # Gradient and Hessian
    # ------------------------------------------------------------------
    def _check_hessian_supported(self) -> None:
        if not self.terms.hessian_enabled:
            raise NotSupportedError("Hessian computation is not enabled.")
        for added in self.terms:
            if added.has_change_of_variables:
                raise NotSupportedError(
                    "Change of variables not supported for Hessians."
                )

    def _evaluate_terms(
        self,
        x: np.ndarray,
        with_hessian: bool,
        stats: Optional[EvaluationStats],
    ) -> Tuple[float, np.ndarray]:
        """Evaluate every term and return the value and global gradient.

        Tasks only write term-owned slots: the value, the solver-space
        gradient contribution and the Hessian blocks of each term. The
        global gradient is then reduced in term order, so it does not depend
        on the number of threads.
        """
        if stats is not None:
            stats.evaluations_with_gradient += 1
        self.storage.ensure_allocated(self.variables, self.terms, self.number_of_threads)
        self.copy_global_to_local(x, stats)

        terms = self.terms
        scratch = self.storage.tasks
        values = np.zeros(len(terms))

        def task(t: int, indices: Sequence[int]) -> TaskResult:
            own = scratch[t]
            error = None
            for i in indices:
                added = terms[i]
                try:
                    local_gradient = own.term_gradient_views(added.dimensions)
                    if with_hessian:
                        for row in added.hessian:
                            for block in row:
                                block.fill(0.0)
                        values[i] = added.term.evaluate(
                            added.temp_variables, local_gradient, added.hessian
                        )
                    else:
                        values[i] = added.term.evaluate(
                            added.temp_variables, local_gradient
                        )
                    for var, g, out in zip(
                        added.variables, local_gradient, added.gradient
                    ):
                        out.fill(0.0)
                        var.change_of_variables.update_gradient(
                            out, x[var.global_slice], g
                        )
                except Exception as exc:
                    if error is None:
                        error = exc
            return error

        with timed(stats, "evaluate_with_hessian_time"):
            self._run_tasks(task)

        with timed(stats, "write_gradient_hessian_time"):
            gradient = np.zeros(self.variables.number_of_scalars)
            for added in terms:
                for var, contribution in zip(added.variables, added.gradient):
                    gradient[var.global_slice] += contribution
        return float(values.sum()), gradient

    def evaluate_gradient(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray]:
        x = self.check_point(x)
        return self._evaluate_terms(x, False, stats)

    def evaluate_hessian(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        x = self.check_point(x)
        self._check_hessian_supported()
        value, gradient = self._evaluate_terms(x, True, stats)

        with timed(stats, "write_gradient_hessian_time"):
            n = self.variables.number_of_scalars
            hessian = np.zeros((n, n))
            for added in self.terms:
                offsets = [var.global_index for var in added.variables]
                for var0, dim0 in enumerate(added.dimensions):
                    rows = slice(offsets[var0], offsets[var0] + dim0)
                    for var1, dim1 in enumerate(added.dimensions):
                        cols = slice(offsets[var1], offsets[var1] + dim1)
                        hessian[rows, cols] += added.hessian[var0][var1]
        return value, gradient, hessian

    def evaluate_sparse_hessian(
        self, x: np.ndarray, stats: Optional[EvaluationStats] = None
    ) -> Tuple[float, np.ndarray, sparse.csc_matrix]:
        x = self.check_point(x)
        self._check_hessian_supported()
        value, gradient = self._evaluate_terms(x, True, stats)

        with timed(stats, "write_gradient_hessian_time"):
            blocks = [
                block.ravel()
                for added in self.terms
                for row in added.hessian
                for block in row
            ]
            data = np.concatenate(blocks) if blocks else np.zeros(0)
            hessian = self._from_triplets(data)
        return value, gradient, hessian

    def create_sparse_hessian_pattern(self) -> sparse.csc_matrix:
        """Sparsity structure of the Hessian with every stored entry 1.0."""
        self.storage.ensure_allocated(self.variables, self.terms, self.number_of_threads)
        pattern = self._from_triplets(np.ones(self.storage.hessian_rows.size))
        pattern.data[:] = 1.0
        return pattern

    def _from_triplets(self, data: np.ndarray) -> sparse.csc_matrix:
        # Duplicate (row, col) pairs are summed by the COO -> CSC conversion.
        n = self.variables.number_of_scalars
        coo = sparse.coo_matrix(
            (data, (self.storage.hessian_rows, self.storage.hessian_cols)),
            shape=(n, n),
        )
        return coo.tocsc()

    # ------------------------------------------------------------------
    # Interval arithmetic
    # ------------------------------------------------------------------
    def evaluate_interval(
        self, x: Sequence[Interval], stats: Optional[EvaluationStats] = None
    ) -> Interval:
        n = self.variables.number_of_scalars
        if len(x) != n:
            raise InvalidArgumentError(
                f"Expected {n} intervals, got {len(x)}."
            )
        if stats is not None:
            stats.evaluations_without_gradient += 1
        with timed(stats, "evaluate_time"):
            value = Interval.point(0.0)
            for added in self.terms:
                if added.has_change_of_variables:
                    raise NotSupportedError(
                        "Change of variables not supported for interval evaluation."
                    )
                arguments = [
                    x[var.global_index : var.global_index + var.user_dimension]
                    for var in added.variables
                ]
                value = value + added.term.evaluate_interval(arguments)
        return value


__all__ = ["Evaluator", "default_number_of_threads"]
