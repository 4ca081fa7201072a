"""Terms differentiated automatically with PyTorch autograd."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

import numpy as np
import torch

from .function.term import Block, Term
from .interval import Interval

TermFn = Callable[..., torch.Tensor]
IntervalFn = Callable[..., Interval]


class TorchTerm(Term):
    """Term whose gradient and Hessian come from ``torch.autograd``.

    Args:
        fn: Callable taking one float64 tensor per variable and returning a
            scalar tensor. It must be built from differentiable torch ops.
        dimensions: Dimension of each variable slot.
        interval_fn: Optional callable taking one sequence of
            :class:`~termopt.interval.Interval` per variable and returning an
            enclosure of ``fn`` over that box.

    Example:
        >>> term = TorchTerm(lambda x, y: (x[0] - 1) ** 2 + 10 * (x[0] - y[0]) ** 2, [1, 1])
        >>> term.evaluate([np.zeros(1), np.zeros(1)])
        11.0
    """

    def __init__(
        self,
        fn: TermFn,
        dimensions: Sequence[int],
        interval_fn: Optional[IntervalFn] = None,
    ):
        if len(dimensions) == 0:
            raise ValueError("TorchTerm needs at least one variable.")
        if any(int(d) < 1 for d in dimensions):
            raise ValueError("Variable dimensions must be positive.")
        self.fn = fn
        self.dimensions = [int(d) for d in dimensions]
        self.interval_fn = interval_fn

    def number_of_variables(self) -> int:
        return len(self.dimensions)

    def variable_dimension(self, var: int) -> int:
        return self.dimensions[var]

    def _call(self, *inputs: torch.Tensor) -> torch.Tensor:
        value = self.fn(*inputs)
        if not isinstance(value, torch.Tensor):
            value = torch.as_tensor(value, dtype=torch.float64)
        if value.numel() != 1:
            raise ValueError(
                f"Term function must return a scalar, got shape {tuple(value.shape)}."
            )
        return value.reshape(())

    def evaluate(
        self,
        x: Sequence[np.ndarray],
        gradient: Optional[List[np.ndarray]] = None,
        hessian: Optional[Block] = None,
    ) -> float:
        inputs = tuple(
            torch.tensor(np.asarray(xi), dtype=torch.float64) for xi in x
        )
        if gradient is None and hessian is None:
            with torch.no_grad():
                return float(self._call(*inputs))

        if hessian is not None:
            blocks = torch.autograd.functional.hessian(self._call, inputs)
            for i, row in enumerate(blocks):
                for j, block in enumerate(row):
                    hessian[i][j][:] = block.reshape(hessian[i][j].shape).numpy()

        for t in inputs:
            t.requires_grad_(True)
        value = self._call(*inputs)
        grads = torch.autograd.grad(value, inputs, allow_unused=True)
        if gradient is not None:
            for out, g in zip(gradient, grads):
                if g is not None:
                    out[:] = g.detach().numpy()
        return float(value.detach())

    def evaluate_interval(self, x: Sequence[Sequence[Interval]]) -> Interval:
        if self.interval_fn is None:
            return super().evaluate_interval(x)
        return self.interval_fn(*x)


__all__ = ["TorchTerm"]
