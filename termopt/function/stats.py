"""Evaluation counters and timings collected by the caller."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Iterator, Optional


@dataclass
class EvaluationStats:
    """Counts and cumulative wall-clock seconds spent in a function.

    A stats object is passed explicitly to the evaluation methods of
    :class:`~termopt.function.Function`; evaluating without one records
    nothing.
    """

    evaluations_without_gradient: int = 0
    evaluations_with_gradient: int = 0
    evaluate_time: float = 0.0
    evaluate_with_hessian_time: float = 0.0
    write_gradient_hessian_time: float = 0.0
    copy_time: float = 0.0

    def merge(self, other: "EvaluationStats") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def report(self) -> str:
        return "\n".join(
            [
                f"Function evaluations without gradient : {self.evaluations_without_gradient}",
                f"Function evaluations with gradient    : {self.evaluations_with_gradient}",
                f"Function evaluate time            : {self.evaluate_time:.6f}",
                f"Function evaluate time (with g/H) : {self.evaluate_with_hessian_time:.6f}",
                f"Function write g/H time           : {self.write_gradient_hessian_time:.6f}",
                f"Function copy data time           : {self.copy_time:.6f}",
            ]
        )

    def __str__(self) -> str:
        return self.report()


@contextmanager
def timed(target: Optional[object], attribute: str) -> Iterator[None]:
    """Add the elapsed time of the block to ``target.<attribute>``."""
    if target is None:
        yield
        return
    start = time.perf_counter()
    try:
        yield
    finally:
        setattr(
            target, attribute, getattr(target, attribute) + time.perf_counter() - start
        )


__all__ = ["EvaluationStats", "timed"]
