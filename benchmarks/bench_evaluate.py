"""Benchmark gradient and Hessian assembly across thread counts."""

import time
from typing import Dict

import numpy as np

from termopt.function import Function, Term


class ChainQuadratic(Term):
    """(a - b)^2 + a^4 between two scalar variables."""

    def number_of_variables(self) -> int:
        return 2

    def variable_dimension(self, var: int) -> int:
        return 1

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        a, b = x[0][0], x[1][0]
        d = a - b
        if gradient is not None:
            gradient[0][0] = 2 * d + 4 * a**3
            gradient[1][0] = -2 * d
        if hessian is not None:
            hessian[0][0][0, 0] = 2 + 12 * a**2
            hessian[0][1][0, 0] = -2.0
            hessian[1][0][0, 0] = -2.0
            hessian[1][1][0, 0] = 2.0
        return d * d + a**4


def build_chain(n_variables: int, number_of_threads: int) -> Function:
    function = Function(number_of_threads=number_of_threads)
    buffers = [np.array([np.sin(i)]) for i in range(n_variables)]
    handles = [function.add_variable(b) for b in buffers]
    term = ChainQuadratic()
    for h0, h1 in zip(handles[:-1], handles[1:]):
        function.add_term(term, [h0, h1])
    return function


def benchmark_evaluation(
    n_variables: int,
    number_of_threads: int = 1,
    repeats: int = 20,
) -> Dict[str, float]:
    """Benchmark gradient and sparse Hessian evaluation.

    Args:
        n_variables: Number of scalar variables in the chain.
        number_of_threads: Worker threads used by the function.
        repeats: Timed evaluations per kind.

    Returns:
        Dictionary with timing results.
    """
    function = build_chain(n_variables, number_of_threads)
    x = function.copy_user_to_global()

    # Warmup
    function.evaluate_gradient(x)
    function.evaluate_sparse_hessian(x)

    start = time.perf_counter()
    for _ in range(repeats):
        function.evaluate_gradient(x)
    gradient_time = (time.perf_counter() - start) / repeats

    start = time.perf_counter()
    for _ in range(repeats):
        function.evaluate_sparse_hessian(x)
    hessian_time = (time.perf_counter() - start) / repeats
    function.close()

    return {
        "n_variables": n_variables,
        "number_of_threads": number_of_threads,
        "gradient_time_sec": gradient_time,
        "sparse_hessian_time_sec": hessian_time,
    }


if __name__ == "__main__":
    print("Benchmarking function evaluation...")

    for threads in (1, 2, 4):
        results = benchmark_evaluation(n_variables=20_000, number_of_threads=threads)
        print(f"Chain (20000 variables, {threads} thread(s)):")
        print(f"  Gradient: {results['gradient_time_sec']*1e3:.2f} ms")
        print(f"  Sparse Hessian: {results['sparse_hessian_time_sec']*1e3:.2f} ms")
