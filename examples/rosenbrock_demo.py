"""
Example: Assembling and minimizing a term-based objective

Builds the extended Rosenbrock function as a sum of small coupled terms,
then minimizes it with Newton's method (sparse Hessian), L-BFGS and
Nelder-Mead. A second problem shows a positivity constraint expressed as a
change of variables.
"""

import numpy as np

from termopt import (
    Function,
    GreaterThanZero,
    SolverConfig,
    SparsityMode,
    TorchTerm,
    lbfgs,
    nelder_mead,
    newton,
)


def build_rosenbrock(n: int) -> tuple:
    buffers = [np.array([-1.2 if i % 2 == 0 else 1.0]) for i in range(n)]
    function = Function(number_of_threads=2)
    handles = [function.add_variable(b) for b in buffers]
    for i in range(0, n, 2):
        function.add_term(
            TorchTerm(
                lambda a, b: 100 * (b[0] - a[0] ** 2) ** 2 + (1 - a[0]) ** 2,
                [1, 1],
            ),
            [handles[i], handles[i + 1]],
        )
    return function, buffers


def example_newton():
    print("=" * 60)
    print("Example 1: Newton's method with a sparse Hessian")
    print("=" * 60)
    function, buffers = build_rosenbrock(20)
    results = newton(function, SolverConfig(sparsity_mode=SparsityMode.SPARSE))
    print(f"Exit condition: {results.exit_condition.value}")
    print(f"Iterations: {results.nit}")
    print(f"Solution close to ones: {np.allclose(np.concatenate(buffers), 1.0)}")
    print(results.report())
    function.close()
    print()


def example_lbfgs_and_nelder_mead():
    print("=" * 60)
    print("Example 2: L-BFGS and Nelder-Mead")
    print("=" * 60)
    for solver in (lbfgs, nelder_mead):
        function, buffers = build_rosenbrock(4)
        results = solver(function, SolverConfig(maximum_iterations=2000))
        print(f"{solver.__name__}: {results.exit_condition.value}, f = {results.fun:.3e}")
        function.close()
    print()


def example_positive_variable():
    print("=" * 60)
    print("Example 3: Positivity through a change of variables")
    print("=" * 60)
    x = np.array([1.0])
    function = Function(number_of_threads=1)
    function.add_variable(x, change_of_variables=GreaterThanZero(1))
    function.add_term(TorchTerm(lambda v: (v[0] - 3.0) ** 2 + 1.0 / v[0], [1]), x)
    results = lbfgs(function)
    print(f"Exit condition: {results.exit_condition.value}")
    print(f"Minimizer: x = {x[0]:.6f}")
    print()


if __name__ == "__main__":
    example_newton()
    example_lbfgs_and_nelder_mead()
    example_positive_variable()
    print("Done.")
