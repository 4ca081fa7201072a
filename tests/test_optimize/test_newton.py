import numpy as np
import pytest
import torch

from termopt.autodiff import TorchTerm
from termopt.errors import NotSupportedError
from termopt.function import Function, GreaterThanZero
from termopt.optimize import ExitCondition, SolverConfig, SparsityMode, newton


def convex_chain(n: int, number_of_threads: int = 1):
    """Strictly convex chain coupling neighbouring scalars."""
    buffers = [np.zeros(1) for _ in range(n)]
    function = Function(number_of_threads=number_of_threads)
    handles = [function.add_variable(b) for b in buffers]
    for i, h in enumerate(handles):
        center = float(i % 3) - 1.0
        function.add_term(
            TorchTerm(lambda v, c=center: (v[0] - c) ** 2 + 0.1 * v[0] ** 4, [1]), h
        )
    for h0, h1 in zip(handles[:-1], handles[1:]):
        function.add_term(TorchTerm(lambda a, b: (a[0] - b[0]) ** 2, [1, 1]), [h0, h1])
    return function, buffers


def test_quadratic_solved_in_one_step(quadratic_function):
    function, x1, x2 = quadratic_function()
    results = newton(function, SolverConfig(sparsity_mode=SparsityMode.DENSE))
    assert results.exit_condition is ExitCondition.GRADIENT_TOLERANCE
    assert results.success
    assert results.nit == 1
    assert x1[0] == pytest.approx(1.0)
    assert x2[0] == pytest.approx(1.0)
    assert results.fun == pytest.approx(0.0, abs=1e-20)


def test_rosenbrock_dense():
    x = np.array([-1.2, 1.0])
    function = Function(number_of_threads=1)
    function.add_variable(x)
    function.add_term(
        TorchTerm(lambda v: (1 - v[0]) ** 2 + 100 * (v[1] - v[0] ** 2) ** 2, [2]), x
    )
    results = newton(function)
    assert results.success
    assert results.nit < 40
    assert np.allclose(x, [1.0, 1.0], atol=1e-6)


def test_sparse_and_dense_agree():
    dense_fn, dense_x = convex_chain(30)
    sparse_fn, sparse_x = convex_chain(30, number_of_threads=3)
    dense = newton(dense_fn, SolverConfig(sparsity_mode=SparsityMode.DENSE))
    sparse = newton(sparse_fn, SolverConfig(sparsity_mode=SparsityMode.SPARSE))
    assert dense.success and sparse.success
    assert np.allclose(
        np.concatenate(dense_x), np.concatenate(sparse_x), atol=1e-8
    )
    assert sparse.fun == pytest.approx(dense.fun)
    sparse_fn.close()


def test_iteration_cap_reports_no_convergence():
    x = np.array([-1.2, 1.0])
    function = Function(number_of_threads=1)
    function.add_variable(x)
    function.add_term(
        TorchTerm(lambda v: (1 - v[0]) ** 2 + 100 * (v[1] - v[0] ** 2) ** 2, [2]), x
    )
    results = newton(function, SolverConfig(maximum_iterations=2))
    assert results.exit_condition is ExitCondition.NO_CONVERGENCE
    assert results.nit == 2
    assert not results.success
    # The last iterate is still written back.
    assert not np.allclose(x, [-1.2, 1.0])


def test_non_finite_value_stops():
    x = np.array([1.0])
    function = Function(number_of_threads=1)
    function.add_variable(x)
    function.add_term(TorchTerm(lambda v: torch.log(v[0] - 2.0), [1]), x)
    results = newton(function)
    assert results.exit_condition is ExitCondition.NAN
    assert results.nit == 0


def test_change_of_variables_not_supported():
    x = np.array([1.0])
    function = Function(number_of_threads=1)
    function.add_variable(x, change_of_variables=GreaterThanZero(1))
    function.add_term(TorchTerm(lambda v: (v[0] - 2.0) ** 2, [1]), x)
    with pytest.raises(NotSupportedError):
        newton(function)


def test_results_carry_evaluation_stats(quadratic_function):
    function, _, _ = quadratic_function()
    results = newton(function)
    assert results.stats.evaluations_with_gradient >= 2
    report = results.report()
    assert "Exit condition" in report
    assert "Function evaluations with gradient" in report
    assert results.total_time >= results.function_evaluation_time


def test_sparse_newton_uses_only_numeric_assembly(monkeypatch):
    function, buffers = convex_chain(8)

    def unexpected():
        raise AssertionError("pattern assembly is not part of the Newton loop")

    monkeypatch.setattr(function, "create_sparse_hessian_pattern", unexpected)
    results = newton(function, SolverConfig(sparsity_mode=SparsityMode.SPARSE))
    assert results.success
    assert results.stats.evaluations_with_gradient >= results.nit
