import threading

import numpy as np
import pytest
from scipy import sparse

from termopt.errors import InvalidArgumentError, NotSupportedError
from termopt.function import EvaluationStats, Function, GreaterThanZero, Term
from termopt.interval import Interval


class CoupledQuadratic(Term):
    """f = (x1 - 1)^2 + 10 (x1 - x2)^2 with analytic derivatives."""

    def number_of_variables(self) -> int:
        return 2

    def variable_dimension(self, var: int) -> int:
        return 1

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        x1, x2 = x[0][0], x[1][0]
        if gradient is not None:
            gradient[0][0] = 2 * (x1 - 1) + 20 * (x1 - x2)
            gradient[1][0] = -20 * (x1 - x2)
        if hessian is not None:
            hessian[0][0][0, 0] = 22.0
            hessian[0][1][0, 0] = -20.0
            hessian[1][0][0, 0] = -20.0
            hessian[1][1][0, 0] = 20.0
        return (x1 - 1) ** 2 + 10 * (x1 - x2) ** 2

    def evaluate_interval(self, x):
        d = x[0][0] - 1
        e = x[0][0] - x[1][0]
        return d.square() + 10 * e.square()


class SquaredNorm(Term):
    """sum((x - c)^2) over one variable of dimension ``dim``."""

    def __init__(self, dim: int, center: float = 0.0):
        self.dim = dim
        self.center = center

    def number_of_variables(self) -> int:
        return 1

    def variable_dimension(self, var: int) -> int:
        return self.dim

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        r = x[0] - self.center
        if gradient is not None:
            gradient[0][:] = 2 * r
        if hessian is not None:
            hessian[0][0][:] = 2 * np.eye(self.dim)
        return float(r @ r)


class InnerProduct(Term):
    """f = <a, b> between two variables of equal dimension."""

    def __init__(self, dim: int):
        self.dim = dim

    def number_of_variables(self) -> int:
        return 2

    def variable_dimension(self, var: int) -> int:
        return self.dim

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        a, b = x
        if gradient is not None:
            gradient[0][:] = b
            gradient[1][:] = a
        if hessian is not None:
            hessian[0][1][:] = np.eye(self.dim)
            hessian[1][0][:] = np.eye(self.dim)
        return float(a @ b)


class Linear(Term):
    """f = c * x over one scalar variable."""

    def __init__(self, coefficient: float):
        self.coefficient = coefficient

    def number_of_variables(self) -> int:
        return 1

    def variable_dimension(self, var: int) -> int:
        return 1

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        if gradient is not None:
            gradient[0][0] = self.coefficient
        return self.coefficient * (x[0][0] + 1.0)


class Failing(Term):
    def __init__(self, message: str):
        self.message = message
        self.calls = 0

    def number_of_variables(self) -> int:
        return 1

    def variable_dimension(self, var: int) -> int:
        return 1

    def evaluate(self, x, gradient=None, hessian=None) -> float:
        self.calls += 1
        raise RuntimeError(self.message)


def build_chain(n: int, number_of_threads: int = 1):
    """Chain of 2-d variables coupled by inner products plus norm terms."""
    buffers = [np.arange(2 * i, 2 * i + 2, dtype=float) / 10 for i in range(n)]
    f = Function(number_of_threads=number_of_threads)
    handles = [f.add_variable(b) for b in buffers]
    for i, h in enumerate(handles):
        f.add_term(SquaredNorm(2, center=float(i)), h)
    for h0, h1 in zip(handles[:-1], handles[1:]):
        f.add_term(InnerProduct(2), [h0, h1])
    return f, buffers


def scenario_function(number_of_threads: int) -> Function:
    x1, x2 = np.zeros(1), np.zeros(1)
    f = Function(number_of_threads=number_of_threads)
    f.add_term(CoupledQuadratic(), [f.add_variable(x1), f.add_variable(x2)])
    return f


def test_scenario_value_gradient_hessian():
    f = scenario_function(1)
    x = f.copy_user_to_global()
    value, gradient, hessian = f.evaluate_hessian(x)
    assert value == pytest.approx(11.0)
    assert np.allclose(gradient, [-2.0, 0.0])
    assert np.allclose(hessian, [[22.0, -20.0], [-20.0, 20.0]])


def test_scenario_identical_for_one_and_four_threads():
    f1 = scenario_function(1)
    f4 = scenario_function(4)
    x = np.zeros(2)
    v1, g1, h1 = f1.evaluate_hessian(x)
    v4, g4, h4 = f4.evaluate_hessian(x)
    assert v1 == pytest.approx(v4)
    assert np.array_equal(g1, g4)
    assert np.array_equal(h1, h4)
    f1.close()
    f4.close()


def test_value_matches_with_and_without_gradient(rng):
    f, _ = build_chain(6)
    x = rng.normal(size=f.number_of_scalars)
    value, _ = f.evaluate_gradient(x)
    assert f.evaluate(x) == pytest.approx(value)


def test_gradient_matches_finite_differences(rng):
    f, _ = build_chain(4)
    x = rng.normal(size=f.number_of_scalars)
    _, gradient = f.evaluate_gradient(x)
    eps = 1e-6
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = eps
        fd = (f.evaluate(x + e) - f.evaluate(x - e)) / (2 * eps)
        assert gradient[i] == pytest.approx(fd, abs=1e-5)


def test_dense_hessian_is_zero_outside_term_blocks(rng):
    f, _ = build_chain(5)
    x = rng.normal(size=f.number_of_scalars)
    _, _, hessian = f.evaluate_hessian(x)
    mask = np.zeros_like(hessian, dtype=bool)
    for i in range(5):
        mask[2 * i : 2 * i + 2, 2 * i : 2 * i + 2] = True
    for i in range(4):
        mask[2 * i : 2 * i + 2, 2 * i + 2 : 2 * i + 4] = True
        mask[2 * i + 2 : 2 * i + 4, 2 * i : 2 * i + 2] = True
    assert np.all(hessian[~mask] == 0.0)
    assert np.allclose(hessian, hessian.T)


def test_sparse_and_dense_hessian_agree(rng):
    f, _ = build_chain(7, number_of_threads=3)
    x = rng.normal(size=f.number_of_scalars)
    v_dense, g_dense, h_dense = f.evaluate_hessian(x)
    v_sparse, g_sparse, h_sparse = f.evaluate_sparse_hessian(x)
    assert sparse.issparse(h_sparse)
    assert h_sparse.shape == h_dense.shape
    assert v_dense == pytest.approx(v_sparse)
    assert np.allclose(g_dense, g_sparse)
    assert np.allclose(h_sparse.toarray(), h_dense)
    f.close()


def test_sparse_hessian_sums_duplicate_entries():
    x = np.array([0.5, -0.5])
    f = Function(number_of_threads=1)
    h = f.add_variable(x)
    f.add_term(SquaredNorm(2), h)
    f.add_term(SquaredNorm(2, center=1.0), h)
    _, _, hessian = f.evaluate_sparse_hessian(f.copy_user_to_global())
    assert np.allclose(hessian.toarray(), 4 * np.eye(2))


def test_sparse_hessian_pattern_marks_structure():
    f, _ = build_chain(3)
    pattern = f.create_sparse_hessian_pattern()
    dense = pattern.toarray()
    assert pattern.shape == (6, 6)
    assert np.all(pattern.data == 1.0)
    assert dense[0, 2] == 1.0
    assert dense[0, 4] == 0.0
    assert dense[4, 4] == 1.0


def test_sparse_hessian_pattern_does_not_evaluate_terms():
    term = Failing("should not run")
    f = Function(number_of_threads=1)
    f.add_term(term, f.add_variable(np.zeros(1)))
    pattern = f.create_sparse_hessian_pattern()
    assert pattern.nnz == 1
    assert term.calls == 0


def test_multithreaded_gradient_matches_sequential(rng):
    f1, _ = build_chain(20, number_of_threads=1)
    f4, _ = build_chain(20, number_of_threads=4)
    x = rng.normal(size=f1.number_of_scalars)
    v1, g1, h1 = f1.evaluate_hessian(x)
    v4, g4, h4 = f4.evaluate_hessian(x)
    assert v1 == v4
    assert np.array_equal(g1, g4)
    assert np.array_equal(h1, h4)
    f4.close()


@pytest.mark.parametrize("number_of_threads", [2, 3, 4, 7])
def test_reduction_is_bitwise_independent_of_thread_count(rng, number_of_threads):
    coefficients = rng.permutation(np.logspace(-8, 8, 1000))

    def build(threads: int) -> Function:
        f = Function(number_of_threads=threads)
        h = f.add_variable(np.zeros(1))
        for c in coefficients:
            f.add_term(Linear(float(c)), h)
        return f

    f1, fn = build(1), build(number_of_threads)
    x = np.zeros(1)
    v1, g1 = f1.evaluate_gradient(x)
    vn, gn = fn.evaluate_gradient(x)
    assert v1 == vn
    assert np.array_equal(g1, gn)
    assert f1.evaluate(x) == fn.evaluate(x)
    fn.close()


def test_more_threads_than_terms():
    f = scenario_function(8)
    value, gradient = f.evaluate_gradient(np.zeros(2))
    assert value == pytest.approx(11.0)
    assert np.allclose(gradient, [-2.0, 0.0])
    f.close()


def test_term_fault_is_reraised_after_all_terms_run():
    good = SquaredNorm(1)
    bad = Failing("boom")
    f = Function(number_of_threads=2)
    h = f.add_variable(np.zeros(1))
    f.add_term(bad, h)
    f.add_term(good, h)
    f.add_term(bad, h)
    with pytest.raises(RuntimeError, match="boom"):
        f.evaluate_gradient(np.zeros(1))
    with pytest.raises(RuntimeError, match="boom"):
        f.evaluate(np.zeros(1))
    assert bad.calls == 4
    f.close()


def test_first_fault_in_term_order_wins():
    f = Function(number_of_threads=2)
    h = f.add_variable(np.zeros(1))
    f.add_term(Failing("first"), h)
    f.add_term(Failing("second"), h)
    with pytest.raises(RuntimeError, match="first"):
        f.evaluate(np.zeros(1))
    f.close()


def test_evaluation_recovers_after_fault():
    class Flaky(SquaredNorm):
        fail = True

        def evaluate(self, x, gradient=None, hessian=None):
            if Flaky.fail:
                raise ValueError("transient")
            return super().evaluate(x, gradient, hessian)

    f = Function(number_of_threads=1)
    f.add_term(Flaky(1), f.add_variable(np.zeros(1)))
    with pytest.raises(ValueError):
        f.evaluate_gradient(np.array([3.0]))
    Flaky.fail = False
    value, gradient = f.evaluate_gradient(np.array([3.0]))
    assert value == pytest.approx(9.0)
    assert np.allclose(gradient, [6.0])


def test_terms_run_on_worker_threads():
    seen = set()

    class Recording(SquaredNorm):
        def evaluate(self, x, gradient=None, hessian=None):
            seen.add(threading.get_ident())
            return super().evaluate(x, gradient, hessian)

    f = Function(number_of_threads=2)
    h = f.add_variable(np.zeros(1))
    for _ in range(4):
        f.add_term(Recording(1), h)
    assert f.evaluate(np.ones(1)) == pytest.approx(4.0)
    assert seen
    assert threading.main_thread().ident not in seen
    f.close()


def test_worker_pool_reused_until_thread_count_changes():
    f = Function(number_of_threads=2)
    h = f.add_variable(np.zeros(1))
    for _ in range(3):
        f.add_term(SquaredNorm(1), h)
    f.evaluate(np.ones(1))
    pool = f._evaluator._parallel
    assert pool is not None
    f.evaluate_gradient(np.ones(1))
    assert f._evaluator._parallel is pool
    f.set_number_of_threads(3)
    assert f._evaluator._parallel is None
    assert f.evaluate(np.ones(1)) == pytest.approx(3.0)
    assert f._evaluator._parallel.n_jobs == 3
    f.close()
    assert f._evaluator._parallel is None


def test_hessian_disabled_raises_not_supported():
    f = Function(hessian_enabled=False, number_of_threads=1)
    f.add_term(SquaredNorm(1), f.add_variable(np.zeros(1)))
    assert f.evaluate_gradient(np.ones(1))[0] == pytest.approx(1.0)
    with pytest.raises(NotSupportedError):
        f.evaluate_hessian(np.ones(1))
    with pytest.raises(NotSupportedError):
        f.evaluate_sparse_hessian(np.ones(1))


def test_hessian_with_change_of_variables_raises_not_supported():
    f = Function(number_of_threads=1)
    h = f.add_variable(np.ones(1), change_of_variables=GreaterThanZero(1))
    f.add_term(SquaredNorm(1), h)
    x = f.copy_user_to_global()
    with pytest.raises(NotSupportedError):
        f.evaluate_hessian(x)
    with pytest.raises(NotSupportedError):
        f.evaluate_sparse_hessian(x)


def test_gradient_through_change_of_variables():
    # x = exp(t), f = (x - 3)^2, df/dt = 2 (x - 3) x
    user = np.array([2.0])
    f = Function(number_of_threads=1)
    f.add_term(SquaredNorm(1, center=3.0), f.add_variable(user, change_of_variables=GreaterThanZero(1)))
    t = f.copy_user_to_global()
    assert t == pytest.approx(np.log([2.0]))
    value, gradient = f.evaluate_gradient(t)
    assert value == pytest.approx(1.0)
    assert gradient == pytest.approx([2 * (2.0 - 3.0) * 2.0])


def test_evaluate_rejects_wrong_length():
    f = scenario_function(1)
    with pytest.raises(InvalidArgumentError):
        f.evaluate(np.zeros(3))
    with pytest.raises(InvalidArgumentError):
        f.evaluate_gradient(np.zeros((2, 1)))


def test_evaluate_user_reads_user_buffers():
    x1, x2 = np.array([1.0]), np.array([2.0])
    f = Function(number_of_threads=1)
    f.add_term(CoupledQuadratic(), [f.add_variable(x1), f.add_variable(x2)])
    assert f.evaluate_user() == pytest.approx(10.0)
    x2[0] = 1.0
    assert f.evaluate_user() == pytest.approx(0.0)


def test_function_without_terms():
    f = Function(number_of_threads=2)
    f.add_variable(np.zeros(3))
    value, gradient, hessian = f.evaluate_hessian(np.ones(3))
    assert value == 0.0
    assert np.array_equal(gradient, np.zeros(3))
    assert np.array_equal(hessian, np.zeros((3, 3)))
    assert f.evaluate_sparse_hessian(np.ones(3))[2].nnz == 0
    f.close()


def test_interval_evaluation_encloses_values():
    f = scenario_function(1)
    box = [Interval(-1.0, 1.0), Interval(0.0, 2.0)]
    enclosure = f.evaluate_interval(box)
    for x1 in np.linspace(-1, 1, 5):
        for x2 in np.linspace(0, 2, 5):
            assert f.evaluate(np.array([x1, x2])) in enclosure
    point = f.evaluate_interval([Interval.point(0.0), Interval.point(0.0)])
    assert point.lower == pytest.approx(11.0)
    assert point.upper == pytest.approx(11.0)


def test_interval_evaluation_checks_length_and_support():
    f = scenario_function(1)
    with pytest.raises(InvalidArgumentError):
        f.evaluate_interval([Interval(0.0, 1.0)])
    g = Function(number_of_threads=1)
    g.add_term(SquaredNorm(1), g.add_variable(np.zeros(1)))
    with pytest.raises(NotSupportedError):
        g.evaluate_interval([Interval(0.0, 1.0)])


def test_stats_record_counts_and_times():
    f = scenario_function(1)
    stats = EvaluationStats()
    x = f.copy_user_to_global(stats)
    f.evaluate(x, stats)
    f.evaluate_gradient(x, stats)
    f.evaluate_hessian(x, stats)
    assert stats.evaluations_without_gradient == 1
    assert stats.evaluations_with_gradient == 2
    assert stats.copy_time >= 0.0
    assert stats.evaluate_with_hessian_time >= 0.0
    report = stats.report()
    assert "Function evaluations with gradient    : 2" in report
    assert "Function copy data time" in report


def test_evaluation_without_stats_records_nothing():
    f = scenario_function(1)
    stats = EvaluationStats()
    f.evaluate(np.zeros(2))
    assert stats == EvaluationStats()


def test_stats_merge():
    a = EvaluationStats(evaluations_with_gradient=2, copy_time=0.5)
    b = EvaluationStats(evaluations_with_gradient=3, copy_time=0.25)
    a.merge(b)
    assert a.evaluations_with_gradient == 5
    assert a.copy_time == pytest.approx(0.75)
