# tests/test_steady_state.py
"""Unit tests for bgc_engine.steady_state.

This module verifies:
- state_function_and_jacobian plumbing: tracer-count validation, shapes,
  scalar broadcast of sms values.
- Jacobian assembled from transport blocks plus dual-number local
  derivatives, checked against complex-step derivatives.
- Newton and chord (jacobian_reuse > 1) convergence on small problems.
- strict vs lenient handling of non-convergence.
- NewtonConfig validation and non-finite residual detection.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
from scipy.sparse import csr_matrix, issparse

from bgc_engine import shoebox
from bgc_engine.errors import ConvergenceError
from bgc_engine.grid import BoxGrid
from bgc_engine.steady_state import (
    NewtonConfig,
    SteadyStateProblem,
    SteadyStateSolver,
    state_function_and_jacobian,
)

# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------


def _zero_transport(n: int) -> Any:
    def transport(p: Any) -> csr_matrix:
        return csr_matrix((n, n))

    return transport


def _cubic_problem(x0: float = 3.0) -> SteadyStateProblem:
    """One box, F(x) = 1 - x^3, root at x = 1."""

    def sms(x: Any, p: Any) -> Any:
        return 1.0 - x**3

    f, jac = state_function_and_jacobian([_zero_transport(1)], [sms], 1)
    return SteadyStateProblem(f=f, jac=jac, x0=np.array([x0]), p=None)


def _restoring_problem(grid: BoxGrid) -> SteadyStateProblem:
    """Shoebox circulation with restoring towards 2.0 on a 1-year scale."""
    transport = shoebox.build_transport(grid)
    tau = 365.25 * 86400

    def sms(x: Any, p: Any) -> Any:
        return (2.0 - x) / tau

    f, jac = state_function_and_jacobian([lambda p: transport], [sms], grid.n_wet)
    return SteadyStateProblem(f=f, jac=jac, x0=np.zeros(grid.n_wet), p=None)


# -------------------------------------------------------------------
# State function and Jacobian
# -------------------------------------------------------------------


def test_tracer_count_mismatch_rejected() -> None:
    """One sms function per transport function is required."""
    with pytest.raises(ValueError, match="2 sms function"):
        state_function_and_jacobian(
            [_zero_transport(2)], [lambda x, p: x, lambda x, p: x], 2
        )


def test_no_tracers_rejected() -> None:
    """At least one tracer is needed."""
    with pytest.raises(ValueError, match="At least one tracer"):
        state_function_and_jacobian([], [], 2)


def test_scalar_sms_is_broadcast() -> None:
    """A scalar sms value applies to every box."""
    f, _ = state_function_and_jacobian([_zero_transport(3)], [lambda x, p: 2.0], 3)
    np.testing.assert_array_equal(f(np.zeros(3), None), [2.0, 2.0, 2.0])


def test_sms_shape_mismatch_rejected() -> None:
    """sms values must have one entry per wet box."""
    f, _ = state_function_and_jacobian(
        [_zero_transport(3)], [lambda x, p: np.zeros(2)], 3
    )
    with pytest.raises(ValueError, match="sms function 0 returned shape"):
        f(np.zeros(3), None)


def test_jacobian_of_coupled_local_terms() -> None:
    """Cross-tracer derivatives land on the off-diagonal blocks."""
    n = 2
    transport_a = csr_matrix(np.array([[-1.0, 1.0], [1.0, -1.0]]))

    def sms_a(a: Any, b: Any, p: Any) -> Any:
        return -a * b

    def sms_b(a: Any, b: Any, p: Any) -> Any:
        return a * b - 2.0 * b

    f, jac = state_function_and_jacobian(
        [lambda p: transport_a, _zero_transport(n)], [sms_a, sms_b], n
    )
    x = np.array([1.0, 2.0, 3.0, 4.0])
    j = jac(x, None)

    assert issparse(j)
    expected = np.array([
        [-1.0 - 3.0, 1.0, -1.0, 0.0],
        [1.0, -1.0 - 4.0, 0.0, -2.0],
        [3.0, 0.0, 1.0 - 2.0, 0.0],
        [0.0, 4.0, 0.0, 2.0 - 2.0],
    ])
    np.testing.assert_allclose(j.toarray(), expected)


def test_jacobian_matches_complex_step(shoebox_grid: BoxGrid) -> None:
    """Dual-number local derivatives agree with complex-step derivatives."""
    transport = shoebox.build_transport(shoebox_grid)

    def sms(x: Any, p: Any) -> Any:
        return 1e-8 * x**2 / (x + 0.5)

    f, jac = state_function_and_jacobian([lambda p: transport], [sms], 5)
    x = np.linspace(0.5, 1.5, 5)
    h = 1e-30
    fd = np.column_stack([
        np.imag(f(x + 1j * h * e, None)) / h for e in np.eye(5)
    ])
    np.testing.assert_allclose(jac(x, None).toarray(), fd, rtol=1e-10, atol=1e-25)


# -------------------------------------------------------------------
# Solver
# -------------------------------------------------------------------


def test_linear_problem_converges_in_one_step(shoebox_grid: BoxGrid) -> None:
    """Newton solves a linear problem exactly in one update."""
    result = SteadyStateSolver().solve(_restoring_problem(shoebox_grid))

    assert result.converged
    assert result.n_iter == 1
    np.testing.assert_allclose(result.x, 2.0, rtol=1e-9)
    assert len(result.residual_history) == 2


def test_newton_converges_on_cubic() -> None:
    """Plain Newton finds the root of 1 - x^3."""
    result = SteadyStateSolver(NewtonConfig(rtol=1e-12)).solve(_cubic_problem())
    assert result.converged
    assert result.x[0] == pytest.approx(1.0, rel=1e-10)


def test_chord_iterations_converge_with_reused_jacobian() -> None:
    """Reusing the Jacobian still converges, in more iterations."""
    newton = SteadyStateSolver(NewtonConfig(rtol=1e-12)).solve(_cubic_problem(1.5))
    chord = SteadyStateSolver(
        NewtonConfig(rtol=1e-12, jacobian_reuse=3, max_iter=200)
    ).solve(_cubic_problem(1.5))

    assert chord.converged
    assert chord.x[0] == pytest.approx(1.0, rel=1e-10)
    assert chord.n_iter >= newton.n_iter


def test_jacobian_reuse_calls_jacobian_less_often() -> None:
    """jacobian_reuse=k evaluates the Jacobian once per k updates."""
    problem = _cubic_problem(1.5)
    calls: list[int] = []
    inner = problem.jac

    def counting_jac(x: Any, p: Any) -> Any:
        calls.append(1)
        return inner(x, p)

    problem.jac = counting_jac
    result = SteadyStateSolver(
        NewtonConfig(rtol=1e-12, jacobian_reuse=4, max_iter=200)
    ).solve(problem)

    assert len(calls) == -(-result.n_iter // 4)


def test_strict_non_convergence_raises() -> None:
    """Running out of iterations raises under strict mode."""
    solver = SteadyStateSolver(NewtonConfig(max_iter=1))
    with pytest.raises(ConvergenceError, match="did not converge in 1"):
        solver.solve(_cubic_problem())


def test_lenient_non_convergence_warns() -> None:
    """Lenient mode warns and returns the last iterate."""
    solver = SteadyStateSolver(NewtonConfig(max_iter=1, strict=False))
    with pytest.warns(RuntimeWarning, match="did not converge"):
        result = solver.solve(_cubic_problem())

    assert not result.converged
    assert result.n_iter == 1
    assert result.x[0] != 3.0


def test_already_converged_initial_state() -> None:
    """A root as initial state needs no update."""
    result = SteadyStateSolver().solve(_cubic_problem(1.0))
    assert result.converged
    assert result.n_iter == 0


def test_nonfinite_residual_raises() -> None:
    """A non-finite state function is reported immediately."""
    f, jac = state_function_and_jacobian(
        [_zero_transport(1)], [lambda x, p: np.log(x)], 1
    )
    problem = SteadyStateProblem(f=f, jac=jac, x0=np.array([0.0]), p=None)
    with (
        np.errstate(divide="ignore"),
        pytest.raises(FloatingPointError, match="non-finite"),
    ):
        SteadyStateSolver().solve(problem)


def test_initial_state_must_be_1d() -> None:
    """x0 is a flat state vector."""
    problem = _cubic_problem()
    problem.x0 = np.ones((1, 1))
    with pytest.raises(ValueError, match="Initial state shape"):
        SteadyStateSolver().solve(problem)


@pytest.mark.parametrize(
    "kwargs",
    [{"rtol": -1.0}, {"atol": -1.0}, {"max_iter": 0}, {"jacobian_reuse": 0}],
)
def test_newton_config_validation(kwargs: dict[str, Any]) -> None:
    """Tolerances are non-negative and iteration limits positive."""
    with pytest.raises(ValueError, match="must be"):
        NewtonConfig(**kwargs)
