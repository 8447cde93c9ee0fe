# tests/test_pcycle.py
"""Integration tests for bgc_engine.pcycle on the shoebox circulation.

This module verifies:
- Reaction terms (relu, uptake, remineralization, geological restoring).
- Parameter tables of the two- and three-tracer models (SI defaults).
- Model wiring: tracer names, transport and sms counts.
- Steady states of both models: convergence, non-negative tracers,
  phosphorus inventory fixed by geological restoring.
- Parameter sensitivities through dual and hyperdual parameter vectors.
- The Jacobian: complex-step agreement, and refusal of non-real
  parameter vectors.
- Initial states built from vectors of any scalar type.
"""

from __future__ import annotations

import numpy as np
import pytest

from bgc_engine import shoebox
from bgc_engine.dual import EPS, EPS1, EPS2, Dual, dualpart, hyperpart, realpart
from bgc_engine.grid import BoxGrid, state_to_tracers
from bgc_engine.pcycle import (
    DAY,
    MYR,
    PcycleModel,
    build_pcycle_model,
    geological_restoring,
    relu,
    remineralization,
    three_tracer_parameter_table,
    two_tracer_parameter_table,
    uptake,
)
from bgc_engine.steady_state import (
    NewtonConfig,
    SteadyStateProblem,
    SteadyStateResult,
    SteadyStateSolver,
)

# The shoebox surface layer is 200 m thick, so its boxes are centred at
# 100 m; a deeper euphotic base puts them inside the productive layer.
EUPHOTIC_BASE = 150.0


def _model(grid: BoxGrid, n_tracers: int) -> PcycleModel:
    return build_pcycle_model(
        grid, shoebox.build_transport(grid), n_tracers=n_tracers
    )


def _solve(model: PcycleModel, p: object) -> SteadyStateResult:
    f, jac = model.state_function_and_jacobian()
    problem = SteadyStateProblem(f=f, jac=jac, x0=model.initial_state(p), p=p)
    return SteadyStateSolver(NewtonConfig(rtol=1e-12, max_iter=100)).solve(problem)


def _inventory(grid: BoxGrid, tracers: tuple[np.ndarray, ...]) -> float:
    return float(sum(grid.wet_volumes @ t for t in tracers))


# -------------------------------------------------------------------
# Reaction terms
# -------------------------------------------------------------------


def test_relu_zeroes_negative_values() -> None:
    """relu keeps non-negative values and zeroes the rest."""
    np.testing.assert_array_equal(relu(np.array([-1.0, 0.0, 2.0])), [0.0, 0.0, 2.0])


def test_relu_on_duals_keeps_derivative_where_positive() -> None:
    """The dual part survives only where the real part is non-negative."""
    out = relu(np.array([-1.0, 2.0]) + EPS)
    np.testing.assert_array_equal(np.asarray(dualpart(out), dtype=float), [0.0, 1.0])


def test_uptake_only_in_euphotic_layer() -> None:
    """Uptake follows DIP^2 / (DIP + k) / tau above z0 and vanishes below."""
    params = two_tracer_parameter_table().finalize()(z0=100.0, k=1.0, tau=2.0)
    dip = np.array([1.0, 1.0, -1.0])
    depths = np.array([50.0, 500.0, 50.0])

    np.testing.assert_allclose(uptake(dip, params, depths), [0.25, 0.0, 0.0])


def test_remineralization_and_restoring() -> None:
    """First-order remineralization and restoring towards xgeo."""
    params = two_tracer_parameter_table().finalize()(xgeo=2.0, tau_geo=4.0)
    np.testing.assert_allclose(remineralization(np.array([2.0]), 0.5), [1.0])
    np.testing.assert_allclose(geological_restoring(np.array([1.0, 3.0]), params), [0.25, -0.25])


# -------------------------------------------------------------------
# Parameter tables
# -------------------------------------------------------------------


def test_two_tracer_table_defaults() -> None:
    """Defaults are stored in SI units."""
    p = two_tracer_parameter_table().finalize()()
    assert p.xgeo == pytest.approx(2.12e-3)
    assert p.tau_geo == pytest.approx(MYR)
    assert p.w0 == pytest.approx(0.64 / DAY)
    assert p.tau == pytest.approx(236.52 * DAY)
    assert p.optimizable_names() == ("k", "w0", "w_prime", "kappa", "tau")


def test_three_tracer_table_defaults() -> None:
    """The three-tracer table has separate DOP and POP rate constants."""
    p = three_tracer_parameter_table().finalize()()
    assert p.kappa_pop == pytest.approx(1.0 / (5.25 * DAY))
    assert p.sigma == 0.3
    assert len(p) == 6


def test_invalid_tracer_count(shoebox_grid: BoxGrid) -> None:
    """Only two- and three-tracer models exist."""
    with pytest.raises(ValueError, match="n_tracers must be 2 or 3"):
        _model(shoebox_grid, 4)


def test_model_wiring(shoebox_grid: BoxGrid) -> None:
    """Tracer names, transports and sms functions line up."""
    model = _model(shoebox_grid, 3)
    assert model.tracer_names == ("DIP", "DOP", "POP")
    assert model.n_tracers == 3
    assert len(model.transports) == len(model.sms) == 3


# -------------------------------------------------------------------
# Steady states
# -------------------------------------------------------------------


def test_two_tracer_steady_state(shoebox_grid: BoxGrid) -> None:
    """Mean DIP equals xgeo, POP is produced at the surface."""
    model = _model(shoebox_grid, 2)
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    result = _solve(model, p)

    assert result.converged
    dip, pop = state_to_tracers(result.x, shoebox_grid.n_wet, 2)
    assert np.all(dip > 0.0)
    assert np.all(pop >= -1e-20)
    mean_dip = _inventory(shoebox_grid, (dip,)) / shoebox_grid.wet_volumes.sum()
    assert mean_dip == pytest.approx(p.xgeo, rel=1e-4)
    # wet order: 0, 1, 2 at the surface; 4, 5 at depth
    assert dip[:3].mean() < dip[3:].mean()


def test_no_uptake_gives_uniform_dip(shoebox_grid: BoxGrid) -> None:
    """With the default 80 m euphotic base nothing is taken up."""
    model = _model(shoebox_grid, 2)
    p = model.parameters_type()
    result = _solve(model, p)

    dip, pop = state_to_tracers(result.x, shoebox_grid.n_wet, 2)
    np.testing.assert_allclose(dip, p.xgeo, rtol=1e-6)
    np.testing.assert_allclose(pop, 0.0, atol=1e-9)


def test_three_tracer_steady_state(shoebox_grid: BoxGrid) -> None:
    """Total phosphorus matches xgeo times the ocean volume."""
    model = _model(shoebox_grid, 3)
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    result = _solve(model, p)

    assert result.converged
    dip, dop, pop = state_to_tracers(result.x, shoebox_grid.n_wet, 3)
    assert np.all(dip > 0.0)
    assert dop.max() > 0.0
    mean_dip = _inventory(shoebox_grid, (dip,)) / shoebox_grid.wet_volumes.sum()
    assert mean_dip == pytest.approx(p.xgeo, rel=1e-4)


# -------------------------------------------------------------------
# Parameter sensitivities
# -------------------------------------------------------------------


def test_state_function_accepts_dual_parameters(shoebox_grid: BoxGrid) -> None:
    """dF/dp from a dual parameter vector matches a complex-step estimate."""
    model = _model(shoebox_grid, 2)
    f, _ = model.state_function_and_jacobian()
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    x = model.initial_state(p) * np.linspace(0.5, 1.5, 2 * shoebox_grid.n_wet)

    p_dual = model.parameters_type(z0=EUPHOTIC_BASE, w0=Dual(p.w0, 1.0))
    dual_derivative = np.asarray(dualpart(f(x, p_dual)), dtype=float)

    h = 1e-30
    p_complex = model.parameters_type(z0=EUPHOTIC_BASE, w0=p.w0 + 1j * h)
    complex_derivative = np.imag(f(x, p_complex)) / h

    np.testing.assert_allclose(dual_derivative, complex_derivative, rtol=1e-10)
    assert np.any(dual_derivative != 0.0)


def test_state_function_accepts_hyperdual_parameters(shoebox_grid: BoxGrid) -> None:
    """Seeding k with EPS1 + EPS2 gives dF/dk and d2F/dk2 of the uptake."""
    model = _model(shoebox_grid, 2)
    f, _ = model.state_function_and_jacobian()
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    n_wet = shoebox_grid.n_wet
    x = model.initial_state(p) * np.linspace(0.5, 1.5, 2 * n_wet)

    p_hyper = model.parameters_type(z0=EUPHOTIC_BASE, k=p.k + EPS1 + EPS2)
    out = f(x, p_hyper)

    dip = x[:n_wet]
    euphotic = shoebox_grid.wet_depths <= EUPHOTIC_BASE
    first = dip**2 / (p.tau * (dip + p.k) ** 2) * euphotic
    second = -2.0 * dip**2 / (p.tau * (dip + p.k) ** 3) * euphotic

    e1 = np.asarray(hyperpart(out, "e1"), dtype=float)
    e2 = np.asarray(hyperpart(out, "e2"), dtype=float)
    e1e2 = np.asarray(hyperpart(out, "e1e2"), dtype=float)
    np.testing.assert_allclose(e1, np.concatenate([first, -first]), rtol=1e-12)
    np.testing.assert_allclose(e2, e1, rtol=1e-12)
    np.testing.assert_allclose(e1e2, np.concatenate([second, -second]), rtol=1e-12)
    np.testing.assert_allclose(
        np.asarray(realpart(out), dtype=float), f(x, p), rtol=1e-10, atol=1e-22
    )


@pytest.mark.parametrize("seed", [EPS, EPS1])
def test_jacobian_refuses_infinitesimal_parameters(
    shoebox_grid: BoxGrid, seed: object
) -> None:
    """dF/dx is only defined at a real parameter vector."""
    model = _model(shoebox_grid, 2)
    _, jac = model.state_function_and_jacobian()
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    p_seeded = model.parameters_type(z0=EUPHOTIC_BASE, k=p.k + seed)

    with pytest.raises(ValueError, match=r"real-valued parameter vector.*\['k'\]"):
        jac(model.initial_state(p), p_seeded)


def test_jacobian_matches_complex_step(shoebox_grid: BoxGrid) -> None:
    """Local dual derivatives plus transport blocks match complex-step dF/dx."""
    model = _model(shoebox_grid, 2)
    f, jac = model.state_function_and_jacobian()
    p = model.parameters_type(z0=EUPHOTIC_BASE)
    x = model.initial_state(p) * np.linspace(0.5, 1.5, 2 * shoebox_grid.n_wet)

    h = 1e-30
    fd = np.column_stack([
        np.imag(f(x + 1j * h * e, p)) / h for e in np.eye(x.size)
    ])
    np.testing.assert_allclose(jac(x, p).toarray(), fd, rtol=1e-10, atol=1e-25)


@pytest.mark.parametrize("seed", [EPS, EPS1, 1e-30j])
def test_initial_state_accepts_any_scalar_type(
    shoebox_grid: BoxGrid, seed: object
) -> None:
    """The initial iterate uses the real part of xgeo."""
    model = _model(shoebox_grid, 2)
    p = model.parameters_type()
    x0 = model.initial_state(model.parameters_type(xgeo=p.xgeo + seed))

    assert x0.dtype == np.float64
    np.testing.assert_array_equal(x0, model.initial_state(p))
