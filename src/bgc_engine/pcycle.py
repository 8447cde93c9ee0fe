# src/bgc_engine/pcycle.py
"""Phosphorus cycle models on a box grid.

Two variants are provided:

Two tracers (DIP, POP):
    dDIP/dt = T @ DIP - U(DIP) + R(POP) + G(DIP)
    dPOP/dt = S @ POP + U(DIP) - R(POP)

Three tracers (DIP, DOP, POP):
    dDIP/dt = T @ DIP - U(DIP) + R_dop(DOP) + G(DIP)
    dDOP/dt = T @ DOP + sigma U(DIP) - R_dop(DOP) + R_pop(POP)
    dPOP/dt = S @ POP + (1 - sigma) U(DIP) - R_pop(POP)

where T is the circulation, S the sinking (PFD) operator, U the uptake in
the euphotic layer, R the first-order remineralization (or dissolution) and
G a weak geological restoring that fixes the total phosphorus inventory.

All reaction terms use plain arithmetic on the tracer and parameter values,
so they accept dual-number tracers (for the Jacobian) and dual-number
parameters (for parameter sensitivities).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from .dual import realpart, real_values
from .parameters import ParameterTable, ParametersBase
from .sinking import build_sinking_operator_from_law, linear_sinking_speed
from .steady_state import state_function_and_jacobian

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from .grid import BoxGrid
    from .matrix_ops import Operator
    from .steady_state import (
        JacobianFunction,
        SMSFunction,
        StateFunction,
        TransportFunction,
    )

_TRACER_COUNT_ERROR = "n_tracers must be 2 or 3; got {n}"

DAY = 86400.0  # s
YEAR = 365.25 * DAY
MYR = 1e6 * YEAR


# =============================================================================
# Reaction terms
# =============================================================================


def relu(x: ArrayLike) -> np.ndarray:
    """Return `x` where it is non-negative and zero elsewhere."""
    arr = np.asarray(x)
    return np.where(real_values(arr) >= 0, arr, 0 * arr)


def uptake(dip: ArrayLike, p: Any, depths: ArrayLike) -> np.ndarray:
    """Michaelis-Menten-like uptake of DIP, restricted to the euphotic layer.

    `U = 1/tau * DIP+^2 / (DIP+ + k)` above `z0`, zero below, with
    `DIP+ = relu(DIP)` so that the pole at `DIP = -k` is never reached.
    """
    dip_pos = relu(dip)
    euphotic = np.asarray(depths, dtype=float) <= float(np.real(realpart(p.z0)))
    return 1 / p.tau * dip_pos**2 / (dip_pos + p.k) * euphotic


def remineralization(x: ArrayLike, rate: Any) -> np.ndarray:
    """First-order conversion `rate * x`."""
    return rate * np.asarray(x)


def geological_restoring(x: ArrayLike, p: Any) -> np.ndarray:
    """Slow restoring of `x` towards `p.xgeo` on the timescale `p.tau_geo`."""
    return (p.xgeo - np.asarray(x)) / p.tau_geo


# =============================================================================
# Parameter tables
# =============================================================================


def two_tracer_parameter_table() -> ParameterTable:
    """Return the parameter table of the DIP/POP model (SI units)."""
    t = ParameterTable()
    t.add(
        "xgeo",
        2.12e-3,
        unit="mol/m^3",
        variance_obs=(0.1 * 2.17e-3) ** 2,
        description="Mean PO4 concentration",
        latex=r"x_\mathrm{geo}",
    )
    t.add(
        "tau_geo",
        1.0 * MYR,
        unit="s",
        description="Geological restoring timescale",
        latex=r"\tau_\mathrm{geo}",
    )
    t.add(
        "k",
        6.62e-6,
        unit="mol/m^3",
        optimizable=True,
        description="Half-saturation constant (Michaelis-Menten)",
        latex="k",
    )
    t.add(
        "z0",
        80.0,
        unit="m",
        description="Depth of the euphotic layer base",
        latex="z_0",
    )
    t.add(
        "w0",
        0.64 / DAY,
        unit="m/s",
        optimizable=True,
        description="Sinking velocity at surface",
        latex="w_0",
    )
    t.add(
        "w_prime",
        0.13 / DAY,
        unit="1/s",
        optimizable=True,
        description="Vertical gradient of sinking velocity",
        latex="w'",
    )
    t.add(
        "kappa",
        0.19 / DAY,
        unit="1/s",
        optimizable=True,
        description="Remineralization rate constant (POP to DIP)",
        latex=r"\kappa",
    )
    t.add(
        "tau",
        236.52 * DAY,
        unit="s",
        optimizable=True,
        description="Maximum uptake rate timescale",
        latex=r"\tau",
    )
    return t


def three_tracer_parameter_table() -> ParameterTable:
    """Return the parameter table of the DIP/DOP/POP model (SI units)."""
    t = ParameterTable()
    t.add(
        "xgeo",
        2.17e-3,
        unit="mol/m^3",
        variance_obs=(0.1 * 2.17e-3) ** 2,
        description="Geological mean P concentration",
        latex=r"x_\mathrm{geo}",
    )
    t.add(
        "tau_geo",
        1.0 * MYR,
        unit="s",
        description="Geological restoring timescale",
        latex=r"\tau_\mathrm{geo}",
    )
    t.add(
        "k",
        1e-5,
        unit="mol/m^3",
        optimizable=True,
        description="Half-saturation constant (Michaelis-Menten)",
        latex="k",
    )
    t.add("z0", 80.0, unit="m", description="Depth of the euphotic layer base")
    t.add(
        "w0",
        1.0 / DAY,
        unit="m/s",
        optimizable=True,
        description="Sinking velocity at surface",
    )
    t.add(
        "w_prime",
        1 / 4.4625 / DAY,
        unit="1/s",
        optimizable=True,
        description="Vertical gradient of sinking velocity",
    )
    t.add(
        "kappa_dop",
        1 / (0.25 * YEAR),
        unit="1/s",
        optimizable=True,
        description="Remineralization rate constant (DOP to DIP)",
    )
    t.add(
        "kappa_pop",
        1 / (5.25 * DAY),
        unit="1/s",
        optimizable=True,
        description="Dissolution rate constant (POP to DOP)",
    )
    t.add(
        "sigma",
        0.3,
        unit="1",
        description="Fraction of quick local uptake recycling",
    )
    t.add(
        "tau",
        30.0 * DAY,
        unit="s",
        optimizable=True,
        description="Maximum uptake rate timescale",
    )
    return t


# =============================================================================
# Model assembly
# =============================================================================


@dataclass(frozen=True, slots=True)
class PcycleModel:
    """Transport and reaction functions of a phosphorus model.

    Attributes:
        grid: Grid the model lives on.
        tracer_names: Tracer names, in state-vector order.
        transports: One `T_k(p) -> operator` per tracer.
        sms: One `sms_k(*tracers, p)` per tracer.
        parameters_type: Generated parameter vector type.
    """

    grid: BoxGrid
    tracer_names: tuple[str, ...]
    transports: tuple[TransportFunction, ...]
    sms: tuple[SMSFunction, ...]
    parameters_type: type[ParametersBase]

    @property
    def n_tracers(self) -> int:
        """Number of tracers."""
        return len(self.tracer_names)

    def state_function_and_jacobian(self) -> tuple[StateFunction, JacobianFunction]:
        """Return `(F, jac)` for this model."""
        return state_function_and_jacobian(
            self.transports, self.sms, self.grid.n_wet
        )

    def initial_state(self, p: Any) -> np.ndarray:
        """Uniform initial iterate with every tracer at `p.xgeo`."""
        xgeo = float(real_values(p.xgeo))
        return np.full(self.n_tracers * self.grid.n_wet, xgeo)


def build_pcycle_model(
    grid: BoxGrid,
    circulation: Operator,
    *,
    n_tracers: int = 2,
    table: ParameterTable | None = None,
) -> PcycleModel:
    """Wire a phosphorus model onto a grid and a wet circulation operator.

    Args:
        grid: Grid providing depths, volumes and the wet set.
        circulation: Wet circulation tendency operator for dissolved tracers.
        n_tracers: 2 for DIP/POP, 3 for DIP/DOP/POP.
        table: Parameter table to finalize; defaults to the table of the
            chosen variant.

    Raises:
        ValueError: If `n_tracers` is not 2 or 3.

    Returns:
        The assembled PcycleModel.
    """
    if n_tracers not in (2, 3):
        raise ValueError(_TRACER_COUNT_ERROR.format(n=n_tracers))
    if table is None:
        table = (
            two_tracer_parameter_table()
            if n_tracers == 2
            else three_tracer_parameter_table()
        )
    parameters_type = table.finalize(f"Pcycle{n_tracers}Parameters")
    depths = grid.wet_depths

    def t_dissolved(p: Any) -> Operator:
        return circulation

    def t_particulate(p: Any) -> Operator:
        return build_sinking_operator_from_law(grid, linear_sinking_speed, p)

    if n_tracers == 2:

        def sms_dip(dip: Any, pop: Any, p: Any) -> Any:
            return (
                -uptake(dip, p, depths)
                + remineralization(pop, p.kappa)
                + geological_restoring(dip, p)
            )

        def sms_pop(dip: Any, pop: Any, p: Any) -> Any:
            return uptake(dip, p, depths) - remineralization(pop, p.kappa)

        return PcycleModel(
            grid=grid,
            tracer_names=("DIP", "POP"),
            transports=(t_dissolved, t_particulate),
            sms=(sms_dip, sms_pop),
            parameters_type=parameters_type,
        )

    def sms_dip3(dip: Any, dop: Any, pop: Any, p: Any) -> Any:
        return (
            -uptake(dip, p, depths)
            + remineralization(dop, p.kappa_dop)
            + geological_restoring(dip, p)
        )

    def sms_dop3(dip: Any, dop: Any, pop: Any, p: Any) -> Any:
        return (
            p.sigma * uptake(dip, p, depths)
            - remineralization(dop, p.kappa_dop)
            + remineralization(pop, p.kappa_pop)
        )

    def sms_pop3(dip: Any, dop: Any, pop: Any, p: Any) -> Any:
        return (1 - p.sigma) * uptake(dip, p, depths) - remineralization(
            pop, p.kappa_pop
        )

    return PcycleModel(
        grid=grid,
        tracer_names=("DIP", "DOP", "POP"),
        transports=(t_dissolved, t_dissolved, t_particulate),
        sms=(sms_dip3, sms_dop3, sms_pop3),
        parameters_type=parameters_type,
    )
