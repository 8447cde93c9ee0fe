"""bgc_engine steady-state ocean biogeochemistry box-model package."""

from __future__ import annotations

from .circulation import (
    Pathway,
    build_transport_operator,
    flux_divergence_operator_from_advection,
    reduce_to_wet,
)
from .dual import (
    EPS,
    EPS1,
    EPS1EPS2,
    EPS2,
    Dual,
    HyperDual,
    dualpart,
    hyperpart,
    realpart,
)
from .errors import (
    BgcEngineError,
    ConvergenceError,
    DryBoxFluxError,
    NegativeSinkingVelocityError,
    ParameterTableError,
    PathwayError,
)
from .grid import BoxGrid, rearrange_into_3d, state_to_tracers, tracers_to_state
from .matrix_ops import Operator, row_sums, volume_weighted_column_sums
from .parameters import ParameterEntry, ParametersBase, ParameterTable
from .sinking import (
    build_sinking_operator,
    build_sinking_operator_from_law,
    linear_sinking_speed,
)
from .steady_state import (
    NewtonConfig,
    SteadyStateProblem,
    SteadyStateResult,
    SteadyStateSolver,
    state_function_and_jacobian,
)

__version__ = "0.1.0"

__all__ = [
    "EPS",
    "EPS1",
    "EPS1EPS2",
    "EPS2",
    "BgcEngineError",
    "BoxGrid",
    "ConvergenceError",
    "DryBoxFluxError",
    "Dual",
    "HyperDual",
    "NegativeSinkingVelocityError",
    "NewtonConfig",
    "Operator",
    "ParameterEntry",
    "ParameterTable",
    "ParameterTableError",
    "ParametersBase",
    "Pathway",
    "PathwayError",
    "SteadyStateProblem",
    "SteadyStateResult",
    "SteadyStateSolver",
    "__version__",
    "build_sinking_operator",
    "build_sinking_operator_from_law",
    "build_transport_operator",
    "dualpart",
    "flux_divergence_operator_from_advection",
    "hyperpart",
    "linear_sinking_speed",
    "realpart",
    "rearrange_into_3d",
    "reduce_to_wet",
    "row_sums",
    "state_function_and_jacobian",
    "state_to_tracers",
    "tracers_to_state",
    "volume_weighted_column_sums",
]
