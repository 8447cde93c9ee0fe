# src/bgc_engine/steady_state.py
"""Steady-state state function, Jacobian and Newton solver.

A model with `n_tracers` tracers on `n_wet` wet boxes stacks its tracers into
a single state vector `x = [x_1, ..., x_k]` and evolves as

    dx_k/dt = D_k(p) @ x_k + sms_k(x_1, ..., x_k, p)

where `D_k` is a transport tendency operator (circulation for dissolved
tracers, sinking for particles) and `sms_k` ("sources minus sinks") is a
local reaction term: its value in a box depends only on the tracer values in
that same box. The steady state solves `F(x, p) = 0`.

Jacobian:
    Because every `sms_k` is local, d sms_i / d x_j is diagonal. All n_wet
    diagonal entries are obtained at once by evaluating `sms_i` with `x_j`
    seeded by the dual unit `EPS`. The transport blocks are added on the
    block diagonal.
    The Jacobian is taken at a real-valued parameter vector; parameter
    sensitivities come from evaluating F itself with a dual vector.

Solver:
    Newton iterations with an optional chord variant: the factorized
    Jacobian is reused for `jacobian_reuse` consecutive iterations
    (`jacobian_reuse=1` is plain Newton).
"""

from __future__ import annotations

import numbers
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import bmat, csr_matrix, issparse

from .dual import EPS, dualpart
from .errors import ConvergenceError
from .grid import state_to_tracers
from .matrix_ops import Operator, block_diagonal, build_linear_solver, diagonal_operator
from .parameters import ParametersBase

# =============================================================================
# Errors / messages
# =============================================================================

_TRACER_COUNT_ERROR = (
    "Got {n_transports} transport function(s) but {n_sms} sms function(s)"
)
_NO_TRACERS_ERROR = "At least one tracer is required"
_SMS_SHAPE_ERROR = "sms function {k} returned shape {shape}; expected ({n_wet},)"
_X0_SHAPE_ERROR = "Initial state shape {actual} does not match expected {expected}"
_NONFINITE_ERROR = "State function returned non-finite values at iteration {it}"
_NOT_CONVERGED_MSG = (
    "Newton iterations did not converge in {max_iter} iteration(s); "
    "residual norm {res:.3e} > tolerance {tol:.3e}"
)
_CONFIG_ERROR = "{name} must be {rule}; got {value}"
_JACOBIAN_PARAMETER_ERROR = (
    "The Jacobian dF/dx needs a real-valued parameter vector; "
    "{names} carry {types} values"
)


# =============================================================================
# Type aliases
# =============================================================================

TransportFunction = Callable[[Any], Operator]
SMSFunction = Callable[..., Any]
StateFunction = Callable[[NDArray[np.floating], Any], NDArray[np.floating]]
JacobianFunction = Callable[[NDArray[np.floating], Any], csr_matrix]


# =============================================================================
# State function and Jacobian
# =============================================================================


def _local_values(values: Any, n_wet: int, k: int) -> np.ndarray:
    arr = np.asarray(values)
    if arr.ndim == 0:
        arr = np.full(n_wet, arr.item(), dtype=arr.dtype)
    if arr.shape != (n_wet,):
        raise ValueError(_SMS_SHAPE_ERROR.format(k=k, shape=arr.shape, n_wet=n_wet))
    return arr


def _require_real_parameters(p: Any) -> None:
    if not isinstance(p, ParametersBase):
        return
    bad = {
        name: type(value).__name__
        for name, value in p.as_dict().items()
        if not isinstance(value, numbers.Real)
    }
    if bad:
        raise ValueError(
            _JACOBIAN_PARAMETER_ERROR.format(
                names=sorted(bad), types=sorted(set(bad.values()))
            )
        )


def state_function_and_jacobian(
    transports: Sequence[TransportFunction],
    sms: Sequence[SMSFunction],
    n_wet: int,
) -> tuple[StateFunction, JacobianFunction]:
    """Build the state function F(x, p) and its Jacobian dF/dx(x, p).

    Args:
        transports: One function `T_k(p) -> operator` per tracer.
        sms: One function `sms_k(*tracers, p) -> array` per tracer.
        n_wet: Number of wet boxes.

    Raises:
        ValueError: If the tracer counts differ or are zero.

    Returns:
        Tuple (F, jac) of callables taking (x, p). `jac` raises ValueError
        when `p` is a parameter vector with non-real entries.
    """
    transports = tuple(transports)
    sms = tuple(sms)
    if len(transports) != len(sms):
        raise ValueError(
            _TRACER_COUNT_ERROR.format(n_transports=len(transports), n_sms=len(sms))
        )
    if not transports:
        raise ValueError(_NO_TRACERS_ERROR)
    n_tracers = len(transports)

    def state_function(x: NDArray[np.floating], p: Any) -> NDArray[np.floating]:
        tracers = state_to_tracers(x, n_wet, n_tracers)
        parts = [
            np.asarray(transport(p) @ tracer)
            + _local_values(fn(*tracers, p), n_wet, k)
            for k, (transport, fn, tracer) in enumerate(
                zip(transports, sms, tracers, strict=True)
            )
        ]
        return np.concatenate(parts)

    def jacobian(x: NDArray[np.floating], p: Any) -> csr_matrix:
        _require_real_parameters(p)
        tracers = state_to_tracers(np.asarray(x, dtype=float), n_wet, n_tracers)

        transport_ops = [transport(p) for transport in transports]
        total = block_diagonal(transport_ops)

        local = np.zeros((n_tracers, n_tracers, n_wet))
        for j in range(n_tracers):
            seeded = list(tracers)
            seeded[j] = tracers[j] + EPS
            for i, fn in enumerate(sms):
                values = _local_values(fn(*seeded, p), n_wet, i)
                local[i, j] = np.asarray(dualpart(values), dtype=float)

        local_blocks = [
            [diagonal_operator(local[i, j]) for j in range(n_tracers)]
            for i in range(n_tracers)
        ]
        return (total + bmat(local_blocks, format="csr")).tocsr()

    return state_function, jacobian


# =============================================================================
# Problem / config / result containers
# =============================================================================


@dataclass(slots=True, frozen=True)
class NewtonConfig:
    """Configuration for SteadyStateSolver.

    Attributes:
        rtol: Relative tolerance on the residual norm, relative to the norm
            of F at the initial state.
        atol: Absolute tolerance on the residual norm.
        max_iter: Maximum number of Newton iterations.
        jacobian_reuse: Number of consecutive iterations that reuse one
            factorized Jacobian (1 = full Newton).
        strict: If True, non-convergence raises; otherwise it warns and the
            last iterate is returned.
    """

    rtol: float = 1e-10
    atol: float = 0.0
    max_iter: int = 50
    jacobian_reuse: int = 1
    strict: bool = True

    def __post_init__(self) -> None:
        """Validate tolerances and iteration limits.

        Raises:
            ValueError: If any setting is out of range.
        """
        checks = (
            ("rtol", self.rtol >= 0.0, "non-negative"),
            ("atol", self.atol >= 0.0, "non-negative"),
            ("max_iter", self.max_iter >= 1, ">= 1"),
            ("jacobian_reuse", self.jacobian_reuse >= 1, ">= 1"),
        )
        for name, ok, rule in checks:
            if not ok:
                raise ValueError(
                    _CONFIG_ERROR.format(name=name, rule=rule, value=getattr(self, name))
                )


@dataclass(slots=True)
class SteadyStateProblem:
    """A steady-state problem F(x, p) = 0.

    Attributes:
        f: State function F(x, p).
        jac: Jacobian dF/dx(x, p), returning a sparse matrix.
        x0: Initial iterate.
        p: Parameter vector.
    """

    f: StateFunction
    jac: JacobianFunction
    x0: NDArray[np.floating]
    p: Any


@dataclass(slots=True)
class SteadyStateResult:
    """Outcome of a steady-state solve.

    Attributes:
        x: Final iterate.
        converged: Whether the residual tolerance was met.
        n_iter: Number of Newton updates taken.
        residual_norm: Norm of F at the final iterate.
        residual_history: Residual norm before each update and at the end.
    """

    x: NDArray[np.floating]
    converged: bool
    n_iter: int
    residual_norm: float
    residual_history: list[float] = field(default_factory=list)


# =============================================================================
# Solver
# =============================================================================


class SteadyStateSolver:
    """Newton / chord solver for steady-state biogeochemistry problems."""

    def __init__(self, config: NewtonConfig | None = None) -> None:
        """
        Initialize the solver.

        Args:
            config: Newton settings; defaults to NewtonConfig().
        """
        self.config = config or NewtonConfig()

    def solve(self, problem: SteadyStateProblem) -> SteadyStateResult:
        """Solve F(x, p) = 0 starting from problem.x0.

        Args:
            problem: The steady-state problem.

        Raises:
            ValueError: If x0 is not 1D or F returns a mismatched shape.
            FloatingPointError: If F becomes non-finite.
            ConvergenceError: If the tolerance is not met and strict=True.

        Returns:
            SteadyStateResult with the final iterate.
        """
        cfg = self.config
        x = np.array(problem.x0, dtype=float)
        if x.ndim != 1:
            raise ValueError(_X0_SHAPE_ERROR.format(actual=x.shape, expected="1D"))

        fx = self._residual(problem, x, 0)
        res = float(np.linalg.norm(fx))
        tol = cfg.atol + cfg.rtol * res
        history = [res]

        solve_jac: Callable[[NDArray[np.floating]], NDArray[np.floating]] | None = None
        n_iter = 0
        while res > tol and n_iter < cfg.max_iter:
            if solve_jac is None or n_iter % cfg.jacobian_reuse == 0:
                jac = problem.jac(x, problem.p)
                if not issparse(jac):
                    jac = csr_matrix(np.asarray(jac, dtype=float))
                solve_jac = build_linear_solver(jac)

            x = x - solve_jac(fx)
            n_iter += 1
            fx = self._residual(problem, x, n_iter)
            res = float(np.linalg.norm(fx))
            history.append(res)

        converged = res <= tol
        if not converged:
            msg = _NOT_CONVERGED_MSG.format(max_iter=cfg.max_iter, res=res, tol=tol)
            if cfg.strict:
                raise ConvergenceError(msg)
            warnings.warn(msg, RuntimeWarning, stacklevel=2)

        return SteadyStateResult(
            x=x,
            converged=converged,
            n_iter=n_iter,
            residual_norm=res,
            residual_history=history,
        )

    @staticmethod
    def _residual(
        problem: SteadyStateProblem, x: NDArray[np.floating], it: int
    ) -> NDArray[np.floating]:
        fx = np.asarray(problem.f(x, problem.p), dtype=float)
        if fx.shape != x.shape:
            raise ValueError(_X0_SHAPE_ERROR.format(actual=fx.shape, expected=x.shape))
        if not np.all(np.isfinite(fx)):
            raise FloatingPointError(_NONFINITE_ERROR.format(it=it))
        return fx
