# src/bgc_engine/sinking.py
"""Particle flux divergence (PFD) operator for sinking particulate tracers.

Particles sink straight down their water column with a non-negative speed
`w`, given at the bottom interface of every wet box. The scheme is upwind:
the flux leaving box `i` through its bottom is carried by the concentration
of box `i` itself (the box the particles come from),

    flux_i = w_i * A_i * x_i

and is added, unchanged, to the wet box directly beneath. The tendency of a
box is `(flux_in - flux_out) / V`.

Boundary policy:
    * Top of a column: nothing enters from above.
    * Bottom of a column (lattice floor, or a dry box beneath): nothing leaves.
      Material reaching the floor stays in the last wet box, where reaction
      terms may remineralize or bury it.

With these closed boundaries each column conserves inventory on its own,
`V @ D == 0`. A uniform field is *not* steady under sinking (the top box
empties), so unlike circulation operators the rows do not sum to zero.

Only `+ - * /` and a sign check are applied to `w`, so the operator can be
built from float, complex, `Dual` or `HyperDual` speeds.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from .dual import real_values
from .errors import NegativeSinkingVelocityError
from .matrix_ops import Operator, assemble_operator

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import ArrayLike

    from .grid import BoxGrid


# Error / message constants -------------------------------------------------

_SPEED_LENGTH_ERROR = "sinking_speed must have one value per wet box ({n}); got {shape}"
_NEGATIVE_SPEED_ERROR = (
    "Sinking speed must be non-negative everywhere; got min {wmin!r} at wet "
    "box(es) {boxes}. Upward 'sinking' breaks the upwind scheme."
)
_NONFINITE_SPEED_ERROR = "Sinking speed must be finite; got non-finite values at {boxes}"


def linear_sinking_speed(depth: ArrayLike, p: Any) -> Any:
    """Sinking speed increasing linearly with depth, `w0 + w_prime * depth`.

    Args:
        depth: Depth(s) in metres, positive downward.
        p: Parameter vector with fields `w0` (m/s) and `w_prime` (1/s).

    Returns:
        Speed at each depth, with the scalar type of the parameters.
    """
    return p.w0 + p.w_prime * np.asarray(depth, dtype=float)


def _evaluate_speed(
    grid: BoxGrid,
    sinking_speed: ArrayLike | Callable[[np.ndarray], ArrayLike],
) -> np.ndarray:
    if callable(sinking_speed):
        speed = sinking_speed(grid.wet_bottom_depths)
    else:
        speed = sinking_speed

    w = np.asarray(speed)
    if w.ndim == 0:
        w = np.full(grid.n_wet, w.item(), dtype=w.dtype)
    if w.shape != (grid.n_wet,):
        raise ValueError(_SPEED_LENGTH_ERROR.format(n=grid.n_wet, shape=w.shape))

    w_real = real_values(w)
    bad = np.flatnonzero(~np.isfinite(w_real))
    if bad.size:
        raise ValueError(_NONFINITE_SPEED_ERROR.format(boxes=bad.tolist()))
    negative = np.flatnonzero(w_real < 0)
    if negative.size:
        msg = _NEGATIVE_SPEED_ERROR.format(
            wmin=float(w_real[negative].min()), boxes=negative.tolist()
        )
        raise NegativeSinkingVelocityError(msg)
    return w


def build_sinking_operator(
    grid: BoxGrid,
    sinking_speed: ArrayLike | Callable[[np.ndarray], ArrayLike],
) -> Operator:
    """Build the upwind PFD tendency operator on the wet boxes of `grid`.

    Args:
        grid: Box grid providing wet volumes, areas and column adjacency.
        sinking_speed: Speed at the bottom interface of each wet box (scalar
            or one value per wet box), or a callable `law(depth)` evaluated
            at the bottom interface depths.

    Raises:
        ValueError: If the speed has the wrong shape or is not finite.
        NegativeSinkingVelocityError: If any speed is negative.

    Returns:
        n_wet x n_wet tendency operator (sparse for numeric speeds, dense
        object array for dual-number speeds).
    """
    w = _evaluate_speed(grid, sinking_speed)

    volumes = grid.wet_volumes
    areas = grid.wet_areas
    below = grid.wet_below

    # Boxes with no wet box beneath keep their particles (closed floor).
    src = np.flatnonzero(below >= 0)
    dst = below[src]
    transfer = w[src] * areas[src]

    rows = np.concatenate([src, dst])
    cols = np.concatenate([src, src])
    data = np.concatenate([-transfer / volumes[src], transfer / volumes[dst]])
    return assemble_operator(rows, cols, data, grid.n_wet)


def build_sinking_operator_from_law(
    grid: BoxGrid,
    law: Callable[[np.ndarray, Any], ArrayLike],
    params: Any,
) -> Operator:
    """Build the PFD operator from a parameter-dependent velocity law.

    Args:
        grid: Box grid.
        law: Function `law(depth, params)` returning the sinking speed.
        params: Parameter vector passed to the law.

    Returns:
        The PFD tendency operator, see `build_sinking_operator`.
    """
    return build_sinking_operator(grid, lambda depth: law(depth, params))
