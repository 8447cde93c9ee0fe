# src/bgc_engine/circulation.py
"""Transport operators from advective pathways, and wet-mask reduction.

A pathway is a closed loop of boxes `[b0, b1, ..., b(n-1)]` carrying a single
volumetric flow rate `phi` (m^3/s). Water leaves `b(i-1)` and enters `b(i)`,
and the last box feeds the first. The tendency operator `D` of one pathway
is

    (D @ x)[b(i)] = phi / V[b(i)] * (x[b(i-1)] - x[b(i)])

which gives a uniform field zero tendency (every row sums to zero) and
conserves inventory (`V @ D == 0`), since what one box loses through its
outflow is exactly the inflow of the next box along the loop.

Independent pathways (overturning, gyres, mixing exchanges written as
two-box loops) combine by plain operator addition.

The full-lattice operator is then reduced to the wet boxes with
`reduce_to_wet`. The reduction refuses to drop any flux that touches a dry
box, because dropping it would break conservation.
"""

from __future__ import annotations

import numbers
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import ArrayLike
from scipy.sparse import issparse

from .dual import real_values
from .errors import raise_dry_box_flux, raise_pathway_error
from .matrix_ops import Operator, assemble_operator, validate_square, zero_operator

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .matrix_ops import DenseOperator


# Error / message constants -------------------------------------------------

_CYCLE_LENGTH_DETAIL = "a pathway needs at least two distinct positions, got {n}"
_FLOW_RATE_DETAIL = "flow rate must be strictly positive, got {flow}"
_BOX_TYPE_DETAIL = "box indices must be integers"
_BOX_RANGE_DETAIL = "box index {box} is outside [0, {n})"
_VOLUMES_LENGTH_ERROR = "volumes length {actual} does not match n_boxes={n}"
_WET_INDEX_RANGE_ERROR = "Wet indices must lie in [0, {n}); got {bad}"
_WET_INDEX_DUPLICATE_ERROR = "Wet indices must be unique"
_DRY_FLUX_WARNING = (
    "Dropping nonzero flux through dry box(es) {boxes} during wet-mask "
    "reduction; the reduced operator no longer conserves tracer."
)


# =============================================================================
# Pathways
# =============================================================================


@dataclass(frozen=True, slots=True)
class Pathway:
    """One closed advective loop.

    Attributes:
        boxes: Box indices along the loop. The closed form `[a, b, c, a]` and
            the open form `[a, b, c]` describe the same loop; the closing
            repeat is dropped on construction.
        flow_rate: Volumetric flow rate along the loop (strictly positive).
        name: Optional label (e.g. "MOC").
    """

    boxes: tuple[int, ...]
    flow_rate: Any
    name: str | None = None

    def __post_init__(self) -> None:
        """Normalize the box sequence and check length and flow rate.

        Raises:
            PathwayError: If the loop is too short, a box index is not an
                integer, or the flow rate is not strictly positive.
        """
        boxes = tuple(self.boxes)
        if not all(
            isinstance(b, numbers.Integral) and not isinstance(b, bool) for b in boxes
        ):
            raise_pathway_error(boxes=boxes, detail=_BOX_TYPE_DETAIL)
        boxes = tuple(int(b) for b in boxes)

        if len(boxes) > 1 and boxes[0] == boxes[-1]:
            boxes = boxes[:-1]
        if len(boxes) < 2:
            raise_pathway_error(
                boxes=self.boxes, detail=_CYCLE_LENGTH_DETAIL.format(n=len(boxes))
            )

        flow = real_values(self.flow_rate)
        if flow.shape != () or not np.isfinite(flow) or flow <= 0:
            raise_pathway_error(
                boxes=self.boxes,
                detail=_FLOW_RATE_DETAIL.format(flow=self.flow_rate),
            )

        object.__setattr__(self, "boxes", boxes)

    @property
    def upstream(self) -> tuple[int, ...]:
        """Box feeding each box of the loop (the previous one, cyclically)."""
        return self.boxes[-1:] + self.boxes[:-1]

    def validate_indices(self, n_boxes: int) -> None:
        """Check that every box index lies in `[0, n_boxes)`.

        Raises:
            PathwayError: If an index is out of range.
        """
        for box in self.boxes:
            if not 0 <= box < n_boxes:
                raise_pathway_error(
                    boxes=self.boxes, detail=_BOX_RANGE_DETAIL.format(box=box, n=n_boxes)
                )


def _as_volumes(volumes: ArrayLike, n_boxes: int) -> np.ndarray:
    vol = np.asarray(volumes)
    if vol.shape != (n_boxes,):
        raise ValueError(_VOLUMES_LENGTH_ERROR.format(actual=vol.shape, n=n_boxes))
    return vol


def _pathway_triplets(
    pathway: Pathway, vol: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    receivers = np.asarray(pathway.boxes, dtype=np.int64)
    senders = np.asarray(pathway.upstream, dtype=np.int64)
    rate = np.asarray(pathway.flow_rate / vol[receivers])

    rows = np.concatenate([receivers, receivers])
    cols = np.concatenate([senders, receivers])
    data = np.concatenate([rate, -rate])
    return rows, cols, data


def flux_divergence_operator_from_advection(
    pathway: Pathway,
    volumes: ArrayLike,
    n_boxes: int,
) -> Operator:
    """Build the tendency operator of a single advective pathway.

    Args:
        pathway: The loop and its flow rate.
        volumes: Volume of every box of the full lattice, length n_boxes.
        n_boxes: Total number of boxes (wet and dry).

    Raises:
        ValueError: If `volumes` has the wrong length.

    Returns:
        n_boxes x n_boxes operator `D` with `(D @ x)[b] = phi/V[b] * (x[up] - x[b])`
        for every box `b` on the loop.
    """
    vol = _as_volumes(volumes, n_boxes)
    pathway.validate_indices(n_boxes)
    rows, cols, data = _pathway_triplets(pathway, vol)
    return assemble_operator(rows, cols, data, n_boxes)


def build_transport_operator(
    pathways: Iterable[Pathway],
    volumes: ArrayLike,
    n_boxes: int,
) -> Operator:
    """Sum the tendency operators of several pathways.

    Every pathway is validated before any of them contributes, so a
    malformed pathway never yields a partial operator.

    Args:
        pathways: Pathways to combine; their order does not matter.
        volumes: Volume of every box of the full lattice.
        n_boxes: Total number of boxes (wet and dry).

    Returns:
        The combined n_boxes x n_boxes tendency operator.
    """
    pathways = tuple(pathways)
    _as_volumes(volumes, n_boxes)
    for pathway in pathways:
        pathway.validate_indices(n_boxes)

    if not pathways:
        return zero_operator(n_boxes)

    # One assembly over all triplets: a single dual flow rate makes the whole
    # operator object-valued.
    vol = _as_volumes(volumes, n_boxes)
    triplets = [_pathway_triplets(p, vol) for p in pathways]
    rows = np.concatenate([t[0] for t in triplets])
    cols = np.concatenate([t[1] for t in triplets])
    data = np.concatenate([np.asarray(t[2]) for t in triplets])
    return assemble_operator(rows, cols, data, n_boxes)


# =============================================================================
# Wet-mask reduction
# =============================================================================


def _dry_boxes_with_flux(op: Operator, is_dry: np.ndarray) -> list[int]:
    if issparse(op):
        coo = op.tocoo()
        rows, cols, vals = coo.row, coo.col, coo.data
        nonzero = vals != 0
    else:
        dense: DenseOperator = np.asarray(op)
        rows, cols = np.nonzero(np.asarray(dense != 0, dtype=bool))
        nonzero = np.ones(rows.size, dtype=bool)

    touched = np.concatenate([
        rows[nonzero & is_dry[rows]],
        cols[nonzero & is_dry[cols]],
    ])
    return sorted({int(b) for b in touched})


def reduce_to_wet(
    operator: Operator,
    iwet: Sequence[int] | np.ndarray,
    *,
    strict: bool = True,
) -> Operator:
    """Restrict a full-lattice operator to the wet boxes.

    Args:
        operator: Square full-lattice operator.
        iwet: Indices of the wet boxes, in the order of the reduced operator.
        strict: If True, flux through a dry box raises; otherwise it is
            dropped with a RuntimeWarning.

    Raises:
        ValueError: If wet indices are out of range or repeated.

    Returns:
        The M x M principal submatrix on the wet boxes, as a new operator.
    """
    n = validate_square(operator)
    wet = np.asarray(iwet, dtype=np.int64).ravel()

    bad = wet[(wet < 0) | (wet >= n)]
    if bad.size:
        raise ValueError(_WET_INDEX_RANGE_ERROR.format(n=n, bad=bad.tolist()))
    if np.unique(wet).size != wet.size:
        raise ValueError(_WET_INDEX_DUPLICATE_ERROR)

    is_dry = np.ones(n, dtype=bool)
    is_dry[wet] = False
    dry_flux = _dry_boxes_with_flux(operator, is_dry)
    if dry_flux:
        if strict:
            raise_dry_box_flux(dry_boxes=dry_flux)
        warnings.warn(
            _DRY_FLUX_WARNING.format(boxes=dry_flux),
            RuntimeWarning,
            stacklevel=2,
        )

    if issparse(operator):
        return operator.tocsr()[wet][:, wet].tocsr()
    return np.asarray(operator)[np.ix_(wet, wet)].copy()
