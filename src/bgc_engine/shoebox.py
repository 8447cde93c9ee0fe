# src/bgc_engine/shoebox.py
"""François Primeau's 2x2x2 "shoebox" circulation.

The box model is embedded in a 2 x 2 x 2 lattice (two longitudes, two
latitude bands, two layers) with 5 wet and 3 dry boxes. Box numbering
follows the lattice flattening of `BoxGrid`:

    surface layer (0-200 m):     0  1  2  [3]
    deep layer (200-3700 m):     4  5 [6] [7]

Circulation (after Archer et al., 2000):
    * Antarctic Circumpolar Current, 100 Sv, loop 0 -> 2 -> 0
    * Meridional Overturning Circulation, 15 Sv, loop 0 -> 1 -> 5 -> 4 -> 0
    * High-latitude vertical mixing, 10 Sv, exchange 1 <-> 5

See https://github.com/fprimeau/BIOGEOCHEM_TEACHING for the original
notebook and figure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .circulation import Pathway, build_transport_operator, reduce_to_wet
from .grid import BoxGrid

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .matrix_ops import Operator

SVERDRUP = 1e6  # m^3/s

ACC = 100 * SVERDRUP
MOC = 15 * SVERDRUP
MIX = 10 * SVERDRUP

LON_EDGES = (0.0, 180.0, 360.0)
LAT_EDGES = (-90.0, 0.0, 90.0)
DEPTH_EDGES = (0.0, 200.0, 3700.0)

DRY_BOXES = (3, 6, 7)


def build_wet3d() -> np.ndarray:
    """Return the 2x2x2 wet mask (boxes 3, 6 and 7 are land)."""
    wet = np.ones(8, dtype=bool)
    wet[list(DRY_BOXES)] = False
    return wet.reshape((2, 2, 2), order="F")


def build_grid(wet3d: np.ndarray | None = None) -> BoxGrid:
    """Return the shoebox grid (spherical boxes, depths in metres)."""
    if wet3d is None:
        wet3d = build_wet3d()
    return BoxGrid.from_edges(LON_EDGES, LAT_EDGES, DEPTH_EDGES, wet3d)


def build_pathways() -> tuple[Pathway, ...]:
    """Return the three circulation pathways of the shoebox."""
    return (
        Pathway((0, 2), ACC, name="ACC"),
        Pathway((0, 1, 5, 4), MOC, name="MOC"),
        Pathway((1, 5), MIX, name="MIX"),
    )


def build_transport(
    grid: BoxGrid,
    pathways: Iterable[Pathway] | None = None,
    *,
    strict: bool = True,
) -> Operator:
    """Build the circulation tendency operator on the wet boxes (1/s).

    Args:
        grid: Shoebox grid.
        pathways: Pathways to use; defaults to `build_pathways()`.
        strict: Passed to `reduce_to_wet`.

    Returns:
        n_wet x n_wet tendency operator.
    """
    if pathways is None:
        pathways = build_pathways()
    full = build_transport_operator(pathways, grid.volumes, grid.n_boxes)
    return reduce_to_wet(full, grid.iwet, strict=strict)


def load() -> tuple[np.ndarray, BoxGrid, Operator]:
    """Return the wet mask, the grid and the wet transport operator."""
    wet3d = build_wet3d()
    grid = build_grid(wet3d)
    return wet3d, grid, build_transport(grid)
