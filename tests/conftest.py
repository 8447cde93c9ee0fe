"""Global pytest configuration and shared fixtures for bgc_engine."""

from __future__ import annotations

import numpy as np
import pytest

from bgc_engine import shoebox
from bgc_engine.grid import BoxGrid

# -----------------------------------------------------------------------------
# Grids
# -----------------------------------------------------------------------------


@pytest.fixture
def shoebox_grid() -> BoxGrid:
    """The 2x2x2 shoebox grid with boxes 3, 6 and 7 dry."""
    return shoebox.build_grid()


@pytest.fixture
def column_grid() -> BoxGrid:
    """
    A single 4-box water column with uneven volumes.

    Box k has thickness 10*(k+1) m and horizontal area 2 m^2, so volumes are
    20, 40, 60 and 80 m^3. The bottom box is dry, so the wet set is {0, 1, 2}.
    """
    thickness = np.array([10.0, 20.0, 30.0, 40.0])
    top = np.concatenate([[0.0], np.cumsum(thickness)[:-1]])
    shape = (1, 1, 4)
    return BoxGrid(
        volume_3d=(2.0 * thickness).reshape(shape),
        depth_3d=(top + 0.5 * thickness).reshape(shape),
        thickness_3d=thickness.reshape(shape),
        wet3d=np.array([True, True, True, False]).reshape(shape),
    )


@pytest.fixture
def two_column_grid() -> BoxGrid:
    """A 2x1x3 lattice: a 3-deep column beside a 1-deep shelf column."""
    shape = (2, 1, 3)
    thickness = np.broadcast_to(np.array([100.0, 200.0, 300.0]), shape).copy()
    depth = np.broadcast_to(np.array([50.0, 200.0, 450.0]), shape).copy()
    area = np.array([1.0e6, 3.0e6]).reshape((2, 1, 1))
    wet = np.ones(shape, dtype=bool)
    wet[1, 0, 1:] = False
    return BoxGrid(
        volume_3d=area * thickness,
        depth_3d=depth,
        thickness_3d=thickness,
        wet3d=wet,
    )
