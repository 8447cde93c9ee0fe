# src/bgc_engine/grid.py
"""Box grid: volumes, depths, wet/dry mask and column adjacency.

A `BoxGrid` describes a 3-D lattice of control volumes ("boxes") laid out as
(lon, lat, depth). Boxes are numbered by flattening the lattice in
column-major order, i.e. box `i + n_lon*j + n_lon*n_lat*k`, so a 2x2x2
lattice numbers its surface layer 0-3 and its deep layer 4-7.

The wet index set and the column adjacency are derived once, at
construction, and every operator builder reads them from the grid. Building
the circulation reduction and the sinking operator from the same grid
therefore always uses the same wet set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import numpy.typing as npt

# Error / message constants -------------------------------------------------

_SHAPE_MISMATCH_ERROR = "{name} shape {actual} does not match lattice shape {expected}"
_LATTICE_NDIM_ERROR = "Lattice arrays must be 3D (lon, lat, depth); got ndim={ndim}"
_NONPOSITIVE_VOLUME_ERROR = "All box volumes must be strictly positive"
_NONPOSITIVE_THICKNESS_ERROR = "All box thicknesses must be strictly positive"
_EDGES_ERROR = "{name} edges must be a strictly increasing 1D array of length >= 2"
_WET_VALUES_LEN_ERROR = "Expected {expected} wet values; got {actual}"
_STATE_LEN_ERROR = "State length {actual} is not {n_tracers} x {n_wet}"

EARTH_RADIUS = 6_371_000.0  # m

FloatArray = npt.NDArray[np.floating[Any]]
IntArray = npt.NDArray[np.int64]
BoolArray = npt.NDArray[np.bool_]


@dataclass(frozen=True, slots=True, eq=False)
class BoxGrid:
    """Volumes, depths and wet mask of a 3-D box lattice.

    Attributes:
        volume_3d: Box volumes (m^3), shape (n_lon, n_lat, n_depth).
        depth_3d: Depth of each box centre (m, positive downward).
        thickness_3d: Vertical extent of each box (m).
        wet3d: Boolean mask; True for boxes that take part in transport.
        lon: Optional 1D longitude centres (metadata only).
        lat: Optional 1D latitude centres (metadata only).
        depth: Optional 1D depth centres (metadata only).
    """

    volume_3d: FloatArray
    depth_3d: FloatArray
    thickness_3d: FloatArray
    wet3d: BoolArray
    lon: FloatArray | None = None
    lat: FloatArray | None = None
    depth: FloatArray | None = None

    iwet: IntArray = field(init=False, repr=False)
    below: IntArray = field(init=False, repr=False)
    wet_below: IntArray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate the lattice arrays and derive the wet set and adjacency.

        Raises:
            ValueError: If shapes mismatch or volumes/thicknesses are not positive.
        """
        volume_3d = np.asarray(self.volume_3d, dtype=float)
        if volume_3d.ndim != 3:
            raise ValueError(_LATTICE_NDIM_ERROR.format(ndim=volume_3d.ndim))
        shape = volume_3d.shape

        arrays = {
            "depth_3d": np.asarray(self.depth_3d, dtype=float),
            "thickness_3d": np.asarray(self.thickness_3d, dtype=float),
            "wet3d": np.asarray(self.wet3d, dtype=bool),
        }
        for name, arr in arrays.items():
            if arr.shape != shape:
                raise ValueError(
                    _SHAPE_MISMATCH_ERROR.format(
                        name=name, actual=arr.shape, expected=shape
                    )
                )

        if np.any(volume_3d <= 0):
            raise ValueError(_NONPOSITIVE_VOLUME_ERROR)
        if np.any(arrays["thickness_3d"] <= 0):
            raise ValueError(_NONPOSITIVE_THICKNESS_ERROR)

        object.__setattr__(self, "volume_3d", volume_3d)
        for name, arr in arrays.items():
            object.__setattr__(self, name, arr)

        n = volume_3d.size
        iwet = np.flatnonzero(arrays["wet3d"].ravel(order="F")).astype(np.int64)

        # Box directly beneath each box in the full lattice (-1 at the floor).
        flat_ids = np.arange(n, dtype=np.int64).reshape(shape, order="F")
        below_3d = np.full(shape, -1, dtype=np.int64)
        below_3d[:, :, :-1] = flat_ids[:, :, 1:]
        below = below_3d.ravel(order="F")

        wet_position = np.full(n, -1, dtype=np.int64)
        wet_position[iwet] = np.arange(iwet.size, dtype=np.int64)
        below_of_wet = below[iwet]
        wet_below = np.where(
            below_of_wet >= 0, wet_position[np.maximum(below_of_wet, 0)], -1
        )

        object.__setattr__(self, "iwet", iwet)
        object.__setattr__(self, "below", below)
        object.__setattr__(self, "wet_below", wet_below.astype(np.int64))

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_edges(
        cls,
        elon: npt.ArrayLike,
        elat: npt.ArrayLike,
        edepth: npt.ArrayLike,
        wet3d: npt.ArrayLike,
        *,
        radius: float = EARTH_RADIUS,
    ) -> BoxGrid:
        """Build a spherical lat/lon/depth grid from cell edges.

        Args:
            elon: Longitude edges in degrees, shape (n_lon + 1,).
            elat: Latitude edges in degrees, shape (n_lat + 1,).
            edepth: Depth edges in metres (positive down), shape (n_depth + 1,).
            wet3d: Boolean wet mask, shape (n_lon, n_lat, n_depth).
            radius: Planet radius in metres.

        Returns:
            BoxGrid with spherical-shell volumes and centre depths.
        """
        edges = {
            "lon": _as_edges(elon, "lon"),
            "lat": _as_edges(elat, "lat"),
            "depth": _as_edges(edepth, "depth"),
        }
        dlon = np.deg2rad(np.diff(edges["lon"]))
        dsinlat = np.diff(np.sin(np.deg2rad(edges["lat"])))
        dz = np.diff(edges["depth"])

        area_2d = radius**2 * np.outer(dlon, dsinlat)
        volume_3d = area_2d[:, :, None] * dz[None, None, :]

        depth_c = 0.5 * (edges["depth"][:-1] + edges["depth"][1:])
        shape = volume_3d.shape
        depth_3d = np.broadcast_to(depth_c[None, None, :], shape).copy()
        thickness_3d = np.broadcast_to(dz[None, None, :], shape).copy()

        return cls(
            volume_3d=volume_3d,
            depth_3d=depth_3d,
            thickness_3d=thickness_3d,
            wet3d=np.asarray(wet3d, dtype=bool),
            lon=0.5 * (edges["lon"][:-1] + edges["lon"][1:]),
            lat=0.5 * (edges["lat"][:-1] + edges["lat"][1:]),
            depth=depth_c,
        )

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------

    @property
    def lattice_shape(self) -> tuple[int, int, int]:
        """Shape of the full (lon, lat, depth) lattice."""
        return tuple(self.volume_3d.shape)  # type: ignore[return-value]

    @property
    def n_boxes(self) -> int:
        """Number of boxes in the full lattice (wet and dry)."""
        return int(self.volume_3d.size)

    @property
    def n_wet(self) -> int:
        """Number of wet boxes."""
        return int(self.iwet.size)

    # ------------------------------------------------------------------
    # Flat views
    # ------------------------------------------------------------------

    @property
    def volumes(self) -> FloatArray:
        """Volumes of every lattice box, flattened in box order."""
        return self.volume_3d.ravel(order="F")

    @property
    def wet_volumes(self) -> FloatArray:
        """Volumes of the wet boxes."""
        return self.volumes[self.iwet]

    @property
    def wet_depths(self) -> FloatArray:
        """Centre depths of the wet boxes."""
        return self.depth_3d.ravel(order="F")[self.iwet]

    @property
    def wet_thicknesses(self) -> FloatArray:
        """Thicknesses of the wet boxes."""
        return self.thickness_3d.ravel(order="F")[self.iwet]

    @property
    def wet_bottom_depths(self) -> FloatArray:
        """Depth of the bottom interface of each wet box."""
        return self.wet_depths + 0.5 * self.wet_thicknesses

    @property
    def wet_areas(self) -> FloatArray:
        """Horizontal area of each wet box (volume / thickness)."""
        return self.wet_volumes / self.wet_thicknesses


def _as_edges(values: npt.ArrayLike, name: str) -> FloatArray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1 or arr.size < 2 or np.any(np.diff(arr) <= 0):
        raise ValueError(_EDGES_ERROR.format(name=name))
    return arr


def rearrange_into_3d(values: npt.ArrayLike, grid: BoxGrid) -> FloatArray:
    """Scatter a wet-box vector back onto the full lattice.

    Args:
        values: One value per wet box, in wet order.
        grid: Grid that defines the wet set.

    Raises:
        ValueError: If `values` does not have one entry per wet box.

    Returns:
        Array of lattice shape with NaN on dry boxes.
    """
    vals = np.asarray(values)
    if vals.shape != (grid.n_wet,):
        raise ValueError(
            _WET_VALUES_LEN_ERROR.format(expected=grid.n_wet, actual=vals.shape)
        )
    dtype = np.result_type(vals.dtype, np.float64)
    flat = np.full(grid.n_boxes, np.nan, dtype=dtype)
    flat[grid.iwet] = vals
    return flat.reshape(grid.lattice_shape, order="F")


def state_to_tracers(
    x: npt.ArrayLike,
    n_wet: int,
    n_tracers: int,
) -> tuple[np.ndarray, ...]:
    """Split a stacked state vector into one vector per tracer.

    Args:
        x: State vector of length n_tracers * n_wet.
        n_wet: Number of wet boxes.
        n_tracers: Number of tracers.

    Raises:
        ValueError: If the state length does not match.

    Returns:
        Tuple of n_tracers views of length n_wet.
    """
    arr = np.asarray(x)
    if arr.shape != (n_tracers * n_wet,):
        raise ValueError(
            _STATE_LEN_ERROR.format(
                actual=arr.shape, n_tracers=n_tracers, n_wet=n_wet
            )
        )
    return tuple(arr[k * n_wet : (k + 1) * n_wet] for k in range(n_tracers))


def tracers_to_state(*tracers: npt.ArrayLike) -> np.ndarray:
    """Stack per-tracer vectors into a single state vector."""
    return np.concatenate([np.asarray(t) for t in tracers])
