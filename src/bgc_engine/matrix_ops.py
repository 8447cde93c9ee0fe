"""
Matrix operations shared by the transport operator builders and the solver.

This module provides the small numerical utilities every operator builder in
bgc_engine relies on:

- Assembly of (row, col, value) triplets into a square operator, with
  duplicate entries summed.
- Dense/sparse dispatch on the scalar type of the entries.
- Conservation diagnostics (row sums, volume-weighted column sums).
- Block-diagonal composition of per-tracer operators.
- Factorized linear solves for the steady-state Newton iterations.

Design notes:
    * Numeric entries (float, complex) assemble into `scipy.sparse.csr_matrix`.
    * Object entries (`Dual`, `HyperDual`) assemble into a dense object
      `numpy.ndarray`, because SciPy sparse matrices cannot hold Python
      objects. Both support `op @ x`, so downstream code does not need to
      care which one it got.
    * Builders are pure: they never mutate their inputs and always return a
      newly allocated operator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias, cast

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.linalg import lu_factor, lu_solve
from scipy.sparse import bmat, coo_matrix, csr_matrix, diags, issparse
from scipy.sparse.linalg import factorized as sparse_factorized

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


# =============================================================================
# Public operator types (backend-friendly)
# =============================================================================

DenseOperator: TypeAlias = NDArray[Any]
SparseOperator: TypeAlias = csr_matrix
Operator: TypeAlias = DenseOperator | SparseOperator


# =============================================================================
# Error message constants
# =============================================================================

_OPERATORS_SQUARE_ERROR = "Operator must be square; got shape {shape}"
_TRIPLET_LENGTH_ERROR = "rows, cols and data must have equal lengths; got {lengths}"
_INDEX_RANGE_ERROR = "Operator indices must lie in [0, {n}); got range [{lo}, {hi}]"
_VOLUME_LENGTH_ERROR = "volumes length {actual} does not match operator size {n}"
_BLOCKS_EMPTY_ERROR = "blocks must contain at least one operator"


# =============================================================================
# Assembly
# =============================================================================


def is_object_dtype(values: ArrayLike) -> bool:
    """Return True if `values` holds non-numeric scalars (e.g. dual numbers)."""
    return np.asarray(values).dtype == object


def assemble_operator(
    rows: ArrayLike,
    cols: ArrayLike,
    data: ArrayLike,
    n: int,
) -> Operator:
    """Assemble an n x n operator from triplets, summing duplicate entries.

    Args:
        rows: Row index of each entry.
        cols: Column index of each entry.
        data: Value of each entry (numeric or object scalars).
        n: Operator size.

    Raises:
        ValueError: If the triplet arrays differ in length or an index is out
            of range.

    Returns:
        A CSR matrix for numeric data, or a dense object ndarray otherwise.
    """
    row_arr = np.asarray(rows, dtype=np.int64)
    col_arr = np.asarray(cols, dtype=np.int64)
    data_arr = np.asarray(data)

    lengths = (row_arr.size, col_arr.size, data_arr.size)
    if len(set(lengths)) != 1:
        raise ValueError(_TRIPLET_LENGTH_ERROR.format(lengths=lengths))

    if row_arr.size:
        lo = int(min(row_arr.min(), col_arr.min()))
        hi = int(max(row_arr.max(), col_arr.max()))
        if lo < 0 or hi >= n:
            raise ValueError(_INDEX_RANGE_ERROR.format(n=n, lo=lo, hi=hi))

    if data_arr.dtype == object:
        dense = np.zeros((n, n), dtype=object)
        for r, c, v in zip(row_arr, col_arr, data_arr, strict=True):
            dense[r, c] = dense[r, c] + v
        return cast("DenseOperator", dense)

    dtype = np.result_type(data_arr.dtype, np.float64)
    return coo_matrix(
        (data_arr.astype(dtype), (row_arr, col_arr)), shape=(n, n)
    ).tocsr()


def zero_operator(n: int, *, dtype: Any = np.float64) -> Operator:
    """Return an n x n zero operator of the given scalar type."""
    if np.dtype(dtype) == object:
        return cast("DenseOperator", np.zeros((n, n), dtype=object))
    return csr_matrix((n, n), dtype=dtype)


def as_dense(op: Operator) -> DenseOperator:
    """Convert an operator to a dense ndarray (a copy for sparse input)."""
    if issparse(op):
        return np.asarray(op.toarray())
    return np.asarray(op)


def validate_square(op: Operator) -> int:
    """Return the size of a square operator.

    Raises:
        ValueError: If the operator is not square.
    """
    shape = cast("tuple[int, int]", op.shape)
    if len(shape) != 2 or shape[0] != shape[1]:
        raise ValueError(_OPERATORS_SQUARE_ERROR.format(shape=shape))
    return shape[0]


# =============================================================================
# Conservation diagnostics
# =============================================================================


def row_sums(op: Operator) -> NDArray[Any]:
    """Return `op @ 1`, the response of the operator to a uniform field."""
    n = validate_square(op)
    return np.asarray(op @ np.ones(n)).ravel()


def volume_weighted_column_sums(op: Operator, volumes: ArrayLike) -> NDArray[Any]:
    """Return `volumes @ op`, the change in total inventory per unit tracer.

    A mass-conserving operator has all of these equal to zero.

    Raises:
        ValueError: If `volumes` does not match the operator size.
    """
    n = validate_square(op)
    vol = np.asarray(volumes, dtype=float)
    if vol.shape != (n,):
        raise ValueError(_VOLUME_LENGTH_ERROR.format(actual=vol.shape, n=n))
    if issparse(op):
        return np.asarray(op.T @ vol).ravel()
    return np.asarray(vol @ np.asarray(op)).ravel()


# =============================================================================
# Composition
# =============================================================================


def block_diagonal(blocks: Sequence[Operator]) -> csr_matrix:
    """Stack numeric operators along the diagonal of a sparse matrix.

    Raises:
        ValueError: If `blocks` is empty.
    """
    if not blocks:
        raise ValueError(_BLOCKS_EMPTY_ERROR)
    n_blocks = len(blocks)
    grid: list[list[Any]] = [[None] * n_blocks for _ in range(n_blocks)]
    for k, op in enumerate(blocks):
        grid[k][k] = op if issparse(op) else csr_matrix(np.asarray(op, dtype=float))
    return bmat(grid, format="csr")


def diagonal_operator(values: ArrayLike) -> csr_matrix:
    """Return a sparse diagonal operator built from `values`."""
    vals = np.asarray(values)
    return diags(vals, 0, shape=(vals.size, vals.size), format="csr")


# =============================================================================
# Linear solves
# =============================================================================


def build_linear_solver(
    op: Operator,
) -> Callable[[NDArray[np.floating]], NDArray[np.floating]]:
    """Factorize `op` once and return a reusable solver for `op @ y = b`.

    Args:
        op: Square numeric operator (dense ndarray or sparse matrix).

    Returns:
        A callable that takes b and returns y.
    """
    validate_square(op)

    if issparse(op):
        op_csc = op.tocsc()
        solve_sparse = sparse_factorized(op_csc)

        def sparse_solver(b: NDArray[np.floating]) -> NDArray[np.floating]:
            rhs = np.asarray(b, dtype=op_csc.dtype)
            return np.asarray(solve_sparse(rhs))

        return sparse_solver

    op_dense = np.asarray(op)
    lu, piv = lu_factor(op_dense)

    def dense_solver(b: NDArray[np.floating]) -> NDArray[np.floating]:
        """
        Perform a dense solve using the precomputed LU factorization.

        Args:
            b: 1D right-hand side.

        Returns:
            The solution vector.
        """
        rhs = np.asarray(b, dtype=op_dense.dtype)
        return np.asarray(lu_solve((lu, piv), rhs))

    return dense_solver
