# src/bgc_engine/dual.py
"""Dual and hyperdual numbers for forward-mode differentiation.

Every operator builder and reaction term in bgc_engine is written with plain
arithmetic (`+ - * / **` and comparisons against zero), so evaluating it with
these scalars instead of floats yields exact first derivatives (`Dual`) or
exact first and second derivatives (`HyperDual`) through the same code path.

Both types interoperate with NumPy as object scalars: multiplying a float
ndarray by a `Dual` gives an object ndarray of `Dual` values.

Conventions:
    Dual(re, eps)                 = re + eps*ε,               ε² = 0
    HyperDual(re, e1, e2, e1e2)   = re + e1*ε₁ + e2*ε₂ + e1e2*ε₁ε₂,
                                    ε₁² = ε₂² = 0
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from typing import Any, Literal

import numpy as np

_HYPER_PARTS = ("e1", "e2", "e1e2")
_UNKNOWN_PART_ERROR = "Unknown hyperdual part: {which}; expected one of {parts}"


def _is_constant(value: object) -> bool:
    return isinstance(value, (numbers.Number, np.bool_)) and not isinstance(
        value, (Dual, HyperDual)
    )


@dataclass(frozen=True, slots=True, eq=False)
class Dual:
    """First-order dual number `re + eps*ε`."""

    re: Any
    eps: Any = 0.0

    def _coerce(self, other: object) -> Dual | None:
        if isinstance(other, Dual):
            return other
        if _is_constant(other):
            return Dual(other, 0.0)
        return None

    def __add__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Dual(self.re + o.re, self.eps + o.eps)

    __radd__ = __add__

    def __sub__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Dual(self.re - o.re, self.eps - o.eps)

    def __rsub__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o - self

    def __mul__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Dual(self.re * o.re, self.re * o.eps + self.eps * o.re)

    __rmul__ = __mul__

    def __truediv__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Dual(
            self.re / o.re,
            (self.eps * o.re - self.re * o.eps) / (o.re * o.re),
        )

    def __rtruediv__(self, other: object) -> Dual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o / self

    def __pow__(self, n: object) -> Dual:
        if not _is_constant(n):
            return NotImplemented
        return Dual(self.re**n, n * self.re ** (n - 1) * self.eps)

    def __neg__(self) -> Dual:
        return Dual(-self.re, -self.eps)

    def __pos__(self) -> Dual:
        return self

    def __abs__(self) -> Dual:
        return -self if self.re < 0 else self

    def __eq__(self, other: object) -> bool:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return bool(self.re == o.re and self.eps == o.eps)

    def __hash__(self) -> int:
        if self.eps == 0:
            return hash(self.re)
        return hash((self.re, self.eps))

    def __lt__(self, other: object) -> bool:
        return self.re < realpart(other)

    def __le__(self, other: object) -> bool:
        return self.re <= realpart(other)

    def __gt__(self, other: object) -> bool:
        return self.re > realpart(other)

    def __ge__(self, other: object) -> bool:
        return self.re >= realpart(other)


@dataclass(frozen=True, slots=True, eq=False)
class HyperDual:
    """Hyperdual number `re + e1*ε₁ + e2*ε₂ + e1e2*ε₁ε₂`."""

    re: Any
    e1: Any = 0.0
    e2: Any = 0.0
    e1e2: Any = 0.0

    def _coerce(self, other: object) -> HyperDual | None:
        if isinstance(other, HyperDual):
            return other
        if _is_constant(other):
            return HyperDual(other)
        return None

    def _chain(self, f0: Any, f1: Any, f2: Any) -> HyperDual:
        """Apply a scalar function given its value and first two derivatives."""
        return HyperDual(
            f0,
            f1 * self.e1,
            f1 * self.e2,
            f1 * self.e1e2 + f2 * self.e1 * self.e2,
        )

    def __add__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return HyperDual(
            self.re + o.re, self.e1 + o.e1, self.e2 + o.e2, self.e1e2 + o.e1e2
        )

    __radd__ = __add__

    def __sub__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return HyperDual(
            self.re - o.re, self.e1 - o.e1, self.e2 - o.e2, self.e1e2 - o.e1e2
        )

    def __rsub__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o - self

    def __mul__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return HyperDual(
            self.re * o.re,
            self.re * o.e1 + self.e1 * o.re,
            self.re * o.e2 + self.e2 * o.re,
            self.re * o.e1e2 + self.e1 * o.e2 + self.e2 * o.e1 + self.e1e2 * o.re,
        )

    __rmul__ = __mul__

    def _inverse(self) -> HyperDual:
        inv = 1.0 / self.re
        return self._chain(inv, -inv * inv, 2.0 * inv * inv * inv)

    def __truediv__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return self * o._inverse()

    def __rtruediv__(self, other: object) -> HyperDual:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o * self._inverse()

    def __pow__(self, n: object) -> HyperDual:
        if not _is_constant(n):
            return NotImplemented
        return self._chain(
            self.re**n,
            n * self.re ** (n - 1),
            n * (n - 1) * self.re ** (n - 2),
        )

    def __neg__(self) -> HyperDual:
        return HyperDual(-self.re, -self.e1, -self.e2, -self.e1e2)

    def __pos__(self) -> HyperDual:
        return self

    def __abs__(self) -> HyperDual:
        return -self if self.re < 0 else self

    def __eq__(self, other: object) -> bool:
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return bool(
            self.re == o.re
            and self.e1 == o.e1
            and self.e2 == o.e2
            and self.e1e2 == o.e1e2
        )

    def __hash__(self) -> int:
        if self.e1 == 0 and self.e2 == 0 and self.e1e2 == 0:
            return hash(self.re)
        return hash((self.re, self.e1, self.e2, self.e1e2))

    def __lt__(self, other: object) -> bool:
        return self.re < realpart(other)

    def __le__(self, other: object) -> bool:
        return self.re <= realpart(other)

    def __gt__(self, other: object) -> bool:
        return self.re > realpart(other)

    def __ge__(self, other: object) -> bool:
        return self.re >= realpart(other)


EPS = Dual(0.0, 1.0)
EPS1 = HyperDual(0.0, 1.0, 0.0, 0.0)
EPS2 = HyperDual(0.0, 0.0, 1.0, 0.0)
EPS1EPS2 = HyperDual(0.0, 0.0, 0.0, 1.0)


def _map_parts(x: object, scalar_fn: Any) -> Any:
    if isinstance(x, np.ndarray) and x.dtype == object:
        flat = [scalar_fn(v) for v in x.ravel()]
        return np.asarray(flat).reshape(x.shape)
    return scalar_fn(x)


def realpart(x: object) -> Any:
    """Return the real (value) part of a scalar or object array.

    Plain numbers and numeric arrays are returned unchanged.
    """

    def _scalar(v: object) -> Any:
        if isinstance(v, (Dual, HyperDual)):
            return v.re
        return v

    return _map_parts(x, _scalar)


def dualpart(x: object) -> Any:
    """Return the ε coefficient of a `Dual` scalar or object array.

    Plain numbers have a zero dual part.
    """

    def _scalar(v: object) -> Any:
        if isinstance(v, Dual):
            return v.eps
        return 0.0

    if isinstance(x, np.ndarray) and x.dtype != object:
        return np.zeros_like(x)
    return _map_parts(x, _scalar)


def hyperpart(x: object, which: Literal["e1", "e2", "e1e2"] = "e1e2") -> Any:
    """Return one infinitesimal coefficient of a `HyperDual` scalar or array.

    Args:
        x: HyperDual scalar, object array of HyperDual values, or a plain value.
        which: Which coefficient to extract: "e1", "e2" or "e1e2".

    Raises:
        ValueError: If `which` is not a known coefficient.

    Returns:
        The requested coefficient (zero for plain values).
    """
    if which not in _HYPER_PARTS:
        raise ValueError(_UNKNOWN_PART_ERROR.format(which=which, parts=_HYPER_PARTS))

    def _scalar(v: object) -> Any:
        if isinstance(v, HyperDual):
            return getattr(v, which)
        return 0.0

    if isinstance(x, np.ndarray) and x.dtype != object:
        return np.zeros_like(x)
    return _map_parts(x, _scalar)


def real_values(x: object) -> np.ndarray:
    """Return the real parts of `x` as a float ndarray.

    Strips dual/hyperdual infinitesimals and any imaginary component, for
    sign checks that must not depend on the scalar type.
    """
    return np.real(np.asarray(realpart(x))).astype(float)
