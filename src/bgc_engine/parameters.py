# src/bgc_engine/parameters.py
"""Parameter table and frozen parameter vector types.

Model parameters are declared in a `ParameterTable`, one entry at a time,
and the table is then frozen into a dataclass type whose fields are the
parameter names in table order:

    t = ParameterTable()
    t.add("w0", 0.64 / 86400, unit="m/s", optimizable=True)
    t.add("w_prime", 0.13 / 86400, unit="1/s", optimizable=True)
    Parameters = t.finalize()
    p = Parameters()            # every entry at its default

Operators and reaction terms read parameters by attribute (`p.w0`) and do
plain arithmetic with them, so a vector carrying another scalar type flows
through the same code: `p * 1j`, `p * EPS` and `p * EPS1` give vectors of
complex, dual and hyperdual scalars respectively.

Units are free-text tags for documentation only; defaults are expected in
SI units and are never converted.
"""

from __future__ import annotations

import dataclasses
import keyword
import numbers
from collections.abc import Iterator
from typing import Any, ClassVar

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .dual import Dual, HyperDual
from .errors import ParameterTableError

# Error / message constants -------------------------------------------------

_DUPLICATE_ERROR = "Parameter '{name}' is already in the table"
_UNKNOWN_NAME_ERROR = "No parameter named '{name}' in the table"
_POSITION_ERROR = "Parameter position {pos} is out of range for {n} parameter(s)"
_KEY_TYPE_ERROR = "Parameters are deleted by name (str) or position (int); got {typ}"
_FINALIZED_ERROR = (
    "The parameter type '{type_name}' was already generated from this table"
)
_FROZEN_TABLE_ERROR = "Cannot {action} parameters after the table was finalized"
_IDENTIFIER_ERROR = "Parameter name '{name}' must be a valid Python identifier"
_RESERVED_ERROR = "Parameter name '{name}' is reserved by the parameter vector API"
_TYPE_NAME_ERROR = "Type name '{name}' must be a valid Python identifier"
_REPLACE_LENGTH_ERROR = "Expected {expected} optimizable value(s); got {actual}"

_RESERVED_NAMES = frozenset({
    "all_names",
    "as_dict",
    "entries",
    "optimizable_names",
    "optimizable_values",
    "replace_optimizable",
    "scalar_type",
    "values",
})


class ParameterEntry(BaseModel):
    """One row of a parameter table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    default: float
    unit: str = ""
    optimizable: bool = False
    mean_obs: float | None = None
    variance_obs: float | None = Field(default=None, ge=0.0)
    description: str = ""
    latex: str | None = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, name: str) -> str:
        if not name.isidentifier() or keyword.iskeyword(name):
            raise ValueError(_IDENTIFIER_ERROR.format(name=name))
        if name in _RESERVED_NAMES or name.startswith("_"):
            raise ValueError(_RESERVED_ERROR.format(name=name))
        return name


# =============================================================================
# Frozen vector base class
# =============================================================================


def _is_scalar(value: object) -> bool:
    return isinstance(value, (numbers.Number, np.bool_, Dual, HyperDual))


class ParametersBase:
    """Behaviour shared by every generated parameter vector type.

    `len` and iteration cover the optimizable entries only; `values()` and
    `as_dict()` cover every entry.
    """

    __slots__ = ()

    _entries: ClassVar[tuple[ParameterEntry, ...]] = ()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @classmethod
    def entries(cls) -> tuple[ParameterEntry, ...]:
        """Return the frozen table this type was generated from."""
        return cls._entries

    @classmethod
    def all_names(cls) -> tuple[str, ...]:
        """Names of every entry, in table order."""
        return tuple(e.name for e in cls._entries)

    @classmethod
    def optimizable_names(cls) -> tuple[str, ...]:
        """Names of the optimizable entries, in table order."""
        return tuple(e.name for e in cls._entries if e.optimizable)

    def values(self) -> tuple[Any, ...]:
        """Values of every entry, in table order."""
        return tuple(getattr(self, name) for name in self.all_names())

    def as_dict(self) -> dict[str, Any]:
        """Mapping from parameter name to value, in table order."""
        return {name: getattr(self, name) for name in self.all_names()}

    def optimizable_values(self) -> np.ndarray:
        """Optimizable values as a 1D array (object dtype for dual scalars)."""
        return np.asarray([getattr(self, n) for n in self.optimizable_names()])

    def replace_optimizable(self, values: Any) -> ParametersBase:
        """Return a copy with every optimizable entry replaced.

        Args:
            values: New values, one per optimizable entry, in table order.

        Raises:
            ValueError: If the number of values does not match.

        Returns:
            New vector of the same type.
        """
        names = self.optimizable_names()
        vals = list(values)
        if len(vals) != len(names):
            raise ValueError(
                _REPLACE_LENGTH_ERROR.format(expected=len(names), actual=len(vals))
            )
        return dataclasses.replace(self, **dict(zip(names, vals, strict=True)))

    @property
    def scalar_type(self) -> type:
        """Common Python type of the entries (`object` when mixed)."""
        types = {type(v) for v in self.values()}
        if len(types) == 1:
            return types.pop()
        return object

    def __len__(self) -> int:
        return len(self.optimizable_names())

    def __iter__(self) -> Iterator[Any]:
        return (getattr(self, n) for n in self.optimizable_names())

    # ------------------------------------------------------------------
    # Elementwise arithmetic
    # ------------------------------------------------------------------

    def _map(self, fn: Any) -> ParametersBase:
        return type(self)(**{n: fn(getattr(self, n)) for n in self.all_names()})

    def _zip(self, other: ParametersBase, fn: Any) -> ParametersBase:
        return type(self)(**{
            n: fn(getattr(self, n), getattr(other, n)) for n in self.all_names()
        })

    def _binary(self, other: object, fn: Any) -> ParametersBase:
        if isinstance(other, type(self)):
            return self._zip(other, fn)
        if _is_scalar(other):
            return self._map(lambda v: fn(v, other))
        return NotImplemented

    def __mul__(self, other: object) -> ParametersBase:
        return self._binary(other, lambda a, b: a * b)

    def __rmul__(self, other: object) -> ParametersBase:
        return self._binary(other, lambda a, b: b * a)

    def __truediv__(self, other: object) -> ParametersBase:
        return self._binary(other, lambda a, b: a / b)

    def __add__(self, other: object) -> ParametersBase:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self._zip(other, lambda a, b: a + b)

    def __sub__(self, other: object) -> ParametersBase:
        if not isinstance(other, type(self)):
            return NotImplemented
        return self._zip(other, lambda a, b: a - b)

    def __neg__(self) -> ParametersBase:
        return self._map(lambda v: -v)


# =============================================================================
# Table
# =============================================================================


class ParameterTable:
    """Ordered, mutable table of parameter entries.

    The table can be frozen into a vector type exactly once; after that it
    rejects further additions and deletions.
    """

    def __init__(self, entries: Any = ()) -> None:
        """
        Initialize a table, optionally from existing entries.

        Args:
            entries: Iterable of ParameterEntry objects or mappings.
        """
        self._entries: list[ParameterEntry] = []
        self._vector_type: type[ParametersBase] | None = None
        for entry in entries:
            self._append(
                entry
                if isinstance(entry, ParameterEntry)
                else ParameterEntry.model_validate(entry)
            )

    @classmethod
    def from_records(cls, records: Any) -> ParameterTable:
        """Build a table from a sequence of mappings (e.g. a parsed config)."""
        return cls(records)

    def to_records(self) -> list[dict[str, Any]]:
        """Return the entries as plain dictionaries, in table order."""
        return [e.model_dump() for e in self._entries]

    # ------------------------------------------------------------------
    # Container protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ParameterEntry]:
        return iter(tuple(self._entries))

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __getitem__(self, name: str) -> ParameterEntry:
        for entry in self._entries:
            if entry.name == name:
                return entry
        raise KeyError(name)

    @property
    def names(self) -> tuple[str, ...]:
        """Entry names in table order."""
        return tuple(e.name for e in self._entries)

    @property
    def is_finalized(self) -> bool:
        """Whether `finalize` has already generated the vector type."""
        return self._vector_type is not None

    @property
    def vector_type(self) -> type[ParametersBase] | None:
        """The generated vector type, or None before finalization."""
        return self._vector_type

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def _require_editable(self, action: str) -> None:
        if self._vector_type is not None:
            raise ParameterTableError(_FROZEN_TABLE_ERROR.format(action=action))

    def _append(self, entry: ParameterEntry) -> None:
        self._require_editable("add")
        if entry.name in self.names:
            raise ParameterTableError(_DUPLICATE_ERROR.format(name=entry.name))
        self._entries.append(entry)

    def add(
        self,
        name: str,
        default: float,
        *,
        unit: str = "",
        optimizable: bool = False,
        mean_obs: float | None = None,
        variance_obs: float | None = None,
        description: str = "",
        latex: str | None = None,
    ) -> ParameterEntry:
        """Append a parameter entry.

        Args:
            name: Parameter name; becomes a field of the vector type.
            default: Default value, in SI units.
            unit: Free-text unit tag.
            optimizable: Whether the parameter is part of the optimizable set.
            mean_obs: Optional observed mean, for calibration.
            variance_obs: Optional observation variance, for calibration.
            description: Free-text description.
            latex: Optional LaTeX symbol.

        Raises:
            ParameterTableError: If `name` is already present or the table
                was finalized.

        Returns:
            The validated entry.
        """
        entry = ParameterEntry(
            name=name,
            default=default,
            unit=unit,
            optimizable=optimizable,
            mean_obs=mean_obs,
            variance_obs=variance_obs,
            description=description,
            latex=latex,
        )
        self._append(entry)
        return entry

    def delete(self, key: str | int) -> ParameterEntry:
        """Remove an entry by name or by position.

        Args:
            key: Entry name, or 0-based position (negative positions count
                from the end, as for lists).

        Raises:
            ParameterTableError: If the name is absent, the position is out of
                range, or the table was finalized.
            TypeError: If `key` is neither a str nor an int.

        Returns:
            The removed entry.
        """
        self._require_editable("delete")
        if isinstance(key, str):
            if key not in self.names:
                raise ParameterTableError(_UNKNOWN_NAME_ERROR.format(name=key))
            pos = self.names.index(key)
        elif isinstance(key, numbers.Integral) and not isinstance(key, bool):
            n = len(self._entries)
            pos = int(key)
            if not -n <= pos < n:
                raise ParameterTableError(_POSITION_ERROR.format(pos=key, n=n))
        else:
            raise TypeError(_KEY_TYPE_ERROR.format(typ=type(key).__name__))
        return self._entries.pop(pos)

    # ------------------------------------------------------------------
    # Freezing
    # ------------------------------------------------------------------

    def finalize(self, type_name: str = "Parameters") -> type[ParametersBase]:
        """Generate the frozen vector type for this table.

        Args:
            type_name: Name of the generated class.

        Raises:
            ParameterTableError: If the type was already generated.
            ValueError: If `type_name` is not a valid identifier.

        Returns:
            A frozen dataclass type; calling it with no arguments gives the
            default vector.
        """
        if self._vector_type is not None:
            raise ParameterTableError(
                _FINALIZED_ERROR.format(type_name=self._vector_type.__name__)
            )
        if not type_name.isidentifier():
            raise ValueError(_TYPE_NAME_ERROR.format(name=type_name))

        entries = tuple(self._entries)
        fields = [
            (e.name, Any, dataclasses.field(default=e.default)) for e in entries
        ]
        vector_type = dataclasses.make_dataclass(
            type_name,
            fields,
            bases=(ParametersBase,),
            namespace={"_entries": entries},
            frozen=True,
            slots=True,
        )
        self._vector_type = vector_type
        return vector_type
