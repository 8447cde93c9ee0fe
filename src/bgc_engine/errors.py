# src/bgc_engine/errors.py
"""Error types and raise helpers for bgc_engine.

All of these are construction-time configuration errors: operator builders
and the parameter table raise them eagerly instead of producing a silently
wrong operator. None of them is retried.
"""

from __future__ import annotations

from typing import Final

_DRY_FLUX_HINT: Final[str] = (
    "Dry boxes carry no tracer and contribute no flux; either mark the box "
    "as wet or remove it from the pathway."
)


class BgcEngineError(Exception):
    """Base exception for bgc_engine errors."""


class PathwayError(BgcEngineError, ValueError):
    """Raised when an advective pathway is malformed."""


class DryBoxFluxError(BgcEngineError, ValueError):
    """Raised when an operator moves tracer into or out of a dry box."""


class NegativeSinkingVelocityError(BgcEngineError, ValueError):
    """Raised when a sinking velocity law returns an upward velocity."""


class ParameterTableError(BgcEngineError, ValueError):
    """Raised on duplicate/unknown parameter names or double finalization."""


class ConvergenceError(BgcEngineError, RuntimeError):
    """Raised when the steady-state solver fails to converge."""


def raise_pathway_error(*, boxes: object, detail: str) -> None:
    """Raise a standardized PathwayError.

    Args:
        boxes: The offending box sequence.
        detail: Human-readable description of the problem.

    Raises:
        PathwayError: Always.
    """
    msg = f"Invalid pathway {boxes!r}: {detail}."
    raise PathwayError(msg)


def raise_dry_box_flux(*, dry_boxes: list[int]) -> None:
    """Raise a standardized DryBoxFluxError.

    Args:
        dry_boxes: Full-lattice indices of the dry boxes touched by flux.

    Raises:
        DryBoxFluxError: Always.
    """
    msg = (
        f"Operator has nonzero flux through dry box(es) {sorted(dry_boxes)}. "
        f"{_DRY_FLUX_HINT}"
    )
    raise DryBoxFluxError(msg)
