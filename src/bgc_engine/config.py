# src/bgc_engine/config.py
"""Configuration models for box-model runs.

This module defines the pydantic configuration objects read from YAML files
and translates them into native bgc_engine objects (pathways, Newton settings,
parameter tables).

Notes:
    - Unknown fields are allowed and ignored (`extra="allow"`), so one YAML
      file can carry settings for other tools as well.
    - Flow rates and speeds are in SI units (m^3/s, m/s); no unit conversion
      is attempted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from ruamel.yaml import YAML

from .circulation import Pathway
from .parameters import ParameterTable
from .steady_state import NewtonConfig

_CONFIG_ROOT_ERROR = "Configuration file {path} must contain a mapping; got {typ}"


class PathwayConfig(BaseModel):
    """One advective loop, as written in a configuration file."""

    model_config = ConfigDict(extra="allow")

    boxes: list[int] = Field(min_length=2, description="Box indices along the loop")
    flow_rate: float = Field(gt=0.0, description="Volumetric flow rate (m^3/s)")
    name: str | None = None

    def to_pathway(self) -> Pathway:
        """Convert to a native Pathway.

        Returns:
            Validated Pathway instance.
        """
        return Pathway(tuple(self.boxes), self.flow_rate, name=self.name)


class CirculationConfig(BaseModel):
    """Circulation made of independent advective loops."""

    model_config = ConfigDict(extra="allow")

    pathways: list[PathwayConfig] = Field(default_factory=list)
    strict: bool = Field(
        default=True,
        description="Reject flux through dry boxes during wet-mask reduction",
    )

    def to_pathways(self) -> tuple[Pathway, ...]:
        """Convert every configured loop to a Pathway."""
        return tuple(p.to_pathway() for p in self.pathways)


class SinkingConfig(BaseModel):
    """Linear sinking-speed law `w0 + w_prime * depth`.

    Unset fields keep the defaults of the model's parameter table.
    """

    model_config = ConfigDict(extra="allow")

    w0: float | None = Field(default=None, ge=0.0, description="Surface speed (m/s)")
    w_prime: float | None = Field(
        default=None, ge=0.0, description="Speed gradient (1/s)"
    )

    def overrides(self) -> dict[str, float]:
        """Return the configured speeds as parameter-vector keyword overrides."""
        return {
            name: value
            for name, value in (("w0", self.w0), ("w_prime", self.w_prime))
            if value is not None
        }


class SolverConfig(BaseModel):
    """Newton solver settings.

    This model mirrors NewtonConfig fields but keeps YAML-friendly defaults
    and validation behavior.
    """

    model_config = ConfigDict(extra="allow")

    rtol: float = Field(default=1e-10, ge=0.0)
    atol: float = Field(default=0.0, ge=0.0)
    max_iter: int = Field(default=50, ge=1)
    jacobian_reuse: int = Field(default=1, ge=1)
    strict: bool = Field(
        default=True,
        description="Raise on non-convergence instead of warning",
    )

    def to_newton_config(self) -> NewtonConfig:
        """Convert this config to a native NewtonConfig.

        Returns:
            Fully constructed NewtonConfig instance.
        """
        return NewtonConfig(
            rtol=self.rtol,
            atol=self.atol,
            max_iter=self.max_iter,
            jacobian_reuse=self.jacobian_reuse,
            strict=self.strict,
        )


class BoxModelConfig(BaseModel):
    """Top-level configuration of a box-model run."""

    model_config = ConfigDict(extra="allow")

    circulation: CirculationConfig = Field(default_factory=CirculationConfig)
    sinking: SinkingConfig = Field(default_factory=SinkingConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    parameters: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Parameter table records (name, default, unit, ...)",
    )

    def parameter_table(self) -> ParameterTable:
        """Build a ParameterTable from the configured records."""
        return ParameterTable.from_records(self.parameters)


def load_config(path: str | Path) -> BoxModelConfig:
    """Read and validate a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Raises:
        ValueError: If the file does not hold a mapping at the top level.

    Returns:
        Validated BoxModelConfig.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        data = YAML(typ="safe").load(fh)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(_CONFIG_ROOT_ERROR.format(path=path, typ=type(data).__name__))
    return BoxModelConfig.model_validate(data)
