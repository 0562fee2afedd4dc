# src/rk_engine/settings.py
"""YAML-facing solver settings.

This module defines the pydantic model used to describe a solver setup in a
YAML file and translates it into native :mod:`rk_engine.config` objects.

Notes:
    - The schema is flat: every knob is a top-level key.
    - Tolerances, step bounds, caps, controller factors and the projection
      policy are required; only secondary knobs carry defaults.
    - Unknown keys are rejected (`extra="forbid"`), so typos fail loudly.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .catalog import get_tableau
from .config import (
    NewtonConfig,
    ProjectionConfig,
    ProjectionFailurePolicy,
    RunConfig,
    StepControlConfig,
)
from .core_solver import CoreSolver
from .errors import raise_invalid_config

if TYPE_CHECKING:
    from .systems import System
    from .tableau import Tableau


class SolverSettings(BaseModel):
    """Configuration schema for a Runge-Kutta solver loaded from YAML.

    Example:
        ```yaml
        tableau: RadauIIA5
        newton_abs_tol: 1.0e-10
        newton_rel_tol: 1.0e-10
        newton_max_iterations: 20
        abs_tol: 1.0e-8
        rel_tol: 1.0e-6
        h_min: 1.0e-10
        h_max: 0.5
        max_consecutive_rejections: 20
        safety: 0.9
        shrink_factor: 0.5
        min_factor: 0.2
        max_factor: 5.0
        projection: true
        projection_tolerance: 1.0e-10
        projection_max_iterations: 10
        projection_failure_policy: reject
        ```
    """

    model_config = ConfigDict(extra="forbid")

    tableau: str = Field(description="Name of a built-in Butcher tableau")
    nonlinear_solver: Literal["newton", "broyden"] = Field(
        default="newton",
        description="Stage solver for implicit stages",
    )
    store_stages: bool = Field(
        default=False,
        description="Keep per-stage values on the trajectory",
    )

    # Stage solver controls
    newton_abs_tol: float = Field(gt=0.0)
    newton_rel_tol: float = Field(ge=0.0)
    newton_max_iterations: int = Field(ge=1)
    newton_damped: bool = Field(default=True)
    relaxation_factor: float = Field(default=0.5, gt=0.0, lt=1.0)
    max_relaxations: int = Field(default=10, ge=0)

    # Step controller controls
    abs_tol: float = Field(gt=0.0)
    rel_tol: float = Field(ge=0.0)
    h_min: float = Field(gt=0.0)
    h_max: float = Field(gt=0.0)
    max_consecutive_rejections: int = Field(ge=0)
    safety: float = Field(gt=0.0, le=1.0)
    shrink_factor: float = Field(gt=0.0, lt=1.0)
    min_factor: float = Field(gt=0.0, le=1.0)
    max_factor: float = Field(ge=1.0)
    adaptive: bool = Field(default=True)
    max_steps: int = Field(default=1_000_000, ge=1)

    # Projection controls
    projection: bool = Field(description="Project onto invariants after each step")
    projection_tolerance: float = Field(gt=0.0)
    projection_max_iterations: int = Field(ge=1)
    projection_failure_policy: ProjectionFailurePolicy

    @model_validator(mode="after")
    def _check_step_bounds(self) -> SolverSettings:
        if self.h_max < self.h_min:
            msg = f"h_max ({self.h_max}) must be >= h_min ({self.h_min})"
            raise ValueError(msg)
        return self

    @classmethod
    def from_mapping(cls, data: Any) -> SolverSettings:  # noqa: ANN401
        """Validate settings from a parsed YAML document.

        Args:
            data: Parsed document; must be a mapping.

        Raises:
            ConfigError: If the document is not a mapping.

        Returns:
            Validated settings.
        """
        if not isinstance(data, dict):
            raise_invalid_config(
                field="<document>",
                detail="settings must be a YAML mapping",
                value=type(data).__name__,
            )
        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SolverSettings:
        """Load settings from a YAML file.

        Args:
            path: Path to the YAML file.

        Returns:
            Validated settings.
        """
        with Path(path).open(encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        return cls.from_mapping(data)

    def to_yaml(self, path: str | Path) -> Path:
        """Write settings to a YAML file.

        Args:
            path: Destination path.

        Returns:
            The written path.
        """
        out = Path(path)
        with out.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(self.model_dump(mode="json"), fh, sort_keys=False)
        return out

    def to_run_config(self) -> RunConfig:
        """Convert these settings to a native RunConfig.

        Returns:
            Fully constructed RunConfig instance.
        """
        newton = NewtonConfig(
            abs_tol=self.newton_abs_tol,
            rel_tol=self.newton_rel_tol,
            max_iterations=self.newton_max_iterations,
            damped=self.newton_damped,
            relaxation_factor=self.relaxation_factor,
            max_relaxations=self.max_relaxations,
        )

        step_control = StepControlConfig(
            abs_tol=self.abs_tol,
            rel_tol=self.rel_tol,
            h_min=self.h_min,
            h_max=self.h_max,
            max_consecutive_rejections=self.max_consecutive_rejections,
            safety=self.safety,
            shrink_factor=self.shrink_factor,
            min_factor=self.min_factor,
            max_factor=self.max_factor,
            adaptive=self.adaptive,
            max_steps=self.max_steps,
        )

        projection = ProjectionConfig(
            enabled=self.projection,
            tolerance=self.projection_tolerance,
            max_iterations=self.projection_max_iterations,
            failure_policy=self.projection_failure_policy,
        )

        return RunConfig(
            newton=newton,
            step_control=step_control,
            projection=projection,
            nonlinear_solver=self.nonlinear_solver,
            store_stages=self.store_stages,
        )

    def build_tableau(self) -> Tableau:
        """Resolve the configured tableau from the built-in catalog."""
        return get_tableau(self.tableau)

    def build_solver(self, system: System) -> CoreSolver:
        """Build a CoreSolver for a system from these settings.

        Args:
            system: System to integrate.

        Returns:
            Configured CoreSolver.
        """
        return CoreSolver(self.build_tableau(), system, self.to_run_config())
