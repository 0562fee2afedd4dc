# src/rk_engine/config.py
"""Configuration dataclasses for the Runge-Kutta stepping engine.

Every field listed in the public configuration surface (tolerances, step
bounds, iteration and rejection caps, controller factors, projection policy)
is a required constructor argument: a run never relies on an implicit
default for these. A handful of secondary knobs (Newton damping, the
accepted-step cap, diagnostics storage) carry defaults.

All dataclasses are frozen and validated on construction; invalid values
raise :class:`rk_engine.errors.ConfigError`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from .errors import raise_invalid_config

NonlinearSolverName = Literal["newton", "broyden"]


class ProjectionFailurePolicy(str, Enum):
    """What to do when invariant projection does not converge."""

    ACCEPT_UNPROJECTED = "accept-unprojected"
    REJECT = "reject"


def _require_positive(field: str, value: float) -> None:
    if not (math.isfinite(value) and value > 0.0):
        raise_invalid_config(field=field, detail="must be finite and > 0", value=value)


def _require_non_negative(field: str, value: float) -> None:
    if not (math.isfinite(value) and value >= 0.0):
        raise_invalid_config(field=field, detail="must be finite and >= 0", value=value)


def _require_count(field: str, value: int, *, minimum: int = 1) -> None:
    if int(value) != value or value < minimum:
        raise_invalid_config(
            field=field,
            detail=f"must be an integer >= {minimum}",
            value=value,
        )


@dataclass(slots=True, frozen=True)
class NewtonConfig:
    """Configuration for the nonlinear stage solver.

    Attributes:
        abs_tol: Absolute residual tolerance.
        rel_tol: Relative residual tolerance (scaled by the iterate norm).
        max_iterations: Maximum number of Newton iterations per solve.
        damped: Whether to relax the Newton step when the residual grows.
        relaxation_factor: Step-length multiplier applied per relaxation.
        max_relaxations: Maximum number of relaxations per iteration.
    """

    abs_tol: float
    rel_tol: float
    max_iterations: int
    damped: bool = True
    relaxation_factor: float = 0.5
    max_relaxations: int = 10

    def __post_init__(self) -> None:
        _require_positive("newton.abs_tol", self.abs_tol)
        _require_non_negative("newton.rel_tol", self.rel_tol)
        _require_count("newton.max_iterations", self.max_iterations)
        if not (0.0 < self.relaxation_factor < 1.0):
            raise_invalid_config(
                field="newton.relaxation_factor",
                detail="must be in (0, 1)",
                value=self.relaxation_factor,
            )
        _require_count("newton.max_relaxations", self.max_relaxations, minimum=0)


@dataclass(slots=True, frozen=True)
class StepControlConfig:
    """Configuration for the adaptive step controller.

    Attributes:
        abs_tol: Absolute tolerance of the local error estimate.
        rel_tol: Relative tolerance of the local error estimate.
        h_min: Minimum allowed step size; falling below it is fatal.
        h_max: Maximum allowed step size.
        max_consecutive_rejections: Rejections of the same step before the run
            fails.
        safety: Safety factor applied to the optimal step-size formula.
        shrink_factor: Step-size multiplier after a rejected attempt (< 1).
        min_factor: Lower clamp of the step-size change factor.
        max_factor: Upper clamp of the step-size change factor.
        adaptive: If False, keep the nominal step size and skip error control.
        max_steps: Maximum number of accepted steps in one run.
    """

    abs_tol: float
    rel_tol: float
    h_min: float
    h_max: float
    max_consecutive_rejections: int
    safety: float
    shrink_factor: float
    min_factor: float
    max_factor: float
    adaptive: bool = True
    max_steps: int = 1_000_000

    def __post_init__(self) -> None:
        _require_positive("step_control.abs_tol", self.abs_tol)
        _require_non_negative("step_control.rel_tol", self.rel_tol)
        _require_positive("step_control.h_min", self.h_min)
        if not (self.h_max >= self.h_min):
            raise_invalid_config(
                field="step_control.h_max",
                detail="must be >= h_min",
                value=self.h_max,
            )
        _require_count(
            "step_control.max_consecutive_rejections",
            self.max_consecutive_rejections,
            minimum=0,
        )
        if not (0.0 < self.safety <= 1.0):
            raise_invalid_config(
                field="step_control.safety",
                detail="must be in (0, 1]",
                value=self.safety,
            )
        if not (0.0 < self.shrink_factor < 1.0):
            raise_invalid_config(
                field="step_control.shrink_factor",
                detail="must be in (0, 1)",
                value=self.shrink_factor,
            )
        _require_positive("step_control.min_factor", self.min_factor)
        if not (self.min_factor <= 1.0 <= self.max_factor):
            raise_invalid_config(
                field="step_control.max_factor",
                detail="factors must satisfy min_factor <= 1 <= max_factor",
                value=(self.min_factor, self.max_factor),
            )
        _require_count("step_control.max_steps", self.max_steps)


@dataclass(slots=True, frozen=True)
class ProjectionConfig:
    """Configuration for invariant-manifold projection.

    Attributes:
        enabled: Whether candidates are projected onto h(x, t) = 0.
        tolerance: Projection converges once ||h(x, t)|| < tolerance.
        max_iterations: Maximum number of projection Newton iterations.
        failure_policy: Accept the unprojected candidate, or reject the step.
    """

    enabled: bool
    tolerance: float
    max_iterations: int
    failure_policy: ProjectionFailurePolicy

    def __post_init__(self) -> None:
        _require_positive("projection.tolerance", self.tolerance)
        _require_count("projection.max_iterations", self.max_iterations)
        if not isinstance(self.failure_policy, ProjectionFailurePolicy):
            raise_invalid_config(
                field="projection.failure_policy",
                detail="must be a ProjectionFailurePolicy",
                value=self.failure_policy,
            )


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Complete configuration of one stepper instance.

    Attributes:
        newton: Nonlinear stage-solver settings.
        step_control: Adaptive controller settings.
        projection: Invariant projection settings.
        nonlinear_solver: "newton" (default) or "broyden".
        store_stages: Keep per-stage values on the trajectory for diagnostics.
    """

    newton: NewtonConfig
    step_control: StepControlConfig
    projection: ProjectionConfig
    nonlinear_solver: NonlinearSolverName = "newton"
    store_stages: bool = False

    def __post_init__(self) -> None:
        if self.nonlinear_solver not in {"newton", "broyden"}:
            raise_invalid_config(
                field="nonlinear_solver",
                detail="must be 'newton' or 'broyden'",
                value=self.nonlinear_solver,
            )
