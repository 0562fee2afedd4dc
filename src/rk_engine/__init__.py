"""rk_engine generic Runge-Kutta ODE/DAE integration engine package."""

from __future__ import annotations

from .catalog import available_tableaus, get_tableau
from .config import (
    NewtonConfig,
    ProjectionConfig,
    ProjectionFailurePolicy,
    RunConfig,
    StepControlConfig,
)
from .convergence import ConvergenceStudy, estimate_order
from .core_solver import CoreSolver, IntegrationResult, RunStats, RunStatus
from .errors import (
    ConfigError,
    DimensionMismatchError,
    FailureReason,
    IntegrationFailedError,
    RejectionReason,
    RKEngineError,
    SingularMatrixError,
    TableauError,
)
from .nonlinear_solver import BroydenSolver, NewtonSolver, StageSolver
from .settings import SolverSettings
from .step_engine import StepAttempt, StepEngine
from .systems import (
    ExplicitSystem,
    ImplicitSystem,
    LinearSystem,
    SemiExplicitSystem,
    System,
)
from .tableau import Tableau, TableauClass, classify_tableau, compute_order
from .trajectory import Trajectory

__all__ = [
    "BroydenSolver",
    "ConfigError",
    "ConvergenceStudy",
    "CoreSolver",
    "DimensionMismatchError",
    "ExplicitSystem",
    "FailureReason",
    "ImplicitSystem",
    "IntegrationFailedError",
    "IntegrationResult",
    "LinearSystem",
    "NewtonConfig",
    "NewtonSolver",
    "ProjectionConfig",
    "ProjectionFailurePolicy",
    "RKEngineError",
    "RejectionReason",
    "RunConfig",
    "RunStats",
    "RunStatus",
    "SemiExplicitSystem",
    "SingularMatrixError",
    "SolverSettings",
    "StageSolver",
    "StepAttempt",
    "StepControlConfig",
    "StepEngine",
    "System",
    "Tableau",
    "TableauClass",
    "Trajectory",
    "available_tableaus",
    "classify_tableau",
    "compute_order",
    "estimate_order",
    "get_tableau",
]

__version__ = "0.1.0"
