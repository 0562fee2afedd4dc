# src/rk_engine/core_solver.py
"""Adaptive step controller for Runge-Kutta integration.

:class:`CoreSolver` drives a :class:`rk_engine.step_engine.StepEngine` from the
start of a time span to its end:

    1. Clamp the step so it neither overshoots t_final nor exceeds h_max.
    2. Attempt the step.
    3. Accepted: record the sample, advance, reset the rejection streak and
       propose the next step size from the error estimate
       (h * clamp(safety * err^(-1/(q+1)), min_factor, max_factor)).
    4. Rejected: shrink the step by shrink_factor and retry from the same (t, x).
    5. Too many consecutive rejections, or a step size below h_min, end the
       run with a typed failure and the partial trajectory.

The controller never raises for numerical trouble during stepping; the run
result carries a status and, on failure, a :class:`FailureReason`. Call
:meth:`IntegrationResult.raise_for_status` to turn a failed run into an
exception.

Non-adaptive runs (``StepControlConfig.adaptive=False``) never reject on the
error estimate and return to the nominal step size after every accepted step;
rejections from the stage solver or projection still shrink and retry.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Final

import numpy as np
from numpy.typing import NDArray

from .errors import (
    FailureReason,
    IntegrationFailedError,
    RejectionReason,
    raise_invalid_config,
)
from .step_engine import StepAttempt, StepEngine
from .systems import validate_system_dimensions
from .trajectory import Trajectory

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike

    from .config import RunConfig, StepControlConfig
    from .systems import System
    from .tableau import Tableau


# =============================================================================
# Errors / messages
# =============================================================================

_H0_CLAMPED_WARNING_MSG: Final[str] = "h0={h0:.6g} exceeds h_max={h_max:.6g}; clamping."
_INITIAL_PROJECTION_WARNING_MSG: Final[str] = (
    "Initial state could not be projected onto the invariants "
    "(||h|| = {norm:.3e}); integrating from the unprojected state."
)
_REJECTION_CAP_MSG: Final[str] = (
    "{count} consecutive rejections at t={t:.6g} (last reason: {reason})."
)
_SINGULAR_STREAK_MSG: Final[str] = (
    "Jacobian singular on {count} consecutive attempts at t={t:.6g}."
)
_UNDERFLOW_MSG: Final[str] = (
    "Step size {h:.3e} fell below h_min={h_min:.3e} at t={t:.6g} "
    "(last reason: {reason})."
)
_MAX_STEPS_MSG: Final[str] = "Exceeded max_steps={max_steps} at t={t:.6g}."
_CANCELLED_MSG: Final[str] = "Run cancelled by should_stop at t={t:.6g}."
_COMPLETED_MSG: Final[str] = "Integration completed."

StopPredicate = Callable[[float, NDArray[np.floating]], bool]


# =============================================================================
# Results
# =============================================================================


class RunStatus(str, Enum):
    """Terminal status of a run."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class RunStats:
    """Counters accumulated over one run.

    Attributes:
        accepted_steps: Number of accepted attempts.
        rejected_steps: Number of rejected attempts.
        rejections: Rejected attempts broken down by reason.
        newton_iterations: Nonlinear iterations over all attempts.
        function_evaluations: System evaluations over all attempts.
    """

    accepted_steps: int = 0
    rejected_steps: int = 0
    rejections: dict[RejectionReason, int] = field(default_factory=dict)
    newton_iterations: int = 0
    function_evaluations: int = 0

    def record(self, attempt: StepAttempt) -> None:
        """Fold one attempt into the counters."""
        self.newton_iterations += attempt.newton_iterations
        self.function_evaluations += attempt.function_evaluations
        if attempt.accepted:
            self.accepted_steps += 1
            return
        self.rejected_steps += 1
        if attempt.rejection_reason is not None:
            reason = attempt.rejection_reason
            self.rejections[reason] = self.rejections.get(reason, 0) + 1


@dataclass(slots=True, frozen=True)
class IntegrationResult:
    """Outcome of a run.

    Attributes:
        trajectory: Accepted samples (partial when the run failed).
        status: COMPLETED or FAILED.
        failure: Typed failure reason, None on success.
        message: Human-readable summary.
        stats: Run counters.
    """

    trajectory: Trajectory
    status: RunStatus
    failure: FailureReason | None
    message: str
    stats: RunStats

    @property
    def succeeded(self) -> bool:
        """Whether the run reached the end of its time span."""
        return self.status is RunStatus.COMPLETED

    def raise_for_status(self) -> IntegrationResult:
        """Raise if the run failed.

        Raises:
            IntegrationFailedError: With this result attached, for failed runs.

        Returns:
            self, for chaining.
        """
        if self.status is RunStatus.FAILED:
            reason = self.failure.value if self.failure is not None else "unknown"
            msg = f"Integration failed ({reason}): {self.message}"
            raise IntegrationFailedError(msg, self)
        return self


# =============================================================================
# Controller
# =============================================================================


@dataclass(slots=True)
class _RunState:
    """Mutable controller state for one run."""

    t: float
    x: NDArray[np.floating]
    h: float
    nominal_h: float
    trajectory: Trajectory
    stats: RunStats = field(default_factory=RunStats)


@dataclass(slots=True, frozen=True)
class _Outcome:
    failure: FailureReason
    message: str


class CoreSolver:
    """Integrate a system over a time span with a Runge-Kutta tableau.

    Args:
        tableau: Butcher tableau of the method.
        system: System to integrate.
        config: Complete run configuration.
    """

    def __init__(self, tableau: Tableau, system: System, config: RunConfig) -> None:
        self._engine = StepEngine(tableau, system, config)
        self._config = config

    @property
    def engine(self) -> StepEngine:
        """Underlying step engine."""
        return self._engine

    @property
    def tableau(self) -> Tableau:
        """Butcher tableau."""
        return self._engine.tableau

    @property
    def system(self) -> System:
        """Integrated system."""
        return self._engine.system

    @property
    def config(self) -> RunConfig:
        """Run configuration."""
        return self._config

    # ------------------------------------------------------------------
    # Step size control
    # ------------------------------------------------------------------

    def _error_factor(self, err_norm: float) -> float:
        """
        Step-size change factor for a given error norm.

        Args:
            err_norm: RMS scaled error norm.

        Returns:
            safety * err^(-1/(q+1)), clamped to [min_factor, max_factor].
        """
        cfg = self._config.step_control
        if err_norm <= 0.0:
            return cfg.max_factor
        exp = 1.0 / float(self.tableau.error_order + 1)
        fac = cfg.safety * (err_norm ** (-exp))
        return min(cfg.max_factor, max(cfg.min_factor, fac))

    def _propose_h(self, h: float, err_norm: float | None) -> float:
        cfg = self._config.step_control
        if err_norm is None:
            return h
        h_new = h * self._error_factor(err_norm)
        if h_new < cfg.h_min:
            return cfg.h_min
        if h_new > cfg.h_max:
            return cfg.h_max
        return h_new

    def _shrink(self, attempt: StepAttempt) -> float:
        # Same factor for every rejection reason; the growth formula never applies here.
        return attempt.h * self._config.step_control.shrink_factor

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    @staticmethod
    def _time_tolerance(*times: float) -> float:
        scale = max(1.0, *(abs(t) for t in times))
        return 64.0 * float(np.finfo(float).eps) * scale

    def _initial_state(self, x0: ArrayLike | None, t0: float) -> NDArray[np.floating]:
        system = self.system
        x = validate_system_dimensions(
            system, system.ics() if x0 is None else np.asarray(x0, dtype=float), t0
        )
        proj = self._engine.project_initial_state(x, t0)
        if not proj.converged:
            warnings.warn(
                _INITIAL_PROJECTION_WARNING_MSG.format(norm=proj.invariant_norm),
                RuntimeWarning,
                stacklevel=3,
            )
            return x.copy()
        return proj.x

    def _initial_h(self, h0: float) -> float:
        cfg: StepControlConfig = self._config.step_control
        if not (np.isfinite(h0) and h0 > 0.0):
            raise_invalid_config(field="h0", detail="must be finite and > 0", value=h0)
        if h0 < cfg.h_min:
            raise_invalid_config(field="h0", detail="must be >= step_control.h_min", value=h0)
        if h0 > cfg.h_max:
            warnings.warn(
                _H0_CLAMPED_WARNING_MSG.format(h0=h0, h_max=cfg.h_max),
                RuntimeWarning,
                stacklevel=3,
            )
            return float(cfg.h_max)
        return float(h0)

    def _new_trajectory(self) -> Trajectory:
        system = self.system
        return Trajectory(
            system.n_states,
            system.n_invariants,
            store_stages=self._config.store_stages,
        )

    def _append(
        self,
        state: _RunState,
        t: float,
        x: NDArray[np.floating],
        stages: NDArray[np.floating] | None = None,
    ) -> None:
        system = self.system
        invariant = system.h(x, t) if system.n_invariants > 0 else None
        state.trajectory.append(t, x, invariant=invariant, stages=stages)

    # ------------------------------------------------------------------
    # Core loop
    # ------------------------------------------------------------------

    def _advance_to(
        self,
        state: _RunState,
        t_target: float,
        *,
        record_substeps: bool,
        should_stop: StopPredicate | None = None,
    ) -> _Outcome | None:
        """Advance state until t_target with shrink/retry on rejection.

        Args:
            state: Mutable run state; updated in place.
            t_target: Time to reach.
            record_substeps: Append every accepted step to the trajectory.
            should_stop: Optional cancellation predicate, checked once per step
                boundary.

        Returns:
            None when t_target was reached, otherwise the fatal outcome.
        """
        cfg = self._config.step_control
        t_tol = self._time_tolerance(state.t, t_target)

        streak = 0
        streak_all_singular = True
        last_reason: RejectionReason | None = None

        while t_target - state.t > t_tol:
            if streak == 0:
                if should_stop is not None and should_stop(state.t, state.x):
                    return _Outcome(FailureReason.CANCELLED, _CANCELLED_MSG.format(t=state.t))
                if state.stats.accepted_steps >= cfg.max_steps:
                    return _Outcome(
                        FailureReason.MAX_STEPS_EXCEEDED,
                        _MAX_STEPS_MSG.format(max_steps=cfg.max_steps, t=state.t),
                    )

            h_try = min(state.h, cfg.h_max, t_target - state.t)
            attempt = self._engine.attempt(state.x, state.t, h_try)
            state.stats.record(attempt)

            if attempt.accepted and attempt.x_candidate is not None:
                t_new = state.t + h_try
                if abs(t_target - t_new) <= t_tol:
                    t_new = t_target
                state.t = t_new
                state.x = attempt.x_candidate
                if record_substeps:
                    self._append(state, t_new, state.x, attempt.stage_values)
                streak = 0
                streak_all_singular = True
                if cfg.adaptive:
                    state.h = self._propose_h(h_try, attempt.error_estimate)
                else:
                    state.h = state.nominal_h
                continue

            streak += 1
            last_reason = attempt.rejection_reason
            streak_all_singular = streak_all_singular and (
                last_reason is RejectionReason.SINGULAR_JACOBIAN
            )
            reason_text = last_reason.value if last_reason is not None else "unknown"

            if streak > cfg.max_consecutive_rejections:
                if streak_all_singular:
                    return _Outcome(
                        FailureReason.SINGULAR_JACOBIAN,
                        _SINGULAR_STREAK_MSG.format(count=streak, t=state.t),
                    )
                return _Outcome(
                    FailureReason.REJECTION_CAP_EXCEEDED,
                    _REJECTION_CAP_MSG.format(count=streak, t=state.t, reason=reason_text),
                )

            h_new = self._shrink(attempt)
            if h_new < cfg.h_min:
                return _Outcome(
                    FailureReason.STEP_SIZE_UNDERFLOW,
                    _UNDERFLOW_MSG.format(
                        h=h_new, h_min=cfg.h_min, t=state.t, reason=reason_text
                    ),
                )
            state.h = h_new

        state.t = t_target
        return None

    @staticmethod
    def _result(state: _RunState, outcome: _Outcome | None) -> IntegrationResult:
        if outcome is None:
            return IntegrationResult(
                trajectory=state.trajectory,
                status=RunStatus.COMPLETED,
                failure=None,
                message=_COMPLETED_MSG,
                stats=state.stats,
            )
        return IntegrationResult(
            trajectory=state.trajectory,
            status=RunStatus.FAILED,
            failure=outcome.failure,
            message=outcome.message,
            stats=state.stats,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        t_span: tuple[float, float],
        x0: ArrayLike | None = None,
        *,
        h0: float,
        should_stop: StopPredicate | None = None,
    ) -> IntegrationResult:
        """Integrate over t_span.

        Args:
            t_span: (t0, t_final) with t_final > t0.
            x0: Initial state; system.ics() when None.
            h0: Initial (and, for non-adaptive runs, nominal) step size.
            should_stop: Optional predicate (t, x) -> bool checked at every step
                boundary; returning True cancels the run.

        Raises:
            ConfigError: If t_span or h0 is invalid.
            DimensionMismatchError: If x0 or the system's outputs have the wrong
                shape.

        Returns:
            IntegrationResult with the trajectory of accepted samples.
        """
        t0, tf = (float(v) for v in t_span)
        if not (np.isfinite(t0) and np.isfinite(tf) and tf > t0):
            raise_invalid_config(
                field="t_span",
                detail="must be finite with t_final > t0",
                value=tuple(t_span),
            )
        h = self._initial_h(h0)
        x = self._initial_state(x0, t0)

        state = _RunState(t=t0, x=x, h=h, nominal_h=h, trajectory=self._new_trajectory())
        self._append(state, t0, x)

        outcome = self._advance_to(
            state, tf, record_substeps=True, should_stop=should_stop
        )
        return self._result(state, outcome)

    def run_mesh(
        self,
        times: Sequence[float] | NDArray[np.floating],
        x0: ArrayLike | None = None,
    ) -> IntegrationResult:
        """Integrate on a fixed mesh, recording exactly the mesh points.

        Each interval is attempted as one step; a rejected attempt is shrunk
        and retried inside the interval, with intermediate states not recorded.

        Args:
            times: Strictly increasing mesh with at least two points.
            x0: Initial state at times[0]; system.ics() when None.

        Raises:
            ConfigError: If the mesh is invalid.

        Returns:
            IntegrationResult whose trajectory holds the reached mesh points.
        """
        mesh = np.asarray(times, dtype=float)
        if mesh.ndim != 1 or mesh.size < 2 or not np.all(np.isfinite(mesh)):
            raise_invalid_config(
                field="times",
                detail="must be a finite 1D mesh with at least two points",
                value=mesh.shape,
            )
        if not np.all(np.diff(mesh) > 0.0):
            raise_invalid_config(field="times", detail="must be strictly increasing")

        t0 = float(mesh[0])
        x = self._initial_state(x0, t0)
        first = float(mesh[1] - mesh[0])
        state = _RunState(
            t=t0, x=x, h=first, nominal_h=first, trajectory=self._new_trajectory()
        )
        self._append(state, t0, x)

        for t_next in mesh[1:]:
            interval = float(t_next) - state.t
            state.h = interval
            state.nominal_h = interval
            outcome = self._advance_to(state, float(t_next), record_substeps=False)
            if outcome is not None:
                return self._result(state, outcome)
            self._append(state, state.t, state.x)
        return self._result(state, None)
