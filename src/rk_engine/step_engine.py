# src/rk_engine/step_engine.py
"""Single step attempts: stages, candidate, error estimate, projection.

One call to :meth:`StepEngine.attempt` runs the per-attempt state machine

    stages solving -> candidate formed -> (projecting) -> accepted | rejected

and returns an immutable :class:`StepAttempt` record. A rejected attempt is
an ordinary return value with a typed :class:`RejectionReason`; the
controller decides whether to shrink and retry.

Error estimation:
    - Embedded pairs: err = h * sum_i (b_i - b_hat_i) k_i, reported for every
      formed candidate since it reuses the stages.
    - Otherwise, in adaptive runs only, step doubling: one full step against
      two half steps; the two-half-step result becomes the candidate.
The estimate is reported as the RMS scaled norm. In adaptive runs a norm
above 1 rejects the attempt; non-adaptive runs never reject on error.

Projection:
    When the system declares invariants and projection is enabled, the
    candidate is moved to the nearest point with h(x, t) = 0 by Newton
    iteration on the KKT system of the minimum-distance problem.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, cast

import numpy as np
from numpy.typing import NDArray

from .config import ProjectionFailurePolicy
from .errors import RejectionReason, SingularMatrixError, raise_invalid_tableau
from .matrix_ops import build_projection_system, rms_error_norm, solve_dense
from .nonlinear_solver import StageSolver, make_nonlinear_solver
from .systems import System
from .tableau import Tableau

if TYPE_CHECKING:
    from .config import RunConfig

Array = NDArray[np.floating]

_PROJECTION_ACCEPTED_WARNING_MSG: Final[str] = (
    "Invariant projection did not converge at t={t:.6g} (||h|| = {norm:.3e} after "
    "{iterations} iterations); accepting the unprojected state."
)
_NOT_A_TABLEAU_MSG: Final[str] = "expected a Tableau instance, got {kind}"
_NOT_A_SYSTEM_MSG: Final[str] = "system must be an rk_engine.systems.System, got {kind}"


@dataclass(slots=True, frozen=True)
class StepAttempt:
    """Record of one step attempt.

    Attributes:
        t_start: Time at the start of the attempt.
        h: Step size of the attempt.
        x_start: State at the start of the attempt.
        stage_values: Stage derivatives k, shape (S, N). For step doubling these
            are the stages of the full step.
        x_candidate: State at t_start + h (projected when projection succeeded),
            or None if no candidate was formed.
        error_estimate: RMS scaled local error norm. None for attempts rejected
            before the estimate and for non-adaptive runs without an embedded
            pair.
        accepted: Whether the attempt was accepted.
        rejection_reason: Typed reason for a rejected attempt.
        projected: Whether the candidate was projected onto the invariants.
        newton_iterations: Nonlinear iterations spent in the attempt.
        function_evaluations: System evaluations spent in the attempt.
        invariant_norm: ||h(x_candidate, t_start + h)|| (0 when M = 0).
        detail: Human-readable diagnostic.
    """

    t_start: float
    h: float
    x_start: Array
    stage_values: Array
    x_candidate: Array | None
    error_estimate: float | None
    accepted: bool
    rejection_reason: RejectionReason | None
    projected: bool = False
    newton_iterations: int = 0
    function_evaluations: int = 0
    invariant_norm: float = 0.0
    detail: str = ""

    @property
    def t_end(self) -> float:
        """Time reached by an accepted attempt."""
        return self.t_start + self.h


@dataclass(slots=True, frozen=True)
class ProjectionResult:
    """Outcome of an invariant projection.

    Attributes:
        x: Projected state (the input state when nothing converged).
        converged: Whether ||h|| fell below the projection tolerance.
        iterations: Projection Newton iterations performed.
        invariant_norm: ||h|| at the returned state.
        singular: Whether the KKT matrix was singular.
    """

    x: Array
    converged: bool
    iterations: int
    invariant_norm: float
    singular: bool = False


@dataclass(slots=True, frozen=True)
class _RawStep:
    k: Array
    x_new: Array | None
    reason: RejectionReason | None
    iterations: int
    evaluations: int
    detail: str


class StepEngine:
    """Attempt single Runge-Kutta steps of a given size.

    Args:
        tableau: Butcher tableau of the method.
        system: System to integrate.
        config: Complete run configuration.

    Raises:
        TableauError: If tableau is not a Tableau.
        TypeError: If system is not a System.
    """

    def __init__(self, tableau: Tableau, system: System, config: RunConfig) -> None:
        if not isinstance(tableau, Tableau):
            raise_invalid_tableau(
                str(getattr(tableau, "name", tableau)),
                detail=_NOT_A_TABLEAU_MSG.format(kind=type(tableau).__name__),
            )
        if not isinstance(system, System):
            raise TypeError(_NOT_A_SYSTEM_MSG.format(kind=type(system).__name__))
        self._tableau = tableau
        self._system = system
        self._config = config
        self._stages = StageSolver(
            tableau,
            system,
            make_nonlinear_solver(config.nonlinear_solver, config.newton),
        )

    @property
    def tableau(self) -> Tableau:
        """Butcher tableau."""
        return self._tableau

    @property
    def system(self) -> System:
        """Integrated system."""
        return self._system

    @property
    def config(self) -> RunConfig:
        """Run configuration."""
        return self._config

    @property
    def projection_active(self) -> bool:
        """Whether candidates are projected onto the invariant manifold."""
        return self._config.projection.enabled and self._system.n_invariants > 0

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _invariant_norm(self, x: Array, t: float) -> float:
        if self._system.n_invariants == 0:
            return 0.0
        return float(np.linalg.norm(np.asarray(self._system.h(x, t), dtype=float)))

    def project(self, x: Array, t: float) -> ProjectionResult:
        """Project x onto the manifold h(x, t) = 0.

        Each iteration solves

            | I      Jh_x^T | | dx     |   | x - x_k |
            | Jh_x   0      | | lambda | = | -h(x_k) |

        so the correction stays the minimum-distance one relative to x.

        Args:
            x: State to project.
            t: Time at which the invariants are evaluated.

        Returns:
            ProjectionResult.
        """
        cfg = self._config.projection
        system = self._system
        x_target = np.asarray(x, dtype=float)
        if system.n_invariants == 0:
            return ProjectionResult(x_target.copy(), True, 0, 0.0)

        n = system.n_states
        x_k = x_target.copy()
        for iteration in range(cfg.max_iterations + 1):
            h_val = np.asarray(system.h(x_k, t), dtype=float)
            norm = float(np.linalg.norm(h_val))
            if not np.isfinite(norm):
                return ProjectionResult(x_target.copy(), False, iteration, float("inf"))
            if norm < cfg.tolerance:
                return ProjectionResult(x_k, True, iteration, norm)
            if iteration == cfg.max_iterations:
                break

            kkt = build_projection_system(system.Jh_x(x_k, t))
            rhs = np.concatenate([x_target - x_k, -h_val])
            try:
                sol = solve_dense(kkt, rhs)
            except SingularMatrixError:
                return ProjectionResult(x_k, False, iteration, norm, singular=True)
            x_k = x_k + sol[:n]

        return ProjectionResult(x_k, False, cfg.max_iterations, norm)

    def project_initial_state(self, x0: Array, t0: float) -> ProjectionResult:
        """Project the initial state when projection is active.

        Args:
            x0: Initial state.
            t0: Initial time.

        Returns:
            ProjectionResult (a trivially converged one when inactive).
        """
        x = np.asarray(x0, dtype=float)
        if not self.projection_active:
            return ProjectionResult(x.copy(), True, 0, self._invariant_norm(x, t0))
        return self.project(x, t0)

    # ------------------------------------------------------------------
    # Attempts
    # ------------------------------------------------------------------

    def _raw_step(self, x: Array, t: float, h: float) -> _RawStep:
        sol = self._stages.solve(x, t, h)
        if not sol.converged:
            return _RawStep(
                sol.k, None, sol.reason, sol.iterations, sol.function_evaluations, sol.detail
            )

        x_new = x + h * (self._tableau.b @ sol.k)
        if not np.all(np.isfinite(x_new)):
            return _RawStep(
                sol.k, None, RejectionReason.NON_FINITE,
                sol.iterations, sol.function_evaluations,
                "candidate state is not finite",
            )
        if not self._system.in_domain(x_new, t + h):
            return _RawStep(
                sol.k, None, RejectionReason.INFEASIBLE,
                sol.iterations, sol.function_evaluations,
                "candidate state is outside the domain",
            )
        return _RawStep(sol.k, x_new, None, sol.iterations, sol.function_evaluations, "")

    def attempt(self, x: Array, t: float, h: float) -> StepAttempt:
        """Attempt one step of size h from (x, t).

        Args:
            x: Current state.
            t: Current time.
            h: Step size (> 0).

        Returns:
            StepAttempt describing the accepted or rejected attempt.
        """
        x = np.asarray(x, dtype=float)
        t = float(t)
        h = float(h)
        step_cfg = self._config.step_control
        tab = self._tableau

        full = self._raw_step(x, t, h)
        iterations = full.iterations
        evaluations = full.evaluations

        def _reject(
            reason: RejectionReason | None,
            detail: str,
            candidate: Array | None = None,
            err: float | None = None,
        ) -> StepAttempt:
            return StepAttempt(
                t_start=t,
                h=h,
                x_start=x,
                stage_values=full.k,
                x_candidate=candidate,
                error_estimate=err,
                accepted=False,
                rejection_reason=reason,
                newton_iterations=iterations,
                function_evaluations=evaluations,
                detail=detail,
            )

        if full.x_new is None:
            return _reject(full.reason, full.detail)

        candidate = full.x_new
        err: float | None = None
        if tab.is_embedded or step_cfg.adaptive:
            if tab.is_embedded:
                b_hat = cast("Array", tab.b_embedded)
                err_vec = h * ((tab.b - b_hat) @ full.k)
            else:
                first = self._raw_step(x, t, 0.5 * h)
                iterations += first.iterations
                evaluations += first.evaluations
                if first.x_new is None:
                    return _reject(first.reason, f"first half step: {first.detail}")
                second = self._raw_step(first.x_new, t + 0.5 * h, 0.5 * h)
                iterations += second.iterations
                evaluations += second.evaluations
                if second.x_new is None:
                    return _reject(second.reason, f"second half step: {second.detail}")
                err_vec = second.x_new - full.x_new
                candidate = second.x_new

            err = rms_error_norm(
                err_vec, x, candidate, abs_tol=step_cfg.abs_tol, rel_tol=step_cfg.rel_tol
            )
            if step_cfg.adaptive and err > 1.0:
                return _reject(
                    RejectionReason.ERROR_TOO_LARGE,
                    f"scaled error norm {err:.3e} exceeds 1",
                    candidate,
                    err,
                )

        projected = False
        if self.projection_active:
            proj = self.project(candidate, t + h)
            if proj.converged:
                candidate = proj.x
                projected = True
            elif self._config.projection.failure_policy is ProjectionFailurePolicy.REJECT:
                return _reject(
                    RejectionReason.PROJECTION_FAILED,
                    f"projection failed (||h|| = {proj.invariant_norm:.3e}"
                    f"{', singular KKT matrix' if proj.singular else ''})",
                    candidate,
                    err,
                )
            else:
                warnings.warn(
                    _PROJECTION_ACCEPTED_WARNING_MSG.format(
                        t=t + h, norm=proj.invariant_norm, iterations=proj.iterations
                    ),
                    RuntimeWarning,
                    stacklevel=2,
                )
            if projected and not self._system.in_domain(candidate, t + h):
                return _reject(
                    RejectionReason.INFEASIBLE,
                    "projected state is outside the domain",
                    candidate,
                    err,
                )

        return StepAttempt(
            t_start=t,
            h=h,
            x_start=x,
            stage_values=full.k,
            x_candidate=candidate,
            error_estimate=err,
            accepted=True,
            rejection_reason=None,
            projected=projected,
            newton_iterations=iterations,
            function_evaluations=evaluations,
            invariant_norm=self._invariant_norm(candidate, t + h),
        )
