# src/rk_engine/nonlinear_solver.py
"""Nonlinear solvers for Runge-Kutta stage equations.

Two iterative solvers share one driver loop:

- :class:`NewtonSolver`: Newton's method with an exact Jacobian at every
  iterate, optionally damped (the step is shortened by ``relaxation_factor``
  while the residual norm fails to decrease).
- :class:`BroydenSolver`: good-Broyden quasi-Newton. One exact Jacobian seeds
  an inverse approximation that is refined with rank-one updates.

Both stop once ||G(k)|| < abs_tol + rel_tol * ||k||. Failure is a normal
outcome: the result carries ``converged=False`` and a typed
:class:`rk_engine.errors.RejectionReason` rather than raising.

:class:`StageSolver` assembles the stage equations of one step from a tableau
and a system and picks the strategy from the tableau class:

    - ERK and a system with an explicit form: direct evaluation, no iteration.
    - ERK with an implicit system, or DIRK: one size-N solve per stage, in order.
    - IRK: one coupled size-(S*N) solve.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, cast

import numpy as np
from numpy.typing import NDArray

from .errors import RejectionReason, SingularMatrixError
from .matrix_ops import assemble_stage_jacobian, solve_dense
from .tableau import TableauClass

if TYPE_CHECKING:
    from .config import NewtonConfig, NonlinearSolverName
    from .systems import System
    from .tableau import Tableau

Array = NDArray[np.floating]
ResidualFunction = Callable[[Array], Array]
JacobianFunction = Callable[[Array], Array]

_UNKNOWN_SOLVER_ERROR_MSG: Final[str] = (
    "Unknown nonlinear solver '{name}'. Expected 'newton' or 'broyden'."
)


# =============================================================================
# Results
# =============================================================================


@dataclass(slots=True, frozen=True)
class SolveResult:
    """Outcome of one nonlinear solve.

    Attributes:
        x: Final iterate (the solution when converged).
        converged: Whether the residual tolerance was met.
        reason: Why the solve failed, or None on success.
        iterations: Number of solver updates applied.
        function_evaluations: Number of residual evaluations.
        residual_norm: 2-norm of the residual at the final iterate.
    """

    x: Array
    converged: bool
    reason: RejectionReason | None
    iterations: int
    function_evaluations: int
    residual_norm: float


@dataclass(slots=True, frozen=True)
class StageSolution:
    """Stage derivatives of one step attempt.

    Attributes:
        k: Stage derivatives, shape (S, N).
        converged: Whether every stage was resolved.
        reason: Rejection reason when not converged.
        iterations: Total nonlinear iterations across stages.
        function_evaluations: Total system evaluations.
        detail: Human-readable diagnostic for failures.
    """

    k: Array
    converged: bool
    reason: RejectionReason | None
    iterations: int
    function_evaluations: int
    detail: str = ""


# =============================================================================
# Iterative solvers
# =============================================================================


def _is_finite(v: Array) -> bool:
    return bool(np.all(np.isfinite(v)))


class NonlinearSolver(ABC):
    """Shared driver loop for Newton-type solvers.

    Args:
        config: Tolerances, iteration cap and damping settings.
    """

    name: str = "nonlinear"

    def __init__(self, config: NewtonConfig) -> None:
        self._config = config

    @property
    def config(self) -> NewtonConfig:
        """Solver configuration."""
        return self._config

    @abstractmethod
    def _start(self, jacobian: JacobianFunction, x: Array) -> None:
        """Prepare iteration state at the initial iterate."""

    @abstractmethod
    def _direction(self, jacobian: JacobianFunction, x: Array, g: Array) -> Array:
        """Return the update direction at iterate x with residual g."""

    def _update(  # noqa: B027
        self,
        dx: Array,
        dg: Array,
    ) -> None:
        """Refine iteration state after an accepted update (no-op by default)."""

    def _converged(self, x: Array, g_norm: float) -> bool:
        cfg = self._config
        return g_norm < cfg.abs_tol + cfg.rel_tol * float(np.linalg.norm(x))

    def solve(
        self,
        function: ResidualFunction,
        jacobian: JacobianFunction,
        x0: Array,
    ) -> SolveResult:
        """Solve function(x) = 0 starting from x0.

        Args:
            function: Residual G(x).
            jacobian: Jacobian dG/dx.
            x0: Initial iterate.

        Returns:
            SolveResult; never raises for numerical failure.
        """
        cfg = self._config
        x = np.array(x0, dtype=float, copy=True)
        g = np.asarray(function(x), dtype=float)
        evals = 1

        def _fail(reason: RejectionReason, iterations: int, g_norm: float) -> SolveResult:
            return SolveResult(x, False, reason, iterations, evals, g_norm)

        if not _is_finite(g):
            return _fail(RejectionReason.NON_FINITE, 0, float("inf"))
        g_norm = float(np.linalg.norm(g))

        try:
            self._start(jacobian, x)
        except SingularMatrixError:
            return _fail(RejectionReason.SINGULAR_JACOBIAN, 0, g_norm)

        for iteration in range(cfg.max_iterations):
            if self._converged(x, g_norm):
                return SolveResult(x, True, None, iteration, evals, g_norm)

            try:
                step = self._direction(jacobian, x, g)
            except SingularMatrixError:
                return _fail(RejectionReason.SINGULAR_JACOBIAN, iteration, g_norm)
            if not _is_finite(step):
                return _fail(RejectionReason.NON_FINITE, iteration, g_norm)

            tau = 1.0
            x_new = x + step
            g_new = np.asarray(function(x_new), dtype=float)
            evals += 1
            if cfg.damped:
                relaxations = 0
                while relaxations < cfg.max_relaxations and not (
                    _is_finite(g_new) and float(np.linalg.norm(g_new)) < g_norm
                ):
                    tau *= cfg.relaxation_factor
                    x_new = x + tau * step
                    g_new = np.asarray(function(x_new), dtype=float)
                    evals += 1
                    relaxations += 1

            if not _is_finite(g_new):
                return _fail(RejectionReason.NON_FINITE, iteration + 1, float("inf"))

            self._update(x_new - x, g_new - g)
            x, g = x_new, g_new
            g_norm = float(np.linalg.norm(g))

        if self._converged(x, g_norm):
            return SolveResult(x, True, None, cfg.max_iterations, evals, g_norm)
        return _fail(RejectionReason.NON_CONVERGENCE, cfg.max_iterations, g_norm)


class NewtonSolver(NonlinearSolver):
    """Newton's method with an exact Jacobian at every iterate."""

    name = "newton"

    def _start(self, jacobian: JacobianFunction, x: Array) -> None:
        pass

    def _direction(self, jacobian: JacobianFunction, x: Array, g: Array) -> Array:
        return solve_dense(np.asarray(jacobian(x), dtype=float), -g)


class BroydenSolver(NonlinearSolver):
    """Good-Broyden quasi-Newton with an inverse-Jacobian approximation.

    The inverse H is seeded from one exact Jacobian and refined with the
    Sherman-Morrison form of the good-Broyden update

        H <- H + (dx - H dg) (dx^T H) / (dx^T H dg).
    """

    name = "broyden"

    def __init__(self, config: NewtonConfig) -> None:
        super().__init__(config)
        self._inverse: Array | None = None

    def _start(self, jacobian: JacobianFunction, x: Array) -> None:
        jac = np.asarray(jacobian(x), dtype=float)
        self._inverse = solve_dense(jac, np.eye(jac.shape[0]))

    def _direction(self, jacobian: JacobianFunction, x: Array, g: Array) -> Array:
        if self._inverse is None:
            self._start(jacobian, x)
        return -(cast("Array", self._inverse) @ g)

    def _update(self, dx: Array, dg: Array) -> None:
        h_inv = self._inverse
        if h_inv is None:
            return
        h_dg = h_inv @ dg
        denom = float(dx @ h_dg)
        if abs(denom) <= np.finfo(float).tiny:
            return
        self._inverse = h_inv + np.outer(dx - h_dg, dx @ h_inv) / denom


def make_nonlinear_solver(
    name: NonlinearSolverName,
    config: NewtonConfig,
) -> NonlinearSolver:
    """Build a nonlinear solver by name.

    Args:
        name: "newton" or "broyden".
        config: Solver configuration.

    Raises:
        ValueError: If the name is unknown.

    Returns:
        A fresh solver instance.
    """
    if name == "newton":
        return NewtonSolver(config)
    if name == "broyden":
        return BroydenSolver(config)
    raise ValueError(_UNKNOWN_SOLVER_ERROR_MSG.format(name=name))


# =============================================================================
# Stage assembly
# =============================================================================


class StageSolver:
    """Solve the stage equations of one Runge-Kutta step.

    Stage unknowns are the stage derivatives k_i; stage states are
    x_i = x + h * sum_j A[i, j] k_j.

    Args:
        tableau: Butcher tableau.
        system: System providing the residual view.
        solver: Nonlinear solver used for implicit stages.
    """

    def __init__(
        self,
        tableau: Tableau,
        system: System,
        solver: NonlinearSolver,
    ) -> None:
        self._tableau = tableau
        self._system = system
        self._solver = solver

    @property
    def uses_direct_evaluation(self) -> bool:
        """Whether stages are evaluated without any nonlinear iteration."""
        return self._tableau.is_explicit and self._system.has_explicit_form

    def solve(self, x: Array, t: float, h: float) -> StageSolution:
        """Compute all stage derivatives for a step of size h from (x, t).

        Args:
            x: State at the start of the step.
            t: Time at the start of the step.
            h: Step size.

        Returns:
            StageSolution with typed failure information.
        """
        if self.uses_direct_evaluation:
            return self._solve_explicit(x, t, h)
        if self._tableau.scheme is TableauClass.IRK:
            return self._solve_coupled(x, t, h)
        return self._solve_sequential(x, t, h)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _initial_guess(self, x: Array, t: float, fallback: Array) -> tuple[Array, int]:
        if not self._system.has_explicit_form:
            return fallback, 0
        try:
            guess = np.asarray(self._system.f(x, t), dtype=float)  # type: ignore[attr-defined]
        except SingularMatrixError:
            return fallback, 1
        if not _is_finite(guess):
            return fallback, 1
        return guess, 1

    def _solve_explicit(self, x: Array, t: float, h: float) -> StageSolution:
        tab, system = self._tableau, self._system
        k = np.zeros((tab.stages, system.n_states), dtype=float)
        evals = 0
        for i in range(tab.stages):
            x_i = x + h * (tab.A[i, :i] @ k[:i])
            t_i = t + tab.c[i] * h
            if not system.in_domain(x_i, t_i):
                return StageSolution(
                    k, False, RejectionReason.INFEASIBLE, 0, evals,
                    f"stage {i} point is outside the domain",
                )
            try:
                k_i = np.asarray(system.f(x_i, t_i), dtype=float)  # type: ignore[attr-defined]
            except SingularMatrixError as exc:
                return StageSolution(
                    k, False, RejectionReason.SINGULAR_JACOBIAN, 0, evals + 1,
                    f"stage {i}: {exc}",
                )
            evals += 1
            if not _is_finite(k_i):
                return StageSolution(
                    k, False, RejectionReason.NON_FINITE, 0, evals,
                    f"stage {i} derivative is not finite",
                )
            k[i] = k_i
        return StageSolution(k, True, None, 0, evals)

    def _solve_sequential(self, x: Array, t: float, h: float) -> StageSolution:
        tab, system = self._tableau, self._system
        n = system.n_states
        k = np.zeros((tab.stages, n), dtype=float)
        iterations = 0
        evals = 0
        for i in range(tab.stages):
            base = x + h * (tab.A[i, :i] @ k[:i])
            a_ii = float(tab.A[i, i])
            t_i = t + tab.c[i] * h

            def g(k_i: Array, base: Array = base, a_ii: float = a_ii, t_i: float = t_i) -> Array:
                return system.residual(base + h * a_ii * k_i, k_i, t_i)

            def jac(k_i: Array, base: Array = base, a_ii: float = a_ii, t_i: float = t_i) -> Array:
                jac_x, jac_x_dot = system.residual_jacobians(base + h * a_ii * k_i, k_i, t_i)
                return (h * a_ii) * np.asarray(jac_x, dtype=float) + np.asarray(
                    jac_x_dot, dtype=float
                )

            fallback = k[i - 1].copy() if i > 0 else np.zeros(n, dtype=float)
            guess, guess_evals = self._initial_guess(base, t_i, fallback)
            evals += guess_evals

            result = self._solver.solve(g, jac, guess)
            iterations += result.iterations
            evals += result.function_evaluations
            if not result.converged:
                return StageSolution(
                    k, False, result.reason, iterations, evals,
                    f"stage {i}: {self._solver.name} solve failed "
                    f"({result.reason.value if result.reason else 'unknown'}, "
                    f"residual {result.residual_norm:.3e} after {result.iterations} iterations)",
                )
            k[i] = result.x
            if not system.in_domain(base + h * a_ii * k[i], t_i):
                return StageSolution(
                    k, False, RejectionReason.INFEASIBLE, iterations, evals,
                    f"stage {i} point is outside the domain",
                )
        return StageSolution(k, True, None, iterations, evals)

    def _solve_coupled(self, x: Array, t: float, h: float) -> StageSolution:
        tab, system = self._tableau, self._system
        s, n = tab.stages, system.n_states
        a = tab.A
        t_stages = t + tab.c * h

        def stage_states(k_flat: Array) -> tuple[Array, Array]:
            k_mat = k_flat.reshape(s, n)
            return k_mat, x + h * (a @ k_mat)

        def g(k_flat: Array) -> Array:
            k_mat, x_mat = stage_states(k_flat)
            return np.concatenate([
                np.asarray(system.residual(x_mat[i], k_mat[i], t_stages[i]), dtype=float)
                for i in range(s)
            ])

        def jac(k_flat: Array) -> Array:
            k_mat, x_mat = stage_states(k_flat)
            blocks = [system.residual_jacobians(x_mat[i], k_mat[i], t_stages[i]) for i in range(s)]
            return assemble_stage_jacobian(
                a, h, [b[0] for b in blocks], [b[1] for b in blocks]
            )

        guess_1, guess_evals = self._initial_guess(x, t, np.zeros(n, dtype=float))
        result = self._solver.solve(g, jac, np.tile(guess_1, s))
        iterations = result.iterations
        evals = guess_evals + s * result.function_evaluations

        k_mat, x_mat = stage_states(result.x)
        if not result.converged:
            return StageSolution(
                k_mat, False, result.reason, iterations, evals,
                f"coupled stages: {self._solver.name} solve failed "
                f"({result.reason.value if result.reason else 'unknown'}, "
                f"residual {result.residual_norm:.3e} after {iterations} iterations)",
            )
        for i in range(s):
            if not system.in_domain(x_mat[i], float(t_stages[i])):
                return StageSolution(
                    k_mat, False, RejectionReason.INFEASIBLE, iterations, evals,
                    f"stage {i} point is outside the domain",
                )
        return StageSolution(k_mat.copy(), True, None, iterations, evals)
