# src/rk_engine/convergence.py
"""Empirical convergence-order estimation.

Runs a solver on a ladder of fixed step sizes, measures the max-norm global
error at the final time against a reference solution, and fits the slope of
log(error) against log(h). For a method of order p the slope approaches p
once the step sizes are in the asymptotic regime.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import raise_invalid_config

if TYPE_CHECKING:
    from .core_solver import CoreSolver

FloatArray = NDArray[np.floating]

_MIN_STEP_SIZES: Final[int] = 2
_ADAPTIVE_SOLVER_DETAIL: Final[str] = (
    "convergence studies need a non-adaptive solver (step_control.adaptive=False)"
)


@dataclass(slots=True, frozen=True)
class ConvergenceStudy:
    """Errors measured on a ladder of step sizes.

    Attributes:
        step_sizes: Effective step sizes h (after rounding to whole meshes).
        errors: Max-norm global errors at the final time.
        order: Least-squares slope of log(error) vs log(h).
    """

    step_sizes: FloatArray
    errors: FloatArray
    order: float

    @property
    def pairwise_orders(self) -> FloatArray:
        """Order estimates log(e_i / e_{i+1}) / log(h_i / h_{i+1}) for neighbours."""
        e = np.maximum(self.errors, np.finfo(float).tiny)
        return np.log(e[:-1] / e[1:]) / np.log(self.step_sizes[:-1] / self.step_sizes[1:])


def _mesh(t0: float, tf: float, h: float) -> FloatArray:
    n = max(1, round((tf - t0) / h))
    return np.linspace(t0, tf, n + 1)


def estimate_order(
    solver_factory: Callable[[], CoreSolver],
    t_span: tuple[float, float],
    x0: ArrayLike,
    step_sizes: Sequence[float],
    exact: Callable[[float], ArrayLike],
) -> ConvergenceStudy:
    """Estimate the convergence order of a solver.

    Args:
        solver_factory: Builds a fresh non-adaptive CoreSolver per run.
        t_span: (t0, t_final).
        x0: Initial state.
        step_sizes: At least two step sizes; each is rounded so that a whole
            number of steps spans t_span.
        exact: Reference solution x(t).

    Raises:
        ConfigError: On fewer than two step sizes or an adaptive solver.
        IntegrationFailedError: If any run fails.

    Returns:
        ConvergenceStudy with the fitted order.
    """
    if len(step_sizes) < _MIN_STEP_SIZES:
        raise_invalid_config(
            field="step_sizes",
            detail=f"need at least {_MIN_STEP_SIZES} step sizes",
            value=list(step_sizes),
        )
    t0, tf = float(t_span[0]), float(t_span[1])
    reference = np.asarray(exact(tf), dtype=float)

    hs: list[float] = []
    errors: list[float] = []
    for h in step_sizes:
        solver = solver_factory()
        if solver.config.step_control.adaptive:
            raise_invalid_config(
                field="step_control.adaptive", detail=_ADAPTIVE_SOLVER_DETAIL, value=True
            )
        mesh = _mesh(t0, tf, float(h))
        result = solver.run_mesh(mesh, x0).raise_for_status()
        hs.append(float(mesh[1] - mesh[0]))
        errors.append(float(np.max(np.abs(result.trajectory.final_state - reference))))

    h_arr = np.asarray(hs, dtype=float)
    e_arr = np.asarray(errors, dtype=float)
    slope = np.polyfit(np.log(h_arr), np.log(np.maximum(e_arr, np.finfo(float).tiny)), 1)[0]
    return ConvergenceStudy(step_sizes=h_arr, errors=e_arr, order=float(slope))
