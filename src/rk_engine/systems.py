# src/rk_engine/systems.py
"""Dynamical-system capability interface consumed by the stepper.

A system is supplied by subclassing exactly one of the bases below and
declaring its state dimension N (and invariant count M) at construction:

    - :class:`ExplicitSystem`:      x' = f(x, t)
    - :class:`ImplicitSystem`:      F(x, x', t) = 0
    - :class:`SemiExplicitSystem`:  A(x, t) x' = b(x, t)   (mass-matrix DAE)
    - :class:`LinearSystem`:        E(t) x' = A(t) x + b(t)

Every variant exposes the same implicit view, ``residual(x, x_dot, t)`` and
``residual_jacobians(x, x_dot, t)``, which is what the stage solver iterates
on. Variants with an explicit form additionally expose ``f(x, t)``, which
lets explicit tableaus evaluate stages directly.

Jacobians must be the exact derivatives of their paired functions. This is
not checked; an inconsistent Jacobian only shows up as poor Newton
convergence.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Final

import numpy as np
from numpy.typing import NDArray

from .errors import raise_dimension_mismatch, raise_invalid_config
from .matrix_ops import solve_dense

Array = NDArray[np.floating]

_NO_ICS_ERROR_MSG: Final[str] = (
    "system '{name}' does not define initial conditions; pass x0 explicitly or "
    "override ics()"
)
_N_STATES_ERROR_MSG: Final[str] = "n_states must be a positive integer, got {value!r}"
_N_INVARIANTS_ERROR_MSG: Final[str] = (
    "n_invariants must be a non-negative integer, got {value!r}"
)


class System(ABC):
    """Common base of all system variants.

    Args:
        n_states: State dimension N.
        n_invariants: Number M of algebraic invariants h(x, t) = 0.
        name: Human-readable system name.
    """

    def __init__(
        self,
        n_states: int,
        n_invariants: int = 0,
        *,
        name: str | None = None,
    ) -> None:
        if isinstance(n_states, bool) or int(n_states) != n_states or n_states < 1:
            raise ValueError(_N_STATES_ERROR_MSG.format(value=n_states))
        if (
            isinstance(n_invariants, bool)
            or int(n_invariants) != n_invariants
            or n_invariants < 0
        ):
            raise ValueError(_N_INVARIANTS_ERROR_MSG.format(value=n_invariants))
        self._n_states = int(n_states)
        self._n_invariants = int(n_invariants)
        self._name = name or type(self).__name__

    @property
    def n_states(self) -> int:
        """State dimension N."""
        return self._n_states

    @property
    def n_invariants(self) -> int:
        """Number of invariants M."""
        return self._n_invariants

    @property
    def name(self) -> str:
        """System name."""
        return self._name

    @property
    def has_explicit_form(self) -> bool:
        """Whether x' can be evaluated directly via ``f(x, t)``."""
        return False

    # ------------------------------------------------------------------
    # Implicit view
    # ------------------------------------------------------------------

    @abstractmethod
    def residual(
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> Array:
        """Evaluate F(x, x', t)."""

    @abstractmethod
    def residual_jacobians(
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> tuple[Array, Array]:
        """Evaluate (dF/dx, dF/dx') at (x, x', t)."""

    # ------------------------------------------------------------------
    # Invariants, domain, initial conditions
    # ------------------------------------------------------------------

    def h(self, x: Array, t: float) -> Array:  # noqa: ARG002
        """Invariant residual h(x, t); empty for unconstrained systems."""
        return np.zeros(0, dtype=float)

    def Jh_x(self, x: Array, t: float) -> Array:  # noqa: N802, ARG002
        """Invariant Jacobian dh/dx, shape (M, N)."""
        return np.zeros((0, self._n_states), dtype=float)

    def in_domain(self, x: Array, t: float) -> bool:  # noqa: ARG002, PLR6301
        """Whether (x, t) lies inside the domain of definition."""
        return True

    def ics(self) -> Array:
        """Default initial conditions.

        Providers override this hook to let runs start without an explicit x0.

        Raises:
            ConfigError: Unless overridden by the provider.
        """
        raise_invalid_config(field="x0", detail=_NO_ICS_ERROR_MSG.format(name=self._name))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self._name!r}, n_states={self._n_states}, "
            f"n_invariants={self._n_invariants})"
        )


class ImplicitSystem(System):
    """Fully implicit ODE/DAE F(x, x', t) = 0."""

    @abstractmethod
    def F(  # noqa: N802
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> Array:
        """Evaluate F(x, x', t)."""

    @abstractmethod
    def JF_x(  # noqa: N802
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> Array:
        """Evaluate dF/dx."""

    @abstractmethod
    def JF_x_dot(  # noqa: N802
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> Array:
        """Evaluate dF/dx'."""

    def residual(self, x: Array, x_dot: Array, t: float) -> Array:
        """Return F(x, x', t) as a float array."""
        return np.asarray(self.F(x, x_dot, t), dtype=float)

    def residual_jacobians(
        self, x: Array, x_dot: Array, t: float
    ) -> tuple[Array, Array]:
        """Return (JF_x, JF_x_dot)."""
        return (
            np.asarray(self.JF_x(x, x_dot, t), dtype=float),
            np.asarray(self.JF_x_dot(x, x_dot, t), dtype=float),
        )


class ExplicitSystem(System):
    """Explicit ODE x' = f(x, t), viewed implicitly as F = x' - f(x, t)."""

    @property
    def has_explicit_form(self) -> bool:
        """Always True for explicit systems."""
        return True

    @abstractmethod
    def f(self, x: Array, t: float) -> Array:
        """Evaluate the right-hand side f(x, t)."""

    @abstractmethod
    def Jf_x(self, x: Array, t: float) -> Array:  # noqa: N802
        """Evaluate df/dx."""

    def residual(self, x: Array, x_dot: Array, t: float) -> Array:
        """Return x' - f(x, t)."""
        return np.asarray(x_dot, dtype=float) - np.asarray(self.f(x, t), dtype=float)

    def residual_jacobians(
        self, x: Array, x_dot: Array, t: float  # noqa: ARG002
    ) -> tuple[Array, Array]:
        """Return (-Jf_x, I)."""
        return (
            -np.asarray(self.Jf_x(x, t), dtype=float),
            np.eye(self._n_states),
        )


class SemiExplicitSystem(ExplicitSystem):
    """Mass-matrix DAE A(x, t) x' = b(x, t).

    Providers implement the mass matrix, its sensitivity tensor, the
    right-hand side and its Jacobian. ``TA_x`` returns an array of shape
    (N, N, N) whose m-th slice is dA/dx_m.
    """

    @abstractmethod
    def mass_matrix(self, x: Array, t: float) -> Array:
        """Evaluate A(x, t)."""

    @abstractmethod
    def TA_x(self, x: Array, t: float) -> Array:  # noqa: N802
        """Evaluate the sensitivity tensor dA/dx, shape (N, N, N)."""

    @abstractmethod
    def rhs(self, x: Array, t: float) -> Array:
        """Evaluate b(x, t)."""

    @abstractmethod
    def Jb_x(self, x: Array, t: float) -> Array:  # noqa: N802
        """Evaluate db/dx."""

    def _mass_derivative_product(
        self,
        x: Array,
        x_dot: Array,
        t: float,
    ) -> Array:
        # Column m is (dA/dx_m) @ x_dot.
        ta = np.asarray(self.TA_x(x, t), dtype=float)
        n = self._n_states
        if ta.shape != (n, n, n):
            raise_dimension_mismatch(name="TA_x", expected=(n, n, n), got=ta.shape)
        return np.einsum("mij,j->im", ta, np.asarray(x_dot, dtype=float))

    def f(self, x: Array, t: float) -> Array:
        """Solve A(x, t) x' = b(x, t) for x'.

        Raises:
            SingularMatrixError: If the mass matrix is singular.
        """
        return solve_dense(self.mass_matrix(x, t), self.rhs(x, t))

    def Jf_x(self, x: Array, t: float) -> Array:  # noqa: N802
        """Jacobian of the explicit form, A^-1 (Jb_x - dA/dx x')."""
        x_dot = self.f(x, t)
        return solve_dense(
            self.mass_matrix(x, t),
            np.asarray(self.Jb_x(x, t), dtype=float)
            - self._mass_derivative_product(x, x_dot, t),
        )

    def residual(self, x: Array, x_dot: Array, t: float) -> Array:
        """Return A(x, t) x' - b(x, t)."""
        a = np.asarray(self.mass_matrix(x, t), dtype=float)
        return a @ np.asarray(x_dot, dtype=float) - np.asarray(self.rhs(x, t), dtype=float)

    def residual_jacobians(
        self, x: Array, x_dot: Array, t: float
    ) -> tuple[Array, Array]:
        """Return (dA/dx x' - Jb_x, A)."""
        jac_x = self._mass_derivative_product(x, x_dot, t) - np.asarray(
            self.Jb_x(x, t), dtype=float
        )
        return jac_x, np.asarray(self.mass_matrix(x, t), dtype=float)


class LinearSystem(SemiExplicitSystem):
    """Linear time-varying system E(t) x' = A(t) x + b(t).

    The mass matrix does not depend on x, so the sensitivity tensor is zero
    and the residual Jacobians are simply (-A(t), E(t)).
    """

    @abstractmethod
    def E(self, t: float) -> Array:  # noqa: N802
        """Mass matrix E(t)."""

    @abstractmethod
    def A(self, t: float) -> Array:  # noqa: N802
        """State matrix A(t)."""

    @abstractmethod
    def b(self, t: float) -> Array:
        """Forcing term b(t)."""

    def mass_matrix(self, x: Array, t: float) -> Array:  # noqa: ARG002
        """Return E(t)."""
        return np.asarray(self.E(t), dtype=float)

    def TA_x(self, x: Array, t: float) -> Array:  # noqa: N802, ARG002
        """Return the zero sensitivity tensor."""
        n = self._n_states
        return np.zeros((n, n, n), dtype=float)

    def rhs(self, x: Array, t: float) -> Array:
        """Return A(t) x + b(t)."""
        a = np.asarray(self.A(t), dtype=float)
        return a @ np.asarray(x, dtype=float) + np.asarray(self.b(t), dtype=float)

    def Jb_x(self, x: Array, t: float) -> Array:  # noqa: N802, ARG002
        """Return A(t)."""
        return np.asarray(self.A(t), dtype=float)

    def Jf_x(self, x: Array, t: float) -> Array:  # noqa: N802, ARG002
        """Return E(t)^-1 A(t)."""
        return solve_dense(self.E(t), self.A(t))

    def residual_jacobians(
        self, x: Array, x_dot: Array, t: float  # noqa: ARG002
    ) -> tuple[Array, Array]:
        """Return (-A(t), E(t))."""
        return -np.asarray(self.A(t), dtype=float), np.asarray(self.E(t), dtype=float)


def validate_system_dimensions(
    system: System,
    x0: Array,
    t0: float = 0.0,
) -> Array:
    """Check a system's declared dimensions against an initial state.

    Evaluates the invariant, its Jacobian and the residual once at (x0, t0)
    and verifies their shapes.

    Args:
        system: System to check.
        x0: Initial state.
        t0: Initial time.

    Raises:
        DimensionMismatchError: On any shape mismatch.

    Returns:
        x0 as a float array.
    """
    n, m = system.n_states, system.n_invariants
    x = np.asarray(x0, dtype=float)
    if x.shape != (n,):
        raise_dimension_mismatch(name="x0", expected=(n,), got=x.shape)

    h_val = np.asarray(system.h(x, t0), dtype=float)
    if h_val.shape != (m,):
        raise_dimension_mismatch(name=f"{system.name}.h", expected=(m,), got=h_val.shape)
    jh = np.asarray(system.Jh_x(x, t0), dtype=float)
    if jh.shape != (m, n):
        raise_dimension_mismatch(name=f"{system.name}.Jh_x", expected=(m, n), got=jh.shape)

    res = np.asarray(system.residual(x, np.zeros(n), t0), dtype=float)
    if res.shape != (n,):
        raise_dimension_mismatch(name=f"{system.name}.residual", expected=(n,), got=res.shape)
    return x
