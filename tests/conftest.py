"""Global pytest configuration and shared reference systems for rk_engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final

import numpy as np
import pytest
from numpy.typing import NDArray

from rk_engine.config import (
    NewtonConfig,
    ProjectionConfig,
    ProjectionFailurePolicy,
    RunConfig,
    StepControlConfig,
)
from rk_engine.systems import (
    ExplicitSystem,
    ImplicitSystem,
    LinearSystem,
    SemiExplicitSystem,
)

FloatArray = NDArray[np.floating]

ROTATION: Final[FloatArray] = np.array([[0.0, 1.0], [-1.0, 0.0]])


# -----------------------------------------------------------------------------
# Markers
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as running many integration steps",
    )


# -----------------------------------------------------------------------------
# Reference systems: x' = (cos t, sin t), x(0) = (0, 0)
# -----------------------------------------------------------------------------


def _forcing(t: float) -> FloatArray:
    return np.array([np.cos(t), np.sin(t)])


class SinCosExplicit(ExplicitSystem):
    def __init__(self) -> None:
        super().__init__(n_states=2, name="sincos-explicit")

    def f(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return _forcing(t)

    def Jf_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((2, 2))

    def ics(self) -> FloatArray:
        return np.zeros(2)


class SinCosImplicit(ImplicitSystem):
    def __init__(self) -> None:
        super().__init__(n_states=2, name="sincos-implicit")

    def F(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return x_dot - _forcing(t)

    def JF_x(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((2, 2))

    def JF_x_dot(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.eye(2)

    def ics(self) -> FloatArray:
        return np.zeros(2)


class SinCosSemiExplicit(SemiExplicitSystem):
    """A(x) x' = A(x) (cos t, sin t) with A(x) = diag(1 + x0^2, 1 + x1^2)."""

    def __init__(self) -> None:
        super().__init__(n_states=2, name="sincos-semi-explicit")

    def mass_matrix(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.diag(1.0 + x**2)

    def TA_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        ta = np.zeros((2, 2, 2))
        ta[0, 0, 0] = 2.0 * x[0]
        ta[1, 1, 1] = 2.0 * x[1]
        return ta

    def rhs(self, x: FloatArray, t: float) -> FloatArray:
        return (1.0 + x**2) * _forcing(t)

    def Jb_x(self, x: FloatArray, t: float) -> FloatArray:
        return np.diag(2.0 * x * _forcing(t))

    def ics(self) -> FloatArray:
        return np.zeros(2)


class SinCosLinear(LinearSystem):
    """2 x' = 0 x + 2 (cos t, sin t)."""

    def __init__(self) -> None:
        super().__init__(n_states=2, name="sincos-linear")

    def E(self, t: float) -> FloatArray:  # noqa: ARG002
        return 2.0 * np.eye(2)

    def A(self, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((2, 2))

    def b(self, t: float) -> FloatArray:
        return 2.0 * _forcing(t)

    def ics(self) -> FloatArray:
        return np.zeros(2)


# -----------------------------------------------------------------------------
# Reference systems: unit harmonic oscillator x' = R x, x(0) = (1, 0)
# -----------------------------------------------------------------------------


class Oscillator(ExplicitSystem):
    def __init__(self) -> None:
        super().__init__(n_states=2, name="oscillator")
        self.f_calls = 0

    def f(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        self.f_calls += 1
        return ROTATION @ x

    def Jf_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return ROTATION.copy()

    def ics(self) -> FloatArray:
        return np.array([1.0, 0.0])


class OscillatorImplicit(ImplicitSystem):
    def __init__(self) -> None:
        super().__init__(n_states=2, name="oscillator-implicit")
        self.F_calls = 0

    def F(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        self.F_calls += 1
        return x_dot - ROTATION @ x

    def JF_x(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return -ROTATION

    def JF_x_dot(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.eye(2)

    def ics(self) -> FloatArray:
        return np.array([1.0, 0.0])


class OscillatorLinear(LinearSystem):
    def __init__(self) -> None:
        super().__init__(n_states=2, name="oscillator-linear")

    def E(self, t: float) -> FloatArray:  # noqa: ARG002
        return np.eye(2)

    def A(self, t: float) -> FloatArray:  # noqa: ARG002
        return ROTATION.copy()

    def b(self, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros(2)

    def ics(self) -> FloatArray:
        return np.array([1.0, 0.0])


# -----------------------------------------------------------------------------
# Reference systems: invariants, domains and failure modes
# -----------------------------------------------------------------------------


class CircleRotation(Oscillator):
    """Oscillator with the invariant x0^2 + x1^2 - 1 = 0."""

    def __init__(self) -> None:
        ExplicitSystem.__init__(self, n_states=2, n_invariants=1, name="circle")
        self.f_calls = 0

    def h(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.array([x @ x - 1.0])

    def Jh_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return 2.0 * np.asarray(x, dtype=float).reshape(1, 2)


class Pendulum(ExplicitSystem):
    """Cartesian pendulum (q, p) with the position constraint |q|^2 = 1.

    The velocity is kept tangent through the dynamics; the invariant is the
    position constraint only.
    """

    def __init__(self) -> None:
        super().__init__(n_states=4, n_invariants=1, name="pendulum")

    def f(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        q, p = x[:2], x[2:]
        lam = (p @ p - q[1]) / (q @ q)
        return np.concatenate([p, -lam * q - np.array([0.0, 1.0])])

    def Jf_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        q, p = x[:2], x[2:]
        qq = q @ q
        lam = (p @ p - q[1]) / qq
        dlam_dq = (np.array([0.0, -1.0]) - 2.0 * lam * q) / qq
        dlam_dp = 2.0 * p / qq
        jac = np.zeros((4, 4))
        jac[:2, 2:] = np.eye(2)
        jac[2:, :2] = -lam * np.eye(2) - np.outer(q, dlam_dq)
        jac[2:, 2:] = -np.outer(q, dlam_dp)
        return jac

    def h(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.array([x[:2] @ x[:2] - 1.0])

    def Jh_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.array([[2.0 * x[0], 2.0 * x[1], 0.0, 0.0]])

    def ics(self) -> FloatArray:
        return np.array([1.0, 0.0, 0.0, 0.0])


class Drain(ExplicitSystem):
    """x' = -1 on the domain x >= 0; the boundary is reached at t = x0."""

    def __init__(self) -> None:
        super().__init__(n_states=1, name="drain")

    def f(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.array([-1.0])

    def Jf_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((1, 1))

    def in_domain(self, x: FloatArray, t: float) -> bool:  # noqa: ARG002
        return bool(x[0] >= 0.0)


class CubicDecay(ExplicitSystem):
    """x' = -x^3."""

    def __init__(self) -> None:
        super().__init__(n_states=1, name="cubic-decay")

    def f(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return -(x**3)

    def Jf_x(self, x: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.diag(-3.0 * x**2)

    def ics(self) -> FloatArray:
        return np.array([1.0])


class Degenerate(ImplicitSystem):
    """F = x' - 1 with an all-zero Jacobian pair."""

    def __init__(self) -> None:
        super().__init__(n_states=1, name="degenerate")

    def F(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return x_dot - 1.0

    def JF_x(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((1, 1))

    def JF_x_dot(self, x: FloatArray, x_dot: FloatArray, t: float) -> FloatArray:  # noqa: ARG002
        return np.zeros((1, 1))


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

_SINCOS_SYSTEMS: Final[dict[str, type]] = {
    "explicit": SinCosExplicit,
    "implicit": SinCosImplicit,
    "semi-explicit": SinCosSemiExplicit,
    "linear": SinCosLinear,
}


@pytest.fixture(params=sorted(_SINCOS_SYSTEMS))
def sincos_system(request: pytest.FixtureRequest) -> Any:  # noqa: ANN401
    """Each system variant of the sin/cos reference problem."""
    return _SINCOS_SYSTEMS[request.param]()


@pytest.fixture
def oscillator() -> Oscillator:
    return Oscillator()


@pytest.fixture
def oscillator_implicit() -> OscillatorImplicit:
    return OscillatorImplicit()


@pytest.fixture
def oscillator_linear() -> OscillatorLinear:
    return OscillatorLinear()


@pytest.fixture
def circle() -> CircleRotation:
    return CircleRotation()


@pytest.fixture
def pendulum() -> Pendulum:
    return Pendulum()


@pytest.fixture
def drain() -> Drain:
    return Drain()


@pytest.fixture
def cubic_decay() -> CubicDecay:
    return CubicDecay()


@pytest.fixture
def degenerate() -> Degenerate:
    return Degenerate()


def _make_config(  # noqa: PLR0913
    *,
    adaptive: bool = True,
    abs_tol: float = 1e-8,
    rel_tol: float = 1e-8,
    h_min: float = 1e-10,
    h_max: float = 0.5,
    max_consecutive_rejections: int = 20,
    safety: float = 0.9,
    shrink_factor: float = 0.5,
    min_factor: float = 0.2,
    max_factor: float = 5.0,
    max_steps: int = 1_000_000,
    newton_abs_tol: float = 1e-12,
    newton_rel_tol: float = 0.0,
    newton_max_iterations: int = 20,
    damped: bool = True,
    projection: bool = False,
    projection_tolerance: float = 1e-10,
    projection_max_iterations: int = 10,
    failure_policy: ProjectionFailurePolicy = ProjectionFailurePolicy.REJECT,
    nonlinear_solver: str = "newton",
    store_stages: bool = False,
) -> RunConfig:
    return RunConfig(
        newton=NewtonConfig(
            abs_tol=newton_abs_tol,
            rel_tol=newton_rel_tol,
            max_iterations=newton_max_iterations,
            damped=damped,
        ),
        step_control=StepControlConfig(
            abs_tol=abs_tol,
            rel_tol=rel_tol,
            h_min=h_min,
            h_max=h_max,
            max_consecutive_rejections=max_consecutive_rejections,
            safety=safety,
            shrink_factor=shrink_factor,
            min_factor=min_factor,
            max_factor=max_factor,
            adaptive=adaptive,
            max_steps=max_steps,
        ),
        projection=ProjectionConfig(
            enabled=projection,
            tolerance=projection_tolerance,
            max_iterations=projection_max_iterations,
            failure_policy=failure_policy,
        ),
        nonlinear_solver=nonlinear_solver,  # type: ignore[arg-type]
        store_stages=store_stages,
    )


@pytest.fixture(scope="session")
def make_config() -> Callable[..., RunConfig]:
    """
    Factory for complete run configurations with test-friendly values.

    Usage:
        def test_x(make_config):
            cfg = make_config(adaptive=False, projection=True)
    """
    return _make_config
