"""Unit tests for rk_engine.config."""

from __future__ import annotations

from dataclasses import FrozenInstanceError, replace

import pytest

from rk_engine.config import (
    NewtonConfig,
    ProjectionConfig,
    ProjectionFailurePolicy,
    RunConfig,
    StepControlConfig,
)
from rk_engine.errors import ConfigError


def _step_control(**overrides: object) -> StepControlConfig:
    values: dict[str, object] = {
        "abs_tol": 1e-6,
        "rel_tol": 1e-6,
        "h_min": 1e-8,
        "h_max": 1.0,
        "max_consecutive_rejections": 10,
        "safety": 0.9,
        "shrink_factor": 0.5,
        "min_factor": 0.2,
        "max_factor": 5.0,
    }
    values.update(overrides)
    return StepControlConfig(**values)  # type: ignore[arg-type]


def test_surface_fields_are_required() -> None:
    """Tolerances and caps have no implicit defaults."""
    with pytest.raises(TypeError):
        NewtonConfig(abs_tol=1e-8, rel_tol=1e-8)  # type: ignore[call-arg]
    with pytest.raises(TypeError):
        ProjectionConfig(enabled=True, tolerance=1e-8, max_iterations=5)  # type: ignore[call-arg]


def test_newton_defaults_for_secondary_knobs() -> None:
    cfg = NewtonConfig(abs_tol=1e-8, rel_tol=0.0, max_iterations=5)
    assert cfg.damped is True
    assert cfg.relaxation_factor == pytest.approx(0.5)
    assert cfg.max_relaxations == 10


@pytest.mark.parametrize(
    ("kwargs", "field"),
    [
        ({"abs_tol": 0.0}, "newton.abs_tol"),
        ({"rel_tol": -1.0}, "newton.rel_tol"),
        ({"max_iterations": 0}, "newton.max_iterations"),
        ({"relaxation_factor": 1.0}, "newton.relaxation_factor"),
        ({"max_relaxations": -1}, "newton.max_relaxations"),
    ],
)
def test_newton_config_validation(kwargs: dict[str, float], field: str) -> None:
    values = {"abs_tol": 1e-8, "rel_tol": 1e-8, "max_iterations": 5, **kwargs}
    with pytest.raises(ConfigError, match=field):
        NewtonConfig(**values)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"abs_tol": float("nan")}, "step_control.abs_tol"),
        ({"h_min": 0.0}, "step_control.h_min"),
        ({"h_max": 1e-9}, "step_control.h_max"),
        ({"max_consecutive_rejections": -1}, "step_control.max_consecutive_rejections"),
        ({"safety": 1.5}, "step_control.safety"),
        ({"shrink_factor": 1.0}, "step_control.shrink_factor"),
        ({"min_factor": 1.5}, "step_control.max_factor"),
        ({"max_factor": 0.5}, "step_control.max_factor"),
        ({"max_steps": 0}, "step_control.max_steps"),
    ],
)
def test_step_control_validation(overrides: dict[str, float], field: str) -> None:
    with pytest.raises(ConfigError, match=field):
        _step_control(**overrides)


def test_step_control_accepts_zero_rejection_cap() -> None:
    assert _step_control(max_consecutive_rejections=0).max_consecutive_rejections == 0


def test_projection_policy_must_be_enum() -> None:
    with pytest.raises(ConfigError, match="failure_policy"):
        ProjectionConfig(
            enabled=True,
            tolerance=1e-10,
            max_iterations=5,
            failure_policy="reject",  # type: ignore[arg-type]
        )


def test_run_config_rejects_unknown_solver() -> None:
    newton = NewtonConfig(abs_tol=1e-8, rel_tol=0.0, max_iterations=5)
    projection = ProjectionConfig(
        enabled=False,
        tolerance=1e-10,
        max_iterations=5,
        failure_policy=ProjectionFailurePolicy.ACCEPT_UNPROJECTED,
    )
    with pytest.raises(ConfigError, match="nonlinear_solver"):
        RunConfig(
            newton=newton,
            step_control=_step_control(),
            projection=projection,
            nonlinear_solver="picard",  # type: ignore[arg-type]
        )


def test_configs_are_frozen_and_revalidated_on_replace() -> None:
    cfg = _step_control()
    with pytest.raises(FrozenInstanceError):
        cfg.h_max = 2.0  # type: ignore[misc]
    with pytest.raises(ConfigError):
        replace(cfg, h_min=-1.0)
    assert replace(cfg, adaptive=False).adaptive is False
