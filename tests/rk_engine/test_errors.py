"""Unit tests for rk_engine.errors."""

from __future__ import annotations

import pytest

from rk_engine import errors


def test_error_hierarchy_specializes_builtins() -> None:
    """Each error derives from RKEngineError and the builtin it specializes."""
    assert issubclass(errors.TableauError, ValueError)
    assert issubclass(errors.DimensionMismatchError, ValueError)
    assert issubclass(errors.ConfigError, ValueError)
    assert issubclass(errors.SingularMatrixError, ArithmeticError)
    assert issubclass(errors.IntegrationFailedError, RuntimeError)
    for exc in (
        errors.TableauError,
        errors.DimensionMismatchError,
        errors.ConfigError,
        errors.SingularMatrixError,
        errors.IntegrationFailedError,
    ):
        assert issubclass(exc, errors.RKEngineError)


def test_raise_invalid_tableau_message() -> None:
    """raise_invalid_tableau names the tableau, the problem and the hint."""
    with pytest.raises(errors.TableauError) as excinfo:
        errors.raise_invalid_tableau("Mine", detail="weights b sum to 0.9, not 1")

    msg = str(excinfo.value)
    assert "Invalid Butcher tableau 'Mine'" in msg
    assert "weights b sum to 0.9, not 1." in msg
    assert "available_tableaus()" in msg


def test_raise_dimension_mismatch_message() -> None:
    """raise_dimension_mismatch reports expected and observed shapes."""
    with pytest.raises(errors.DimensionMismatchError) as excinfo:
        errors.raise_dimension_mismatch(name="x0", expected=(3,), got=(2,))

    assert str(excinfo.value) == "x0 has an invalid dimension. Expected (3,). Got: (2,)."


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, "Invalid rk_engine configuration for 'h0': must be > 0."),
        (-1.0, "Invalid rk_engine configuration for 'h0': must be > 0 (got -1.0)."),
    ],
)
def test_raise_invalid_config_message(value: object, expected: str) -> None:
    """raise_invalid_config only mentions the value when one is given."""
    with pytest.raises(errors.ConfigError) as excinfo:
        errors.raise_invalid_config(field="h0", detail="must be > 0", value=value)

    assert str(excinfo.value) == expected


def test_integration_failed_error_carries_result() -> None:
    """IntegrationFailedError keeps a reference to the failed result."""
    sentinel = object()
    exc = errors.IntegrationFailedError("boom", sentinel)  # type: ignore[arg-type]
    assert exc.result is sentinel
    assert str(exc) == "boom"


def test_reason_enums_are_string_valued() -> None:
    """Rejection and failure reasons compare equal to their string values."""
    assert errors.RejectionReason.NON_CONVERGENCE == "non-convergence"
    assert errors.RejectionReason("infeasible") is errors.RejectionReason.INFEASIBLE
    assert errors.FailureReason.STEP_SIZE_UNDERFLOW.value == "step-size-underflow"
    assert {r.value for r in errors.FailureReason} == {
        "step-size-underflow",
        "rejection-cap-exceeded",
        "singular-jacobian",
        "max-steps-exceeded",
        "cancelled",
    }
