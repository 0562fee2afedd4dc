# src/rk_engine/errors.py
"""Error types, typed step/run outcomes, and standardized raise helpers.

This module centralizes:
- explicit error classes with actionable messages,
- the typed reasons a single step attempt can be rejected for, and
- the typed reasons a whole integration run can fail for.

Design intent:
- construction-time contract violations (malformed tableau, dimension
  mismatch, invalid configuration) raise immediately;
- per-step problems (Newton non-convergence, infeasible stage points, failed
  projection) are *values* (RejectionReason), never exceptions;
- fatal run outcomes are *values* (FailureReason) on the run result, and only
  become an exception when the caller asks for it (raise_for_status).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Final, NoReturn

if TYPE_CHECKING:
    from .core_solver import IntegrationResult

_TABLEAU_HINT_MSG: Final[str] = (
    "Tableau coefficients must satisfy sum_j A[i][j] == c[i] for every row and "
    "sum_i b[i] == 1. Use rk_engine.catalog.available_tableaus() to list the "
    "built-in methods."
)


class RKEngineError(Exception):
    """Base exception for rk_engine errors."""


class TableauError(RKEngineError, ValueError):
    """Raised when a Butcher tableau is malformed or cannot be resolved."""


class DimensionMismatchError(RKEngineError, ValueError):
    """Raised when system, state, or coefficient dimensions are incompatible."""


class ConfigError(RKEngineError, ValueError):
    """Raised when a run configuration is invalid or incomplete."""


class SingularMatrixError(RKEngineError, ArithmeticError):
    """Raised when a dense linear solve meets a singular or rank-deficient matrix."""


class IntegrationFailedError(RKEngineError, RuntimeError):
    """Raised by IntegrationResult.raise_for_status for a failed run."""

    def __init__(self, message: str, result: IntegrationResult) -> None:
        super().__init__(message)
        self.result = result


class RejectionReason(str, Enum):
    """Why a single step attempt was rejected (recoverable: shrink and retry)."""

    NON_CONVERGENCE = "non-convergence"
    SINGULAR_JACOBIAN = "singular-jacobian"
    NON_FINITE = "non-finite"
    INFEASIBLE = "infeasible"
    PROJECTION_FAILED = "projection-failed"
    ERROR_TOO_LARGE = "error-too-large"


class FailureReason(str, Enum):
    """Why an integration run terminated early (fatal to the run)."""

    STEP_SIZE_UNDERFLOW = "step-size-underflow"
    REJECTION_CAP_EXCEEDED = "rejection-cap-exceeded"
    SINGULAR_JACOBIAN = "singular-jacobian"
    MAX_STEPS_EXCEEDED = "max-steps-exceeded"
    CANCELLED = "cancelled"


def raise_invalid_tableau(name: str, *, detail: str) -> NoReturn:
    """Raise a standardized TableauError.

    Args:
        name: Tableau name (for context).
        detail: Human-readable description of the violated contract.

    Raises:
        TableauError: Always.
    """
    msg = f"Invalid Butcher tableau '{name}': {detail}.\n\n{_TABLEAU_HINT_MSG}"
    raise TableauError(msg)


def raise_dimension_mismatch(*, name: str, expected: object, got: object) -> NoReturn:
    """Raise a standardized DimensionMismatchError.

    Args:
        name: Name of the object with the dimension issue.
        expected: Expected dimension/shape.
        got: Actual observed dimension/shape.

    Raises:
        DimensionMismatchError: Always.
    """
    msg = f"{name} has an invalid dimension. Expected {expected}. Got: {got!r}."
    raise DimensionMismatchError(msg)


def raise_invalid_config(
    *,
    field: str,
    detail: str,
    value: object | None = None,
) -> NoReturn:
    """Raise a standardized ConfigError.

    Args:
        field: Offending configuration field.
        detail: Human-readable description of the constraint.
        value: Optional offending value.

    Raises:
        ConfigError: Always.
    """
    parts: list[str] = [f"Invalid rk_engine configuration for '{field}':", detail]
    if value is not None:
        parts.append(f"(got {value!r})")
    raise ConfigError(" ".join(parts) + ".")
