# src/rk_engine/matrix_ops.py
"""Dense linear-algebra helpers for the Runge-Kutta stepping engine.

This module provides the small numerical kernels the stepper relies on:

- Dense LU solves with explicit singularity detection.
- Assembly of the coupled stage Jacobian for implicit Runge-Kutta methods.
- The KKT system used to project a state onto an invariant manifold.
- The RMS scaled error norm used by the step-size controller.

Design notes:
    * CPU-first: all paths rely on NumPy/SciPy BLAS/LAPACK.
    * Singular or rank-deficient matrices surface as SingularMatrixError so
      callers can turn them into step rejections rather than aborts.
    * No caching: matrices change at every Newton iterate, and factorizations
      are owned by the attempt that computed them.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Final, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import LinAlgError, LinAlgWarning, block_diag, lu_factor, lu_solve

from .errors import SingularMatrixError, raise_dimension_mismatch

if TYPE_CHECKING:
    from collections.abc import Sequence


# =============================================================================
# Public types / messages
# =============================================================================

DenseMatrix: TypeAlias = NDArray[np.floating]
DenseVector: TypeAlias = NDArray[np.floating]

_SQUARE_ERROR: Final[str] = "Matrix must be square, got shape {shape}"
_SINGULAR_ERROR: Final[str] = (
    "Singular or rank-deficient matrix (min |pivot| = {pivot:.3e}, "
    "max |pivot| = {scale:.3e})"
)
_NON_FINITE_ERROR: Final[str] = "Matrix or right-hand side contains non-finite values"
_STAGE_BLOCKS_ERROR: Final[str] = (
    "Expected {expected} stage Jacobian blocks, got {actual}"
)


# =============================================================================
# Dense solves
# =============================================================================


def _validate_square(matrix: DenseMatrix) -> int:
    """Validate a square 2D matrix and return its size.

    Args:
        matrix: Matrix to validate.

    Raises:
        ValueError: If matrix is not square.

    Returns:
        The matrix dimension n.
    """
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(_SQUARE_ERROR.format(shape=matrix.shape))
    return int(matrix.shape[0])


def solve_dense(matrix: DenseMatrix, rhs: DenseVector) -> DenseVector:
    """Solve matrix @ x = rhs with a partially pivoted LU factorization.

    Args:
        matrix: Square system matrix.
        rhs: Right-hand side vector (or 2D block of right-hand sides).

    Raises:
        SingularMatrixError: If the matrix is singular/rank-deficient or any
            input is non-finite.

    Returns:
        Solution x with the same shape as rhs.
    """
    a = np.asarray(matrix, dtype=float)
    b = np.asarray(rhs, dtype=float)
    n = _validate_square(a)
    if b.shape[0] != n:
        raise_dimension_mismatch(name="rhs", expected=(n,), got=b.shape)

    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        raise SingularMatrixError(_NON_FINITE_ERROR)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", LinAlgWarning)
            lu, piv = lu_factor(a, check_finite=False)
    except (LinAlgError, ValueError) as exc:
        raise SingularMatrixError(str(exc)) from exc

    pivots = np.abs(np.diag(lu))
    scale = float(pivots.max()) if pivots.size else 0.0
    smallest = float(pivots.min()) if pivots.size else 0.0
    if scale == 0.0 or smallest <= n * np.finfo(float).eps * scale:
        raise SingularMatrixError(_SINGULAR_ERROR.format(pivot=smallest, scale=scale))

    x = lu_solve((lu, piv), b, check_finite=False)
    if not np.all(np.isfinite(x)):
        raise SingularMatrixError(_NON_FINITE_ERROR)
    return x


# =============================================================================
# Stage Jacobian assembly
# =============================================================================


def kron_prod(a: DenseMatrix, b: DenseMatrix) -> DenseMatrix:
    """
    Compute the Kronecker product of two dense operators.

    Args:
        a: First operator.
        b: Second operator.

    Returns:
        The Kronecker product operator.
    """
    return np.kron(np.atleast_2d(np.asarray(a, dtype=float)), np.asarray(b, dtype=float))


def assemble_stage_jacobian(
    coefficients: DenseMatrix,
    h: float,
    jac_x: Sequence[DenseMatrix],
    jac_x_dot: Sequence[DenseMatrix],
) -> DenseMatrix:
    """Assemble dG/dk for the coupled stage equations of an implicit RK step.

    Stage residual i is G_i(k) = F(x + h * sum_j a_ij k_j, k_i, t + c_i h), so
    the (i, j) block of the Jacobian is

        h * a_ij * JF_x(i) + delta_ij * JF_x_dot(i).

    Row block i is a Kronecker product of the i-th coefficient row with the
    stage's own JF_x; the x_dot contributions form a block diagonal.

    Args:
        coefficients: Butcher matrix A, shape (S, S).
        h: Step size.
        jac_x: S matrices JF_x evaluated at each stage point.
        jac_x_dot: S matrices JF_x_dot evaluated at each stage point.

    Returns:
        Dense Jacobian of shape (S*N, S*N).
    """
    a = np.asarray(coefficients, dtype=float)
    n_stages = int(a.shape[0])
    if len(jac_x) != n_stages or len(jac_x_dot) != n_stages:
        raise ValueError(
            _STAGE_BLOCKS_ERROR.format(
                expected=n_stages,
                actual=(len(jac_x), len(jac_x_dot)),
            )
        )

    rows = [kron_prod(h * a[i : i + 1, :], jac_x[i]) for i in range(n_stages)]
    return np.vstack(rows) + block_diag(*[np.asarray(m, dtype=float) for m in jac_x_dot])


# =============================================================================
# Invariant projection
# =============================================================================


def build_projection_system(jh_x: DenseMatrix) -> DenseMatrix:
    """Build the KKT matrix of the minimum-distance projection step.

    The projection correction (dx, lambda) solves

        | I      Jh_x^T | | dx     |   | x_target - x_k |
        | Jh_x   0      | | lambda | = | -h(x_k)        |

    Args:
        jh_x: Invariant Jacobian, shape (M, N).

    Returns:
        KKT matrix of shape (N + M, N + M).
    """
    jac = np.atleast_2d(np.asarray(jh_x, dtype=float))
    m, n = jac.shape
    return np.block([
        [np.eye(n), jac.T],
        [jac, np.zeros((m, m))],
    ])


# =============================================================================
# Error norm
# =============================================================================


def rms_error_norm(
    err: DenseVector,
    x_old: DenseVector,
    x_new: DenseVector,
    *,
    abs_tol: float,
    rel_tol: float,
) -> float:
    """
    Compute the RMS scaled error norm.

    Each component is scaled by abs_tol + rel_tol * max(|x_old|, |x_new|), so a
    norm <= 1 means the local error estimate is within tolerance.

    Args:
        err: Error estimate.
        x_old: State at the start of the step.
        x_new: Candidate state at the end of the step.
        abs_tol: Absolute tolerance.
        rel_tol: Relative tolerance.

    Returns:
        RMS scaled error norm (inf if non-finite).
    """
    scale = np.maximum(np.abs(x_old), np.abs(x_new))
    scale *= float(rel_tol)
    scale += float(abs_tol)

    ratio = np.asarray(err, dtype=float) / scale
    if ratio.size == 0:
        return 0.0
    v = float(np.sqrt(np.mean(ratio * ratio)))
    if not np.isfinite(v):
        return float("inf")
    return v
