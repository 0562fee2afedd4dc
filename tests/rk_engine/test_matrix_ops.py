"""Unit tests for rk_engine.matrix_ops."""

from __future__ import annotations

import numpy as np
import pytest

from rk_engine.errors import DimensionMismatchError, SingularMatrixError
from rk_engine.matrix_ops import (
    assemble_stage_jacobian,
    build_projection_system,
    kron_prod,
    rms_error_norm,
    solve_dense,
)

# -----------------------------------------------------------------------------
# solve_dense
# -----------------------------------------------------------------------------


def test_solve_dense_matches_numpy() -> None:
    rng = np.random.default_rng(7)
    a = rng.normal(size=(5, 5)) + 5.0 * np.eye(5)
    b = rng.normal(size=5)

    x = solve_dense(a, b)
    np.testing.assert_allclose(a @ x, b, atol=1e-12)


def test_solve_dense_accepts_block_rhs() -> None:
    a = np.array([[2.0, 0.0], [0.0, 4.0]])
    x = solve_dense(a, np.eye(2))
    np.testing.assert_allclose(x, np.diag([0.5, 0.25]))


@pytest.mark.parametrize(
    "matrix",
    [
        np.zeros((2, 2)),
        np.array([[1.0, 2.0], [2.0, 4.0]]),
        np.array([[1.0, 0.0], [0.0, 1e-300]]),
    ],
)
def test_solve_dense_raises_on_singular(matrix: np.ndarray) -> None:
    with pytest.raises(SingularMatrixError):
        solve_dense(matrix, np.ones(2))


def test_solve_dense_raises_on_non_finite_input() -> None:
    with pytest.raises(SingularMatrixError, match="non-finite"):
        solve_dense(np.array([[1.0, np.nan], [0.0, 1.0]]), np.ones(2))


def test_solve_dense_shape_errors() -> None:
    with pytest.raises(ValueError, match="square"):
        solve_dense(np.ones((2, 3)), np.ones(2))
    with pytest.raises(DimensionMismatchError, match="rhs"):
        solve_dense(np.eye(3), np.ones(2))


# -----------------------------------------------------------------------------
# Stage Jacobian
# -----------------------------------------------------------------------------


def test_kron_prod_matches_numpy() -> None:
    a = np.array([[1.0, 2.0]])
    b = np.array([[0.0, 1.0], [1.0, 0.0]])
    np.testing.assert_array_equal(kron_prod(a, b), np.kron(a, b))


def test_assemble_stage_jacobian_blocks() -> None:
    """Block (i, j) is h a_ij JF_x(i) + delta_ij JF_x_dot(i)."""
    a = np.array([[0.25, -0.1], [0.5, 0.25]])
    h = 0.2
    jx = [np.array([[1.0, 2.0], [3.0, 4.0]]), np.array([[5.0, 6.0], [7.0, 8.0]])]
    jxd = [np.eye(2), 2.0 * np.eye(2)]

    jac = assemble_stage_jacobian(a, h, jx, jxd)

    assert jac.shape == (4, 4)
    for i in range(2):
        for j in range(2):
            block = jac[2 * i : 2 * i + 2, 2 * j : 2 * j + 2]
            expected = h * a[i, j] * jx[i] + (jxd[i] if i == j else 0.0)
            np.testing.assert_allclose(block, expected)


def test_assemble_stage_jacobian_block_count_mismatch() -> None:
    with pytest.raises(ValueError, match="blocks"):
        assemble_stage_jacobian(np.eye(2), 0.1, [np.eye(2)], [np.eye(2)])


# -----------------------------------------------------------------------------
# Projection and error norm
# -----------------------------------------------------------------------------


def test_build_projection_system_layout() -> None:
    jac = np.array([[1.0, 2.0, 3.0]])
    kkt = build_projection_system(jac)

    assert kkt.shape == (4, 4)
    np.testing.assert_array_equal(kkt[:3, :3], np.eye(3))
    np.testing.assert_array_equal(kkt[:3, 3], jac[0])
    np.testing.assert_array_equal(kkt[3, :3], jac[0])
    assert kkt[3, 3] == 0.0


def test_rms_error_norm_scaling() -> None:
    err = np.array([1e-6, 0.0])
    x_old = np.array([1.0, 0.0])
    x_new = np.array([3.0, 0.0])

    # scale = 1e-6 + 1e-6 * (3, 0) = (4e-6, 1e-6)
    value = rms_error_norm(err, x_old, x_new, abs_tol=1e-6, rel_tol=1e-6)
    assert value == pytest.approx(np.sqrt((0.25**2 + 0.0) / 2.0))


def test_rms_error_norm_edge_cases() -> None:
    empty = np.zeros(0)
    assert rms_error_norm(empty, empty, empty, abs_tol=1e-6, rel_tol=0.0) == 0.0

    bad = np.array([np.inf])
    one = np.ones(1)
    assert rms_error_norm(bad, one, one, abs_tol=1e-6, rel_tol=0.0) == float("inf")
