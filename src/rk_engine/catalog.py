# src/rk_engine/catalog.py
"""Built-in Butcher tableaus.

Each method is exposed as a factory returning a fresh :class:`Tableau`, and is
registered under its canonical name for lookup with :func:`get_tableau`.

Explicit:
    ExplicitEuler, Heun2, Heun3, Ralston2, Ralston3, RK4, MTE22, SSPRK22,
    SSPRK22star, SSPRK33, SSPRK42, SSPRK43, SSPRK93, SSPRK104, Chebyshev51.
Explicit, embedded:
    Fehlberg45, HeunEuler21.
Implicit:
    ImplicitEuler, GaussLegendre2, GaussLegendre4, GaussLegendre6, RadauIIA3,
    RadauIIA5, LobattoIIIA2 (DIRK), SSPIRK33 (DIRK).
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Final

from .errors import TableauError
from .tableau import Tableau, TableauClass

_UNKNOWN_TABLEAU_ERROR_MSG: Final[str] = (
    "Unknown Butcher tableau '{name}'. Available tableaus: {available}."
)

TableauFactory = Callable[[], Tableau]


# =============================================================================
# Explicit methods
# =============================================================================


def explicit_euler() -> Tableau:
    """Forward Euler, order 1."""
    return Tableau.from_coefficients(
        "ExplicitEuler", [[0.0]], [1.0], [0.0], 1, scheme=TableauClass.ERK
    )


def heun2() -> Tableau:
    """Heun's second-order method (explicit trapezoid)."""
    return Tableau.from_coefficients(
        "Heun2",
        [[0.0, 0.0], [1.0, 0.0]],
        [1.0 / 2.0, 1.0 / 2.0],
        [0.0, 1.0],
        2,
        scheme=TableauClass.ERK,
    )


def heun3() -> Tableau:
    """Heun's third-order method."""
    return Tableau.from_coefficients(
        "Heun3",
        [
            [0.0, 0.0, 0.0],
            [1.0 / 3.0, 0.0, 0.0],
            [0.0, 2.0 / 3.0, 0.0],
        ],
        [1.0 / 4.0, 0.0, 3.0 / 4.0],
        [0.0, 1.0 / 3.0, 2.0 / 3.0],
        3,
        scheme=TableauClass.ERK,
    )


def ralston2() -> Tableau:
    """Ralston's second-order method (minimum truncation error)."""
    return Tableau.from_coefficients(
        "Ralston2",
        [[0.0, 0.0], [2.0 / 3.0, 0.0]],
        [1.0 / 4.0, 3.0 / 4.0],
        [0.0, 2.0 / 3.0],
        2,
        scheme=TableauClass.ERK,
    )


def ralston3() -> Tableau:
    """Ralston's third-order method."""
    return Tableau.from_coefficients(
        "Ralston3",
        [
            [0.0, 0.0, 0.0],
            [1.0 / 2.0, 0.0, 0.0],
            [0.0, 3.0 / 4.0, 0.0],
        ],
        [2.0 / 9.0, 1.0 / 3.0, 4.0 / 9.0],
        [0.0, 1.0 / 2.0, 3.0 / 4.0],
        3,
        scheme=TableauClass.ERK,
    )


def rk4() -> Tableau:
    """Classical fourth-order Runge-Kutta."""
    return Tableau.from_coefficients(
        "RK4",
        [
            [0.0, 0.0, 0.0, 0.0],
            [1.0 / 2.0, 0.0, 0.0, 0.0],
            [0.0, 1.0 / 2.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, 0.0],
        ],
        [1.0 / 6.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 6.0],
        [0.0, 1.0 / 2.0, 1.0 / 2.0, 1.0],
        4,
        scheme=TableauClass.ERK,
    )


def mte22() -> Tableau:
    """Minimal truncation error two-stage, second-order method."""
    return Tableau.from_coefficients(
        "MTE22",
        [[0.0, 0.0], [2.0 / 3.0, 0.0]],
        [1.0 / 4.0, 3.0 / 4.0],
        [0.0, 2.0 / 3.0],
        2,
        scheme=TableauClass.ERK,
    )


def ssprk22() -> Tableau:
    """Strong-stability-preserving RK, two stages, order 2."""
    return Tableau.from_coefficients(
        "SSPRK22",
        [[0.0, 0.0], [1.0, 0.0]],
        [1.0 / 2.0, 1.0 / 2.0],
        [0.0, 1.0],
        2,
        scheme=TableauClass.ERK,
    )


def ssprk22star() -> Tableau:
    """SSP RK with two stages, order 2, and enlarged stability region."""
    a21 = 0.822875655532364
    return Tableau.from_coefficients(
        "SSPRK22star",
        [[0.0, 0.0], [a21, 0.0]],
        [0.392374781489287, 0.607625218510713],
        [0.0, a21],
        2,
        scheme=TableauClass.ERK,
    )


def ssprk33() -> Tableau:
    """Shu-Osher SSP RK, three stages, order 3."""
    return Tableau.from_coefficients(
        "SSPRK33",
        [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [1.0 / 4.0, 1.0 / 4.0, 0.0],
        ],
        [1.0 / 6.0, 1.0 / 6.0, 2.0 / 3.0],
        [0.0, 1.0, 1.0 / 2.0],
        3,
        scheme=TableauClass.ERK,
    )


def ssprk42() -> Tableau:
    """SSP RK, four stages, order 2."""
    third = 1.0 / 3.0
    return Tableau.from_coefficients(
        "SSPRK42",
        [
            [0.0, 0.0, 0.0, 0.0],
            [third, 0.0, 0.0, 0.0],
            [third, third, 0.0, 0.0],
            [third, third, third, 0.0],
        ],
        [1.0 / 4.0] * 4,
        [0.0, third, 2.0 / 3.0, 1.0],
        2,
        scheme=TableauClass.ERK,
    )


def ssprk43() -> Tableau:
    """SSP RK, four stages, order 3."""
    return Tableau.from_coefficients(
        "SSPRK43",
        [
            [0.0, 0.0, 0.0, 0.0],
            [1.0 / 2.0, 0.0, 0.0, 0.0],
            [1.0 / 2.0, 1.0 / 2.0, 0.0, 0.0],
            [1.0 / 6.0, 1.0 / 6.0, 1.0 / 6.0, 0.0],
        ],
        [1.0 / 6.0, 1.0 / 6.0, 1.0 / 6.0, 1.0 / 2.0],
        [0.0, 1.0 / 2.0, 1.0, 1.0 / 2.0],
        3,
        scheme=TableauClass.ERK,
    )


def ssprk93() -> Tableau:
    """SSP RK, nine stages, order 3."""
    s, f = 1.0 / 6.0, 1.0 / 15.0
    a = [[0.0] * 9 for _ in range(9)]
    for i in range(1, 6):
        a[i][:i] = [s] * i
    for i in range(6, 9):
        a[i][:6] = [s, f, f, f, f, f]
        a[i][6:i] = [s] * (i - 6)
    return Tableau.from_coefficients(
        "SSPRK93",
        a,
        [s, f, f, f, f, f, s, s, s],
        [0.0, 1.0 / 6.0, 1.0 / 3.0, 1.0 / 2.0, 2.0 / 3.0, 5.0 / 6.0, 1.0 / 2.0, 2.0 / 3.0, 5.0 / 6.0],
        3,
        scheme=TableauClass.ERK,
    )


def ssprk104() -> Tableau:
    """Ketcheson's SSP RK, ten stages, order 4."""
    s, f = 1.0 / 6.0, 1.0 / 15.0
    a = [[0.0] * 10 for _ in range(10)]
    for i in range(1, 5):
        a[i][:i] = [s] * i
    for i in range(5, 10):
        a[i][:5] = [f] * 5
        a[i][5:i] = [s] * (i - 5)
    return Tableau.from_coefficients(
        "SSPRK104",
        a,
        [1.0 / 10.0] * 10,
        [0.0, 1.0 / 6.0, 1.0 / 3.0, 1.0 / 2.0, 2.0 / 3.0, 1.0 / 3.0, 1.0 / 2.0, 2.0 / 3.0, 5.0 / 6.0, 1.0],
        4,
        scheme=TableauClass.ERK,
    )


def chebyshev51() -> Tableau:
    """Five-stage first-order Runge-Kutta-Chebyshev method."""
    q = 1.0 / 25.0
    return Tableau.from_coefficients(
        "Chebyshev51",
        [
            [0.0, 0.0, 0.0, 0.0, 0.0],
            [q, 0.0, 0.0, 0.0, 0.0],
            [2 * q, 2 * q, 0.0, 0.0, 0.0],
            [3 * q, 4 * q, 2 * q, 0.0, 0.0],
            [4 * q, 6 * q, 4 * q, 2 * q, 0.0],
        ],
        [5 * q, 8 * q, 6 * q, 4 * q, 2 * q],
        [0.0, q, 4 * q, 9 * q, 16 * q],
        1,
        scheme=TableauClass.ERK,
    )


# =============================================================================
# Explicit embedded pairs
# =============================================================================


def fehlberg45() -> Tableau:
    """Runge-Kutta-Fehlberg 4(5): order-4 solution with order-5 embedded weights."""
    return Tableau.from_coefficients(
        "Fehlberg45",
        [
            [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            [1.0 / 4.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            [3.0 / 32.0, 9.0 / 32.0, 0.0, 0.0, 0.0, 0.0],
            [1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0, 0.0, 0.0, 0.0],
            [439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0, 0.0, 0.0],
            [-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0, 0.0],
        ],
        [25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0],
        [0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0],
        4,
        b_embedded=[
            16.0 / 135.0,
            0.0,
            6656.0 / 12825.0,
            28561.0 / 56430.0,
            -9.0 / 50.0,
            2.0 / 55.0,
        ],
        embedded_order=5,
        scheme=TableauClass.ERK,
    )


def heun_euler21() -> Tableau:
    """Heun's method with an embedded explicit Euler estimator."""
    return Tableau.from_coefficients(
        "HeunEuler21",
        [[0.0, 0.0], [1.0, 0.0]],
        [1.0 / 2.0, 1.0 / 2.0],
        [0.0, 1.0],
        2,
        b_embedded=[1.0, 0.0],
        embedded_order=1,
        scheme=TableauClass.ERK,
    )


# =============================================================================
# Implicit methods
# =============================================================================


def implicit_euler() -> Tableau:
    """Backward Euler, order 1."""
    return Tableau.from_coefficients(
        "ImplicitEuler", [[1.0]], [1.0], [1.0], 1, scheme=TableauClass.IRK
    )


def gauss_legendre2() -> Tableau:
    """One-stage Gauss-Legendre (implicit midpoint), order 2."""
    return Tableau.from_coefficients(
        "GaussLegendre2", [[1.0 / 2.0]], [1.0], [1.0 / 2.0], 2, scheme=TableauClass.IRK
    )


def gauss_legendre4() -> Tableau:
    """Two-stage Gauss-Legendre, order 4."""
    t = math.sqrt(3.0) / 6.0
    return Tableau.from_coefficients(
        "GaussLegendre4",
        [
            [1.0 / 4.0, 1.0 / 4.0 - t],
            [1.0 / 4.0 + t, 1.0 / 4.0],
        ],
        [1.0 / 2.0, 1.0 / 2.0],
        [1.0 / 2.0 - t, 1.0 / 2.0 + t],
        4,
        scheme=TableauClass.IRK,
    )


def gauss_legendre6() -> Tableau:
    """Three-stage Gauss-Legendre, order 6."""
    r15 = math.sqrt(15.0)
    t1, t2, t3, t4 = r15 / 10.0, r15 / 15.0, r15 / 24.0, r15 / 30.0
    w, z = 5.0 / 36.0, 2.0 / 9.0
    return Tableau.from_coefficients(
        "GaussLegendre6",
        [
            [w, z - t2, w - t4],
            [w + t3, z, w - t3],
            [w + t4, z + t2, w],
        ],
        [5.0 / 18.0, 4.0 / 9.0, 5.0 / 18.0],
        [1.0 / 2.0 - t1, 1.0 / 2.0, 1.0 / 2.0 + t1],
        6,
        scheme=TableauClass.IRK,
    )


def radau_iia3() -> Tableau:
    """Two-stage Radau IIA, order 3."""
    return Tableau.from_coefficients(
        "RadauIIA3",
        [
            [5.0 / 12.0, -1.0 / 12.0],
            [3.0 / 4.0, 1.0 / 4.0],
        ],
        [3.0 / 4.0, 1.0 / 4.0],
        [1.0 / 3.0, 1.0],
        3,
        scheme=TableauClass.IRK,
    )


def radau_iia5() -> Tableau:
    """Three-stage Radau IIA, order 5."""
    s6 = math.sqrt(6.0)
    return Tableau.from_coefficients(
        "RadauIIA5",
        [
            [
                11.0 / 45.0 - 7.0 * s6 / 360.0,
                37.0 / 225.0 - 169.0 * s6 / 1800.0,
                -2.0 / 225.0 + s6 / 75.0,
            ],
            [
                37.0 / 225.0 + 169.0 * s6 / 1800.0,
                11.0 / 45.0 + 7.0 * s6 / 360.0,
                -2.0 / 225.0 - s6 / 75.0,
            ],
            [4.0 / 9.0 - s6 / 36.0, 4.0 / 9.0 + s6 / 36.0, 1.0 / 9.0],
        ],
        [4.0 / 9.0 - s6 / 36.0, 4.0 / 9.0 + s6 / 36.0, 1.0 / 9.0],
        [2.0 / 5.0 - s6 / 10.0, 2.0 / 5.0 + s6 / 10.0, 1.0],
        5,
        scheme=TableauClass.IRK,
    )


def lobatto_iiia2() -> Tableau:
    """Two-stage Lobatto IIIA (implicit trapezoid), order 2."""
    return Tableau.from_coefficients(
        "LobattoIIIA2",
        [[0.0, 0.0], [1.0 / 2.0, 1.0 / 2.0]],
        [1.0 / 2.0, 1.0 / 2.0],
        [0.0, 1.0],
        2,
        scheme=TableauClass.DIRK,
    )


def sspirk33() -> Tableau:
    """Three-stage SSP diagonally implicit RK, order 3."""
    t1 = 1.0 / 2.0
    t2 = math.sqrt(2.0) / 4.0
    t4, t5 = t1 - t2, t1 + t2
    return Tableau.from_coefficients(
        "SSPIRK33",
        [
            [t4, 0.0, 0.0],
            [t2, t4, 0.0],
            [t2, t2, t4],
        ],
        [1.0 / 3.0, 1.0 / 3.0, 1.0 / 3.0],
        [t4, t1, t5],
        3,
        scheme=TableauClass.DIRK,
    )


# =============================================================================
# Registry
# =============================================================================

_REGISTRY: Final[dict[str, TableauFactory]] = {
    "ExplicitEuler": explicit_euler,
    "Heun2": heun2,
    "Heun3": heun3,
    "Ralston2": ralston2,
    "Ralston3": ralston3,
    "RK4": rk4,
    "MTE22": mte22,
    "SSPRK22": ssprk22,
    "SSPRK22star": ssprk22star,
    "SSPRK33": ssprk33,
    "SSPRK42": ssprk42,
    "SSPRK43": ssprk43,
    "SSPRK93": ssprk93,
    "SSPRK104": ssprk104,
    "Chebyshev51": chebyshev51,
    "Fehlberg45": fehlberg45,
    "HeunEuler21": heun_euler21,
    "ImplicitEuler": implicit_euler,
    "GaussLegendre2": gauss_legendre2,
    "GaussLegendre4": gauss_legendre4,
    "GaussLegendre6": gauss_legendre6,
    "RadauIIA3": radau_iia3,
    "RadauIIA5": radau_iia5,
    "LobattoIIIA2": lobatto_iiia2,
    "SSPIRK33": sspirk33,
}
_BY_LOWER_NAME: Final[dict[str, str]] = {key.lower(): key for key in _REGISTRY}


def available_tableaus() -> tuple[str, ...]:
    """Return the canonical names of all built-in tableaus."""
    return tuple(_REGISTRY)


def get_tableau(name: str) -> Tableau:
    """Look up a built-in tableau by name (case-insensitive).

    Args:
        name: Method name, e.g. "RK4" or "radauiia5".

    Raises:
        TableauError: If no built-in tableau has that name.

    Returns:
        A fresh Tableau.
    """
    key = _BY_LOWER_NAME.get(str(name).strip().lower())
    if key is None:
        msg = _UNKNOWN_TABLEAU_ERROR_MSG.format(
            name=name, available=", ".join(_REGISTRY)
        )
        raise TableauError(msg)
    return _REGISTRY[key]()
