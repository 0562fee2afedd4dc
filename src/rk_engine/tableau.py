# src/rk_engine/tableau.py
"""Butcher tableau records, scheme classification, and order conditions.

A :class:`Tableau` is an immutable value: its coefficient arrays are copied
on construction and marked read-only. Every structural invariant is checked
when the record is built, so a malformed method can never reach the stepper.

Classification (by occupancy of A):
    - ERK:  A strictly lower-triangular; every stage is explicit.
    - DIRK: A lower-triangular with a nonzero diagonal; stages are solved one
            after the other.
    - IRK:  general A; all stages are coupled.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import raise_invalid_tableau

_ORDER_TOL: Final[float] = float(np.finfo(float).eps ** (2.0 / 3.0))
MAX_CHECKED_ORDER: Final[int] = 6


class TableauClass(str, Enum):
    """Runge-Kutta scheme class, which selects the stage-solving strategy."""

    ERK = "ERK"
    DIRK = "DIRK"
    IRK = "IRK"


def classify_tableau(A: ArrayLike) -> TableauClass:  # noqa: N803
    """Infer the most specific scheme class from the occupancy of A.

    Args:
        A: Square Butcher matrix.

    Returns:
        ERK for a strictly lower-triangular A, DIRK for a lower-triangular A
        with a nonzero diagonal, IRK otherwise.
    """
    a = np.asarray(A, dtype=float)
    if np.any(np.triu(a, k=1) != 0.0):
        return TableauClass.IRK
    if np.any(np.diag(a) != 0.0):
        return TableauClass.DIRK
    return TableauClass.ERK


def _occupancy_matches(a: NDArray[np.floating], scheme: TableauClass) -> bool:
    lower = not np.any(np.triu(a, k=1) != 0.0)
    diagonal_zero = not np.any(np.diag(a) != 0.0)
    if scheme is TableauClass.ERK:
        return lower and diagonal_zero
    if scheme is TableauClass.DIRK:
        return lower and not diagonal_zero
    return bool(np.any(a != 0.0))


# Butcher order conditions, grouped by order. Each entry maps (A, b, c) to the
# value that must equal the paired rational constant.
_Condition = tuple[Callable[[NDArray, NDArray, NDArray], float], float]


def _order_conditions() -> dict[int, list[_Condition]]:
    return {
        1: [(lambda A, b, c: b.sum(), 1.0)],
        2: [(lambda A, b, c: b @ c, 1.0 / 2.0)],
        3: [
            (lambda A, b, c: b @ c**2, 1.0 / 3.0),
            (lambda A, b, c: b @ (A @ c), 1.0 / 6.0),
        ],
        4: [
            (lambda A, b, c: b @ c**3, 1.0 / 4.0),
            (lambda A, b, c: (b * c) @ (A @ c), 1.0 / 8.0),
            (lambda A, b, c: (b @ A) @ c**2, 1.0 / 12.0),
            (lambda A, b, c: b @ (A @ (A @ c)), 1.0 / 24.0),
        ],
        5: [
            (lambda A, b, c: b @ c**4, 1.0 / 5.0),
            (lambda A, b, c: (b * c**2) @ (A @ c), 1.0 / 10.0),
            (lambda A, b, c: b @ (A @ c) ** 2, 1.0 / 20.0),
            (lambda A, b, c: (b * c) @ (A @ c**2), 1.0 / 15.0),
            (lambda A, b, c: b @ (A @ c**3), 1.0 / 20.0),
            (lambda A, b, c: (b * c) @ (A @ (A @ c)), 1.0 / 30.0),
            (lambda A, b, c: (b @ A) @ (c * (A @ c)), 1.0 / 40.0),
            (lambda A, b, c: (b @ A) @ (A @ c**2), 1.0 / 60.0),
            (lambda A, b, c: (b @ A) @ (A @ (A @ c)), 1.0 / 120.0),
        ],
        6: [
            (lambda A, b, c: b @ c**5, 1.0 / 6.0),
            (lambda A, b, c: (b * c**3) @ (A @ c), 1.0 / 12.0),
            (lambda A, b, c: (b * c) @ (A @ c) ** 2, 1.0 / 24.0),
            (lambda A, b, c: (b * c**2) @ (A @ c**2), 1.0 / 18.0),
            (lambda A, b, c: b @ ((A @ c**2) * (A @ c)), 1.0 / 36.0),
            (lambda A, b, c: (b * c) @ (A @ c**3), 1.0 / 24.0),
            (lambda A, b, c: b @ (A @ c**4), 1.0 / 30.0),
            (lambda A, b, c: (A.T @ (b * c**2)) @ (A @ c), 1.0 / 36.0),
            (lambda A, b, c: (b * (A @ c)) @ (A @ (A @ c)), 1.0 / 72.0),
            (lambda A, b, c: ((b * c) @ A) @ (c * (A @ c)), 1.0 / 48.0),
            (lambda A, b, c: ((b @ A) * c**2) @ (A @ c), 1.0 / 60.0),
            (lambda A, b, c: (b @ A) @ (A @ c) ** 2, 1.0 / 120.0),
            (lambda A, b, c: ((b * c) @ A) @ (A @ c**2), 1.0 / 72.0),
            (lambda A, b, c: ((b @ A) * c) @ (A @ c**2), 1.0 / 90.0),
            (lambda A, b, c: (b @ A) @ (A @ c**3), 1.0 / 120.0),
            (lambda A, b, c: ((b * c) @ A) @ (A @ (A @ c)), 1.0 / 144.0),
            (lambda A, b, c: ((b @ A) * c) @ (A @ (A @ c)), 1.0 / 180.0),
            (lambda A, b, c: (b @ A) @ (A @ (c * (A @ c))), 1.0 / 240.0),
            (lambda A, b, c: (b @ A) @ (A @ (A @ c**2)), 1.0 / 360.0),
            (lambda A, b, c: (b @ A) @ (A @ (A @ (A @ c))), 1.0 / 720.0),
        ],
    }


_ORDER_CONDITIONS: Final[dict[int, list[_Condition]]] = _order_conditions()


def compute_order(A: ArrayLike, b: ArrayLike, c: ArrayLike) -> int:  # noqa: N803
    """Return the highest order whose Butcher order conditions hold.

    Conditions are taken from Dormand & Prince (1980) and are checked up to
    order 6 with tolerance eps^(2/3). A tableau whose rows of A do not sum to c
    has order 0.

    Args:
        A: Butcher matrix.
        b: Weights vector (or embedded weights).
        c: Nodes vector.

    Returns:
        The verified order, in [0, 6].
    """
    a_mat = np.asarray(A, dtype=float)
    b_vec = np.asarray(b, dtype=float)
    c_vec = np.asarray(c, dtype=float)

    if np.linalg.norm(a_mat.sum(axis=1) - c_vec) > _ORDER_TOL:
        return 0

    order = 0
    for candidate in range(1, MAX_CHECKED_ORDER + 1):
        for condition, expected in _ORDER_CONDITIONS[candidate]:
            if abs(float(condition(a_mat, b_vec, c_vec)) - expected) > _ORDER_TOL:
                return order
        order = candidate
    return order


def _frozen_vector(
    name: str, label: str, values: ArrayLike, size: int
) -> NDArray[np.floating]:
    arr = np.array(values, dtype=float, copy=True).reshape(-1)
    if arr.shape != (size,):
        raise_invalid_tableau(
            name, detail=f"{label} must have shape ({size},), got {arr.shape}"
        )
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, slots=True, eq=False)
class Tableau:
    """Immutable Butcher tableau of a Runge-Kutta method.

    Attributes:
        name: Method name.
        A: Stage coefficient matrix, shape (S, S).
        b: Weights, shape (S,).
        c: Nodes, shape (S,).
        order: Declared order of the method.
        scheme: Scheme class (ERK, DIRK, IRK).
        b_embedded: Optional embedded weights, shape (S,).
        embedded_order: Declared order of the embedded weights.
    """

    name: str
    A: NDArray[np.floating]
    b: NDArray[np.floating]
    c: NDArray[np.floating]
    order: int
    scheme: TableauClass
    b_embedded: NDArray[np.floating] | None = None
    embedded_order: int | None = None

    def __post_init__(self) -> None:
        name = self.name
        if not isinstance(name, str) or not name:
            raise_invalid_tableau(str(name), detail="name must be a non-empty string")

        a = np.array(self.A, dtype=float, copy=True)
        if a.ndim != 2 or a.shape[0] != a.shape[1] or a.shape[0] < 1:
            raise_invalid_tableau(
                name, detail=f"A must be a non-empty square matrix, got {a.shape}"
            )
        a.setflags(write=False)
        s = int(a.shape[0])
        b = _frozen_vector(name, "b", self.b, s)
        c = _frozen_vector(name, "c", self.c, s)

        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b)) and np.all(np.isfinite(c))):
            raise_invalid_tableau(name, detail="coefficients must be finite")
        if isinstance(self.order, bool) or int(self.order) != self.order or self.order < 1:
            raise_invalid_tableau(
                name, detail=f"order must be a positive integer, got {self.order!r}"
            )

        row_defect = np.abs(a.sum(axis=1) - c)
        if np.any(row_defect > _ORDER_TOL):
            row = int(np.argmax(row_defect))
            raise_invalid_tableau(
                name, detail=f"row {row} of A sums to {a[row].sum()!r}, but c[{row}] = {c[row]!r}"
            )
        if abs(b.sum() - 1.0) > _ORDER_TOL:
            raise_invalid_tableau(name, detail=f"weights b sum to {b.sum()!r}, not 1")

        try:
            scheme = TableauClass(self.scheme)
        except ValueError:
            raise_invalid_tableau(name, detail=f"unknown scheme class {self.scheme!r}")
        if not _occupancy_matches(a, scheme):
            raise_invalid_tableau(
                name,
                detail=f"A matrix occupancy is not consistent with a {scheme.value} method",
            )

        b_embedded = None
        if (self.b_embedded is None) != (self.embedded_order is None):
            raise_invalid_tableau(
                name,
                detail="b_embedded and embedded_order must be given together",
            )
        if self.b_embedded is not None:
            b_embedded = _frozen_vector(name, "b_embedded", self.b_embedded, s)
            if not np.all(np.isfinite(b_embedded)):
                raise_invalid_tableau(name, detail="embedded weights must be finite")
            if abs(b_embedded.sum() - 1.0) > _ORDER_TOL:
                raise_invalid_tableau(
                    name, detail=f"embedded weights sum to {b_embedded.sum()!r}, not 1"
                )
            eo = self.embedded_order
            if isinstance(eo, bool) or int(eo) != eo or eo < 1:  # type: ignore[arg-type]
                raise_invalid_tableau(
                    name, detail=f"embedded_order must be a positive integer, got {eo!r}"
                )
            object.__setattr__(self, "embedded_order", int(eo))  # type: ignore[arg-type]

        object.__setattr__(self, "A", a)
        object.__setattr__(self, "b", b)
        object.__setattr__(self, "c", c)
        object.__setattr__(self, "order", int(self.order))
        object.__setattr__(self, "scheme", scheme)
        object.__setattr__(self, "b_embedded", b_embedded)

    @classmethod
    def from_coefficients(
        cls,
        name: str,
        A: ArrayLike,  # noqa: N803
        b: ArrayLike,
        c: ArrayLike,
        order: int,
        *,
        b_embedded: ArrayLike | None = None,
        embedded_order: int | None = None,
        scheme: TableauClass | str | None = None,
    ) -> Tableau:
        """Build a tableau by value, inferring the scheme class when omitted.

        Args:
            name: Method name.
            A: Butcher matrix.
            b: Weights.
            c: Nodes.
            order: Declared order.
            b_embedded: Optional embedded weights.
            embedded_order: Order of the embedded weights.
            scheme: Explicit scheme class; inferred from A when None.

        Returns:
            A validated, immutable Tableau.
        """
        resolved = classify_tableau(A) if scheme is None else TableauClass(scheme)
        return cls(
            name=name,
            A=np.asarray(A, dtype=float),
            b=np.asarray(b, dtype=float),
            c=np.asarray(c, dtype=float),
            order=order,
            scheme=resolved,
            b_embedded=None if b_embedded is None else np.asarray(b_embedded, dtype=float),
            embedded_order=embedded_order,
        )

    @property
    def stages(self) -> int:
        """Number of stages S."""
        return int(self.A.shape[0])

    @property
    def is_embedded(self) -> bool:
        """Whether the tableau carries embedded weights for error estimation."""
        return self.b_embedded is not None

    @property
    def is_explicit(self) -> bool:
        """Whether every stage is explicit (ERK)."""
        return self.scheme is TableauClass.ERK

    @property
    def error_order(self) -> int:
        """Order used by the step-size formula.

        For embedded pairs this is the lower of the two orders, since the
        difference of the two solutions behaves like the less accurate one.
        """
        if self.embedded_order is None:
            return self.order
        return min(self.order, self.embedded_order)

    def check(self) -> bool:
        """Verify the declared orders against the Butcher order conditions.

        Orders above 6 cannot be verified and are compared as 6.

        Returns:
            True if the computed order matches the declared order (and the
            embedded order, when present).
        """
        if compute_order(self.A, self.b, self.c) != min(self.order, MAX_CHECKED_ORDER):
            return False
        if self.b_embedded is None or self.embedded_order is None:
            return True
        computed = compute_order(self.A, self.b_embedded, self.c)
        return computed == min(self.embedded_order, MAX_CHECKED_ORDER)

    def __repr__(self) -> str:
        extra = f", embedded_order={self.embedded_order}" if self.is_embedded else ""
        return (
            f"Tableau(name={self.name!r}, scheme={self.scheme.value}, "
            f"stages={self.stages}, order={self.order}{extra})"
        )
