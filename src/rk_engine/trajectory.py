# src/rk_engine/trajectory.py
"""Append-only storage of accepted integration samples.

A :class:`Trajectory` records, for every accepted step, the time, the state,
the invariant residual h(x, t) (empty when the system has no invariants) and,
optionally, the stage derivatives of the attempt that produced the sample.
Samples can only be appended, and times must strictly increase.

Accessors return read-only array views assembled on demand, so callers can
never mutate recorded samples.
"""

from __future__ import annotations

from typing import Any, Final

import numpy as np
import numpy.typing as npt

# Error / message constants -------------------------------------------------

_STATE_SHAPE_ERROR: Final[str] = "State shape {actual} does not match expected {expected}"
_INVARIANT_SHAPE_ERROR: Final[str] = (
    "Invariant shape {actual} does not match expected {expected}"
)
_TIME_MONOTONE_ERROR: Final[str] = (
    "Sample time {t!r} must be greater than the last time {last!r}"
)
_TIME_FINITE_ERROR: Final[str] = "Sample time must be finite, got {t!r}"
_STAGES_NOT_STORED_ERROR: Final[str] = (
    "Stage values are not stored (store_stages=False); stages is unavailable."
)
_EMPTY_ERROR: Final[str] = "Trajectory is empty"
_INDEX_OOB_ERROR: Final[str] = "Sample index out of bounds: {idx}"


# Typing helpers ------------------------------------------------------------

FloatArray = npt.NDArray[np.floating[Any]]


def _readonly(arr: np.ndarray) -> FloatArray:
    arr.setflags(write=False)
    return arr


class Trajectory:
    """Ordered sequence of accepted (t, x) samples."""

    def __init__(
        self,
        n_states: int,
        n_invariants: int = 0,
        *,
        store_stages: bool = False,
    ) -> None:
        """
        Initialize an empty trajectory.

        Args:
            n_states: State dimension N.
            n_invariants: Invariant dimension M.
            store_stages: Whether stage derivatives are recorded per sample.
        """
        self.n_states = int(n_states)
        self.n_invariants = int(n_invariants)
        self.store_stages = bool(store_stages)
        self._times: list[float] = []
        self._states: list[FloatArray] = []
        self._invariants: list[FloatArray] = []
        self._stages: list[FloatArray | None] = []

    def __len__(self) -> int:
        return len(self._times)

    def __repr__(self) -> str:
        span = f"[{self._times[0]:.6g}, {self._times[-1]:.6g}]" if self._times else "[]"
        return f"Trajectory(samples={len(self)}, span={span}, n_states={self.n_states})"

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(
        self,
        t: float,
        x: npt.ArrayLike,
        *,
        invariant: npt.ArrayLike | None = None,
        stages: npt.ArrayLike | None = None,
    ) -> None:
        """
        Append one accepted sample.

        Args:
            t: Sample time; must exceed the last recorded time.
            x: State, shape (N,).
            invariant: Invariant residual, shape (M,); zeros(0) when M = 0.
            stages: Stage derivatives (S, N), recorded when store_stages=True.

        Raises:
            ValueError: On a non-increasing time or a shape mismatch.
        """
        t_val = float(t)
        if not np.isfinite(t_val):
            raise ValueError(_TIME_FINITE_ERROR.format(t=t))
        if self._times and t_val <= self._times[-1]:
            raise ValueError(_TIME_MONOTONE_ERROR.format(t=t_val, last=self._times[-1]))

        state = np.array(x, dtype=float, copy=True)
        if state.shape != (self.n_states,):
            raise ValueError(
                _STATE_SHAPE_ERROR.format(actual=state.shape, expected=(self.n_states,))
            )

        if invariant is None:
            inv = np.zeros(self.n_invariants, dtype=float)
        else:
            inv = np.array(invariant, dtype=float, copy=True).reshape(-1)
        if inv.shape != (self.n_invariants,):
            raise ValueError(
                _INVARIANT_SHAPE_ERROR.format(actual=inv.shape, expected=(self.n_invariants,))
            )

        stage_copy = None
        if self.store_stages and stages is not None:
            stage_copy = _readonly(np.array(stages, dtype=float, copy=True))

        self._times.append(t_val)
        self._states.append(_readonly(state))
        self._invariants.append(_readonly(inv))
        self._stages.append(stage_copy)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @property
    def times(self) -> FloatArray:
        """Sample times, shape (K,)."""
        return _readonly(np.asarray(self._times, dtype=float))

    @property
    def states(self) -> FloatArray:
        """Sample states, shape (K, N)."""
        if not self._states:
            return _readonly(np.zeros((0, self.n_states), dtype=float))
        return _readonly(np.vstack(self._states))

    @property
    def invariants(self) -> FloatArray:
        """Invariant residuals, shape (K, M)."""
        if not self._invariants:
            return _readonly(np.zeros((0, self.n_invariants), dtype=float))
        return _readonly(np.vstack(self._invariants))

    @property
    def stages(self) -> list[FloatArray | None]:
        """Per-sample stage derivatives (None for samples without stages).

        These are the stages of the attempt that produced each sample. With
        step doubling they belong to the full step, while the recorded state
        is the two-half-step result.

        Raises:
            RuntimeError: If the trajectory does not store stages.
        """
        if not self.store_stages:
            raise RuntimeError(_STAGES_NOT_STORED_ERROR)
        return list(self._stages)

    @property
    def final_time(self) -> float:
        """Time of the last sample."""
        if not self._times:
            raise IndexError(_EMPTY_ERROR)
        return self._times[-1]

    @property
    def final_state(self) -> FloatArray:
        """State of the last sample."""
        if not self._states:
            raise IndexError(_EMPTY_ERROR)
        return self._states[-1]

    def get_state_at(self, idx: int) -> FloatArray:
        """
        Return the state of sample idx.

        Args:
            idx: Sample index (negative indices count from the end).

        Raises:
            IndexError: If idx is out of range.

        Returns:
            Read-only state array of shape (N,).
        """
        n = len(self._states)
        if not -n <= idx < n:
            raise IndexError(_INDEX_OOB_ERROR.format(idx=idx))
        return self._states[idx]

    def max_invariant_norm(self) -> float:
        """Largest ||h(x_i, t_i)|| over all samples (0 when M = 0 or empty)."""
        if self.n_invariants == 0 or not self._invariants:
            return 0.0
        return float(max(np.linalg.norm(v) for v in self._invariants))
