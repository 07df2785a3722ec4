"""Box constraints: bound expansion, projection and active-set detection."""

from __future__ import annotations

from enum import IntFlag
from typing import Optional, Tuple

import numpy as np

__all__ = ["BoundMode", "active_set", "expand_bounds", "project_bounds", "step_to_bounds"]


class BoundMode(IntFlag):
    """Which bounds are configured; bit 1 is the lower bound, bit 2 the upper."""

    NONE = 0
    LOWER = 1
    UPPER = 2
    BOTH = 3


def _expand(bound, n: int, name: str) -> Optional[np.ndarray]:
    if bound is None:
        return None
    arr = np.asarray(bound, dtype=float)
    if arr.ndim == 0:
        return np.full(n, float(arr), dtype=float)
    arr = arr.ravel().copy()
    if arr.size != n:
        raise ValueError(f"{name} has {arr.size} elements but the problem has {n} variables")
    return arr


def expand_bounds(xmin, xmax, n: int) -> Tuple[Optional[np.ndarray], Optional[np.ndarray], BoundMode]:
    """Broadcast *xmin* and *xmax* to ``n`` coordinates and derive the bound mode.

    Each bound may be ``None``, a scalar or an array holding ``n`` elements
    (any shape, it is flattened).  Inconsistent bounds are rejected here once
    so that :func:`project_bounds` can assume ``xmin <= xmax``.
    """

    lower = _expand(xmin, n, "xmin")
    upper = _expand(xmax, n, "xmax")

    mode = BoundMode.NONE
    if lower is not None:
        mode |= BoundMode.LOWER
    if upper is not None:
        mode |= BoundMode.UPPER

    if mode == BoundMode.BOTH:
        bad = np.flatnonzero(lower > upper)
        if bad.size:
            raise ValueError(
                f"Lower bound exceeds upper bound for {bad.size} coordinate(s), first at index {bad[0]}"
            )
    return lower, upper, mode


def project_bounds(
    x: np.ndarray,
    xmin: Optional[np.ndarray],
    xmax: Optional[np.ndarray],
    mode: BoundMode,
) -> np.ndarray:
    """Clamp *x* in place into ``[xmin, xmax]`` and return it.

    Only the bounds selected by *mode* are applied.  ``xmin <= xmax`` is a
    precondition and is not checked.
    """

    if mode & BoundMode.LOWER:
        np.maximum(x, xmin, out=x)
    if mode & BoundMode.UPPER:
        np.minimum(x, xmax, out=x)
    return x


def active_set(
    x: np.ndarray,
    g: np.ndarray,
    xmin: Optional[np.ndarray],
    xmax: Optional[np.ndarray],
    mode: BoundMode,
) -> np.ndarray:
    """Return a boolean mask of the coordinates blocked by a bound.

    A coordinate sitting on its lower bound is free again as soon as the
    gradient is negative (the steepest-descent step points back inside), and
    symmetrically for the upper bound.  With both bounds a coordinate must be
    free with respect to each of them.
    """

    free = np.ones(x.shape, dtype=bool)
    if mode & BoundMode.LOWER:
        free &= (x > xmin) | (g < 0.0)
    if mode & BoundMode.UPPER:
        free &= (x < xmax) | (g > 0.0)
    return ~free


def step_to_bounds(
    x: np.ndarray,
    d: np.ndarray,
    xmin: Optional[np.ndarray],
    xmax: Optional[np.ndarray],
    mode: BoundMode,
) -> float:
    """Smallest step ``t >= 0`` beyond which ``x + t*d`` no longer moves after projection.

    Returns ``inf`` when some moving coordinate is unbounded in its direction
    of travel and ``0.0`` when nothing can move.
    """

    stpmax = 0.0
    up = d > 0.0
    down = d < 0.0
    if np.any(up):
        if not mode & BoundMode.UPPER:
            return np.inf
        stpmax = max(stpmax, float(np.max((xmax[up] - x[up]) / d[up])))
    if np.any(down):
        if not mode & BoundMode.LOWER:
            return np.inf
        stpmax = max(stpmax, float(np.max((xmin[down] - x[down]) / d[down])))
    return stpmax
