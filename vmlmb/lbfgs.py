"""Limited-memory BFGS curvature store with a bound-aware two-loop recursion.

The store keeps the ``m`` most recent pairs ``s = x_k - x_{k-1}`` and
``y = g_k - g_{k-1}`` and builds the search direction ``d ~ -H g`` of the
variable metric method.  When an active set is given the recursion works in
the subspace of the free variables only, so the direction never moves a
blocked coordinate.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Sequence, Tuple

import numpy as np

__all__ = ["CurvatureMemory"]

LOGGER = logging.getLogger(__name__)


@dataclass
class CurvatureMemory:
    size: int
    memory: int = 3
    epsilon: float = 0.01
    delta: float = 0.1
    pairs: Deque[Tuple[np.ndarray, np.ndarray, float]] = field(init=False, repr=False, compare=False)
    rejected: int = 0
    restarts: int = 0

    def __post_init__(self) -> None:
        if int(self.memory) != self.memory or self.memory < 1:
            raise ValueError("The number of stored pairs must be a positive integer")
        self.memory = int(self.memory)
        self.pairs = deque(maxlen=self.memory)

    def __len__(self) -> int:
        return len(self.pairs)

    def clear(self) -> None:
        """Forget every stored pair."""

        self.pairs.clear()

    def restart(self) -> None:
        """Drop the stored pairs and count a restart of the variable metric."""

        self.restarts += 1
        self.clear()

    def push(self, s: Sequence[float], y: Sequence[float]) -> bool:
        """Store the pair ``(s, y)`` unless its curvature ``s.y`` is not positive.

        Returns ``True`` when the pair was stored.  The oldest pair is evicted
        once ``memory`` pairs are held.
        """

        s_arr = np.array(s, dtype=float)
        y_arr = np.array(y, dtype=float)
        if s_arr.shape != (self.size,) or y_arr.shape != (self.size,):
            raise ValueError("Curvature pair does not match the problem size")
        rho = float(np.dot(s_arr, y_arr))
        if not rho > 0.0:
            self.rejected += 1
            LOGGER.debug("Rejected curvature pair with s.y = %.3e", rho)
            return False
        self.pairs.append((s_arr, y_arr, rho))
        return True

    def _steepest_descent(self, g: np.ndarray, free: Optional[np.ndarray]) -> np.ndarray:
        d = -self.delta * g
        if free is not None:
            d[~free] = 0.0
        return d

    def build_direction(self, g: Sequence[float], active: Optional[np.ndarray] = None) -> np.ndarray:
        """Return the quasi-Newton search direction for gradient *g*.

        Parameters
        ----------
        g:
            Gradient at the current iterate.
        active:
            Optional boolean mask of blocked coordinates.  Those components of
            the result are exactly zero.

        Returns
        -------
        numpy.ndarray
            A descent direction.  When the recursion does not produce a
            direction within ``acos(epsilon)`` of the projected anti-gradient,
            the memory is cleared and ``-delta * g`` (restricted to the free
            coordinates) is returned instead.
        """

        g_arr = np.asarray(g, dtype=float)
        if g_arr.shape != (self.size,):
            raise ValueError("Gradient does not match the problem size")

        free = None
        if active is not None and np.any(active):
            free = ~np.asarray(active, dtype=bool)

        if free is None:
            d = g_arr.copy()
        else:
            d = np.where(free, g_arr, 0.0)

        used = []
        for s, y, rho in reversed(self.pairs):
            if free is not None:
                s = np.where(free, s, 0.0)
                y = np.where(free, y, 0.0)
                rho = float(np.dot(s, y))
                if rho <= 0.0:
                    continue
            alpha = float(np.dot(s, d)) / rho
            d -= alpha * y
            used.append((s, y, rho, alpha))

        if not used:
            return self._steepest_descent(g_arr, free)

        s, y, rho, _ = used[0]
        gamma = rho / float(np.dot(y, y))
        d *= gamma

        for s, y, rho, alpha in reversed(used):
            beta = float(np.dot(y, d)) / rho
            d += (alpha - beta) * s

        np.negative(d, out=d)
        if free is not None:
            d[~free] = 0.0

        gnorm = float(np.linalg.norm(g_arr if free is None else g_arr[free]))
        dnorm = float(np.linalg.norm(d))
        if not -float(np.dot(d, g_arr)) > self.epsilon * dnorm * gnorm:
            self.restart()
            LOGGER.debug("Search direction not sufficiently descending; restarting with steepest descent")
            return self._steepest_descent(g_arr, free)
        return d
