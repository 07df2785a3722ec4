"""Moré & Thuente line search driven by reverse communication.

The search works on the scalar function ``phi(t)`` obtained by restricting the
objective to a ray ``x0 + t*d``.  The caller starts it with ``phi(0)`` and
``phi'(0)``, then repeatedly evaluates ``phi`` and ``phi'`` at
:attr:`LineSearch.stp` and feeds them back through :meth:`LineSearch.iterate`
until the returned status is no longer :attr:`SearchStatus.FG`.

The step is accepted when it satisfies the sufficient decrease condition::

    phi(t) <= phi(0) + sftol * t * phi'(0)

and the curvature condition::

    |phi'(t)| <= sgtol * |phi'(0)|

Trial steps come from safeguarded cubic and quadratic interpolation inside an
interval known to contain such a step (J. J. Moré and D. J. Thuente, "Line
search algorithms with guaranteed sufficient decrease", ACM TOMS 20, 1994).
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Tuple

__all__ = ["LineSearch", "SearchStatus"]

_XTRAPL = 1.1
_XTRAPU = 4.0
_P66 = 0.66


class SearchStatus(Enum):
    FG = "fg"
    CONVERGED = "converged"
    WARNING = "warning"
    ERROR = "error"


def _cubic_minimizer(stx, fx, dx, stp, fp, dp, *, clamp: bool = False) -> Tuple[float, float]:
    """Return ``(gamma, theta)`` of the cubic interpolating two points and slopes."""

    theta = 3.0 * (fx - fp) / (stp - stx) + dx + dp
    s = max(abs(theta), abs(dx), abs(dp))
    disc = (theta / s) ** 2 - (dx / s) * (dp / s)
    if clamp or disc < 0.0:
        disc = max(0.0, disc)
    return s * math.sqrt(disc), theta


def _cstep(stx, fx, dx, sty, fy, dy, stp, fp, dp, bracketed, stpmin, stpmax):
    """Compute a safeguarded trial step and update the interval of uncertainty.

    ``stx`` is the best step so far, ``sty`` the other end of the interval
    and ``stp`` the current trial step.  The derivative at ``stx`` must point
    towards ``stp``.  Returns the updated ``(stx, fx, dx, sty, fy, dy)``, the
    new trial step and the bracketing flag.
    """

    sgnd = dp * math.copysign(1.0, dx)

    if fp > fx:
        # Higher function value: the minimum is bracketed.
        gamma, theta = _cubic_minimizer(stx, fx, dx, stp, fp, dp)
        if stp < stx:
            gamma = -gamma
        p = (gamma - dx) + theta
        q = ((gamma - dx) + gamma) + dp
        stpc = stx + (p / q) * (stp - stx)
        stpq = stx + ((dx / ((fx - fp) / (stp - stx) + dx)) / 2.0) * (stp - stx)
        if abs(stpc - stx) <= abs(stpq - stx):
            stpf = stpc
        else:
            stpf = stpc + (stpq - stpc) / 2.0
        bracketed = True
    elif sgnd < 0.0:
        # Lower function value and derivatives of opposite sign: bracketed.
        gamma, theta = _cubic_minimizer(stx, fx, dx, stp, fp, dp)
        if stp > stx:
            gamma = -gamma
        p = (gamma - dp) + theta
        q = ((gamma - dp) + gamma) + dx
        stpc = stp + (p / q) * (stx - stp)
        stpq = stp + (dp / (dp - dx)) * (stx - stp)
        stpf = stpc if abs(stpc - stp) > abs(stpq - stp) else stpq
        bracketed = True
    elif abs(dp) < abs(dx):
        # Lower value, same sign, decreasing slope magnitude.
        gamma, theta = _cubic_minimizer(stx, fx, dx, stp, fp, dp, clamp=True)
        if stp > stx:
            gamma = -gamma
        p = (gamma - dp) + theta
        q = (gamma + (dx - dp)) + gamma
        r = p / q
        if r < 0.0 and gamma != 0.0:
            stpc = stp + r * (stx - stp)
        elif stp > stx:
            stpc = stpmax
        else:
            stpc = stpmin
        stpq = stp + (dp / (dp - dx)) * (stx - stp)

        if bracketed:
            stpf = stpc if abs(stpc - stp) < abs(stpq - stp) else stpq
            if stp > stx:
                stpf = min(stp + _P66 * (sty - stp), stpf)
            else:
                stpf = max(stp + _P66 * (sty - stp), stpf)
        else:
            stpf = stpc if abs(stpc - stp) > abs(stpq - stp) else stpq
            stpf = min(stpmax, max(stpmin, stpf))
    else:
        # Lower value, same sign, slope magnitude does not decrease.
        if bracketed:
            gamma, theta = _cubic_minimizer(sty, fy, dy, stp, fp, dp)
            if stp > sty:
                gamma = -gamma
            p = (gamma - dp) + theta
            q = ((gamma - dp) + gamma) + dy
            stpf = stp + (p / q) * (sty - stp)
        elif stp > stx:
            stpf = stpmax
        else:
            stpf = stpmin

    if fp > fx:
        sty, fy, dy = stp, fp, dp
    else:
        if sgnd < 0.0:
            sty, fy, dy = stx, fx, dx
        stx, fx, dx = stp, fp, dp

    return stx, fx, dx, sty, fy, dy, stpf, bracketed


class LineSearch:
    """Reverse-communication line search.

    Parameters
    ----------
    sftol:
        Sufficient decrease constant.
    sgtol:
        Curvature constant; ``sftol < sgtol`` guarantees that an acceptable
        step exists for objectives bounded below.
    sxtol:
        Relative width below which the interval of uncertainty is considered
        collapsed.
    max_iter:
        Maximum number of function evaluations in a single search.
    """

    def __init__(self, sftol: float = 1e-3, sgtol: float = 0.9, sxtol: float = 0.1, max_iter: int = 30):
        self.sftol = float(sftol)
        self.sgtol = float(sgtol)
        self.sxtol = float(sxtol)
        self.max_iter = int(max_iter)
        self.status: SearchStatus | None = None
        self.reason = ""
        self.stp = 0.0
        self.stpmin = 0.0
        self.stpmax = 0.0
        self.evaluations = 0

    @property
    def running(self) -> bool:
        return self.status is SearchStatus.FG

    def _finish(self, status: SearchStatus, reason: str) -> SearchStatus:
        self.status = status
        self.reason = reason
        return status

    def start(self, f0: float, dg0: float, stp: float, stpmin: float = 0.0, stpmax: float = 1e20) -> SearchStatus:
        """Begin a new search from ``phi(0) = f0`` with slope ``phi'(0) = dg0``."""

        self.evaluations = 0
        self.stpmin = float(stpmin)
        self.stpmax = float(stpmax)
        if self.stpmin < 0.0:
            return self._finish(SearchStatus.ERROR, "minimum step is negative")
        if self.stpmax < self.stpmin:
            return self._finish(SearchStatus.ERROR, "maximum step is smaller than minimum step")
        if stp < self.stpmin:
            return self._finish(SearchStatus.ERROR, "initial step is below the minimum step")
        if stp > self.stpmax:
            return self._finish(SearchStatus.ERROR, "initial step is above the maximum step")
        if not dg0 < 0.0:
            return self._finish(SearchStatus.ERROR, "search direction is not a descent direction")

        self._bracketed = False
        self._stage = 1
        self._finit = float(f0)
        self._ginit = float(dg0)
        self._gtest = self.sftol * self._ginit
        self._width = self.stpmax - self.stpmin
        self._width1 = 2.0 * self._width

        # (stx, fx, gx) is the best step so far, (sty, fy, gy) the other end
        # of the interval of uncertainty.
        self._stx, self._fx, self._gx = 0.0, self._finit, self._ginit
        self._sty, self._fy, self._gy = 0.0, self._finit, self._ginit
        self._stmin = 0.0
        self._stmax = stp + _XTRAPU * stp
        self.stp = float(stp)
        return self._finish(SearchStatus.FG, "")

    def iterate(self, f: float, dg: float) -> SearchStatus:
        """Process ``phi(stp) = f`` and ``phi'(stp) = dg``; may update :attr:`stp`."""

        if self.status is not SearchStatus.FG:
            raise RuntimeError("Line search is not running")
        self.evaluations += 1
        stp = self.stp
        ftest = self._finit + stp * self._gtest

        if self._stage == 1 and f <= ftest and dg >= 0.0:
            self._stage = 2

        if f <= ftest and abs(dg) <= -self.sgtol * self._ginit:
            return self._finish(SearchStatus.CONVERGED, "sufficient decrease and curvature conditions hold")
        if stp == self.stpmin and (f > ftest or dg >= self._gtest):
            return self._finish(SearchStatus.WARNING, "step is at the lower bound stpmin")
        if stp == self.stpmax and f <= ftest and dg <= self._gtest:
            return self._finish(SearchStatus.WARNING, "step is at the upper bound stpmax")
        if self._bracketed and self._stmax - self._stmin <= self.sxtol * self._stmax:
            return self._finish(SearchStatus.WARNING, "relative width of the interval of uncertainty is at most sxtol")
        if self._bracketed and (stp <= self._stmin or stp >= self._stmax):
            return self._finish(SearchStatus.WARNING, "rounding errors prevent progress")
        if self.evaluations >= self.max_iter:
            return self._finish(SearchStatus.ERROR, "too many function evaluations in line search")

        if self._stage == 1 and f <= self._fx and f > ftest:
            # Modified function psi(t) = phi(t) - phi(0) - sftol*t*phi'(0)
            # while a lower value has been found but the decrease is not
            # sufficient.
            gtest = self._gtest
            stx, fxm, gxm, sty, fym, gym, stp, self._bracketed = _cstep(
                self._stx,
                self._fx - self._stx * gtest,
                self._gx - gtest,
                self._sty,
                self._fy - self._sty * gtest,
                self._gy - gtest,
                stp,
                f - stp * gtest,
                dg - gtest,
                self._bracketed,
                self._stmin,
                self._stmax,
            )
            self._stx, self._sty = stx, sty
            self._fx = fxm + stx * gtest
            self._fy = fym + sty * gtest
            self._gx = gxm + gtest
            self._gy = gym + gtest
        else:
            (
                self._stx,
                self._fx,
                self._gx,
                self._sty,
                self._fy,
                self._gy,
                stp,
                self._bracketed,
            ) = _cstep(
                self._stx,
                self._fx,
                self._gx,
                self._sty,
                self._fy,
                self._gy,
                stp,
                f,
                dg,
                self._bracketed,
                self._stmin,
                self._stmax,
            )

        if self._bracketed:
            # Force a bisection when the interval does not shrink fast enough.
            if abs(self._sty - self._stx) >= _P66 * self._width1:
                stp = self._stx + 0.5 * (self._sty - self._stx)
            self._width1 = self._width
            self._width = abs(self._sty - self._stx)
            self._stmin = min(self._stx, self._sty)
            self._stmax = max(self._stx, self._sty)
        else:
            self._stmin = stp + _XTRAPL * (stp - self._stx)
            self._stmax = stp + _XTRAPU * (stp - self._stx)

        stp = min(self.stpmax, max(self.stpmin, stp))

        if self._bracketed and (
            stp <= self._stmin or stp >= self._stmax or self._stmax - self._stmin <= self.sxtol * self._stmax
        ):
            stp = self._stx

        self.stp = stp
        return SearchStatus.FG
