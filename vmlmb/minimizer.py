"""Reverse-communication driver of the VMLMB algorithm.

VMLMB (Variable Metric, Limited Memory, Bounded; E. Thiébaut, "Optimization
issues in blind deconvolution algorithms", SPIE 4847, 2002) minimizes a
smooth function subject to optional box constraints.  The controller never
calls the objective itself: every call to :func:`iterate` returns a
:class:`Task` telling the caller what to do next.  A complete run reads::

    ws = create_workspace(x0, VMLMBConfig(m=5), xmin=0.0)
    task = iterate(ws)
    while not task.terminal:
        if task is Task.FG_REQUEST:
            f, g = objective(ws.x)
            task = iterate(ws, f, g)
        else:
            task = iterate(ws)
    x, f, g = restore(ws)

All state lives in the :class:`Workspace`; independent runs never share
anything.  The caller's starting point is copied, the working iterate is
exposed as ``Workspace.x``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence, Tuple

import numpy as np

from .bounds import BoundMode, active_set, expand_bounds, project_bounds, step_to_bounds
from .convergence import convergence_reason
from .lbfgs import CurvatureMemory
from .linesearch import LineSearch, SearchStatus

__all__ = [
    "Task",
    "VMLMBConfig",
    "Workspace",
    "create_workspace",
    "get_reason",
    "iterate",
    "projected_gradient",
    "restore",
]

LOGGER = logging.getLogger(__name__)


class Task(IntEnum):
    """Request returned to the caller after each step."""

    START = 0
    FG_REQUEST = 1
    FREEVARS_REQUEST = 2
    NEWX = 3
    CONVERGED = 4
    WARNING = 5
    ERROR = 6

    @property
    def terminal(self) -> bool:
        return self >= Task.CONVERGED


@dataclass
class VMLMBConfig:
    """Tuning parameters of the algorithm.

    Parameters
    ----------
    m:
        Number of curvature pairs kept in memory.
    gtol:
        Converge when the projected gradient norm drops below ``gtol``.
    fatol, frtol:
        Converge when an accepted step changes the function by at most
        ``fatol`` or by at most ``frtol`` times its previous magnitude.
    sftol, sgtol, sxtol:
        Line search sufficient decrease, curvature and interval width
        tolerances.
    epsilon:
        A quasi-Newton direction whose angle with the projected anti-gradient
        has a cosine not above ``epsilon`` triggers a restart.
    delta:
        Scale of the steepest-descent step used without curvature information.
    stpmax:
        Absolute upper bound for the line search step.
    ls_max_iter:
        Function evaluations allowed in a single line search.

    A tolerance of zero disables the corresponding convergence test.
    """

    m: int = 3
    gtol: float = 0.0
    fatol: float = 0.0
    frtol: float = 1e-8
    sftol: float = 0.001
    sgtol: float = 0.9
    sxtol: float = 0.1
    epsilon: float = 0.01
    delta: float = 0.1
    stpmax: float = 1e20
    ls_max_iter: int = 30

    def __post_init__(self) -> None:
        if int(self.m) != self.m or self.m < 1:
            raise ValueError("m must be a positive integer")
        self.m = int(self.m)
        for name in ("gtol", "fatol", "frtol"):
            if not getattr(self, name) >= 0.0:
                raise ValueError(f"{name} must be non-negative")
        if not 0.0 < self.sftol < self.sgtol < 1.0:
            raise ValueError("Line search tolerances must satisfy 0 < sftol < sgtol < 1")
        if not 0.0 <= self.sxtol < 1.0:
            raise ValueError("sxtol must lie in [0, 1)")
        if not 0.0 <= self.epsilon < 1.0:
            raise ValueError("epsilon must lie in [0, 1)")
        if not self.delta > 0.0:
            raise ValueError("delta must be positive")
        if not self.stpmax > 0.0:
            raise ValueError("stpmax must be positive")
        if int(self.ls_max_iter) != self.ls_max_iter or self.ls_max_iter < 1:
            raise ValueError("ls_max_iter must be a positive integer")
        self.ls_max_iter = int(self.ls_max_iter)


@dataclass
class Workspace:
    """State of one minimization run."""

    config: VMLMBConfig
    x: np.ndarray
    xmin: Optional[np.ndarray]
    xmax: Optional[np.ndarray]
    mode: BoundMode
    memory: CurvatureMemory
    search: LineSearch
    task: Task = Task.START
    reason: str = ""
    f: float = math.nan
    g: Optional[np.ndarray] = None
    # line search start point, i.e. the last accepted iterate
    x0: Optional[np.ndarray] = None
    f0: float = math.nan
    g0: Optional[np.ndarray] = None
    d: Optional[np.ndarray] = None
    # d with the components clipped at the current trial point zeroed
    d_eff: Optional[np.ndarray] = None
    active: Optional[np.ndarray] = None
    stpmax_at_bounds: bool = False
    evaluations: int = 0
    iterations: int = 0

    @property
    def size(self) -> int:
        return self.x.size


def create_workspace(
    x0: Sequence[float],
    config: VMLMBConfig | None = None,
    *,
    xmin=None,
    xmax=None,
) -> Workspace:
    """Create the workspace of a new run starting at *x0*.

    *x0* is copied and flattened.  *xmin* and *xmax* are ``None``, scalars or
    arrays with as many elements as *x0*.  Invalid bounds or settings raise
    :class:`ValueError`.
    """

    cfg = config if config is not None else VMLMBConfig()
    x = np.array(x0, dtype=float).ravel()
    if x.size == 0:
        raise ValueError("The starting point must have at least one variable")
    lower, upper, mode = expand_bounds(xmin, xmax, x.size)
    return Workspace(
        config=cfg,
        x=x,
        xmin=lower,
        xmax=upper,
        mode=mode,
        memory=CurvatureMemory(x.size, cfg.m, epsilon=cfg.epsilon, delta=cfg.delta),
        search=LineSearch(cfg.sftol, cfg.sgtol, cfg.sxtol, cfg.ls_max_iter),
    )


def _set_task(ws: Workspace, task: Task, reason: str = "") -> Task:
    ws.task = task
    ws.reason = reason
    if task.terminal:
        LOGGER.debug("VMLMB stopped with %s: %s", task.name, reason)
    return task


def projected_gradient(ws: Workspace) -> np.ndarray:
    """Gradient at ``ws.x`` with the blocked components set to zero.

    Also refreshes ``ws.active``.
    """

    ws.active = active_set(ws.x, ws.g, ws.xmin, ws.xmax, ws.mode)
    return np.where(ws.active, 0.0, ws.g)


def _convergence(ws: Workspace, f_prev: Optional[float]) -> Optional[str]:
    cfg = ws.config
    return convergence_reason(
        projected_gradient(ws), f_prev, ws.f, gtol=cfg.gtol, fatol=cfg.fatol, frtol=cfg.frtol
    )


def _trial_point(ws: Workspace) -> None:
    x = ws.x0 + ws.search.stp * ws.d
    if ws.mode == BoundMode.NONE:
        ws.d_eff = ws.d
    else:
        clipped = np.zeros(x.shape, dtype=bool)
        if ws.mode & BoundMode.LOWER:
            clipped |= x < ws.xmin
        if ws.mode & BoundMode.UPPER:
            clipped |= x > ws.xmax
        ws.d_eff = np.where(clipped, 0.0, ws.d)
    ws.x = project_bounds(x, ws.xmin, ws.xmax, ws.mode)


def _on_evaluation(ws: Workspace, f: Optional[float], g) -> Task:
    if f is None or g is None:
        raise ValueError("The function value and its gradient are required on FG_REQUEST")
    g_arr = np.array(g, dtype=float).ravel()
    if g_arr.size != ws.size:
        raise ValueError(f"Gradient has {g_arr.size} elements, expected {ws.size}")

    ws.evaluations += 1
    ws.f = float(f)
    ws.g = g_arr
    if not (math.isfinite(ws.f) and np.all(np.isfinite(g_arr))):
        return _set_task(ws, Task.ERROR, "function value or gradient is not finite")

    search = ws.search
    if not search.running:
        reason = _convergence(ws, None)
        if reason is not None:
            return _set_task(ws, Task.CONVERGED, reason)
        return _set_task(ws, Task.FREEVARS_REQUEST)

    status = search.iterate(ws.f, float(np.dot(g_arr, ws.d_eff)))
    if status is SearchStatus.FG:
        _trial_point(ws)
        return _set_task(ws, Task.FG_REQUEST)
    if status is SearchStatus.CONVERGED:
        return _set_task(ws, Task.NEWX)
    if status is SearchStatus.WARNING:
        if ws.stpmax_at_bounds and search.stp == search.stpmax and ws.f < ws.f0:
            # the step stopped where every moving variable hit a bound
            return _set_task(ws, Task.NEWX)
        return _set_task(ws, Task.WARNING, search.reason)
    return _set_task(ws, Task.ERROR, search.reason)


def _start_search(ws: Workspace) -> Task:
    cfg = ws.config
    if not np.any(projected_gradient(ws)):
        return _set_task(ws, Task.CONVERGED, "projected gradient is zero")

    d = ws.memory.build_direction(ws.g, ws.active)
    stpmax = cfg.stpmax
    ws.stpmax_at_bounds = False
    if ws.mode != BoundMode.NONE:
        # positive for any descent direction on the free variables
        bstp = step_to_bounds(ws.x, d, ws.xmin, ws.xmax, ws.mode)
        if bstp < stpmax:
            stpmax = bstp
            ws.stpmax_at_bounds = True

    ws.x0 = ws.x.copy()
    ws.f0 = ws.f
    ws.g0 = ws.g.copy()
    ws.d = d
    status = ws.search.start(ws.f, float(np.dot(ws.g, d)), min(1.0, stpmax), 0.0, stpmax)
    if status is SearchStatus.ERROR:
        return _set_task(ws, Task.ERROR, ws.search.reason)
    _trial_point(ws)
    return _set_task(ws, Task.FG_REQUEST)


def _accept(ws: Workspace) -> Task:
    ws.memory.push(ws.x - ws.x0, ws.g - ws.g0)
    ws.iterations += 1
    reason = _convergence(ws, ws.f0)
    if reason is not None:
        return _set_task(ws, Task.CONVERGED, reason)
    return _set_task(ws, Task.FREEVARS_REQUEST)


def iterate(ws: Workspace, f: Optional[float] = None, g=None) -> Task:
    """Advance the run by one step and return the next task.

    ``f`` and ``g`` must be the function value and gradient at ``ws.x``
    whenever the current task is :attr:`Task.FG_REQUEST`; they are ignored
    otherwise.  Numerical failures are reported through the returned task and
    :func:`get_reason`, never raised.  A terminal task is returned unchanged.
    """

    task = ws.task
    if task is Task.START:
        project_bounds(ws.x, ws.xmin, ws.xmax, ws.mode)
        return _set_task(ws, Task.FG_REQUEST)
    if task is Task.FG_REQUEST:
        return _on_evaluation(ws, f, g)
    if task is Task.FREEVARS_REQUEST:
        return _start_search(ws)
    if task is Task.NEWX:
        return _accept(ws)
    return task


def restore(ws: Workspace) -> Tuple[np.ndarray, float, Optional[np.ndarray]]:
    """Return the best point of the run as ``(x, f, g)``.

    When the last evaluated trial point is worse than the start of the
    current line search (for instance after a warning or an error), the
    workspace is reset to that start point first.
    """

    if ws.x0 is not None and not ws.f <= ws.f0:
        ws.x = ws.x0.copy()
        ws.f = ws.f0
        ws.g = ws.g0.copy()
    return ws.x, ws.f, ws.g


def get_reason(ws: Workspace) -> str:
    """Human readable explanation of the current task."""

    return ws.reason
