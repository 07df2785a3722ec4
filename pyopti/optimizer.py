"""Outer iteration loop around the reverse-communication VMLMB core."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import xarray as xr

from vmlmb import Task, VMLMBConfig, create_workspace, get_reason, iterate, projected_gradient, restore

from .output import IterationSnapshot, OutputRecorder

__all__ = ["OptimizationResult", "run_vmlmb"]

LOGGER = logging.getLogger(__name__)

CostFunction = Callable[[np.ndarray], Tuple[float, np.ndarray]]

_STATUS = {
    Task.CONVERGED: "converged",
    Task.WARNING: "warning",
    Task.ERROR: "error",
}


@dataclass(slots=True)
class OptimizationResult:
    """Outcome of :func:`run_vmlmb`."""

    x: np.ndarray
    f: float
    grad: np.ndarray
    status: str
    reason: str
    niter: int
    nevals: int
    elapsed: float
    history: xr.Dataset | None = None

    @property
    def converged(self) -> bool:
        return self.status == "converged"


def run_vmlmb(
    cost: CostFunction,
    x0: Sequence[float],
    *,
    xmin=None,
    xmax=None,
    maxiter: int = 100,
    config: VMLMBConfig | None = None,
    callback: Optional[Callable[[IterationSnapshot], None]] = None,
    update_every: int = 1,
    verbose: bool = False,
    record: bool = False,
    store_iterates: bool = False,
) -> OptimizationResult:
    """Minimize *cost* from *x0* subject to optional bounds.

    Parameters
    ----------
    cost:
        Callable returning the function value and its gradient at a point
        shaped like *x0*.
    x0:
        Starting point.  It is copied; the caller's array is never modified.
    xmin, xmax:
        Optional lower and upper bounds, scalars or arrays with as many
        elements as *x0*.
    maxiter:
        Maximum number of accepted iterations.  Reaching it yields the status
        ``"max_iter"``.
    config:
        Algorithm settings, defaults to :class:`vmlmb.VMLMBConfig`.
    callback:
        Called with an :class:`IterationSnapshot` every *update_every*
        accepted iterations.
    verbose:
        Log each iteration at ``INFO`` instead of ``DEBUG`` level.
    record:
        Collect the history with an :class:`OutputRecorder` and return it as
        ``result.history``.
    store_iterates:
        Also keep every iterate in the recorded history, see
        :class:`OutputRecorder`.
    """

    if int(maxiter) < 1:
        raise ValueError("maxiter must be at least 1")
    if int(update_every) < 1:
        raise ValueError("update_every must be at least 1")

    x0_arr = np.asarray(x0, dtype=float)
    shape = x0_arr.shape
    ws = create_workspace(x0_arr, config, xmin=xmin, xmax=xmax)

    recorder = OutputRecorder(store_iterates) if record else None
    callbacks = [cb for cb in (recorder, callback) if cb is not None]
    level = logging.INFO if verbose else logging.DEBUG

    LOGGER.info(
        "Starting VMLMB on %d variables (m=%d, bounds=%s, maxiter=%d)",
        ws.size,
        ws.config.m,
        ws.mode.name,
        maxiter,
    )
    tstart = time.perf_counter()
    niter = 0
    status: str | None = None
    reason = ""

    task = iterate(ws)
    while status is None:
        if task is Task.FG_REQUEST:
            f, g = cost(ws.x.reshape(shape))
            task = iterate(ws, f, g)
        elif task is Task.NEWX:
            niter += 1
            elapsed = time.perf_counter() - tstart
            gnorm = float(np.linalg.norm(projected_gradient(ws)))
            LOGGER.log(level, "%6d %6d  f = %.8e  |pg| = %.3e", niter, ws.evaluations, ws.f, gnorm)
            if callbacks and niter % update_every == 0:
                snapshot = IterationSnapshot(
                    iteration=niter,
                    x=ws.x.reshape(shape).copy(),
                    f=ws.f,
                    gnorm=gnorm,
                    evaluations=ws.evaluations,
                    elapsed=elapsed,
                )
                for cb in callbacks:
                    cb(snapshot)
            if niter >= maxiter:
                status = "max_iter"
                reason = "maximum number of iterations reached"
            else:
                task = iterate(ws)
        elif task.terminal:
            status = _STATUS[task]
            reason = get_reason(ws)
        else:
            task = iterate(ws)

    x, f, g = restore(ws)
    elapsed = time.perf_counter() - tstart

    if status in ("warning", "error"):
        LOGGER.warning("VMLMB stopped with %s after %d iterations: %s", status, niter, reason)
    else:
        LOGGER.info(
            "VMLMB %s after %d iterations, %d evaluations, %.3f s: %s",
            status,
            niter,
            ws.evaluations,
            elapsed,
            reason,
        )

    return OptimizationResult(
        x=x.reshape(shape).copy(),
        f=float(f),
        grad=np.asarray(g).reshape(shape).copy(),
        status=status,
        reason=reason,
        niter=niter,
        nevals=ws.evaluations,
        elapsed=elapsed,
        history=recorder.to_dataset() if recorder is not None else None,
    )
