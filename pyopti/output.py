"""Progress snapshots and an in-memory recorder of the iteration history."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import xarray as xr

__all__ = ["IterationSnapshot", "OutputRecorder"]


@dataclass(slots=True)
class IterationSnapshot:
    """State handed to progress callbacks after an accepted iteration."""

    iteration: int
    x: np.ndarray
    f: float
    gnorm: float
    evaluations: int
    elapsed: float


class OutputRecorder:
    """Progress callback accumulating the snapshots it receives.

    The history is exported with :meth:`to_dataset`, one entry per recorded
    iteration.  Iterates are only kept when *store_iterates* is set since they
    can be as large as the problem itself.
    """

    def __init__(self, store_iterates: bool = False):
        self.store_iterates = bool(store_iterates)
        self.iterations: list[int] = []
        self.costs: list[float] = []
        self.gradient_norms: list[float] = []
        self.evaluations: list[int] = []
        self.elapsed: list[float] = []
        self.iterates: list[np.ndarray] = []

    def __call__(self, snapshot: IterationSnapshot) -> None:
        self.iterations.append(int(snapshot.iteration))
        self.costs.append(float(snapshot.f))
        self.gradient_norms.append(float(snapshot.gnorm))
        self.evaluations.append(int(snapshot.evaluations))
        self.elapsed.append(float(snapshot.elapsed))
        if self.store_iterates:
            self.iterates.append(np.array(snapshot.x, dtype=float).ravel())

    def __len__(self) -> int:
        return len(self.iterations)

    def to_dataset(self) -> xr.Dataset:
        """Return the recorded history as an :class:`xarray.Dataset`."""

        coords = {"iteration": np.asarray(self.iterations, dtype=np.int64)}
        data_vars = {
            "cost": ("iteration", np.asarray(self.costs, dtype=float)),
            "gradient_norm": ("iteration", np.asarray(self.gradient_norms, dtype=float)),
            "evaluations": ("iteration", np.asarray(self.evaluations, dtype=np.int64)),
            "elapsed": ("iteration", np.asarray(self.elapsed, dtype=float)),
        }
        if self.store_iterates:
            if self.iterates:
                iterates = np.vstack(self.iterates)
            else:
                iterates = np.empty((0, 0), dtype=float)
            data_vars["x"] = (("iteration", "parameter"), iterates)

        history = xr.Dataset(data_vars, coords=coords)
        history["elapsed"].attrs["units"] = "s"
        return history
