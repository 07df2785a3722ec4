"""NetCDF helpers for iteration histories produced by :class:`~pyopti.output.OutputRecorder`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import xarray as xr

from .output import OutputRecorder

__all__ = ["load_history", "save_history"]

LOGGER = logging.getLogger(__name__)


def save_history(
    history: xr.Dataset | OutputRecorder,
    path: str | Path,
    *,
    attrs: Mapping[str, Any] | None = None,
) -> Path:
    """Write an iteration history to the NetCDF file *path*.

    *history* may be the recorder itself or the dataset returned by
    :meth:`OutputRecorder.to_dataset`.  Optional *attrs* (run metadata such as
    the algorithm settings) are stored as global attributes.
    """

    if isinstance(history, OutputRecorder):
        history = history.to_dataset()
    dataset = history.copy()
    if attrs:
        dataset.attrs.update(attrs)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Writing %s", path)
    dataset.to_netcdf(path)
    return path


def load_history(path: str | Path) -> xr.Dataset:
    """Load an iteration history written by :func:`save_history`."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"History file {path!s} not found")

    LOGGER.info("Loading history from %s", path)
    with xr.open_dataset(path) as ds:
        if "cost" not in ds:
            raise KeyError(f"Variable 'cost' not present in {path!s}")
        history = ds.load()
    history.attrs["source_file"] = str(path)
    return history
