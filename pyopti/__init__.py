"""Utilities to run a VMLMB minimization using the :mod:`vmlmb` core."""

from .io import load_history, save_history
from .optimizer import OptimizationResult, run_vmlmb
from .output import IterationSnapshot, OutputRecorder

__all__ = [
    "IterationSnapshot",
    "OptimizationResult",
    "OutputRecorder",
    "load_history",
    "run_vmlmb",
    "save_history",
]
