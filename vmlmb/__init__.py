"""Numerical core of the VMLMB bound-constrained quasi-Newton minimizer.

The submodules implement the pieces of the algorithm (box projection and
active-set detection, the limited-memory curvature store, the Moré–Thuente
line search and the stopping criteria) and the reverse-communication
controller that sequences them.  The controller never evaluates the objective
itself; see :mod:`vmlmb.minimizer` for the calling protocol and
:mod:`pyopti` for a ready-made driver loop.
"""

from .bounds import BoundMode, active_set, expand_bounds, project_bounds, step_to_bounds
from .convergence import check_convergence, convergence_reason
from .lbfgs import CurvatureMemory
from .linesearch import LineSearch, SearchStatus
from .minimizer import (
    Task,
    VMLMBConfig,
    Workspace,
    create_workspace,
    get_reason,
    iterate,
    projected_gradient,
    restore,
)

__all__ = [
    "BoundMode",
    "CurvatureMemory",
    "LineSearch",
    "SearchStatus",
    "Task",
    "VMLMBConfig",
    "Workspace",
    "active_set",
    "check_convergence",
    "convergence_reason",
    "create_workspace",
    "expand_bounds",
    "get_reason",
    "iterate",
    "project_bounds",
    "projected_gradient",
    "restore",
    "step_to_bounds",
]
