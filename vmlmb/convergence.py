"""Stopping criteria of the variable metric method."""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

__all__ = ["check_convergence", "convergence_reason"]


def convergence_reason(
    g: Sequence[float],
    f_prev: Optional[float],
    f_curr: float,
    *,
    gtol: float = 0.0,
    fatol: float = 0.0,
    frtol: float = 1e-8,
) -> Optional[str]:
    """Return a description of the first satisfied criterion, or ``None``.

    The criteria are independent: ``g.g < gtol**2``, ``|f_prev - f_curr| <=
    fatol`` and ``|f_prev - f_curr| <= frtol*|f_prev|``.  A threshold of zero
    disables its test.  Without a previous value (first evaluation) only the
    gradient test applies.
    """

    if gtol > 0.0:
        gg = float(np.dot(np.ravel(g), np.ravel(g)))
        if gg < gtol * gtol:
            return f"gradient norm {np.sqrt(gg):.3e} below gtol"
    if f_prev is None:
        return None
    change = abs(float(f_prev) - float(f_curr))
    if fatol > 0.0 and change <= fatol:
        return f"function change {change:.3e} within fatol"
    if frtol > 0.0 and change <= frtol * abs(float(f_prev)):
        return f"relative function change {change:.3e} within frtol"
    return None


def check_convergence(
    g: Sequence[float],
    f_prev: Optional[float],
    f_curr: float,
    *,
    gtol: float = 0.0,
    fatol: float = 0.0,
    frtol: float = 1e-8,
) -> bool:
    """Boolean form of :func:`convergence_reason`."""

    return convergence_reason(g, f_prev, f_curr, gtol=gtol, fatol=fatol, frtol=frtol) is not None
