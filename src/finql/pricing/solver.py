"""One-dimensional root finding: Newton first, bracketed Brent as fallback."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

from scipy.optimize import brentq

from finql.core.exceptions import NonConvergenceError

logger = logging.getLogger(__name__)

# Relative step of the central-difference derivative
_DERIVATIVE_STEP = 1e-6


@dataclass(frozen=True)
class SolverResult:
    root: float
    iterations: int
    method: str


def solve(
    fn: Callable[[float], float],
    target: float,
    guess: float,
    tolerance: float = 1e-9,
    max_iterations: int = 100,
    bracket: tuple[float, float] | None = None,
) -> SolverResult:
    """Find x with |fn(x) - target| <= tolerance.

    Newton's method runs from ``guess`` using a central-difference
    derivative. If it stalls, leaves ``bracket`` or diverges, the root is
    searched in ``bracket`` with ``scipy.optimize.brentq`` using whatever
    remains of the iteration budget.

    Raises NonConvergenceError when neither method gets within
    ``tolerance`` in ``max_iterations`` iterations.
    """

    def residual(x: float) -> float:
        return fn(x) - target

    context = {"target": target, "guess": guess, "max_iterations": max_iterations}

    x = guess
    used = 0
    while used < max_iterations:
        try:
            fx = residual(x)
            if not math.isfinite(fx):
                break
            if abs(fx) <= tolerance:
                return SolverResult(root=x, iterations=used, method="newton")
            h = _DERIVATIVE_STEP * max(1.0, abs(x))
            slope = (residual(x + h) - residual(x - h)) / (2 * h)
        except (OverflowError, ZeroDivisionError):
            break
        used += 1
        if slope == 0 or not math.isfinite(slope):
            break
        x -= fx / slope
        if bracket is not None and not bracket[0] <= x <= bracket[1]:
            break

    if bracket is None:
        raise NonConvergenceError(
            f"Newton iteration did not converge from guess {guess}",
            context={**context, "iterations": used, "last": x},
        )

    remaining = max_iterations - used
    lower, upper = bracket
    logger.debug("Newton stopped after %d iterations, trying brentq on %s", used, bracket)
    try:
        f_lower, f_upper = residual(lower), residual(upper)
    except (OverflowError, ZeroDivisionError) as e:
        raise NonConvergenceError(
            f"Cannot evaluate function on bracket {bracket}: {e}",
            context={**context, "bracket": bracket},
        ) from e
    if remaining <= 0 or f_lower * f_upper > 0:
        raise NonConvergenceError(
            f"No root bracketed in {bracket} within {max_iterations} iterations",
            context={**context, "bracket": bracket, "iterations": used},
        )

    root, info = brentq(
        residual,
        lower,
        upper,
        xtol=1e-15,
        maxiter=remaining,
        full_output=True,
        disp=False,
    )
    if not info.converged or abs(residual(root)) > tolerance:
        raise NonConvergenceError(
            f"Brent search did not reach tolerance {tolerance} in {bracket}",
            context={**context, "bracket": bracket, "iterations": used + info.iterations},
        )
    return SolverResult(root=root, iterations=used + info.iterations, method="brentq")
