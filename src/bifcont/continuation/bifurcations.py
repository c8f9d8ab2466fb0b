"""Detection of bifurcations from the spectrum and their localization by bisection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from bifcont.core.types import Array, ComplexArray

if TYPE_CHECKING:
    from .continuation_steppers import ContinuationState, PseudoArclengthContinuation

logger = logging.getLogger(__name__)


def count_unstable(eigenvalues: ComplexArray, tol: float = 1e-10) -> tuple[int, int]:
    """
    Count the unstable eigenvalues.

    Returns
    -------
    tuple[int, int]
        The number of eigenvalues with real part above tol and the number of
        those that have a non-zero imaginary part.
    """
    eigenvalues = np.asarray(eigenvalues)
    unstable = eigenvalues[eigenvalues.real > tol]
    n_imag = int(np.sum(np.abs(unstable.imag) > tol))
    return len(unstable), n_imag


def kernel_dimension(prev: tuple[int, int], new: tuple[int, int]) -> tuple[int, int]:
    """
    Kernel dimension of a crossing between two spectral summaries (n_unstable, n_imag).

    Returns (number of crossing real eigenvalues, number of crossing complex pairs).
    For crossings in one direction, the change of n_unstable is delta[0] + 2 * delta[1].
    Real eigenvalues and complex pairs crossing in opposite directions within one
    step are both counted, e.g. (1, 0) -> (2, 2) gives (1, 1) for a change of 1.
    """
    dn = new[0] - prev[0]
    di = new[1] - prev[1]
    return abs(dn - di), abs(di) // 2


def bifurcation_kind(delta: tuple[int, int]) -> str:
    """Type of a bifurcation with kernel dimension delta: "bp", "hopf" or "nd" (non-simple)."""
    if delta == (1, 0):
        return "bp"
    if delta == (0, 1):
        return "hopf"
    return "nd"


def crossing_index(eigenvalues: ComplexArray, kind: str) -> int:
    """Index of the eigenvalue closest to the imaginary axis, for Hopf points among those with Im > 0."""
    eigenvalues = np.asarray(eigenvalues)
    if len(eigenvalues) == 0:
        return -1
    distance = np.abs(eigenvalues.real)
    if kind == "hopf" and np.any(eigenvalues.imag > 0):
        distance = np.where(eigenvalues.imag > 0, distance, np.inf)
    return int(np.argmin(distance))


class BisectionResult(NamedTuple):
    """Result of the localization of a bifurcation on an arclength step."""

    #: the state at the located point (on the side after the crossing)
    x: Array
    #: the parameter at the located point
    param: float
    #: "converged", "guess" or "failed"
    status: str
    #: width of the parameter bracket, -1 if not converged
    precision: float
    #: the bracketing parameter interval
    interval: tuple[float, float]
    #: number of bisection steps performed
    iterations: int


def locate_bifurcation(
    stepper: PseudoArclengthContinuation,
    state_a: ContinuationState,
    state_b: ContinuationState,
) -> BisectionResult:
    """
    Locate a bifurcation between two consecutive points of a branch with bisection.

    The arclength step from ``state_a`` to ``state_b`` is bisected: each
    midpoint at sub-step s is predicted along the tangent of ``state_a`` and
    corrected with the arclength constraint ``(z - z_a) * tau_a = s``. Its
    spectrum decides on which side of the crossing it lies. A change of side
    between two consecutive iterates counts as an inversion. The localization
    is converged once the parameter bracket is narrower than
    ``tol_bisection_eigenvalue`` after at least ``n_inversion`` inversions.

    Parameters
    ----------
    stepper
        The continuation stepper that produced the two states.
    state_a
        The point before the crossing.
    state_b
        The point after the crossing.

    Returns
    -------
    BisectionResult
        The located point. If the budget of bisection steps is exhausted,
        its status is "guess", if the corrector diverged, it is "failed".
    """
    config = stepper.config
    new_side = (state_b.n_unstable, state_b.n_imag)
    z_a = np.append(state_a.x, state_a.p)
    tau = state_a.tau
    # the bracket in terms of the arclength sub-step and of the parameter
    s_lo, s_hi = 0.0, abs(state_b.ds)
    p_lo, p_hi = state_a.p, state_b.p
    x_hi = state_b.x
    # the first iterate is the point after the crossing
    last_on_new_side = True
    n_inversions = 0
    status = "guess"
    iterations = 0
    for iterations in range(1, config.max_bisection_steps + 1):
        if abs(p_hi - p_lo) < config.tol_bisection_eigenvalue and n_inversions >= config.n_inversion:
            status = "converged"
            break
        if (s_hi - s_lo) / 2 < config.dsmin_bisection:
            break
        s = (s_lo + s_hi) / 2
        result = stepper.correct(z_a + s * tau, z_a, tau, s)
        if result is None:
            logger.warning("Corrector diverged during bisection at sub-step s=%.3e", s)
            status = "failed"
            break
        x, p = result.x[:-1], float(result.x[-1])
        _, _, n_unstable, n_imag = stepper.spectrum(x, p)
        on_new_side = (n_unstable, n_imag) == new_side
        if on_new_side:
            s_hi, p_hi, x_hi = s, p, x
        else:
            s_lo, p_lo = s, p
        if on_new_side != last_on_new_side:
            n_inversions += 1
        last_on_new_side = on_new_side
        logger.debug(
            "Bisection #%d: p in [%.8f, %.8f], #inversions: %d, (n_unstable, n_imag) = (%d, %d)",
            iterations,
            min(p_lo, p_hi),
            max(p_lo, p_hi),
            n_inversions,
            n_unstable,
            n_imag,
        )
    else:
        if abs(p_hi - p_lo) < config.tol_bisection_eigenvalue and n_inversions >= config.n_inversion:
            status = "converged"
    interval = (min(p_lo, p_hi), max(p_lo, p_hi))
    precision = abs(p_hi - p_lo) if status == "converged" else -1.0
    if status == "guess":
        logger.warning("Bisection did not converge within %d steps, the bifurcation point is a guess", iterations)
    return BisectionResult(x_hi, p_hi, status, precision, interval, iterations)
