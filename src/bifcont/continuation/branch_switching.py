"""Automatic branch switching from Hopf points to branches of periodic orbits."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from bifcont.core.parameters import ContinuationPar
from bifcont.core.results import Branch, ContResult
from bifcont.core.types import Array
from bifcont.periodic.continuation import continuation_periodic_orbit, newton_periodic_orbit
from bifcont.periodic.problems import PeriodicOrbitProblem, sample_orbit

from .continuation_steppers import ContinuationState, RecordFunction
from .deflation import DeflationOperator
from .normal_forms import hopf_normal_form, hopf_phase, hopf_predictor

logger = logging.getLogger(__name__)


def continuation_hopf(
    F: Callable[[Array, Any], Array],
    dF: Callable[[Array, Any], Any],
    d2F: Callable[[Array, Any, Array, Array], Array],
    d3F: Callable[[Array, Any, Array, Array, Array], Array],
    br: Branch | ContResult,
    ind_hopf: int,
    config: ContinuationPar,
    problem: PeriodicOrbitProblem,
    *,
    adjoint_jacobian: Callable[[Array, Any], Any] | None = None,
    delta: float = 1e-8,
    dp: float | None = None,
    amplitude_factor: float = 1.0,
    use_deflation: bool = False,
    nev: int | None = None,
    update_section_every_step: int = 0,
    linearization: str = "analytic-matrix-free",
    linear_algo: Any = None,
    record_from_solution: RecordFunction | None = None,
    finalize_step: Callable[[ContinuationState, Array, int, ContResult], bool] | None = None,
) -> tuple[Branch, Array, Array]:
    """
    Switch from a Hopf point to the emanating branch of periodic orbits and continue it.

    The normal form of the Hopf point gives a predictor for the first orbit,
    which is sampled at the M time slices of ``problem`` to build the
    periodic orbit problem and its initial guess.

    Parameters
    ----------
    F, dF, d2F, d3F
        The vector field and its derivatives up to third order, see :func:`hopf_normal_form`.
    br
        The branch of equilibria containing the Hopf point.
    ind_hopf
        Index of the Hopf point in the list of bifurcation points of the branch.
    config
        The settings of the continuation of periodic orbits.
    problem
        Template of the periodic orbit problem (trapezoid, shooting or Poincaré shooting).
    adjoint_jacobian
        The adjoint of the Jacobian, needed for matrix-free Jacobians.
    delta
        Step of the finite differences.
    dp
        Parameter step for the predictor, defaults to config.ds. It may exceed config.ds_max.
    amplitude_factor
        Factor for the amplitude of the predicted orbit.
    use_deflation
        Deflate the trivial orbit (the equilibrium) in the Newton solve for the first orbit.
    nev
        Number of eigenvalues for the normal form, defaults to config.nev.
    update_section_every_step
        Re-anchor the section of the problem every n steps (0: never).
    linearization, linear_algo, record_from_solution, finalize_step
        See :func:`continuation_periodic_orbit`.

    Returns
    -------
    tuple[Branch, Array, Array]
        The branch of periodic orbits, emanating from the Hopf point, the final solution and tangent.
    """
    bp = br.bifpoint[ind_hopf]
    logger.info("Considering bifurcation point: %s", bp)
    hopf_point = hopf_normal_form(F, dF, d2F, d3F, br, ind_hopf, adjoint_jacobian, delta, nev if nev is not None else config.nev)

    # compute predictor for point on new branch
    ds = config.ds if dp is None else dp
    pred = hopf_predictor(hopf_point, ds, amplitude_factor)
    period = abs(2 * np.pi / pred.omega)
    # phase of the orbit guess for the section condition
    phase = hopf_phase(hopf_point.zeta)
    logger.info(
        "Start branching from Hopf point to periodic orbits: %s, new p = %.6f, amplitude = %.4e, period = %.4f, phase = %.4f pi",
        hopf_point.criticality,
        pred.p,
        pred.amplitude,
        period,
        phase / np.pi,
    )
    slices = sample_orbit(pred.orbit, problem.M, phase)
    params = br.set_param(pred.p)
    prob_po, orbit_guess = problem.problem_for_branch_switching(hopf_point.x0, np.real(hopf_point.zeta), slices, period, params)

    if use_deflation:
        deflation = DeflationOperator(2, 1.0, [prob_po.trivial_orbit(hopf_point.x0, period)])
        sol = newton_periodic_orbit(
            prob_po,
            orbit_guess,
            params,
            config.newton_options,
            linearization=linearization,
            delta=delta,
            deflation=deflation,
        )
        if sol.converged:
            orbit_guess = sol.x
        else:
            logger.warning("Deflated Newton did not converge in %d iterations, continuing from the predictor", sol.iterations)

    branch, x, tau = continuation_periodic_orbit(
        prob_po,
        orbit_guess,
        params,
        br.lens,
        config,
        linear_algo,
        linearization=linearization,
        delta=delta,
        update_section_every_step=update_section_every_step,
        record_from_solution=record_from_solution,
        finalize_step=finalize_step,
    )
    return Branch(branch.gamma, bp=bp, normal_form=hopf_point), x, tau
