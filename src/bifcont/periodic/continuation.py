"""Newton and continuation of periodic orbits, with the choice of the linearization of the functional."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from bifcont.continuation.continuation_steppers import ContinuationState, RecordFunction, continuation
from bifcont.continuation.deflation import DeflationOperator, newton_deflated
from bifcont.core.parameters import ContinuationPar, NewtonPar, ParameterLens
from bifcont.core.results import Branch, ContResult
from bifcont.core.solvers import BorderingBLS, NewtonResult, finite_differences, newton
from bifcont.core.types import Array

from .floquet import FloquetEigenSolver, FloquetWrapper, FloquetWrapperLS
from .problems import PeriodicOrbitProblem

logger = logging.getLogger(__name__)

#: the available linearizations of a periodic orbit functional
LINEARIZATIONS = ("analytic-matrix-free", "ad-matrix-free", "ad-dense", "finite-difference-dense")

#: step of the complex-step derivative in the "ad-matrix-free" linearization
COMPLEX_STEP = 1e-20


def build_jacobian(
    problem: PeriodicOrbitProblem,
    linearization: str,
    x0: Array,
    par0: Any,
    delta: float = 1e-8,
) -> Callable[[Array, Any], Any]:
    """
    Build the Jacobian J(x, par) of a periodic orbit problem.

    Parameters
    ----------
    problem
        The periodic orbit problem.
    linearization
        One of
        - "analytic-matrix-free": dx -> J * dx from the problem's analytic directional derivative
        - "ad-matrix-free": dx -> J * dx with complex-step differentiation of the residual
        - "ad-dense": a dense matrix from automatic (complex-step) differentiation,
          formed once at (x0, par0) and refreshed in place afterwards
        - "finite-difference-dense": a dense matrix from forward finite differences with step delta
    x0, par0
        Point at which a dense Jacobian is formed first.
    delta
        Step of the finite differences.
    """
    if linearization not in LINEARIZATIONS:
        raise ValueError(f"Unknown linearization {linearization!r}, must be one of {LINEARIZATIONS}")
    if linearization == "analytic-matrix-free":
        return lambda x, par: (lambda dx: problem.jacobian_vector(x, par, dx))
    if linearization == "ad-matrix-free":

        def complex_step(x: Array, par: Any) -> Callable[[Array], Array]:
            def jvp(dx: Array) -> Array:
                return np.imag(problem(x + 1j * COMPLEX_STEP * np.real(dx), par)) / COMPLEX_STEP

            return jvp

        return complex_step
    if linearization == "ad-dense":
        _J = problem.jacobian_matrix(x0, par0)
        return lambda x, par: problem.jacobian_matrix_inplace(_J, x, par)
    return lambda x, par: finite_differences(lambda z: problem(z, par), x, delta)


def newton_periodic_orbit(
    problem: PeriodicOrbitProblem,
    orbit_guess: Array,
    par: Any,
    options: NewtonPar,
    *,
    linearization: str = "analytic-matrix-free",
    delta: float = 1e-8,
    deflation: DeflationOperator | None = None,
) -> NewtonResult:
    """
    Newton solve for a periodic orbit, optionally deflated.

    The linear solver of ``options`` has to match the linearization: a
    matrix-free linearization needs an iterative solver, e.g. the
    GMRESIterativeSolver.
    """
    jac = build_jacobian(problem, linearization, orbit_guess, par, delta)
    if deflation is not None:
        return newton_deflated(lambda x: problem(x, par), lambda x: jac(x, par), orbit_guess, options, deflation)
    return newton(lambda x: problem(x, par), lambda x: jac(x, par), orbit_guess, options)


def continuation_periodic_orbit(
    problem: PeriodicOrbitProblem,
    orbit_guess: Array,
    params: Any,
    lens: ParameterLens,
    config: ContinuationPar,
    linear_algo: Any = None,
    *,
    linearization: str = "analytic-matrix-free",
    delta: float = 1e-8,
    update_section_every_step: int = 0,
    record_from_solution: RecordFunction | None = None,
    finalize_step: Callable[[ContinuationState, Array, int, ContResult], bool] | None = None,
) -> tuple[Branch, Array, Array]:
    """
    Continuation of periodic orbits.

    The Jacobian is wrapped into a FloquetWrapper, so that the Newton
    corrector solves with the Jacobian (FloquetWrapperLS) while the stability
    is computed from the monodromy of the orbit (FloquetEigenSolver). By
    default, the period is recorded at each step.

    Parameters
    ----------
    problem
        The periodic orbit problem.
    orbit_guess
        Guess for the unknowns of the problem.
    params
        The parameter object, the continuation starts at ``lens.get(params)``.
    lens
        The accessor of the continuation parameter.
    config
        The settings of the continuation. They are not modified, a derived
        copy with the Floquet-aware solvers is used.
    linear_algo
        The bordered linear solver, defaults to BorderingBLS with the linear
        solver of the Newton options.
    linearization
        The linearization of the functional, see :func:`build_jacobian`.
    delta
        Step of the finite differences for "finite-difference-dense".
    update_section_every_step
        Re-anchor the section of the problem every n steps (0: never). The
        section of ``problem`` itself is not modified, the updated copy is
        available as the ``functional`` of the result.
    record_from_solution
        Projection of the solution recorded at every step, defaults to the period.
    finalize_step
        Called after each accepted step, returning False stops the continuation.
    """
    if linearization not in LINEARIZATIONS:
        raise ValueError(f"Unknown linearization {linearization!r}, must be one of {LINEARIZATIONS}")
    # the section updates act on a copy, the result refers to it as its functional
    problem = copy.copy(problem)
    options = config.newton_options
    base_jac = build_jacobian(problem, linearization, orbit_guess, params, delta)

    def jac(x: Array, par: Any) -> FloquetWrapper:
        return FloquetWrapper(problem, base_jac(x, par), x, par)

    # install the Floquet-aware solvers in a derived configuration
    eigsolver = FloquetEigenSolver(options.eigsolver) if config.compute_eigenelements else options.eigsolver
    floquet_config = config.replace(
        newton_options=options.replace(linsolver=FloquetWrapperLS(options.linsolver), eigsolver=eigsolver)
    )
    if linear_algo is None:
        linear_algo = BorderingBLS(options.linsolver)
    linear_algo = linear_algo.wrap_solver(FloquetWrapperLS)

    if record_from_solution is None:

        def record_from_solution(x: Array, p: float) -> dict[str, float]:
            return {"period": problem.period(x, lens.set(params, p))}

    logger.info("Continuation of periodic orbits with %s (M=%d), linearization: %s", type(problem).__name__, problem.M, linearization)
    return continuation(
        problem,
        jac,
        orbit_guess,
        params,
        lens,
        floquet_config,
        linear_algo,
        kind=problem.kind,
        functional=problem,
        record_from_solution=record_from_solution,
        finalize_step=finalize_step,
        update_section=problem.update_section,
        update_section_every_step=update_section_every_step,
    )
