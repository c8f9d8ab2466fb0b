"""The pseudo-arclength continuation stepper and the continuation driver."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from bifcont.core.parameters import ContinuationPar, ParameterLens
from bifcont.core.results import Branch, ContResult, CriticalPoint, EigenRecord
from bifcont.core.solvers import BorderedJacobian, BorderingBLS, DefaultLS, MatrixBLS, NewtonResult, newton
from bifcont.core.types import Array, ComplexArray, DataDict, Functional, JacobianFunction

from .bifurcations import bifurcation_kind, count_unstable, crossing_index, kernel_dimension, locate_bifurcation

logger = logging.getLogger(__name__)

#: callback recording a projection of the solution: (x, p) -> dict of scalars
RecordFunction = Callable[[Array, float], DataDict]


def record_norm(x: Array, p: float) -> DataDict:
    """Record the norm of the solution."""
    return {"norm": float(np.linalg.norm(x))}


@dataclass
class ContinuationState:
    """The state of the continuation at an accepted point."""

    #: the solution
    x: Array
    #: the value of the continuation parameter
    p: float
    #: the unit tangent (dx, dp) in the direction of continuation
    tau: Array
    #: the (signed) arclength step size that was used to reach the point
    ds: float
    #: the step index
    step: int = 0
    #: number of Newton iterations of the correction
    itnewton: int = 0
    #: number of linear iterations of the correction
    itlinear: int = 0
    #: angle between the tangent and the previous tangent
    theta: float = 0.0
    #: number of unstable eigenvalues (-1: unknown)
    n_unstable: int = -1
    #: number of unstable eigenvalues with non-zero imaginary part (-1: unknown)
    n_imag: int = -1
    #: the eigenvalues, if computed
    eigenvalues: ComplexArray | None = None
    #: the eigenvectors as columns, if computed
    eigenvectors: ComplexArray | None = None

    @property
    def z(self) -> Array:
        """The point in (x, p)-space."""
        return np.append(self.x, self.p)


class PseudoArclengthContinuation:
    """
    Pseudo-arclength parameter continuation stepper.

    The predictor follows the tangent of the branch: at the first step, the
    tangent is computed from the extended Jacobian in (x, p)-space, afterwards
    the secant through the last two points is used. The corrector is a Newton
    solve of the system extended by the arclength condition, with a bordered
    linear solver. The step size is adapted to the number of Newton iterations.
    """

    def __init__(
        self,
        F: Functional,
        J: JacobianFunction,
        params: Any,
        lens: ParameterLens,
        config: ContinuationPar,
        linear_algo: Any = None,
    ) -> None:
        """
        Initialize the stepper.

        Parameters
        ----------
        F
            The residual F(x, par).
        J
            The Jacobian J(x, par), a matrix, a LinearOperator or a callable dx -> J * dx.
        params
            The parameter object of the problem.
        lens
            The accessor of the continuation parameter in params.
        config
            The settings of the continuation.
        linear_algo
            The bordered linear solver for the extended system. Defaults to
            MatrixBLS for the direct solver and BorderingBLS otherwise.
        """
        self.F = F
        self.J = J
        self.params = params
        self.lens = lens
        self.config = config
        if linear_algo is None:
            linsolver = config.newton_options.linsolver
            linear_algo = MatrixBLS() if isinstance(linsolver, DefaultLS) else BorderingBLS(linsolver)
        #: the bordered linear solver
        self.linear_algo = linear_algo
        #: finite-difference for calculating parameter derivatives
        self.fd_epsilon = 1e-8

    def par(self, p: float) -> Any:
        """The parameter object for the continuation parameter p."""
        return self.lens.set(self.params, p)

    def dF_dp(self, x: Array, p: float) -> Array:
        """Derivative of the residual with respect to the parameter, with central finite differences."""
        eps = self.fd_epsilon * max(1.0, abs(p))
        rhs_1 = np.asarray(self.F(x, self.par(p - eps)))
        rhs_2 = np.asarray(self.F(x, self.par(p + eps)))
        return (rhs_2 - rhs_1) / (2.0 * eps)

    def tangent(self, x: Array, p: float, direction: float) -> Array:
        """
        Calculate the tangent from the extended Jacobian in (x, p)-space.

        The tangent is normalized and points in the direction of the sign of
        ``direction`` in the parameter.
        """
        N = x.size
        Jb = BorderedJacobian(self.J(x, self.par(p)), self.dF_dp(x, p), np.zeros(N), 1.0)
        rhs = np.zeros(N + 1)
        rhs[N] = 1  # for solvability, determines length of tangent vector
        tau, _, _ = self.linear_algo(Jb, rhs)
        tau = np.real_if_close(tau)
        tau /= np.linalg.norm(tau)
        # make sure that the tangent points in the direction of continuation
        if tau[-1] * direction < 0:
            tau = -tau
        return tau

    def correct(self, z_pred: Array, z_a: Array, tau: Array, s: float) -> NewtonResult | None:
        """
        Correct a predicted point with the arclength condition (z - z_a) * tau = s.

        Returns None if the corrector did not converge.
        """
        N = z_a.size - 1

        def F_ext(z: Array) -> Array:
            arclength_condition = np.dot(z - z_a, tau) - s
            return np.append(self.F(z[:N], self.par(z[N])), arclength_condition)

        def J_ext(z: Array) -> BorderedJacobian:
            x, p = z[:N], z[N]
            return BorderedJacobian(self.J(x, self.par(p)), self.dF_dp(x, p), tau[:N], tau[N])

        try:
            result = newton(F_ext, J_ext, z_pred, self.config.newton_options, linsolver=self.linear_algo)
        except (np.linalg.LinAlgError, ValueError) as err:
            logger.debug("Corrector failed: %s", err)
            return None
        if not result.converged:
            return None
        return result

    def spectrum(self, x: Array, p: float) -> tuple[ComplexArray | None, ComplexArray | None, int, int]:
        """
        Compute the eigen-elements of the linearization at (x, p).

        Returns the eigenvalues, the eigenvectors and the numbers of unstable
        (and unstable complex) eigenvalues, or (None, None, -1, -1) if
        eigen-elements are not computed.
        """
        if not self.config.compute_eigenelements:
            return None, None, -1, -1
        eigsolver = self.config.newton_options.eigsolver
        eigenvalues, eigenvectors, converged, _ = eigsolver(self.J(x, self.par(p)), self.config.nev)
        if not converged:
            logger.warning("Eigensolver did not converge at p=%.6e", p)
        n_unstable, n_imag = count_unstable(eigenvalues, self.config.tol_stability)
        return eigenvalues, eigenvectors, n_unstable, n_imag

    def initial_state(self, x: Array, p: float) -> ContinuationState:
        """Build the state at the starting point, including the tangent and the eigen-elements."""
        ds = self.config.clamp_ds(self.config.ds)
        tau = self.tangent(x, p, ds)
        state = ContinuationState(x=np.copy(x), p=p, tau=tau, ds=ds)
        return self._with_spectrum(state)

    def refresh_tangent(self, state: ContinuationState) -> ContinuationState:
        """Recompute the tangent of a state from the extended Jacobian."""
        return replace(state, tau=self.tangent(state.x, state.p, state.tau[-1] if state.tau[-1] != 0 else state.ds))

    def _with_spectrum(self, state: ContinuationState) -> ContinuationState:
        eigenvalues, eigenvectors, n_unstable, n_imag = self.spectrum(state.x, state.p)
        return replace(state, eigenvalues=eigenvalues, eigenvectors=eigenvectors, n_unstable=n_unstable, n_imag=n_imag)

    def step(self, state: ContinuationState, ds: float) -> tuple[ContinuationState | None, float]:
        """
        Perform a continuation step from an accepted state with step size ds.

        Returns the new state (None if the stepper stalled) and the step size
        for the next step.
        """
        config = self.config
        z_a = state.z
        tau = state.tau
        for attempt in range(config.max_retries + 1):
            # make initial guess: z -> z + ds * tangent
            result = self.correct(z_a + abs(ds) * tau, z_a, tau, abs(ds))
            if result is not None:
                break
            # we didn't converge, retry with a smaller step size
            ds_new = config.clamp_ds(ds * 0.5)
            if ds_new == ds or attempt == config.max_retries:
                logger.warning("Newton solver did not converge with minimal step size ds=%.3e, stepper stalled", ds)
                return None, ds
            ds = ds_new
            logger.warning("Newton solver did not converge, trying again with ds = %.3e", ds)
        assert result is not None
        z = result.x
        N = z.size - 1
        # the secant is the tangent for the next predictor
        secant = z - z_a
        secant /= np.linalg.norm(secant)
        theta = float(np.arccos(np.clip(np.dot(secant, tau), -1.0, 1.0)))
        new_state = ContinuationState(
            x=z[:N],
            p=float(z[N]),
            tau=secant,
            ds=ds,
            step=state.step + 1,
            itnewton=result.iterations,
            itlinear=result.itlinear,
            theta=theta,
        )
        new_state = self._with_spectrum(new_state)
        # adapt step size
        ds_next = ds
        if config.adapt_stepsize:
            if result.iterations > config.n_desired_newton_steps:
                ds_next = config.clamp_ds(ds * config.ds_decrease_factor)
            elif result.iterations < config.n_desired_newton_steps:
                ds_next = config.clamp_ds(ds * config.ds_increase_factor)
        return new_state, ds_next


class _Recorder:
    """Writes the accepted states of a continuation into a ContResult."""

    def __init__(self, result: ContResult, record_from_solution: RecordFunction) -> None:
        self.result = result
        self.record_from_solution = record_from_solution

    def append(self, state: ContinuationState) -> None:
        config = self.result.contparams
        row = {
            "param": state.p,
            "itnewton": state.itnewton,
            "itlinear": state.itlinear,
            "ds": state.ds,
            "theta": state.theta,
            "n_unstable": state.n_unstable,
            "n_imag": state.n_imag,
            "stable": state.n_unstable == 0,
            "step": state.step,
        }
        eigenvalues = state.eigenvalues if state.eigenvalues is not None else np.zeros(0, dtype=complex)
        eigenvectors = state.eigenvectors if config.save_eigenvectors else None
        self.result.append(self.record_from_solution(state.x, state.p), row, EigenRecord(eigenvalues, eigenvectors, state.step))
        if config.save_sol_every_step > 0 and state.step % config.save_sol_every_step == 0:
            self.result.add_solution(state.x, state.p, state.step)

    def critical_point(self, kind: str, state: ContinuationState, x: Array, p: float, delta: tuple[int, int], **kwargs: Any) -> CriticalPoint:
        eigenvalues = state.eigenvalues if state.eigenvalues is not None else np.zeros(0)
        return CriticalPoint(
            kind=kind,
            idx=state.step,
            param=p,
            norm=float(np.linalg.norm(x)),
            printsol=self.record_from_solution(x, p),
            x=np.copy(x),
            tau=np.copy(state.tau),
            ind_ev=crossing_index(eigenvalues, kind),
            step=state.step,
            delta=delta,
            **kwargs,
        )


def _detect(stepper: PseudoArclengthContinuation, recorder: _Recorder, prev: ContinuationState, new: ContinuationState) -> None:
    """Detect folds and bifurcations between two consecutive states and add them to the result."""
    config = stepper.config
    # a fold reverses the direction of the branch in the parameter
    is_fold = config.detect_fold and prev.tau[-1] * new.tau[-1] < 0
    interval = (min(prev.p, new.p), max(prev.p, new.p))
    delta = (0, 0)
    if config.detect_bifurcation >= 2 and prev.n_unstable >= 0:
        delta = kernel_dimension((prev.n_unstable, prev.n_imag), (new.n_unstable, new.n_imag))
    crossing = delta != (0, 0)
    kind = bifurcation_kind(delta)
    if is_fold and kind == "bp":
        # the crossing real eigenvalue belongs to the fold
        kind = "fold"
    if crossing and config.detect_bifurcation >= 3:
        located = locate_bifurcation(stepper, prev, new)
        point = recorder.critical_point(
            kind,
            new,
            located.x,
            located.param,
            delta,
            status=located.status,
            precision=located.precision,
            interval=located.interval,
        )
        recorder.result.add_point(point)
        logger.info("%s point found: p ≈ %.8f, δ = %s, [%s]", kind, point.param, delta, point.status)
    elif crossing:
        point = recorder.critical_point(kind, new, new.x, new.p, delta, status="guess", interval=interval)
        recorder.result.add_point(point)
        logger.info("%s point detected between p = %.6f and p = %.6f, δ = %s", kind, prev.p, new.p, delta)
    if is_fold and not (crossing and kind == "fold"):
        # a fold that does not coincide with the crossing of a real eigenvalue
        point = recorder.critical_point("fold", new, new.x, new.p, (0, 0), status="guess", interval=interval)
        recorder.result.add_point(point)
        logger.info("fold point detected between p = %.6f and p = %.6f", prev.p, new.p)


def continuation(
    F: Functional,
    J: JacobianFunction,
    x0: Array,
    params: Any,
    lens: ParameterLens,
    config: ContinuationPar,
    linear_algo: Any = None,
    *,
    kind: str = "equilibrium",
    functional: Any = None,
    record_from_solution: RecordFunction | None = None,
    finalize_step: Callable[[ContinuationState, Array, int, ContResult], bool] | None = None,
    update_section: Callable[[Array, Any], Array] | None = None,
    update_section_every_step: int = 0,
) -> tuple[Branch, Array, Array]:
    """
    Continue the solution branch of F(x, par) = 0 starting from x0 with pseudo-arclength continuation.

    Parameters
    ----------
    F
        The residual F(x, par).
    J
        The Jacobian J(x, par): a matrix, a LinearOperator or a callable dx -> J * dx.
    x0
        Initial guess for the solution at the parameter value of params.
    params
        The parameter object, the continuation starts at ``lens.get(params)``.
    lens
        The accessor of the continuation parameter.
    config
        The settings of the continuation.
    linear_algo
        The bordered linear solver. Defaults to MatrixBLS for the direct solver
        and BorderingBLS otherwise.
    kind
        The type of the branch stored in the result.
    functional
        The functional that produced the branch, stored in the result.
    record_from_solution
        Projection of the solution into named scalars, recorded at every step.
        Defaults to the norm.
    finalize_step
        Called as finalize_step(state, tangent, step, result) after each
        accepted step, returning False stops the continuation.
    update_section
        Called as update_section(x, par) -> x every ``update_section_every_step``
        steps, e.g. to re-anchor the section of a shooting problem. If the
        returned state differs, the tangent is recomputed.
    update_section_every_step
        Period of the section update in steps (0: never).

    Returns
    -------
    tuple[Branch, Array, Array]
        The branch, the final solution and the final tangent.
    """
    if update_section_every_step < 0:
        raise ValueError("update_section_every_step must be non-negative")
    record_from_solution = record_from_solution or record_norm
    stepper = PseudoArclengthContinuation(F, J, params, lens, config, linear_algo)
    result = ContResult(config, params, lens, kind=kind, functional=functional)
    recorder = _Recorder(result, record_from_solution)
    # converge onto the initial point
    p0 = lens.get(params)
    sol = newton(lambda x: F(x, params), lambda x: J(x, params), x0, config.newton_options)
    if not sol.converged:
        raise np.linalg.LinAlgError(
            f"Newton solver did not converge onto the initial point after {sol.iterations} iterations "
            f"(residuals: {sol.residuals[-1]:.3e})"
        )
    state = stepper.initial_state(sol.x, p0)
    state = replace(state, itnewton=sol.iterations, itlinear=sol.itlinear)
    recorder.append(state)
    logger.info("Step #0, p=%.6e, #+EVs: %d", state.p, state.n_unstable)

    ds = config.clamp_ds(config.ds)
    termination = None
    while termination is None:
        if not config.p_min <= state.p <= config.p_max:
            termination = "p-bounds"
            break
        if state.step >= config.max_steps:
            termination = "max-steps"
            break
        new_state, ds = stepper.step(state, ds)
        if new_state is None:
            termination = "stalled"
            break
        recorder.append(new_state)
        if config.compute_eigenelements or config.detect_fold:
            _detect(stepper, recorder, state, new_state)
        state = new_state
        logger.info(
            "Step #%d, p=%.6e, ds=%.2e, #Newton: %d, #+EVs: %d",
            state.step,
            state.p,
            state.ds,
            state.itnewton,
            state.n_unstable,
        )
        if update_section is not None and update_section_every_step > 0 and state.step % update_section_every_step == 0:
            x_new = np.asarray(update_section(state.x, stepper.par(state.p)))
            if x_new.shape != state.x.shape or not np.array_equal(x_new, state.x):
                state = stepper.refresh_tangent(replace(state, x=x_new))
        if finalize_step is not None and not finalize_step(state, state.tau, state.step, result):
            termination = "callback"
    result.freeze(termination)
    logger.info("Continuation terminated (%s) after %d steps", termination, state.step)
    return Branch(result), state.x, state.tau
