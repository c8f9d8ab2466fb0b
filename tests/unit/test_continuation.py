"""Sociable unit tests for the pseudo-arclength continuation stepper and driver."""

import numpy as np
import pytest
from conftest import cubic_map, cubic_map_jacobian

from bifcont.continuation.continuation_steppers import (
    ContinuationState,
    PseudoArclengthContinuation,
    continuation,
    record_norm,
)
from bifcont.core.parameters import ContinuationPar, NewtonPar, ParameterLens
from bifcont.core.results import ContResult
from bifcont.core.solvers import BorderingBLS, GMRESIterativeSolver, MatrixBLS


def fold_rhs(x, p):
    """x^2 + p = 0: two branches x = +-sqrt(-p) meeting in a fold at p = 0."""
    return x**2 + p


def fold_jacobian(x, p):
    return np.diag(2 * x)


def test_default_bordered_solver(scalar_lens) -> None:
    stepper = PseudoArclengthContinuation(fold_rhs, fold_jacobian, -1.0, scalar_lens, ContinuationPar())
    assert isinstance(stepper.linear_algo, MatrixBLS)
    config = ContinuationPar(newton_options=NewtonPar(linsolver=GMRESIterativeSolver()))
    stepper = PseudoArclengthContinuation(fold_rhs, fold_jacobian, -1.0, scalar_lens, config)
    assert isinstance(stepper.linear_algo, BorderingBLS)


def test_initial_tangent(scalar_lens) -> None:
    stepper = PseudoArclengthContinuation(fold_rhs, fold_jacobian, -1.0, scalar_lens, ContinuationPar())
    tau = stepper.tangent(np.array([1.0]), -1.0, 1.0)
    # along x = sqrt(-p): dx/dp = -1 / (2 x)
    np.testing.assert_allclose(tau, np.array([-0.5, 1.0]) / np.sqrt(1.25), atol=1e-7)
    tau = stepper.tangent(np.array([1.0]), -1.0, -1.0)
    assert tau[-1] < 0
    assert np.linalg.norm(tau) == pytest.approx(1.0)


def test_step_follows_branch(scalar_lens) -> None:
    config = ContinuationPar(ds=0.05, ds_max=0.1)
    stepper = PseudoArclengthContinuation(fold_rhs, fold_jacobian, -1.0, scalar_lens, config)
    state = stepper.initial_state(np.array([1.0]), -1.0)
    new_state, ds_next = stepper.step(state, 0.05)
    assert new_state is not None
    assert new_state.step == 1
    assert fold_rhs(new_state.x, new_state.p) == pytest.approx(0.0, abs=1e-10)
    # the arclength condition
    assert np.dot(new_state.z - state.z, state.tau) == pytest.approx(0.05)
    assert np.linalg.norm(new_state.tau) == pytest.approx(1.0)
    assert config.ds_min <= abs(ds_next) <= config.ds_max


def test_continuation_through_fold(scalar_lens) -> None:
    config = ContinuationPar(ds=0.05, ds_max=0.1, p_min=-1.5, p_max=0.5, max_steps=200)
    br, x, tau = continuation(fold_rhs, fold_jacobian, np.array([1.0]), -1.0, scalar_lens, config)
    assert br.termination == "p-bounds"
    # the branch turns around at the fold and returns along x = -sqrt(-p)
    assert br.param[-1] < -1.5
    assert x[0] < 0
    assert len(br.foldpoint) == 1
    fold = br.foldpoint[0]
    assert fold.kind == "fold"
    assert fold.param == pytest.approx(0.0, abs=0.02)
    assert fold.delta == (0, 0)
    assert fold.status == "guess"
    assert len(br.bifpoint) == 0
    # the parameter component of the tangent changes sign at the fold
    assert tau[-1] < 0


def test_max_steps_and_callback(scalar_lens) -> None:
    config = ContinuationPar(ds=0.01, max_steps=5, p_min=-2.0, p_max=2.0)
    br, _, _ = continuation(fold_rhs, fold_jacobian, np.array([1.0]), -1.0, scalar_lens, config)
    assert br.termination == "max-steps"
    assert len(br) == 6
    np.testing.assert_array_equal(br.step, np.arange(6))

    seen = []

    def finalize_step(state: ContinuationState, tau, step: int, result: ContResult) -> bool:
        seen.append(step)
        return step < 3

    br, _, _ = continuation(
        fold_rhs, fold_jacobian, np.array([1.0]), -1.0, scalar_lens, config, finalize_step=finalize_step
    )
    assert br.termination == "callback"
    assert seen == [1, 2, 3]
    assert len(br) == 4


def test_initial_point_must_converge(scalar_lens) -> None:
    with pytest.raises(np.linalg.LinAlgError):
        continuation(lambda x, p: x**2 + 1.0, fold_jacobian, np.array([0.5]), 0.0, scalar_lens, ContinuationPar())


def test_recorded_fields_and_solutions() -> None:
    lens = ParameterLens.key("p")

    def rhs(x, par):
        return fold_rhs(x, par["p"])

    def jac(x, par):
        return fold_jacobian(x, par["p"])

    config = ContinuationPar(ds=0.05, max_steps=4, save_sol_every_step=2, detect_bifurcation=1, nev=1)
    br, _, _ = continuation(
        rhs,
        jac,
        np.array([1.0]),
        {"p": -1.0},
        lens,
        config,
        record_from_solution=lambda x, p: {"x": float(x[0]), "p2": p**2},
    )
    assert br.branch.user_fields == ("x", "p2")
    np.testing.assert_allclose(br.p2, br.param**2)
    assert [sol["step"] for sol in br.sol] == [0, 2, 4]
    # the upper branch x = sqrt(-p) is unstable: the eigenvalue is 2x > 0
    assert np.all(br.n_unstable == 1)
    assert not np.any(br.stable)
    assert len(br.eig) == len(br)
    assert br.params == {"p": -1.0}
    assert br.frozen


def test_record_norm() -> None:
    assert record_norm(np.array([3.0, 4.0]), 0.0) == {"norm": 5.0}


def test_stalled_stepper(scalar_lens) -> None:
    """The branch x = sqrt(0.5 - p) ends at p = 0.5, the corrector cannot converge beyond its end."""

    def rhs(x, p):
        return x - np.sqrt(0.5 - p)

    def jac(x, p):
        return np.ones((1, 1))

    config = ContinuationPar(ds=0.05, ds_min=1e-3, ds_max=0.1, p_min=-2.0, p_max=2.0, max_steps=2000)
    with np.errstate(invalid="ignore"):
        br, x, _ = continuation(rhs, jac, np.array([np.sqrt(0.5)]), 0.0, scalar_lens, config)
    assert br.termination == "stalled"
    # the branch accumulated so far is kept
    assert len(br) > 1
    assert br.param[-1] < 0.5
    assert np.all(np.abs(br.ds) >= config.ds_min)
    assert np.all(np.abs(br.ds) <= config.ds_max)


def test_cubic_map_trivial_branch_needs_no_newton_iterations(scalar_lens) -> None:
    config = ContinuationPar(ds=0.01, ds_max=0.05, p_min=-0.5, p_max=0.4, detect_bifurcation=1, nev=1)
    br, x, _ = continuation(cubic_map, cubic_map_jacobian, np.array([0.0]), -0.2, scalar_lens, config)
    assert br.termination == "p-bounds"
    np.testing.assert_array_equal(br.itnewton, 0)
    np.testing.assert_array_equal(x, [0.0])
    # the step size grows up to ds_max
    assert br.ds[-1] == pytest.approx(0.05)
