"""Unit tests for the periodic orbit problems, using the Stuart-Landau oscillator."""

import numpy as np
import pytest
from conftest import StuartLandauPar, stuart_landau, stuart_landau_jacobian

from bifcont.core.parameters import NewtonPar
from bifcont.core.solvers import GMRESIterativeSolver, finite_differences
from bifcont.periodic import (
    PeriodicOrbitTrapProblem,
    PoincareShootingProblem,
    ShootingProblem,
    build_jacobian,
    continuation_periodic_orbit,
    newton_periodic_orbit,
    sample_orbit,
)

PAR = StuartLandauPar(p=0.04)
#: Floquet multiplier of the limit cycle of radius sqrt(p): exp(-2 p T)
MULTIPLIER = np.exp(-2 * PAR.p * 2 * np.pi)


def circle(M: int, radius: float = 0.2) -> np.ndarray:
    theta = 2 * np.pi * np.arange(M) / M
    return radius * np.column_stack((np.cos(theta), np.sin(theta)))


def trap_problem(M: int) -> PeriodicOrbitTrapProblem:
    return PeriodicOrbitTrapProblem(stuart_landau, stuart_landau_jacobian, 2, M)


def test_trap_exact_discrete_orbit() -> None:
    """The discrete orbit of the trapezoidal rule lies on the circle of radius sqrt(p), with period 2 M tan(pi / M)."""
    M = 20
    prob = trap_problem(M)
    x = prob.orbit_from_slices(circle(M), 2 * M * np.tan(np.pi / M))
    assert x.size == 2 * M + 1
    np.testing.assert_allclose(prob(x, PAR), 0.0, atol=1e-14)
    assert prob.period(x, PAR) == pytest.approx(2 * M * np.tan(np.pi / M))
    np.testing.assert_allclose(prob.slices(x), circle(M))


def test_trap_linearizations_agree() -> None:
    M = 6
    rng = np.random.default_rng(42)
    prob = trap_problem(M).with_phase_condition(circle(M))
    x = prob.orbit_from_slices(circle(M) + 0.01 * rng.standard_normal((M, 2)), 6.5)
    dx = rng.standard_normal(x.size)
    J_fd = finite_differences(lambda z: prob(z, PAR), x, 1e-7)
    np.testing.assert_allclose(prob.jacobian_vector(x, PAR, dx), J_fd @ dx, atol=1e-6)
    J_ad = prob.jacobian_matrix(x, PAR)
    np.testing.assert_allclose(J_ad, J_fd, atol=1e-6)
    np.testing.assert_allclose(J_ad @ dx, prob.jacobian_vector(x, PAR, dx), atol=1e-10)
    jvp = build_jacobian(prob, "ad-matrix-free", x, PAR)(x, PAR)
    np.testing.assert_allclose(jvp(dx), prob.jacobian_vector(x, PAR, dx), rtol=1e-10, atol=1e-12)
    # the dense Jacobian is refreshed in place
    jac = build_jacobian(prob, "ad-dense", x, PAR)
    J1 = jac(x, PAR)
    J2 = jac(x + 0.01, PAR)
    assert J1 is J2
    np.testing.assert_allclose(J2, prob.jacobian_matrix(x + 0.01, PAR))


def test_trap_monodromy() -> None:
    M = 50
    prob = trap_problem(M)
    x = prob.orbit_from_slices(circle(M), 2 * M * np.tan(np.pi / M))
    multipliers = np.sort(np.abs(np.linalg.eigvals(prob.monodromy(x, PAR))))
    np.testing.assert_allclose(multipliers[1], 1.0, atol=1e-10)
    np.testing.assert_allclose(multipliers[0], MULTIPLIER, rtol=1e-2)


def test_trap_branch_switching_problem() -> None:
    M = 4
    prob, x0 = trap_problem(M).problem_for_branch_switching(np.zeros(2), np.array([1.0, 0.0]), circle(M), 6.3, PAR)
    np.testing.assert_array_equal(prob.xpi, np.zeros(2 * M))
    np.testing.assert_array_equal(prob.phi, [1.0, 0.0] + [0.0] * (2 * M - 2))
    assert x0[-1] == 6.3
    np.testing.assert_allclose(prob.slices(x0), circle(M))


def test_invalid_linearization() -> None:
    prob = trap_problem(4)
    x = prob.orbit_from_slices(circle(4), 6.3)
    with pytest.raises(ValueError, match="analytic-matrix-free"):
        build_jacobian(prob, "automatic", x, PAR)
    with pytest.raises(ValueError):
        continuation_periodic_orbit(prob, x, PAR, None, None, linearization="jfnk")


def test_shooting_residual_and_monodromy() -> None:
    prob = ShootingProblem(stuart_landau, stuart_landau_jacobian, 2, 2, normal=np.array([0.0, 1.0]))
    x = prob.orbit_from_slices(circle(2), 2 * np.pi)
    np.testing.assert_allclose(prob(x, PAR), 0.0, atol=1e-8)
    multipliers = np.sort(np.abs(np.linalg.eigvals(prob.monodromy(x, PAR))))
    np.testing.assert_allclose(multipliers, [MULTIPLIER, 1.0], rtol=1e-6)


def test_shooting_jacobian_vector() -> None:
    prob = ShootingProblem(stuart_landau, stuart_landau_jacobian, 2, 2, normal=np.array([0.0, 1.0]))
    x = prob.orbit_from_slices(circle(2, 0.25), 6.0)
    dx = np.array([0.3, -0.2, 0.1, 0.5, 0.7])
    J_fd = finite_differences(lambda z: prob(z, PAR), x, 1e-5)
    np.testing.assert_allclose(prob.jacobian_vector(x, PAR, dx), J_fd @ dx, atol=1e-4)


def test_shooting_newton_matrix_free() -> None:
    prob = ShootingProblem(stuart_landau, stuart_landau_jacobian, 2, 2, normal=np.array([0.0, 1.0]))
    guess = prob.orbit_from_slices(circle(2, 0.25), 6.0)
    options = NewtonPar(tol=1e-8, linsolver=GMRESIterativeSolver(rtol=1e-10))
    sol = newton_periodic_orbit(prob, guess, PAR, options)
    assert sol.converged
    np.testing.assert_allclose(np.linalg.norm(prob.slices(sol.x), axis=1), 0.2, atol=1e-7)
    assert prob.period(sol.x, PAR) == pytest.approx(2 * np.pi, rel=1e-7)


def test_shooting_update_section() -> None:
    prob = ShootingProblem(stuart_landau, stuart_landau_jacobian, 2, 2)
    x = prob.orbit_from_slices(circle(2), 2 * np.pi)
    assert prob.update_section(x, PAR) is x
    np.testing.assert_allclose(prob.center, [0.2, 0.0])
    np.testing.assert_allclose(prob.normal, stuart_landau(np.array([0.2, 0.0]), PAR))


def poincare_problem(M: int) -> PoincareShootingProblem:
    # hyperplanes y = 0, crossed upwards (M = 1) or alternately up- and downwards (M = 2)
    normals = np.array([[0.0, 1.0], [0.0, -1.0]])[:M]
    return PoincareShootingProblem(stuart_landau, stuart_landau_jacobian, 2, M, normals, np.zeros((M, 2)))


def test_poincare_reduce_and_lift() -> None:
    prob = PoincareShootingProblem(
        stuart_landau, stuart_landau_jacobian, 2, 1, np.array([[1.0, 2.0]]), np.array([[0.5, 0.5]])
    )
    y_hat = np.array([0.3])
    y = prob.lift(0, y_hat)
    # the lifted point lies on the hyperplane
    assert np.dot(y - prob.centers[0], prob.normals[0]) == pytest.approx(0.0, abs=1e-15)
    np.testing.assert_allclose(prob.reduce(0, y), y_hat)
    np.testing.assert_allclose(np.linalg.norm(prob.normals[0]), 1.0)


@pytest.mark.parametrize("M", [1, 2])
def test_poincare_fixed_point(M: int) -> None:
    prob = poincare_problem(M)
    x = prob.orbit_from_slices(circle(M), 2 * np.pi)
    assert x.size == M
    np.testing.assert_allclose(prob(x, PAR), 0.0, atol=1e-8)
    assert prob.period(x, PAR) == pytest.approx(2 * np.pi, rel=1e-7)
    monodromy = prob.monodromy(x, PAR)
    assert monodromy.shape == (1, 1)
    np.testing.assert_allclose(monodromy[0, 0], MULTIPLIER, rtol=1e-5)
    # the first component is the derivative of the first return map, minus the identity
    expected = MULTIPLIER - 1 if M == 1 else -np.sqrt(MULTIPLIER) - 1
    np.testing.assert_allclose(prob.jacobian_vector(x, PAR, np.ones(M))[0], expected, rtol=1e-5)


def test_poincare_newton() -> None:
    prob = poincare_problem(1)
    sol = newton_periodic_orbit(
        prob, np.array([0.25]), PAR, NewtonPar(tol=1e-9), linearization="finite-difference-dense", delta=1e-6
    )
    assert sol.converged
    np.testing.assert_allclose(sol.x, [0.2], atol=1e-7)


def test_poincare_update_section() -> None:
    prob = poincare_problem(1)
    x_new = prob.update_section(np.array([0.2]), PAR)
    np.testing.assert_array_equal(x_new, [0.0])
    np.testing.assert_allclose(prob.centers, [[0.2, 0.0]])
    np.testing.assert_allclose(prob.normals, [[0.0, 1.0]], atol=1e-15)
    np.testing.assert_allclose(prob(x_new, PAR), 0.0, atol=1e-8)


def test_sample_orbit() -> None:
    slices = sample_orbit(lambda t: np.array([np.cos(t), np.sin(t)]), 4, np.pi / 2)
    np.testing.assert_allclose(slices, [[0, -1], [1, 0], [0, 1], [-1, 0]], atol=1e-15)
