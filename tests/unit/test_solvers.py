"""Unit tests for the Newton solver, the linear solvers and the eigensolver."""

import numpy as np
import pytest
import scipy.sparse as sp

from bifcont.core.parameters import NewtonPar
from bifcont.core.solvers import (
    BorderedJacobian,
    BorderingBLS,
    DefaultLS,
    EigenSolver,
    GMRESIterativeSolver,
    MatrixBLS,
    apply_operator,
    as_matrix,
    finite_differences,
    newton,
)
from bifcont.core.types import Array, Matrix


def system_2d(u: Array) -> Array:
    """
    Solve a 2D system of equations.

    f1 = x^2 + y^2 - 1 (circle radius 1)
    f2 = x - y (line x=y)
    Solutions: x=y=1/sqrt(2) approx 0.707.
    """
    x, y = u
    return np.array([x**2 + y**2 - 1, x - y])


def system_2d_jacobian(u: Array) -> Matrix:
    x, y = u
    return np.array([[2 * x, 2 * y], [1, -1]])


def test_newton_2d() -> None:
    result = newton(system_2d, system_2d_jacobian, np.array([1.0, 0.5]), NewtonPar())
    assert result.converged
    np.testing.assert_allclose(result.x, [1 / np.sqrt(2)] * 2, atol=1e-10)
    assert result.iterations > 0
    assert len(result.residuals) == result.iterations + 1
    assert result.residuals[-1] <= NewtonPar().tol
    # superlinear convergence in the last step
    assert result.residuals[-1] < 1e-3 * result.residuals[-2]


def test_newton_no_iteration_at_solution() -> None:
    x0 = np.array([1.0, 1.0]) / np.sqrt(2)
    result = newton(system_2d, system_2d_jacobian, x0, NewtonPar(tol=1e-12))
    assert result.converged
    assert result.iterations == 0


def test_newton_reports_divergence() -> None:
    """Failure to converge is reported, not raised."""
    result = newton(lambda u: u**2 + 1.0, lambda u: np.diag(2 * u), np.array([0.5]), NewtonPar(max_iterations=5))
    assert not result.converged
    assert result.iterations == 5


def test_finite_differences() -> None:
    u = np.array([0.3, -0.8])
    np.testing.assert_allclose(finite_differences(system_2d, u), system_2d_jacobian(u), atol=1e-6)


def test_default_ls_dense_sparse_and_dual() -> None:
    A = np.array([[4.0, 1.0], [2.0, 3.0]])
    b1 = np.array([1.0, 2.0])
    b2 = np.array([0.0, 1.0])
    solver = DefaultLS()
    x, success, it = solver(A, b1)
    assert success and it == 1
    np.testing.assert_allclose(A @ x, b1)
    x1, x2, success, its = solver(sp.csr_matrix(A), b1, b2)
    np.testing.assert_allclose(A @ x1, b1)
    np.testing.assert_allclose(A @ x2, b2)


def test_default_ls_rejects_matrix_free() -> None:
    with pytest.raises(TypeError):
        DefaultLS()(lambda dx: dx, np.ones(2))


def test_gmres_matrix_free() -> None:
    A = np.array([[4.0, 1.0, 0.0], [1.0, 3.0, 1.0], [0.0, 1.0, 2.0]])
    b = np.array([1.0, 2.0, 3.0])
    x, success, it = GMRESIterativeSolver()(lambda dx: A @ dx, b)
    assert success
    assert it > 0
    np.testing.assert_allclose(x, np.linalg.solve(A, b), atol=1e-9)


def test_operator_helpers() -> None:
    A = np.array([[1.0, 2.0], [3.0, 4.0]])
    dx = np.array([1.0, -1.0])
    np.testing.assert_allclose(apply_operator(A, dx), A @ dx)
    np.testing.assert_allclose(apply_operator(lambda v: A @ v, dx), A @ dx)
    assert as_matrix(lambda v: v) is None
    np.testing.assert_array_equal(as_matrix(2.0), [[2.0]])


@pytest.mark.parametrize("sparse", [False, True])
def test_bordered_solvers_agree(sparse: bool) -> None:
    rng = np.random.default_rng(1234)
    N = 5
    A = rng.standard_normal((N, N)) + 5 * np.eye(N)
    dR = rng.standard_normal(N)
    tau = rng.standard_normal(N + 1)
    rhs = rng.standard_normal(N + 1)
    J = sp.csr_matrix(A) if sparse else A
    Jb = BorderedJacobian(J, dR, tau[:N], tau[N])
    z_matrix, _, _ = MatrixBLS()(Jb, rhs)
    z_bordering, _, _ = BorderingBLS()(Jb, rhs)
    ext = np.block([[A, dR[:, None]], [tau[None, :N], np.array([[tau[N]]])]])
    np.testing.assert_allclose(ext @ z_matrix, rhs, atol=1e-10)
    np.testing.assert_allclose(z_bordering, z_matrix, atol=1e-10)


def test_bordering_with_gmres() -> None:
    A = np.diag([1.0, 2.0, 3.0])
    Jb = BorderedJacobian(lambda dx: A @ dx, np.ones(3), np.zeros(3), 1.0)
    z, success, _ = BorderingBLS(GMRESIterativeSolver())(Jb, np.array([1.0, 1.0, 1.0, 2.0]))
    assert success
    np.testing.assert_allclose(z, [-1.0, -0.5, -1.0 / 3, 2.0], atol=1e-9)


def test_eigensolver_sorted_by_real_part() -> None:
    A = np.diag([-1.0, 2.0, 0.5, -3.0])
    eigenvalues, eigenvectors, converged, _ = EigenSolver()(A, 3)
    assert converged
    np.testing.assert_allclose(eigenvalues, [2.0, 0.5, -1.0])
    assert eigenvectors.shape == (4, 3)
    np.testing.assert_allclose(np.abs(eigenvectors[:, 0]), [0, 1, 0, 0])


def test_eigensolver_sparse_and_matrix_free() -> None:
    N = 150
    diag = -np.arange(N, dtype=float) - 1.0
    A = sp.diags(diag).tocsc()
    # shift-invert around 0 finds the eigenvalues closest to 0
    eigenvalues, _, _, _ = EigenSolver(dense_threshold=10)(A, 3)
    np.testing.assert_allclose(eigenvalues, [-1.0, -2.0, -3.0], atol=1e-8)
    eigenvalues, _, _, _ = EigenSolver()(lambda v: diag * v, 2, n=N)
    np.testing.assert_allclose(eigenvalues, [-1.0, -2.0], atol=1e-6)
    with pytest.raises(TypeError):
        EigenSolver()(lambda v: v, 2)
