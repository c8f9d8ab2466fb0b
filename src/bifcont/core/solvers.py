"""Newton corrector, linear solvers, bordered linear solvers and the eigensolver."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np
import scipy.linalg
import scipy.sparse as sp
import scipy.sparse.linalg

from .types import Array, Matrix

if TYPE_CHECKING:
    from .parameters import NewtonPar

logger = logging.getLogger(__name__)


def as_matrix(J: Any) -> Matrix | None:
    """
    Return the matrix representation of a Jacobian, or None if it is matrix-free.

    Objects exposing a ``to_matrix()`` method (e.g. wrapped Jacobians) are asked
    for their matrix.
    """
    if sp.issparse(J):
        return J
    if isinstance(J, np.ndarray):
        return np.atleast_2d(J)
    if np.isscalar(J):
        return np.array([[J]])
    if hasattr(J, "to_matrix"):
        return J.to_matrix()
    return None


def apply_operator(J: Any, dx: Array) -> Array:
    """Apply a Jacobian (matrix, LinearOperator or callable) to a direction dx."""
    A = J if sp.issparse(J) or isinstance(J, np.ndarray) or np.isscalar(J) else None
    if A is not None:
        return np.asarray(as_matrix(A) @ dx).ravel()
    return np.asarray(J(dx)).ravel()


def as_linear_operator(J: Any, n: int, dtype: Any = float) -> scipy.sparse.linalg.LinearOperator:
    """Wrap a Jacobian into a scipy LinearOperator of shape (n, n)."""
    if isinstance(J, scipy.sparse.linalg.LinearOperator):
        return J
    A = as_matrix(J)
    if A is not None:
        return scipy.sparse.linalg.aslinearoperator(A)
    return scipy.sparse.linalg.LinearOperator((n, n), matvec=lambda v: apply_operator(J, v), dtype=dtype)


def finite_differences(F: Callable[[Array], Array], x: Array, delta: float = 1e-8) -> np.ndarray:
    """
    Calculate the Jacobian dF/dx with forward finite differences of step size delta.

    Column k of the result is (F(x + delta * e_k) - F(x)) / delta.
    """
    x = np.asarray(x, dtype=float)
    f0 = np.asarray(F(x)).ravel()
    J = np.zeros((f0.size, x.size))
    # make a copy of the unknowns
    x1 = x.copy()
    # perturb every degree of freedom and calculate Jacobian using FD
    for k in range(x.size):
        xk = x1[k]
        x1[k] = xk + delta
        J[:, k] = (np.asarray(F(x1)).ravel() - f0) / delta
        x1[k] = xk
    return J


class NewtonResult(NamedTuple):
    """Result of a Newton solve."""

    #: the (last) iterate
    x: Array
    #: history of the residual norms, starting with the initial guess
    residuals: list[float]
    #: did the solver converge?
    converged: bool
    #: number of Newton iterations taken
    iterations: int
    #: total number of linear iterations taken
    itlinear: int


def newton(
    F: Callable[[Array], Array],
    J: Callable[[Array], Any],
    x0: Array,
    options: NewtonPar,
    linsolver: Callable[..., Any] | None = None,
) -> NewtonResult:
    """
    Solve F(x) = 0 with a classical Newton method, starting from x0.

    The linear systems J(x) * dx = F(x) are solved with ``linsolver``
    (default: ``options.linsolver``). Failure to converge is not an error here,
    it is reported through the ``converged`` flag of the result.
    """
    if linsolver is None:
        linsolver = options.linsolver
    x = np.array(x0, dtype=float, copy=True)
    res = np.asarray(F(x)).ravel()
    err = float(np.linalg.norm(res, np.inf))
    residuals = [err]
    iterations = 0
    itlinear = 0
    while err > options.tol and iterations < options.max_iterations:
        # do a classical Newton step
        dx, success, it = linsolver(J(x), res)
        if not success:
            logger.debug("Linear solver did not converge in Newton step #%d", iterations + 1)
        itlinear += int(np.sum(it))
        x = x - np.real_if_close(dx)
        iterations += 1
        res = np.asarray(F(x)).ravel()
        err = float(np.linalg.norm(res, np.inf))
        residuals.append(err)
        logger.debug("Newton step #%d, max. residuals: %.2e", iterations, err)
        if not np.isfinite(err):
            break
    converged = bool(err <= options.tol)
    return NewtonResult(x, residuals, converged, iterations, itlinear)


class DefaultLS:
    """
    Direct linear solver for dense and sparse matrices.

    Called as ``solver(J, rhs)`` it returns ``(x, success, iterations)``, called
    as ``solver(J, rhs1, rhs2)`` it returns ``(x1, x2, success, (it1, it2))``
    reusing a single factorization.
    """

    def __call__(self, J: Any, rhs: Array, rhs2: Array | None = None) -> tuple:
        A = as_matrix(J)
        if A is None:
            raise TypeError(
                "DefaultLS requires a matrix, but a matrix-free Jacobian was given. Use the GMRESIterativeSolver instead."
            )
        if sp.issparse(A):
            lu = scipy.sparse.linalg.splu(sp.csc_matrix(A))
            solve = lu.solve
        else:
            lu_piv = scipy.linalg.lu_factor(A)

            def solve(b: Array) -> Array:
                return scipy.linalg.lu_solve(lu_piv, b)

        if rhs2 is None:
            return solve(rhs), True, 1
        return solve(rhs), solve(rhs2), True, (1, 1)


class GMRESIterativeSolver:
    """Iterative GMRES linear solver for matrix-free Jacobians (scipy.sparse.linalg.gmres)."""

    def __init__(self, rtol: float = 1e-12, atol: float = 0.0, restart: int = 200, maxiter: int = 100) -> None:
        #: relative tolerance of the residual
        self.rtol = rtol
        #: absolute tolerance of the residual
        self.atol = atol
        #: number of iterations between restarts
        self.restart = restart
        #: maximum number of restarts
        self.maxiter = maxiter

    def _solve(self, J: Any, rhs: Array) -> tuple[Array, bool, int]:
        niter = 0

        def count(_: Any) -> None:
            nonlocal niter
            niter += 1

        op = as_linear_operator(J, rhs.size, dtype=np.result_type(rhs, float))
        x, info = scipy.sparse.linalg.gmres(
            op,
            rhs,
            rtol=self.rtol,
            atol=self.atol,
            restart=self.restart,
            maxiter=self.maxiter,
            callback=count,
            callback_type="pr_norm",
        )
        return x, info == 0, niter

    def __call__(self, J: Any, rhs: Array, rhs2: Array | None = None) -> tuple:
        x1, success1, it1 = self._solve(J, rhs)
        if rhs2 is None:
            return x1, success1, it1
        x2, success2, it2 = self._solve(J, rhs2)
        return x1, x2, success1 and success2, (it1, it2)


class BorderedJacobian:
    r"""
    Jacobian of the arclength-extended system in (x, p)-space.

    .. math::
        \begin{pmatrix} J & dR \\ \tau_x^T & \tau_p \end{pmatrix}

    with the Jacobian J, the parameter derivative dR = dF/dp and the
    tangent (tau_x, tau_p).
    """

    def __init__(self, J: Any, dR: Array, tau_x: Array, tau_p: float) -> None:
        self.J = J
        self.dR = dR
        self.tau_x = tau_x
        self.tau_p = tau_p


class MatrixBLS:
    """Bordered linear solver that assembles the full extended matrix and solves it directly."""

    def __call__(self, Jb: BorderedJacobian, rhs: Array) -> tuple[Array, bool, int]:
        A = as_matrix(Jb.J)
        if A is None:
            raise TypeError("MatrixBLS requires a matrix Jacobian. Use BorderingBLS for matrix-free Jacobians.")
        N = Jb.dR.size
        if sp.issparse(A):
            ext = sp.bmat(
                [
                    [A, sp.csr_matrix(Jb.dR.reshape((N, 1)))],
                    [sp.csr_matrix(Jb.tau_x.reshape((1, N))), sp.csr_matrix([[Jb.tau_p]])],
                ],
                format="csc",
            )
            return scipy.sparse.linalg.spsolve(ext, rhs), True, 1
        ext = np.block([[A, Jb.dR.reshape((N, 1))], [Jb.tau_x.reshape((1, N)), np.array([[Jb.tau_p]])]])
        return np.linalg.solve(ext, rhs), True, 1

    def wrap_solver(self, wrapper: Callable[[Any], Any]) -> MatrixBLS:
        """Return the bordered solver with its inner linear solver wrapped (no inner solver here)."""
        return self


class BorderingBLS:
    """
    Bordered linear solver based on the bordering algorithm.

    Only requires two solves with the (possibly matrix-free) Jacobian J, done
    with a single dual right-hand side call of the inner linear solver.
    """

    def __init__(self, solver: Callable[..., Any] | None = None) -> None:
        #: the inner linear solver for J
        self.solver = DefaultLS() if solver is None else solver

    def __call__(self, Jb: BorderedJacobian, rhs: Array) -> tuple[Array, bool, int]:
        r, n = rhs[:-1], rhs[-1]
        x1, x2, success, its = self.solver(Jb.J, r, Jb.dR)
        denominator = Jb.tau_p - np.dot(Jb.tau_x, x2)
        dp = (n - np.dot(Jb.tau_x, x1)) / denominator
        dx = x1 - dp * x2
        return np.append(dx, dp), success, int(np.sum(its))

    def wrap_solver(self, wrapper: Callable[[Any], Any]) -> BorderingBLS:
        """Return a new bordered solver whose inner linear solver is wrapper(solver)."""
        return BorderingBLS(wrapper(self.solver))


class EigenSolver:
    """
    Eigensolver for the linearization along a branch.

    Small or dense problems are treated with a direct eigensolver, large sparse
    ones with the iterative eigensolver ARPACK in shift-invert mode and matrix-free
    ones with ARPACK searching for the eigenvalues with largest real part.
    Called as ``eigsolver(J, nev)``, it returns ``(eigenvalues, eigenvectors,
    converged, iterations)`` with the eigenvalues sorted by decreasing real part
    and the eigenvectors as columns.
    """

    def __init__(self, shift: float = 0.0, tol: float = 1e-10, dense_threshold: int = 100) -> None:
        #: The shift used for the shift-invert method in the iterative eigensolver.
        self.shift = shift
        #: convergence tolerance of the iterative eigensolver
        self.tol = tol
        #: problems up to this size are always treated with a direct eigensolver
        self.dense_threshold = dense_threshold

    def __call__(self, J: Any, nev: int, n: int | None = None) -> tuple[Array, Array, bool, int]:
        A = as_matrix(J)
        if A is not None and (not sp.issparse(A) or A.shape[0] <= max(self.dense_threshold, nev + 2)):
            # a direct eigensolver for computing all eigenvalues
            A = A.toarray() if sp.issparse(A) else A
            eigenvalues, eigenvectors = scipy.linalg.eig(A)
        elif A is not None:
            # find the eigenvalues near the shift first (ARPACK, Arnoldi method)
            eigenvalues, eigenvectors = scipy.sparse.linalg.eigs(A, k=nev, sigma=self.shift, which="LM", tol=self.tol)
        else:
            # matrix-free: the dimension is taken from the operator's shape if not given
            n = n if n is not None else getattr(J, "shape", (None,))[0]
            if n is None:
                raise TypeError("The dimension n is required for computing eigenvalues of a matrix-free Jacobian")
            op = as_linear_operator(J, n)
            eigenvalues, eigenvectors = scipy.sparse.linalg.eigs(op, k=min(nev, n - 2), which="LR", tol=self.tol)
        return sort_eigenelements(eigenvalues, eigenvectors, nev)


def sort_eigenelements(eigenvalues: Array, eigenvectors: Array, nev: int) -> tuple[Array, Array, bool, int]:
    """Sort by largest eigenvalue (largest real part), filter infinite eigenvalues and truncate."""
    idx = np.argsort(eigenvalues)[::-1]
    idx = idx[np.isfinite(eigenvalues[idx])][:nev]
    return eigenvalues[idx].astype(complex), eigenvectors[:, idx], True, 1
