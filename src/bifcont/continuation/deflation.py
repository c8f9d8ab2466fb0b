"""Deflation operator for steering the Newton solver away from known solutions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from bifcont.core.parameters import NewtonPar
from bifcont.core.solvers import NewtonResult, apply_operator, as_matrix, newton
from bifcont.core.types import Array

logger = logging.getLogger(__name__)


class DeflationOperator:
    """
    A deflation operator M for deflated Newton solves.

    Adds singularities to the equation at given solutions u_i:
    0 = F(u) --> 0 = M(u) * F(u)
    with
    M(u) = product_i <u_i - u, u_i - u>^-p + shift

    The parameters are:
      p: some exponent to the norm <u, v>
      shift: some constant added shift parameter for numerical stability
    """

    def __init__(self, p: float = 2, shift: float = 1.0, solutions: list[Array] | None = None) -> None:
        #: the order of the norm that will be used for the deflation operator
        self.p = p
        #: small constant in the deflation operator, for numerical stability
        self.shift = shift
        #: list of solutions, that will be suppressed by the deflation operator
        self.solutions: list[Array] = [np.asarray(u) for u in solutions] if solutions else []

    def __len__(self) -> int:
        return len(self.solutions)

    def operator(self, u: Array) -> float:
        """Obtain the value of the deflation operator for given u."""
        if not self.solutions:
            return 1.0 + self.shift
        return float(np.prod([np.dot(u_i - u, u_i - u) ** -self.p for u_i in self.solutions]) + self.shift)

    def D_operator(self, u: Array) -> Array:
        """Calculate the gradient of the deflation operator for given u."""
        if not self.solutions:
            return np.zeros_like(u)
        # derivative of the product, without the shift
        op = self.operator(u) - self.shift
        return np.asanyarray(self.p * op * 2 * np.sum([(uk - u) / np.dot(uk - u, uk - u) for uk in self.solutions], axis=0))

    def deflated_rhs(self, rhs: Callable[[Array], Array]) -> Callable[[Array], Array]:
        """Deflate the rhs of some equation, returns a new function that represents M(u) * rhs(u)."""

        def new_rhs(u: Array) -> Array:
            # multiply rhs with deflation operator
            return self.operator(u) * np.asarray(rhs(u))

        return new_rhs

    def deflated_jacobian(self, rhs: Callable[[Array], Array], jacobian: Callable[[Array], Any]) -> Callable[[Array], Any]:
        """
        Generate the Jacobian of the deflated rhs: M(u) * J(u) + rhs(u) * dM(u)^T.

        For a matrix Jacobian, the result is a dense matrix, for a matrix-free
        Jacobian it is a function dx -> J_deflated * dx.
        """

        def new_jac(u: Array) -> Any:
            # obtain operator and operator derivative
            op = self.operator(u)
            D_op = self.D_operator(u)
            F = np.asarray(rhs(u))
            J = jacobian(u)
            A = as_matrix(J)
            if A is not None:
                A = A.toarray() if hasattr(A, "toarray") else A
                return op * A + np.outer(F, D_op)

            def jvp(dx: Array) -> Array:
                return op * apply_operator(J, dx) + F * np.dot(D_op, dx)

            return jvp

        return new_jac

    def add_solution(self, u: Array) -> None:
        """Add a solution to the list of solutions used for deflation."""
        self.solutions.append(np.asarray(u))

    def clear_solutions(self) -> None:
        """Clear the list of solutions used for deflation."""
        self.solutions = []


def newton_deflated(
    F: Callable[[Array], Array],
    J: Callable[[Array], Any],
    x0: Array,
    options: NewtonPar,
    deflation: DeflationOperator,
    linsolver: Callable[..., Any] | None = None,
) -> NewtonResult:
    """
    Newton solve of the deflated problem M(x) * F(x) = 0.

    Convergence is checked on the deflated residual, since M >= shift the
    residual of F itself is below options.tol / shift.
    """
    F_defl = deflation.deflated_rhs(F)
    J_defl = deflation.deflated_jacobian(F, J)
    result = newton(F_defl, J_defl, x0, options, linsolver)
    logger.debug(
        "Deflated Newton: %d iterations, residual %.2e, converged: %s",
        result.iterations,
        float(np.linalg.norm(np.asarray(F(result.x)), np.inf)),
        result.converged,
    )
    return result
