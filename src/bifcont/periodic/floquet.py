"""
Interface between the Jacobian of a periodic orbit problem and the Floquet
(stability) computation.

The continuation requests "the Jacobian" of the periodic orbit functional
uniformly. It receives a FloquetWrapper that behaves like the Jacobian for the
Newton corrector (through FloquetWrapperLS) while the FloquetEigenSolver uses
the monodromy operator of the problem instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np
import scipy.linalg

from bifcont.core.solvers import EigenSolver, apply_operator, as_matrix
from bifcont.core.types import Array, ComplexArray

if TYPE_CHECKING:
    from .problems import PeriodicOrbitProblem

logger = logging.getLogger(__name__)


class FloquetWrapper:
    """The Jacobian of a periodic orbit problem at (x, par), together with the problem itself."""

    def __init__(self, problem: PeriodicOrbitProblem, jacobian: Any, x: Array, par: Any) -> None:
        #: the periodic orbit problem
        self.problem = problem
        #: the Jacobian of the problem: a matrix or a callable dx -> J * dx
        self.jacobian = jacobian
        #: the point at which the Jacobian is evaluated
        self.x = x
        #: the parameters at which the Jacobian is evaluated
        self.par = par

    @property
    def shape(self) -> tuple[int, int]:
        return (self.x.size, self.x.size)

    def __call__(self, dx: Array) -> Array:
        """Jacobian-vector product."""
        return apply_operator(self.jacobian, dx)

    def to_matrix(self) -> np.ndarray:
        """The Jacobian as a matrix, assembled column by column if it is matrix-free."""
        A = as_matrix(self.jacobian)
        if A is not None:
            return A
        return np.column_stack([self(e) for e in np.eye(self.x.size)])


class FloquetWrapperLS:
    """
    Linear solver for FloquetWrapper Jacobians.

    Unwraps a FloquetWrapper to its Jacobian before delegating to the inner
    solver, any other operator is passed through unchanged.
    """

    def __init__(self, solver: Callable[..., Any]) -> None:
        #: the inner linear solver
        self.solver = solver

    def __call__(self, J: Any, rhs: Array, rhs2: Array | None = None) -> tuple:
        if isinstance(J, FloquetWrapper):
            J = J.jacobian
        if rhs2 is None:
            return self.solver(J, rhs)
        return self.solver(J, rhs, rhs2)


class FloquetEigenSolver:
    """
    Eigensolver computing the Floquet exponents log(mu) from the monodromy of a periodic orbit.

    For FloquetWrapper operators, the multipliers mu are the eigenvalues of
    the monodromy matrix of the problem. If the problem has a trivial
    multiplier (mu = 1, from the time-translation invariance), the exponent
    closest to zero is dropped. Any other operator is passed to the inner
    eigensolver.
    """

    def __init__(self, eigsolver: Callable[..., Any] | None = None) -> None:
        #: the eigensolver for operators that are no FloquetWrapper
        self.eigsolver = eigsolver if eigsolver is not None else EigenSolver()

    def __call__(self, J: Any, nev: int) -> tuple[ComplexArray, ComplexArray, bool, int]:
        if not isinstance(J, FloquetWrapper):
            return self.eigsolver(J, nev)
        monodromy = J.problem.monodromy(J.x, J.par)
        multipliers, vectors = scipy.linalg.eig(monodromy)
        exponents = np.log(multipliers.astype(complex))
        if J.problem.has_trivial_multiplier and len(exponents) > 0:
            trivial = int(np.argmin(np.abs(exponents)))
            logger.debug("Dropping the trivial Floquet multiplier %s", multipliers[trivial])
            exponents = np.delete(exponents, trivial)
            vectors = np.delete(vectors, trivial, axis=1)
        # sort by largest real part
        idx = np.argsort(exponents)[::-1]
        idx = idx[np.isfinite(exponents[idx])][:nev]
        return exponents[idx], vectors[:, idx], True, 1
