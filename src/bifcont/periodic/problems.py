"""
Periodic orbit problems: functionals G(x, par) whose zeros are periodic orbits
of the vector field dx/dt = F(x, par).
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from typing import Any

import numdifftools as nd
import numpy as np
import scipy.linalg

from bifcont.core.types import Array, Functional, JacobianFunction

logger = logging.getLogger(__name__)


class PeriodicOrbitProblem:
    """
    Base class for all periodic orbit problems.

    A periodic orbit problem is a functional G(x, par) of the unknowns x, that
    encode M time slices of the orbit (and the period). It specifies
    attributes and methods that all variants should have: the residual, its
    directional derivative, the matrix-forming modes of the Jacobian, the
    period, the monodromy and the section-update hook.
    """

    #: the type of the branch computed from this problem
    kind = "periodic-orbit"
    #: does the monodromy have a trivial multiplier 1 from the time-translation invariance?
    has_trivial_multiplier = True

    def __init__(self, F: Functional, J: JacobianFunction, N: int, M: int) -> None:
        """
        Initialize the problem.

        Parameters
        ----------
        F
            The vector field F(x, par).
        J
            The Jacobian of the vector field J(x, par), as a matrix.
        N
            The dimension of the phase space.
        M
            The number of time slices.
        """
        if M < 1 or N < 1:
            raise ValueError(f"Need M >= 1 and N >= 1, got M={M}, N={N}")
        #: the vector field
        self.F = F
        #: the Jacobian of the vector field
        self.J = J
        #: dimension of the phase space
        self.N = N
        #: number of time slices
        self.M = M

    def __call__(self, x: Array, par: Any) -> Array:
        """The residual G(x, par)."""
        raise NotImplementedError("'PeriodicOrbitProblem' is an abstract base class - do not use for actual computations!")

    def jacobian_vector(self, x: Array, par: Any, dx: Array) -> Array:
        """The directional derivative dG/dx(x, par) * dx."""
        raise NotImplementedError("'PeriodicOrbitProblem' is an abstract base class - do not use for actual computations!")

    def jacobian_matrix(self, x: Array, par: Any) -> np.ndarray:
        """The Jacobian dG/dx as a dense matrix, using complex-step differentiation."""
        x = np.asarray(x, dtype=float)
        jac = nd.Jacobian(lambda z: self(z, par), method="complex")(x)
        return np.reshape(np.real(jac), (x.size, x.size))

    def jacobian_matrix_inplace(self, J: np.ndarray, x: Array, par: Any) -> np.ndarray:
        """Refresh a previously formed Jacobian matrix J for (x, par)."""
        J[...] = self.jacobian_matrix(x, par)
        return J

    def update_section(self, x: Array, par: Any) -> Array:
        """
        Re-anchor the section of the problem to the orbit x.

        Returns the unknowns with respect to the updated problem. Does nothing by default.
        """
        logger.warning("update_section is not implemented for %s, the section is left unchanged", type(self).__name__)
        return x

    def period(self, x: Array, par: Any) -> float:
        """The period of the orbit."""
        return float(np.real(x[-1]))

    def slices(self, x: Array) -> Array:
        """The time slices of the orbit as an (M, N) array."""
        return x[: self.M * self.N].reshape((self.M, self.N))

    def monodromy(self, x: Array, par: Any) -> np.ndarray:
        """The monodromy matrix of the orbit, its eigenvalues are the Floquet multipliers."""
        raise NotImplementedError("'PeriodicOrbitProblem' is an abstract base class - do not use for actual computations!")

    def orbit_from_slices(self, slices: list[Array] | Array, period: float) -> Array:
        """The unknowns of the problem for an orbit given by its time slices and its period."""
        return np.append(np.asarray(slices, dtype=float).ravel(), period)

    def problem_for_branch_switching(
        self, x_eq: Array, zeta_r: Array, slices: list[Array] | Array, period: float, par: Any
    ) -> tuple[PeriodicOrbitProblem, Array]:
        """
        Build a problem and an initial guess for the continuation of periodic orbits emanating from a Hopf point.

        Parameters
        ----------
        x_eq
            The equilibrium at the Hopf point.
        zeta_r
            The real part of the critical eigenvector.
        slices
            The M time slices of the guess for the orbit.
        period
            The guess for the period.
        par
            The parameters at the guess.
        """
        raise NotImplementedError("'PeriodicOrbitProblem' is an abstract base class - do not use for actual computations!")

    def trivial_orbit(self, x_eq: Array, period: float) -> Array:
        """The unknowns of the trivial (constant) orbit at the equilibrium x_eq."""
        return self.orbit_from_slices(np.tile(x_eq, (self.M, 1)), period)


class PeriodicOrbitTrapProblem(PeriodicOrbitProblem):
    """
    Periodic orbits discretized with the trapezoidal rule on a periodic time mesh of M slices.

    The unknowns are x = (u_0, ..., u_{M-1}, T). With h = T / M, the residual is

        r_i = u_{i+1} - u_i - h / 2 * (F(u_{i+1}) + F(u_i)),  u_M = u_0

    completed by the phase condition <u - xpi, phi> = 0 on the full vector of slices.
    """

    def __init__(
        self,
        F: Functional,
        J: JacobianFunction,
        N: int,
        M: int,
        xpi: Array | None = None,
        phi: Array | None = None,
    ) -> None:
        super().__init__(F, J, N, M)
        #: reference orbit of the phase condition
        self.xpi = np.zeros(N * M) if xpi is None else np.asarray(xpi, dtype=float).ravel()
        #: direction of the phase condition
        self.phi = np.zeros(N * M) if phi is None else np.asarray(phi, dtype=float).ravel()
        if self.xpi.size != N * M or self.phi.size != N * M:
            raise ValueError(f"xpi and phi must have N * M = {N * M} entries")

    def __call__(self, x: Array, par: Any) -> Array:
        u = self.slices(x)
        T = x[-1]
        h = T / self.M
        f = np.array([self.F(u_i, par) for u_i in u])
        u_next = np.roll(u, -1, axis=0)
        f_next = np.roll(f, -1, axis=0)
        res = u_next - u - h / 2 * (f_next + f)
        phase = np.dot(u.ravel() - self.xpi, self.phi)
        return np.append(res.ravel(), phase)

    def _jacobians(self, x: Array, par: Any) -> list[np.ndarray]:
        """The Jacobians of the vector field at every time slice."""
        return [np.atleast_2d(self.J(u_i, par)) for u_i in self.slices(x)]

    def jacobian_vector(self, x: Array, par: Any, dx: Array) -> Array:
        u = self.slices(x)
        du = self.slices(dx)
        T, dT = x[-1], dx[-1]
        h = T / self.M
        jacs = self._jacobians(x, par)
        f = np.array([self.F(u_i, par) for u_i in u])
        jdu = np.array([J_i @ du_i for J_i, du_i in zip(jacs, du)])
        # contributions of the next slice
        du_next = np.roll(du, -1, axis=0)
        jdu_next = np.roll(jdu, -1, axis=0)
        f_next = np.roll(f, -1, axis=0)
        res = du_next - du - h / 2 * (jdu_next + jdu) - dT / (2 * self.M) * (f_next + f)
        return np.append(res.ravel(), np.dot(du.ravel(), self.phi))

    def monodromy(self, x: Array, par: Any) -> np.ndarray:
        """
        Monodromy of the discretized orbit.

        The product of the linearized trapezoidal steps
        (I - h/2 J_{i+1})^-1 (I + h/2 J_i) over all slices, in reversed order.
        """
        h = float(np.real(x[-1])) / self.M
        jacs = self._jacobians(x, par)
        I = np.eye(self.N)
        mon_mat = I
        for i in range(self.M):
            J_i, J_next = jacs[i], jacs[(i + 1) % self.M]
            mon_mat = scipy.linalg.solve(I - h / 2 * J_next, (I + h / 2 * J_i) @ mon_mat)
        return mon_mat

    def with_phase_condition(self, slices: Array) -> PeriodicOrbitTrapProblem:
        """A copy of the problem with the phase condition anchored to the orbit given by its slices."""
        slices = np.asarray(slices, dtype=float).reshape((self.M, self.N))
        # periodic central differences for the time derivative of the orbit
        phi = (np.roll(slices, -1, axis=0) - np.roll(slices, 1, axis=0)).ravel()
        norm = np.linalg.norm(phi)
        prob = copy.copy(self)
        prob.xpi = slices.ravel().copy()
        prob.phi = phi / norm if norm > 0 else phi
        return prob

    def problem_for_branch_switching(
        self, x_eq: Array, zeta_r: Array, slices: list[Array] | Array, period: float, par: Any
    ) -> tuple[PeriodicOrbitTrapProblem, Array]:
        prob = copy.copy(self)
        # the phase condition <u_0 - x_eq, zeta_r> = 0 acts on the first slice only
        prob.xpi = np.zeros(self.N * self.M)
        prob.phi = np.zeros(self.N * self.M)
        prob.xpi[: self.N] = np.real(x_eq)
        prob.phi[: self.N] = np.real(zeta_r)
        return prob, prob.orbit_from_slices(slices, period)


def sample_orbit(orbit: Callable[[float], Array], M: int, phase: float = 0.0) -> Array:
    """Sample an orbit function of the phase at M equally spaced points t in [0, 2 pi), shifted by -phase."""
    return np.array([orbit(t - phase) for t in np.linspace(0, 2 * np.pi, M + 1)[:M]])
