"""Shooting methods for periodic orbits: standard multiple shooting and Poincaré shooting."""

from __future__ import annotations

import copy
import logging
from typing import Any

import numpy as np
from scipy.integrate import solve_ivp

from bifcont.core.types import Array, Functional, JacobianFunction

from .problems import PeriodicOrbitProblem

logger = logging.getLogger(__name__)

#: default options for the time integration with scipy.integrate.solve_ivp
DEFAULT_ODE_OPTIONS: dict[str, Any] = {"method": "DOP853", "rtol": 1e-10, "atol": 1e-12}


class _FlowProblem(PeriodicOrbitProblem):
    """Common time integration of the vector field and of its variational equations."""

    def __init__(self, F: Functional, J: JacobianFunction, N: int, M: int, ode_options: dict[str, Any] | None = None) -> None:
        super().__init__(F, J, N, M)
        #: options passed to scipy.integrate.solve_ivp
        self.ode_options = dict(DEFAULT_ODE_OPTIONS, **(ode_options or {}))

    def _augmented_rhs(self, par: Any, k: int) -> Any:
        """The vector field augmented with the variational equations for k directions, dV/dt = J V."""
        N = self.N

        def rhs(t: float, z: Array) -> Array:
            y = z[:N]
            fy = np.asarray(self.F(y, par))
            if k == 0:
                return fy
            V = z[N:].reshape((N, k))
            dVdt = np.atleast_2d(self.J(y, par)) @ V
            return np.concatenate((fy, dVdt.ravel()))

        return rhs

    def _integrate(self, y0: Array, t: float, par: Any, V0: Array | None = None, **kwargs: Any) -> Any:
        k = 0 if V0 is None else V0.shape[1]
        z0 = y0 if V0 is None else np.concatenate((y0, V0.ravel()))
        sol = solve_ivp(self._augmented_rhs(par, k), (0.0, t), z0, **self.ode_options, **kwargs)
        if not sol.success:
            raise ValueError(f"Time integration failed: {sol.message}")
        return sol

    def flow(self, y0: Array, t: complex, par: Any) -> Array:
        """
        Integrate the vector field from y0 over the time t.

        A complex time (from a complex-step derivative with respect to the
        period) is handled to first order: the imaginary part of t advances
        the imaginary part of the state along the vector field.
        """
        t_real = float(np.real(t))
        y = self._integrate(y0, t_real, par).y[:, -1]
        if np.iscomplexobj(t) and np.imag(t) != 0:
            y = y + 1j * np.imag(t) * np.asarray(self.F(np.real(y), par))
        return y

    def flow_variational(self, y0: Array, t: float, par: Any, V0: Array) -> tuple[Array, Array]:
        """Integrate the vector field from y0 over the time t, together with the variations V0."""
        sol = self._integrate(np.asarray(y0, dtype=float), t, par, V0)
        z = sol.y[:, -1]
        return z[: self.N], z[self.N :].reshape(V0.shape)


class ShootingProblem(_FlowProblem):
    """
    Standard multiple shooting.

    The unknowns are x = (x_0, ..., x_{M-1}, T). The residual is

        r_i = phi(x_i, T / M) - x_{i+1},  x_M = x_0

    with the flow phi of the vector field, completed by the section
    condition <x_0 - center, normal> = 0.
    """

    def __init__(
        self,
        F: Functional,
        J: JacobianFunction,
        N: int,
        M: int,
        normal: Array | None = None,
        center: Array | None = None,
        ode_options: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(F, J, N, M, ode_options)
        #: normal of the phase section
        self.normal = np.ones(N) if normal is None else np.asarray(normal, dtype=float)
        #: center of the phase section
        self.center = np.zeros(N) if center is None else np.asarray(center, dtype=float)

    def __call__(self, x: Array, par: Any) -> Array:
        xs = self.slices(x)
        dt = x[-1] / self.M
        res = [self.flow(xs[i], dt, par) - xs[(i + 1) % self.M] for i in range(self.M)]
        section = np.dot(xs[0] - self.center, self.normal)
        return np.append(np.ravel(res), section)

    def jacobian_vector(self, x: Array, par: Any, dx: Array) -> Array:
        xs = self.slices(x)
        dxs = self.slices(dx)
        dt = float(x[-1]) / self.M
        dT = dx[-1]
        res = []
        for i in range(self.M):
            y, v = self.flow_variational(xs[i], dt, par, dxs[i].reshape((self.N, 1)))
            dphi = v.ravel() + np.asarray(self.F(y, par)) * dT / self.M
            res.append(dphi - dxs[(i + 1) % self.M])
        return np.append(np.ravel(res), np.dot(dxs[0], self.normal))

    def monodromy(self, x: Array, par: Any) -> np.ndarray:
        """Product of the state transition matrices of all slices."""
        xs = self.slices(x)
        dt = float(x[-1]) / self.M
        mon_mat = np.eye(self.N)
        for i in range(self.M):
            _, stm = self.flow_variational(xs[i], dt, par, np.eye(self.N))
            mon_mat = stm @ mon_mat
        return mon_mat

    def update_section(self, x: Array, par: Any) -> Array:
        """Re-anchor the section at the first slice, with the vector field as normal."""
        x0 = np.real(self.slices(x)[0])
        self.normal = np.asarray(self.F(x0, par), dtype=float)
        self.center = x0.copy()
        logger.debug("Updated the shooting section to center %s", self.center)
        return x

    def problem_for_branch_switching(
        self, x_eq: Array, zeta_r: Array, slices: list[Array] | Array, period: float, par: Any
    ) -> tuple[ShootingProblem, Array]:
        slices = np.asarray(slices, dtype=float)
        prob = copy.copy(self)
        prob.center = slices[0].copy()
        prob.normal = np.asarray(self.F(slices[0], par), dtype=float)
        return prob, prob.orbit_from_slices(slices, period)


class PoincareShootingProblem(_FlowProblem):
    """
    Poincaré shooting on M hyperplanes <x - c_i, n_i> = 0.

    The unknowns are the coordinates of the M intersection points of the orbit
    with the hyperplanes, reduced to N - 1 coordinates each by dropping the
    component k_i where the normal n_i is largest. The residual is the
    mismatch of the return maps from hyperplane i to hyperplane i + 1. The
    period is not an unknown, it is the sum of the return times.
    """

    #: the reduced monodromy does not contain the trivial multiplier
    has_trivial_multiplier = False

    def __init__(
        self,
        F: Functional,
        J: JacobianFunction,
        N: int,
        M: int,
        normals: Array,
        centers: Array,
        t_min: float = 1e-3,
        t_max: float = 1e3,
        ode_options: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(F, J, N, M, ode_options)
        if N < 2:
            raise ValueError("Poincaré shooting requires a phase space of dimension N >= 2")
        #: time integrated without event detection, to leave the starting hyperplane
        self.t_min = t_min
        #: maximal return time
        self.t_max = t_max
        self._set_sections(normals, centers)

    def _set_sections(self, normals: Array, centers: Array) -> None:
        normals = np.asarray(normals, dtype=float).reshape((self.M, self.N))
        #: normals of the hyperplanes, one per row
        self.normals = normals / np.linalg.norm(normals, axis=1, keepdims=True)
        #: centers of the hyperplanes, one per row
        self.centers = np.asarray(centers, dtype=float).reshape((self.M, self.N)).copy()
        # index of the component that is dropped in the reduced coordinates
        self._k = np.argmax(np.abs(self.normals), axis=1)

    def reduce(self, i: int, y: Array) -> Array:
        """Reduced coordinates of a point y on hyperplane i."""
        return np.delete(y - self.centers[i], self._k[i])

    def lift(self, i: int, y_hat: Array, direction: bool = False) -> Array:
        """
        Lift reduced coordinates onto hyperplane i.

        If ``direction`` is True, the linear part of the lift is applied, e.g. to a perturbation.
        """
        k = self._k[i]
        n = self.normals[i]
        y = np.insert(y_hat, k, 0)
        y[k] = -np.dot(n, y) / n[k]
        return y if direction else self.centers[i] + y

    def _reduced(self, x: Array) -> Array:
        return x.reshape((self.M, self.N - 1))

    def slices(self, x: Array) -> Array:
        """The intersection points of the orbit with the hyperplanes, as an (M, N) array."""
        return np.array([self.lift(i, y_hat) for i, y_hat in enumerate(self._reduced(x))])

    def _projector(self, j: int, y: Array, par: Any) -> np.ndarray:
        """Projection along the vector field onto hyperplane j: P = I - F n^T / <n, F>."""
        f = np.asarray(self.F(np.real(y), par), dtype=float)
        n = self.normals[j]
        return np.eye(self.N) - np.outer(f, n) / np.dot(n, f)

    def return_map(self, i: int, y0: Array, par: Any, V0: Array | None = None) -> tuple[Array, float, Array | None]:
        """
        Integrate from y0 on hyperplane i until the orbit hits hyperplane i + 1.

        Returns the hitting point, the return time and (if variations V0 are
        given) the variations projected onto the hyperplane. For a complex y0
        (complex-step derivative), the imaginary part is projected likewise.
        """
        j = (i + 1) % self.M
        n, c = self.normals[j], self.centers[j]
        N = self.N
        k = 0 if V0 is None else V0.shape[1]
        rhs = self._augmented_rhs(par, k)
        z0 = y0 if V0 is None else np.concatenate((y0, V0.ravel()))
        # leave the starting hyperplane without looking for events
        sol = solve_ivp(rhs, (0.0, self.t_min), z0, **self.ode_options)
        if not sol.success:
            raise ValueError(f"Time integration failed: {sol.message}")

        def crossing(t: float, z: Array) -> float:
            return float(np.real(np.dot(z[:N] - c, n)))

        crossing.terminal = True  # type: ignore[attr-defined]
        crossing.direction = 1  # type: ignore[attr-defined]
        sol = solve_ivp(rhs, (self.t_min, self.t_max), sol.y[:, -1], events=crossing, **self.ode_options)
        if not sol.success or len(sol.t_events[0]) == 0:
            raise ValueError(f"The orbit did not return to hyperplane {j} within t_max={self.t_max}")
        z = sol.y_events[0][0]
        t_hit = float(sol.t_events[0][0])
        y = z[:N]
        P = self._projector(j, y, par)
        if np.iscomplexobj(y):
            y = np.real(y) + 1j * (P @ np.imag(y))
        V = None if V0 is None else P @ np.real(z[N:]).reshape((N, k))
        return y, t_hit, V

    def __call__(self, x: Array, par: Any) -> Array:
        y_hat = self._reduced(x)
        res = []
        for i in range(self.M):
            j = (i + 1) % self.M
            y, _, _ = self.return_map(i, self.lift(i, y_hat[i]), par)
            res.append(self.reduce(j, y) - y_hat[j])
        return np.ravel(res)

    def jacobian_vector(self, x: Array, par: Any, dx: Array) -> Array:
        y_hat = np.real(self._reduced(x))
        dy_hat = self._reduced(dx)
        res = []
        for i in range(self.M):
            j = (i + 1) % self.M
            v0 = self.lift(i, dy_hat[i], direction=True).reshape((self.N, 1))
            _, _, v = self.return_map(i, self.lift(i, y_hat[i]), par, v0)
            res.append(np.delete(v.ravel(), self._k[j]) - dy_hat[j])
        return np.ravel(res)

    def monodromy(self, x: Array, par: Any) -> np.ndarray:
        """Product of the Jacobians of the return maps in reduced coordinates."""
        y_hat = np.real(self._reduced(x))
        mon_mat = np.eye(self.N - 1)
        for i in range(self.M):
            j = (i + 1) % self.M
            # the lift as a matrix acting on reduced perturbations
            L = np.column_stack([self.lift(i, e, direction=True) for e in np.eye(self.N - 1)])
            _, _, V = self.return_map(i, self.lift(i, y_hat[i]), par, L)
            mon_mat = np.delete(V, self._k[j], axis=0) @ mon_mat
        return mon_mat

    def period(self, x: Array, par: Any) -> float:
        """The period, as the sum of the return times."""
        y_hat = np.real(self._reduced(x))
        return sum(self.return_map(i, self.lift(i, y_hat[i]), par)[1] for i in range(self.M))

    def update_section(self, x: Array, par: Any) -> Array:
        """
        Re-anchor the hyperplanes at the current intersection points.

        The normals are set to the vector field at these points. Returns the
        reduced coordinates of the orbit with respect to the new hyperplanes,
        which are zero.
        """
        points = np.real(self.slices(x))
        normals = np.array([self.F(y, par) for y in points])
        self._set_sections(normals, points)
        logger.debug("Updated the Poincaré sections")
        return np.zeros(self.M * (self.N - 1))

    def orbit_from_slices(self, slices: list[Array] | Array, period: float) -> Array:
        """Reduced coordinates of the time slices (projected on the hyperplanes), the period is implicit."""
        slices = np.asarray(slices, dtype=float).reshape((self.M, self.N))
        return np.concatenate([self.reduce(i, y) for i, y in enumerate(slices)])

    def trivial_orbit(self, x_eq: Array, period: float) -> Array:
        return self.orbit_from_slices(np.tile(x_eq, (self.M, 1)), period)

    def problem_for_branch_switching(
        self, x_eq: Array, zeta_r: Array, slices: list[Array] | Array, period: float, par: Any
    ) -> tuple[PoincareShootingProblem, Array]:
        slices = np.asarray(slices, dtype=float).reshape((self.M, self.N))
        prob = copy.copy(self)
        normals = np.array([self.F(y, par) for y in slices])
        prob._set_sections(normals, slices)
        return prob, np.zeros(self.M * (self.N - 1))
