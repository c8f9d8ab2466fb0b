"""Normal form of Hopf points and the predictor for the emanating branch of periodic orbits."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, NamedTuple

import numpy as np

from bifcont.core.results import Branch, ContResult
from bifcont.core.solvers import apply_operator, as_matrix
from bifcont.core.types import Array, ComplexArray

from .bifurcations import crossing_index

logger = logging.getLogger(__name__)


@dataclass
class HopfPoint:
    """
    A Hopf point with its normal form.

    Close to the Hopf point, the amplitude of the oscillations follows
    dz/dt = (i omega + a dp) z + b |z|^2 z.
    """

    #: the equilibrium at the Hopf point
    x0: Array
    #: the parameter value at the Hopf point
    p: float
    #: the parameters at the Hopf point
    params: Any
    #: the frequency of the critical eigenvalue i omega
    omega: float
    #: the critical eigenvector
    zeta: ComplexArray
    #: the adjoint eigenvector, normalized such that <zeta_star, zeta> = 1
    zeta_star: ComplexArray
    #: coefficient of the linear term in the parameter
    a: complex
    #: coefficient of the cubic term
    b: complex

    @property
    def criticality(self) -> str:
        """"supercritical", "subcritical" or "singular" (degenerate normal form)."""
        product = np.real(self.a) * np.real(self.b)
        if product < 0:
            return "supercritical"
        if product > 0:
            return "subcritical"
        return "singular"


class HopfPredictor(NamedTuple):
    """Predictor for the first periodic orbit on the branch emanating from a Hopf point."""

    #: the predicted orbit as a function of the phase t in [0, 2 pi)
    orbit: Callable[[float], Array]
    #: the predicted amplitude
    amplitude: float
    #: the angular frequency
    omega: float
    #: the predicted parameter value
    p: float
    #: +1 if the branch is predicted to emanate towards larger parameters, else -1
    ds_factor: float


def _multilinear(form: Callable[..., Array], *args: ComplexArray) -> ComplexArray:
    """Evaluate a real multilinear form on complex arguments by expanding into real and imaginary parts."""
    parts = [(np.real(v), np.imag(v)) for v in args]
    result = np.zeros(len(args[0]), dtype=complex)
    for choice in itertools.product((0, 1), repeat=len(args)):
        vectors = [parts[k][c] for k, c in enumerate(choice)]
        # the form vanishes if one of its arguments does
        if any(not np.any(v) for v in vectors):
            continue
        result += (1j ** sum(choice)) * np.asarray(form(*vectors))
    return result


def _apply(J: Any, v: ComplexArray) -> ComplexArray:
    """Apply a real linear operator to a complex vector."""
    return apply_operator(J, np.real(v)) + 1j * apply_operator(J, np.imag(v))


def hopf_normal_form(
    F: Callable[[Array, Any], Array],
    dF: Callable[[Array, Any], Any],
    d2F: Callable[[Array, Any, Array, Array], Array],
    d3F: Callable[[Array, Any, Array, Array, Array], Array],
    br: Branch | ContResult,
    ind_hopf: int,
    adjoint_jacobian: Callable[[Array, Any], Any] | None = None,
    delta: float = 1e-8,
    nev: int | None = None,
) -> HopfPoint:
    """
    Compute the normal form of a Hopf point.

    Parameters
    ----------
    F
        The vector field F(x, par).
    dF
        Its Jacobian dF(x, par).
    d2F
        Its second derivative, d2F(x, par, dx1, dx2).
    d3F
        Its third derivative, d3F(x, par, dx1, dx2, dx3).
    br
        The branch containing the Hopf point.
    ind_hopf
        Index of the Hopf point in the list of bifurcation points of the branch.
    adjoint_jacobian
        The adjoint of the Jacobian, adjoint_jacobian(x, par). If None, the
        transpose of the Jacobian is used, which requires a matrix Jacobian.
    delta
        Step for the finite differences with respect to the parameter.
    nev
        Number of eigenvalues to compute, defaults to the nev of the branch.

    Returns
    -------
    HopfPoint
        The Hopf point with the normal form coefficients a and b.
    """
    bp = br.bifpoint[ind_hopf]
    if bp.kind != "hopf":
        raise ValueError(f"The bifurcation point #{ind_hopf} is of type {bp.kind!r}, not a Hopf point")
    contparams = br.contparams
    nev = contparams.nev if nev is None else nev
    eigsolver = contparams.newton_options.eigsolver
    x0 = np.asarray(bp.x)
    p = bp.param
    par = br.set_param(p)
    lens = br.lens

    L = dF(x0, par)
    A = as_matrix(L)
    if A is None and adjoint_jacobian is None:
        raise ValueError("For a matrix-free Jacobian, the adjoint_jacobian must be provided")

    if A is None:
        # assemble the matrix-free Jacobian column by column
        A = np.column_stack([apply_operator(L, e) for e in np.eye(x0.size)])

    # the critical eigen-elements
    eigenvalues, eigenvectors, _, _ = eigsolver(A, nev)
    ind = crossing_index(eigenvalues, "hopf")
    lam = eigenvalues[ind]
    omega = float(np.imag(lam))
    zeta = eigenvectors[:, ind] / np.linalg.norm(eigenvectors[:, ind])
    logger.info("Hopf normal form at p=%.8f, critical eigenvalue %s", p, lam)

    # the adjoint eigen-elements
    Lt = adjoint_jacobian(x0, par) if adjoint_jacobian is not None else A.T
    if as_matrix(Lt) is None:
        Lt = np.column_stack([apply_operator(Lt, e) for e in np.eye(x0.size)])
    eigenvalues_t, eigenvectors_t, _, _ = eigsolver(Lt, nev)
    ind_t = int(np.argmin(np.abs(eigenvalues_t - np.conj(lam))))
    if abs(eigenvalues_t[ind_t] - np.conj(lam)) > 1e-2:
        logger.warning(
            "The eigenvalues of the adjoint do not match: %s (adjoint) vs. %s", eigenvalues_t[ind_t], np.conj(lam)
        )
    zeta_star = eigenvectors_t[:, ind_t]
    zeta_star = zeta_star / np.conj(np.vdot(zeta_star, zeta))

    A = A.toarray() if hasattr(A, "toarray") else A
    N = x0.size

    def R2(dx1: ComplexArray, dx2: ComplexArray) -> ComplexArray:
        return _multilinear(lambda u, v: d2F(x0, par, u, v), dx1, dx2) / 2

    def R3(dx1: ComplexArray, dx2: ComplexArray, dx3: ComplexArray) -> ComplexArray:
        return _multilinear(lambda u, v, w: d3F(x0, par, u, v, w), dx1, dx2, dx3) / 6

    par_plus = lens.set(par, p + delta)
    par_minus = lens.set(par, p - delta)
    # -L Psi001 = R01
    R01 = (np.asarray(F(x0, par_plus)) - np.asarray(F(x0, par_minus))) / (2 * delta)
    Psi001 = np.linalg.solve(A, -R01).astype(complex)
    # a = <R11(zeta) + 2 R20(zeta, Psi001), zeta_star>
    av = (_apply(dF(x0, par_plus), zeta) - _apply(dF(x0, par_minus), zeta)) / (2 * delta)
    av = av + 2 * R2(zeta, Psi001)
    a = complex(np.vdot(zeta_star, av))
    # (2 i omega - L) Psi200 = R20(zeta, zeta)
    Psi200 = np.linalg.solve(2j * omega * np.eye(N) - A, R2(zeta, zeta))
    # -L Psi110 = 2 R20(zeta, conj(zeta))
    Psi110 = np.linalg.solve(-A, 2 * R2(zeta, np.conj(zeta)))
    # b = <2 R20(zeta, Psi110) + 2 R20(conj(zeta), Psi200) + 3 R30(zeta, zeta, conj(zeta)), zeta_star>
    bv = 2 * R2(zeta, Psi110) + 2 * R2(np.conj(zeta), Psi200) + 3 * R3(zeta, zeta, np.conj(zeta))
    b = complex(np.vdot(zeta_star, bv))

    hopf_point = HopfPoint(x0=x0, p=p, params=par, omega=omega, zeta=zeta, zeta_star=zeta_star, a=a, b=b)
    logger.info("Hopf normal form: a = %s, b = %s, %s", a, b, hopf_point.criticality)
    return hopf_point


def hopf_predictor(hopf_point: HopfPoint, ds: float, amplitude_factor: float = 1.0) -> HopfPredictor:
    """
    Predict the first periodic orbit on the branch emanating from a Hopf point.

    The parameter is moved by |ds| in the direction in which the periodic
    orbits exist according to the normal form, the amplitude follows from it.
    """
    a, b = hopf_point.a, hopf_point.b
    # we need to find the type, supercritical or subcritical
    ds_factor = 1.0 if np.real(a) * np.real(b) < 0 else -1.0
    p_new = hopf_point.p + abs(ds) * ds_factor
    amp = amplitude_factor * np.sqrt(-abs(ds) * ds_factor * np.real(a) / np.real(b))
    x0, zeta = hopf_point.x0, hopf_point.zeta

    def orbit(t: float) -> Array:
        return x0 + 2 * amp * np.real(zeta * np.exp(1j * t))

    return HopfPredictor(orbit=orbit, amplitude=float(2 * amp), omega=hopf_point.omega, p=p_new, ds_factor=ds_factor)


def hopf_phase(zeta: ComplexArray) -> float:
    """Phase shift of the predicted orbit, for the section condition of the periodic orbit problems."""
    zeta_r, zeta_i = np.real(zeta), np.imag(zeta)
    return float(np.arctan2(np.dot(zeta_r, zeta_r), np.dot(zeta_i, zeta_r)))
