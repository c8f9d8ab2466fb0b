"""Shared test models: the Stuart-Landau oscillator and the cubic scalar map."""

from dataclasses import dataclass

import numpy as np
import pytest

from bifcont import ParameterLens
from bifcont.core.types import Array


@dataclass
class StuartLandauPar:
    """Parameters of the Stuart-Landau oscillator."""

    p: float = -0.1


def stuart_landau(x: Array, par: StuartLandauPar) -> Array:
    """
    The normal form of a supercritical Hopf bifurcation.

    dx/dt = p x - y - x r^2
    dy/dt = x + p y - y r^2

    For p > 0, there is a stable periodic orbit of radius sqrt(p) and period 2 pi.
    """
    # x * x instead of abs(x)**2, so that the complex-step derivative works
    r2 = x[0] * x[0] + x[1] * x[1]
    return np.array([par.p * x[0] - x[1] - x[0] * r2, x[0] + par.p * x[1] - x[1] * r2])


def stuart_landau_jacobian(x: Array, par: StuartLandauPar) -> np.ndarray:
    r2 = x[0] * x[0] + x[1] * x[1]
    return np.array([[par.p, -1.0], [1.0, par.p]]) - 2 * np.outer(x, x) - r2 * np.eye(2)


def stuart_landau_d2(x: Array, par: StuartLandauPar, u: Array, v: Array) -> Array:
    return -2 * (np.dot(u, v) * x + np.dot(x, u) * v + np.dot(x, v) * u)


def stuart_landau_d3(x: Array, par: StuartLandauPar, u: Array, v: Array, w: Array) -> Array:
    return -2 * (np.dot(u, v) * w + np.dot(u, w) * v + np.dot(v, w) * u)


def cubic_map(u: Array, p: float) -> Array:
    """A scalar map with two transcritical branch points on the trivial branch, at p = 0 and p = 0.15."""
    return -u * (p + u * (2 - 5 * u)) * (p - 0.15 - u * (2 + 20 * u))


def cubic_map_jacobian(u: Array, p: float) -> np.ndarray:
    f1 = p + u * (2 - 5 * u)
    f2 = p - 0.15 - u * (2 + 20 * u)
    df1 = 2 - 10 * u
    df2 = -2 - 40 * u
    return np.diag(-(f1 * f2) - u * (df1 * f2 + f1 * df2))


@pytest.fixture
def sl_par() -> StuartLandauPar:
    return StuartLandauPar(p=-0.1)


@pytest.fixture
def sl_lens() -> ParameterLens:
    return ParameterLens.attr("p")


@pytest.fixture
def scalar_lens() -> ParameterLens:
    """Lens for a bare float as parameter object."""
    return ParameterLens(lambda par: par, lambda par, value: value, "p")
