"""
Periodic orbits.

This package provides the periodic orbit problems (trapezoidal collocation,
standard shooting and Poincaré shooting), the Floquet-aware solvers and the
Newton and continuation drivers for periodic orbits.
"""

from .continuation import LINEARIZATIONS, build_jacobian, continuation_periodic_orbit, newton_periodic_orbit
from .floquet import FloquetEigenSolver, FloquetWrapper, FloquetWrapperLS
from .problems import PeriodicOrbitProblem, PeriodicOrbitTrapProblem, sample_orbit
from .shooting import PoincareShootingProblem, ShootingProblem

__all__ = [
    "PeriodicOrbitProblem",
    "PeriodicOrbitTrapProblem",
    "ShootingProblem",
    "PoincareShootingProblem",
    "FloquetWrapper",
    "FloquetWrapperLS",
    "FloquetEigenSolver",
    "LINEARIZATIONS",
    "build_jacobian",
    "newton_periodic_orbit",
    "continuation_periodic_orbit",
    "sample_orbit",
]
