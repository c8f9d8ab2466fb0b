"""
bifcont: numerical continuation and bifurcation analysis.

A package for the pseudo-arclength continuation of equilibria of
F(x, p) = 0, the detection and location of bifurcation points along the
branches, and the continuation of periodic orbits emanating from Hopf
points, together with their Floquet stability.
"""

from .core import (
    Branch,
    ContinuationPar,
    ContResult,
    CriticalPoint,
    DefaultLS,
    EigenSolver,
    GMRESIterativeSolver,
    NewtonPar,
    ParameterLens,
    newton,
    setup_logging,
)
from .continuation import (
    DeflationOperator,
    continuation_hopf,
    hopf_normal_form,
    newton_deflated,
)
from .periodic import (
    PeriodicOrbitTrapProblem,
    PoincareShootingProblem,
    ShootingProblem,
    continuation_periodic_orbit,
    newton_periodic_orbit,
)

__all__ = [
    "ParameterLens",
    "NewtonPar",
    "ContinuationPar",
    "DefaultLS",
    "GMRESIterativeSolver",
    "EigenSolver",
    "newton",
    "ContResult",
    "Branch",
    "CriticalPoint",
    "setup_logging",
    "DeflationOperator",
    "newton_deflated",
    "hopf_normal_form",
    "continuation_hopf",
    "PeriodicOrbitTrapProblem",
    "ShootingProblem",
    "PoincareShootingProblem",
    "newton_periodic_orbit",
    "continuation_periodic_orbit",
]
