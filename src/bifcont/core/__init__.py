"""Core data structures, settings and solvers."""

from .log_config import setup_logging
from .parameters import ContinuationPar, NewtonPar, ParameterLens
from .results import Branch, ContResult, CriticalPoint, EigenRecord, StepTable
from .solvers import (
    BorderedJacobian,
    BorderingBLS,
    DefaultLS,
    EigenSolver,
    GMRESIterativeSolver,
    MatrixBLS,
    NewtonResult,
    apply_operator,
    as_matrix,
    finite_differences,
    newton,
)

__all__ = [
    "BorderedJacobian",
    "BorderingBLS",
    "Branch",
    "ContResult",
    "ContinuationPar",
    "CriticalPoint",
    "DefaultLS",
    "EigenRecord",
    "EigenSolver",
    "GMRESIterativeSolver",
    "MatrixBLS",
    "NewtonPar",
    "NewtonResult",
    "ParameterLens",
    "StepTable",
    "apply_operator",
    "as_matrix",
    "finite_differences",
    "newton",
    "setup_logging",
]
