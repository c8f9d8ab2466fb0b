"""
Continuation and bifurcation detection functionality.

This package provides the pseudo-arclength continuation of equilibria, the
detection and location of bifurcation points, deflation, the Hopf normal
form and the branch switching from Hopf points to periodic orbits.
"""

from .bifurcations import bifurcation_kind, count_unstable, crossing_index, kernel_dimension, locate_bifurcation
from .continuation_steppers import ContinuationState, PseudoArclengthContinuation, continuation, record_norm
from .deflation import DeflationOperator, newton_deflated
from .normal_forms import HopfPoint, HopfPredictor, hopf_normal_form, hopf_phase, hopf_predictor

# depends on the periodic package, which in turn uses the continuation steppers
from .branch_switching import continuation_hopf  # noqa: E402, I001

__all__ = [
    "ContinuationState",
    "PseudoArclengthContinuation",
    "continuation",
    "record_norm",
    "count_unstable",
    "kernel_dimension",
    "bifurcation_kind",
    "crossing_index",
    "locate_bifurcation",
    "DeflationOperator",
    "newton_deflated",
    "HopfPoint",
    "HopfPredictor",
    "hopf_normal_form",
    "hopf_predictor",
    "hopf_phase",
    "continuation_hopf",
]
