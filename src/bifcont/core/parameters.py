"""Parameter accessors and the (immutable) settings of Newton solves and continuations."""

from __future__ import annotations

import copy
import dataclasses
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

from .solvers import DefaultLS, EigenSolver


class ParameterLens:
    """
    Accessor for a single scalar field of an opaque parameter object.

    A lens is a pair of functions: ``get(par) -> float`` reads the field and
    ``set(par, value) -> par`` returns an updated copy of the parameter object.
    The parameter object passed to ``set`` is never modified.
    """

    def __init__(self, getter: Callable[[Any], float], setter: Callable[[Any, float], Any], name: str = "p") -> None:
        """
        Initialize the ParameterLens.

        Parameters
        ----------
        getter
            Function reading the parameter value from the parameter object.
        setter
            Function returning a copy of the parameter object with a new value.
        name
            Human readable name of the parameter, used in reports and plots.
        """
        self._getter = getter
        self._setter = setter
        #: name of the parameter
        self.name = name

    def get(self, par: Any) -> float:
        """Return the value of the parameter."""
        return float(self._getter(par))

    def set(self, par: Any, value: float) -> Any:
        """Return a copy of ``par`` where the parameter is set to ``value``."""
        return self._setter(par, float(value))

    @classmethod
    def attr(cls, name: str) -> ParameterLens:
        """Lens on the attribute ``name`` of an object, dataclass or named tuple."""

        def setter(par: Any, value: float) -> Any:
            if dataclasses.is_dataclass(par) and not isinstance(par, type):
                return dataclasses.replace(par, **{name: value})
            if isinstance(par, tuple) and hasattr(par, "_replace"):
                return par._replace(**{name: value})
            new = copy.copy(par)
            setattr(new, name, value)
            return new

        return cls(lambda par: getattr(par, name), setter, name)

    @classmethod
    def key(cls, key: Hashable) -> ParameterLens:
        """Lens on the entry ``key`` of a mapping."""

        def setter(par: Any, value: float) -> Any:
            new = dict(par)
            new[key] = value
            return new

        return cls(lambda par: par[key], setter, str(key))

    @classmethod
    def index(cls, i: int) -> ParameterLens:
        """Lens on the i-th entry of an array or list."""

        def setter(par: Any, value: float) -> Any:
            new = copy.copy(par)
            new[i] = value
            return new

        return cls(lambda par: par[i], setter, f"p[{i}]")

    def __repr__(self) -> str:
        return f"ParameterLens({self.name!r})"


@dataclass(frozen=True)
class NewtonPar:
    """Settings of the Newton corrector."""

    #: absolute convergence tolerance for the (infinity) norm of the residuals
    tol: float = 1e-10
    #: maximum number of Newton iterations
    max_iterations: int = 25
    #: the linear solver for the Newton updates, called as linsolver(J, rhs)
    linsolver: Any = field(default_factory=DefaultLS)
    #: the eigensolver for the stability computation, called as eigsolver(J, nev)
    eigsolver: Any = field(default_factory=EigenSolver)

    def replace(self, **changes: Any) -> NewtonPar:
        """Return a copy of the settings with the given fields replaced."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ContinuationPar:
    """
    Settings of a continuation run.

    Instances are immutable: derived settings are created with
    :meth:`ContinuationPar.replace`.
    """

    #: minimum arclength step size
    ds_min: float = 1e-4
    #: maximum arclength step size
    ds_max: float = 0.1
    #: initial arclength step size, the sign selects the initial direction in the parameter
    ds: float = 0.01
    #: lower bound of the continuation parameter
    p_min: float = -1.0
    #: upper bound of the continuation parameter
    p_max: float = 1.0
    #: maximum number of continuation steps
    max_steps: int = 100
    #: options of the Newton corrector
    newton_options: NewtonPar = field(default_factory=NewtonPar)
    #: 0: no eigen-elements, 1: stability only, 2: detect bifurcations,
    #: 3: detect and locate bifurcations with bisection
    detect_bifurcation: int = 0
    #: detect fold points from sign changes of the parameter component of the tangent
    detect_fold: bool = True
    #: number of eigenvalues to compute
    nev: int = 3
    #: number of sign inversions required for the bisection to be considered converged
    n_inversion: int = 2
    #: the bisection stops when the parameter bracket is narrower than this
    tol_bisection_eigenvalue: float = 1e-7
    #: minimum arclength sub-step during bisection
    dsmin_bisection: float = 1e-14
    #: maximum number of bisection steps
    max_bisection_steps: int = 30
    #: save the full solution every n steps (0: never)
    save_sol_every_step: int = 0
    #: should the eigenvectors be stored in the result?
    save_eigenvectors: bool = True
    #: eigenvalues with real part above this value are counted as unstable
    tol_stability: float = 1e-10
    #: should the step size be adapted while stepping?
    adapt_stepsize: bool = True
    #: the desired number of newton iterations, ds is adapted if we over/undershoot this number
    n_desired_newton_steps: int = 3
    #: ds decreases by this factor when more than n_desired_newton_steps are performed
    ds_decrease_factor: float = 0.5
    #: ds increases by this factor when less than n_desired_newton_steps are performed
    ds_increase_factor: float = 1.1
    #: maximum number of retries with halved step size after a failed correction
    max_retries: int = 10

    def __post_init__(self) -> None:
        if not 0 < self.ds_min <= self.ds_max:
            raise ValueError(f"Need 0 < ds_min <= ds_max, got ds_min={self.ds_min}, ds_max={self.ds_max}")
        if self.ds == 0:
            raise ValueError("The initial step size ds must not be zero")
        if self.p_min >= self.p_max:
            raise ValueError(f"Need p_min < p_max, got p_min={self.p_min}, p_max={self.p_max}")
        if self.detect_bifurcation not in (0, 1, 2, 3):
            raise ValueError(f"detect_bifurcation must be one of 0, 1, 2, 3, got {self.detect_bifurcation}")
        if self.max_steps < 0 or self.max_bisection_steps < 0 or self.max_retries < 0:
            raise ValueError("Step and retry counts must be non-negative")
        if self.nev < 0 or self.save_sol_every_step < 0:
            raise ValueError("nev and save_sol_every_step must be non-negative")

    def replace(self, **changes: Any) -> ContinuationPar:
        """Return a copy of the settings with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    @property
    def compute_eigenelements(self) -> bool:
        """Are eigen-elements computed along the branch?"""
        return self.detect_bifurcation > 0

    def clamp_ds(self, ds: float) -> float:
        """Clamp the magnitude of a step size to [ds_min, ds_max], keeping its sign."""
        sign = -1.0 if ds < 0 else 1.0
        return sign * min(max(abs(ds), self.ds_min), self.ds_max)
