"""Unit tests for the parameter lenses and the settings."""

from collections import namedtuple
from dataclasses import dataclass

import numpy as np
import pytest

from bifcont.core.parameters import ContinuationPar, NewtonPar, ParameterLens
from bifcont.core.solvers import DefaultLS, GMRESIterativeSolver


@dataclass(frozen=True)
class ModelPar:
    mu: float = 0.5
    nu: float = 1.0


def test_lens_on_dataclass_returns_copy() -> None:
    """Setting through a lens never mutates the original parameter object."""
    lens = ParameterLens.attr("mu")
    par = ModelPar()
    new = lens.set(par, 0.7)
    assert lens.get(new) == pytest.approx(0.7)
    assert par.mu == 0.5
    assert new.nu == 1.0


def test_lens_on_namedtuple_and_object() -> None:
    Par = namedtuple("Par", ["a", "b"])
    lens = ParameterLens.attr("b")
    assert lens.set(Par(1.0, 2.0), 3.0) == Par(1.0, 3.0)

    class Plain:
        def __init__(self) -> None:
            self.b = 2.0

    obj = Plain()
    new = lens.set(obj, 5.0)
    assert new.b == 5.0 and obj.b == 2.0


def test_lens_on_dict_and_array() -> None:
    lens = ParameterLens.key("r")
    par = {"r": 1.0, "s": 2.0}
    assert lens.set(par, 4.0) == {"r": 4.0, "s": 2.0}
    assert par["r"] == 1.0
    assert lens.name == "r"

    lens = ParameterLens.index(1)
    arr = np.array([1.0, 2.0, 3.0])
    new = lens.set(arr, -1.0)
    np.testing.assert_array_equal(new, [1.0, -1.0, 3.0])
    np.testing.assert_array_equal(arr, [1.0, 2.0, 3.0])
    assert lens.get(new) == -1.0


def test_newton_par_defaults_and_replace() -> None:
    options = NewtonPar()
    assert isinstance(options.linsolver, DefaultLS)
    new = options.replace(tol=1e-6, linsolver=GMRESIterativeSolver())
    assert new.tol == 1e-6
    assert options.tol == 1e-10
    assert isinstance(new.linsolver, GMRESIterativeSolver)


def test_continuation_par_is_immutable() -> None:
    config = ContinuationPar()
    with pytest.raises(AttributeError):
        config.ds = 0.5  # type: ignore[misc]
    derived = config.replace(ds=-0.02, detect_bifurcation=3)
    assert derived.ds == -0.02 and derived.compute_eigenelements
    assert config.ds == 0.01 and not config.compute_eigenelements


@pytest.mark.parametrize(
    "changes",
    [
        {"ds_min": 0.2, "ds_max": 0.1},
        {"ds_min": 0.0},
        {"ds": 0.0},
        {"p_min": 1.0, "p_max": 1.0},
        {"detect_bifurcation": 4},
        {"max_steps": -1},
        {"nev": -1},
    ],
)
def test_continuation_par_validation(changes: dict) -> None:
    with pytest.raises(ValueError):
        ContinuationPar(**changes)


def test_clamp_ds_keeps_sign() -> None:
    config = ContinuationPar(ds_min=1e-3, ds_max=0.1)
    assert config.clamp_ds(0.5) == pytest.approx(0.1)
    assert config.clamp_ds(-0.5) == pytest.approx(-0.1)
    assert config.clamp_ds(-1e-6) == pytest.approx(-1e-3)
    assert config.clamp_ds(0.05) == pytest.approx(0.05)
