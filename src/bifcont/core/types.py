"""Common type aliases used throughout the package."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
import numpy.typing
import scipy.sparse as sp
import scipy.sparse.linalg

if TYPE_CHECKING:
    import matplotlib.axes

# Common type for Arrays, e.g. the vector of unknowns
Array: TypeAlias = numpy.typing.NDArray[np.float64 | np.complexfloating]

# Type for purely real-valued arrays (e.g. parameter columns)
RealArray: TypeAlias = numpy.typing.NDArray[np.float64]

# Type for complex-valued arrays (e.g. eigenvalues)
ComplexArray: TypeAlias = numpy.typing.NDArray[np.complexfloating]

# Objects that can be coerced into an Array
ArrayLike: TypeAlias = numpy.typing.ArrayLike

# Common type for dense and sparse matrices
Matrix: TypeAlias = np.ndarray | sp.spmatrix | sp.sparray

# A Jacobian is either a matrix, a scipy LinearOperator or a matrix-free
# directional derivative dx -> J * dx
Operator: TypeAlias = Matrix | scipy.sparse.linalg.LinearOperator | Callable[[Array], Array]

# Residual function F(x, par) of a parametrized problem
Functional: TypeAlias = Callable[[Array, Any], Array]

# Jacobian function J(x, par)
JacobianFunction: TypeAlias = Callable[[Array, Any], Any]

# Common type for matplotlib axes
if TYPE_CHECKING:
    Axes: TypeAlias = matplotlib.axes.Axes
else:
    Axes: TypeAlias = Any

# Dictionary of recorded scalar data, e.g. the user projection of a solution
DataDict: TypeAlias = dict[str, Any]
