"""
Data structures for the results of a continuation: the per-step table, the
eigen-elements, the critical points, the ContResult and the Branch.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

import matplotlib.pyplot as plt
import numpy as np

from .types import Array, Axes, ComplexArray, DataDict, RealArray

if TYPE_CHECKING:
    from .parameters import ContinuationPar, ParameterLens


class EigenRecord(NamedTuple):
    """Snapshot of the eigen-elements of the linearization at a continuation step."""

    #: the eigenvalues, sorted by decreasing real part
    eigenvalues: ComplexArray
    #: the eigenvectors as columns, None if they are not retained
    eigenvectors: ComplexArray | None
    #: the step index of the corresponding row of the StepTable
    step: int


@dataclass
class CriticalPoint:
    """A special point on a branch: fold, branch point (bp), Hopf point (hopf) or non-simple point (nd)."""

    #: the type of the point: "fold", "bp", "hopf" or "nd"
    kind: str
    #: index into the branch arrays
    idx: int
    #: value of the continuation parameter at the point
    param: float
    #: norm of the solution at the point
    norm: float
    #: user projection of the solution at the point
    printsol: DataDict
    #: the state at the point
    x: Array
    #: the tangent at the point, the last entry is the parameter component
    tau: Array
    #: index of the crossing eigenvalue in the eigen-record
    ind_ev: int
    #: step index of the accepted step following the crossing
    step: int
    #: "guess" (unrefined), "converged" or "failed"
    status: str
    #: kernel dimension: (number of crossing real eigenvalues, number of crossing complex pairs)
    delta: tuple[int, int]
    #: localization precision (width of the parameter bracket), -1 if not refined
    precision: float = -1.0
    #: bracketing parameter interval
    interval: tuple[float, float] = field(default=(np.nan, np.nan))

    def __str__(self) -> str:
        return f"{self.kind} at p ≈ {self.param:+.8f} (step {self.step}, {self.status}, δ = {self.delta})"


class StepTable:
    """
    Column-wise storage of the per-step records of a continuation.

    Each row holds the user projection of the solution (arbitrary named scalar
    fields) and the built-in columns. The columns are stored in numpy arrays
    that grow geometrically, access to a column returns a read-only view.
    """

    #: the built-in columns and their data types
    BUILTIN_COLUMNS: dict[str, Any] = {
        "param": float,
        "itnewton": int,
        "itlinear": int,
        "ds": float,
        "theta": float,
        "n_unstable": int,
        "n_imag": int,
        "stable": bool,
        "step": int,
    }

    def __init__(self) -> None:
        self._columns: dict[str, np.ndarray] = {}
        self._user_fields: tuple[str, ...] = ()
        self._length = 0

    @property
    def fields(self) -> tuple[str, ...]:
        """The names of all columns, user fields first."""
        return self._user_fields + tuple(self.BUILTIN_COLUMNS)

    @property
    def user_fields(self) -> tuple[str, ...]:
        """The names of the columns of the user projection."""
        return self._user_fields

    def append(self, record: DataDict, row: DataDict) -> None:
        """Append a row from the user projection and the built-in values."""
        if not self._columns:
            collisions = set(record) & set(self.BUILTIN_COLUMNS)
            if collisions:
                raise ValueError(f"The recorded fields {sorted(collisions)} collide with built-in column names")
            self._user_fields = tuple(record)
            dtypes = {name: float for name in self._user_fields} | self.BUILTIN_COLUMNS
            self._columns = {name: np.zeros(16, dtype=dtype) for name, dtype in dtypes.items()}
        if set(record) != set(self._user_fields):
            raise ValueError(f"Inconsistent recorded fields: expected {self._user_fields}, got {tuple(record)}")
        # grow the storage if needed
        if self._length == len(self._columns["param"]):
            for name, column in self._columns.items():
                self._columns[name] = np.resize(column, 2 * len(column))
        for name in self._user_fields:
            self._columns[name][self._length] = record[name]
        for name in self.BUILTIN_COLUMNS:
            self._columns[name][self._length] = row[name]
        self._length += 1

    def column(self, name: str) -> np.ndarray:
        """Return a read-only view on a column."""
        if name not in self._columns:
            raise KeyError(f"Unknown column {name!r}, available: {self.fields}")
        view = self._columns[name][: self._length]
        view.flags.writeable = False
        return view

    def __len__(self) -> int:
        return self._length

    def __getitem__(self, k: int) -> DataDict:
        if not -self._length <= k < self._length:
            raise IndexError(f"Step index {k} out of range for a branch with {self._length} steps")
        k = k % self._length
        return {name: self._columns[name][k].item() for name in self.fields}


class ContResult:
    """
    The result of a continuation run.

    Holds the per-step table (``branch``), the eigen-elements (``eig``), the
    lists of bifurcation and fold points, the sampled solutions, the settings
    and the parameters that were used. The columns of the table can be
    accessed as attributes, e.g. ``result.param`` or ``result.stable``.
    The result is written by the continuation stepper only and is frozen
    (read-only) once the stepper has terminated.
    """

    def __init__(
        self,
        contparams: ContinuationPar,
        params: Any,
        lens: ParameterLens,
        kind: str = "equilibrium",
        functional: Any = None,
    ) -> None:
        #: the per-step records, stored column-wise
        self.branch = StepTable()
        #: the eigen-elements, one record per step
        self.eig: list[EigenRecord] = []
        #: the bifurcation points
        self.bifpoint: list[CriticalPoint] = []
        #: the fold points
        self.foldpoint: list[CriticalPoint] = []
        #: the sampled solutions, dicts with keys "x", "p" and "step"
        self.sol: list[DataDict] = []
        #: the settings of the continuation
        self.contparams = contparams
        #: the type of the branch, "equilibrium" or "periodic-orbit"
        self.kind = kind
        #: the functional that produced the branch, e.g. a periodic orbit problem
        self.functional = functional
        #: the parameters of the model (at the start of the continuation)
        self.params = params
        #: the accessor for the continuation parameter
        self.lens = lens
        #: the reason why the continuation terminated, None while running
        self.termination: str | None = None

    # lifecycle

    @property
    def frozen(self) -> bool:
        """Is the continuation finished?"""
        return self.termination is not None

    def _check_writable(self) -> None:
        if self.frozen:
            raise RuntimeError("The continuation result is read-only after the continuation terminated")

    def append(self, record: DataDict, row: DataDict, eig: EigenRecord) -> None:
        """Append the records of an accepted step."""
        self._check_writable()
        if len(self.branch) > 0 and row["step"] <= self.branch.column("step")[-1]:
            raise ValueError("Step indices must be strictly increasing")
        if eig.step != row["step"]:
            raise ValueError("The eigen-record does not belong to the step")
        self.branch.append(record, row)
        self.eig.append(eig)

    def add_point(self, point: CriticalPoint) -> None:
        """Add a critical point to the fold list or to the bifurcation list."""
        self._check_writable()
        if point.kind == "fold":
            self.foldpoint.append(point)
        else:
            self.bifpoint.append(point)

    def add_solution(self, x: Array, p: float, step: int) -> None:
        """Store a solution of the branch."""
        self._check_writable()
        self.sol.append({"x": np.copy(x), "p": p, "step": step})

    def freeze(self, termination: str) -> None:
        """Mark the result as final."""
        self.termination = termination

    # accessors

    def __len__(self) -> int:
        return len(self.branch)

    def __getitem__(self, k: int) -> DataDict:
        row = self.branch[k]
        record = self.eig[k]
        row["eigenvals"] = record.eigenvalues
        row["eigenvecs"] = record.eigenvectors
        return row

    def eigenvals(self, step: int) -> ComplexArray:
        """The eigenvalues at a given step."""
        if not -len(self.eig) <= step < len(self.eig):
            raise IndexError(f"Step index {step} out of range for a branch with {len(self.eig)} steps")
        return self.eig[step].eigenvalues

    def eigenvals_at_bifurcation(self, i: int) -> ComplexArray:
        """
        The eigenvalues at the i-th bifurcation point.

        The point is resolved through its step index, it must belong to this result.
        """
        return self.eigenvals(self.bifpoint[i].step)

    def eigenvec(self, step: int, k: int) -> ComplexArray:
        """The k-th eigenvector at a given step."""
        if not -len(self.eig) <= step < len(self.eig):
            raise IndexError(f"Step index {step} out of range for a branch with {len(self.eig)} steps")
        vectors = self.eig[step].eigenvectors
        if vectors is None:
            raise ValueError("The eigenvectors were not saved, use ContinuationPar(save_eigenvectors=True)")
        return vectors[:, k]

    def kernel_dim(self, i: int) -> tuple[int, int]:
        """Kernel dimension of the i-th bifurcation point."""
        return self.bifpoint[i].delta

    def set_param(self, p: float) -> Any:
        """Return a copy of the parameters with the continuation parameter set to p."""
        return self.lens.set(self.params, p)

    @property
    def param_range(self) -> tuple[float, float]:
        """The range of the parameter spanned by the branch."""
        if len(self) == 0:
            return (np.nan, np.nan)
        p = self.branch.column("param")
        return (float(p.min()), float(p.max()))

    def __getattr__(self, name: str) -> RealArray:
        # only called for attributes that are not found otherwise: forward to the columns
        if name.startswith("_") or "branch" not in self.__dict__:
            raise AttributeError(name)
        if name in self.branch.fields:
            return self.branch.column(name)
        raise AttributeError(f"'ContResult' object has no attribute or column {name!r}")

    # display

    def __str__(self) -> str:
        pname = self.lens.name
        lines = [
            f"Branch of type: {self.kind}",
            f"Number of points: {len(self)}",
            f"Parameter {pname} from {self.param_range[0]:+.4e} to {self.param_range[1]:+.4e}",
            f"Termination: {self.termination or 'running'}",
        ]
        for title, points in (("Special points", self.bifpoint), ("Fold points", self.foldpoint)):
            if not points:
                continue
            lines.append(f"{title}:")
            for i, pt in enumerate(points):
                if pt.precision >= 0:
                    precision = f"± {pt.precision:.2e}"
                else:
                    precision = "unrefined"
                lines.append(
                    f"- #{i + 1:>3}, {pt.kind:>4} at {pname} ≈ {pt.param:+.8f} ({precision}), "
                    f"step = {pt.step:>4}, eigen-index = {pt.ind_ev:>3}, [{pt.status:>9}], δ = {pt.delta}"
                )
        return "\n".join(lines)

    def plot(self, ax: Axes | None = None, field: str | None = None) -> None:
        """Plot the branch into a bifurcation diagram: parameter against a recorded field."""
        if len(self) == 0:
            return
        if ax is None:
            ax = plt.gca()
        if field is None:
            field = self.branch.user_fields[0] if self.branch.user_fields else "param"
        p = self.branch.column("param")
        y = self.branch.column(field)
        stable = self.branch.column("stable")
        ax.plot(p, y, linewidth=0.7, color="C0")
        # plot the stable parts bold
        ax.plot(np.ma.masked_where(~stable, p), np.ma.masked_where(~stable, y), linewidth=1.8, color="C0")
        # annotate critical points with their types
        for pt in self.bifpoint + self.foldpoint:
            yp = pt.printsol.get(field, pt.norm) if field != "param" else pt.param
            ax.plot(pt.param, yp, "*", color="C2")
            ax.annotate(" " + pt.kind, (pt.param, yp))
        ax.set_xlabel(self.lens.name)
        ax.set_ylabel(field)


class Branch:
    """
    A branch obtained from a continuation or a branch switching.

    Wraps one ContResult (or a sequence of them) together with a weak reference
    to the critical point the branch emanates from (None for a root branch).
    Attribute lookup is forwarded to the wrapped ContResult. For a sequence of
    results, the length and the step indices run through all of them in order.
    """

    def __init__(self, gamma: ContResult | list[ContResult], bp: CriticalPoint | None = None, normal_form: Any = None) -> None:
        #: the wrapped continuation result(s)
        self.gamma = gamma
        self._bp = weakref.ref(bp) if bp is not None else None
        #: the normal form used to switch onto the branch
        self.normal_form = normal_form

    @property
    def bp(self) -> CriticalPoint | None:
        """The critical point the branch emanates from, if it is still alive."""
        return self._bp() if self._bp is not None else None

    @property
    def result(self) -> ContResult:
        """The (last) wrapped continuation result."""
        return self.gamma if isinstance(self.gamma, ContResult) else self.gamma[-1]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or "gamma" not in self.__dict__:
            raise AttributeError(name)
        if isinstance(self.gamma, ContResult):
            return getattr(self.gamma, name)
        raise AttributeError(f"'Branch' wrapping several results has no attribute {name!r}")

    def __len__(self) -> int:
        if isinstance(self.gamma, ContResult):
            return len(self.gamma)
        return sum(len(g) for g in self.gamma)

    def __getitem__(self, k: int) -> DataDict:
        if isinstance(self.gamma, ContResult):
            return self.gamma[k]
        # steps are numbered consecutively through all wrapped results
        n = len(self)
        if not -n <= k < n:
            raise IndexError(f"Step index {k} out of range for a branch with {n} steps")
        k = k % n
        for g in self.gamma:
            if k < len(g):
                return g[k]
            k -= len(g)
        raise IndexError(k)

    def __str__(self) -> str:
        if isinstance(self.gamma, ContResult):
            text = str(self.gamma)
        else:
            text = "\n".join(str(g) for g in self.gamma)
        bp = self.bp
        if bp is not None:
            text = f"Branch switched from: {bp}\n" + text
        return text

    def plot(self, ax: Axes | None = None, field: str | None = None) -> None:
        """Plot all wrapped results into a bifurcation diagram, by default into the current axes."""
        if ax is None:
            ax = plt.gca()
        for g in [self.gamma] if isinstance(self.gamma, ContResult) else self.gamma:
            g.plot(ax, field)
