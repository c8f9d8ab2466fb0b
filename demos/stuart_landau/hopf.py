r"""
Stuart-Landau oscillator: branch switching from a Hopf point to periodic orbits

The equilibrium u = 0 loses its stability in a supercritical Hopf bifurcation
at p = 0, from which a branch of stable limit cycles of radius sqrt(p) emanates.
"""

from dataclasses import dataclass
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from bifcont import ContinuationPar, ParameterLens, PeriodicOrbitTrapProblem, continuation_hopf, setup_logging
from bifcont.continuation import continuation


@dataclass
class Par:
    p: float = -0.1


def F(u, par):
    r2 = u[0] * u[0] + u[1] * u[1]
    return np.array([par.p * u[0] - u[1] - u[0] * r2, u[0] + par.p * u[1] - u[1] * r2])


def J(u, par):
    r2 = u[0] * u[0] + u[1] * u[1]
    return np.array([[par.p, -1.0], [1.0, par.p]]) - 2 * np.outer(u, u) - r2 * np.eye(2)


def d2F(u, par, dx1, dx2):
    return -2 * (np.dot(dx1, dx2) * u + np.dot(u, dx1) * dx2 + np.dot(u, dx2) * dx1)


def d3F(u, par, dx1, dx2, dx3):
    return -2 * (np.dot(dx1, dx2) * dx3 + np.dot(dx1, dx3) * dx2 + np.dot(dx2, dx3) * dx1)


setup_logging()

# continue the equilibrium and detect the Hopf point
config = ContinuationPar(ds=0.01, ds_max=0.02, p_min=-0.2, p_max=0.1, detect_bifurcation=3, nev=2)
br, _, _ = continuation(F, J, np.zeros(2), Par(), ParameterLens.attr("p"), config)
print(br)

# switch to the branch of periodic orbits, discretized with 30 time slices
M = 30
config_po = config.replace(ds=0.02, ds_max=0.2, p_min=-0.01, detect_bifurcation=1, max_steps=50)
br_po, _, _ = continuation_hopf(
    F, J, d2F, d3F, br, 0, config_po, PeriodicOrbitTrapProblem(F, J, 2, M), dp=0.01, linearization="ad-dense"
)
print(br_po)

fig, ax = plt.subplots(2, 1)
br.plot(ax[0])
ax[0].set_ylabel("norm")
br_po.plot(ax[1], "period")
ax[1].set_ylabel("period")
fig.savefig(Path(__file__).with_suffix(".png"))
plt.show(block=True)
