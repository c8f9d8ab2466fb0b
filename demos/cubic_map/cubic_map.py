r"""
Cubic map with two transcritical branch points

in parts stolen from BifurcationKit.jl's Example 1: "solving the perturbed pitchfork equation"

https://bifurcationkit.github.io/BifurcationKitDocs.jl/stable/gettingstarted/
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from bifcont import ContinuationPar, ParameterLens, setup_logging
from bifcont.continuation import continuation


def F(u, p):
    return -u * (p + u * (2 - 5 * u)) * (p - 0.15 - u * (2 + 20 * u))


def J(u, p):
    f1 = p + u * (2 - 5 * u)
    f2 = p - 0.15 - u * (2 + 20 * u)
    return np.diag(-(f1 * f2) - u * ((2 - 10 * u) * f2 + f1 * (-2 - 40 * u)))


setup_logging()

# the parameter is a bare float
lens = ParameterLens(lambda p: p, lambda p, value: value, "p")

# some settings
config = ContinuationPar(ds=0.01, ds_max=0.05, p_min=-0.5, p_max=0.4, detect_bifurcation=3, nev=1, max_steps=500)

# continue the trivial branch
br, _, _ = continuation(F, J, np.array([0.0]), -0.2, lens, config)
print(br)

fig, ax = plt.subplots(1, 1)
br.plot(ax)
ax.set_ylabel("norm")
fig.savefig(Path(__file__).with_suffix(".png"))
plt.show(block=True)
