from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField


def vorticity(J: NDArray[np.float64]) -> NDArray[np.float64]:
    """Vorticity from the antisymmetric part of the velocity Jacobian."""
    return np.stack(
        [J[:, 2, 1] - J[:, 1, 2], J[:, 0, 2] - J[:, 2, 0], J[:, 1, 0] - J[:, 0, 1]], axis=1
    )


def total_circulation(pfield: ParticleField) -> NDArray[np.float64]:
    return pfield.total_circulation


def enstrophy(pfield: ParticleField, *, evaluate: bool = False) -> float:
    """Enstrophy estimate 0.5 * sum_p Gamma_p . omega(x_p).

    Uses the Jacobian currently stored on the particles unless evaluate=True.
    """
    if pfield.np == 0:
        return 0.0
    if evaluate:
        pfield.evaluate_uj()
    return 0.5 * float(np.einsum("ni,ni->", pfield.Gamma, vorticity(pfield.J)))


def diagnostics(pfield: ParticleField) -> dict[str, Any]:
    pfield.evaluate_uj()
    g = pfield.Gamma
    w = np.linalg.norm(g, axis=1)
    wsum = float(w.sum())
    if pfield.np == 0:
        centroid = np.zeros(3)
    elif wsum > 0.0:
        centroid = (w @ pfield.X) / wsum
    else:
        centroid = pfield.X.mean(axis=0)
    speed = np.linalg.norm(pfield.U, axis=1)
    return {
        "time": pfield.t,
        "nt": pfield.nt,
        "np": pfield.np,
        "total_circulation": pfield.total_circulation.copy(),
        "centroid": centroid,
        "max_speed_at_particles": float(speed.max(initial=0.0)),
        "enstrophy": enstrophy(pfield),
    }
