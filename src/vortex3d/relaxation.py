from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField

FloatArray = NDArray[np.float64]


class RelaxationTag(str, Enum):
    NONE = "norelaxation"
    PEDRIZZETTI = "pedrizzetti"
    CORRECTED_PEDRIZZETTI = "correctedpedrizzetti"


def principal_strain_direction(J: FloatArray, gamma: FloatArray) -> tuple[FloatArray, FloatArray]:
    """Unit eigenvector of the dominant eigenvalue of (J + J^T)/2.

    Dominant means largest in magnitude. The eigenvector is oriented so that
    e.Gamma >= 0. Also returns the magnitude of that eigenvalue.
    """
    S = 0.5 * (J + np.swapaxes(J, 1, 2))
    w, v = np.linalg.eigh(S)
    k = np.argmax(np.abs(w), axis=1)
    rows = np.arange(J.shape[0])
    e = v[rows, :, k]
    sign = np.where(np.einsum("ni,ni->n", e, gamma) < 0.0, -1.0, 1.0)
    return e * sign[:, None], np.abs(w[rows, k])


def relax_pedrizzetti(rlxf: float, gamma: FloatArray, J: FloatArray) -> FloatArray:
    """Blend Gamma toward |Gamma| e, e the principal strain direction."""
    e, lam = principal_strain_direction(J, gamma)
    nrm = np.linalg.norm(gamma, axis=1)
    out = (1.0 - rlxf) * gamma + rlxf * nrm[:, None] * e
    keep = (nrm == 0.0) | (lam == 0.0)
    out[keep] = gamma[keep]
    return out


def relax_correctedpedrizzetti(rlxf: float, gamma: FloatArray, J: FloatArray) -> FloatArray:
    """Pedrizzetti blend rescaled so that |Gamma| is preserved."""
    e, lam = principal_strain_direction(J, gamma)
    nrm = np.linalg.norm(gamma, axis=1)
    keep = (nrm == 0.0) | (lam == 0.0)
    safe = np.where(keep, 1.0, nrm)
    cos = np.einsum("ni,ni->n", gamma, e) / safe
    b2 = 1.0 - 2.0 * (1.0 - rlxf) * rlxf * (1.0 - cos)
    out = ((1.0 - rlxf) * gamma + rlxf * nrm[:, None] * e) / np.sqrt(b2)[:, None]
    out[keep] = gamma[keep]
    return out


_RELAX_FUNCTIONS = {
    RelaxationTag.PEDRIZZETTI: relax_pedrizzetti,
    RelaxationTag.CORRECTED_PEDRIZZETTI: relax_correctedpedrizzetti,
}


@dataclass(frozen=True, slots=True)
class Relaxation:
    """Vorticity relaxation scheme.

    rlxf: blending factor lambda in [0, 1]
    order: evaluation passes needed before relaxing (-1: never needed,
           the scheme is skippable)
    """
    tag: RelaxationTag
    rlxf: float = 0.3
    order: int = 1

    def __post_init__(self) -> None:
        if not (0.0 <= self.rlxf <= 1.0):
            raise ValueError("rlxf must be in [0, 1].")

    @property
    def name(self) -> str:
        return self.tag.value

    def apply(self, pfield: ParticleField) -> None:
        """Relax Gamma of every non-static particle using the current J."""
        if self.tag is RelaxationTag.NONE or pfield.np == 0:
            return
        mobile = ~pfield.static
        if not mobile.any():
            return
        gamma = pfield.Gamma
        gamma[mobile] = _RELAX_FUNCTIONS[self.tag](self.rlxf, gamma[mobile], pfield.J[mobile])


relaxation_none = Relaxation(RelaxationTag.NONE, 0.0, -1)
relaxation_pedrizzetti = Relaxation(RelaxationTag.PEDRIZZETTI, 0.3, 1)
relaxation_correctedpedrizzetti = Relaxation(RelaxationTag.CORRECTED_PEDRIZZETTI, 0.3, 1)
relaxation_default = relaxation_pedrizzetti

STANDARD_RELAXATIONS: dict[RelaxationTag, Relaxation] = {
    rx.tag: rx for rx in (relaxation_none, relaxation_pedrizzetti, relaxation_correctedpedrizzetti)
}


def relaxation_from_name(name: str | RelaxationTag, rlxf: float | None = None) -> Relaxation:
    try:
        tag = RelaxationTag(name)
    except ValueError:
        raise ValueError(f"Unknown relaxation scheme: {name!r}") from None
    base = STANDARD_RELAXATIONS[tag]
    if rlxf is None:
        return base
    return Relaxation(tag, float(rlxf), base.order)
