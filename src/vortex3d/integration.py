from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import logging
import numpy as np

from .sfs import stretching

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField

logger = logging.getLogger(__name__)


class IntegrationScheme(str, Enum):
    EULER = "euler"
    RK3 = "rungekutta3"


# Williamson low-storage RK3: stage coefficients and stage times
RK3_A = (0.0, -5.0 / 9.0, -153.0 / 128.0)
RK3_B = (1.0 / 3.0, 15.0 / 16.0, 8.0 / 15.0)
RK3_C = (0.0, 1.0 / 3.0, 3.0 / 4.0)


def _stage(pfield: ParticleField, dt: float, a: float, b: float, t: float) -> None:
    """One low-storage stage: M = a*M + dt*RHS, q += b*M.

    (a, b) = (0, 1) is a forward Euler update. The viscous scheme acts on the
    state first; SFS and stretching then see the diffused strengths.
    """
    # Validated before anything is mutated
    Uinf = np.asarray(pfield.Uinf(t), dtype=np.float64)
    if Uinf.shape != (3,):
        raise ValueError("Uinf(t) must return a 3-vector.")

    pfield.evaluate_uj()
    pfield.viscous.apply(pfield, dt, a=a, b=b)
    pfield.sfs_model.apply(pfield)

    if pfield.np == 0:
        return

    X, Gamma, sigma = pfield.X, pfield.Gamma, pfield.sigma
    sfs = pfield.sfs
    mobile = ~pfield.static

    S = stretching(pfield.J, Gamma, pfield.transposed)
    dX = pfield.U + Uinf
    dGamma = S + sfs

    fm = pfield.formulation
    if not fm.classic:
        nrm2 = np.einsum("ni,ni->n", Gamma, Gamma)
        nz = nrm2 > 0.0
        Z = np.zeros_like(nrm2)
        Z[nz] = (
            fm.stretch_factor * np.einsum("ni,ni->n", S[nz], Gamma[nz])
            + fm.sfs_factor * np.einsum("ni,ni->n", sfs[nz], Gamma[nz])
        ) / nrm2[nz]
        dGamma -= 3.0 * Z[:, None] * Gamma
        M_sigma = pfield.M_sigma
        M_sigma[:] = a * M_sigma - dt * sigma * Z

    M_X, M_Gamma = pfield.M_X, pfield.M_Gamma
    M_X[:] = a * M_X + dt * dX
    M_Gamma[:] = a * M_Gamma + dt * dGamma

    X[mobile] += b * M_X[mobile]
    Gamma[mobile] += b * M_Gamma[mobile]
    if not fm.classic:
        sigma[mobile] += b * pfield.M_sigma[mobile]


def _relax(pfield: ParticleField, reevaluate: bool) -> None:
    scheme = pfield.relaxation
    if scheme.order < 0:
        return
    if reevaluate and scheme.order >= 1:
        pfield.evaluate_uj()
    scheme.apply(pfield)


def euler(pfield: ParticleField, dt: float, relax: bool = False) -> None:
    """Forward Euler step; relaxation uses J from the step's evaluation."""
    _stage(pfield, dt, 0.0, 1.0, pfield.t)
    if relax and pfield.relax:
        _relax(pfield, reevaluate=False)


def rungekutta3(pfield: ParticleField, dt: float, relax: bool = False) -> None:
    """Low-storage third-order Runge–Kutta step.

    Viscous and SFS terms are evaluated on every stage. Relaxation happens
    only after the last stage, on freshly evaluated U and J.
    """
    for a, b, c in zip(RK3_A, RK3_B, RK3_C):
        _stage(pfield, dt, a, b, pfield.t + c * dt)
    if relax and pfield.relax:
        _relax(pfield, reevaluate=True)


_SCHEMES = {
    IntegrationScheme.EULER: euler,
    IntegrationScheme.RK3: rungekutta3,
}


def step(pfield: ParticleField, dt: float, relax: bool = False) -> None:
    """Advance the field by one explicit step of size dt.

    The kernel/viscous pairing is verified before the first step. Errors
    from the container and the evaluator propagate; nothing is rolled back.
    """
    if not (np.isfinite(dt) and dt > 0.0):
        raise ValueError("dt must be positive.")
    if not pfield._configuration_checked:
        pfield.check_configuration()

    _SCHEMES[pfield.integration](pfield, dt, relax=relax)

    pfield.t += dt
    pfield.nt += 1
    logger.debug("Step nt=%d t=%.6g np=%d relax=%s", pfield.nt, pfield.t, pfield.np, relax)
