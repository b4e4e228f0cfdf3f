from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import logging
import numpy as np
from numpy.typing import NDArray

from .kernels import Kernel

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]


class SFSTag(str, Enum):
    NONE = "noSFS"
    CONSTANT = "constantSFS"
    DYNAMIC = "dynamicSFS"


class DynamicProcedure(str, Enum):
    TWO_LEVEL = "twolevel"
    THREE_LEVEL = "threelevel"

    @property
    def test_filter(self) -> float:
        """Ratio between test-filter and domain-filter core sizes."""
        return 0.999 if self is DynamicProcedure.TWO_LEVEL else 0.667


# ---------------------------
# Stretching terms
# ---------------------------
def stretching(J: FloatArray, gamma: FloatArray, transposed: bool) -> FloatArray:
    """Resolved vortex stretching, (Gamma.grad)U or its transposed form."""
    if transposed:
        return np.einsum("nji,nj->ni", J, gamma)
    return np.einsum("nij,nj->ni", J, gamma)


def estimate_stretching(
    x: FloatArray,
    gamma: FloatArray,
    J: FloatArray,
    sigma: FloatArray,
    kernel: Kernel,
    transposed: bool,
    *,
    query_batch: int | None = 256,
) -> FloatArray:
    """Stretching-rate estimator of the unresolved scales.

        E_p = sum_q zeta_sigma_p(x_p - x_q) (J_p - J_q) Gamma_q

    which splits into J_p (sum_q w_pq Gamma_q) - sum_q w_pq J_q Gamma_q.
    """
    N = x.shape[0]
    out = np.zeros((N, 3), dtype=np.float64)
    if N == 0:
        return out
    s_q = stretching(J, gamma, transposed)
    qb = query_batch or N
    for i in range(0, N, qb):
        ks = slice(i, min(i + qb, N))
        d = x[ks, None, :] - x[None, :, :]
        r = np.sqrt(np.einsum("mnk,mnk->mn", d, d))
        sgm = sigma[ks, None]
        w = np.broadcast_to(np.asarray(kernel.zeta(r / sgm), dtype=np.float64), r.shape) / sgm**3
        out[ks] = stretching(J[ks], w @ gamma, transposed) - w @ s_q
    return out


def clip_backscatter(C: FloatArray, gamma: FloatArray, E: FloatArray) -> FloatArray:
    """Zero the coefficient where the model would transfer energy backwards."""
    backscatter = C * np.einsum("ni,ni->n", gamma, E) < 0.0
    if backscatter.any():
        logger.debug("Backscatter clipping on %d of %d particles.", int(backscatter.sum()), C.size)
    return np.where(backscatter, 0.0, C)


def _closure(C: FloatArray, E: FloatArray, sigma: FloatArray, zeta0: float) -> FloatArray:
    return -(C * sigma**3 / zeta0)[:, None] * E


# ---------------------------
# Models
# ---------------------------
@dataclass(frozen=True, slots=True)
class NoSFS:
    tag: SFSTag = field(default=SFSTag.NONE, init=False)

    def apply(self, pfield: ParticleField) -> None:
        pfield.sfs[:] = 0.0
        pfield.C[:] = 0.0


@dataclass(frozen=True, slots=True)
class ConstantSFS:
    """SFS closure with a fixed model coefficient Cs."""
    Cs: float = 1.0
    clipping: bool = False
    tag: SFSTag = field(default=SFSTag.CONSTANT, init=False)

    def __post_init__(self) -> None:
        if not np.isfinite(self.Cs):
            raise ValueError("Cs must be finite.")

    def apply(self, pfield: ParticleField) -> None:
        n = pfield.np
        if n == 0:
            return
        E = estimate_stretching(
            pfield.X, pfield.Gamma, pfield.J, pfield.sigma, pfield.kernel, pfield.transposed
        )
        C = np.full(n, self.Cs, dtype=np.float64)
        pfield.C[:] = C
        if self.clipping:
            C = clip_backscatter(C, pfield.Gamma, E)
        pfield.sfs[:] = _closure(C, E, pfield.sigma, pfield.kernel.zeta0)


@dataclass(slots=True)
class DynamicSFS:
    """SFS closure with a coefficient from a test-filter dynamic procedure.

    The stretching resolved at the test filter (sigma scaled by
    ``procedure.test_filter``) and at the domain filter must agree once the
    model term is added, which gives, projected on Gamma,

        C_est = (L . Gamma) / (M . Gamma)
        L = S(J_test) - S(J)
        M = (E_test sigma_test^3 - E sigma^3) / zeta(0)

    The estimate is smoothed once per time step,
    C = alpha*C_old + (1 - alpha)*C_est, and bounded to [minC, maxC].
    C_old lives on the field, one value per particle, and is committed on
    the first stage of each step. Particles without a committed value
    (first step, or added since) take the estimate as is. The model itself
    holds no run state and can be shared between fields.
    """
    alpha: float = 0.995
    procedure: DynamicProcedure = DynamicProcedure.TWO_LEVEL
    clipping: bool = False
    minC: float = 0.0
    maxC: float = 1.0
    force_positive: bool = False
    tag: SFSTag = field(default=SFSTag.DYNAMIC, init=False)

    def __post_init__(self) -> None:
        if not (0.0 <= self.alpha < 1.0):
            raise ValueError("alpha must be in [0, 1).")
        if self.minC > self.maxC:
            raise ValueError("minC must not exceed maxC.")
        self.procedure = DynamicProcedure(self.procedure)

    def estimate(self, pfield: ParticleField) -> tuple[FloatArray, FloatArray]:
        """Return (C_est, E) at the current particle state."""
        x, gamma, J, sigma = pfield.X, pfield.Gamma, pfield.J, pfield.sigma
        kernel, transposed = pfield.kernel, pfield.transposed
        E = estimate_stretching(x, gamma, J, sigma, kernel, transposed)

        sigma_t = self.procedure.test_filter * sigma
        _, J_t = pfield.uj.evaluate(x, gamma, sigma_t, kernel)
        E_t = estimate_stretching(x, gamma, J_t, sigma_t, kernel, transposed)

        L = stretching(J_t, gamma, transposed) - stretching(J, gamma, transposed)
        M = (E_t * (sigma_t**3)[:, None] - E * (sigma**3)[:, None]) / kernel.zeta0
        num = np.einsum("ni,ni->n", L, gamma)
        den = np.einsum("ni,ni->n", M, gamma)
        C_est = np.zeros_like(num)
        np.divide(num, den, out=C_est, where=np.abs(den) > np.finfo(np.float64).tiny)
        if self.force_positive:
            C_est = np.abs(C_est)
        return C_est, E

    def apply(self, pfield: ParticleField) -> None:
        n = pfield.np
        if n == 0:
            return
        C_est, E = self.estimate(pfield)

        # Commit once per step; later RK stages blend against the same values
        if pfield.sfs_nt != pfield.nt:
            pfield.C_old[:] = np.where(pfield.C_valid, pfield.C, np.nan)
            pfield.sfs_nt = pfield.nt

        base = pfield.C_old
        C = np.where(np.isnan(base), C_est, self.alpha * base + (1.0 - self.alpha) * C_est)
        C = np.clip(C, self.minC, self.maxC)
        pfield.C[:] = C
        pfield.C_valid[:] = True
        if self.clipping:
            C = clip_backscatter(C, pfield.Gamma, E)
        pfield.sfs[:] = _closure(C, E, pfield.sigma, pfield.kernel.zeta0)


SFSModel = NoSFS | ConstantSFS | DynamicSFS


def sfs_from_name(name: str) -> SFSModel:
    """Fresh instance of a standard SFS setting."""
    if name in ("noSFS", "SFS_none"):
        return NoSFS()
    if name == "SFS_Cs_nobackscatter":
        return ConstantSFS(Cs=1.0, clipping=True)
    if name == "SFS_Cd_twolevel_nobackscatter":
        return DynamicSFS(procedure=DynamicProcedure.TWO_LEVEL, clipping=True, force_positive=True)
    if name == "SFS_Cd_threelevel_nobackscatter":
        return DynamicSFS(procedure=DynamicProcedure.THREE_LEVEL, clipping=True, force_positive=True)
    raise ValueError(f"Unknown SFS model: {name!r}")
