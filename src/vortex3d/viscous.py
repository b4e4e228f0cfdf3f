from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
from collections.abc import Callable

import logging
import numpy as np
from numpy.typing import NDArray

from .kernels import Kernel, KernelTag, const4, zeta_gauserf

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]


class ViscousTag(str, Enum):
    INVISCID = "inviscid"
    CORE_SPREADING = "corespreading"
    PSE = "particlestrengthexchange"


# Viscous scheme => kernels it can run with
KERNEL_COMPATIBILITY: dict[ViscousTag, frozenset[KernelTag]] = {
    ViscousTag.INVISCID: frozenset(KernelTag),
    ViscousTag.CORE_SPREADING: frozenset({KernelTag.GAUSSIAN_ERF}),
    ViscousTag.PSE: frozenset({KernelTag.GAUSSIAN_ERF, KernelTag.WINCKELMANS}),
}


def _check_nu(nu: float) -> None:
    if not (np.isfinite(nu) and nu >= 0.0):
        raise ValueError("nu must be finite and non-negative.")


# ---------------------------
# Inviscid
# ---------------------------
@dataclass(frozen=True, slots=True)
class Inviscid:
    """No viscous diffusion. Touches nothing."""
    nu: float = 0.0
    tag: ViscousTag = field(default=ViscousTag.INVISCID, init=False)

    def apply(self, pfield: ParticleField, dt: float, *, a: float = 0.0, b: float = 1.0) -> None:
        return None


# ---------------------------
# Core spreading
# ---------------------------
@dataclass(frozen=True, slots=True)
class CoreSpreading:
    """Gaussian core spreading, d(sigma^2)/dt = 2*nu. Mutates sigma only.

    The rate is constant, so a single update (a=0, b=1) is the closed-form
    law sigma^2 += 2*nu*dt and a full low-storage RK step reproduces it
    exactly. sigma_max optionally caps the growth.
    """
    nu: float
    sigma_max: float | None = None
    tag: ViscousTag = field(default=ViscousTag.CORE_SPREADING, init=False)

    def __post_init__(self) -> None:
        _check_nu(self.nu)
        if self.sigma_max is not None and not (np.isfinite(self.sigma_max) and self.sigma_max > 0):
            raise ValueError("sigma_max must be positive.")

    def apply(self, pfield: ParticleField, dt: float, *, a: float = 0.0, b: float = 1.0) -> None:
        if self.nu == 0.0 or pfield.np == 0:
            return
        mobile = ~pfield.static
        reg = pfield.M_viscous[:, 3]
        reg[:] = a * reg + dt * 2.0 * self.nu
        sigma = pfield.sigma
        sigma2 = sigma[mobile] ** 2 + b * reg[mobile]
        if self.sigma_max is not None:
            sigma2 = np.minimum(sigma2, self.sigma_max**2)
        sigma[mobile] = np.sqrt(sigma2)


# ---------------------------
# Particle strength exchange
# ---------------------------
def eta_gauserf(r: FloatArray) -> FloatArray:
    # -zeta'(r)/r of the Gaussian is the Gaussian itself
    return np.asarray(zeta_gauserf(r), dtype=np.float64)


def eta_wnklmns(r: FloatArray) -> FloatArray:
    return const4 * 52.5 / (r**2 + 1.0) ** 4.5


PSE_KERNELS: dict[KernelTag, Callable[[FloatArray], FloatArray]] = {
    KernelTag.GAUSSIAN_ERF: eta_gauserf,
    KernelTag.WINCKELMANS: eta_wnklmns,
}


def pse_rate(
    x: FloatArray,
    gamma: FloatArray,
    sigma: FloatArray,
    vol: FloatArray,
    kernel: Kernel,
    nu: float,
    *,
    query_batch: int | None = 256,
) -> FloatArray:
    """Strength rate dGamma/dt = nu * vol * laplacian(omega) by PSE.

        dGamma_p/dt = (2 nu / s^2) sum_q (vol_p Gamma_q - vol_q Gamma_p) eta_s(x_p - x_q)

    with s^2 = (sigma_p^2 + sigma_q^2)/2 so that the pair weights are
    symmetric and the sum of Gamma is conserved.
    """
    eta = PSE_KERNELS[kernel.tag]
    N = x.shape[0]
    out = np.zeros((N, 3), dtype=np.float64)
    qb = query_batch or N
    s2_all = sigma**2
    for i in range(0, N, qb):
        ks = slice(i, min(i + qb, N))
        d = x[ks, None, :] - x[None, :, :]
        r = np.sqrt(np.einsum("mnk,mnk->mn", d, d))
        s2 = 0.5 * (s2_all[ks, None] + s2_all[None, :])
        s = np.sqrt(s2)
        coef = 2.0 * nu / s2 * eta(r / s) / s**3
        out[ks] = vol[ks, None] * (coef @ gamma) - gamma[ks] * (coef @ vol)[:, None]
    return out


@dataclass(frozen=True, slots=True)
class ParticleStrengthExchange:
    """Viscous diffusion by exchanging Gamma between neighbors. Mutates Gamma only.

    Runs on steps where nt % nsteps == 0, covering the whole interval
    nsteps*dt. Particle volumes must be set for the exchange to act.
    """
    nu: float
    nsteps: int = 1
    tag: ViscousTag = field(default=ViscousTag.PSE, init=False)

    def __post_init__(self) -> None:
        _check_nu(self.nu)
        if self.nsteps < 1:
            raise ValueError("nsteps must be at least 1.")

    def apply(self, pfield: ParticleField, dt: float, *, a: float = 0.0, b: float = 1.0) -> None:
        if self.nu == 0.0 or pfield.np == 0 or pfield.nt % self.nsteps != 0:
            return
        rate = pse_rate(pfield.X, pfield.Gamma, pfield.sigma, pfield.vol, pfield.kernel, self.nu)
        logger.debug("PSE exchange at nt=%d over %d particles.", pfield.nt, pfield.np)
        mobile = ~pfield.static
        reg = pfield.M_viscous[:, :3]
        reg[:] = a * reg + self.nsteps * dt * rate
        pfield.Gamma[mobile] += b * reg[mobile]


ViscousScheme = Inviscid | CoreSpreading | ParticleStrengthExchange
