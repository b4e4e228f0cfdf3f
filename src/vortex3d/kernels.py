from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from collections.abc import Callable

import math
import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.special import erf

FloatOrArray = float | NDArray[np.float64]
KernelFunction = Callable[[ArrayLike], FloatOrArray]

const1 = 1.0 / (2.0 * math.pi) ** 1.5
const2 = math.sqrt(2.0 / math.pi)
const3 = 3.0 / (4.0 * math.pi)
const4 = 1.0 / (4.0 * math.pi)


def _out(a: NDArray[np.float64]) -> FloatOrArray:
    # 0-d results come back as plain floats
    return float(a) if a.ndim == 0 else a


# ---------------------------
# Singular
# ---------------------------
def zeta_sing(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(np.where(r == 0.0, 1.0, 0.0))

def g_sing(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(np.ones_like(r))

def dgdr_sing(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(np.zeros_like(r))

def g_dgdr_sing(r: ArrayLike) -> tuple[FloatOrArray, FloatOrArray]:
    return g_sing(r), dgdr_sing(r)


# ---------------------------
# Gaussian (exp(-r^3) core)
# ---------------------------
def zeta_gaus(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(const3 * np.exp(-r**3))

def g_gaus(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(-np.expm1(-r**3))

def dgdr_gaus(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(3.0 * r**2 * np.exp(-r**3))

def g_dgdr_gaus(r: ArrayLike) -> tuple[FloatOrArray, FloatOrArray]:
    r = np.asarray(r, dtype=np.float64)
    r3 = r**3
    return _out(-np.expm1(-r3)), _out(3.0 * r**2 * np.exp(-r3))


# ---------------------------
# Gaussian error function
# ---------------------------
def zeta_gauserf(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(const1 * np.exp(-r**2 / 2.0))

def g_gauserf(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(erf(r / math.sqrt(2.0)) - const2 * r * np.exp(-r**2 / 2.0))

def dgdr_gauserf(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(const2 * r**2 * np.exp(-r**2 / 2.0))

def g_dgdr_gauserf(r: ArrayLike) -> tuple[FloatOrArray, FloatOrArray]:
    r = np.asarray(r, dtype=np.float64)
    aux = const2 * r * np.exp(-r**2 / 2.0)
    return _out(erf(r / math.sqrt(2.0)) - aux), _out(r * aux)


# ---------------------------
# Winckelmans algebraic
# ---------------------------
def zeta_wnklmns(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(const4 * 7.5 / (r**2 + 1.0) ** 3.5)

def g_wnklmns(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(r**3 * (r**2 + 2.5) / (r**2 + 1.0) ** 2.5)

def dgdr_wnklmns(r: ArrayLike) -> FloatOrArray:
    r = np.asarray(r, dtype=np.float64)
    return _out(7.5 * r**2 / (r**2 + 1.0) ** 3.5)

def g_dgdr_wnklmns(r: ArrayLike) -> tuple[FloatOrArray, FloatOrArray]:
    r = np.asarray(r, dtype=np.float64)
    r2 = r**2
    aux = (r2 + 1.0) ** 2.5
    return _out(r**3 * (r2 + 2.5) / aux), _out(7.5 * r2 / (aux * (r2 + 1.0)))


# ---------------------------
# Kernel bundle
# ---------------------------
class KernelTag(str, Enum):
    SINGULAR = "singular"
    GAUSSIAN = "gaussian"
    GAUSSIAN_ERF = "gaussianerf"
    WINCKELMANS = "winckelmans"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class Kernel:
    """Regularized Biot-Savart kernel.

    zeta: regularized delta, normalized to unit volume integral
    g: regularizing function of the Biot-Savart law, g'(r) = 4*pi*r^2*zeta(r)
    dgdr: derivative of g
    g_dgdr: fused (g, dgdr) evaluation
    order, exponent: bookkeeping for accelerated evaluators, not used by the core
    """
    tag: KernelTag
    zeta: KernelFunction
    g: KernelFunction
    dgdr: KernelFunction
    g_dgdr: Callable[[ArrayLike], tuple[FloatOrArray, FloatOrArray]]
    order: int
    exponent: int

    @classmethod
    def custom(
        cls,
        zeta: KernelFunction,
        g: KernelFunction,
        dgdr: KernelFunction,
        g_dgdr: Callable[[ArrayLike], tuple[FloatOrArray, FloatOrArray]] | None = None,
        *,
        order: int = -1,
        exponent: int = 1,
    ) -> Kernel:
        """User-supplied kernel. Functions must accept numpy arrays."""
        if g_dgdr is None:
            def g_dgdr(r: ArrayLike) -> tuple[FloatOrArray, FloatOrArray]:
                return g(r), dgdr(r)
        return cls(KernelTag.CUSTOM, zeta, g, dgdr, g_dgdr, order, exponent)

    @property
    def name(self) -> str:
        return self.tag.value

    @property
    def zeta0(self) -> float:
        return float(self.zeta(0.0))

    @property
    def self_coefficient(self) -> float:
        """Limit of g(r)/r^3 as r -> 0, scaled by 1/(4*pi).

        The singular kernel has no finite limit; its self term is dropped.
        """
        if self.tag is KernelTag.SINGULAR:
            return 0.0
        return self.zeta0 / 3.0


kernel_singular = Kernel(KernelTag.SINGULAR, zeta_sing, g_sing, dgdr_sing, g_dgdr_sing, 1, 1)
kernel_gaussian = Kernel(KernelTag.GAUSSIAN, zeta_gaus, g_gaus, dgdr_gaus, g_dgdr_gaus, -1, 1)
kernel_gaussianerf = Kernel(KernelTag.GAUSSIAN_ERF, zeta_gauserf, g_gauserf, dgdr_gauserf, g_dgdr_gauserf, 5, 1)
kernel_winckelmans = Kernel(KernelTag.WINCKELMANS, zeta_wnklmns, g_wnklmns, dgdr_wnklmns, g_dgdr_wnklmns, 3, 1)
kernel_default = kernel_gaussianerf

STANDARD_KERNELS: dict[KernelTag, Kernel] = {
    KernelTag.SINGULAR: kernel_singular,
    KernelTag.GAUSSIAN: kernel_gaussian,
    KernelTag.GAUSSIAN_ERF: kernel_gaussianerf,
    KernelTag.WINCKELMANS: kernel_winckelmans,
}


def kernel_from_name(name: str | KernelTag) -> Kernel:
    """Resolve a standard kernel from its tag or tag value (e.g. ``"gaussianerf"``)."""
    try:
        tag = KernelTag(name)
    except ValueError:
        raise ValueError(f"Unknown kernel: {name!r}") from None
    if tag not in STANDARD_KERNELS:
        raise ValueError(f"{tag.value!r} is not a standard kernel.")
    return STANDARD_KERNELS[tag]
