from __future__ import annotations

from typing import Any
from collections.abc import Callable, Iterator, Sequence

import logging
import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import CapacityError, ConfigurationError
from .formulations import Formulation, formulation_default
from .integration import IntegrationScheme, step as _step
from .kernels import Kernel, kernel_default
from .relaxation import Relaxation, relaxation_default
from .sfs import NoSFS, SFSModel
from .uj import DirectUJ, UJEvaluator, evaluate_field
from .viscous import KERNEL_COMPATIBILITY, Inviscid, ViscousScheme

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]
Freestream = Callable[[float], ArrayLike]


def nofreestream(t: float) -> FloatArray:
    return np.zeros(3, dtype=np.float64)


def _as_vector3(v: ArrayLike, name: str) -> FloatArray:
    arr = np.asarray(v, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"{name} must be a 3-vector.")
    if not np.isfinite(arr).all():
        raise ValueError(f"{name} contains non-finite values.")
    return arr


# ---------------------------
# Particle view
# ---------------------------
class Particle:
    """View onto one slot of a ParticleField.

    Array attributes are writable views into the field's storage. A view
    refers to a slot, not to a particle: it is only valid until the next
    removal, which may move another particle into the slot.
    """
    __slots__ = ("_field", "_slot")

    def __init__(self, pfield: ParticleField, slot: int) -> None:
        self._field = pfield
        self._slot = slot

    @property
    def slot(self) -> int: return self._slot

    @property
    def X(self) -> FloatArray: return self._field._X[self._slot]

    @property
    def Gamma(self) -> FloatArray: return self._field._Gamma[self._slot]

    @property
    def sigma(self) -> float: return float(self._field._sigma[self._slot])

    @property
    def vol(self) -> float: return float(self._field._vol[self._slot])

    @property
    def circulation(self) -> float: return float(self._field._circulation[self._slot])

    @property
    def index(self) -> int: return int(self._field._index[self._slot])

    @property
    def static(self) -> bool: return bool(self._field._static[self._slot])

    @property
    def U(self) -> FloatArray: return self._field._U[self._slot]

    @property
    def J(self) -> FloatArray: return self._field._J[self._slot]

    @property
    def sfs(self) -> FloatArray: return self._field._sfs[self._slot]

    @property
    def C(self) -> float: return float(self._field._C[self._slot])

    def __repr__(self) -> str:
        return (f"Particle(slot={self._slot}, index={self.index}, X={self.X.tolist()}, "
                f"Gamma={self.Gamma.tolist()}, sigma={self.sigma:.4g})")


# ---------------------------
# Particle field
# ---------------------------
class ParticleField:
    """Fixed-capacity particle arena plus the solver settings that evolve it.

    Storage is one preallocated array per attribute; the active particles are
    the first ``np`` slots. Removal swaps the last active particle into the
    freed slot, so slot numbers are only stable until the next removal while
    ``index`` values are persistent.

    Static particles induce velocity like any other particle but are never
    advanced, diffused or relaxed. Callers that inject static particles for
    one step are expected to append them at the tail and remove them by
    position afterwards (`api.run` does so through its static_particles
    hook); the field does not verify this.
    """

    def __init__(
        self,
        maxparticles: int,
        *,
        formulation: Formulation = formulation_default,
        kernel: Kernel = kernel_default,
        viscous: ViscousScheme | None = None,
        relaxation: Relaxation = relaxation_default,
        sfs: SFSModel | None = None,
        uj: UJEvaluator | None = None,
        integration: IntegrationScheme | str = IntegrationScheme.RK3,
        Uinf: Freestream = nofreestream,
        relax: bool = True,
        transposed: bool = True,
        t: float = 0.0,
        nt: int = 0,
    ) -> None:
        if maxparticles < 0:
            raise ValueError("maxparticles must be non-negative.")
        cap = int(maxparticles)
        self._cap = cap
        self._np = 0
        self._next_index = 0

        self._X: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._Gamma: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._sigma: FloatArray = np.zeros(cap, dtype=np.float64)
        self._vol: FloatArray = np.zeros(cap, dtype=np.float64)
        self._circulation: FloatArray = np.zeros(cap, dtype=np.float64)
        self._index: NDArray[np.int64] = np.zeros(cap, dtype=np.int64)
        self._static: NDArray[np.bool_] = np.zeros(cap, dtype=bool)
        # Derived, recomputed every evaluation
        self._U: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._J: FloatArray = np.zeros((cap, 3, 3), dtype=np.float64)
        self._sfs: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._C: FloatArray = np.zeros(cap, dtype=np.float64)
        # Dynamic SFS: coefficient committed at the start of the step (NaN: none yet)
        self._C_old: FloatArray = np.full(cap, np.nan, dtype=np.float64)
        self._C_valid: NDArray[np.bool_] = np.zeros(cap, dtype=bool)
        # Low-storage RK register: position, strength, core size, viscous (Gamma, sigma^2)
        self._M_X: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._M_Gamma: FloatArray = np.zeros((cap, 3), dtype=np.float64)
        self._M_sigma: FloatArray = np.zeros(cap, dtype=np.float64)
        self._M_viscous: FloatArray = np.zeros((cap, 4), dtype=np.float64)

        self._arrays = (
            self._X, self._Gamma, self._sigma, self._vol, self._circulation, self._index,
            self._static, self._U, self._J, self._sfs, self._C, self._C_old, self._C_valid,
            self._M_X, self._M_Gamma, self._M_sigma, self._M_viscous,
        )

        self.formulation = formulation
        self.kernel = kernel
        self.viscous = viscous if viscous is not None else Inviscid()
        self.relaxation = relaxation
        self.sfs_model: SFSModel = sfs if sfs is not None else NoSFS()
        self.uj: UJEvaluator = uj if uj is not None else DirectUJ()
        self.integration = IntegrationScheme(integration)
        self.Uinf = Uinf
        self.relax = bool(relax)
        self.transposed = bool(transposed)
        self.t = float(t)
        self.nt = int(nt)
        # nt at which the dynamic SFS model last committed its coefficients
        self.sfs_nt: int | None = None

        self.check_configuration()
        logger.info(
            "ParticleField(maxparticles=%d, formulation=%s, kernel=%s, viscous=%s, relaxation=%s, "
            "sfs=%s, uj=%s, integration=%s)",
            cap, formulation.name, kernel.name, self.viscous.tag.value, relaxation.name,
            self.sfs_model.tag.value, self.uj.tag.value, self.integration.value,
        )

    # -------- configuration --------
    def check_configuration(self) -> None:
        """Raise ConfigurationError when the kernel cannot run with the viscous scheme."""
        compatible = KERNEL_COMPATIBILITY[self.viscous.tag]
        if self.kernel.tag not in compatible:
            names = sorted(k.value for k in compatible)
            logger.error("Kernel %s is incompatible with %s.", self.kernel.name, self.viscous.tag.value)
            raise ConfigurationError(
                f"Kernel {self.kernel.name} is not compatible with viscous scheme "
                f"{self.viscous.tag.value}; compatible kernels are {names}"
            )
        self._configuration_checked = True

    @property
    def kernel(self) -> Kernel: return self._kernel

    @kernel.setter
    def kernel(self, kernel: Kernel) -> None:
        self._kernel = kernel
        self._configuration_checked = False

    @property
    def viscous(self) -> ViscousScheme: return self._viscous

    @viscous.setter
    def viscous(self, scheme: ViscousScheme) -> None:
        self._viscous = scheme
        self._configuration_checked = False

    # -------- properties --------
    @property
    def np(self) -> int: return self._np

    @property
    def maxparticles(self) -> int: return self._cap

    @property
    def X(self) -> FloatArray: return self._X[:self._np]

    @property
    def Gamma(self) -> FloatArray: return self._Gamma[:self._np]

    @property
    def sigma(self) -> FloatArray: return self._sigma[:self._np]

    @property
    def vol(self) -> FloatArray: return self._vol[:self._np]

    @property
    def circulation(self) -> FloatArray: return self._circulation[:self._np]

    @property
    def index(self) -> NDArray[np.int64]: return self._index[:self._np]

    @property
    def static(self) -> NDArray[np.bool_]: return self._static[:self._np]

    @property
    def U(self) -> FloatArray: return self._U[:self._np]

    @property
    def J(self) -> FloatArray: return self._J[:self._np]

    @property
    def sfs(self) -> FloatArray: return self._sfs[:self._np]

    @property
    def C(self) -> FloatArray: return self._C[:self._np]

    @property
    def C_old(self) -> FloatArray: return self._C_old[:self._np]

    @property
    def C_valid(self) -> NDArray[np.bool_]: return self._C_valid[:self._np]

    @property
    def M_X(self) -> FloatArray: return self._M_X[:self._np]

    @property
    def M_Gamma(self) -> FloatArray: return self._M_Gamma[:self._np]

    @property
    def M_sigma(self) -> FloatArray: return self._M_sigma[:self._np]

    @property
    def M_viscous(self) -> FloatArray: return self._M_viscous[:self._np]

    @property
    def total_circulation(self) -> FloatArray:
        """Sum of vector strengths of the active particles."""
        return self.Gamma.sum(axis=0)

    # -------- container operations --------
    def count(self) -> int:
        return self._np

    def __len__(self) -> int:
        return self._np

    def add(
        self,
        X: ArrayLike,
        Gamma: ArrayLike,
        sigma: float,
        vol: float = 0.0,
        circulation: float = 1.0,
        static: bool = False,
    ) -> int:
        """Append a particle and return its slot."""
        if self._np >= self._cap:
            logger.error("Particle field is full (maxparticles=%d).", self._cap)
            raise CapacityError(f"Particle field is full (maxparticles={self._cap}).")
        x = _as_vector3(X, "X")
        g = _as_vector3(Gamma, "Gamma")
        if not (np.isfinite(sigma) and sigma > 0):
            raise ValueError("sigma must be positive.")
        if not (np.isfinite(vol) and vol >= 0):
            raise ValueError("vol must be non-negative.")

        i = self._np
        self._X[i] = x
        self._Gamma[i] = g
        self._sigma[i] = sigma
        self._vol[i] = vol
        self._circulation[i] = circulation
        self._index[i] = self._next_index
        self._static[i] = static
        self._U[i] = 0.0
        self._J[i] = 0.0
        self._sfs[i] = 0.0
        self._C[i] = 0.0
        self._C_old[i] = np.nan
        self._C_valid[i] = False
        self._M_X[i] = 0.0
        self._M_Gamma[i] = 0.0
        self._M_sigma[i] = 0.0
        self._M_viscous[i] = 0.0
        self._next_index += 1
        self._np += 1
        return i

    def add_particles(
        self,
        X: np.ndarray | Sequence[Sequence[float]],
        Gamma: np.ndarray | Sequence[Sequence[float]],
        sigma: float | ArrayLike,
        vol: float | ArrayLike = 0.0,
    ) -> list[int]:
        """Append several particles at once; all-or-nothing on capacity."""
        x = np.asarray(X, dtype=np.float64).reshape(-1, 3)
        g = np.asarray(Gamma, dtype=np.float64).reshape(-1, 3)
        if g.shape != x.shape:
            raise ValueError("Gamma must match X length.")
        n = x.shape[0]
        if self._np + n > self._cap:
            logger.error("Adding %d particles exceeds maxparticles=%d.", n, self._cap)
            raise CapacityError(f"Adding {n} particles exceeds maxparticles={self._cap}.")
        s = np.broadcast_to(np.asarray(sigma, dtype=np.float64), (n,))
        v = np.broadcast_to(np.asarray(vol, dtype=np.float64), (n,))
        return [self.add(x[k], g[k], float(s[k]), vol=float(v[k])) for k in range(n)]

    def remove(self, i: int) -> None:
        """Remove the particle at slot i by moving the last active particle into it."""
        if not (0 <= i < self._np):
            raise IndexError(f"Slot {i} is not active (np={self._np}).")
        last = self._np - 1
        if i != last:
            for arr in self._arrays:
                arr[i] = arr[last]
        self._np -= 1

    def get_particle(self, i: int) -> Particle:
        if not (0 <= i < self._np):
            raise IndexError(f"Slot {i} is not active (np={self._np}).")
        return Particle(self, i)

    def iterate(self) -> Iterator[Particle]:
        """Particles in slot order. Each call starts a new pass."""
        return (Particle(self, i) for i in range(self._np))

    def __iter__(self) -> Iterator[Particle]:
        return self.iterate()

    # -------- evolution --------
    def evaluate_uj(self) -> None:
        evaluate_field(self)

    def step(self, dt: float, relax: bool = False) -> None:
        _step(self, dt, relax=relax)

    def settings(self) -> dict[str, Any]:
        """Solver settings by name, for logging and inspection."""
        return {
            "formulation": self.formulation.name,
            "kernel": self.kernel.name,
            "viscous": self.viscous.tag.value,
            "relaxation": self.relaxation.name,
            "sfs": self.sfs_model.tag.value,
            "uj": self.uj.tag.value,
            "integration": self.integration.value,
            "relax": self.relax,
            "transposed": self.transposed,
        }

    def __repr__(self) -> str:
        return f"ParticleField(np={self._np}, maxparticles={self._cap}, t={self.t:.6g}, nt={self.nt})"
