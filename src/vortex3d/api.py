from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal
from collections.abc import Callable

import logging

from .errors import ConfigurationError
from .formulations import Formulation, formulation_default, formulation_from_name
from .integration import IntegrationScheme
from .kernels import Kernel, kernel_default, kernel_from_name
from .particles import Freestream, ParticleField, nofreestream
from .relaxation import Relaxation, relaxation_default, relaxation_from_name
from .sfs import NoSFS, SFSModel, sfs_from_name
from .uj import ChunkConfig, DirectUJ, NumbaConfig, TreecodeConfig, TreecodeUJ, UJEvaluator
from .viscous import KERNEL_COMPATIBILITY, Inviscid, ViscousScheme

logger = logging.getLogger(__name__)

_INTEGRATIONS = {"euler": IntegrationScheme.EULER, "rk3": IntegrationScheme.RK3}


# ----------------------
# Configuration objects
# ----------------------

@dataclass(slots=True)
class SolverConfig:
    """Solver options for a particle field.

    Names are resolved to the standard variants once, here. Validates the
    kernel/viscous pairing and the evaluator options before any field exists.
    """
    formulation: str | Formulation = formulation_default
    kernel: str | Kernel = kernel_default
    viscous: ViscousScheme = field(default_factory=Inviscid)
    relaxation: str | Relaxation = relaxation_default
    rlxf: float | None = None
    sfs: str | SFSModel = field(default_factory=NoSFS)
    uj_backend: Literal["direct", "treecode"] = "direct"
    treecode: TreecodeConfig | None = None
    numba: NumbaConfig = field(default_factory=NumbaConfig)
    chunking: ChunkConfig = field(default_factory=ChunkConfig)
    integration: Literal["euler", "rk3"] = "rk3"
    Uinf: Freestream = nofreestream
    relax: bool = True
    transposed: bool = True

    def __post_init__(self) -> None:
        try:
            if isinstance(self.formulation, str):
                self.formulation = formulation_from_name(self.formulation)
            if isinstance(self.kernel, str):
                self.kernel = kernel_from_name(self.kernel)
            if isinstance(self.relaxation, str):
                self.relaxation = relaxation_from_name(self.relaxation, self.rlxf)
            elif self.rlxf is not None:
                self.relaxation = relaxation_from_name(self.relaxation.tag, self.rlxf)
            if isinstance(self.sfs, str):
                self.sfs = sfs_from_name(self.sfs)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        if self.uj_backend not in {"direct", "treecode"}:
            raise ConfigurationError(f"Unknown uj_backend: {self.uj_backend}")
        if self.uj_backend == "treecode" and self.treecode is None:
            self.treecode = TreecodeConfig()
        if self.integration not in _INTEGRATIONS:
            raise ConfigurationError(f"Unknown integration: {self.integration}")

        compatible = KERNEL_COMPATIBILITY[self.viscous.tag]
        if self.kernel.tag not in compatible:
            raise ConfigurationError(
                f"Kernel {self.kernel.name} is not compatible with viscous scheme {self.viscous.tag.value}."
            )

    def make_evaluator(self) -> UJEvaluator:
        if self.uj_backend == "treecode":
            return TreecodeUJ(self.treecode or TreecodeConfig())
        return DirectUJ(numba=self.numba, chunking=self.chunking)


@dataclass(slots=True)
class SimulationConfig:
    """Fixed-step run controls.

    nsteps_relax: relax every nsteps_relax steps (counted from 1); <= 0 never.
    """
    dt: float = 1e-3
    nsteps_relax: int = -1

    def __post_init__(self) -> None:
        if not self.dt > 0.0:
            raise ValueError("dt must be positive.")

    def is_relaxation_step(self, i: int) -> bool:
        return self.nsteps_relax > 0 and i % self.nsteps_relax == 0


# ----------------------
# Factory
# ----------------------

def build_field(maxparticles: int, config: SolverConfig | None = None) -> ParticleField:
    """Construct an empty ParticleField with the configured solver."""
    config = SolverConfig() if config is None else config
    return ParticleField(
        maxparticles,
        formulation=config.formulation,  # type: ignore[arg-type]
        kernel=config.kernel,  # type: ignore[arg-type]
        viscous=config.viscous,
        relaxation=config.relaxation,  # type: ignore[arg-type]
        sfs=config.sfs,  # type: ignore[arg-type]
        uj=config.make_evaluator(),
        integration=_INTEGRATIONS[config.integration],
        Uinf=config.Uinf,
        relax=config.relax,
        transposed=config.transposed,
    )


def run(
    pfield: ParticleField,
    nsteps: int,
    sim: SimulationConfig | None = None,
    halt: Callable[[ParticleField], bool] | None = None,
    static_particles: Callable[[ParticleField, float], None] | None = None,
) -> ParticleField:
    """Advance pfield by nsteps fixed steps, relaxing on the configured cadence.

    static_particles(pfield, t), if given, is called before every step to
    append static particles (e.g. a body or a wake source) at the tail of the
    field. Whatever it appended is removed again right after the step.
    halt, if given, is checked after every step; a true result stops the run.
    """
    sim = SimulationConfig() if sim is None else sim
    if nsteps < 0:
        raise ValueError("nsteps must be non-negative.")
    for i in range(1, nsteps + 1):
        n0 = pfield.np
        if static_particles is not None:
            static_particles(pfield, pfield.t)
        pfield.step(sim.dt, relax=sim.is_relaxation_step(i))
        # Injected particles sit at the tail; removing the last slot moves nothing
        for slot in range(pfield.np - 1, n0 - 1, -1):
            pfield.remove(slot)
        if halt is not None and halt(pfield):
            logger.info("Run halted by predicate at nt=%d.", pfield.nt)
            break
    logger.info("Run finished: t=%.6g nt=%d np=%d", pfield.t, pfield.nt, pfield.np)
    return pfield
