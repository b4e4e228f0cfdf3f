from .errors import VPMError, ConfigurationError, CapacityError, EvaluationError
from .logging_config import setup_logging
from .kernels import (
    Kernel,
    KernelTag,
    kernel_singular,
    kernel_gaussian,
    kernel_gaussianerf,
    kernel_winckelmans,
    kernel_default,
    kernel_from_name,
)
from .formulations import (
    Formulation,
    FormulationTag,
    formulation_classic,
    formulation_cVPM,
    formulation_rVPM,
    formulation_default,
    formulation_from_name,
)
from .particles import Particle, ParticleField, nofreestream
from .uj import (
    UJStrategy,
    DirectUJ,
    TreecodeUJ,
    NumbaConfig,
    ChunkConfig,
    TreecodeConfig,
    evaluate_field,
    probe,
)
from .viscous import Inviscid, CoreSpreading, ParticleStrengthExchange, ViscousTag
from .sfs import NoSFS, ConstantSFS, DynamicSFS, DynamicProcedure, SFSTag, sfs_from_name
from .relaxation import (
    Relaxation,
    RelaxationTag,
    relaxation_none,
    relaxation_pedrizzetti,
    relaxation_correctedpedrizzetti,
    relaxation_default,
    relaxation_from_name,
)
from .integration import IntegrationScheme, step
from .monitors import total_circulation, enstrophy, diagnostics
from .api import SolverConfig, SimulationConfig, build_field, run

__all__ = [
    "VPMError", "ConfigurationError", "CapacityError", "EvaluationError",
    "setup_logging",
    "Kernel", "KernelTag", "kernel_singular", "kernel_gaussian", "kernel_gaussianerf",
    "kernel_winckelmans", "kernel_default", "kernel_from_name",
    "Formulation", "FormulationTag", "formulation_classic", "formulation_cVPM",
    "formulation_rVPM", "formulation_default", "formulation_from_name",
    "Particle", "ParticleField", "nofreestream",
    "UJStrategy", "DirectUJ", "TreecodeUJ", "NumbaConfig", "ChunkConfig", "TreecodeConfig",
    "evaluate_field", "probe",
    "Inviscid", "CoreSpreading", "ParticleStrengthExchange", "ViscousTag",
    "NoSFS", "ConstantSFS", "DynamicSFS", "DynamicProcedure", "SFSTag", "sfs_from_name",
    "Relaxation", "RelaxationTag", "relaxation_none", "relaxation_pedrizzetti",
    "relaxation_correctedpedrizzetti", "relaxation_default", "relaxation_from_name",
    "IntegrationScheme", "step",
    "total_circulation", "enstrophy", "diagnostics",
    "SolverConfig", "SimulationConfig", "build_field", "run",
]
