from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FormulationTag(str, Enum):
    CLASSIC = "classic"
    CVPM = "cVPM"
    RVPM = "rVPM"
    TUBE_CONTINUITY = "tube_continuity"
    TUBE_MOMENTUM = "tube_momentum"
    SPHERE_MOMENTUM = "sphere_momentum"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class Formulation:
    """Governing-equation variant.

    The classic VPM advances X and Gamma only. The reformulated VPM adds the
    term -3*Z*Gamma to the strength equation and evolves the core size with
    d(sigma)/dt = -sigma*Z, where

        Z = [ (f+g)/(1+3f) * S.Gamma + f/(1+3f) * E.Gamma ] / |Gamma|^2

    with S the resolved stretching and E the SFS strength rate.
    """
    tag: FormulationTag
    f: float = 0.0
    g: float = 0.0
    classic: bool = False

    @classmethod
    def reformulated(cls, f: float, g: float) -> Formulation:
        return cls(FormulationTag.CUSTOM, float(f), float(g))

    @property
    def name(self) -> str:
        return self.tag.value

    @property
    def stretch_factor(self) -> float:
        return (self.f + self.g) / (1.0 + 3.0 * self.f)

    @property
    def sfs_factor(self) -> float:
        return self.f / (1.0 + 3.0 * self.f)


formulation_classic = Formulation(FormulationTag.CLASSIC, classic=True)
formulation_cVPM = Formulation(FormulationTag.CVPM, 0.0, 0.0)
formulation_rVPM = Formulation(FormulationTag.RVPM, 0.0, 1.0 / 5.0)
formulation_tube_continuity = Formulation(FormulationTag.TUBE_CONTINUITY, 1.0 / 2.0, 0.0)
formulation_tube_momentum = Formulation(FormulationTag.TUBE_MOMENTUM, 1.0 / 4.0, 1.0 / 4.0)
formulation_sphere_momentum = Formulation(FormulationTag.SPHERE_MOMENTUM, 0.0, 1.0 / 5.0 + 1e-8)
formulation_default = formulation_rVPM

STANDARD_FORMULATIONS: dict[FormulationTag, Formulation] = {
    fm.tag: fm
    for fm in (
        formulation_classic,
        formulation_cVPM,
        formulation_rVPM,
        formulation_tube_continuity,
        formulation_tube_momentum,
        formulation_sphere_momentum,
    )
}


def formulation_from_name(name: str | FormulationTag) -> Formulation:
    try:
        tag = FormulationTag(name)
    except ValueError:
        raise ValueError(f"Unknown formulation: {name!r}") from None
    if tag not in STANDARD_FORMULATIONS:
        raise ValueError(f"{tag.value!r} is not a standard formulation; use Formulation.reformulated(f, g).")
    return STANDARD_FORMULATIONS[tag]
