"""
Tension Estimator
=================
Simplified surface-tension estimate from droplet width and height:

    gamma = rho * g * de * h

with de and h in metres. This is a linear approximation, not a
Young-Laplace fit.
"""

from dataclasses import dataclass
from typing import Optional

from config import PipelineConfig

RESULT_FORMAT = "Surface Tension: {:.1f} mN/m"


@dataclass(frozen=True)
class TensionEstimate:
    tension_n_per_m: float
    density_kg_m3: float

    @property
    def tension_mn_per_m(self) -> float:
        return self.tension_n_per_m * 1000.0

    @property
    def text(self) -> str:
        return format_tension(self.tension_mn_per_m)


def format_tension(tension_mn_per_m: float) -> str:
    return RESULT_FORMAT.format(tension_mn_per_m)


def resolve_density(density_kg_m3: Optional[float], default: float = 1000.0) -> float:
    """The given density if positive, otherwise the default (water)."""
    if density_kg_m3 is not None and density_kg_m3 > 0:
        return density_kg_m3
    return default


class TensionEstimator:

    def __init__(self, config: PipelineConfig):
        self.config = config

    def estimate(self, width_mm: float, height_mm: float,
                 density_kg_m3: Optional[float] = None) -> TensionEstimate:
        physics = self.config.physics
        rho = resolve_density(density_kg_m3, physics.default_density_kg_m3)

        de = width_mm / 1000.0
        h = height_mm / 1000.0
        tension = rho * physics.gravity_m_s2 * de * h

        return TensionEstimate(tension_n_per_m=tension, density_kg_m3=rho)
