from typing import Mapping, Tuple

import numpy as np

from . import core
from .constants import GRAVITY

# Buoyancy models provide the names of the tracers they need and the buoyancy
# (m s-2) at layer centers. Users can substitute other equations of state by
# implementing the same two members.


class BuoyancyTracer:
    """Buoyancy is itself a tracer, named ``b``"""

    tracers: Tuple[str, ...] = ("b",)

    def buoyancy(self, tracers: Mapping[str, core.Field]) -> np.ndarray:
        """Buoyancy at layer centers, including halos"""
        return tracers["b"].all_values

    def __repr__(self) -> str:
        return "BuoyancyTracer()"


class SeawaterBuoyancy:
    """Buoyancy from temperature ``T`` and salinity ``S`` with a linear equation of
    state: ``b = g (alpha T - beta S)``

    Args:
        thermal_expansion: thermal expansion coefficient alpha (K-1)
        haline_contraction: haline contraction coefficient beta (psu-1)
        gravitational_acceleration: gravitational acceleration g (m s-2)
    """

    tracers: Tuple[str, ...] = ("T", "S")

    def __init__(
        self,
        thermal_expansion: float = 1.67e-4,
        haline_contraction: float = 7.80e-4,
        gravitational_acceleration: float = GRAVITY,
    ):
        self.thermal_expansion = thermal_expansion
        self.haline_contraction = haline_contraction
        self.gravitational_acceleration = gravitational_acceleration

    def buoyancy(self, tracers: Mapping[str, core.Field]) -> np.ndarray:
        return self.gravitational_acceleration * (
            self.thermal_expansion * tracers["T"].all_values
            - self.haline_contraction * tracers["S"].all_values
        )

    def __repr__(self) -> str:
        return "SeawaterBuoyancy(thermal_expansion=%s, haline_contraction=%s)" % (
            self.thermal_expansion,
            self.haline_contraction,
        )


def hydrostatic_pressure_anomaly(
    buoyancy, tracers: Mapping[str, core.Field], out: core.Field
) -> core.Field:
    """Kinematic hydrostatic pressure anomaly (m2 s-2) at layer centers, the
    solution of ``dp/dz = b`` with ``p = 0`` at the surface. Layers are integrated
    from the surface down, using the buoyancy at interfaces interpolated from the
    adjacent layers. Halos are computed along with the interior.
    """
    grid = out.grid
    b = np.where(grid.active(), buoyancy.buoyancy(tracers), 0.0)
    dzc = grid.dzc[:, np.newaxis, np.newaxis]
    dzf = grid.dzf[1:-1, np.newaxis, np.newaxis]
    p = out.all_values
    p[-1, ...] = -0.5 * b[-1, ...] * dzc[-1]
    if grid.nz > 1:
        # integral over the distance between consecutive layer centers
        increments = 0.5 * (b[1:, ...] + b[:-1, ...]) * dzf
        p[:-1, ...] = p[-1, ...] - np.cumsum(increments[::-1, ...], axis=0)[::-1, ...]
    return out
