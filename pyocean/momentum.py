from typing import Optional

import numpy as np

from . import operators
from .domain import Grid, Location
from .constants import OMEGA


class FPlane:
    """Constant Coriolis parameter

    Args:
        f: Coriolis parameter (s-1)
        latitude: latitude (degrees North) used to compute ``f`` if not provided
        rotation_rate: rotation rate of the Earth (s-1)
    """

    def __init__(
        self,
        f: Optional[float] = None,
        latitude: Optional[float] = None,
        rotation_rate: float = OMEGA,
    ):
        if f is None:
            if latitude is None:
                raise Exception("FPlane requires either f or latitude")
            f = 2.0 * rotation_rate * np.sin(np.pi * latitude / 180.0)
        self.f0 = f

    def f(self, i, j, k, grid: Grid, location: Location):
        return self.f0

    def x_tendency(self, i, j, k, grid: Grid, u, v):
        """Coriolis acceleration of x-velocity at x-faces"""
        fv = operators.interpolation_operator(Location.CFC, Location.FCC)(
            i, j, k, grid, v
        )
        return self.f(i, j, k, grid, Location.FCC) * fv

    def y_tendency(self, i, j, k, grid: Grid, u, v):
        """Coriolis acceleration of y-velocity at y-faces"""
        fu = operators.interpolation_operator(Location.FCC, Location.CFC)(
            i, j, k, grid, u
        )
        return -self.f(i, j, k, grid, Location.CFC) * fu

    def __repr__(self) -> str:
        return "FPlane(f=%s)" % self.f0


class BetaPlane(FPlane):
    """Coriolis parameter varying linearly with y: ``f = f0 + beta * y``"""

    def __init__(self, f0: float, beta: float):
        super().__init__(f=f0)
        self.beta = beta

    def f(self, i, j, k, grid: Grid, location: Location):
        y = (grid.yf if location.faces[1] else grid.yc)[j + grid.halo]
        return self.f0 + self.beta * y

    def __repr__(self) -> str:
        return "BetaPlane(f0=%s, beta=%s)" % (self.f0, self.beta)
