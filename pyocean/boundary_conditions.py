from typing import Any, Callable, Optional, Union

import numpy as np

from . import core
from .domain import Grid, Location

TOP = "top"
BOTTOM = "bottom"


class FluxBoundaryCondition:
    """Prescribed flux through the surface or the bottom, positive upward
    (quantity units times m s-1).

    Args:
        condition: number, 2D :class:`~pyocean.core.Field`, or function
            ``condition(x, y, t)`` (``condition(x, y, t, parameters)`` if
            ``parameters`` is provided) evaluated at the horizontal coordinates of
            the bounded field's location
        parameters: optional parameters passed to ``condition``
    """

    def __init__(
        self,
        condition: Union[float, core.Field, Callable],
        parameters: Optional[Any] = None,
    ):
        self.condition = condition
        self.parameters = parameters

    def value(self, grid: Grid, clock, location: Location) -> np.ndarray:
        """Flux over the interior columns, with shape (ny, nx)"""
        if isinstance(self.condition, core.Field):
            return self.condition.values
        elif callable(self.condition):
            x, y, _ = grid.coordinates(location)
            extra = () if self.parameters is None else (self.parameters,)
            return np.broadcast_to(
                self.condition(x[np.newaxis, :], y[:, np.newaxis], clock.time, *extra),
                (grid.ny, grid.nx),
            )
        return np.full((grid.ny, grid.nx), float(self.condition))

    def __repr__(self) -> str:
        return "FluxBoundaryCondition(%r)" % (self.condition,)


class FieldBoundaryConditions:
    """Boundary conditions at the surface and bottom of a field. Sides without a
    condition have zero flux."""

    def __init__(
        self,
        top: Optional[FluxBoundaryCondition] = None,
        bottom: Optional[FluxBoundaryCondition] = None,
    ):
        self.top = top
        self.bottom = bottom

    def has_flux(self, side: str) -> bool:
        """Whether a user-specified flux is applied at ``side`` ("top" or "bottom")"""
        if side not in (TOP, BOTTOM):
            raise ValueError("side must be %r or %r, not %r" % (TOP, BOTTOM, side))
        return isinstance(getattr(self, side), FluxBoundaryCondition)

    def apply(self, G: core.Field, grid: Grid, clock, location: Location):
        """Add boundary fluxes to tendency ``G``: the surface flux is removed from
        the top layer, the bottom flux is added to the deepest active layer"""
        h = grid.halo
        active = grid.active(location)[..., h:-h, h:-h]
        wet = active.any(axis=0)
        if self.has_flux(TOP):
            flux = self.top.value(grid, clock, location)
            G.values[-1, ...] -= np.where(active[-1, ...], flux / grid.dzc[-1], 0.0)
        if self.has_flux(BOTTOM):
            flux = self.bottom.value(grid, clock, location)
            kbottom = active.argmax(axis=0)
            jj, ii = np.nonzero(wet)
            kk = kbottom[jj, ii]
            G.values[kk, jj, ii] += flux[jj, ii] / grid.dzc[kk]

    def __repr__(self) -> str:
        return "FieldBoundaryConditions(top=%r, bottom=%r)" % (self.top, self.bottom)
