from typing import Any, Callable, Mapping, Optional, Union

import numpy as np

from . import core
from .domain import Grid, Location


class Forcing:
    """User-defined source term added to the tendency of a prognostic field.

    Args:
        func: for continuous forcing ``func(x, y, z, t)``, evaluated at the
            coordinates of the forced field's location; for discrete forcing
            ``func(i, j, k, grid, clock, fields)``, with ``fields`` the mapping of
            model fields. If ``parameters`` is provided, it is passed as additional
            last argument.
        parameters: optional parameters passed to ``func``
        discrete: whether ``func`` has the discrete signature
    """

    def __init__(
        self, func: Callable, parameters: Optional[Any] = None, discrete: bool = False
    ):
        self.func = func
        self.parameters = parameters
        self.discrete = discrete

    def __call__(
        self,
        i,
        j,
        k,
        grid: Grid,
        clock,
        fields: Mapping[str, core.Field],
        location: Location,
        field: core.Field,
    ):
        extra = () if self.parameters is None else (self.parameters,)
        if self.discrete:
            return self.func(i, j, k, grid, clock, fields, *extra)
        x, y, z = grid.node(i, j, k, location)
        return self.func(x, y, z, clock.time, *extra)

    def __repr__(self) -> str:
        return "Forcing(%s, discrete=%s)" % (
            getattr(self.func, "__name__", self.func),
            self.discrete,
        )


class Relaxation:
    """Relaxation towards a target: ``rate * mask * (target - value)``

    Args:
        rate: relaxation rate (s-1)
        mask: number or function ``mask(x, y, z)`` with the spatial relaxation weight
        target: number or function ``target(x, y, z, t)`` with the value to relax to
    """

    def __init__(
        self,
        rate: float,
        mask: Union[float, Callable] = 1.0,
        target: Union[float, Callable] = 0.0,
    ):
        self.rate = rate
        self.mask = mask
        self.target = target

    def __call__(
        self,
        i,
        j,
        k,
        grid: Grid,
        clock,
        fields: Mapping[str, core.Field],
        location: Location,
        field: core.Field,
    ):
        x, y, z = grid.node(i, j, k, location)
        mask = self.mask(x, y, z) if callable(self.mask) else self.mask
        target = self.target(x, y, z, clock.time) if callable(self.target) else self.target
        return self.rate * mask * (target - field.at(i, j, k))

    def __repr__(self) -> str:
        return "Relaxation(rate=%s)" % self.rate


def regularize_forcing(forcing) -> Optional[Callable]:
    """Turn a user-provided forcing (plain function, :class:`Forcing`,
    :class:`Relaxation` or ``None``) into a callable with the common signature"""
    if forcing is None or isinstance(forcing, (Forcing, Relaxation)):
        return forcing
    elif callable(forcing):
        return Forcing(forcing)
    elif np.ndim(forcing) == 0:
        return Forcing(lambda x, y, z, t: np.full(np.broadcast(x, y, z).shape, float(forcing)))
    raise Exception("Unsupported forcing %r" % (forcing,))
