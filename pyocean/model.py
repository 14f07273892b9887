from typing import Callable, Mapping, MutableMapping, Optional, Sequence, Union
import logging

import numpy as np
import xarray

from . import core
from . import kernels
from . import operators
from . import advection
from . import timesteppers
from .constants import CENTERS, INTERFACES
from .domain import Grid, Location, Topology
from .exceptions import ConfigurationError, UnsupportedCombinationError
from .free_surface import (
    SplitExplicitFreeSurface,
    ExplicitFreeSurface,
    step_free_surface,
)
from .density import hydrostatic_pressure_anomaly
from .tendencies import TendencyAssembly
from .boundary_conditions import FieldBoundaryConditions

DEFAULT = "default"


def _validate(
    grid,
    free_surface,
    momentum_advection,
    tracer_advection,
    buoyancy,
    tracers: Sequence[str],
    timestepper,
):
    from .multiregion import MultiRegionGrid

    split_explicit = isinstance(free_surface, SplitExplicitFreeSurface)
    if isinstance(grid, MultiRegionGrid):
        if split_explicit:
            raise UnsupportedCombinationError(
                "SplitExplicitFreeSurface is not supported on multi-region grids."
            )
        raise UnsupportedCombinationError(
            "Models on multi-region grids are not supported; construct a model per"
            " region grid, or use an MPI tiling with ExplicitFreeSurface."
        )
    distributed = grid.tiling is not None or grid.partitioned
    if distributed:
        if split_explicit:
            raise UnsupportedCombinationError(
                "SplitExplicitFreeSurface is not supported on distributed grids."
                " Use ExplicitFreeSurface instead."
            )
        if free_surface is not None and not isinstance(free_surface, ExplicitFreeSurface):
            raise UnsupportedCombinationError(
                "%s is not supported on distributed grids." % (free_surface,)
            )
    if grid.topology[2] != Topology.BOUNDED:
        raise ConfigurationError(
            "%s requires a BOUNDED vertical axis, but the grid's vertical topology"
            " is %s." % (free_surface, grid.topology[2].name)
        )
    if split_explicit and not isinstance(timestepper, timesteppers.QuasiAdamsBashforth2):
        raise UnsupportedCombinationError(
            "SplitExplicitFreeSurface requires the QuasiAdamsBashforth2 time stepper,"
            " not %s." % (timestepper,)
        )
    for kind, scheme in (("momentum", momentum_advection), ("tracer", tracer_advection)):
        required = advection.required_halo(scheme)
        if required > grid.halo:
            raise ConfigurationError(
                "%s advection scheme %s requires a halo of %i, but the grid halo is %i."
                % (kind, scheme.name, required, grid.halo)
            )
    if buoyancy is not None:
        missing = [name for name in buoyancy.tracers if name not in tracers]
        if missing:
            raise ConfigurationError(
                "%s requires tracers %s, which are missing from tracers %s."
                % (buoyancy, ", ".join(missing), tuple(tracers))
            )


class HydrostaticFreeSurfaceModel:
    """Hydrostatic Boussinesq model with a free surface

    Args:
        grid: grid to run on
        free_surface: :class:`~pyocean.free_surface.SplitExplicitFreeSurface`,
            :class:`~pyocean.free_surface.ExplicitFreeSurface` or ``None``. By
            default, a split-explicit free surface with a barotropic CFL number of
            0.7 is used on single grids, and an explicit free surface on distributed
            grids.
        momentum_advection: advection scheme for momentum (``None`` to disable)
        tracer_advection: advection scheme for tracers (``None`` to disable)
        coriolis: Coriolis parameterization
        closure: turbulence closure
        buoyancy: buoyancy model (``None`` for no buoyancy)
        tracers: names of the tracers
        forcing: mapping from field name to user forcing
        boundary_conditions: mapping from field name to
            :class:`~pyocean.boundary_conditions.FieldBoundaryConditions`
        timestepper: time stepper, or its name
        timestep: outer time step (s). If provided, the free surface is configured
            (and validated) at construction; otherwise this happens when a
            :class:`~pyocean.simulation.Simulation` is created for the model, or
            at the first call to :meth:`time_step`.
        use_active_cells_map: compute 3D tendencies over active cells only
        logger: parent logger
    """

    def __init__(
        self,
        grid: Grid,
        free_surface=DEFAULT,
        momentum_advection=advection.AdvectionScheme.DEFAULT,
        tracer_advection=advection.AdvectionScheme.DEFAULT,
        coriolis=None,
        closure=None,
        buoyancy=None,
        tracers: Sequence[str] = (),
        forcing: Optional[Mapping] = None,
        boundary_conditions: Optional[Mapping[str, FieldBoundaryConditions]] = None,
        timestepper="QuasiAdamsBashforth2",
        timestep: Optional[float] = None,
        use_active_cells_map: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        tracers = tuple(tracers)
        forcing = {} if forcing is None else forcing
        boundary_conditions = {} if boundary_conditions is None else boundary_conditions
        timestepper = timesteppers.create(timestepper)
        if isinstance(free_surface, str) and free_surface == DEFAULT:
            distributed = getattr(grid, "tiling", None) is not None
            free_surface = (
                ExplicitFreeSurface() if distributed else SplitExplicitFreeSurface(cfl=0.7)
            )
        _validate(
            grid,
            free_surface,
            momentum_advection,
            tracer_advection,
            buoyancy,
            tracers,
            timestepper,
        )
        names = ("u", "v", "w") + tracers
        for name in tuple(forcing) + tuple(boundary_conditions):
            if name not in names or name == "w":
                raise ConfigurationError(
                    "Forcing or boundary condition specified for %r, which is not a"
                    " prognostic field. Valid names: %s"
                    % (name, ", ".join(n for n in names if n != "w"))
                )

        self.grid = grid
        self.root_logger = logger or grid.root_logger
        self.logger = self.root_logger.getChild("model")
        self.timestepper = timestepper
        self.clock = timesteppers.Clock()
        self.buoyancy = buoyancy
        self.free_surface = free_surface
        if free_surface is not None:
            free_surface.initialize(grid, logger=self.root_logger, timestep=timestep)

        self.u = grid.array(
            z=CENTERS,
            location=Location.FCC,
            name="u",
            units="m s-1",
            long_name="velocity in x-direction",
        )
        self.v = grid.array(
            z=CENTERS,
            location=Location.CFC,
            name="v",
            units="m s-1",
            long_name="velocity in y-direction",
        )
        self.w = grid.array(
            z=INTERFACES,
            location=Location.CCF,
            name="w",
            units="m s-1",
            long_name="vertical velocity",
        )
        self.tracers: MutableMapping[str, core.Field] = {}
        for name in tracers:
            self.tracers[name] = grid.array(z=CENTERS, location=Location.CCC, name=name)
        self.pressure: Optional[core.Field] = None
        if buoyancy is not None:
            self.pressure = grid.array(
                z=CENTERS,
                location=Location.CCC,
                name="pHY",
                units="m2 s-2",
                long_name="hydrostatic pressure anomaly",
            )
        self._divergence = grid.array(z=CENTERS, register=False)

        self.prognostic: MutableMapping[str, core.Field] = {"u": self.u, "v": self.v}
        self.prognostic.update(self.tracers)
        h = grid.halo
        self.masks = {
            name: grid.active(field.location)[..., h:-h, h:-h]
            for name, field in self.prognostic.items()
        }
        if self.explicit_free_surface:
            self.prognostic["eta"] = free_surface.eta
            self.masks["eta"] = grid.mask.values != 0

        self.G = {}
        self.G_previous = {}
        for name, field in self.prognostic.items():
            for G in (self.G, self.G_previous):
                G[name] = grid.array(
                    z=field.z, location=field.location, name="G" + name, register=False
                )
        self._has_previous = False

        self.tendencies = TendencyAssembly(
            grid,
            momentum_advection=momentum_advection,
            tracer_advection=tracer_advection,
            coriolis=coriolis,
            closure=closure,
            buoyancy=buoyancy,
            forcing=forcing,
            boundary_conditions=boundary_conditions,
            use_active_cells_map=use_active_cells_map,
            logger=self.root_logger,
        )
        self.logger.info(
            "Free surface: %s, time stepper: %s, tracers: %s"
            % (free_surface, timestepper, ", ".join(tracers) or "none")
        )
        self.update_state()

    @property
    def explicit_free_surface(self) -> bool:
        return isinstance(self.free_surface, ExplicitFreeSurface)

    @property
    def split_explicit_free_surface(self) -> bool:
        return isinstance(self.free_surface, SplitExplicitFreeSurface)

    @property
    def eta(self) -> Optional[core.Field]:
        return None if self.free_surface is None else self.free_surface.eta

    @property
    def fields(self) -> Mapping[str, core.Field]:
        """Model fields by name: velocities, tracers, surface elevation and
        hydrostatic pressure"""
        fields = {"u": self.u, "v": self.v, "w": self.w}
        fields.update(self.tracers)
        if self.free_surface is not None:
            fields["eta"] = self.free_surface.eta
        if self.pressure is not None:
            fields["pHY"] = self.pressure
        return fields

    def __getitem__(self, key: str) -> core.Field:
        return self.fields[key]

    def set(self, **kwargs: Union[float, np.ndarray, Callable, core.Field]):
        """Set prognostic fields. Values can be numbers, arrays with the shape of the
        interior (optionally including halos), fields, or functions ``f(x, y, z)``
        (``f(x, y)`` for the surface elevation ``eta``) of the coordinates of the
        field's location. Values at inactive points are set to zero.
        """
        fields = self.fields
        for name, value in kwargs.items():
            if name not in fields or name in ("w", "pHY"):
                raise Exception(
                    "Cannot set %r. Valid names: %s"
                    % (name, ", ".join(n for n in fields if n not in ("w", "pHY")))
                )
            field = fields[name]
            if isinstance(value, core.Field):
                value = value.all_values
            elif callable(value):
                x, y, z = self.grid.coordinates(field.location)
                if field.ndim == 3:
                    value = value(
                        x[np.newaxis, np.newaxis, :],
                        y[np.newaxis, :, np.newaxis],
                        z[:, np.newaxis, np.newaxis],
                    )
                else:
                    value = value(x[np.newaxis, :], y[:, np.newaxis])
                value = np.broadcast_to(value, field.shape)
            field.fill(value)
            mask = self.grid.active(field.location)
            if field.ndim == 2:
                mask = mask.any(axis=0)
            field.all_values[~mask] = 0.0
            field.update_halos()
        if self.free_surface is not None and ("u" in kwargs or "v" in kwargs):
            self.free_surface.set_transports(self.u, self.v)
        self._has_previous = False
        self.update_state()

    def update_state(self):
        """Fill halos and compute diagnostic fields from the prognostic state:
        vertical velocity from continuity, transports for the explicit free surface,
        and hydrostatic pressure"""
        for field in self.prognostic.values():
            field.update_halos()

        kernels.launch(
            kernels.describe_domain(self.grid, "xyz"),
            _divergence_kernel,
            self.grid,
            self._divergence,
            self.u,
            self.v,
        )
        dz = self.grid.dzc[:, np.newaxis, np.newaxis]
        self.w.values[0, ...] = 0.0
        self.w.values[1:, ...] = -np.cumsum(dz * self._divergence.values, axis=0)
        self.w.update_halos()

        if self.explicit_free_surface:
            self.free_surface.set_transports(self.u, self.v)
        if self.pressure is not None:
            hydrostatic_pressure_anomaly(self.buoyancy, self.tracers, self.pressure)

    def time_step(self, timestep: float):
        """Advance the model state by one time step (s)"""
        if isinstance(self.timestepper, timesteppers.RungeKutta3):
            self._rk3_step(timestep)
        else:
            self._ab2_step(timestep)

    def _ab2_step(self, timestep: float):
        first = not self._has_previous
        G_previous = None if first else self.G_previous
        self.tendencies.compute(self, self.G)
        self.timestepper.step(self.prognostic, self.G, G_previous, timestep, self.masks)
        if self.split_explicit_free_surface:
            chi = self.timestepper.effective_chi(first)
            if step_free_surface(self.free_surface, self.G, G_previous, timestep, chi):
                self.free_surface.correct(self.u, self.v)
        self._store_tendencies()
        self.clock.tick(timestep)
        self.update_state()

    def _rk3_step(self, timestep: float):
        start = self.clock.time
        for stage in range(self.timestepper.stages):
            self.tendencies.compute(self, self.G)
            self.timestepper.step_stage(
                stage, self.prognostic, self.G, self.G_previous, timestep, self.masks
            )
            self._store_tendencies()
            last = stage == self.timestepper.stages - 1
            if last:
                self.clock.time = start
                self.clock.tick(timestep)
            else:
                self.clock.tick(
                    self.timestepper.stage_fraction(stage) * timestep, stage=True
                )
            self.update_state()

    def _store_tendencies(self):
        for name, G in self.G.items():
            self.G_previous[name].all_values[...] = G.all_values
        self._has_previous = True

    def snapshot(self) -> Mapping[str, np.ndarray]:
        """Copies of the interior of all model fields"""
        state = {name: field.values.copy() for name, field in self.fields.items()}
        if self.free_surface is not None:
            state["U"] = self.free_surface.U.values.copy()
            state["V"] = self.free_surface.V.values.copy()
        return state

    def as_xarray(self) -> xarray.Dataset:
        """Model fields as :class:`xarray.Dataset`"""
        ds = xarray.Dataset(
            {name: field.as_xarray() for name, field in self.fields.items()}
        )
        ds.attrs["time"] = self.clock.time
        ds.attrs["iteration"] = self.clock.iteration
        return ds

    def __repr__(self) -> str:
        return "HydrostaticFreeSurfaceModel(grid=%r, free_surface=%s, tracers=%s)" % (
            self.grid,
            self.free_surface,
            tuple(self.tracers),
        )


def _divergence_kernel(i, j, k, grid: Grid, out: core.Field, u, v):
    out.all_values[out.index(i, j, k)] = operators.div_xy_c(i, j, k, grid, u, v)
