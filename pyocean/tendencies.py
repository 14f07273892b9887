from typing import Mapping, Optional, TYPE_CHECKING
import logging

from . import core
from . import kernels
from . import operators
from . import advection
from .domain import Grid, Location
from .forcing import regularize_forcing
from .boundary_conditions import FieldBoundaryConditions

if TYPE_CHECKING:
    from .model import HydrostaticFreeSurfaceModel


class TendencyAssembly:
    """Right-hand sides of the momentum and tracer equations.

    Momentum tendencies exclude the gradient of a split-explicit free surface;
    the free surface derives its barotropic forcing from them.

    Args:
        grid: grid of the model
        momentum_advection: advection scheme for momentum (``None`` to disable)
        tracer_advection: advection scheme for tracers (``None`` to disable)
        coriolis: Coriolis parameterization (``FPlane``, ``BetaPlane`` or ``None``)
        closure: turbulence closure providing viscous and diffusive terms
        buoyancy: buoyancy model; its pressure gradient is added to the momentum
            tendencies
        forcing: mapping from field name to user forcing
        boundary_conditions: mapping from field name to
            :class:`~pyocean.boundary_conditions.FieldBoundaryConditions`
        use_active_cells_map: compute 3D tendencies at active cells only, rather
            than over the full interior
        logger: parent logger
    """

    def __init__(
        self,
        grid: Grid,
        momentum_advection=advection.AdvectionScheme.DEFAULT,
        tracer_advection=advection.AdvectionScheme.DEFAULT,
        coriolis=None,
        closure=None,
        buoyancy=None,
        forcing: Optional[Mapping] = None,
        boundary_conditions: Optional[Mapping[str, FieldBoundaryConditions]] = None,
        use_active_cells_map: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.grid = grid
        self.logger = (logger or grid.root_logger).getChild("tendencies")
        self.momentum_advection = momentum_advection
        self.tracer_advection = tracer_advection
        self.coriolis = coriolis
        self.closure = closure
        self.buoyancy = buoyancy
        self.forcing = {
            name: regularize_forcing(value) for name, value in (forcing or {}).items()
        }
        self.boundary_conditions = dict(boundary_conditions or {})
        self.use_active_cells_map = use_active_cells_map

        if use_active_cells_map:
            cells = kernels.describe_domain_from_map(grid.active_cells_map, "xyz")
            self.u_space = self.v_space = self.tracer_space = cells
            self.logger.info("Using map with %i active cells" % cells.size)
        else:
            self.u_space = kernels.describe_domain(
                grid, "xyz", Location.FCC, exclude_periphery=True
            )
            self.v_space = kernels.describe_domain(
                grid, "xyz", Location.CFC, exclude_periphery=True
            )
            self.tracer_space = kernels.describe_domain(grid, "xyz", Location.CCC)
        self.eta_space = kernels.describe_domain(grid, "xy", Location.CCC)

    def _forcing(self, name, i, j, k, model, location, field):
        forcing = self.forcing.get(name)
        if forcing is None:
            return 0.0
        return forcing(i, j, k, self.grid, model.clock, model.fields, location, field)

    def _u_tendency(self, i, j, k, model: "HydrostaticFreeSurfaceModel", G: core.Field):
        grid = self.grid
        u, v, w = model.u, model.v, model.w
        value = -advection.div_uu(i, j, k, grid, self.momentum_advection, u, v, w)
        if self.coriolis is not None:
            value = value + self.coriolis.x_tendency(i, j, k, grid, u, v)
        if self.closure is not None:
            value = value + self.closure.x_tendency(i, j, k, grid, u)
        if self.buoyancy is not None:
            value = value - operators.partial_x_f(i, j, k, grid, model.pressure)
        if model.explicit_free_surface:
            value = value + model.free_surface.x_gradient(i, j, k, grid)
        value = value + self._forcing("u", i, j, k, model, Location.FCC, u)
        G.all_values[G.index(i, j, k)] = value * operators.active(
            i, j, k, grid, Location.FCC
        )

    def _v_tendency(self, i, j, k, model: "HydrostaticFreeSurfaceModel", G: core.Field):
        grid = self.grid
        u, v, w = model.u, model.v, model.w
        value = -advection.div_uv(i, j, k, grid, self.momentum_advection, u, v, w)
        if self.coriolis is not None:
            value = value + self.coriolis.y_tendency(i, j, k, grid, u, v)
        if self.closure is not None:
            value = value + self.closure.y_tendency(i, j, k, grid, v)
        if self.buoyancy is not None:
            value = value - operators.partial_y_f(i, j, k, grid, model.pressure)
        if model.explicit_free_surface:
            value = value + model.free_surface.y_gradient(i, j, k, grid)
        value = value + self._forcing("v", i, j, k, model, Location.CFC, v)
        G.all_values[G.index(i, j, k)] = value * operators.active(
            i, j, k, grid, Location.CFC
        )

    def _tracer_tendency(
        self, i, j, k, model: "HydrostaticFreeSurfaceModel", name: str, G: core.Field
    ):
        grid = self.grid
        c = model.tracers[name]
        value = -advection.div_uc(
            i, j, k, grid, self.tracer_advection, model.u, model.v, model.w, c
        )
        if self.closure is not None:
            value = value + self.closure.tracer_tendency(i, j, k, grid, name, c)
        value = value + self._forcing(name, i, j, k, model, Location.CCC, c)
        G.all_values[G.index(i, j, k)] = value * operators.active(
            i, j, k, grid, Location.CCC
        )

    def _eta_tendency(self, i, j, model: "HydrostaticFreeSurfaceModel", G: core.Field):
        G.all_values[G.index(i, j)] = model.free_surface.tendency(
            i, j, self.grid
        ) * operators.active(i, j, None, self.grid, Location.CCC)

    def compute(self, model: "HydrostaticFreeSurfaceModel", G: Mapping[str, core.Field]):
        """Fill tendencies ``G`` (mapping from field name to field) from the
        current model state. Halos of the state must be up to date."""
        kernels.launch(self.u_space, self._u_tendency, model, G["u"], logger=self.logger)
        kernels.launch(self.v_space, self._v_tendency, model, G["v"], logger=self.logger)
        for name in model.tracers:
            kernels.launch(
                self.tracer_space,
                self._tracer_tendency,
                model,
                name,
                G[name],
                logger=self.logger,
            )
        if model.explicit_free_surface:
            kernels.launch(self.eta_space, self._eta_tendency, model, G["eta"])

        for name, bcs in self.boundary_conditions.items():
            field = model.fields[name]
            bcs.apply(G[name], self.grid, model.clock, field.location)
