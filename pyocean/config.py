"""YAML configuration of a simulation

Example::

    grid:
      nx: 50
      ny: 50
      nz: 5
      extent: [500000., 500000., 100.]
      topology: [PERIODIC, BOUNDED, BOUNDED]
    free_surface:
      type: split_explicit
      substeps: 30
    model:
      momentum_advection: CENTERED_SECOND_ORDER
      coriolis:
        f: 1.e-4
    initial_conditions:
      eta:
        amplitude: 0.1
        width: 50000.
    time:
      start: 2000-01-01 00:00:00
      timestep: 600.
      stop_iteration: 144
"""

from typing import Any, Mapping, Iterator, Optional
import collections.abc
import datetime
import logging

import numpy as np
import yaml

from . import domain
from . import advection
from . import momentum
from . import mixing
from . import density
from .free_surface import SplitExplicitFreeSurface, ExplicitFreeSurface
from .model import HydrostaticFreeSurfaceModel
from .simulation import Simulation
from .exceptions import ConfigurationError


class Node(collections.abc.Mapping):
    """Read-only view of a configuration mapping. Nested values are accessed by
    path (``node["grid/nx"]``); retrieved keys are tracked so that unused settings
    can be reported with :meth:`check`."""

    def __init__(self, dictionary: Mapping[str, Any], prefix: str = ""):
        self.prefix = prefix
        if not isinstance(dictionary, Mapping):
            raise ConfigurationError(
                "%s should be a mapping, but is %r" % (prefix or "configuration", dictionary)
            )
        self.dictionary = {}
        for name, value in dictionary.items():
            if isinstance(value, Mapping):
                value = Node(value, prefix="%s%s/" % (self.prefix, name))
            self.dictionary[name] = value
        self.retrieved = set()

    def __getitem__(self, path: str):
        components = path.split("/", 1)
        value = self.dictionary[components[0]]
        self.retrieved.add(components[0])
        if len(components) > 1:
            if not isinstance(value, Node):
                raise KeyError(path)
            value = value[components[1]]
        return value

    def __iter__(self) -> Iterator:
        return self.dictionary.__iter__()

    def __len__(self) -> int:
        return self.dictionary.__len__()

    def check(self):
        """Paths of all settings that were never retrieved"""
        unused = []
        for name, value in self.dictionary.items():
            if name not in self.retrieved:
                unused.append("%s%s" % (self.prefix, name))
            elif isinstance(value, Node):
                unused += value.check()
        return unused


def configure(path: str) -> Node:
    with open(path) as f:
        settings = yaml.safe_load(f)
    if not isinstance(settings, Mapping):
        raise ConfigurationError(
            "%s should contain a mapping with configuration information,"
            " but instead contains %s" % (path, settings)
        )
    return Node(settings)


def _scheme(name: Optional[str]):
    if name is None or str(name).lower() == "none":
        return None
    try:
        return advection.AdvectionScheme[str(name).upper()]
    except KeyError:
        raise ConfigurationError(
            "Unknown advection scheme %r. Valid values: none, %s"
            % (name, ", ".join(s.name for s in advection.AdvectionScheme))
        )


def build_grid(config: Node, logger: logging.Logger) -> domain.Grid:
    topology = tuple(
        domain.Topology[str(t).upper()]
        for t in config.get("topology", ("BOUNDED", "BOUNDED", "BOUNDED"))
    )
    return domain.create_uniform(
        config["nx"],
        config["ny"],
        config["nz"],
        tuple(float(v) for v in config["extent"]),
        topology=topology,
        halo=config.get("halo", 2),
        logger=logger,
    )


def build_free_surface(config: Optional[Node]):
    if config is None:
        return SplitExplicitFreeSurface(cfl=0.7)
    kind = config.get("type", "split_explicit")
    if kind == "split_explicit":
        return SplitExplicitFreeSurface(
            substeps=config.get("substeps"), cfl=config.get("cfl")
        )
    elif kind == "explicit":
        return ExplicitFreeSurface()
    elif kind == "none":
        return None
    raise ConfigurationError(
        "Unknown free surface type %r. Valid values: split_explicit, explicit, none"
        % (kind,)
    )


def build_model(
    grid: domain.Grid,
    config: Node,
    free_surface,
    timestep: float,
    logger: logging.Logger,
) -> HydrostaticFreeSurfaceModel:
    coriolis = None
    if "coriolis" in config:
        settings = config["coriolis"]
        if "beta" in settings:
            coriolis = momentum.BetaPlane(settings["f0"], settings["beta"])
        else:
            coriolis = momentum.FPlane(
                f=settings.get("f"), latitude=settings.get("latitude")
            )
    closure = None
    if "closure" in config:
        closure = mixing.ScalarDiffusivity(**dict(config["closure"]))
    buoyancy = None
    kind = config.get("buoyancy", "none")
    if kind == "buoyancy_tracer":
        buoyancy = density.BuoyancyTracer()
    elif kind == "seawater":
        buoyancy = density.SeawaterBuoyancy()
    elif kind != "none":
        raise ConfigurationError(
            "Unknown buoyancy %r. Valid values: none, buoyancy_tracer, seawater"
            % (kind,)
        )
    return HydrostaticFreeSurfaceModel(
        grid,
        free_surface=free_surface,
        momentum_advection=_scheme(config.get("momentum_advection", "CENTERED_SECOND_ORDER")),
        tracer_advection=_scheme(config.get("tracer_advection", "CENTERED_SECOND_ORDER")),
        coriolis=coriolis,
        closure=closure,
        buoyancy=buoyancy,
        tracers=config.get("tracers", ()),
        timestepper=config.get("timestepper", "QuasiAdamsBashforth2"),
        timestep=timestep,
        use_active_cells_map=config.get("use_active_cells_map", False),
        logger=logger,
    )


def _initial_value(grid: domain.Grid, value):
    """Number, or mapping describing a Gaussian bump centered in the domain"""
    if not isinstance(value, Node):
        return float(value)
    amplitude = float(value["amplitude"])
    width = float(value["width"])
    h = grid.halo
    xmid = 0.5 * (grid.xf[h] + grid.xf[-h - 1] + grid.dxc[-h - 1])
    ymid = 0.5 * (grid.yf[h] + grid.yf[-h - 1] + grid.dyc[-h - 1])
    background = float(value.get("background", 0.0))

    def bump(x, y, z=None):
        r2 = (x - xmid) ** 2 + (y - ymid) ** 2
        return background + amplitude * np.exp(-r2 / width ** 2)

    return bump


def build_simulation(config: Node, logger: Optional[logging.Logger] = None) -> Simulation:
    """Build grid, model and simulation from a configuration"""
    logger = logger or logging.getLogger()
    timestep = float(config["time/timestep"])
    grid = build_grid(config["grid"], logger)
    free_surface = build_free_surface(config.get("free_surface"))
    model = build_model(
        grid, config.get("model", Node({}, prefix="model/")), free_surface, timestep, logger
    )
    initial = config.get("initial_conditions")
    if initial is not None:
        model.set(**{name: _initial_value(grid, initial[name]) for name in initial})
    stop_time = config.get("time/stop_time")
    stop_date = config.get("time/stop")
    if stop_date is not None:
        start = config.get("time/start", datetime.datetime(2000, 1, 1))
        stop_time = (stop_date - start).total_seconds()
    return Simulation(
        model,
        timestep,
        stop_iteration=config.get("time/stop_iteration"),
        stop_time=stop_time,
        logger=logger,
    )
