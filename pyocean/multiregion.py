"""Horizontal partitioning of a grid into regions that live in one process.

A :class:`MultiRegionGrid` holds an explicit list of region grids. Fields on it
are lists of region fields whose halos at region boundaries are filled from the
neighboring region. Operations that act on a single grid are applied per region
with :func:`apply_regionally`; global quantities are obtained by gathering or
reducing over the regions.
"""

from typing import Any, Callable, List, Optional, Sequence, Tuple, Union
import logging

import numpy as np
from numpy.typing import ArrayLike

from . import core
from . import parallel
from .constants import GRAVITY
from .domain import Grid, Location, Topology


class XPartition:
    """Partition into ``n`` regions along x"""

    axis = 0

    def __init__(self, n: int):
        if n < 1:
            raise Exception("Number of regions is %i but must be >= 1" % n)
        self.n = n

    def bounds(self, size: int) -> List[Tuple[int, int]]:
        """Start and stop index of each region along the partitioned axis"""
        if self.n > size:
            raise Exception(
                "Cannot divide %i points over %i regions" % (size, self.n)
            )
        edges = [size * r // self.n for r in range(self.n + 1)]
        return list(zip(edges[:-1], edges[1:]))

    def __repr__(self) -> str:
        return "%s(%i)" % (self.__class__.__name__, self.n)


class YPartition(XPartition):
    """Partition into ``n`` regions along y"""

    axis = 1


class MultiRegionGrid:
    """Grid divided into regions along one horizontal axis

    Args:
        dx: cell widths in x direction (m) of the full grid
        dy: cell widths in y direction (m) of the full grid
        dz: layer thicknesses (m), ordered from bottom to surface
        partition: :class:`XPartition` or :class:`YPartition`
        topology: topology of the x, y and z axes of the full grid
        bottom_depth: depth of the bottom (m, positive) of the full grid
        halo: number of halo points in x and y
        logger: logger to use for diagnostic messages
    """

    def __init__(
        self,
        dx: ArrayLike,
        dy: ArrayLike,
        dz: ArrayLike,
        partition: XPartition,
        topology: Sequence[Topology] = (
            Topology.BOUNDED,
            Topology.BOUNDED,
            Topology.BOUNDED,
        ),
        bottom_depth: Optional[ArrayLike] = None,
        halo: int = 2,
        x0: float = 0.0,
        y0: float = 0.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.root_logger = logger or parallel.get_logger()
        self.logger = self.root_logger.getChild("multiregion")
        full = Grid(
            dx,
            dy,
            dz,
            topology=topology,
            bottom_depth=bottom_depth,
            halo=halo,
            x0=x0,
            y0=y0,
            logger=self.root_logger,
        )
        self.partition = partition
        self.topology = full.topology
        self.nx, self.ny, self.nz = full.nx, full.ny, full.nz
        self.halo = halo
        if self.topology[partition.axis] == Topology.FLAT:
            raise Exception("A flat axis cannot be partitioned")

        axis = partition.axis
        periodic = self.topology[axis] == Topology.PERIODIC
        self.bounds = partition.bounds(full.nx if axis == 0 else full.ny)
        self.regions: List[Grid] = []
        for r, (start, stop) in enumerate(self.bounds):
            connected = [[False, False], [False, False]]
            connected[axis] = [r > 0 or periodic, r < partition.n - 1 or periodic]
            outer = slice(start, stop + 2 * halo)
            inner = slice(start + halo, stop + halo)
            region = Grid(
                full.dxc[inner] if axis == 0 else full.dxc[halo:-halo],
                full.dyc[inner] if axis == 1 else full.dyc[halo:-halo],
                full.dzc,
                topology=self.topology,
                halo=halo,
                logger=self.root_logger,
                connected=connected,
            )
            # Metrics and bathymetry of the halos come from the full grid
            if axis == 0:
                for name in ("dxc", "dxf", "xf", "xc"):
                    getattr(region, name)[...] = getattr(full, name)[outer]
                region.bottom_depth.all_values[...] = full.bottom_depth.all_values[
                    :, outer
                ]
            else:
                for name in ("dyc", "dyf", "yf", "yc"):
                    getattr(region, name)[...] = getattr(full, name)[outer]
                region.bottom_depth.all_values[...] = full.bottom_depth.all_values[
                    outer, :
                ]
            region._update_masks()
            self.regions.append(region)
        self.logger.info(
            "Divided %i x %i grid into %i regions along %s: %s"
            % (
                self.nx,
                self.ny,
                partition.n,
                "xy"[axis],
                ", ".join("%i-%i" % b for b in self.bounds),
            )
        )

    def __len__(self) -> int:
        return len(self.regions)

    def __iter__(self):
        return iter(self.regions)

    def __getitem__(self, index: int) -> Grid:
        return self.regions[index]

    def array(self, fill: Optional[ArrayLike] = None, **kwargs) -> "MultiRegionField":
        """Create a field on all regions. ``fill`` may be a scalar or an array
        covering the interior of the full grid."""
        kwargs.setdefault("register", False)
        fields = MultiRegionField(self, [region.array(**kwargs) for region in self])
        if fill is not None:
            fields.scatter(np.broadcast_to(fill, fields.global_shape))
        return fields

    def minimum_timestep(self, gravity: float = GRAVITY) -> float:
        """Maximum stable barotropic time step: the minimum over all regions of
        :meth:`~pyocean.domain.Grid.cfl_check`"""
        maxdts = apply_regionally(Grid.cfl_check, self, gravity=gravity, log=False)
        maxdt = min(maxdts)
        self.logger.info(
            "Maximum dt = %.3f s (region %i)" % (maxdt, int(np.argmin(maxdts)))
        )
        return maxdt

    def __repr__(self) -> str:
        return "MultiRegionGrid(%i x %i x %i, %r)" % (
            self.nx,
            self.ny,
            self.nz,
            self.partition,
        )


class MultiRegionField:
    """Field on a :class:`MultiRegionGrid`, stored as one field per region"""

    def __init__(self, grid: MultiRegionGrid, fields: Sequence[core.Field]):
        self.grid = grid
        self.regions: List[core.Field] = list(fields)

    def __len__(self) -> int:
        return len(self.regions)

    def __iter__(self):
        return iter(self.regions)

    def __getitem__(self, index: int) -> core.Field:
        return self.regions[index]

    @property
    def location(self) -> Location:
        return self.regions[0].location

    @property
    def global_shape(self) -> Tuple[int, ...]:
        shape = self.regions[0].shape[:-2] + (self.grid.ny, self.grid.nx)
        return shape

    def update_halos(self):
        """Fill the halos of all regions: sides facing another region are copied
        from that region's interior, the remaining sides follow the topology"""
        for field in self:
            field.update_halos()
        h = self.grid.halo
        axis = self.grid.partition.axis
        dim = -1 - axis
        n = len(self.regions)
        for r, field in enumerate(self):
            connected = field.grid.connected[axis]
            for side in (0, 1):
                if not connected[side]:
                    continue
                neighbor = self.regions[(r - 1) % n if side == 0 else (r + 1) % n]
                target = [slice(None)] * field.all_values.ndim
                source = [slice(None)] * field.all_values.ndim
                if side == 0:
                    target[dim] = slice(None, h)
                    source[dim] = slice(-2 * h, -h)
                else:
                    target[dim] = slice(-h, None)
                    source[dim] = slice(h, 2 * h)
                field.all_values[tuple(target)] = neighbor.all_values[tuple(source)]

    def gather(self) -> np.ndarray:
        """Interior of the full grid as a single array"""
        return np.concatenate(
            [field.values for field in self], axis=-1 - self.grid.partition.axis
        )

    def scatter(self, values: ArrayLike):
        """Distribute an array covering the interior of the full grid over the
        regions and fill the halos"""
        values = np.asarray(values)
        dim = values.ndim - 1 - self.grid.partition.axis
        for field, (start, stop) in zip(self, self.grid.bounds):
            index = [slice(None)] * values.ndim
            index[dim] = slice(start, stop)
            field.values[...] = values[tuple(index)]
        self.update_halos()

    def __repr__(self) -> str:
        return "MultiRegionField(%s, %i regions)" % (self.regions[0].name, len(self))


def _select(value, r: int):
    if isinstance(value, (MultiRegionGrid, MultiRegionField)):
        return value[r]
    return value


def apply_regionally(
    func: Callable, *args: Any, **kwargs: Any
) -> List[Union[Any, core.Field]]:
    """Call ``func`` once per region, with every :class:`MultiRegionGrid` and
    :class:`MultiRegionField` argument replaced by its component for that region.
    Returns the list of results."""
    grids = [
        value
        for value in args + tuple(kwargs.values())
        if isinstance(value, (MultiRegionGrid, MultiRegionField))
    ]
    if not grids:
        raise Exception("apply_regionally requires at least one multi-region argument")
    n = len(grids[0])
    if any(len(value) != n for value in grids):
        raise Exception("All multi-region arguments must have the same number of regions")
    results = []
    for r in range(n):
        region_args = [_select(value, r) for value in args]
        region_kwargs = {key: _select(value, r) for key, value in kwargs.items()}
        results.append(func(*region_args, **region_kwargs))
    return results
