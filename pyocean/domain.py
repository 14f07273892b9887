from typing import MutableMapping, Optional, Sequence, Tuple, Union
import logging
import enum

import numpy as np
from numpy.typing import ArrayLike

from . import core
from . import parallel
from .constants import GRAVITY


class Topology(enum.Enum):
    PERIODIC = 1  #: the axis wraps around
    BOUNDED = 2  #: walls at both ends of the axis
    FLAT = 3  #: the axis has a single point and no variation
    CONNECTED = 4  #: halo provided by a neighboring region (per side only)


class Location(enum.IntEnum):
    """Staggered position within a grid cell. C: center, F: face,
    in the order x, y, z."""

    CCC = 0
    FCC = 1
    CFC = 2
    FFC = 3
    CCF = 4
    FCF = 5
    CFF = 6
    FFF = 7

    @property
    def faces(self) -> Tuple[bool, bool, bool]:
        """Whether the location lies on a face in x, y and z"""
        return bool(self & 1), bool(self & 2), bool(self & 4)

    @staticmethod
    def from_faces(x: bool, y: bool, z: bool) -> "Location":
        return Location(int(x) | int(y) << 1 | int(z) << 2)


def _extend(values: np.ndarray, halo: int, topology: Topology) -> np.ndarray:
    """Pad a 1D array of cell widths with halo points"""
    if topology == Topology.PERIODIC:
        return np.pad(values, halo, mode="wrap")
    return np.pad(values, halo, mode="edge")


class Grid:
    """Rectilinear grid with halos and an optional grid-fitted bottom.

    Horizontal metrics are stored as 1D arrays that include halos:
    ``dxc`` (cell widths), ``dxf`` (distance between cell centers across x-faces),
    and likewise in y. Vertical metrics ``dzc`` (layer thickness) and ``dzf``
    (distance between layer centers across interfaces) have no halos.
    The x-face with index ``i`` is the western face of cell ``i``; the y-face
    with index ``j`` is the southern face of cell ``j``; interface ``k`` lies below
    layer ``k``.
    """

    def __init__(
        self,
        dx: ArrayLike,
        dy: ArrayLike,
        dz: ArrayLike,
        topology: Sequence[Topology] = (
            Topology.BOUNDED,
            Topology.BOUNDED,
            Topology.BOUNDED,
        ),
        bottom_depth: Optional[ArrayLike] = None,
        halo: int = 2,
        x0: float = 0.0,
        y0: float = 0.0,
        tiling: Optional[parallel.Tiling] = None,
        logger: Optional[logging.Logger] = None,
        connected: Optional[Sequence[Sequence[bool]]] = None,
    ):
        """Create a grid from cell widths.

        Args:
            dx: cell widths in x direction (m), one per cell
            dy: cell widths in y direction (m), one per cell
            dz: layer thicknesses (m), ordered from bottom to surface
            topology: topology of the x, y and z axes
            bottom_depth: depth of the bottom below the surface (m, positive) per
                column, with shape (ny, nx). Cells with their center below the
                bottom are inactive (immersed). Columns with depth 0 are land.
                Defaults to the full depth of the grid.
            halo: number of halo points in x and y
            x0: x coordinate of the western face of the first cell
            y0: y coordinate of the southern face of the first cell
            tiling: subdomain decomposition for running on several MPI ranks
            logger: logger to use for diagnostic messages
            connected: for each horizontal axis, whether the (low, high) side has
                its halo filled by a neighboring region
        """
        dx = np.atleast_1d(np.asarray(dx, dtype=float))
        dy = np.atleast_1d(np.asarray(dy, dtype=float))
        dz = np.atleast_1d(np.asarray(dz, dtype=float))
        nx, ny, nz = dx.size, dy.size, dz.size
        if nx <= 0:
            raise Exception("Number of x points is %i but must be > 0" % nx)
        if ny <= 0:
            raise Exception("Number of y points is %i but must be > 0" % ny)
        if nz <= 0:
            raise Exception("Number of z points is %i but must be > 0" % nz)
        for name, values in (("dx", dx), ("dy", dy), ("dz", dz)):
            if not (values > 0.0).all():
                raise Exception("%s must be strictly positive" % name)
        if halo < 1:
            raise Exception("Halo width is %i but must be >= 1" % halo)

        self.topology: Tuple[Topology, Topology, Topology] = tuple(topology)
        if len(self.topology) != 3 or Topology.CONNECTED in self.topology:
            raise Exception(
                "topology must contain PERIODIC, BOUNDED or FLAT for x, y and z"
            )
        for axis, n in zip("xyz", (nx, ny, nz)):
            if self.topology["xyz".index(axis)] == Topology.FLAT and n != 1:
                raise Exception(
                    "Flat %s axis must have 1 point, but has %i points" % (axis, n)
                )
        if self.topology[2] == Topology.PERIODIC:
            raise Exception("Vertical axis cannot be periodic")

        if logger is None:
            logger = parallel.get_logger()
        self.root_logger: logging.Logger = logger
        self.logger: logging.Logger = logger.getChild("domain")

        self.nx, self.ny, self.nz = nx, ny, nz
        self.halo = halo

        if tiling is not None and not tiling:
            tiling = None
        self.tiling = tiling
        if connected is None:
            connected = [[False, False], [False, False]]
            if tiling is not None:
                for axis in range(2):
                    for side in range(2):
                        connected[axis][side] = tiling.connected(axis, side)
        self.connected = tuple(tuple(bool(c) for c in sides) for sides in connected)

        #: collection of all fields defined on this grid
        self.fields: MutableMapping[str, core.Field] = {}

        self.dxc = _extend(dx, halo, self.topology[0])
        self.dyc = _extend(dy, halo, self.topology[1])
        self.xf = x0 + np.concatenate(([0.0], np.cumsum(self.dxc)))[:-1]
        self.xf -= self.xf[halo] - x0
        self.yf = y0 + np.concatenate(([0.0], np.cumsum(self.dyc)))[:-1]
        self.yf -= self.yf[halo] - y0
        self.xc = self.xf + 0.5 * self.dxc
        self.yc = self.yf + 0.5 * self.dyc
        self.dxf = np.diff(self.xc, prepend=self.xc[0] - self.dxc[0])
        self.dyf = np.diff(self.yc, prepend=self.yc[0] - self.dyc[0])

        self.dzc = dz
        self.zf = np.concatenate(([0.0], np.cumsum(dz))) - dz.sum()
        self.zc = 0.5 * (self.zf[:-1] + self.zf[1:])
        self.dzf = np.empty((nz + 1,))
        self.dzf[1:-1] = np.diff(self.zc)
        self.dzf[0], self.dzf[-1] = dz[0], dz[-1]
        self.depth = dz.sum()

        self.bottom_depth = self.array(fill=self.depth, name="bottom_depth", units="m")
        if bottom_depth is not None:
            self.bottom_depth.values[...] = bottom_depth
        self.bottom_depth.update_halos(land=0.0)
        self._update_masks()

        self.logger.info(
            "Grid size: %i x %i x %i (%i cells), topology %s"
            % (nx, ny, nz, nx * ny * nz, ", ".join(t.name for t in self.topology))
        )

    def _update_masks(self):
        depth = self.bottom_depth.all_values
        self._active_c = self.zc[:, np.newaxis, np.newaxis] > -depth
        self._masks = {}
        self.mask = self.array(
            fill=self._active_c.any(axis=0), dtype=int, name="mask", register=False
        )
        self.H = self.array(
            fill=(self._active_c * self.dzc[:, np.newaxis, np.newaxis]).sum(axis=0),
            name="H",
            units="m",
            long_name="water depth at rest",
            register=False,
        )

    def boundary(self, axis: int, side: int) -> Topology:
        """Topology at one side (0: low, 1: high) of an axis. This is CONNECTED
        if a neighboring region or subdomain provides the halo there."""
        if axis < 2 and self.connected[axis][side]:
            return Topology.CONNECTED
        return self.topology[axis]

    @property
    def partitioned(self) -> bool:
        """Whether any horizontal halo is provided by a neighbor"""
        return any(any(sides) for sides in self.connected)

    @property
    def size(self) -> Tuple[int, int, int]:
        return self.nx, self.ny, self.nz

    def active(self, location: Location = Location.CCC) -> np.ndarray:
        """Boolean mask with active (non-immersed) points at the given location,
        with shape ``(nz or nz + 1, ny + 2 * halo, nx + 2 * halo)``.
        Faces are active if the cells on both sides are active. The bottom interface
        is never active; the surface interface is active above active cells.
        """
        mask = self._masks.get(location)
        if mask is None:
            fx, fy, fz = location.faces
            mask = self._active_c
            if fx:
                west = np.zeros_like(mask)
                west[..., 1:] = mask[..., :-1]
                mask = mask & west
            if fy:
                south = np.zeros_like(mask)
                south[..., 1:, :] = mask[..., :-1, :]
                mask = mask & south
            if fz:
                w = np.zeros((self.nz + 1,) + mask.shape[1:], dtype=bool)
                w[1:-1] = mask[1:] & mask[:-1]
                w[-1] = mask[-1]
                mask = w
            mask.flags.writeable = False
            self._masks[location] = mask
        return mask

    def column_mask(self, location: Location = Location.CCC) -> np.ndarray:
        """Boolean mask for water columns at the horizontal position of
        ``location``, including halos"""
        return self.active(location).any(axis=0)

    def _interior(self, values: np.ndarray) -> np.ndarray:
        h = self.halo
        return values[..., h:-h, h:-h]

    @property
    def active_cells_map(self) -> np.ndarray:
        """Active interior cells as (n, 3) integer array with columns i, j, k"""
        k, j, i = np.nonzero(self._interior(self._active_c))
        return np.stack((i, j, k), axis=1)

    @property
    def active_columns_map(self) -> np.ndarray:
        """Interior water columns as (n, 2) integer array with columns i, j"""
        j, i = np.nonzero(self._interior(self.mask.all_values) != 0)
        return np.stack((i, j), axis=1)

    def coordinates(self, location: Location) -> Tuple[np.ndarray, ...]:
        """Interior coordinates x, y, z of the given location, as 1D arrays"""
        fx, fy, fz = location.faces
        h = self.halo
        x = (self.xf if fx else self.xc)[h:-h]
        y = (self.yf if fy else self.yc)[h:-h]
        z = self.zf if fz else self.zc
        return x, y, z

    def node(self, i, j, k, location: Location) -> Tuple[np.ndarray, ...]:
        """Coordinates of the given location at (possibly array-valued) indices"""
        fx, fy, fz = location.faces
        h = self.halo
        x = (self.xf if fx else self.xc)[i + h]
        y = (self.yf if fy else self.yc)[j + h]
        z = (self.zf if fz else self.zc)[k]
        return x, y, z

    def array(self, *args, **kwargs) -> core.Field:
        return core.Field.create(self, *args, **kwargs)

    def cfl_check(
        self, z: float = 0.0, gravity: float = GRAVITY, log: bool = True
    ) -> float:
        """Determine maximum time step for depth-integrated equations

        Args:
            z: surface elevation (m) at rest
            gravity: gravitational acceleration (m s-2)
            log: whether to write the maximum time step and its location to the log
        """
        h = self.halo
        mask = self.mask.values > 0
        dx = np.broadcast_to(self.dxc[np.newaxis, h:-h], mask.shape)
        dy = np.broadcast_to(self.dyc[h:-h, np.newaxis], mask.shape)
        if self.topology[0] == Topology.FLAT:
            dx = np.full(mask.shape, np.inf)
        if self.topology[1] == Topology.FLAT:
            dy = np.full(mask.shape, np.inf)
        H = self.H.values
        denom = 2.0 * gravity * (H + z) * (1.0 / dx ** 2 + 1.0 / dy ** 2)
        wet = mask & (denom > 0.0)
        maxdts = np.full(mask.shape, np.inf)
        maxdts[wet] = 1.0 / np.sqrt(denom[wet])
        maxdt = maxdts.min()
        if self.tiling is not None:
            maxdt = float(parallel.Min(self.tiling, maxdt)())
        if log:
            j, i = np.unravel_index(np.argmin(maxdts), maxdts.shape)
            self.logger.info(
                "Maximum dt = %.3f s (i=%i, j=%i, bathymetric depth=%.3f m)"
                % (maxdt, i, j, H[j, i])
            )
        return maxdt

    def __repr__(self) -> str:
        return "Grid(%i x %i x %i, %s)" % (
            self.nx,
            self.ny,
            self.nz,
            ", ".join(t.name for t in self.topology),
        )


def create_cartesian(
    x: ArrayLike,
    y: ArrayLike,
    z: Union[ArrayLike, float],
    nz: Optional[int] = None,
    interfaces: bool = True,
    **kwargs
) -> Grid:
    """Create a rectilinear grid from 1D arrays with x and y coordinates.

    Args:
        x: 1d array with x coordinates
            (at cell interfaces if `interfaces=True`, else at cell centers)
        y: 1d array with y coordinates
            (at cell interfaces if `interfaces=True`, else at cell centers)
        z: 1d array with depths of the layer interfaces from bottom to surface
            (m, negative below the surface, last value 0), or the total depth
            to be divided into ``nz`` equal layers
        nz: number of layers if ``z`` is a total depth
        interfaces: x and y are given at cell interfaces, rather than cell centers.
        **kwargs: additional arguments passed to :class:`Grid`
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    assert x.ndim == 1, "x coordinate must be one-dimensional"
    assert y.ndim == 1, "y coordinate must be one-dimensional"
    if not interfaces:
        x = centers_to_interfaces(x)
        y = centers_to_interfaces(y)
    if np.ndim(z) == 0:
        if nz is None:
            raise Exception("nz must be provided if z is a total depth")
        z = np.linspace(-float(z), 0.0, nz + 1)
    dz = np.diff(np.asarray(z, dtype=float))
    return Grid(np.diff(x), np.diff(y), dz, x0=x[0], y0=y[0], **kwargs)


def create_uniform(
    nx: int,
    ny: int,
    nz: int,
    extent: Tuple[float, float, float],
    **kwargs
) -> Grid:
    """Create a grid with uniform spacing covering ``extent`` (Lx, Ly, Lz)"""
    lx, ly, lz = extent
    return create_cartesian(
        np.linspace(0.0, lx, nx + 1),
        np.linspace(0.0, ly, ny + 1),
        lz,
        nz=nz,
        **kwargs
    )


def centers_to_interfaces(c: ArrayLike) -> np.ndarray:
    c = np.asarray(c, dtype=float)
    if c.size == 1:
        raise Exception("At least two center coordinates are needed")
    interfaces = np.empty((c.size + 1,))
    interfaces[1:-1] = 0.5 * (c[:-1] + c[1:])
    interfaces[0] = c[0] - 0.5 * (c[1] - c[0])
    interfaces[-1] = c[-1] + 0.5 * (c[-1] - c[-2])
    return interfaces
