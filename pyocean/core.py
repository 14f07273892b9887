import numbers
from typing import Optional, Union, Tuple, Literal, Mapping, Any, TYPE_CHECKING
import logging

import numpy as np
import numpy.lib.mixins
from numpy.typing import DTypeLike, ArrayLike
import xarray

from . import parallel
from .constants import CENTERS, INTERFACES

if TYPE_CHECKING:
    from . import domain


class Field(numpy.lib.mixins.NDArrayOperatorsMixin):
    """Halo-padded array at a staggered location of a :class:`~pyocean.domain.Grid`.

    Storage is ordered ``[k, j, i]`` (3D) or ``[j, i]`` (2D). :attr:`all_values`
    includes the horizontal halos; :attr:`values` is a view of the interior.
    """

    __slots__ = (
        "grid",
        "location",
        "all_values",
        "values",
        "attrs",
        "_name",
        "_dist",
        "_xarray",
    )

    def __init__(
        self,
        grid: "domain.Grid",
        data: np.ndarray,
        location=None,
        name: Optional[str] = None,
        units: Optional[str] = None,
        long_name: Optional[str] = None,
        attrs: Mapping[str, Any] = {},
    ):
        from .domain import Location

        self.grid = grid
        self.location = Location.CCC if location is None else Location(location)
        self._name = name
        self.attrs = dict(attrs)
        if units:
            self.attrs["units"] = units
        if long_name:
            self.attrs["long_name"] = long_name
        self._dist: Optional[parallel.DistributedArray] = None
        self._xarray: Optional[xarray.DataArray] = None
        self.all_values = data
        h = grid.halo
        self.values = data[..., h:-h, h:-h]

    def register(self):
        if self._name is not None:
            if self._name in self.grid.fields:
                raise Exception(
                    "A field with name '%s' has already been registered"
                    " with the field manager." % self._name
                )
            self.grid.fields[self._name] = self

    def __repr__(self) -> str:
        return "Field(%s, %s, shape=%s)" % (
            self._name,
            self.location.name,
            self.shape,
        )

    @staticmethod
    def create(
        grid: "domain.Grid",
        fill: Optional[ArrayLike] = None,
        z: Literal[None, True, False, CENTERS, INTERFACES] = None,
        dtype: DTypeLike = None,
        location=None,
        register: bool = True,
        **kwargs
    ) -> "Field":
        """Create a new :class:`Field`

        Args:
            grid: grid associated with the new field
            fill: value to set the new field to. This may include halos or cover the
                interior only; in the latter case halos are filled with
                :meth:`update_halos`.
            z: vertical dimension of the new field.
                ``False`` for a 2D field, ``CENTERS`` (or ``True``) for a field
                defined at the layer centers, ``INTERFACES`` for a field defined at
                the layer interfaces. ``None`` to detect from ``fill``.
            dtype: data type
            location: staggered location (:class:`~pyocean.domain.Location`)
            register: whether to add the field to the grid's field registry
            **kwargs: additional keyword arguments passed to :class:`Field`
        """
        if fill is not None:
            fill = np.asarray(fill)
            if z is None:
                if fill.ndim != 3:
                    z = False
                elif fill.shape[0] == grid.nz + 1:
                    z = INTERFACES
                else:
                    z = CENTERS
        if dtype is None:
            dtype = float if fill is None else np.result_type(fill, float)
        shape = [grid.ny + 2 * grid.halo, grid.nx + 2 * grid.halo]
        if z:
            shape.insert(0, grid.nz + 1 if z == INTERFACES else grid.nz)
        data = np.zeros(shape, dtype=dtype)
        field = Field(grid, data, location=location, **kwargs)
        if fill is not None:
            try:
                field.all_values[...] = fill
            except ValueError:
                field.values[...] = fill
                field.update_halos()
        if register:
            field.register()
        return field

    def fill(self, value):
        """Set the field to the specified value, respecting the halo rules"""
        try:
            self.all_values[...] = value
        except ValueError:
            self.values[...] = value
            self.update_halos()

    def index(self, i, j, k=None) -> Tuple:
        """Storage index for logical interior indices (may lie in the halo)"""
        h = self.grid.halo
        if self.all_values.ndim == 2:
            return j + h, i + h
        return k, j + h, i + h

    def at(self, i, j, k=None):
        """Values at logical indices; index arrays are broadcast"""
        return self.all_values[self.index(i, j, k)]

    def update_halos(self, land: Optional[float] = None):
        """Fill the halos. Sides connected to a neighboring subdomain are exchanged
        via MPI; the remaining sides follow the axis topology: periodic axes wrap,
        bounded and flat axes copy the edge value for quantities at cell centers and
        are zero beyond the wall for quantities at cell faces.

        Args:
            land: value for the halos at bounded sides, instead of the above rule
        """
        from .domain import Topology

        grid = self.grid
        if grid.tiling is not None:
            if self._dist is None:
                self._dist = parallel.DistributedArray(
                    grid.tiling, self.all_values, grid.halo
                )
            self._dist.update_halos()

        h = grid.halo
        faces = self.location.faces
        for axis in (0, 1):
            dim = -1 - axis
            topology = grid.topology[axis]
            for side in (0, 1):
                if grid.connected[axis][side]:
                    continue
                target = [slice(None)] * self.all_values.ndim
                source = [slice(None)] * self.all_values.ndim
                if side == 0:
                    target[dim] = slice(None, h)
                    source[dim] = (
                        slice(-2 * h, -h) if topology == Topology.PERIODIC else slice(h, h + 1)
                    )
                else:
                    target[dim] = slice(-h, None)
                    source[dim] = (
                        slice(h, 2 * h) if topology == Topology.PERIODIC else slice(-h - 1, -h)
                    )
                target, source = tuple(target), tuple(source)
                if topology == Topology.PERIODIC or topology == Topology.FLAT:
                    self.all_values[target] = self.all_values[source]
                elif land is not None:
                    self.all_values[target] = land
                elif faces[axis]:
                    self.all_values[target] = 0
                else:
                    self.all_values[target] = self.all_values[source]

    def compare_halos(self) -> bool:
        """Check that the halos match the interior of the neighboring subdomains"""
        if self.grid.tiling is None:
            return True
        if self._dist is None:
            self._dist = parallel.DistributedArray(
                self.grid.tiling, self.all_values, self.grid.halo
            )
        return self._dist.compare_halos()

    def global_sum(self, where: Optional["Field"] = None) -> Optional[np.ndarray]:
        """Sum over the interior of all subdomains. With multiple subdomains, the
        result is available on the root rank only (None elsewhere)."""
        local_sum = self.values.sum(
            where=np._NoValue if where is None else np.asarray(where, dtype=bool)
        )
        if self.grid.tiling is None:
            return local_sum
        return parallel.Sum(self.grid.tiling, local_sum)()

    @property
    def ma(self) -> np.ma.MaskedArray:
        """Masked array of the interior that hides inactive points"""
        mask = self.grid.active(self.location)
        if self.all_values.ndim == 2:
            mask = mask.any(axis=0)
        h = self.grid.halo
        return np.ma.array(self.values, mask=~mask[..., h:-h, h:-h])

    def __array__(self, dtype: Optional[DTypeLike] = None, copy=None) -> np.ndarray:
        """Return interior of the field as a NumPy array."""
        return np.asarray(self.values, dtype=dtype)

    def __getitem__(self, key) -> np.ndarray:
        """Retrieve values from the interior of the field (excluding halos).
        For access to the halos, use :attr:`all_values`.
        """
        return self.values[key]

    def __setitem__(self, key, values):
        self.values[key] = values

    @property
    def shape(self) -> Tuple[int]:
        """Shape excluding halos"""
        return self.values.shape

    @property
    def ndim(self) -> int:
        return self.values.ndim

    @property
    def z(self):
        """Vertical dimension: ``False`` if the field has no vertical dimension,
        ``CENTERS`` for layer centers, ``INTERFACES`` for layer interfaces.
        """
        if self.values.ndim != 3:
            return False
        return INTERFACES if self.values.shape[0] == self.grid.nz + 1 else CENTERS

    @property
    def size(self) -> int:
        return self.values.size

    @property
    def dtype(self) -> DTypeLike:
        return self.values.dtype

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def units(self) -> Optional[str]:
        return self.attrs.get("units")

    @property
    def long_name(self) -> Optional[str]:
        return self.attrs.get("long_name")

    def __array_ufunc__(self, ufunc, method, *inputs, **kwargs):
        if method != "__call__":
            return NotImplemented

        out = kwargs.get("out", ())
        for x in inputs + out:
            if not isinstance(x, (np.ndarray, numbers.Number, Field)):
                return NotImplemented
            if isinstance(x, Field) and x.grid is not self.grid:
                return NotImplemented

        inputs = tuple(x.all_values if isinstance(x, Field) else x for x in inputs)
        if out:
            kwargs["out"] = tuple(
                x.all_values if isinstance(x, Field) else x for x in out
            )
        result = getattr(ufunc, method)(*inputs, **kwargs)

        if type(result) is tuple:
            return tuple(
                self.create(self.grid, x, location=self.location, register=False)
                for x in result
            )
        return self.create(self.grid, result, location=self.location, register=False)

    def as_xarray(self) -> xarray.DataArray:
        """Return the interior wrapped in an :class:`xarray.DataArray` with
        coordinates of the field's location"""
        if self._xarray is not None:
            return self._xarray
        fx, fy, fz = self.location.faces
        x, y, z = self.grid.coordinates(self.location)
        xname, yname = ("xf" if fx else "xc"), ("yf" if fy else "yc")
        coords = {xname: x, yname: y}
        dims = (yname, xname)
        if self.ndim == 3:
            zname = "zf" if self.z == INTERFACES else "zc"
            coords[zname] = (
                self.grid.zf if self.z == INTERFACES else self.grid.zc
            )
            dims = (zname,) + dims
        attrs = {}
        for key in ("units", "long_name"):
            value = getattr(self, key)
            if value is not None:
                attrs[key] = value
        self._xarray = xarray.DataArray(
            self.values, coords=coords, dims=dims, attrs=attrs, name=self.name
        )
        return self._xarray

    xarray = property(as_xarray)

    def require_finite(self, logger: Optional[logging.Logger] = None) -> bool:
        """Check that all active interior points are finite. If not, an error
        message is written to the log and False is returned.
        """
        invalid = ~np.isfinite(self.ma)
        if invalid.any():
            (logger or logging.getLogger()).error(
                "%s is not finite in %i active grid cells." % (self.name, invalid.sum())
            )
            return False
        return True
