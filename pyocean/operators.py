"""Finite-volume operators on the staggered grid.

Every operator has the signature ``op(i, j, k, grid, q, *args)``, with ``i``, ``j``,
``k`` integer index arrays (broadcast together) and operand ``q`` a
:class:`~pyocean.core.Field`, a number, or a callable evaluated as
``q(i, j, k, grid, *args)``. Differences are downstream minus upstream.

Plain operators read halos and therefore require up-to-date halos. The ``_bound``
variants instead apply the axis topology explicitly and only read interior points.
"""

from typing import Callable, Dict, Tuple

import numpy as np

from . import core
from . import kernels
from .constants import CENTERS, INTERFACES
from .domain import Grid, Location, Topology

Operator = Callable[..., np.ndarray]


def _value(i, j, k, grid: Grid, q, *args):
    if isinstance(q, core.Field):
        return q.at(i, j, k)
    elif callable(q):
        return q(i, j, k, grid, *args)
    return q


def _zeros(i, j, k) -> np.ndarray:
    return np.zeros(np.broadcast(i, j, k).shape)


def _shift(axis: int, i, j, k, offset: int):
    if axis == 0:
        return i + offset, j, k
    elif axis == 1:
        return i, j + offset, k
    return i, j, k + offset


def _replace(axis: int, i, j, k, index):
    if axis == 0:
        return index, j, k
    elif axis == 1:
        return i, index, k
    return i, j, index


def _index(axis: int, i, j, k):
    return (i, j, k)[axis]


# Metrics


def dx(i, j, k, grid: Grid, location: Location = Location.CCC):
    return (grid.dxf if location.faces[0] else grid.dxc)[i + grid.halo]


def dy(i, j, k, grid: Grid, location: Location = Location.CCC):
    return (grid.dyf if location.faces[1] else grid.dyc)[j + grid.halo]


def dz(i, j, k, grid: Grid, location: Location = Location.CCC):
    return (grid.dzf if location.faces[2] else grid.dzc)[k]


def Ax(i, j, k, grid: Grid, location: Location = Location.CCC):
    return dy(i, j, k, grid, location) * dz(i, j, k, grid, location)


def Ay(i, j, k, grid: Grid, location: Location = Location.CCC):
    return dx(i, j, k, grid, location) * dz(i, j, k, grid, location)


def Az(i, j, k, grid: Grid, location: Location = Location.CCC):
    return dx(i, j, k, grid, location) * dy(i, j, k, grid, location)


def volume(i, j, k, grid: Grid, location: Location = Location.CCC):
    return Az(i, j, k, grid, location) * dz(i, j, k, grid, location)


# Differences that read halos


def _delta_f(axis: int, i, j, k, grid: Grid, q, args):
    if grid.topology[axis] == Topology.FLAT:
        return _zeros(i, j, k)
    return _value(i, j, k, grid, q, *args) - _value(
        *_shift(axis, i, j, k, -1), grid, q, *args
    )


def _delta_c(axis: int, i, j, k, grid: Grid, q, args):
    if grid.topology[axis] == Topology.FLAT:
        return _zeros(i, j, k)
    return _value(*_shift(axis, i, j, k, 1), grid, q, *args) - _value(
        i, j, k, grid, q, *args
    )


def delta_x_f(i, j, k, grid: Grid, q, *args):
    return _delta_f(0, i, j, k, grid, q, args)


def delta_x_c(i, j, k, grid: Grid, q, *args):
    return _delta_c(0, i, j, k, grid, q, args)


def delta_y_f(i, j, k, grid: Grid, q, *args):
    return _delta_f(1, i, j, k, grid, q, args)


def delta_y_c(i, j, k, grid: Grid, q, *args):
    return _delta_c(1, i, j, k, grid, q, args)


def delta_z_f(i, j, k, grid: Grid, q, *args):
    """Vertical difference at interface ``k``; zero at the bottom and surface"""
    if k is None or grid.topology[2] == Topology.FLAT:
        return _zeros(i, j, k)
    kk = np.clip(k, 1, max(grid.nz - 1, 1))
    d = _value(i, j, kk, grid, q, *args) - _value(i, j, kk - 1, grid, q, *args)
    return np.where((k <= 0) | (k >= grid.nz), 0.0, d)


def delta_z_c(i, j, k, grid: Grid, q, *args):
    return _delta_c(2, i, j, k, grid, q, args)


def partial_x_f(i, j, k, grid: Grid, q, *args):
    return delta_x_f(i, j, k, grid, q, *args) / grid.dxf[i + grid.halo]


def partial_x_c(i, j, k, grid: Grid, q, *args):
    return delta_x_c(i, j, k, grid, q, *args) / grid.dxc[i + grid.halo]


def partial_y_f(i, j, k, grid: Grid, q, *args):
    return delta_y_f(i, j, k, grid, q, *args) / grid.dyf[j + grid.halo]


def partial_y_c(i, j, k, grid: Grid, q, *args):
    return delta_y_c(i, j, k, grid, q, *args) / grid.dyc[j + grid.halo]


def partial_z_f(i, j, k, grid: Grid, q, *args):
    return delta_z_f(i, j, k, grid, q, *args) / grid.dzf[k]


def partial_z_c(i, j, k, grid: Grid, q, *args):
    return delta_z_c(i, j, k, grid, q, *args) / grid.dzc[k]


# Interpolations that read halos


def _interp_f(axis: int, i, j, k, grid: Grid, q, args):
    if grid.topology[axis] == Topology.FLAT:
        return _value(i, j, k, grid, q, *args)
    return 0.5 * (
        _value(*_shift(axis, i, j, k, -1), grid, q, *args)
        + _value(i, j, k, grid, q, *args)
    )


def _interp_c(axis: int, i, j, k, grid: Grid, q, args):
    if grid.topology[axis] == Topology.FLAT:
        return _value(i, j, k, grid, q, *args)
    return 0.5 * (
        _value(i, j, k, grid, q, *args)
        + _value(*_shift(axis, i, j, k, 1), grid, q, *args)
    )


def interp_x_f(i, j, k, grid: Grid, q, *args):
    return _interp_f(0, i, j, k, grid, q, args)


def interp_x_c(i, j, k, grid: Grid, q, *args):
    return _interp_c(0, i, j, k, grid, q, args)


def interp_y_f(i, j, k, grid: Grid, q, *args):
    return _interp_f(1, i, j, k, grid, q, args)


def interp_y_c(i, j, k, grid: Grid, q, *args):
    return _interp_c(1, i, j, k, grid, q, args)


def interp_z_f(i, j, k, grid: Grid, q, *args):
    """Interpolation to interface ``k``; bottom and surface interfaces take the
    value of the adjacent layer. Identity for depth-independent operands."""
    if k is None or grid.topology[2] == Topology.FLAT:
        return _value(i, j, k, grid, q, *args)
    lower = np.clip(k - 1, 0, grid.nz - 1)
    upper = np.clip(k, 0, grid.nz - 1)
    return 0.5 * (_value(i, j, lower, grid, q, *args) + _value(i, j, upper, grid, q, *args))


def interp_z_c(i, j, k, grid: Grid, q, *args):
    if k is None:
        return _value(i, j, k, grid, q, *args)
    return _interp_c(2, i, j, k, grid, q, args)


def div_xy_c(i, j, k, grid: Grid, u, v, *args):
    """Horizontal divergence at cell centers of fluxes at x- and y-faces"""
    h = grid.halo
    dxc, dyc = grid.dxc[i + h], grid.dyc[j + h]
    return (
        dyc * delta_x_c(i, j, k, grid, u, *args)
        + dxc * delta_y_c(i, j, k, grid, v, *args)
    ) / (dxc * dyc)


# Topology-aware variants that do not read halos


def _delta_f_bound(axis: int, i, j, k, grid: Grid, q, args):
    topology = grid.topology[axis]
    n = grid.size[axis]
    index = _index(axis, i, j, k)
    if topology == Topology.FLAT:
        return _zeros(i, j, k)
    elif topology == Topology.PERIODIC:
        return _value(i, j, k, grid, q, *args) - _value(
            *_replace(axis, i, j, k, (index - 1) % n), grid, q, *args
        )
    if n == 1:
        return _zeros(i, j, k)
    inner = np.clip(index, 1, n - 1)
    d = _value(*_replace(axis, i, j, k, inner), grid, q, *args) - _value(
        *_replace(axis, i, j, k, inner - 1), grid, q, *args
    )
    return np.where((index <= 0) | (index >= n), 0.0, d)


def _delta_c_bound(axis: int, i, j, k, grid: Grid, q, args):
    topology = grid.topology[axis]
    n = grid.size[axis]
    index = _index(axis, i, j, k)
    if topology == Topology.FLAT:
        return _zeros(i, j, k)
    elif topology == Topology.PERIODIC:
        return _value(
            *_replace(axis, i, j, k, (index + 1) % n), grid, q, *args
        ) - _value(i, j, k, grid, q, *args)
    # the face beyond the last cell is the wall: zero flux
    upper = np.where(
        index + 1 >= n,
        0.0,
        _value(*_replace(axis, i, j, k, np.minimum(index + 1, n - 1)), grid, q, *args),
    )
    return upper - _value(i, j, k, grid, q, *args)


def delta_x_f_bound(i, j, k, grid: Grid, q, *args):
    return _delta_f_bound(0, i, j, k, grid, q, args)


def delta_x_c_bound(i, j, k, grid: Grid, q, *args):
    return _delta_c_bound(0, i, j, k, grid, q, args)


def delta_y_f_bound(i, j, k, grid: Grid, q, *args):
    return _delta_f_bound(1, i, j, k, grid, q, args)


def delta_y_c_bound(i, j, k, grid: Grid, q, *args):
    return _delta_c_bound(1, i, j, k, grid, q, args)


def partial_x_f_bound(i, j, k, grid: Grid, q, *args):
    return delta_x_f_bound(i, j, k, grid, q, *args) / grid.dxf[i + grid.halo]


def partial_y_f_bound(i, j, k, grid: Grid, q, *args):
    return delta_y_f_bound(i, j, k, grid, q, *args) / grid.dyf[j + grid.halo]


def div_xy_c_bound(i, j, k, grid: Grid, u, v, *args):
    h = grid.halo
    dxc, dyc = grid.dxc[i + h], grid.dyc[j + h]
    return (
        dyc * delta_x_c_bound(i, j, k, grid, u, *args)
        + dxc * delta_y_c_bound(i, j, k, grid, v, *args)
    ) / (dxc * dyc)


# Immersed boundaries


def active(i, j, k, grid: Grid, location: Location) -> np.ndarray:
    """Whether the points at the given location are active. Without vertical
    index (``k=None``) this checks whether any level of the column is active."""
    h = grid.halo
    if k is None:
        return grid.column_mask(location)[j + h, i + h]
    return grid.active(location)[k, j + h, i + h]


def _conditional(op: Operator, location: Location) -> Operator:
    def conditional_op(i, j, k, grid: Grid, q, *args):
        return np.where(active(i, j, k, grid, location), op(i, j, k, grid, q, *args), 0.0)

    conditional_op.__name__ = "conditional_" + op.__name__
    conditional_op.__doc__ = (
        "%s, set to zero where the %s point is inactive" % (op.__name__, location.name)
    )
    return conditional_op


conditional_delta_x_f = _conditional(delta_x_f, Location.FCC)
conditional_delta_y_f = _conditional(delta_y_f, Location.CFC)
conditional_delta_z_f = _conditional(delta_z_f, Location.CCF)
conditional_partial_x_f = _conditional(partial_x_f, Location.FCC)
conditional_partial_y_f = _conditional(partial_y_f, Location.CFC)
conditional_partial_z_f = _conditional(partial_z_f, Location.CCF)
conditional_partial_x_f_bound = _conditional(partial_x_f_bound, Location.FCC)
conditional_partial_y_f_bound = _conditional(partial_y_f_bound, Location.CFC)


def _operand_location(q, axis: int, face: bool) -> Location:
    faces = list(q.location.faces if isinstance(q, core.Field) else (False,) * 3)
    faces[axis] = face
    return Location.from_faces(*faces)


def _active_weighted(axis: int, offsets: Tuple[int, int], face: bool):
    def interp(i, j, k, grid: Grid, q, *args):
        if grid.topology[axis] == Topology.FLAT:
            return _value(i, j, k, grid, q, *args)
        location = _operand_location(q, axis, face)
        total, count = 0.0, 0
        for offset in offsets:
            ii, jj, kk = _shift(axis, i, j, k, offset)
            mask = active(ii, jj, kk, grid, location)
            total = total + np.where(mask, _value(ii, jj, kk, grid, q, *args), 0.0)
            count = count + mask
        return np.where(count > 0, total / np.maximum(count, 1), 0.0)

    return interp


active_weighted_interp_x_f = _active_weighted(0, (-1, 0), False)
active_weighted_interp_x_c = _active_weighted(0, (0, 1), True)
active_weighted_interp_y_f = _active_weighted(1, (-1, 0), False)
active_weighted_interp_y_c = _active_weighted(1, (0, 1), True)
active_weighted_interp_x_f.__name__ = "active_weighted_interp_x_f"
active_weighted_interp_x_c.__name__ = "active_weighted_interp_x_c"
active_weighted_interp_y_f.__name__ = "active_weighted_interp_y_f"
active_weighted_interp_y_c.__name__ = "active_weighted_interp_y_c"


# Interpolation between any pair of locations


def identity(i, j, k, grid: Grid, q, *args):
    return _value(i, j, k, grid, q, *args)


#: interpolation along one axis, by (axis, target is face)
_AXIS_INTERPOLATIONS = {
    (0, True): interp_x_f,
    (0, False): interp_x_c,
    (1, True): interp_y_f,
    (1, False): interp_y_c,
    (2, True): interp_z_f,
    (2, False): interp_z_c,
}


def _compose(outer: Operator, inner: Operator) -> Operator:
    def composed(i, j, k, grid: Grid, q, *args):
        return outer(i, j, k, grid, inner, q, *args)

    return composed


def _build_interpolation_table() -> Dict[Tuple[Location, Location], Operator]:
    table = {}
    for source in Location:
        for target in Location:
            if source == target:
                table[source, target] = identity
                continue
            op = None
            for axis, (fs, ft) in enumerate(zip(source.faces, target.faces)):
                if fs != ft:
                    step = _AXIS_INTERPOLATIONS[axis, ft]
                    op = step if op is None else _compose(step, op)
            table[source, target] = op
    return table


INTERPOLATION_TABLE = _build_interpolation_table()


def interpolation_operator(source: Location, target: Location) -> Operator:
    """Operator interpolating from ``source`` to ``target`` location"""
    return INTERPOLATION_TABLE[Location(source), Location(target)]


def interpolate(
    field: core.Field, target: Location, out: "core.Field" = None
) -> core.Field:
    """Interpolate a field to another location. The halos of ``field`` must be up
    to date. The result covers the interior; its halos are not updated."""
    target = Location(target)
    if out is None:
        z = False
        if field.ndim == 3:
            z = INTERFACES if target.faces[2] else CENTERS
        out = field.grid.array(z=z, location=target, register=False)
    op = interpolation_operator(field.location, target)

    if field.ndim == 3:

        def kernel(i, j, k, grid, out, q):
            out.all_values[out.index(i, j, k)] = op(i, j, k, grid, q)

        space = kernels.describe_domain(field.grid, "xyz", target)
    else:

        def kernel(i, j, grid, out, q):
            out.all_values[out.index(i, j)] = op(i, j, None, grid, q)

        space = kernels.describe_domain(field.grid, "xy", target)
    kernels.launch(space, kernel, field.grid, out, field)
    return out
