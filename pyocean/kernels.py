"""Index spaces and kernel dispatch.

A kernel is a vectorized function ``kernel(i, j, k, *args)`` of integer index
arrays (in the order of the dimensions of the index space) that writes its results
into fields passed as arguments. :func:`launch` evaluates it over a dense index
space (tiled by a workgroup) or over a sparse list of indices (in chunks).
"""

from typing import Callable, NamedTuple, Optional, Sequence, Tuple, Union
import logging

import numpy as np
from numpy.typing import ArrayLike

from . import domain

VALID_DIMS = ("xyz", "xy", "xz", "yz")

_logger = logging.getLogger(__name__)


class Dense(NamedTuple):
    """Rectangular index space: one ``range`` per dimension"""

    dims: str
    ranges: Tuple[range, ...]

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(len(r) for r in self.ranges)

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))


class Sparse(NamedTuple):
    """Explicit list of indices, one row per point"""

    dims: str
    indices: np.ndarray

    @property
    def shape(self) -> Tuple[int, ...]:
        return (self.indices.shape[0],)

    @property
    def size(self) -> int:
        return self.indices.shape[0]


IndexSpace = Union[Dense, Sparse]


def _check_dims(dims: str, ndim: Optional[int] = None) -> str:
    if dims not in VALID_DIMS:
        raise ValueError(
            "Unsupported kernel dimensions %r. Valid values: %s"
            % (dims, ", ".join(VALID_DIMS))
        )
    if ndim is not None and len(dims) != ndim:
        raise ValueError(
            "Kernel dimensions %r do not match the %i provided index ranges"
            % (dims, ndim)
        )
    return dims


def describe_domain(
    grid: domain.Grid,
    dims: str = "xyz",
    location: Optional[domain.Location] = None,
    exclude_periphery: bool = False,
) -> Dense:
    """Dense index space covering the interior of the grid.

    Args:
        grid: grid to cover
        dims: dimensions of the index space
        location: staggered location of the quantity computed by the kernel.
            Along axes where this is a face, the index space covers all faces
            in interior storage (for the vertical: all interfaces).
        exclude_periphery: drop the first face of face-located dimensions on a
            bounded side, where it coincides with the wall
    """
    _check_dims(dims)
    if location is None:
        location = domain.Location.CCC
    faces = location.faces
    sizes = (grid.nx, grid.ny, grid.nz + 1 if faces[2] else grid.nz)
    ranges = []
    for d in dims:
        axis = "xyz".index(d)
        n = sizes[axis]
        start = 0
        if (
            exclude_periphery
            and faces[axis]
            and n > 1
            and grid.boundary(axis, 0) == domain.Topology.BOUNDED
        ):
            start = 1
        ranges.append(range(start, max(n, start)))
    return Dense(dims, tuple(ranges))


def describe_domain_from_map(index_map: ArrayLike, dims: Optional[str] = None) -> Sparse:
    """Sparse index space from an (n, ndim) integer array of index tuples"""
    indices = np.asarray(index_map, dtype=np.intp)
    if indices.ndim == 1:
        indices = indices.reshape(-1, 1 if dims is None else len(dims))
    if dims is None:
        dims = "xyz"[: indices.shape[1]]
    _check_dims(dims, indices.shape[1])
    return Sparse(dims, indices)


def kernel_parameters(
    *ranges: Union[range, Tuple[int, int]], dims: Optional[str] = None
) -> Dense:
    """Dense index space from explicit windows, given as ``range`` objects or
    (start, stop) pairs. Windows may extend into the halos."""
    ranges = tuple(r if isinstance(r, range) else range(*r) for r in ranges)
    if dims is None:
        dims = "xyz"[: len(ranges)]
    _check_dims(dims, len(ranges))
    return Dense(dims, ranges)


def heuristic_workgroup(*shape: int) -> Tuple[int, int]:
    """Tile size for the first two dimensions of a dense index space"""
    nx = shape[0] if len(shape) > 0 else 1
    ny = shape[1] if len(shape) > 1 else 1
    if nx <= 1 and ny <= 1:
        return 1, 1
    elif nx <= 1:
        return 1, min(256, ny)
    elif ny <= 1:
        return min(256, nx), 1
    return 16, 16


def open_grid(dims: str, ranges: Sequence[range]) -> Tuple[np.ndarray, ...]:
    """Broadcastable index arrays whose combined shape is ordered like the
    storage of fields: last dimension first (z, y, x)"""
    n = len(ranges)
    indices = []
    for p, r in enumerate(ranges):
        shape = [1] * n
        shape[n - 1 - p] = len(r)
        indices.append(np.arange(r.start, r.stop, r.step).reshape(shape))
    return tuple(indices)


def _launch_dense(space: Dense, kernel: Callable, args, workgroup):
    shape = space.shape
    if workgroup is None:
        workgroup = heuristic_workgroup(*shape)
    r0, r1 = space.ranges[:2]
    steps = [max(int(w), 1) for w in (tuple(workgroup) + (1, 1))[:2]]
    for a in range(0, len(r0), steps[0]):
        for b in range(0, len(r1), steps[1]):
            ranges = (r0[a : a + steps[0]], r1[b : b + steps[1]]) + space.ranges[2:]
            kernel(*open_grid(space.dims, ranges), *args)


def _launch_sparse(space: Sparse, kernel: Callable, args, workgroup):
    chunk = 256 if workgroup is None else max(int(np.prod(workgroup)), 1)
    indices = space.indices
    for start in range(0, indices.shape[0], chunk):
        block = indices[start : start + chunk]
        kernel(*(block[:, p] for p in range(block.shape[1])), *args)


def launch(
    space: Union[IndexSpace, Sequence[IndexSpace]],
    kernel: Union[Callable, Sequence[Callable]],
    *args,
    workgroup: Optional[Tuple[int, ...]] = None,
    logger: Optional[logging.Logger] = None,
):
    """Evaluate kernel(s) over index space(s).

    Args:
        space: index space, or sequence of index spaces processed in order
        kernel: kernel, or sequence of kernels evaluated in order over each space
        *args: additional arguments passed to the kernel after the indices
        workgroup: tile size (dense) or chunk size (sparse, product of the tile)
        logger: logger for diagnostic messages (default: the logger of this module)
    """
    spaces = [space] if isinstance(space, (Dense, Sparse)) else list(space)
    kernels = [kernel] if callable(kernel) else list(kernel)
    if not spaces or not kernels:
        (logger or _logger).warning(
            "Nothing to launch: %i index spaces and %i kernels provided"
            % (len(spaces), len(kernels))
        )
        return
    for s in spaces:
        if s.size == 0:
            continue
        for k in kernels:
            if isinstance(s, Dense):
                _launch_dense(s, k, args, workgroup)
            else:
                _launch_sparse(s, k, args, workgroup)
