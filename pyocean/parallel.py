from typing import List, Optional, Tuple
import logging
import enum

from mpi4py import MPI
import numpy as np

Waitall = MPI.Request.Waitall
Startall = MPI.Prequest.Startall


def _iterate_rankmap(rankmap):
    for irow in range(rankmap.shape[0]):
        for icol in range(rankmap.shape[1]):
            yield irow, icol, rankmap[irow, icol]


def get_logger(level=logging.INFO, comm=MPI.COMM_WORLD) -> logging.Logger:
    """Configure logging and return the root logger. Only the root rank writes to
    the console; with more than one rank, each rank also writes its own log file.
    """
    handlers: List[logging.Handler] = []
    if comm.rank == 0:
        handlers.append(logging.StreamHandler())
    if comm.size > 1:
        file_handler = logging.FileHandler("pyocean-%04i.log" % comm.rank, mode="w")
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(level=level, handlers=handlers)
    logger = logging.getLogger()
    logger.setLevel(level)
    return logger


class Tiling:
    """Division of the horizontal domain into subdomains, one per MPI rank.

    Args:
        nrow: number of subdomain rows (y direction)
        ncol: number of subdomain columns (x direction)
        map: rank of each subdomain (-1 for subdomains without rank).
            Alternative to ``nrow`` and ``ncol``.
        comm: MPI communicator
        periodic_x: the domain wraps around in x direction
        periodic_y: the domain wraps around in y direction
        ncpus: number of active subdomains (default: size of ``comm``)
    """

    def __init__(
        self,
        nrow: Optional[int] = None,
        ncol: Optional[int] = None,
        map: Optional[np.ndarray] = None,
        comm=MPI.COMM_WORLD,
        periodic_x: bool = False,
        periodic_y: bool = False,
        ncpus: Optional[int] = None,
    ):
        if nrow is None or ncol is None:
            if map is None:
                raise Exception(
                    "If the number of rows and columns of the subdomain decomposition"
                    " is not provided, the rank map must be provided instead."
                )
            self.map = np.asarray(map, dtype=int)
        else:
            self.map = np.arange(nrow * ncol).reshape(nrow, ncol)
        self.nrow, self.ncol = self.map.shape

        self.comm = comm
        self.rank: int = self.comm.rank
        self.n = ncpus if ncpus is not None else self.comm.size
        nactive = (self.map != -1).sum()
        if nactive != self.n:
            raise Exception(
                "Number of active subdomains (%i) does not match group size of MPI"
                " communicator (%i). Map: %s" % (nactive, self.n, self.map)
            )

        self.periodic_x = periodic_x
        self.periodic_y = periodic_y

        for self.irow, self.icol, r in _iterate_rankmap(self.map):
            if r == self.rank:
                break

        self.n_neighbors = 0
        for neighbor in Neighbor.specific():
            drow, dcol = NEIGHBOR2OFFSET[neighbor]
            setattr(
                self,
                neighbor.name.lower(),
                self._find_neighbor(self.irow + drow, self.icol + dcol),
            )

        self.nx_glob = None

    def _find_neighbor(self, irow: int, icol: int) -> int:
        if self.periodic_x:
            icol = icol % self.ncol
        if self.periodic_y:
            irow = irow % self.nrow
        if 0 <= irow < self.nrow and 0 <= icol < self.ncol:
            rank = int(self.map[irow, icol])
            if rank != -1:
                self.n_neighbors += 1
            return rank
        return -1

    def set_extent(self, nx_glob: int, ny_glob: int):
        """Set extent of the global domain. Subdomains have equal size; the global
        extent must be divisible by the number of subdomain columns and rows.
        """
        if nx_glob % self.ncol or ny_glob % self.nrow:
            raise Exception(
                "Global domain %i x %i cannot be divided evenly into %i x %i subdomains"
                % (nx_glob, ny_glob, self.ncol, self.nrow)
            )
        self.nx_glob, self.ny_glob = nx_glob, ny_glob
        self.nx_sub, self.ny_sub = nx_glob // self.ncol, ny_glob // self.nrow
        self.xoffset = self.icol * self.nx_sub
        self.yoffset = self.irow * self.ny_sub

    def report(self, logger: logging.Logger):
        """Write information about the subdomain decomposition to the log.
        Log messages are suppressed if the decomposition only has one subdomain.
        """
        if self.nrow > 1 or self.ncol > 1:
            logger.info(
                "Using subdomain decomposition %i x %i (%i active nodes)"
                % (self.nrow, self.ncol, (self.map != -1).sum())
            )
            logger.info(
                "I am rank %i at subdomain row %i, column %i"
                % (self.rank, self.irow, self.icol)
            )

    def __bool__(self) -> bool:
        """Return True if the current subdomain has any neighbors, False otherwise."""
        return self.n_neighbors > 0

    def connected(self, axis: int, side: int) -> bool:
        """Whether the halo at the given side (0: low, 1: high) of the given
        horizontal axis (0: x, 1: y) is provided by a neighboring subdomain"""
        name = (("left", "right"), ("bottom", "top"))[axis][side]
        return getattr(self, name) != -1

    def wrap(self, *args, **kwargs) -> "DistributedArray":
        return DistributedArray(self, *args, **kwargs)


@enum.unique
class Neighbor(enum.IntEnum):
    # Specific neighbors
    BOTTOMLEFT = 1
    BOTTOM = 2
    BOTTOMRIGHT = 3
    LEFT = 4
    RIGHT = 5
    TOPLEFT = 6
    TOP = 7
    TOPRIGHT = 8

    # Groups of neighbors (for update_halos command)
    ALL = 0
    TOP_AND_BOTTOM = 9
    LEFT_AND_RIGHT = 10

    @classmethod
    def specific(cls) -> Tuple["Neighbor", ...]:
        return tuple(n for n in cls if 1 <= n <= 8)


#: (row offset, column offset) of each neighbor
NEIGHBOR2OFFSET = {
    Neighbor.BOTTOMLEFT: (-1, -1),
    Neighbor.BOTTOM: (-1, 0),
    Neighbor.BOTTOMRIGHT: (-1, 1),
    Neighbor.LEFT: (0, -1),
    Neighbor.RIGHT: (0, 1),
    Neighbor.TOPLEFT: (1, -1),
    Neighbor.TOP: (1, 0),
    Neighbor.TOPRIGHT: (1, 1),
}

GROUP2PARTS = {
    Neighbor.TOP_AND_BOTTOM: (Neighbor.TOP, Neighbor.BOTTOM),
    Neighbor.LEFT_AND_RIGHT: (Neighbor.LEFT, Neighbor.RIGHT),
}


def _opposite(neighbor: Neighbor) -> Neighbor:
    drow, dcol = NEIGHBOR2OFFSET[neighbor]
    for candidate, offset in NEIGHBOR2OFFSET.items():
        if offset == (-drow, -dcol):
            return candidate


def _halo_slices(offset: int, halo: int) -> Tuple[slice, slice]:
    """Slices along one axis for the halo strip (outer) and the interior strip
    that fills the matching halo of the neighbor (inner)"""
    if offset == -1:
        return slice(None, halo), slice(halo, 2 * halo)
    elif offset == 1:
        return slice(-halo, None), slice(-2 * halo, -halo)
    return slice(halo, -halo), slice(halo, -halo)


class DistributedArray:
    """Halo exchange for a halo-padded array with persistent MPI requests"""

    __slots__ = ["rank", "group2task", "halo2name"]

    def __init__(self, tiling: Tiling, field: np.ndarray, halo: int):
        self.rank = tiling.rank
        self.group2task: List[
            Tuple[
                List[MPI.Prequest],
                List[MPI.Prequest],
                List[Tuple[np.ndarray, np.ndarray]],
                List[Tuple[np.ndarray, np.ndarray]],
            ]
        ] = [([], [], [], []) for _ in range(max(Neighbor) + 1)]
        self.halo2name = {}

        for recvtag in Neighbor.specific():
            neighbor = getattr(tiling, recvtag.name.lower())
            if neighbor == -1:
                continue
            sendtag = _opposite(recvtag)
            drow, dcol = NEIGHBOR2OFFSET[recvtag]
            outer_y, inner_y = _halo_slices(drow, halo)
            outer_x, inner_x = _halo_slices(dcol, halo)
            outer = field[..., outer_y, outer_x]
            inner = field[..., inner_y, inner_x]
            inner_cache, outer_cache = np.empty_like(inner), np.empty_like(outer)
            send_req = tiling.comm.Send_init(inner_cache, neighbor, sendtag)
            recv_req = tiling.comm.Recv_init(outer_cache, neighbor, recvtag)
            self.halo2name[id(outer)] = recvtag.name.lower()
            for group in self._groups(sendtag):
                self.group2task[group][0].append(send_req)
                self.group2task[group][2].append((inner, inner_cache))
            for group in self._groups(recvtag):
                self.group2task[group][1].append(recv_req)
                self.group2task[group][3].append((outer, outer_cache))

    @staticmethod
    def _groups(neighbor: Neighbor) -> List[Neighbor]:
        return [Neighbor.ALL, neighbor] + [
            group for (group, parts) in GROUP2PARTS.items() if neighbor in parts
        ]

    def update_halos(self, group: Neighbor = Neighbor.ALL):
        send_reqs, recv_reqs, send_data, recv_data = self.group2task[group]
        Startall(recv_reqs)
        for inner, cache in send_data:
            cache[...] = inner
        Startall(send_reqs)
        Waitall(recv_reqs)
        for outer, cache in recv_data:
            outer[...] = cache
        Waitall(send_reqs)

    def compare_halos(self, group: Neighbor = Neighbor.ALL) -> bool:
        send_reqs, recv_reqs, send_data, recv_data = self.group2task[group]
        Startall(recv_reqs)
        for inner, cache in send_data:
            cache[...] = inner
        Startall(send_reqs)
        Waitall(recv_reqs)
        match = True
        for outer, cache in recv_data:
            if not np.array_equal(outer, cache, equal_nan=True):
                logging.getLogger().error(
                    "Rank %i: mismatch in %s halo! Maximum absolute difference: %s."
                    % (self.rank, self.halo2name[id(outer)], np.abs(outer - cache).max())
                )
                match = False
        Waitall(send_reqs)
        return match


class Sum:
    """Sum over all subdomains, available on the root rank"""

    def __init__(self, tiling: Tiling, field: np.ndarray, root: int = 0):
        self.comm = tiling.comm
        self.root = root
        self.field = np.asarray(field)
        self.result = None if tiling.rank != self.root else np.empty_like(self.field)

    def __call__(self) -> Optional[np.ndarray]:
        self.comm.Reduce(self.field, self.result, op=MPI.SUM, root=self.root)
        return self.result


class Min:
    """Minimum over all subdomains, available on every rank"""

    def __init__(self, tiling: Tiling, field: np.ndarray):
        self.comm = tiling.comm
        self.field = np.asarray(field)
        self.result = np.empty_like(self.field)

    def __call__(self) -> np.ndarray:
        self.comm.Allreduce(self.field, self.result, op=MPI.MIN)
        return self.result
