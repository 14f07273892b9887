import numpy as np
import pyocean

# Basin with a ridge, divided into four regions along x
nx = 80
ny = 50
x = (np.arange(nx) + 0.5) / nx
H = np.broadcast_to(1000.0 - 800.0 * np.exp(-((x - 0.5) / 0.1) ** 2), (ny, nx))

logger = pyocean.parallel.get_logger()
grid = pyocean.MultiRegionGrid(
    np.full(nx, 2000.0),
    np.full(ny, 2000.0),
    np.full(20, 50.0),
    pyocean.XPartition(4),
    topology=(
        pyocean.Topology.PERIODIC,
        pyocean.Topology.BOUNDED,
        pyocean.Topology.BOUNDED,
    ),
    bottom_depth=H,
    logger=logger,
)
maxdt = grid.minimum_timestep()

# Smooth an initial tracer distribution with regional kernels
c = grid.array(fill=np.random.random((20, ny, nx)), z=pyocean.CENTERS)


def smooth(grid, c):
    out = grid.array(z=pyocean.CENTERS, register=False)

    def kernel(i, j, k):
        value = 0.25 * (
            c.at(i - 1, j, k) + 2.0 * c.at(i, j, k) + c.at(i + 1, j, k)
        )
        out.all_values[out.index(i, j, k)] = value

    pyocean.kernels.launch(pyocean.kernels.describe_domain(grid, "xyz"), kernel)
    return out


for _ in range(10):
    smoothed = pyocean.multiregion.MultiRegionField(
        grid, pyocean.apply_regionally(smooth, grid, c)
    )
    c.scatter(smoothed.gather())
values = c.gather()
logger.info(
    "Maximum dt %.3f s; tracer range after smoothing %.4f - %.4f"
    % (maxdt, values.min(), values.max())
)
