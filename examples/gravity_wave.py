import datetime

import numpy as np
import cftime
import pyocean

# Parameters for grid and bottom topography
nx = 60
ny = 40
nz = 10
dx = 5000.0
dy = 5000.0
HMAX = 200.0
L = 40000.0

# bottom topography: shelf along the southern boundary
y = (np.arange(ny) + 0.5) * dy
H = np.broadcast_to(HMAX * (1.0 - 0.6 * np.exp(-y / L))[:, np.newaxis], (ny, nx))

logger = pyocean.parallel.get_logger()
grid = pyocean.create_uniform(
    nx,
    ny,
    nz,
    (nx * dx, ny * dy, HMAX),
    topology=(
        pyocean.Topology.PERIODIC,
        pyocean.Topology.BOUNDED,
        pyocean.Topology.BOUNDED,
    ),
    bottom_depth=H,
    logger=logger,
)

timestep = 300.0
model = pyocean.HydrostaticFreeSurfaceModel(
    grid,
    free_surface=pyocean.SplitExplicitFreeSurface(cfl=0.7),
    coriolis=pyocean.FPlane(latitude=50.0),
    closure=pyocean.ScalarDiffusivity(horizontal_viscosity=100.0, vertical_viscosity=1e-4),
    buoyancy=pyocean.BuoyancyTracer(),
    tracers=("b",),
    timestep=timestep,
)


def bump(x, y):
    r2 = (x - 0.5 * nx * dx) ** 2 + (y - 0.5 * ny * dy) ** 2
    return 0.2 * np.exp(-r2 / (4 * dx) ** 2)


model.set(eta=bump, b=lambda x, y, z: 1e-3 * (1.0 + z / HMAX))

simulation = pyocean.Simulation(
    model, timestep, stop_time=datetime.timedelta(days=1)
)
simulation.run(
    cftime.datetime(2000, 1, 1),
    report=datetime.timedelta(hours=1),
    report_totals=datetime.timedelta(hours=6),
    check_finite=True,
)
ds = model.as_xarray()
for name in ("eta", "u", "v", "w"):
    logger.info("%s: %.6g - %.6g" % (name, ds[name].min(), ds[name].max()))
