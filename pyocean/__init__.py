from . import core
from . import domain
from . import kernels
from . import operators
from . import advection
from . import momentum
from . import mixing
from . import density
from . import free_surface
from . import timesteppers
from . import multiregion
from .constants import *
from .exceptions import ConfigurationError, UnsupportedCombinationError
from .domain import Grid, Location, Topology, create_cartesian, create_uniform
from .advection import AdvectionScheme
from .momentum import FPlane, BetaPlane
from .mixing import ScalarDiffusivity
from .density import BuoyancyTracer, SeawaterBuoyancy
from .forcing import Forcing, Relaxation
from .boundary_conditions import FluxBoundaryCondition, FieldBoundaryConditions
from .free_surface import SplitExplicitFreeSurface, ExplicitFreeSurface
from .timesteppers import QuasiAdamsBashforth2, RungeKutta3
from .model import HydrostaticFreeSurfaceModel
from .simulation import Simulation
from .multiregion import MultiRegionGrid, XPartition, YPartition, apply_regionally
