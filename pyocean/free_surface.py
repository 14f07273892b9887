"""Free surface: split-explicit barotropic sub-stepping and an explicit variant.

The split-explicit free surface advances the depth-integrated transports ``U``,
``V`` and the surface elevation ``eta`` with many short forward-backward sub-steps
per outer time step. The sub-step states are averaged with weights from an
averaging kernel, after which the elevation is reset to its average and the 3D
velocities are corrected so that their depth integral matches the averaged
transports. The next outer step starts from the depth integrals of the velocities
before that correction.
"""

from typing import Callable, Mapping, Optional, Tuple
import logging

import numpy as np

from . import core
from . import kernels
from . import operators
from .constants import CENTERS, GRAVITY
from .domain import Grid, Location
from .exceptions import ConfigurationError


def averaging_shape_function(
    tau, p: int = 2, q: int = 4, r: float = 0.18927
) -> np.ndarray:
    """Averaging kernel of Shchepetkin & McWilliams (2005) as a function of
    dimensionless time ``tau`` (1 being the end of the outer time step)"""
    tau0 = (p + 2) * (p + q + 2) / ((p + 1) * (p + q + 1))
    t = np.asarray(tau, dtype=float) / tau0
    return t ** p * (1.0 - t ** q) - r * t


def cosine_averaging_kernel(tau) -> np.ndarray:
    tau = np.asarray(tau, dtype=float)
    return np.where(
        (tau >= 0.5) & (tau <= 1.5), 1.0 + np.cos(2.0 * np.pi * (tau - 1.0)), 0.0
    )


def constant_averaging_kernel(tau) -> np.ndarray:
    return np.ones_like(np.asarray(tau, dtype=float))


def averaging_weights(
    substeps: int, averaging_kernel: Callable = averaging_shape_function
) -> Tuple[np.ndarray, int]:
    """Normalized averaging weights for ``substeps`` sub-steps spanning twice the
    outer time step, and the number of sub-steps with a weight (trailing
    non-positive weights are dropped)"""
    tau = 2.0 * np.arange(1, substeps + 1) / substeps
    weights = np.broadcast_to(
        np.asarray(averaging_kernel(tau), dtype=float), tau.shape
    ).copy()
    (positive,) = np.nonzero(weights > 0.0)
    if positive.size == 0:
        raise ConfigurationError(
            "Averaging kernel %s has no positive weights with %i substeps"
            % (getattr(averaging_kernel, "__name__", averaging_kernel), substeps)
        )
    active_substeps = int(positive[-1]) + 1
    weights[active_substeps:] = 0.0
    weights /= weights.sum()
    weights.flags.writeable = False
    return weights, active_substeps


class SplitExplicitSettings:
    """Sub-stepping configuration for one outer time step. Immutable."""

    __slots__ = (
        "substeps",
        "timestep",
        "substep_size",
        "free_surface_weights",
        "velocity_weights",
        "active_substeps",
        "averaging_kernel",
        "cfl",
        "gravitational_acceleration",
    )

    def __init__(
        self,
        substeps: int,
        timestep: float,
        averaging_kernel: Callable = averaging_shape_function,
        cfl: float = 1.0,
        gravitational_acceleration: float = GRAVITY,
    ):
        if substeps < 1:
            raise ConfigurationError(
                "Number of substeps is %i but must be >= 1" % substeps
            )
        weights, active_substeps = averaging_weights(substeps, averaging_kernel)
        for name, value in (
            ("substeps", int(substeps)),
            ("timestep", timestep),
            ("substep_size", 2.0 * timestep / substeps),
            ("free_surface_weights", weights),
            ("velocity_weights", weights),
            ("active_substeps", active_substeps),
            ("averaging_kernel", averaging_kernel),
            ("cfl", cfl),
            ("gravitational_acceleration", gravitational_acceleration),
        ):
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        raise AttributeError("%s is immutable" % self.__class__.__name__)

    def __repr__(self) -> str:
        return "SplitExplicitSettings(substeps=%i, active_substeps=%i, substep_size=%s)" % (
            self.substeps,
            self.active_substeps,
            self.substep_size,
        )


class BarotropicState:
    """Depth-integrated transports, surface elevation and their sub-step averages"""

    def __init__(self, grid: Grid):
        def array(name, location, units, long_name):
            return grid.array(
                location=location,
                name=name,
                units=units,
                long_name=long_name,
                register=False,
            )

        self.U = array("U", Location.FCC, "m2 s-1", "transport in x-direction")
        self.V = array("V", Location.CFC, "m2 s-1", "transport in y-direction")
        self.eta = array("eta", Location.CCF, "m", "surface elevation")
        self.U_avg = array(
            "U_avg", Location.FCC, "m2 s-1", "averaged transport in x-direction"
        )
        self.V_avg = array(
            "V_avg", Location.CFC, "m2 s-1", "averaged transport in y-direction"
        )
        self.eta_avg = array("eta_avg", Location.CCF, "m", "averaged surface elevation")

    def reset_averages(self):
        self.U_avg.all_values[...] = 0.0
        self.V_avg.all_values[...] = 0.0
        self.eta_avg.all_values[...] = 0.0

    def snapshot(self) -> Mapping[str, np.ndarray]:
        return {
            name: getattr(self, name).values.copy()
            for name in ("U", "V", "eta", "U_avg", "V_avg", "eta_avg")
        }


class Auxiliary:
    """Depth-integration factors, barotropic forcing and scratch buffers"""

    def __init__(self, grid: Grid):
        dz = grid.dzc[:, np.newaxis, np.newaxis]
        self.Hu = grid.array(
            fill=(dz * grid.active(Location.FCC)).sum(axis=0),
            location=Location.FCC,
            name="Hu",
            units="m",
            register=False,
        )
        self.Hv = grid.array(
            fill=(dz * grid.active(Location.CFC)).sum(axis=0),
            location=Location.CFC,
            name="Hv",
            units="m",
            register=False,
        )
        self.Gu = grid.array(location=Location.FCC, name="Gu", register=False)
        self.Gv = grid.array(location=Location.CFC, name="Gv", register=False)
        self.Gu_blend = grid.array(
            z=CENTERS, location=Location.FCC, name="Gu_blend", register=False
        )
        self.Gv_blend = grid.array(
            z=CENTERS, location=Location.CFC, name="Gv_blend", register=False
        )
        self.U_instantaneous = grid.array(
            location=Location.FCC, name="U_instantaneous", register=False
        )
        self.V_instantaneous = grid.array(
            location=Location.CFC, name="V_instantaneous", register=False
        )


def _depth_integral_kernel(i, j, grid: Grid, U: core.Field, u: core.Field):
    k = np.arange(grid.nz).reshape((-1,) + (1,) * np.broadcast(i, j).ndim)
    layers = grid.dzc[k] * u.at(i, j, k) * operators.active(i, j, k, grid, u.location)
    U.all_values[U.index(i, j)] = layers.sum(axis=0)


def barotropic_mode(U: core.Field, V: core.Field, grid: Grid, u: core.Field, v: core.Field):
    """Depth integrals of u and v: ``U = sum(dz * u)`` over active layers"""
    kernels.launch(
        kernels.describe_domain(grid, "xy", Location.FCC),
        _depth_integral_kernel,
        grid,
        U,
        u,
    )
    kernels.launch(
        kernels.describe_domain(grid, "xy", Location.CFC),
        _depth_integral_kernel,
        grid,
        V,
        v,
    )


def _correction_kernel(i, j, k, grid: Grid, u, U, U_avg, H):
    depth = H.at(i, j)
    valid = operators.active(i, j, k, grid, u.location) & (depth > 0.0)
    increment = np.where(
        valid, (U_avg.at(i, j) - U.at(i, j)) / np.where(depth > 0.0, depth, 1.0), 0.0
    )
    u.all_values[u.index(i, j, k)] = u.at(i, j, k) + increment


def barotropic_correction(
    u: core.Field,
    v: core.Field,
    U: core.Field,
    V: core.Field,
    U_avg: core.Field,
    V_avg: core.Field,
    Hu: core.Field,
    Hv: core.Field,
):
    """Replace the depth-mean of the 3D velocities: ``u += (U_avg - U) / Hu`` at
    every active level. ``U`` and ``V`` are the depth integrals of ``u`` and ``v``
    before the correction. Columns without water are left untouched."""
    grid = u.grid
    kernels.launch(
        kernels.describe_domain(grid, "xyz", Location.FCC),
        _correction_kernel,
        grid,
        u,
        U,
        U_avg,
        Hu,
    )
    kernels.launch(
        kernels.describe_domain(grid, "xyz", Location.CFC),
        _correction_kernel,
        grid,
        v,
        V,
        V_avg,
        Hv,
    )


def _u_substep(i, j, grid: Grid, dtau, g, U, eta, Gu, Hu):
    gradient = operators.conditional_partial_x_f_bound(i, j, None, grid, eta)
    U.all_values[U.index(i, j)] = (
        U.at(i, j) + dtau * (-g * Hu.at(i, j) * gradient + Gu.at(i, j))
    ) * operators.active(i, j, None, grid, Location.FCC)


def _v_substep(i, j, grid: Grid, dtau, g, V, eta, Gv, Hv):
    gradient = operators.conditional_partial_y_f_bound(i, j, None, grid, eta)
    V.all_values[V.index(i, j)] = (
        V.at(i, j) + dtau * (-g * Hv.at(i, j) * gradient + Gv.at(i, j))
    ) * operators.active(i, j, None, grid, Location.CFC)


def _eta_substep(i, j, grid: Grid, dtau, weight_eta, weight_velocity, state):
    eta = state.eta
    index = eta.index(i, j)
    eta.all_values[index] = eta.at(i, j) - dtau * operators.div_xy_c_bound(
        i, j, None, grid, state.U, state.V
    )
    state.eta_avg.all_values[index] += weight_eta * eta.at(i, j)
    state.U_avg.all_values[index] += weight_velocity * state.U.at(i, j)
    state.V_avg.all_values[index] += weight_velocity * state.V.at(i, j)


class SplitExplicitFreeSurface:
    """Split-explicit free surface

    Args:
        substeps: number of barotropic sub-steps per outer time step (before
            dropping trailing sub-steps without weight). If not provided, it is
            derived from ``cfl`` and the outer time step.
        cfl: target barotropic Courant number. If ``substeps`` is provided too, the
            sub-step size is checked against it; otherwise it defaults to 1 for
            that check.
        averaging_kernel: function of dimensionless time that provides the
            averaging weights
        gravitational_acceleration: gravitational acceleration (m s-2)
    """

    def __init__(
        self,
        substeps: Optional[int] = None,
        cfl: Optional[float] = None,
        averaging_kernel: Callable = averaging_shape_function,
        gravitational_acceleration: float = GRAVITY,
    ):
        if substeps is None and cfl is None:
            raise ConfigurationError(
                "Either the number of substeps or a target CFL number must be"
                " provided for the split-explicit free surface."
            )
        if substeps is not None and substeps < 1:
            raise ConfigurationError(
                "Number of substeps is %i but must be >= 1" % substeps
            )
        self.substeps = substeps
        self.cfl = cfl
        self.averaging_kernel = averaging_kernel
        self.gravitational_acceleration = gravitational_acceleration
        self.settings: Optional[SplitExplicitSettings] = None
        self.grid: Optional[Grid] = None

    def initialize(
        self,
        grid: Grid,
        logger: Optional[logging.Logger] = None,
        timestep: Optional[float] = None,
    ):
        self.grid = grid
        self.logger = (logger or grid.root_logger).getChild("free_surface")
        self.maxdt = grid.cfl_check(
            gravity=self.gravitational_acceleration, log=False
        )
        self.logger.info("Maximum barotropic time step: %.3f s" % self.maxdt)
        self.state = BarotropicState(grid)
        self.auxiliary = Auxiliary(grid)
        if timestep is not None:
            self.configure(timestep)

    def configure(self, timestep: float) -> SplitExplicitSettings:
        """Sub-stepping settings for the given outer time step. These are computed
        once and then reused for as long as the time step does not change."""
        if self.settings is not None and self.settings.timestep == timestep:
            return self.settings
        cfl = 1.0 if self.cfl is None else self.cfl
        if self.substeps is None:
            substeps = max(int(np.ceil(2.0 * timestep / (cfl * self.maxdt))), 1)
        else:
            substeps = self.substeps
            substep_size = 2.0 * timestep / substeps
            if substep_size > cfl * self.maxdt:
                raise ConfigurationError(
                    "Barotropic substep of %.3f s (%i substeps for time step %s s)"
                    " exceeds the maximum of %.3f s for CFL number %s."
                    " Increase the number of substeps to at least %i."
                    % (
                        substep_size,
                        substeps,
                        timestep,
                        cfl * self.maxdt,
                        cfl,
                        int(np.ceil(2.0 * timestep / (cfl * self.maxdt))),
                    )
                )
        self.settings = SplitExplicitSettings(
            substeps,
            timestep,
            averaging_kernel=self.averaging_kernel,
            cfl=cfl,
            gravitational_acceleration=self.gravitational_acceleration,
        )
        self.logger.info(
            "Using %i barotropic substeps of %.3f s (%i with nonzero weight)"
            % (
                self.settings.substeps,
                self.settings.substep_size,
                self.settings.active_substeps,
            )
        )
        return self.settings

    @property
    def eta(self) -> core.Field:
        return self.state.eta

    @property
    def U(self) -> core.Field:
        return self.state.U

    @property
    def V(self) -> core.Field:
        return self.state.V

    def set_transports(self, u: core.Field, v: core.Field):
        """Set the transports to the depth integrals of the 3D velocities"""
        barotropic_mode(self.state.U, self.state.V, self.grid, u, v)

    def correct(self, u: core.Field, v: core.Field):
        """Make the depth integrals of u and v match the averaged transports.
        The next barotropic cycle starts from the depth integrals of u and v as
        they were before this correction."""
        aux, state = self.auxiliary, self.state
        barotropic_mode(aux.U_instantaneous, aux.V_instantaneous, self.grid, u, v)
        barotropic_correction(
            u,
            v,
            aux.U_instantaneous,
            aux.V_instantaneous,
            state.U_avg,
            state.V_avg,
            aux.Hu,
            aux.Hv,
        )
        state.U.all_values[...] = aux.U_instantaneous.all_values
        state.V.all_values[...] = aux.V_instantaneous.all_values

    def __repr__(self) -> str:
        return "SplitExplicitFreeSurface(substeps=%s, cfl=%s)" % (
            self.substeps,
            self.cfl,
        )


def _blend(out: core.Field, Gn: core.Field, G_previous: Optional[core.Field], chi):
    if G_previous is None:
        out.all_values[...] = Gn.all_values
    else:
        out.all_values[...] = (1.5 + chi) * Gn.all_values - (0.5 + chi) * G_previous.all_values


def step_free_surface(
    free_surface: SplitExplicitFreeSurface,
    Gn: Mapping[str, core.Field],
    G_previous: Optional[Mapping[str, core.Field]],
    timestep: float,
    chi: float = 0.1,
) -> bool:
    """Advance the barotropic state over one outer time step, and reset the surface
    elevation to its sub-step average. The transports keep their final sub-step
    values until :meth:`SplitExplicitFreeSurface.correct` replaces them.

    Args:
        free_surface: free surface to advance
        Gn: current tendencies of ``u`` and ``v`` (excluding the surface pressure
            gradient)
        G_previous: tendencies of the previous time step, ``None`` at the first step
        timestep: outer time step (s)
        chi: Adams-Bashforth extrapolation parameter

    Returns:
        whether the state was advanced. A zero time step only logs a warning.
    """
    if timestep == 0:
        free_surface.logger.warning(
            "Time step is 0: free surface is not advanced"
        )
        return False
    settings = free_surface.configure(timestep)
    grid, state, aux = free_surface.grid, free_surface.state, free_surface.auxiliary

    _blend(aux.Gu_blend, Gn["u"], None if G_previous is None else G_previous["u"], chi)
    _blend(aux.Gv_blend, Gn["v"], None if G_previous is None else G_previous["v"], chi)
    barotropic_mode(aux.Gu, aux.Gv, grid, aux.Gu_blend, aux.Gv_blend)

    state.reset_averages()

    u_space = kernels.describe_domain(grid, "xy", Location.FCC, exclude_periphery=True)
    v_space = kernels.describe_domain(grid, "xy", Location.CFC, exclude_periphery=True)
    eta_space = kernels.describe_domain(grid, "xy")
    dtau = settings.substep_size
    g = settings.gravitational_acceleration
    for substep in range(settings.active_substeps):
        kernels.launch(
            u_space, _u_substep, grid, dtau, g, state.U, state.eta, aux.Gu, aux.Hu,
            logger=free_surface.logger,
        )
        kernels.launch(
            v_space, _v_substep, grid, dtau, g, state.V, state.eta, aux.Gv, aux.Hv,
            logger=free_surface.logger,
        )
        kernels.launch(
            eta_space,
            _eta_substep,
            grid,
            dtau,
            settings.free_surface_weights[substep],
            settings.velocity_weights[substep],
            state,
            logger=free_surface.logger,
        )

    state.eta.values[...] = state.eta_avg.values
    return True


class ExplicitFreeSurface:
    """Free surface stepped together with the 3D state by the outer time stepper.
    The surface pressure gradient enters the momentum tendencies. Requires a time
    step below the limit of :meth:`~pyocean.domain.Grid.cfl_check`."""

    def __init__(self, gravitational_acceleration: float = GRAVITY):
        self.gravitational_acceleration = gravitational_acceleration
        self.grid: Optional[Grid] = None

    def initialize(
        self,
        grid: Grid,
        logger: Optional[logging.Logger] = None,
        timestep: Optional[float] = None,
    ):
        self.grid = grid
        self.logger = (logger or grid.root_logger).getChild("free_surface")
        self.eta = grid.array(
            location=Location.CCF,
            name="eta",
            units="m",
            long_name="surface elevation",
            register=False,
        )
        self.U = grid.array(location=Location.FCC, name="U", register=False)
        self.V = grid.array(location=Location.CFC, name="V", register=False)

    def set_transports(self, u: core.Field, v: core.Field):
        barotropic_mode(self.U, self.V, self.grid, u, v)
        self.U.update_halos()
        self.V.update_halos()

    def tendency(self, i, j, grid: Grid):
        """Tendency of the surface elevation: convergence of the transports"""
        return -operators.div_xy_c(i, j, None, grid, self.U, self.V)

    def x_gradient(self, i, j, k, grid: Grid):
        return -self.gravitational_acceleration * operators.conditional_partial_x_f(
            i, j, None, grid, self.eta
        )

    def y_gradient(self, i, j, k, grid: Grid):
        return -self.gravitational_acceleration * operators.conditional_partial_y_f(
            i, j, None, grid, self.eta
        )

    def __repr__(self) -> str:
        return "ExplicitFreeSurface(gravitational_acceleration=%s)" % (
            self.gravitational_acceleration
        )
