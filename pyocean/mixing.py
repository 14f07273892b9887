from typing import Mapping, Union

import numpy as np

from . import operators
from .domain import Grid, Location
from .operators import Ax, Ay, Az, volume, active


class ScalarDiffusivity:
    """Closure with prescribed, constant viscosity and diffusivity. Fluxes through
    inactive faces and through the bottom and surface interfaces are zero; boundary
    fluxes are added separately by boundary conditions.

    Args:
        horizontal_viscosity: horizontal viscosity (m2 s-1)
        vertical_viscosity: vertical viscosity (m2 s-1)
        horizontal_diffusivity: horizontal tracer diffusivity (m2 s-1), either a
            single value or a mapping from tracer name to value
        vertical_diffusivity: vertical tracer diffusivity (m2 s-1), either a
            single value or a mapping from tracer name to value
    """

    def __init__(
        self,
        horizontal_viscosity: float = 0.0,
        vertical_viscosity: float = 0.0,
        horizontal_diffusivity: Union[float, Mapping[str, float]] = 0.0,
        vertical_diffusivity: Union[float, Mapping[str, float]] = 0.0,
    ):
        self.horizontal_viscosity = horizontal_viscosity
        self.vertical_viscosity = vertical_viscosity
        self.horizontal_diffusivity = horizontal_diffusivity
        self.vertical_diffusivity = vertical_diffusivity

    def diffusivities(self, name: str):
        kh, kz = self.horizontal_diffusivity, self.vertical_diffusivity
        if isinstance(kh, Mapping):
            kh = kh.get(name, 0.0)
        if isinstance(kz, Mapping):
            kz = kz.get(name, 0.0)
        return kh, kz

    def tracer_tendency(self, i, j, k, grid: Grid, name: str, c):
        """Divergence of the diffusive flux of tracer ``c`` at cell centers"""
        kh, kz = self.diffusivities(name)
        return (
            operators.delta_x_c(i, j, k, grid, _diffusive_flux_x, kh, c)
            + operators.delta_y_c(i, j, k, grid, _diffusive_flux_y, kh, c)
            + operators.delta_z_c(i, j, k, grid, _diffusive_flux_z, kz, c)
        ) / volume(i, j, k, grid, Location.CCC)

    def x_tendency(self, i, j, k, grid: Grid, u):
        """Divergence of the viscous flux of x-momentum at x-faces"""
        nuh, nuz = self.horizontal_viscosity, self.vertical_viscosity
        return (
            operators.delta_x_f(i, j, k, grid, _viscous_flux_ux, nuh, u)
            + operators.delta_y_c(i, j, k, grid, _viscous_flux_uy, nuh, u)
            + operators.delta_z_c(i, j, k, grid, _viscous_flux_uz, nuz, u)
        ) / volume(i, j, k, grid, Location.FCC)

    def y_tendency(self, i, j, k, grid: Grid, v):
        """Divergence of the viscous flux of y-momentum at y-faces"""
        nuh, nuz = self.horizontal_viscosity, self.vertical_viscosity
        return (
            operators.delta_x_c(i, j, k, grid, _viscous_flux_vx, nuh, v)
            + operators.delta_y_f(i, j, k, grid, _viscous_flux_vy, nuh, v)
            + operators.delta_z_c(i, j, k, grid, _viscous_flux_vz, nuz, v)
        ) / volume(i, j, k, grid, Location.CFC)

    def __repr__(self) -> str:
        return (
            "ScalarDiffusivity(horizontal_viscosity=%s, vertical_viscosity=%s,"
            " horizontal_diffusivity=%s, vertical_diffusivity=%s)"
            % (
                self.horizontal_viscosity,
                self.vertical_viscosity,
                self.horizontal_diffusivity,
                self.vertical_diffusivity,
            )
        )


def _vertical_flux(i, j, k, grid: Grid, location: Location, kappa, q):
    kk = np.clip(k, 1, max(grid.nz - 1, 1))
    flux = (
        Az(i, j, kk, grid, location)
        * kappa
        * operators.partial_z_f(i, j, kk, grid, q)
    )
    inner = (k > 0) & (k < grid.nz)
    return np.where(inner & active(i, j, k, grid, location), flux, 0.0)


def _diffusive_flux_x(i, j, k, grid: Grid, kappa, c):
    flux = Ax(i, j, k, grid, Location.FCC) * kappa * operators.partial_x_f(i, j, k, grid, c)
    return np.where(active(i, j, k, grid, Location.FCC), flux, 0.0)


def _diffusive_flux_y(i, j, k, grid: Grid, kappa, c):
    flux = Ay(i, j, k, grid, Location.CFC) * kappa * operators.partial_y_f(i, j, k, grid, c)
    return np.where(active(i, j, k, grid, Location.CFC), flux, 0.0)


def _diffusive_flux_z(i, j, k, grid: Grid, kappa, c):
    return _vertical_flux(i, j, k, grid, Location.CCF, kappa, c)


def _viscous_flux_ux(i, j, k, grid: Grid, nu, u):
    # at CCC
    flux = Ax(i, j, k, grid, Location.CCC) * nu * operators.partial_x_c(i, j, k, grid, u)
    return np.where(active(i, j, k, grid, Location.CCC), flux, 0.0)


def _viscous_flux_uy(i, j, k, grid: Grid, nu, u):
    # at FFC
    flux = Ay(i, j, k, grid, Location.FFC) * nu * operators.partial_y_f(i, j, k, grid, u)
    return np.where(active(i, j, k, grid, Location.FFC), flux, 0.0)


def _viscous_flux_uz(i, j, k, grid: Grid, nu, u):
    return _vertical_flux(i, j, k, grid, Location.FCF, nu, u)


def _viscous_flux_vx(i, j, k, grid: Grid, nu, v):
    # at FFC
    flux = Ax(i, j, k, grid, Location.FFC) * nu * operators.partial_x_f(i, j, k, grid, v)
    return np.where(active(i, j, k, grid, Location.FFC), flux, 0.0)


def _viscous_flux_vy(i, j, k, grid: Grid, nu, v):
    # at CCC
    flux = Ay(i, j, k, grid, Location.CCC) * nu * operators.partial_y_c(i, j, k, grid, v)
    return np.where(active(i, j, k, grid, Location.CCC), flux, 0.0)


def _viscous_flux_vz(i, j, k, grid: Grid, nu, v):
    return _vertical_flux(i, j, k, grid, Location.CFF, nu, v)
