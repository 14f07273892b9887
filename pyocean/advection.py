"""Flux-form advection of tracers and momentum.

Fluxes are transports (velocity times face area) multiplied by a reconstruction of
the advected quantity at the face. Fluxes through inactive faces and through the
bottom and surface interfaces are zero, so that advection conserves the domain
integral in closed basins.
"""

import enum

import numpy as np

from . import operators
from .domain import Grid, Location
from .operators import Ax, Ay, Az, volume, active


class AdvectionScheme(enum.IntEnum):
    CENTERED_SECOND_ORDER = 1  #: arithmetic mean of neighboring values
    UPWIND_FIRST_ORDER = 2  #: value upstream of the face
    UPWIND_THIRD_ORDER = 3  #: upwind-biased third-order polynomial
    DEFAULT = CENTERED_SECOND_ORDER

    @property
    def required_halo(self) -> int:
        """Number of halo points needed by the stencil"""
        return 2 if self == AdvectionScheme.UPWIND_THIRD_ORDER else 1


def required_halo(scheme) -> int:
    return 0 if scheme is None else AdvectionScheme(scheme).required_halo


def _shift(axis: int, i, j, k, offset: int):
    return operators._shift(axis, i, j, k, offset)


def _at(axis: int, i, j, k, q, offset: int):
    ii, jj, kk = _shift(axis, i, j, k, offset)
    if axis == 2:
        # stencils are truncated at the bottom and surface
        kk = np.clip(kk, 0, q.all_values.shape[0] - 1)
    return q.at(ii, jj, kk)


def _reconstruct(scheme, axis: int, i, j, k, grid: Grid, transport, q):
    """Value of ``q`` at the face between points ``-1`` and ``0`` along ``axis``"""
    upstream = _at(axis, i, j, k, q, -1)
    downstream = _at(axis, i, j, k, q, 0)
    if scheme == AdvectionScheme.UPWIND_FIRST_ORDER:
        return np.where(transport > 0.0, upstream, downstream)
    elif scheme == AdvectionScheme.UPWIND_THIRD_ORDER:
        positive = (-_at(axis, i, j, k, q, -2) + 5.0 * upstream + 2.0 * downstream) / 6.0
        negative = (2.0 * upstream + 5.0 * downstream - _at(axis, i, j, k, q, 1)) / 6.0
        return np.where(transport > 0.0, positive, negative)
    return 0.5 * (upstream + downstream)


def _reconstruct_c(scheme, axis: int, i, j, k, grid: Grid, transport, q):
    """Value of ``q`` at the center between faces ``0`` and ``1`` along ``axis``"""
    return _reconstruct(scheme, axis, *_shift(axis, i, j, k, 1), grid, transport, q)


def _interior_interface(k, grid: Grid):
    return (k > 0) & (k < grid.nz)


# Tracers


def tracer_flux_x(i, j, k, grid: Grid, scheme, u, c):
    transport = Ax(i, j, k, grid, Location.FCC) * u.at(i, j, k)
    value = _reconstruct(scheme, 0, i, j, k, grid, transport, c)
    return np.where(active(i, j, k, grid, Location.FCC), transport * value, 0.0)


def tracer_flux_y(i, j, k, grid: Grid, scheme, v, c):
    transport = Ay(i, j, k, grid, Location.CFC) * v.at(i, j, k)
    value = _reconstruct(scheme, 1, i, j, k, grid, transport, c)
    return np.where(active(i, j, k, grid, Location.CFC), transport * value, 0.0)


def tracer_flux_z(i, j, k, grid: Grid, scheme, w, c):
    inner = _interior_interface(k, grid)
    kk = np.clip(k, 1, max(grid.nz - 1, 1))
    transport = Az(i, j, kk, grid, Location.CCF) * w.at(i, j, kk)
    value = _reconstruct(scheme, 2, i, j, kk, grid, transport, c)
    return np.where(inner & active(i, j, k, grid, Location.CCF), transport * value, 0.0)


def div_uc(i, j, k, grid: Grid, scheme, u, v, w, c):
    """Divergence of the advective tracer flux at cell centers"""
    if scheme is None:
        return operators._zeros(i, j, k)
    return (
        operators.delta_x_c(i, j, k, grid, tracer_flux_x, scheme, u, c)
        + operators.delta_y_c(i, j, k, grid, tracer_flux_y, scheme, v, c)
        + operators.delta_z_c(i, j, k, grid, tracer_flux_z, scheme, w, c)
    ) / volume(i, j, k, grid, Location.CCC)


# Momentum


def _momentum_flux_uu(i, j, k, grid: Grid, scheme, u, v, w):
    # at CCC
    transport = 0.5 * (
        Ax(i, j, k, grid, Location.FCC) * u.at(i, j, k)
        + Ax(i + 1, j, k, grid, Location.FCC) * u.at(i + 1, j, k)
    )
    return transport * _reconstruct_c(scheme, 0, i, j, k, grid, transport, u)


def _momentum_flux_vu(i, j, k, grid: Grid, scheme, u, v, w):
    # at FFC
    transport = 0.5 * (
        Ay(i - 1, j, k, grid, Location.CFC) * v.at(i - 1, j, k)
        + Ay(i, j, k, grid, Location.CFC) * v.at(i, j, k)
    )
    flux = transport * _reconstruct(scheme, 1, i, j, k, grid, transport, u)
    return np.where(active(i, j, k, grid, Location.FFC), flux, 0.0)


def _momentum_flux_wu(i, j, k, grid: Grid, scheme, u, v, w):
    # at FCF
    kk = np.clip(k, 1, max(grid.nz - 1, 1))
    transport = 0.5 * (
        Az(i - 1, j, kk, grid, Location.CCF) * w.at(i - 1, j, kk)
        + Az(i, j, kk, grid, Location.CCF) * w.at(i, j, kk)
    )
    flux = transport * _reconstruct(scheme, 2, i, j, kk, grid, transport, u)
    return np.where(_interior_interface(k, grid), flux, 0.0)


def _momentum_flux_uv(i, j, k, grid: Grid, scheme, u, v, w):
    # at FFC
    transport = 0.5 * (
        Ax(i, j - 1, k, grid, Location.FCC) * u.at(i, j - 1, k)
        + Ax(i, j, k, grid, Location.FCC) * u.at(i, j, k)
    )
    flux = transport * _reconstruct(scheme, 0, i, j, k, grid, transport, v)
    return np.where(active(i, j, k, grid, Location.FFC), flux, 0.0)


def _momentum_flux_vv(i, j, k, grid: Grid, scheme, u, v, w):
    # at CCC
    transport = 0.5 * (
        Ay(i, j, k, grid, Location.CFC) * v.at(i, j, k)
        + Ay(i, j + 1, k, grid, Location.CFC) * v.at(i, j + 1, k)
    )
    return transport * _reconstruct_c(scheme, 1, i, j, k, grid, transport, v)


def _momentum_flux_wv(i, j, k, grid: Grid, scheme, u, v, w):
    # at CFF
    kk = np.clip(k, 1, max(grid.nz - 1, 1))
    transport = 0.5 * (
        Az(i, j - 1, kk, grid, Location.CCF) * w.at(i, j - 1, kk)
        + Az(i, j, kk, grid, Location.CCF) * w.at(i, j, kk)
    )
    flux = transport * _reconstruct(scheme, 2, i, j, kk, grid, transport, v)
    return np.where(_interior_interface(k, grid), flux, 0.0)


def div_uu(i, j, k, grid: Grid, scheme, u, v, w):
    """Divergence of the advective flux of x-momentum at x-faces"""
    if scheme is None:
        return operators._zeros(i, j, k)
    args = (scheme, u, v, w)
    return (
        operators.delta_x_f(i, j, k, grid, _momentum_flux_uu, *args)
        + operators.delta_y_c(i, j, k, grid, _momentum_flux_vu, *args)
        + operators.delta_z_c(i, j, k, grid, _momentum_flux_wu, *args)
    ) / volume(i, j, k, grid, Location.FCC)


def div_uv(i, j, k, grid: Grid, scheme, u, v, w):
    """Divergence of the advective flux of y-momentum at y-faces"""
    if scheme is None:
        return operators._zeros(i, j, k)
    args = (scheme, u, v, w)
    return (
        operators.delta_x_c(i, j, k, grid, _momentum_flux_uv, *args)
        + operators.delta_y_f(i, j, k, grid, _momentum_flux_vv, *args)
        + operators.delta_z_c(i, j, k, grid, _momentum_flux_wv, *args)
    ) / volume(i, j, k, grid, Location.CFC)
