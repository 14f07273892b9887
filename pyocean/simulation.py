from typing import Union, Optional, Mapping, Tuple
import logging
import datetime
import timeit
import functools

import numpy as np
import cftime

from . import core
from .model import HydrostaticFreeSurfaceModel


def to_cftime(time: Union[datetime.datetime, cftime.datetime]) -> cftime.datetime:
    if isinstance(time, cftime.datetime):
        return time
    elif isinstance(time, datetime.datetime):
        return cftime.datetime(
            time.year,
            time.month,
            time.day,
            time.hour,
            time.minute,
            time.second,
            time.microsecond,
        )
    raise Exception(f"Unable to convert {time!r} to cftime.datetime")


def log_exceptions(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as e:
            logger = getattr(self, "logger", None)
            model = getattr(self, "model", None)
            tiling = None if model is None else model.grid.tiling
            if logger is None or tiling is None or tiling.n == 1:
                raise
            logger.exception(str(e), stack_info=True, stacklevel=3)
            tiling.comm.Abort(1)

    return wrapper


class Simulation:
    """Run loop around a :class:`~pyocean.model.HydrostaticFreeSurfaceModel`

    Args:
        model: model to advance
        timestep: outer time step (s). A split-explicit free surface is configured
            (and validated) for it here.
        stop_iteration: number of time steps after which :meth:`run` stops
        stop_time: simulated time (s or :class:`datetime.timedelta`) after which
            :meth:`run` stops
        logger: logger to use; defaults to the model's root logger
    """

    def __init__(
        self,
        model: HydrostaticFreeSurfaceModel,
        timestep: float,
        stop_iteration: Optional[int] = None,
        stop_time: Union[float, datetime.timedelta, None] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if stop_iteration is None and stop_time is None:
            raise Exception("Either stop_iteration or stop_time must be provided")
        if isinstance(stop_time, datetime.timedelta):
            stop_time = stop_time.total_seconds()
        if model.split_explicit_free_surface:
            model.free_surface.configure(timestep)
        self.model = model
        self.timestep = timestep
        self.stop_iteration = stop_iteration
        self.stop_time = stop_time
        self.logger = logger or model.root_logger
        self.time: Optional[cftime.datetime] = None
        self.istep = 0
        self.report = 0
        self.report_totals = 0
        self._start_time = None

    def __getitem__(self, key: str) -> core.Field:
        return self.model.fields[key]

    @log_exceptions
    def start(
        self,
        time: Union[cftime.datetime, datetime.datetime] = datetime.datetime(2000, 1, 1),
        report: Union[int, datetime.timedelta] = 10,
        report_totals: Union[int, datetime.timedelta] = 0,
    ):
        """Start the simulation: set the clock and verify the initial state is
        finite.

        Args:
            time: start date
            report: time interval or number of time steps between reporting of the
                current time, used as indicator of simulation progress
            report_totals: time interval or number of time steps between reporting
                of integrals over the global domain (0 to disable)
        """
        time = to_cftime(time)
        self.logger.info(f"Starting simulation at {time}")
        self.timedelta = datetime.timedelta(seconds=self.timestep)
        self.time = time
        self.istep = 0
        if isinstance(report, datetime.timedelta):
            report = int(round(report.total_seconds() / self.timestep))
        self.report = report
        if isinstance(report_totals, datetime.timedelta):
            report_totals = int(round(report_totals.total_seconds() / self.timestep))
        self.report_totals = report_totals

        self.model.update_state()
        self.check_finite()
        self._start_time = timeit.default_timer()

    @log_exceptions
    def advance(self, check_finite: bool = False):
        """Advance the model state by one time step

        Args:
            check_finite: after the state update, verify that all fields only contain
                finite values
        """
        self.model.time_step(self.timestep)
        self.time += self.timedelta
        self.istep += 1
        if self.report != 0 and self.istep % self.report == 0:
            self.logger.info(self.time)
        if self.report_totals != 0 and self.istep % self.report_totals == 0:
            self.report_domain_integrals()
        if check_finite:
            self.check_finite()

    @property
    def finished(self) -> bool:
        if self.stop_iteration is not None and self.istep >= self.stop_iteration:
            return True
        if self.stop_time is not None:
            return self.model.clock.time >= self.stop_time - 1e-9 * self.timestep
        return False

    def run(
        self,
        time: Union[cftime.datetime, datetime.datetime] = datetime.datetime(2000, 1, 1),
        report: Union[int, datetime.timedelta] = 10,
        report_totals: Union[int, datetime.timedelta] = 0,
        check_finite: bool = False,
    ):
        """Start, advance until the stop criterion is met, and finish"""
        self.start(time, report=report, report_totals=report_totals)
        while not self.finished:
            self.advance(check_finite=check_finite)
        self.finish()

    @log_exceptions
    def finish(self):
        nsecs = timeit.default_timer() - self._start_time
        self.logger.info(
            f"Time spent in main loop: {nsecs:.3f} s ({self.istep} time steps)"
        )
        self.report_domain_integrals()

    @property
    def totals(self) -> Tuple[Optional[float], Optional[Mapping[str, float]]]:
        """Global totals of volume (m3) and tracers (tracer units times m3).
        On non-root subdomains, this returns None, None."""
        model = self.model
        grid = model.grid
        h = grid.halo
        area = grid.dxc[np.newaxis, h:-h] * grid.dyc[h:-h, np.newaxis]
        wet = grid.mask.values != 0
        column = grid.H.values
        if model.eta is not None:
            column = column + model.eta.values
        volume = grid.array(fill=column * area, register=False)
        total_volume = volume.global_sum(where=wet)
        tracer_totals = {} if total_volume is not None else None
        cell_volume = grid.dzc[:, np.newaxis, np.newaxis] * area
        for name, tracer in model.tracers.items():
            content = grid.array(fill=tracer.values * cell_volume, register=False)
            total = content.global_sum(where=grid.active()[..., h:-h, h:-h])
            if total is not None:
                tracer_totals[name] = total
        return total_volume, tracer_totals

    def report_domain_integrals(self):
        """Write global totals of volume and tracers to the log"""
        total_volume, tracer_totals = self.totals
        if total_volume is not None:
            self.logger.info("Integrals over global domain:")
            self.logger.info(f"  volume: {total_volume:.15e} m3")
            for name, total in tracer_totals.items():
                units = self.model.tracers[name].units
                self.logger.info(f"  {name}: {total:.15e} {units or ''} m3")

    def check_finite(self):
        """Verify that all model fields contain finite values at active points.
        Fields with non-finite values are reported in the log as error messages.
        Finally, if any non-finite values were found, an exception is raised.
        """
        bad = [
            name
            for name, field in self.model.fields.items()
            if not field.require_finite(self.logger)
        ]
        if bad:
            raise Exception(
                f"Non-finite values found in {len(bad)} fields: {', '.join(bad)}"
            )
