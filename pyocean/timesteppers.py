from typing import Mapping, Optional

from . import core


class Clock:
    """Model time (s since start) and iteration count"""

    def __init__(self, time: float = 0.0, iteration: int = 0):
        self.time = time
        self.iteration = iteration
        self.stage = 1

    def tick(self, timestep: float, stage: bool = False):
        """Advance the time. ``stage=True`` advances the time within a multi-stage
        step without completing an iteration."""
        self.time += timestep
        if not stage:
            self.iteration += 1
            self.stage = 1
        else:
            self.stage += 1

    def __repr__(self) -> str:
        return "Clock(time=%s, iteration=%i)" % (self.time, self.iteration)


def _update(
    field: core.Field,
    timestep: float,
    a: float,
    Gn: core.Field,
    b: float,
    G_previous: Optional[core.Field],
    mask,
):
    increment = a * Gn.values
    if G_previous is not None and b != 0.0:
        increment = increment - b * G_previous.values
    field.values[...] += timestep * increment * mask


class QuasiAdamsBashforth2:
    """Adams-Bashforth scheme with extrapolation parameter ``chi``:
    ``q += dt * ((1.5 + chi) Gn - (0.5 + chi) G_previous)``.
    The first step (no previous tendency) is forward Euler."""

    stages = 1

    def __init__(self, chi: float = 0.1):
        self.chi = chi

    def effective_chi(self, first_step: bool) -> float:
        return -0.5 if first_step else self.chi

    def step(
        self,
        fields: Mapping[str, core.Field],
        Gn: Mapping[str, core.Field],
        G_previous: Optional[Mapping[str, core.Field]],
        timestep: float,
        masks: Mapping[str, object],
    ):
        chi = self.effective_chi(G_previous is None)
        for name, field in fields.items():
            _update(
                field,
                timestep,
                1.5 + chi,
                Gn[name],
                0.5 + chi,
                None if G_previous is None else G_previous[name],
                masks[name],
            )

    def __repr__(self) -> str:
        return "QuasiAdamsBashforth2(chi=%s)" % self.chi


class RungeKutta3:
    """Low-storage third-order Runge-Kutta scheme of Le and Moin (1991):
    stage m updates ``q += dt * (gamma[m] Gn + zeta[m] G_previous)``."""

    stages = 3
    gamma = (8.0 / 15.0, 5.0 / 12.0, 3.0 / 4.0)
    zeta = (0.0, -17.0 / 60.0, -5.0 / 12.0)

    def stage_fraction(self, stage: int) -> float:
        """Fraction of the time step covered by the given stage (0-based)"""
        return self.gamma[stage] + self.zeta[stage]

    def step_stage(
        self,
        stage: int,
        fields: Mapping[str, core.Field],
        Gn: Mapping[str, core.Field],
        G_previous: Optional[Mapping[str, core.Field]],
        timestep: float,
        masks: Mapping[str, object],
    ):
        for name, field in fields.items():
            _update(
                field,
                timestep,
                self.gamma[stage],
                Gn[name],
                -self.zeta[stage],
                None if G_previous is None or stage == 0 else G_previous[name],
                masks[name],
            )

    def __repr__(self) -> str:
        return "RungeKutta3()"


def create(timestepper) -> object:
    """Time stepper from an instance or a name"""
    if isinstance(timestepper, str):
        names = {
            "QuasiAdamsBashforth2": QuasiAdamsBashforth2,
            "RungeKutta3": RungeKutta3,
        }
        if timestepper not in names:
            raise Exception(
                "Unknown time stepper %r. Valid values: %s"
                % (timestepper, ", ".join(names))
            )
        return names[timestepper]()
    return timestepper
