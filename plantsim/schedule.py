"""
Fixed-timestep scheduling of the growth pipeline.

Wall time arrives in arbitrary chunks; the growth pipeline runs once per
whole tick period of accumulated time. Time is accumulated exactly, as a
rational number of nanoseconds, so the total number of ticks depends only
on the total time fed in, never on how it was chunked. A period counts as
complete once the accumulator is within half a nanosecond of it, which
absorbs the binary rounding of frame times like 1/30 s.
"""

import logging
from datetime import timedelta
from fractions import Fraction
from typing import Callable, Sequence

from plantsim import development, plants
from plantsim.context import SimulationContext
from plantsim.entities import CommandBuffer, GraphIntegrityError, World

logger = logging.getLogger(__name__)

Phase = Callable[[World, SimulationContext, CommandBuffer], None]

NANOS_PER_SECOND = 1_000_000_000
HALF_NANO = Fraction(1, 2)

DEFAULT_PHASES: tuple[Phase, ...] = (
    development.update_branch_bounds,
    plants.update_plant_bounds,
    plants.update_plant_intersections,
    plants.step_plant_age,
    development.calculate_branch_light_exposure,
    development.calculate_growth_vigor,
    development.assign_growth_rates,
    development.step_physiological_age,
    development.update_branch_nodes,
    development.determine_create_new_branches,
    development.assign_thicknesses,
    development.calculate_segment_lengths_and_tropism,
    plants.seed_plants,
)


def to_nanos(duration: float | timedelta) -> Fraction:
    """Exact nanoseconds in a duration; floats are not rounded."""
    if isinstance(duration, timedelta):
        return Fraction(
            duration.days * 86_400 * NANOS_PER_SECOND
            + duration.seconds * NANOS_PER_SECOND
            + duration.microseconds * 1_000
        )
    return Fraction(duration) * NANOS_PER_SECOND


class FixedSchedule:
    """
    Runs a callback once per elapsed period.

    Args:
        period: Seconds (or a timedelta) of accumulated time per tick
        callback: Invoked once per tick
    """

    def __init__(self, period: float | timedelta, callback: Callable[[], None]):
        self.period = to_nanos(period)
        if self.period < 1:
            raise ValueError("period must be at least one nanosecond")
        self.callback = callback
        self.accumulated = Fraction(0)

    def run(self, delta: float | timedelta) -> int:
        """
        Add elapsed time and run every tick it completes.

        Returns:
            Number of ticks run
        """
        elapsed = to_nanos(delta)
        if elapsed < 0:
            raise ValueError("elapsed time cannot be negative")
        self.accumulated += elapsed
        ticks = 0
        while self.accumulated >= self.period - HALF_NANO:
            self.accumulated -= self.period
            self.callback()
            ticks += 1
        return ticks


class GrowthPipeline:
    """
    Ordered growth phases with a command-buffer barrier after each.

    A phase that hits an unresolvable id aborts the tick.
    """

    def __init__(self, phases: Sequence[Phase] = DEFAULT_PHASES):
        self.phases = tuple(phases)

    def run_tick(self, world: World, ctx: SimulationContext) -> None:
        commands = CommandBuffer(world)
        for phase in self.phases:
            try:
                phase(world, ctx, commands)
                applied = commands.apply()
            except GraphIntegrityError:
                logger.error("Tick %d aborted in %s", ctx.ticks, phase.__name__)
                raise
            if applied:
                logger.debug("%s: applied %d deferred commands", phase.__name__, applied)
        ctx.ticks += 1
