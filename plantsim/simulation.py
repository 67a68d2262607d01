"""
Simulation session: the world, its context and the scheduler in one place.

Typical use::

    sim = Simulation(SimConfig(), PrototypeRegistry.default(), terrain=FlatTerrain())
    sim.add_plant((0.0, 0.0, 0.0), GrowthControlFactors.broadleaf())
    sim.run(5.0)  # five seconds of wall time, 50 ticks at the default period
    for branch in sim.drain_dirty_branches():
        ...
    snapshots = sim.snapshot()
"""

import logging
from datetime import timedelta
from typing import Sequence

import numpy as np

from plantsim.config import GrowthControlFactors, PlasticityParameters, SimConfig
from plantsim.context import SimulationContext
from plantsim.entities import CommandBuffer, EntityId, World
from plantsim.plants import spawn_plant
from plantsim.prototypes import PrototypeRegistry
from plantsim.schedule import DEFAULT_PHASES, FixedSchedule, GrowthPipeline, Phase
from plantsim.snapshot import PlantSnapshot, take_snapshot
from plantsim.species import SpeciesSampler
from plantsim.terrain import Collider

logger = logging.getLogger(__name__)


class Simulation:
    """
    One growth session.

    Args:
        config: Engine constants (defaults to ``SimConfig()``)
        prototypes: Branch prototypes (defaults to ``PrototypeRegistry.default()``)
        terrain: Ray-cast target for planting and seeding
        species: Species to pick from when planting on terrain
        phases: Growth phases run each tick, in order
    """

    def __init__(
        self,
        config: SimConfig | None = None,
        prototypes: PrototypeRegistry | None = None,
        terrain: Collider | None = None,
        species: SpeciesSampler | None = None,
        phases: Sequence[Phase] = DEFAULT_PHASES,
    ):
        self.config = config or SimConfig()
        self.world = World()
        self.context = SimulationContext.create(
            self.config, prototypes or PrototypeRegistry.default(), terrain, species
        )
        self.pipeline = GrowthPipeline(phases)
        self.schedule = FixedSchedule(self.config.tick_period, self.tick)
        logger.info(
            "Simulation ready: %d prototypes, tick period %.3fs",
            len(self.context.prototypes),
            self.config.tick_period,
        )

    @property
    def ticks(self) -> int:
        return self.context.ticks

    def add_plant(
        self,
        position: Sequence[float] | np.ndarray,
        growth: GrowthControlFactors | None = None,
        plasticity: PlasticityParameters | None = None,
        climate_adaptation: float = 1.0,
        species: int | None = None,
    ) -> EntityId:
        """Spawn a plant immediately and return its id."""
        commands = CommandBuffer(self.world)
        plant = spawn_plant(
            commands,
            self.context,
            np.asarray(position, dtype=float),
            growth or GrowthControlFactors(),
            plasticity or PlasticityParameters(),
            climate_adaptation=climate_adaptation,
            species=species,
        )
        commands.apply()
        return plant

    def plant_on_terrain(self, x: float, z: float) -> EntityId | None:
        """
        Drop a plant onto the terrain at (x, z).

        With a species sampler the species is picked for the site's
        temperature and moisture; without one the default parameters are
        used. Returns None when the ray misses or no species fits the site.
        """
        terrain = self.context.terrain
        if terrain is None:
            raise ValueError("planting on terrain needs a terrain")
        origin = np.array([x, terrain.max_height, z], dtype=float)
        hit = terrain.check_ray(origin, np.array([0.0, -1.0, 0.0]), np.inf)
        if hit is None:
            return None

        species = self.context.species
        if species is None:
            return self.add_plant(hit.position)
        climate = self.config.climate
        choice = species.get_plant(
            climate.temperature_at(float(hit.position[1])), climate.moisture, self.context.rng
        )
        if choice is None:
            return None
        index, adaptation = choice
        return self.add_plant(
            hit.position,
            species[index].growth,
            species[index].plasticity,
            climate_adaptation=adaptation,
            species=index,
        )

    def tick(self) -> None:
        """Run the growth pipeline once."""
        self.pipeline.run_tick(self.world, self.context)

    def run(self, delta: float | timedelta) -> int:
        """Advance wall time; returns how many ticks ran."""
        return self.schedule.run(delta)

    def drain_dirty_branches(self) -> list[EntityId]:
        """Branches whose geometry changed since the last drain, oldest first."""
        return self.context.drain_dirty()

    def snapshot(self) -> list[PlantSnapshot]:
        return take_snapshot(self.world)
