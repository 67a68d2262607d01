"""Shared services handed to every growth phase."""

from collections import deque
from dataclasses import dataclass, field

import numpy as np

from plantsim.config import SimConfig
from plantsim.entities import EntityId
from plantsim.light import LightCells
from plantsim.prototypes import PrototypeRegistry, PrototypeSampler
from plantsim.species import SpeciesSampler
from plantsim.terrain import Collider


@dataclass
class SimulationContext:
    """
    Everything a phase may consult besides the world itself.

    The light field is rebuilt by the light phase each tick; the registry
    and sampler never change during a session. ``dirty_branches`` collects
    branches whose geometry changed so a mesh builder can pick them up.
    """

    config: SimConfig
    light: LightCells
    prototypes: PrototypeRegistry
    sampler: PrototypeSampler
    rng: np.random.Generator
    terrain: Collider | None = None
    species: SpeciesSampler | None = None
    dirty_branches: deque[EntityId] = field(default_factory=deque)
    _queued: set[EntityId] = field(default_factory=set, init=False, repr=False)
    ticks: int = 0

    @classmethod
    def create(
        cls,
        config: SimConfig,
        prototypes: PrototypeRegistry,
        terrain: Collider | None = None,
        species: SpeciesSampler | None = None,
    ) -> "SimulationContext":
        sampler = PrototypeSampler.create(
            prototypes.positions,
            size=config.sampler_size,
            max_apical=config.max_apical,
            max_determinacy=config.max_determinacy,
        )
        return cls(
            config=config,
            light=LightCells(config.light_check_height, config.light_cell_size),
            prototypes=prototypes,
            sampler=sampler,
            rng=np.random.default_rng(config.seed),
            terrain=terrain,
            species=species,
        )

    def mark_dirty(self, branch: EntityId) -> None:
        if branch not in self._queued:
            self._queued.add(branch)
            self.dirty_branches.append(branch)

    def drain_dirty(self) -> list[EntityId]:
        """Hand over the queued branches in the order they were marked."""
        dirty = list(self.dirty_branches)
        self.dirty_branches.clear()
        self._queued.clear()
        return dirty
