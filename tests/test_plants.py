"""
Tests for plant spawning, ageing, overlap and seeding.
"""

import numpy as np
import pytest

from plantsim.config import GrowthControlFactors, PlasticityParameters, SimConfig
from plantsim.context import SimulationContext
from plantsim.entities import CommandBuffer, EntityId, World
from plantsim.geometry import BoundingBox, BoundingSphere
from plantsim.plants import (
    is_flowering,
    seed_plants,
    spawn_plant,
    step_plant_age,
    update_plant_bounds,
    update_plant_intersections,
)
from plantsim.prototypes import PrototypeRegistry
from plantsim.species import Habitat, Species, SpeciesSampler
from plantsim.terrain import FlatTerrain


def make_context(**kwargs) -> SimulationContext:
    return SimulationContext.create(
        SimConfig(sampler_size=(20, 20)), PrototypeRegistry.default(), **kwargs
    )


def make_plant(
    world: World,
    ctx: SimulationContext,
    position: tuple[float, float, float] = (0.0, 0.0, 0.0),
    plasticity: PlasticityParameters | None = None,
    species: int | None = None,
) -> EntityId:
    commands = CommandBuffer(world)
    plant = spawn_plant(
        commands,
        ctx,
        np.array(position),
        GrowthControlFactors(),
        plasticity or PlasticityParameters(),
        species=species,
    )
    commands.apply()
    return plant


def run_phase(phase, world: World, ctx: SimulationContext) -> int:
    commands = CommandBuffer(world)
    phase(world, ctx, commands)
    return commands.apply()


class TestSpawnPlant:
    """Tests for creating a plant with its root branch."""

    def test_root_branch_and_node(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx, position=(1.0, 2.0, 3.0))
        plant = world.plant(plant_id)
        branch = world.branch(plant.root_branch)
        node = world.node(branch.root_node)

        assert branch.plant == plant_id
        assert branch.parent is None
        assert np.allclose(branch.root_position, [1.0, 2.0, 3.0])
        assert node.thickening_factor == pytest.approx(0.02)
        assert plant.max_vigor == pytest.approx(42.0)

    def test_spawn_is_deferred(self) -> None:
        world = World()
        ctx = make_context()
        commands = CommandBuffer(world)
        plant_id = spawn_plant(
            commands, ctx, np.zeros(3), GrowthControlFactors(), PlasticityParameters()
        )
        assert world.plants.try_get(plant_id) is None
        commands.apply()
        assert len(world.plants) == 1
        assert len(world.branches) == 1
        assert len(world.nodes) == 1


class TestPlantAge:
    def test_young_plant_keeps_max_vigor(self) -> None:
        world = World()
        ctx = make_context()
        plant = world.plant(make_plant(world, ctx))
        run_phase(step_plant_age, world, ctx)
        assert plant.age == pytest.approx(0.75 * 0.19)
        assert plant.max_vigor == pytest.approx(42.0)

    def test_old_plant_loses_vigor(self) -> None:
        """Past max age the death rate comes off max vigor, never below zero."""
        world = World()
        ctx = make_context()
        plant = world.plant(make_plant(world, ctx))
        plant.age = 200.0
        run_phase(step_plant_age, world, ctx)
        assert plant.max_vigor == pytest.approx(41.5)
        plant.max_vigor = 0.2
        run_phase(step_plant_age, world, ctx)
        assert plant.max_vigor == 0.0


class TestPlantOverlap:
    """Tests for plant bounding boxes and their overlaps."""

    def test_bounds_enclose_branch_spheres(self) -> None:
        world = World()
        ctx = make_context()
        plant = world.plant(make_plant(world, ctx))
        world.branch(plant.root_branch).bounds = BoundingSphere(
            center=np.array([0.0, 2.0, 0.0]), radius=1.0
        )
        run_phase(update_plant_bounds, world, ctx)
        assert np.allclose(plant.bounds.minimum, [-1.0, 1.0, -1.0])
        assert np.allclose(plant.bounds.maximum, [1.0, 3.0, 1.0])

    def test_intersections_are_symmetric(self) -> None:
        world = World()
        ctx = make_context()
        ids = [make_plant(world, ctx) for _ in range(3)]
        boxes = [
            BoundingBox(np.zeros(3), np.ones(3)),
            BoundingBox(np.full(3, 0.5), np.full(3, 1.5)),
            BoundingBox(np.full(3, 5.0), np.full(3, 6.0)),
        ]
        for plant_id, bounds in zip(ids, boxes):
            world.plant(plant_id).bounds = bounds

        run_phase(update_plant_intersections, world, ctx)

        assert world.plant(ids[0]).intersections == [ids[1]]
        assert world.plant(ids[1]).intersections == [ids[0]]
        assert world.plant(ids[2]).intersections == []

    def test_intersections_are_rebuilt(self) -> None:
        world = World()
        ctx = make_context()
        first, second = make_plant(world, ctx), make_plant(world, ctx)
        world.plant(first).bounds = BoundingBox(np.zeros(3), np.ones(3))
        world.plant(second).bounds = BoundingBox(np.zeros(3), np.ones(3))
        run_phase(update_plant_intersections, world, ctx)
        world.plant(second).bounds = BoundingBox(np.full(3, 3.0), np.full(3, 4.0))
        run_phase(update_plant_intersections, world, ctx)
        assert world.plant(first).intersections == []


class TestSeeding:
    """Tests for flowering and seed dispersal."""

    def flowering_plant(
        self, world: World, ctx: SimulationContext, species: int | None = None
    ) -> EntityId:
        plant_id = make_plant(
            world,
            ctx,
            plasticity=PlasticityParameters(flowering_age=60.0, seeding_frequency=0.5),
            species=species,
        )
        plant = world.plant(plant_id)
        plant.age = 60.0
        world.branch(plant.root_branch).growth_vigor = 42.0
        return plant_id

    def test_is_flowering(self) -> None:
        world = World()
        ctx = make_context()
        plant = world.plant(make_plant(world, ctx))
        plant.age = 60.0
        assert is_flowering(plant, 42.0)
        assert not is_flowering(plant, 21.0)
        assert not is_flowering(plant, 0.0)

    def test_no_terrain_no_seeds(self) -> None:
        world = World()
        ctx = make_context()
        plant = world.plant(self.flowering_plant(world, ctx))
        assert run_phase(seed_plants, world, ctx) == 0
        assert not plant.is_seeding

    def test_first_flowering_tick_only_starts_seeding(self) -> None:
        world = World()
        ctx = make_context(terrain=FlatTerrain())
        plant = world.plant(self.flowering_plant(world, ctx))
        run_phase(seed_plants, world, ctx)
        assert plant.is_seeding
        assert len(world.plants) == 1

    def test_one_seed_per_interval(self) -> None:
        """Interval 2 with 1.9 already accumulated: one 0.75 step drops one seed."""
        world = World()
        ctx = make_context(terrain=FlatTerrain())
        plant = world.plant(self.flowering_plant(world, ctx))
        plant.is_seeding = True
        plant.time_since_seeding = 1.9

        run_phase(seed_plants, world, ctx)

        assert plant.time_since_seeding == pytest.approx(0.65)
        assert len(world.plants) == 2
        seedling = [p for _, p in world.plants if p is not plant][0]
        assert seedling.position[1] == pytest.approx(0.0)
        assert seedling.growth == plant.growth

    def test_seed_adapts_to_site(self) -> None:
        world = World()
        habitat = Habitat(ideal_temp=15.0, temp_std_dev=2.0, ideal_moisture=0.4, moisture_std_dev=0.2)
        species = SpeciesSampler([Species("oak", habitat)])
        ctx = make_context(terrain=FlatTerrain(), species=species)
        plant = world.plant(self.flowering_plant(world, ctx, species=0))
        plant.is_seeding = True
        plant.time_since_seeding = 1.9

        run_phase(seed_plants, world, ctx)

        seedling = [p for _, p in world.plants if p is not plant][0]
        assert seedling.species == 0
        assert seedling.climate_adaptation == pytest.approx(habitat.adaptation(15.0, 0.5))
