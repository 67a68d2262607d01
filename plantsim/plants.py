"""
Plant-level lifecycle: spawning, ageing, bounds, overlap and seeding.

A plant owns one root branch holding one root node when it is spawned;
everything else grows from there. Plants age with their species growth
rate and lose max vigor once past their max age. Mature plants flower and
scatter seeds around themselves at regular intervals; a seed becomes a new
plant wherever a downward ray meets the terrain.
"""

import logging

import numpy as np

from plantsim.config import GrowthControlFactors, PlasticityParameters
from plantsim.context import SimulationContext
from plantsim.development import plant_branches, root_branch
from plantsim.entities import Branch, BranchNode, CommandBuffer, EntityId, Plant, World
from plantsim.geometry import BoundingBox

logger = logging.getLogger(__name__)


def spawn_plant(
    commands: CommandBuffer,
    ctx: SimulationContext,
    position: np.ndarray,
    growth: GrowthControlFactors,
    plasticity: PlasticityParameters,
    climate_adaptation: float = 1.0,
    species: int | None = None,
) -> EntityId:
    """
    Record a new plant with its root branch and root node.

    The root branch's prototype is sampled at the species' apical control
    and full determinacy.

    Args:
        commands: Buffer the spawn is recorded into
        ctx: Session context (for the prototype sampler)
        position: World position of the plant base
        growth: Species growth control parameters
        plasticity: Species plasticity parameters
        climate_adaptation: How well the species suits the site, in [0, 1]
        species: Index into the session's species sampler, if any

    Returns:
        Id of the plant (resolvable once the buffer is applied)
    """
    position = np.asarray(position, dtype=float)
    plant = Plant(
        position=position.copy(),
        growth=growth,
        plasticity=plasticity,
        max_vigor=growth.max_vigor,
        climate_adaptation=climate_adaptation,
        species=species,
    )
    plant_id = commands.spawn(plant)
    root_node = commands.spawn(BranchNode(thickening_factor=growth.thickening_factor))
    prototype = ctx.sampler.get_prototype_index(
        growth.apical_control, ctx.sampler.max_determinacy
    )
    plant.root_branch = commands.spawn(
        Branch(
            plant=plant_id,
            prototype=prototype,
            root_node=root_node,
            root_position=position.copy(),
        )
    )
    logger.debug("Spawning plant %s at %s", plant_id, position)
    return plant_id


def step_plant_age(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """Age plants; past max age their max vigor falls by the death rate each tick."""
    for _, plant in world.plants:
        plant.age += ctx.config.age_step * plant.growth.growth_rate
        if plant.age > plant.growth.max_age:
            plant.max_vigor = max(0.0, plant.max_vigor - ctx.config.death_rate)


def update_plant_bounds(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    for _, plant in world.plants:
        plant.bounds = BoundingBox.from_spheres(
            world.branch(b).bounds for b in plant_branches(world, plant)
        )


def update_plant_intersections(
    world: World, ctx: SimulationContext, commands: CommandBuffer
) -> None:
    """Rebuild every plant's list of other plants whose bounding boxes overlap."""
    plants = [(pid, p) for pid, p in world.plants if root_branch(world, p) is not None]
    for _, plant in world.plants:
        plant.intersections = []
    for i, (first_id, first) in enumerate(plants):
        for second_id, second in plants[i + 1 :]:
            if first.bounds.intersects(second.bounds):
                first.intersections.append(second_id)
                second.intersections.append(first_id)


def is_flowering(plant: Plant, root_vigor: float) -> bool:
    """
    Flowering starts at flowering_age scaled by species max vigor / root vigor.

    A plant with less vigor than its species maximum flowers later.
    """
    if root_vigor <= 0:
        return False
    threshold = plant.plasticity.flowering_age * plant.growth.max_vigor / root_vigor
    return plant.age >= threshold


def seed_plants(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """
    Scatter seeds from flowering plants.

    Seeding plants accumulate age_step per tick and drop one seed per
    seeding interval. A seed lands at |N(r, r/3) - r| from the parent in a
    uniformly random direction; the terrain ray-cast decides its height and
    the species sampler its climate adaptation. Nothing happens without a
    terrain.
    """
    terrain = ctx.terrain
    if terrain is None:
        return
    climate = ctx.config.climate
    for plant_id, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        if not plant.is_seeding:
            plant.is_seeding = is_flowering(plant, world.branch(root).growth_vigor)
            if plant.is_seeding:
                logger.info("Plant %s started flowering at age %.1f", plant_id, plant.age)
            continue

        plasticity = plant.plasticity
        plant.time_since_seeding += ctx.config.age_step
        while plant.time_since_seeding >= plasticity.seeding_interval:
            plant.time_since_seeding -= plasticity.seeding_interval
            radius = plasticity.seeding_radius
            distance = abs(ctx.rng.normal(radius, plasticity.seeding_std_dev) - radius)
            angle = ctx.rng.uniform(0.0, 2.0 * np.pi)
            origin = np.array(
                [
                    plant.position[0] + distance * np.cos(angle),
                    terrain.max_height,
                    plant.position[2] + distance * np.sin(angle),
                ]
            )
            hit = terrain.check_ray(origin, np.array([0.0, -1.0, 0.0]), np.inf)
            if hit is None:
                continue

            adaptation = plant.climate_adaptation
            if ctx.species is not None and plant.species is not None:
                temp = climate.temperature_at(float(hit.position[1]))
                adaptation = ctx.species.climate_adaptation(plant.species, temp, climate.moisture)
            spawn_plant(
                commands,
                ctx,
                hit.position,
                plant.growth,
                plant.plasticity,
                climate_adaptation=adaptation,
                species=plant.species,
            )
