"""
plantsim: procedural plant growth simulation

Plants are trees of branches, branches are trees of nodes. Each tick the
engine lights the branches, turns light into vigor, grows branches along
their prototypes, sprouts new branches where vigor allows and lays out the
resulting geometry.

Modules:
    config: Parameter sets and engine constants
    vectors: 3-vector helpers
    geometry: Bounding spheres and boxes, lens volumes
    light: Sparse vertical light-occlusion field
    prototypes: Branch prototypes and the trait-space sampler
    entities: Generational arenas, entity data, deferred commands
    traversal: Base-to-tip / tip-to-base tree traversals
    curves: Growth response curves
    development: Per-tick branch growth phases
    plants: Plant spawning, ageing, overlap and seeding
    species: Species habitats and the species sampler
    terrain: Ray-cast interface and flat terrain
    schedule: Fixed-timestep scheduler and phase pipeline
    simulation: Session object tying it all together
    snapshot: Read-only export of plant graphs
    settings: JSON settings schemata
    visualization: Offline figures
"""

from plantsim.config import (
    ClimateConfig,
    GrowthControlFactors,
    PlasticityParameters,
    SimConfig,
    TropismConfig,
)
from plantsim.entities import (
    Branch,
    BranchNode,
    CommandBuffer,
    EntityId,
    EntityKind,
    GraphIntegrityError,
    Plant,
    World,
)
from plantsim.geometry import BoundingBox, BoundingSphere, bounding_sphere, lens_volume
from plantsim.light import LightCells
from plantsim.prototypes import BranchPrototype, PrototypeRegistry, PrototypeSampler
from plantsim.schedule import DEFAULT_PHASES, FixedSchedule, GrowthPipeline
from plantsim.simulation import Simulation
from plantsim.snapshot import PlantSnapshot, save_snapshot, take_snapshot
from plantsim.species import Habitat, Species, SpeciesSampler
from plantsim.terrain import Collider, FlatTerrain, RayHit

__all__ = [
    # Config
    "ClimateConfig",
    "GrowthControlFactors",
    "PlasticityParameters",
    "SimConfig",
    "TropismConfig",
    # Entities
    "Branch",
    "BranchNode",
    "CommandBuffer",
    "EntityId",
    "EntityKind",
    "GraphIntegrityError",
    "Plant",
    "World",
    # Geometry and light
    "BoundingBox",
    "BoundingSphere",
    "bounding_sphere",
    "lens_volume",
    "LightCells",
    # Prototypes
    "BranchPrototype",
    "PrototypeRegistry",
    "PrototypeSampler",
    # Scheduling
    "DEFAULT_PHASES",
    "FixedSchedule",
    "GrowthPipeline",
    "Simulation",
    # Export
    "PlantSnapshot",
    "save_snapshot",
    "take_snapshot",
    # Species and terrain
    "Habitat",
    "Species",
    "SpeciesSampler",
    "Collider",
    "FlatTerrain",
    "RayHit",
]
