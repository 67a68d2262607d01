"""
Externally supplied session settings.

Pydantic schemata for a JSON settings file, plus converters into the
frozen configuration dataclasses the engine uses. Every field has a
default, so an empty object ``{}`` describes the default session.
"""

from pathlib import Path

from pydantic import BaseModel, Field

from plantsim.config import (
    ClimateConfig,
    GrowthControlFactors,
    PlasticityParameters,
    SimConfig,
    TropismConfig,
)
from plantsim.prototypes import BranchPrototype, PrototypeRegistry
from plantsim.species import Habitat, Species, SpeciesSampler

_GROWTH = GrowthControlFactors()
_PLASTICITY = PlasticityParameters()

#
# Schemata
#


class GrowthSchema(BaseModel):
    """Species growth control parameters."""

    max_age: float = Field(default=_GROWTH.max_age, gt=0, description="Age at which senescence starts")
    max_vigor: float = Field(default=_GROWTH.max_vigor, description="Species max vigor")
    min_vigor: float = Field(default=_GROWTH.min_vigor, ge=0, description="Vigor below which nothing grows")
    apical_control: float = Field(default=_GROWTH.apical_control, ge=0, le=1)
    tropism_angle_weight: float = Field(default=_GROWTH.tropism_angle_weight, ge=0, le=1)
    growth_rate: float = Field(default=_GROWTH.growth_rate, description="Growth rate multiplier")
    max_segment_length: float = Field(default=_GROWTH.max_segment_length, gt=0)
    segment_length_scale: float = Field(default=_GROWTH.segment_length_scale)
    tropism_time_control: float = Field(default=_GROWTH.tropism_time_control)
    branching_angle: float = Field(default=_GROWTH.branching_angle, description="Radians")
    thickening_factor: float = Field(default=_GROWTH.thickening_factor, ge=0)

    def to_config(self) -> GrowthControlFactors:
        return GrowthControlFactors(**self.model_dump())


class PlasticitySchema(BaseModel):
    """Reproduction and shade response parameters."""

    flowering_age: float = Field(default=_PLASTICITY.flowering_age)
    seeding_frequency: float = Field(default=_PLASTICITY.seeding_frequency, gt=0)
    seeding_radius: float = Field(default=_PLASTICITY.seeding_radius, ge=0)
    shadow_tolerance: float = Field(default=_PLASTICITY.shadow_tolerance, ge=0, le=1)

    def to_config(self) -> PlasticityParameters:
        return PlasticityParameters(**self.model_dump())


class HabitatSchema(BaseModel):
    ideal_temp: float = Field(description="Preferred temperature")
    temp_std_dev: float = Field(gt=0, description="Temperature tolerance")
    ideal_moisture: float = Field(description="Preferred moisture")
    moisture_std_dev: float = Field(gt=0, description="Moisture tolerance")


class SpeciesSchema(BaseModel):
    name: str
    habitat: HabitatSchema
    growth: GrowthSchema = Field(default_factory=GrowthSchema)
    plasticity: PlasticitySchema = Field(default_factory=PlasticitySchema)

    def to_species(self) -> Species:
        return Species(
            name=self.name,
            habitat=Habitat(**self.habitat.model_dump()),
            growth=self.growth.to_config(),
            plasticity=self.plasticity.to_config(),
        )


class PrototypeSchema(BaseModel):
    """A branch prototype and its point in (apical control, determinacy) space."""

    mature_age: float = Field(gt=0)
    node_counts: list[list[int]] = Field(description="Children per node, per layer")
    directions: list[tuple[float, float, float]] = Field(
        description="One direction per edge, breadth-first"
    )
    apical: float = Field(ge=0, description="Apical control coordinate")
    determinacy: float = Field(ge=0, description="Determinacy coordinate")

    def to_prototype(self) -> BranchPrototype:
        return BranchPrototype(
            mature_age=self.mature_age,
            node_counts=tuple(tuple(layer) for layer in self.node_counts),
            directions=self.directions,
        )


class TropismSchema(BaseModel):
    direction: tuple[float, float, float] = (0.0, -1.0, 0.0)
    strength: float = -0.05


class ClimateSchema(BaseModel):
    temp_at_zero: float = 15.0
    temp_fall_off: float = -0.0065
    moisture: float = 0.5


class SimulationSettings(BaseModel):
    """Everything needed to set up a session."""

    tick_period: float = Field(default=0.1, gt=0, description="Seconds per tick")
    age_step: float = 0.75
    light_cell_size: float = Field(default=1.0, gt=0)
    light_check_height: int = Field(default=3, ge=0)
    death_rate: float = Field(default=0.5, ge=0)
    sampler_size: tuple[int, int] = (200, 200)
    max_apical: float = Field(default=1.0, gt=0)
    max_determinacy: float = Field(default=1.0, gt=0)
    single_node_radius: float = Field(default=0.01, gt=0)
    cross_plant_collisions: bool = False
    seed: int = 0
    tropism: TropismSchema = Field(default_factory=TropismSchema)
    climate: ClimateSchema = Field(default_factory=ClimateSchema)
    prototypes: list[PrototypeSchema] = Field(
        default_factory=list, description="Empty means the built-in prototypes"
    )
    species: list[SpeciesSchema] = Field(default_factory=list)

    def to_config(self) -> SimConfig:
        engine = self.model_dump(exclude={"tropism", "climate", "prototypes", "species"})
        return SimConfig(
            **engine,
            tropism=TropismConfig(**self.tropism.model_dump()),
            climate=ClimateConfig(**self.climate.model_dump()),
        )

    def to_registry(self) -> PrototypeRegistry:
        if not self.prototypes:
            return PrototypeRegistry.default()
        return PrototypeRegistry(
            [p.to_prototype() for p in self.prototypes],
            [(p.apical, p.determinacy) for p in self.prototypes],
        )

    def to_species_sampler(self) -> SpeciesSampler | None:
        if not self.species:
            return None
        return SpeciesSampler([s.to_species() for s in self.species])


def load_settings(path: str | Path) -> SimulationSettings:
    return SimulationSettings.model_validate_json(Path(path).read_text())
