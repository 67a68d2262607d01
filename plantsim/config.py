"""
Configuration and parameter sets for the plant growth simulation.

Every value here is read-only for the lifetime of a session. Species-level
growth control and plasticity parameters are copied onto each plant when it
is spawned; the environment (tropism pull, climate) and engine constants
(tick period, age step, light field resolution) are shared by all plants.

Parameter groups:
    GrowthControlFactors: vigor limits, apical control, segment lengths
    PlasticityParameters: flowering, seeding, shadow tolerance
    TropismConfig: gravity/phototropism pull applied to branch segments
    ClimateConfig: temperature lapse rate and moisture for seeding
    SimConfig: engine constants
"""

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class GrowthControlFactors:
    """
    Species growth control parameters.

    Vigor is the abstract growth resource allocated from the plant root
    towards the tips. Branches with vigor at or below ``min_vigor`` stop
    growing; ``max_vigor`` bounds the growth-rate curve and seeds the root
    vigor while the plant is younger than ``max_age``.
    """

    max_age: float = 200.0  # plant age at which senescence starts
    max_vigor: float = 42.0  # species max vigor (v_max)
    min_vigor: float = 2.0  # v_min: below this nothing new is grown
    apical_control: float = 0.62  # [0, 1], 1 favours the main (brighter) child
    tropism_angle_weight: float = 0.5  # [0, 1], orientation vs collision trade-off
    growth_rate: float = 0.19  # scales the vigor -> growth rate curve
    max_segment_length: float = 1.0
    segment_length_scale: float = 0.25  # length per unit of segment age
    tropism_time_control: float = 0.38  # scales the tropism offset of segments
    branching_angle: float = 0.6  # radians between parent and child normals
    thickening_factor: float = 0.02  # thickness of a freshly grown tip

    def __post_init__(self) -> None:
        if not 0.0 <= self.apical_control <= 1.0:
            raise ValueError("apical_control must be in [0, 1]")
        if not 0.0 <= self.tropism_angle_weight <= 1.0:
            raise ValueError("tropism_angle_weight must be in [0, 1]")
        if self.min_vigor < 0:
            raise ValueError("min_vigor must be nonnegative")
        if self.max_vigor <= self.min_vigor:
            raise ValueError("max_vigor must be greater than min_vigor")
        if self.max_segment_length <= 0:
            raise ValueError("max_segment_length must be positive")
        if self.max_age <= 0:
            raise ValueError("max_age must be positive")

    @classmethod
    def broadleaf(cls) -> "GrowthControlFactors":
        """A spreading tree with weak apical control and wide branching."""
        return cls(
            max_age=200.0,
            max_vigor=42.0,
            min_vigor=2.0,
            apical_control=0.62,
            tropism_angle_weight=0.4,
            growth_rate=0.19,
            max_segment_length=1.0,
            segment_length_scale=0.25,
            tropism_time_control=0.38,
            branching_angle=0.7,
            thickening_factor=0.02,
        )

    @classmethod
    def conifer(cls) -> "GrowthControlFactors":
        """A narrow tree with strong apical control and a dominant leader."""
        return cls(
            max_age=300.0,
            max_vigor=30.0,
            min_vigor=3.0,
            apical_control=0.9,
            tropism_angle_weight=0.8,
            growth_rate=0.15,
            max_segment_length=0.6,
            segment_length_scale=0.2,
            tropism_time_control=0.2,
            branching_angle=0.9,
            thickening_factor=0.015,
        )


@dataclass(frozen=True)
class PlasticityParameters:
    """Reproduction and shade response parameters."""

    flowering_age: float = 60.0  # age at which a fully vigorous plant flowers
    seeding_frequency: float = 0.05  # seeds per unit of age step
    seeding_radius: float = 6.0  # mean seed dispersal distance
    shadow_tolerance: float = 0.2  # light exposure floor in full shade

    def __post_init__(self) -> None:
        if self.seeding_frequency <= 0:
            raise ValueError("seeding_frequency must be positive")
        if not 0.0 <= self.shadow_tolerance <= 1.0:
            raise ValueError("shadow_tolerance must be in [0, 1]")

    @property
    def seeding_interval(self) -> float:
        return 1.0 / self.seeding_frequency

    @property
    def seeding_std_dev(self) -> float:
        return self.seeding_radius / 3.0


@dataclass(frozen=True)
class TropismConfig:
    """
    Directional pull applied to growing segments.

    The pull vector is ``normalize(direction) * strength``. With the default
    downward direction a positive strength is gravitropism (segments sag),
    a negative one phototropism (segments bend upward). New branch
    orientations are scored against the same pull direction.
    """

    direction: tuple[float, float, float] = (0.0, -1.0, 0.0)
    strength: float = -0.05

    def pull(self) -> np.ndarray:
        direction = np.asarray(self.direction, dtype=float)
        norm = np.linalg.norm(direction)
        if norm == 0.0:
            return np.zeros(3)
        return direction / norm * self.strength


@dataclass(frozen=True)
class ClimateConfig:
    """Temperature and moisture used to adapt seeded plants to their site."""

    temp_at_zero: float = 15.0  # temperature at height 0
    temp_fall_off: float = -0.0065  # temperature change per unit of height
    moisture: float = 0.5

    def temperature_at(self, height: float) -> float:
        return self.temp_at_zero + height * self.temp_fall_off

    @classmethod
    def temperate(cls) -> "ClimateConfig":
        """Mild lowland climate."""
        return cls(temp_at_zero=15.0, temp_fall_off=-0.0065, moisture=0.5)

    @classmethod
    def alpine(cls) -> "ClimateConfig":
        """Cold, steep lapse rate and damp soil."""
        return cls(temp_at_zero=6.0, temp_fall_off=-0.01, moisture=0.7)


@dataclass(frozen=True)
class SimConfig:
    """
    Engine constants for a simulation session.

    The scheduler runs one growth tick per ``tick_period`` seconds of
    accumulated wall time. Physiological ages advance by ``growth_rate``
    per tick for branches and ``growth_rate * age_step`` for nodes.
    """

    tick_period: float = 0.1  # seconds of wall time per growth tick
    age_step: float = 0.75

    # Light field
    light_cell_size: float = 1.0
    light_check_height: int = 3  # empty cells bridged when walking the column

    # Plant senescence: max vigor lost per tick once age exceeds max_age
    death_rate: float = 0.5

    # Prototype sampler raster
    sampler_size: tuple[int, int] = (200, 200)
    max_apical: float = 1.0
    max_determinacy: float = 1.0

    # Bounding sphere radius of a branch that has a single node
    single_node_radius: float = 0.01

    # Also score new branch orientations against branches of overlapping plants
    cross_plant_collisions: bool = False

    seed: int = 0
    tropism: TropismConfig = field(default_factory=TropismConfig)
    climate: ClimateConfig = field(default_factory=ClimateConfig)

    def __post_init__(self) -> None:
        if self.tick_period <= 0:
            raise ValueError("tick_period must be positive")
        if self.light_cell_size <= 0:
            raise ValueError("light_cell_size must be positive")
        if self.light_check_height < 0:
            raise ValueError("light_check_height must be nonnegative")
        if min(self.sampler_size) < 1:
            raise ValueError("sampler_size must be at least 1x1")
        if self.max_apical <= 0 or self.max_determinacy <= 0:
            raise ValueError("sampler maxima must be positive")
