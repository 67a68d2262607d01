"""
Plant species and their habitat preferences.

A species pairs its growth and plasticity parameters with a habitat: an
ideal temperature and moisture with a tolerance for each. The sampler picks
a species for a site at random, weighted by how well each habitat matches,
and reports the plant's climate adaptation there.
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from plantsim import curves
from plantsim.config import GrowthControlFactors, PlasticityParameters

logger = logging.getLogger(__name__)

# Species further than this many standard deviations from a site are never picked
CUTOFF_STD_DEVS = 5.0


@dataclass(frozen=True)
class Habitat:
    """Temperature and moisture preferences of a species."""

    ideal_temp: float
    temp_std_dev: float
    ideal_moisture: float
    moisture_std_dev: float

    def __post_init__(self) -> None:
        if self.temp_std_dev <= 0 or self.moisture_std_dev <= 0:
            raise ValueError("habitat standard deviations must be positive")

    def within_range(self, temp: float, moisture: float) -> bool:
        return (
            abs(temp - self.ideal_temp) <= CUTOFF_STD_DEVS * self.temp_std_dev
            and abs(moisture - self.ideal_moisture) <= CUTOFF_STD_DEVS * self.moisture_std_dev
        )

    def adaptation(self, temp: float, moisture: float) -> float:
        """Product of the peak-normalised temperature and moisture densities, in (0, 1]."""
        return float(
            curves.habitat_suitability(temp, self.ideal_temp, self.temp_std_dev)
            * curves.habitat_suitability(moisture, self.ideal_moisture, self.moisture_std_dev)
        )


@dataclass(frozen=True)
class Species:
    name: str
    habitat: Habitat
    growth: GrowthControlFactors = field(default_factory=GrowthControlFactors)
    plasticity: PlasticityParameters = field(default_factory=PlasticityParameters)


class SpeciesSampler:
    """Weighted random choice of species for a site."""

    def __init__(self, species: Sequence[Species]):
        if not species:
            raise ValueError("at least one species is required")
        self.species = tuple(species)

    def __getitem__(self, index: int) -> Species:
        return self.species[index]

    def __len__(self) -> int:
        return len(self.species)

    def climate_adaptation(self, index: int, temp: float, moisture: float) -> float:
        return self.species[index].habitat.adaptation(temp, moisture)

    def get_plant(
        self, temp: float, moisture: float, rng: np.random.Generator
    ) -> tuple[int, float] | None:
        """
        Pick a species for a site.

        Args:
            temp: Site temperature
            moisture: Site moisture
            rng: Random generator of the session

        Returns:
            (species index, climate adaptation), or None if no species can
            live there
        """
        candidates = []
        weights = []
        for index, species in enumerate(self.species):
            if not species.habitat.within_range(temp, moisture):
                continue
            candidates.append(index)
            weights.append(species.habitat.adaptation(temp, moisture))

        total = sum(weights)
        if not candidates or total <= 0:
            logger.debug("No species suits temp=%.2f moisture=%.2f", temp, moisture)
            return None
        choice = candidates[rng.choice(len(candidates), p=np.array(weights) / total)]
        return choice, self.climate_adaptation(choice, temp, moisture)
