"""
Ray-cast interface to the terrain.

The terrain mesh itself is built elsewhere; the growth engine only asks it
where a downward ray lands when placing seeds and new plants.
"""

from typing import NamedTuple, Protocol

import numpy as np

from plantsim.vectors import EPS, normalize


class RayHit(NamedTuple):
    """Where a ray met a surface."""

    position: np.ndarray
    distance: float


class Collider(Protocol):
    """Anything a ray can be cast against."""

    max_height: float

    def check_ray(
        self, origin: np.ndarray, direction: np.ndarray, max_distance: float
    ) -> RayHit | None: ...


class FlatTerrain:
    """
    Horizontal square of ground at a fixed height.

    Args:
        height: Y coordinate of the ground plane
        half_extent: Half the side length of the square, centred on the origin
    """

    def __init__(self, height: float = 0.0, half_extent: float = 50.0):
        if half_extent <= 0:
            raise ValueError("half_extent must be positive")
        self.height = height
        self.half_extent = half_extent
        self.max_height = height

    def check_ray(
        self, origin: np.ndarray, direction: np.ndarray, max_distance: float
    ) -> RayHit | None:
        origin = np.asarray(origin, dtype=float)
        direction = normalize(direction)
        if abs(direction[1]) < EPS:
            return None
        distance = (self.height - origin[1]) / direction[1]
        if distance < 0 or distance > max_distance:
            return None
        position = origin + direction * distance
        if max(abs(position[0]), abs(position[2])) > self.half_extent:
            return None
        return RayHit(position=position, distance=float(distance))
