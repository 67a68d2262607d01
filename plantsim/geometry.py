"""
Bounding volumes used for light occupancy, collision prediction and
plant-level overlap tests.

Spheres bound branches, axis-aligned boxes bound whole plants. The pairwise
sphere overlap (lens) volume is what new branch orientations are scored
against; ``lens_volumes`` evaluates it for one candidate against every
existing branch of a plant in a single vectorised call, and
``collision_volumes`` vmaps that over all candidates at once.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from plantsim.vectors import EPS

# Type alias for values that can be either JAX arrays or Python floats
Scalar = Array | float


# =============================================================================
# SPHERES
# =============================================================================


@dataclass(frozen=True, eq=False)
class BoundingSphere:
    """A sphere given by its centre and radius."""

    center: np.ndarray
    radius: float

    @classmethod
    def zero(cls) -> "BoundingSphere":
        return cls(center=np.zeros(3), radius=0.0)

    def volume(self) -> float:
        return 4.0 / 3.0 * np.pi * self.radius**3

    def translated(self, offset: np.ndarray) -> "BoundingSphere":
        return BoundingSphere(center=self.center + offset, radius=self.radius)


def _ritter_sphere(points: np.ndarray) -> BoundingSphere:
    # Pick the axis whose extreme points are furthest apart
    best_pair = (points[0], points[0])
    best_span = -1.0
    for axis in range(3):
        low = points[np.argmin(points[:, axis])]
        high = points[np.argmax(points[:, axis])]
        span = float(np.sum((high - low) ** 2))
        if span > best_span:
            best_span = span
            best_pair = (low, high)

    center = (best_pair[0] + best_pair[1]) / 2.0
    radius = np.sqrt(best_span) / 2.0
    for point in points:
        d = float(np.linalg.norm(point - center))
        if d > radius:
            new_radius = (radius + d) / 2.0
            center = center + (point - center) * ((d - new_radius) / d)
            radius = new_radius
    return BoundingSphere(center=center, radius=float(radius))


def _naive_sphere(points: np.ndarray) -> BoundingSphere:
    center = (points.min(axis=0) + points.max(axis=0)) / 2.0
    radius = float(np.max(np.linalg.norm(points - center, axis=1)))
    return BoundingSphere(center=center, radius=radius)


def bounding_sphere(points: Sequence[np.ndarray] | np.ndarray) -> BoundingSphere:
    """
    Approximate minimal sphere enclosing a point set.

    Runs Ritter's single-pass algorithm alongside the sphere centred on the
    axis-aligned bounding box and keeps whichever is smaller. An empty set
    gives the zero sphere at the origin.
    """
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(pts) == 0:
        return BoundingSphere.zero()
    ritter = _ritter_sphere(pts)
    naive = _naive_sphere(pts)
    return ritter if ritter.radius <= naive.radius else naive


def intersects(a: BoundingSphere, b: BoundingSphere) -> bool:
    """Strict overlap test: touching spheres do not intersect."""
    return bool(np.linalg.norm(a.center - b.center) < a.radius + b.radius)


def lens_volume(a: BoundingSphere, b: BoundingSphere) -> float:
    """
    Volume of the lens shared by two intersecting spheres.

    V = pi / (12 d) * (r1 + r2 - d)^2 * (d^2 + 2 d (r1 + r2) - 3 (r1 - r2)^2)

    Non-intersecting and concentric pairs have no lens and return 0.
    """
    d = float(np.linalg.norm(a.center - b.center))
    r1, r2 = a.radius, b.radius
    if d < EPS or d >= r1 + r2:
        return 0.0
    return (
        np.pi
        / (12.0 * d)
        * (r1 + r2 - d) ** 2
        * (d**2 + 2.0 * d * (r1 + r2) - 3.0 * (r1 - r2) ** 2)
    )


def lens_volumes(center: Array, radius: Scalar, centers: Array, radii: Array) -> Array:
    """
    Lens volumes between one sphere and many others.

    Args:
        center: (3,) centre of the candidate sphere
        radius: Radius of the candidate sphere
        centers: (N, 3) centres of the other spheres
        radii: (N,) radii of the other spheres

    Returns:
        (N,) overlap volumes, zero where the pair does not intersect or
        shares a centre
    """
    center = jnp.asarray(center, dtype=jnp.float32)
    r = jnp.asarray(radius, dtype=jnp.float32)
    centers = jnp.asarray(centers, dtype=jnp.float32).reshape(-1, 3)
    radii = jnp.asarray(radii, dtype=jnp.float32).reshape(-1)
    d = jnp.linalg.norm(centers - center, axis=1)
    overlapping = (d < r + radii) & (d > EPS)
    safe_d = jnp.where(overlapping, d, 1.0)
    volume = (
        jnp.pi
        / (12.0 * safe_d)
        * (r + radii - safe_d) ** 2
        * (safe_d**2 + 2.0 * safe_d * (r + radii) - 3.0 * (r - radii) ** 2)
    )
    return jnp.where(overlapping, volume, 0.0)


def collision_volumes(
    candidates: Sequence[BoundingSphere], centers: Array, radii: Array
) -> Array:
    """
    Summed lens volume of each candidate sphere against many others.

    ``lens_volumes`` is vmapped over the candidates, so all of them are
    scored in one call.

    Returns:
        (M,) total overlap per candidate, zeros when there are no others
    """
    if len(radii) == 0:
        return jnp.zeros(len(candidates))
    candidate_centers = np.array([c.center for c in candidates], dtype=float).reshape(-1, 3)
    candidate_radii = np.array([c.radius for c in candidates], dtype=float)
    volumes = jax.vmap(lens_volumes, in_axes=(0, 0, None, None))(
        candidate_centers, candidate_radii, centers, radii
    )
    return jnp.sum(volumes, axis=1)


# =============================================================================
# BOXES
# =============================================================================


@dataclass(frozen=True, eq=False)
class BoundingBox:
    """Axis-aligned box given by its least and greatest corners."""

    minimum: np.ndarray
    maximum: np.ndarray

    @classmethod
    def zero(cls) -> "BoundingBox":
        return cls(minimum=np.zeros(3), maximum=np.zeros(3))

    @classmethod
    def from_spheres(cls, spheres: Iterable[BoundingSphere]) -> "BoundingBox":
        spheres = list(spheres)
        if not spheres:
            return cls.zero()
        lows = np.array([s.center - s.radius for s in spheres])
        highs = np.array([s.center + s.radius for s in spheres])
        return cls(minimum=lows.min(axis=0), maximum=highs.max(axis=0))

    def intersects(self, other: "BoundingBox") -> bool:
        """Overlap on all three axes (touching faces count as overlap)."""
        return bool(
            np.all(self.minimum <= other.maximum) and np.all(other.minimum <= self.maximum)
        )
