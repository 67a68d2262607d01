"""
Branch prototypes and the trait-space sampler that picks among them.

A prototype is a small fixed node layout (per-layer child counts and one
unit direction per edge, in breadth-first order) that a branch grows into
over its mature age. Each prototype sits at a point in a 2-D trait space of
apical control x determinacy; the sampler rasterises the Voronoi diagram of
those points so a lookup is a single array index.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from matplotlib.path import Path
from scipy.spatial import QhullError, Voronoi, cKDTree
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry import box

from plantsim import curves
from plantsim.geometry import BoundingSphere, bounding_sphere
from plantsim.vectors import frame_rotation, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class BranchPrototype:
    """
    Immutable node layout for one kind of branch.

    ``node_counts[k][i]`` is the number of children of the i-th node on
    layer k + 1 (layer 1 holds only the root node). ``directions`` holds
    one unit vector per edge, in the breadth-first order the edges appear.
    """

    mature_age: float
    node_counts: tuple[tuple[int, ...], ...]
    directions: np.ndarray

    def __post_init__(self) -> None:
        if self.mature_age <= 0:
            raise ValueError("mature_age must be positive")
        counts = tuple(tuple(int(c) for c in layer) for layer in self.node_counts)
        object.__setattr__(self, "node_counts", counts)

        nodes_on_layer = 1
        for depth, layer in enumerate(counts):
            if len(layer) != nodes_on_layer:
                raise ValueError(
                    f"layer {depth + 1} has {nodes_on_layer} nodes but "
                    f"{len(layer)} child counts"
                )
            if any(c < 0 for c in layer):
                raise ValueError("child counts must be nonnegative")
            nodes_on_layer = sum(layer)

        directions = np.asarray(self.directions, dtype=float).reshape(-1, 3)
        edges = sum(sum(layer) for layer in counts)
        if len(directions) != edges:
            raise ValueError(
                f"expected {edges} directions for {edges} edges, got {len(directions)}"
            )
        directions = np.array([normalize(d) for d in directions]).reshape(-1, 3)
        object.__setattr__(self, "directions", directions)

    @property
    def layers(self) -> int:
        return len(self.node_counts) + 1

    @property
    def node_count(self) -> int:
        return 1 + len(self.directions)

    def node_layout(self, segment_length: float) -> np.ndarray:
        """
        Local node positions of the fully grown prototype.

        Nodes are listed breadth-first starting with the root at the
        origin; every segment has the given length.
        """
        positions = [np.zeros(3)]
        layer = [0]
        edge = 0
        for counts in self.node_counts:
            next_layer = []
            for parent, count in zip(layer, counts):
                for _ in range(count):
                    positions.append(positions[parent] + self.directions[edge] * segment_length)
                    next_layer.append(len(positions) - 1)
                    edge += 1
            layer = next_layer
        return np.array(positions)

    def possible_bounds(
        self,
        segment_length: float,
        normals: Sequence[np.ndarray],
        root_position: np.ndarray,
        single_node_radius: float = 0.01,
    ) -> list[BoundingSphere]:
        """
        Bounding spheres of the grown prototype for each candidate normal.

        Args:
            segment_length: Length of every segment (the plant max length)
            normals: Candidate branch normals
            root_position: World position the branch would grow from
            single_node_radius: Radius used when the layout is a single node

        Returns:
            One world-space sphere per normal
        """
        layout = self.node_layout(segment_length)
        root_position = np.asarray(root_position, dtype=float)
        spheres = []
        for normal in normals:
            if len(layout) == 1:
                spheres.append(BoundingSphere(center=root_position.copy(), radius=single_node_radius))
                continue
            rotated = layout @ frame_rotation(normal).T
            spheres.append(bounding_sphere(rotated).translated(root_position))
        return spheres


class PrototypeRegistry:
    """Read-only list of prototypes and their trait-space positions."""

    def __init__(
        self,
        prototypes: Sequence[BranchPrototype],
        positions: Sequence[tuple[float, float]],
    ):
        if not prototypes:
            raise ValueError("at least one prototype is required")
        if len(prototypes) != len(positions):
            raise ValueError("every prototype needs a trait-space position")
        self._prototypes = tuple(prototypes)
        self._positions = tuple((float(a), float(d)) for a, d in positions)

    def __len__(self) -> int:
        return len(self._prototypes)

    def __getitem__(self, index: int) -> BranchPrototype:
        return self._prototypes[index]

    @property
    def positions(self) -> tuple[tuple[float, float], ...]:
        return self._positions

    @classmethod
    def default(cls) -> "PrototypeRegistry":
        """Two prototypes: a forked shoot and a straight whip."""
        forked = BranchPrototype(
            mature_age=25.0,
            node_counts=((2,), (1, 2), (2, 1, 2)),
            directions=np.array(
                [
                    [0.743, 0.371, 0.557],
                    [0.192, 0.962, 0.192],
                    [0.557, 0.743, 0.371],
                    [0.236, 0.943, -0.236],
                    [0.588, 0.784, 0.196],
                    [0.802, 0.535, -0.267],
                    [-0.535, 0.802, 0.267],
                    [-0.302, 0.905, 0.302],
                    [-0.333, 0.667, -0.667],
                    [0.301, 0.904, -0.301],
                ]
            ),
        )
        whip = BranchPrototype(
            mature_age=15.0,
            node_counts=((1,), (1,), (1,)),
            directions=np.array(
                [[0.0, 1.0, 0.0], [0.1, 0.99, 0.0], [0.0, 0.99, 0.1]]
            ),
        )
        return cls([forked, whip], [(0.3, 0.7), (0.8, 0.2)])


class PrototypeSampler:
    """
    Raster of prototype ids over (apical control, determinacy).

    Build with ``PrototypeSampler.create``. ``grid[i, j]`` is the prototype
    whose Voronoi cell covers the pixel centred at
    ``((i + 0.5) * max_apical / width, (j + 0.5) * max_determinacy / height)``.
    """

    def __init__(self, grid: np.ndarray, max_apical: float, max_determinacy: float):
        self.grid = grid
        self.max_apical = max_apical
        self.max_determinacy = max_determinacy

    @property
    def size(self) -> tuple[int, int]:
        return int(self.grid.shape[0]), int(self.grid.shape[1])

    @classmethod
    def create(
        cls,
        positions: Sequence[tuple[float, float]],
        size: tuple[int, int] = (200, 200),
        max_apical: float = 1.0,
        max_determinacy: float = 1.0,
    ) -> "PrototypeSampler":
        """
        Rasterise the Voronoi diagram of the trait-space positions.

        Args:
            positions: (apical, determinacy) point per prototype
            size: Raster (width, height) in pixels
            max_apical: Extent of the apical axis
            max_determinacy: Extent of the determinacy axis

        Returns:
            Sampler whose grid holds the index of the nearest position
        """
        width, height = size
        if width < 1 or height < 1:
            raise ValueError("sampler size must be at least 1x1")
        if not positions:
            raise ValueError("at least one prototype position is required")
        sites = np.clip(
            np.asarray(positions, dtype=float).reshape(-1, 2),
            [0.0, 0.0],
            [max_apical, max_determinacy],
        )
        if len(np.unique(sites, axis=0)) != len(sites):
            raise ValueError("prototype positions must be distinct")

        xs = (np.arange(width) + 0.5) * max_apical / width
        ys = (np.arange(height) + 0.5) * max_determinacy / height
        gx, gy = np.meshgrid(xs, ys, indexing="ij")
        pixels = np.column_stack([gx.ravel(), gy.ravel()])

        grid = np.full(width * height, -1, dtype=int)
        boundary = box(0.0, 0.0, max_apical, max_determinacy)
        for vertices, index in compute_bounded_voronoi(sites, boundary):
            grid[Path(vertices).contains_points(pixels)] = index

        # Pixels on shared edges, or every pixel if the diagram was degenerate
        unfilled = grid < 0
        if unfilled.any():
            _, nearest = cKDTree(sites).query(pixels[unfilled])
            grid[unfilled] = nearest

        logger.info("Rasterised %d prototypes into a %dx%d sampler", len(sites), width, height)
        return cls(grid.reshape(width, height), max_apical, max_determinacy)

    def get_prototype_index(self, apical: float, determinacy: float) -> int:
        """
        Prototype id for a point in trait space.

        Pixel coordinates are ``round(value * size / max) - 1``, clamped to
        the raster so values near zero and beyond the maximum stay valid.
        """
        width, height = self.size
        i = curves.round_half_up(apical * width / self.max_apical) - 1
        j = curves.round_half_up(determinacy * height / self.max_determinacy) - 1
        i = min(max(i, 0), width - 1)
        j = min(max(j, 0), height - 1)
        return int(self.grid[i, j])


def compute_bounded_voronoi(
    seed_points: np.ndarray,
    boundary: ShapelyPolygon,
    extend_factor: float = 2.0,
) -> list[tuple[np.ndarray, int]]:
    """
    Compute Voronoi cells clipped to a boundary polygon.

    Args:
        seed_points: Nx2 array of seed points
        boundary: Shapely Polygon to clip cells to
        extend_factor: How far away the bounding dummy sites are placed

    Returns:
        List of (vertices, seed_index) tuples for each non-empty cell
    """
    minx, miny, maxx, maxy = boundary.bounds
    cx, cy = (minx + maxx) / 2, (miny + maxy) / 2

    # Far-away dummy sites close every real cell
    far = max(maxx - minx, maxy - miny) * extend_factor
    dummy_points = np.array(
        [
            [cx - far, cy - far],
            [cx + far, cy - far],
            [cx - far, cy + far],
            [cx + far, cy + far],
        ]
    )
    try:
        vor = Voronoi(np.vstack([seed_points, dummy_points]))
    except QhullError:
        logger.warning("Voronoi diagram of %d sites is degenerate", len(seed_points))
        return []

    cells = []
    for i, region_idx in enumerate(vor.point_region[: len(seed_points)]):
        region = vor.regions[region_idx]
        if -1 in region or len(region) < 3:
            continue

        cell_poly = ShapelyPolygon(vor.vertices[region])
        if not cell_poly.is_valid:
            cell_poly = cell_poly.buffer(0)
        clipped = cell_poly.intersection(boundary)
        if clipped.is_empty:
            continue

        # Handle MultiPolygon (take largest piece)
        if clipped.geom_type == "MultiPolygon":
            clipped = max(clipped.geoms, key=lambda g: g.area)
        if clipped.geom_type != "Polygon":
            continue
        cells.append((np.array(clipped.exterior.coords), i))

    return cells
