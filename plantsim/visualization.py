"""
Offline figures of simulated plants.

Side projections of plant snapshots (segments drawn with width proportional
to node thickness) and an image of the prototype sampler's trait-space
raster. These are inspection aids; the real meshes are built elsewhere
from the dirty-branch queue.
"""

from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection

from plantsim.prototypes import PrototypeSampler
from plantsim.snapshot import PlantSnapshot

AXES = {"xy": (0, 1), "zy": (2, 1), "xz": (0, 2)}


def plant_segments(
    snapshot: PlantSnapshot, plane: str = "xy"
) -> tuple[np.ndarray, np.ndarray]:
    """
    2-D segments of one plant projected onto a plane.

    Returns:
        (segments, widths): (M, 2, 2) segment endpoints and (M,) thickness
        of each segment's child node
    """
    a, b = AXES[plane]
    if not snapshot.connections:
        return np.zeros((0, 2, 2)), np.zeros(0)
    points = np.array([position for position, _ in snapshot.nodes])[:, [a, b]]
    thickness = np.array([t for _, t in snapshot.nodes])
    pairs = np.array(snapshot.connections)
    segments = np.stack([points[pairs[:, 0]], points[pairs[:, 1]]], axis=1)
    return segments, thickness[pairs[:, 1]]


def draw_plants(
    ax,
    snapshots: Sequence[PlantSnapshot],
    plane: str = "xy",
    wood_color: str = "#8B4513",
    width_scale: float = 40.0,
):
    """Draw every plant's segments onto an existing axes."""
    for snapshot in snapshots:
        segments, widths = plant_segments(snapshot, plane)
        if len(segments) == 0:
            continue
        ax.add_collection(
            LineCollection(
                segments,
                linewidths=0.5 + width_scale * widths,
                colors=wood_color,
                capstyle="round",
            )
        )
    ax.autoscale_view()
    ax.set_aspect("equal")


def render_plants(
    snapshots: Sequence[PlantSnapshot],
    plane: str = "xy",
    ax=None,
    title: str | None = None,
    figsize: tuple = (8, 8),
):
    """
    Render a side (or top) view of a set of plants.

    Args:
        snapshots: Plants to draw
        plane: "xy" or "zy" for side views, "xz" for a top view
        ax: Axes to draw into (a new figure is made if None)
        title: Optional axes title
        figsize: Size of the new figure

    Returns:
        Figure and axes
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure
    draw_plants(ax, snapshots, plane)
    if title:
        ax.set_title(title)
    ax.set_xlabel(plane[0])
    ax.set_ylabel(plane[1])
    return fig, ax


def render_sampler(sampler: PrototypeSampler, ax=None, figsize: tuple = (6, 6)):
    """Show which prototype covers each point of trait space."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure
    ax.imshow(
        sampler.grid.T,
        origin="lower",
        extent=(0.0, sampler.max_apical, 0.0, sampler.max_determinacy),
        cmap="tab10",
        interpolation="nearest",
    )
    ax.set_xlabel("apical control")
    ax.set_ylabel("determinacy")
    return fig, ax


def save_figure(fig, path: str, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
