"""
Read-only export of the plant graphs.

A snapshot flattens each plant into an ordered node list (world position
and thickness) plus parent/child index pairs, which is all a mesh builder
or an offline plot needs. Branch roots are linked to the node they grow
from so each plant comes out as one connected tree.
"""

import json
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from plantsim.development import node_world_position, plant_branches
from plantsim.entities import EntityId, World
from plantsim.traversal import NodeTree, connections
from plantsim.vectors import frame_rotation


@dataclass(frozen=True)
class PlantSnapshot:
    plant: EntityId
    position: tuple[float, float, float]
    age: float
    climate_adaptation: float
    nodes: list[tuple[tuple[float, float, float], float]]  # (world position, thickness)
    connections: list[tuple[int, int]]  # (parent index, child index) into nodes

    def to_dict(self) -> dict:
        return {
            "plant": str(self.plant),
            "position": list(self.position),
            "age": self.age,
            "climate_adaptation": self.climate_adaptation,
            "nodes": [{"position": list(p), "thickness": t} for p, t in self.nodes],
            "connections": [list(pair) for pair in self.connections],
        }


def _as_tuple(v: np.ndarray) -> tuple[float, float, float]:
    return (float(v[0]), float(v[1]), float(v[2]))


def take_snapshot(world: World) -> list[PlantSnapshot]:
    """Snapshot every plant in the world."""
    tree = NodeTree(world)
    snapshots = []
    for plant_id, plant in world.plants:
        nodes: list[tuple[tuple[float, float, float], float]] = []
        links: list[tuple[int, int]] = []
        index: dict[EntityId, int] = {}
        for b in plant_branches(world, plant):
            branch = world.branch(b, "snapshot")
            rotation = frame_rotation(branch.normal)
            order, pairs = connections(tree, branch.root_node)
            offset = len(nodes)
            for n in order:
                node = world.node(n, "snapshot")
                index[n] = len(nodes)
                nodes.append((_as_tuple(node_world_position(branch, node, rotation)), node.thickness))
            links.extend((offset + p, offset + c) for p, c in pairs)
            if branch.parent_node is not None and branch.parent_node in index:
                links.append((index[branch.parent_node], index[branch.root_node]))
        snapshots.append(
            PlantSnapshot(
                plant=plant_id,
                position=_as_tuple(plant.position),
                age=plant.age,
                climate_adaptation=plant.climate_adaptation,
                nodes=nodes,
                connections=links,
            )
        )
    return snapshots


def save_snapshot(snapshots: list[PlantSnapshot], path: str | Path) -> None:
    Path(path).write_text(json.dumps([s.to_dict() for s in snapshots], indent=2))
