"""
Tree traversals shared by the branch graph and the node graph.

Both graphs are rooted trees; the traversals only need to ask a view for
the children of an id. Breadth-first order is the canonical "base to tip"
order: the prototype directions of a branch are indexed by the position of
each node pair in it.
"""

from collections import deque
from typing import Protocol

from plantsim.entities import EntityId, World


class TreeView(Protocol):
    def children(self, entity: EntityId, traversal: str) -> list[EntityId]: ...


class BranchTree:
    """Branch graph of a world. Branches without a root node are skipped."""

    def __init__(self, world: World):
        self.world = world

    def children(self, entity: EntityId, traversal: str) -> list[EntityId]:
        branch = self.world.branch(entity, traversal)
        return [
            child
            for child in branch.child_ids()
            if self.world.branch(child, traversal).root_node is not None
        ]


class NodeTree:
    """Node graph of a world."""

    def __init__(self, world: World):
        self.world = world

    def children(self, entity: EntityId, traversal: str) -> list[EntityId]:
        return list(self.world.node(entity, traversal).children)


def base_to_tip(view: TreeView, root: EntityId) -> list[EntityId]:
    """Breadth-first order from the root."""
    order = []
    queue = deque([root])
    while queue:
        entity = queue.popleft()
        order.append(entity)
        queue.extend(view.children(entity, "base_to_tip"))
    return order


def tip_to_base(view: TreeView, root: EntityId) -> list[EntityId]:
    """Reverse breadth-first order: every child comes before its parent."""
    return base_to_tip(view, root)[::-1]


def terminal(view: TreeView, root: EntityId) -> list[EntityId]:
    """Ids without children, in breadth-first order."""
    return [e for e in base_to_tip(view, root) if not view.children(e, "terminal")]


def non_terminal(view: TreeView, root: EntityId) -> list[EntityId]:
    """Ids with at least one child, in breadth-first order."""
    return [e for e in base_to_tip(view, root) if view.children(e, "non_terminal")]


def on_layer(view: TreeView, root: EntityId, layer: int) -> list[EntityId]:
    """Ids at a given depth, counting the root as layer 1."""
    if layer < 1:
        return []
    current = [root]
    for _ in range(layer - 1):
        current = [child for e in current for child in view.children(e, "on_layer")]
    return current


def pairs_base_to_tip(view: TreeView, root: EntityId) -> list[tuple[EntityId, EntityId]]:
    """(parent, child) pairs in breadth-first order of the child."""
    pairs = []
    queue = deque([root])
    while queue:
        entity = queue.popleft()
        for child in view.children(entity, "pairs_base_to_tip"):
            pairs.append((entity, child))
            queue.append(child)
    return pairs


def connections(
    view: TreeView, root: EntityId
) -> tuple[list[EntityId], list[tuple[int, int]]]:
    """
    Breadth-first ids plus their parent/child links as list indices.

    Returns:
        (ids, pairs) where each pair indexes into ids
    """
    order = base_to_tip(view, root)
    index = {entity: i for i, entity in enumerate(order)}
    links = [(index[p], index[c]) for p, c in pairs_base_to_tip(view, root)]
    return order, links
