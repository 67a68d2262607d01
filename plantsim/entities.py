"""
Entity storage for plants, branches and branch nodes.

Entities live in generational arenas: an ``EntityId`` is an index into a
slot list plus the generation of that slot, so ids that outlive their
entity are detected instead of silently aliasing a newer one.

Structural changes made while a growth phase is running go through a
``CommandBuffer``. Ids are reserved immediately so a phase can wire new
entities to each other; the entities become resolvable when the buffer is
applied at the barrier after the phase.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Iterator, NamedTuple, TypeVar

import numpy as np

from plantsim.config import GrowthControlFactors, PlasticityParameters
from plantsim.geometry import BoundingBox, BoundingSphere
from plantsim.vectors import UP


class EntityKind(Enum):
    PLANT = "plant"
    BRANCH = "branch"
    NODE = "node"


class EntityId(NamedTuple):
    kind: EntityKind
    index: int
    generation: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.index}v{self.generation}"


class GraphIntegrityError(RuntimeError):
    """
    An id stored in the plant graph does not resolve to a live entity.

    Attributes:
        entity: The id that failed to resolve
        traversal: Name of the traversal or phase that hit it, if known
    """

    def __init__(self, entity: EntityId, traversal: str | None = None):
        self.entity = entity
        self.traversal = traversal
        where = f" during {traversal}" if traversal else ""
        super().__init__(f"unresolvable {entity}{where}")


# =============================================================================
# ENTITY DATA
# =============================================================================


@dataclass
class BranchNode:
    """A joint inside a branch, positioned in the branch's local frame."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    tropism_offset: np.ndarray = field(default_factory=lambda: np.zeros(3))  # world frame
    phys_age: float = 0.0
    thickness: float = 0.0
    thickening_factor: float = 0.0
    light_exposure: float = 0.0
    growth_vigor: float = 0.0
    parent: EntityId | None = None
    children: list[EntityId] = field(default_factory=list)


@dataclass
class Branch:
    """
    A prototype-shaped group of nodes.

    Branches form a binary tree: ``children`` always has two slots, filled
    first to last. A branch without a root node is logically absent.
    """

    plant: EntityId
    prototype: int = 0
    root_node: EntityId | None = None
    parent: EntityId | None = None
    parent_node: EntityId | None = None  # node on the parent branch
    children: list[EntityId | None] = field(default_factory=lambda: [None, None])
    normal: np.ndarray = field(default_factory=lambda: UP.copy())
    root_position: np.ndarray = field(default_factory=lambda: np.zeros(3))

    # Growth state
    light_exposure: float = 0.0
    growth_vigor: float = 0.0
    growth_rate: float = 0.0
    physiological_age: float = 0.0
    layers: int = 1

    bounds: BoundingSphere = field(default_factory=BoundingSphere.zero)
    full_grown: bool = False

    def child_ids(self) -> list[EntityId]:
        return [child for child in self.children if child is not None]

    def open_slots(self) -> list[int]:
        """Free child slots, first to last."""
        return [slot for slot, child in enumerate(self.children) if child is None]


@dataclass
class Plant:
    """One plant: its parameters, state and the root of its branch tree."""

    position: np.ndarray
    growth: GrowthControlFactors
    plasticity: PlasticityParameters
    max_vigor: float  # current max vigor, decays after max age
    climate_adaptation: float = 1.0
    age: float = 0.0
    root_branch: EntityId | None = None
    species: int | None = None
    intersections: list[EntityId] = field(default_factory=list)
    bounds: BoundingBox = field(default_factory=BoundingBox.zero)
    is_seeding: bool = False
    time_since_seeding: float = 0.0


# =============================================================================
# ARENA
# =============================================================================

T = TypeVar("T")


class Arena(Generic[T]):
    """Slot storage addressed by generational ids of a single kind."""

    _PENDING = object()

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self._slots: list[object | None] = []
        self._generations: list[int] = []
        self._free: list[int] = []

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if slot is not None and slot is not self._PENDING)

    def __contains__(self, entity: object) -> bool:
        return isinstance(entity, EntityId) and self.try_get(entity) is not None

    def __iter__(self) -> Iterator[tuple[EntityId, T]]:
        for index, slot in enumerate(self._slots):
            if slot is not None and slot is not self._PENDING:
                yield EntityId(self.kind, index, self._generations[index]), slot  # type: ignore[misc]

    def reserve(self) -> EntityId:
        """Allocate an id whose value is filled in later."""
        if self._free:
            index = self._free.pop()
            self._generations[index] += 1
            self._slots[index] = self._PENDING
        else:
            index = len(self._slots)
            self._slots.append(self._PENDING)
            self._generations.append(0)
        return EntityId(self.kind, index, self._generations[index])

    def fill(self, entity: EntityId, value: T) -> None:
        if not self._is_current(entity) or self._slots[entity.index] is not self._PENDING:
            raise GraphIntegrityError(entity, "fill")
        self._slots[entity.index] = value

    def insert(self, value: T) -> EntityId:
        entity = self.reserve()
        self.fill(entity, value)
        return entity

    def try_get(self, entity: EntityId) -> T | None:
        if not self._is_current(entity):
            return None
        slot = self._slots[entity.index]
        if slot is self._PENDING:
            return None
        return slot  # type: ignore[return-value]

    def get(self, entity: EntityId, traversal: str | None = None) -> T:
        value = self.try_get(entity)
        if value is None:
            raise GraphIntegrityError(entity, traversal)
        return value

    def remove(self, entity: EntityId) -> T:
        value = self.get(entity, "remove")
        self._slots[entity.index] = None
        self._free.append(entity.index)
        return value

    def _is_current(self, entity: EntityId) -> bool:
        return (
            entity.kind is self.kind
            and 0 <= entity.index < len(self._slots)
            and self._generations[entity.index] == entity.generation
        )


class World:
    """The three arenas making up the simulated population."""

    def __init__(self) -> None:
        self.plants: Arena[Plant] = Arena(EntityKind.PLANT)
        self.branches: Arena[Branch] = Arena(EntityKind.BRANCH)
        self.nodes: Arena[BranchNode] = Arena(EntityKind.NODE)

    def plant(self, entity: EntityId, traversal: str | None = None) -> Plant:
        return self.plants.get(entity, traversal)

    def branch(self, entity: EntityId, traversal: str | None = None) -> Branch:
        return self.branches.get(entity, traversal)

    def node(self, entity: EntityId, traversal: str | None = None) -> BranchNode:
        return self.nodes.get(entity, traversal)

    def arena(self, kind: EntityKind) -> Arena:
        return {
            EntityKind.PLANT: self.plants,
            EntityKind.BRANCH: self.branches,
            EntityKind.NODE: self.nodes,
        }[kind]


class CommandBuffer:
    """
    Deferred structural mutations, applied in recording order.

    ``spawn`` reserves the id straight away; ``push`` records any other
    mutation (wiring a child into a parent, for instance) as a callable
    taking the world.
    """

    def __init__(self, world: World):
        self.world = world
        self._commands: list[Callable[[World], None]] = []

    def __len__(self) -> int:
        return len(self._commands)

    def spawn(self, value: Plant | Branch | BranchNode) -> EntityId:
        if isinstance(value, Plant):
            arena: Arena = self.world.plants
        elif isinstance(value, Branch):
            arena = self.world.branches
        else:
            arena = self.world.nodes
        entity = arena.reserve()
        self._commands.append(lambda world: world.arena(entity.kind).fill(entity, value))
        return entity

    def push(self, command: Callable[[World], None]) -> None:
        self._commands.append(command)

    def apply(self) -> int:
        """Run every recorded command and empty the buffer."""
        commands, self._commands = self._commands, []
        for command in commands:
            command(self.world)
        return len(commands)
