"""
Tests for the per-tick branch development phases.

Worlds are assembled by hand so each phase can be checked against values
worked out on paper.
"""

import numpy as np
import pytest

from plantsim.config import GrowthControlFactors, PlasticityParameters, SimConfig
from plantsim.context import SimulationContext
from plantsim.development import (
    assign_growth_rates,
    assign_thicknesses,
    best_orientation,
    calculate_branch_light_exposure,
    calculate_growth_vigor,
    calculate_segment_lengths_and_tropism,
    collision_spheres,
    determine_create_new_branches,
    distribute_node_vigor,
    node_world_position,
    step_physiological_age,
    target_layers,
    update_branch_bounds,
    update_branch_nodes,
)
from plantsim.entities import (
    Branch,
    BranchNode,
    CommandBuffer,
    EntityId,
    EntityKind,
    GraphIntegrityError,
    Plant,
    World,
)
from plantsim.geometry import BoundingSphere
from plantsim.plants import spawn_plant
from plantsim.prototypes import BranchPrototype, PrototypeRegistry
from plantsim.traversal import NodeTree, base_to_tip, terminal
from plantsim.vectors import UP


def make_whip(mature_age: float = 10.0) -> BranchPrototype:
    return BranchPrototype(
        mature_age=mature_age,
        node_counts=((1,), (1,), (1,)),
        directions=np.array([[0.0, 1.0, 0.0]] * 3),
    )


def make_context(registry: PrototypeRegistry | None = None) -> SimulationContext:
    """Context with a small sampler raster."""
    config = SimConfig(sampler_size=(20, 20))
    return SimulationContext.create(config, registry or PrototypeRegistry.default())


def make_plant(
    world: World,
    ctx: SimulationContext,
    position: tuple[float, float, float] = (0.0, 0.0, 0.0),
    growth: GrowthControlFactors | None = None,
) -> EntityId:
    commands = CommandBuffer(world)
    plant = spawn_plant(
        commands,
        ctx,
        np.array(position),
        growth or GrowthControlFactors(),
        PlasticityParameters(),
    )
    commands.apply()
    return plant


def add_child_branch(
    world: World, plant: EntityId, parent: EntityId, slot: int, light: float = 0.0
) -> EntityId:
    """Attach a single-node branch to a parent branch slot."""
    child = world.branches.insert(
        Branch(
            plant=plant,
            root_node=world.nodes.insert(BranchNode()),
            parent=parent,
            light_exposure=light,
        )
    )
    world.branch(parent).children[slot] = child
    return child


def run_phase(phase, world: World, ctx: SimulationContext) -> None:
    commands = CommandBuffer(world)
    phase(world, ctx, commands)
    commands.apply()


class TestLightExposure:
    """Tests for the light phase."""

    def test_unshaded_branch_is_fully_lit(self) -> None:
        world = World()
        ctx = make_context()
        plant = make_plant(world, ctx)
        run_phase(update_branch_bounds, world, ctx)
        run_phase(calculate_branch_light_exposure, world, ctx)
        branch = world.branch(world.plant(plant).root_branch)
        assert branch.bounds.radius == pytest.approx(0.01)
        assert branch.light_exposure == pytest.approx(1.0, abs=1e-4)

    def test_branch_below_is_shaded(self) -> None:
        """Volume in a cell above darkens the cell below, down to the tolerance floor."""
        world = World()
        ctx = make_context()
        low = make_plant(world, ctx)
        high = make_plant(world, ctx, position=(0.5, 2.5, 0.5))
        low_branch = world.branch(world.plant(low).root_branch)
        high_branch = world.branch(world.plant(high).root_branch)
        low_branch.bounds = BoundingSphere(center=np.array([0.5, 0.5, 0.5]), radius=0.01)
        high_branch.bounds = BoundingSphere(center=np.array([0.5, 2.5, 0.5]), radius=1.0)

        run_phase(calculate_branch_light_exposure, world, ctx)

        shadow = high_branch.bounds.volume() + low_branch.bounds.volume()
        tolerance = PlasticityParameters().shadow_tolerance
        expected = tolerance + (1.0 - tolerance) * np.exp(-shadow)
        assert low_branch.light_exposure == pytest.approx(expected, rel=1e-5)
        assert low_branch.light_exposure < 0.25
        assert len(ctx.light) == 2


class TestGrowthVigor:
    """Tests for gathering light and handing out vigor."""

    def test_vigor_split_between_two_children(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        root = world.plant(plant_id).root_branch
        c1 = add_child_branch(world, plant_id, root, 0, light=0.8)
        c2 = add_child_branch(world, plant_id, root, 1, light=0.4)

        run_phase(calculate_growth_vigor, world, ctx)

        assert world.branch(root).light_exposure == pytest.approx(1.2)
        assert world.branch(root).growth_vigor == pytest.approx(42.0)
        main = 42.0 * 0.62 * 0.8 / (0.62 * 0.8 + 0.38 * 0.4)
        assert world.branch(c1).growth_vigor == pytest.approx(main, rel=1e-5)
        assert world.branch(c1).growth_vigor + world.branch(c2).growth_vigor == pytest.approx(42.0)

    def test_collected_light_beats_decayed_max_vigor(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        world.plant(plant_id).max_vigor = 0.5
        root = world.plant(plant_id).root_branch
        add_child_branch(world, plant_id, root, 0, light=0.8)
        add_child_branch(world, plant_id, root, 1, light=0.4)

        run_phase(calculate_growth_vigor, world, ctx)

        assert world.branch(root).growth_vigor == pytest.approx(1.2)

    def test_single_child_takes_everything(self) -> None:
        """A lone child, and its own lone child, inherit the whole vigor."""
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        root = world.plant(plant_id).root_branch
        child = add_child_branch(world, plant_id, root, 0, light=0.9)
        grandchild = add_child_branch(world, plant_id, child, 0, light=0.3)

        run_phase(calculate_growth_vigor, world, ctx)

        assert world.branch(child).light_exposure == pytest.approx(0.3)
        assert world.branch(root).light_exposure == pytest.approx(0.3)
        assert world.branch(child).growth_vigor == pytest.approx(42.0)
        assert world.branch(grandchild).growth_vigor == pytest.approx(42.0)


class TestRatesAndAges:
    def test_growth_rate_from_vigor(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        branch.growth_vigor = 42.0
        run_phase(assign_growth_rates, world, ctx)
        assert branch.growth_rate == pytest.approx(0.19)
        branch.growth_vigor = 2.0
        run_phase(assign_growth_rates, world, ctx)
        assert branch.growth_rate == pytest.approx(0.0)

    def test_nodes_age_slower_than_branches(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        branch.growth_rate = 0.2
        run_phase(step_physiological_age, world, ctx)
        assert branch.physiological_age == pytest.approx(0.2)
        assert world.node(branch.root_node).phys_age == pytest.approx(0.15)


class TestBranchNodes:
    """Tests for growing prototype layers."""

    def test_target_layers(self) -> None:
        forked = PrototypeRegistry.default()[0]
        assert target_layers(forked, 0.0) == 1
        assert target_layers(forked, 12.5) == 3
        assert target_layers(forked, 25.0) == 4
        assert target_layers(forked, 100.0) == 4
        assert target_layers(forked, -5.0) == 1

    def test_half_grown_branch(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        assert branch.prototype == 0
        branch.physiological_age = 12.5

        run_phase(update_branch_nodes, world, ctx)

        nodes = base_to_tip(NodeTree(world), branch.root_node)
        assert branch.layers == 3
        assert len(nodes) == 6
        assert all(world.node(n).thickening_factor == pytest.approx(0.02) for n in nodes)

    def test_fully_grown_branch(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        branch.physiological_age = 12.5
        run_phase(update_branch_nodes, world, ctx)
        branch.physiological_age = 30.0
        run_phase(update_branch_nodes, world, ctx)

        tree = NodeTree(world)
        assert branch.layers == 4
        assert len(base_to_tip(tree, branch.root_node)) == 11
        assert len(terminal(tree, branch.root_node)) == 5

    def test_nodes_are_deferred_until_barrier(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        branch.physiological_age = 25.0
        commands = CommandBuffer(world)
        update_branch_nodes(world, ctx, commands)
        assert len(world.nodes) == 1
        commands.apply()
        assert len(world.nodes) == 11


class TestNewBranches:
    """Tests for sprouting child branches."""

    def grown_plant(self, world: World, ctx: SimulationContext) -> tuple[EntityId, Branch]:
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        branch.physiological_age = 26.0
        run_phase(update_branch_nodes, world, ctx)
        branch.light_exposure = 1.0
        branch.growth_vigor = 42.0
        return plant_id, branch

    def test_node_vigor_reaches_the_tips(self) -> None:
        world = World()
        ctx = make_context()
        _, branch = self.grown_plant(world, ctx)
        tips = distribute_node_vigor(world, branch)
        assert len(tips) == 5
        assert sum(world.node(n).growth_vigor for n in tips) == pytest.approx(42.0, rel=1e-5)
        assert world.node(branch.root_node).light_exposure == pytest.approx(1.0)

    def test_two_children_sprout(self) -> None:
        world = World()
        ctx = make_context()
        plant_id, branch = self.grown_plant(world, ctx)
        root = world.plant(plant_id).root_branch

        run_phase(determine_create_new_branches, world, ctx)

        children = branch.child_ids()
        assert len(children) == 2
        tips = terminal(NodeTree(world), branch.root_node)
        for child_id in children:
            child = world.branch(child_id)
            assert child.parent == root
            assert child.parent_node in tips
            assert world.node(child.root_node) is not None
            assert np.linalg.norm(child.normal) == pytest.approx(1.0)
            expected = node_world_position(branch, world.node(child.parent_node))
            assert np.allclose(child.root_position, expected)

    def test_only_open_slots_are_filled(self) -> None:
        """An absent branch still occupies its slot."""
        world = World()
        ctx = make_context()
        plant_id, branch = self.grown_plant(world, ctx)
        absent = world.branches.insert(Branch(plant=plant_id))
        branch.children[0] = absent

        run_phase(determine_create_new_branches, world, ctx)

        assert branch.children[0] == absent
        assert branch.children[1] is not None

    def test_prototype_ignores_decayed_max_vigor(self) -> None:
        """Determinacy is relative to the species max vigor, as the growth rate is."""
        world = World()
        ctx = make_context()
        plant_id, branch = self.grown_plant(world, ctx)
        world.plant(plant_id).max_vigor = 0.0

        run_phase(determine_create_new_branches, world, ctx)

        growth = world.plant(plant_id).growth
        expected = ctx.sampler.get_prototype_index(
            growth.apical_control, 42.0 * ctx.sampler.max_determinacy / growth.max_vigor
        )
        children = branch.child_ids()
        assert len(children) == 2
        assert all(world.branch(c).prototype == expected for c in children)

    def test_immature_branch_does_not_sprout(self) -> None:
        world = World()
        ctx = make_context()
        _, branch = self.grown_plant(world, ctx)
        branch.physiological_age = 20.0
        run_phase(determine_create_new_branches, world, ctx)
        assert branch.child_ids() == []

    def test_weak_tips_do_not_sprout(self) -> None:
        """Five tips sharing 5 vigor each get 1, below min vigor."""
        world = World()
        ctx = make_context()
        _, branch = self.grown_plant(world, ctx)
        branch.growth_vigor = 5.0
        run_phase(determine_create_new_branches, world, ctx)
        assert branch.child_ids() == []


class TestBestOrientation:
    """Tests for scoring candidate branch normals."""

    def make_bare_plant(self, **growth) -> Plant:
        return Plant(
            position=np.zeros(3),
            growth=GrowthControlFactors(**growth),
            plasticity=PlasticityParameters(),
            max_vigor=42.0,
        )

    def test_pure_tropism_tips_towards_pull(self) -> None:
        """From a sideways parent, the candidate tipped upward wins."""
        plant = self.make_bare_plant(tropism_angle_weight=1.0, branching_angle=0.6)
        normal, score = best_orientation(
            np.array([1.0, 0.0, 0.0]),
            np.zeros(3),
            make_whip(),
            plant,
            UP,
            np.zeros((0, 3)),
            np.zeros(0),
            0.01,
        )
        assert np.allclose(normal, [np.cos(0.6), np.sin(0.6), 0.0])
        assert score == pytest.approx((1.0 + np.sin(0.6)) / 2.0)

    def test_avoids_existing_branches(self) -> None:
        plant = self.make_bare_plant(tropism_angle_weight=0.0, branching_angle=0.6)
        normal, _ = best_orientation(
            UP,
            np.zeros(3),
            make_whip(),
            plant,
            np.zeros(3),
            np.array([[1.5, 1.5, 0.0]]),
            np.array([1.0]),
            0.01,
        )
        assert np.allclose(normal, [-np.sin(0.6), np.cos(0.6), 0.0])

    def test_ties_keep_first_candidate(self) -> None:
        plant = self.make_bare_plant(tropism_angle_weight=0.0, branching_angle=0.6)
        normal, score = best_orientation(
            UP, np.zeros(3), make_whip(), plant, np.zeros(3), np.zeros((0, 3)), np.zeros(0), 0.01
        )
        assert score == pytest.approx(1.0)
        assert np.allclose(normal, [np.sin(0.6), np.cos(0.6), 0.0])


class TestCrossPlantCollisions:
    """Tests for steering new branches away from overlapping plants."""

    def make_neighbours(self, world: World, ctx: SimulationContext) -> Plant:
        """A plant whose neighbour has a branch sphere up and to its +x side."""
        growth = GrowthControlFactors(tropism_angle_weight=0.0, branching_angle=0.6)
        near = make_plant(world, ctx, growth=growth)
        other = make_plant(world, ctx, position=(1.5, 0.0, 0.0), growth=growth)
        world.branch(world.plant(near).root_branch).bounds = BoundingSphere(
            center=np.array([0.0, -50.0, 0.0]), radius=0.1
        )
        world.branch(world.plant(other).root_branch).bounds = BoundingSphere(
            center=np.array([1.5, 1.5, 0.0]), radius=1.0
        )
        world.plant(near).intersections.append(other)
        return world.plant(near)

    def orient(self, world: World, plant: Plant, cross_plant: bool) -> tuple[np.ndarray, float]:
        centers, radii = collision_spheres(world, plant, cross_plant)
        return best_orientation(
            UP, np.zeros(3), make_whip(), plant, np.zeros(3), centers, radii, 0.01
        )

    def test_neighbours_ignored_by_default(self) -> None:
        """Without the flag the candidate leaning into the neighbour is not penalised."""
        world = World()
        ctx = make_context()
        plant = self.make_neighbours(world, ctx)

        _, radii = collision_spheres(world, plant, cross_plant=False)
        assert len(radii) == 1

        normal, score = self.orient(world, plant, cross_plant=False)
        assert score == pytest.approx(1.0)
        assert np.allclose(normal, [np.sin(0.6), np.cos(0.6), 0.0])

    def test_neighbour_branches_are_avoided(self) -> None:
        world = World()
        ctx = make_context()
        plant = self.make_neighbours(world, ctx)

        _, radii = collision_spheres(world, plant, cross_plant=True)
        assert len(radii) == 2

        normal, _ = self.orient(world, plant, cross_plant=True)
        assert np.allclose(normal, [-np.sin(0.6), np.cos(0.6), 0.0])

    def test_vanished_neighbour_is_skipped(self) -> None:
        world = World()
        ctx = make_context()
        plant = self.make_neighbours(world, ctx)
        plant.intersections.append(EntityId(EntityKind.PLANT, 99, 0))
        _, radii = collision_spheres(world, plant, cross_plant=True)
        assert len(radii) == 2


class TestThickness:
    """Tests for pipe-model thickness."""

    def test_parent_is_norm_of_children(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        branch = world.branch(world.plant(plant_id).root_branch)
        root_node = branch.root_node
        for factor in (3.0, 4.0):
            child = world.nodes.insert(BranchNode(thickening_factor=factor, parent=root_node))
            world.node(root_node).children.append(child)

        run_phase(assign_thicknesses, world, ctx)

        assert world.node(root_node).thickness == pytest.approx(5.0)

    def test_child_branch_thickness_reaches_parent_node(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        root = world.plant(plant_id).root_branch
        root_node = world.branch(root).root_node
        leaves = []
        for factor in (3.0, 4.0):
            leaf = world.nodes.insert(BranchNode(thickening_factor=factor, parent=root_node))
            world.node(root_node).children.append(leaf)
            leaves.append(leaf)
        child = add_child_branch(world, plant_id, root, 0)
        world.branch(child).parent_node = leaves[0]
        world.node(world.branch(child).root_node).thickening_factor = 0.5

        run_phase(assign_thicknesses, world, ctx)

        assert world.node(leaves[0]).thickness == pytest.approx(0.5)
        assert world.node(root_node).thickness == pytest.approx(np.sqrt(0.25 + 16.0))

    def test_leaf_thickness_is_kept(self) -> None:
        world = World()
        ctx = make_context()
        plant_id = make_plant(world, ctx)
        node = world.node(world.branch(world.plant(plant_id).root_branch).root_node)
        run_phase(assign_thicknesses, world, ctx)
        assert node.thickness == pytest.approx(0.02)
        node.thickening_factor = 1.0
        run_phase(assign_thicknesses, world, ctx)
        assert node.thickness == pytest.approx(0.02)


class TestSegments:
    """Tests for segment layout, tropism offsets and mesh flags."""

    def grown_whip(self) -> tuple[World, SimulationContext, EntityId, Branch]:
        world = World()
        ctx = make_context(PrototypeRegistry([make_whip(10.0)], [(0.5, 0.5)]))
        plant_id = make_plant(world, ctx, position=(1.0, 0.0, 2.0))
        b = world.plant(plant_id).root_branch
        branch = world.branch(b)
        branch.physiological_age = 10.0
        run_phase(update_branch_nodes, world, ctx)
        branch.physiological_age = 12.0
        return world, ctx, b, branch

    def test_lengths_and_offsets(self) -> None:
        world, ctx, _, branch = self.grown_whip()
        run_phase(calculate_segment_lengths_and_tropism, world, ctx)

        nodes = base_to_tip(NodeTree(world), branch.root_node)
        heights = [world.node(n).position[1] for n in nodes]
        assert np.allclose(heights, [0.0, 0.5, 1.0, 1.5])

        # pull (0, 0.05, 0) x time control 0.38 x length 0.5 / max length 1
        offset = world.node(nodes[-1]).tropism_offset
        assert np.allclose(offset, [0.0, 0.0095, 0.0])

        tip = node_world_position(branch, world.node(nodes[-1]))
        assert np.allclose(tip, [1.0, 1.5095, 2.0])

    def test_changed_branches_are_marked_once(self) -> None:
        world, ctx, b, branch = self.grown_whip()
        run_phase(calculate_segment_lengths_and_tropism, world, ctx)
        assert list(ctx.dirty_branches) == [b]
        assert branch.full_grown

        assert ctx.drain_dirty() == [b]
        run_phase(calculate_segment_lengths_and_tropism, world, ctx)
        assert list(ctx.dirty_branches) == []

    def test_marking_twice_queues_once(self) -> None:
        world, ctx, b, _ = self.grown_whip()
        other = EntityId(EntityKind.BRANCH, 7, 0)
        for branch in (b, other, b, other):
            ctx.mark_dirty(branch)
        assert ctx.drain_dirty() == [b, other]
        assert ctx.drain_dirty() == []

        ctx.mark_dirty(b)
        assert list(ctx.dirty_branches) == [b]

    def test_segment_length_follows_age_gap(self) -> None:
        world, ctx, _, branch = self.grown_whip()
        branch.physiological_age = 30.0
        run_phase(calculate_segment_lengths_and_tropism, world, ctx)
        nodes = base_to_tip(NodeTree(world), branch.root_node)
        assert world.node(nodes[1]).position[1] == pytest.approx(1.0)

    def test_extra_node_is_an_integrity_error(self) -> None:
        """A node with no matching prototype direction aborts the phase."""
        world, ctx, _, branch = self.grown_whip()
        nodes = base_to_tip(NodeTree(world), branch.root_node)
        extra = world.nodes.insert(BranchNode(parent=nodes[-1]))
        world.node(nodes[-1]).children.append(extra)
        with pytest.raises(GraphIntegrityError):
            run_phase(calculate_segment_lengths_and_tropism, world, ctx)
