"""
Branch development: the per-tick growth phases.

Each phase takes the world, the shared context and a command buffer, and
runs over every plant. Phases run in this order, with the buffer applied
after each one:

1. update_branch_bounds: branch spheres from current node positions
2. calculate_branch_light_exposure: rebuild the light field, light the tips
3. calculate_growth_vigor: gather light to the root, hand vigor back out
4. assign_growth_rates: vigor -> growth rate through the smoothstep curve
5. step_physiological_age: branches and their nodes grow older
6. update_branch_nodes: add prototype layers the branch age calls for
7. determine_create_new_branches: sprout up to two branches per mature tip
8. assign_thicknesses: pipe-model thickness from the tips down
9. calculate_segment_lengths_and_tropism: lay out nodes, bend them, flag meshes

Plant-level phases (bounds, overlaps, ageing, seeding) live in
plantsim.plants and are interleaved by plantsim.schedule.

Key invariants:
- vigor handed to the children of a branch sums to the branch's vigor
- a branch never has more than two child branches
- a node with children is exactly as thick as the norm of its children
"""

import logging

import jax.numpy as jnp
import numpy as np

from plantsim import curves
from plantsim.context import SimulationContext
from plantsim.entities import (
    Branch,
    BranchNode,
    CommandBuffer,
    EntityId,
    GraphIntegrityError,
    Plant,
    World,
)
from plantsim.geometry import BoundingSphere, bounding_sphere, collision_volumes
from plantsim.prototypes import BranchPrototype
from plantsim.traversal import (
    BranchTree,
    NodeTree,
    base_to_tip,
    non_terminal,
    on_layer,
    pairs_base_to_tip,
    terminal,
    tip_to_base,
)
from plantsim.vectors import (
    angle_between,
    frame_rotation,
    normalize,
    perpendicular_axes,
    rotation_matrix,
)

logger = logging.getLogger(__name__)


# =============================================================================
# HELPERS
# =============================================================================


def root_branch(world: World, plant: Plant) -> EntityId | None:
    """The plant's root branch, or None if the plant has no live one."""
    if plant.root_branch is None:
        return None
    branch = world.branches.try_get(plant.root_branch)
    if branch is None or branch.root_node is None:
        return None
    return plant.root_branch


def plant_branches(world: World, plant: Plant) -> list[EntityId]:
    """Every live branch of a plant, base to tip."""
    root = root_branch(world, plant)
    if root is None:
        return []
    return base_to_tip(BranchTree(world), root)


def node_world_position(
    branch: Branch, node: BranchNode, rotation: np.ndarray | None = None
) -> np.ndarray:
    """World position: rotated local position plus tropism offset, from the branch root."""
    if rotation is None:
        rotation = frame_rotation(branch.normal)
    return branch.root_position + rotation @ node.position + node.tropism_offset


def branch_node_positions(world: World, branch: Branch, traversal: str) -> list[np.ndarray]:
    """World positions of a branch's nodes, base to tip."""
    if branch.root_node is None:
        return []
    rotation = frame_rotation(branch.normal)
    return [
        node_world_position(branch, world.node(n, traversal), rotation)
        for n in base_to_tip(NodeTree(world), branch.root_node)
    ]


def _attach_node(parent: EntityId, child: EntityId):
    def command(world: World) -> None:
        world.node(parent, "attach_node").children.append(child)

    return command


def _attach_branch(parent: EntityId, slot: int, child: EntityId):
    def command(world: World) -> None:
        branch = world.branch(parent, "attach_branch")
        if branch.children[slot] is not None:
            raise GraphIntegrityError(parent, "attach_branch")
        branch.children[slot] = child

    return command


# =============================================================================
# BOUNDS AND LIGHT
# =============================================================================


def update_branch_bounds(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """Refit every branch's bounding sphere to its node world positions."""
    radius = ctx.config.single_node_radius
    for _, branch in world.branches:
        positions = branch_node_positions(world, branch, "update_branch_bounds")
        if not positions:
            continue
        if len(positions) == 1:
            branch.bounds = BoundingSphere(center=positions[0], radius=radius)
        else:
            branch.bounds = bounding_sphere(positions)


def calculate_branch_light_exposure(
    world: World, ctx: SimulationContext, commands: CommandBuffer
) -> None:
    """
    Rebuild the light field and set the light exposure of terminal branches.

    Every branch casts its bounding-sphere volume as shadow into the cell
    holding its centre. A terminal branch then receives
    lerp(shadow_tolerance, 1, light at its centre).
    """
    light = ctx.light
    light.clear()
    for _, branch in world.branches:
        if branch.root_node is None:
            continue
        light.add_cell_shadow(light.cell_id(branch.bounds.center), branch.bounds.volume())

    tree = BranchTree(world)
    for _, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        tips = [world.branch(b, "calculate_branch_light_exposure") for b in terminal(tree, root)]
        shadows = jnp.asarray([light.shadow_at(tip.bounds.center) for tip in tips])
        exposures = curves.lerp(
            plant.plasticity.shadow_tolerance, 1.0, curves.light_from_shadow(shadows)
        )
        for tip, exposure in zip(tips, np.asarray(exposures).tolist()):
            tip.light_exposure = exposure


# =============================================================================
# VIGOR
# =============================================================================


def calculate_growth_vigor(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """
    Collect light from the tips to the root and distribute vigor back out.

    Non-terminal light is recomputed as the sum of the children's. The root
    vigor is the larger of the collected light and the plant's current max
    vigor; the main-child shares of every fork are computed in one
    ``curves.apical_share`` call and applied base to tip.
    """
    tree = BranchTree(world)
    for _, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        order = base_to_tip(tree, root)
        for b in non_terminal(tree, root):
            world.branch(b).light_exposure = 0.0
        for b in reversed(order):
            branch = world.branch(b)
            if b != root and branch.parent is not None:
                world.branch(branch.parent, "calculate_growth_vigor").light_exposure += (
                    branch.light_exposure
                )

        root_data = world.branch(root)
        root_data.growth_vigor = max(root_data.light_exposure, plant.max_vigor)

        children_of = {
            b: [world.branch(c) for c in tree.children(b, "calculate_growth_vigor")] for b in order
        }
        forks = [b for b in order if len(children_of[b]) == 2]
        shares = dict(
            zip(forks, _main_shares([children_of[b] for b in forks], plant.growth.apical_control))
        )
        for b in order:
            branch = world.branch(b)
            children = children_of[b]
            if len(children) == 1:
                children[0].growth_vigor = branch.growth_vigor
            elif len(children) == 2:
                first, second = children
                first.growth_vigor, second.growth_vigor = curves.divide_vigor(
                    branch.growth_vigor, first.light_exposure, second.light_exposure, shares[b]
                )


def _main_shares(pairs: list[list[Branch]], apical_control: float) -> list[float]:
    if not pairs:
        return []
    q_main = [max(a.light_exposure, b.light_exposure) for a, b in pairs]
    q_lateral = [min(a.light_exposure, b.light_exposure) for a, b in pairs]
    return np.asarray(curves.apical_share(q_main, q_lateral, apical_control)).tolist()


def assign_growth_rates(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    for _, plant in world.plants:
        branches = [world.branch(b) for b in plant_branches(world, plant)]
        if not branches:
            continue
        growth = plant.growth
        rates = curves.growth_rate(
            [branch.growth_vigor for branch in branches],
            growth.min_vigor,
            growth.max_vigor,
            growth.growth_rate,
        )
        for branch, rate in zip(branches, np.asarray(rates).tolist()):
            branch.growth_rate = rate


def step_physiological_age(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """Branches age by their growth rate, their nodes by rate x age_step."""
    age_step = ctx.config.age_step
    nodes = NodeTree(world)
    for _, plant in world.plants:
        for b in plant_branches(world, plant):
            branch = world.branch(b)
            branch.physiological_age += branch.growth_rate
            for n in base_to_tip(nodes, branch.root_node):
                world.node(n, "step_physiological_age").phys_age += branch.growth_rate * age_step


# =============================================================================
# STRUCTURE
# =============================================================================


def target_layers(prototype: BranchPrototype, physiological_age: float) -> int:
    """Layers a branch of this age should have: lerp(1, layers, age / mature_age), rounded."""
    progress = min(max(physiological_age / prototype.mature_age, 0.0), 1.0)
    return curves.round_half_up(1.0 + (prototype.layers - 1) * progress)


def update_branch_nodes(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """Spawn the prototype layers a branch has grown into since last tick."""
    nodes = NodeTree(world)
    for _, branch in world.branches:
        if branch.root_node is None:
            continue
        prototype = ctx.prototypes[branch.prototype]
        target = target_layers(prototype, branch.physiological_age)
        if branch.layers >= target:
            continue

        layer = on_layer(nodes, branch.root_node, branch.layers)
        factors = {n: world.node(n).thickening_factor for n in layer}
        while branch.layers < target:
            counts = prototype.node_counts[branch.layers - 1]
            if len(counts) != len(layer):
                raise GraphIntegrityError(branch.root_node, "update_branch_nodes")
            next_layer = []
            for parent, count in zip(layer, counts):
                for _ in range(count):
                    child = commands.spawn(
                        BranchNode(
                            phys_age=branch.physiological_age,
                            thickening_factor=factors[parent],
                            parent=parent,
                        )
                    )
                    commands.push(_attach_node(parent, child))
                    factors[child] = factors[parent]
                    next_layer.append(child)
            layer = next_layer
            branch.layers += 1


def distribute_node_vigor(world: World, branch: Branch) -> list[EntityId]:
    """
    Spread a branch's light and vigor over its nodes.

    Terminal nodes share the branch light equally; light is summed towards
    the root node, which takes the branch's vigor and hands it out in
    proportion to each child's light.

    Returns:
        The branch's terminal nodes, base to tip
    """
    nodes = NodeTree(world)
    order = base_to_tip(nodes, branch.root_node)
    tips = [n for n in order if not world.node(n).children]

    for n in order:
        world.node(n).light_exposure = 0.0
    share = branch.light_exposure / len(tips)
    for n in tips:
        world.node(n).light_exposure = share
    for n in reversed(order):
        node = world.node(n)
        if node.parent is not None and n != branch.root_node:
            world.node(node.parent, "distribute_node_vigor").light_exposure += node.light_exposure

    world.node(branch.root_node).growth_vigor = branch.growth_vigor
    forks = [
        (world.node(n), [world.node(c, "distribute_node_vigor") for c in world.node(n).children])
        for n in order
        if world.node(n).children
    ]
    if not forks:
        return tips
    siblings = [children for _, children in forks for _ in children]
    weights = curves.proportional_weights(
        [child.light_exposure for _, children in forks for child in children],
        [sum(c.light_exposure for c in group) for group in siblings],
        [len(group) for group in siblings],
    )
    weights = iter(np.asarray(weights).tolist())
    for node, children in forks:
        for child in children:
            child.growth_vigor = node.growth_vigor * next(weights)
    return tips


def orientation_score(
    normal: np.ndarray, collision: float, tropism_direction: np.ndarray, weight: float
) -> float:
    """
    weight · alignment + (1 - weight) · (1 - predicted collision volume)

    Alignment is (1 + cos θ) / 2 for the angle θ between the normal and the
    tropism direction (0.5 when there is no tropism).
    """
    if tropism_direction.any():
        alignment = (1.0 + np.cos(angle_between(normal, tropism_direction))) / 2.0
    else:
        alignment = 0.5
    return weight * alignment + (1.0 - weight) * (1.0 - collision)


def best_orientation(
    parent_normal: np.ndarray,
    origin: np.ndarray,
    prototype: BranchPrototype,
    plant: Plant,
    tropism_direction: np.ndarray,
    centers: np.ndarray,
    radii: np.ndarray,
    single_node_radius: float,
) -> tuple[np.ndarray, float]:
    """
    Pick the best of four candidate normals for a new branch.

    The candidates are the parent normal tipped by plus and minus the
    branching angle about two axes perpendicular to it. Ties keep the
    earlier candidate.

    Returns:
        (normal, score)
    """
    growth = plant.growth
    angle = growth.branching_angle
    parent_normal = normalize(parent_normal)
    normals = [
        normalize(rotation_matrix(sign * angle, axis) @ parent_normal)
        for axis in perpendicular_axes(parent_normal)
        for sign in (1.0, -1.0)
    ]
    candidates = prototype.possible_bounds(
        growth.max_segment_length, normals, origin, single_node_radius
    )
    collisions = np.asarray(collision_volumes(candidates, centers, radii)).tolist()
    best_normal, best_score = normals[0], -np.inf
    for normal, collision in zip(normals, collisions):
        score = orientation_score(
            normal, collision, tropism_direction, growth.tropism_angle_weight
        )
        if score > best_score:
            best_normal, best_score = normal, score
    return best_normal, float(best_score)


def collision_spheres(
    world: World, plant: Plant, cross_plant: bool
) -> tuple[np.ndarray, np.ndarray]:
    """Centres and radii of the branch spheres a new branch must avoid."""
    branch_ids = plant_branches(world, plant)
    if cross_plant:
        for other in plant.intersections:
            other_plant = world.plants.try_get(other)
            if other_plant is not None:
                branch_ids.extend(plant_branches(world, other_plant))
    spheres = [world.branch(b).bounds for b in branch_ids]
    centers = np.array([s.center for s in spheres]).reshape(-1, 3)
    radii = np.array([s.radius for s in spheres])
    return centers, radii


def determine_create_new_branches(
    world: World, ctx: SimulationContext, commands: CommandBuffer
) -> None:
    """
    Sprout new branches from terminal branches past their mature age.

    Up to two terminal nodes whose vigor exceeds the plant's min vigor
    (highest first) each receive a branch in the next free child slot. The
    new branch's prototype is sampled at (apical control, relative vigor)
    and its normal is the best scoring candidate orientation.
    """
    tree = BranchTree(world)
    tropism_direction = normalize(ctx.config.tropism.pull())
    for plant_id, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        growth = plant.growth
        centers, radii = collision_spheres(world, plant, ctx.config.cross_plant_collisions)

        for b in terminal(tree, root):
            branch = world.branch(b, "determine_create_new_branches")
            if branch.physiological_age <= ctx.prototypes[branch.prototype].mature_age:
                continue
            slots = branch.open_slots()
            if not slots:
                continue

            tips = distribute_node_vigor(world, branch)
            ranked = sorted(
                (n for n in tips if world.node(n).growth_vigor > growth.min_vigor),
                key=lambda n: world.node(n).growth_vigor,
                reverse=True,
            )[:2]
            if not ranked:
                continue

            # Same species v_max as the growth-rate curve, not the decayed plant value
            determinacy = branch.growth_vigor * ctx.sampler.max_determinacy / growth.max_vigor
            index = ctx.sampler.get_prototype_index(growth.apical_control, determinacy)
            prototype = ctx.prototypes[index]

            rotation = frame_rotation(branch.normal)
            for slot, node_id in zip(slots, ranked):
                node = world.node(node_id)
                origin = node_world_position(branch, node, rotation)
                normal, score = best_orientation(
                    branch.normal,
                    origin,
                    prototype,
                    plant,
                    tropism_direction,
                    centers,
                    radii,
                    ctx.config.single_node_radius,
                )
                new_root = commands.spawn(BranchNode(thickening_factor=node.thickening_factor))
                child = commands.spawn(
                    Branch(
                        plant=plant_id,
                        prototype=index,
                        root_node=new_root,
                        parent=b,
                        parent_node=node_id,
                        normal=normal,
                        root_position=origin,
                    )
                )
                commands.push(_attach_branch(b, slot, child))
                logger.debug("Branch %s sprouts %s (prototype %d, score %.3f)", b, child, index, score)


# =============================================================================
# SHAPE
# =============================================================================


def assign_thicknesses(world: World, ctx: SimulationContext, commands: CommandBuffer) -> None:
    """
    Pipe-model thickness, tips first.

    A leaf node takes its thickening factor once and keeps it; a node with
    children gets sqrt(sum of squared child thicknesses). Each branch's
    base thickness is copied onto its parent node.
    """
    tree = BranchTree(world)
    nodes = NodeTree(world)
    for _, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        for b in tip_to_base(tree, root):
            branch = world.branch(b)
            for n in tip_to_base(nodes, branch.root_node):
                node = world.node(n)
                if node.children:
                    node.thickness = float(
                        np.sqrt(sum(world.node(c).thickness ** 2 for c in node.children))
                    )
                elif node.thickness <= 0.0:
                    node.thickness = node.thickening_factor
            if branch.parent_node is not None:
                world.node(branch.parent_node, "assign_thicknesses").thickness = world.node(
                    branch.root_node
                ).thickness


def calculate_segment_lengths_and_tropism(
    world: World, ctx: SimulationContext, commands: CommandBuffer
) -> None:
    """
    Lay out each branch's nodes from their ages and bend them by tropism.

    Segment i (breadth-first) points along the prototype's i-th direction
    with length min(max_len, scale · max(0, branch_age - node_age)). Its
    tropism offset is pull · time_control · length / max_len. Child branches
    are re-rooted on their parent node; changed branches are queued for
    mesh rebuilds.
    """
    tree = BranchTree(world)
    nodes = NodeTree(world)
    pull = ctx.config.tropism.pull()
    for _, plant in world.plants:
        root = root_branch(world, plant)
        if root is None:
            continue
        growth = plant.growth
        for b in base_to_tip(tree, root):
            branch = world.branch(b)
            prototype = ctx.prototypes[branch.prototype]
            changed = not branch.full_grown

            if branch.parent is not None and branch.parent_node is not None:
                parent = world.branch(branch.parent, "calculate_segment_lengths_and_tropism")
                parent_node = world.node(branch.parent_node, "calculate_segment_lengths_and_tropism")
                root_position = node_world_position(parent, parent_node)
                changed |= not np.allclose(root_position, branch.root_position)
                branch.root_position = root_position

            for i, (p, c) in enumerate(pairs_base_to_tip(nodes, branch.root_node)):
                if i >= len(prototype.directions):
                    raise GraphIntegrityError(c, "calculate_segment_lengths_and_tropism")
                parent_node = world.node(p)
                child = world.node(c)
                length = curves.segment_length(
                    growth.max_segment_length,
                    growth.segment_length_scale,
                    branch.physiological_age,
                    child.phys_age,
                )
                position = parent_node.position + prototype.directions[i] * length
                offset = pull * growth.tropism_time_control * length / growth.max_segment_length
                changed |= not (
                    np.allclose(position, child.position) and np.allclose(offset, child.tropism_offset)
                )
                child.position = position
                child.tropism_offset = offset

            if branch.physiological_age > prototype.mature_age:
                branch.full_grown = True
            if changed:
                ctx.mark_dirty(b)
