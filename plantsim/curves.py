"""
Response curves for the growth engine.

Curves shared by the light, vigor and segment phases. They are written
against jax.numpy and work elementwise, so the engine gathers one array of
branch (or node) values per plant, applies a curve once and scatters the
results back as Python floats.

Key properties:
- smoothstep is the growth-rate sigmoid: 0 at 0, 1 at 1, monotone between
- vigor splits conserve the parent's vigor exactly
- zero light sums split evenly instead of dividing by zero
"""

import math

import jax.numpy as jnp
from jax import Array

# Type alias for values that can be either JAX arrays or Python floats
Scalar = Array | float


def lerp(a: Scalar, b: Scalar, t: Scalar) -> Array:
    """Linear interpolation, a at t=0 and b at t=1 (unclamped)."""
    return a + (jnp.asarray(b) - a) * t


def smoothstep(x: Scalar) -> Array:
    """
    Cubic Hermite sigmoid used for growth rates.

    f(x) = 3x² - 2x³

    Not clamped: inputs outside [0, 1] extrapolate the cubic.
    """
    x = jnp.asarray(x)
    return 3.0 * x**2 - 2.0 * x**3


def light_from_shadow(shadow: Scalar) -> Array:
    """Beer-Lambert style attenuation: light = exp(-shadow)."""
    return jnp.exp(-jnp.asarray(shadow))


def growth_rate(
    vigor: Scalar, min_vigor: float, max_vigor: float, plant_rate: float
) -> Array:
    """
    Branch growth rate from its vigor.

    rate = smoothstep((v - v_min) / (v_max - v_min)) · plant_rate

    Args:
        vigor: Branch growth vigor, or an array of them
        min_vigor: Plant v_min
        max_vigor: Plant v_max (the species value, not the decayed one)
        plant_rate: Plant growth rate multiplier

    Returns:
        Growth rate, shaped like vigor (0 when v_max does not exceed v_min)
    """
    vigor = jnp.asarray(vigor, dtype=jnp.float32)
    span = max_vigor - min_vigor
    if span <= 0:
        return jnp.zeros_like(vigor)
    return smoothstep((vigor - min_vigor) / span) * plant_rate


def apical_share(q_main: Scalar, q_lateral: Scalar, apical_control: float) -> Array:
    """
    Fraction of a parent's vigor taken by its main child, elementwise.

        share = a·Q_main / (a·Q_main + (1 - a)·Q_lateral)

    A zero denominator gives 0.5.
    """
    weighted_main = apical_control * jnp.asarray(q_main, dtype=jnp.float32)
    weighted_lateral = (1.0 - apical_control) * jnp.asarray(q_lateral, dtype=jnp.float32)
    denominator = weighted_main + weighted_lateral
    safe_denominator = jnp.where(denominator > 0, denominator, 1.0)
    return jnp.where(denominator > 0, weighted_main / safe_denominator, 0.5)


def divide_vigor(
    vigor: float, light_a: float, light_b: float, main_share: float
) -> tuple[float, float]:
    """
    Give the brighter child vigor · main_share and the other the remainder.

    Equal light splits 50/50 whatever the share.
    """
    if light_a == light_b:
        half = vigor / 2.0
        return half, vigor - half
    v_main = vigor * main_share
    v_lateral = vigor - v_main
    if light_a > light_b:
        return v_main, v_lateral
    return v_lateral, v_main


def proportional_weights(lights: Array, totals: Array, counts: Array) -> Array:
    """
    Each child's fraction of its parent's vigor, elementwise.

    light / total of the child's siblings, or 1 / sibling count where the
    siblings have no light at all.
    """
    lights = jnp.asarray(lights, dtype=jnp.float32)
    totals = jnp.asarray(totals, dtype=jnp.float32)
    even = 1.0 / jnp.asarray(counts, dtype=jnp.float32)
    return jnp.where(totals > 0, lights / jnp.where(totals > 0, totals, 1.0), even)


def segment_length(
    max_length: float, scale: float, branch_age: float, node_age: float
) -> float:
    """length = min(max_length, scale · max(0, branch_age - node_age))"""
    return min(max_length, scale * max(0.0, branch_age - node_age))


def habitat_suitability(value: Scalar, ideal: float, std_dev: float) -> Array:
    """
    Normal density relative to its peak.

    f(x) = exp(-(x - μ)² / (2σ²)), equal to pdf(x) / pdf(μ).
    """
    return jnp.exp(-((jnp.asarray(value) - ideal) ** 2) / (2 * std_dev**2))


def round_half_up(x: float) -> int:
    """Nearest integer with halves rounded up (Python's round() rounds them to even)."""
    return int(math.floor(x + 0.5))
