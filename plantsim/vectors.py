"""
Small 3-vector helpers on NumPy arrays.

Branch nodes are laid out in a local frame whose +Y axis is the branch
normal; these helpers build the rotations between that frame and the world.
"""

import numpy as np

EPS = 1e-9

UP = np.array([0.0, 1.0, 0.0])


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector along v, or the zero vector when v has no length."""
    v = np.asarray(v, dtype=float)
    norm = np.linalg.norm(v)
    if norm < EPS:
        return np.zeros(3)
    return v / norm


def angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """Angle in radians between two vectors (0 if either has no length)."""
    na = np.linalg.norm(a)
    nb = np.linalg.norm(b)
    if na < EPS or nb < EPS:
        return 0.0
    cos = np.dot(a, b) / (na * nb)
    return float(np.arccos(np.clip(cos, -1.0, 1.0)))


def rotation_matrix(angle: float, axis: np.ndarray) -> np.ndarray:
    """
    Rodrigues rotation matrix for a right-handed rotation about axis.

    A zero angle or a zero-length axis gives the identity.
    """
    axis = normalize(axis)
    if angle == 0.0 or not axis.any():
        return np.eye(3)
    x, y, z = axis
    k = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    return np.eye(3) + np.sin(angle) * k + (1.0 - np.cos(angle)) * (k @ k)


def frame_rotation(normal: np.ndarray) -> np.ndarray:
    """Rotation taking the local +Y axis onto ``normal``."""
    n = normalize(normal)
    if not n.any():
        return np.eye(3)
    axis = np.cross(UP, n)
    if np.linalg.norm(axis) < EPS:
        # Parallel or anti-parallel to +Y
        return np.eye(3) if n[1] > 0 else rotation_matrix(np.pi, np.array([1.0, 0.0, 0.0]))
    return rotation_matrix(angle_between(UP, n), axis)


def perpendicular_axes(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Two unit axes perpendicular to normal and to each other."""
    n = normalize(normal)
    if not n.any():
        n = UP
    reference = np.array([1.0, 0.0, 0.0])
    if abs(np.dot(reference, n)) > 0.9:
        reference = np.array([0.0, 0.0, 1.0])
    first = normalize(np.cross(n, reference))
    second = normalize(np.cross(n, first))
    return first, second
