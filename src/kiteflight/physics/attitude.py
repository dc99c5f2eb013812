"""
Attitude Helpers
================
Small vector and quaternion utilities shared by the solvers.

Vectors are numpy arrays of shape (3,). Orientations are unit quaternions
stored scalar-last, ``(x, y, z, w)``, which is the convention of
``scipy.spatial.transform.Rotation``.
"""

import numpy as np
from scipy.spatial.transform import Rotation as R
from typing import Tuple


EPSILON = 1e-4

UP = np.array([0.0, 1.0, 0.0])


def identity_quaternion() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0])


def safe_normalize(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """Unit vector along v, or zeros when v is (near) zero."""
    n = np.linalg.norm(v)
    if n < eps:
        return np.zeros_like(v, dtype=np.float64)
    return v / n


def normalize_quaternion(q: np.ndarray) -> np.ndarray:
    """Renormalize a quaternion; a degenerate or non-finite input becomes identity."""
    q = np.asarray(q, dtype=np.float64)
    n = np.linalg.norm(q)
    if not np.isfinite(n) or n < 1e-12:
        return identity_quaternion()
    return q / n


def rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate a body-frame vector (or an (N, 3) stack) into the world frame."""
    # scipy rejects read-only buffers, and geometry arrays are frozen
    return R.from_quat(np.array(q, dtype=np.float64)).apply(np.array(v, dtype=np.float64))


def axis_angle_quaternion(axis: np.ndarray, angle: float) -> np.ndarray:
    axis = safe_normalize(np.asarray(axis, dtype=np.float64))
    return R.from_rotvec(axis * angle).as_quat()


def compose_rotation(q: np.ndarray, rotation_vector: np.ndarray) -> np.ndarray:
    """
    Pre-multiply q by the world-frame rotation ``rotation_vector``.

    Returns ``normalize(dq ⊗ q)`` where dq rotates by |rotation_vector|
    radians about its direction.
    """
    dq = R.from_rotvec(rotation_vector)
    return normalize_quaternion((dq * R.from_quat(q)).as_quat())


def integrate_orientation(q: np.ndarray,
                          angular_velocity: np.ndarray,
                          dt: float,
                          eps: float = EPSILON) -> np.ndarray:
    """Advance an orientation by a world-frame angular velocity over dt."""
    if np.linalg.norm(angular_velocity) <= eps:
        return normalize_quaternion(q)
    return compose_rotation(q, angular_velocity * dt)


def clamp_magnitude(v: np.ndarray, limit: float) -> Tuple[np.ndarray, bool]:
    """Scale v down to ``limit`` if longer. Returns (vector, was_clamped)."""
    n = np.linalg.norm(v)
    if n > limit:
        return v * (limit / n), True
    return v, False


def is_finite_vector(v) -> bool:
    return bool(np.all(np.isfinite(v)))
