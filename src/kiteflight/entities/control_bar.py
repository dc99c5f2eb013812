"""
Control Bar Entity
==================
The pilot's bar: turns a bar rotation into left/right handle positions.

The bar pivots about an axis perpendicular to both the bar and the
direction to the kite, so rotating it pulls one handle toward the pilot
and lets the other out.
"""

import logging
from typing import NamedTuple, Optional

import numpy as np

from ..config import ControlBarConfig
from ..physics.attitude import UP, axis_angle_quaternion, rotate_vector, safe_normalize

logger = logging.getLogger(__name__)

BAR_AXIS = np.array([1.0, 0.0, 0.0])


class HandlePositions(NamedTuple):
    """World positions of the two handles"""
    left: np.ndarray
    right: np.ndarray


class ControlBarMapper:
    """Maps a bar rotation angle to handle positions"""

    def __init__(self, config: Optional[ControlBarConfig] = None):
        self.config = config or ControlBarConfig()
        self.position = np.array(self.config.position, dtype=np.float64)
        self.half_width = 0.5 * self.config.width
        self.rotation = 0.0

    def set_rotation(self, angle: float) -> float:
        """Set the bar rotation (rad), clamped to ±max_rotation."""
        limit = self.config.max_rotation
        if not np.isfinite(angle):
            logger.warning("Ignoring non-finite bar rotation %s", angle)
            angle = 0.0
        self.rotation = float(np.clip(angle, -limit, limit))
        return self.rotation

    def rotation_axis(self, kite_position: np.ndarray) -> np.ndarray:
        to_kite = safe_normalize(np.asarray(kite_position, dtype=np.float64) - self.position)
        axis = np.cross(BAR_AXIS, to_kite)
        if np.linalg.norm(axis) < self.config.deadzone:
            return UP.copy()
        return safe_normalize(axis)

    def get_handle_positions(self, kite_position: np.ndarray) -> HandlePositions:
        axis = self.rotation_axis(kite_position)
        q = axis_angle_quaternion(axis, self.rotation)
        offsets = rotate_vector(q, np.array([[-self.half_width, 0.0, 0.0],
                                             [self.half_width, 0.0, 0.0]]))
        return HandlePositions(left=self.position + offsets[0],
                               right=self.position + offsets[1])

    def reset(self):
        self.rotation = 0.0


class BarInputFilter:
    """
    Keyboard-style bar input.

    While a direction is held the rotation ramps at ``rotation_speed``;
    when released it returns toward neutral at ``return_speed`` and stops
    at exactly zero.
    """

    def __init__(self, config: Optional[ControlBarConfig] = None):
        self.config = config or ControlBarConfig()
        self.rotation = 0.0

    def update(self, direction: int, dt: float) -> float:
        """
        Args:
            direction: -1, 0 or +1
            dt: Frame time (s)

        Returns:
            New bar rotation (rad)
        """
        cfg = self.config
        direction = int(np.sign(direction))

        if direction != 0:
            self.rotation += direction * cfg.rotation_speed * dt
        elif self.rotation != 0.0:
            step = cfg.return_speed * dt
            if abs(self.rotation) <= step:
                self.rotation = 0.0
            else:
                self.rotation -= np.sign(self.rotation) * step

        self.rotation = float(np.clip(self.rotation, -cfg.max_rotation, cfg.max_rotation))
        return self.rotation

    def reset(self):
        self.rotation = 0.0
