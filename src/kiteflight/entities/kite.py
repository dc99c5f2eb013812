"""
Kite Body Entity
================
Rigid-body state of the kite and the clamped integrator that advances it.

One step of the integrator:

    validate F, τ  ->  a = F/m (clamped)  ->  v += a dt, damp, clamp
      ->  predicted = x + v dt  ->  line constraints  ->  ground contact
      ->  NaN recovery  ->  commit  ->  angular update

The clamps keep a real-time loop alive through bad input; they are safety
limits rather than physics.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import numpy as np

from ..config import KiteConfig, PhysicsConfig
from ..physics.attitude import (
    clamp_magnitude,
    identity_quaternion,
    integrate_orientation,
    is_finite_vector,
    normalize_quaternion,
    rotate_vector,
)
from ..physics.geometry import KiteGeometry

logger = logging.getLogger(__name__)


@dataclass
class KiteState:
    """Position, velocity, angular velocity and orientation of the kite origin"""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=identity_quaternion)

    def __post_init__(self):
        self.position = np.array(self.position, dtype=np.float64)
        self.velocity = np.array(self.velocity, dtype=np.float64)
        self.angular_velocity = np.array(self.angular_velocity, dtype=np.float64)
        self.orientation = normalize_quaternion(self.orientation)

    def copy(self) -> "KiteState":
        return KiteState(
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            angular_velocity=self.angular_velocity.copy(),
            orientation=self.orientation.copy(),
        )

    @classmethod
    def launch(cls, bar_position: Sequence[float], line_length: float,
               altitude: float = 7.0, line_fraction: float = 0.95) -> "KiteState":
        """
        Kite at rest straight downwind of the bar.

        The kite origin sits at ``altitude`` and ``line_fraction × line_length``
        from the bar, so the lines start just slack.
        """
        bar = np.asarray(bar_position, dtype=np.float64)
        reach = line_fraction * line_length
        rise = altitude - bar[1]
        horizontal = np.sqrt(max(reach ** 2 - rise ** 2, 0.0))
        return cls(position=np.array([bar[0], altitude, bar[2] - horizontal]))

    def kinetic_energy(self, mass: float, inertia: float) -> float:
        return 0.5 * mass * float(np.dot(self.velocity, self.velocity)) + \
            0.5 * inertia * float(np.dot(self.angular_velocity, self.angular_velocity))


class RigidBodyIntegrator:
    """
    Semi-implicit Euler integrator for the kite with safety clamps.

    The line solver is called on the predicted position each step and may
    correct position, velocity, angular velocity and orientation in place.
    """

    def __init__(self,
                 geometry: KiteGeometry,
                 line_solver,
                 kite_config: Optional[KiteConfig] = None,
                 physics_config: Optional[PhysicsConfig] = None,
                 initial_state: Optional[KiteState] = None):
        self.geometry = geometry
        self.line_solver = line_solver
        self.kite = kite_config or KiteConfig()
        self.physics = physics_config or PhysicsConfig()

        self.state = initial_state.copy() if initial_state is not None else KiteState()
        self.previous_position = self.state.position.copy()
        self._anchors = geometry.anchor_array()

        self._smoothed_force: Optional[np.ndarray] = None
        self._smoothed_torque: Optional[np.ndarray] = None
        self.last_acceleration = np.zeros(3)
        self._flags = self._clear_flags()

    @staticmethod
    def _clear_flags() -> Dict[str, bool]:
        return {
            'excessive_acceleration': False,
            'excessive_velocity': False,
            'excessive_angular': False,
            'invalid_force': False,
            'invalid_torque': False,
            'nan_recovered': False,
            'ground_contact': False,
        }

    def reset(self, state: Optional[KiteState] = None):
        self.state = state.copy() if state is not None else KiteState()
        self.previous_position = self.state.position.copy()
        self._smoothed_force = None
        self._smoothed_torque = None
        self.last_acceleration = np.zeros(3)
        self._flags = self._clear_flags()

    def _validate(self, vector, limit: float, flag: str, label: str) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float64)
        if not is_finite_vector(vector) or np.linalg.norm(vector) > limit:
            logger.warning("Discarding invalid %s input: %s", label, vector)
            self._flags[flag] = True
            return np.zeros(3)
        return vector

    def _smooth(self, force: np.ndarray, torque: np.ndarray):
        s = self.physics.force_smoothing
        if s <= 0.0:
            return force, torque
        if self._smoothed_force is None:
            self._smoothed_force, self._smoothed_torque = force, torque
        else:
            self._smoothed_force = s * self._smoothed_force + (1.0 - s) * force
            self._smoothed_torque = s * self._smoothed_torque + (1.0 - s) * torque
        return self._smoothed_force, self._smoothed_torque

    def lowest_point(self, position: np.ndarray, orientation: np.ndarray) -> float:
        """Height of the lowest named point of the kite."""
        world = position + rotate_vector(orientation, self._anchors)
        return float(np.min(world[:, 1]))

    def _ground_contact(self, predicted: np.ndarray):
        lowest = self.lowest_point(predicted, self.state.orientation)
        if not np.isfinite(lowest) or lowest >= self.kite.min_height:
            return
        predicted[1] += self.kite.min_height - lowest
        velocity = self.state.velocity
        if velocity[1] < 0:
            velocity[1] = 0.0
        velocity[0] *= self.physics.ground_friction
        velocity[2] *= self.physics.ground_friction
        self._flags['ground_contact'] = True

    def update(self, force, torque, handles, dt: float) -> None:
        """
        Advance the kite by dt under the given world-frame force and torque.

        Args:
            force: Total force on the kite (N), gravity included
            torque: Total torque about the kite origin (N·m)
            handles: Pair of world-frame handle positions (left, right)
            dt: Timestep (s)
        """
        self._flags = self._clear_flags()
        state = self.state
        phys = self.physics
        previous_orientation = state.orientation.copy()

        force = self._validate(force, phys.max_force, 'invalid_force', 'force')
        torque = self._validate(torque, phys.max_torque, 'invalid_torque', 'torque')
        force, torque = self._smooth(force, torque)

        # Linear
        acceleration, clamped = clamp_magnitude(force / self.kite.mass, phys.max_acceleration)
        self._flags['excessive_acceleration'] = clamped
        self.last_acceleration = acceleration

        velocity = (state.velocity + acceleration * dt) * phys.linear_damping
        velocity, clamped = clamp_magnitude(velocity, phys.max_velocity)
        self._flags['excessive_velocity'] = clamped
        state.velocity = velocity

        predicted = state.position + state.velocity * dt

        if self.line_solver is not None and handles is not None:
            predicted = self.line_solver.enforce_line_constraints(predicted, state, handles, dt)

        self._ground_contact(predicted)

        if not is_finite_vector(predicted) or not is_finite_vector(state.orientation):
            logger.warning("Non-finite kite position, reverting to last valid state")
            predicted = self.previous_position.copy()
            state.velocity = np.zeros(3)
            state.angular_velocity = np.zeros(3)
            state.orientation = previous_orientation
            self._flags['nan_recovered'] = True

        state.position = predicted
        self.previous_position = state.position.copy()

        # Angular
        angular_accel = (torque - phys.angular_drag_coeff * state.angular_velocity) / self.kite.inertia
        angular_accel, clamped_accel = clamp_magnitude(angular_accel, phys.max_angular_acceleration)

        omega = (state.angular_velocity + angular_accel * dt) * phys.angular_damping
        omega, clamped_omega = clamp_magnitude(omega, phys.max_angular_velocity)
        self._flags['excessive_angular'] = clamped_accel or clamped_omega
        state.angular_velocity = omega

        state.orientation = integrate_orientation(state.orientation, omega, dt, phys.epsilon)

    def warnings(self) -> Dict:
        """Flags raised during the last step, with the magnitudes behind them."""
        report = dict(self._flags)
        report['acceleration'] = float(np.linalg.norm(self.last_acceleration))
        report['velocity'] = float(np.linalg.norm(self.state.velocity))
        report['angular_velocity'] = float(np.linalg.norm(self.state.angular_velocity))
        return report
