"""
Test Suite: Kite Body
=====================
Unit tests for KiteState and the rigid-body integrator.

Tests:
- State copies and launch placement
- Force validation and safety clamps
- Ground contact
- NaN recovery
- Orientation integration
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from kiteflight.config import KiteConfig, PhysicsConfig
from kiteflight.entities import KiteState, RigidBodyIntegrator
from kiteflight.physics import KiteGeometry

DT = 1 / 60
MASS = 0.22


@pytest.fixture
def geometry():
    return KiteGeometry.default()


@pytest.fixture
def free_body(geometry):
    """Integrator without lines, kite high above the ground"""
    return RigidBodyIntegrator(geometry, None, KiteConfig(), PhysicsConfig(),
                               initial_state=KiteState(position=[0.0, 20.0, 0.0]))


class NaNLineSolver:
    """Line solver stand-in that corrupts the predicted position"""

    def enforce_line_constraints(self, predicted, state, handles, dt=None):
        return np.full(3, np.nan)


class LateNaNLineSolver:
    """Line solver stand-in that passes the first step and corrupts the second"""

    def __init__(self):
        self.calls = 0

    def enforce_line_constraints(self, predicted, state, handles, dt=None):
        self.calls += 1
        if self.calls == 2:
            return np.full(3, np.nan)
        return predicted


class TestKiteState:
    """Tests for KiteState dataclass"""

    def test_defaults(self):
        """Default state sits at the origin with identity attitude"""
        state = KiteState()
        np.testing.assert_array_equal(state.position, np.zeros(3))
        np.testing.assert_array_equal(state.orientation, [0.0, 0.0, 0.0, 1.0])

    def test_orientation_normalized_on_creation(self):
        """Quaternions are normalized on the way in"""
        state = KiteState(orientation=[0.0, 0.0, 0.0, 2.0])
        np.testing.assert_array_almost_equal(state.orientation, [0.0, 0.0, 0.0, 1.0])

    def test_copy_is_independent(self):
        """Copies share no arrays"""
        state = KiteState(position=[1.0, 2.0, 3.0])
        clone = state.copy()
        clone.position[0] = 99.0
        assert state.position[0] == 1.0

    def test_launch_distance(self):
        """Launch puts the kite 0.95 L from the bar"""
        bar = np.array([0.0, 1.2, 8.0])
        state = KiteState.launch(bar, 15.0, altitude=7.0)
        assert state.position[1] == pytest.approx(7.0)
        assert np.linalg.norm(state.position - bar) == pytest.approx(0.95 * 15.0)
        assert state.position[2] < bar[2]

    def test_kinetic_energy(self):
        """Test KE = 0.5 m v² + 0.5 I ω²"""
        state = KiteState(velocity=[3.0, 4.0, 0.0], angular_velocity=[0.0, 2.0, 0.0])
        # 0.5 * 2 * 25 + 0.5 * 0.5 * 4
        assert state.kinetic_energy(2.0, 0.5) == pytest.approx(26.0)


class TestRigidBodyIntegrator:
    """Tests for RigidBodyIntegrator"""

    def test_gravity_step(self, free_body):
        """One damped Euler step under gravity"""
        free_body.update(np.array([0.0, -MASS * 9.81, 0.0]), np.zeros(3), None, DT)
        expected_vy = -9.81 * DT * 0.988
        assert free_body.state.velocity[1] == pytest.approx(expected_vy)
        assert free_body.state.position[1] == pytest.approx(20.0 + expected_vy * DT)

    def test_huge_force_clamped_to_max_acceleration(self, free_body):
        """10 kN gives exactly the acceleration limit"""
        free_body.update(np.array([10000.0, 0.0, 0.0]), np.zeros(3), None, DT)
        assert np.linalg.norm(free_body.last_acceleration) == pytest.approx(100.0)
        assert free_body.warnings()['excessive_acceleration']
        assert np.all(np.isfinite(free_body.state.position))

    def test_clamp_is_idempotent(self, free_body):
        """Repeated clamping gives the same acceleration"""
        for _ in range(3):
            free_body.update(np.array([10000.0, 0.0, 0.0]), np.zeros(3), None, DT)
            assert np.linalg.norm(free_body.last_acceleration) == pytest.approx(100.0)

    def test_non_finite_force_discarded(self, free_body):
        """NaN force is replaced by zero"""
        free_body.update(np.array([np.nan, 0.0, 0.0]), np.zeros(3), None, DT)
        np.testing.assert_array_equal(free_body.state.velocity, np.zeros(3))
        assert free_body.warnings()['invalid_force']

    def test_force_above_ceiling_discarded(self, free_body):
        """Force over the ceiling is replaced by zero"""
        free_body.update(np.array([0.0, 1.0e6, 0.0]), np.zeros(3), None, DT)
        np.testing.assert_array_equal(free_body.state.velocity, np.zeros(3))
        assert free_body.warnings()['invalid_force']

    def test_infinite_torque_discarded(self, free_body):
        """Infinite torque is replaced by zero"""
        free_body.update(np.zeros(3), np.array([np.inf, 0.0, 0.0]), None, DT)
        np.testing.assert_array_equal(free_body.state.angular_velocity, np.zeros(3))
        assert free_body.warnings()['invalid_torque']

    def test_velocity_clamped(self, geometry):
        """Speed is capped at the velocity limit"""
        body = RigidBodyIntegrator(geometry, None, initial_state=KiteState(
            position=[0.0, 20.0, 0.0], velocity=[100.0, 0.0, 0.0]))
        body.update(np.zeros(3), np.zeros(3), None, DT)
        assert np.linalg.norm(body.state.velocity) == pytest.approx(30.0)
        assert body.warnings()['excessive_velocity']

    def test_angular_clamps(self, free_body):
        """Angular acceleration is capped"""
        free_body.update(np.zeros(3), np.array([0.0, 0.0, 500.0]), None, DT)
        assert free_body.warnings()['excessive_angular']
        expected = 20.0 * DT * 0.985
        assert np.linalg.norm(free_body.state.angular_velocity) == pytest.approx(expected)

    def test_angular_velocity_limit(self, geometry):
        """Angular speed is capped at 25 rad/s"""
        body = RigidBodyIntegrator(geometry, None, initial_state=KiteState(
            position=[0.0, 20.0, 0.0], angular_velocity=[0.0, 40.0, 0.0]))
        body.update(np.zeros(3), np.zeros(3), None, DT)
        assert np.linalg.norm(body.state.angular_velocity) == pytest.approx(25.0)

    def test_quaternion_stays_unit(self, free_body):
        """Test |q| = 1 after many rotations"""
        for i in range(500):
            torque = np.array([np.sin(i * 0.1), 0.5, np.cos(i * 0.07)]) * 0.3
            free_body.update(np.zeros(3), torque, None, DT)
            assert np.linalg.norm(free_body.state.orientation) == pytest.approx(1.0, abs=1e-9)

    def test_no_rotation_without_torque(self, free_body):
        """Zero torque leaves the attitude unchanged"""
        free_body.update(np.zeros(3), np.zeros(3), None, DT)
        np.testing.assert_array_equal(free_body.state.orientation, [0.0, 0.0, 0.0, 1.0])

    def test_ground_contact(self, geometry):
        """Lowest point is lifted to min height and the fall stops"""
        body = RigidBodyIntegrator(geometry, None, KiteConfig(min_height=0.5), initial_state=KiteState(
            position=[0.0, 0.55, 0.0], velocity=[2.0, -5.0, 0.0]))
        body.update(np.array([0.0, -MASS * 9.81, 0.0]), np.zeros(3), None, DT)

        state = body.state
        assert body.lowest_point(state.position, state.orientation) == pytest.approx(0.5)
        assert state.velocity[1] == 0.0
        assert state.velocity[0] == pytest.approx(2.0 * 0.988 * 0.85)
        assert body.warnings()['ground_contact']

    def test_nan_position_reverts(self, geometry):
        """NaN on the first step reverts to the start position"""
        start = KiteState(position=[1.0, 5.0, -3.0], velocity=[1.0, 0.0, 0.0])
        body = RigidBodyIntegrator(geometry, NaNLineSolver(), initial_state=start)
        body.update(np.zeros(3), np.zeros(3), ((0, 0, 0), (0, 0, 0)), DT)

        np.testing.assert_array_equal(body.state.position, [1.0, 5.0, -3.0])
        np.testing.assert_array_equal(body.state.velocity, np.zeros(3))
        assert body.warnings()['nan_recovered']

    def test_nan_reverts_to_last_committed_position(self, geometry):
        """NaN on a later step reverts to the position committed just before it"""
        start = KiteState(position=[0.0, 20.0, 0.0], velocity=[6.0, 0.0, 0.0])
        body = RigidBodyIntegrator(geometry, LateNaNLineSolver(), initial_state=start)
        handles = ((0, 0, 0), (0, 0, 0))

        body.update(np.zeros(3), np.zeros(3), handles, DT)
        committed = body.state.position.copy()
        assert committed[0] > 0.0

        body.update(np.zeros(3), np.zeros(3), handles, DT)
        np.testing.assert_array_equal(body.state.position, committed)
        np.testing.assert_array_equal(body.state.velocity, np.zeros(3))
        assert body.warnings()['nan_recovered']

    def test_reset(self, free_body):
        """Reset installs the new state and clears flags"""
        free_body.update(np.array([0.0, 5.0, 0.0]), np.ones(3), None, DT)
        free_body.reset(KiteState(position=[0.0, 3.0, 0.0]))
        np.testing.assert_array_equal(free_body.state.position, [0.0, 3.0, 0.0])
        np.testing.assert_array_equal(free_body.state.velocity, np.zeros(3))
        assert not any(v for k, v in free_body.warnings().items() if isinstance(v, bool))

    def test_force_smoothing(self, geometry):
        """Smoothing blends the previous force into the new one"""
        body = RigidBodyIntegrator(geometry, None, physics_config=PhysicsConfig(force_smoothing=0.25),
                                   initial_state=KiteState(position=[0.0, 20.0, 0.0]))
        body.update(np.zeros(3), np.zeros(3), None, DT)
        body.update(np.array([4.0, 0.0, 0.0]), np.zeros(3), None, DT)
        assert body.last_acceleration[0] == pytest.approx(0.75 * 4.0 / MASS)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
