"""
Test Suite: Aerodynamics
========================
Unit tests for kite geometry and panel aerodynamics.

Tests:
- Default geometry areas and symmetry
- Missing points degrade silently
- Left/right symmetry of forces and torque
- Stall curve and smoothing
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from kiteflight.config import AeroConfig
from kiteflight.physics import (
    AerodynamicsSolver,
    ForceSmoother,
    KiteGeometry,
    Panel,
    StallCurve,
    identity_quaternion,
    rotate_vector,
)
from kiteflight.physics.geometry import DEFAULT_PANELS, DEFAULT_POINTS


@pytest.fixture
def geometry():
    return KiteGeometry.default()


@pytest.fixture
def solver(geometry):
    return AerodynamicsSolver(geometry)


HEADWIND = np.array([0.0, 0.0, -5.0])


class TestKiteGeometry:
    """Tests for KiteGeometry"""

    def test_default_total_area(self, geometry):
        """Four sail panels add up to 0.68 m²"""
        assert geometry.total_area == pytest.approx(0.68)

    def test_default_is_symmetric(self, geometry):
        """Default kite mirrors across x = 0"""
        assert geometry.is_symmetric()

    def test_missing_point_returns_none(self, geometry):
        """Unknown point names give None"""
        assert geometry.get_point('TAIL') is None

    def test_points_are_read_only(self, geometry):
        """Geometry cannot be mutated after construction"""
        with pytest.raises(TypeError):
            geometry.points['NOSE'] = np.zeros(3)
        with pytest.raises(ValueError):
            geometry.points['NOSE'][0] = 1.0

    def test_frozen_points_can_be_rotated(self, geometry):
        """Frozen geometry arrays rotate into the world frame without copying first"""
        quarter_turn = np.array([0.0, np.sin(np.pi / 4), 0.0, np.cos(np.pi / 4)])
        wingtip = geometry.get_point('LEFT_WINGTIP')
        normal = geometry.panel_normal(geometry.panels[0])
        assert not wingtip.flags.writeable
        assert not normal.flags.writeable

        rotated = rotate_vector(quarter_turn, wingtip)
        assert rotated.flags.writeable
        assert np.linalg.norm(rotated) == pytest.approx(np.linalg.norm(wingtip))
        assert np.linalg.norm(rotate_vector(quarter_turn, normal)) == pytest.approx(1.0)

    def test_area_computed_when_omitted(self):
        """Panel area falls back to the triangle area"""
        geometry = KiteGeometry(
            points={'A': (0, 0, 0), 'B': (1, 0, 0), 'C': (0, 1, 0)},
            panels=(Panel('tri', ('A', 'B', 'C')),),
        )
        assert geometry.panels[0].area == pytest.approx(0.5)
        np.testing.assert_array_almost_equal(geometry.panel_normal(geometry.panels[0]),
                                             [0.0, 0.0, 1.0])

    def test_panel_normals_are_unit(self, geometry):
        """Test |n| = 1 for every panel"""
        for panel in geometry.panels:
            assert np.linalg.norm(geometry.panel_normal(panel)) == pytest.approx(1.0)

    def test_missing_vertex_panel_is_skipped(self, geometry):
        """A panel with an unknown vertex contributes nothing"""
        broken = KiteGeometry(
            points=DEFAULT_POINTS,
            panels=DEFAULT_PANELS + (Panel('ghost', ('NOSE', 'TAIL', 'SPINE_BASE'), 0.1),),
        )
        assert broken.total_area == pytest.approx(0.68)
        assert broken.panel_normal(broken.panels[-1]) is None

        q = identity_quaternion()
        expected = AerodynamicsSolver(geometry).calculate_forces(HEADWIND, q)
        result = AerodynamicsSolver(broken).calculate_forces(HEADWIND, q)
        np.testing.assert_array_almost_equal(result['lift'], expected['lift'])
        np.testing.assert_array_almost_equal(result['torque'], expected['torque'])


class TestStallCurve:
    """Tests for StallCurve"""

    def test_full_lift_at_low_angles(self):
        """No stall loss below the full-lift angle"""
        curve = StallCurve()
        assert curve.factor(0.0) == 1.0
        assert curve.factor(10.0) == 1.0

    def test_linear_decay(self):
        """Stall factor falls linearly between the two angles"""
        assert StallCurve().factor(14.0) == pytest.approx(0.7)

    def test_flat_after_stall(self):
        """Past the stall angle the factor stays at its floor"""
        curve = StallCurve()
        assert curve.factor(18.0) == pytest.approx(0.4)
        assert curve.factor(60.0) == pytest.approx(0.4)

    def test_disabled_is_constant(self):
        """Disabled curve always returns 1"""
        curve = StallCurve.disabled()
        assert curve.factor(45.0) == 1.0


class TestForceSmoother:
    """Tests for ForceSmoother"""

    def test_first_sample_passes_through(self):
        """First smoothed sample equals the input"""
        smoother = ForceSmoother(0.15)
        force, torque = smoother.update(np.array([10.0, 0, 0]), np.array([0, 1.0, 0]))
        np.testing.assert_array_almost_equal(force, [10.0, 0, 0])
        np.testing.assert_array_almost_equal(torque, [0, 1.0, 0])

    def test_blends_new_and_old(self):
        """Test s = α·new + (1-α)·old"""
        smoother = ForceSmoother(0.15)
        smoother.update(np.zeros(3), np.zeros(3))
        force, _ = smoother.update(np.array([100.0, 0, 0]), np.zeros(3))
        assert force[0] == pytest.approx(15.0)


class TestAerodynamicsSolver:
    """Tests for AerodynamicsSolver"""

    def test_calm_air_produces_nothing(self, solver):
        """Below the minimum wind speed every output is zero"""
        result = solver.calculate_forces(np.array([0.05, 0.0, 0.0]), identity_quaternion())
        for key in ('lift', 'drag', 'torque', 'left_force', 'right_force'):
            np.testing.assert_array_equal(result[key], np.zeros(3))

    def test_dynamic_pressure(self, solver):
        """Test q = 0.5 ρ v²"""
        assert solver.dynamic_pressure(HEADWIND) == pytest.approx(0.5 * 1.225 * 25.0)

    def test_left_right_symmetry(self, solver):
        """Symmetric kite in a head wind has equal halves and no yaw"""
        result = solver.calculate_forces(HEADWIND, identity_quaternion())
        assert np.linalg.norm(result['left_force']) == pytest.approx(
            np.linalg.norm(result['right_force']))
        assert result['torque'][1] == pytest.approx(0.0, abs=1e-9)
        assert result['torque'][2] == pytest.approx(0.0, abs=1e-9)
        assert result['lift'][0] == pytest.approx(0.0, abs=1e-9)

    def test_force_pushes_downwind(self, solver):
        """Sail force points along the wind"""
        result = solver.calculate_forces(HEADWIND, identity_quaternion())
        assert result['lift'][2] < 0.0
        assert result['lift'][1] > 0.0

    def test_lift_is_scaled_raw_force(self, solver):
        """Lift = raw force × lift scale × stall factor"""
        result = solver.calculate_forces(HEADWIND, identity_quaternion())
        expected = result['raw_force'] * 2.2 * result['stall_factor']
        np.testing.assert_array_almost_equal(result['lift'], expected)
        np.testing.assert_array_equal(result['drag'], np.zeros(3))

    def test_torque_follows_force_scale(self, geometry):
        """Torque scale is clamped to [0.1, 3]"""
        solver = AerodynamicsSolver(geometry, stall_curve=StallCurve.disabled())
        result = solver.calculate_forces(HEADWIND, identity_quaternion())
        np.testing.assert_array_almost_equal(result['torque'], result['raw_torque'] * 2.2)

    def test_sub_totals_sum_to_raw(self, solver):
        """Left plus right equals the raw total"""
        result = solver.calculate_forces(HEADWIND, identity_quaternion())
        np.testing.assert_array_almost_equal(result['left_force'] + result['right_force'],
                                             result['raw_force'])
        assert len(result['surfaces']) == 4

    def test_force_scales_with_square_of_speed(self, solver):
        """Doubling the wind quadruples the force"""
        slow = solver.calculate_forces(HEADWIND, identity_quaternion())
        fast = solver.calculate_forces(HEADWIND * 2, identity_quaternion())
        assert np.linalg.norm(fast['raw_force']) == pytest.approx(
            4.0 * np.linalg.norm(slow['raw_force']))

    def test_smoothing_keeps_raw_values(self, geometry):
        """Smoothed outputs lag while raw values stay current"""
        solver = AerodynamicsSolver(geometry, AeroConfig(smoothing_enabled=True))
        q = identity_quaternion()
        first = solver.calculate_forces(HEADWIND, q)
        second = solver.calculate_forces(HEADWIND * 2, q)
        expected = 0.15 * second['unsmoothed_lift'] + 0.85 * first['lift']
        np.testing.assert_array_almost_equal(second['lift'], expected)
        assert np.linalg.norm(second['unsmoothed_lift']) > np.linalg.norm(second['lift'])

    def test_metrics_have_no_smoothing_side_effect(self, geometry):
        """Metrics leave the smoother untouched"""
        solver = AerodynamicsSolver(geometry, AeroConfig(smoothing_enabled=True))
        metrics = solver.compute_metrics(HEADWIND, identity_quaternion())
        assert solver.smoother.force is None
        assert metrics['apparent_speed'] == pytest.approx(5.0)
        assert metrics['lift_mag'] > 0.0
        assert metrics['drag_mag'] == 0.0

    def test_reset_clears_smoother(self, geometry):
        """Reset makes the next sample pass through"""
        solver = AerodynamicsSolver(geometry, AeroConfig(smoothing_enabled=True))
        solver.calculate_forces(HEADWIND, identity_quaternion())
        solver.reset()
        assert solver.smoother.force is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
