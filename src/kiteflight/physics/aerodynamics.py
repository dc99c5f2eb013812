"""
Aerodynamics Module
===================
Flat-plate pressure forces on the kite's triangular sail panels.

Implements:
- Per-panel normal pressure from the apparent wind (q · area · incidence)
- Left/right force split for steering torque
- Empirical stall curve on the global angle of attack
- Optional exponential smoothing of the returned force and torque

This is a tuned flat-plate model, not CFD: forces act along the panel
normals and "drag" is reported as zero because the normal force already
carries the downwind component.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from ..config import AeroConfig
from .attitude import rotate_vector
from .geometry import KiteGeometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StallCurve:
    """
    Lift multiplier as a function of angle of attack (degrees).

    Full lift up to ``full_lift_below``, linear decay to ``stalled_factor``
    at ``stalled_at``, flat beyond.
    """
    full_lift_below: float = 10.0
    stalled_at: float = 18.0
    stalled_factor: float = 0.4
    enabled: bool = True

    @classmethod
    def disabled(cls) -> "StallCurve":
        return cls(enabled=False)

    @classmethod
    def from_config(cls, config: AeroConfig) -> "StallCurve":
        return cls(full_lift_below=config.stall_full_lift_below,
                   stalled_at=config.stall_angle,
                   stalled_factor=config.stall_factor,
                   enabled=config.stall_enabled)

    def factor(self, aoa_deg: float) -> float:
        if not self.enabled or aoa_deg <= self.full_lift_below:
            return 1.0
        if aoa_deg >= self.stalled_at:
            return self.stalled_factor
        t = (aoa_deg - self.full_lift_below) / (self.stalled_at - self.full_lift_below)
        return 1.0 - t * (1.0 - self.stalled_factor)


class ForceSmoother:
    """Exponential low-pass: ``out = alpha * new + (1 - alpha) * previous``."""

    def __init__(self, alpha: float = 0.15):
        self.alpha = alpha
        self.force: Optional[np.ndarray] = None
        self.torque: Optional[np.ndarray] = None

    def update(self, force: np.ndarray, torque: np.ndarray):
        if self.force is None:
            self.force = force.copy()
            self.torque = torque.copy()
        else:
            self.force = self.alpha * force + (1.0 - self.alpha) * self.force
            self.torque = self.alpha * torque + (1.0 - self.alpha) * self.torque
        return self.force.copy(), self.torque.copy()

    def reset(self):
        self.force = None
        self.torque = None


class AerodynamicsSolver:
    """
    Panel-pressure aerodynamics for the whole kite.

    Every call works from the apparent wind (already including the kite's
    own motion) and the current orientation; the solver holds no state
    besides the optional smoother.
    """

    def __init__(self,
                 geometry: KiteGeometry,
                 config: Optional[AeroConfig] = None,
                 stall_curve: Optional[StallCurve] = None):
        self.geometry = geometry
        self.config = config or AeroConfig()
        self.stall_curve = stall_curve or StallCurve.from_config(self.config)
        self.smoother = ForceSmoother(self.config.smoothing_factor)
        self.smoothing_enabled = self.config.smoothing_enabled

    def dynamic_pressure(self, apparent_wind: np.ndarray) -> float:
        """q = 0.5 · ρ · |w|²"""
        speed = np.linalg.norm(apparent_wind)
        return 0.5 * self.config.air_density * speed ** 2

    def _zero_result(self, speed: float) -> Dict:
        zero = np.zeros(3)
        return {
            'lift': zero.copy(), 'drag': zero.copy(), 'torque': zero.copy(),
            'left_force': zero.copy(), 'right_force': zero.copy(),
            'raw_force': zero.copy(), 'raw_torque': zero.copy(),
            'smoothed_lift': zero.copy(), 'smoothed_torque': zero.copy(),
            'stall_factor': 1.0, 'aoa_deg': 0.0,
            'apparent_speed': float(speed), 'dynamic_pressure': 0.0,
            'surfaces': [],
        }

    def _panel_loads(self, apparent_wind: np.ndarray, orientation: np.ndarray) -> Dict:
        """Raw per-panel forces before the stall and scale factors."""
        eps = self.config.epsilon
        speed = np.linalg.norm(apparent_wind)
        wind_dir = apparent_wind / speed
        q = self.dynamic_pressure(apparent_wind)

        total_force = np.zeros(3)
        total_torque = np.zeros(3)
        left_force = np.zeros(3)
        right_force = np.zeros(3)
        weighted_normal = np.zeros(3)
        surfaces: List[Dict] = []

        for panel in self.geometry.panels:
            normal_local = self.geometry.panel_normal(panel)
            centroid_local = self.geometry.panel_centroid(panel)
            if normal_local is None or centroid_local is None:
                logger.debug("Skipping panel %s: incomplete geometry", panel.name)
                continue

            normal = rotate_vector(orientation, normal_local)
            centroid = rotate_vector(orientation, centroid_local)
            alignment = float(np.dot(wind_dir, normal))
            weighted_normal += normal * panel.area * np.sign(alignment or 1.0)

            incidence = abs(alignment)
            if incidence <= eps:
                continue

            # Pressure always pushes the sail downwind
            direction = normal if alignment > 0 else -normal
            force = direction * q * panel.area * incidence
            torque = np.cross(centroid, force)

            total_force += force
            total_torque += torque
            if centroid_local[0] < 0:
                left_force += force
            else:
                right_force += force

            surfaces.append({
                'name': panel.name,
                'centroid': centroid,
                'normal': normal,
                'force': force,
                'incidence': incidence,
            })

        normal_norm = np.linalg.norm(weighted_normal)
        if normal_norm > eps:
            cos_aoa = abs(float(np.dot(wind_dir, weighted_normal / normal_norm)))
            aoa_deg = float(np.degrees(np.arccos(np.clip(cos_aoa, 0.0, 1.0))))
        else:
            aoa_deg = 90.0

        return {
            'force': total_force,
            'torque': total_torque,
            'left_force': left_force,
            'right_force': right_force,
            'aoa_deg': aoa_deg,
            'speed': float(speed),
            'q': q,
            'surfaces': surfaces,
        }

    def calculate_forces(self, apparent_wind: np.ndarray, orientation: np.ndarray) -> Dict:
        """
        Total aerodynamic load on the kite.

        Args:
            apparent_wind: Wind relative to the kite (m/s, world frame)
            orientation: Body-to-world unit quaternion (x, y, z, w)

        Returns:
            Dict with 'lift', 'drag', 'torque', 'left_force', 'right_force'
            and diagnostics. 'lift' and 'torque' are the smoothed values when
            smoothing is enabled.
        """
        apparent_wind = np.asarray(apparent_wind, dtype=np.float64)
        speed = np.linalg.norm(apparent_wind)
        if speed < self.config.min_wind_speed:
            return self._zero_result(speed)

        loads = self._panel_loads(apparent_wind, orientation)
        raw_force = loads['force']
        raw_torque = loads['torque']

        stall = self.stall_curve.factor(loads['aoa_deg'])
        lift = raw_force * self.config.lift_scale * stall

        raw_mag = np.linalg.norm(raw_force)
        torque_scale = np.clip(np.linalg.norm(lift) / max(self.config.epsilon, raw_mag),
                               0.1, 3.0)
        torque = raw_torque * torque_scale

        if self.smoothing_enabled:
            smoothed_lift, smoothed_torque = self.smoother.update(lift, torque)
        else:
            smoothed_lift, smoothed_torque = lift.copy(), torque.copy()

        return {
            'lift': smoothed_lift,
            'drag': np.zeros(3),
            'torque': smoothed_torque,
            'left_force': loads['left_force'],
            'right_force': loads['right_force'],
            'raw_force': raw_force,
            'raw_torque': raw_torque,
            'unsmoothed_lift': lift,
            'unsmoothed_torque': torque,
            'smoothed_lift': smoothed_lift,
            'smoothed_torque': smoothed_torque,
            'stall_factor': stall,
            'aoa_deg': loads['aoa_deg'],
            'apparent_speed': loads['speed'],
            'dynamic_pressure': loads['q'],
            'surfaces': loads['surfaces'],
        }

    def compute_metrics(self, apparent_wind: np.ndarray, orientation: np.ndarray) -> Dict:
        """Summary figures for a HUD; never touches the smoother."""
        apparent_wind = np.asarray(apparent_wind, dtype=np.float64)
        speed = float(np.linalg.norm(apparent_wind))
        if speed < self.config.min_wind_speed:
            return {'apparent_speed': speed, 'lift_mag': 0.0, 'drag_mag': 0.0,
                    'l_over_d': 0.0, 'aoa_deg': 0.0, 'stall_factor': 1.0,
                    'lift_coefficient': 0.0}

        loads = self._panel_loads(apparent_wind, orientation)
        stall = self.stall_curve.factor(loads['aoa_deg'])
        lift_mag = float(np.linalg.norm(loads['force']) * self.config.lift_scale * stall)
        area = self.geometry.total_area
        denom = loads['q'] * area
        return {
            'apparent_speed': speed,
            'lift_mag': lift_mag,
            'drag_mag': 0.0,
            # Normal-force model reports no separate drag
            'l_over_d': float('inf') if lift_mag > 0 else 0.0,
            'aoa_deg': loads['aoa_deg'],
            'stall_factor': stall,
            'lift_coefficient': lift_mag / denom if denom > 0 else 0.0,
        }

    def reset(self):
        self.smoother.reset()
