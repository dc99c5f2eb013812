"""
Wind Field
==========
Ambient wind with deterministic pseudo-turbulence, and the apparent wind
seen by a moving point on the kite.

Direction 0° blows toward -Z; angles increase toward +X. Speeds are set in
km/h and converted to m/s internally.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from ..config import WindConfig

logger = logging.getLogger(__name__)

KMH_TO_MS = 1.0 / 3.6


@dataclass
class WindParams:
    """User-facing wind settings"""
    speed: float = 18.0        # km/h
    direction: float = 0.0     # degrees, [0, 360)
    turbulence: float = 2.0    # percent, [0, 100]

    def clamped(self, min_speed: float = 0.0, max_speed: float = 100.0) -> "WindParams":
        return WindParams(
            speed=float(np.clip(self.speed, min_speed, max_speed)),
            direction=float(self.direction) % 360.0,
            turbulence=float(np.clip(self.turbulence, 0.0, 100.0)),
        )


class WindField:
    """
    Source of the wind vector at the kite.

    Turbulence is a sum of low-frequency sines of the internal clock, so two
    fields stepped with the same dt sequence produce identical wind.
    """

    def __init__(self, config: Optional[WindConfig] = None):
        self.config = config or WindConfig()
        self._params = WindParams(
            speed=self.config.default_speed,
            direction=self.config.default_direction,
            turbulence=self.config.default_turbulence,
        ).clamped(self.config.min_speed, self.config.max_speed)
        self._time = 0.0

    @property
    def params(self) -> WindParams:
        return replace(self._params)

    @property
    def elapsed(self) -> float:
        return self._time

    def set_params(self, speed: Optional[float] = None,
                   direction: Optional[float] = None,
                   turbulence: Optional[float] = None) -> WindParams:
        """Update any subset of the wind settings; out-of-range values are clamped."""
        for name, value in (('speed', speed), ('direction', direction), ('turbulence', turbulence)):
            if value is not None and not np.isfinite(value):
                raise ValueError(f"wind {name} must be finite, got {value}")
        updated = replace(
            self._params,
            speed=self._params.speed if speed is None else speed,
            direction=self._params.direction if direction is None else direction,
            turbulence=self._params.turbulence if turbulence is None else turbulence,
        )
        self._params = updated.clamped(self.config.min_speed, self.config.max_speed)
        logger.debug("Wind set to %.1f km/h from %.0f° (turbulence %.0f%%)",
                     self._params.speed, self._params.direction,
                     self._params.turbulence)
        return self.params

    def reset_clock(self):
        self._time = 0.0

    def wind_vector(self) -> np.ndarray:
        """Current ambient wind in m/s, including turbulence. Does not advance the clock."""
        cfg = self.config
        v = self._params.speed * KMH_TO_MS
        theta = np.radians(self._params.direction)
        wind = np.array([np.sin(theta) * v, 0.0, -np.cos(theta) * v])

        if self._params.turbulence > 0.0 and v > 0.0:
            intensity = self._params.turbulence / 100.0 * cfg.turbulence_scale
            t = self._time
            f = cfg.turbulence_freq_base
            wind[0] += np.sin(t * f) * v * intensity * cfg.turbulence_intensity_xz
            wind[1] += np.sin(t * f * cfg.turbulence_freq_y) * v * intensity * cfg.turbulence_intensity_y
            wind[2] += np.cos(t * f * cfg.turbulence_freq_z) * v * intensity * cfg.turbulence_intensity_xz

        return wind

    def apparent_wind(self,
                      body_velocity: np.ndarray,
                      dt: float,
                      angular_velocity: Optional[np.ndarray] = None,
                      point: Optional[np.ndarray] = None,
                      center: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Wind relative to a point of the kite.

        Advances the internal clock by dt, then returns
        ``wind - (v + ω × (point - center))`` with its magnitude clamped to
        ``max_apparent_speed``. The rotational term is used only when
        angular_velocity, point and center are all given.
        """
        self._time += dt
        wind = self.wind_vector()

        point_velocity = np.asarray(body_velocity, dtype=np.float64)
        if angular_velocity is not None and point is not None and center is not None:
            lever = np.asarray(point) - np.asarray(center)
            point_velocity = point_velocity + np.cross(angular_velocity, lever)

        apparent = wind - point_velocity
        speed = np.linalg.norm(apparent)
        if speed > self.config.max_apparent_speed:
            apparent = apparent * (self.config.max_apparent_speed / speed)
        return apparent
