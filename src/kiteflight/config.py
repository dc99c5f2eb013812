"""
Simulation Configuration
========================
Tunable constants for the kite flight engine, grouped by subsystem.

Every section is a dataclass with working defaults, so an engine can be
built with no file at all. A YAML file only needs the keys it overrides:

    line:
      length: 20.0
      strategy: spring
    wind:
      default_speed: 25.0

Most aerodynamic and damping values are empirically tuned "feel"
parameters rather than measured physics; they live here so they can be
changed without touching the solvers.
"""

import math
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value or section is unusable."""


@dataclass
class WindConfig:
    """Ambient wind defaults and pseudo-turbulence shape"""
    default_speed: float = 18.0            # km/h
    default_direction: float = 0.0         # degrees, 0 = blowing toward -Z
    default_turbulence: float = 2.0        # percent
    min_speed: float = 0.0                 # km/h
    max_speed: float = 100.0               # km/h

    # Coherent turbulence: summed sines at distinct low frequencies
    turbulence_scale: float = 0.15
    turbulence_freq_base: float = 0.3
    turbulence_freq_y: float = 1.3
    turbulence_freq_z: float = 0.7
    turbulence_intensity_xz: float = 0.8
    turbulence_intensity_y: float = 0.2

    max_apparent_speed: float = 25.0       # m/s

    def __post_init__(self):
        if self.min_speed < 0 or self.max_speed < self.min_speed:
            raise ConfigError(
                f"wind speed range [{self.min_speed}, {self.max_speed}] is invalid"
            )
        if self.max_apparent_speed <= 0:
            raise ConfigError("wind.max_apparent_speed must be positive")


@dataclass
class AeroConfig:
    """Flat-plate panel aerodynamics"""
    air_density: float = 1.225             # kg/m³
    lift_scale: float = 2.2                # global multiplier on panel forces
    min_wind_speed: float = 0.1            # m/s, below this no force at all
    epsilon: float = 1e-4

    # Stall curve (degrees); a tuning curve, not measured data
    stall_enabled: bool = True
    stall_full_lift_below: float = 10.0
    stall_angle: float = 18.0
    stall_factor: float = 0.4

    # Exponential low-pass on the returned force/torque
    smoothing_enabled: bool = False
    smoothing_factor: float = 0.15         # weight of the newest sample

    def __post_init__(self):
        if self.air_density <= 0:
            raise ConfigError("aero.air_density must be positive")
        if self.stall_angle <= self.stall_full_lift_below:
            raise ConfigError("aero.stall_angle must exceed aero.stall_full_lift_below")
        if not 0.0 < self.smoothing_factor <= 1.0:
            raise ConfigError("aero.smoothing_factor must be in (0, 1]")


@dataclass
class KiteConfig:
    """Mass properties of the kite body"""
    mass: float = 0.22                     # kg
    inertia: float = 0.05                  # kg·m², scalar (isotropic) inertia
    min_height: float = 0.5                # m, lowest allowed body point

    def __post_init__(self):
        if self.mass <= 0 or self.inertia <= 0:
            raise ConfigError("kite.mass and kite.inertia must be positive")


@dataclass
class PhysicsConfig:
    """Integrator constants and safety clamps"""
    gravity: float = 9.81                  # m/s²
    max_dt: float = 0.016                  # s, frame dt is clamped to this
    fixed_timestep: Optional[float] = None # s, enables the substep accumulator
    max_substeps: int = 5

    linear_damping: float = 0.988          # per-step velocity multiplier
    angular_damping: float = 0.985         # per-step angular velocity multiplier
    angular_drag_coeff: float = 0.08       # N·m·s/rad

    max_force: float = 1.0e5               # N, larger inputs are discarded
    max_torque: float = 1.0e4              # N·m, larger inputs are discarded
    max_acceleration: float = 100.0        # m/s²
    max_velocity: float = 30.0             # m/s
    max_angular_acceleration: float = 20.0 # rad/s²
    max_angular_velocity: float = 25.0     # rad/s

    ground_friction: float = 0.85
    force_smoothing: float = 0.0           # weight of the previous sample, 0 = off
    epsilon: float = 1e-4

    def __post_init__(self):
        if self.max_dt <= 0:
            raise ConfigError("physics.max_dt must be positive")
        if self.fixed_timestep is not None and self.fixed_timestep <= 0:
            raise ConfigError("physics.fixed_timestep must be positive when set")
        for name in ("linear_damping", "angular_damping", "ground_friction"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ConfigError(f"physics.{name} must be in (0, 1], got {value}")
        if not 0.0 <= self.force_smoothing < 1.0:
            raise ConfigError("physics.force_smoothing must be in [0, 1)")


@dataclass
class LineConfig:
    """Control lines and the optional bridle sub-system"""
    length: float = 15.0                   # m
    tolerance: float = 0.005               # fraction of length allowed as stretch
    strategy: str = "pbd"                  # "pbd" or "spring"
    pbd_iterations: int = 2

    # Spring strategy
    stiffness: float = 12000.0             # N/m
    max_tension: float = 250.0             # N

    # Bridles
    bridles: bool = False
    bridle_factor: float = 1.0
    bridle_base_length: float = 0.8        # m
    bridle_stiffness: float = 1000.0       # N/m

    # Slack-line drawing helper
    max_sag: float = 0.015
    catenary_sag_factor: float = 2.5

    def __post_init__(self):
        if self.length <= 0:
            raise ConfigError(f"line.length must be positive, got {self.length}")
        if not 0.0 < self.tolerance < 0.05:
            raise ConfigError("line.tolerance must be a small positive fraction")
        if self.pbd_iterations < 1:
            raise ConfigError("line.pbd_iterations must be at least 1")
        if self.bridle_factor <= 0:
            raise ConfigError("line.bridle_factor must be positive")
        self.strategy = str(self.strategy).lower()


@dataclass
class ControlBarConfig:
    """Pilot control bar"""
    position: Tuple[float, float, float] = (0.0, 1.2, 8.0)
    width: float = 0.6                     # m
    max_rotation: float = math.pi / 6      # rad
    rotation_speed: float = 2.5            # rad/s while a key is held
    return_speed: float = 3.0              # rad/s back to neutral
    deadzone: float = 0.01

    def __post_init__(self):
        self.position = tuple(float(v) for v in self.position)
        if len(self.position) != 3:
            raise ConfigError("control_bar.position must have three components")
        if self.width <= 0 or self.max_rotation <= 0:
            raise ConfigError("control_bar.width and max_rotation must be positive")


@dataclass
class RunConfig:
    """Headless runner defaults"""
    timestep: float = 1.0 / 60.0
    duration: float = 10.0


@dataclass
class SimulationConfig:
    """Complete engine configuration"""
    wind: WindConfig = field(default_factory=WindConfig)
    aero: AeroConfig = field(default_factory=AeroConfig)
    kite: KiteConfig = field(default_factory=KiteConfig)
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)
    line: LineConfig = field(default_factory=LineConfig)
    control_bar: ControlBarConfig = field(default_factory=ControlBarConfig)
    simulation: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "SimulationConfig":
        """Build a config from nested dicts; missing keys keep their defaults."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("configuration root must be a mapping")

        sections = {}
        for section in fields(cls):
            raw = data.get(section.name)
            if raw is None:
                continue
            if not isinstance(raw, dict):
                raise ConfigError(f"section '{section.name}' must be a mapping")
            section_type = section.default_factory
            known = {f.name for f in fields(section_type)}
            unknown = set(raw) - known
            if unknown:
                raise ConfigError(
                    f"unknown keys in '{section.name}': {', '.join(sorted(unknown))}"
                )
            sections[section.name] = section_type(**raw)

        unknown_sections = set(data) - {f.name for f in fields(cls)}
        if unknown_sections:
            raise ConfigError(f"unknown sections: {', '.join(sorted(unknown_sections))}")

        return cls(**sections)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SimulationConfig":
        """Load a YAML file, overriding defaults with whatever it defines."""
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigError(f"cannot parse {path}: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['control_bar']['position'] = list(self.control_bar.position)
        return data
