"""
Kite Flight - Main Simulation
=============================
Entry point and orchestrator for the two-line kite flight engine.

Each step:
1. Bar rotation -> handle positions
2. Apparent wind at the sail's centre of pressure
3. Panel aerodynamics + gravity (+ spring line forces)
4. Rigid-body integration with line constraints and ground contact

Usage:
    python -m kiteflight.main --duration 20 --steer left
"""

import argparse
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import SimulationConfig
from .logging_config import setup_logging
from .telemetry import FlightHistory

# Physics engines
from .physics import (
    AerodynamicsSolver,
    KiteGeometry,
    LineStrategy,
    WindField,
    create_line_solver,
    rotate_vector,
)
from .physics.tether_dynamics import bridle_segments

# Entities
from .entities import (
    BarInputFilter,
    ControlBarMapper,
    HandlePositions,
    KiteState,
    RigidBodyIntegrator,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "kite_flight.yaml"

STEER_DIRECTIONS = {'left': 1, 'right': -1, 'none': 0}


class FlightEngine:
    """
    Main simulation controller for the kite.

    Orchestrates:
    - Wind and aerodynamics
    - Control bar mapping
    - Line constraints and rigid-body integration
    - Flight history for diagnostics

    Parameter changes made through the setters are queued and take effect
    at the start of the next step, so a step never sees a half-applied change.
    """

    def __init__(self,
                 config: Optional[SimulationConfig] = None,
                 geometry: Optional[KiteGeometry] = None,
                 initial_state: Optional[KiteState] = None):
        self.config = config or SimulationConfig()
        self.geometry = geometry or KiteGeometry.default()
        cfg = self.config

        self.wind = WindField(cfg.wind)
        self.aero = AerodynamicsSolver(self.geometry, cfg.aero)
        self.line_solver = create_line_solver(cfg.line, self.geometry, cfg.kite)
        self.control_bar = ControlBarMapper(cfg.control_bar)
        self.bar_input = BarInputFilter(cfg.control_bar)

        self._explicit_initial_state = initial_state
        self.integrator = RigidBodyIntegrator(
            self.geometry, self.line_solver, cfg.kite, cfg.physics,
            initial_state=self._initial_state(),
        )
        self.history = FlightHistory()

        self._pressure_center = self.geometry.area_weighted_centroid()
        self._pending: List[Tuple[str, object]] = []
        self._accumulator = 0.0
        self.time = 0.0
        self.steps = 0

        self._handles = self.control_bar.get_handle_positions(self.integrator.state.position)
        self._apparent_wind = np.zeros(3)
        self._aero_forces = self.aero.calculate_forces(np.zeros(3), self.integrator.state.orientation)
        self._line_forces = self.line_solver.calculate_line_tensions(
            self.integrator.state, self._handles)

        logger.info("Flight engine ready: %s lines, L=%.1f m, wind %.1f km/h",
                    self.line_solver.strategy.value, self.line_solver.line_length,
                    self.wind.params.speed)

    @classmethod
    def from_config(cls, config: SimulationConfig, **kwargs) -> "FlightEngine":
        return cls(config=config, **kwargs)

    @classmethod
    def from_yaml(cls, path, **kwargs) -> "FlightEngine":
        return cls(config=SimulationConfig.from_yaml(path), **kwargs)

    def _initial_state(self) -> KiteState:
        if self._explicit_initial_state is not None:
            return self._explicit_initial_state.copy()
        return KiteState.launch(self.config.control_bar.position, self.line_solver.line_length)

    # ---- stepping ------------------------------------------------------

    def update(self, dt: float, target_bar_rotation: float = 0.0, paused: bool = False) -> None:
        """
        Advance the simulation by one frame.

        Args:
            dt: Frame time (s), clamped to physics.max_dt
            target_bar_rotation: Desired bar rotation (rad)
            paused: When True nothing changes, pending setters included
        """
        if paused:
            return
        if not np.isfinite(dt) or dt <= 0.0:
            logger.debug("Ignoring frame with dt=%s", dt)
            return

        phys = self.config.physics
        dt = min(dt, phys.max_dt)
        self._apply_pending()

        if phys.fixed_timestep is None:
            self._step(dt, target_bar_rotation)
            return

        self._accumulator += dt
        substeps = 0
        while self._accumulator >= phys.fixed_timestep and substeps < phys.max_substeps:
            self._step(phys.fixed_timestep, target_bar_rotation)
            self._accumulator -= phys.fixed_timestep
            substeps += 1
        if substeps == phys.max_substeps and self._accumulator >= phys.fixed_timestep:
            logger.debug("Dropping %.4f s of accumulated time", self._accumulator)
            self._accumulator = 0.0

    def _step(self, dt: float, target_bar_rotation: float):
        state = self.integrator.state

        self.control_bar.set_rotation(target_bar_rotation)
        handles = self.control_bar.get_handle_positions(state.position)

        center = state.position + rotate_vector(state.orientation, self._pressure_center)
        apparent = self.wind.apparent_wind(state.velocity, dt,
                                           angular_velocity=state.angular_velocity,
                                           point=center, center=state.position)

        aero = self.aero.calculate_forces(apparent, state.orientation)
        gravity = np.array([0.0, -self.config.kite.mass * self.config.physics.gravity, 0.0])
        lines = self.line_solver.calculate_line_tensions(state, handles)

        force = aero['lift'] + aero['drag'] + gravity + lines['left_force'] + lines['right_force']
        torque = aero['torque'] + lines['torque']

        self.integrator.update(force, torque, handles, dt)

        self._handles = handles
        self._apparent_wind = apparent
        self._aero_forces = aero
        self._line_forces = lines
        self.time += dt
        self.steps += 1

        state = self.integrator.state
        self.history.add_measurement(state.position, state.velocity,
                                     np.linalg.norm(aero['lift']), aero['aoa_deg'], self.time)

    # ---- setters -------------------------------------------------------

    def set_wind_params(self, speed: Optional[float] = None,
                        direction: Optional[float] = None,
                        turbulence: Optional[float] = None):
        """Queue a wind change; omitted values stay as they are."""
        for name, value in (('speed', speed), ('direction', direction), ('turbulence', turbulence)):
            if value is not None and not np.isfinite(value):
                raise ValueError(f"wind {name} must be finite, got {value}")
        self._pending.append(('wind', {'speed': speed, 'direction': direction,
                                       'turbulence': turbulence}))

    def set_line_length(self, length: float):
        if not np.isfinite(length) or length <= 0:
            raise ValueError(f"line length must be positive, got {length}")
        self._pending.append(('line_length', float(length)))

    def set_bridle_factor(self, factor: float):
        if not np.isfinite(factor) or factor <= 0:
            raise ValueError(f"bridle factor must be positive, got {factor}")
        self._pending.append(('bridle_factor', float(factor)))

    def _apply_pending(self):
        pending, self._pending = self._pending, []
        for kind, value in pending:
            if kind == 'wind':
                self.wind.set_params(**value)
            elif kind == 'line_length':
                self.line_solver.set_line_length(value)
                logger.info("Line length set to %.2f m", value)
            elif kind == 'bridle_factor':
                self.line_solver.set_bridle_factor(value)
                logger.info("Bridle factor set to %.2f", value)

    def reset(self):
        """Restart the flight, keeping user-set wind, line length and bridle factor."""
        self._apply_pending()
        self.integrator.reset(self._initial_state())
        self.line_solver.reset()
        self.aero.reset()
        self.wind.reset_clock()
        self.control_bar.reset()
        self.bar_input.reset()
        self.history.clear()
        self._accumulator = 0.0
        self.time = 0.0
        self.steps = 0
        state = self.integrator.state
        self._handles = self.control_bar.get_handle_positions(state.position)
        self._apparent_wind = np.zeros(3)
        self._aero_forces = self.aero.calculate_forces(np.zeros(3), state.orientation)
        self._line_forces = self.line_solver.calculate_line_tensions(state, self._handles)
        logger.info("Flight reset")

    # ---- accessors -----------------------------------------------------

    @property
    def state(self) -> KiteState:
        return self.integrator.state.copy()

    @property
    def position(self) -> np.ndarray:
        return self.integrator.state.position.copy()

    @property
    def velocity(self) -> np.ndarray:
        return self.integrator.state.velocity.copy()

    @property
    def orientation(self) -> np.ndarray:
        return self.integrator.state.orientation.copy()

    @property
    def angular_velocity(self) -> np.ndarray:
        return self.integrator.state.angular_velocity.copy()

    @property
    def line_length(self) -> float:
        return self.line_solver.line_length

    @property
    def bridle_factor(self) -> float:
        return self.config.line.bridle_factor

    @property
    def wind_params(self):
        return self.wind.params

    @property
    def handle_positions(self) -> HandlePositions:
        return self._handles

    @property
    def bar_rotation(self) -> float:
        return self.control_bar.rotation

    @property
    def apparent_wind(self) -> np.ndarray:
        return self._apparent_wind.copy()

    @property
    def aero_forces(self) -> Dict:
        return self._aero_forces

    @property
    def line_forces(self) -> Dict:
        return self._line_forces

    @property
    def aero_force_magnitude(self) -> float:
        return float(np.linalg.norm(self._aero_forces['lift'] + self._aero_forces['drag']))

    @property
    def aero_torque_magnitude(self) -> float:
        return float(np.linalg.norm(self._aero_forces['torque']))

    def line_states(self) -> Dict[str, Dict]:
        state = self.integrator.state
        handles = self.control_bar.get_handle_positions(state.position)
        return self.line_solver.line_states(state, handles)

    def line_points(self, segments: int = 5) -> Dict[str, np.ndarray]:
        """Drawing points for both main lines, handle to kite."""
        state = self.integrator.state
        handles = self.control_bar.get_handle_positions(state.position)
        points = {}
        for side, handle in zip(('left', 'right'), handles):
            attachment = self.line_solver.attachment_world(side, state.position,
                                                           state.orientation, handle)
            if attachment is not None:
                points[side] = self.line_solver.catenary_points(handle, attachment, segments)
        return points

    def bridle_lines(self) -> List[Dict]:
        state = self.integrator.state
        handles = self.control_bar.get_handle_positions(state.position)
        return bridle_segments(self.line_solver, state, handles)

    def aero_metrics(self) -> Dict:
        return self.aero.compute_metrics(self._apparent_wind, self.integrator.state.orientation)

    def warnings(self) -> Dict:
        return self.integrator.warnings()

    def telemetry(self) -> Dict:
        """Snapshot of everything a HUD or logger might want."""
        state = self.integrator.state
        lines = self.line_states()
        wind = self.wind.params
        return {
            'time': self.time,
            'steps': self.steps,
            'kite': {
                'position': state.position.copy(),
                'velocity': state.velocity.copy(),
                'speed': float(np.linalg.norm(state.velocity)),
                'altitude': float(state.position[1]),
                'orientation': state.orientation.copy(),
                'angular_velocity': state.angular_velocity.copy(),
            },
            'aero': {
                'force': self.aero_force_magnitude,
                'torque': self.aero_torque_magnitude,
                'aoa_deg': self._aero_forces['aoa_deg'],
                'stall_factor': self._aero_forces['stall_factor'],
                'apparent_speed': self._aero_forces['apparent_speed'],
            },
            'lines': {
                side: {
                    'distance': info['distance'],
                    'tension': info['tension'],
                    'state': info['state'].value,
                    'strain': info['strain'],
                }
                for side, info in lines.items()
            },
            'line_length': self.line_solver.line_length,
            'bar_rotation': self.control_bar.rotation,
            'wind': {'speed': wind.speed, 'direction': wind.direction,
                     'turbulence': wind.turbulence},
            'warnings': self.warnings(),
        }

    # ---- headless runner -----------------------------------------------

    def run(self,
            duration: Optional[float] = None,
            dt: Optional[float] = None,
            control: Optional[Callable[[float], int]] = None,
            callback: Optional[Callable[[Dict], None]] = None) -> Dict:
        """
        Run the simulation without a renderer.

        Args:
            duration: Simulation time in seconds (default from config)
            dt: Frame time (default from config)
            control: Optional function of sim time returning a steering
                direction (-1, 0, +1), fed through the bar input filter
            callback: Optional function called each frame with telemetry

        Returns:
            Final telemetry snapshot
        """
        duration = self.config.simulation.duration if duration is None else duration
        dt = self.config.simulation.timestep if dt is None else dt
        frames = int(round(duration / dt))

        logger.info("Starting flight - Duration: %.1fs", duration)
        start_time = time.time()
        next_report = 1.0

        for _ in range(frames):
            direction = control(self.time) if control is not None else 0
            rotation = self.bar_input.update(direction, dt)
            self.update(dt, target_bar_rotation=rotation)

            if callback is not None:
                callback(self.telemetry())

            if self.time >= next_report:
                self._log_status()
                next_report += 1.0

        real_time = max(time.time() - start_time, 1e-9)
        logger.info("Flight complete. Sim time: %.2fs, Real time: %.2fs (%.1fx realtime)",
                    self.time, real_time, self.time / real_time)
        return self.telemetry()

    def _log_status(self):
        """Compact status line"""
        state = self.integrator.state
        lines = self.line_states()
        logger.info("T=%6.1fs | Alt: %5.1fm | Speed: %5.1fm/s | Force: %6.1fN | "
                    "Lines: %s/%s | Bar: %+.2f",
                    self.time, state.position[1], np.linalg.norm(state.velocity),
                    self.aero_force_magnitude,
                    lines['left']['state'].value, lines['right']['state'].value,
                    self.control_bar.rotation)


def demo_steering(duration: float = 12.0):
    """
    Demo: fly straight, hold a left turn, release and recover.
    """
    print("\n" + "=" * 60)
    print("DEMO: STEERING RESPONSE")
    print("=" * 60 + "\n")

    engine = FlightEngine()

    def control(t):
        return 1 if 4.0 <= t < 6.0 else 0

    engine.run(duration=duration, control=control)
    print(engine.history.flight_report())


def main(argv=None):
    parser = argparse.ArgumentParser(description="Headless two-line kite flight simulation")
    parser.add_argument('--config', type=Path, default=None,
                        help="YAML configuration file")
    parser.add_argument('--duration', type=float, default=None,
                        help="Simulation time in seconds")
    parser.add_argument('--steer', choices=sorted(STEER_DIRECTIONS), default='none',
                        help="Hold the bar in one direction for the whole flight")
    parser.add_argument('--strategy', choices=[s.value for s in LineStrategy], default=None,
                        help="Override the line constraint strategy")
    parser.add_argument('--demo', action='store_true', help="Run the steering demo")
    parser.add_argument('--verbose', action='store_true', help="Debug logging")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.demo:
        demo_steering()
        return 0

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
    config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
    if args.strategy:
        config.line.strategy = args.strategy

    engine = FlightEngine.from_config(config)
    direction = STEER_DIRECTIONS[args.steer]
    engine.run(duration=args.duration, control=lambda t: direction)
    print(engine.history.flight_report())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
