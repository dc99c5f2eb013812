"""
Tether Dynamics Module
======================
Control-line constraints between the pilot's handles and the kite.

This module handles:
- Position-based (PBD) inextensible lines, the default
- Spring lines with a tension cap, selectable as an alternative
- A hard inextensibility guard shared by both strategies
- Optional bridles that move the line attachment to a convergence point
- Slack-line sag curves for renderers

Lines can pull but never push: a slack line produces no force and no
correction.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..config import ConfigError, KiteConfig, LineConfig
from .attitude import compose_rotation, rotate_vector, safe_normalize
from .geometry import KiteGeometry

logger = logging.getLogger(__name__)

SIDES = ('left', 'right')

# Rounds of alternating projection used by the hard guard
GUARD_ROUNDS = 8


class LineStrategy(Enum):
    """How the control lines act on the kite"""
    PBD = "pbd"          # Position correction, no force term
    SPRING = "spring"    # Capped Hooke force, plus the hard guard


class LineState(Enum):
    """Line operational states"""
    TAUT = "taut"
    SLACK = "slack"


class BridleSystem:
    """
    Two bridles per side joining an upper and a lower anchor to a
    convergence point, where the main line attaches.

    The convergence point sits ``bridle_length`` away from the midpoint of
    the two anchors, toward the handle. Main-line tension is shared between
    the two bridles in proportion to their stretch tensions.
    """

    def __init__(self, geometry: KiteGeometry, config: LineConfig):
        self.geometry = geometry
        self.base_length = config.bridle_base_length
        self.stiffness = config.bridle_stiffness
        self.factor = config.bridle_factor

    @property
    def bridle_length(self) -> float:
        return self.base_length * self.factor

    @property
    def rest_lengths(self) -> Tuple[float, float]:
        """(upper, lower) rest lengths"""
        return 0.9 * self.bridle_length, 1.1 * self.bridle_length

    def set_bridle_factor(self, factor: float):
        if factor <= 0:
            raise ValueError(f"bridle factor must be positive, got {factor}")
        self.factor = float(factor)

    def anchors(self, side: str) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        prefix = side.upper()
        upper = self.geometry.get_point(f'{prefix}_BRIDLE_UPPER')
        lower = self.geometry.get_point(f'{prefix}_BRIDLE_LOWER')
        if upper is None or lower is None:
            return None
        return upper, lower

    def convergence_point(self, side: str, position: np.ndarray,
                          orientation: np.ndarray, handle: np.ndarray) -> Optional[np.ndarray]:
        """Convergence point in the body frame for the given handle position."""
        anchors = self.anchors(side)
        if anchors is None:
            logger.debug("No bridle anchors on the %s side", side)
            return None
        upper, lower = anchors
        midpoint = 0.5 * (upper + lower)

        to_handle_world = handle - (position + rotate_vector(orientation, midpoint))
        to_handle_local = _inverse_rotate(orientation, to_handle_world)
        direction = safe_normalize(to_handle_local)
        if not np.any(direction):
            direction = np.array([0.0, 0.0, 1.0])
        return midpoint + direction * self.bridle_length

    def distribute(self, side: str, line_force: np.ndarray, convergence_local: np.ndarray,
                   orientation: np.ndarray) -> Dict:
        """
        Split a main-line force over the two bridle anchors.

        Returns the force sum, the torque about the kite origin, and one
        record per bridle.
        """
        anchors = self.anchors(side)
        if anchors is None:
            r = rotate_vector(orientation, convergence_local)
            return {'force': line_force, 'torque': np.cross(r, line_force), 'bridles': []}

        rest = self.rest_lengths
        tensions = []
        for anchor, rest_length in zip(anchors, rest):
            stretch = np.linalg.norm(convergence_local - anchor) - rest_length
            tensions.append(self.stiffness * max(0.0, stretch))
        total = sum(tensions)
        weights = [t / total for t in tensions] if total > 0 else [0.5, 0.5]

        force_sum = np.zeros(3)
        torque_sum = np.zeros(3)
        records = []
        for name, anchor, weight, tension in zip(('upper', 'lower'), anchors, weights, tensions):
            force = line_force * weight
            r = rotate_vector(orientation, anchor)
            force_sum += force
            torque_sum += np.cross(r, force)
            records.append({
                'side': side,
                'anchor': name,
                'from': r,
                'to': rotate_vector(orientation, convergence_local),
                'force': force,
                'tension': float(np.linalg.norm(force)),
                'stretch_tension': tension,
            })
        return {'force': force_sum, 'torque': torque_sum, 'bridles': records}


def _inverse_rotate(orientation: np.ndarray, v: np.ndarray) -> np.ndarray:
    """World vector into the body frame."""
    conjugate = np.array([-orientation[0], -orientation[1], -orientation[2], orientation[3]])
    return rotate_vector(conjugate, v)


class LineSolver:
    """
    Shared machinery for both line strategies.

    Subclasses decide whether lines produce a force
    (``calculate_line_tensions``) and how predicted positions are corrected
    (``enforce_line_constraints``).
    """

    strategy: LineStrategy = None

    def __init__(self, geometry: KiteGeometry, config: LineConfig,
                 kite_config: Optional[KiteConfig] = None):
        self.geometry = geometry
        self.config = config
        self.kite_config = kite_config or KiteConfig()
        self.line_length = config.length
        self.bridles = BridleSystem(geometry, config) if config.bridles else None
        self._frozen_attachments: Dict[str, Optional[np.ndarray]] = {}
        self._last_tension = {side: 0.0 for side in SIDES}

    # ---- configuration -------------------------------------------------

    def set_line_length(self, length: float):
        if length <= 0:
            raise ValueError(f"line length must be positive, got {length}")
        self.line_length = float(length)

    def set_bridle_factor(self, factor: float):
        if factor <= 0:
            raise ValueError(f"bridle factor must be positive, got {factor}")
        self.config.bridle_factor = float(factor)
        if self.bridles is not None:
            self.bridles.set_bridle_factor(factor)

    @property
    def max_length(self) -> float:
        return self.line_length * (1.0 + self.config.tolerance)

    def reset(self):
        self._frozen_attachments = {}
        self._last_tension = {side: 0.0 for side in SIDES}

    # ---- attachment points ---------------------------------------------

    def attachment_local(self, side: str, position: np.ndarray, orientation: np.ndarray,
                         handle: np.ndarray) -> Optional[np.ndarray]:
        """Body-frame point where the main line meets the kite."""
        if side in self._frozen_attachments:
            return self._frozen_attachments[side]
        if self.bridles is not None:
            return self.bridles.convergence_point(side, position, orientation, handle)
        point = self.geometry.get_point(f'{side.upper()}_CONTROL')
        if point is None:
            logger.debug("No control point on the %s side", side)
        return point

    def freeze_attachments(self, state, handles):
        """Pin the attachment points in the body frame for the coming step."""
        self._frozen_attachments = {}
        points = {}
        for side, handle in zip(SIDES, handles):
            points[side] = self.attachment_local(side, state.position, state.orientation, handle)
        self._frozen_attachments = points

    def release_attachments(self):
        self._frozen_attachments = {}

    def attachment_world(self, side: str, position: np.ndarray, orientation: np.ndarray,
                         handle: np.ndarray) -> Optional[np.ndarray]:
        local = self.attachment_local(side, position, orientation, handle)
        if local is None:
            return None
        return position + rotate_vector(orientation, local)

    # ---- constraint helpers --------------------------------------------

    def _remove_radial_velocity(self, state, position: np.ndarray, local: np.ndarray,
                                handle: np.ndarray) -> float:
        """Cancel the outward speed of an attachment point along its line."""
        inv_m = 1.0 / self.kite_config.mass
        inv_i = 1.0 / self.kite_config.inertia

        r = rotate_vector(state.orientation, local)
        n = safe_normalize(position + r - handle)
        if not np.any(n):
            return 0.0
        radial_speed = float(np.dot(state.velocity + np.cross(state.angular_velocity, r), n))
        if radial_speed <= 0.0:
            return 0.0

        r_cross_n = np.cross(r, n)
        impulse = -radial_speed / (inv_m + inv_i * float(np.dot(r_cross_n, r_cross_n)))
        state.velocity = state.velocity + n * impulse * inv_m
        state.angular_velocity = state.angular_velocity + r_cross_n * impulse * inv_i
        return abs(impulse)

    def _hard_guard(self, predicted_position: np.ndarray, state, handles) -> bool:
        """
        Translate the kite until no line exceeds L(1 + tolerance).

        Alternating projection over both lines; each projection brings the
        offending line back to exactly L. Returns True if anything moved.
        """
        locals_ = [self.attachment_local(side, predicted_position, state.orientation, handle)
                   for side, handle in zip(SIDES, handles)]
        limit = self.max_length
        moved = False

        for _ in range(GUARD_ROUNDS):
            violated = False
            for local, handle in zip(locals_, handles):
                if local is None:
                    continue
                point = predicted_position + rotate_vector(state.orientation, local)
                diff = point - handle
                dist = np.linalg.norm(diff)
                if dist > limit:
                    predicted_position -= diff / dist * (dist - self.line_length)
                    violated = True
            if not violated:
                break
            moved = True
        else:
            worst = max(np.linalg.norm(predicted_position + rotate_vector(state.orientation, local) - handle)
                        for local, handle in zip(locals_, handles) if local is not None)
            if worst > limit:
                logger.debug("Line guard gave up after %d rounds: %.3f m exceeds %.3f m",
                             GUARD_ROUNDS, worst, limit)

        if moved:
            for local, handle in zip(locals_, handles):
                if local is not None:
                    self._remove_radial_velocity(state, predicted_position, local, handle)
        return moved

    # ---- diagnostics ---------------------------------------------------

    def _tension_estimate(self, side: str, distance: float) -> float:
        extension = distance - self.line_length
        if extension <= 0:
            return 0.0
        return min(self.config.stiffness * extension, self.config.max_tension)

    def line_states(self, state, handles) -> Dict[str, Dict]:
        """Distance, tension, taut/slack and strain for each line."""
        result = {}
        for side, handle in zip(SIDES, handles):
            point = self.attachment_world(side, state.position, state.orientation, handle)
            if point is None:
                result[side] = {'distance': 0.0, 'tension': 0.0,
                                'state': LineState.SLACK, 'strain': 0.0}
                continue
            distance = float(np.linalg.norm(point - handle))
            taut = distance >= self.line_length * (1.0 - self.config.tolerance)
            result[side] = {
                'distance': distance,
                'tension': self._tension_estimate(side, distance) if taut else 0.0,
                'state': LineState.TAUT if taut else LineState.SLACK,
                'strain': (distance - self.line_length) / self.line_length,
            }
        return result

    def catenary_points(self, start: np.ndarray, end: np.ndarray, segments: int = 5) -> np.ndarray:
        """
        Drawing points for a line from start to end.

        A taut line is a straight segment (two points); a slack line sags
        below the chord in proportion to its slack.
        """
        start = np.asarray(start, dtype=np.float64)
        end = np.asarray(end, dtype=np.float64)
        distance = np.linalg.norm(end - start)
        if distance >= self.line_length:
            return np.array([start, end])

        sag = (self.line_length - distance) * self.config.max_sag
        t = np.linspace(0.0, 1.0, segments + 1)[:, None]
        points = start + (end - start) * t
        points[:, 1] -= self.config.catenary_sag_factor * sag * (t[:, 0] * (1.0 - t[:, 0]))
        return points

    def calculate_line_tensions(self, state, handles) -> Dict:
        raise NotImplementedError

    def enforce_line_constraints(self, predicted_position: np.ndarray, state, handles,
                                 dt: Optional[float] = None) -> np.ndarray:
        raise NotImplementedError

    def _zero_tensions(self) -> Dict:
        return {
            'left_force': np.zeros(3), 'right_force': np.zeros(3), 'torque': np.zeros(3),
            'left_tension': self._last_tension['left'],
            'right_tension': self._last_tension['right'],
            'bridle_forces': [],
        }


class PBDLineSolver(LineSolver):
    """
    Inextensible lines by position-based dynamics.

    For each taut line, per iteration:

        C = |p - h| - L
        λ = C / (1/m + |r × n|² / I)
        Δx = -n λ / m,   Δθ = -(r × n) λ / I

    followed by an impulse that removes the attachment point's outward
    speed along the line. The correction moves the body, so the lines
    contribute no force term.
    """

    strategy = LineStrategy.PBD

    def calculate_line_tensions(self, state, handles) -> Dict:
        return self._zero_tensions()

    def _solve_line(self, side: str, predicted_position: np.ndarray, state,
                    handle: np.ndarray) -> Tuple[float, float]:
        local = self.attachment_local(side, predicted_position, state.orientation, handle)
        if local is None:
            return 0.0, 0.0

        inv_m = 1.0 / self.kite_config.mass
        inv_i = 1.0 / self.kite_config.inertia

        r = rotate_vector(state.orientation, local)
        diff = predicted_position + r - handle
        dist = np.linalg.norm(diff)
        if dist <= self.line_length or dist < 1e-9:
            return 0.0, 0.0

        n = diff / dist
        c = dist - self.line_length
        alpha = np.cross(r, n)
        lam = c / (inv_m + inv_i * float(np.dot(alpha, alpha)))

        predicted_position -= n * lam * inv_m
        state.orientation = compose_rotation(state.orientation, -alpha * lam * inv_i)

        impulse = self._remove_radial_velocity(state, predicted_position, local, handle)
        return lam, impulse

    def enforce_line_constraints(self, predicted_position: np.ndarray, state, handles,
                                 dt: Optional[float] = None) -> np.ndarray:
        """
        Correct predicted position, orientation and velocities in place.

        Returns the corrected predicted position (the same array).
        """
        lam_sum = {side: 0.0 for side in SIDES}
        impulse_sum = {side: 0.0 for side in SIDES}

        # Convergence points stay fixed on the body for the whole step
        self.freeze_attachments(state, handles)
        try:
            for _ in range(self.config.pbd_iterations):
                for side, handle in zip(SIDES, handles):
                    lam, impulse = self._solve_line(side, predicted_position, state, handle)
                    lam_sum[side] += lam
                    impulse_sum[side] += impulse

            if self._hard_guard(predicted_position, state, handles):
                logger.debug("Line guard projected the kite back within tolerance")
        finally:
            self.release_attachments()

        if dt:
            for side in SIDES:
                self._last_tension[side] = lam_sum[side] / dt ** 2 + impulse_sum[side] / dt
        return predicted_position

    def _tension_estimate(self, side: str, distance: float) -> float:
        return self._last_tension[side]


class SpringLineSolver(LineSolver):
    """
    Lines as one-sided springs: ``T = min(k · extension, max_tension)``.

    The spring force goes through the integrator like any other force;
    ``enforce_line_constraints`` only applies the hard guard.
    """

    strategy = LineStrategy.SPRING

    def calculate_line_tensions(self, state, handles) -> Dict:
        result = {
            'left_force': np.zeros(3), 'right_force': np.zeros(3), 'torque': np.zeros(3),
            'left_tension': 0.0, 'right_tension': 0.0, 'bridle_forces': [],
        }
        for side, handle in zip(SIDES, handles):
            local = self.attachment_local(side, state.position, state.orientation, handle)
            if local is None:
                continue
            r = rotate_vector(state.orientation, local)
            to_handle = handle - (state.position + r)
            dist = np.linalg.norm(to_handle)
            extension = dist - self.line_length
            if extension <= 0 or dist < 1e-9:
                continue

            tension = min(self.config.stiffness * extension, self.config.max_tension)
            force = to_handle / dist * tension

            if self.bridles is not None:
                shared = self.bridles.distribute(side, force, local, state.orientation)
                torque = shared['torque']
                result['bridle_forces'].extend(shared['bridles'])
            else:
                torque = np.cross(r, force)

            result[f'{side}_force'] = force
            result[f'{side}_tension'] = tension
            result['torque'] = result['torque'] + torque

        self._last_tension = {side: result[f'{side}_tension'] for side in SIDES}
        return result

    def enforce_line_constraints(self, predicted_position: np.ndarray, state, handles,
                                 dt: Optional[float] = None) -> np.ndarray:
        if self._hard_guard(predicted_position, state, handles):
            logger.debug("Spring lines overstretched, projected back within tolerance")
        return predicted_position


LINE_SOLVERS = {
    LineStrategy.PBD: PBDLineSolver,
    LineStrategy.SPRING: SpringLineSolver,
}


def create_line_solver(config: LineConfig,
                       geometry: KiteGeometry,
                       kite_config: Optional[KiteConfig] = None) -> LineSolver:
    """
    Factory for the configured line strategy.

    Raises:
        ConfigError: if the strategy name is not registered
    """
    try:
        strategy = config.strategy if isinstance(config.strategy, LineStrategy) \
            else LineStrategy(str(config.strategy).lower())
    except ValueError:
        available = ', '.join(s.value for s in LINE_SOLVERS)
        raise ConfigError(
            f"Unknown line strategy '{config.strategy}'. Available: {available}"
        ) from None

    return LINE_SOLVERS[strategy](geometry, config, kite_config)


def bridle_segments(solver: LineSolver, state, handles) -> List[Dict]:
    """World-frame bridle segments for drawing; empty without bridles."""
    if solver.bridles is None:
        return []
    segments = []
    for side, handle in zip(SIDES, handles):
        local = solver.attachment_local(side, state.position, state.orientation, handle)
        anchors = solver.bridles.anchors(side)
        if local is None or anchors is None:
            continue
        to_point = state.position + rotate_vector(state.orientation, local)
        for name, anchor in zip(('upper', 'lower'), anchors):
            segments.append({
                'side': side,
                'anchor': name,
                'from': state.position + rotate_vector(state.orientation, anchor),
                'to': to_point,
            })
    return segments
