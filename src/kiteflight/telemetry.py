"""
Flight Telemetry
================
Rolling flight history with oscillation and wobble analysis.

The engine records one sample per step; the analysis looks at the most
recent ``window`` samples.
"""

from collections import deque
from typing import Dict

import numpy as np


# Position spread (m) at which stability reaches zero
MAX_EXPECTED_AMPLITUDE = 5.0

WOBBLE_MIN_FREQUENCY = 2.0      # Hz
WOBBLE_AMPLITUDE_RANGE = (0.5, 2.0)
WOBBLE_MAX_STABILITY = 0.7

TREND_SAMPLES = 10


class FlightHistory:
    """Ring buffer of recent kite samples"""

    def __init__(self, size: int = 60, window: int = 30):
        if window > size:
            raise ValueError("analysis window cannot exceed the history size")
        self.size = size
        self.window = window
        self.positions = deque(maxlen=size)
        self.velocities = deque(maxlen=size)
        self.forces = deque(maxlen=size)
        self.aoa = deque(maxlen=size)
        self.timestamps = deque(maxlen=size)

    def __len__(self):
        return len(self.positions)

    def add_measurement(self, position, velocity, force: float, aoa: float, timestamp: float):
        self.positions.append(np.array(position, dtype=np.float64))
        self.velocities.append(np.array(velocity, dtype=np.float64))
        self.forces.append(float(force))
        self.aoa.append(float(aoa))
        self.timestamps.append(float(timestamp))

    def clear(self):
        for buffer in (self.positions, self.velocities, self.forces, self.aoa, self.timestamps):
            buffer.clear()

    def analyze_oscillations(self) -> Dict[str, float]:
        """
        Amplitude is the RMS spread of position over the window; frequency
        counts sign changes of the vertical speed.
        """
        if len(self) < self.window:
            return {'frequency': 0.0, 'amplitude': 0.0, 'stability': 1.0}

        positions = np.array(list(self.positions)[-self.window:])
        vy = np.array([v[1] for v in list(self.velocities)[-self.window:]])
        times = list(self.timestamps)[-self.window:]

        amplitude = float(np.sqrt(np.sum(np.var(positions, axis=0))))
        crossings = int(np.sum(vy[:-1] * vy[1:] < 0))

        span = times[-1] - times[0]
        if span <= 0:
            span = self.window / 60.0
        frequency = crossings / span

        stability = max(0.0, 1.0 - amplitude / MAX_EXPECTED_AMPLITUDE)
        return {'frequency': frequency, 'amplitude': amplitude, 'stability': stability}

    def detect_wobbling(self) -> Dict:
        analysis = self.analyze_oscillations()
        low, high = WOBBLE_AMPLITUDE_RANGE
        is_wobbling = (analysis['frequency'] > WOBBLE_MIN_FREQUENCY
                       and low < analysis['amplitude'] < high
                       and analysis['stability'] < WOBBLE_MAX_STABILITY)

        severity = 0.0
        description = "Stable flight"
        if is_wobbling:
            severity = min(1.0, (2.0 - analysis['stability']) * analysis['frequency'] / 5.0)
            if severity < 0.3:
                description = "Slight oscillation"
            elif severity < 0.6:
                description = "Moderate wobble"
            else:
                description = "Severe wobble"

        return {'is_wobbling': is_wobbling, 'severity': severity, 'description': description}

    def recent_trends(self) -> Dict[str, str]:
        if len(self) < TREND_SAMPLES:
            return {'altitude_trend': 'stable', 'speed_trend': 'stable', 'force_trend': 'stable'}

        positions = list(self.positions)[-TREND_SAMPLES:]
        velocities = list(self.velocities)[-TREND_SAMPLES:]
        forces = list(self.forces)[-TREND_SAMPLES:]

        def trend(change, threshold, up, down):
            if abs(change) < threshold:
                return 'stable'
            return up if change > 0 else down

        return {
            'altitude_trend': trend(positions[-1][1] - positions[0][1], 0.1,
                                    'ascending', 'descending'),
            'speed_trend': trend(np.linalg.norm(velocities[-1]) - np.linalg.norm(velocities[0]),
                                 0.1, 'accelerating', 'decelerating'),
            'force_trend': trend(forces[-1] - forces[0], 5.0, 'increasing', 'decreasing'),
        }

    def flight_report(self) -> str:
        """Multi-line human-readable summary."""
        oscillation = self.analyze_oscillations()
        wobble = self.detect_wobbling()
        trends = self.recent_trends()

        lines = [
            "=== FLIGHT REPORT ===",
            f"Samples: {len(self)}",
            f"Oscillation: {oscillation['frequency']:.2f} Hz, "
            f"amplitude {oscillation['amplitude']:.2f} m, "
            f"stability {oscillation['stability'] * 100:.0f}%",
            f"Wobble: {wobble['description']} (severity {wobble['severity']:.2f})",
            f"Trends: altitude {trends['altitude_trend']}, "
            f"speed {trends['speed_trend']}, force {trends['force_trend']}",
        ]
        if len(self) >= self.window:
            aoa = np.array(list(self.aoa)[-self.window:])
            lines.append(f"AoA: mean {aoa.mean():.1f}°, std {aoa.std():.1f}°")
        return "\n".join(lines)
