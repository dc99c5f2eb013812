"""
Kite Geometry
=============
Named anchor points and triangular sail panels of the kite, in the body frame.

Body frame: nose toward +Y, wingtips on ±X, control points forward at +Z
(toward the pilot). The default geometry is a delta stunt kite with four
panels and a total sail area of 0.68 m².
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Panel:
    """Triangular sail panel; vertex order sets the sign of the raw normal."""
    name: str
    vertices: Tuple[str, str, str]
    area: Optional[float] = None     # m², computed from the vertices when None


DEFAULT_POINTS = {
    'NOSE': (0.0, 0.65, 0.0),
    'SPINE_BASE': (0.0, 0.0, 0.0),
    'LEFT_WINGTIP': (-0.825, 0.0, 0.0),
    'RIGHT_WINGTIP': (0.825, 0.0, 0.0),
    'LEFT_WHISKER': (-0.4125, 0.1, -0.15),
    'RIGHT_WHISKER': (0.4125, 0.1, -0.15),
    'LEFT_BRIDLE_UPPER': (-0.3, 0.45, 0.0),
    'LEFT_BRIDLE_LOWER': (-0.2, 0.15, 0.0),
    'RIGHT_BRIDLE_UPPER': (0.3, 0.45, 0.0),
    'RIGHT_BRIDLE_LOWER': (0.2, 0.15, 0.0),
    'LEFT_CONTROL': (-0.15, 0.3, 0.4),
    'RIGHT_CONTROL': (0.15, 0.3, 0.4),
}

DEFAULT_PANELS = (
    Panel('upper_left', ('NOSE', 'LEFT_WINGTIP', 'LEFT_WHISKER'), 0.23),
    Panel('lower_left', ('NOSE', 'LEFT_WHISKER', 'SPINE_BASE'), 0.11),
    Panel('upper_right', ('NOSE', 'RIGHT_WINGTIP', 'RIGHT_WHISKER'), 0.23),
    Panel('lower_right', ('NOSE', 'RIGHT_WHISKER', 'SPINE_BASE'), 0.11),
)


@dataclass(frozen=True, eq=False)
class KiteGeometry:
    """
    Immutable kite shape, built once and shared by every solver.

    Panels whose vertices are missing from ``points`` are kept but
    contribute nothing: their normal, centroid and area resolve to None
    or zero and the aerodynamics solver skips them.
    """
    points: Mapping[str, np.ndarray]
    panels: Tuple[Panel, ...]
    _normals: Dict[str, Optional[np.ndarray]] = field(init=False, repr=False)
    _centroids: Dict[str, Optional[np.ndarray]] = field(init=False, repr=False)

    def __post_init__(self):
        frozen_points = {}
        for name, position in self.points.items():
            arr = np.array(position, dtype=np.float64)
            arr.setflags(write=False)
            frozen_points[name] = arr
        object.__setattr__(self, 'points', MappingProxyType(frozen_points))

        normals, centroids, panels = {}, {}, []
        for panel in self.panels:
            verts = self.panel_vertices(panel)
            if verts is None:
                logger.debug("Panel %s references a missing point", panel.name)
                normals[panel.name] = None
                centroids[panel.name] = None
                panels.append(panel)
                continue

            raw = np.cross(verts[1] - verts[0], verts[2] - verts[0])
            raw_norm = np.linalg.norm(raw)
            normal = raw / raw_norm if raw_norm > 1e-12 else None
            if normal is not None:
                normal.setflags(write=False)
            centroid = verts.mean(axis=0)
            centroid.setflags(write=False)
            normals[panel.name] = normal
            centroids[panel.name] = centroid

            if panel.area is None:
                panel = Panel(panel.name, panel.vertices, 0.5 * float(raw_norm))
            panels.append(panel)

        object.__setattr__(self, 'panels', tuple(panels))
        object.__setattr__(self, '_normals', normals)
        object.__setattr__(self, '_centroids', centroids)

    @classmethod
    def default(cls) -> "KiteGeometry":
        return cls(points=DEFAULT_POINTS, panels=DEFAULT_PANELS)

    def get_point(self, name: str) -> Optional[np.ndarray]:
        """Local position of a named point, or None if the kite has no such point."""
        return self.points.get(name)

    def panel_vertices(self, panel: Panel) -> Optional[np.ndarray]:
        verts = [self.points.get(v) for v in panel.vertices]
        if any(v is None for v in verts):
            return None
        return np.array(verts)

    def panel_normal(self, panel: Panel) -> Optional[np.ndarray]:
        """Unit normal from the edge cross product, in the body frame."""
        return self._normals.get(panel.name)

    def panel_centroid(self, panel: Panel) -> Optional[np.ndarray]:
        return self._centroids.get(panel.name)

    @property
    def total_area(self) -> float:
        return float(sum(p.area for p in self.panels
                         if self._normals.get(p.name) is not None))

    def area_weighted_centroid(self) -> np.ndarray:
        """Centre of pressure of the sail with every panel fully loaded."""
        total = 0.0
        acc = np.zeros(3)
        for panel in self.panels:
            centroid = self._centroids.get(panel.name)
            if centroid is None or self._normals.get(panel.name) is None:
                continue
            acc += centroid * panel.area
            total += panel.area
        if total <= 0.0:
            return np.zeros(3)
        return acc / total

    def anchor_array(self) -> np.ndarray:
        """All named points stacked as an (N, 3) array."""
        return np.array(list(self.points.values()))

    def is_symmetric(self, tolerance: float = 1e-9) -> bool:
        """True when every LEFT_* point mirrors its RIGHT_* partner across x = 0."""
        for name, position in self.points.items():
            if not name.startswith('LEFT_'):
                continue
            partner = self.points.get('RIGHT_' + name[len('LEFT_'):])
            if partner is None:
                return False
            mirrored = position * np.array([-1.0, 1.0, 1.0])
            if not np.allclose(mirrored, partner, atol=tolerance):
                return False
        return True
