"""
Physics Module
==============
Core physics for the kite flight engine.

Submodules:
- attitude: Vector and quaternion helpers
- wind: Ambient and apparent wind
- geometry: Kite anchor points and sail panels
- aerodynamics: Panel pressure forces and stall
- tether_dynamics: Control-line constraints and bridles
"""

from .attitude import (
    identity_quaternion,
    normalize_quaternion,
    rotate_vector,
    integrate_orientation,
)

from .wind import (
    WindField,
    WindParams
)

from .geometry import (
    KiteGeometry,
    Panel
)

from .aerodynamics import (
    AerodynamicsSolver,
    StallCurve,
    ForceSmoother
)

from .tether_dynamics import (
    LineStrategy,
    LineState,
    LineSolver,
    PBDLineSolver,
    SpringLineSolver,
    BridleSystem,
    LINE_SOLVERS,
    create_line_solver
)

__all__ = [
    # Attitude
    'identity_quaternion',
    'normalize_quaternion',
    'rotate_vector',
    'integrate_orientation',
    # Wind
    'WindField',
    'WindParams',
    # Geometry
    'KiteGeometry',
    'Panel',
    # Aero
    'AerodynamicsSolver',
    'StallCurve',
    'ForceSmoother',
    # Lines
    'LineStrategy',
    'LineState',
    'LineSolver',
    'PBDLineSolver',
    'SpringLineSolver',
    'BridleSystem',
    'LINE_SOLVERS',
    'create_line_solver',
]
