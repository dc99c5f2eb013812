"""
Entities Module
===============
Physical objects of the kite flight simulation.

- Kite: rigid-body state and integrator
- ControlBar: pilot bar and handle positions
"""

from .kite import (
    KiteState,
    RigidBodyIntegrator
)

from .control_bar import (
    ControlBarMapper,
    BarInputFilter,
    HandlePositions
)

__all__ = [
    'KiteState',
    'RigidBodyIntegrator',
    'ControlBarMapper',
    'BarInputFilter',
    'HandlePositions',
]
