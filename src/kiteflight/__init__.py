"""
Kite Flight
===========
Rigid-body flight dynamics engine for a two-line stunt kite.

A physics core meant to be driven once per frame by an external renderer:
panel aerodynamics, inextensible control lines, and a clamped rigid-body
integrator.
"""

__version__ = "0.1.0"
__author__ = "Kite Flight Development Team"
