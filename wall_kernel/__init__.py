"""
Tolerance-aware 2D wall geometry kernel.

Turns wall baselines into solid wall geometry: offsets, junctions, boolean
composition, healing, simplification and quality validation.
"""

__version__ = "0.1.0"
