"""
Unit and epsilon constants for kernel geometry.

Internal drawing units are millimeters (mm). Every distance threshold in the
kernel is expressed in mm; numeric guards below are for robustness only and
never replace a tolerance computed by the tolerance manager.
"""

# Epsilon in mm (unit-aware)
EPS_MM = 1e-3  # 0.001 mm
# Determinant guard for line/line intersection (unitless, on normalized directions)
EPS_PARALLEL = 1e-12
