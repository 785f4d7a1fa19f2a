"""
Shared numeric defaults for the wall kernel.

All distance and length thresholds use millimeters (mm), the same units as the
baseline coordinates. Engine configs read their defaults from here so every
threshold has one definition.
"""

# ---------------------------------------------------------------------------
# Tolerance manager
# ---------------------------------------------------------------------------
BASE_TOLERANCE_MM = 1e-3
# Upper bound is MAX_TOLERANCE_ADJUSTMENT * base tolerance
MAX_TOLERANCE_ADJUSTMENT = 1000.0
# Precision share folded into the starting tolerance
PRECISION_FACTOR = 0.01
# Thickness scale: sqrt(thickness / REFERENCE_THICKNESS_MM), clamped
REFERENCE_THICKNESS_MM = 100.0
THICKNESS_SCALE_MIN = 0.5
THICKNESS_SCALE_MAX = 2.0
# Angle scale: 1 + ANGLE_SENSITIVITY * |angle - 90| / 90
ANGLE_SENSITIVITY = 2.0
# Context weights (vertex merge tightest, boolean loosest)
CONTEXT_WEIGHT_VERTEX_MERGE = 0.5
CONTEXT_WEIGHT_OFFSET = 1.0
CONTEXT_WEIGHT_HEALING = 1.5
CONTEXT_WEIGHT_BOOLEAN = 2.0

# ---------------------------------------------------------------------------
# Offset engine
# ---------------------------------------------------------------------------
DEFAULT_MITER_LIMIT = 10.0
# Segments shorter than this are dropped with a "micro" warning (mm)
MIN_SEGMENT_LENGTH_MM = 1e-3
# Arc subdivision for round joins
ROUND_JOIN_SEGMENTS = 8
# Join selection thresholds (degrees, turning angle between segments)
JOIN_ROUND_MAX_DEG = 15.0
JOIN_BEVEL_MAX_DEG = 45.0
JOIN_MITER_MAX_DEG = 120.0
THICK_WALL_MM = 200.0
CURVED_BASELINE_CURVATURE = 1e-3
# Fallback offsets after bevel: baseline simplification (mm), coarser grid
# as a multiple of the tolerance, and the smallest chunk for segmented offsets
SIMPLIFIED_OFFSET_TOLERANCE_MM = 1.0
REDUCED_PRECISION_FACTOR = 10.0
SEGMENTED_OFFSET_MIN_CHUNK = 3

# ---------------------------------------------------------------------------
# Intersection resolver / boolean engine
# ---------------------------------------------------------------------------
INTERSECTION_MAX_COMPLEXITY = 50000
BOOLEAN_MAX_COMPLEXITY = 10000
# Angles between walls below this (degrees) widen the tolerance
EXTREME_ANGLE_THRESHOLD_DEG = 15.0
VERY_SHARP_ANGLE_DEG = 5.0
# |sin(angle)| between baselines below this is treated as parallel
PARALLEL_OVERLAP_THRESHOLD = 0.1
# Parallel overlap ratios: merge walls above, transition zone above, else union
PARALLEL_MERGE_RATIO = 0.8
PARALLEL_TRANSITION_RATIO = 0.2
# Cross junction strategy thresholds on the complexity score
CROSS_SEQUENTIAL_MAX_SCORE = 10.0
CROSS_HIERARCHICAL_MAX_SCORE = 25.0
# batch_union switches to divide and conquer above this many inputs
BATCH_DIVIDE_THRESHOLD = 10
# Walls above this count enable threaded resolution in network optimization
PARALLEL_WALL_COUNT = 10
# Junction accuracy recorded on IntersectionData
JUNCTION_ACCURACY = 0.95
JUNCTION_FALLBACK_ACCURACY = 0.8

# ---------------------------------------------------------------------------
# Healing engine
# ---------------------------------------------------------------------------
# Isoperimetric ratio 4*pi*A/P^2 below this marks a sliver face
SLIVER_FACE_THRESHOLD = 1e-3
# Segments shorter than this are micro-gaps (mm)
MICRO_GAP_THRESHOLD_MM = 0.1
MAX_HEALING_ITERATIONS = 10

# ---------------------------------------------------------------------------
# Simplification engine
# ---------------------------------------------------------------------------
# Simplification tolerance never exceeds this fraction of thickness
MAX_SIMPLIFICATION_LEVEL = 0.05
# Adaptive tolerance floor as fraction of thickness
ADAPTIVE_TOLERANCE_FACTOR = 0.01
# Turning angle (degrees) above which a vertex is an architectural corner
CORNER_ANGLE_THRESHOLD_DEG = 30.0
COLLINEAR_ANGLE_THRESHOLD_DEG = 1.0
MIN_VERTICES_PER_RING = 3

# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------
SHARP_ANGLE_THRESHOLD_DEG = 15.0
MIN_WALL_THICKNESS_MM = 20.0
MAX_WALL_THICKNESS_MM = 1000.0
# Relative deviation of offset spacing from thickness before it is an error
THICKNESS_DEVIATION_RATIO = 0.01
WEIGHT_GEOMETRIC_ACCURACY = 0.35
WEIGHT_TOPOLOGICAL_CONSISTENCY = 0.30
WEIGHT_MANUFACTURABILITY = 0.20
WEIGHT_ARCHITECTURAL_COMPLIANCE = 0.15

# ---------------------------------------------------------------------------
# Error handler / pipeline
# ---------------------------------------------------------------------------
MAX_RECOVERY_ATTEMPTS = 3
DEFAULT_BATCH_SIZE = 15
MIN_BATCH_SIZE = 10
MAX_BATCH_SIZE = 20
DEFAULT_MAX_WORKERS = 4
